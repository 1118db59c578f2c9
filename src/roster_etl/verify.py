"""roster_etl.verify

Full-store integrity audit. Reads every document currently stored (not only
the last import's) and never writes.

Checks:
  - total / active member counts and contact-field coverage
  - missing required fields: blank membership number, first or last name
  - duplicate membership numbers across documents (blank numbers ignored)

A non-empty duplicate list means legacy data or a key-derivation
regression; it is reported as data, never raised.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from roster_etl.models import MemberStatus
from roster_etl.shared import VerificationDriftWarning
from roster_etl.store import DocumentStore

REQUIRED_FIELDS = ("membership_number", "first_name", "last_name")


@dataclass(frozen=True)
class VerificationReport:
    total_members: int = 0
    active_members: int = 0
    with_email: int = 0
    with_phone: int = 0
    missing_required_fields: int = 0
    duplicate_keys: tuple[str, ...] = ()
    role_distribution: dict[str, int] = field(default_factory=dict)

    @property
    def is_clean(self) -> bool:
        return not self.duplicate_keys and self.missing_required_fields == 0

    def drift_warnings(self) -> list[VerificationDriftWarning]:
        found = []
        if self.duplicate_keys:
            found.append(VerificationDriftWarning(
                f"{len(self.duplicate_keys)} membership numbers stored more than once: "
                f"{', '.join(self.duplicate_keys[:20])}"
            ))
        if self.missing_required_fields:
            found.append(VerificationDriftWarning(
                f"{self.missing_required_fields} members lack a membership number, "
                f"first name or last name"
            ))
        return found

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_members": self.total_members,
            "active_members": self.active_members,
            "with_email": self.with_email,
            "with_phone": self.with_phone,
            "missing_required_fields": self.missing_required_fields,
            "duplicate_keys": list(self.duplicate_keys),
            "role_distribution": dict(self.role_distribution),
        }


def _blank(doc: Mapping[str, Any], name: str) -> bool:
    value = doc.get(name)
    return value is None or str(value).strip() == ""


def verify_documents(documents: Iterable[Mapping[str, Any]]) -> VerificationReport:
    total = active = with_email = with_phone = missing = 0
    numbers: Counter[str] = Counter()
    roles: Counter[str] = Counter()

    for doc in documents:
        total += 1
        active += MemberStatus.parse(doc.get("status")) is MemberStatus.ACTIVE
        with_email += not _blank(doc, "email")
        with_phone += not _blank(doc, "phone")
        missing += any(_blank(doc, name) for name in REQUIRED_FIELDS)
        roles[str(doc.get("role") or "")] += 1
        if not _blank(doc, "membership_number"):
            numbers[str(doc["membership_number"]).strip()] += 1

    return VerificationReport(
        total_members=total,
        active_members=active,
        with_email=with_email,
        with_phone=with_phone,
        missing_required_fields=missing,
        duplicate_keys=tuple(sorted(n for n, c in numbers.items() if c > 1)),
        role_distribution=dict(roles),
    )


def verify_store(store: DocumentStore) -> VerificationReport:
    """Audit every document in ``store``."""
    return verify_documents(store.read_all().values())
