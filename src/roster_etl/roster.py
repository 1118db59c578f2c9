"""roster_etl.roster

Roster payload processing: validates the payload shape, maps every raw
record through ``normalize_record`` and folds the statistics summary in the
same pass. Also hosts the read-only helpers that sit downstream of a
processed roster (member search and JSON/CSV export).
"""

from __future__ import annotations

import csv
import io
import json
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Mapping, Sequence

from roster_etl.models import MemberProfile, SubscriptionStatus
from roster_etl.normalize import normalize_record
from roster_etl.policy import DEFAULT_POLICY, RolePolicy
from roster_etl.shared import InvalidPayloadError, utc_now

PROCESSING_VERSION = "1.0.0"

EXPORT_FORMATS = ("json", "csv")


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StatisticsSummary:
    total: int = 0
    active: int = 0
    inactive: int = 0
    with_email: int = 0
    with_phone: int = 0
    with_emergency_contact: int = 0
    gone_west: int = 0
    complimentary_life: int = 0
    missing_membership_number: int = 0
    role_distribution: dict[str, int] = field(default_factory=dict)
    subscription_distribution: dict[str, int] = field(default_factory=dict)
    duplicate_membership_numbers: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "active": self.active,
            "inactive": self.inactive,
            "with_email": self.with_email,
            "with_phone": self.with_phone,
            "with_emergency_contact": self.with_emergency_contact,
            "gone_west": self.gone_west,
            "complimentary_life": self.complimentary_life,
            "missing_membership_number": self.missing_membership_number,
            "role_distribution": dict(self.role_distribution),
            "subscription_distribution": dict(self.subscription_distribution),
            "duplicate_membership_numbers": list(self.duplicate_membership_numbers),
        }


@dataclass(frozen=True)
class ProcessedRoster:
    profiles: tuple[MemberProfile, ...]
    statistics: StatisticsSummary
    metadata: dict[str, Any]


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------

def _records_of(payload: Any) -> Sequence[Any]:
    if not isinstance(payload, Mapping):
        raise InvalidPayloadError("Roster payload must be a mapping with a 'records' list.")
    if "records" not in payload:
        raise InvalidPayloadError("Roster payload has no 'records' field.")
    records = payload["records"]
    if not isinstance(records, (list, tuple)):
        raise InvalidPayloadError(
            f"Roster payload 'records' must be a list, got {type(records).__name__}."
        )
    return records


def process_roster(
    payload: Any,
    policy: RolePolicy = DEFAULT_POLICY,
    *,
    default_unit: str = "",
    now: datetime | None = None,
) -> ProcessedRoster:
    """Normalize every record of ``payload`` and summarize the result.

    Raises:
        InvalidPayloadError: ``payload['records']`` is missing or not a list.
            Nothing else fails; malformed records normalize to empty fields.
    """
    records = _records_of(payload)
    now = now or utc_now()

    profiles: list[MemberProfile] = []
    roles: Counter[str] = Counter()
    subscriptions: Counter[str] = Counter({s.value: 0 for s in SubscriptionStatus})
    numbers: Counter[str] = Counter()
    active = with_email = with_phone = with_emergency = gone_west = comp_life = unnumbered = 0

    for raw in records:
        profile = normalize_record(raw, policy, default_unit=default_unit, now=now)
        profiles.append(profile)

        active += profile.is_active
        with_email += bool(profile.email)
        with_phone += bool(profile.phone)
        with_emergency += bool(profile.emergency_contact.name)
        gone_west += profile.is_deceased
        comp_life += "comp life" in profile.subscription_expiry.lower()
        roles[profile.role] += 1
        subscriptions[profile.subscription_status.value] += 1
        if profile.membership_number:
            numbers[profile.membership_number] += 1
        else:
            unnumbered += 1

    statistics = StatisticsSummary(
        total=len(profiles),
        active=active,
        inactive=len(profiles) - active,
        with_email=with_email,
        with_phone=with_phone,
        with_emergency_contact=with_emergency,
        gone_west=gone_west,
        complimentary_life=comp_life,
        missing_membership_number=unnumbered,
        role_distribution=dict(roles),
        subscription_distribution=dict(subscriptions),
        duplicate_membership_numbers=tuple(sorted(n for n, c in numbers.items() if c > 1)),
    )
    metadata = {
        "processed_at": now.isoformat(),
        "processing_version": PROCESSING_VERSION,
        "original_metadata": payload.get("metadata"),
    }
    return ProcessedRoster(profiles=tuple(profiles), statistics=statistics, metadata=metadata)


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

def _comparable(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def find_members(profiles: Iterable[MemberProfile], **criteria: Any) -> list[MemberProfile]:
    """Profiles matching every criterion.

    String criteria are case-insensitive substring matches; anything else
    must be equal.
    """
    matches = []
    for profile in profiles:
        ok = True
        for name, wanted in criteria.items():
            actual = _comparable(getattr(profile, name, None))
            if isinstance(wanted, str):
                if not actual or wanted.lower() not in str(actual).lower():
                    ok = False
                    break
            elif actual != wanted:
                ok = False
                break
        if ok:
            matches.append(profile)
    return matches


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def _csv_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return "|".join(str(v) for v in value)
    return str(value)


def export_documents(documents: Sequence[Mapping[str, Any]], fmt: str = "json") -> str:
    """Serialize documents as JSON or delimited text.

    CSV columns come from the first document's keys; cells holding the
    delimiter, a quote or a newline are quoted with embedded quotes doubled.
    """
    fmt = fmt.lower()
    if fmt == "json":
        return json.dumps(list(documents), indent=2, default=str)
    if fmt == "csv":
        if not documents:
            return ""
        headers = list(documents[0].keys())
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(headers)
        for doc in documents:
            writer.writerow([_csv_cell(doc.get(h)) for h in headers])
        return buf.getvalue()
    raise ValueError(f"Unsupported export format: {fmt}")


def export_members(profiles: Iterable[MemberProfile], fmt: str = "json") -> str:
    return export_documents([p.to_document() for p in profiles], fmt)
