"""roster_etl.models

Canonical member profile and its enumerations.

MemberProfile is frozen. ``is_active``, ``subscription_status``,
``is_deceased`` and ``address`` are properties; ``security_level`` is an
``init=False`` field recomputed from ``role`` in ``__post_init__``, so
``dataclasses.replace`` re-derives it whenever a profile is changed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from roster_etl.policy import DEFAULT_POLICY, RolePolicy

SPONSOR_SLOTS = 5

SOURCE_ROSTER = "roster_import"
SOURCE_IDENTITY = "identity"
SOURCE_MERGED = "merged"


class MemberStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: Any) -> "MemberStatus":
        """Map roster status codes (A/I/U) or words to a status; anything else is UNKNOWN."""
        v = str(value or "").strip().lower()
        if v in ("a", "active"):
            return cls.ACTIVE
        if v in ("i", "inactive"):
            return cls.INACTIVE
        return cls.UNKNOWN


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"


@dataclass(frozen=True)
class EmergencyContact:
    name: str = ""
    phone: str = ""
    email: str = ""
    relationship: str = ""

    def is_empty(self) -> bool:
        return not (self.name or self.phone or self.email or self.relationship)


def subscription_status_for(expiry: str) -> SubscriptionStatus:
    v = (expiry or "").strip()
    if not v or v.lower() == "expired":
        return SubscriptionStatus.EXPIRED
    return SubscriptionStatus.ACTIVE


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp from a stored document; None on blank or garbage."""
    if isinstance(value, datetime):
        return value
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


def _text(doc: Mapping[str, Any], key: str) -> str:
    value = doc.get(key)
    return "" if value is None else str(value)


@dataclass(frozen=True)
class MemberProfile:
    membership_number: str
    full_name: str = ""
    first_name: str = ""
    last_name: str = ""
    nickname: str = ""
    display_name: str = ""
    status: MemberStatus = MemberStatus.UNKNOWN
    # contact
    email: str = ""
    secondary_email: str = ""
    phone: str = ""
    secondary_phone: str = ""
    # address
    street: str = ""
    city: str = ""
    state: str = ""
    emergency_contact: EmergencyContact = field(default_factory=EmergencyContact)
    # membership
    inducting_unit: str = ""
    induction_date: str = ""
    date_of_birth: str = ""
    sponsors: tuple[str, ...] = ("",) * SPONSOR_SLOTS
    gone_west_date: str = ""
    # aviation
    certificate_number: str = ""
    certified_hours: str = ""
    first_solo_date: str = ""
    first_solo_location: str = ""
    # subscription
    subscription_expiry: str = ""
    # authorization
    role: str = ""
    # identity linkage
    identity_id: str = ""
    photo_url: str = ""
    email_verified: bool = False
    last_login_at: datetime | None = None
    # provenance
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str = ""
    updated_by: str = ""
    import_source: str = SOURCE_ROSTER
    imported_at: datetime | None = None
    policy: RolePolicy = field(default=DEFAULT_POLICY, repr=False, compare=False)
    security_level: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        sponsors = tuple(self.sponsors)[:SPONSOR_SLOTS]
        sponsors += ("",) * (SPONSOR_SLOTS - len(sponsors))
        object.__setattr__(self, "sponsors", sponsors)
        object.__setattr__(self, "security_level", self.policy.level_for(self.role))

    @property
    def is_active(self) -> bool:
        return self.status is MemberStatus.ACTIVE

    @property
    def subscription_status(self) -> SubscriptionStatus:
        return subscription_status_for(self.subscription_expiry)

    @property
    def is_deceased(self) -> bool:
        return bool(self.gone_west_date.strip())

    @property
    def address(self) -> str:
        return ", ".join(p for p in (self.street, self.city, self.state) if p.strip())

    # -----------------------------------------------------------------------
    # Document mapping
    # -----------------------------------------------------------------------

    def to_document(self) -> dict[str, Any]:
        """Flat JSON-compatible representation stored under the member's external key."""
        return {
            "membership_number": self.membership_number,
            "full_name": self.full_name,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "nickname": self.nickname,
            "display_name": self.display_name,
            "status": self.status.value,
            "is_active": self.is_active,
            "email": self.email,
            "secondary_email": self.secondary_email,
            "phone": self.phone,
            "secondary_phone": self.secondary_phone,
            "street": self.street,
            "city": self.city,
            "state": self.state,
            "address": self.address,
            "emergency_contact_name": self.emergency_contact.name,
            "emergency_contact_phone": self.emergency_contact.phone,
            "emergency_contact_email": self.emergency_contact.email,
            "emergency_contact_relationship": self.emergency_contact.relationship,
            "inducting_unit": self.inducting_unit,
            "induction_date": self.induction_date,
            "date_of_birth": self.date_of_birth,
            "sponsors": list(self.sponsors),
            "gone_west_date": self.gone_west_date,
            "is_deceased": self.is_deceased,
            "certificate_number": self.certificate_number,
            "certified_hours": self.certified_hours,
            "first_solo_date": self.first_solo_date,
            "first_solo_location": self.first_solo_location,
            "subscription_expiry": self.subscription_expiry,
            "subscription_status": self.subscription_status.value,
            "role": self.role,
            "security_level": self.security_level,
            "identity_id": self.identity_id,
            "photo_url": self.photo_url,
            "email_verified": self.email_verified,
            "last_login_at": _iso(self.last_login_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "import_source": self.import_source,
            "imported_at": _iso(self.imported_at),
        }

    @classmethod
    def from_document(
        cls,
        doc: Mapping[str, Any],
        policy: RolePolicy = DEFAULT_POLICY,
    ) -> "MemberProfile":
        """Rebuild a profile from a stored document.

        Derived values in the document (is_active, security_level,
        subscription_status, ...) are ignored and recomputed.
        """
        sponsors = doc.get("sponsors") or ()
        if isinstance(sponsors, str):
            sponsors = (sponsors,)
        return cls(
            membership_number=_text(doc, "membership_number"),
            full_name=_text(doc, "full_name"),
            first_name=_text(doc, "first_name"),
            last_name=_text(doc, "last_name"),
            nickname=_text(doc, "nickname"),
            display_name=_text(doc, "display_name"),
            status=MemberStatus.parse(doc.get("status")),
            email=_text(doc, "email"),
            secondary_email=_text(doc, "secondary_email"),
            phone=_text(doc, "phone"),
            secondary_phone=_text(doc, "secondary_phone"),
            street=_text(doc, "street"),
            city=_text(doc, "city"),
            state=_text(doc, "state"),
            emergency_contact=EmergencyContact(
                name=_text(doc, "emergency_contact_name"),
                phone=_text(doc, "emergency_contact_phone"),
                email=_text(doc, "emergency_contact_email"),
                relationship=_text(doc, "emergency_contact_relationship"),
            ),
            inducting_unit=_text(doc, "inducting_unit"),
            induction_date=_text(doc, "induction_date"),
            date_of_birth=_text(doc, "date_of_birth"),
            sponsors=tuple("" if s is None else str(s) for s in sponsors),
            gone_west_date=_text(doc, "gone_west_date"),
            certificate_number=_text(doc, "certificate_number"),
            certified_hours=_text(doc, "certified_hours"),
            first_solo_date=_text(doc, "first_solo_date"),
            first_solo_location=_text(doc, "first_solo_location"),
            subscription_expiry=_text(doc, "subscription_expiry"),
            role=_text(doc, "role"),
            identity_id=_text(doc, "identity_id"),
            photo_url=_text(doc, "photo_url"),
            email_verified=bool(doc.get("email_verified")),
            last_login_at=parse_timestamp(doc.get("last_login_at")),
            created_at=parse_timestamp(doc.get("created_at")),
            updated_at=parse_timestamp(doc.get("updated_at")),
            created_by=_text(doc, "created_by"),
            updated_by=_text(doc, "updated_by"),
            import_source=_text(doc, "import_source") or SOURCE_ROSTER,
            imported_at=parse_timestamp(doc.get("imported_at")),
            policy=policy,
        )
