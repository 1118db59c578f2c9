"""Normalization rules for raw roster records.

Helpers accept whatever a roster export throws at them (str, int, float,
None) and return plain strings, with "" standing in for a missing value.
``normalize_record`` is the single boundary where the schema-less raw
record becomes a typed MemberProfile; it never raises on malformed input.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Mapping

from roster_etl.models import (
    SOURCE_ROSTER,
    SPONSOR_SLOTS,
    EmergencyContact,
    MemberProfile,
    MemberStatus,
)
from roster_etl.policy import DEFAULT_POLICY, RolePolicy
from roster_etl.shared import utc_now

ROSTER_ACTOR = "roster-import"

# Canonical attribute -> accepted raw keys (matched case-insensitively).
RAW_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "status": ("status", "statusCode"),
    "membership_number": (
        "membershipNumber", "membership_number", "memberNumber", "qbNumber", "number",
    ),
    "name": ("name", "fullName", "full_name"),
    "nickname": ("nickname",),
    "email": ("email", "email1"),
    "secondary_email": ("email2", "secondaryEmail", "secondary_email"),
    "phone": ("phone", "phone1"),
    "secondary_phone": ("phone2", "secondaryPhone", "secondary_phone"),
    "street": ("street", "address"),
    "city": ("city",),
    "state": ("state",),
    "emergency_name": ("emergencyContact", "emergency_contact", "emergencyName"),
    "emergency_phone": ("emergencyPhone", "emergency_phone"),
    "emergency_email": ("emergencyEmail", "emergency_email"),
    "emergency_relationship": (
        "emerRelationship", "emergencyRelationship", "emergency_relationship",
    ),
    "date_of_birth": ("DateOfBirth", "dateOfBirth", "date_of_birth", "dob"),
    "inducting_unit": ("inductingHangar", "inductingUnit", "inducting_unit"),
    "induction_date": ("inductingDate", "inductionDate", "induction_date"),
    "certificate_number": ("certificateNumber", "certificate_number"),
    "certified_hours": ("certifiedPIC/SoloHours", "certifiedHours", "pilotHours"),
    "first_solo_date": ("soloDate", "firstSoloDate", "first_solo_date"),
    "first_solo_location": ("soloLocation", "firstSoloLocation", "first_solo_location"),
    "subscription_expiry": (
        "beamExpires", "subscriptionExpiry", "subscriptionExpires", "subscription_expiry",
    ),
    "gone_west_date": ("goneWest", "goneWestDate", "gone_west_date"),
}

_PHONE_ANNOTATION_RE = re.compile(
    r"\s*\((?:c|h|w|m|cell|home|work|mobile|call)\)\s*$",
    re.IGNORECASE,
)


# ---------------------------------------------------------------------------
# Rule 1: to_text
# ---------------------------------------------------------------------------

def to_text(value: Any) -> str:
    """Render a raw value as a trimmed string; None becomes ""."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: Any) -> str:
    """Collapse internal runs of whitespace to single spaces, then trim."""
    return re.sub(r"\s+", " ", to_text(value))


# ---------------------------------------------------------------------------
# Rule 3: normalize_email
# ---------------------------------------------------------------------------

def normalize_email(value: Any) -> str:
    """Lowercase and trim an email address."""
    return to_text(value).lower()


# ---------------------------------------------------------------------------
# Rule 4: clean_phone
# ---------------------------------------------------------------------------

def clean_phone(value: Any) -> str:
    """Strip one trailing parenthetical annotation such as "(c)" or "(h)".

    The number itself is not reformatted.
    """
    return _PHONE_ANNOTATION_RE.sub("", to_text(value)).strip()


# ---------------------------------------------------------------------------
# Rule 5: parse_name_parts
# ---------------------------------------------------------------------------

def parse_name_parts(full_name: Any) -> tuple[str, str]:
    """Split a roster name into (first_name, last_name).

    Supports:
    - "Last, First"          → ("First", "Last")   (first comma only)
    - "First Middle Last"    → ("First", "Middle Last")
    - Single token           → (token, "")
    """
    v = normalize_space(full_name)
    if not v:
        return ("", "")
    if "," in v:
        last, first = v.split(",", 1)
        return (first.strip(), last.strip())
    tokens = v.split(" ")
    if len(tokens) >= 2:
        return (tokens[0], " ".join(tokens[1:]))
    return (v, "")


# ---------------------------------------------------------------------------
# Rule 6: display_name
# ---------------------------------------------------------------------------

def build_display_name(first_name: str, last_name: str, nickname: str = "") -> str:
    """'First "Nickname" Last' when a nickname is present, else 'First Last'."""
    nick = normalize_space(nickname)
    if nick:
        return normalize_space(f'{first_name} "{nick}" {last_name}')
    return normalize_space(f"{first_name} {last_name}")


# ---------------------------------------------------------------------------
# Field lookup
# ---------------------------------------------------------------------------

def _lowered(raw: Any) -> dict[str, Any]:
    if not isinstance(raw, Mapping):
        return {}
    return {str(k).strip().lower(): v for k, v in raw.items()}


def _pick(fields: Mapping[str, Any], attr: str) -> Any:
    for alias in RAW_FIELD_ALIASES[attr]:
        value = fields.get(alias.lower())
        if value is not None and to_text(value) != "":
            return value
    return None


def _sponsors(fields: Mapping[str, Any]) -> tuple[str, ...]:
    listed = fields.get("sponsors")
    if isinstance(listed, (list, tuple)):
        slots = [normalize_space(s) for s in listed]
    else:
        slots = [normalize_space(fields.get(f"sponsor{i}")) for i in range(1, SPONSOR_SLOTS + 1)]
    return tuple(slots[:SPONSOR_SLOTS])


# ---------------------------------------------------------------------------
# Record normalization
# ---------------------------------------------------------------------------

def normalize_record(
    raw: Any,
    policy: RolePolicy = DEFAULT_POLICY,
    *,
    default_unit: str = "",
    source: str = SOURCE_ROSTER,
    actor: str = ROSTER_ACTOR,
    now: datetime | None = None,
) -> MemberProfile:
    """Map one raw roster record to a canonical MemberProfile.

    Missing fields default to "" (or the neutral enum value); a record that is
    not a mapping at all yields an empty profile. Role comes from the policy:
    leadership override by membership number, else the status default.
    """
    now = now or utc_now()
    fields = _lowered(raw)

    number = to_text(_pick(fields, "membership_number"))
    full_name = to_text(_pick(fields, "name"))
    first_name, last_name = parse_name_parts(full_name)
    nickname = normalize_space(_pick(fields, "nickname"))
    status = MemberStatus.parse(_pick(fields, "status"))

    return MemberProfile(
        membership_number=number,
        full_name=full_name,
        first_name=first_name,
        last_name=last_name,
        nickname=nickname,
        display_name=build_display_name(first_name, last_name, nickname),
        status=status,
        email=normalize_email(_pick(fields, "email")),
        secondary_email=normalize_email(_pick(fields, "secondary_email")),
        phone=clean_phone(_pick(fields, "phone")),
        secondary_phone=clean_phone(_pick(fields, "secondary_phone")),
        street=normalize_space(_pick(fields, "street")),
        city=normalize_space(_pick(fields, "city")),
        state=normalize_space(_pick(fields, "state")),
        emergency_contact=EmergencyContact(
            name=normalize_space(_pick(fields, "emergency_name")),
            phone=clean_phone(_pick(fields, "emergency_phone")),
            email=normalize_email(_pick(fields, "emergency_email")),
            relationship=normalize_space(_pick(fields, "emergency_relationship")),
        ),
        inducting_unit=normalize_space(_pick(fields, "inducting_unit")) or default_unit,
        induction_date=to_text(_pick(fields, "induction_date")),
        date_of_birth=to_text(_pick(fields, "date_of_birth")),
        sponsors=_sponsors(fields),
        gone_west_date=to_text(_pick(fields, "gone_west_date")),
        certificate_number=to_text(_pick(fields, "certificate_number")),
        certified_hours=to_text(_pick(fields, "certified_hours")),
        first_solo_date=to_text(_pick(fields, "first_solo_date")),
        first_solo_location=normalize_space(_pick(fields, "first_solo_location")),
        subscription_expiry=normalize_space(_pick(fields, "subscription_expiry")),
        role=policy.role_for(number, status.value),
        created_at=now,
        updated_at=now,
        created_by=actor,
        updated_by=actor,
        import_source=source,
        imported_at=now,
        policy=policy,
    )
