"""roster_etl.keys

External key assignment. The key depends on the membership number and
nothing else, so re-importing an unchanged roster rewrites the same
documents instead of inserting new ones.
"""

from __future__ import annotations

from roster_etl.models import MemberProfile
from roster_etl.shared import MissingMembershipNumberError

KEY_PREFIX = "member_"


def key_for_number(membership_number: str) -> str:
    number = (membership_number or "").strip()
    if not number:
        raise MissingMembershipNumberError("Cannot derive an external key without a membership number.")
    return f"{KEY_PREFIX}{number}"


def key_for(profile: MemberProfile) -> str:
    return key_for_number(profile.membership_number)


def is_keyable(profile: MemberProfile) -> bool:
    return bool(profile.membership_number.strip())
