"""roster_etl.reconcile

Merges a roster profile with the identity-linked profile the
authentication subsystem created for the same person.

Precedence (fixed, field by field):
  - identity_id, email, photo_url, last_login_at: identity value when present
  - email_verified: always the identity record's value
  - everything else (names, phones, address, emergency contact, sponsorship,
    aviation, subscription, status, role): roster
  - created_at / created_by: whichever record is older
  - updated_at: now; import_source: "merged"

The caller decides when to reconcile and looks the identity record up
itself; ``IdentityDirectory`` is the lookup seam the pipeline accepts.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime
from typing import Mapping, Protocol

from roster_etl.models import SOURCE_IDENTITY, SOURCE_MERGED, MemberProfile, MemberStatus
from roster_etl.normalize import build_display_name, clean_phone, normalize_email, parse_name_parts
from roster_etl.policy import DEFAULT_POLICY, RolePolicy
from roster_etl.shared import utc_now

IDENTITY_ACTOR = "identity-auth"
MERGE_ACTOR = "identity-merge"


class IdentityDirectory(Protocol):
    def find(self, profile: MemberProfile) -> MemberProfile | None:
        """Return the identity-linked profile for the roster member, if any."""
        ...


class DictIdentityDirectory:
    """Identity profiles keyed by membership number, supplied up front by the caller."""

    def __init__(self, profiles: Mapping[str, MemberProfile]) -> None:
        self._profiles = dict(profiles)

    def find(self, profile: MemberProfile) -> MemberProfile | None:
        return self._profiles.get(profile.membership_number)

    def __len__(self) -> int:
        return len(self._profiles)


def _older(a: datetime | None, b: datetime | None) -> datetime | None:
    if a is None:
        return b
    if b is None:
        return a
    return min(a, b)


def merge_identity(
    roster: MemberProfile,
    identity: MemberProfile | None,
    *,
    now: datetime | None = None,
) -> MemberProfile:
    """Return the reconciled profile; ``identity is None`` passes ``roster`` through."""
    if identity is None:
        return roster

    now = now or utc_now()
    created_at = _older(roster.created_at, identity.created_at)
    if created_at is not None and created_at == identity.created_at and identity.created_by:
        created_by = identity.created_by
    else:
        created_by = roster.created_by

    return dataclasses.replace(
        roster,
        identity_id=identity.identity_id or roster.identity_id,
        email=identity.email or roster.email,
        photo_url=identity.photo_url or roster.photo_url,
        last_login_at=identity.last_login_at or roster.last_login_at,
        email_verified=identity.email_verified,
        created_at=created_at,
        created_by=created_by,
        updated_at=now,
        updated_by=MERGE_ACTOR,
        import_source=SOURCE_MERGED,
    )


def profile_from_identity(
    uid: str,
    *,
    email: str = "",
    display_name: str = "",
    photo_url: str = "",
    email_verified: bool = False,
    phone_number: str = "",
    membership_number: str = "",
    role: str = "",
    last_login_at: datetime | None = None,
    created_at: datetime | None = None,
    policy: RolePolicy = DEFAULT_POLICY,
) -> MemberProfile:
    """Build the identity-origin profile fragment for an authenticated user.

    Roster-only blocks (address, emergency contact, sponsorship, aviation)
    stay empty; the display name is split on whitespace.
    """
    created_at = created_at or utc_now()
    first_name, last_name = parse_name_parts(display_name.replace(",", " "))
    return MemberProfile(
        membership_number=membership_number.strip(),
        full_name=display_name.strip(),
        first_name=first_name,
        last_name=last_name,
        display_name=build_display_name(first_name, last_name),
        status=MemberStatus.UNKNOWN,
        email=normalize_email(email),
        phone=clean_phone(phone_number),
        role=role or policy.default_role_for_status(MemberStatus.UNKNOWN.value),
        identity_id=uid,
        photo_url=photo_url.strip(),
        email_verified=email_verified,
        last_login_at=last_login_at,
        created_at=created_at,
        updated_at=created_at,
        created_by=IDENTITY_ACTOR,
        updated_by=IDENTITY_ACTOR,
        import_source=SOURCE_IDENTITY,
        policy=policy,
    )
