"""Unit tests for roster_etl.keys."""

import pytest

from roster_etl.keys import is_keyable, key_for, key_for_number
from roster_etl.models import MemberProfile
from roster_etl.normalize import normalize_record
from roster_etl.shared import MissingMembershipNumberError


class TestKeyFor:
    def test_prefixed_number(self):
        assert key_for_number("12345") == "member_12345"

    def test_strips_whitespace(self):
        assert key_for_number("  12345 ") == "member_12345"

    def test_blank_number_raises(self):
        with pytest.raises(MissingMembershipNumberError):
            key_for_number("   ")

    def test_profile_without_number_raises(self):
        with pytest.raises(MissingMembershipNumberError):
            key_for(MemberProfile(membership_number=""))

    def test_same_number_same_key_regardless_of_other_fields(self):
        a = normalize_record({"membershipNumber": "77", "name": "Ann Lee", "status": "A"})
        b = normalize_record({"memberNumber": 77.0, "name": "Lee, Annabel", "status": "I"})
        assert key_for(a) == key_for(b) == "member_77"

    def test_is_keyable(self):
        assert is_keyable(MemberProfile(membership_number="1"))
        assert not is_keyable(MemberProfile(membership_number=""))
