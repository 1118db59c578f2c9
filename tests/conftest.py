"""Shared fixtures for roster_etl unit tests."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from roster_etl.store import MemoryStore


class FlakyStore(MemoryStore):
    """MemoryStore whose ``fail_on_batch``-th commit raises (1-based)."""

    def __init__(self, fail_on_batch: int, **kwargs):
        super().__init__(**kwargs)
        self.fail_on_batch = fail_on_batch
        self.attempts = 0

    def commit_batch(self, items):
        self.attempts += 1
        if self.attempts == self.fail_on_batch:
            self.calls += 1
            raise ConnectionError("simulated store outage")
        super().commit_batch(items)


class FixedClock:
    """Callable clock that returns ``now`` and can be advanced."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def five_record_payload():
    return {
        "metadata": {"exported_by": "roster-admin"},
        "records": [
            {
                "status": "A",
                "membershipNumber": "1001",
                "name": "Earhart, Amelia",
                "email": "Amelia@Example.com",
                "phone": "555-111-2222",
                "emergencyContact": "Muriel Earhart",
                "beamExpires": "2027-01-01",
            },
            {
                "status": "A",
                "membershipNumber": "1002",
                "name": "Wright, Orville",
                "beamExpires": "Comp Life",
            },
            {
                "status": "A",
                "membershipNumber": "1003",
                "name": "Charles Augustus Lindbergh",
                "phone": "555-867-5309 (c)",
            },
            {
                "status": "U",
                "membershipNumber": "1004",
                "name": "Doolittle, James",
                "email": "jimmy@example.com",
                "beamExpires": "Expired",
                "goneWest": "1993-09-27",
            },
            {
                "status": "",
                "membershipNumber": "1005",
                "name": "Coleman, Bessie",
            },
        ],
    }


@pytest.fixture
def clock():
    return FixedClock(datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def flaky_store_factory():
    def _make(fail_on_batch: int, **kwargs) -> FlakyStore:
        return FlakyStore(fail_on_batch, **kwargs)
    return _make
