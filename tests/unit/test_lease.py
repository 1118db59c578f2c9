"""Unit tests for roster_etl.lease."""

from datetime import timedelta

import pytest

from roster_etl.lease import IMPORT_LEASE_NAME, ImportLease
from roster_etl.shared import ImportInProgressError
from roster_etl.store import MemoryStore


class TestImportLease:
    def test_acquired_and_released(self, clock):
        store = MemoryStore()
        with ImportLease(store, "run-1", clock=clock) as lease:
            assert lease.acquired
            assert store.lease_holder(IMPORT_LEASE_NAME) == "run-1"
        assert store.lease_holder(IMPORT_LEASE_NAME) is None

    def test_released_on_error(self, clock):
        store = MemoryStore()
        with pytest.raises(RuntimeError):
            with ImportLease(store, "run-1", clock=clock):
                raise RuntimeError("boom")
        assert store.lease_holder(IMPORT_LEASE_NAME) is None

    def test_concurrent_holder_rejected(self, clock):
        store = MemoryStore()
        with ImportLease(store, "run-1", clock=clock):
            with pytest.raises(ImportInProgressError):
                with ImportLease(store, "run-2", clock=clock):
                    pass
            assert store.lease_holder(IMPORT_LEASE_NAME) == "run-1"

    def test_expired_lease_taken_over(self, clock):
        store = MemoryStore()
        ImportLease(store, "crashed-run", ttl_seconds=60, clock=clock).__enter__()
        clock.now = clock.now + timedelta(seconds=61)
        with ImportLease(store, "run-2", clock=clock):
            assert store.lease_holder(IMPORT_LEASE_NAME) == "run-2"
