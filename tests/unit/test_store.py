"""Unit tests for roster_etl.store (MemoryStore, and PostgresStore via mocks)."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from roster_etl.store import MAX_BATCH_SIZE, MemoryStore, PostgresStore

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# MemoryStore
# ---------------------------------------------------------------------------

class TestMemoryStore:
    def test_commit_and_read(self):
        store = MemoryStore()
        store.commit_batch([("member_2", {"n": 2}), ("member_1", {"n": 1})])
        assert list(store.read_all()) == ["member_1", "member_2"]
        assert store.batches_committed == 1

    def test_read_returns_copies(self):
        store = MemoryStore()
        store.commit_batch([("member_1", {"tags": ["a"]})])
        store.read_all()["member_1"]["tags"].append("b")
        assert store.documents["member_1"]["tags"] == ["a"]

    def test_upsert_replaces_but_keeps_created_fields(self):
        t0, t1 = NOW.isoformat(), (NOW + timedelta(days=1)).isoformat()
        store = MemoryStore()
        store.commit_batch([("member_1", {"name": "old", "created_at": t0, "created_by": "first"})])
        store.commit_batch([("member_1", {"name": "new", "created_at": t1, "created_by": "second"})])
        assert store.documents["member_1"] == {"name": "new", "created_at": t0, "created_by": "first"}

    def test_older_incoming_created_at_wins(self):
        stored, older = NOW.isoformat(), (NOW - timedelta(days=400)).isoformat()
        store = MemoryStore()
        store.commit_batch([("member_1", {"created_at": stored, "created_by": "roster-import"})])
        store.commit_batch([("member_1", {"created_at": older, "created_by": "identity-auth"})])
        assert store.documents["member_1"]["created_at"] == older
        assert store.documents["member_1"]["created_by"] == "identity-auth"

    def test_missing_created_at_filled_by_incoming(self):
        store = MemoryStore({"member_1": {"created_at": None, "created_by": None}})
        store.commit_batch([("member_1", {"created_at": NOW.isoformat(), "created_by": "roster-import"})])
        assert store.documents["member_1"]["created_by"] == "roster-import"

    def test_unparseable_incoming_keeps_stored(self):
        store = MemoryStore({"member_1": {"created_at": NOW.isoformat(), "created_by": "first"}})
        store.commit_batch([("member_1", {"created_at": "garbage", "created_by": "second"})])
        assert store.documents["member_1"]["created_by"] == "first"

    def test_oversized_batch_rejected_without_writes(self):
        store = MemoryStore(max_batch_size=2)
        with pytest.raises(ValueError, match="exceeds"):
            store.commit_batch([(f"k{i}", {}) for i in range(3)])
        assert store.documents == {}

    def test_delete_and_delete_all(self):
        store = MemoryStore({"a": {}, "b": {}, "c": {}})
        store.delete("a")
        store.delete("missing")
        assert store.delete_all() == 2
        assert store.documents == {}

    def test_calls_counted(self):
        store = MemoryStore()
        store.read_all()
        store.commit_batch([])
        store.delete_all()
        assert store.calls == 3

    def test_default_batch_limit(self):
        assert MemoryStore().max_batch_size == MAX_BATCH_SIZE == 500


class TestMemoryStoreLeases:
    def test_second_holder_blocked_until_expiry(self):
        store = MemoryStore()
        assert store.acquire_lease("import", "run-1", NOW + timedelta(minutes=5), NOW)
        assert not store.acquire_lease("import", "run-2", NOW + timedelta(minutes=5), NOW)
        later = NOW + timedelta(minutes=6)
        assert store.acquire_lease("import", "run-2", later + timedelta(minutes=5), later)
        assert store.lease_holder("import") == "run-2"

    def test_same_holder_reacquires(self):
        store = MemoryStore()
        assert store.acquire_lease("import", "run-1", NOW + timedelta(minutes=5), NOW)
        assert store.acquire_lease("import", "run-1", NOW + timedelta(minutes=9), NOW)

    def test_release_only_by_holder(self):
        store = MemoryStore()
        store.acquire_lease("import", "run-1", NOW + timedelta(minutes=5), NOW)
        store.release_lease("import", "run-2")
        assert store.lease_holder("import") == "run-1"
        store.release_lease("import", "run-1")
        assert store.lease_holder("import") is None


# ---------------------------------------------------------------------------
# PostgresStore (connection mocked)
# ---------------------------------------------------------------------------

def _mock_conn():
    conn = MagicMock()
    cursor = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    return conn, cursor


class TestPostgresStore:
    def test_commit_batch_runs_in_one_transaction(self):
        conn, cursor = _mock_conn()
        store = PostgresStore(conn)
        store.commit_batch([("member_1", {"a": 1}), ("member_2", {"a": 2})])
        conn.transaction.assert_called_once()
        sql, params = cursor.executemany.call_args.args
        assert "ON CONFLICT (external_key)" in sql
        assert params == [("member_1", json.dumps({"a": 1})), ("member_2", json.dumps({"a": 2}))]

    def test_commit_batch_limit_checked_before_transaction(self):
        conn, _ = _mock_conn()
        store = PostgresStore(conn, max_batch_size=1)
        with pytest.raises(ValueError):
            store.commit_batch([("a", {}), ("b", {})])
        conn.transaction.assert_not_called()

    def test_commit_failure_propagates(self):
        conn, cursor = _mock_conn()
        cursor.executemany.side_effect = RuntimeError("connection lost")
        with pytest.raises(RuntimeError, match="connection lost"):
            PostgresStore(conn).commit_batch([("a", {})])

    def test_read_all(self):
        conn, _ = _mock_conn()
        conn.execute.return_value.fetchall.return_value = [("member_1", {"a": 1})]
        assert PostgresStore(conn).read_all() == {"member_1": {"a": 1}}
        assert "ORDER BY external_key" in conn.execute.call_args.args[0]

    def test_delete_all_returns_rowcount(self):
        conn, _ = _mock_conn()
        conn.execute.return_value.rowcount = 7
        assert PostgresStore(conn).delete_all() == 7

    def test_acquire_lease(self):
        conn, _ = _mock_conn()
        conn.execute.return_value.fetchone.return_value = ("roster-import",)
        assert PostgresStore(conn).acquire_lease("roster-import", "run-1", NOW, NOW) is True
        conn.execute.return_value.fetchone.return_value = None
        assert PostgresStore(conn).acquire_lease("roster-import", "run-2", NOW, NOW) is False

    def test_context_manager_closes(self):
        conn, _ = _mock_conn()
        with PostgresStore(conn):
            pass
        conn.close.assert_called_once()
