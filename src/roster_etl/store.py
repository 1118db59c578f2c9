"""roster_etl.store

Keyed document store adapters.

The engine depends on three capabilities only: atomic batch upsert by key
(bounded by ``max_batch_size``), full-collection read, and delete by key /
delete all. A named lease with an expiry backs the single-flight import
guard.

Upsert semantics shared by every adapter: the incoming document replaces
the stored one, except that the stored ``created_at`` / ``created_by`` pair
is kept when its ``created_at`` is not newer than the incoming one. A
re-import keeps the first import's provenance, while a merged identity
record that predates it still wins.

Adapters:
  - MemoryStore    dict-backed, counts calls; tests and dry runs.
  - PostgresStore  psycopg 3 against the ``member_profile`` JSONB table
                     (see migrations/).
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Protocol, Sequence

import psycopg

from roster_etl.models import parse_timestamp

log = logging.getLogger(__name__)

# Hard limit of the backing store's atomic batch.
MAX_BATCH_SIZE = 500

PRESERVED_FIELDS = ("created_at", "created_by")

Document = dict[str, Any]


class DocumentStore(Protocol):
    max_batch_size: int

    def commit_batch(self, items: Sequence[tuple[str, Mapping[str, Any]]]) -> None:
        """Upsert every (key, document) pair atomically: all or none."""
        ...

    def read_all(self) -> dict[str, Document]:
        ...

    def delete(self, key: str) -> None:
        ...

    def delete_all(self) -> int:
        """Remove every document; return how many were removed."""
        ...

    def acquire_lease(self, name: str, holder: str, expires_at: datetime, now: datetime) -> bool:
        """Take ``name`` for ``holder`` unless another holder's lease is unexpired."""
        ...

    def release_lease(self, name: str, holder: str) -> None:
        ...


def _check_batch(items: Sequence[Any], max_batch_size: int) -> None:
    if len(items) > max_batch_size:
        raise ValueError(
            f"Batch of {len(items)} operations exceeds the store limit of {max_batch_size}."
        )


def keeps_stored_created(existing: Mapping[str, Any], incoming: Mapping[str, Any]) -> bool:
    """True when the stored created_at/created_by pair should survive an upsert.

    The older ``created_at`` wins. A missing stored value never wins; an
    incoming value that is missing or unparseable never displaces a stored one.
    """
    if existing.get("created_at") is None:
        return False
    stored = parse_timestamp(existing["created_at"])
    arriving = parse_timestamp(incoming.get("created_at"))
    if stored is None or arriving is None:
        return True
    return stored <= arriving


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------

@dataclass
class _Lease:
    holder: str
    expires_at: datetime


class MemoryStore:
    """Dict-backed store. ``calls`` counts every store operation."""

    def __init__(
        self,
        documents: Mapping[str, Mapping[str, Any]] | None = None,
        *,
        max_batch_size: int = MAX_BATCH_SIZE,
    ) -> None:
        self.documents: dict[str, Document] = {
            k: copy.deepcopy(dict(v)) for k, v in (documents or {}).items()
        }
        self.max_batch_size = max_batch_size
        self.calls = 0
        self.batches_committed = 0
        self._leases: dict[str, _Lease] = {}

    def commit_batch(self, items: Sequence[tuple[str, Mapping[str, Any]]]) -> None:
        self.calls += 1
        _check_batch(items, self.max_batch_size)
        staged = dict(self.documents)
        for key, doc in items:
            new_doc = copy.deepcopy(dict(doc))
            existing = staged.get(key)
            if existing and keeps_stored_created(existing, new_doc):
                for name in PRESERVED_FIELDS:
                    new_doc[name] = existing.get(name)
            staged[key] = new_doc
        self.documents = staged
        self.batches_committed += 1

    def read_all(self) -> dict[str, Document]:
        self.calls += 1
        return {k: copy.deepcopy(self.documents[k]) for k in sorted(self.documents)}

    def delete(self, key: str) -> None:
        self.calls += 1
        self.documents.pop(key, None)

    def delete_all(self) -> int:
        self.calls += 1
        removed = len(self.documents)
        self.documents = {}
        return removed

    def acquire_lease(self, name: str, holder: str, expires_at: datetime, now: datetime) -> bool:
        self.calls += 1
        current = self._leases.get(name)
        if current is not None and current.holder != holder and current.expires_at > now:
            return False
        self._leases[name] = _Lease(holder=holder, expires_at=expires_at)
        return True

    def release_lease(self, name: str, holder: str) -> None:
        self.calls += 1
        current = self._leases.get(name)
        if current is not None and current.holder == holder:
            del self._leases[name]

    def lease_holder(self, name: str) -> str | None:
        current = self._leases.get(name)
        return current.holder if current else None


# ---------------------------------------------------------------------------
# PostgreSQL store
# ---------------------------------------------------------------------------

_UPSERT_SQL = """
    INSERT INTO member_profile (external_key, document)
    VALUES (%s, %s::jsonb)
    ON CONFLICT (external_key) DO UPDATE
    SET document = EXCLUDED.document || CASE
            WHEN member_profile.document ->> 'created_at' IS NOT NULL
             AND (EXCLUDED.document ->> 'created_at' IS NULL
                  OR (member_profile.document ->> 'created_at')::timestamptz
                     <= (EXCLUDED.document ->> 'created_at')::timestamptz)
            THEN jsonb_build_object(
                'created_at', member_profile.document -> 'created_at',
                'created_by', COALESCE(member_profile.document -> 'created_by', 'null'::jsonb))
            ELSE '{}'::jsonb
        END,
        updated_at = now()
"""

_ACQUIRE_LEASE_SQL = """
    INSERT INTO import_lease (lease_name, holder, expires_at)
    VALUES (%s, %s, %s)
    ON CONFLICT (lease_name) DO UPDATE
    SET holder = EXCLUDED.holder, expires_at = EXCLUDED.expires_at
    WHERE import_lease.expires_at <= %s
       OR import_lease.holder = EXCLUDED.holder
    RETURNING lease_name
"""


class PostgresStore:
    """Documents in ``member_profile(external_key PK, document JSONB)``.

    The connection must be in autocommit mode so that each
    ``conn.transaction()`` block is a real, independently committed
    transaction (one per batch).
    """

    def __init__(self, conn: psycopg.Connection, *, max_batch_size: int = MAX_BATCH_SIZE) -> None:
        self._conn = conn
        self.max_batch_size = max_batch_size

    @classmethod
    def connect(cls, dsn: str, **kwargs: Any) -> "PostgresStore":
        return cls(psycopg.connect(dsn, autocommit=True), **kwargs)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "PostgresStore":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def commit_batch(self, items: Sequence[tuple[str, Mapping[str, Any]]]) -> None:
        _check_batch(items, self.max_batch_size)
        params = [(key, json.dumps(dict(doc), default=str)) for key, doc in items]
        with self._conn.transaction():
            with self._conn.cursor() as cur:
                cur.executemany(_UPSERT_SQL, params)

    def read_all(self) -> dict[str, Document]:
        rows = self._conn.execute(
            "SELECT external_key, document FROM member_profile ORDER BY external_key"
        ).fetchall()
        return {str(key): dict(doc) for key, doc in rows}

    def delete(self, key: str) -> None:
        self._conn.execute("DELETE FROM member_profile WHERE external_key = %s", (key,))

    def delete_all(self) -> int:
        with self._conn.transaction():
            cur = self._conn.execute("DELETE FROM member_profile")
            removed = cur.rowcount
        log.info("Deleted %s member_profile documents", removed)
        return removed

    def acquire_lease(self, name: str, holder: str, expires_at: datetime, now: datetime) -> bool:
        row = self._conn.execute(
            _ACQUIRE_LEASE_SQL, (name, holder, expires_at, now)
        ).fetchone()
        return row is not None

    def release_lease(self, name: str, holder: str) -> None:
        self._conn.execute(
            "DELETE FROM import_lease WHERE lease_name = %s AND holder = %s",
            (name, holder),
        )
