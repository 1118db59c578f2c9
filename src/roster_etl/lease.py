"""roster_etl.lease

Single-flight guard for imports: a named lease with an expiry held in the
document store. Acquired after authorization and before processing;
released in ``__exit__`` whether the run completed or failed. An expired
lease (crashed holder) can be taken over.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable

from roster_etl.shared import ImportInProgressError, utc_now
from roster_etl.store import DocumentStore

log = logging.getLogger(__name__)

IMPORT_LEASE_NAME = "roster-import"
DEFAULT_LEASE_TTL_SECONDS = 15 * 60


class ImportLease:
    def __init__(
        self,
        store: DocumentStore,
        holder: str,
        *,
        name: str = IMPORT_LEASE_NAME,
        ttl_seconds: int = DEFAULT_LEASE_TTL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.holder = holder
        self.name = name
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.acquired = False

    def __enter__(self) -> "ImportLease":
        now = self.clock()
        expires_at = now + timedelta(seconds=self.ttl_seconds)
        if not self.store.acquire_lease(self.name, self.holder, expires_at, now):
            raise ImportInProgressError(
                f"Another run holds the '{self.name}' lease; try again after it finishes "
                f"or after {self.ttl_seconds}s."
            )
        self.acquired = True
        log.debug("Lease %s acquired by %s until %s", self.name, self.holder, expires_at)
        return self

    def __exit__(self, *exc_info: Any) -> None:
        if self.acquired:
            self.store.release_lease(self.name, self.holder)
            self.acquired = False
            log.debug("Lease %s released by %s", self.name, self.holder)
