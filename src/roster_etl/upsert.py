"""roster_etl.upsert

Chunked, ordered upsert of member documents.

Each chunk is one atomic ``commit_batch`` call. Chunks are committed
strictly in order; the first failing chunk stops the run and nothing is
rolled back, so the store always holds a well-defined prefix of the
import. Re-running the whole import is safe because keys are derived
from membership numbers. Failed chunks are never retried here.

Progress events per run:
  uploading × (one per committed chunk) → completed
  uploading × (committed prefix)        → error
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterator, Mapping, Sequence, TypeVar

from roster_etl.keys import key_for
from roster_etl.models import MemberProfile
from roster_etl.roster import StatisticsSummary
from roster_etl.shared import BatchCommitError
from roster_etl.store import DocumentStore

log = logging.getLogger(__name__)

# Conservative against the store's 500-operation batch limit.
DEFAULT_CHUNK_SIZE = 100

T = TypeVar("T")

# Run reports list at most this many warnings; the full count is always reported.
MAX_REPORTED_WARNINGS = 50


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------

class ProgressStage(str, Enum):
    PROCESSING = "processing"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class ProgressEvent:
    stage: ProgressStage
    processed: int
    total: int
    message: str

    @property
    def percent(self) -> int:
        return round(self.processed * 100 / self.total) if self.total else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage.value,
            "processed": self.processed,
            "total": self.total,
            "message": self.message,
        }


ProgressSink = Callable[[ProgressEvent], None]


def emit_progress(sink: ProgressSink | None, event: ProgressEvent) -> None:
    """Deliver ``event``; a sink that raises is logged and otherwise ignored."""
    if sink is None:
        return
    try:
        sink(event)
    except Exception as exc:  # noqa: BLE001
        log.warning("Progress sink raised %s: %s (ignored)", type(exc).__name__, exc)


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass
class ImportResult:
    success: bool
    members_processed: int = 0
    statistics: StatisticsSummary | None = None
    error: str | None = None
    error_type: str | None = None
    message: str = ""
    run_id: str | None = None
    skipped: int = 0
    state: str | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "members_processed": self.members_processed,
            "statistics": self.statistics.to_dict() if self.statistics else None,
            "error": self.error,
            "error_type": self.error_type,
            "message": self.message,
            "run_id": self.run_id,
            "skipped": self.skipped,
            "state": self.state,
            "warnings": self.warnings[:MAX_REPORTED_WARNINGS],
            "warning_count": len(self.warnings),
            "warnings_truncated": len(self.warnings) > MAX_REPORTED_WARNINGS,
        }


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class BatchUpsertEngine:
    def __init__(self, store: DocumentStore, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        if not 1 <= chunk_size <= store.max_batch_size:
            raise ValueError(
                f"chunk_size must be between 1 and the store batch limit "
                f"({store.max_batch_size}), got {chunk_size}."
            )
        self.store = store
        self.chunk_size = chunk_size

    def upsert(
        self,
        profiles: Sequence[MemberProfile],
        on_progress: ProgressSink | None = None,
        *,
        statistics: StatisticsSummary | None = None,
    ) -> ImportResult:
        """Write every profile under its external key.

        Raises MissingMembershipNumberError before any write if a profile
        cannot be keyed; the pipeline filters those out beforehand.
        """
        items = [(key_for(p), p.to_document()) for p in profiles]
        return self.write_documents(items, on_progress, statistics=statistics)

    def write_documents(
        self,
        items: Sequence[tuple[str, Mapping[str, Any]]],
        on_progress: ProgressSink | None = None,
        *,
        statistics: StatisticsSummary | None = None,
    ) -> ImportResult:
        total = len(items)
        processed = 0

        for batch_number, chunk in enumerate(chunked(items, self.chunk_size), start=1):
            try:
                self.store.commit_batch(chunk)
            except Exception as cause:
                exc = BatchCommitError(batch_number, processed, cause)
                log.error("%s", exc)
                emit_progress(
                    on_progress,
                    ProgressEvent(ProgressStage.ERROR, processed, total, str(exc)),
                )
                return ImportResult(
                    success=False,
                    members_processed=processed,
                    statistics=statistics,
                    error=str(exc),
                    error_type=type(exc).__name__,
                    message="Failed to upload member data",
                )

            processed += len(chunk)
            log.info("Batch %s committed: %s/%s", batch_number, processed, total)
            emit_progress(
                on_progress,
                ProgressEvent(
                    ProgressStage.UPLOADING, processed, total, f"Uploaded batch {batch_number}"
                ),
            )

        emit_progress(
            on_progress,
            ProgressEvent(
                ProgressStage.COMPLETED, total, total, "All member data uploaded successfully"
            ),
        )
        return ImportResult(
            success=True,
            members_processed=total,
            statistics=statistics,
            message="Member data uploaded successfully",
        )
