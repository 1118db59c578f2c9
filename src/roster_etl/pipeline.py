"""roster_etl.pipeline

Run orchestration for the roster engine's public operations.

Every operation authorizes first and touches the store only after the gate
passes. Expected failures (permission denied, another run in progress,
malformed payload, a failed chunk, unknown role names) come back as a
result with ``success=False``; store connectivity errors propagate.

Import run state machine:
  idle → authorizing → processing → uploading → {completed | failed}
  authorizing → failed   permission denied or lease held elsewhere
  processing  → failed   malformed payload
  uploading   → uploading one self-transition per committed chunk
  uploading   → failed   first failing chunk; earlier chunks stay committed
"""

from __future__ import annotations

import contextlib
import dataclasses
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Mapping

from roster_etl.gate import Operation, authorize
from roster_etl.keys import is_keyable
from roster_etl.lease import DEFAULT_LEASE_TTL_SECONDS, ImportLease
from roster_etl.models import MemberProfile, MemberStatus
from roster_etl.policy import DEFAULT_POLICY, RolePolicy
from roster_etl.reconcile import IdentityDirectory, merge_identity
from roster_etl.roster import process_roster
from roster_etl.shared import (
    ImportInProgressError,
    InvalidPayloadError,
    PermissionDenied,
    utc_now,
)
from roster_etl.store import DocumentStore, MemoryStore
from roster_etl.upsert import (
    DEFAULT_CHUNK_SIZE,
    BatchUpsertEngine,
    ImportResult,
    ProgressEvent,
    ProgressSink,
    ProgressStage,
    emit_progress,
)
from roster_etl.verify import verify_store

log = logging.getLogger(__name__)

CLEAR_ACTOR = "roster-clear"
REASSIGN_ACTOR = "role-reassign"

CLEAR_MODES = ("deactivate", "delete")


# ---------------------------------------------------------------------------
# Run state
# ---------------------------------------------------------------------------

class RunState(str, Enum):
    IDLE = "idle"
    AUTHORIZING = "authorizing"
    PROCESSING = "processing"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.IDLE: frozenset({RunState.AUTHORIZING}),
    RunState.AUTHORIZING: frozenset({RunState.PROCESSING, RunState.FAILED}),
    RunState.PROCESSING: frozenset({RunState.UPLOADING, RunState.FAILED}),
    RunState.UPLOADING: frozenset({RunState.UPLOADING, RunState.COMPLETED, RunState.FAILED}),
    RunState.COMPLETED: frozenset(),
    RunState.FAILED: frozenset(),
}


@dataclass
class ImportRun:
    run_id: str
    state: RunState = RunState.IDLE
    history: list[RunState] = field(default_factory=lambda: [RunState.IDLE])

    def advance(self, new_state: RunState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Illegal run transition {self.state.value} -> {new_state.value}"
            )
        self.state = new_state
        self.history.append(new_state)


def _new_run_id() -> str:
    return str(uuid.uuid4())


def _failed_import(run: ImportRun, exc: Exception, message: str) -> ImportResult:
    run.advance(RunState.FAILED)
    return ImportResult(
        success=False,
        error=str(exc),
        error_type=type(exc).__name__,
        message=message,
        run_id=run.run_id,
        state=run.state.value,
    )


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------

def run_import(
    payload: Any,
    caller_level: int,
    store: DocumentStore,
    *,
    policy: RolePolicy = DEFAULT_POLICY,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    identity_directory: IdentityDirectory | None = None,
    on_progress: ProgressSink | None = None,
    lease_ttl_seconds: int = DEFAULT_LEASE_TTL_SECONDS,
    dry_run: bool = False,
    default_unit: str = "",
    run_id: str | None = None,
    run: ImportRun | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> ImportResult:
    """Authorize, process, optionally reconcile, and upsert one roster payload.

    A dry run processes and chunks the roster into a throwaway MemoryStore;
    the real store is neither locked nor written.
    """
    run = run or ImportRun(run_id or _new_run_id())
    run.advance(RunState.AUTHORIZING)

    try:
        authorize(caller_level, Operation.IMPORT, policy)
    except PermissionDenied as exc:
        return _failed_import(run, exc, "Permission denied")

    target: DocumentStore = MemoryStore(max_batch_size=store.max_batch_size) if dry_run else store
    engine = BatchUpsertEngine(target, chunk_size)

    guard = (
        contextlib.nullcontext()
        if dry_run
        else ImportLease(store, run.run_id, ttl_seconds=lease_ttl_seconds, clock=clock)
    )
    try:
        with guard:
            return _process_and_upload(
                run, payload, engine, policy,
                identity_directory=identity_directory,
                on_progress=on_progress,
                default_unit=default_unit,
                dry_run=dry_run,
                now=clock(),
            )
    except ImportInProgressError as exc:
        log.warning("[%s] %s", run.run_id, exc)
        return _failed_import(run, exc, "Another import is in progress")


def _process_and_upload(
    run: ImportRun,
    payload: Any,
    engine: BatchUpsertEngine,
    policy: RolePolicy,
    *,
    identity_directory: IdentityDirectory | None,
    on_progress: ProgressSink | None,
    default_unit: str,
    dry_run: bool,
    now: datetime,
) -> ImportResult:
    run.advance(RunState.PROCESSING)
    try:
        processed = process_roster(payload, policy, default_unit=default_unit, now=now)
    except InvalidPayloadError as exc:
        log.error("[%s] %s", run.run_id, exc)
        emit_progress(on_progress, ProgressEvent(ProgressStage.ERROR, 0, 0, str(exc)))
        return _failed_import(run, exc, "Invalid roster payload")

    stats = processed.statistics
    emit_progress(
        on_progress,
        ProgressEvent(ProgressStage.PROCESSING, 0, stats.total, f"Processed {stats.total} roster records"),
    )

    warnings: list[str] = []
    profiles: list[MemberProfile] = []
    for index, profile in enumerate(processed.profiles):
        if not is_keyable(profile):
            warnings.append(f"record {index}: no membership number ({profile.full_name or 'unnamed'})")
            continue
        if identity_directory is not None:
            profile = merge_identity(profile, identity_directory.find(profile), now=now)
        profiles.append(profile)
    skipped = stats.total - len(profiles)
    if skipped:
        log.warning("[%s] Skipping %s records without a membership number", run.run_id, skipped)
    if stats.duplicate_membership_numbers:
        warnings.append(
            "duplicate membership numbers in payload (last record wins): "
            + ", ".join(stats.duplicate_membership_numbers)
        )

    run.advance(RunState.UPLOADING)

    def _track(event: ProgressEvent) -> None:
        if event.stage is ProgressStage.UPLOADING:
            run.advance(RunState.UPLOADING)
        emit_progress(on_progress, event)

    result = engine.upsert(profiles, _track, statistics=stats)
    run.advance(RunState.COMPLETED if result.success else RunState.FAILED)

    result.run_id = run.run_id
    result.skipped = skipped
    result.state = run.state.value
    result.warnings = warnings
    if dry_run and result.success:
        result.message = f"Dry run: {result.members_processed} members would be uploaded"
    log.info(
        "[%s] Import %s: %s uploaded, %s skipped",
        run.run_id, run.state.value, result.members_processed, skipped,
    )
    return result


# ---------------------------------------------------------------------------
# Clear / role reassignment / verify
# ---------------------------------------------------------------------------

@dataclass
class OperationResult:
    success: bool
    operation: str
    affected: int = 0
    error: str | None = None
    error_type: str | None = None
    message: str = ""
    run_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "operation": self.operation,
            "affected": self.affected,
            "error": self.error,
            "error_type": self.error_type,
            "message": self.message,
            "run_id": self.run_id,
            "details": self.details,
        }


def _failed_operation(operation: str, run_id: str, exc: Exception, message: str) -> OperationResult:
    return OperationResult(
        success=False,
        operation=operation,
        error=str(exc),
        error_type=type(exc).__name__,
        message=message,
        run_id=run_id,
    )


def _rewrite(doc: Mapping[str, Any], policy: RolePolicy, **changes: Any) -> dict[str, Any]:
    # Round-trip through MemberProfile so derived fields follow status/role.
    profile = MemberProfile.from_document(doc, policy)
    return dataclasses.replace(profile, **changes).to_document()


def _from_write(operation: str, run_id: str, written: ImportResult, **details: Any) -> OperationResult:
    return OperationResult(
        success=written.success,
        operation=operation,
        affected=written.members_processed,
        error=written.error,
        error_type=written.error_type,
        message=written.message,
        run_id=run_id,
        details=details,
    )


def run_clear(
    caller_level: int,
    store: DocumentStore,
    *,
    mode: str = "deactivate",
    policy: RolePolicy = DEFAULT_POLICY,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    on_progress: ProgressSink | None = None,
    lease_ttl_seconds: int = DEFAULT_LEASE_TTL_SECONDS,
    run_id: str | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> OperationResult:
    """Clear the member collection.

    ``deactivate`` rewrites every document with status Inactive and needs the
    deactivate level. ``delete`` removes every document, cannot be undone,
    and needs the clear level.
    """
    if mode not in CLEAR_MODES:
        raise ValueError(f"Unknown clear mode '{mode}'; expected one of {CLEAR_MODES}.")
    run_id = run_id or _new_run_id()
    operation = Operation.CLEAR if mode == "delete" else Operation.DEACTIVATE

    try:
        authorize(caller_level, operation, policy)
    except PermissionDenied as exc:
        return _failed_operation(operation.value, run_id, exc, "Permission denied")

    engine = BatchUpsertEngine(store, chunk_size)
    try:
        with ImportLease(store, run_id, ttl_seconds=lease_ttl_seconds, clock=clock):
            if mode == "delete":
                removed = store.delete_all()
                log.warning("[%s] Deleted all %s member documents", run_id, removed)
                return OperationResult(
                    success=True,
                    operation=operation.value,
                    affected=removed,
                    message=f"Deleted {removed} member documents",
                    run_id=run_id,
                )

            now = clock()
            items = [
                (key, _rewrite(
                    doc, policy,
                    status=MemberStatus.INACTIVE,
                    updated_at=now,
                    updated_by=CLEAR_ACTOR,
                ))
                for key, doc in store.read_all().items()
            ]
            written = engine.write_documents(items, on_progress)
            log.info("[%s] Deactivated %s members", run_id, written.members_processed)
            return _from_write(operation.value, run_id, written)
    except ImportInProgressError as exc:
        return _failed_operation(operation.value, run_id, exc, "Another import is in progress")


def run_reassign_roles(
    caller_level: int,
    store: DocumentStore,
    assignments: Mapping[str, str],
    *,
    policy: RolePolicy = DEFAULT_POLICY,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    on_progress: ProgressSink | None = None,
    lease_ttl_seconds: int = DEFAULT_LEASE_TTL_SECONDS,
    run_id: str | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> OperationResult:
    """Set ``role`` for each membership number in ``assignments``.

    Every role is checked against the policy before the store is read; one
    unknown role rejects the whole request. Numbers with no stored member
    are reported under ``details['unmatched']``.
    """
    run_id = run_id or _new_run_id()
    operation = Operation.REASSIGN_ROLES.value

    try:
        authorize(caller_level, Operation.REASSIGN_ROLES, policy)
    except PermissionDenied as exc:
        return _failed_operation(operation, run_id, exc, "Permission denied")

    wanted = {str(n).strip(): str(r).strip() for n, r in assignments.items() if str(n).strip()}
    unknown = sorted({r for r in wanted.values() if not policy.is_known_role(r)})
    if unknown:
        exc = ValueError(f"Unknown roles: {', '.join(unknown)}")
        return _failed_operation(operation, run_id, exc, "Role assignments rejected")

    engine = BatchUpsertEngine(store, chunk_size)
    try:
        with ImportLease(store, run_id, ttl_seconds=lease_ttl_seconds, clock=clock):
            now = clock()
            items = []
            matched: set[str] = set()
            for key, doc in store.read_all().items():
                number = str(doc.get("membership_number") or "").strip()
                if number in wanted:
                    matched.add(number)
                    items.append((key, _rewrite(
                        doc, policy,
                        role=wanted[number],
                        updated_at=now,
                        updated_by=REASSIGN_ACTOR,
                    )))
            unmatched = sorted(set(wanted) - matched)
            if unmatched:
                log.warning("[%s] No stored member for %s", run_id, ", ".join(unmatched))
            written = engine.write_documents(items, on_progress)
            return _from_write(operation, run_id, written, unmatched=unmatched)
    except ImportInProgressError as exc:
        return _failed_operation(operation, run_id, exc, "Another import is in progress")


def run_verify(store: DocumentStore, *, run_id: str | None = None) -> OperationResult:
    """Audit the store; drift is reported in the result, never raised."""
    run_id = run_id or _new_run_id()
    report = verify_store(store)
    drift = [str(w) for w in report.drift_warnings()]
    for message in drift:
        log.warning("[%s] Verification drift: %s", run_id, message)
    return OperationResult(
        success=True,
        operation="verify",
        affected=report.total_members,
        message="Store is consistent" if report.is_clean else "; ".join(drift),
        run_id=run_id,
        details={"report": report.to_dict(), "drift_warnings": drift},
    )
