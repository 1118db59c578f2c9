"""roster_etl.shared

Shared exception taxonomy and run-report support used by the pipeline,
the store adapters and the CLI.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class PermissionDenied(Exception):
    """Raised when the caller's security level is below an operation's requirement."""

    def __init__(self, operation: str, caller_level: int, required_level: int) -> None:
        super().__init__(
            f"Insufficient permissions for '{operation}': "
            f"level {required_level} required, caller has level {caller_level}."
        )
        self.operation = operation
        self.caller_level = caller_level
        self.required_level = required_level


class InvalidPayloadError(ValueError):
    """Raised when a roster payload has no usable ``records`` sequence."""


class BatchCommitError(Exception):
    """Raised when one chunk's atomic write fails.

    ``processed`` is the number of records already committed by earlier
    chunks; those stay committed.
    """

    def __init__(self, batch_number: int, processed: int, cause: BaseException) -> None:
        super().__init__(
            f"Batch {batch_number} failed after {processed} records committed: "
            f"{type(cause).__name__}: {cause}"
        )
        self.batch_number = batch_number
        self.processed = processed
        self.cause = cause


class ImportInProgressError(RuntimeError):
    """Raised when another holder owns an unexpired import lease."""


class MissingMembershipNumberError(ValueError):
    """Raised when a profile without a membership number needs an external key."""


class PolicyValidationError(ValueError):
    """Raised when a role policy (YAML or in-code) fails validation."""


class VerificationDriftWarning(UserWarning):
    """Store drift found by the integrity verifier. Reported as data, never raised."""


# ---------------------------------------------------------------------------
# Run report
# ---------------------------------------------------------------------------

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    source_paths: dict[str, str],
    result: dict[str, Any],
    report_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": utc_now().isoformat(),
        "dry_run": dry_run,
        **source_paths,
        "result": result,
    }
    report_path = report_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
