"""roster_etl.cli

Command-line entrypoint for the roster engine.

Modes (--mode):
  import          normalize a roster export and upsert it (default)
  verify          audit the whole member collection
  clear           deactivate every member, or delete them (--clear-mode delete)
  reassign_roles  apply a membership_number,role CSV
  export          dump stored members as JSON or CSV

Usage (import):
    python -m roster_etl.cli \\
        --mode import \\
        --db-dsn "$ROSTER_DB_DSN" \\
        --roster-path "exports/roster_2026-10.json" \\
        --caller-role governor \\
        --policy-path config/role_policy.yml

Usage (clear, physical delete):
    python -m roster_etl.cli --mode clear --clear-mode delete --caller-role sudo_admin

The roster file is either a JSON payload ``{"metadata": {...}, "records": [...]}``
or a CSV export whose header row supplies the raw field names.
"""

from __future__ import annotations

import contextlib
import csv
import json
import logging
import sys
import uuid
from pathlib import Path
from typing import Any, Iterator

import click
import yaml

from roster_etl.lease import DEFAULT_LEASE_TTL_SECONDS
from roster_etl.pipeline import (
    CLEAR_MODES,
    run_clear,
    run_import,
    run_reassign_roles,
    run_verify,
)
from roster_etl.policy import DEFAULT_POLICY, RolePolicy, load_role_policy
from roster_etl.roster import EXPORT_FORMATS, export_documents
from roster_etl.shared import PolicyValidationError, utc_now, write_run_report
from roster_etl.store import DocumentStore, PostgresStore
from roster_etl.upsert import DEFAULT_CHUNK_SIZE, ProgressEvent

MODES = ["import", "verify", "clear", "reassign_roles", "export"]


# ---------------------------------------------------------------------------
# Input helpers
# ---------------------------------------------------------------------------

def load_roster_payload(path: Path) -> Any:
    """Read a roster payload from JSON, or wrap CSV rows as ``records``."""
    if path.suffix.lower() == ".csv":
        with path.open(newline="", encoding="utf-8-sig") as fh:
            records = list(csv.DictReader(fh))
        return {"metadata": {"source_file": path.name, "format": "csv"}, "records": records}
    return json.loads(path.read_text(encoding="utf-8"))


def load_role_assignments(path: Path) -> dict[str, str]:
    """Read ``membership_number,role`` rows; later rows override earlier ones."""
    with path.open(newline="", encoding="utf-8-sig") as fh:
        reader = csv.DictReader(fh)
        missing = {"membership_number", "role"} - set(reader.fieldnames or [])
        if missing:
            raise click.BadParameter(
                f"assignments CSV is missing columns: {', '.join(sorted(missing))}"
            )
        return {
            row["membership_number"].strip(): (row["role"] or "").strip()
            for row in reader
            if (row["membership_number"] or "").strip()
        }


@contextlib.contextmanager
def _open_store(db_dsn: str) -> Iterator[DocumentStore]:
    with PostgresStore.connect(db_dsn) as store:
        yield store


def _fatal(run_id: str, message: str) -> None:
    click.echo(f"[{run_id}] FATAL: {message}", err=True)
    sys.exit(1)


def _resolve_caller_level(policy: RolePolicy, caller_role: str | None, mode: str, run_id: str) -> int:
    if not caller_role:
        _fatal(run_id, f"{mode} mode requires: --caller-role")
    if not policy.is_known_role(caller_role):  # type: ignore[arg-type]
        _fatal(run_id, f"unknown caller role '{caller_role}'")
    return policy.level_for(caller_role)


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------

@click.command()
@click.option(
    "--mode",
    default="import",
    show_default=True,
    type=click.Choice(MODES),
    help="Operation to run",
)
@click.option("--db-dsn", required=True, envvar="ROSTER_DB_DSN", help="PostgreSQL DSN (or $ROSTER_DB_DSN)")
@click.option("--roster-path", default=None, type=click.Path(), help="[import] Roster JSON payload or CSV export")
@click.option("--caller-role", default=None, help="[import|clear|reassign_roles] Role of the operator running this")
@click.option("--policy-path", default=None, type=click.Path(), help="Role policy YAML (built-in policy if omitted)")
@click.option("--chunk-size", default=DEFAULT_CHUNK_SIZE, type=int, show_default=True, help="Records per atomic batch")
@click.option(
    "--clear-mode",
    default="deactivate",
    show_default=True,
    type=click.Choice(list(CLEAR_MODES)),
    help="[clear] deactivate keeps documents; delete removes them permanently",
)
@click.option("--assignments-path", default=None, type=click.Path(), help="[reassign_roles] CSV with membership_number,role")
@click.option("--format", "fmt", default="json", show_default=True, type=click.Choice(list(EXPORT_FORMATS)), help="[export] Output format")
@click.option("--output", default=None, type=click.Path(), help="[export] Output file (stdout if omitted)")
@click.option("--default-unit", default="", help="[import] Inducting unit for records that carry none")
@click.option("--lease-ttl-seconds", default=DEFAULT_LEASE_TTL_SECONDS, type=int, show_default=True)
@click.option("--dry-run", is_flag=True, default=False, help="[import] Process and chunk without writing")
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option("--report-dir", default="./artifacts/reports", show_default=True, type=click.Path())
@click.option(
    "--log-level",
    default="INFO",
    show_default=True,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
)
def main(
    mode: str,
    db_dsn: str,
    roster_path: str | None,
    caller_role: str | None,
    policy_path: str | None,
    chunk_size: int,
    clear_mode: str,
    assignments_path: str | None,
    fmt: str,
    output: str | None,
    default_unit: str,
    lease_ttl_seconds: int,
    dry_run: bool,
    run_id: str | None,
    report_dir: str,
    log_level: str,
) -> None:
    """Roster import and maintenance CLI."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = utc_now().isoformat()

    click.echo(f"[{run_id}] Starting {mode} run (dry_run={dry_run})")

    policy = DEFAULT_POLICY
    if policy_path:
        try:
            policy = load_role_policy(Path(policy_path))
        except (PolicyValidationError, yaml.YAMLError, OSError) as exc:
            _fatal(run_id, f"role policy: {exc}")
        click.echo(f"[{run_id}] Policy {policy.version} loaded (sha256={policy.yaml_hash[:12]})")

    def _progress(event: ProgressEvent) -> None:
        click.echo(
            f"[{run_id}] {event.stage.value}: {event.message} ({event.processed}/{event.total})"
        )

    source_paths: dict[str, str] = {}
    payload: Any = None
    assignments: dict[str, str] = {}
    if mode == "import":
        if not roster_path:
            _fatal(run_id, "import mode requires: --roster-path")
        source_paths["roster_path"] = str(roster_path)
        try:
            payload = load_roster_payload(Path(roster_path))  # type: ignore[arg-type]
        except (OSError, json.JSONDecodeError) as exc:
            _fatal(run_id, f"cannot read roster: {exc}")
    elif mode == "reassign_roles":
        if not assignments_path:
            _fatal(run_id, "reassign_roles mode requires: --assignments-path")
        source_paths["assignments_path"] = str(assignments_path)
        assignments = load_role_assignments(Path(assignments_path))  # type: ignore[arg-type]

    level = 0
    if mode in ("import", "clear", "reassign_roles"):
        level = _resolve_caller_level(policy, caller_role, mode, run_id)

    with _open_store(db_dsn) as store:
        if mode == "export":
            documents = list(store.read_all().values())
            text = export_documents(documents, fmt)
            if output:
                Path(output).write_text(text, encoding="utf-8")
                click.echo(f"[{run_id}] Exported {len(documents)} members to {output}")
            else:
                click.echo(text)
            return

        if mode == "verify":
            result = run_verify(store, run_id=run_id)
        elif mode == "import":
            result = run_import(
                payload, level, store,
                policy=policy,
                chunk_size=chunk_size,
                on_progress=_progress,
                lease_ttl_seconds=lease_ttl_seconds,
                dry_run=dry_run,
                default_unit=default_unit,
                run_id=run_id,
            )
        elif mode == "clear":
            result = run_clear(
                level, store,
                mode=clear_mode,
                policy=policy,
                chunk_size=chunk_size,
                on_progress=_progress,
                lease_ttl_seconds=lease_ttl_seconds,
                run_id=run_id,
            )
        else:
            result = run_reassign_roles(
                level, store, assignments,
                policy=policy,
                chunk_size=chunk_size,
                on_progress=_progress,
                lease_ttl_seconds=lease_ttl_seconds,
                run_id=run_id,
            )

    summary = result.to_dict()
    click.echo(json.dumps(summary, indent=2, default=str))

    report_path = write_run_report(
        run_id, started_at, mode, dry_run, source_paths, summary,
        report_dir=Path(report_dir),
    )
    click.echo(f"[{run_id}] Run report: {report_path}")

    if not result.success:
        click.echo(f"[{run_id}] {result.message}: {result.error}", err=True)
        sys.exit(1)
    if mode == "verify" and summary["details"]["drift_warnings"]:
        click.echo(f"[{run_id}] Verification found drift; exiting non-zero", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
