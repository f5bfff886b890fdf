"""
CLI commands for roster imports.

``flask roster preview|import|cancel|status`` run the same services as the
admin API, reading the roster from a CSV export.
"""

from __future__ import annotations

import csv
import json
from pathlib import Path

import click
from flask.cli import ScriptInfo

from roster_app.importer.errors import RosterImportError
from roster_app.importer.pipeline import ImportExecutor, ImportPreviewService, RollbackEngine
from roster_app.utils.importer import is_roster_import_enabled


def _load_app(ctx):
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not is_roster_import_enabled(app):
        raise click.ClickException(
            "Roster import is disabled via ROSTER_IMPORT_ENABLED=false. Enable it to run roster commands."
        )
    return app


def read_roster_csv(path: Path, encoding: str = "utf-8-sig") -> list[dict]:
    """Read a roster export into row dictionaries keyed by header."""
    try:
        with path.open("r", encoding=encoding, newline="") as handle:
            reader = csv.DictReader(handle)
            return [dict(row) for row in reader]
    except UnicodeDecodeError as exc:
        raise click.ClickException(f"Could not decode {path} as {encoding}; try --encoding cp932.") from exc


def _echo(payload: dict, as_json: bool, lines: list[str]) -> None:
    if as_json:
        click.echo(json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True))
        return
    for line in lines:
        click.echo(line)


@click.group(name="roster")
def roster_cli():
    """Roster import management commands."""


def get_disabled_roster_group() -> click.Group:
    """
    Return a minimal command group that informs the operator the importer is disabled.
    """

    @click.group(name="roster", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Roster commands are unavailable because ROSTER_IMPORT_ENABLED=false.")

    return disabled_group


_file_option = click.option(
    "--file",
    "file_path",
    required=True,
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    help="Roster CSV export.",
)
_encoding_option = click.option("--encoding", default="utf-8-sig", show_default=True, help="CSV file encoding.")
_json_option = click.option("--json", "as_json", is_flag=True, help="Emit machine-readable JSON.")


@roster_cli.command("preview")
@click.option("--org", "organization_id", required=True, type=int, help="Target organization id.")
@_file_option
@_encoding_option
@_json_option
@click.pass_context
def roster_preview(ctx, organization_id: int, file_path: Path, encoding: str, as_json: bool):
    """Show what importing the CSV would change, without writing."""
    _load_app(ctx)
    rows = read_roster_csv(file_path, encoding)
    try:
        result = ImportPreviewService().preview(organization_id, rows)
    except RosterImportError as exc:
        raise click.ClickException(str(exc)) from exc

    summary = result.summary()
    lines = [f"Preview for organization {organization_id} ({file_path.name}):"]
    lines.extend(f"  {key}: {value}" for key, value in summary.items())
    for transfer in result.transferred:
        lines.append(f"  TRANSFER {transfer.record.employee_number}: {transfer.old_path} -> {transfer.new_path}")
    for retired in result.retired:
        lines.append(f"  RETIRE {retired.employee_number}: {retired.name}")
    for error in result.errors:
        lines.append(f"  ERROR row {error.row_number}: {error.message}")
    _echo(result.to_dict(), as_json, lines)


@roster_cli.command("import")
@click.option("--org", "organization_id", required=True, type=int, help="Target organization id.")
@_file_option
@_encoding_option
@click.option("--actor", default="cli", show_default=True, help="Actor recorded on history rows.")
@click.option(
    "--retire-missing/--keep-missing",
    default=False,
    help="Retire active employees absent from the file.",
)
@_json_option
@click.pass_context
def roster_import(
    ctx,
    organization_id: int,
    file_path: Path,
    encoding: str,
    actor: str,
    retire_missing: bool,
    as_json: bool,
):
    """Apply the CSV to the organization's roster."""
    app = _load_app(ctx)
    rows = read_roster_csv(file_path, encoding)
    try:
        result = ImportExecutor().execute(
            organization_id,
            rows,
            actor=actor,
            mark_missing_as_retired=retire_missing,
        )
    except RosterImportError as exc:
        raise click.ClickException(str(exc)) from exc

    app.logger.info(
        "Roster import run via CLI",
        extra={"batch_id": result.batch_id, "organization_id": organization_id, "source_file": str(file_path)},
    )
    stats = result.statistics
    lines = [
        f"Batch {result.batch_id} committed.",
        f"  created={stats.created} updated={stats.updated} transferred={stats.transferred} "
        f"unchanged={stats.unchanged} retired={stats.retired} "
        f"excluded={stats.excluded_duplicates} errors={stats.errors}",
    ]
    for detail in stats.error_details:
        lines.append(f"  ERROR {detail['employeeId'] or '-'}: {detail['message']}")
    _echo(result.to_dict(), as_json, lines)


@roster_cli.command("cancel")
@click.option("--actor", default="cli", show_default=True, help="Actor recorded as cancelling the import.")
@click.option("--yes", is_flag=True, help="Skip the confirmation prompt.")
@_json_option
@click.pass_context
def roster_cancel(ctx, actor: str, yes: bool, as_json: bool):
    """Roll back the most recent import."""
    _load_app(ctx)
    engine = RollbackEngine()
    status = engine.status()
    if not status.can_cancel:
        raise click.ClickException(status.message or "No pending import to cancel")
    if not yes:
        click.confirm(
            f"Cancel batch {status.batch_id} ({status.change_log_count} change log entries)?",
            abort=True,
        )
    try:
        result = engine.cancel(actor=actor)
    except RosterImportError as exc:
        raise click.ClickException(str(exc)) from exc

    lines = [
        f"Batch {result.batch_id} cancelled.",
        f"  deleted={result.new_employees_deleted} restored={result.employees_restored} "
        f"reactivated={result.employees_reactivated} logs={result.change_logs_deleted}",
    ]
    _echo(result.to_dict(), as_json, lines)


@roster_cli.command("status")
@_json_option
@click.pass_context
def roster_status(ctx, as_json: bool):
    """Report whether an import can currently be cancelled."""
    _load_app(ctx)
    status = RollbackEngine().status()
    if status.can_cancel:
        lines = [
            f"Pending batch {status.batch_id} imported at {status.imported_at} by {status.imported_by} "
            f"({status.change_log_count} change log entries)."
        ]
    else:
        lines = [status.message or "No pending import."]
        if status.last_import:
            lines.append(
                f"  last cancelled at {status.last_import['cancelledAt']} by {status.last_import['cancelledBy']}"
            )
    _echo(status.to_dict(), as_json, lines)
