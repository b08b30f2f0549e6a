# ruff: noqa: I001
"""CLI for the ``autoledger`` package.

A Typer console interface over the pipeline. Settings come from environment
variables, with a local ``.env`` loaded through ``python-dotenv`` before any
command runs. Business logic lives in :mod:`autoledger.api` and the modules it
wires together; commands here only parse arguments and print results.
"""

from __future__ import annotations

from pathlib import Path

import typer
from dotenv import load_dotenv

from .api import Services, build_services
from .classifier_config import ClassifierConfig, load_classifier_config
from .ledger import LedgerError
from .logging_setup import configure_logging
from .models import NotificationEvent, PipelineOutcome, TransactionRecord
from .parser import NotificationParser
from .settings import AppSettings, load_settings
from .sink import SinkError


# ---- Small module-level helpers used by CLI commands -------------------------


def _settings() -> AppSettings:
    try:
        # .env was already loaded by the root callback.
        return load_settings(dotenv=False)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2) from e


def _services(settings: AppSettings | None = None) -> Services:
    settings = settings or _settings()
    try:
        return build_services(settings, max_workers=1)
    except (OSError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2) from e


def _parser() -> NotificationParser:
    settings = _settings()
    config = ClassifierConfig()
    if settings.classifier_config_path is not None:
        try:
            config.replace(load_classifier_config(settings.classifier_config_path))
        except (OSError, ValueError) as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(2) from e
    return NotificationParser(config)


def _storage_error(e: LedgerError) -> typer.Exit:
    typer.echo(f"Error: ledger database unavailable: {e}", err=True)
    typer.echo("Hint: run `autoledger migrate` to create or upgrade the schema.", err=True)
    return typer.Exit(1)


def _format_record(record: TransactionRecord) -> str:
    line = (
        f"#{record.id}  {record.sync_status:<7}  {record.created_at:%Y-%m-%d %H:%M}  "
        f"{record.kind:<7}  {record.amount:>10.2f}  {record.merchant}  [{record.category}]"
    )
    if record.last_error:
        line += f"  error: {record.last_error}"
    return line


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Turn financial notifications into ledger records and sync them to a "
        "Google Sheet. Loads settings from a local .env before running."
    ),
)


@app.command("classify")
def classify_cmd(
    source_id: str = typer.Argument(..., help="Source app/channel identifier."),
) -> None:
    """Report whether events from SOURCE_ID are treated as financial."""

    accepted = _parser().classify(source_id)
    typer.echo("accepted" if accepted else "rejected")


@app.command("parse")
def parse_cmd(
    source: str = typer.Option(..., "--source", help="Source app/channel identifier."),
    title: str | None = typer.Option(None, help="Notification title."),
    body: str | None = typer.Option(None, help="Notification body."),
) -> None:
    """Dry run: show what would be extracted, without storing anything."""

    parser = _parser()
    if not parser.classify(source):
        typer.echo(f"rejected source: {source}")
        raise typer.Exit(1)
    candidate = parser.parse(title, body, source)
    if candidate is None:
        typer.echo("not a transaction")
        raise typer.Exit(1)
    typer.echo(f"amount:   {candidate.amount:.2f}")
    typer.echo(f"kind:     {candidate.kind}")
    typer.echo(f"merchant: {candidate.merchant}")
    typer.echo(f"category: {candidate.category}")


@app.command("ingest")
def ingest_cmd(
    source: str = typer.Option(..., "--source", help="Source app/channel identifier."),
    title: str | None = typer.Option(None, help="Notification title."),
    body: str | None = typer.Option(None, help="Notification body."),
) -> None:
    """Run one event through the full pipeline (store, then deliver)."""

    event = NotificationEvent(source_id=source, title=title, body=body)
    with _services() as services:
        try:
            result = services.pipeline.handle_event(event)
        except LedgerError as e:
            typer.echo(f"Error: could not save transaction: {e}", err=True)
            raise typer.Exit(1) from e

    typer.echo(result.outcome.value)
    if result.record is not None:
        typer.echo(_format_record(result.record))
    if result.outcome is PipelineOutcome.SAVED_FAILED and result.error is not None:
        typer.echo(f"Saved locally; delivery failed: {result.error}", err=True)


@app.command("drain")
def drain_cmd(
    failed: bool = typer.Option(True, help="Also retry records whose last delivery failed."),
) -> None:
    """Deliver every unsynced record, oldest first."""

    with _services() as services:
        try:
            summary = services.engine.drain_pending(include_failed=failed)
        except LedgerError as e:
            raise _storage_error(e) from e

    if summary.message and summary.attempted == 0:
        typer.echo(summary.message)
        if not summary.configured:
            raise typer.Exit(1)
        return
    typer.echo(f"Synced {summary.succeeded}, failed {summary.failed}")
    if summary.message:
        typer.echo(summary.message)
    if summary.failed:
        raise typer.Exit(1)


@app.command("pending")
def pending_cmd() -> None:
    """List records not yet delivered (PENDING and FAILED)."""

    with _services() as services:
        try:
            records = services.store.list_unsynced()
        except LedgerError as e:
            raise _storage_error(e) from e
    for record in records:
        typer.echo(_format_record(record))
    typer.echo(f"{len(records)} unsynced")


@app.command("recent")
def recent_cmd(
    limit: int = typer.Option(20, min=1, help="Maximum number of records to show."),
) -> None:
    """List the most recent records, newest first."""

    with _services() as services:
        try:
            records = services.store.list_recent(limit)
        except LedgerError as e:
            raise _storage_error(e) from e
    for record in records:
        typer.echo(_format_record(record))


@app.command("validate-target")
def validate_target_cmd(
    url_or_id: str = typer.Argument(..., help="Spreadsheet URL or id."),
    tab: str = typer.Option("Transactions", help="Tab (worksheet) name."),
) -> None:
    """Check that a spreadsheet is reachable and prepare its header row."""

    with _services() as services:
        try:
            check = services.engine.prepare_target(url_or_id, tab)
        except ValueError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(2) from e
        except SinkError as e:
            typer.echo(f"Error: cannot access spreadsheet: {e}", err=True)
            raise typer.Exit(1) from e

    typer.echo(f"{check.display_name} ({check.target.sheet_id}, tab {check.target.tab_name})")
    if not check.headers_ready:
        typer.echo("Warning: header row could not be written", err=True)
    typer.echo(f"AUTOLEDGER_SHEET_ID={check.target.sheet_id}")


@app.command("migrate")
def migrate_cmd(
    revision: str = typer.Option("head", help="Target Alembic revision."),
) -> None:
    """Apply database migrations up to REVISION."""

    # Local import keeps Alembic off the import path of the other commands.
    from ledger_db.migrations import upgrade

    settings = _settings()
    upgrade(settings.database_url, revision)
    typer.echo(f"Database at revision {revision}")


@app.callback()
def _root(
    log_level: str | None = typer.Option(
        None, help="Logging level (falls back to AUTOLEDGER_LOG_LEVEL, then INFO)."
    ),
) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures logging once.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging(log_level)


if __name__ == "__main__":  # pragma: no cover
    app()
