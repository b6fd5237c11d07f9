"""Whop ingestion CLI.

Usage:
    whop-ingest backfill [memberships|payments] [OPTIONS]
    whop-ingest reconcile [OPTIONS]
    whop-ingest health
    whop-ingest version

Exit codes: 0=success, 1=error, 2=unavailable or rate limited
(the checkpoint is kept; run again later to resume).
"""

import asyncio
import logging
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ingestion import __version__
from ingestion.config import get_settings
from ingestion.container import build_container
from ingestion.core.errors import (
    CircuitOpenError,
    IngestionError,
    RateLimitError,
    ServiceUnavailableError,
)
from ingestion.core.types import BackfillResult, JobKind, ReconciliationResult
from ingestion.observability.logger import ROOT_LOGGER, setup_logging

EXIT_ERROR = 1
EXIT_UNAVAILABLE = 2

# Create CLI app
app = typer.Typer(
    name="whop-ingest",
    help="Whop ingestion CLI",
    add_completion=False,
)

console = Console()


def configure_logging(
    quiet: bool = False,
    verbose: bool = False,
    json_logs: bool = False,
    base_level: str = "INFO",
) -> None:
    """Configure logging: JSON lines, or a rich handler for terminals.

    --quiet and --verbose override base_level (LOG_LEVEL).
    """
    if quiet:
        level: int | str = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = base_level.upper()

    if json_logs:
        setup_logging(level=level, json_format=True, force=True)
        return

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.addHandler(RichHandler(console=console, show_path=False))


@app.command()
def backfill(
    kind: Annotated[JobKind, typer.Argument(help="Collection to backfill: memberships or payments")],
    created_after: Annotated[
        str | None, typer.Option("--created-after", help="Window start (ISO-8601)")
    ] = None,
    created_before: Annotated[
        str | None, typer.Option("--created-before", help="Window end (ISO-8601)")
    ] = None,
    quiet: Annotated[bool, typer.Option("--quiet", "-q", help="Minimal output")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose output")] = False,
    json_logs: Annotated[bool, typer.Option("--json-logs", help="Emit JSON log lines")] = False,
) -> None:
    """Backfill memberships or payments from the Whop API.

    Progress is checkpointed after every page; an interrupted run resumes
    its count when started again.

    Examples:
        whop-ingest backfill payments
        whop-ingest backfill memberships --created-after 2024-01-01T00:00:00Z
    """
    settings = get_settings()
    configure_logging(quiet, verbose, json_logs or settings.log_json, settings.log_level)

    if not quiet:
        console.print("=" * 44)
        console.print("[bold]Whop Backfill[/bold]")
        console.print(f"Job: {kind.job_type}")
        if created_after or created_before:
            console.print(f"Window: {created_after or '-'} .. {created_before or '-'}")
        console.print("=" * 44)

    try:
        result = asyncio.run(_run_backfill(kind, created_after, created_before))

    except ServiceUnavailableError as e:
        message = f"Service unavailable: {e}"
        if e.retry_after:
            message += f", retry after {e.retry_after} seconds"
        console.print(f"[yellow]{message}[/yellow]")
        console.print("[yellow]Checkpoint kept. Run again later to resume.[/yellow]")
        raise typer.Exit(code=EXIT_UNAVAILABLE) from e

    except (CircuitOpenError, RateLimitError) as e:
        console.print(f"[yellow]Upstream unavailable: {e}[/yellow]")
        console.print("[yellow]Progress saved. Run again later to resume.[/yellow]")
        raise typer.Exit(code=EXIT_UNAVAILABLE) from e

    except IngestionError as e:
        console.print(f"[red]Backfill failed: {e}[/red]")
        raise typer.Exit(code=EXIT_ERROR) from e

    _print_result(result)


async def _run_backfill(
    kind: JobKind,
    created_after: str | None,
    created_before: str | None,
) -> BackfillResult:
    container = build_container(configure_logging=False)
    try:
        return await container.backfill.run(
            kind,
            created_after=created_after,
            created_before=created_before,
        )
    finally:
        await container.aclose()


def _print_result(result: BackfillResult) -> None:
    color = "green" if result.completed else "yellow"
    console.print(f"[{color}]{result.message}[/{color}]")
    console.print(f"  Processed: {result.processed}")
    console.print(f"  Pages: {result.pages}")
    if result.resumed_from is not None:
        console.print(f"  Resumed from: {result.resumed_from}")
    if not result.completed:
        console.print("[yellow]Checkpoint kept. Run again to continue.[/yellow]")


@app.command()
def reconcile(
    created_after: Annotated[
        str | None, typer.Option("--created-after", help="Window start (ISO-8601)")
    ] = None,
    created_before: Annotated[
        str | None, typer.Option("--created-before", help="Window end (ISO-8601)")
    ] = None,
    quiet: Annotated[bool, typer.Option("--quiet", "-q", help="Minimal output")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Verbose output")] = False,
    json_logs: Annotated[bool, typer.Option("--json-logs", help="Emit JSON log lines")] = False,
) -> None:
    """Count memberships and payments reported by the Whop API.

    A failure in one collection is reported without skipping the other;
    any failure exits with code 1.
    """
    settings = get_settings()
    configure_logging(quiet, verbose, json_logs or settings.log_json, settings.log_level)

    if not quiet:
        console.print("=" * 44)
        console.print("[bold]Whop Reconciliation[/bold]")
        console.print("=" * 44)

    try:
        result = asyncio.run(_run_reconciliation(created_after, created_before))
    except ServiceUnavailableError as e:
        console.print(f"[yellow]Service unavailable: {e}[/yellow]")
        raise typer.Exit(code=EXIT_UNAVAILABLE) from e

    console.print(f"  Memberships checked: {result.memberships_checked}")
    console.print(f"  Payments checked: {result.payments_checked}")
    for error in result.errors:
        console.print(f"[red]  Error: {error}[/red]")

    if result.errors:
        raise typer.Exit(code=EXIT_ERROR)
    console.print("[green]Reconciliation completed[/green]")


async def _run_reconciliation(
    created_after: str | None,
    created_before: str | None,
) -> ReconciliationResult:
    container = build_container(configure_logging=False)
    try:
        return await container.reconciliation.run(
            created_after=created_after,
            created_before=created_before,
        )
    finally:
        await container.aclose()


@app.command()
def health() -> None:
    """Show circuit breaker, dead letter and degradation status."""
    configure_logging(base_level=get_settings().log_level)
    report = asyncio.run(_run_health())

    table = Table(title=f"Health: {report['status']} ({report['degradation_level']})")
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Details")

    for name, check in report["checks"].items():
        status = check["status"]
        style = "green" if status == "up" else "red"
        details = check.get("message") or check.get("state") or check.get("error", "")
        table.add_row(name, f"[{style}]{status}[/{style}]", str(details))

    console.print(table)

    if report["status"] != "ok":
        raise typer.Exit(code=EXIT_ERROR)


async def _run_health() -> dict:
    container = build_container(configure_logging=False)
    try:
        return await container.health.check_all()
    finally:
        await container.aclose()


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"[bold]Whop Ingestion v{__version__}[/bold]")
    console.print("Rate limiting, circuit breaking, retry, checkpoints and dead letters")


if __name__ == "__main__":
    app()
