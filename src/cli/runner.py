# src/cli/runner.py

"""Headless CLI runner for refresh runs, health probes and imports."""

import json
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from src.config.settings import Settings
from src.models.job_run import STATUS_SESSION_INVALID, RunSummary
from src.scrapers.errors import SessionError
from src.services.health_checker import HealthChecker
from src.services.run_controller import RunController
from src.storage.catalog_db import CatalogDB
from src.storage.file_manager import FileManager
from src.storage.session_store import load_api_token, load_credential

logger = logging.getLogger("price_refresh.cli")

# Stderr console for status messages so stdout stays clean for JSON
_err = Console(stderr=True)

EXIT_OK = 0
EXIT_CRASH = 1
EXIT_SESSION_INVALID = 2

_STATUS_STYLES: dict[str, str] = {
    "success": "[green]✅ SUCCESS[/green]",
    "partial": "[yellow]⚠️  PARTIAL[/yellow]",
    "session_invalid": "[red]❌ SESSION INVALID[/red]",
    "failed": "[red]❌ FAILED[/red]",
}


def exit_code_for(summary: RunSummary) -> int:
    """Map a run status to the process exit code."""
    if summary.ok:
        return EXIT_OK
    if summary.status == STATUS_SESSION_INVALID:
        return EXIT_SESSION_INVALID
    return EXIT_CRASH


def _print_summary(summary: RunSummary) -> None:
    """Render a Rich table of the run counters to stdout."""
    table = Table(
        title=f"Price Refresh: {summary.platform}",
        show_lines=False,
        title_style="bold cyan",
    )
    table.add_column("Counter", style="bold")
    table.add_column("Value", justify="right")

    table.add_row(
        "status", _STATUS_STYLES.get(summary.status, summary.status),
    )
    for name, value in summary.counters.items():
        style = "dim" if value == 0 else ""
        table.add_row(name, f"[{style}]{value}[/{style}]" if style else str(value))
    table.add_row("duration", f"{summary.duration_ms / 1000:.1f}s")
    if summary.stopped_early:
        table.add_row("stopped early", "[red]yes (circuit breaker)[/red]")

    Console().print(table)
    if summary.error_sample:
        _err.print(f"[red]First error:[/red] {summary.error_sample}")


async def cli_refresh(
    settings: Settings,
    output_format: str,
    save: bool,
) -> int:
    """Run one refresh batch and return an exit code."""
    try:
        credential = load_credential(settings)
        api_token = load_api_token()
    except SessionError as exc:
        logger.error("Session credential unusable: %s", exc)
        _err.print(f"[red]Session credential unusable: {exc}[/red]")
        credential, api_token = None, None

    db = CatalogDB(settings.DB_PATH)
    controller = RunController(
        db=db,
        credential=credential,
        settings=settings,
        api_token=api_token,
    )
    _err.print(
        f"[bold]Refreshing prices:[/bold] {settings.PLATFORM_LABEL}  "
        f"[dim]concurrency={settings.CONCURRENCY} "
        f"batch={settings.BATCH_SIZE}[/dim]"
    )

    try:
        summary = await controller.run()
    except Exception as exc:
        logger.critical("Refresh run crashed", exc_info=True)
        _err.print(f"[red]Refresh run crashed: {exc}[/red]")
        return EXIT_CRASH
    finally:
        db.close()

    if save:
        try:
            path = FileManager().save_run_summary(summary)
            _err.print(f"[dim]Saved summary → {path}[/dim]")
        except OSError as exc:
            logger.error("Save failed: %s", exc, exc_info=True)
            _err.print(f"[red]Save failed: {exc}[/red]")

    if output_format == "table":
        _print_summary(summary)
    else:
        json.dump(summary.to_dict(), sys.stdout, ensure_ascii=False, indent=2)
        sys.stdout.write("\n")

    return exit_code_for(summary)


def run_import_offers(filepath: Path, settings: Settings) -> int:
    """Import tracked offers from a JSON file into the catalog."""
    if not filepath.exists():
        _err.print(f"[red]File not found: {filepath}[/red]")
        return EXIT_CRASH

    db = CatalogDB(settings.DB_PATH)
    try:
        count = db.import_offers(filepath, settings.PLATFORM_LABEL)
    finally:
        db.close()

    if count == 0:
        _err.print("[yellow]No offers imported.[/yellow]")
        return EXIT_CRASH
    _err.print(f"[green]✓ Imported {count:,} offers from {filepath}[/green]")
    return EXIT_OK


def run_health_check(settings: Settings) -> int:
    """Probe the session and one offer page; print the verdict."""
    try:
        credential = load_credential(settings)
    except SessionError as exc:
        logger.error("Session credential unusable: %s", exc)
        credential = None

    _err.print("[bold]Running session health check...[/bold]")
    db = CatalogDB(settings.DB_PATH)
    try:
        result = HealthChecker(db, credential, settings).check()
    finally:
        db.close()

    table = Table(
        title="Session Health Check",
        show_lines=True,
        title_style="bold cyan",
    )
    table.add_column("Status", justify="center")
    table.add_column("Latency", justify="right")
    table.add_column("URL", overflow="fold", style="dim")
    table.add_column("Notes", style="dim")

    status = (
        "[green]✅ HEALTHY[/green]" if result.ok
        else f"[red]❌ {result.status.upper()}[/red]"
    )
    latency = f"{result.latency_ms:.0f}ms" if result.latency_ms > 0 else "—"
    table.add_row(status, latency, result.url or "—", result.message)

    Console().print(table)
    return EXIT_OK if result.ok else EXIT_CRASH
