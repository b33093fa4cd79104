"""Typer CLI entry point for substack-harvester."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Any

import structlog
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from substack_harvester import __version__
from substack_harvester.config import Settings, format_validation_error
from substack_harvester.exceptions import PersistenceError
from substack_harvester.loader import DownstreamLoader
from substack_harvester.logging import configure_logging, generate_run_id
from substack_harvester.models import RunReport
from substack_harvester.orchestrator import run_harvest

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="substack-harvester",
    help="Harvest Substack publications and posts into JSON snapshots.",
    no_args_is_help=True,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_settings(
    config_path: Path | None = None,
    **overrides: Any,
) -> Settings:
    """Load settings with error handling and user-friendly messages."""
    try:
        return Settings.load(config_path=config_path, **overrides)
    except ValidationError as exc:
        err_console.print(
            Panel(
                format_validation_error(exc),
                title="Configuration Error",
                border_style="red",
            )
        )
        raise typer.Exit(code=1) from exc


def _setup_logging(settings: Settings, level: str | None, fmt: str | None) -> None:
    try:
        configure_logging(
            level=level or settings.logging.level,
            fmt=fmt or settings.logging.format,
            log_file=settings.logging.file,
            run_id=generate_run_id(),
        )
    except ValueError as exc:
        err_console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc


def _display_report(report: RunReport, title: str) -> None:
    table = Table(title=title)
    table.add_column("Query", style="cyan")
    table.add_column("Phase")
    table.add_column("Records", justify="right")
    table.add_column("Status")
    table.add_column("Detail", style="dim")
    for result in report.phases:
        status = "[green]ok[/green]" if result.ok else "[red]failed[/red]"
        table.add_row(
            result.query,
            result.phase,
            str(result.count),
            status,
            result.error or result.artifact or "",
        )
    console.print(table)


def _version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]substack-harvester[/bold] {__version__}")
        raise typer.Exit


@app.callback()
def common(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """substack-harvester global options."""


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def harvest(
    queries: Annotated[
        list[str], typer.Argument(help="Search terms, harvested one after another.")
    ],
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to config YAML file."),
    ] = None,
    output_dir: Annotated[
        Path | None,
        typer.Option("--output-dir", "-o", help="Directory for JSON snapshots."),
    ] = None,
    search_batch_size: Annotated[
        int | None,
        typer.Option("--search-batch-size", help="Search pages fetched per round."),
    ] = None,
    log_level: Annotated[
        str | None, typer.Option("--log-level", help="Override the log level.")
    ] = None,
    log_format: Annotated[
        str | None,
        typer.Option("--log-format", help="Log output format: console or json."),
    ] = None,
) -> None:
    """Search publications, then collect latest and popular posts per author."""
    overrides: dict[str, Any] = {}
    if output_dir is not None:
        overrides["output"] = {"directory": output_dir}
    if search_batch_size is not None:
        overrides["collector"] = {"search_batch_size": search_batch_size}

    settings = _load_settings(config, **overrides)
    _setup_logging(settings, log_level, log_format)

    report = asyncio.run(run_harvest(settings, queries))
    _display_report(report, "Harvest results")
    if not report.ok:
        raise typer.Exit(code=1)


@app.command()
def load(
    query: Annotated[str, typer.Argument(help="Search term whose snapshots to load.")],
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to config YAML file."),
    ] = None,
    input_dir: Annotated[
        Path | None,
        typer.Option("--input-dir", "-i", help="Directory holding the snapshots."),
    ] = None,
    log_level: Annotated[
        str | None, typer.Option("--log-level", help="Override the log level.")
    ] = None,
) -> None:
    """Insert publications and upsert posts from a query's snapshots."""
    settings = _load_settings(config)
    _setup_logging(settings, log_level, None)

    try:
        loader = DownstreamLoader.from_settings(settings.database)
    except PersistenceError as exc:
        err_console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc

    try:
        report = loader.load(query, input_dir or settings.output.directory)
    finally:
        loader.store.close()

    _display_report(report, "Load results")
    if not report.ok:
        raise typer.Exit(code=1)


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
