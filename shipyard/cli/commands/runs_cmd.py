"""``shipyard runs``: list recorded runs, newest first."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from shipyard.cli.commands import open_ledger
from shipyard.monitor.projection import RunProjection
from shipyard.monitor.renderer import RunRenderer

console = Console()


def runs_cmd(
    pipeline: str = typer.Option(
        None,
        "--pipeline",
        "-p",
        help="Only show runs of this pipeline.",
    ),
    limit: int = typer.Option(
        20,
        "--limit",
        "-n",
        help="Maximum number of runs to show.",
    ),
    ledger_db: Path = typer.Option(
        None,
        "--ledger",
        "-l",
        help="Path to the ledger SQLite database.",
    ),
) -> None:
    """List recorded runs."""
    ledger = open_ledger(ledger_db, console)
    reports = RunProjection(ledger).list_runs(pipeline)[:limit]
    if not reports:
        console.print("[dim]No runs recorded.[/dim]")
        return
    console.print(RunRenderer(console=console).render_runs(reports))
