"""``shipyard status RUN_ID``: show a run as recorded in the ledger.

A pure read-only projection: works for runs executing in another process.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from shipyard.cli.commands import open_ledger
from shipyard.core.run_ledger import LedgerIntegrityError
from shipyard.errors import RunNotFoundError
from shipyard.models.run import EXIT_CONFIG_ERROR
from shipyard.monitor.projection import RunProjection
from shipyard.monitor.renderer import RunRenderer

console = Console()


def status_cmd(
    run_id: str = typer.Argument(
        ...,
        help="The run ID to show.",
    ),
    verify_chain: bool = typer.Option(
        False,
        "--verify-chain",
        "-V",
        help="Verify the hash chain integrity before displaying.",
    ),
    watch: bool = typer.Option(
        False,
        "--watch",
        "-w",
        help="Keep refreshing until the run finishes (Ctrl+C to stop watching).",
    ),
    ledger_db: Path = typer.Option(
        None,
        "--ledger",
        "-l",
        help="Path to the ledger SQLite database.",
    ),
) -> None:
    """Show the status of a run.  Exits with the run's status code."""
    ledger = open_ledger(ledger_db, console)
    projection = RunProjection(ledger)
    renderer = RunRenderer(console=console)

    try:
        report = projection.report(run_id)
    except RunNotFoundError:
        console.print(f"[bold red]Run not found:[/bold red] {run_id}")
        recent = ledger.get_all_run_ids()[:10]
        if recent:
            console.print("\n[bold]Recent runs:[/bold]")
            for rid in recent:
                console.print(f"  [cyan]{rid}[/cyan]")
        raise typer.Exit(code=EXIT_CONFIG_ERROR)

    if verify_chain:
        try:
            valid = ledger.verify_chain(run_id)
        except LedgerIntegrityError as exc:
            console.print(f"[bold red]Chain verification failed:[/bold red] {exc}")
            valid = False
        renderer.print_chain_verification(run_id, valid)
        console.print()

    if watch and not report.is_terminal:
        report = renderer.render_live(run_id, projection)
    else:
        renderer.print_report(report)

    if report.is_terminal:
        raise typer.Exit(code=report.exit_code)
