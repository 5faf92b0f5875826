"""``shipyard cancel RUN_ID``: request cancellation of an in-flight run.

Records the request in the ledger; the process executing the run picks it
up at the next stage boundary.  A push or rollout already in progress is
allowed to finish.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from shipyard.cli.commands import open_ledger
from shipyard.core.orchestrator import request_cancel
from shipyard.errors import RunNotFoundError
from shipyard.models.run import EXIT_CONFIG_ERROR, EXIT_FAILED

console = Console()


def cancel_cmd(
    run_id: str = typer.Argument(
        ...,
        help="The run ID to cancel.",
    ),
    ledger_db: Path = typer.Option(
        None,
        "--ledger",
        "-l",
        help="Path to the ledger SQLite database.",
    ),
) -> None:
    """Request cancellation of a run."""
    ledger = open_ledger(ledger_db, console)
    try:
        accepted = request_cancel(ledger, run_id)
    except RunNotFoundError:
        console.print(f"[bold red]Run not found:[/bold red] {run_id}")
        raise typer.Exit(code=EXIT_CONFIG_ERROR)

    if not accepted:
        console.print(f"[yellow]Run {run_id} has already finished; nothing to cancel.[/yellow]")
        raise typer.Exit(code=EXIT_FAILED)
    console.print(
        f"[magenta]Cancellation requested for {run_id}.[/magenta] "
        "[dim]It takes effect at the next stage boundary.[/dim]"
    )
