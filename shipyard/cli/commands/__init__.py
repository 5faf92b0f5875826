"""Shipyard CLI subcommands, one module per command."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from shipyard.config import ShipyardSettings
from shipyard.core.run_ledger import RunLedger
from shipyard.models.run import EXIT_CONFIG_ERROR


def open_ledger(ledger_db: Path | None, console: Console) -> RunLedger:
    """Open an existing ledger (``--ledger`` or ``SHIPYARD_LEDGER_PATH``)."""
    db_path = ledger_db or ShipyardSettings().ledger_path
    if not db_path.exists():
        console.print(f"[bold red]Ledger not found:[/bold red] {db_path}")
        console.print("[dim]Start a run first with: shipyard run PIPELINE.yaml[/dim]")
        raise typer.Exit(code=EXIT_CONFIG_ERROR)
    return RunLedger(db_path)
