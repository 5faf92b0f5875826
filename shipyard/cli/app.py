"""Main Typer application: imports and registers all CLI commands.

Entry point: ``shipyard`` (configured via pyproject.toml scripts).

Commands: run, status, cancel, runs.
"""

from __future__ import annotations

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from shipyard import __version__
from shipyard.cli.commands.cancel_cmd import cancel_cmd
from shipyard.cli.commands.run_cmd import run_cmd
from shipyard.cli.commands.runs_cmd import runs_cmd
from shipyard.cli.commands.status_cmd import status_cmd
from shipyard.config import ShipyardSettings

app = typer.Typer(
    name="shipyard",
    help="Shipyard: build, publish and deploy container images to Kubernetes.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="run", help="Execute one pipeline run.")(run_cmd)
app.command(name="status", help="Show the status of a run.")(status_cmd)
app.command(name="cancel", help="Request cancellation of a run.")(cancel_cmd)
app.command(name="runs", help="List recorded runs.")(runs_cmd)


def configure_logging(level: str) -> None:
    """Send log records to stderr through Rich, once per process."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)
        ],
    )


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"shipyard {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        None,
        "--log-level",
        help="Log level (defaults to SHIPYARD_LOG_LEVEL or INFO).",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    configure_logging(log_level or ShipyardSettings().log_level)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
