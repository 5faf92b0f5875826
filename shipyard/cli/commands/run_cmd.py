"""``shipyard run CONFIG``: execute one pipeline run in the foreground.

Loads the pipeline file, validates it (configuration errors are reported
before any ledger entry is written), then builds, pushes, renders and
deploys.  Ctrl+C requests cancellation: the stage in flight completes and
the run ends aborted.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

import typer
from rich.console import Console

from shipyard.config import ShipyardSettings
from shipyard.core.orchestrator import Orchestrator
from shipyard.errors import ConfigurationError, TriggerIgnoredError
from shipyard.models.pipeline import PipelineSpec
from shipyard.models.run import EXIT_CONFIG_ERROR, EXIT_SUCCEEDED, RunReport, Trigger
from shipyard.monitor.renderer import RunRenderer

logger = logging.getLogger(__name__)

console = Console()


def build_orchestrator(pipeline: PipelineSpec, settings: ShipyardSettings) -> Orchestrator:
    """Create the orchestrator with the default docker/kubectl backends."""
    return Orchestrator(pipeline, settings)


def _execute_interruptibly(orchestrator: Orchestrator, run) -> RunReport:
    """Execute *run* on a worker thread so Ctrl+C can request cancellation."""
    result: dict[str, RunReport] = {}
    errors: list[BaseException] = []

    def _target() -> None:
        try:
            result["report"] = orchestrator.execute(run)
        except BaseException as exc:
            errors.append(exc)

    worker = threading.Thread(target=_target, name=f"shipyard-{run.run_id}", daemon=True)
    worker.start()
    while worker.is_alive():
        try:
            worker.join(timeout=0.5)
        except KeyboardInterrupt:
            console.print(
                "[magenta]Cancellation requested; waiting for the current stage to finish...[/magenta]"
            )
            orchestrator.cancel(run.run_id)
    if errors:
        raise errors[0]
    return result["report"]


def run_cmd(
    config: Path = typer.Argument(
        ...,
        help="Path to the pipeline YAML file.",
    ),
    branch: str = typer.Option(
        "main",
        "--branch",
        "-b",
        help="Branch that was pushed.",
    ),
    commit: str = typer.Option(
        "",
        "--commit",
        "-c",
        help="Commit that was pushed.",
    ),
    run_number: str = typer.Option(
        None,
        "--run-number",
        "-n",
        help="Image tag for this run.  Defaults to the next build number.",
    ),
    ledger_db: Path = typer.Option(
        None,
        "--ledger",
        "-l",
        help="Path to the ledger SQLite database.",
    ),
) -> None:
    """Execute one pipeline run and exit with its status."""
    settings = ShipyardSettings()
    if ledger_db is not None:
        settings = settings.model_copy(update={"ledger_path": ledger_db})

    try:
        pipeline = PipelineSpec.from_yaml_file(config)
        orchestrator = build_orchestrator(pipeline, settings)
        run = orchestrator.create_run(Trigger(branch=branch, commit=commit), run_number)
    except TriggerIgnoredError as exc:
        console.print(f"[yellow]Trigger ignored:[/yellow] {exc}")
        raise typer.Exit(code=EXIT_SUCCEEDED)
    except ConfigurationError as exc:
        console.print(f"[bold red]{exc.kind}:[/bold red] {exc}")
        raise typer.Exit(code=EXIT_CONFIG_ERROR)

    console.print(
        f"[bold]Run[/bold] [cyan]{run.run_id}[/cyan] "
        f"({pipeline.name} #{run.run_number}, {branch})"
    )
    report = _execute_interruptibly(orchestrator, run)

    RunRenderer(console=console).print_report(report)
    raise typer.Exit(code=report.exit_code)
