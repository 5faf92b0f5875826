"""Rich terminal renderer for Shipyard run reports.

Turns ``RunReport`` into Rich renderables, with color-coded stage states
and an optional continuous ``Rich.Live`` watch mode.

Color scheme
------------
- green     : SUCCEEDED
- red       : FAILED
- yellow    : RUNNING
- dim       : PENDING
- bold red  : BLOCKED
- magenta   : ABORTED (run only)
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from typing import TYPE_CHECKING

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from shipyard.models.run import RunReport, RunStatus
from shipyard.models.stages import StageStatus

if TYPE_CHECKING:
    from shipyard.monitor.projection import RunProjection


# ---------------------------------------------------------------------------
# Status -> Rich style mapping
# ---------------------------------------------------------------------------

_STAGE_STYLES: dict[StageStatus, str] = {
    StageStatus.SUCCEEDED: "bold green",
    StageStatus.FAILED: "bold red",
    StageStatus.RUNNING: "bold yellow",
    StageStatus.PENDING: "dim",
    StageStatus.BLOCKED: "bold red",
}

_STAGE_LABELS: dict[StageStatus, str] = {
    StageStatus.SUCCEEDED: "[green]SUCCEEDED[/green]",
    StageStatus.FAILED: "[bold red]FAILED[/bold red]",
    StageStatus.RUNNING: "[yellow]RUNNING[/yellow]",
    StageStatus.PENDING: "[dim]PENDING[/dim]",
    StageStatus.BLOCKED: "[bold red]BLOCKED[/bold red]",
}

_RUN_LABELS: dict[RunStatus, str] = {
    RunStatus.PENDING: "[dim]PENDING[/dim]",
    RunStatus.RUNNING: "[yellow]RUNNING[/yellow]",
    RunStatus.SUCCEEDED: "[bold green]SUCCEEDED[/bold green]",
    RunStatus.FAILED: "[bold red]FAILED[/bold red]",
    RunStatus.ABORTED: "[bold magenta]ABORTED[/bold magenta]",
}

_BORDERS: dict[RunStatus, str] = {
    RunStatus.SUCCEEDED: "green",
    RunStatus.FAILED: "red",
    RunStatus.ABORTED: "magenta",
}


class RunRenderer:
    """Renders ``RunReport`` as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Single report
    # ------------------------------------------------------------------

    def render_report(self, report: RunReport) -> Panel:
        """Render a RunReport as a Panel holding the stage table and a summary."""
        lines: list[str] = [
            f"[bold]Status:[/bold] {_RUN_LABELS[report.status]}",
        ]
        if report.trigger is not None:
            commit = f"@{report.trigger.commit[:12]}" if report.trigger.commit else ""
            lines.append(f"[bold]Trigger:[/bold] {report.trigger.branch}{commit}")
        if report.failed_stage:
            lines.append(
                f"[bold]Failed stage:[/bold] [red]{report.failed_stage}[/red] "
                f"({report.error_kind}): {report.error_message}"
            )
        if report.published_image:
            lines.append(f"[bold]Published image:[/bold] {report.published_image}")
        if report.rollout_summary:
            lines.append(f"[bold]Rollout:[/bold] {report.rollout_summary}")
        if report.status in (RunStatus.FAILED, RunStatus.ABORTED):
            lkg = report.last_known_good or "[dim]none[/dim]"
            lines.append(f"[bold]Last known good:[/bold] {lkg}")
        if report.cancel_requested and not report.is_terminal:
            lines.append("[magenta]Cancellation requested[/magenta]")
        if report.variables:
            pairs = ", ".join(f"{k}={v}" for k, v in sorted(report.variables.items()))
            lines.append(f"[bold]Variables:[/bold] {pairs}")

        subtitle = None
        if report.finished_at is not None:
            subtitle = f"Finished: {report.finished_at.strftime('%Y-%m-%d %H:%M:%S UTC')}"

        return Panel(
            Group(self._build_stage_table(report), Text(""), Text.from_markup("\n".join(lines))),
            title=f"[bold]{report.pipeline}[/bold] {report.run_id}",
            subtitle=subtitle,
            border_style=_BORDERS.get(report.status, "blue"),
            padding=(1, 2),
        )

    def _build_stage_table(self, report: RunReport) -> Table:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("#", style="dim", width=3, justify="right")
        table.add_column("Stage", min_width=18)
        table.add_column("State", min_width=12, justify="center")
        table.add_column("Attempts", justify="right", width=8)
        table.add_column("Details", min_width=20)

        for i, stage in enumerate(report.stages):
            style = _STAGE_STYLES.get(stage.status, "")
            details: list[str] = []
            if stage.error_kind:
                details.append(f"[red]{stage.error_kind}: {stage.error_message}[/red]")
            if stage.artifact_refs:
                details.append(f"{len(stage.artifact_refs)} artifact(s)")
            if stage.entered_at:
                details.append(f"[dim]{stage.entered_at.strftime('%H:%M:%S')}[/dim]")
            table.add_row(
                str(i),
                f"[{style}]{stage.display_name}[/{style}]",
                _STAGE_LABELS.get(stage.status, stage.status.value),
                str(stage.attempts) if stage.attempts else "[dim]-[/dim]",
                " | ".join(details) if details else "[dim]-[/dim]",
            )
        return table

    def render_runs(self, reports: Sequence[RunReport]) -> Table:
        """One row per run, newest first."""
        table = Table(title="Shipyard Runs", show_header=True, header_style="bold cyan")
        table.add_column("Run ID", style="cyan")
        table.add_column("Pipeline")
        table.add_column("Branch")
        table.add_column("Status", justify="center")
        table.add_column("Image")
        for report in reports:
            table.add_row(
                report.run_id,
                report.pipeline,
                report.trigger.branch if report.trigger else "-",
                _RUN_LABELS[report.status],
                report.published_image or "[dim]-[/dim]",
            )
        return table

    # ------------------------------------------------------------------
    # Continuous live rendering
    # ------------------------------------------------------------------

    def render_live(
        self,
        run_id: str,
        projection: RunProjection,
        *,
        refresh_hz: float = 2.0,
    ) -> RunReport:
        """Re-render *run_id* until it reaches a terminal status.

        Re-reads the ledger on every refresh.  Ctrl+C stops watching (the
        run itself keeps going).  Returns the last report shown.
        """
        interval = 1.0 / max(refresh_hz, 0.1)
        report = projection.report(run_id)
        with Live(
            self.render_report(report),
            console=self.console,
            refresh_per_second=refresh_hz,
        ) as live:
            try:
                while not report.is_terminal:
                    time.sleep(interval)
                    report = projection.report(run_id)
                    live.update(self.render_report(report))
            except KeyboardInterrupt:
                pass
        return report

    # ------------------------------------------------------------------
    # Standalone print
    # ------------------------------------------------------------------

    def print_report(self, report: RunReport) -> None:
        self.console.print(self.render_report(report))

    def print_chain_verification(self, run_id: str, valid: bool) -> None:
        if valid:
            self.console.print(f"[green]Hash chain for run {run_id} is valid.[/green]")
        else:
            self.console.print(f"[bold red]Hash chain for run {run_id} is BROKEN![/bold red]")
