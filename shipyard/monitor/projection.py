"""RunProjection: pure read-only view over the RunLedger.

``shipyard status`` is a PROJECTION of the Run Ledger.  It does not compute
truth, it displays it.  Every call re-reads the ledger, so a run executing
in another process is reported as it progresses.
"""

from __future__ import annotations

from shipyard.core.run_ledger import RunLedger
from shipyard.errors import RunNotFoundError
from shipyard.models.ledger import CANCEL_REQUESTED, RUN_SCOPE, LedgerEntry
from shipyard.models.run import RunReport, RunStatus, StageReport, Trigger
from shipyard.models.stages import StageStatus

# state_transition of the entry that creates a run
RUN_CREATED = "none->pending"


def _as_status(value: str | None, enum_type):
    try:
        return enum_type(value)
    except ValueError:
        return None


class RunProjection:
    """Builds RunReports from ledger entries.  Never stores state.

    Parameters
    ----------
    ledger:
        The RunLedger to project from.
    """

    def __init__(self, ledger: RunLedger) -> None:
        self._ledger = ledger

    # ------------------------------------------------------------------
    # Single run
    # ------------------------------------------------------------------

    def report(self, run_id: str) -> RunReport:
        entries = self._ledger.get_run_entries(run_id)
        if not entries:
            raise RunNotFoundError(f"Run not found: {run_id}")

        fields: dict = {"run_id": run_id, "cancel_requested": False}
        stages: dict[str, dict] = {}
        variables: dict[str, str] = {}

        for entry in entries:
            if entry.stage_id == RUN_SCOPE:
                self._apply_run_entry(entry, fields, stages)
            else:
                self._apply_stage_entry(entry, stages, variables)

        fields["variables"] = variables
        fields["stages"] = [StageReport(**s) for s in stages.values()]
        if "published_image" not in fields and "imageRef" in variables:
            fields["published_image"] = variables["imageRef"]
        return RunReport(**fields)

    @staticmethod
    def _apply_run_entry(entry: LedgerEntry, fields: dict, stages: dict[str, dict]) -> None:
        if entry.state_transition == CANCEL_REQUESTED:
            fields["cancel_requested"] = True
            return

        detail = entry.detail
        if entry.state_transition == RUN_CREATED:
            fields["pipeline"] = detail.get("pipeline", "")
            if detail.get("trigger"):
                fields["trigger"] = Trigger(**detail["trigger"])
            for stage in detail.get("stages", []):
                stages[stage["stage_id"]] = {
                    "stage_id": stage["stage_id"],
                    "display_name": stage.get("display_name", stage["stage_id"]),
                }

        status = _as_status(entry.target_state, RunStatus)
        if status is None:
            return
        fields["status"] = status
        if status == RunStatus.RUNNING:
            fields["started_at"] = entry.timestamp_utc
        if status in (RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.ABORTED):
            fields["finished_at"] = entry.timestamp_utc
            for key in (
                "failed_stage",
                "error_kind",
                "error_message",
                "published_image",
                "last_known_good",
                "rollout_summary",
            ):
                if detail.get(key) is not None:
                    fields[key] = detail[key]

    @staticmethod
    def _apply_stage_entry(
        entry: LedgerEntry, stages: dict[str, dict], variables: dict[str, str]
    ) -> None:
        status = _as_status(entry.target_state, StageStatus)
        if status is None:
            return
        stage = stages.setdefault(
            entry.stage_id,
            {"stage_id": entry.stage_id, "display_name": entry.stage_id},
        )
        stage["status"] = status
        stage["entered_at"] = entry.timestamp_utc
        detail = entry.detail
        if "attempts" in detail:
            stage["attempts"] = detail["attempts"]
        if "error_kind" in detail:
            stage["error_kind"] = detail["error_kind"]
            stage["error_message"] = detail.get("error_message")
        if entry.artifact_references:
            stage["artifact_refs"] = list(entry.artifact_references)
        if status == StageStatus.SUCCEEDED:
            variables.update(detail.get("outputs", {}))

    # ------------------------------------------------------------------
    # Across runs
    # ------------------------------------------------------------------

    def list_runs(self, pipeline: str | None = None) -> list[RunReport]:
        """Reports for every run (optionally one pipeline's), newest first."""
        reports = [self.report(run_id) for run_id in self._ledger.get_all_run_ids()]
        if pipeline is not None:
            reports = [r for r in reports if r.pipeline == pipeline]
        return reports

    def last_known_good(self, pipeline: str, exclude_run_id: str | None = None) -> str | None:
        """Image of the most recent succeeded run of *pipeline*, if any."""
        # run-scope entries come newest first
        for entry in self._ledger.get_run_scope_entries():
            if entry.target_state != RunStatus.SUCCEEDED.value:
                continue
            if entry.detail.get("pipeline") != pipeline or entry.run_id == exclude_run_id:
                continue
            image = entry.detail.get("published_image")
            if image:
                return image
        return None
