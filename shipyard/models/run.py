"""Pipeline run models: run status, triggers, and the user-visible report."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict

from shipyard.models.stages import StageStatus


class RunStatus(str, Enum):
    """Lifecycle of a PipelineRun."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"


VALID_RUN_TRANSITIONS: dict[RunStatus, set[RunStatus]] = {
    RunStatus.PENDING: {RunStatus.RUNNING, RunStatus.ABORTED},
    RunStatus.RUNNING: {RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.ABORTED},
    RunStatus.SUCCEEDED: set(),
    RunStatus.FAILED: set(),
    RunStatus.ABORTED: set(),
}

# CLI exit codes. 0 is success.
EXIT_SUCCEEDED = 0
EXIT_FAILED = 1
EXIT_ABORTED = 2
EXIT_CONFIG_ERROR = 3

_EXIT_CODES: dict[RunStatus, int] = {
    RunStatus.SUCCEEDED: EXIT_SUCCEEDED,
    RunStatus.FAILED: EXIT_FAILED,
    RunStatus.ABORTED: EXIT_ABORTED,
}


class Trigger(BaseModel):
    """A branch-push event."""

    model_config = ConfigDict(frozen=True)

    branch: str
    commit: str = ""


class StageReport(BaseModel):
    """Point-in-time status of one stage, derived from the ledger."""

    model_config = ConfigDict(frozen=True)

    stage_id: str
    display_name: str
    status: StageStatus = StageStatus.PENDING
    attempts: int = 0
    error_kind: str | None = None
    error_message: str | None = None
    entered_at: datetime | None = None
    artifact_refs: list[str] = []


class RunReport(BaseModel):
    """Everything a user needs to know about a run.

    On partial success (image published, deploy failed) ``published_image``
    is always set so the pushed reference is not lost.
    """

    model_config = ConfigDict(frozen=True)

    run_id: str
    pipeline: str = ""
    status: RunStatus = RunStatus.PENDING
    trigger: Trigger | None = None
    stages: list[StageReport] = []
    variables: dict[str, str] = {}
    failed_stage: str | None = None
    error_kind: str | None = None
    error_message: str | None = None
    published_image: str | None = None
    last_known_good: str | None = None
    rollout_summary: str | None = None
    cancel_requested: bool = False
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return not VALID_RUN_TRANSITIONS[self.status]

    @property
    def exit_code(self) -> int:
        """Process exit code for this run's status (non-terminal counts as failed)."""
        return _EXIT_CODES.get(self.status, EXIT_FAILED)

    def stage(self, stage_id: str) -> StageReport | None:
        for s in self.stages:
            if s.stage_id == stage_id:
                return s
        return None
