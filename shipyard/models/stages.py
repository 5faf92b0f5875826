"""Stage state machine models: deterministic transitions."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class StageStatus(str, Enum):
    """Strict state model for each pipeline stage."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    BLOCKED = "blocked"  # an upstream stage failed; will never start this run


# Valid state transitions: enforced structurally by StageMachine.
# A run is single-shot: retries happen inside RUNNING, so FAILED is terminal.
VALID_TRANSITIONS: dict[StageStatus, set[StageStatus]] = {
    StageStatus.PENDING: {StageStatus.RUNNING, StageStatus.BLOCKED},
    StageStatus.RUNNING: {StageStatus.SUCCEEDED, StageStatus.FAILED},
    StageStatus.SUCCEEDED: set(),
    StageStatus.FAILED: set(),
    StageStatus.BLOCKED: set(),
}

TERMINAL_STATUSES = frozenset(
    {StageStatus.SUCCEEDED, StageStatus.FAILED, StageStatus.BLOCKED}
)


class StageDefinition(BaseModel):
    """Defines a pipeline stage and the stages it depends on.

    The ``depends_on`` list encodes the DAG: a stage cannot enter RUNNING
    unless every dependency has SUCCEEDED.
    """

    model_config = ConfigDict(frozen=True)

    stage_id: str
    display_name: str
    depends_on: list[str] = []


BUILD_STAGE = "build"
RENDER_STAGE = "render"
DEPLOY_STAGE = "deploy"

# The standard Build -> Render -> Deploy pipeline.
DEFAULT_STAGE_DEFINITIONS: list[StageDefinition] = [
    StageDefinition(
        stage_id=BUILD_STAGE,
        display_name="Build & Publish",
        depends_on=[],
    ),
    StageDefinition(
        stage_id=RENDER_STAGE,
        display_name="Render Manifests",
        depends_on=[BUILD_STAGE],
    ),
    StageDefinition(
        stage_id=DEPLOY_STAGE,
        display_name="Deploy",
        depends_on=[RENDER_STAGE],
    ),
]
