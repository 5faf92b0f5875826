"""In-process state of one pipeline run.

A PipelineRun is owned by the Orchestrator for its lifetime.  Its
persistent history lives in the Run Ledger; this object only holds what
the executing process needs: the write-once variables, the objects stages
hand to each other, and the cancellation event.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

from shipyard.core.publisher import ImagePublisher
from shipyard.core.template_store import ManifestTemplateStore
from shipyard.core.variables import RunVariables
from shipyard.models.cluster import RolloutResult
from shipyard.models.images import ImageReference
from shipyard.models.pipeline import PipelineSpec
from shipyard.models.run import RunStatus, Trigger


@dataclass
class StageContext:
    """What a stage handler sees: a snapshot taken when the stage started."""

    run_id: str
    stage_id: str
    pipeline: PipelineSpec
    variables: dict[str, str]
    objects: dict[str, Any]
    cancel_event: threading.Event


@dataclass
class StageResult:
    """What a stage handler returns.

    ``outputs`` become write-once run variables; ``objects`` are handed to
    later stages in-process (e.g. rendered manifests); ``artifact_refs`` and
    ``detail`` are recorded in the ledger.
    """

    outputs: dict[str, str] = field(default_factory=dict)
    objects: dict[str, Any] = field(default_factory=dict)
    artifact_refs: list[str] = field(default_factory=list)
    detail: dict[str, Any] = field(default_factory=dict)


@dataclass
class StageFailure:
    stage_id: str
    error_kind: str
    message: str
    attempts: int


@dataclass
class PipelineRun:
    run_id: str
    pipeline: PipelineSpec
    trigger: Trigger
    run_number: str
    templates: ManifestTemplateStore
    publisher: ImagePublisher
    status: RunStatus = RunStatus.PENDING
    variables: RunVariables = field(default_factory=RunVariables)
    objects: dict[str, Any] = field(default_factory=dict)
    cancel_event: threading.Event = field(default_factory=threading.Event)
    published_image: ImageReference | None = None
    rollout: RolloutResult | None = None
    failure: StageFailure | None = None

    @property
    def cancel_requested(self) -> bool:
        return self.cancel_event.is_set()
