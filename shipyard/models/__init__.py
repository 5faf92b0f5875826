"""Shipyard data models: all Pydantic v2, all frozen (immutable)."""

from shipyard.models.cluster import ClusterHandle, RolloutResult, WorkloadRef, WorkloadStatus
from shipyard.models.images import BuildContext, ImageReference
from shipyard.models.ledger import LedgerEntry
from shipyard.models.manifests import ConcreteManifest, ManifestTemplate, MultiplePlaceholderRule
from shipyard.models.pipeline import PipelineSpec, RetryPolicy
from shipyard.models.run import RunReport, RunStatus, StageReport, Trigger
from shipyard.models.stages import (
    DEFAULT_STAGE_DEFINITIONS,
    VALID_TRANSITIONS,
    StageDefinition,
    StageStatus,
)

__all__ = [
    # images
    "BuildContext",
    "ImageReference",
    # manifests
    "ManifestTemplate",
    "ConcreteManifest",
    "MultiplePlaceholderRule",
    # cluster
    "ClusterHandle",
    "WorkloadRef",
    "WorkloadStatus",
    "RolloutResult",
    # pipeline
    "PipelineSpec",
    "RetryPolicy",
    # stages
    "StageStatus",
    "StageDefinition",
    "VALID_TRANSITIONS",
    "DEFAULT_STAGE_DEFINITIONS",
    # run
    "Trigger",
    "RunStatus",
    "RunReport",
    "StageReport",
    # ledger
    "LedgerEntry",
]
