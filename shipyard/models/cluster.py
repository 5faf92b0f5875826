"""Cluster target and rollout result models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

# Workload kinds whose readiness the applier waits for.
WORKLOAD_KINDS: frozenset[str] = frozenset({"Deployment", "StatefulSet", "DaemonSet"})


class ClusterHandle(BaseModel):
    """Where manifests are applied.

    ``credential`` names a handle understood by the CredentialProvider;
    the core never performs the credential exchange itself.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    namespace: str = "default"
    endpoint: str | None = None
    credential: str = ""


class WorkloadRef(BaseModel):
    """A workload named in a submitted manifest."""

    model_config = ConfigDict(frozen=True)

    kind: str
    name: str
    namespace: str | None = None

    def __str__(self) -> str:
        return f"{self.kind.lower()}/{self.name}"


class WorkloadStatus(BaseModel):
    """Readiness of one workload as reported by the cluster."""

    model_config = ConfigDict(frozen=True)

    workload: WorkloadRef
    ready: bool
    desired_replicas: int = 0
    ready_replicas: int = 0


class RolloutResult(BaseModel):
    """Outcome of a successful apply-and-wait."""

    model_config = ConfigDict(frozen=True)

    ready: bool
    workloads: list[WorkloadStatus] = []
    elapsed_seconds: float = 0.0

    @property
    def summary(self) -> str:
        if not self.workloads:
            return "applied (no workloads to wait for)"
        parts = [
            f"{w.workload} {w.ready_replicas}/{w.desired_replicas}"
            for w in self.workloads
        ]
        return ", ".join(parts)
