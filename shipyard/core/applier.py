"""Cluster Applier: submit rendered manifests and wait for rollout.

The full batch is submitted as one YAML stream, in order.  The applier then
polls the platform's own readiness signal for every workload in the batch
until all are ready or the timeout passes.  It never rolls back; that
decision belongs to the Orchestrator.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from typing import Protocol, runtime_checkable

import yaml

from shipyard.core.renderer import to_yaml_stream
from shipyard.errors import ApplyRejectedError, RolloutTimeoutError, UnresolvedPlaceholderError
from shipyard.models.cluster import (
    WORKLOAD_KINDS,
    ClusterHandle,
    RolloutResult,
    WorkloadRef,
    WorkloadStatus,
)
from shipyard.models.manifests import ConcreteManifest

logger = logging.getLogger(__name__)


@runtime_checkable
class ClusterClient(Protocol):
    """Protocol for cluster API backends."""

    def apply(self, stream: str, target: ClusterHandle) -> list[str]:
        """Submit a multi-document YAML stream as one batch.

        Raises ``ApplyRejectedError`` if the API refuses it and
        ``ClusterUnavailableError`` if the API cannot be reached.
        """
        ...

    def workload_status(self, workload: WorkloadRef, target: ClusterHandle) -> WorkloadStatus:
        """Return the current readiness of *workload*."""
        ...


def extract_workloads(manifests: Sequence[ConcreteManifest]) -> list[WorkloadRef]:
    """Workloads (Deployment, StatefulSet, DaemonSet) named in *manifests*."""
    workloads: list[WorkloadRef] = []
    for manifest in manifests:
        try:
            documents = list(yaml.safe_load_all(manifest.content))
        except yaml.YAMLError as e:
            raise ApplyRejectedError(f"Manifest {manifest.name} is not valid YAML: {e}") from e
        for doc in documents:
            if not isinstance(doc, dict) or doc.get("kind") not in WORKLOAD_KINDS:
                continue
            metadata = doc.get("metadata") or {}
            name = metadata.get("name")
            if not name:
                raise ApplyRejectedError(f"{doc['kind']} in {manifest.name} has no metadata.name")
            workloads.append(
                WorkloadRef(kind=doc["kind"], name=name, namespace=metadata.get("namespace"))
            )
    return workloads


class ClusterApplier:
    """Applies manifests through a ClusterClient and waits for readiness.

    Parameters
    ----------
    client:
        The cluster backend.
    poll_interval:
        Seconds between readiness polls.
    clock, sleep:
        Injected time sources.
    """

    def __init__(
        self,
        client: ClusterClient,
        *,
        poll_interval: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep

    def apply(
        self,
        manifests: Sequence[ConcreteManifest],
        target: ClusterHandle,
        timeout: float,
        placeholder: str | None = None,
    ) -> RolloutResult:
        """Submit the full batch and wait up to *timeout* seconds for rollout."""
        if not manifests:
            raise ApplyRejectedError("No manifests to apply")
        if placeholder is not None:
            for manifest in manifests:
                if placeholder in manifest.content:
                    raise UnresolvedPlaceholderError(
                        f"Refusing to apply {manifest.name}: unresolved {placeholder!r}"
                    )

        workloads = extract_workloads(manifests)
        start = self._clock()
        self._client.apply(to_yaml_stream(manifests), target)

        deadline = start + timeout
        while True:
            statuses = [self._client.workload_status(w, target) for w in workloads]
            if all(s.ready for s in statuses):
                elapsed = self._clock() - start
                logger.info(
                    "Rollout on %s ready after %.1fs (%d workloads)",
                    target.name, elapsed, len(workloads),
                )
                return RolloutResult(ready=True, workloads=statuses, elapsed_seconds=elapsed)

            now = self._clock()
            if now >= deadline:
                pending = ", ".join(
                    f"{s.workload} {s.ready_replicas}/{s.desired_replicas}"
                    for s in statuses if not s.ready
                )
                raise RolloutTimeoutError(
                    f"Rollout on {target.name} not ready after {timeout:.0f}s: {pending}"
                )
            self._sleep(min(self._poll_interval, deadline - now))
