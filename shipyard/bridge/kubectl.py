"""Cluster access through the ``kubectl`` CLI.

``KubectlClient`` satisfies the ``ClusterClient`` protocol: it submits a
multi-document YAML stream with ``kubectl apply -f -`` and reads workload
readiness with ``kubectl get -o json``.
"""

from __future__ import annotations

import json
import logging
import subprocess
from typing import Any

from shipyard.bridge.credentials import ClusterCredential, CredentialProvider
from shipyard.bridge.process import find_binary, run_command, tail
from shipyard.errors import ApplyRejectedError, ClusterUnavailableError
from shipyard.models.cluster import ClusterHandle, WorkloadRef, WorkloadStatus

logger = logging.getLogger(__name__)

# kubectl stderr that means the API server never answered the request.
_UNREACHABLE_MARKERS = (
    "unable to connect to the server",
    "connection refused",
    "i/o timeout",
    "no route to host",
    "tls handshake timeout",
    "context deadline exceeded",
    "the server is currently unable to handle the request",
    "serviceunavailable",
)


def is_unreachable(stderr: str) -> bool:
    lowered = stderr.lower()
    return any(marker in lowered for marker in _UNREACHABLE_MARKERS)


def workload_readiness(obj: dict[str, Any]) -> tuple[bool, int, int]:
    """Compute ``(ready, desired, ready_count)`` from a workload object.

    Mirrors the checks ``kubectl rollout status`` performs: the controller
    has observed the latest generation and every desired replica is
    updated and ready, with no old replicas left.
    """
    kind = obj.get("kind", "")
    metadata = obj.get("metadata", {})
    spec = obj.get("spec", {})
    status = obj.get("status", {})

    observed = status.get("observedGeneration", 0) >= metadata.get("generation", 0)

    if kind == "DaemonSet":
        desired = status.get("desiredNumberScheduled", 0)
        ready_count = status.get("numberReady", 0)
        updated = status.get("updatedNumberScheduled", 0)
        return observed and updated == desired and ready_count == desired, desired, ready_count

    desired = spec.get("replicas", 1)
    ready_count = status.get("readyReplicas", 0)
    updated = status.get("updatedReplicas", 0)

    if kind == "StatefulSet":
        ok = observed and updated == desired and ready_count == desired
        return ok, desired, ready_count

    # Deployment
    total = status.get("replicas", 0)
    available = status.get("availableReplicas", 0)
    ok = (
        observed
        and updated == desired
        and total == updated
        and available >= updated
        and ready_count >= desired
    )
    return ok, desired, ready_count


class KubectlClient:
    """Applies manifests and reads rollout state with kubectl.

    Parameters
    ----------
    credentials:
        Provider for the cluster's kubeconfig and context.
    kubectl_bin:
        Name or path of the kubectl binary.
    timeout:
        Per-command timeout in seconds.
    """

    def __init__(
        self,
        credentials: CredentialProvider,
        kubectl_bin: str = "kubectl",
        timeout: float | None = 300.0,
    ) -> None:
        self._kubectl = find_binary(kubectl_bin)
        self._credentials = credentials
        self._timeout = timeout

    def _base_args(self, target: ClusterHandle) -> list[str]:
        cred: ClusterCredential = self._credentials.cluster_credential(
            target.credential, target.name
        )
        args = [self._kubectl]
        if cred.kubeconfig is not None:
            args += ["--kubeconfig", str(cred.kubeconfig)]
        if cred.context:
            args += ["--context", cred.context]
        if target.endpoint:
            args += ["--server", target.endpoint]
        args += ["--namespace", target.namespace]
        return args

    def apply(self, stream: str, target: ClusterHandle) -> list[str]:
        """Submit the whole stream as one batch; return the applied resource names.

        Raises ``ClusterUnavailableError`` when the API server cannot be
        reached and ``ApplyRejectedError`` when it refuses the manifests.
        """
        args = self._base_args(target) + ["apply", "-f", "-", "-o", "name"]
        try:
            result = run_command(args, input_text=stream, timeout=self._timeout)
        except subprocess.TimeoutExpired as exc:
            raise ClusterUnavailableError(
                f"kubectl apply to {target.name} timed out after {exc.timeout}s"
            ) from exc
        if result.returncode != 0:
            if is_unreachable(result.stderr):
                raise ClusterUnavailableError(
                    f"Cluster {target.name} is unreachable:\n{tail(result.stderr)}"
                )
            raise ApplyRejectedError(
                f"Cluster {target.name} rejected the manifests:\n{tail(result.stderr)}"
            )
        applied = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        logger.info("Applied %d resources to %s", len(applied), target.name)
        return applied

    def workload_status(self, workload: WorkloadRef, target: ClusterHandle) -> WorkloadStatus:
        args = self._base_args(target)
        if workload.namespace:
            args[-1] = workload.namespace
        args += ["get", workload.kind.lower(), workload.name, "-o", "json"]
        try:
            result = run_command(args, timeout=self._timeout)
        except subprocess.TimeoutExpired:
            logger.warning("kubectl get %s timed out", workload)
            return WorkloadStatus(workload=workload, ready=False)
        if result.returncode != 0:
            logger.warning("kubectl get %s failed: %s", workload, tail(result.stderr, 3))
            return WorkloadStatus(workload=workload, ready=False)

        ready, desired, ready_count = workload_readiness(json.loads(result.stdout))
        return WorkloadStatus(
            workload=workload,
            ready=ready,
            desired_replicas=desired,
            ready_replicas=ready_count,
        )
