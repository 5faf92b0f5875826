"""Unit tests for the Cluster Applier."""

from __future__ import annotations

import pytest

from shipyard.core.applier import ClusterApplier, ClusterClient, extract_workloads
from shipyard.core.renderer import render
from shipyard.errors import (
    ApplyRejectedError,
    RolloutTimeoutError,
    UnresolvedPlaceholderError,
)
from shipyard.models.cluster import ClusterHandle, WorkloadRef
from shipyard.models.images import ImageReference
from shipyard.models.manifests import ConcreteManifest, ManifestTemplate
from tests.conftest import DEPLOYMENT_TEMPLATE, SERVICE_TEMPLATE
from tests.fakes import FakeCluster

TARGET = ClusterHandle(name="aks-test")
REF = ImageReference(registry="reg.example.com", repository="myapp", tag="42")


class FakeClock:
    """Manual clock: ``sleep`` advances ``now``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def manifests() -> list[ConcreteManifest]:
    return render(
        [
            ManifestTemplate(name="deployment.yaml", content=DEPLOYMENT_TEMPLATE),
            ManifestTemplate(name="service.yaml", content=SERVICE_TEMPLATE, image_bearing=False),
        ],
        REF,
    )


def _applier(cluster: FakeCluster, clock: FakeClock, poll: float = 2.0) -> ClusterApplier:
    return ClusterApplier(cluster, poll_interval=poll, clock=clock, sleep=clock.sleep)


class TestExtractWorkloads:
    def test_only_workload_kinds(self, manifests):
        assert extract_workloads(manifests) == [WorkloadRef(kind="Deployment", name="myapp")]

    def test_workload_without_name_rejected(self):
        manifest = ConcreteManifest(
            name="bad.yaml",
            content="kind: Deployment\nmetadata: {}\n",
            image=REF,
            content_digest="sha256:x",
        )
        with pytest.raises(ApplyRejectedError):
            extract_workloads([manifest])


class TestApply:
    def test_fake_satisfies_protocol(self):
        assert isinstance(FakeCluster(), ClusterClient)

    def test_ready_immediately(self, manifests):
        cluster = FakeCluster()
        result = _applier(cluster, FakeClock()).apply(manifests, TARGET, timeout=60)

        assert result.ready is True
        assert result.summary == "deployment/myapp 2/2"
        assert len(cluster.applied) == 1

    def test_full_batch_in_one_submission(self, manifests):
        cluster = FakeCluster()
        _applier(cluster, FakeClock()).apply(manifests, TARGET, timeout=60)

        [stream] = cluster.applied
        assert "reg.example.com/myapp:42" in stream
        assert stream.index("kind: Deployment") < stream.index("kind: Service")

    def test_waits_for_readiness(self, manifests):
        clock = FakeClock()
        cluster = FakeCluster(ready_after=3)
        result = _applier(cluster, clock).apply(manifests, TARGET, timeout=60)

        assert result.ready is True
        assert cluster.polls == 4
        assert clock.sleeps == [2.0, 2.0, 2.0]
        assert result.elapsed_seconds == pytest.approx(6.0)

    def test_timeout(self, manifests):
        clock = FakeClock()
        cluster = FakeCluster(ready_after=1000)
        with pytest.raises(RolloutTimeoutError) as exc_info:
            _applier(cluster, clock).apply(manifests, TARGET, timeout=5)

        assert "deployment/myapp 0/2" in str(exc_info.value)
        assert clock.now == pytest.approx(5.0)
        assert clock.sleeps[-1] == pytest.approx(1.0)

    def test_timeout_is_transient(self):
        assert RolloutTimeoutError.transient is True

    def test_rejection_propagates(self, manifests):
        cluster = FakeCluster(reject=True)
        with pytest.raises(ApplyRejectedError):
            _applier(cluster, FakeClock()).apply(manifests, TARGET, timeout=60)
        assert ApplyRejectedError.transient is False

    def test_empty_batch_rejected(self):
        with pytest.raises(ApplyRejectedError):
            _applier(FakeCluster(), FakeClock()).apply([], TARGET, timeout=60)

    def test_unresolved_placeholder_never_submitted(self):
        leaked = ConcreteManifest(
            name="leaked.yaml",
            content="image: <IMAGE_PLACEHOLDER>\n",
            image=REF,
            content_digest="sha256:x",
        )
        cluster = FakeCluster()
        with pytest.raises(UnresolvedPlaceholderError):
            _applier(cluster, FakeClock()).apply(
                [leaked], TARGET, timeout=60, placeholder="<IMAGE_PLACEHOLDER>"
            )
        assert cluster.applied == []

    def test_no_workloads(self):
        [service] = render(
            [ManifestTemplate(name="s.yaml", content=SERVICE_TEMPLATE, image_bearing=False)], REF
        )
        result = _applier(FakeCluster(), FakeClock()).apply([service], TARGET, timeout=60)
        assert result.ready is True
        assert result.summary == "applied (no workloads to wait for)"
