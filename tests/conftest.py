"""Shared test fixtures for Shipyard."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from shipyard.bridge.credentials import StaticCredentialProvider
from shipyard.config import ShipyardSettings
from shipyard.core.artifact_store import ContentAddressedStore
from shipyard.core.orchestrator import Orchestrator
from shipyard.core.run_ledger import RunLedger
from shipyard.core.stage_graph import StageGraph
from shipyard.core.stage_machine import StageMachine
from shipyard.models.pipeline import PipelineSpec
from shipyard.models.stages import DEFAULT_STAGE_DEFINITIONS
from tests.fakes import FakeBuilder, FakeCluster, FakeRegistry

DEPLOYMENT_TEMPLATE = """\
apiVersion: apps/v1
kind: Deployment
metadata:
  name: myapp
spec:
  replicas: 2
  selector:
    matchLabels:
      app: myapp
  template:
    metadata:
      labels:
        app: myapp
    spec:
      containers:
        - name: myapp
          image: <IMAGE_PLACEHOLDER>
          ports:
            - containerPort: 8080
"""

SERVICE_TEMPLATE = """\
apiVersion: v1
kind: Service
metadata:
  name: myapp
spec:
  selector:
    app: myapp
  ports:
    - port: 80
      targetPort: 8080
"""

PIPELINE_YAML = """\
name: myapp
watch_branches: [main, release]
build:
  context: .
  recipe: Dockerfile
  image: myapp
registry:
  host: reg.example.com
  credential: acr
manifests:
  templates:
    - k8s/deployment.yaml
    - k8s/service.yaml
cluster:
  name: aks-test
  namespace: default
  credential: aks
retry:
  retry_limit: 3
  base_delay: 0.0
  max_delay: 0.0
rollout_timeout: 5
"""


# ---------------------------------------------------------------------------
# Persistence fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def ledger(tmp_dir: Path) -> RunLedger:
    """Provide a fresh RunLedger backed by a temp SQLite database."""
    return RunLedger(tmp_dir / "test_ledger.db")


@pytest.fixture
def artifact_store(tmp_dir: Path) -> ContentAddressedStore:
    """Provide a fresh ContentAddressedStore in a temp directory."""
    return ContentAddressedStore(tmp_dir / "artifacts")


@pytest.fixture
def graph() -> StageGraph:
    """Provide a StageGraph with the default build -> render -> deploy stages."""
    return StageGraph(DEFAULT_STAGE_DEFINITIONS)


@pytest.fixture
def stage_machine(ledger: RunLedger, graph: StageGraph) -> StageMachine:
    """Provide a StageMachine wired to the test ledger and graph."""
    return StageMachine(ledger, graph)


@pytest.fixture
def run_id() -> str:
    """Provide a deterministic test run ID."""
    return "sy-test-run-001"


# ---------------------------------------------------------------------------
# Pipeline fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def project_dir(tmp_dir: Path) -> Path:
    """A project with a Dockerfile, two manifest templates and a pipeline file."""
    root = tmp_dir / "project"
    (root / "k8s").mkdir(parents=True)
    (root / "Dockerfile").write_text("FROM python:3.12-slim\nCOPY . /app\n")
    (root / "k8s" / "deployment.yaml").write_text(DEPLOYMENT_TEMPLATE)
    (root / "k8s" / "service.yaml").write_text(SERVICE_TEMPLATE)
    (root / "pipeline.yaml").write_text(PIPELINE_YAML)
    return root


@pytest.fixture
def pipeline(project_dir: Path) -> PipelineSpec:
    return PipelineSpec.from_yaml_file(project_dir / "pipeline.yaml")


@pytest.fixture
def settings(tmp_dir: Path) -> ShipyardSettings:
    return ShipyardSettings(
        ledger_path=tmp_dir / "ledger.db",
        artifact_store_path=tmp_dir / "manifests",
        rollout_poll_seconds=0.0,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
    )


@pytest.fixture
def make_orchestrator(
    pipeline: PipelineSpec, settings: ShipyardSettings
) -> Callable[..., Orchestrator]:
    """Factory fixture: an Orchestrator wired to fakes, overridable per test."""

    def _factory(**overrides: Any) -> Orchestrator:
        kwargs: dict[str, Any] = {
            "builder": FakeBuilder(),
            "registry_client": FakeRegistry(),
            "cluster_client": FakeCluster(),
            "credentials": StaticCredentialProvider(),
            "cancel_poll_seconds": 0.01,
        }
        kwargs.update(overrides)
        spec = kwargs.pop("pipeline", pipeline)
        return Orchestrator(spec, kwargs.pop("settings", settings), **kwargs)

    return _factory
