"""Shipyard: build, publish and deploy container images to Kubernetes.

One pipeline run builds an image from a build context, pushes it to a
registry under a per-run tag, renders manifest templates with the image
reference, applies them to a cluster and waits for the rollout.  Every
transition is recorded in an append-only, hash-chained SQLite ledger.
"""

__version__ = "0.1.0"
__description__ = "Build -> publish -> deploy pipeline orchestrator"

from shipyard.core.orchestrator import Orchestrator
from shipyard.monitor.projection import RunProjection
from shipyard.cli.app import app as cli

__all__ = ["Orchestrator", "RunProjection", "cli", "__version__"]
