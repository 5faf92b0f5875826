"""Runtime configuration: env-driven.

Centralized settings using pydantic-settings.  Reads from a .env file and
SHIPYARD_* environment variables.  Per-pipeline values (retry policy,
rollout timeout) in the pipeline YAML override the defaults here.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from shipyard.models.pipeline import RetryPolicy


class ShipyardSettings(BaseSettings):
    """Process-wide settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export SHIPYARD_LOG_LEVEL=DEBUG
        export SHIPYARD_LEDGER_PATH=/data/ledger.db
        export SHIPYARD_RETRY_LIMIT=5
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="SHIPYARD_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = "development"
    log_level: str = "INFO"

    # Storage paths
    ledger_path: Path = Path(".shipyard/ledger.db")
    artifact_store_path: Path = Path(".shipyard/manifests")

    # External tools
    docker_bin: str = "docker"
    kubectl_bin: str = "kubectl"
    command_timeout_seconds: float = 1800.0

    # Retry defaults
    retry_limit: int = 3
    retry_base_delay: float = 1.0
    retry_multiplier: float = 2.0
    retry_max_delay: float = 30.0

    # Rollout
    rollout_timeout_seconds: float = 300.0
    rollout_poll_seconds: float = 2.0

    # Scheduling
    max_parallel_stages: int = 4

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            retry_limit=self.retry_limit,
            base_delay=self.retry_base_delay,
            multiplier=self.retry_multiplier,
            max_delay=self.retry_max_delay,
        )
