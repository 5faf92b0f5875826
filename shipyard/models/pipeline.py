"""Pipeline definition models, loaded from a YAML pipeline file.

Example pipeline file::

    name: myapp
    watch_branches: [main]
    build:
      context: .
      recipe: Dockerfile
      image: myapp
    registry:
      host: reg.example.com
      credential: acr
    manifests:
      placeholder: "<IMAGE_PLACEHOLDER>"
      templates:
        - k8s/deployment.yaml
        - path: k8s/service.yaml
          image_bearing: false
    cluster:
      name: aks-prod
      namespace: default
      credential: aks
    retry:
      retry_limit: 3
      base_delay: 2.0
    rollout_timeout: 300

Relative paths are resolved against the directory holding the pipeline file.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from shipyard.errors import ConfigurationError
from shipyard.models.cluster import ClusterHandle
from shipyard.models.images import BuildContext
from shipyard.models.manifests import DEFAULT_PLACEHOLDER, MultiplePlaceholderRule


class RetryPolicy(BaseModel):
    """Retry budget for transient errors.

    ``retry_limit`` is the total number of attempts a stage gets for a
    transient error: with a limit of 3 the third consecutive failure fails
    the stage.
    """

    model_config = ConfigDict(frozen=True)

    retry_limit: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.0, ge=0.0)
    multiplier: float = Field(default=2.0, ge=1.0)
    max_delay: float = Field(default=30.0, ge=0.0)

    def delay_for(self, attempt: int) -> float:
        """Backoff to wait after failed attempt number *attempt* (1-based)."""
        return min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)


class BuildSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    context: Path = Path(".")
    recipe: Path = Path("Dockerfile")
    image: str

    def build_context(self) -> BuildContext:
        return BuildContext(root=self.context, recipe=self.recipe)


class RegistrySpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str = Field(min_length=1)
    namespace: str = ""  # repository namespace, e.g. "team/apps"
    credential: str = ""


class TemplateSpec(BaseModel):
    """One manifest template file and its rendering overrides.

    ``image_bearing`` of ``None`` means "detect from the YAML".
    """

    model_config = ConfigDict(frozen=True)

    path: Path
    image_bearing: bool | None = None
    on_multiple: MultiplePlaceholderRule = MultiplePlaceholderRule.REJECT


class ManifestsSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    templates: list[TemplateSpec] = Field(min_length=1)
    placeholder: str = Field(default=DEFAULT_PLACEHOLDER, min_length=1)

    @field_validator("templates", mode="before")
    @classmethod
    def _accept_bare_paths(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [{"path": v} if isinstance(v, str) else v for v in value]
        return value


class PipelineSpec(BaseModel):
    """A complete pipeline definition."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    watch_branches: list[str] = ["main"]
    build: BuildSpec
    registry: RegistrySpec
    manifests: ManifestsSpec
    cluster: ClusterHandle
    retry: RetryPolicy | None = None  # falls back to settings
    rollout_timeout: float | None = Field(default=None, gt=0)

    def watches(self, branch: str) -> bool:
        return branch in self.watch_branches

    def resolve_paths(self, base_dir: Path) -> PipelineSpec:
        """Return a copy with relative paths anchored at *base_dir*."""

        def _anchor(p: Path) -> Path:
            return p if p.is_absolute() else base_dir / p

        build = self.build.model_copy(update={"context": _anchor(self.build.context)})
        templates = [
            t.model_copy(update={"path": _anchor(t.path)})
            for t in self.manifests.templates
        ]
        manifests = self.manifests.model_copy(update={"templates": templates})
        return self.model_copy(update={"build": build, "manifests": manifests})

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    def from_yaml(cls, yaml_content: str, base_dir: Path | None = None) -> PipelineSpec:
        """Parse and validate a pipeline definition.

        Raises ``ConfigurationError`` on malformed YAML or invalid fields.
        """
        try:
            data = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid pipeline YAML: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError("Pipeline file must contain a mapping")
        try:
            spec = cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid pipeline definition: {e}") from e
        return spec.resolve_paths(base_dir) if base_dir is not None else spec

    @classmethod
    def from_yaml_file(cls, path: str | Path) -> PipelineSpec:
        path = Path(path)
        if not path.is_file():
            raise ConfigurationError(f"Pipeline file not found: {path}")
        return cls.from_yaml(path.read_text(encoding="utf-8"), base_dir=path.parent)
