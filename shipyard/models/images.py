"""Build context and image reference models."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class BuildContext(BaseModel):
    """A directory root plus the recipe (Dockerfile) that builds the image.

    Immutable once a pipeline run starts.
    """

    model_config = ConfigDict(frozen=True)

    root: Path
    recipe: Path = Path("Dockerfile")  # relative to root unless absolute

    @property
    def recipe_path(self) -> Path:
        """Return the resolved recipe path."""
        if self.recipe.is_absolute():
            return self.recipe
        return self.root / self.recipe


class ImageReference(BaseModel):
    """An immutable, published image reference.

    Within one pipeline run a tag refers to exactly one content digest.
    """

    model_config = ConfigDict(frozen=True)

    registry: str = Field(min_length=1)
    repository: str = Field(min_length=1)
    tag: str = Field(min_length=1)
    digest: str | None = None  # "sha256:<hex>" once pushed

    @property
    def qualified(self) -> str:
        """The fully qualified ``registry/repository:tag`` string."""
        return f"{self.registry}/{self.repository}:{self.tag}"

    @property
    def pinned(self) -> str:
        """``registry/repository@digest`` if a digest is known, else ``qualified``."""
        if self.digest:
            return f"{self.registry}/{self.repository}@{self.digest}"
        return self.qualified

    def __str__(self) -> str:
        return self.qualified
