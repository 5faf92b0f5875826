"""Manifest template and rendered manifest models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict

from shipyard.models.images import ImageReference

DEFAULT_PLACEHOLDER = "<IMAGE_PLACEHOLDER>"


class MultiplePlaceholderRule(str, Enum):
    """What the renderer does when a template has several placeholder tokens."""

    REJECT = "reject"  # raise MultiplePlaceholdersError
    ALL = "all"  # substitute every occurrence with the same reference


class ManifestTemplate(BaseModel):
    """A raw manifest document carrying a placeholder for the image reference.

    Owned by the ManifestTemplateStore; read-only to everything else.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    content: str
    image_bearing: bool = True
    on_multiple: MultiplePlaceholderRule = MultiplePlaceholderRule.REJECT


class ConcreteManifest(BaseModel):
    """A template with every placeholder resolved to an ImageReference."""

    model_config = ConfigDict(frozen=True)

    name: str
    content: str
    image: ImageReference
    content_digest: str  # "sha256:<hex>" of content
