"""Manifest Template Store: read-only holder of deployment descriptors.

Templates are loaded once, validated, and then only ever read.  A template
that references a container image (any ``image`` key in any of its YAML
documents) must carry the placeholder token; a missing placeholder is a
configuration error raised at load time, so the run never starts.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

import yaml

from shipyard.errors import (
    MalformedTemplateError,
    PlaceholderNotFoundError,
    TemplateNotFoundError,
)
from shipyard.models.manifests import (
    DEFAULT_PLACEHOLDER,
    ManifestTemplate,
    MultiplePlaceholderRule,
)
from shipyard.models.pipeline import TemplateSpec

logger = logging.getLogger(__name__)

_TEMPLATE_SUFFIXES = (".yaml", ".yml")


def _references_image(node: Any) -> bool:
    """True if any mapping in *node* has an ``image`` key."""
    if isinstance(node, dict):
        if "image" in node:
            return True
        return any(_references_image(v) for v in node.values())
    if isinstance(node, list):
        return any(_references_image(v) for v in node)
    return False


def detect_image_bearing(name: str, content: str, placeholder: str) -> bool:
    """Parse *content* as multi-document YAML and look for image fields.

    The placeholder is swapped for a plain scalar before parsing so tokens
    such as ``{{IMAGE}}`` do not read as YAML flow mappings.
    """
    try:
        documents = list(yaml.safe_load_all(content.replace(placeholder, "placeholder")))
    except yaml.YAMLError as e:
        raise MalformedTemplateError(f"Template {name} is not valid YAML: {e}") from e
    return any(_references_image(doc) for doc in documents if doc is not None)


class ManifestTemplateStore:
    """Immutable collection of ManifestTemplates, in declaration order.

    Parameters
    ----------
    templates:
        The templates to hold.
    placeholder:
        The token image-bearing templates must contain.
    """

    def __init__(
        self,
        templates: Iterable[ManifestTemplate],
        placeholder: str = DEFAULT_PLACEHOLDER,
    ) -> None:
        self._templates: tuple[ManifestTemplate, ...] = tuple(templates)
        self._placeholder = placeholder
        self._validate()

    def _validate(self) -> None:
        seen: set[str] = set()
        for template in self._templates:
            if template.name in seen:
                raise MalformedTemplateError(f"Duplicate template name: {template.name}")
            seen.add(template.name)
            if template.image_bearing and self._placeholder not in template.content:
                raise PlaceholderNotFoundError(
                    f"Template {template.name} references a container image "
                    f"but does not contain {self._placeholder!r}"
                )

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    def from_specs(
        cls,
        specs: Iterable[TemplateSpec],
        placeholder: str = DEFAULT_PLACEHOLDER,
    ) -> ManifestTemplateStore:
        """Load templates from the files named by pipeline TemplateSpecs.

        Each template is named by its path relative to the deepest directory
        shared by all the specs, so ``app/deployment.yaml`` and
        ``worker/deployment.yaml`` stay distinct while a flat directory keeps
        bare file names.
        """
        specs = list(specs)
        paths = [Path(spec.path) for spec in specs]
        for path in paths:
            if not path.is_file():
                raise TemplateNotFoundError(f"Manifest template not found: {path}")
        root = Path(os.path.commonpath([p.parent.absolute() for p in paths])) if paths else None

        templates = []
        for spec, path in zip(specs, paths):
            name = path.absolute().relative_to(root).as_posix()
            content = path.read_text(encoding="utf-8")
            detected = detect_image_bearing(name, content, placeholder)
            image_bearing = detected if spec.image_bearing is None else spec.image_bearing
            templates.append(
                ManifestTemplate(
                    name=name,
                    content=content,
                    image_bearing=image_bearing,
                    on_multiple=spec.on_multiple,
                )
            )
            logger.debug("Loaded template %s (image_bearing=%s)", path, image_bearing)
        return cls(templates, placeholder)

    @classmethod
    def from_directory(
        cls,
        directory: Path,
        placeholder: str = DEFAULT_PLACEHOLDER,
        on_multiple: MultiplePlaceholderRule = MultiplePlaceholderRule.REJECT,
    ) -> ManifestTemplateStore:
        """Load every ``*.yaml`` / ``*.yml`` file in *directory*, sorted by name."""
        directory = Path(directory)
        if not directory.is_dir():
            raise TemplateNotFoundError(f"Template directory not found: {directory}")
        paths = sorted(
            p for p in directory.iterdir()
            if p.is_file() and p.suffix in _TEMPLATE_SUFFIXES
        )
        if not paths:
            raise TemplateNotFoundError(f"No manifest templates in {directory}")
        specs = [TemplateSpec(path=p, on_multiple=on_multiple) for p in paths]
        return cls.from_specs(specs, placeholder)

    # ------------------------------------------------------------------
    # Read-only access
    # ------------------------------------------------------------------

    @property
    def placeholder(self) -> str:
        return self._placeholder

    @property
    def templates(self) -> tuple[ManifestTemplate, ...]:
        return self._templates

    def get(self, name: str) -> ManifestTemplate:
        for template in self._templates:
            if template.name == name:
                return template
        raise TemplateNotFoundError(f"No template named {name!r}")

    def __iter__(self) -> Iterator[ManifestTemplate]:
        return iter(self._templates)

    def __len__(self) -> int:
        return len(self._templates)
