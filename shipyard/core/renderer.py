"""Manifest Renderer: pure placeholder substitution.

``render()`` replaces the literal placeholder token in each template with
``registry/repository:tag``.  It performs no I/O and is deterministic:
identical inputs produce byte-identical manifests and digests.

It never guesses: an image-bearing template without the token raises
``PlaceholderNotFoundError``; a template with several tokens raises
``MultiplePlaceholdersError`` unless its rule is ``all``.
"""

from __future__ import annotations

from collections.abc import Sequence

from shipyard.core.hasher import content_address
from shipyard.errors import (
    MultiplePlaceholdersError,
    PlaceholderNotFoundError,
    UnresolvedPlaceholderError,
)
from shipyard.models.images import ImageReference
from shipyard.models.manifests import (
    DEFAULT_PLACEHOLDER,
    ConcreteManifest,
    ManifestTemplate,
    MultiplePlaceholderRule,
)


def check_template(template: ManifestTemplate, placeholder: str = DEFAULT_PLACEHOLDER) -> int:
    """Validate one template's placeholder usage; return the occurrence count."""
    count = template.content.count(placeholder)
    if count == 0 and template.image_bearing:
        raise PlaceholderNotFoundError(
            f"Template {template.name} is image-bearing but contains no "
            f"{placeholder!r}"
        )
    if count > 1 and template.on_multiple != MultiplePlaceholderRule.ALL:
        raise MultiplePlaceholdersError(
            f"Template {template.name} contains {count} occurrences of "
            f"{placeholder!r} and no disambiguation rule"
        )
    return count


def render_one(
    template: ManifestTemplate,
    ref: ImageReference,
    placeholder: str = DEFAULT_PLACEHOLDER,
) -> ConcreteManifest:
    """Render a single template against *ref*."""
    check_template(template, placeholder)
    content = template.content.replace(placeholder, ref.qualified)
    if placeholder in content:
        # The image string itself contains the token; substitution cannot converge.
        raise UnresolvedPlaceholderError(
            f"Rendered manifest {template.name} still contains {placeholder!r}"
        )
    return ConcreteManifest(
        name=template.name,
        content=content,
        image=ref,
        content_digest=content_address(content.encode("utf-8")),
    )


def render(
    templates: Sequence[ManifestTemplate],
    ref: ImageReference,
    placeholder: str = DEFAULT_PLACEHOLDER,
) -> list[ConcreteManifest]:
    """Render every template, preserving order.

    Every template is checked before any is rendered, so a bad template
    late in the sequence fails the whole call.
    """
    for template in templates:
        check_template(template, placeholder)
    return [render_one(t, ref, placeholder) for t in templates]


def to_yaml_stream(manifests: Sequence[ConcreteManifest]) -> str:
    """Join manifests into one multi-document YAML stream, in order."""
    parts = []
    for manifest in manifests:
        body = manifest.content.strip("\n")
        if body.startswith("---"):
            body = body[3:].lstrip("\n")
        parts.append(body)
    return "---\n" + "\n---\n".join(parts) + "\n"
