"""Image Publisher: build an image and push it to the registry.

Defines the ``ImageBuilder`` and ``RegistryClient`` Protocols that build
backends must satisfy.  ``shipyard.bridge.docker_cli.DockerCli`` is the
default implementation of both.

One ImagePublisher serves one pipeline run.  Within that run:
- a successful build is reused when only the push is retried;
- a tag, once pushed, maps to exactly one digest (``TagReusedError``).
"""

from __future__ import annotations

import logging
import re
from typing import Protocol, runtime_checkable

from shipyard.bridge.credentials import CredentialProvider, RegistryCredential
from shipyard.errors import (
    InvalidBuildContextError,
    InvalidImageNameError,
    TagReusedError,
)
from shipyard.models.images import BuildContext, ImageReference
from shipyard.models.pipeline import RegistrySpec

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r"^[a-z0-9]+(?:[._-][a-z0-9]+)*(?:/[a-z0-9]+(?:[._-][a-z0-9]+)*)*$")
_TAG_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class ImageBuilder(Protocol):
    """Protocol for image build backends."""

    def build(self, context: BuildContext, ref: ImageReference) -> str:
        """Build *context* tagged as *ref* and return the local image ID.

        Raises ``BuildFailedError`` on a recipe error or non-zero exit.
        """
        ...


@runtime_checkable
class RegistryClient(Protocol):
    """Protocol for registry push backends."""

    def push(self, ref: ImageReference, credential: RegistryCredential | None) -> str:
        """Push *ref* and return its ``sha256:`` content digest.

        Raises ``AuthFailedError`` or ``PushFailedError``.
        """
        ...


# ---------------------------------------------------------------------------
# Publisher
# ---------------------------------------------------------------------------


def validate_build_context(context: BuildContext) -> None:
    if not context.root.is_dir():
        raise InvalidBuildContextError(f"Build context {context.root} is not a directory")
    if not context.recipe_path.is_file():
        raise InvalidBuildContextError(f"Build recipe {context.recipe_path} not found")


def validate_image_name(name: str) -> None:
    if not name or not _NAME_RE.match(name):
        raise InvalidImageNameError(
            f"Invalid image name {name!r}: use lowercase letters, digits and . _ - /"
        )


class ImagePublisher:
    """Builds and pushes images to one registry endpoint.

    Parameters
    ----------
    builder:
        The build backend.
    registry_client:
        The push backend.
    registry:
        Registry host, repository namespace and credential handle.
    credentials:
        Source of the registry credential; ``None`` uses ambient login.
    """

    def __init__(
        self,
        builder: ImageBuilder,
        registry_client: RegistryClient,
        registry: RegistrySpec,
        credentials: CredentialProvider | None = None,
    ) -> None:
        self._builder = builder
        self._registry_client = registry_client
        self._registry = registry
        self._credentials = credentials
        self._built: dict[str, str] = {}  # qualified ref -> local image id
        self._pushed: dict[str, str] = {}  # qualified ref -> digest

    def reference_for(self, name: str, tag: str) -> ImageReference:
        """The reference *name* will be published under, without a digest."""
        validate_image_name(name)
        if not _TAG_RE.match(tag):
            raise InvalidImageNameError(f"Invalid image tag {tag!r}")
        repository = name
        if self._registry.namespace:
            repository = f"{self._registry.namespace.strip('/')}/{name}"
        return ImageReference(registry=self._registry.host, repository=repository, tag=tag)

    def publish(self, context: BuildContext, name: str, tag: str) -> ImageReference:
        """Build *context* as *name*:*tag*, push it, and return the pinned reference."""
        validate_build_context(context)
        ref = self.reference_for(name, tag)

        if ref.qualified in self._built:
            logger.info("Reusing build of %s for push retry", ref.qualified)
        else:
            self._built[ref.qualified] = self._builder.build(context, ref)

        credential = None
        if self._credentials is not None:
            credential = self._credentials.registry_credential(
                self._registry.credential, self._registry.host
            )

        digest = self._registry_client.push(ref, credential)
        previous = self._pushed.setdefault(ref.qualified, digest)
        if previous != digest:
            raise TagReusedError(
                f"Tag {ref.qualified} already refers to {previous}; refusing {digest}"
            )

        logger.info("Published %s (%s)", ref.qualified, digest)
        return ref.model_copy(update={"digest": digest})
