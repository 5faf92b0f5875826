"""Error taxonomy for Shipyard runs.

Every component raises a subclass of ``ShipyardError``.  Each error carries
a stable ``kind`` (reported to users and recorded in the ledger) and a
``transient`` flag.  The Orchestrator is the only place that reads the flag
and decides between retry, failure, and abort.

Categories
----------
- Configuration errors: reported before a run starts, never retried.
- Transient infrastructure errors: retried per the run's RetryPolicy.
- Non-transient errors: fail the stage immediately.
- Cancellation: reported as ``aborted``, never as ``failed``.
"""

from __future__ import annotations

from typing import ClassVar


class ShipyardError(RuntimeError):
    """Base class for all Shipyard errors."""

    kind: ClassVar[str] = "ShipyardError"
    transient: ClassVar[bool] = False


# ---------------------------------------------------------------------------
# Configuration errors: the run never starts
# ---------------------------------------------------------------------------


class ConfigurationError(ShipyardError):
    """Raised when a pipeline definition or its inputs are invalid."""

    kind = "ConfigurationError"


class TemplateNotFoundError(ConfigurationError):
    kind = "TemplateNotFound"


class MalformedTemplateError(ConfigurationError):
    kind = "MalformedTemplate"


class InvalidBuildContextError(ConfigurationError):
    kind = "InvalidBuildContext"


class InvalidImageNameError(ConfigurationError):
    kind = "InvalidImageName"


class CyclicDependencyError(ConfigurationError):
    """Raised when the stage graph contains a cycle."""

    kind = "CyclicDependency"


class UnknownDependencyError(ConfigurationError):
    """Raised when a stage depends on a stage that does not exist."""

    kind = "UnknownDependency"


class ToolNotFoundError(ConfigurationError):
    """Raised when an external CLI (docker, kubectl) is not on PATH."""

    kind = "ToolNotFound"


class TriggerIgnoredError(ConfigurationError):
    """Raised when a trigger names a branch outside the watch list."""

    kind = "TriggerIgnored"


class RunNumberInUseError(ConfigurationError):
    """Raised when a run number (and so an image tag) was already claimed."""

    kind = "RunNumberInUse"


# ---------------------------------------------------------------------------
# Renderer errors
# ---------------------------------------------------------------------------


class PlaceholderNotFoundError(ConfigurationError):
    """An image-bearing template carries no placeholder token."""

    kind = "PlaceholderNotFound"


class MultiplePlaceholdersError(ConfigurationError):
    """A template has several placeholder occurrences and no rule to pick."""

    kind = "MultiplePlaceholders"


class UnresolvedPlaceholderError(ShipyardError):
    """A rendered manifest still contains the placeholder token."""

    kind = "UnresolvedPlaceholder"


# ---------------------------------------------------------------------------
# Publisher errors
# ---------------------------------------------------------------------------


class BuildFailedError(ShipyardError):
    kind = "BuildFailed"


class AuthFailedError(ShipyardError):
    kind = "AuthFailed"
    transient = True


class PushFailedError(ShipyardError):
    kind = "PushFailed"
    transient = True


class TagReusedError(ShipyardError):
    """A tag was pushed twice in one run with different content."""

    kind = "TagReused"


# ---------------------------------------------------------------------------
# Applier errors
# ---------------------------------------------------------------------------


class ApplyRejectedError(ShipyardError):
    """The API server refused the batch (validation, admission, authorization)."""

    kind = "ApplyRejected"


class ClusterUnavailableError(ShipyardError):
    """The API server could not be reached or did not answer in time."""

    kind = "ClusterUnavailable"
    transient = True


class RolloutTimeoutError(ShipyardError):
    kind = "RolloutTimeout"
    transient = True


# ---------------------------------------------------------------------------
# Orchestration errors
# ---------------------------------------------------------------------------


class VariableAlreadySetError(ShipyardError):
    """Raised when a run variable is written a second time."""

    kind = "VariableAlreadySet"


class RunCancelledError(ShipyardError):
    """Reported for a stage whose retry backoff was interrupted by cancellation."""

    kind = "Cancelled"


class RunNotFoundError(ShipyardError):
    kind = "RunNotFound"


def error_kind(exc: BaseException) -> str:
    """Return the reported kind for any exception."""
    if isinstance(exc, ShipyardError):
        return exc.kind
    return "Unexpected"


def is_transient(exc: BaseException) -> bool:
    """Return ``True`` if *exc* is classified as likely to succeed on retry."""
    return isinstance(exc, ShipyardError) and exc.transient
