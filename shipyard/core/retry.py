"""Retry with exponential backoff for transient errors.

``execute_with_retry`` calls an operation until it succeeds, raises a
non-transient error, or exhausts ``policy.retry_limit`` attempts.  The
backoff sleep waits on the run's cancellation event, so a cancellation
stops further attempts without interrupting one already in flight.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from shipyard.errors import RunCancelledError, error_kind, is_transient
from shipyard.models.pipeline import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    """Result of a retried operation: a value, or the last error."""

    value: T | None = None
    error: Exception | None = None
    attempts: int = 0
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


def execute_with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy,
    *,
    cancel_event: threading.Event | None = None,
    label: str = "operation",
) -> RetryOutcome[T]:
    """Run *operation* under *policy*.

    Exceptions raised by *operation* are captured in the outcome, never
    propagated.  Only transient errors are retried.
    """
    cancel_event = cancel_event or threading.Event()
    attempt = 0
    while True:
        attempt += 1
        try:
            return RetryOutcome(value=operation(), attempts=attempt)
        except Exception as exc:
            if not is_transient(exc):
                logger.error("%s failed (%s, not retryable): %s", label, error_kind(exc), exc)
                return RetryOutcome(error=exc, attempts=attempt)
            if attempt >= policy.retry_limit:
                logger.error(
                    "%s failed (%s) after %d attempts: %s",
                    label, error_kind(exc), attempt, exc,
                )
                return RetryOutcome(error=exc, attempts=attempt)

            delay = policy.delay_for(attempt)
            logger.warning(
                "%s attempt %d/%d failed (%s); retrying in %.1fs",
                label, attempt, policy.retry_limit, error_kind(exc), delay,
            )
            if cancel_event.wait(delay):
                logger.warning("%s: cancellation requested during backoff", label)
                cancelled = RunCancelledError(
                    f"Cancelled after attempt {attempt} ({error_kind(exc)}: {exc})"
                )
                cancelled.__cause__ = exc
                return RetryOutcome(error=cancelled, attempts=attempt, cancelled=True)
