"""Subprocess helpers shared by the docker and kubectl adapters."""

from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Sequence

from shipyard.errors import ToolNotFoundError

logger = logging.getLogger(__name__)


def find_binary(name: str) -> str:
    """Resolve *name* on PATH or raise ``ToolNotFoundError``."""
    path = shutil.which(name)
    if path is None:
        raise ToolNotFoundError(f"{name} not found on PATH. Install it or set its path in settings.")
    return path


def run_command(
    args: Sequence[str],
    *,
    input_text: str | None = None,
    timeout: float | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run a command, capturing text output.  Never raises on non-zero exit.

    ``subprocess.TimeoutExpired`` propagates so callers can classify it.
    """
    logger.debug("exec %s", " ".join(args))
    return subprocess.run(
        list(args),
        input=input_text,
        capture_output=True,
        text=True,
        timeout=timeout,
        check=False,
    )


def tail(text: str, lines: int = 20) -> str:
    """Last *lines* lines of command output, for error messages."""
    return "\n".join(text.strip().splitlines()[-lines:])
