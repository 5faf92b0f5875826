"""Image build and push through the ``docker`` CLI.

Uses the CLI via subprocess rather than a Docker SDK, so any runtime that
exposes a ``docker``-compatible CLI (Docker, Podman, Colima, CI runners)
works unchanged.

``DockerCli`` satisfies both ``ImageBuilder`` and ``RegistryClient``.
"""

from __future__ import annotations

import logging
import re
import subprocess

from shipyard.bridge.credentials import RegistryCredential
from shipyard.bridge.process import find_binary, run_command, tail
from shipyard.errors import AuthFailedError, BuildFailedError, PushFailedError
from shipyard.models.images import BuildContext, ImageReference

logger = logging.getLogger(__name__)

_DIGEST_RE = re.compile(r"digest:\s*(sha256:[0-9a-f]{64})")

# Registry responses that mean the credential was refused.
_AUTH_MARKERS = (
    "unauthorized",
    "authentication required",
    "denied",
    "incorrect username or password",
    "status: 401",
    "status code 401",
)


def parse_push_digest(output: str) -> str | None:
    """Extract ``sha256:<hex>`` from ``docker push`` output."""
    match = _DIGEST_RE.search(output)
    return match.group(1) if match else None


def is_auth_failure(output: str) -> bool:
    lowered = output.lower()
    return any(marker in lowered for marker in _AUTH_MARKERS)


class DockerCli:
    """Builds and pushes images with the docker CLI.

    Parameters
    ----------
    docker_bin:
        Name or path of the docker binary.
    timeout:
        Per-command timeout in seconds.
    """

    def __init__(self, docker_bin: str = "docker", timeout: float | None = 1800.0) -> None:
        self._docker = find_binary(docker_bin)
        self._timeout = timeout

    # ------------------------------------------------------------------
    # ImageBuilder
    # ------------------------------------------------------------------

    def build(self, context: BuildContext, ref: ImageReference) -> str:
        """Build *context* tagged as *ref*; return the local image ID."""
        args = [
            self._docker, "build",
            "--quiet",
            "--file", str(context.recipe_path),
            "--tag", ref.qualified,
            str(context.root),
        ]
        try:
            result = run_command(args, timeout=self._timeout)
        except subprocess.TimeoutExpired as exc:
            raise BuildFailedError(f"docker build timed out after {exc.timeout}s") from exc
        if result.returncode != 0:
            raise BuildFailedError(
                f"docker build exited {result.returncode}:\n{tail(result.stderr)}"
            )
        image_id = result.stdout.strip().splitlines()[-1] if result.stdout.strip() else ""
        logger.info("Built %s (%s)", ref.qualified, image_id[:19])
        return image_id

    # ------------------------------------------------------------------
    # RegistryClient
    # ------------------------------------------------------------------

    def login(self, registry: str, credential: RegistryCredential) -> None:
        args = [
            self._docker, "login", registry,
            "--username", credential.username,
            "--password-stdin",
        ]
        try:
            result = run_command(
                args,
                input_text=credential.password.get_secret_value(),
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise PushFailedError(f"docker login to {registry} timed out") from exc
        if result.returncode != 0:
            output = result.stderr + result.stdout
            if is_auth_failure(output):
                raise AuthFailedError(f"Registry {registry} rejected the credential")
            raise PushFailedError(f"docker login to {registry} failed:\n{tail(output)}")

    def push(self, ref: ImageReference, credential: RegistryCredential | None) -> str:
        """Push *ref*; return the registry content digest."""
        if credential is not None:
            self.login(ref.registry, credential)
        try:
            result = run_command([self._docker, "push", ref.qualified], timeout=self._timeout)
        except subprocess.TimeoutExpired as exc:
            raise PushFailedError(f"docker push timed out after {exc.timeout}s") from exc
        output = result.stdout + result.stderr
        if result.returncode != 0:
            if is_auth_failure(output):
                raise AuthFailedError(f"Registry {ref.registry} refused push of {ref.qualified}")
            raise PushFailedError(f"docker push exited {result.returncode}:\n{tail(output)}")
        digest = parse_push_digest(output)
        if digest is None:
            raise PushFailedError(f"docker push of {ref.qualified} reported no digest")
        return digest
