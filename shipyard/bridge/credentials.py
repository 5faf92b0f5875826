"""Credential handles for registries and clusters.

Shipyard never performs a credential exchange.  It asks a
``CredentialProvider`` for an opaque handle by name and passes the result to
the external CLI.  The default ``EnvCredentialProvider`` reads the handles
from environment variables:

    SHIPYARD_CRED_<HANDLE>_USERNAME / _PASSWORD   (registry)
    SHIPYARD_CRED_<HANDLE>_KUBECONFIG / _CONTEXT  (cluster)

``<HANDLE>`` is the handle name upper-cased with non-alphanumerics as ``_``.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, SecretStr

ENV_PREFIX = "SHIPYARD_CRED_"


class RegistryCredential(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str
    password: SecretStr


class ClusterCredential(BaseModel):
    model_config = ConfigDict(frozen=True)

    kubeconfig: Path | None = None
    context: str | None = None


@runtime_checkable
class CredentialProvider(Protocol):
    """Protocol for external credential sources."""

    def registry_credential(self, handle: str, registry: str) -> RegistryCredential | None:
        """Return the credential for *registry*, or ``None`` to use ambient login."""
        ...

    def cluster_credential(self, handle: str, cluster: str) -> ClusterCredential:
        """Return the kubeconfig/context to reach *cluster*."""
        ...


def _env_key(handle: str, suffix: str) -> str:
    normalized = re.sub(r"[^A-Za-z0-9]", "_", handle).upper()
    return f"{ENV_PREFIX}{normalized}_{suffix}"


class EnvCredentialProvider:
    """Reads credential handles from environment variables."""

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = os.environ if environ is None else environ

    def registry_credential(self, handle: str, registry: str) -> RegistryCredential | None:
        if not handle:
            return None
        username = self._environ.get(_env_key(handle, "USERNAME"))
        password = self._environ.get(_env_key(handle, "PASSWORD"))
        if not username or password is None:
            return None
        return RegistryCredential(username=username, password=SecretStr(password))

    def cluster_credential(self, handle: str, cluster: str) -> ClusterCredential:
        if not handle:
            return ClusterCredential()
        kubeconfig = self._environ.get(_env_key(handle, "KUBECONFIG"))
        context = self._environ.get(_env_key(handle, "CONTEXT"))
        return ClusterCredential(
            kubeconfig=Path(kubeconfig) if kubeconfig else None,
            context=context or None,
        )


class StaticCredentialProvider:
    """Serves credentials from in-memory mappings (embedding and tests)."""

    def __init__(
        self,
        registries: Mapping[str, RegistryCredential] | None = None,
        clusters: Mapping[str, ClusterCredential] | None = None,
    ) -> None:
        self._registries = dict(registries or {})
        self._clusters = dict(clusters or {})

    def registry_credential(self, handle: str, registry: str) -> RegistryCredential | None:
        return self._registries.get(handle)

    def cluster_credential(self, handle: str, cluster: str) -> ClusterCredential:
        return self._clusters.get(handle, ClusterCredential())
