"""Content-addressed, immutable store for rendered manifests.

Storage layout: {base_path}/{sha256[0:2]}/{sha256}.yaml
No delete method: a rendered manifest is immutable once stored, so the
manifests a past run applied can always be retrieved by address.
"""

from __future__ import annotations

from pathlib import Path

from shipyard.core.hasher import sha256_hex


class ArtifactIntegrityError(RuntimeError):
    """Raised when a stored artifact's hash does not match its address."""


class ContentAddressedStore:
    """SHA-256 keyed, immutable artifact store.

    Storing the same content twice is a no-op (idempotent).

    Parameters
    ----------
    base_path:
        Root directory for artifact storage.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _extract_digest(content_address: str) -> str:
        return content_address.removeprefix("sha256:")

    def _artifact_path(self, sha256_digest: str) -> Path:
        return self._base / sha256_digest[:2] / f"{sha256_digest}.yaml"

    def store(self, data: bytes) -> str:
        """Store data and return its ``sha256:<hex>`` content address."""
        digest = sha256_hex(data)
        path = self._artifact_path(digest)

        if path.exists():
            if not self.verify(digest):
                raise ArtifactIntegrityError(
                    f"Existing artifact at {digest} failed integrity check"
                )
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            # write-then-rename so concurrent readers never see partial content
            tmp = path.with_suffix(".tmp")
            tmp.write_bytes(data)
            tmp.replace(path)

        return f"sha256:{digest}"

    def retrieve(self, content_address: str) -> bytes:
        """Retrieve artifact bytes by content address ("sha256:<hex>" or hex)."""
        path = self._artifact_path(self._extract_digest(content_address))
        if not path.exists():
            raise FileNotFoundError(f"Artifact not found: {content_address}")
        return path.read_bytes()

    def exists(self, content_address: str) -> bool:
        return self._artifact_path(self._extract_digest(content_address)).exists()

    def verify(self, content_address: str) -> bool:
        """Re-hash stored data and compare against the content address."""
        digest = self._extract_digest(content_address)
        path = self._artifact_path(digest)
        if not path.exists():
            return False
        return sha256_hex(path.read_bytes()) == digest
