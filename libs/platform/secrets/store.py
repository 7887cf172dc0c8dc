"""
Abstract SecretStore Interface.

This module defines the contract the credential lifecycle manager consumes:
a versioned key-value store (KV v2 collections), a policy API, a generic
logical read/write/delete API and an auth-backend mount API.

Architecture:
    SecretStore (ABC)
    ├── VaultSecretStore - HashiCorp Vault via hvac (vault_backend.py)
    └── InMemorySecretStore - process-local store for tests and local runs (memory_backend.py)

Conventions:
    - ``collection`` is the KV v2 mount ("git", "repo", "cluster", "tenant")
    - ``path`` is the sub-path inside the collection ("gitlab/1/root/readonly")
    - Every method accepts a CancellationToken and must call
      ``token.raise_if_cancelled(<operation>)`` before its round trip
    - Failures raise the SecretStoreError family; "absent" is reported either
      by return value (get_policy -> "", read -> None) or SecretNotFoundError

Security Requirements:
    - Secret values NEVER logged (only collection/path/policy names)
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any

from libs.platform.secrets.cancellation import CancellationToken


@dataclass(frozen=True)
class KVSecret:
    """One version of a KV v2 secret."""

    data: Mapping[str, Any]
    version: int
    metadata: Mapping[str, Any] = field(default_factory=dict)


class SecretStore(ABC):
    """
    Abstract base class for secret store backends.

    Thread Safety:
        Implementations MUST be safe to share between request worker threads.
        They provide no cross-call atomicity: two callers mutating the same
        path may interleave.
    """

    backend_name = "abstract"

    # ------------------------------------------------------------------
    # KV v2 secrets
    # ------------------------------------------------------------------

    @abstractmethod
    def create_secret(
        self,
        collection: str,
        path: str,
        data: Mapping[str, Any],
        token: CancellationToken | None = None,
    ) -> int:
        """Write ``data`` as a new version and return the new version number."""

    @abstractmethod
    def get_secret(
        self, collection: str, path: str, token: CancellationToken | None = None
    ) -> KVSecret:
        """
        Read the current version.

        Raises:
            SecretNotFoundError: Path has no live version
        """

    @abstractmethod
    def delete_secret(
        self, collection: str, path: str, token: CancellationToken | None = None
    ) -> None:
        """Delete the metadata and every version stored at ``path``."""

    @abstractmethod
    def rollback_secret(
        self,
        collection: str,
        path: str,
        to_version: int,
        token: CancellationToken | None = None,
    ) -> None:
        """Write the data of ``to_version`` back as a new current version."""

    @abstractmethod
    def get_secret_version_list(
        self, collection: str, path: str, token: CancellationToken | None = None
    ) -> list[int]:
        """Return every version number at ``path`` in ascending order."""

    # ------------------------------------------------------------------
    # Policies
    # ------------------------------------------------------------------

    @abstractmethod
    def create_policy(
        self, name: str, document: str, token: CancellationToken | None = None
    ) -> None:
        """Create or overwrite the policy ``name``."""

    @abstractmethod
    def get_policy(self, name: str, token: CancellationToken | None = None) -> str:
        """Return the policy document, or ``""`` if the policy doesn't exist."""

    @abstractmethod
    def delete_policy(self, name: str, token: CancellationToken | None = None) -> None:
        """Delete the policy ``name``."""

    # ------------------------------------------------------------------
    # Generic logical API
    # ------------------------------------------------------------------

    @abstractmethod
    def read(self, path: str, token: CancellationToken | None = None) -> dict[str, Any] | None:
        """Return the ``data`` mapping stored at ``path``, or None if absent."""

    @abstractmethod
    def write(
        self, path: str, data: Mapping[str, Any], token: CancellationToken | None = None
    ) -> dict[str, Any] | None:
        """Write ``data`` at ``path`` and return the response data (if any)."""

    @abstractmethod
    def delete(self, path: str, token: CancellationToken | None = None) -> None:
        """Delete ``path``."""

    # ------------------------------------------------------------------
    # Auth backends
    # ------------------------------------------------------------------

    @abstractmethod
    def enable_auth_backend(
        self, mount_path: str, auth_type: str, token: CancellationToken | None = None
    ) -> None:
        """Mount a new auth backend of ``auth_type`` at ``mount_path``."""

    @abstractmethod
    def disable_auth_backend(
        self, mount_path: str, token: CancellationToken | None = None
    ) -> None:
        """Unmount the auth backend at ``mount_path``."""

    @abstractmethod
    def health(self) -> bool:
        """True when the store is initialized and unsealed."""

    def close(self) -> None:  # noqa: B027 - Intentionally optional hook with default no-op
        """Release connections (optional hook)."""

    def __enter__(self) -> "SecretStore":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
