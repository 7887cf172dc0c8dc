"""
Secret store access layer for the vault proxy.

This package provides the SecretStore interface the credential lifecycle
manager consumes, plus two implementations:

    - VaultSecretStore: HashiCorp Vault via hvac (production)
    - InMemorySecretStore: process-local store (tests / local runs)

Quick Start:
    >>> from libs.platform.secrets import CancellationToken, InMemorySecretStore
    >>> store = InMemorySecretStore()
    >>> store.create_secret("git", "gitlab/1/root/readonly", {"deploykey": "..."})
    1

Security Requirements:
    - Secret values NEVER logged (only collection/path/policy names)
"""

from typing import TYPE_CHECKING, Any

# hvac is only imported when VaultSecretStore is accessed, so tests that only
# use the in-memory store don't pay for it.
if TYPE_CHECKING:
    from libs.platform.secrets.vault_backend import VaultSecretStore as VaultSecretStore

from libs.platform.secrets.cancellation import CancellationToken
from libs.platform.secrets.exceptions import (
    OperationCancelledError,
    SecretAccessError,
    SecretNotFoundError,
    SecretStoreError,
    SecretWriteError,
)
from libs.platform.secrets.memory_backend import InMemorySecretStore
from libs.platform.secrets.store import KVSecret, SecretStore


def __getattr__(name: str) -> Any:
    """Lazy load the Vault backend to avoid importing hvac eagerly."""
    if name == "VaultSecretStore":
        from libs.platform.secrets.vault_backend import VaultSecretStore

        return VaultSecretStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    # Core interface
    "SecretStore",
    "KVSecret",
    "CancellationToken",
    # Implementations
    "InMemorySecretStore",
    "VaultSecretStore",
    # Exceptions
    "SecretStoreError",
    "SecretNotFoundError",
    "SecretAccessError",
    "SecretWriteError",
    "OperationCancelledError",
]
