"""
HashiCorp Vault SecretStore Backend.

This module implements VaultSecretStore, the production SecretStore that talks
to HashiCorp Vault via the hvac library.

Architecture:
    - hvac client for the KV v2, sys/policy, sys/auth and logical APIs
    - Token authentication, or AppRole login when no token is configured
    - Optional CA bundle for TLS verification
    - Automatic retries (3 attempts, exponential backoff) for VaultDown on
      read-only calls, never sleeping past the token deadline; writes are
      never retried
    - Every call checks the caller's CancellationToken first

Path conventions:
    - KV v2 data:     <collection>/data/<path>
    - KV v2 metadata: <collection>/metadata/<path>
    - Auth config:    auth/<mount>/config
    - Auth roles:     auth/<mount>/role/<name>

Security Considerations:
    - Secret values NEVER logged (only collection/path/policy names)
    - Token stored in memory only (never persisted to disk)
    - TLS verification on by default

Usage Example:
    >>> store = VaultSecretStore(
    ...     vault_url="https://vault.company.com:8200",
    ...     token="s.abc123xyz",
    ... )
    >>> version = store.create_secret("git", "gitlab/1/root/readonly", {"deploykey": "..."})
"""

import logging
from collections.abc import Callable, Mapping
from typing import Any, TypeVar

import hvac
from hvac.exceptions import (
    Forbidden,
    InvalidPath,
    InvalidRequest,
    Unauthorized,
    VaultDown,
    VaultError,
)
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from libs.platform.secrets.cancellation import CancellationToken, ensure_token
from libs.platform.secrets.exceptions import (
    SecretAccessError,
    SecretNotFoundError,
    SecretStoreError,
    SecretWriteError,
)
from libs.platform.secrets.store import KVSecret, SecretStore

logger = logging.getLogger(__name__)

_BACKEND = "vault"

T = TypeVar("T")

_BACKOFF = wait_exponential(multiplier=1, min=1, max=5)


def _retry_token(retry_state: RetryCallState) -> CancellationToken:
    # _read_with_retry(self, operation, path, token, call)
    return retry_state.args[3]


def _stop_when_cancelled(retry_state: RetryCallState) -> bool:
    return _retry_token(retry_state).cancelled


def _wait_within_deadline(retry_state: RetryCallState) -> float:
    """Exponential backoff, never sleeping past the caller's deadline."""
    delay = _BACKOFF(retry_state)
    remaining = _retry_token(retry_state).remaining()
    return delay if remaining is None else min(delay, remaining)


class VaultSecretStore(SecretStore):
    """
    HashiCorp Vault secret store.

    Authentication:
        - ``token`` given: used directly
        - otherwise ``role_id``/``secret_id`` perform an AppRole login at
          ``auth_path`` during construction

    Thread Safety:
        hvac's session is shared between threads; no per-path locking is done.
    """

    backend_name = _BACKEND

    def __init__(
        self,
        vault_url: str,
        token: str | None = None,
        role_id: str | None = None,
        secret_id: str | None = None,
        auth_path: str = "approle",
        ca_cert: str | None = None,
        verify: bool = True,
        timeout: int = 30,
    ) -> None:
        """
        Initialize VaultSecretStore with Vault connection parameters.

        Args:
            vault_url: Vault server URL (e.g., "https://vault.company.com:8200")
            token: Vault token. If None, an AppRole login is attempted.
            role_id: AppRole role ID (used when token is None)
            secret_id: AppRole secret ID (used when token is None)
            auth_path: Mount path of the AppRole auth backend. Default: "approle"
            ca_cert: Path to a CA bundle used to verify Vault's certificate
            verify: Verify TLS certificates when no ca_cert is given. Default: True
            timeout: HTTP timeout in seconds for every Vault call

        Raises:
            SecretAccessError: connection failure, authentication failure, or
                missing credentials
        """
        self._vault_url = vault_url
        self._verify: bool | str = ca_cert if ca_cert else verify

        try:
            self._client = hvac.Client(
                url=vault_url,
                token=token,
                verify=self._verify,
                timeout=timeout,
            )

            if not token:
                if not role_id or not secret_id:
                    raise SecretAccessError(
                        path="vault_auth",
                        backend=_BACKEND,
                        reason="Neither a token nor AppRole credentials were configured",
                    )
                self._client.auth.approle.login(
                    role_id=role_id,
                    secret_id=secret_id,
                    mount_point=auth_path,
                )
                logger.info(
                    "Logged in to Vault with AppRole",
                    extra={"vault_url": vault_url, "auth_path": auth_path, "backend": _BACKEND},
                )

            logger.info(
                "Vault client initialized",
                extra={"vault_url": vault_url, "backend": _BACKEND},
            )

        except SecretStoreError:
            raise
        except (Unauthorized, Forbidden, InvalidRequest) as e:
            raise SecretAccessError(
                path="vault_auth",
                backend=_BACKEND,
                reason=f"Vault authentication failed: {e}",
            ) from e
        except VaultDown as e:
            raise SecretAccessError(
                path="vault_connectivity",
                backend=_BACKEND,
                reason=f"Vault server unreachable at {vault_url}: {e}",
            ) from e
        except VaultError as e:
            logger.error(
                "Vault initialization failed - server error",
                extra={
                    "vault_url": vault_url,
                    "backend": _BACKEND,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            raise SecretAccessError(
                path="vault_init",
                backend=_BACKEND,
                reason=f"Vault initialization failed: {e}",
            ) from e

    # ------------------------------------------------------------------
    # Call helpers
    # ------------------------------------------------------------------

    def _read(
        self,
        operation: str,
        path: str,
        token: CancellationToken | None,
        call: Callable[[], T],
    ) -> T:
        token = ensure_token(token)
        try:
            return self._read_with_retry(operation, path, token, call)
        except VaultDown as e:
            # a deadline or cancel that cut the retries short wins over VaultDown
            token.raise_if_cancelled(operation)
            logger.error(
                "Vault unreachable after retries",
                extra={"operation": operation, "path": path, "backend": _BACKEND},
            )
            raise SecretAccessError(
                path=path,
                backend=_BACKEND,
                reason=f"Vault server unreachable: {e}",
            ) from e

    @retry(
        stop=stop_after_attempt(3) | _stop_when_cancelled,
        wait=_wait_within_deadline,
        retry=retry_if_exception_type(VaultDown),
        reraise=True,
    )
    def _read_with_retry(
        self,
        operation: str,
        path: str,
        token: CancellationToken,
        call: Callable[[], T],
    ) -> T:
        token.raise_if_cancelled(operation)
        try:
            return call()
        except SecretStoreError:
            raise
        except InvalidPath as e:
            raise SecretNotFoundError(path=path, backend=_BACKEND) from e
        except (Forbidden, Unauthorized) as e:
            raise SecretAccessError(
                path=path,
                backend=_BACKEND,
                reason=f"Permission denied during {operation}",
            ) from e
        except VaultDown:
            # Re-raise VaultDown to allow retry decorator to handle it
            # (VaultDown is a subclass of VaultError, so must be caught first)
            raise
        except VaultError as e:
            logger.error(
                "Vault read failed - server error",
                extra={
                    "operation": operation,
                    "path": path,
                    "backend": _BACKEND,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            raise SecretAccessError(
                path=path,
                backend=_BACKEND,
                reason=f"Vault error during {operation}: {e}",
            ) from e
        except (KeyError, ValueError, TypeError) as e:
            raise SecretAccessError(
                path=path,
                backend=_BACKEND,
                reason=f"Invalid response format during {operation}: {e}",
            ) from e

    def _write(
        self,
        operation: str,
        path: str,
        token: CancellationToken | None,
        call: Callable[[], T],
    ) -> T:
        ensure_token(token).raise_if_cancelled(operation)
        try:
            result = call()
        except SecretStoreError:
            raise
        except InvalidPath as e:
            raise SecretNotFoundError(path=path, backend=_BACKEND) from e
        except (Forbidden, Unauthorized) as e:
            raise SecretAccessError(
                path=path,
                backend=_BACKEND,
                reason=f"Permission denied during {operation}",
            ) from e
        except InvalidRequest as e:
            raise SecretWriteError(
                path=path,
                backend=_BACKEND,
                reason=f"Invalid request during {operation}: {e}",
            ) from e
        except VaultDown as e:
            raise SecretAccessError(
                path=path,
                backend=_BACKEND,
                reason=f"Vault server unreachable during {operation}: {e}",
            ) from e
        except VaultError as e:
            logger.error(
                "Vault write failed - server error",
                extra={
                    "operation": operation,
                    "path": path,
                    "backend": _BACKEND,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            raise SecretWriteError(
                path=path,
                backend=_BACKEND,
                reason=f"Vault error during {operation}: {e}",
            ) from e

        logger.info(
            "Vault write succeeded",
            extra={"operation": operation, "path": path, "backend": _BACKEND},
        )
        return result

    # ------------------------------------------------------------------
    # KV v2 secrets
    # ------------------------------------------------------------------

    def create_secret(
        self,
        collection: str,
        path: str,
        data: Mapping[str, Any],
        token: CancellationToken | None = None,
    ) -> int:
        response = self._write(
            "create_secret",
            f"{collection}/data/{path}",
            token,
            lambda: self._client.secrets.kv.v2.create_or_update_secret(
                path=path,
                secret=dict(data),
                mount_point=collection,
            ),
        )
        return int(response["data"]["version"])

    def get_secret(
        self, collection: str, path: str, token: CancellationToken | None = None
    ) -> KVSecret:
        full_path = f"{collection}/data/{path}"
        response = self._read(
            "get_secret",
            full_path,
            token,
            lambda: self._client.secrets.kv.v2.read_secret_version(
                path=path,
                mount_point=collection,
                raise_on_deleted_version=True,
            ),
        )
        body = response.get("data") or {}
        metadata = body.get("metadata") or {}
        return KVSecret(
            data=body.get("data") or {},
            version=int(metadata.get("version", 0)),
            metadata=metadata,
        )

    def delete_secret(
        self, collection: str, path: str, token: CancellationToken | None = None
    ) -> None:
        self._write(
            "delete_secret",
            f"{collection}/metadata/{path}",
            token,
            lambda: self._client.secrets.kv.v2.delete_metadata_and_all_versions(
                path=path,
                mount_point=collection,
            ),
        )

    def _read_metadata(
        self, collection: str, path: str, token: CancellationToken | None
    ) -> dict[str, Any]:
        response = self._read(
            "read_secret_metadata",
            f"{collection}/metadata/{path}",
            token,
            lambda: self._client.secrets.kv.v2.read_secret_metadata(
                path=path,
                mount_point=collection,
            ),
        )
        return response.get("data") or {}

    def get_secret_version_list(
        self, collection: str, path: str, token: CancellationToken | None = None
    ) -> list[int]:
        metadata = self._read_metadata(collection, path, token)
        return sorted(int(version) for version in (metadata.get("versions") or {}))

    def rollback_secret(
        self,
        collection: str,
        path: str,
        to_version: int,
        token: CancellationToken | None = None,
    ) -> None:
        """
        Re-write ``to_version`` as the newest version.

        Uses check-and-set against the current version so a concurrent writer
        makes the rollback fail instead of being silently overwritten.
        """
        full_path = f"{collection}/data/{path}"
        metadata = self._read_metadata(collection, path, token)
        current_version = int(metadata.get("current_version", 0))
        version_info = (metadata.get("versions") or {}).get(str(to_version))
        if version_info is None:
            raise SecretNotFoundError(
                path=full_path,
                backend=_BACKEND,
                additional_context=f"Version {to_version} does not exist",
            )
        if version_info.get("destroyed") or version_info.get("deletion_time"):
            raise SecretWriteError(
                path=full_path,
                backend=_BACKEND,
                reason=f"Cannot roll back to deleted or destroyed version {to_version}",
            )

        previous = self._read(
            "read_secret_version",
            full_path,
            token,
            lambda: self._client.secrets.kv.v2.read_secret_version(
                path=path,
                version=to_version,
                mount_point=collection,
                raise_on_deleted_version=True,
            ),
        )
        previous_data = (previous.get("data") or {}).get("data") or {}

        self._write(
            "rollback_secret",
            full_path,
            token,
            lambda: self._client.secrets.kv.v2.create_or_update_secret(
                path=path,
                secret=previous_data,
                cas=current_version,
                mount_point=collection,
            ),
        )

    # ------------------------------------------------------------------
    # Policies
    # ------------------------------------------------------------------

    def create_policy(
        self, name: str, document: str, token: CancellationToken | None = None
    ) -> None:
        self._write(
            "create_policy",
            f"sys/policy/{name}",
            token,
            lambda: self._client.sys.create_or_update_policy(name=name, policy=document),
        )

    def get_policy(self, name: str, token: CancellationToken | None = None) -> str:
        try:
            response = self._read(
                "get_policy",
                f"sys/policy/{name}",
                token,
                lambda: self._client.sys.read_policy(name=name),
            )
        except SecretNotFoundError:
            return ""
        if not response:
            return ""
        rules = (response.get("data") or {}).get("rules")
        if rules is None:
            rules = response.get("rules", "")
        return rules or ""

    def delete_policy(self, name: str, token: CancellationToken | None = None) -> None:
        self._write(
            "delete_policy",
            f"sys/policy/{name}",
            token,
            lambda: self._client.sys.delete_policy(name=name),
        )

    # ------------------------------------------------------------------
    # Generic logical API
    # ------------------------------------------------------------------

    def read(self, path: str, token: CancellationToken | None = None) -> dict[str, Any] | None:
        # hvac returns None for a 404 on logical reads
        response = self._read("read", path, token, lambda: self._client.read(path))
        if response is None:
            return None
        return dict(response.get("data") or {})

    def write(
        self, path: str, data: Mapping[str, Any], token: CancellationToken | None = None
    ) -> dict[str, Any] | None:
        response = self._write(
            "write",
            path,
            token,
            lambda: self._client.write_data(path, data=dict(data)),
        )
        # 204 responses come back as a requests.Response, not JSON
        if isinstance(response, dict):
            return response.get("data")
        return None

    def delete(self, path: str, token: CancellationToken | None = None) -> None:
        self._write("delete", path, token, lambda: self._client.delete(path))

    # ------------------------------------------------------------------
    # Auth backends
    # ------------------------------------------------------------------

    def enable_auth_backend(
        self, mount_path: str, auth_type: str, token: CancellationToken | None = None
    ) -> None:
        self._write(
            "enable_auth_backend",
            f"sys/auth/{mount_path}",
            token,
            lambda: self._client.sys.enable_auth_method(method_type=auth_type, path=mount_path),
        )

    def disable_auth_backend(
        self, mount_path: str, token: CancellationToken | None = None
    ) -> None:
        self._write(
            "disable_auth_backend",
            f"sys/auth/{mount_path}",
            token,
            lambda: self._client.sys.disable_auth_method(path=mount_path),
        )

    def health(self) -> bool:
        try:
            initialized = self._client.sys.is_initialized()
            sealed = self._client.sys.is_sealed()
        except (VaultError, OSError) as e:
            logger.error(
                "Vault health check failed",
                extra={"vault_url": self._vault_url, "backend": _BACKEND, "error": str(e)},
            )
            return False
        if not initialized or sealed:
            logger.error(
                "Vault is not initialized or is sealed",
                extra={
                    "vault_url": self._vault_url,
                    "initialized": initialized,
                    "sealed": sealed,
                    "backend": _BACKEND,
                },
            )
            return False
        return True

    def close(self) -> None:
        """Close the hvac client's HTTP adapter (connection pool)."""
        adapter = getattr(self._client, "adapter", None)
        if adapter and hasattr(adapter, "close"):
            adapter.close()
        logger.info("VaultSecretStore closed", extra={"backend": _BACKEND})
