"""
In-Memory SecretStore Backend.

This module implements InMemorySecretStore, a process-local store with the
same observable behavior as the Vault backend for everything the credential
lifecycle manager relies on: versioned KV collections, policies, logical
paths and auth mounts.

**WARNING**: Local development and tests only. Nothing is persisted.

Behavior notes:
    - Each KV path keeps an append-only version list starting at 1
    - ``delete_secret`` removes metadata and every version
    - ``rollback_secret`` appends a copy of an older version as a new version
    - Logical writes under ``auth/<mount>/`` require the mount to be enabled
    - Disabling an auth mount drops its config and roles
"""

import copy
import logging
import threading
from collections.abc import Iterable, Mapping
from typing import Any

from libs.platform.secrets.cancellation import CancellationToken, ensure_token
from libs.platform.secrets.exceptions import SecretNotFoundError, SecretWriteError
from libs.platform.secrets.store import KVSecret, SecretStore

logger = logging.getLogger(__name__)

_BACKEND = "memory"


class InMemorySecretStore(SecretStore):
    """
    Thread-safe in-memory secret store.

    Args:
        collections: KV mounts that exist. None allows any collection name.
        sealed: Report the store as sealed from ``health()``.
    """

    backend_name = _BACKEND

    def __init__(self, collections: Iterable[str] | None = None, sealed: bool = False) -> None:
        self._lock = threading.Lock()
        self._collections = set(collections) if collections is not None else None
        self._versions: dict[tuple[str, str], list[dict[str, Any]]] = {}
        self._policies: dict[str, str] = {}
        self._logical: dict[str, dict[str, Any]] = {}
        self._auth_mounts: dict[str, str] = {}
        self.sealed = sealed

    def _check_collection(self, collection: str) -> None:
        if self._collections is not None and collection not in self._collections:
            raise SecretNotFoundError(
                path=collection,
                backend=_BACKEND,
                additional_context="No KV collection mounted at this path",
            )

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
        ensure_token(token).raise_if_cancelled("create_secret")
        with self._lock:
            self._check_collection(collection)
            versions = self._versions.setdefault((collection, path), [])
            versions.append(copy.deepcopy(dict(data)))
            return len(versions)

    def get_secret(
        self, collection: str, path: str, token: CancellationToken | None = None
    ) -> KVSecret:
        ensure_token(token).raise_if_cancelled("get_secret")
        with self._lock:
            self._check_collection(collection)
            versions = self._versions.get((collection, path))
            if not versions:
                raise SecretNotFoundError(path=f"{collection}/data/{path}", backend=_BACKEND)
            return KVSecret(
                data=copy.deepcopy(versions[-1]),
                version=len(versions),
                metadata={"version": len(versions)},
            )

    def delete_secret(
        self, collection: str, path: str, token: CancellationToken | None = None
    ) -> None:
        ensure_token(token).raise_if_cancelled("delete_secret")
        with self._lock:
            self._check_collection(collection)
            self._versions.pop((collection, path), None)

    def rollback_secret(
        self,
        collection: str,
        path: str,
        to_version: int,
        token: CancellationToken | None = None,
    ) -> None:
        ensure_token(token).raise_if_cancelled("rollback_secret")
        with self._lock:
            self._check_collection(collection)
            versions = self._versions.get((collection, path))
            if not versions or not 1 <= to_version <= len(versions):
                raise SecretNotFoundError(
                    path=f"{collection}/data/{path}",
                    backend=_BACKEND,
                    additional_context=f"Version {to_version} does not exist",
                )
            versions.append(copy.deepcopy(versions[to_version - 1]))

    def get_secret_version_list(
        self, collection: str, path: str, token: CancellationToken | None = None
    ) -> list[int]:
        ensure_token(token).raise_if_cancelled("get_secret_version_list")
        with self._lock:
            self._check_collection(collection)
            versions = self._versions.get((collection, path))
            if versions is None:
                raise SecretNotFoundError(path=f"{collection}/metadata/{path}", backend=_BACKEND)
            return list(range(1, len(versions) + 1))

    # ------------------------------------------------------------------
    # Policies
    # ------------------------------------------------------------------

    def create_policy(
        self, name: str, document: str, token: CancellationToken | None = None
    ) -> None:
        ensure_token(token).raise_if_cancelled("create_policy")
        with self._lock:
            self._policies[name] = document

    def get_policy(self, name: str, token: CancellationToken | None = None) -> str:
        ensure_token(token).raise_if_cancelled("get_policy")
        with self._lock:
            return self._policies.get(name, "")

    def delete_policy(self, name: str, token: CancellationToken | None = None) -> None:
        ensure_token(token).raise_if_cancelled("delete_policy")
        with self._lock:
            self._policies.pop(name, None)

    # ------------------------------------------------------------------
    # Generic logical API
    # ------------------------------------------------------------------

    def _check_auth_mount(self, path: str) -> None:
        parts = path.split("/")
        if len(parts) >= 2 and parts[0] == "auth" and parts[1] not in self._auth_mounts:
            raise SecretNotFoundError(
                path=path,
                backend=_BACKEND,
                additional_context=f"No auth backend mounted at {parts[1]}",
            )

    def read(self, path: str, token: CancellationToken | None = None) -> dict[str, Any] | None:
        ensure_token(token).raise_if_cancelled("read")
        with self._lock:
            data = self._logical.get(path)
            return copy.deepcopy(data) if data is not None else None

    def write(
        self, path: str, data: Mapping[str, Any], token: CancellationToken | None = None
    ) -> dict[str, Any] | None:
        ensure_token(token).raise_if_cancelled("write")
        with self._lock:
            self._check_auth_mount(path)
            self._logical[path] = copy.deepcopy(dict(data))
        return None

    def delete(self, path: str, token: CancellationToken | None = None) -> None:
        ensure_token(token).raise_if_cancelled("delete")
        with self._lock:
            self._logical.pop(path, None)

    # ------------------------------------------------------------------
    # Auth backends
    # ------------------------------------------------------------------

    def enable_auth_backend(
        self, mount_path: str, auth_type: str, token: CancellationToken | None = None
    ) -> None:
        ensure_token(token).raise_if_cancelled("enable_auth_backend")
        with self._lock:
            if mount_path in self._auth_mounts:
                raise SecretWriteError(
                    path=f"sys/auth/{mount_path}",
                    backend=_BACKEND,
                    reason="path is already in use",
                )
            self._auth_mounts[mount_path] = auth_type
        logger.info(
            "Auth backend enabled",
            extra={"mount_path": mount_path, "auth_type": auth_type, "backend": _BACKEND},
        )

    def disable_auth_backend(
        self, mount_path: str, token: CancellationToken | None = None
    ) -> None:
        ensure_token(token).raise_if_cancelled("disable_auth_backend")
        prefix = f"auth/{mount_path}/"
        with self._lock:
            self._auth_mounts.pop(mount_path, None)
            for path in [p for p in self._logical if p.startswith(prefix)]:
                del self._logical[path]

    def auth_backends(self) -> dict[str, str]:
        """Mounted auth backends as ``{mount_path: auth_type}``."""
        with self._lock:
            return dict(self._auth_mounts)

    def health(self) -> bool:
        return not self.sealed
