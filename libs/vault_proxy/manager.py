"""
Credential Lifecycle Manager.

Runs every mutation the vault proxy supports against a SecretStore:

    - create/delete of stored secrets and their read policies
    - enable/disable of auth backends and create/delete of their roles
    - grant/revoke of a secret's policy on an auth role

Every operation validates the names it will touch before the first store
call, refuses to start on an already cancelled token, and hands the same
CancellationToken to each store call it makes.

Rollback:
    create_secret writes the secret first and the policy second. If the
    policy write fails, the secret is returned to its previous version (or
    deleted when it had none), so a caller never sees a secret without a
    policy. A rollback failure is reported together with the policy failure.

Concurrency:
    No per-path locking. Two create_secret calls on the same path can
    interleave, and a rollback may then restore a version written by the
    other caller. Callers that need exactly-once semantics serialize.

Example:
    >>> manager = CredentialLifecycleManager(InMemorySecretStore())
    >>> info = manager.create_secret(GitRequest(...))
    >>> info.version
    1
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from libs.platform.secrets.cancellation import CancellationToken, ensure_token
from libs.platform.secrets.exceptions import (
    OperationCancelledError,
    SecretNotFoundError,
    SecretStoreError,
)
from libs.platform.secrets.store import SecretStore
from libs.vault_proxy.errors import (
    InputArgError,
    InternalServiceError,
    ResourceNotFound,
    TranslationError,
)
from libs.vault_proxy.requests import (
    AuthRequest,
    AuthroleRequest,
    GrantTarget,
    SecretRequest,
    to_grant_request,
    to_secret_request,
)
from libs.vault_proxy.validation import verify_names

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SecretInfo:
    """Result of create_secret: collection, sub-path and the version written."""

    name: str
    path: str
    version: int


class CredentialLifecycleManager:
    """
    Secret, policy, auth backend and role mutations with rollback.

    Args:
        store: SecretStore implementation shared across request threads.
    """

    def __init__(self, store: SecretStore) -> None:
        self.store = store

    # ------------------------------------------------------------------
    # Translation + validation
    # ------------------------------------------------------------------

    @staticmethod
    def _secret_request(request: BaseModel | SecretRequest) -> SecretRequest:
        if isinstance(request, SecretRequest):
            secret = request
        else:
            try:
                secret = to_secret_request(request)
            except TranslationError as e:
                raise InputArgError(f"convert to secret failed: {e}") from e
        verify_names(secret.full_path, secret.policy_name, what="secret")
        return secret

    @staticmethod
    def _grant_request(request: BaseModel) -> tuple[GrantTarget, SecretRequest]:
        try:
            target, secret = to_grant_request(request)
        except TranslationError as e:
            raise InputArgError(f"convert grant policy request failed: {e}") from e
        verify_names(target.role_path, what="role path")
        verify_names(secret.full_path, secret.policy_name, what="secret")
        return target, secret

    @staticmethod
    def _start(token: CancellationToken | None, operation: str) -> CancellationToken:
        """Resolve the token and refuse to begin once it is already cancelled."""
        token = ensure_token(token)
        try:
            token.raise_if_cancelled(operation)
        except OperationCancelledError as e:
            raise InternalServiceError(f"{operation} not started: {e}", original_error=e) from e
        return token

    # ------------------------------------------------------------------
    # Secrets
    # ------------------------------------------------------------------

    def create_secret(
        self, request: BaseModel | SecretRequest, token: CancellationToken | None = None
    ) -> SecretInfo:
        """
        Write the secret as a new version, then write its policy.

        Returns:
            SecretInfo with the version that was written

        Raises:
            InputArgError: request could not be translated, or a name is illegal
            InternalServiceError: store failure (policy failures include the
                rollback outcome)
        """
        secret = self._secret_request(request)
        token = self._start(token, "create_secret")

        try:
            version = self.store.create_secret(
                secret.secret_name, secret.secret_path, secret.secret_data, token=token
            )
        except SecretStoreError as e:
            raise InternalServiceError(
                f"create secret {secret.secret_path} in {secret.secret_name} failed: {e}",
                original_error=e,
            ) from e

        logger.info(
            "Secret written",
            extra={
                "collection": secret.secret_name,
                "path": secret.secret_path,
                "version": version,
            },
        )

        try:
            self.store.create_policy(secret.policy_name, secret.policy_data, token=token)
        except SecretStoreError as policy_error:
            outcome, rollback_error = self._rollback_to_previous(secret, token)
            message = (
                f"create policy {secret.policy_name} failed: {policy_error}; "
                f"secret {secret.secret_path} in {secret.secret_name}: {outcome}"
            )
            logger.error(
                "Policy write failed",
                extra={
                    "policy_name": secret.policy_name,
                    "collection": secret.secret_name,
                    "path": secret.secret_path,
                    "rollback": outcome,
                },
            )
            raise InternalServiceError(
                message, original_error=policy_error, rollback_error=rollback_error
            ) from policy_error

        return SecretInfo(name=secret.secret_name, path=secret.secret_path, version=version)

    def _rollback_to_previous(
        self, secret: SecretRequest, token: CancellationToken
    ) -> tuple[str, SecretStoreError | None]:
        """
        Undo the version just written.

        Returns:
            (outcome, error): what the rollback did, and the store failure
            that stopped it (None on success). Never raises.
        """
        try:
            versions = self.store.get_secret_version_list(
                secret.secret_name, secret.secret_path, token=token
            )
            if len(versions) > 1:
                self.store.rollback_secret(
                    secret.secret_name, secret.secret_path, versions[-2], token=token
                )
                return f"rolled back to version {versions[-2]}", None
            if len(versions) == 1:
                self.store.delete_secret(secret.secret_name, secret.secret_path, token=token)
                return "deleted secret", None
        except SecretStoreError as e:
            logger.error(
                "Secret rollback failed",
                extra={
                    "collection": secret.secret_name,
                    "path": secret.secret_path,
                    "error": str(e),
                },
            )
            return f"rollback failed: {e}", e
        return "no version found to roll back", None

    def delete_secret(
        self, request: BaseModel | SecretRequest, token: CancellationToken | None = None
    ) -> None:
        """
        Delete the policy, then the secret with all its versions.

        A failed policy delete leaves the secret untouched.
        """
        secret = self._secret_request(request)
        token = self._start(token, "delete_secret")

        try:
            self.store.delete_policy(secret.policy_name, token=token)
        except SecretStoreError as e:
            raise InternalServiceError(
                f"delete policy of {secret.secret_path} in {secret.secret_name} failed: {e}",
                original_error=e,
            ) from e

        try:
            self.store.delete_secret(secret.secret_name, secret.secret_path, token=token)
        except SecretStoreError as e:
            raise InternalServiceError(
                f"delete secret {secret.secret_path} in {secret.secret_name} failed: {e}",
                original_error=e,
            ) from e

        logger.info(
            "Secret deleted",
            extra={"collection": secret.secret_name, "path": secret.secret_path},
        )

    # ------------------------------------------------------------------
    # Auth backends
    # ------------------------------------------------------------------

    def enable_auth(self, request: AuthRequest, token: CancellationToken | None = None) -> None:
        """Mount the auth backend if it has no config yet, then (re)write its config."""
        verify_names(request.cluster_name, what="cluster name")
        if request.kubernetes is None:
            raise InputArgError(f"auth {request.cluster_name} has no kubernetes config")
        token = self._start(token, "enable_auth")
        config_path = f"auth/{request.cluster_name}/config"

        try:
            config = self.store.read(config_path, token=token)
        except SecretStoreError as e:
            raise InternalServiceError(
                f"get auth {request.cluster_name} info failed: {e}", original_error=e
            ) from e

        if config is None:
            logger.info(
                "Enabling auth backend",
                extra={"mount_path": request.cluster_name, "auth_type": request.auth_type},
            )
            try:
                self.store.enable_auth_backend(request.cluster_name, request.auth_type, token=token)
            except SecretStoreError as e:
                raise InternalServiceError(
                    f"create auth {request.cluster_name} failed: {e}", original_error=e
                ) from e

        options = {
            "kubernetes_host": request.kubernetes.url,
            "kubernetes_ca_cert": request.kubernetes.cabundle,
            "token_reviewer_jwt": request.kubernetes.usertoken,
        }
        try:
            self.store.write(config_path, options, token=token)
        except SecretStoreError as e:
            raise InternalServiceError(
                f"update auth {request.cluster_name} failed: {e}", original_error=e
            ) from e
        logger.info("Auth backend configured", extra={"mount_path": request.cluster_name})

    def disable_auth(self, request: AuthRequest, token: CancellationToken | None = None) -> None:
        verify_names(request.cluster_name, what="cluster name")
        token = self._start(token, "disable_auth")
        try:
            self.store.disable_auth_backend(request.cluster_name, token=token)
        except SecretStoreError as e:
            raise InternalServiceError(
                f"delete auth {request.cluster_name} failed: {e}", original_error=e
            ) from e
        logger.info("Auth backend disabled", extra={"mount_path": request.cluster_name})

    def get_auth(self, cluster_name: str, token: CancellationToken | None = None) -> dict[str, Any]:
        """
        Config of the auth backend mounted at ``cluster_name``.

        Raises:
            ResourceNotFound: no auth backend is configured there
            InternalServiceError: store failure
        """
        verify_names(cluster_name, what="cluster name")
        try:
            config = self.store.read(f"auth/{cluster_name}/config", token=ensure_token(token))
        except SecretStoreError as e:
            raise InternalServiceError(
                f"get auth {cluster_name} info failed: {e}", original_error=e
            ) from e
        if config is None:
            raise ResourceNotFound(f"can not find auth {cluster_name}")
        return config

    # ------------------------------------------------------------------
    # Auth roles
    # ------------------------------------------------------------------

    def create_role(self, request: AuthroleRequest, token: CancellationToken | None = None) -> None:
        verify_names(request.cluster_name, request.dest_user, what="cluster name or dest user")
        token = self._start(token, "create_role")
        self.get_auth(request.cluster_name, token=token)

        path = f"auth/{request.cluster_name}/role/{request.dest_user}"
        options = {
            "bound_service_account_namespaces": list(request.k8s.namespaces),
            "bound_service_account_names": list(request.k8s.serviceaccounts),
        }
        try:
            self.store.write(path, options, token=token)
        except SecretStoreError as e:
            raise InternalServiceError(
                f"create role {request.dest_user} failed: {e}", original_error=e
            ) from e
        logger.info("Role written", extra={"role_path": path})

    def delete_role(self, request: AuthroleRequest, token: CancellationToken | None = None) -> None:
        """Delete the role. Succeeds without a store write when the auth backend is gone."""
        verify_names(request.cluster_name, request.dest_user, what="cluster name or dest user")
        token = self._start(token, "delete_role")
        try:
            self.get_auth(request.cluster_name, token=token)
        except ResourceNotFound:
            logger.info(
                "Auth backend absent, nothing to delete",
                extra={"mount_path": request.cluster_name},
            )
            return

        path = f"auth/{request.cluster_name}/role/{request.dest_user}"
        try:
            self.store.delete(path, token=token)
        except SecretStoreError as e:
            raise InternalServiceError(
                f"delete role {request.dest_user} failed: {e}", original_error=e
            ) from e
        logger.info("Role deleted", extra={"role_path": path})

    # ------------------------------------------------------------------
    # Grants
    # ------------------------------------------------------------------

    def _ensure_secret_exists(self, secret: SecretRequest, token: CancellationToken) -> None:
        try:
            policy = self.store.get_policy(secret.policy_name, token=token)
            if not policy:
                raise ResourceNotFound(
                    f"secret {secret.full_path} is broken, you may need to recreate it: "
                    f"policy {secret.policy_name} is empty"
                )
            self.store.get_secret(secret.secret_name, secret.secret_path, token=token)
        except SecretNotFoundError as e:
            raise ResourceNotFound(
                f"secret {secret.full_path} is broken, you may need to recreate it: {e}"
            ) from e
        except SecretStoreError as e:
            raise InternalServiceError(
                f"check secret {secret.full_path} failed: {e}", original_error=e
            ) from e

    @staticmethod
    def _token_policies(role: dict[str, Any]) -> list[str]:
        return list(role.get("token_policies") or [])

    def grant_permission(self, request: BaseModel, token: CancellationToken | None = None) -> None:
        """
        Attach the secret's policy to the destination role.

        Idempotent: a policy already on the role causes no write.

        Raises:
            InputArgError: untranslatable request or illegal names
            ResourceNotFound: the secret, its policy or the role is absent
            InternalServiceError: store failure
        """
        target, secret = self._grant_request(request)
        token = self._start(token, "grant_permission")
        self._ensure_secret_exists(secret, token)

        try:
            role = self.store.read(target.role_path, token=token)
        except SecretStoreError as e:
            raise InternalServiceError(
                f"get {target.name} role info failed: {e}", original_error=e
            ) from e
        if role is None:
            raise ResourceNotFound(f"role {target.role_path} does not exist")

        policies = self._token_policies(role)
        if secret.policy_name in policies:
            logger.debug(
                "Policy already granted",
                extra={"policy_name": secret.policy_name, "role_path": target.role_path},
            )
            return

        role["token_policies"] = [*policies, secret.policy_name]
        try:
            self.store.write(target.role_path, role, token=token)
        except SecretStoreError as e:
            raise InternalServiceError(
                f"grant {secret.full_path} to {target.name} failed: {e}", original_error=e
            ) from e
        logger.info(
            "Policy granted",
            extra={"policy_name": secret.policy_name, "role_path": target.role_path},
        )

    def revoke_permission(self, request: BaseModel, token: CancellationToken | None = None) -> None:
        """Detach the secret's policy from the role. A missing role is a no-op."""
        target, secret = self._grant_request(request)
        token = self._start(token, "revoke_permission")

        try:
            role = self.store.read(target.role_path, token=token)
        except SecretStoreError as e:
            raise InternalServiceError(
                f"get {target.name} role info failed: {e}", original_error=e
            ) from e
        if role is None:
            logger.warning(
                "Role does not exist, nothing to revoke", extra={"role_path": target.role_path}
            )
            return

        role["token_policies"] = [p for p in self._token_policies(role) if p != secret.policy_name]
        try:
            self.store.write(target.role_path, role, token=token)
        except SecretStoreError as e:
            raise InternalServiceError(
                f"revoke policy {secret.policy_name} from {target.role_path} failed: {e}",
                original_error=e,
            ) from e
        logger.info(
            "Policy revoked",
            extra={"policy_name": secret.policy_name, "role_path": target.role_path},
        )

    def health(self) -> bool:
        return self.store.health()
