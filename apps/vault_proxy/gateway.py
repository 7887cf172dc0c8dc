"""
Vault proxy request pipeline.

The gateway is the seam a transport (HTTP, gRPC) calls with an operation
name, the raw request payload and the verified peer certificate. For every
operation except health it runs, in order:

    1. identity    - subject commonName from the client certificate
    2. parsing     - payload -> request variant of the operation
    3. authorize   - blacklist + resource ACL (basic) or grant ACL (grant)
    4. dispatch    - CredentialLifecycleManager call with a deadline token

Each call runs in its own LogContext, so all of its log lines share a trace ID.

Example:
    >>> gateway = VaultProxyGateway(manager, authorizer)
    >>> gateway.handle("Secret/CreateGit", payload, peer_cert)
    {'secret': {'name': 'git', 'path': 'gitlab/1/root/readonly', 'version': 1}}
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass
from typing import Any

from pydantic import BaseModel, ValidationError

from libs.common.logging import LogContext
from libs.platform.authorization import Authorizer, CheckKind, identity_from_peer_certificate
from libs.platform.secrets import CancellationToken
from libs.vault_proxy.errors import InputArgError, VaultProxyError
from libs.vault_proxy.manager import CredentialLifecycleManager
from libs.vault_proxy.requests import (
    AuthRequest,
    AuthroleGrantRequest,
    AuthroleRequest,
    ClusterRequest,
    GitRequest,
    RepoRequest,
    TenantGitRequest,
    TenantRepoRequest,
)

logger = logging.getLogger(__name__)

Handler = Callable[[CredentialLifecycleManager, Any, CancellationToken], dict[str, Any]]

HEALTH_OPERATION = "Health/Health"


@dataclass(frozen=True)
class Operation:
    """
    One entry of the operation table.

    ``secret_kind`` restricts the ``secret_options`` kind of grant requests,
    so e.g. GrantAuthroleGitPolicy only accepts git secrets.
    """

    name: str
    check: CheckKind
    request_type: type[BaseModel]
    handler: Handler
    action: str | None = None
    secret_kind: str | None = None


# ============================================================================
# Handlers
# ============================================================================


def _create_secret(
    manager: CredentialLifecycleManager, request: BaseModel, token: CancellationToken
) -> dict[str, Any]:
    info = manager.create_secret(request, token=token)
    return {"secret": asdict(info)}


def _create_repo_secret(
    manager: CredentialLifecycleManager, request: RepoRequest, token: CancellationToken
) -> dict[str, Any]:
    if request.account is None or not request.account.username:
        raise InputArgError("repo account is empty")
    return _create_secret(manager, request, token)


def _delete_secret(
    manager: CredentialLifecycleManager, request: BaseModel, token: CancellationToken
) -> dict[str, Any]:
    manager.delete_secret(request, token=token)
    return {}


def _enable_auth(
    manager: CredentialLifecycleManager, request: AuthRequest, token: CancellationToken
) -> dict[str, Any]:
    manager.enable_auth(request, token=token)
    return {}


def _disable_auth(
    manager: CredentialLifecycleManager, request: AuthRequest, token: CancellationToken
) -> dict[str, Any]:
    manager.disable_auth(request, token=token)
    return {}


def _create_role(
    manager: CredentialLifecycleManager, request: AuthroleRequest, token: CancellationToken
) -> dict[str, Any]:
    manager.create_role(request, token=token)
    return {}


def _delete_role(
    manager: CredentialLifecycleManager, request: AuthroleRequest, token: CancellationToken
) -> dict[str, Any]:
    manager.delete_role(request, token=token)
    return {}


def _grant(
    manager: CredentialLifecycleManager, request: AuthroleGrantRequest, token: CancellationToken
) -> dict[str, Any]:
    manager.grant_permission(request, token=token)
    return {}


def _revoke(
    manager: CredentialLifecycleManager, request: AuthroleGrantRequest, token: CancellationToken
) -> dict[str, Any]:
    manager.revoke_permission(request, token=token)
    return {}


# ============================================================================
# Operation table
# ============================================================================


def _secret_ops(
    create: str, deletes: tuple[str, ...], request_type: type[BaseModel], create_handler: Handler
) -> list[Operation]:
    ops = [Operation(f"Secret/{create}", CheckKind.SECRET, request_type, create_handler, "POST")]
    ops.extend(
        Operation(f"Secret/{name}", CheckKind.SECRET, request_type, _delete_secret, "DELETE")
        for name in deletes
    )
    return ops


def _grant_ops(policy: str, secret_kind: str) -> list[Operation]:
    return [
        Operation(
            f"AuthGrant/{verb}Authrole{policy}Policy",
            CheckKind.GRANT,
            AuthroleGrantRequest,
            handler,
            secret_kind=secret_kind,
        )
        for verb, handler in (("Grant", _grant), ("Revoke", _revoke))
    ]


OPERATIONS: dict[str, Operation] = {
    op.name: op
    for op in [
        *_secret_ops("CreateGit", ("DeleteGit",), GitRequest, _create_secret),
        *_secret_ops(
            "CreateRepoAccount",
            ("DeleteRepoAccountProduct", "DeleteRepoAccountProject"),
            RepoRequest,
            _create_repo_secret,
        ),
        *_secret_ops("CreateTenantGit", ("DeleteTenantGit",), TenantGitRequest, _create_secret),
        *_secret_ops("CreateTenantRepo", ("DeleteTenantRepo",), TenantRepoRequest, _create_secret),
        *_secret_ops("CreateCluster", ("DeleteCluster",), ClusterRequest, _create_secret),
        Operation("Auth/CreateAuth", CheckKind.SECRET, AuthRequest, _enable_auth, "POST"),
        Operation("Auth/DeleteAuth", CheckKind.SECRET, AuthRequest, _disable_auth, "DELETE"),
        Operation("Auth/CreateAuthrole", CheckKind.SECRET, AuthroleRequest, _create_role, "POST"),
        Operation("Auth/DeleteAuthrole", CheckKind.SECRET, AuthroleRequest, _delete_role, "DELETE"),
        *_grant_ops("Git", "git"),
        *_grant_ops("Repo", "repo"),
        *_grant_ops("Cluster", "cluster"),
        *_grant_ops("TenantGit", "tenant-git"),
        *_grant_ops("TenantRepo", "tenant-repo"),
    ]
}


# ============================================================================
# Gateway
# ============================================================================


class VaultProxyGateway:
    """
    Authenticate, authorize and dispatch vault proxy operations.

    Args:
        manager: Lifecycle manager that performs the store mutations.
        authorizer: Rule engine; its snapshot may be swapped concurrently.
        request_timeout: Deadline in seconds for all store calls of one operation.
    """

    def __init__(
        self,
        manager: CredentialLifecycleManager,
        authorizer: Authorizer,
        request_timeout: float | None = 30.0,
    ) -> None:
        self.manager = manager
        self.authorizer = authorizer
        self.request_timeout = request_timeout

    def health(self) -> dict[str, bool]:
        vault = self.manager.health()
        return {"standby": vault, "vault": vault}

    @staticmethod
    def _parse(operation: Operation, payload: Mapping[str, Any] | BaseModel) -> BaseModel:
        if isinstance(payload, operation.request_type):
            request = payload
        else:
            data = payload.model_dump() if isinstance(payload, BaseModel) else dict(payload)
            try:
                request = operation.request_type.model_validate(data)
            except ValidationError as e:
                raise InputArgError(f"invalid {operation.name} request: {e}") from e

        if operation.secret_kind is not None:
            kind = request.secret_options.kind  # type: ignore[attr-defined]
            if kind != operation.secret_kind:
                raise InputArgError(
                    f"{operation.name} expects a {operation.secret_kind} secret, got {kind}"
                )
        return request

    def handle(
        self,
        operation_name: str,
        payload: Mapping[str, Any] | BaseModel | None,
        peer_cert: Mapping[str, Any] | None,
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Run one operation end to end.

        Raises:
            InputArgError: unknown operation or malformed payload
            AuthenticationFailed: no verified client certificate
            ActionNotAllowed: authorization denied
            ResourceNotFound / InternalServiceError: from the lifecycle manager
        """
        with LogContext(trace_id):
            if operation_name == HEALTH_OPERATION:
                return self.health()

            operation = OPERATIONS.get(operation_name)
            if operation is None:
                raise InputArgError(f"unknown operation {operation_name!r}")

            try:
                identity = identity_from_peer_certificate(peer_cert)
                request = self._parse(operation, payload or {})
                self.authorizer.authorize_request(
                    operation.check, identity, request, operation.action
                )
                token = CancellationToken.with_timeout(self.request_timeout)
                result = operation.handler(self.manager, request, token)
            except VaultProxyError as e:
                logger.warning(
                    "Operation failed",
                    extra={"operation": operation_name, "reason": e.reason, "error": e.message},
                )
                raise

            logger.info(
                "Operation completed",
                extra={"operation": operation_name, "subject": identity.subject},
            )
            return result
