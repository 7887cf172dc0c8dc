"""
Authorization engine for vault proxy requests.

Check order:
    every request:         translate -> name character check
    secret/auth requests:  blacklist(subject, full_path)   -> resource ACL(subject, full_path, action)
    grant requests:        blacklist(subject, role_path)   -> grant ACL(subject, full_path, dest name)

The three rule sets live in one immutable AuthorizationRules snapshot. A
check reads the snapshot reference once, so a concurrent reload never mixes
old and new rules inside one decision. Reload builds a new snapshot and
swaps the reference; a snapshot that fails to load is discarded and the
current one stays active.
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Iterable
from enum import Enum
from pathlib import Path

from pydantic import BaseModel

from libs.platform.authorization.identity import Identity
from libs.platform.authorization.rules import AuthorizationRules, RuleSetError, load_rules
from libs.vault_proxy.errors import (
    ActionNotAllowed,
    InputArgError,
    InternalServiceError,
    TranslationError,
)
from libs.vault_proxy.requests import GrantTarget, to_grant_request, to_secret_request
from libs.vault_proxy.validation import verify_names

logger = logging.getLogger(__name__)


class CheckKind(str, Enum):
    """Which rule path an operation is checked against."""

    SECRET = "basic"
    GRANT = "grant"


class Authorizer:
    """
    Blacklist, resource ACL and grant ACL enforcement with hot reload.

    Args:
        rules: Initial snapshot.
        resource_acl_path: Resource ACL file used by ``reload()``.
        permission_acl_path: Grant ACL file used by ``reload()``.
        tenant_names: Tenants whose auth mounts are blacklisted for the runtime subject.
    """

    def __init__(
        self,
        rules: AuthorizationRules,
        resource_acl_path: str | Path | None = None,
        permission_acl_path: str | Path | None = None,
        tenant_names: Iterable[str] = (),
    ) -> None:
        self._rules = rules
        self._reload_lock = threading.Lock()
        self.resource_acl_path = resource_acl_path
        self.permission_acl_path = permission_acl_path
        self.tenant_names = tuple(tenant_names)

    @classmethod
    def from_files(
        cls,
        resource_acl_path: str | Path,
        permission_acl_path: str | Path,
        tenant_names: Iterable[str] = (),
    ) -> Authorizer:
        """
        Build an authorizer from rule files.

        Raises:
            RuleSetError: a rule file is missing or malformed
        """
        tenants = tuple(tenant_names)
        rules = load_rules(resource_acl_path, permission_acl_path, tenants)
        logger.info(
            "Authorization rules loaded",
            extra={
                "resource_acl": str(resource_acl_path),
                "permission_acl": str(permission_acl_path),
                "tenants": list(tenants),
            },
        )
        return cls(rules, resource_acl_path, permission_acl_path, tenants)

    @property
    def rules(self) -> AuthorizationRules:
        return self._rules

    def swap(self, rules: AuthorizationRules) -> None:
        """Replace the active snapshot."""
        self._rules = rules

    def reload(self) -> bool:
        """
        Re-read the rule files and swap in the new snapshot.

        Returns:
            True if the new rules are active, False if loading failed and the
            previous snapshot was kept.
        """
        if self.resource_acl_path is None or self.permission_acl_path is None:
            raise RuntimeError("Authorizer was built without rule file paths")

        with self._reload_lock:
            try:
                rules = load_rules(
                    self.resource_acl_path, self.permission_acl_path, self.tenant_names
                )
            except RuleSetError as e:
                logger.error(
                    "Rule reload failed, keeping current rules",
                    extra={"error": str(e)},
                )
                return False
            self.swap(rules)
        logger.info("Authorization rules reloaded")
        return True

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def check_secret_permission(self, user: str, resource: str, action: str) -> None:
        """
        Raises:
            ActionNotAllowed: blacklisted, or no resource ACL rule permits it
        """
        rules = self._rules
        if rules.blacklist.denies(user, resource):
            raise ActionNotAllowed(f"{user} {resource} is in blacklist")
        if not rules.resource_acl.permits(user, resource, action):
            raise ActionNotAllowed(f"{user} {action} {resource} not allowed")

    def check_grant_permission(self, user: str, resource: str, target: GrantTarget) -> None:
        """
        Raises:
            ActionNotAllowed: role path blacklisted, or grant ACL denies
        """
        rules = self._rules
        if rules.blacklist.denies(user, target.role_path):
            raise ActionNotAllowed(f"{user} {target.role_path} is in blacklist")
        if not rules.grant_acl.permits(user, resource, target.name):
            raise ActionNotAllowed(f"{user} can not grant {resource} to {target.role_path}")

    def authorize_request(
        self,
        check_kind: CheckKind,
        identity: Identity | None,
        request: BaseModel,
        action: str | None = None,
    ) -> None:
        """
        Translate ``request`` and run the checks for ``check_kind``.

        Raises:
            InputArgError: missing identity/action, untranslatable request, or a
                path/name outside [A-Za-z0-9/-]
            ActionNotAllowed: the rules deny the request
            InternalServiceError: rule evaluation itself failed
        """
        if identity is None or not identity.subject:
            raise InputArgError("request has no authenticated identity")

        if check_kind is CheckKind.SECRET and not action:
            raise InputArgError("secret permission check requires an action")

        target: GrantTarget | None = None
        try:
            if check_kind is CheckKind.SECRET:
                secret = to_secret_request(request)
            else:
                target, secret = to_grant_request(request)
        except TranslationError as e:
            raise InputArgError(f"can not convert request type: {e}") from e

        verify_names(secret.full_path, secret.policy_name, what="secret")
        if target is not None:
            verify_names(target.role_path, what="role path")

        try:
            if target is None:
                self.check_secret_permission(identity.subject, secret.full_path, action or "")
            else:
                self.check_grant_permission(identity.subject, secret.full_path, target)
        except ActionNotAllowed as e:
            logger.warning(
                "Request denied",
                extra={"subject": identity.subject, "check": check_kind.value, "reason": e.message},
            )
            raise
        except (re.error, TypeError, ValueError) as e:
            raise InternalServiceError(f"rule evaluation failed: {e}", original_error=e) from e
