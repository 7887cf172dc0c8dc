"""
Vault proxy core: request translation, name validation and the credential
lifecycle manager.

Quick Start:
    >>> from libs.platform.secrets import InMemorySecretStore
    >>> from libs.vault_proxy import CredentialLifecycleManager, parse_request
    >>> manager = CredentialLifecycleManager(InMemorySecretStore())
    >>> manager.create_secret(parse_request({"kind": "repo", ...}))
"""

from libs.vault_proxy.errors import (
    ActionNotAllowed,
    AuthenticationFailed,
    InputArgError,
    InternalServiceError,
    ResourceNotFound,
    TemplateError,
    TranslationError,
    VaultProxyError,
)
from libs.vault_proxy.manager import CredentialLifecycleManager, SecretInfo
from libs.vault_proxy.requests import (
    AuthRequest,
    AuthroleGrantRequest,
    AuthroleRequest,
    ClusterRequest,
    GitRequest,
    GrantTarget,
    RepoRequest,
    SecretMeta,
    SecretRequest,
    TenantGitRequest,
    TenantRepoRequest,
    parse_request,
    to_grant_request,
    to_secret_request,
)
from libs.vault_proxy.templates import SecretType

__all__ = [
    "CredentialLifecycleManager",
    "SecretInfo",
    # Requests
    "AuthRequest",
    "AuthroleGrantRequest",
    "AuthroleRequest",
    "ClusterRequest",
    "GitRequest",
    "RepoRequest",
    "TenantGitRequest",
    "TenantRepoRequest",
    "GrantTarget",
    "SecretMeta",
    "SecretRequest",
    "SecretType",
    "parse_request",
    "to_grant_request",
    "to_secret_request",
    # Errors
    "VaultProxyError",
    "InputArgError",
    "AuthenticationFailed",
    "ActionNotAllowed",
    "ResourceNotFound",
    "InternalServiceError",
    "TemplateError",
    "TranslationError",
]
