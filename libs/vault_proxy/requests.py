"""
Inbound request variants and their translation to SecretRequest/GrantTarget.

Every request shape is a pydantic model tagged with a ``kind`` literal, so
a raw payload is parsed into exactly one variant and translation is looked
up in a table keyed by that tag:

    git / repo / cluster / tenant-git / tenant-repo -> SecretRequest with data + policy
    auth / authrole                                 -> SecretRequest with only full_path
    grant                                           -> (GrantTarget, SecretRequest)

Example:
    >>> req = GitRequest(provider_type="gitlab", repo_id="1", username="root",
    ...                  permission="readonly",
    ...                  account=GitAccount(access_type="deploykey", deploy_key="..."))
    >>> to_secret_request(req).full_path
    'git/data/gitlab/1/root/readonly'
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from libs.vault_proxy import templates
from libs.vault_proxy.errors import TranslationError
from libs.vault_proxy.templates import SecretType

# ============================================================================
# Translated shapes
# ============================================================================


@dataclass(frozen=True)
class SecretMeta:
    """Canonical names of one secret. ``full_path`` is what gets authorized."""

    secret_name: str
    secret_path: str
    secret_type: str
    full_path: str
    policy_name: str


@dataclass(frozen=True)
class SecretRequest:
    """SecretMeta plus the data to store and the policy document to write."""

    meta: SecretMeta
    secret_data: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    policy_data: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "secret_data", MappingProxyType(dict(self.secret_data)))

    @property
    def secret_name(self) -> str:
        return self.meta.secret_name

    @property
    def secret_path(self) -> str:
        return self.meta.secret_path

    @property
    def secret_type(self) -> str:
        return self.meta.secret_type

    @property
    def full_path(self) -> str:
        return self.meta.full_path

    @property
    def policy_name(self) -> str:
        return self.meta.policy_name


@dataclass(frozen=True)
class GrantTarget:
    """Destination auth role of a grant; ``name`` is used for grant-ACL matching."""

    role_path: str
    name: str


# ============================================================================
# Account payloads
# ============================================================================


class GitAccount(BaseModel):
    """Deploy key (or access token) for a git provider."""

    access_type: str = Field(default="deploykey", description="Key name stored in the secret")
    deploy_key: str = ""

    def secret_data(self) -> dict[str, Any]:
        return {self.access_type: self.deploy_key}


class RepoAccount(BaseModel):
    username: str = ""
    password: str = ""

    def secret_data(self) -> dict[str, Any]:
        return {"username": self.username, "password": self.password}


class ClusterCert(BaseModel):
    client_cert: str
    client_key: str


class ClusterOAuth(BaseModel):
    username: str
    password: str


class ClusterAccount(BaseModel):
    """Any combination of cert, oauth, token and kubeconfig credentials."""

    cert: ClusterCert | None = None
    oauth: ClusterOAuth | None = None
    token: str = ""
    kubeconfig: str = ""

    def secret_data(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.cert is not None:
            data["cert"] = self.cert.client_cert
            data["key"] = self.cert.client_key
        if self.oauth is not None:
            data["username"] = self.oauth.username
            data["password"] = self.oauth.password
        if self.token:
            data["token"] = self.token
        if self.kubeconfig:
            data["kubeconfig"] = self.kubeconfig
        return data


class KubernetesAuthConfig(BaseModel):
    url: str = Field(..., description="Kubernetes API server URL")
    cabundle: str = Field(default="", description="PEM CA bundle of the API server")
    usertoken: str = Field(default="", description="Token reviewer JWT")


class RoleBinding(BaseModel):
    namespaces: list[str] = Field(default_factory=list)
    serviceaccounts: list[str] = Field(default_factory=list)


# ============================================================================
# Request variants
# ============================================================================


class GitRequest(BaseModel):
    kind: Literal["git"] = "git"
    provider_type: str
    repo_id: str
    username: str
    permission: str
    account: GitAccount | None = None
    additional_kvs: dict[str, str] = Field(default_factory=dict)


class RepoRequest(BaseModel):
    kind: Literal["repo"] = "repo"
    provider_id: str
    repo_type: str
    repo_id: str
    username: str
    permission: str
    account: RepoAccount | None = None


class ClusterRequest(BaseModel):
    kind: Literal["cluster"] = "cluster"
    cluster_type: str
    cluster_id: str
    username: str
    permission: str
    account: ClusterAccount | None = None


class TenantGitRequest(BaseModel):
    kind: Literal["tenant-git"] = "tenant-git"
    id: str
    permission: str
    account: GitAccount | None = None


class TenantRepoRequest(BaseModel):
    kind: Literal["tenant-repo"] = "tenant-repo"
    id: str
    permission: str
    account: RepoAccount | None = None


class AuthRequest(BaseModel):
    """Enable/disable an auth backend mounted at ``cluster_name``."""

    kind: Literal["auth"] = "auth"
    cluster_name: str
    auth_type: str = "kubernetes"
    kubernetes: KubernetesAuthConfig | None = None


class AuthroleRequest(BaseModel):
    """Create/delete role ``dest_user`` in the auth backend ``cluster_name``."""

    kind: Literal["authrole"] = "authrole"
    cluster_name: str
    dest_user: str
    k8s: RoleBinding = Field(default_factory=RoleBinding)


SecretVariant = Annotated[
    Union[GitRequest, RepoRequest, ClusterRequest, TenantGitRequest, TenantRepoRequest],
    Field(discriminator="kind"),
]


class AuthroleGrantRequest(BaseModel):
    """Grant/revoke the policy of ``secret_options`` on role ``dest_user``."""

    kind: Literal["grant"] = "grant"
    cluster_name: str
    dest_user: str
    secret_options: SecretVariant


AnyRequest = Annotated[
    Union[
        GitRequest,
        RepoRequest,
        ClusterRequest,
        TenantGitRequest,
        TenantRepoRequest,
        AuthRequest,
        AuthroleRequest,
        AuthroleGrantRequest,
    ],
    Field(discriminator="kind"),
]

_REQUEST_ADAPTER: TypeAdapter[Any] = TypeAdapter(AnyRequest)


def parse_request(payload: Mapping[str, Any]) -> BaseModel:
    """
    Parse a raw payload into its request variant using the ``kind`` tag.

    Raises:
        TranslationError: unknown kind or invalid fields
    """
    try:
        return _REQUEST_ADAPTER.validate_python(dict(payload))
    except ValidationError as e:
        raise TranslationError(f"invalid request payload: {e}") from e


# ============================================================================
# Translation
# ============================================================================


def _template_fields(request: BaseModel) -> dict[str, Any]:
    return request.model_dump(exclude={"kind", "account", "additional_kvs"})


def _stored_secret(
    secret_type: SecretType, request: BaseModel, secret_data: dict[str, Any]
) -> SecretRequest:
    paths = templates.resolve(secret_type, _template_fields(request))
    return SecretRequest(
        meta=SecretMeta(
            secret_name=paths.secret_name,
            secret_path=paths.secret_path,
            secret_type=secret_type.value,
            full_path=paths.full_path,
            policy_name=paths.policy_name,
        ),
        secret_data=secret_data,
        policy_data=paths.policy_data,
    )


def _account_data(request: Any) -> dict[str, Any]:
    return request.account.secret_data() if request.account is not None else {}


def _git(request: GitRequest) -> SecretRequest:
    data: dict[str, Any] = dict(request.additional_kvs)
    data.update(_account_data(request))
    return _stored_secret(SecretType.GIT, request, data)


def _repo(request: RepoRequest) -> SecretRequest:
    return _stored_secret(SecretType.REPO, request, _account_data(request))


def _cluster(request: ClusterRequest) -> SecretRequest:
    return _stored_secret(SecretType.CLUSTER, request, _account_data(request))


def _tenant_git(request: TenantGitRequest) -> SecretRequest:
    return _stored_secret(SecretType.TENANT_GIT, request, _account_data(request))


def _tenant_repo(request: TenantRepoRequest) -> SecretRequest:
    return _stored_secret(SecretType.TENANT_REPO, request, _account_data(request))


def _path_only(full_path: str) -> SecretRequest:
    return SecretRequest(
        meta=SecretMeta(
            secret_name="",
            secret_path="",
            secret_type="",
            full_path=full_path,
            policy_name="",
        )
    )


def _auth(request: AuthRequest) -> SecretRequest:
    path = templates.render("auth/{cluster_name}", {"cluster_name": request.cluster_name})
    return _path_only(path)


def _authrole(request: AuthroleRequest) -> SecretRequest:
    return _path_only(templates.role_path(request.cluster_name, request.dest_user))


_SECRET_TRANSLATORS: dict[str, Callable[[Any], SecretRequest]] = {
    "git": _git,
    "repo": _repo,
    "cluster": _cluster,
    "tenant-git": _tenant_git,
    "tenant-repo": _tenant_repo,
    "auth": _auth,
    "authrole": _authrole,
}


def to_secret_request(request: BaseModel) -> SecretRequest:
    """
    Translate a secret/auth/authrole variant into its SecretRequest.

    Raises:
        TranslationError: not a secret-shaped variant, or templating failed
    """
    kind = getattr(request, "kind", None)
    translator = _SECRET_TRANSLATORS.get(kind) if isinstance(kind, str) else None
    if translator is None:
        raise TranslationError(f"request kind {kind!r} does not describe a secret")
    return translator(request)


def to_grant_request(request: BaseModel) -> tuple[GrantTarget, SecretRequest]:
    """
    Translate a grant variant into its destination role and secret.

    Raises:
        TranslationError: not a grant variant, or templating failed
    """
    if getattr(request, "kind", None) != "grant":
        raise TranslationError(
            f"request kind {getattr(request, 'kind', None)!r} is not a grant request"
        )
    grant: AuthroleGrantRequest = request  # type: ignore[assignment]
    target = GrantTarget(
        role_path=templates.role_path(grant.cluster_name, grant.dest_user),
        name=grant.dest_user,
    )
    return target, to_secret_request(grant.secret_options)
