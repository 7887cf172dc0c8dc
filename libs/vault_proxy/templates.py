"""
Path and policy templates per resource kind.

Each resource kind renders three things from the same fields:

    - a storage sub-path inside its KV collection (slash-joined)
    - a policy name (hyphen-joined)
    - a policy document granting read on the secret

Example:
    >>> fields = {"provider_type": "gitlab", "repo_id": "1", "username": "root",
    ...           "permission": "readonly"}
    >>> resolve(SecretType.GIT, fields).secret_path
    'gitlab/1/root/readonly'
    >>> resolve(SecretType.GIT, fields).policy_name
    'gitlab-1-root-readonly'
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from libs.vault_proxy.errors import TemplateError


class SecretType(str, Enum):
    """Closed set of resource kinds that store a secret."""

    GIT = "git"
    REPO = "repo"
    CLUSTER = "cluster"
    TENANT_GIT = "tenant-git"
    TENANT_REPO = "tenant-repo"


# KV collection (mount) each kind is stored in
SECRET_COLLECTIONS: dict[SecretType, str] = {
    SecretType.GIT: "git",
    SecretType.REPO: "repo",
    SecretType.CLUSTER: "cluster",
    SecretType.TENANT_GIT: "tenant",
    SecretType.TENANT_REPO: "tenant",
}

PATH_TEMPLATES: dict[SecretType, str] = {
    SecretType.GIT: "{provider_type}/{repo_id}/{username}/{permission}",
    SecretType.REPO: "{provider_id}/{repo_type}/{repo_id}/{username}/{permission}",
    SecretType.CLUSTER: "{cluster_type}/{cluster_id}/{username}/{permission}",
    SecretType.TENANT_GIT: "git/{id}/{permission}",
    SecretType.TENANT_REPO: "repo/{id}/{permission}",
}

POLICY_NAME_TEMPLATES: dict[SecretType, str] = {
    SecretType.GIT: "{provider_type}-{repo_id}-{username}-{permission}",
    SecretType.REPO: "{provider_id}-{repo_type}-{repo_id}-{username}-{permission}",
    SecretType.CLUSTER: "{cluster_type}-{cluster_id}-{username}-{permission}",
    SecretType.TENANT_GIT: "tenant-git-{id}-{permission}",
    SecretType.TENANT_REPO: "tenant-repo-{id}-{permission}",
}

ROLE_PATH_TEMPLATE = "auth/{cluster_name}/role/{project_id}"

SECRET_POLICY = 'path "{full_path}" {{\n    capabilities = ["read"]\n}}'

GIT_POLICY = """
path "git/data/{secret_path}" {{
    capabilities = ["read"]
}}

path "git/metadata/{secret_path}" {{
    capabilities = ["read"]
}}"""

CLUSTER_POLICY = """
path "cluster/data/{secret_path}" {{
    capabilities = ["read"]
}}

path "auth/{cluster_id}/role/*" {{
    capabilities = ["read"]
}}"""


def render(template: str, fields: Mapping[str, Any]) -> str:
    """
    Substitute ``fields`` into ``template``.

    Raises:
        TemplateError: a field is missing, or the template is malformed
    """
    try:
        return template.format_map(fields)
    except KeyError as e:
        raise TemplateError(f"missing template field {e.args[0]!r} in {template!r}") from e
    except (ValueError, IndexError, AttributeError) as e:
        raise TemplateError(f"malformed template {template!r}: {e}") from e


@dataclass(frozen=True)
class ResolvedPaths:
    secret_name: str
    secret_path: str
    full_path: str
    policy_name: str
    policy_data: str


def resolve(secret_type: SecretType, fields: Mapping[str, Any]) -> ResolvedPaths:
    """Render collection, sub-path, full path, policy name and policy document."""
    secret_name = SECRET_COLLECTIONS[secret_type]
    secret_path = render(PATH_TEMPLATES[secret_type], fields)
    full_path = f"{secret_name}/data/{secret_path}"
    policy_name = render(POLICY_NAME_TEMPLATES[secret_type], fields)

    if secret_type is SecretType.GIT:
        policy_data = render(GIT_POLICY, {"secret_path": secret_path})
    elif secret_type is SecretType.CLUSTER:
        policy_data = render(
            CLUSTER_POLICY,
            {"secret_path": secret_path, "cluster_id": render("{cluster_id}", fields)},
        )
    else:
        policy_data = render(SECRET_POLICY, {"full_path": full_path})

    return ResolvedPaths(
        secret_name=secret_name,
        secret_path=secret_path,
        full_path=full_path,
        policy_name=policy_name,
        policy_data=policy_data,
    )


def role_path(cluster_name: str, project_id: str) -> str:
    return render(ROLE_PATH_TEMPLATE, {"cluster_name": cluster_name, "project_id": project_id})
