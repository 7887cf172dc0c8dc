"""End-to-end tests of the gateway pipeline against the in-memory store."""

from pathlib import Path

import pytest

from apps.vault_proxy.gateway import HEALTH_OPERATION, OPERATIONS, VaultProxyGateway
from libs.common.logging import get_trace_id
from libs.platform.authorization import (
    Authorizer,
    AuthorizationRules,
    Blacklist,
    GrantACL,
    ResourceACL,
)
from libs.platform.secrets import InMemorySecretStore, SecretNotFoundError
from libs.vault_proxy.errors import (
    ActionNotAllowed,
    AuthenticationFailed,
    InputArgError,
    ResourceNotFound,
)
from libs.vault_proxy.manager import CredentialLifecycleManager

RULES_DIR = Path(__file__).resolve().parents[3] / "configs" / "authorization"


def _cert(subject):
    return {"subject": ((("commonName", subject),),)}


API = _cert("API")
CLUSTER = _cert("CLUSTER")
RUNTIME = _cert("RUNTIME")
REPO = _cert("REPO")

GIT_PAYLOAD = {
    "provider_type": "gitlab",
    "repo_id": "1",
    "username": "root",
    "permission": "readonly",
    "account": {"deploy_key": "KEY"},
}

AUTH_PAYLOAD = {
    "cluster_name": "tenant",
    "kubernetes": {"url": "https://k8s:6443", "cabundle": "CA", "usertoken": "JWT"},
}

ROLE_PAYLOAD = {
    "cluster_name": "tenant",
    "dest_user": "ARGO",
    "k8s": {"namespaces": ["argocd"], "serviceaccounts": ["argocd-repo-server"]},
}


@pytest.fixture()
def store():
    return InMemorySecretStore(collections=["git", "repo", "cluster", "tenant"])


@pytest.fixture()
def gateway(store):
    authorizer = Authorizer.from_files(
        RULES_DIR / "resource_acl.csv",
        RULES_DIR / "permission_acl.csv",
        tenant_names=["tenant"],
    )
    return VaultProxyGateway(CredentialLifecycleManager(store), authorizer, request_timeout=5.0)


def test_operation_table():
    assert len(OPERATIONS) == 25
    assert OPERATIONS["Secret/DeleteRepoAccountProject"].action == "DELETE"
    assert OPERATIONS["AuthGrant/RevokeAuthroleTenantRepoPolicy"].secret_kind == "tenant-repo"


class TestHealth:
    def test_no_certificate_needed(self, gateway):
        assert gateway.handle(HEALTH_OPERATION, None, None) == {"standby": True, "vault": True}

    def test_sealed_store(self):
        sealed = InMemorySecretStore(sealed=True)
        authorizer = Authorizer(AuthorizationRules(Blacklist(), ResourceACL(), GrantACL()))
        gateway = VaultProxyGateway(CredentialLifecycleManager(sealed), authorizer)

        assert gateway.health() == {"standby": False, "vault": False}


class TestPipeline:
    def test_create_git(self, gateway, store):
        result = gateway.handle("Secret/CreateGit", GIT_PAYLOAD, API)

        assert result == {"secret": {"name": "git", "path": "gitlab/1/root/readonly", "version": 1}}
        assert store.get_secret("git", "gitlab/1/root/readonly").data == {"deploykey": "KEY"}

    def test_missing_certificate(self, gateway, store):
        with pytest.raises(AuthenticationFailed):
            gateway.handle("Secret/CreateGit", GIT_PAYLOAD, {})

        with pytest.raises(SecretNotFoundError):
            store.get_secret("git", "gitlab/1/root/readonly")

    def test_denied_subject(self, gateway):
        with pytest.raises(ActionNotAllowed):
            gateway.handle("Secret/CreateGit", GIT_PAYLOAD, RUNTIME)

    def test_illegal_name_rejected_before_authorization(self, gateway):
        payload = dict(GIT_PAYLOAD, username="root;x")

        # REPO has no git rule, so reaching the ACL would raise ActionNotAllowed
        with pytest.raises(InputArgError, match="outside"):
            gateway.handle("Secret/CreateGit", payload, REPO)

    def test_unknown_operation(self, gateway):
        with pytest.raises(InputArgError, match="unknown operation"):
            gateway.handle("Secret/CreatePki", {}, API)

    def test_malformed_payload(self, gateway):
        with pytest.raises(InputArgError):
            gateway.handle("Secret/CreateGit", {"provider_type": "gitlab"}, API)

    def test_repo_account_required(self, gateway):
        payload = {
            "provider_id": "nexus",
            "repo_type": "maven",
            "repo_id": "1",
            "username": "u",
            "permission": "readonly",
        }

        with pytest.raises(InputArgError, match="repo account is empty"):
            gateway.handle("Secret/CreateRepoAccount", payload, REPO)

    def test_trace_id_scoped_to_call(self, gateway):
        gateway.handle("Secret/CreateGit", GIT_PAYLOAD, API, trace_id="trace-1")

        assert get_trace_id() is None


class TestGrantFlow:
    @pytest.fixture()
    def role(self, gateway):
        gateway.handle("Auth/CreateAuth", AUTH_PAYLOAD, CLUSTER)
        gateway.handle("Auth/CreateAuthrole", ROLE_PAYLOAD, CLUSTER)
        gateway.handle("Secret/CreateGit", GIT_PAYLOAD, API)
        return gateway

    def _grant_payload(self, secret, kind="git"):
        return {
            "cluster_name": "tenant",
            "dest_user": "ARGO",
            "secret_options": {"kind": kind, **secret},
        }

    def test_grant_and_revoke(self, role, store):
        payload = self._grant_payload(GIT_PAYLOAD)

        role.handle("AuthGrant/GrantAuthroleGitPolicy", payload, API)
        assert store.read("auth/tenant/role/ARGO")["token_policies"] == ["gitlab-1-root-readonly"]

        role.handle("AuthGrant/RevokeAuthroleGitPolicy", payload, API)
        assert store.read("auth/tenant/role/ARGO")["token_policies"] == []

    def test_secret_kind_must_match_operation(self, role):
        payload = self._grant_payload(GIT_PAYLOAD)

        with pytest.raises(InputArgError, match="expects a repo secret"):
            role.handle("AuthGrant/GrantAuthroleRepoPolicy", payload, API)

    def test_runtime_blocked_on_tenant_roles(self, role):
        with pytest.raises(ActionNotAllowed):
            role.handle("Auth/DeleteAuthrole", ROLE_PAYLOAD, RUNTIME)

    def test_grant_missing_secret(self, role):
        payload = self._grant_payload({**GIT_PAYLOAD, "repo_id": "2"})

        with pytest.raises(ResourceNotFound):
            role.handle("AuthGrant/GrantAuthroleGitPolicy", payload, API)
