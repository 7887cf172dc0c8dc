"""Tests for CredentialLifecycleManager."""

from unittest.mock import MagicMock

import pytest

from libs.platform.secrets import (
    CancellationToken,
    InMemorySecretStore,
    OperationCancelledError,
    SecretAccessError,
    SecretNotFoundError,
    SecretStore,
    SecretWriteError,
)
from libs.vault_proxy.errors import InputArgError, InternalServiceError, ResourceNotFound
from libs.vault_proxy.manager import CredentialLifecycleManager, SecretInfo
from libs.vault_proxy.requests import (
    AuthRequest,
    AuthroleGrantRequest,
    AuthroleRequest,
    GitAccount,
    GitRequest,
    KubernetesAuthConfig,
    RepoAccount,
    RepoRequest,
    RoleBinding,
)

# ================================================================================
# Fixtures
# ================================================================================


@pytest.fixture()
def backing_store():
    return InMemorySecretStore(collections=["git", "repo", "cluster", "tenant"])


@pytest.fixture()
def store(backing_store):
    """Spy that records every store call and forwards it to the in-memory store."""
    return MagicMock(spec=SecretStore, wraps=backing_store)


@pytest.fixture()
def manager(store):
    return CredentialLifecycleManager(store)


def _git(deploy_key="KEY", username="root"):
    return GitRequest(
        provider_type="gitlab",
        repo_id="1",
        username=username,
        permission="readonly",
        account=GitAccount(access_type="deploykey", deploy_key=deploy_key),
    )


def _auth(cluster_name="c1"):
    return AuthRequest(
        cluster_name=cluster_name,
        kubernetes=KubernetesAuthConfig(url="https://k8s:6443", cabundle="CA", usertoken="JWT"),
    )


def _role(cluster_name="c1", dest_user="ARGO"):
    return AuthroleRequest(
        cluster_name=cluster_name,
        dest_user=dest_user,
        k8s=RoleBinding(namespaces=["argocd"], serviceaccounts=["argocd-repo-server"]),
    )


def _grant(dest_user="ARGO", secret=None):
    return AuthroleGrantRequest(
        cluster_name="c1", dest_user=dest_user, secret_options=secret or _git()
    )


# ================================================================================
# create_secret / delete_secret
# ================================================================================


class TestCreateSecret:
    def test_creates_secret_and_policy(self, manager, backing_store):
        info = manager.create_secret(_git())

        assert info == SecretInfo(name="git", path="gitlab/1/root/readonly", version=1)
        assert backing_store.get_secret("git", "gitlab/1/root/readonly").data == {"deploykey": "KEY"}
        assert 'path "git/data/gitlab/1/root/readonly"' in backing_store.get_policy(
            "gitlab-1-root-readonly"
        )

    def test_same_token_passed_to_every_call(self, manager, store):
        token = CancellationToken()

        manager.create_secret(_git(), token=token)

        assert store.create_secret.call_args.kwargs["token"] is token
        assert store.create_policy.call_args.kwargs["token"] is token

    def test_invalid_name_makes_no_store_calls(self, manager, store):
        with pytest.raises(InputArgError):
            manager.create_secret(_git(username="root;rm"))

        assert store.mock_calls == []

    def test_secret_write_failure(self, manager, store):
        store.create_secret.side_effect = SecretWriteError("git/data/x", "memory", "read-only")

        with pytest.raises(InternalServiceError) as exc_info:
            manager.create_secret(_git())

        assert isinstance(exc_info.value.original_error, SecretWriteError)
        store.create_policy.assert_not_called()

    def test_policy_failure_on_first_version_deletes_secret(self, manager, store, backing_store):
        store.create_policy.side_effect = SecretWriteError("sys/policy/p", "memory", "denied")

        with pytest.raises(InternalServiceError) as exc_info:
            manager.create_secret(_git())

        assert exc_info.value.rollback_error is None
        store.delete_secret.assert_called_once()
        store.rollback_secret.assert_not_called()
        with pytest.raises(SecretNotFoundError):
            backing_store.get_secret("git", "gitlab/1/root/readonly")

    def test_policy_failure_rolls_back_to_previous_version(self, manager, store, backing_store):
        manager.create_secret(_git(deploy_key="OLD"))
        store.create_policy.side_effect = SecretWriteError("sys/policy/p", "memory", "denied")

        with pytest.raises(InternalServiceError):
            manager.create_secret(_git(deploy_key="NEW"))

        store.rollback_secret.assert_called_once()
        assert store.rollback_secret.call_args.args[2] == 1
        current = backing_store.get_secret("git", "gitlab/1/root/readonly")
        assert current.data == {"deploykey": "OLD"}

    def test_rollback_failure_reports_both_errors(self, manager, store):
        policy_error = SecretWriteError("sys/policy/p", "memory", "denied")
        rollback_error = SecretAccessError("git/metadata/x", "memory", "sealed")
        store.create_policy.side_effect = policy_error
        store.get_secret_version_list.side_effect = rollback_error

        with pytest.raises(InternalServiceError) as exc_info:
            manager.create_secret(_git())

        assert exc_info.value.original_error is policy_error
        assert exc_info.value.rollback_error is rollback_error
        assert "denied" in exc_info.value.message
        assert "sealed" in exc_info.value.message
        assert "rollback failed" in exc_info.value.message

    def test_message_names_rollback_outcome(self, manager, store):
        store.create_policy.side_effect = SecretWriteError("sys/policy/p", "memory", "denied")

        with pytest.raises(InternalServiceError) as exc_info:
            manager.create_secret(_git())

        assert "deleted secret" in exc_info.value.message

    def test_empty_version_list_not_reported_as_rolled_back(self, manager, store):
        store.create_policy.side_effect = SecretWriteError("sys/policy/p", "memory", "denied")
        store.get_secret_version_list.return_value = []

        with pytest.raises(InternalServiceError) as exc_info:
            manager.create_secret(_git())

        assert exc_info.value.rollback_error is None
        assert "no version found to roll back" in exc_info.value.message
        assert "rolled back to" not in exc_info.value.message
        store.rollback_secret.assert_not_called()
        store.delete_secret.assert_not_called()

    def test_cancelled_token_makes_no_store_calls(self, manager, store):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(InternalServiceError) as exc_info:
            manager.create_secret(_git(), token=token)

        assert isinstance(exc_info.value.original_error, OperationCancelledError)
        assert store.mock_calls == []

    def test_cancel_during_policy_write_reports_aborted_rollback(self, manager, store):
        token = CancellationToken()
        policy_error = SecretWriteError("sys/policy/p", "memory", "denied")

        def cancel_then_fail(*args, **kwargs):
            token.cancel()
            raise policy_error

        store.create_policy.side_effect = cancel_then_fail

        with pytest.raises(InternalServiceError) as exc_info:
            manager.create_secret(_git(), token=token)

        assert exc_info.value.original_error is policy_error
        assert isinstance(exc_info.value.rollback_error, OperationCancelledError)
        assert "denied" in exc_info.value.message
        assert "cancelled" in exc_info.value.message
        store.delete_secret.assert_not_called()

    def test_untranslatable_request(self, manager, store):
        with pytest.raises(InputArgError):
            manager.create_secret(_grant())

        assert store.mock_calls == []


class TestDeleteSecret:
    def test_deletes_policy_then_secret(self, manager, store, backing_store):
        manager.create_secret(_git())
        store.reset_mock()

        manager.delete_secret(_git())

        names = [c[0] for c in store.mock_calls]
        assert names == ["delete_policy", "delete_secret"]
        assert backing_store.get_policy("gitlab-1-root-readonly") == ""

    def test_policy_delete_failure_keeps_secret(self, manager, store, backing_store):
        manager.create_secret(_git())
        store.delete_policy.side_effect = SecretWriteError("sys/policy/p", "memory", "denied")

        with pytest.raises(InternalServiceError):
            manager.delete_secret(_git())

        store.delete_secret.assert_not_called()
        assert backing_store.get_secret("git", "gitlab/1/root/readonly").version == 1


# ================================================================================
# Auth backends and roles
# ================================================================================


class TestAuth:
    def test_enable_mounts_and_configures(self, manager, backing_store):
        manager.enable_auth(_auth())

        assert backing_store.auth_backends() == {"c1": "kubernetes"}
        assert manager.get_auth("c1") == {
            "kubernetes_host": "https://k8s:6443",
            "kubernetes_ca_cert": "CA",
            "token_reviewer_jwt": "JWT",
        }

    def test_enable_existing_only_rewrites_config(self, manager, store):
        manager.enable_auth(_auth())
        store.reset_mock()

        manager.enable_auth(_auth())

        store.enable_auth_backend.assert_not_called()
        store.write.assert_called_once()

    def test_enable_invalid_cluster_name(self, manager, store):
        with pytest.raises(InputArgError):
            manager.enable_auth(_auth(cluster_name="c1 c2"))

        assert store.mock_calls == []

    def test_disable(self, manager, backing_store):
        manager.enable_auth(_auth())
        manager.disable_auth(_auth())

        assert backing_store.auth_backends() == {}
        with pytest.raises(ResourceNotFound):
            manager.get_auth("c1")

    def test_disable_failure(self, manager, store):
        store.disable_auth_backend.side_effect = SecretWriteError("sys/auth/c1", "memory", "denied")

        with pytest.raises(InternalServiceError):
            manager.disable_auth(_auth())


class TestRoles:
    def test_create_requires_auth(self, manager, store):
        with pytest.raises(ResourceNotFound):
            manager.create_role(_role())

        store.write.assert_not_called()

    def test_create_writes_bindings(self, manager, backing_store):
        manager.enable_auth(_auth())

        manager.create_role(_role())

        assert backing_store.read("auth/c1/role/ARGO") == {
            "bound_service_account_namespaces": ["argocd"],
            "bound_service_account_names": ["argocd-repo-server"],
        }

    def test_delete_without_auth_is_noop(self, manager, store):
        manager.delete_role(_role())

        store.delete.assert_not_called()

    def test_delete(self, manager, backing_store):
        manager.enable_auth(_auth())
        manager.create_role(_role())

        manager.delete_role(_role())

        assert backing_store.read("auth/c1/role/ARGO") is None

    def test_invalid_dest_user(self, manager, store):
        with pytest.raises(InputArgError):
            manager.create_role(_role(dest_user="../root"))

        assert store.mock_calls == []


# ================================================================================
# Grants
# ================================================================================


@pytest.fixture()
def granted_setup(manager):
    manager.create_secret(_git())
    manager.enable_auth(_auth())
    manager.create_role(_role())
    return manager


class TestGrant:
    def test_grant_appends_policy(self, granted_setup, backing_store):
        granted_setup.grant_permission(_grant())

        role = backing_store.read("auth/c1/role/ARGO")
        assert role["token_policies"] == ["gitlab-1-root-readonly"]
        assert role["bound_service_account_namespaces"] == ["argocd"]

    def test_grant_is_idempotent(self, granted_setup, store, backing_store):
        granted_setup.grant_permission(_grant())
        store.reset_mock()

        granted_setup.grant_permission(_grant())

        store.write.assert_not_called()
        assert backing_store.read("auth/c1/role/ARGO")["token_policies"] == [
            "gitlab-1-root-readonly"
        ]

    def test_grant_missing_secret(self, manager):
        manager.enable_auth(_auth())
        manager.create_role(_role())

        with pytest.raises(ResourceNotFound, match="recreate"):
            manager.grant_permission(_grant())

    def test_grant_policy_without_secret(self, manager, backing_store):
        backing_store.create_policy("gitlab-1-root-readonly", "doc")
        manager.enable_auth(_auth())
        manager.create_role(_role())

        with pytest.raises(ResourceNotFound, match="recreate"):
            manager.grant_permission(_grant())

    def test_grant_missing_role(self, manager):
        manager.create_secret(_git())

        with pytest.raises(ResourceNotFound):
            manager.grant_permission(_grant())

    def test_grant_invalid_role_path(self, manager, store):
        with pytest.raises(InputArgError):
            manager.grant_permission(_grant(dest_user="ARGO CD"))

        assert store.mock_calls == []

    def test_grant_role_read_failure(self, granted_setup, store):
        store.read.side_effect = SecretAccessError("auth/c1/role/ARGO", "memory", "sealed")

        with pytest.raises(InternalServiceError):
            granted_setup.grant_permission(_grant())


class TestRevoke:
    def test_revoke_removes_policy(self, granted_setup, backing_store):
        repo = RepoRequest(
            provider_id="nexus",
            repo_type="maven",
            repo_id="1",
            username="u",
            permission="readonly",
            account=RepoAccount(username="u", password="p"),
        )
        granted_setup.create_secret(repo)
        granted_setup.grant_permission(_grant())
        granted_setup.grant_permission(_grant(secret=repo))

        granted_setup.revoke_permission(_grant())

        assert backing_store.read("auth/c1/role/ARGO")["token_policies"] == [
            "nexus-maven-1-u-readonly"
        ]

    def test_revoke_twice_is_harmless(self, granted_setup, backing_store):
        granted_setup.grant_permission(_grant())

        granted_setup.revoke_permission(_grant())
        granted_setup.revoke_permission(_grant())

        assert backing_store.read("auth/c1/role/ARGO")["token_policies"] == []

    def test_revoke_missing_role_is_noop(self, manager, store):
        manager.revoke_permission(_grant())

        store.write.assert_not_called()


def test_health_delegates_to_store(store):
    store.health.return_value = False

    assert CredentialLifecycleManager(store).health() is False


# ================================================================================
# Guards shared by every mutation
# ================================================================================

MUTATIONS = [
    ("create_secret", lambda: _git(username="root;rm")),
    ("delete_secret", lambda: _git(username="../root")),
    ("enable_auth", lambda: _auth(cluster_name="c1;x")),
    ("disable_auth", lambda: _auth(cluster_name="c 1")),
    ("create_role", lambda: _role(dest_user="../ARGO")),
    ("delete_role", lambda: _role(cluster_name="c1.x")),
    ("grant_permission", lambda: _grant(dest_user="ARGO;x")),
    ("revoke_permission", lambda: _grant(secret=_git(username="a.b"))),
]

VALID_REQUESTS = {
    "create_secret": _git,
    "delete_secret": _git,
    "enable_auth": _auth,
    "disable_auth": _auth,
    "create_role": _role,
    "delete_role": _role,
    "grant_permission": _grant,
    "revoke_permission": _grant,
}


@pytest.mark.parametrize(("operation", "make_request"), MUTATIONS)
def test_illegal_names_make_no_store_calls(manager, store, operation, make_request):
    with pytest.raises(InputArgError):
        getattr(manager, operation)(make_request())

    assert store.mock_calls == []


@pytest.mark.parametrize("operation", sorted(VALID_REQUESTS))
def test_cancelled_token_blocks_every_mutation(manager, store, operation):
    token = CancellationToken()
    token.cancel()

    with pytest.raises(InternalServiceError, match="not started"):
        getattr(manager, operation)(VALID_REQUESTS[operation](), token=token)

    assert store.mock_calls == []
