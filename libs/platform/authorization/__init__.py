"""
Authorization for the vault proxy: rule sets, the authorizer and its
hot-reload watcher, plus identity extraction from client certificates.

Quick Start:
    >>> from libs.platform.authorization import Authorizer, CheckKind
    >>> authorizer = Authorizer.from_files("resource_acl.csv", "permission_acl.csv", ["tenant"])
    >>> authorizer.check_secret_permission("API", "git/data/gitlab/1/root/readonly", "POST")
"""

from libs.platform.authorization.authorizer import Authorizer, CheckKind
from libs.platform.authorization.identity import Identity, identity_from_peer_certificate
from libs.platform.authorization.rules import (
    AuthorizationRules,
    Blacklist,
    GrantACL,
    ResourceACL,
    RuleSetError,
    blacklist_for_tenants,
    key_match,
    load_rules,
    parse_blacklist,
    parse_grant_acl,
    parse_resource_acl,
    regex_match,
)
from libs.platform.authorization.watcher import RuleSetWatcher

__all__ = [
    "Authorizer",
    "CheckKind",
    "Identity",
    "identity_from_peer_certificate",
    "RuleSetWatcher",
    # Rules
    "AuthorizationRules",
    "Blacklist",
    "GrantACL",
    "ResourceACL",
    "RuleSetError",
    "blacklist_for_tenants",
    "key_match",
    "load_rules",
    "parse_blacklist",
    "parse_grant_acl",
    "parse_resource_acl",
    "regex_match",
]
