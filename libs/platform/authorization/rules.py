"""
Rule sets and matchers for the vault proxy authorizer.

Rule files use the casbin policy CSV format, one rule per line:

    p, <subject>, <column>, <column>, ...

Blank lines and lines starting with ``#`` are ignored. Three rule sets are
evaluated by the authorizer:

    - Blacklist:    (subject, resource_regex)                       any match denies
    - Resource ACL: (subject, resource_regex, action_regex)         any match permits
    - Grant ACL:    (subject, resource_key, destination_key, effect) first match decides

Regex columns use unanchored search. Grant ACL columns use ``key_match``,
which only understands a trailing ``*`` wildcard.

Example:
    >>> acl = parse_resource_acl("p, API, ^git/, (POST)|(DELETE)")
    >>> acl.permits("API", "git/data/gitlab/1/root/readonly", "POST")
    True
"""

from __future__ import annotations

import csv
import io
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

BLACKLIST_SUBJECT = "RUNTIME"


class RuleSetError(Exception):
    """Rule file missing, unreadable or malformed."""


class Effect(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


# ============================================================================
# Matchers
# ============================================================================


def regex_match(value: str, pattern: re.Pattern[str]) -> bool:
    """Unanchored regex search (casbin ``regexMatch``)."""
    return pattern.search(value) is not None


def key_match(key: str, pattern: str) -> bool:
    """
    casbin ``keyMatch``: ``*`` matches any suffix.

    Without a ``*`` the pattern must equal the key. Otherwise only the part
    of the pattern before the first ``*`` is compared, and it must be a
    prefix of the key.

    Example:
        >>> key_match("git/gitlab", "git/*")
        True
        >>> key_match("repo/nexus", "git/*")
        False
    """
    index = pattern.find("*")
    if index == -1:
        return key == pattern
    if len(key) > index:
        return key[:index] == pattern[:index]
    return key == pattern[:index]


# ============================================================================
# Rows
# ============================================================================


@dataclass(frozen=True)
class BlacklistRule:
    subject: str
    resource: re.Pattern[str]

    def matches(self, subject: str, resource: str) -> bool:
        return subject == self.subject and regex_match(resource, self.resource)


@dataclass(frozen=True)
class ResourceRule:
    subject: str
    resource: re.Pattern[str]
    action: re.Pattern[str]

    def matches(self, subject: str, resource: str, action: str) -> bool:
        return (
            subject == self.subject
            and regex_match(resource, self.resource)
            and regex_match(action, self.action)
        )


@dataclass(frozen=True)
class GrantRule:
    subject: str
    resource: str
    destination: str
    effect: Effect

    def matches(self, subject: str, resource: str, destination: str) -> bool:
        return (
            subject == self.subject
            and key_match(resource, self.resource)
            and key_match(destination, self.destination)
        )


# ============================================================================
# Rule sets
# ============================================================================


@dataclass(frozen=True)
class Blacklist:
    rules: tuple[BlacklistRule, ...] = ()

    def denies(self, subject: str, resource: str) -> bool:
        return any(rule.matches(subject, resource) for rule in self.rules)


@dataclass(frozen=True)
class ResourceACL:
    rules: tuple[ResourceRule, ...] = ()

    def permits(self, subject: str, resource: str, action: str) -> bool:
        return any(rule.matches(subject, resource, action) for rule in self.rules)


@dataclass(frozen=True)
class GrantACL:
    rules: tuple[GrantRule, ...] = ()

    def permits(self, subject: str, resource: str, destination: str) -> bool:
        """First matching rule in file order decides; no match denies."""
        for rule in self.rules:
            if rule.matches(subject, resource, destination):
                return rule.effect is Effect.ALLOW
        return False


@dataclass(frozen=True)
class AuthorizationRules:
    """Immutable snapshot of all three rule sets, swapped as a whole on reload."""

    blacklist: Blacklist
    resource_acl: ResourceACL
    grant_acl: GrantACL


# ============================================================================
# Parsing
# ============================================================================


def _rows(text: str, columns: int, source: str) -> Iterator[tuple[int, list[str]]]:
    reader = csv.reader(io.StringIO(text), skipinitialspace=True)
    for lineno, row in enumerate(reader, start=1):
        fields = [field.strip() for field in row]
        if not fields or not any(fields) or fields[0].startswith("#"):
            continue
        if fields[0] != "p":
            raise RuleSetError(f"{source}:{lineno}: unknown policy type {fields[0]!r}")
        if len(fields) - 1 != columns:
            raise RuleSetError(
                f"{source}:{lineno}: expected {columns} columns, got {len(fields) - 1}"
            )
        yield lineno, fields[1:]


def _compile(pattern: str, source: str, lineno: int) -> re.Pattern[str]:
    try:
        return re.compile(pattern)
    except re.error as e:
        raise RuleSetError(f"{source}:{lineno}: invalid regex {pattern!r}: {e}") from e


def parse_blacklist(text: str, source: str = "<blacklist>") -> Blacklist:
    return Blacklist(
        rules=tuple(
            BlacklistRule(subject=sub, resource=_compile(res, source, lineno))
            for lineno, (sub, res) in _rows(text, 2, source)
        )
    )


def parse_resource_acl(text: str, source: str = "<resource_acl>") -> ResourceACL:
    return ResourceACL(
        rules=tuple(
            ResourceRule(
                subject=sub,
                resource=_compile(res, source, lineno),
                action=_compile(act, source, lineno),
            )
            for lineno, (sub, res, act) in _rows(text, 3, source)
        )
    )


def parse_grant_acl(text: str, source: str = "<grant_acl>") -> GrantACL:
    rules = []
    for lineno, (sub, res, dst, eft) in _rows(text, 4, source):
        try:
            effect = Effect(eft)
        except ValueError as e:
            raise RuleSetError(
                f"{source}:{lineno}: effect must be allow or deny, got {eft!r}"
            ) from e
        rules.append(GrantRule(subject=sub, resource=res, destination=dst, effect=effect))
    return GrantACL(rules=tuple(rules))


def blacklist_for_tenants(tenant_names: Iterable[str]) -> Blacklist:
    """Deny the runtime subject every path under each tenant's auth mount."""
    text = "\n".join(f"p, {BLACKLIST_SUBJECT}, auth/{name}/.*" for name in tenant_names)
    return parse_blacklist(text, source="<tenant blacklist>")


def _read(path: str | Path) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise RuleSetError(f"cannot read rule file {path}: {e}") from e


def load_rules(
    resource_acl_path: str | Path,
    permission_acl_path: str | Path,
    tenant_names: Iterable[str] = (),
) -> AuthorizationRules:
    """
    Load a fresh snapshot from the two ACL files and the tenant list.

    Raises:
        RuleSetError: a file is missing or contains a malformed rule
    """
    return AuthorizationRules(
        blacklist=blacklist_for_tenants(tenant_names),
        resource_acl=parse_resource_acl(_read(resource_acl_path), source=str(resource_acl_path)),
        grant_acl=parse_grant_acl(_read(permission_acl_path), source=str(permission_acl_path)),
    )
