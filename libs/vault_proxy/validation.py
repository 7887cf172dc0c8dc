"""Character-class guard for every name used against the store or the authorizer."""

import re

from libs.vault_proxy.errors import InputArgError

_NAME_PATTERN = re.compile(r"[A-Za-z0-9/-]*")


def is_valid_name(value: str) -> bool:
    """True when ``value`` only contains ``[A-Za-z0-9/-]`` (the empty string is valid)."""
    return _NAME_PATTERN.fullmatch(value) is not None


def verify_names(*values: str, what: str = "name") -> None:
    """
    Raise InputArgError unless every value passes ``is_valid_name``.

    Example:
        >>> verify_names("git/data/gitlab/1/root/readonly", "gitlab-1-root-readonly")
        >>> verify_names("../etc/passwd")
        Traceback (most recent call last):
        ...
        InputArgError: INPUT_ARG_ERROR: ...
    """
    for value in values:
        if not is_valid_name(value):
            raise InputArgError(
                f"{what} {value!r} contains characters outside [A-Za-z0-9/-]"
            )
