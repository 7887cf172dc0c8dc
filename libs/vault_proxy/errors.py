"""
Error taxonomy returned to vault proxy callers.

Exception hierarchy:
    VaultProxyError (base)
    ├── InputArgError - malformed request, illegal characters, translation failure
    ├── AuthenticationFailed - no verifiable client identity
    ├── ActionNotAllowed - authorization denial
    ├── ResourceNotFound - secret/policy/role/auth backend absent when required
    └── InternalServiceError - store failure unrelated to caller input

Each class carries a stable ``reason`` and an ``http_status`` so a transport
can map it without inspecting messages. Callers use the class to choose a
remediation: re-authenticate, recreate the resource, or back off.
"""

from typing import ClassVar


class VaultProxyError(Exception):
    """Base exception for every error surfaced by the vault proxy core."""

    reason: ClassVar[str] = "UNKNOWN"
    http_status: ClassVar[int] = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.reason}: {self.message}"


class InputArgError(VaultProxyError):
    """Request could not be translated, or a name contains illegal characters."""

    reason = "INPUT_ARG_ERROR"
    http_status = 400


class AuthenticationFailed(VaultProxyError):
    """No verifiable client identity was presented."""

    reason = "AUTH_FAILED"
    http_status = 401


class ActionNotAllowed(VaultProxyError):
    """The authenticated subject may not perform this action."""

    reason = "ACTION_NOT_ALLOW"
    http_status = 403


class ResourceNotFound(VaultProxyError):
    """A secret, policy, role or auth backend the operation depends on is absent."""

    reason = "RESOURCE_NOT_FOUND"
    http_status = 404


class InternalServiceError(VaultProxyError):
    """
    The secret store failed for reasons unrelated to the caller's input.

    When a rollback fails after a partial mutation, both failures are kept:
    ``original_error`` is the step that triggered the rollback and
    ``rollback_error`` is the rollback's own failure.
    """

    reason = "INTERNAL_SERVICE_ERROR"
    http_status = 500

    def __init__(
        self,
        message: str,
        original_error: BaseException | None = None,
        rollback_error: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.original_error = original_error
        self.rollback_error = rollback_error


class TranslationError(ValueError):
    """An inbound request could not be turned into a SecretRequest/GrantTarget."""


class TemplateError(TranslationError):
    """A path/policy template is malformed or a required field is missing."""
