"""
Secret Store Exception Hierarchy.

This module defines all exceptions raised by SecretStore implementations.
Callers of the store (the credential lifecycle manager) only distinguish
"not found" from every other failure; the finer subclasses exist for logs
and for the store's own tests.

Exception hierarchy:
    SecretStoreError (base)
    ├── SecretNotFoundError - Path, policy or mount doesn't exist in the store
    ├── SecretAccessError - Permission/authentication/connectivity failure
    ├── SecretWriteError - Failed to write/update/delete in the store
    └── OperationCancelledError - Caller cancelled or deadline passed before the call

All exceptions include structured context (path, backend type) without
exposing secret values.
"""


class SecretStoreError(Exception):
    """
    Base exception for all secret store errors.

    Subclasses MUST NOT include secret values in error messages, only
    collection names, paths and policy names.

    Attributes:
        path: Store path or policy name the failure relates to
        backend: Backend type ("vault", "memory")
        message: Human-readable error message (MUST NOT include secret value)

    Example:
        >>> try:
        ...     store.get_secret("git", "gitlab/1/root/readonly")
        ... except SecretStoreError as e:
        ...     logger.error("Store error", extra={"path": e.path, "backend": e.backend})
    """

    def __init__(
        self,
        message: str,
        path: str | None = None,
        backend: str | None = None,
    ) -> None:
        super().__init__(message)
        self.path = path
        self.backend = backend
        self.message = message

    def __str__(self) -> str:
        """
        Format error message with context (path + backend).

        Example:
            >>> str(SecretStoreError("Timeout", "git/data/gitlab/1", "vault"))
            'Timeout (path: git/data/gitlab/1, backend: vault)'
        """
        context_parts = []
        if self.path:
            context_parts.append(f"path: {self.path}")
        if self.backend:
            context_parts.append(f"backend: {self.backend}")

        if context_parts:
            context = ", ".join(context_parts)
            return f"{self.message} ({context})"
        return self.message


class SecretNotFoundError(SecretStoreError):
    """
    Raised when a requested path, policy or auth mount doesn't exist.

    Common causes:
    - Secret was deleted but a grant still references it
    - Auth backend for a cluster was never enabled
    - KV collection (mount) is not configured in the store
    """

    def __init__(
        self,
        path: str,
        backend: str,
        additional_context: str | None = None,
    ) -> None:
        if not isinstance(path, str) or not path:
            raise TypeError("path must be a non-empty string")
        if not isinstance(backend, str) or not backend:
            raise TypeError("backend must be a non-empty string")

        base_message = f"'{path}' not found in {backend.upper()}"
        if additional_context:
            base_message += f". {additional_context}"

        super().__init__(message=base_message, path=path, backend=backend)


class SecretAccessError(SecretStoreError):
    """
    Raised when authentication/authorization or connectivity fails.

    This exception is raised when:
    - Invalid Vault token or failed AppRole login
    - Insufficient permissions on the proxy's own token
    - Backend unreachable (network timeout, connection refused)
    - Backend sealed/unavailable
    """

    def __init__(self, path: str, backend: str, reason: str) -> None:
        if not isinstance(path, str) or not path:
            raise TypeError("path must be a non-empty string")
        if not isinstance(backend, str) or not backend:
            raise TypeError("backend must be a non-empty string")
        if not isinstance(reason, str) or not reason:
            raise TypeError("reason must be a non-empty string")

        super().__init__(message=f"Access denied: {reason}", path=path, backend=backend)


class SecretWriteError(SecretStoreError):
    """
    Raised when writing, rolling back or deleting fails.

    Common causes:
    - Read-only token (missing create/update/delete capability)
    - Vault standby node
    - Check-and-set mismatch during rollback (concurrent writer)
    """

    def __init__(self, path: str, backend: str, reason: str) -> None:
        if not isinstance(path, str) or not path:
            raise TypeError("path must be a non-empty string")
        if not isinstance(backend, str) or not backend:
            raise TypeError("backend must be a non-empty string")
        if not isinstance(reason, str) or not reason:
            raise TypeError("reason must be a non-empty string")

        super().__init__(message=f"Failed to write: {reason}", path=path, backend=backend)


class OperationCancelledError(SecretStoreError):
    """Raised instead of issuing a store call once the caller's token is cancelled."""

    def __init__(self, operation: str, reason: str = "cancelled") -> None:
        super().__init__(message=f"Operation {operation} aborted: {reason}")
        self.operation = operation
        self.reason = reason
