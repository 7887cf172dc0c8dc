"""Cancellation tokens for blocking secret store round trips.

A token is created once per logical operation (one request) and handed,
unchanged, to every store call that operation makes. Stores call
``raise_if_cancelled()`` before each network round trip so that a cancelled
or expired request stops issuing new calls.

Example:
    >>> token = CancellationToken.with_timeout(5.0)
    >>> store.get_policy("git-gitlab-1-root-readonly", token=token)
    >>> token.cancel()
    >>> store.get_policy("git-gitlab-1-root-readonly", token=token)
    Traceback (most recent call last):
    ...
    OperationCancelledError: Operation get_policy aborted: cancelled
"""

from __future__ import annotations

import threading
import time

from libs.platform.secrets.exceptions import OperationCancelledError


class CancellationToken:
    """Thread-safe cancel flag with an optional monotonic deadline."""

    def __init__(self, deadline: float | None = None) -> None:
        self._event = threading.Event()
        self._deadline = deadline

    @classmethod
    def with_timeout(cls, seconds: float | None) -> CancellationToken:
        """Create a token that expires ``seconds`` from now (never, if None)."""
        if seconds is None:
            return cls()
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        self._event.set()

    @property
    def deadline(self) -> float | None:
        return self._deadline

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or self.expired

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> float | None:
        """Seconds until the deadline (0.0 once passed), or None without a deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self, operation: str) -> None:
        """Raise OperationCancelledError if the token is cancelled or expired."""
        if self._event.is_set():
            raise OperationCancelledError(operation, "cancelled")
        if self.expired:
            raise OperationCancelledError(operation, "deadline exceeded")


def ensure_token(token: CancellationToken | None) -> CancellationToken:
    """Return ``token`` or a fresh never-expiring token."""
    return token if token is not None else CancellationToken()
