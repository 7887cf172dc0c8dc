"""Per-request trace ID propagation.

Each gateway operation runs inside a ``LogContext`` so every log line it
produces, from the authorizer down to the secret store adapter, carries the
same trace ID.

Example:
    >>> with LogContext() as trace_id:
    ...     get_trace_id() == trace_id
    True
"""

import contextvars
import uuid
from types import TracebackType

_trace_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("trace_id", default=None)


def generate_trace_id() -> str:
    """New UUID4 trace ID."""
    return str(uuid.uuid4())


def get_trace_id() -> str | None:
    return _trace_id_var.get()


def set_trace_id(trace_id: str) -> None:
    """Set the trace ID for the current context.

    Raises:
        ValueError: If trace_id is empty
    """
    if not trace_id:
        raise ValueError("Trace ID cannot be empty")
    _trace_id_var.set(trace_id)


def clear_trace_id() -> None:
    _trace_id_var.set(None)


class LogContext:
    """Scope a trace ID to a block and restore the previous one on exit.

    Args:
        trace_id: Trace ID for this block. A new one is generated if None.
    """

    def __init__(self, trace_id: str | None = None) -> None:
        self.trace_id = trace_id or generate_trace_id()
        self._token: contextvars.Token[str | None] | None = None

    def __enter__(self) -> str:
        self._token = _trace_id_var.set(self.trace_id)
        return self.trace_id

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._token is not None:
            _trace_id_var.reset(self._token)
            self._token = None
