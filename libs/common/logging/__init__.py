"""Structured JSON logging with per-request trace IDs.

Usage:
    # At startup
    from libs.common.logging import configure_logging
    configure_logging(service_name="vault_proxy", log_level="INFO")

    # Around each handled operation
    from libs.common.logging import LogContext
    with LogContext():
        ...
"""

from libs.common.logging.config import TraceIDFilter, configure_logging
from libs.common.logging.context import (
    LogContext,
    clear_trace_id,
    generate_trace_id,
    get_trace_id,
    set_trace_id,
)
from libs.common.logging.formatter import JSONFormatter, redact

__all__ = [
    "configure_logging",
    "TraceIDFilter",
    "generate_trace_id",
    "get_trace_id",
    "set_trace_id",
    "clear_trace_id",
    "LogContext",
    "JSONFormatter",
    "redact",
]
