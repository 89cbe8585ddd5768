"""Public observability primitives: structured logging setup and scoping."""

from jmeter_runner.observability.logging import (
    LoggingHandle,
    execution_scope,
    get_active_logging_handle,
    redact_event,
    redact_text,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "LoggingHandle",
    "execution_scope",
    "get_active_logging_handle",
    "redact_event",
    "redact_text",
    "setup_logging",
    "shutdown_logging",
]
