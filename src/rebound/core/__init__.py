"""Rebound core primitives: errors, logging and settings."""

from rebound.core.errors import (
    ConfigError,
    OperationAborted,
    OperationCancelled,
    ReboundError,
    TimeoutExpired,
)
from rebound.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)

__all__ = [
    "ConfigError",
    "OperationAborted",
    "OperationCancelled",
    "ReboundError",
    "TimeoutExpired",
    "LogContext",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "unbind_context",
]
