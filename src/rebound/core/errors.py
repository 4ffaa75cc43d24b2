"""
Typed errors raised or returned by the rebound resilience layer.

The retry orchestrator never raises from ``execute()``: it hands back a
``RetryOutcome`` whose ``error`` is either the caller's own last exception
or one of the errors defined here. Keeping them in one small hierarchy lets
callers tell the three terminal shapes apart with ``isinstance``:

Architecture:
    ::

        ReboundError (message, cause, context)
        ├── ConfigError            invalid policy / breaker values
        ├── CircuitOpenError       admission rejected (execution.circuit_breaker)
        └── OperationAborted       cooperative stop, ``reason`` attribute
            ├── OperationCancelled   cancel token fired
            └── TimeoutExpired       execution-wide deadline exceeded

Examples:
    >>> outcome = await orchestrator.execute(fetch, name="slot-search")
    >>> if isinstance(outcome.error, OperationAborted):
    ...     print("stopped:", outcome.error.reason)

Guardrails:
    ❌ DON'T: Wrap the caller's own exception in a ReboundError
    ✅ DO: Return it unchanged so existing except-clauses keep working

Tags:
    error-handling, exception-hierarchy, rebound
"""

from __future__ import annotations

from typing import Any


class ReboundError(Exception):
    """Base exception for all rebound errors.

    Attributes:
        message: Human readable description
        context: Extra key/value metadata for logging
        cause: Underlying exception, also chained as ``__cause__``
    """

    def __init__(
        self,
        message: str,
        *,
        context: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
        }
        if self.context:
            result["context"] = dict(self.context)
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


class ConfigError(ReboundError):
    """Invalid retry policy or circuit breaker configuration."""

    def __init__(self, key: str, value: Any, message: str | None = None):
        self.key = key
        self.value = value
        super().__init__(
            message or f"Invalid value for {key}: {value!r}",
            context={"key": key, "value": value},
        )


class OperationAborted(ReboundError):
    """Execution stopped cooperatively before a retry decision was reached.

    Distinct from a classified failure: the operation was neither exhausted
    nor rejected by the classifier, the caller asked to stop.
    """

    reason = "aborted"

    def __init__(self, message: str | None = None, *, operation: str = "operation"):
        self.operation = operation
        super().__init__(
            message or f"Operation '{operation}' was {self.reason}",
            context={"operation": operation, "reason": self.reason},
        )


class OperationCancelled(OperationAborted):
    """The caller's cancel token fired."""

    reason = "cancelled"


class TimeoutExpired(OperationAborted):
    """The execution-wide deadline was exceeded.

    Attributes:
        timeout_ms: The timeout that was exceeded
        elapsed_ms: How long the execution ran before it was stopped
    """

    reason = "timeout"

    def __init__(
        self,
        timeout_ms: float,
        elapsed_ms: float | None = None,
        operation: str = "operation",
    ):
        self.timeout_ms = timeout_ms
        self.elapsed_ms = elapsed_ms

        msg = f"Operation '{operation}' timed out after {timeout_ms:.0f}ms"
        if elapsed_ms is not None:
            msg += f" (ran for {elapsed_ms:.0f}ms)"

        super().__init__(msg, operation=operation)


__all__ = [
    "ReboundError",
    "ConfigError",
    "OperationAborted",
    "OperationCancelled",
    "TimeoutExpired",
]
