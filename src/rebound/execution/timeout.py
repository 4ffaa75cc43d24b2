"""Execution-wide deadlines for retry loops.

A retry execution may carry one ``timeout_ms`` covering every attempt and
every backoff sleep. :class:`Deadline` tracks it against the orchestrator's
injectable millisecond clock, so tests can move time without sleeping.

Example:
    >>> deadline = Deadline.start(5_000, operation="slot-search")
    >>> deadline.remaining_s()   # seconds left, for asyncio waits
    4.999...
    >>> deadline.check()         # raises TimeoutExpired once past the deadline

Guardrails:
    - Checked before each attempt and raced against attempts and sleeps;
      never injected into the caller's operation itself.
    - ``Deadline.start(None)`` returns an unbounded deadline that never
      expires, so callers need no branching.
"""

from __future__ import annotations

from dataclasses import dataclass

from rebound.core.errors import TimeoutExpired
from rebound.execution.circuit_breaker import Clock, monotonic_ms


@dataclass(frozen=True)
class Deadline:
    """Absolute deadline on a millisecond clock.

    Attributes:
        started_at: Clock reading when the deadline started
        timeout_ms: Budget in milliseconds, None for unbounded
        operation: Name used in TimeoutExpired messages
        clock: Millisecond clock shared with the orchestrator
    """

    started_at: float
    timeout_ms: float | None
    operation: str = "operation"
    clock: Clock = monotonic_ms

    @classmethod
    def start(
        cls,
        timeout_ms: float | None,
        operation: str = "operation",
        clock: Clock | None = None,
    ) -> Deadline:
        if timeout_ms is not None and timeout_ms < 0:
            raise ValueError(f"Timeout must be non-negative, got {timeout_ms}")
        clock = clock or monotonic_ms
        return cls(
            started_at=clock(),
            timeout_ms=timeout_ms,
            operation=operation,
            clock=clock,
        )

    @property
    def bounded(self) -> bool:
        return self.timeout_ms is not None

    def elapsed_ms(self) -> float:
        return self.clock() - self.started_at

    def remaining_ms(self) -> float | None:
        """Milliseconds left (may be negative), None when unbounded."""
        if self.timeout_ms is None:
            return None
        return self.timeout_ms - self.elapsed_ms()

    def remaining_s(self) -> float | None:
        """Seconds left clamped at zero, for asyncio waits."""
        remaining = self.remaining_ms()
        if remaining is None:
            return None
        return max(0.0, remaining / 1000.0)

    def is_expired(self) -> bool:
        remaining = self.remaining_ms()
        return remaining is not None and remaining <= 0

    def expired_error(self) -> TimeoutExpired:
        return TimeoutExpired(
            timeout_ms=self.timeout_ms or 0,
            elapsed_ms=self.elapsed_ms(),
            operation=self.operation,
        )

    def check(self) -> None:
        """Raise TimeoutExpired if the deadline has passed."""
        if self.is_expired():
            raise self.expired_error()


__all__ = ["Deadline"]
