"""Circuit breaker for admission control in front of a failing dependency.

Prevents cascading failures by failing fast once a dependency keeps
failing, then probing it again after a recovery timeout.

States:
    CLOSED: Normal operation, every call admitted
    OPEN: Failing fast, calls rejected without running
    HALF_OPEN: Probing; admitted calls decide whether to close or reopen

Opening uses a hybrid rule: the breaker opens only when the consecutive
failure streak reaches ``failure_threshold`` *and* the rolling window holds
at least ``request_volume_threshold`` outcomes, so a cold breaker does not
trip on its first few calls.

Transitions::

    CLOSED    --on_failure, streak & volume thresholds met-->  OPEN
    OPEN      --can_execute after recovery_timeout_ms------->  HALF_OPEN
    HALF_OPEN --on_failure------------------------------------> OPEN
    HALF_OPEN --on_success x success_threshold---------------> CLOSED

Example:
    >>> from rebound.execution.circuit_breaker import CircuitBreaker
    >>> from rebound.execution.policy import CircuitBreakerConfig
    >>>
    >>> breaker = CircuitBreaker(
    ...     CircuitBreakerConfig(failure_threshold=5, recovery_timeout_ms=30_000),
    ...     name="payments",
    ... )
    >>>
    >>> if breaker.can_execute():
    ...     try:
    ...         result = await charge_card()
    ...         breaker.on_success()
    ...     except Exception as e:
    ...         breaker.on_failure(e)
    ...         raise
    ... else:
    ...     raise CircuitOpenError(breaker.name, breaker.get_snapshot())
"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from rebound.core.errors import ReboundError
from rebound.core.logging import get_logger
from rebound.execution.policy import CircuitBreakerConfig

logger = get_logger(__name__)

Clock = Callable[[], float]


def monotonic_ms() -> float:
    """Default clock: monotonic milliseconds."""
    return time.monotonic() * 1000.0


class CircuitState(str, Enum):
    """Admission state of a breaker.

    CLOSED admits every call, OPEN rejects until ``recovery_timeout_ms`` has
    passed, HALF_OPEN admits probes until ``success_threshold`` successes
    close it or one failure reopens it.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitSnapshot:
    """Read-only copy of a breaker's counters at one instant."""

    name: str
    state: CircuitState
    consecutive_failures: int
    half_open_successes: int
    window_requests: int
    window_failures: int
    last_failure_at: float | None
    last_state_change_at: float

    @property
    def failure_rate(self) -> float:
        """Failures per windowed request (0.0 when the window is empty)."""
        if self.window_requests == 0:
            return 0.0
        return self.window_failures / self.window_requests


class CircuitOpenError(ReboundError):
    """Returned when the circuit is open and rejected the call."""

    def __init__(self, name: str = "default", snapshot: CircuitSnapshot | None = None):
        self.name = name
        self.snapshot = snapshot
        context: dict[str, Any] = {"breaker": name}
        if snapshot is not None:
            context["consecutive_failures"] = snapshot.consecutive_failures
            context["last_failure_at"] = snapshot.last_failure_at
        super().__init__(f"Circuit '{name}' is open, rejecting request", context=context)


class CircuitBreaker:
    """Three-state breaker shared by every execution against one resource.

    All counter mutation happens inside :meth:`can_execute`,
    :meth:`on_success`, :meth:`on_failure` and :meth:`reset`, each under the
    instance lock, so concurrent executions cannot corrupt the streak, the
    window or a transition.

    Args:
        config: Thresholds and timeouts
        name: Identifier used in logs and errors
        clock: Zero-argument callable returning milliseconds
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        *,
        name: str = "default",
        clock: Clock | None = None,
    ) -> None:
        self.config = config or CircuitBreakerConfig()
        self.name = name
        self._clock = clock or monotonic_ms
        self._lock = threading.RLock()

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._half_open_successes = 0
        self._window: deque[tuple[float, bool]] = deque()
        self._last_failure_at: float | None = None
        self._last_state_change_at = self._clock()

    @property
    def state(self) -> CircuitState:
        """Current state, without triggering the OPEN -> HALF_OPEN check."""
        with self._lock:
            return self._state

    def _trim_window(self, now: float) -> None:
        horizon = now - self.config.rolling_window_ms
        while self._window and self._window[0][0] < horizon:
            self._window.popleft()

    def _transition_to(self, new_state: CircuitState, now: float) -> None:
        old_state = self._state
        self._state = new_state
        self._last_state_change_at = now

        if new_state == CircuitState.CLOSED:
            self._consecutive_failures = 0
            self._half_open_successes = 0
            self._window.clear()
        elif new_state == CircuitState.HALF_OPEN:
            self._consecutive_failures = 0
            self._half_open_successes = 0

        logger.info(
            "circuit_breaker.transition",
            breaker=self.name,
            from_state=old_state.value,
            to_state=new_state.value,
        )

    def can_execute(self) -> bool:
        """Check whether a call may proceed.

        Polling an OPEN breaker whose recovery timeout has elapsed moves it
        to HALF_OPEN and admits the call as a probe.
        """
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.HALF_OPEN:
                return True

            now = self._clock()
            if now - self._last_state_change_at >= self.config.recovery_timeout_ms:
                self._transition_to(CircuitState.HALF_OPEN, now)
                return True

            logger.debug(
                "circuit_breaker.rejected",
                breaker=self.name,
                open_for_ms=now - self._last_state_change_at,
            )
            return False

    def on_success(self) -> None:
        """Record a successful call."""
        with self._lock:
            now = self._clock()
            self._window.append((now, True))
            self._trim_window(now)

            if self._state == CircuitState.HALF_OPEN:
                self._half_open_successes += 1
                if self._half_open_successes >= self.config.success_threshold:
                    self._transition_to(CircuitState.CLOSED, now)
            else:
                self._consecutive_failures = 0

    def on_failure(self, error: BaseException | None = None) -> None:
        """Record a failed call."""
        with self._lock:
            now = self._clock()
            self._consecutive_failures += 1
            self._last_failure_at = now
            self._window.append((now, False))
            self._trim_window(now)

            if self._state == CircuitState.HALF_OPEN:
                # Any failure in half-open reopens the circuit
                self._transition_to(CircuitState.OPEN, now)
            elif (
                self._state == CircuitState.CLOSED
                and len(self._window) >= self.config.request_volume_threshold
                and self._consecutive_failures >= self.config.failure_threshold
            ):
                self._transition_to(CircuitState.OPEN, now)
                logger.warning(
                    "circuit_breaker.opened",
                    breaker=self.name,
                    consecutive_failures=self._consecutive_failures,
                    window_requests=len(self._window),
                    error=str(error) if error is not None else None,
                )

    def get_snapshot(self) -> CircuitSnapshot:
        """Immutable copy of the current counters.

        Window counts cover only outcomes within ``rolling_window_ms`` of
        now, whether or not a call has arrived since they aged out.
        """
        with self._lock:
            horizon = self._clock() - self.config.rolling_window_ms
            recent = [ok for t, ok in self._window if t >= horizon]
            return CircuitSnapshot(
                name=self.name,
                state=self._state,
                consecutive_failures=self._consecutive_failures,
                half_open_successes=self._half_open_successes,
                window_requests=len(recent),
                window_failures=recent.count(False),
                last_failure_at=self._last_failure_at,
                last_state_change_at=self._last_state_change_at,
            )

    def is_healthy(self) -> bool:
        """False when OPEN or when the window shows a failure rate above 50%."""
        snapshot = self.get_snapshot()
        if snapshot.state == CircuitState.OPEN:
            return False
        if (
            snapshot.window_requests >= self.config.request_volume_threshold
            and snapshot.failure_rate > 0.5
        ):
            return False
        return True

    def reset(self) -> None:
        """Force CLOSED and clear every counter."""
        with self._lock:
            self._transition_to(CircuitState.CLOSED, self._clock())
            self._last_failure_at = None

    def force_open(self) -> None:
        """Open immediately, regardless of thresholds (maintenance windows, drills)."""
        with self._lock:
            now = self._clock()
            self._transition_to(CircuitState.OPEN, now)
            self._last_failure_at = now


class CircuitBreakerRegistry:
    """Owns one breaker per protected resource, keyed by resource name.

    Every breaker the registry creates shares its clock, so a test can drive
    recovery timeouts for a whole fleet of resources from one fake clock.
    """

    def __init__(self, clock: Clock | None = None):
        self._breakers: dict[str, CircuitBreaker] = {}
        self._clock = clock
        self._lock = threading.RLock()

    def get(self, name: str) -> CircuitBreaker | None:
        """Breaker guarding ``name``, or None if none was created."""
        with self._lock:
            return self._breakers.get(name)

    def get_or_create(
        self, name: str, config: CircuitBreakerConfig | None = None
    ) -> CircuitBreaker:
        """Breaker guarding ``name``; ``config`` applies only on first creation."""
        with self._lock:
            if name not in self._breakers:
                self._breakers[name] = CircuitBreaker(config, name=name, clock=self._clock)
            return self._breakers[name]

    def list_all(self) -> list[str]:
        """Names of the guarded resources, in creation order."""
        with self._lock:
            return list(self._breakers.keys())

    def remove(self, name: str) -> None:
        """Forget the breaker for ``name``; unknown names are ignored."""
        with self._lock:
            self._breakers.pop(name, None)

    def clear(self) -> None:
        """Forget every breaker."""
        with self._lock:
            self._breakers.clear()

    def reset_all(self) -> None:
        """Force every breaker CLOSED and clear its counters."""
        with self._lock:
            for breaker in self._breakers.values():
                breaker.reset()


__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitOpenError",
    "CircuitSnapshot",
    "CircuitState",
    "Clock",
    "monotonic_ms",
]
