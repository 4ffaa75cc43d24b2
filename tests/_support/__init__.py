"""
Test support utilities for rebound tests.

Test doubles that don't fit as pytest fixtures but are shared across test
files: a fake millisecond clock, a scheduler that never really sleeps and an
event sink that records every callback.
"""

from __future__ import annotations

from typing import Any

from rebound.execution.cancellation import CancelToken
from rebound.execution.events import RetryEventSink
from rebound.execution.scheduler import AttemptScheduler, cancelled_error, invoke
from rebound.execution.timeout import Deadline


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class RecordingScheduler(AttemptScheduler):
    """Runs attempts inline and spends delays by advancing a fake clock.

    Usage:
        scheduler = RecordingScheduler(clock)
        await orchestrator.execute(op, name="fetch")
        assert scheduler.sleeps == [100, 200]
    """

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.sleeps: list[int] = []
        self.runs = 0

    async def run(
        self, operation: Any, deadline: Deadline, cancel_token: CancelToken | None
    ) -> Any:
        self.runs += 1
        return await invoke(operation)

    async def sleep(
        self, delay_ms: int, deadline: Deadline, cancel_token: CancelToken | None
    ) -> None:
        self.sleeps.append(delay_ms)
        remaining = deadline.remaining_ms()
        if remaining is not None and remaining < delay_ms:
            self.clock.advance(max(remaining, 0))
            raise deadline.expired_error()
        self.clock.advance(delay_ms)
        if cancel_token is not None and cancel_token.cancelled:
            raise cancelled_error(cancel_token, deadline.operation)


class RecordingSink(RetryEventSink):
    """Event sink that records ``(event, payload)`` tuples."""

    def __init__(self) -> None:
        self.events: list[tuple[str, Any]] = []

    def on_retry(self, error, attempt):
        self.events.append(("retry", attempt))

    def on_failed_attempt(self, error, attempt):
        self.events.append(("failed_attempt", attempt))

    def on_success(self, value, attempts):
        self.events.append(("success", attempts))

    def on_abort(self, error, reason):
        self.events.append(("abort", reason))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]
