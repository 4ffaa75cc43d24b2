"""Event sink contract for observing retry executions.

A sink receives four synchronous callbacks from the orchestrator:

* ``on_failed_attempt(error, attempt)`` - every failed attempt
* ``on_retry(error, attempt)`` - after the backoff, before the next attempt
* ``on_success(value, attempts)`` - the execution succeeded
* ``on_abort(error, reason)`` - the execution ended without success

Subclass :class:`RetryEventSink` and override any subset, pass a
:class:`CallbackEventSink` built from plain callables, or pass any object
that has some of these methods. An exception raised by a callback is logged
and discarded; it never reaches the retry flow.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from rebound.core.logging import get_logger

logger = get_logger(__name__)

EVENT_NAMES = ("on_retry", "on_failed_attempt", "on_success", "on_abort")


class RetryEventSink:
    """No-op base sink; override the callbacks you need."""

    def on_retry(self, error: BaseException, attempt: int) -> None:
        pass

    def on_failed_attempt(self, error: BaseException, attempt: int) -> None:
        pass

    def on_success(self, value: Any, attempts: int) -> None:
        pass

    def on_abort(self, error: BaseException, reason: str) -> None:
        pass


@dataclass(frozen=True)
class CallbackEventSink(RetryEventSink):
    """Sink assembled from optional callables."""

    retry: Callable[[BaseException, int], None] | None = None
    failed_attempt: Callable[[BaseException, int], None] | None = None
    success: Callable[[Any, int], None] | None = None
    abort: Callable[[BaseException, str], None] | None = None

    def on_retry(self, error: BaseException, attempt: int) -> None:
        if self.retry is not None:
            self.retry(error, attempt)

    def on_failed_attempt(self, error: BaseException, attempt: int) -> None:
        if self.failed_attempt is not None:
            self.failed_attempt(error, attempt)

    def on_success(self, value: Any, attempts: int) -> None:
        if self.success is not None:
            self.success(value, attempts)

    def on_abort(self, error: BaseException, reason: str) -> None:
        if self.abort is not None:
            self.abort(error, reason)


def emit(sink: Any, event: str, *args: Any) -> None:
    """Invoke ``sink.<event>(*args)``, swallowing and logging callback errors."""
    if sink is None:
        return
    callback = getattr(sink, event, None)
    if callback is None:
        return
    try:
        callback(*args)
    except Exception:
        logger.warning("retry.event_sink_failed", event_name=event, exc_info=True)


__all__ = ["RetryEventSink", "CallbackEventSink", "EVENT_NAMES", "emit"]
