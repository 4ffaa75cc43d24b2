"""Cooperative cancellation for retry executions.

A :class:`CancelToken` is handed to ``RetryOrchestrator.execute()``. The
orchestrator checks it before every attempt and races it against the running
attempt and the backoff sleep; firing it ends the execution with an aborted
outcome instead of a classified failure.

Example:
    >>> token = CancelToken()
    >>> task = asyncio.create_task(
    ...     orchestrator.execute(fetch_slots, name="slot-search", cancel_token=token)
    ... )
    >>> token.cancel("user left the page")
    >>> (await task).aborted
    True
"""

from __future__ import annotations

import asyncio


class CancelToken:
    """One-shot cancellation signal shareable between tasks."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Fire the token. Later calls keep the first reason."""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    async def wait(self) -> None:
        """Block until the token fires."""
        await self._event.wait()

    def __repr__(self) -> str:
        state = f"cancelled: {self._reason!r}" if self.cancelled else "active"
        return f"CancelToken({state})"


__all__ = ["CancelToken"]
