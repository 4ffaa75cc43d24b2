"""Attempt scheduling strategies for the retry orchestrator.

The orchestrator decides *whether* and *how long* to wait; an
:class:`AttemptScheduler` decides *how* an attempt is run and how a wait is
spent. Swapping the scheduler lets tests drive the retry loop without real
sleeps, or lets an application run attempts on another event-loop policy.

Both operations are cooperative: they race the attempt (or the sleep)
against the execution deadline and the cancel token and raise
:class:`~rebound.core.errors.TimeoutExpired` or
:class:`~rebound.core.errors.OperationCancelled` when either wins.

Example:
    >>> scheduler = AsyncioScheduler()
    >>> deadline = Deadline.start(2_000, operation="fetch")
    >>> value = await scheduler.run(fetch, deadline, cancel_token=None)
    >>> await scheduler.sleep(250, deadline, cancel_token=None)
"""

from __future__ import annotations

import asyncio
import inspect
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from rebound.core.errors import OperationCancelled
from rebound.execution.cancellation import CancelToken
from rebound.execution.timeout import Deadline

Operation = Callable[[], Any]


def cancelled_error(token: CancelToken, operation: str) -> OperationCancelled:
    return OperationCancelled(
        f"Operation '{operation}' was cancelled: {token.reason}",
        operation=operation,
    )


class AttemptScheduler(ABC):
    """Abstract strategy for running attempts and spending backoff delays."""

    @abstractmethod
    async def run(
        self,
        operation: Operation,
        deadline: Deadline,
        cancel_token: CancelToken | None,
    ) -> Any:
        """Run one attempt of ``operation``.

        Returns:
            The operation's value

        Raises:
            Whatever the operation raises; TimeoutExpired or
            OperationCancelled when the deadline or token wins the race
        """
        ...

    @abstractmethod
    async def sleep(
        self,
        delay_ms: int,
        deadline: Deadline,
        cancel_token: CancelToken | None,
    ) -> None:
        """Wait ``delay_ms`` before the next attempt.

        Raises:
            TimeoutExpired: If the deadline falls inside the wait
            OperationCancelled: If the token fires during the wait
        """
        ...


class AsyncioScheduler(AttemptScheduler):
    """Default scheduler built on ``asyncio.wait``."""

    async def run(
        self,
        operation: Operation,
        deadline: Deadline,
        cancel_token: CancelToken | None,
    ) -> Any:
        result = operation()
        if not inspect.isawaitable(result):
            return result

        task = asyncio.ensure_future(result)
        waiters: set[asyncio.Future[Any]] = {task}
        cancel_waiter = None
        if cancel_token is not None:
            cancel_waiter = asyncio.ensure_future(cancel_token.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=deadline.remaining_s(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()
            if not task.done():
                task.cancel()

        if task in done:
            return task.result()
        if cancel_token is not None and cancel_token.cancelled:
            raise cancelled_error(cancel_token, deadline.operation)
        raise deadline.expired_error()

    async def sleep(
        self,
        delay_ms: int,
        deadline: Deadline,
        cancel_token: CancelToken | None,
    ) -> None:
        wait_s = max(0.0, delay_ms / 1000.0)
        remaining = deadline.remaining_s()
        truncated = remaining is not None and remaining < wait_s
        if truncated:
            wait_s = remaining

        if cancel_token is None:
            await asyncio.sleep(wait_s)
        else:
            cancel_waiter = asyncio.ensure_future(cancel_token.wait())
            try:
                await asyncio.wait({cancel_waiter}, timeout=wait_s)
            finally:
                cancel_waiter.cancel()
            if cancel_token.cancelled:
                raise cancelled_error(cancel_token, deadline.operation)

        if truncated:
            raise deadline.expired_error()


async def invoke(operation: Callable[[], Awaitable[Any] | Any]) -> Any:
    """Call an operation and await its result if it returned an awaitable."""
    result = operation()
    if inspect.isawaitable(result):
        return await result
    return result


__all__ = ["AttemptScheduler", "AsyncioScheduler", "Operation", "cancelled_error", "invoke"]
