"""Retry orchestration: classification, backoff and circuit breaking in one loop.

WHY
───
Flaky dependencies (browsers, booking backends, payment gateways) fail in
different ways that deserve different treatment: a dropped connection is
worth five retries, a 404 is worth none, and a dependency that keeps failing
should stop receiving traffic for a while. :class:`RetryOrchestrator` turns
those rules into a single ``await orchestrator.execute(op, name=...)`` that
never raises and reports every decision it took.

ARCHITECTURE
────────────
::

    RetryOrchestrator.execute(operation, name=...)
      ├── CircuitBreaker.can_execute()    ─ admission, per attempt
      ├── AttemptScheduler.run()          ─ attempt raced vs deadline / token
      ├── ErrorClassifier.classify()      ─ category + abort verdict
      ├── RetryConfig.resolve_policy()    ─ category → name keyword → caller
      ├── BackoffCalculator.compute_delay ─ exponential delay with jitter
      ├── AttemptScheduler.sleep()        ─ cancellable backoff wait
      └── RetryOutcome                    ─ value / error + AttemptRecords

Example::

    orchestrator = RetryOrchestrator()
    outcome = await orchestrator.execute(fetch_slots, name="slot-search")
    if outcome.success:
        render(outcome.value)
    else:
        log_failure(outcome.error, outcome.reason)

    # Or raise on failure:
    slots = await orchestrator.call(fetch_slots, name="slot-search")

Guardrails:
    - ``execute`` never raises for operation failures; the outcome carries
      the last error, a CircuitOpenError, or an OperationAborted subclass.
    - Event sink exceptions are logged and discarded.
    - The only state shared between executions is the breaker.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from rebound.core.errors import OperationAborted, ReboundError
from rebound.core.logging import LogContext, get_logger
from rebound.execution.backoff import BackoffCalculator, RandomSource
from rebound.execution.cancellation import CancelToken
from rebound.execution.circuit_breaker import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
    Clock,
    monotonic_ms,
)
from rebound.execution.classifier import ErrorClassifier
from rebound.execution.events import emit
from rebound.execution.policy import FailureCategory, PolicyOverride, RetryConfig
from rebound.execution.scheduler import (
    AsyncioScheduler,
    AttemptScheduler,
    cancelled_error,
    invoke,
)
from rebound.execution.timeout import Deadline

logger = get_logger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T] | T]


@dataclass(frozen=True)
class AttemptRecord:
    """One attempt of an execution and the decision taken after it.

    Attributes:
        attempt_number: 1-based attempt index
        category: Failure category, None for successes and unclassified failures
        delay_before_ms: Backoff awaited before the next attempt, 0 when terminal
        elapsed_ms: Duration of this attempt
        error: The failure, None on success
        circuit_state_at_attempt: Breaker state at admission, None when skipped
        reason: Decision taken after the attempt
    """

    attempt_number: int
    category: FailureCategory | None
    delay_before_ms: int
    elapsed_ms: float
    error: BaseException | None
    circuit_state_at_attempt: CircuitState | None
    reason: str = ""

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempt_number": self.attempt_number,
            "category": self.category.value if self.category else None,
            "delay_before_ms": self.delay_before_ms,
            "elapsed_ms": round(self.elapsed_ms, 3),
            "error": str(self.error) if self.error is not None else None,
            "circuit_state": (
                self.circuit_state_at_attempt.value if self.circuit_state_at_attempt else None
            ),
            "reason": self.reason,
        }


@dataclass
class RetryOutcome(Generic[T]):
    """Result of one ``execute`` call."""

    success: bool
    value: T | None = None
    error: BaseException | None = None
    attempts: list[AttemptRecord] = field(default_factory=list)
    total_time_ms: float = 0.0
    circuit_breaker_tripped: bool = False
    aborted: bool = False
    reason: str = ""

    @property
    def total_attempts(self) -> int:
        return len(self.attempts)

    @property
    def last_attempt(self) -> AttemptRecord | None:
        return self.attempts[-1] if self.attempts else None

    def unwrap(self) -> T:
        """Return the value, or raise the error that ended the execution."""
        if self.success:
            return self.value  # type: ignore[return-value]
        if self.error is not None:
            raise self.error
        raise ReboundError(self.reason or "Execution failed without an error")

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "error": str(self.error) if self.error is not None else None,
            "total_attempts": self.total_attempts,
            "total_time_ms": round(self.total_time_ms, 3),
            "circuit_breaker_tripped": self.circuit_breaker_tripped,
            "aborted": self.aborted,
            "reason": self.reason,
            "attempts": [a.to_dict() for a in self.attempts],
        }


@dataclass(frozen=True)
class BatchItem:
    """A named operation in an ``execute_all`` batch."""

    name: str
    operation: Operation


class RetryOrchestrator:
    """Runs operations under classification-driven retry and a circuit breaker.

    Args:
        config: Policies, operation overrides and breaker thresholds
        breaker: Breaker to share; built from ``config.circuit_breaker`` if omitted
        classifier: Failure classifier
        backoff: Delay calculator; built from ``rng`` if omitted
        scheduler: Attempt scheduler (defaults to AsyncioScheduler)
        events: Default event sink for every execution
        clock: Millisecond clock for timings, deadlines and the default breaker
        rng: Random source for jitter when ``backoff`` is omitted
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        *,
        breaker: CircuitBreaker | None = None,
        classifier: ErrorClassifier | None = None,
        backoff: BackoffCalculator | None = None,
        scheduler: AttemptScheduler | None = None,
        events: Any = None,
        clock: Clock | None = None,
        rng: RandomSource | None = None,
    ) -> None:
        self._config = config or RetryConfig.default()
        self._clock = clock or monotonic_ms
        if breaker is None:
            breaker = CircuitBreaker(self._config.circuit_breaker, name="retry", clock=self._clock)
        self._breaker = breaker
        self.classifier = classifier if classifier is not None else ErrorClassifier()
        self.backoff = backoff or BackoffCalculator(rng)
        self.scheduler = scheduler or AsyncioScheduler()
        self.events = events

    @property
    def config(self) -> RetryConfig:
        return self._config

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    def is_healthy(self) -> bool:
        return self._breaker.is_healthy()

    def reset_circuit_breaker(self) -> None:
        self._breaker.reset()
        logger.info("retry.circuit_breaker_reset", breaker=self._breaker.name)

    # ── Execution ────────────────────────────────────────────────────────

    async def execute(
        self,
        operation: Operation,
        *,
        name: str = "operation",
        category_override: FailureCategory | None = None,
        policy_override: PolicyOverride | None = None,
        skip_circuit_breaker: bool = False,
        timeout_ms: float | None = None,
        cancel_token: CancelToken | None = None,
        events: Any = None,
    ) -> RetryOutcome:
        """Run ``operation`` until it succeeds or a terminal decision is reached.

        Args:
            operation: Zero-argument callable returning an awaitable or a value
            name: Operation name; selects keyword overrides and tags logs
            category_override: Skip classification and use this category
            policy_override: Caller override merged last
            skip_circuit_breaker: Neither consult nor report to the breaker
            timeout_ms: Budget for the whole execution, attempts and sleeps
            cancel_token: Token that aborts the execution when fired
            events: Event sink for this call (defaults to the orchestrator's)

        Returns:
            RetryOutcome; never raises for operation failures
        """
        sink = events if events is not None else self.events
        deadline = Deadline.start(timeout_ms, operation=name, clock=self._clock)

        async with LogContext(operation=name):
            if not self._config.enabled:
                return await self._execute_once(operation, deadline)
            return await self._execute_with_retry(
                operation,
                name=name,
                deadline=deadline,
                category_override=category_override,
                policy_override=policy_override,
                skip_circuit_breaker=skip_circuit_breaker,
                cancel_token=cancel_token,
                sink=sink,
            )

    async def _execute_once(self, operation: Operation, deadline: Deadline) -> RetryOutcome:
        started = self._clock()
        try:
            value = await invoke(operation)
        except Exception as e:
            elapsed = self._clock() - started
            record = AttemptRecord(1, None, 0, elapsed, e, None, "retry disabled")
            return RetryOutcome(
                success=False,
                error=e,
                attempts=[record],
                total_time_ms=deadline.elapsed_ms(),
                reason="retry disabled",
            )
        elapsed = self._clock() - started
        record = AttemptRecord(1, None, 0, elapsed, None, None, "succeeded")
        return RetryOutcome(
            success=True,
            value=value,
            attempts=[record],
            total_time_ms=deadline.elapsed_ms(),
            reason="succeeded",
        )

    async def _execute_with_retry(
        self,
        operation: Operation,
        *,
        name: str,
        deadline: Deadline,
        category_override: FailureCategory | None,
        policy_override: PolicyOverride | None,
        skip_circuit_breaker: bool,
        cancel_token: CancelToken | None,
        sink: Any,
    ) -> RetryOutcome:
        attempts: list[AttemptRecord] = []
        attempt = 1

        while True:
            abort = self._pending_abort(deadline, cancel_token)
            if abort is not None:
                return self._aborted(abort, attempts, deadline, sink)

            circuit_state: CircuitState | None = None
            if not skip_circuit_breaker:
                if not self._breaker.can_execute():
                    return self._rejected(attempts, deadline, sink)
                circuit_state = self._breaker.state

            attempt_started = self._clock()
            try:
                value = await self.scheduler.run(operation, deadline, cancel_token)
            except OperationAborted as e:
                if not self._owns_abort(deadline, cancel_token):
                    # Raised by the operation itself, e.g. a nested execution
                    error = e
                else:
                    attempts.append(
                        AttemptRecord(
                            attempt,
                            None,
                            0,
                            self._clock() - attempt_started,
                            e,
                            circuit_state,
                            f"aborted: {e.reason}",
                        )
                    )
                    return self._aborted(e, attempts, deadline, sink)
            except Exception as e:
                error = e
            else:
                if not skip_circuit_breaker:
                    self._breaker.on_success()
                attempts.append(
                    AttemptRecord(
                        attempt,
                        None,
                        0,
                        self._clock() - attempt_started,
                        None,
                        circuit_state,
                        "succeeded",
                    )
                )
                logger.debug("retry.succeeded", attempts=attempt)
                emit(sink, "on_success", value, attempt)
                return RetryOutcome(
                    success=True,
                    value=value,
                    attempts=attempts,
                    total_time_ms=deadline.elapsed_ms(),
                    reason="succeeded",
                )

            elapsed = self._clock() - attempt_started
            emit(sink, "on_failed_attempt", error, attempt)

            if category_override is not None:
                category, abort_verdict = category_override, False
            else:
                classification = self.classifier.classify(error)
                category, abort_verdict = classification.category, classification.abort
            policy = self._config.resolve_policy(category, name, policy_override)

            if policy.use_circuit_breaker and not skip_circuit_breaker:
                self._breaker.on_failure(error)

            terminal: str | None = None
            if not policy.enabled:
                terminal = f"retry disabled for {category.value}"
            elif abort_verdict:
                terminal = f"non-retryable {category.value} failure"
            elif attempt >= policy.max_attempts:
                terminal = f"max attempts reached ({attempt}/{policy.max_attempts})"

            if terminal is not None:
                attempts.append(
                    AttemptRecord(attempt, category, 0, elapsed, error, circuit_state, terminal)
                )
                logger.warning(
                    "retry.failed",
                    attempt=attempt,
                    category=category.value,
                    reason=terminal,
                    error=str(error),
                )
                emit(sink, "on_abort", error, terminal)
                return RetryOutcome(
                    success=False,
                    error=error,
                    attempts=attempts,
                    total_time_ms=deadline.elapsed_ms(),
                    reason=terminal,
                )

            delay = self.backoff.compute_delay(policy, attempt)
            decision = f"retrying in {delay.delay_ms}ms ({attempt}/{policy.max_attempts})"
            attempts.append(
                AttemptRecord(
                    attempt, category, delay.delay_ms, elapsed, error, circuit_state, decision
                )
            )
            logger.warning(
                "retry.attempt_failed",
                attempt=attempt,
                max_attempts=policy.max_attempts,
                category=category.value,
                delay_ms=delay.delay_ms,
                error=str(error),
            )

            try:
                await self.scheduler.sleep(delay.delay_ms, deadline, cancel_token)
            except OperationAborted as e:
                return self._aborted(e, attempts, deadline, sink)

            emit(sink, "on_retry", error, attempt)
            attempt += 1

    # ── Terminal helpers ─────────────────────────────────────────────────

    @staticmethod
    def _owns_abort(deadline: Deadline, cancel_token: CancelToken | None) -> bool:
        """True when this execution's own token or deadline has fired."""
        if cancel_token is not None and cancel_token.cancelled:
            return True
        return deadline.is_expired()

    @staticmethod
    def _pending_abort(
        deadline: Deadline, cancel_token: CancelToken | None
    ) -> OperationAborted | None:
        if cancel_token is not None and cancel_token.cancelled:
            return cancelled_error(cancel_token, deadline.operation)
        if deadline.is_expired():
            return deadline.expired_error()
        return None

    def _aborted(
        self,
        error: OperationAborted,
        attempts: list[AttemptRecord],
        deadline: Deadline,
        sink: Any,
    ) -> RetryOutcome:
        reason = f"aborted: {error.reason}"
        logger.warning("retry.aborted", reason=error.reason, attempts=len(attempts))
        emit(sink, "on_abort", error, reason)
        return RetryOutcome(
            success=False,
            error=error,
            attempts=attempts,
            total_time_ms=deadline.elapsed_ms(),
            aborted=True,
            reason=reason,
        )

    def _rejected(
        self, attempts: list[AttemptRecord], deadline: Deadline, sink: Any
    ) -> RetryOutcome:
        error = CircuitOpenError(self._breaker.name, self._breaker.get_snapshot())
        reason = "circuit open"
        logger.warning("retry.circuit_open", breaker=self._breaker.name, attempts=len(attempts))
        emit(sink, "on_abort", error, reason)
        return RetryOutcome(
            success=False,
            error=error,
            attempts=attempts,
            total_time_ms=deadline.elapsed_ms(),
            circuit_breaker_tripped=True,
            reason=reason,
        )

    # ── Batches ──────────────────────────────────────────────────────────

    async def execute_all(
        self,
        batch: Iterable[BatchItem | tuple[str, Operation]],
        *,
        fail_fast: bool = False,
        max_concurrent: int | None = None,
        **options: Any,
    ) -> list[RetryOutcome]:
        """Execute a batch of named operations.

        Args:
            batch: BatchItems or ``(name, operation)`` pairs
            fail_fast: Run sequentially and stop after the first failed outcome
            max_concurrent: Chunk size for concurrent mode (None = whole batch)
            **options: Forwarded to :meth:`execute` (except ``name``)

        Returns:
            Outcomes in batch order. In fail-fast mode the list ends at the
            first failed outcome.
        """
        if max_concurrent is not None and max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")
        if "name" in options:
            raise TypeError("execute_all() takes names from the batch items, not a name= option")

        items = [item if isinstance(item, BatchItem) else BatchItem(*item) for item in batch]
        logger.info(
            "retry.batch_started",
            items=len(items),
            fail_fast=fail_fast,
            max_concurrent=max_concurrent,
        )

        outcomes: list[RetryOutcome] = []
        if fail_fast:
            for item in items:
                outcome = await self.execute(item.operation, name=item.name, **options)
                outcomes.append(outcome)
                if not outcome.success:
                    logger.warning(
                        "retry.batch_stopped",
                        failed_item=item.name,
                        completed=len(outcomes) - 1,
                        skipped=len(items) - len(outcomes),
                    )
                    break
            return outcomes

        chunk_size = max_concurrent or max(len(items), 1)
        for start in range(0, len(items), chunk_size):
            chunk = items[start : start + chunk_size]
            outcomes.extend(
                await asyncio.gather(
                    *(self.execute(item.operation, name=item.name, **options) for item in chunk)
                )
            )

        logger.info(
            "retry.batch_completed",
            succeeded=sum(1 for o in outcomes if o.success),
            failed=sum(1 for o in outcomes if not o.success),
        )
        return outcomes

    # ── Convenience ──────────────────────────────────────────────────────

    async def call(self, operation: Operation, *, name: str = "operation", **options: Any) -> Any:
        """Execute and return the value, raising the outcome's error on failure."""
        outcome = await self.execute(operation, name=name, **options)
        return outcome.unwrap()

    def wrap(
        self, operation: Operation, *, name: str = "operation", **options: Any
    ) -> Callable[[], Awaitable[Any]]:
        """Bind an operation to this orchestrator as a zero-argument coroutine function."""

        async def wrapped() -> Any:
            return await self.call(operation, name=name, **options)

        return wrapped


def with_retry(
    orchestrator: RetryOrchestrator,
    name: str | None = None,
    **options: Any,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator factory running an async function through an orchestrator.

    Args:
        orchestrator: Orchestrator that owns the breaker and policies
        name: Operation name (default: the function's qualified name)
        **options: Forwarded to :meth:`RetryOrchestrator.execute`

    Example:
        >>> @with_retry(orchestrator, name="slot-search")
        ... async def fetch_slots(day):
        ...     return await client.get_slots(day)
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"with_retry requires an async function, got {func!r}")
        operation_name = name or func.__qualname__

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await orchestrator.call(
                lambda: func(*args, **kwargs), name=operation_name, **options
            )

        return wrapper

    return decorator


__all__ = [
    "AttemptRecord",
    "BatchItem",
    "RetryOrchestrator",
    "RetryOutcome",
    "with_retry",
]
