"""Exponential backoff with bounded, symmetric jitter.

Delay before retry ``n`` (1-based: ``n=1`` is the wait after the first
failed attempt):

    base  = min(initial_delay_ms * multiplier ** (n - 1), max_delay_ms)
    jitter = uniform(-jitter_fraction * base, +jitter_fraction * base)
    delay = round(clamp(base + jitter, 0, max_delay_ms))

The random source is injectable so tests can pin the jitter.

Example:
    >>> from random import Random
    >>> calculator = BackoffCalculator(rng=Random(7))
    >>> policy = RetryPolicy(initial_delay_ms=100, multiplier=2, jitter_fraction=0)
    >>> [calculator.compute_delay(policy, n).delay_ms for n in (1, 2, 3)]
    [100, 200, 400]
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Protocol

from rebound.execution.policy import RetryPolicy


class RandomSource(Protocol):
    def uniform(self, a: float, b: float) -> float: ...


@dataclass(frozen=True)
class DelayCalculation:
    """Result of one delay computation."""

    delay_ms: int
    base_delay_ms: float
    jitter_ms: float
    attempt_number: int


def compute_delay(
    policy: RetryPolicy,
    attempt_number: int,
    rng: RandomSource | None = None,
    include_jitter: bool = True,
) -> DelayCalculation:
    """Calculate the backoff delay before retry ``attempt_number``.

    Args:
        policy: Retry policy supplying delays, multiplier and jitter
        attempt_number: 1-based retry number (1 = wait after the first failure)
        rng: Random source for jitter (default: module-level ``random``)
        include_jitter: Set False for the deterministic base delay

    Raises:
        ValueError: If attempt_number < 1
    """
    if attempt_number < 1:
        raise ValueError(f"attempt_number must be >= 1, got {attempt_number}")

    base = min(
        policy.initial_delay_ms * (policy.multiplier ** (attempt_number - 1)),
        policy.max_delay_ms,
    )

    jitter = 0.0
    if include_jitter and policy.jitter_fraction > 0:
        spread = base * policy.jitter_fraction
        jitter = (rng or random).uniform(-spread, spread)

    delay = min(max(0.0, base + jitter), policy.max_delay_ms)
    return DelayCalculation(
        delay_ms=round(delay),
        base_delay_ms=base,
        jitter_ms=jitter,
        attempt_number=attempt_number,
    )


class BackoffCalculator:
    """Delay computation bound to one random source.

    Holds no mutable state of its own; safe to share between concurrent
    executions.
    """

    def __init__(self, rng: RandomSource | None = None) -> None:
        self._rng = rng

    def compute_delay(
        self, policy: RetryPolicy, attempt_number: int, include_jitter: bool = True
    ) -> DelayCalculation:
        return compute_delay(policy, attempt_number, self._rng, include_jitter)

    def total_retry_time_ms(self, policy: RetryPolicy) -> int:
        """Jitter-free sum of every delay a policy can incur."""
        return sum(
            compute_delay(policy, attempt, include_jitter=False).delay_ms
            for attempt in range(1, policy.max_attempts)
        )


__all__ = ["BackoffCalculator", "DelayCalculation", "RandomSource", "compute_delay"]
