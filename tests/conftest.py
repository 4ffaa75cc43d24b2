"""
Shared pytest fixtures and configuration for rebound tests.

This module provides:
- A fake millisecond clock for breaker and deadline timing
- A seeded random source for deterministic jitter
- A recording scheduler and event sink (see tests/_support)
- Factories for breakers and orchestrators wired to the fake clock
- Cleanup of the shared default orchestrator and bound log context

Usage:
    async def test_retries(make_orchestrator, scheduler):
        orchestrator = make_orchestrator()
        outcome = await orchestrator.execute(op, name="fetch")
        assert scheduler.sleeps == [...]
"""

from __future__ import annotations

import random
from typing import Any

import pytest

from rebound.core.logging import clear_context
from rebound.defaults import reset_default_orchestrator
from rebound.execution.circuit_breaker import CircuitBreaker
from rebound.execution.policy import RetryConfig
from rebound.execution.retry import RetryOrchestrator
from tests._support import FakeClock, RecordingScheduler, RecordingSink


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(start=1_000_000.0)


@pytest.fixture
def rng() -> random.Random:
    return random.Random(42)


@pytest.fixture
def scheduler(clock) -> RecordingScheduler:
    return RecordingScheduler(clock)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def make_breaker(clock):
    """Factory for breakers sharing the fake clock."""

    def _make(config=None, name: str = "test") -> CircuitBreaker:
        return CircuitBreaker(config, name=name, clock=clock)

    return _make


@pytest.fixture
def make_orchestrator(clock, rng, scheduler):
    """Factory for orchestrators wired to the fake clock and recording scheduler."""

    def _make(config: RetryConfig | None = None, **kwargs: Any) -> RetryOrchestrator:
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("rng", rng)
        kwargs.setdefault("scheduler", scheduler)
        return RetryOrchestrator(config, **kwargs)

    return _make


@pytest.fixture(autouse=True)
def _isolate_globals():
    """Reset the default orchestrator and log context around every test."""
    reset_default_orchestrator()
    clear_context()
    yield
    reset_default_orchestrator()
    clear_context()
