"""Tests for exponential backoff delay computation."""

import random
from unittest.mock import MagicMock

import pytest

from rebound.execution.backoff import BackoffCalculator, DelayCalculation, compute_delay
from rebound.execution.policy import RetryPolicy


def _policy(**overrides) -> RetryPolicy:
    values = dict(
        max_attempts=5,
        initial_delay_ms=100,
        max_delay_ms=10_000,
        multiplier=2.0,
        jitter_fraction=0.0,
    )
    values.update(overrides)
    return RetryPolicy(**values)


class TestComputeDelay:
    """Tests for compute_delay()."""

    def test_first_retry_uses_initial_delay(self):
        result = compute_delay(_policy(), 1)
        assert isinstance(result, DelayCalculation)
        assert result.delay_ms == 100
        assert result.base_delay_ms == 100
        assert result.jitter_ms == 0
        assert result.attempt_number == 1

    def test_exponential_growth(self):
        """Each retry multiplies the previous base delay."""
        delays = [compute_delay(_policy(), n).delay_ms for n in range(1, 5)]
        assert delays == [100, 200, 400, 800]

    def test_fractional_multiplier(self):
        policy = _policy(initial_delay_ms=2000, multiplier=2.5)
        assert compute_delay(policy, 2).delay_ms == 5000

    def test_capped_at_max_delay(self):
        policy = _policy(max_delay_ms=300)
        assert compute_delay(policy, 3).delay_ms == 300
        assert compute_delay(policy, 10).base_delay_ms == 300

    def test_attempt_below_one_rejected(self):
        with pytest.raises(ValueError, match="attempt_number"):
            compute_delay(_policy(), 0)

    def test_non_decreasing_before_cap(self):
        """Jitter-free delays never shrink as attempts grow."""
        policy = _policy(multiplier=1.7, max_delay_ms=5_000)
        delays = [compute_delay(policy, n).delay_ms for n in range(1, 15)]
        assert delays == sorted(delays)
        assert delays[-1] == 5_000

    def test_zero_initial_delay(self):
        policy = _policy(initial_delay_ms=0, jitter_fraction=0.5)
        assert compute_delay(policy, 4, random.Random(1)).delay_ms == 0


class TestJitter:
    """Tests for jitter handling."""

    def test_no_jitter_fraction_never_draws(self):
        rng = MagicMock()
        compute_delay(_policy(jitter_fraction=0.0), 2, rng)
        rng.uniform.assert_not_called()

    def test_jitter_uses_symmetric_spread(self):
        rng = MagicMock()
        rng.uniform.return_value = 15.0
        result = compute_delay(_policy(jitter_fraction=0.1), 2, rng)

        rng.uniform.assert_called_once_with(-20.0, 20.0)
        assert result.base_delay_ms == 200
        assert result.jitter_ms == 15.0
        assert result.delay_ms == 215

    def test_include_jitter_false_is_deterministic(self):
        rng = MagicMock()
        result = compute_delay(_policy(jitter_fraction=0.5), 3, rng, include_jitter=False)
        assert result.delay_ms == 400
        rng.uniform.assert_not_called()

    def test_jittered_delay_stays_in_bounds(self):
        """Jittered delays stay within [0, max_delay_ms]."""
        rng = random.Random(1234)
        policy = _policy(initial_delay_ms=1000, max_delay_ms=4000, jitter_fraction=1.0)
        for attempt in range(1, 8):
            for _ in range(50):
                delay = compute_delay(policy, attempt, rng).delay_ms
                assert 0 <= delay <= 4000

    def test_seeded_rng_is_reproducible(self):
        policy = _policy(jitter_fraction=0.2)
        first = [compute_delay(policy, n, random.Random(7)).delay_ms for n in range(1, 5)]
        second = [compute_delay(policy, n, random.Random(7)).delay_ms for n in range(1, 5)]
        assert first == second


class TestBackoffCalculator:
    """Tests for the BackoffCalculator wrapper."""

    def test_binds_random_source(self):
        rng = MagicMock()
        rng.uniform.return_value = -10.0
        calculator = BackoffCalculator(rng)

        result = calculator.compute_delay(_policy(jitter_fraction=0.1), 1)

        assert result.delay_ms == 90
        rng.uniform.assert_called_once()

    def test_total_retry_time(self):
        """Sum of the waits between max_attempts attempts."""
        calculator = BackoffCalculator()
        policy = _policy(max_attempts=3, jitter_fraction=0.3)
        assert calculator.total_retry_time_ms(policy) == 300

    def test_total_retry_time_single_attempt(self):
        assert BackoffCalculator().total_retry_time_ms(_policy(max_attempts=1)) == 0
