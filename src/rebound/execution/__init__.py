"""Rebound execution: classification, backoff, circuit breaking and retries.

ARCHITECTURE
────────────
::

    RetryOrchestrator (retry.py)
      ├── ErrorClassifier   ─ failure → category + abort verdict
      ├── RetryConfig       ─ per-category policies + name overrides
      ├── BackoffCalculator ─ exponential delay with jitter
      ├── CircuitBreaker    ─ hybrid streak / rolling-window admission
      ├── AttemptScheduler  ─ runs attempts, spends delays
      ├── Deadline          ─ execution-wide timeout
      ├── CancelToken       ─ cooperative cancellation
      └── RetryEventSink    ─ observer callbacks

MODULE MAP
──────────
  1. policy.py           ─ FailureCategory, RetryPolicy, RetryConfig
  2. classifier.py       ─ ErrorClassifier, ErrorPattern
  3. backoff.py          ─ BackoffCalculator, compute_delay
  4. circuit_breaker.py  ─ CircuitBreaker, CircuitBreakerRegistry
  5. timeout.py / cancellation.py / scheduler.py / events.py
  6. retry.py            ─ RetryOrchestrator, RetryOutcome, with_retry
"""

from rebound.execution.backoff import BackoffCalculator, DelayCalculation, compute_delay
from rebound.execution.cancellation import CancelToken
from rebound.execution.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitOpenError,
    CircuitSnapshot,
    CircuitState,
)
from rebound.execution.classifier import (
    BUILTIN_PATTERNS,
    Classification,
    ErrorClassifier,
    ErrorPattern,
    ErrorTrends,
)
from rebound.execution.events import CallbackEventSink, RetryEventSink
from rebound.execution.policy import (
    CircuitBreakerConfig,
    FailureCategory,
    OperationOverride,
    PolicyOverride,
    RetryConfig,
    RetryPolicy,
)
from rebound.execution.retry import (
    AttemptRecord,
    BatchItem,
    RetryOrchestrator,
    RetryOutcome,
    with_retry,
)
from rebound.execution.scheduler import AsyncioScheduler, AttemptScheduler
from rebound.execution.timeout import Deadline

__all__ = [
    "AsyncioScheduler",
    "AttemptRecord",
    "AttemptScheduler",
    "BackoffCalculator",
    "BatchItem",
    "BUILTIN_PATTERNS",
    "CallbackEventSink",
    "CancelToken",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitOpenError",
    "CircuitSnapshot",
    "CircuitState",
    "Classification",
    "Deadline",
    "DelayCalculation",
    "ErrorClassifier",
    "ErrorPattern",
    "ErrorTrends",
    "FailureCategory",
    "OperationOverride",
    "PolicyOverride",
    "RetryConfig",
    "RetryEventSink",
    "RetryOrchestrator",
    "RetryOutcome",
    "RetryPolicy",
    "compute_delay",
    "with_retry",
]
