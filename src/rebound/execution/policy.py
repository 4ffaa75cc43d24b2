"""Retry policies, circuit breaker config and failure categories.

Everything here is plain immutable data: frozen dataclasses validated on
construction. Parsing values from the environment lives in
:mod:`rebound.core.settings`; this module never reads it.

Policy resolution for one failed attempt merges, in order:

1. the failure category's default policy,
2. the first operation-name override whose keywords match the operation
   name (case-insensitive substring),
3. the caller's explicit ``policy_override``.

Example:
    >>> config = RetryConfig.default()
    >>> policy = config.resolve_policy(FailureCategory.NETWORK, "slot-search")
    >>> policy.max_attempts, policy.initial_delay_ms
    (3, 1500)
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from types import MappingProxyType

from rebound.core.errors import ConfigError


class FailureCategory(str, Enum):
    """Failure categories used to pick a retry policy."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    CLIENT = "client"
    AUTH = "auth"
    NAVIGATION = "navigation"
    BUSINESS = "business"
    UNKNOWN = "unknown"

    @property
    def transient(self) -> bool:
        """Categories that are always retried up to policy limits."""
        return self in _TRANSIENT


_TRANSIENT = frozenset(
    {
        FailureCategory.NETWORK,
        FailureCategory.TIMEOUT,
        FailureCategory.RATE_LIMIT,
        FailureCategory.SERVER,
    }
)


def _require(condition: bool, key: str, value: object, message: str) -> None:
    if not condition:
        raise ConfigError(key, value, f"{key} {message}, got {value!r}")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry behaviour for one failure category.

    Attributes:
        enabled: Whether failures of this category are retried at all
        max_attempts: Total attempts including the first one
        initial_delay_ms: Delay before the second attempt
        max_delay_ms: Cap applied to every computed delay
        multiplier: Exponential growth factor between attempts
        jitter_fraction: Jitter as a fraction of the base delay (0 disables)
        use_circuit_breaker: Whether failures are reported to the breaker
    """

    enabled: bool = True
    max_attempts: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 30000
    multiplier: float = 2.0
    jitter_fraction: float = 0.1
    use_circuit_breaker: bool = True

    def __post_init__(self) -> None:
        _require(self.max_attempts >= 1, "max_attempts", self.max_attempts, "must be at least 1")
        _require(
            self.initial_delay_ms >= 0,
            "initial_delay_ms",
            self.initial_delay_ms,
            "must be non-negative",
        )
        _require(
            self.max_delay_ms >= self.initial_delay_ms,
            "max_delay_ms",
            self.max_delay_ms,
            f"must be >= initial_delay_ms ({self.initial_delay_ms})",
        )
        _require(self.multiplier >= 1, "multiplier", self.multiplier, "must be >= 1")
        _require(
            0 <= self.jitter_fraction <= 1,
            "jitter_fraction",
            self.jitter_fraction,
            "must be between 0 and 1",
        )

    def merged(self, override: PolicyOverride | None) -> RetryPolicy:
        """Return a copy with the override's non-None fields applied.

        An ``initial_delay_ms`` above the resulting ``max_delay_ms`` lifts
        the cap to match instead of failing.
        """
        if override is None:
            return self
        changes = override.changes()
        if not changes:
            return self
        initial = changes.get("initial_delay_ms", self.initial_delay_ms)
        if initial > changes.get("max_delay_ms", self.max_delay_ms):
            changes["max_delay_ms"] = initial
        return replace(self, **changes)


@dataclass(frozen=True)
class PolicyOverride:
    """Partial :class:`RetryPolicy`; ``None`` fields keep the base value."""

    enabled: bool | None = None
    max_attempts: int | None = None
    initial_delay_ms: int | None = None
    max_delay_ms: int | None = None
    multiplier: float | None = None
    jitter_fraction: float | None = None
    use_circuit_breaker: bool | None = None

    def __post_init__(self) -> None:
        if self.max_attempts is not None:
            _require(self.max_attempts >= 1, "max_attempts", self.max_attempts, "must be at least 1")
        if self.initial_delay_ms is not None:
            _require(
                self.initial_delay_ms >= 0,
                "initial_delay_ms",
                self.initial_delay_ms,
                "must be non-negative",
            )
        if self.max_delay_ms is not None:
            _require(self.max_delay_ms >= 0, "max_delay_ms", self.max_delay_ms, "must be non-negative")
        if self.multiplier is not None:
            _require(self.multiplier >= 1, "multiplier", self.multiplier, "must be >= 1")
        if self.jitter_fraction is not None:
            _require(
                0 <= self.jitter_fraction <= 1,
                "jitter_fraction",
                self.jitter_fraction,
                "must be between 0 and 1",
            )

    def changes(self) -> dict[str, object]:
        """Fields that were explicitly set."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }


@dataclass(frozen=True)
class OperationOverride:
    """Policy override selected by keywords found in the operation name."""

    keywords: tuple[str, ...]
    override: PolicyOverride

    def matches(self, operation_name: str) -> bool:
        name = operation_name.lower()
        return any(keyword.lower() in name for keyword in self.keywords)


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Thresholds for the hybrid consecutive-failure / rolling-window breaker.

    Attributes:
        failure_threshold: Consecutive failures needed to open
        request_volume_threshold: Requests in the window needed before opening
        rolling_window_ms: Age limit of outcomes kept in the window
        recovery_timeout_ms: Time spent OPEN before a probe is admitted
        success_threshold: Consecutive HALF_OPEN successes needed to close
    """

    failure_threshold: int = 5
    request_volume_threshold: int = 5
    rolling_window_ms: int = 60_000
    recovery_timeout_ms: int = 300_000
    success_threshold: int = 3

    def __post_init__(self) -> None:
        _require(
            self.failure_threshold >= 1,
            "failure_threshold",
            self.failure_threshold,
            "must be at least 1",
        )
        _require(
            self.request_volume_threshold >= 1,
            "request_volume_threshold",
            self.request_volume_threshold,
            "must be at least 1",
        )
        _require(
            self.rolling_window_ms >= 0,
            "rolling_window_ms",
            self.rolling_window_ms,
            "must be non-negative",
        )
        _require(
            self.recovery_timeout_ms >= 0,
            "recovery_timeout_ms",
            self.recovery_timeout_ms,
            "must be non-negative",
        )
        _require(
            self.success_threshold >= 1,
            "success_threshold",
            self.success_threshold,
            "must be at least 1",
        )


DEFAULT_POLICIES: Mapping[FailureCategory, RetryPolicy] = MappingProxyType(
    {
        FailureCategory.NETWORK: RetryPolicy(
            max_attempts=5, initial_delay_ms=1000, max_delay_ms=16000,
            multiplier=2.0, jitter_fraction=0.1,
        ),
        FailureCategory.TIMEOUT: RetryPolicy(
            max_attempts=3, initial_delay_ms=2000, max_delay_ms=10000,
            multiplier=2.5, jitter_fraction=0.15,
        ),
        FailureCategory.RATE_LIMIT: RetryPolicy(
            max_attempts=3, initial_delay_ms=5000, max_delay_ms=45000,
            multiplier=3.0, jitter_fraction=0.2,
        ),
        FailureCategory.SERVER: RetryPolicy(
            max_attempts=3, initial_delay_ms=3000, max_delay_ms=27000,
            multiplier=3.0, jitter_fraction=0.1,
        ),
        FailureCategory.CLIENT: RetryPolicy(
            max_attempts=1, initial_delay_ms=1000, max_delay_ms=5000,
            multiplier=2.0, jitter_fraction=0.1, use_circuit_breaker=False,
        ),
        FailureCategory.AUTH: RetryPolicy(
            max_attempts=2, initial_delay_ms=2000, max_delay_ms=5000,
            multiplier=2.5, jitter_fraction=0.05, use_circuit_breaker=False,
        ),
        FailureCategory.NAVIGATION: RetryPolicy(
            max_attempts=3, initial_delay_ms=2000, max_delay_ms=8000,
            multiplier=2.0, jitter_fraction=0.1,
        ),
        FailureCategory.BUSINESS: RetryPolicy(
            max_attempts=2, initial_delay_ms=3000, max_delay_ms=12000,
            multiplier=2.0, jitter_fraction=0.1,
        ),
        FailureCategory.UNKNOWN: RetryPolicy(
            max_attempts=2, initial_delay_ms=2000, max_delay_ms=8000,
            multiplier=2.0, jitter_fraction=0.1,
        ),
    }
)

# Priority order matters: the first matching entry wins.
DEFAULT_OPERATION_OVERRIDES: tuple[OperationOverride, ...] = (
    OperationOverride(("navigation", "navigate"), PolicyOverride(max_attempts=4)),
    OperationOverride(
        ("slot", "search"), PolicyOverride(max_attempts=3, initial_delay_ms=1500)
    ),
    OperationOverride(
        ("booking", "book"), PolicyOverride(max_attempts=2, initial_delay_ms=2000)
    ),
    OperationOverride(
        ("checkout", "payment"), PolicyOverride(max_attempts=2, initial_delay_ms=3000)
    ),
)


@dataclass(frozen=True)
class RetryConfig:
    """Orchestrator-wide configuration.

    Categories missing from ``policies`` fall back to the built-in defaults.
    """

    enabled: bool = True
    policies: Mapping[FailureCategory, RetryPolicy] = field(
        default_factory=lambda: DEFAULT_POLICIES
    )
    operation_overrides: tuple[OperationOverride, ...] = DEFAULT_OPERATION_OVERRIDES
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)

    def __post_init__(self) -> None:
        policies = dict(DEFAULT_POLICIES)
        policies.update(self.policies)
        object.__setattr__(self, "policies", MappingProxyType(policies))
        object.__setattr__(self, "operation_overrides", tuple(self.operation_overrides))

    @classmethod
    def default(cls) -> RetryConfig:
        return cls()

    @classmethod
    def for_testing(cls) -> RetryConfig:
        """Small attempt counts and short delays for fast test runs."""
        policies = {
            category: replace(
                policy,
                max_attempts=min(policy.max_attempts, 2),
                initial_delay_ms=min(policy.initial_delay_ms, 100),
                max_delay_ms=min(policy.max_delay_ms, 500),
            )
            for category, policy in DEFAULT_POLICIES.items()
        }
        overrides = tuple(
            OperationOverride(
                entry.keywords,
                replace(
                    entry.override,
                    max_attempts=min(entry.override.max_attempts or 2, 2),
                    initial_delay_ms=(
                        None
                        if entry.override.initial_delay_ms is None
                        else min(entry.override.initial_delay_ms, 100)
                    ),
                ),
            )
            for entry in DEFAULT_OPERATION_OVERRIDES
        )
        return cls(
            policies=policies,
            operation_overrides=overrides,
            circuit_breaker=CircuitBreakerConfig(
                failure_threshold=2,
                request_volume_threshold=2,
                recovery_timeout_ms=1000,
                success_threshold=1,
            ),
        )

    def policy_for(self, category: FailureCategory) -> RetryPolicy:
        return self.policies[category]

    def override_for(self, operation_name: str) -> PolicyOverride | None:
        """First operation override whose keywords match, or None."""
        for entry in self.operation_overrides:
            if entry.matches(operation_name):
                return entry.override
        return None

    def resolve_policy(
        self,
        category: FailureCategory,
        operation_name: str,
        policy_override: PolicyOverride | None = None,
    ) -> RetryPolicy:
        """Category default, then name-based override, then caller override."""
        policy = self.policy_for(category)
        policy = policy.merged(self.override_for(operation_name))
        return policy.merged(policy_override)


__all__ = [
    "FailureCategory",
    "RetryPolicy",
    "PolicyOverride",
    "OperationOverride",
    "CircuitBreakerConfig",
    "RetryConfig",
    "DEFAULT_POLICIES",
    "DEFAULT_OPERATION_OVERRIDES",
]
