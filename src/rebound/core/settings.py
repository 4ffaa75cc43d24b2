"""Environment-driven retry settings.

``RetrySettings`` reads every tunable of the retry layer from ``RETRY_*``
environment variables (or a ``.env`` file) and turns them into the immutable
:class:`~rebound.execution.policy.RetryConfig` the orchestrator consumes.

Manifesto:
    The core takes plain immutable data; parsing the environment happens
    once, at the application boundary, and is validated before anything
    runs.

    - **Pydantic validation:** Bounds checked when settings load
    - **Environment-driven:** Reads from env vars and .env files
    - **Partial overrides:** Unset fields keep the built-in defaults

Examples:
    >>> # RETRY_NETWORK__MAX_ATTEMPTS=7
    >>> # RETRY_CIRCUIT_BREAKER__FAILURE_THRESHOLD=10
    >>> # RETRY_OVERRIDE_BOOKING__MAX_ATTEMPTS=1
    >>> config = load_retry_config()
    >>> config.policy_for(FailureCategory.NETWORK).max_attempts
    7

Tags:
    settings, configuration, pydantic, environment, retry, circuit-breaker
"""

from __future__ import annotations

from dataclasses import replace

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from rebound.execution.policy import (
    DEFAULT_OPERATION_OVERRIDES,
    CircuitBreakerConfig,
    FailureCategory,
    OperationOverride,
    PolicyOverride,
    RetryConfig,
)


class PolicySettings(BaseModel):
    """Partial retry policy; ``None`` keeps the built-in value."""

    enabled: bool | None = None
    max_attempts: int | None = Field(default=None, ge=1)
    initial_delay_ms: int | None = Field(default=None, ge=0)
    max_delay_ms: int | None = Field(default=None, ge=0)
    multiplier: float | None = Field(default=None, ge=1.0)
    jitter_fraction: float | None = Field(default=None, ge=0.0, le=1.0)
    use_circuit_breaker: bool | None = None

    @model_validator(mode="after")
    def _check_delays(self) -> PolicySettings:
        if (
            self.initial_delay_ms is not None
            and self.max_delay_ms is not None
            and self.max_delay_ms < self.initial_delay_ms
        ):
            raise ValueError("max_delay_ms must be >= initial_delay_ms")
        return self

    def to_override(self) -> PolicyOverride:
        return PolicyOverride(**self.model_dump())

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


class CircuitBreakerSettings(BaseModel):
    """Partial breaker config; ``None`` keeps the built-in value."""

    failure_threshold: int | None = Field(default=None, ge=1)
    request_volume_threshold: int | None = Field(default=None, ge=1)
    rolling_window_ms: int | None = Field(default=None, ge=0)
    recovery_timeout_ms: int | None = Field(default=None, ge=0)
    success_threshold: int | None = Field(default=None, ge=1)

    def to_config(self) -> CircuitBreakerConfig:
        return replace(CircuitBreakerConfig(), **self.model_dump(exclude_none=True))


class RetrySettings(BaseSettings):
    """Retry layer settings.

    Fields
    ──────
    enabled            : Global switch; False runs every operation once
    <category>         : Per-category policy adjustments (network, timeout, ...)
    circuit_breaker    : Breaker thresholds
    override_<name>    : Adjustments to the operation-name keyword overrides
    """

    model_config = SettingsConfigDict(
        env_prefix="RETRY_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    enabled: bool = True

    # ── Per-category policies ────────────────────────────────────
    network: PolicySettings = Field(default_factory=PolicySettings)
    timeout: PolicySettings = Field(default_factory=PolicySettings)
    rate_limit: PolicySettings = Field(default_factory=PolicySettings)
    server: PolicySettings = Field(default_factory=PolicySettings)
    client: PolicySettings = Field(default_factory=PolicySettings)
    auth: PolicySettings = Field(default_factory=PolicySettings)
    navigation: PolicySettings = Field(default_factory=PolicySettings)
    business: PolicySettings = Field(default_factory=PolicySettings)
    unknown: PolicySettings = Field(default_factory=PolicySettings)

    # ── Circuit breaker ──────────────────────────────────────────
    circuit_breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)

    # ── Operation-name overrides, in priority order ──────────────
    override_navigation: PolicySettings = Field(default_factory=PolicySettings)
    override_slot_search: PolicySettings = Field(default_factory=PolicySettings)
    override_booking: PolicySettings = Field(default_factory=PolicySettings)
    override_checkout: PolicySettings = Field(default_factory=PolicySettings)

    def policy_settings(self, category: FailureCategory) -> PolicySettings:
        return getattr(self, category.value)

    def _operation_overrides(self) -> tuple[OperationOverride, ...]:
        adjustments = (
            self.override_navigation,
            self.override_slot_search,
            self.override_booking,
            self.override_checkout,
        )
        entries = []
        for entry, adjustment in zip(DEFAULT_OPERATION_OVERRIDES, adjustments):
            if not adjustment.is_empty():
                entry = OperationOverride(
                    entry.keywords,
                    replace(entry.override, **adjustment.model_dump(exclude_none=True)),
                )
            entries.append(entry)
        return tuple(entries)

    def to_config(self) -> RetryConfig:
        """Build the immutable core config.

        Adjustments are merged onto the built-in tables with
        :meth:`RetryPolicy.merged`, so a ``max_delay_ms`` below the
        resulting initial delay is lifted to match it.
        """
        defaults = RetryConfig.default()
        policies = {
            category: defaults.policy_for(category).merged(
                self.policy_settings(category).to_override()
            )
            for category in FailureCategory
        }
        return RetryConfig(
            enabled=self.enabled,
            policies=policies,
            operation_overrides=self._operation_overrides(),
            circuit_breaker=self.circuit_breaker.to_config(),
        )


def load_retry_config(**overrides) -> RetryConfig:
    """Read ``RETRY_*`` settings and return a RetryConfig.

    Keyword arguments take precedence over the environment.
    """
    return RetrySettings(**overrides).to_config()


__all__ = [
    "CircuitBreakerSettings",
    "PolicySettings",
    "RetrySettings",
    "load_retry_config",
]
