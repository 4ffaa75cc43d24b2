"""Process-wide default orchestrator for application entry points.

The core never reaches for a global; libraries should accept a
``RetryOrchestrator`` from their caller. Applications that want one shared
instance (and therefore one shared circuit breaker) use this module at their
boundary.

Example:
    >>> from rebound.defaults import get_default_orchestrator
    >>> orchestrator = get_default_orchestrator()   # built from RETRY_* env vars
    >>> outcome = await orchestrator.execute(fetch_slots, name="slot-search")
"""

from __future__ import annotations

import threading

from rebound.core.logging import get_logger
from rebound.core.settings import load_retry_config
from rebound.execution.retry import RetryOrchestrator

logger = get_logger(__name__)

_default: RetryOrchestrator | None = None
_lock = threading.Lock()


def get_default_orchestrator() -> RetryOrchestrator:
    """Return the shared orchestrator, creating it from the environment on first use."""
    global _default
    with _lock:
        if _default is None:
            _default = RetryOrchestrator(load_retry_config())
            logger.info("retry.default_orchestrator_created", enabled=_default.config.enabled)
        return _default


def set_default_orchestrator(orchestrator: RetryOrchestrator) -> None:
    """Install an explicitly built orchestrator as the shared instance."""
    global _default
    with _lock:
        _default = orchestrator


def reset_default_orchestrator() -> None:
    """Drop the shared instance; the next call rebuilds it (test utility)."""
    global _default
    with _lock:
        _default = None


__all__ = [
    "get_default_orchestrator",
    "reset_default_orchestrator",
    "set_default_orchestrator",
]
