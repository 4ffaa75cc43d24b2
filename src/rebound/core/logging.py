"""
Rebound logging - structured logging for the resilience layer.

Every rebound module logs through structlog with dotted event names
(``retry.attempt_failed``, ``circuit_breaker.transition``) and keyword
fields, so retry decisions and breaker transitions can be searched and
aggregated instead of grepped.

Architecture:
    ::

        configure_logging(level="INFO", json_format=True, service="checkout")
            ↓
        structlog processor chain:
          1. merge_contextvars      (operation=..., bound per execute())
          2. TimeStamper (iso)
          3. add_log_level / add_logger_name
          4. service fields
          5. ECS fields (JSON only): retry and breaker keys → dotted names
          6. JSONRenderer or ConsoleRenderer
            ↓
        stdlib handler on the "rebound" logger only

Examples:
    >>> from rebound.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", json_format=True, service="booking")
    >>> get_logger("rebound.demo").warning("retry.attempt_failed", attempt=2)
    {"event": "retry.attempt_failed", "event.sequence": 2,
     "event.dataset": "rebound.retry", "service.name": "booking", ...}

Guardrails:
    - configure_logging() only installs a handler on the ``rebound`` logger;
      the root logger and the host application's handlers are untouched.
    - LogContext restores the previous values on exit, so a nested
      execution does not erase the outer execution's ``operation``.
"""

from __future__ import annotations

import logging
import sys
from typing import IO, Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

ROOT_LOGGER = "rebound"

# Keys rebound logs with, and where they land in ECS JSON output
ECS_FIELD_MAP = {
    "timestamp": "@timestamp",
    "level": "log.level",
    "logger": "log.logger",
    "operation": "labels.operation",
    "breaker": "labels.breaker",
    "attempt": "event.sequence",
    "reason": "event.reason",
    "error": "error.message",
}

_service_name = ROOT_LOGGER
_handler: logging.Handler | None = None


def _add_service_fields(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    event_dict.setdefault("service.name", _service_name)
    return event_dict


def ecs_fields(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Rename rebound's keys to ECS names and tag the event's dataset.

    ``retry.attempt_failed`` gets ``event.dataset = "rebound.retry"`` so
    retry and breaker events can be filtered apart in one index.
    """
    for key, ecs_key in ECS_FIELD_MAP.items():
        if key in event_dict:
            event_dict[ecs_key] = event_dict.pop(key)

    event = event_dict.get("event")
    if isinstance(event, str) and "." in event:
        event_dict.setdefault("event.dataset", f"{ROOT_LOGGER}.{event.split('.', 1)[0]}")
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = ROOT_LOGGER,
    stream: IO[str] | None = None,
) -> None:
    """Configure structlog and route rebound's loggers to ``stream``.

    Calling it again replaces the previous handler.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for ECS JSON, False for console, None for auto (JSON if not tty)
        service: Value of ``service.name`` on every event
        stream: Output stream (default: stdout)
    """
    global _service_name, _handler
    _service_name = service
    stream = stream or sys.stdout
    numeric_level = getattr(logging, level.upper())

    if json_format is None:
        json_format = not stream.isatty()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_fields,
    ]
    if json_format:
        processors += [ecs_fields, structlog.processors.format_exc_info]
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger(ROOT_LOGGER)
    if _handler is not None:
        root.removeHandler(_handler)
    _handler = logging.StreamHandler(stream)
    _handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(_handler)
    root.setLevel(numeric_level)


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Scoped log context, usable with ``with`` and ``async with``.

    On exit every key gets back the value it had on entry, or is unbound
    if it had none.

    Example:
        async with LogContext(operation="checkout"):
            logger.info("retry.started")
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs
        self._scope: Any = None

    def __enter__(self) -> LogContext:
        self._scope = structlog.contextvars.bound_contextvars(**self._context)
        self._scope.__enter__()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self._scope.__exit__(*exc_info)
        self._scope = None

    async def __aenter__(self) -> LogContext:
        return self.__enter__()

    async def __aexit__(self, *exc_info: Any) -> None:
        self.__exit__(*exc_info)


__all__ = [
    "ECS_FIELD_MAP",
    "LogContext",
    "bind_context",
    "clear_context",
    "configure_logging",
    "ecs_fields",
    "get_logger",
    "unbind_context",
]
