"""
Rebound - classification-driven retries with circuit breaking.

- rebound.core: errors, structlog logging, pydantic settings
- rebound.execution: classifier, backoff, circuit breaker, orchestrator
- rebound.defaults: shared orchestrator for application entry points
"""

__version__ = "0.1.0"

from rebound.execution import *  # noqa
from rebound.execution import __all__ as _execution_all

__all__ = ["__version__", *_execution_all]
