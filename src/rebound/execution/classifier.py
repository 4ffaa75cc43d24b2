"""Pattern-based failure classification for retry decisions.

``ErrorClassifier.classify()`` maps any failure (an exception, a string, a
mapping such as ``{"status": 404}``, or ``None``) to a
:class:`Classification`: a category, a retry/abort verdict and a
confidence score.

Classification runs three passes and stops at the first hit:

1. **Pattern table** - ordered :class:`ErrorPattern` rows; a row matches
   when its regex searches the failure message or the failure's status code
   is in the row's status set. Custom rows registered at runtime sit in
   front of the built-ins.
2. **Context** - the exception's class hierarchy names, then traceback
   frame hints (a Playwright frame means a navigation problem).
3. **Default** - UNKNOWN, retryable, confidence 0.3. Unknown failures are
   assumed transient.

Example:
    >>> classifier = ErrorClassifier()
    >>> classifier.classify({"status": 429}).category
    <FailureCategory.RATE_LIMIT: 'rate_limit'>
    >>> classifier.classify(ValueError("payment failed")).abort
    True
"""

from __future__ import annotations

import re
import threading
import traceback
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from rebound.core.logging import get_logger
from rebound.execution.policy import FailureCategory

logger = get_logger(__name__)

_STATUS_ATTRIBUTES = ("status", "status_code", "http_status")


@dataclass(frozen=True)
class Classification:
    """Verdict for one failure.

    ``abort`` always implies ``retryable=False``. A confidence below 0.5
    marks a low-certainty default classification.
    """

    category: FailureCategory
    retryable: bool
    abort: bool
    confidence: float
    reason: str
    status_code: int | None = None
    matched_pattern: str | None = None

    @property
    def low_confidence(self) -> bool:
        return self.confidence < 0.5


@dataclass(frozen=True)
class ErrorPattern:
    """One row of the classification table."""

    message_pattern: re.Pattern[str] | None
    category: FailureCategory
    retryable: bool
    confidence: float
    description: str
    status_codes: frozenset[int] = field(default_factory=frozenset)
    abort: bool = False

    def __post_init__(self) -> None:
        if isinstance(self.message_pattern, str):
            object.__setattr__(
                self, "message_pattern", re.compile(self.message_pattern, re.IGNORECASE)
            )
        object.__setattr__(self, "status_codes", frozenset(self.status_codes))
        if self.abort:
            object.__setattr__(self, "retryable", False)

    def matches(self, message: str, status_code: int | None) -> bool:
        if status_code is not None and status_code in self.status_codes:
            return True
        return bool(self.message_pattern and self.message_pattern.search(message))


def _pattern(
    regex: str | None,
    category: FailureCategory,
    confidence: float,
    description: str,
    *,
    statuses: Iterable[int] = (),
    abort: bool = False,
) -> ErrorPattern:
    return ErrorPattern(
        message_pattern=re.compile(regex, re.IGNORECASE) if regex else None,
        category=category,
        retryable=not abort,
        confidence=confidence,
        description=description,
        status_codes=frozenset(statuses),
        abort=abort,
    )


_CLIENT_STATUSES = frozenset(range(400, 500)) - {401, 408, 429}

# Abort rows first so "payment failed (HTTP 500)" is never retried.
BUILTIN_PATTERNS: tuple[ErrorPattern, ...] = (
    # Non-retryable requests
    _pattern(
        r"\bbad request\b|malformed|invalid request",
        FailureCategory.CLIENT, 0.85, "Malformed request (non-retryable)",
        statuses=(400,), abort=True,
    ),
    _pattern(
        r"forbidden|permission denied|not allowed",
        FailureCategory.AUTH, 0.9, "Permission denied (non-retryable)",
        statuses=(403,), abort=True,
    ),
    _pattern(
        r"invalid.{0,20}credential",
        FailureCategory.AUTH, 0.9, "Invalid credentials (non-retryable)",
        abort=True,
    ),
    _pattern(
        r"payment.{0,20}failed|checkout.{0,20}failed|transaction.{0,20}failed",
        FailureCategory.BUSINESS, 0.85, "Payment or checkout failure (non-retryable)",
        abort=True,
    ),
    _pattern(
        r"already (reserved|booked)|no longer available|(slot|court|resource|seat) not available",
        FailureCategory.BUSINESS, 0.8, "Resource no longer available (non-retryable)",
        abort=True,
    ),
    # Retryable transient failures
    _pattern(
        r"\b429\b|too many requests|rate.?limit|throttl",
        FailureCategory.RATE_LIMIT, 0.95, "Rate limiting or throttling",
        statuses=(429,),
    ),
    _pattern(
        r"quota.{0,20}exceeded|api.{0,20}limit.{0,20}reached",
        FailureCategory.RATE_LIMIT, 0.9, "API quota or limits exceeded",
    ),
    _pattern(
        r"\b5\d\d\b|internal server error|server unavailable|service unavailable"
        r"|bad gateway|gateway timeout|proxy error",
        FailureCategory.SERVER, 0.9, "Server-side errors",
        statuses=range(500, 600),
    ),
    _pattern(
        r"net::ERR_|ECONNREFUSED|ENOTFOUND|EHOSTUNREACH|ECONNRESET",
        FailureCategory.NETWORK, 0.95, "Network connectivity issues",
    ),
    _pattern(
        r"timeout|timed out|ETIMEDOUT",
        FailureCategory.TIMEOUT, 0.9, "Request or page load timeouts",
        statuses=(408,),
    ),
    _pattern(
        r"failed to fetch|fetch.{0,20}failed|network.{0,20}error"
        r"|connection.{0,20}(failed|refused|reset|aborted)"
        r"|dns.{0,20}resolution|name.{0,20}not.{0,20}resolved",
        FailureCategory.NETWORK, 0.9, "Generic network failures",
    ),
    _pattern(
        r"\b401\b|unauthori[sz]ed|not authenticated|authentication.{0,20}failed"
        r"|login.{0,20}failed|session.{0,20}expired|token.{0,20}expired",
        FailureCategory.AUTH, 0.85, "Authentication or session failures",
        statuses=(401,),
    ),
    _pattern(
        r"navigation.{0,20}failed|page.{0,20}not.{0,20}found|cannot.{0,20}navigate"
        r"|(element|selector|locator).{0,20}not.{0,20}found",
        FailureCategory.NAVIGATION, 0.8, "Page navigation or element location failures",
    ),
    _pattern(
        r"booking.{0,20}failed|reservation.{0,20}failed",
        FailureCategory.BUSINESS, 0.8, "Booking operation failures",
    ),
    _pattern(
        None,
        FailureCategory.CLIENT, 0.8, "Client error status (non-retryable)",
        statuses=_CLIENT_STATUSES, abort=True,
    ),
)


def failure_message(failure: Any) -> str:
    """Best-effort message text of a failure."""
    if failure is None:
        return ""
    if isinstance(failure, str):
        return failure
    if isinstance(failure, Mapping):
        return str(failure.get("message", ""))
    return str(failure)


def failure_status(failure: Any) -> int | None:
    """Numeric status code carried by a failure, if any."""
    if failure is None or isinstance(failure, str):
        return None
    if isinstance(failure, Mapping):
        candidates = [failure.get(key) for key in _STATUS_ATTRIBUTES]
    else:
        candidates = [getattr(failure, key, None) for key in _STATUS_ATTRIBUTES]
        response = getattr(failure, "response", None)
        candidates.append(getattr(response, "status_code", None))
    for value in candidates:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def _type_names(failure: Any) -> list[str]:
    return [cls.__name__ for cls in type(failure).__mro__]


def _frame_hints(failure: BaseException) -> str:
    if failure.__traceback__ is None:
        return ""
    frames = traceback.extract_tb(failure.__traceback__)
    return " ".join(f"{frame.filename} {frame.name}" for frame in frames).lower()


class ErrorClassifier:
    """Classify failures against an ordered pattern table.

    ``classify`` is pure: the table is an immutable tuple replaced whole by
    :meth:`register_pattern`, so a concurrent call always sees one
    consistent version of it.
    """

    def __init__(self, patterns: Iterable[ErrorPattern] | None = None) -> None:
        self._patterns: tuple[ErrorPattern, ...] = (
            tuple(patterns) if patterns is not None else BUILTIN_PATTERNS
        )
        self._lock = threading.Lock()

    @property
    def patterns(self) -> tuple[ErrorPattern, ...]:
        return self._patterns

    def register_pattern(self, pattern: ErrorPattern) -> None:
        """Add a pattern ahead of every existing one."""
        with self._lock:
            self._patterns = (pattern, *self._patterns)
        logger.info(
            "classifier.pattern_registered",
            pattern=pattern.message_pattern.pattern if pattern.message_pattern else None,
            status_codes=sorted(pattern.status_codes),
            category=pattern.category.value,
            abort=pattern.abort,
            description=pattern.description,
        )

    def classify(self, failure: Any) -> Classification:
        message = failure_message(failure)
        status = failure_status(failure)

        for pattern in self._patterns:
            if pattern.matches(message, status):
                return Classification(
                    category=pattern.category,
                    retryable=pattern.retryable,
                    abort=pattern.abort,
                    confidence=pattern.confidence,
                    reason=pattern.description,
                    status_code=status,
                    matched_pattern=pattern.description,
                )

        by_context = self._classify_by_context(failure, message, status)
        if by_context is not None:
            return by_context

        return Classification(
            category=FailureCategory.UNKNOWN,
            retryable=True,
            abort=False,
            confidence=0.3,
            reason="Unknown error type - applying default retry strategy",
            status_code=status,
        )

    def _classify_by_context(
        self, failure: Any, message: str, status: int | None
    ) -> Classification | None:
        if not isinstance(failure, BaseException):
            return None

        def verdict(category: FailureCategory, confidence: float, reason: str) -> Classification:
            return Classification(
                category=category,
                retryable=True,
                abort=False,
                confidence=confidence,
                reason=reason,
                status_code=status,
                matched_pattern="context",
            )

        names = _type_names(failure)
        if "TimeoutError" in names:
            return verdict(FailureCategory.TIMEOUT, 0.95, "Error type indicates timeout")
        if any(name in names for name in ("ConnectionError", "NetworkError", "FetchError")):
            return verdict(FailureCategory.NETWORK, 0.9, "Error type indicates network issue")
        if "TypeError" in names and ("fetch" in message or "network" in message):
            return verdict(FailureCategory.NETWORK, 0.7, "TypeError with network-related message")

        hints = _frame_hints(failure)
        if "playwright" in hints:
            return verdict(
                FailureCategory.NAVIGATION,
                0.7,
                "Error originated from Playwright - likely navigation issue",
            )
        if "booking" in hints:
            return verdict(FailureCategory.BUSINESS, 0.6, "Error originated from booking logic")
        return None

    def is_retryable(self, failure: Any) -> bool:
        return self.classify(failure).retryable

    def analyze_trends(self, failures: Iterable[Any]) -> ErrorTrends:
        """Classify a batch of failures and summarise the mix."""
        counts: Counter[FailureCategory] = Counter()
        retryable = 0
        total_confidence = 0.0
        total = 0
        for failure in failures:
            classification = self.classify(failure)
            counts[classification.category] += 1
            total_confidence += classification.confidence
            retryable += classification.retryable
            total += 1

        return ErrorTrends(
            category_counts={category: counts.get(category, 0) for category in FailureCategory},
            retryable_count=retryable,
            non_retryable_count=total - retryable,
            average_confidence=total_confidence / total if total else 0.0,
            most_common=counts.most_common(1)[0][0] if counts else None,
        )


@dataclass(frozen=True)
class ErrorTrends:
    """Summary produced by :meth:`ErrorClassifier.analyze_trends`."""

    category_counts: dict[FailureCategory, int]
    retryable_count: int
    non_retryable_count: int
    average_confidence: float
    most_common: FailureCategory | None


__all__ = [
    "Classification",
    "ErrorPattern",
    "ErrorClassifier",
    "ErrorTrends",
    "BUILTIN_PATTERNS",
    "failure_message",
    "failure_status",
]
