"""Tests for failure classification."""

import threading

import pytest

from rebound.execution.classifier import (
    BUILTIN_PATTERNS,
    Classification,
    ErrorClassifier,
    ErrorPattern,
    failure_message,
    failure_status,
)
from rebound.execution.policy import FailureCategory
from tests._support.fault_injection import HttpError


# ── Helpers ──────────────────────────────────────────────────────────────


class _Response:
    def __init__(self, status_code):
        self.status_code = status_code


class _ClientError(Exception):
    """Mimics HTTP client exceptions exposing ``response.status_code``."""

    def __init__(self, message, status_code):
        super().__init__(message)
        self.response = _Response(status_code)


class FetchError(Exception):
    pass


@pytest.fixture
def classifier() -> ErrorClassifier:
    return ErrorClassifier()


# ── Extraction ───────────────────────────────────────────────────────────


class TestFailureExtraction:
    def test_message_from_exception(self):
        assert failure_message(ValueError("boom")) == "boom"

    def test_message_from_mapping(self):
        assert failure_message({"status": 404, "message": "missing"}) == "missing"

    def test_message_from_none(self):
        assert failure_message(None) == ""

    def test_status_from_attribute(self):
        assert failure_status(HttpError(503)) == 503

    def test_status_from_mapping(self):
        assert failure_status({"status_code": 429}) == 429

    def test_status_from_response(self):
        assert failure_status(_ClientError("nope", 418)) == 418

    def test_non_int_status_ignored(self):
        assert failure_status({"status": "404"}) is None
        assert failure_status({"status": True}) is None


# ── Built-in table ───────────────────────────────────────────────────────


class TestBuiltinPatterns:
    """Tests for the ordered pattern table."""

    @pytest.mark.parametrize(
        "failure,category",
        [
            (ValueError("ECONNREFUSED 127.0.0.1:443"), FailureCategory.NETWORK),
            (ValueError("net::ERR_INTERNET_DISCONNECTED"), FailureCategory.NETWORK),
            (ValueError("connection reset by peer"), FailureCategory.NETWORK),
            (ValueError("DNS resolution failed"), FailureCategory.NETWORK),
            (ValueError("Navigation timeout of 30000 ms exceeded"), FailureCategory.TIMEOUT),
            (HttpError(408), FailureCategory.TIMEOUT),
            (ValueError("Too Many Requests"), FailureCategory.RATE_LIMIT),
            (HttpError(429), FailureCategory.RATE_LIMIT),
            (ValueError("quota exceeded for project"), FailureCategory.RATE_LIMIT),
            (ValueError("502 Bad Gateway"), FailureCategory.SERVER),
            (HttpError(503, "unavailable"), FailureCategory.SERVER),
            (ValueError("session expired"), FailureCategory.AUTH),
            (HttpError(401), FailureCategory.AUTH),
            (ValueError("element not found: #submit"), FailureCategory.NAVIGATION),
            (ValueError("booking failed, try again"), FailureCategory.BUSINESS),
        ],
    )
    def test_retryable_categories(self, classifier, failure, category):
        result = classifier.classify(failure)
        assert result.category == category
        assert result.retryable is True
        assert result.abort is False

    @pytest.mark.parametrize(
        "failure,category",
        [
            (HttpError(400), FailureCategory.CLIENT),
            (ValueError("malformed payload"), FailureCategory.CLIENT),
            (HttpError(403), FailureCategory.AUTH),
            (ValueError("permission denied"), FailureCategory.AUTH),
            (ValueError("invalid credentials supplied"), FailureCategory.AUTH),
            (ValueError("payment failed: card declined"), FailureCategory.BUSINESS),
            (ValueError("court already reserved"), FailureCategory.BUSINESS),
            (ValueError("slot no longer available"), FailureCategory.BUSINESS),
            (HttpError(404), FailureCategory.CLIENT),
            (HttpError(422), FailureCategory.CLIENT),
        ],
    )
    def test_abort_categories(self, classifier, failure, category):
        result = classifier.classify(failure)
        assert result.category == category
        assert result.abort is True
        assert result.retryable is False

    def test_abort_rows_win_over_server_status(self, classifier):
        """A payment failure reported with HTTP 500 is still not retried."""
        result = classifier.classify(HttpError(500, "payment failed"))
        assert result.category == FailureCategory.BUSINESS
        assert result.abort is True

    def test_mapping_with_404_aborts(self, classifier):
        result = classifier.classify({"status": 404})
        assert result.category == FailureCategory.CLIENT
        assert result.abort is True
        assert result.status_code == 404

    def test_rate_limit_and_server_rows_always_retryable(self):
        for pattern in BUILTIN_PATTERNS:
            if pattern.category in (FailureCategory.RATE_LIMIT, FailureCategory.SERVER):
                assert pattern.retryable is True
            if pattern.abort:
                assert pattern.retryable is False

    def test_matched_pattern_recorded(self, classifier):
        result = classifier.classify(HttpError(429))
        assert result.matched_pattern == "Rate limiting or throttling"
        assert result.confidence == 0.95


# ── Context pass ─────────────────────────────────────────────────────────


class TestContextClassification:
    def test_timeout_error_type(self, classifier):
        result = classifier.classify(TimeoutError())
        assert result.category == FailureCategory.TIMEOUT
        assert result.confidence == 0.95
        assert result.matched_pattern == "context"

    def test_connection_error_subclass(self, classifier):
        result = classifier.classify(ConnectionRefusedError())
        assert result.category == FailureCategory.NETWORK
        assert result.confidence == 0.9

    def test_fetch_error_by_name(self, classifier):
        assert classifier.classify(FetchError("x")).category == FailureCategory.NETWORK

    def test_type_error_mentioning_fetch(self, classifier):
        result = classifier.classify(TypeError("could not fetch resource"))
        assert result.category == FailureCategory.NETWORK
        assert result.confidence == 0.7

    def test_frame_hint_from_traceback(self, classifier):
        def playwright_click():
            raise RuntimeError("click intercepted")

        try:
            playwright_click()
        except RuntimeError as e:
            result = classifier.classify(e)

        assert result.category == FailureCategory.NAVIGATION
        assert result.confidence == 0.7


# ── Defaults, registration, determinism ──────────────────────────────────


class TestErrorClassifier:
    def test_unknown_default(self, classifier):
        result = classifier.classify(ValueError("something odd"))
        assert result == Classification(
            category=FailureCategory.UNKNOWN,
            retryable=True,
            abort=False,
            confidence=0.3,
            reason="Unknown error type - applying default retry strategy",
        )
        assert result.low_confidence is True

    def test_none_and_string_failures(self, classifier):
        assert classifier.classify(None).category == FailureCategory.UNKNOWN
        assert classifier.classify("rate limit hit").category == FailureCategory.RATE_LIMIT

    def test_deterministic(self, classifier):
        failure = HttpError(502)
        first = classifier.classify(failure)
        for _ in range(10):
            assert classifier.classify(failure) == first

    def test_register_pattern_takes_priority(self, classifier):
        classifier.register_pattern(
            ErrorPattern(
                message_pattern=r"maintenance window",
                category=FailureCategory.SERVER,
                retryable=True,
                confidence=1.0,
                description="Planned maintenance",
                status_codes=frozenset({404}),
            )
        )

        assert classifier.classify(HttpError(404)).category == FailureCategory.SERVER
        result = classifier.classify(ValueError("In MAINTENANCE WINDOW"))
        assert result.matched_pattern == "Planned maintenance"
        assert classifier.patterns[0].description == "Planned maintenance"

    def test_registration_does_not_leak_between_instances(self, classifier):
        classifier.register_pattern(
            ErrorPattern(r"flaky", FailureCategory.NETWORK, True, 1.0, "Flaky")
        )
        assert ErrorClassifier().patterns == BUILTIN_PATTERNS

    def test_abort_pattern_forces_non_retryable(self):
        pattern = ErrorPattern(
            r"fatal", FailureCategory.CLIENT, True, 1.0, "Fatal", abort=True
        )
        assert pattern.retryable is False

    def test_is_retryable(self, classifier):
        assert classifier.is_retryable(HttpError(503)) is True
        assert classifier.is_retryable(HttpError(403)) is False

    def test_concurrent_registration(self, classifier):
        """Patterns registered from several threads are all kept."""

        def register(i):
            classifier.register_pattern(
                ErrorPattern(rf"custom-{i}\b", FailureCategory.SERVER, True, 1.0, f"custom {i}")
            )

        threads = [threading.Thread(target=register, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(classifier.patterns) == len(BUILTIN_PATTERNS) + 20


class TestAnalyzeTrends:
    def test_summary(self, classifier):
        trends = classifier.analyze_trends(
            [HttpError(503), HttpError(502), HttpError(404), ValueError("odd")]
        )
        assert trends.category_counts[FailureCategory.SERVER] == 2
        assert trends.category_counts[FailureCategory.CLIENT] == 1
        assert trends.category_counts[FailureCategory.NETWORK] == 0
        assert trends.retryable_count == 3
        assert trends.non_retryable_count == 1
        assert trends.most_common == FailureCategory.SERVER
        assert trends.average_confidence == pytest.approx((0.9 + 0.9 + 0.8 + 0.3) / 4)

    def test_empty(self, classifier):
        trends = classifier.analyze_trends([])
        assert trends.most_common is None
        assert trends.average_confidence == 0.0
