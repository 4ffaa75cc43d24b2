"""Tests for event sink dispatch."""

import structlog

from rebound.execution.events import EVENT_NAMES, CallbackEventSink, RetryEventSink, emit


class TestRetryEventSink:
    def test_base_callbacks_are_noops(self):
        sink = RetryEventSink()
        for name in EVENT_NAMES:
            assert hasattr(sink, name)
        sink.on_retry(ValueError(), 1)
        sink.on_abort(ValueError(), "reason")


class TestCallbackEventSink:
    def test_routes_to_callables(self):
        seen = []
        sink = CallbackEventSink(
            retry=lambda e, n: seen.append(("retry", n)),
            success=lambda v, n: seen.append(("success", v, n)),
        )

        sink.on_retry(ValueError(), 2)
        sink.on_success("value", 3)
        sink.on_failed_attempt(ValueError(), 1)
        sink.on_abort(ValueError(), "stop")

        assert seen == [("retry", 2), ("success", "value", 3)]


class TestEmit:
    def test_none_sink(self):
        emit(None, "on_retry", ValueError(), 1)

    def test_missing_callback_ignored(self):
        emit(object(), "on_success", 1, 1)

    def test_callback_invoked(self):
        calls = []

        class Sink:
            def on_abort(self, error, reason):
                calls.append(reason)

        emit(Sink(), "on_abort", ValueError(), "circuit open")
        assert calls == ["circuit open"]

    def test_callback_errors_logged_and_discarded(self):
        class Broken:
            def on_retry(self, error, attempt):
                raise RuntimeError("boom")

        with structlog.testing.capture_logs() as logs:
            emit(Broken(), "on_retry", ValueError(), 1)

        assert logs[0]["event"] == "retry.event_sink_failed"
        assert logs[0]["event_name"] == "on_retry"
        assert logs[0]["log_level"] == "warning"
