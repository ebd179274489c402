"""Tests for the structured logging boundary and request context."""

from unittest.mock import Mock

import structlog

from studybuddy.infrastructure.logging import LogSink, RequestContext, configure_logging, request_context
from studybuddy.infrastructure.logging.config import StudyBuddyLogger


class TestLogSink:

    def test_context_becomes_fields(self):
        sink = LogSink()
        sink.logger = Mock()

        sink.log_error("Layer 2 error", {"layer": 2, "correlation_id": "c-1"})

        sink.logger.error.assert_called_once_with("Layer 2 error", layer=2, correlation_id="c-1")

    def test_event_key_is_renamed(self):
        """structlog reserves ``event`` for the message."""
        sink = LogSink()
        sink.logger = Mock()

        sink.log_info("Feedback received", {"event": "submitted", "rating": 4})

        sink.logger.info.assert_called_once_with("Feedback received", event_data="submitted", rating=4)

    def test_no_context(self):
        sink = LogSink()
        sink.logger = Mock()
        sink.log_warning("Alert")
        sink.logger.warning.assert_called_once_with("Alert")


class TestRequestContext:

    def test_context_manager_sets_and_restores(self):
        assert request_context.get() is None
        with RequestContext(correlation_id="req-1", user_id="u-1") as ctx:
            assert request_context.get() is ctx
            with RequestContext(correlation_id="req-2"):
                assert request_context.get().correlation_id == "req-2"
            assert request_context.get() is ctx
        assert request_context.get() is None

    def test_as_dict_drops_empty_fields(self):
        ctx = RequestContext(correlation_id="req-1", session_id="s-1")
        assert ctx.as_dict() == {"correlation_id": "req-1", "session_id": "s-1"}

    def test_generated_correlation_id(self):
        assert RequestContext().correlation_id != RequestContext().correlation_id


class TestProcessors:

    def test_add_request_context(self):
        with RequestContext(correlation_id="req-1", user_id="u-1"):
            event = StudyBuddyLogger.add_request_context(None, "info", {"event": "x", "user_id": "explicit"})
        assert event == {"event": "x", "correlation_id": "req-1", "user_id": "explicit"}

    def test_add_request_context_without_request(self):
        assert StudyBuddyLogger.add_request_context(None, "info", {"event": "x"}) == {"event": "x"}

    def test_trace_context_skipped_without_span(self):
        assert StudyBuddyLogger.add_trace_context(None, "info", {"event": "x"}) == {"event": "x"}

    def test_configure_logging_console(self):
        config = configure_logging(level="DEBUG", renderer="console", include_trace_id=False)
        try:
            processors = structlog.get_config()["processors"]
            assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)
            assert StudyBuddyLogger.add_trace_context not in processors
            assert config.level == "DEBUG"
        finally:
            configure_logging()
