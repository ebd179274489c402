"""
Study Buddy Logging Configuration

Provides logging configuration using structlog with JSON formatting,
request context injection and OpenTelemetry integration.
"""

import logging
from typing import Any, Dict, Optional

import structlog
from opentelemetry import trace


class StudyBuddyLogger:
    """
    Structlog configuration for the error-handling core.

    Configures a processor chain that injects request context and trace
    context into every entry and renders JSON (or colourless console output
    for local development).
    """

    def __init__(self, level: str = "INFO", renderer: str = "json", include_trace_id: bool = True):
        self.level = level
        self.renderer = renderer
        self.include_trace_id = include_trace_id
        self.configure_structlog()

    def configure_structlog(self) -> None:
        """
        Configure structlog with the processor chain:
        - Log level filtering
        - Logger name and level addition
        - Timestamp formatting
        - Exception information
        - Request context injection
        - OpenTelemetry trace context
        - JSON or console rendering
        """
        logging.basicConfig(
            format="%(message)s",
            level=getattr(logging, self.level, logging.INFO),
        )
        logging.getLogger().setLevel(getattr(logging, self.level, logging.INFO))

        processors = [
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            self.add_request_context,
        ]
        if self.include_trace_id:
            processors.append(self.add_trace_context)

        if self.renderer == "console":
            processors.append(structlog.dev.ConsoleRenderer(colors=False))
        else:
            processors.append(structlog.processors.JSONRenderer())

        structlog.configure(
            processors=processors,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    @staticmethod
    def add_request_context(logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        """
        Add request context without duplication.

        Fields already bound on the entry win over the active context.
        """
        from studybuddy.infrastructure.logging.context import request_context

        ctx = request_context.get()
        if ctx:
            for key, value in ctx.as_dict().items():
                event_dict.setdefault(key, value)
        return event_dict

    @staticmethod
    def add_trace_context(logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        """Add OpenTelemetry trace and span ids when a span is recording."""
        span = trace.get_current_span()
        if span and span.is_recording():
            span_context = span.get_span_context()
            if 'trace_id' not in event_dict:
                event_dict['trace_id'] = format(span_context.trace_id, '032x')
            if 'span_id' not in event_dict:
                event_dict['span_id'] = format(span_context.span_id, '016x')
        return event_dict


# Singleton configuration instance
_logger_config: Optional[StudyBuddyLogger] = None


def configure_logging(level: str = "INFO", renderer: str = "json", include_trace_id: bool = True) -> StudyBuddyLogger:
    """(Re)configure structlog explicitly, typically from LoggingSettings."""
    global _logger_config
    _logger_config = StudyBuddyLogger(level=level, renderer=renderer, include_trace_id=include_trace_id)
    return _logger_config


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance.

    Configures structlog with defaults on first use if the composition root
    has not called configure_logging().

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Event logged", event_id="evt-1", layer=2)
    """
    global _logger_config
    if _logger_config is None:
        _logger_config = StudyBuddyLogger()
    return structlog.get_logger(name)
