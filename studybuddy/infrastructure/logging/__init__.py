"""
Study Buddy Logging Infrastructure

- config: structlog configuration with JSON formatting and processors
- context: request-scoped correlation context (contextvars)
- sink: the structured logging boundary used by the error-handling core
"""

from .config import StudyBuddyLogger, configure_logging, get_logger
from .context import RequestContext, request_context
from .sink import LogSink

__all__ = [
    'StudyBuddyLogger',
    'configure_logging',
    'get_logger',
    'RequestContext',
    'request_context',
    'LogSink',
]
