"""
Structured logging boundary.

Every classified error and monitoring event leaves the core through a
``LogSink``. Components take the sink as a constructor argument so tests can
substitute a recording double.
"""

from typing import Any, Dict, Optional

from studybuddy.infrastructure.logging.config import get_logger


class LogSink:
    """Writes error/warning/info records with a structured context dict."""

    def __init__(self, name: str = "studybuddy.error_handling"):
        self.logger = get_logger(name)

    def log_error(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        self.logger.error(message, **_fields(context))

    def log_warning(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        self.logger.warning(message, **_fields(context))

    def log_info(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        self.logger.info(message, **_fields(context))


def _fields(context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    # "event" is structlog's message key
    fields = dict(context or {})
    if "event" in fields:
        fields["event_data"] = fields.pop("event")
    return fields
