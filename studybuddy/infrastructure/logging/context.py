"""
Request-scoped context for log correlation.

The active ``RequestContext`` is held in a ContextVar so that every log line
emitted while handling one request (including from awaited coroutines) carries
the same correlation id without threading it through call signatures.
"""

from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import uuid


@dataclass
class RequestContext:
    """
    Single source of truth for request-scoped identifiers.

    Attributes:
        correlation_id: Unique identifier for request tracing
        user_id: Optional user identifier
        session_id: Optional session identifier
        conversation_id: Optional conversation identifier
        start_time: Request start timestamp
        attributes: Additional request-scoped metadata
    """
    correlation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    conversation_id: Optional[str] = None
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    attributes: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        data = {
            "correlation_id": self.correlation_id,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "conversation_id": self.conversation_id,
        }
        return {k: v for k, v in data.items() if v is not None}

    def __enter__(self):
        """Enter the context manager - set this context as active."""
        self._token = request_context.set(self)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Exit the context manager - restore the previous context."""
        request_context.reset(self._token)
        return False


request_context: ContextVar[Optional[RequestContext]] = ContextVar(
    "request_context", default=None
)
