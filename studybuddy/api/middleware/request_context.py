"""
Request context middleware.

Binds a ``RequestContext`` for the duration of each request so that errors
classified while handling it inherit the caller's correlation, user, session
and conversation ids. The correlation id is echoed back in the response.
"""

import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from studybuddy.infrastructure.logging.config import get_logger
from studybuddy.infrastructure.logging.context import RequestContext


logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Populates the request-scoped logging context from request headers."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        headers = request.headers
        context = RequestContext(
            user_id=headers.get("X-User-ID"),
            session_id=headers.get("X-Session-ID"),
            conversation_id=headers.get("X-Conversation-ID"),
            attributes={"method": request.method, "path": request.url.path},
        )
        if headers.get(CORRELATION_HEADER):
            context.correlation_id = headers[CORRELATION_HEADER]

        with context:
            response = await call_next(request)
            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "request completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )

        response.headers[CORRELATION_HEADER] = context.correlation_id
        return response
