"""API Dependencies Module

FastAPI dependency functions resolving components from the container the
application stored on ``app.state`` at startup.
"""

from fastapi import HTTPException, Request

from studybuddy.container import ErrorHandlingContainer
from studybuddy.infrastructure.error_handling.handler import EnhancedErrorHandler
from studybuddy.infrastructure.health.system_health_monitor import SystemHealthMonitor
from studybuddy.infrastructure.monitoring.event_monitor import EventMonitor
from studybuddy.services.feedback_service import UserFeedbackService


def get_container(request: Request) -> ErrorHandlingContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return container


def get_health_monitor(request: Request) -> SystemHealthMonitor:
    return get_container(request).health_monitor


def get_event_monitor(request: Request) -> EventMonitor:
    return get_container(request).event_monitor


def get_error_handler(request: Request) -> EnhancedErrorHandler:
    return get_container(request).error_handler


def get_feedback_service(request: Request) -> UserFeedbackService:
    return get_container(request).feedback_service
