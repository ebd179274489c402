"""Application services built on the error-handling core."""

from .feedback_service import UserFeedbackService

__all__ = ["UserFeedbackService"]
