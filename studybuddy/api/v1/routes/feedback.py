"""User feedback endpoints.

Accepts feedback from the chat UI (general feedback, satisfaction ratings,
improvement suggestions, error reports tied to a correlation id) and serves
feedback records and analytics to the operations dashboard.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from studybuddy.api.v1.dependencies import get_error_handler, get_feedback_service
from studybuddy.infrastructure.error_handling.handler import EnhancedErrorHandler
from studybuddy.models.feedback import (
    FeedbackCategory,
    FeedbackContext,
    FeedbackPriority,
    FeedbackStatus,
    FeedbackSubmission,
    FeedbackType,
)
from studybuddy.services.feedback_service import UserFeedbackService
from studybuddy.utils.serialization import to_json_compatible


class ContextFields(BaseModel):
    """Who submitted the feedback and from where"""
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    conversation_id: Optional[str] = None
    user_agent: Optional[str] = None
    page_url: Optional[str] = None

    def to_context(self, correlation_id: Optional[str] = None) -> FeedbackContext:
        return FeedbackContext(
            user_id=self.user_id,
            session_id=self.session_id,
            conversation_id=self.conversation_id,
            correlation_id=correlation_id,
            user_agent=self.user_agent,
            page_url=self.page_url,
        )


class FeedbackRequest(ContextFields):
    type: FeedbackType = FeedbackType.GENERAL
    category: FeedbackCategory
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    priority: FeedbackPriority = FeedbackPriority.MEDIUM
    rating: Optional[int] = Field(None, ge=1, le=5)
    tags: List[str] = Field(default_factory=list)
    correlation_id: Optional[str] = None


class SatisfactionRequest(ContextFields):
    correlation_id: str = Field(..., min_length=1)
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class SuggestionRequest(ContextFields):
    suggestion: str = Field(..., min_length=1)
    category: FeedbackCategory = FeedbackCategory.FEATURES
    priority: FeedbackPriority = FeedbackPriority.MEDIUM


class ErrorReportRequest(ContextFields):
    correlation_id: str = Field(..., min_length=1)
    user_description: Optional[str] = None
    steps_before_error: Optional[str] = None
    expected_behavior: Optional[str] = None
    actual_behavior: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: FeedbackStatus
    assigned_to: Optional[str] = None
    resolution: Optional[str] = None


router = APIRouter(prefix="/feedback", tags=["feedback"])

logger = logging.getLogger(__name__)


@router.post("", status_code=201)
async def submit_feedback(
    request: FeedbackRequest,
    feedback_service: UserFeedbackService = Depends(get_feedback_service),
) -> Dict[str, str]:
    feedback_id = feedback_service.submit_feedback(
        FeedbackSubmission(
            type=request.type,
            category=request.category,
            title=request.title,
            description=request.description,
            priority=request.priority,
            rating=request.rating,
            tags=request.tags,
        ),
        request.to_context(request.correlation_id),
    )
    return {"feedback_id": feedback_id}


@router.post("/satisfaction", status_code=201)
async def submit_satisfaction_rating(
    request: SatisfactionRequest,
    feedback_service: UserFeedbackService = Depends(get_feedback_service),
) -> Dict[str, str]:
    feedback_id = feedback_service.submit_satisfaction_rating(
        request.correlation_id, request.rating, request.to_context(), request.comment
    )
    return {"feedback_id": feedback_id}


@router.post("/suggestions", status_code=201)
async def submit_improvement_suggestion(
    request: SuggestionRequest,
    feedback_service: UserFeedbackService = Depends(get_feedback_service),
) -> Dict[str, str]:
    feedback_id = feedback_service.submit_improvement_suggestion(
        request.suggestion, request.to_context(), request.category, request.priority
    )
    return {"feedback_id": feedback_id}


@router.post("/error-reports", status_code=201)
async def submit_error_report(
    request: ErrorReportRequest,
    feedback_service: UserFeedbackService = Depends(get_feedback_service),
    error_handler: EnhancedErrorHandler = Depends(get_error_handler),
) -> Dict[str, str]:
    """File a report against a tracked error correlation."""
    correlation = error_handler.get_error_correlation(request.correlation_id)
    if correlation is None:
        raise HTTPException(status_code=404, detail="Error correlation not found")
    feedback_id = feedback_service.submit_error_report(
        correlation.primary_error,
        request.to_context(request.correlation_id),
        user_description=request.user_description,
        steps_before_error=request.steps_before_error,
        expected_behavior=request.expected_behavior,
        actual_behavior=request.actual_behavior,
    )
    return {"feedback_id": feedback_id}


@router.get("/analytics")
async def get_feedback_analytics(
    days: Optional[int] = Query(None, ge=1, le=365, description="Restrict to the last N days"),
    feedback_service: UserFeedbackService = Depends(get_feedback_service),
) -> Dict[str, Any]:
    if days is None:
        return to_json_compatible(feedback_service.get_analytics())
    end = feedback_service.clock.now()
    return to_json_compatible(feedback_service.get_analytics(start=end - timedelta(days=days), end=end))


@router.get("/trends")
async def get_feedback_trends(
    period: str = Query("week", pattern="^(day|week|month)$"),
    feedback_service: UserFeedbackService = Depends(get_feedback_service),
) -> List[Dict[str, Any]]:
    return to_json_compatible(feedback_service.get_feedback_trends(period))


@router.get("/by-correlation/{correlation_id}")
async def get_feedback_by_correlation(
    correlation_id: str,
    feedback_service: UserFeedbackService = Depends(get_feedback_service),
) -> List[Dict[str, Any]]:
    return to_json_compatible(feedback_service.get_feedback_by_correlation(correlation_id))


@router.get("/by-user/{user_id}")
async def get_feedback_by_user(
    user_id: str,
    feedback_service: UserFeedbackService = Depends(get_feedback_service),
) -> List[Dict[str, Any]]:
    return to_json_compatible(feedback_service.get_feedback_by_user(user_id))


@router.get("/{feedback_id}")
async def get_feedback(
    feedback_id: str,
    feedback_service: UserFeedbackService = Depends(get_feedback_service),
) -> Dict[str, Any]:
    feedback = feedback_service.get_feedback(feedback_id)
    if feedback is None:
        raise HTTPException(status_code=404, detail="Feedback not found")
    return to_json_compatible(feedback)


@router.patch("/{feedback_id}/status")
async def update_feedback_status(
    feedback_id: str,
    request: StatusUpdateRequest,
    feedback_service: UserFeedbackService = Depends(get_feedback_service),
) -> Dict[str, Any]:
    feedback = feedback_service.get_feedback(feedback_id)
    if feedback is None:
        raise HTTPException(status_code=404, detail="Feedback not found")
    if not feedback_service.update_feedback_status(
        feedback_id, request.status, request.assigned_to, request.resolution
    ):
        raise HTTPException(
            status_code=409,
            detail=f"Cannot move feedback from {feedback.status.value} to {request.status.value}",
        )
    return to_json_compatible(feedback)
