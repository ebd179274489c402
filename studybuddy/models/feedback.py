"""User feedback data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class FeedbackType(str, Enum):
    ERROR_REPORT = "error_report"
    SATISFACTION = "satisfaction"
    SUGGESTION = "suggestion"
    BUG_REPORT = "bug_report"
    GENERAL = "general"


class FeedbackCategory(str, Enum):
    ACCURACY = "accuracy"
    PERFORMANCE = "performance"
    USABILITY = "usability"
    RELIABILITY = "reliability"
    FEATURES = "features"


class FeedbackPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return {"low": 0, "medium": 1, "high": 2, "critical": 3}[self.value]


class FeedbackStatus(str, Enum):
    NEW = "new"
    ACKNOWLEDGED = "acknowledged"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


# new -> acknowledged -> in_progress -> resolved/closed, skipping forward allowed
FEEDBACK_TRANSITIONS = {
    FeedbackStatus.NEW: {
        FeedbackStatus.ACKNOWLEDGED,
        FeedbackStatus.IN_PROGRESS,
        FeedbackStatus.RESOLVED,
        FeedbackStatus.CLOSED,
    },
    FeedbackStatus.ACKNOWLEDGED: {
        FeedbackStatus.IN_PROGRESS,
        FeedbackStatus.RESOLVED,
        FeedbackStatus.CLOSED,
    },
    FeedbackStatus.IN_PROGRESS: {FeedbackStatus.RESOLVED, FeedbackStatus.CLOSED},
    FeedbackStatus.RESOLVED: {FeedbackStatus.CLOSED},
    FeedbackStatus.CLOSED: set(),
}


@dataclass
class FeedbackContext:
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    conversation_id: Optional[str] = None
    correlation_id: Optional[str] = None
    layer: Optional[int] = None
    user_agent: Optional[str] = None
    page_url: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FeedbackSubmission:
    """Caller-supplied part of a feedback record."""
    type: FeedbackType
    category: FeedbackCategory
    title: str
    description: str
    priority: FeedbackPriority = FeedbackPriority.MEDIUM
    rating: Optional[int] = None
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class UserFeedback:
    id: str
    timestamp: datetime
    type: FeedbackType
    category: FeedbackCategory
    priority: FeedbackPriority
    status: FeedbackStatus
    title: str
    description: str
    context: FeedbackContext
    rating: Optional[int] = None
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    assigned_to: Optional[str] = None
    resolution_time: Optional[datetime] = None
    resolution_notes: Optional[str] = None

    @property
    def correlation_id(self) -> Optional[str]:
        return self.context.correlation_id

    @property
    def user_id(self) -> Optional[str]:
        return self.context.user_id


@dataclass
class TopIssue:
    title: str
    count: int
    impact: FeedbackPriority
    trend: str


@dataclass
class FeedbackTrend:
    period_start: datetime
    period_end: datetime
    total: int
    average_rating: float
    resolved: int
    common_themes: List[str] = field(default_factory=list)


@dataclass
class FeedbackAnalytics:
    total_feedback: int
    by_type: Dict[str, int]
    by_category: Dict[str, int]
    by_priority: Dict[str, int]
    by_status: Dict[str, int]
    average_resolution_time_ms: float
    satisfaction_score: float
    resolution_rate: float
    top_issues: List[TopIssue]
    trends: List[FeedbackTrend]
    generated_at: datetime
