"""User Feedback Service

Collects structured feedback from students (error reports, satisfaction
ratings, improvement suggestions), routes it by type, and computes cached
analytics for the operations dashboard.

Routing on submit:
- error reports: tagged ``auto_processed``; critical ones are acknowledged
  and assigned to the error-handling system
- satisfaction ratings of 1-2: escalated to high priority and flagged for
  follow-up
- suggestions: assigned to the team owning the category

Every submission is also recorded in the event monitor as an info event
under the feedback's correlation id.
"""

import logging
import random
import string
from calendar import monthrange
from collections import Counter
from dataclasses import replace
from datetime import datetime, time, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from studybuddy.exceptions import Impact, LayerError
from studybuddy.infrastructure.error_handling.classification import KeywordRule, first_match
from studybuddy.infrastructure.monitoring.event_monitor import EventMonitor
from studybuddy.infrastructure.persistence.bounded_store import InMemoryBoundedStore
from studybuddy.infrastructure.scheduling import Clock, Scheduler, SystemClock
from studybuddy.models.feedback import (
    FEEDBACK_TRANSITIONS,
    FeedbackAnalytics,
    FeedbackCategory,
    FeedbackContext,
    FeedbackPriority,
    FeedbackStatus,
    FeedbackSubmission,
    FeedbackTrend,
    FeedbackType,
    TopIssue,
    UserFeedback,
)
from studybuddy.models.interfaces import IBoundedStore
from studybuddy.models.layers import SYSTEM_LAYER
from studybuddy.models.monitoring import EventSource, EventType
from studybuddy.utils.serialization import to_json_compatible


ANALYTICS_REFRESH_JOB = "feedback-analytics-refresh"
ERROR_HANDLING_ASSIGNEE = "error-handling-system"

ERROR_CATEGORY_RULES: Sequence[KeywordRule[FeedbackCategory]] = (
    KeywordRule(("accuracy", "fact", "correct"), FeedbackCategory.ACCURACY),
    KeywordRule(("slow", "timeout", "performance"), FeedbackCategory.PERFORMANCE),
    KeywordRule(("confusing", "unclear", "ui"), FeedbackCategory.USABILITY),
    KeywordRule(("crash", "fail", "error"), FeedbackCategory.RELIABILITY),
)

IMPACT_PRIORITY: Dict[Impact, FeedbackPriority] = {
    Impact.LOW: FeedbackPriority.LOW,
    Impact.MEDIUM: FeedbackPriority.MEDIUM,
    Impact.HIGH: FeedbackPriority.HIGH,
    Impact.CRITICAL: FeedbackPriority.CRITICAL,
}

# Extra tags added to error reports when the message mentions the keyword
ERROR_KEYWORD_TAGS = ("timeout", "validation", "network", "database")

SUGGESTION_ROUTES: Dict[FeedbackCategory, str] = {
    FeedbackCategory.FEATURES: "product-team",
    FeedbackCategory.USABILITY: "ux-team",
    FeedbackCategory.PERFORMANCE: "engineering-team",
    FeedbackCategory.ACCURACY: "ai-team",
    FeedbackCategory.RELIABILITY: "devops-team",
}

TREND_PERIODS = ("day", "week", "month")


def rating_priority(rating: int) -> FeedbackPriority:
    if rating <= 2:
        return FeedbackPriority.HIGH
    if rating <= 3:
        return FeedbackPriority.MEDIUM
    return FeedbackPriority.LOW


def _impact_label(priorities: List[FeedbackPriority]) -> FeedbackPriority:
    return max(priorities, key=lambda p: p.rank)


class UserFeedbackService:
    """Stores user feedback and derives analytics from it."""

    def __init__(
        self,
        event_monitor: Optional[EventMonitor] = None,
        clock: Optional[Clock] = None,
        scheduler: Optional[Scheduler] = None,
        store: Optional[IBoundedStore[str, UserFeedback]] = None,
        max_items: int = 5000,
        analytics_refresh_seconds: float = 300,
    ):
        self.logger = logging.getLogger(__name__)
        self.event_monitor = event_monitor
        self.clock = clock or SystemClock()
        self.scheduler = scheduler
        self.feedback: IBoundedStore[str, UserFeedback] = store or InMemoryBoundedStore(
            max_items,
            timestamp_of=lambda item: item.timestamp,
            on_evict=lambda key, _: self.logger.debug(f"Evicted feedback {key}"),
        )
        self.analytics_refresh = timedelta(seconds=analytics_refresh_seconds)
        self._analytics_cache: Optional[FeedbackAnalytics] = None
        self._analytics_cached_at: Optional[datetime] = None

    # Lifecycle

    def start(self) -> None:
        if self.scheduler is not None and self.analytics_refresh.total_seconds() > 0:
            self.scheduler.add_job(
                ANALYTICS_REFRESH_JOB,
                self.refresh_analytics,
                self.analytics_refresh.total_seconds(),
            )

    def stop(self) -> None:
        if self.scheduler is not None:
            self.scheduler.remove_job(ANALYTICS_REFRESH_JOB)

    # Submission

    def submit_feedback(self, data: FeedbackSubmission, context: Optional[FeedbackContext] = None) -> str:
        """Store a feedback record, route it and log it to the event monitor.

        Returns:
            The new feedback id
        """
        context = replace(context, metadata=dict(context.metadata)) if context else FeedbackContext()
        if data.rating is not None and not 1 <= data.rating <= 5:
            raise ValueError(f"Rating must be between 1 and 5, got {data.rating}")

        now = self.clock.now()
        feedback = UserFeedback(
            id=self._feedback_id(now),
            timestamp=now,
            type=FeedbackType(data.type),
            category=FeedbackCategory(data.category),
            priority=FeedbackPriority(data.priority),
            status=FeedbackStatus.NEW,
            title=data.title,
            description=data.description,
            context=context,
            rating=data.rating,
            tags=list(data.tags),
            metadata={
                **data.metadata,
                "submitted_via": self._submission_method(feedback_type=data.type, context=context),
            },
        )

        self._route(feedback)
        self.feedback.put(feedback.id, feedback)
        self._log_to_monitoring(feedback)
        self.invalidate_analytics_cache()

        self.logger.info(
            f"Feedback {feedback.id} submitted: type={feedback.type.value} "
            f"priority={feedback.priority.value}"
        )
        return feedback.id

    def submit_error_report(
        self,
        error: LayerError,
        context: Optional[FeedbackContext] = None,
        user_description: Optional[str] = None,
        steps_before_error: Optional[str] = None,
        expected_behavior: Optional[str] = None,
        actual_behavior: Optional[str] = None,
    ) -> str:
        context = context or FeedbackContext()
        context = replace(
            context,
            correlation_id=context.correlation_id or error.correlation_id,
            layer=error.layer,
        )
        return self.submit_feedback(
            FeedbackSubmission(
                type=FeedbackType.ERROR_REPORT,
                category=self.map_error_to_category(error),
                priority=IMPACT_PRIORITY[error.impact],
                title=f"Error in {error.layer_name}: {error.message[:50]}...",
                description=user_description or error.user_friendly_message,
                tags=self.error_tags(error),
                metadata={
                    "error_correlation_id": error.correlation_id,
                    "error_impact": error.impact.value,
                    "error_recoverable": error.recoverable,
                    "error_recovery_attempts": error.recovery_attempts,
                    "steps_before_error": steps_before_error,
                    "expected_behavior": expected_behavior,
                    "actual_behavior": actual_behavior or error.technical_details,
                },
            ),
            context,
        )

    def submit_satisfaction_rating(
        self,
        correlation_id: str,
        rating: int,
        context: Optional[FeedbackContext] = None,
        comment: Optional[str] = None,
    ) -> str:
        context = replace(context or FeedbackContext(), correlation_id=correlation_id)
        return self.submit_feedback(
            FeedbackSubmission(
                type=FeedbackType.SATISFACTION,
                category=FeedbackCategory.USABILITY,
                priority=rating_priority(rating),
                title=f"User Satisfaction Rating: {rating}/5",
                description=comment or "No additional comments provided",
                rating=rating,
                tags=["satisfaction", "rating", f"score_{rating}"],
                metadata={"rating": rating, "comment": comment},
            ),
            context,
        )

    def submit_improvement_suggestion(
        self,
        suggestion: str,
        context: Optional[FeedbackContext] = None,
        category: FeedbackCategory = FeedbackCategory.FEATURES,
        priority: FeedbackPriority = FeedbackPriority.MEDIUM,
    ) -> str:
        context = context or FeedbackContext()
        if not context.correlation_id:
            context = replace(context, correlation_id=f"suggestion-{int(self.clock.now().timestamp() * 1000)}")
        category = FeedbackCategory(category)
        return self.submit_feedback(
            FeedbackSubmission(
                type=FeedbackType.SUGGESTION,
                category=category,
                priority=priority,
                title="User Improvement Suggestion",
                description=suggestion,
                tags=["improvement", "suggestion", category.value],
                metadata={"suggestion_type": "general"},
            ),
            context,
        )

    @staticmethod
    def map_error_to_category(error: LayerError) -> FeedbackCategory:
        return first_match(ERROR_CATEGORY_RULES, error.message, FeedbackCategory.FEATURES)

    @staticmethod
    def error_tags(error: LayerError) -> List[str]:
        tags = [f"layer_{error.layer}", error.impact.value, "error"]
        if error.recoverable:
            tags.append("recoverable")
        if error.recovery_attempts > 0:
            tags.append("recovery_attempted")
        message = error.message.lower()
        tags.extend(keyword for keyword in ERROR_KEYWORD_TAGS if keyword in message)
        return tags

    def _route(self, feedback: UserFeedback) -> None:
        if feedback.type == FeedbackType.ERROR_REPORT:
            if feedback.priority == FeedbackPriority.CRITICAL:
                feedback.assigned_to = ERROR_HANDLING_ASSIGNEE
                feedback.status = FeedbackStatus.ACKNOWLEDGED
            feedback.tags.append("auto_processed")

        elif feedback.type == FeedbackType.SATISFACTION:
            if feedback.rating is not None and feedback.rating <= 2:
                feedback.priority = FeedbackPriority.HIGH
                feedback.tags.extend(["low_satisfaction", "follow_up_required"])
            feedback.tags.append("satisfaction_data")

        elif feedback.type == FeedbackType.SUGGESTION:
            team = SUGGESTION_ROUTES.get(feedback.category)
            if team:
                feedback.assigned_to = team
            feedback.tags.append("improvement_request")

    @staticmethod
    def _submission_method(feedback_type: FeedbackType, context: FeedbackContext) -> str:
        if feedback_type == FeedbackType.ERROR_REPORT:
            return "error_report"
        if context.page_url and "feedback" in context.page_url:
            return "feedback_form"
        return "inline_widget"

    def _log_to_monitoring(self, feedback: UserFeedback) -> None:
        if self.event_monitor is None:
            return
        if feedback.priority == FeedbackPriority.CRITICAL:
            severity = Impact.CRITICAL
        elif feedback.priority == FeedbackPriority.HIGH:
            severity = Impact.HIGH
        else:
            severity = Impact.LOW
        context = feedback.context
        self.event_monitor.log_event(
            EventType.INFO,
            context.layer if context.layer is not None else SYSTEM_LAYER,
            severity,
            f"User feedback submitted: {feedback.type.value}",
            source=EventSource.CLIENT,
            correlation_id=context.correlation_id,
            user_id=context.user_id,
            session_id=context.session_id,
            conversation_id=context.conversation_id,
            metadata={
                "feedback_id": feedback.id,
                "feedback_type": feedback.type.value,
                "feedback_category": feedback.category.value,
                "feedback_priority": feedback.priority.value,
                "has_rating": feedback.rating is not None,
            },
        )

    def _feedback_id(self, now: datetime) -> str:
        millis = int(now.timestamp() * 1000)
        suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
        return f"fb-{millis}-{suffix}"

    # Lookup and lifecycle

    def get_feedback(self, feedback_id: str) -> Optional[UserFeedback]:
        return self.feedback.get(feedback_id)

    def get_feedback_by_correlation(self, correlation_id: str) -> List[UserFeedback]:
        return [f for f in self.feedback.values() if f.correlation_id == correlation_id]

    def get_feedback_by_user(self, user_id: str) -> List[UserFeedback]:
        return [f for f in self.feedback.values() if f.user_id == user_id]

    def update_feedback_status(
        self,
        feedback_id: str,
        status: FeedbackStatus,
        assigned_to: Optional[str] = None,
        resolution: Optional[str] = None,
    ) -> bool:
        """Move a feedback record along its status machine.

        Returns:
            False when the record is unknown or the transition is not allowed
        """
        feedback = self.feedback.get(feedback_id)
        if feedback is None:
            return False
        status = FeedbackStatus(status)
        if status != feedback.status and status not in FEEDBACK_TRANSITIONS[feedback.status]:
            self.logger.warning(
                f"Rejected feedback {feedback_id} transition {feedback.status.value} -> {status.value}"
            )
            return False

        feedback.status = status
        if assigned_to:
            feedback.assigned_to = assigned_to
        if resolution:
            feedback.resolution_notes = resolution
        if status == FeedbackStatus.RESOLVED and feedback.resolution_time is None:
            feedback.resolution_time = self.clock.now()

        self.invalidate_analytics_cache()
        return True

    # Analytics

    def invalidate_analytics_cache(self) -> None:
        self._analytics_cache = None
        self._analytics_cached_at = None

    def refresh_analytics(self) -> FeedbackAnalytics:
        self._analytics_cache = self.calculate_analytics(self.feedback.values())
        self._analytics_cached_at = self.clock.now()
        return self._analytics_cache

    def get_analytics(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> FeedbackAnalytics:
        """Analytics over all feedback (cached) or over ``start <= timestamp <= end``."""
        if start is not None or end is not None:
            items = [
                f for f in self.feedback.values()
                if (start is None or f.timestamp >= start) and (end is None or f.timestamp <= end)
            ]
            return self.calculate_analytics(items)

        now = self.clock.now()
        if (
            self._analytics_cache is None
            or self._analytics_cached_at is None
            or now - self._analytics_cached_at >= self.analytics_refresh
        ):
            return self.refresh_analytics()
        return self._analytics_cache

    def calculate_analytics(self, items: List[UserFeedback]) -> FeedbackAnalytics:
        resolved = [f for f in items if f.status == FeedbackStatus.RESOLVED]
        resolution_times = [
            (f.resolution_time - f.timestamp).total_seconds() * 1000
            for f in resolved if f.resolution_time is not None
        ]
        ratings = [f.rating for f in items if f.rating is not None]

        return FeedbackAnalytics(
            total_feedback=len(items),
            by_type=dict(Counter(f.type.value for f in items)),
            by_category=dict(Counter(f.category.value for f in items)),
            by_priority=dict(Counter(f.priority.value for f in items)),
            by_status=dict(Counter(f.status.value for f in items)),
            average_resolution_time_ms=(
                sum(resolution_times) / len(resolution_times) if resolution_times else 0.0
            ),
            satisfaction_score=round(sum(ratings) / len(ratings), 2) if ratings else 0.0,
            resolution_rate=len(resolved) / len(items) * 100 if items else 0.0,
            top_issues=self.identify_top_issues(items),
            trends=self.get_feedback_trends("week"),
            generated_at=self.clock.now(),
        )

    def identify_top_issues(self, items: List[UserFeedback], limit: int = 10) -> List[TopIssue]:
        now = self.clock.now()
        week = timedelta(days=7)
        by_title: Dict[str, List[UserFeedback]] = {}
        for item in items:
            by_title.setdefault(item.title, []).append(item)

        issues = []
        for title, group in by_title.items():
            this_week = len([f for f in group if f.timestamp > now - week])
            last_week = len([f for f in group if now - 2 * week < f.timestamp <= now - week])
            if this_week > last_week:
                trend = "increasing"
            elif this_week < last_week:
                trend = "decreasing"
            else:
                trend = "stable"
            issues.append(TopIssue(
                title=title,
                count=len(group),
                impact=_impact_label([f.priority for f in group]),
                trend=trend,
            ))
        issues.sort(key=lambda issue: issue.count, reverse=True)
        return issues[:limit]

    def get_feedback_trends(self, period: str = "week", periods: int = 7) -> List[FeedbackTrend]:
        """Counts, mean rating, resolutions and top-5 tag themes per period, oldest first.

        Raises:
            ValueError: period is not day, week or month
        """
        if period not in TREND_PERIODS:
            raise ValueError(f"Unsupported trend period: {period}")

        items = self.feedback.values()
        trends = []
        for start, end in self._period_bounds(period, periods):
            in_period = [f for f in items if start <= f.timestamp <= end]
            ratings = [f.rating for f in in_period if f.rating is not None]
            themes = Counter(tag for f in in_period for tag in f.tags)
            trends.append(FeedbackTrend(
                period_start=start,
                period_end=end,
                total=len(in_period),
                average_rating=round(sum(ratings) / len(ratings), 2) if ratings else 0.0,
                resolved=len([f for f in in_period if f.status == FeedbackStatus.RESOLVED]),
                common_themes=[theme for theme, _ in themes.most_common(5)],
            ))
        return trends

    def _period_bounds(self, period: str, periods: int) -> List[Tuple[datetime, datetime]]:
        now = self.clock.now()
        tz = now.tzinfo
        today = now.date()
        bounds = []
        for i in range(periods - 1, -1, -1):
            if period == "day":
                first = last = today - timedelta(days=i)
            elif period == "week":
                last = today - timedelta(days=i * 7)
                first = last - timedelta(days=6)
            else:
                year, month = today.year, today.month - i
                while month < 1:
                    month += 12
                    year -= 1
                first = today.replace(year=year, month=month, day=1)
                last = first.replace(day=monthrange(year, month)[1])
            bounds.append((
                datetime.combine(first, time.min, tzinfo=tz),
                datetime.combine(last, time.max, tzinfo=tz),
            ))
        return bounds

    def export_feedback(self) -> List[Dict[str, Any]]:
        """All stored feedback as JSON-compatible records, oldest first."""
        return [to_json_compatible(f) for f in sorted(self.feedback.values(), key=lambda f: f.timestamp)]
