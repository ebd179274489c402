"""
Enhanced error handler.

Facade over classification, correlation tracking, recovery and user
messaging. Pipeline code calls ``handle_layer_error`` when a stage fails and
``attempt_recovery`` when it wants the stage's resolution strategy run;
dashboards read ``get_system_health`` and ``get_error_details``.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from studybuddy.exceptions import Impact, LayerError, NotFoundError
from studybuddy.infrastructure.error_handling.classification import ErrorClassifier
from studybuddy.infrastructure.error_handling.correlation import CorrelationTracker
from studybuddy.infrastructure.error_handling.messages import UserFriendlyMessageSystem, UserMessageContext
from studybuddy.infrastructure.error_handling.recovery import RecoveryManager
from studybuddy.infrastructure.scheduling import Clock, SystemClock
from studybuddy.models.correlation import ErrorCorrelation, RecoveryAttempt
from studybuddy.models.layers import LAYERS

if TYPE_CHECKING:
    from studybuddy.infrastructure.monitoring.event_monitor import EventMonitor


logger = logging.getLogger(__name__)


class EnhancedErrorHandler:
    """Entry point for pipeline stages reporting failures."""

    def __init__(
        self,
        classifier: ErrorClassifier,
        tracker: CorrelationTracker,
        recovery: RecoveryManager,
        event_monitor: Optional["EventMonitor"] = None,
        messages: Optional[UserFriendlyMessageSystem] = None,
        clock: Optional[Clock] = None,
    ):
        self.classifier = classifier
        self.tracker = tracker
        self.recovery = recovery
        self.event_monitor = event_monitor
        self.messages = messages or UserFriendlyMessageSystem()
        self.clock = clock or SystemClock()

    def create_layer_error(
        self,
        layer: int,
        message: str,
        original_error: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> LayerError:
        return self.classifier.create_layer_error(layer, message, original_error, context)

    def track_error_correlation(self, error: LayerError, context: Optional[Dict[str, Any]] = None) -> str:
        return self.tracker.track_error_correlation(error, context)

    def handle_layer_error(
        self,
        layer: int,
        error: BaseException,
        context: Optional[Dict[str, Any]] = None,
    ) -> LayerError:
        """Classify ``error`` raised in ``layer``, log it and file its correlation."""
        layer_error = self.create_layer_error(layer, str(error) or type(error).__name__, error, context)
        self.track_error_correlation(layer_error, context)
        if self.event_monitor is not None:
            self.event_monitor.log_error(layer_error)
        return layer_error

    async def attempt_recovery(self, error: LayerError) -> bool:
        started = self.clock.monotonic()
        attempted_before = error.recovery_attempts
        success = await self.recovery.attempt_recovery(error)
        if self.event_monitor is not None and error.recovery_attempts > attempted_before:
            self.event_monitor.log_recovery(
                error.correlation_id,
                success,
                self.recovery.strategy_for(error).value,
                (self.clock.monotonic() - started) * 1000,
                {"layer": error.layer, **error.context},
            )
        return success

    def get_error_correlation(self, correlation_id: str) -> Optional[ErrorCorrelation]:
        return self.tracker.get_correlation(correlation_id)

    def get_recovery_attempts(self, correlation_id: str) -> List[RecoveryAttempt]:
        return self.tracker.get_recovery_attempts(correlation_id)

    def get_user_message(self, error: LayerError, context: Optional[UserMessageContext] = None):
        return self.messages.generate_user_message(error, context)

    def get_error_details(self, correlation_id: str) -> Dict[str, Any]:
        """Everything known about one correlation, for support tooling.

        Raises:
            NotFoundError: no correlation with that id is tracked
        """
        correlation = self.tracker.get_correlation(correlation_id)
        if correlation is None:
            raise NotFoundError(f"Correlation not found: {correlation_id}")
        return {
            "correlation": correlation,
            "recovery_attempts": self.tracker.get_recovery_attempts(correlation_id),
            "user_message": self.messages.generate_user_message(correlation.primary_error),
            "help": self.messages.get_contextual_help(correlation.primary_error),
        }

    def get_system_health(self) -> Dict[str, Any]:
        correlations = self.tracker.correlations()
        all_errors = [e for c in correlations for e in c.errors]

        layer_status = {}
        for layer in LAYERS:
            layer_errors = [e for e in all_errors if e.layer == layer]
            layer_status[layer] = {
                "healthy": not any(e.impact == Impact.CRITICAL for e in layer_errors),
                "error_count": len(layer_errors),
                "last_error": layer_errors[-1].message if layer_errors else None,
            }

        return {
            "total_errors": len(all_errors),
            "critical_errors": len([e for e in all_errors if e.impact == Impact.CRITICAL]),
            "system_state": self.tracker.determine_system_state(all_errors),
            "layer_status": layer_status,
            "recent_correlations": correlations[-10:],
        }

    def clear_history(self) -> None:
        self.tracker.clear()
        logger.info("Error correlation history cleared")
