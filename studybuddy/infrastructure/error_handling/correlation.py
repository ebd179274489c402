"""
Correlation tracking.

Groups related LayerErrors under one correlation id. The first error seen
for an id becomes the primary error; later errors with the same id are
appended as cascade errors and the correlation's system state is
recomputed. Correlations live in a bounded store; evicting a correlation
also drops its recovery attempts.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from studybuddy.exceptions import Impact, LayerError
from studybuddy.infrastructure.error_handling.classification import ErrorClassifier
from studybuddy.infrastructure.persistence.bounded_store import InMemoryBoundedStore
from studybuddy.infrastructure.scheduling import Clock, SystemClock
from studybuddy.models.correlation import ErrorCorrelation, RecoveryAttempt, SystemState
from studybuddy.models.interfaces import IBoundedStore


logger = logging.getLogger(__name__)


class CorrelationTracker:
    """Owns the correlation map and the paired recovery-attempt log."""

    def __init__(
        self,
        clock: Optional[Clock] = None,
        max_correlations: int = 1000,
        healthy_window_minutes: float = 5,
        store: Optional[IBoundedStore[str, ErrorCorrelation]] = None,
    ):
        self.clock = clock or SystemClock()
        self.healthy_window = timedelta(minutes=healthy_window_minutes)
        self._recovery_attempts: Dict[str, List[RecoveryAttempt]] = {}
        self._store = store or InMemoryBoundedStore(
            capacity=max_correlations,
            timestamp_of=lambda c: c.timestamp,
            on_evict=self._on_evict,
        )

    def _on_evict(self, correlation_id: str, correlation: ErrorCorrelation) -> None:
        self._recovery_attempts.pop(correlation_id, None)
        logger.debug(f"Evicted correlation {correlation_id}")

    def track_error_correlation(self, error: LayerError, context: Optional[Dict[str, Any]] = None) -> str:
        """File ``error`` under its correlation id and return that id."""
        ctx = {**error.context, **(context or {})}
        correlation_id = error.correlation_id
        existing = self._store.get(correlation_id)

        if existing is not None:
            existing.cascade_errors.append(error)
            existing.refresh_layers()
            existing.system_state = self.determine_system_state(existing.errors)
            logger.debug(
                f"Cascade error on layer {error.layer} appended to {correlation_id} "
                f"(layers {existing.layers_involved})"
            )
            return correlation_id

        correlation = ErrorCorrelation(
            id=correlation_id,
            timestamp=error.timestamp,
            primary_error=error,
            resolution_strategy=ErrorClassifier.resolution_strategy(error),
            user_id=ctx.get("user_id"),
            session_id=ctx.get("session_id"),
            conversation_id=ctx.get("conversation_id"),
        )
        correlation.system_state = self.determine_system_state(correlation.errors)
        self._store.put(correlation_id, correlation)
        return correlation_id

    def determine_system_state(self, errors: List[LayerError]) -> SystemState:
        if any(e.impact == Impact.CRITICAL for e in errors):
            return SystemState.FAILED
        if any(e.impact == Impact.HIGH for e in errors):
            return SystemState.DEGRADED
        cutoff = self.clock.now() - self.healthy_window
        if not any(e.timestamp > cutoff for e in errors):
            return SystemState.HEALTHY
        return SystemState.UNKNOWN

    def get_correlation(self, correlation_id: str) -> Optional[ErrorCorrelation]:
        return self._store.get(correlation_id)

    def correlations(self) -> List[ErrorCorrelation]:
        return self._store.values()

    def record_recovery_attempt(self, correlation_id: str, attempt: RecoveryAttempt) -> None:
        self._recovery_attempts.setdefault(correlation_id, []).append(attempt)

    def get_recovery_attempts(self, correlation_id: str) -> List[RecoveryAttempt]:
        return list(self._recovery_attempts.get(correlation_id, []))

    def clear(self) -> None:
        self._store.clear()
        self._recovery_attempts.clear()

    def __len__(self) -> int:
        return len(self._store)
