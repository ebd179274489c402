"""
Event Monitor

Append-only, capacity-bounded event log for the error-handling core. Every
classified error, recovery attempt and informational event lands here and is
indexed by correlation id. Alert rules are evaluated after each append and a
periodic sweep raises a synthetic critical event while overall health is
critical.

Metrics (``get_metrics``) and health (``get_system_health``) are derived on
demand from the log; nothing is pre-aggregated.
"""

import logging
import random
import string
from collections import Counter, deque
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, List, Optional

from studybuddy.exceptions import Impact, LayerError
from studybuddy.infrastructure.error_handling.classification import infer_source
from studybuddy.infrastructure.logging.sink import LogSink
from studybuddy.infrastructure.monitoring.alerting import (
    AlertRuleEngine,
    cascading_correlations,
    default_alert_rules,
)
from studybuddy.infrastructure.scheduling import Clock, Scheduler, SystemClock
from studybuddy.models.health import HealthStatus, Trend
from studybuddy.models.layers import LAYERS, SYSTEM_LAYER
from studybuddy.models.monitoring import (
    AlertCondition,
    AlertRuleActions,
    ErrorPattern,
    EventHealthReport,
    EventSource,
    EventType,
    LayerHealthSummary,
    MonitoringEvent,
    MonitoringMetrics,
    TrendAnalysis,
)


HEALTH_SWEEP_JOB = "event-monitor-health-sweep"


class EventMonitor:
    """Bounded event log with alerting and derived metrics."""

    def __init__(
        self,
        clock: Optional[Clock] = None,
        scheduler: Optional[Scheduler] = None,
        log_sink: Optional[LogSink] = None,
        alert_engine: Optional[AlertRuleEngine] = None,
        max_events: int = 10000,
        health_check_interval_seconds: float = 30,
        recent_window_minutes: float = 60,
        layer_degraded_error_rate: float = 10,
        layer_critical_error_rate: float = 20,
        install_default_rules: bool = True,
    ):
        if max_events < 1:
            raise ValueError("max_events must be at least 1")
        self.logger = logging.getLogger(__name__)
        self.clock = clock or SystemClock()
        self.scheduler = scheduler
        self.log_sink = log_sink or LogSink("studybuddy.monitoring")
        self.alerts = alert_engine or AlertRuleEngine(clock=self.clock, log_sink=self.log_sink)
        self.max_events = max_events
        self.health_check_interval_seconds = health_check_interval_seconds
        self.recent_window = timedelta(minutes=recent_window_minutes)
        self.layer_degraded_error_rate = layer_degraded_error_rate
        self.layer_critical_error_rate = layer_critical_error_rate

        self._events: Deque[MonitoringEvent] = deque()
        self._by_correlation: Dict[str, List[MonitoringEvent]] = {}

        if install_default_rules:
            for rule in default_alert_rules():
                self.alerts.add_rule(rule)

    # Lifecycle

    def start(self) -> None:
        if self.scheduler is None:
            self.logger.warning("Event monitor has no scheduler; health sweep disabled")
            return
        self.scheduler.add_job(HEALTH_SWEEP_JOB, self.run_health_sweep, self.health_check_interval_seconds)
        self.logger.info(f"Event monitor health sweep every {self.health_check_interval_seconds}s")

    def stop(self) -> None:
        if self.scheduler is not None:
            self.scheduler.remove_job(HEALTH_SWEEP_JOB)

    def run_health_sweep(self) -> Optional[str]:
        """Emit a critical system event if overall health is critical."""
        health = self.get_system_health()
        if health.overall != HealthStatus.CRITICAL:
            return None
        millis = int(self.clock.now().timestamp() * 1000)
        return self.log_event(
            EventType.ERROR,
            SYSTEM_LAYER,
            Impact.CRITICAL,
            "System health critical",
            source=EventSource.SYSTEM,
            correlation_id=f"health-check-{millis}",
            metadata={"health": {layer: s.status.value for layer, s in health.layers.items()}},
        )

    # Recording

    def log_event(
        self,
        type: EventType,
        layer: int,
        severity: Impact,
        message: str,
        *,
        source: EventSource = EventSource.SYSTEM,
        correlation_id: Optional[str] = None,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        duration_ms: Optional[float] = None,
        retry_count: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Append an event and evaluate alert rules.

        Returns:
            The new event id
        """
        now = self.clock.now()
        event = MonitoringEvent(
            id=self._event_id(now),
            timestamp=now,
            type=EventType(type),
            layer=layer,
            severity=Impact(severity),
            message=message,
            source=EventSource(source),
            correlation_id=correlation_id,
            user_id=user_id,
            session_id=session_id,
            conversation_id=conversation_id,
            duration_ms=duration_ms,
            retry_count=retry_count,
            metadata=dict(metadata or {}),
        )
        event.seal()

        self._events.append(event)
        if correlation_id:
            self._by_correlation.setdefault(correlation_id, []).append(event)
        self._evict()

        self.alerts.evaluate(self._events, trigger=event)
        return event.id

    def log_error(self, error: LayerError, extra_context: Optional[Dict[str, Any]] = None) -> str:
        ctx = error.context
        duration_ms = (self.clock.now() - error.timestamp).total_seconds() * 1000
        return self.log_event(
            EventType.ERROR,
            error.layer,
            error.impact,
            error.message,
            source=infer_source(error.message),
            correlation_id=error.correlation_id,
            user_id=ctx.get("user_id"),
            session_id=ctx.get("session_id"),
            conversation_id=ctx.get("conversation_id"),
            duration_ms=max(duration_ms, 0.0),
            retry_count=error.recovery_attempts,
            metadata={
                "layer_name": error.layer_name,
                "recoverable": error.recoverable,
                "user_friendly_message": error.user_friendly_message,
                **(extra_context or {}),
            },
        )

    def log_recovery(
        self,
        correlation_id: str,
        success: bool,
        strategy: str,
        duration_ms: float,
        extra_context: Optional[Dict[str, Any]] = None,
    ) -> str:
        return self.log_event(
            EventType.RECOVERY if success else EventType.ERROR,
            SYSTEM_LAYER,
            Impact.LOW if success else Impact.HIGH,
            f"Recovery {'successful' if success else 'failed'}: {strategy}",
            source=EventSource.SERVER,
            correlation_id=correlation_id,
            duration_ms=duration_ms,
            metadata={
                "recovery": True,
                "success": success,
                "strategy": strategy,
                **(extra_context or {}),
            },
        )

    def _event_id(self, now: datetime) -> str:
        millis = int(now.timestamp() * 1000)
        suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
        return f"evt-{millis}-{suffix}"

    def _evict(self) -> None:
        while len(self._events) > self.max_events:
            dropped = self._events.popleft()
            if dropped.correlation_id:
                indexed = self._by_correlation.get(dropped.correlation_id)
                if indexed:
                    indexed.remove(dropped)
                    if not indexed:
                        del self._by_correlation[dropped.correlation_id]

    # Queries

    @property
    def events(self) -> List[MonitoringEvent]:
        return list(self._events)

    def __len__(self) -> int:
        return len(self._events)

    def get_events_by_correlation(self, correlation_id: str) -> List[MonitoringEvent]:
        return list(self._by_correlation.get(correlation_id, []))

    def resolve_correlation(self, correlation_id: str) -> int:
        """Mark every unresolved event of a correlation resolved.

        Returns:
            Number of events newly resolved
        """
        now = self.clock.now()
        resolved = 0
        for event in self._by_correlation.get(correlation_id, []):
            if not event.resolved:
                event.resolved = True
                event.resolution_time = now
                resolved += 1
        if resolved:
            self.logger.info(f"Resolved {resolved} events for correlation {correlation_id}")
        return resolved

    def create_alert_rule(
        self,
        name: str,
        description: str,
        condition: AlertCondition,
        actions: Optional[AlertRuleActions] = None,
        enabled: bool = True,
    ) -> str:
        return self.alerts.create_rule(name, description, condition, actions, enabled)

    def get_metrics(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> MonitoringMetrics:
        """Aggregate the event log, optionally restricted to ``start <= timestamp <= end``."""
        events = [
            e for e in self._events
            if (start is None or e.timestamp >= start) and (end is None or e.timestamp <= end)
        ]
        errors = [e for e in events if e.type == EventType.ERROR]

        resolution_times = [
            (e.resolution_time - e.timestamp).total_seconds() * 1000
            for e in events if e.resolved and e.resolution_time
        ]
        recoveries = [e for e in events if e.is_recovery]
        successful_recoveries = [e for e in recoveries if e.metadata.get("success")]
        cascading = cascading_correlations(events)
        cascading_errors = sum(len(group) for group in cascading.values())

        return MonitoringMetrics(
            total_events=len(events),
            events_by_type=dict(Counter(e.type.value for e in events)),
            errors_by_layer=dict(Counter(e.layer for e in errors)),
            errors_by_severity=dict(Counter(e.severity.value for e in errors)),
            average_resolution_time_ms=(
                sum(resolution_times) / len(resolution_times) if resolution_times else 0.0
            ),
            recovery_success_rate=(
                len(successful_recoveries) / len(recoveries) * 100 if recoveries else 0.0
            ),
            cascading_error_rate=cascading_errors / len(errors) * 100 if errors else 0.0,
            top_error_patterns=self._top_error_patterns(errors),
            system_health_score=self.health_score(events),
            trend_analysis=self.trend_analysis(events),
        )

    def health_score(self, events: Optional[List[MonitoringEvent]] = None) -> float:
        """100 minus 20 per critical error, 5 per error and 0.1 per event in the recent window."""
        events = self.events if events is None else events
        if not events:
            return 100.0
        cutoff = self.clock.now() - self.recent_window
        recent = [e for e in events if e.timestamp > cutoff]
        errors = [e for e in recent if e.type == EventType.ERROR]
        critical = [e for e in errors if e.severity == Impact.CRITICAL]
        score = 100 - len(critical) * 20 - len(errors) * 5 - len(recent) * 0.1
        return round(max(0.0, min(100.0, score)), 1)

    def trend_analysis(self, events: Optional[List[MonitoringEvent]] = None) -> TrendAnalysis:
        events = self.events if events is None else events
        now = self.clock.now()
        last_hour = [
            e for e in events
            if e.type == EventType.ERROR and e.timestamp > now - self.recent_window
        ]
        previous_hour = [
            e for e in events
            if e.type == EventType.ERROR and now - 2 * self.recent_window < e.timestamp <= now - self.recent_window
        ]

        if len(last_hour) > 10:
            direction = Trend.DEGRADING
        elif len(last_hour) < 2:
            direction = Trend.IMPROVING
        else:
            direction = Trend.STABLE

        change_rate = (len(last_hour) - len(previous_hour)) / max(len(previous_hour), 1) * 100

        predicted = []
        if direction == Trend.DEGRADING:
            predicted.append("Increasing error rate may lead to service degradation")
        for layer, count in Counter(e.layer for e in last_hour).items():
            if layer in LAYERS and count >= 5:
                predicted.append(f"Layer {layer} ({LAYERS[layer].name}) at risk of failure")

        return TrendAnalysis(direction=direction, change_rate=round(change_rate, 1), predicted_issues=predicted)

    @staticmethod
    def _top_error_patterns(errors: List[MonitoringEvent], limit: int = 10) -> List[ErrorPattern]:
        groups: Dict[str, List[MonitoringEvent]] = {}
        for error in errors:
            key = f"{error.type.value}_layer_{error.layer}_{error.severity.value}"
            groups.setdefault(key, []).append(error)

        patterns = []
        for key, group in groups.items():
            if any(e.severity == Impact.CRITICAL for e in group):
                impact = "High"
            elif any(e.severity == Impact.HIGH for e in group):
                impact = "Medium"
            else:
                impact = "Low"
            patterns.append(ErrorPattern(
                pattern=key,
                count=len(group),
                last_occurrence=max(e.timestamp for e in group),
                impact=impact,
            ))
        patterns.sort(key=lambda p: p.count, reverse=True)
        return patterns[:limit]

    def get_system_health(self) -> EventHealthReport:
        now = self.clock.now()
        recent = [e for e in self._events if e.timestamp > now - self.recent_window]

        layers: Dict[int, LayerHealthSummary] = {}
        for layer in LAYERS:
            layer_events = [e for e in recent if e.layer == layer]
            layer_errors = [e for e in layer_events if e.type == EventType.ERROR]
            error_rate = len(layer_errors) / len(layer_events) * 100 if layer_events else 0.0
            if error_rate > self.layer_critical_error_rate:
                status = HealthStatus.CRITICAL
            elif error_rate > self.layer_degraded_error_rate:
                status = HealthStatus.DEGRADED
            else:
                status = HealthStatus.HEALTHY
            layers[layer] = LayerHealthSummary(
                status=status,
                error_rate=round(error_rate, 1),
                event_count=len(layer_events),
                last_error=max((e.timestamp for e in layer_errors), default=None),
            )

        overall = max((s.status for s in layers.values()), key=lambda s: s.rank, default=HealthStatus.HEALTHY)

        alerts = {rule.id: self.alerts.rule_status(rule, self._events) for rule in self.alerts.rules.values()}

        recommendations = []
        for layer, summary in layers.items():
            if summary.status == HealthStatus.CRITICAL:
                recommendations.append(
                    f"Layer {layer} requires immediate attention - error rate: {summary.error_rate}%"
                )
            elif summary.status == HealthStatus.DEGRADED:
                recommendations.append(
                    f"Monitor Layer {layer} closely - error rate: {summary.error_rate}%"
                )

        return EventHealthReport(overall=overall, layers=layers, alerts=alerts, recommendations=recommendations)

    def clear(self) -> None:
        self._events.clear()
        self._by_correlation.clear()
