"""
Alerting Framework

Rule-based alerting over the monitoring event stream. Each rule names a
condition type, a threshold and a trailing time window; the engine is handed
the event log after every append and fires each enabled rule whose condition
holds over its window. Firing never disables a rule.
"""

import logging
import random
import string
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence

from studybuddy.exceptions import Impact, NotFoundError
from studybuddy.infrastructure.logging.sink import LogSink
from studybuddy.infrastructure.scheduling import Clock, SystemClock
from studybuddy.models.interfaces import INotifier
from studybuddy.models.layers import SYSTEM_LAYER
from studybuddy.models.monitoring import (
    AlertCondition,
    AlertConditionType,
    AlertRule,
    AlertRuleActions,
    EventType,
    MonitoringEvent,
)
from studybuddy.utils.serialization import to_json_compatible


AutoRecoveryHandler = Callable[[AlertRule, List[MonitoringEvent]], Any]


def default_alert_rules() -> List[AlertRule]:
    """Rules installed on every new event monitor."""
    return [
        AlertRule(
            id="alert-high-error-rate",
            name="High Error Rate",
            description="Error rate exceeds 15% in 10 minutes",
            condition=AlertCondition(
                type=AlertConditionType.ERROR_RATE,
                threshold=15,
                time_window_minutes=10,
            ),
            actions=AlertRuleActions(log=True, notify=True, alert=True, auto_recovery=False),
        ),
        AlertRule(
            id="alert-critical-layer-failure",
            name="Critical Layer Failure",
            description="Critical errors in Layer 1 (Input Validation)",
            condition=AlertCondition(
                type=AlertConditionType.SEVERITY,
                threshold=1,
                time_window_minutes=5,
                layer=1,
                severity=Impact.CRITICAL,
            ),
            actions=AlertRuleActions(log=True, notify=True, alert=True, auto_recovery=True),
        ),
    ]


class AlertRuleEngine:
    """Manages alert rules, evaluation and rule actions."""

    def __init__(
        self,
        clock: Optional[Clock] = None,
        log_sink: Optional[LogSink] = None,
        notifier: Optional[INotifier] = None,
        max_triggered: int = 500,
    ):
        self.logger = logging.getLogger(__name__)
        self.clock = clock or SystemClock()
        self.log_sink = log_sink or LogSink()
        self.notifier = notifier
        self.rules: Dict[str, AlertRule] = {}
        self.triggered_alerts: Deque[Dict[str, Any]] = deque(maxlen=max_triggered)
        self.auto_recovery_handler: Optional[AutoRecoveryHandler] = None

    def add_rule(self, rule: AlertRule) -> None:
        self.rules[rule.id] = rule
        self.logger.info(f"Added alert rule: {rule.name} ({rule.id})")

    def create_rule(
        self,
        name: str,
        description: str,
        condition: AlertCondition,
        actions: Optional[AlertRuleActions] = None,
        enabled: bool = True,
    ) -> str:
        millis = int(self.clock.now().timestamp() * 1000)
        suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
        rule = AlertRule(
            id=f"alert-{millis}-{suffix}",
            name=name,
            description=description,
            condition=condition,
            actions=actions or AlertRuleActions(),
            enabled=enabled,
        )
        self.add_rule(rule)
        return rule.id

    def get_rule(self, rule_id: str) -> AlertRule:
        rule = self.rules.get(rule_id)
        if rule is None:
            raise NotFoundError(f"Alert rule not found: {rule_id}")
        return rule

    def remove_rule(self, rule_id: str) -> bool:
        if rule_id in self.rules:
            del self.rules[rule_id]
            self.logger.info(f"Removed alert rule: {rule_id}")
            return True
        return False

    def enable_rule(self, rule_id: str) -> bool:
        if rule_id in self.rules:
            self.rules[rule_id].enabled = True
            return True
        return False

    def disable_rule(self, rule_id: str) -> bool:
        if rule_id in self.rules:
            self.rules[rule_id].enabled = False
            return True
        return False

    def window(self, rule: AlertRule, events: Sequence[MonitoringEvent], now: datetime) -> List[MonitoringEvent]:
        cutoff = now - timedelta(minutes=rule.condition.time_window_minutes)
        return [e for e in events if e.timestamp > cutoff]

    def evaluate(self, events: Sequence[MonitoringEvent], trigger: Optional[MonitoringEvent] = None) -> List[AlertRule]:
        """Evaluate every enabled rule; fire and return those whose condition holds."""
        now = self.clock.now()
        fired = []
        for rule in list(self.rules.values()):
            if not rule.enabled:
                continue
            window_events = self.window(rule, events, now)
            if self.check_condition(rule, window_events):
                self._fire(rule, window_events, trigger, now)
                fired.append(rule)
        return fired

    def check_condition(self, rule: AlertRule, window_events: Sequence[MonitoringEvent]) -> bool:
        condition = rule.condition
        if condition.layer is not None and condition.type != AlertConditionType.SEVERITY:
            window_events = [e for e in window_events if e.layer == condition.layer]

        if condition.type == AlertConditionType.ERROR_RATE:
            if not window_events:
                return False
            errors = len([e for e in window_events if e.type == EventType.ERROR])
            return errors / len(window_events) * 100 >= condition.threshold

        if condition.type == AlertConditionType.SEVERITY:
            return any(
                e.severity == condition.severity
                and (condition.layer is None or e.layer == condition.layer)
                for e in window_events
            )

        if condition.type == AlertConditionType.RESPONSE_TIME:
            durations = [e.duration_ms for e in window_events if e.duration_ms is not None]
            if not durations:
                return False
            return sum(durations) / len(durations) >= condition.threshold

        if condition.type == AlertConditionType.CASCADING:
            return len(cascading_correlations(window_events)) >= condition.threshold

        if condition.type == AlertConditionType.RECOVERY_FAILURE:
            failures = [e for e in window_events if e.is_recovery and not e.metadata.get("success")]
            return len(failures) >= condition.threshold

        return False

    def rule_status(self, rule: AlertRule, events: Sequence[MonitoringEvent]) -> str:
        window_events = self.window(rule, events, self.clock.now())
        if rule.enabled and self.check_condition(rule, window_events):
            return "triggered"
        if window_events:
            return "warning"
        return "normal"

    def _fire(
        self,
        rule: AlertRule,
        window_events: List[MonitoringEvent],
        trigger: Optional[MonitoringEvent],
        now: datetime,
    ) -> None:
        rule.trigger_count += 1
        rule.last_triggered = now
        message = f"Alert: {rule.name} - {rule.description}"
        correlation_id = trigger.correlation_id if trigger else None

        if rule.actions.log:
            self.log_sink.log_warning(message, {
                "component": "alert-system",
                "rule_id": rule.id,
                "correlation_id": correlation_id,
                "trigger_count": rule.trigger_count,
            })

        if rule.actions.alert:
            self.triggered_alerts.append({
                "rule_id": rule.id,
                "rule_name": rule.name,
                "message": message,
                "timestamp": now,
                "correlation_id": correlation_id,
                "event_count": len(window_events),
            })

        if rule.actions.notify and self.notifier is not None:
            self.notifier.notify(
                message,
                to_json_compatible({
                    "rule": rule.name,
                    "rule_id": rule.id,
                    "event": trigger.message if trigger else None,
                    "correlation_id": correlation_id,
                    "timestamp": now,
                }),
                list(rule.actions.channels),
            )

        if rule.actions.auto_recovery and self.auto_recovery_handler is not None:
            try:
                self.auto_recovery_handler(rule, window_events)
            except Exception as e:
                self.logger.error(f"Auto-recovery for rule {rule.id} failed: {e}")


def cascading_correlations(events: Sequence[MonitoringEvent]) -> Dict[str, List[MonitoringEvent]]:
    """Correlation ids whose error events span two or more pipeline layers.

    System-wide events (layer 0) such as failed recoveries are not part of a
    cascade.
    """
    by_correlation: Dict[str, List[MonitoringEvent]] = {}
    for event in events:
        if event.type == EventType.ERROR and event.correlation_id and event.layer != SYSTEM_LAYER:
            by_correlation.setdefault(event.correlation_id, []).append(event)
    return {
        cid: errors for cid, errors in by_correlation.items()
        if len({e.layer for e in errors}) >= 2
    }
