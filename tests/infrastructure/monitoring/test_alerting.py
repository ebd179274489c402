"""Tests for rule-based alerting over the event stream."""

from unittest.mock import Mock

import pytest

from studybuddy.exceptions import Impact, NotFoundError
from studybuddy.infrastructure.monitoring.alerting import cascading_correlations
from studybuddy.infrastructure.monitoring.event_monitor import EventMonitor
from studybuddy.models.monitoring import AlertCondition, AlertConditionType, AlertRuleActions, EventType


def log_info(monitor, layer=2):
    return monitor.log_event(EventType.INFO, layer, Impact.LOW, "ok")


def log_error(monitor, layer=2, severity=Impact.MEDIUM, **kwargs):
    return monitor.log_event(EventType.ERROR, layer, severity, "failed", **kwargs)


@pytest.fixture
def bare_monitor(clock, scheduler, log_sink, alert_engine):
    """Event monitor without the default rules."""
    return EventMonitor(
        clock=clock,
        scheduler=scheduler,
        log_sink=log_sink,
        alert_engine=alert_engine,
        install_default_rules=False,
    )


class TestDefaultRules:
    """The rules every event monitor starts with."""

    def test_installed(self, event_monitor):
        assert set(event_monitor.alerts.rules) == {"alert-high-error-rate", "alert-critical-layer-failure"}

    def test_error_rate_fires_at_fifteen_percent(self, event_monitor):
        """3 errors in 20 events reaches the 15% threshold exactly."""
        for _ in range(17):
            log_info(event_monitor)
        for _ in range(3):
            log_error(event_monitor)

        rule = event_monitor.alerts.get_rule("alert-high-error-rate")
        assert rule.trigger_count == 1
        assert rule.last_triggered is not None

    def test_error_rate_quiet_at_fourteen_percent(self, event_monitor):
        for _ in range(86):
            log_info(event_monitor)
        for _ in range(14):
            log_error(event_monitor)

        assert event_monitor.alerts.get_rule("alert-high-error-rate").trigger_count == 0

    def test_rule_stays_enabled_after_firing(self, event_monitor):
        log_error(event_monitor)
        log_error(event_monitor)
        rule = event_monitor.alerts.get_rule("alert-high-error-rate")
        assert rule.trigger_count == 2
        assert rule.enabled

    def test_error_rate_window(self, event_monitor, clock):
        """Errors older than the window no longer count."""
        log_error(event_monitor)
        clock.advance(11 * 60)
        for _ in range(10):
            log_info(event_monitor)
        assert event_monitor.alerts.get_rule("alert-high-error-rate").trigger_count == 1

    def test_critical_layer_one_failure(self, event_monitor, log_sink, notifier):
        """A critical layer-1 error logs, notifies and records an alert."""
        log_error(event_monitor, layer=1, severity=Impact.CRITICAL, correlation_id="c-1")

        rule = event_monitor.alerts.get_rule("alert-critical-layer-failure")
        assert rule.trigger_count == 1
        log_sink.log_warning.assert_any_call(
            "Alert: Critical Layer Failure - Critical errors in Layer 1 (Input Validation)",
            {
                "component": "alert-system",
                "rule_id": "alert-critical-layer-failure",
                "correlation_id": "c-1",
                "trigger_count": 1,
            },
        )
        titles = [call.args[0] for call in notifier.notify.call_args_list]
        assert "Alert: Critical Layer Failure - Critical errors in Layer 1 (Input Validation)" in titles
        recorded = [a for a in event_monitor.alerts.triggered_alerts if a["rule_id"] == rule.id]
        assert recorded[0]["correlation_id"] == "c-1"

    def test_critical_error_on_other_layer_ignored(self, event_monitor):
        log_error(event_monitor, layer=3, severity=Impact.CRITICAL)
        assert event_monitor.alerts.get_rule("alert-critical-layer-failure").trigger_count == 0

    def test_auto_recovery_handler_called(self, event_monitor):
        handler = Mock()
        event_monitor.alerts.auto_recovery_handler = handler
        log_error(event_monitor, layer=1, severity=Impact.CRITICAL)

        handler.assert_called_once()
        rule, events = handler.call_args.args
        assert rule.id == "alert-critical-layer-failure"
        assert len(events) == 1

    def test_auto_recovery_failure_is_contained(self, event_monitor):
        event_monitor.alerts.auto_recovery_handler = Mock(side_effect=RuntimeError("boom"))
        log_error(event_monitor, layer=1, severity=Impact.CRITICAL)
        assert len(event_monitor) == 1


class TestCustomRules:
    """Rules created at runtime."""

    def test_create_and_manage(self, bare_monitor, clock):
        rule_id = bare_monitor.create_alert_rule(
            "Slow responses",
            "Mean duration above 2s",
            AlertCondition(AlertConditionType.RESPONSE_TIME, threshold=2000, time_window_minutes=5),
        )
        millis = int(clock.now().timestamp() * 1000)
        assert rule_id.startswith(f"alert-{millis}-")

        engine = bare_monitor.alerts
        assert engine.disable_rule(rule_id)
        assert not engine.get_rule(rule_id).enabled
        assert engine.enable_rule(rule_id)
        assert engine.remove_rule(rule_id)
        assert not engine.remove_rule(rule_id)
        assert not engine.enable_rule(rule_id)
        with pytest.raises(NotFoundError):
            engine.get_rule(rule_id)

    def test_response_time(self, bare_monitor):
        rule_id = bare_monitor.create_alert_rule(
            "Slow", "", AlertCondition(AlertConditionType.RESPONSE_TIME, threshold=2000, time_window_minutes=5)
        )
        bare_monitor.log_event(EventType.INFO, 3, Impact.LOW, "fast", duration_ms=1000)
        assert bare_monitor.alerts.get_rule(rule_id).trigger_count == 0
        bare_monitor.log_event(EventType.INFO, 3, Impact.LOW, "slow", duration_ms=3000)
        assert bare_monitor.alerts.get_rule(rule_id).trigger_count == 1

    def test_cascading(self, bare_monitor):
        rule_id = bare_monitor.create_alert_rule(
            "Cascade", "", AlertCondition(AlertConditionType.CASCADING, threshold=1, time_window_minutes=5)
        )
        log_error(bare_monitor, layer=1, correlation_id="c-1")
        assert bare_monitor.alerts.get_rule(rule_id).trigger_count == 0
        log_error(bare_monitor, layer=2, correlation_id="c-1")
        assert bare_monitor.alerts.get_rule(rule_id).trigger_count == 1

    def test_recovery_failure(self, bare_monitor):
        rule_id = bare_monitor.create_alert_rule(
            "Recovery failing", "", AlertCondition(AlertConditionType.RECOVERY_FAILURE, threshold=2, time_window_minutes=5)
        )
        bare_monitor.log_recovery("c-1", False, "retry", 10)
        bare_monitor.log_recovery("c-2", True, "retry", 10)
        assert bare_monitor.alerts.get_rule(rule_id).trigger_count == 0
        bare_monitor.log_recovery("c-3", False, "retry", 10)
        assert bare_monitor.alerts.get_rule(rule_id).trigger_count == 1

    def test_layer_filter_on_error_rate(self, bare_monitor):
        rule_id = bare_monitor.create_alert_rule(
            "Layer 4 errors", "", AlertCondition(AlertConditionType.ERROR_RATE, threshold=50, time_window_minutes=5, layer=4)
        )
        log_error(bare_monitor, layer=2)
        assert bare_monitor.alerts.get_rule(rule_id).trigger_count == 0
        log_error(bare_monitor, layer=4)
        assert bare_monitor.alerts.get_rule(rule_id).trigger_count == 1

    def test_disabled_rule_never_fires(self, bare_monitor):
        rule_id = bare_monitor.create_alert_rule(
            "Any error", "", AlertCondition(AlertConditionType.ERROR_RATE, threshold=1, time_window_minutes=5),
            enabled=False,
        )
        log_error(bare_monitor)
        assert bare_monitor.alerts.get_rule(rule_id).trigger_count == 0

    def test_notify_uses_rule_channels(self, bare_monitor, notifier):
        bare_monitor.create_alert_rule(
            "Any error",
            "",
            AlertCondition(AlertConditionType.ERROR_RATE, threshold=1, time_window_minutes=5),
            AlertRuleActions(notify=True, channels=["webhook"]),
        )
        log_error(bare_monitor, correlation_id="c-7")
        title, payload, channels = notifier.notify.call_args.args
        assert channels == ["webhook"]
        assert payload["correlation_id"] == "c-7"
        assert payload["timestamp"] == "2025-01-01T12:00:00+00:00"

    def test_rule_status(self, bare_monitor, alert_engine):
        rule_id = bare_monitor.create_alert_rule(
            "Half errors", "", AlertCondition(AlertConditionType.ERROR_RATE, threshold=50, time_window_minutes=5)
        )
        rule = alert_engine.get_rule(rule_id)
        assert alert_engine.rule_status(rule, bare_monitor.events) == "normal"
        log_info(bare_monitor)
        assert alert_engine.rule_status(rule, bare_monitor.events) == "warning"
        log_error(bare_monitor)
        assert alert_engine.rule_status(rule, bare_monitor.events) == "triggered"


class TestCascadingCorrelations:

    def test_groups_multi_layer_errors(self, bare_monitor):
        log_error(bare_monitor, layer=1, correlation_id="a")
        log_error(bare_monitor, layer=1, correlation_id="a")
        log_error(bare_monitor, layer=1, correlation_id="b")
        log_error(bare_monitor, layer=5, correlation_id="b")
        assert list(cascading_correlations(bare_monitor.events)) == ["b"]

    def test_failed_recovery_does_not_make_a_cascade(self, bare_monitor):
        log_error(bare_monitor, layer=2, correlation_id="a")
        bare_monitor.log_recovery("a", False, "retry", 25)
        assert cascading_correlations(bare_monitor.events) == {}

    def test_cascading_rule_ignores_failed_recovery(self, bare_monitor):
        rule_id = bare_monitor.create_alert_rule(
            "Cascade", "", AlertCondition(AlertConditionType.CASCADING, threshold=1, time_window_minutes=5)
        )
        log_error(bare_monitor, layer=2, correlation_id="a")
        bare_monitor.log_recovery("a", False, "retry", 25)
        assert bare_monitor.alerts.get_rule(rule_id).trigger_count == 0
