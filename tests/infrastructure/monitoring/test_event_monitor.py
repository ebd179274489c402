"""Tests for the bounded event log and its derived metrics."""

import pytest

from studybuddy.exceptions import Impact
from studybuddy.infrastructure.monitoring.event_monitor import HEALTH_SWEEP_JOB, EventMonitor
from studybuddy.models.health import HealthStatus, Trend
from studybuddy.models.monitoring import EventSource, EventType


def log_info(monitor, layer=2, **kwargs):
    return monitor.log_event(EventType.INFO, layer, Impact.LOW, "ok", **kwargs)


def log_error(monitor, layer=2, severity=Impact.MEDIUM, **kwargs):
    return monitor.log_event(EventType.ERROR, layer, severity, "failed", **kwargs)


class TestEventLog:
    """Appending, indexing and eviction."""

    def test_log_event_returns_id(self, event_monitor, clock):
        event_id = log_info(event_monitor)
        millis = int(clock.now().timestamp() * 1000)
        assert event_id.startswith(f"evt-{millis}-")
        assert len(event_monitor) == 1

    def test_events_are_immutable_once_logged(self, event_monitor):
        log_info(event_monitor, correlation_id="c-1")
        event = event_monitor.events[0]
        with pytest.raises(AttributeError):
            event.message = "rewritten"
        event.resolved = True
        assert event.resolved

    def test_correlation_index(self, event_monitor):
        log_info(event_monitor, correlation_id="c-1")
        log_error(event_monitor, correlation_id="c-1")
        log_info(event_monitor, correlation_id="c-2")
        assert len(event_monitor.get_events_by_correlation("c-1")) == 2
        assert event_monitor.get_events_by_correlation("missing") == []

    def test_eviction_is_fifo_and_updates_index(self, clock, scheduler, log_sink):
        """The log never exceeds its cap and drops the oldest entries first."""
        monitor = EventMonitor(clock=clock, scheduler=scheduler, log_sink=log_sink, max_events=3)
        ids = [log_info(monitor, correlation_id=f"c-{i}") for i in range(5)]

        assert len(monitor) == 3
        assert [e.id for e in monitor.events] == ids[2:]
        assert monitor.get_events_by_correlation("c-0") == []
        assert len(monitor.get_events_by_correlation("c-4")) == 1

    def test_resolve_correlation(self, event_monitor, clock):
        log_error(event_monitor, correlation_id="c-1")
        log_error(event_monitor, correlation_id="c-1")
        clock.advance(2)

        assert event_monitor.resolve_correlation("c-1") == 2
        assert event_monitor.resolve_correlation("c-1") == 0
        events = event_monitor.get_events_by_correlation("c-1")
        assert all(e.resolved and e.resolution_time == clock.now() for e in events)

    def test_log_error_from_layer_error(self, event_monitor, classifier, clock):
        error = classifier.create_layer_error(2, "Network timeout", context={"correlation_id": "c-9", "session_id": "s"})
        clock.advance(0.25)
        event_monitor.log_error(error, {"operation": "fetch_context"})

        event = event_monitor.events[-1]
        assert event.severity == Impact.HIGH
        assert event.source == EventSource.NETWORK
        assert event.session_id == "s"
        assert event.duration_ms == 250
        assert event.retry_count == 0
        assert event.metadata["operation"] == "fetch_context"

    def test_log_recovery(self, event_monitor):
        event_monitor.log_recovery("c-1", False, "retry", 12.5)
        event = event_monitor.events[-1]
        assert event.type == EventType.ERROR
        assert event.layer == 0
        assert event.severity == Impact.HIGH
        assert event.message == "Recovery failed: retry"
        assert event.is_recovery

    def test_clear(self, event_monitor):
        log_info(event_monitor, correlation_id="c-1")
        event_monitor.clear()
        assert len(event_monitor) == 0
        assert event_monitor.get_events_by_correlation("c-1") == []


class TestMetrics:
    """Aggregates derived from the log."""

    def test_health_score_is_100_when_empty(self, event_monitor):
        assert event_monitor.health_score() == 100.0
        assert event_monitor.get_metrics().system_health_score == 100.0

    def test_health_score_drops_for_critical_error(self, event_monitor):
        log_error(event_monitor, severity=Impact.CRITICAL)
        assert event_monitor.health_score() == 74.9
        assert event_monitor.health_score() <= 80

    def test_health_score_ignores_old_events(self, event_monitor, clock):
        log_error(event_monitor, severity=Impact.CRITICAL)
        clock.advance(61 * 60)
        assert event_monitor.health_score() == 100.0

    def test_counts_and_rates(self, event_monitor):
        log_info(event_monitor)
        log_error(event_monitor, layer=1, correlation_id="cascade")
        log_error(event_monitor, layer=3, correlation_id="cascade", severity=Impact.CRITICAL)
        log_error(event_monitor, layer=3, correlation_id="single")
        event_monitor.log_recovery("cascade", True, "retry", 10)
        event_monitor.log_recovery("other", False, "retry", 10)

        metrics = event_monitor.get_metrics()
        assert metrics.total_events == 6
        assert metrics.events_by_type == {"info": 1, "error": 4, "recovery": 1}
        assert metrics.errors_by_layer == {1: 1, 3: 2, 0: 1}
        assert metrics.recovery_success_rate == 50.0
        assert metrics.cascading_error_rate == 50.0

    def test_top_error_patterns(self, event_monitor):
        for _ in range(3):
            log_error(event_monitor, layer=2, severity=Impact.HIGH)
        log_error(event_monitor, layer=1, severity=Impact.CRITICAL)

        patterns = event_monitor.get_metrics().top_error_patterns
        assert patterns[0].pattern == "error_layer_2_high"
        assert patterns[0].count == 3
        assert patterns[0].impact == "Medium"
        assert patterns[1].impact == "High"

    def test_average_resolution_time(self, event_monitor, clock):
        log_error(event_monitor, correlation_id="c-1")
        clock.advance(3)
        event_monitor.resolve_correlation("c-1")
        assert event_monitor.get_metrics().average_resolution_time_ms == 3000

    def test_time_range_filter(self, event_monitor, clock):
        log_info(event_monitor)
        start = clock.advance(60)
        log_error(event_monitor)
        assert event_monitor.get_metrics(start=start).total_events == 1

    def test_trend_degrading(self, event_monitor, clock):
        for _ in range(11):
            log_error(event_monitor, layer=4)
        trend = event_monitor.trend_analysis()
        assert trend.direction == Trend.DEGRADING
        assert trend.change_rate == 1100.0
        assert any("Layer 4" in issue for issue in trend.predicted_issues)

    def test_trend_improving_and_stable(self, event_monitor):
        assert event_monitor.trend_analysis().direction == Trend.IMPROVING
        log_error(event_monitor)
        log_error(event_monitor)
        assert event_monitor.trend_analysis().direction == Trend.STABLE


class TestSystemHealth:
    """Per-layer health derived from recent error rates."""

    def test_layer_statuses(self, event_monitor):
        # Layer 1: 3/10 errors -> critical; layer 2: 3/20 -> degraded
        for _ in range(7):
            log_info(event_monitor, layer=1)
        for _ in range(17):
            log_info(event_monitor, layer=2)
        for _ in range(3):
            log_error(event_monitor, layer=1)
            log_error(event_monitor, layer=2)

        report = event_monitor.get_system_health()
        assert report.layers[1].status == HealthStatus.CRITICAL
        assert report.layers[2].status == HealthStatus.DEGRADED
        assert report.layers[3].status == HealthStatus.HEALTHY
        assert report.overall == HealthStatus.CRITICAL
        assert "Layer 1 requires immediate attention - error rate: 30.0%" in report.recommendations
        assert "Monitor Layer 2 closely - error rate: 15.0%" in report.recommendations
        assert report.alerts["alert-high-error-rate"] == "triggered"

    def test_healthy_when_quiet(self, event_monitor):
        report = event_monitor.get_system_health()
        assert report.overall == HealthStatus.HEALTHY
        assert report.recommendations == []
        assert set(report.alerts.values()) == {"normal"}


class TestHealthSweep:
    """Periodic sweep scheduled on the injected scheduler."""

    @pytest.mark.asyncio
    async def test_sweep_emits_critical_event(self, event_monitor, scheduler):
        event_monitor.start()
        assert scheduler.has_job(HEALTH_SWEEP_JOB)
        log_error(event_monitor, layer=1)
        scheduler.start()

        assert await scheduler.advance(30) == 1

        event = event_monitor.events[-1]
        assert event.layer == 0
        assert event.severity == Impact.CRITICAL
        assert event.correlation_id.startswith("health-check-")

    @pytest.mark.asyncio
    async def test_sweep_quiet_when_healthy(self, event_monitor, scheduler):
        event_monitor.start()
        scheduler.start()
        await scheduler.advance(90)
        assert len(event_monitor) == 0

    def test_stop_removes_job(self, event_monitor, scheduler):
        event_monitor.start()
        event_monitor.stop()
        assert not scheduler.has_job(HEALTH_SWEEP_JOB)
