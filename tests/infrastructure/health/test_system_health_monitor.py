"""Tests for the periodic system health monitor."""

import json
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from studybuddy.exceptions import InvalidLayerError
from studybuddy.infrastructure.health.system_health_monitor import (
    HEALTH_CHECK_JOB,
    HealthCheckResult,
    SystemHealthMonitor,
    calculate_trend,
    determine_status,
)
from studybuddy.models.health import AlertSeverity, HealthCheckConfig, HealthStatus, MetricStatus, Trend


@pytest.fixture(autouse=True)
def host_metrics():
    with patch("studybuddy.infrastructure.health.system_health_monitor.psutil") as mock_psutil:
        mock_psutil.virtual_memory.return_value.percent = 42.0
        mock_psutil.cpu_percent.return_value = 12.5
        yield mock_psutil


def scores(monitor):
    return {layer: health.score for layer, health in monitor.health_status.layers.items()}


class TestScoring:

    @pytest.mark.parametrize("score,status", [
        (90, HealthStatus.HEALTHY),
        (89.9, HealthStatus.DEGRADED),
        (70, HealthStatus.DEGRADED),
        (69, HealthStatus.CRITICAL),
    ])
    def test_determine_status(self, score, status):
        assert determine_status(score) == status

    def test_calculate_trend(self):
        assert calculate_trend([100]) == Trend.STABLE
        assert calculate_trend([100, 100, 100, 50, 50, 50]) == Trend.DEGRADING
        assert calculate_trend([50, 50, 50, 100, 100, 100]) == Trend.IMPROVING
        assert calculate_trend([100, 100, 100, 98, 98, 98]) == Trend.STABLE

    def test_initial_scores(self, health_monitor):
        assert scores(health_monitor) == {1: 100, 2: 100, 3: 97, 4: 93, 5: 100}
        status = health_monitor.get_health_status()
        assert status.score == 98
        assert status.overall == HealthStatus.HEALTHY
        assert status.alerts == []


class TestHealthCheck:
    """One full check cycle."""

    @pytest.mark.asyncio
    async def test_cycle_without_probes_keeps_values(self, health_monitor, clock):
        clock.advance(60)
        status = await health_monitor.run_health_check()

        assert scores(health_monitor) == {1: 100, 2: 100, 3: 97, 4: 93, 5: 100}
        assert status.score == 98
        assert len(health_monitor.history) == 1
        assert status.system_info.memory_usage_percent == 42.0
        assert status.system_info.cpu_usage_percent == 12.5
        assert status.system_info.uptime_seconds == 60
        assert health_monitor.health_status.layers[1].uptime == 100.0

    @pytest.mark.asyncio
    async def test_critical_metric_raises_alerts(self, health_monitor, notifier):
        """A success rate of 50% drags layer 1 to critical."""
        health_monitor.register_probe(1, "Input Validation Success Rate", lambda: 50)

        status = await health_monitor.run_health_check()

        layer = health_monitor.get_layer_health(1)
        assert layer.score == 63
        assert layer.status == HealthStatus.CRITICAL
        assert layer.uptime == 0.0
        assert status.score == 91
        assert status.overall == HealthStatus.HEALTHY

        alerts = {a.title: a for a in status.alerts}
        assert alerts["Layer 1 Critical"].severity == AlertSeverity.CRITICAL
        assert alerts["Input Validation Success Rate Critical"].severity == AlertSeverity.ERROR
        assert alerts["Input Validation Success Rate Critical"].metric == "Input Validation Success Rate"
        assert "Layer 1 requires immediate attention - score: 63" in status.recommendations
        notifier.notify.assert_called()
        assert [a.type for a in alerts["Layer 1 Critical"].actions] == ["log", "notify"]

    def test_notification_failure_recorded(self, health_monitor, notifier):
        notifier.notify.side_effect = RuntimeError("channel down")
        alert = health_monitor.create_alert(AlertSeverity.WARNING, "t", "m")
        assert alert.actions[-1].executed is False
        assert alert.actions[-1].result == "Failed: channel down"

    @pytest.mark.asyncio
    async def test_warning_latency(self, health_monitor):
        health_monitor.register_probe(5, "System Response Time", lambda: 800)
        await health_monitor.run_health_check()

        metric = health_monitor.get_layer_health(5).metrics[1]
        assert metric.status == MetricStatus.WARNING
        # 500/800 normalized, x0.8 for warning
        assert health_monitor.get_layer_health(5).score == 75
        titles = [a.title for a in health_monitor.get_active_alerts()]
        assert "System Response Time Warning" in titles

    @pytest.mark.asyncio
    async def test_failed_cycle_raises_alert(self, health_monitor):
        with patch.object(health_monitor, "_update_overall_health", side_effect=RuntimeError("boom")):
            await health_monitor.run_health_check()

        titles = [a.title for a in health_monitor.get_active_alerts()]
        assert titles == ["Health Check Failed"]
        assert len(health_monitor.history) == 0

    def test_get_layer_health_rejects_unknown_layer(self, health_monitor):
        with pytest.raises(InvalidLayerError):
            health_monitor.get_layer_health(6)


class TestAlertLifecycle:

    def test_acknowledge_and_resolve(self, health_monitor, clock):
        alert = health_monitor.create_alert(AlertSeverity.WARNING, "Disk", "Disk filling up", layer=2)
        assert health_monitor.acknowledge_alert(alert.id, "ops")
        assert alert.acknowledged_by == "ops"

        clock.advance(10)
        assert health_monitor.resolve_alert(alert.id, "ops", "cleaned up")
        assert alert.resolution_time == clock.now()
        assert alert.actions[-1].result == "Alert resolved by ops: cleaned up"
        assert health_monitor.get_active_alerts() == []
        assert health_monitor.get_alert(alert.id) is alert

    def test_alert_history_newest_first(self, health_monitor, clock):
        older = health_monitor.create_alert(AlertSeverity.INFO, "a", "a")
        clock.advance(5)
        newer = health_monitor.create_alert(AlertSeverity.INFO, "b", "b")
        health_monitor.resolve_alert(older.id, "ops")

        assert health_monitor.get_alert_history() == [newer, older]
        assert health_monitor.get_alert_history(limit=1) == [newer]

    def test_unknown_alert(self, health_monitor):
        assert not health_monitor.acknowledge_alert("missing", "ops")
        assert not health_monitor.resolve_alert("missing", "ops")

    def test_alert_store_is_bounded(self, clock, scheduler):
        monitor = SystemHealthMonitor(clock=clock, scheduler=scheduler, max_alerts=2)
        first = monitor.create_alert(AlertSeverity.INFO, "a", "a")
        clock.advance(1)
        monitor.create_alert(AlertSeverity.INFO, "b", "b")
        clock.advance(1)
        monitor.create_alert(AlertSeverity.INFO, "c", "c")
        assert len(monitor.alerts) == 2
        assert monitor.get_alert(first.id) is None


class TestReportsAndTrends:

    def test_json_report(self, health_monitor):
        health_monitor.create_alert(AlertSeverity.WARNING, "Disk", "Disk filling up")
        report = json.loads(health_monitor.export_health_report("json"))

        assert report["system_health"]["overall"] == "healthy"
        assert report["system_health"]["score"] == 98
        assert len(report["active_alerts"]) == 1
        assert report["trends"]["overall_trend"] == "stable"
        assert report["generated_at"] == "2025-01-01T12:00:00+00:00"

    @pytest.mark.asyncio
    async def test_csv_report(self, health_monitor):
        await health_monitor.run_health_check()
        lines = health_monitor.export_health_report("csv").splitlines()
        assert lines[0] == "timestamp,score,status"
        assert lines[1] == "2025-01-01T12:00:00+00:00,98,healthy"

    def test_unsupported_format(self, health_monitor):
        with pytest.raises(ValueError):
            health_monitor.export_health_report("xml")

    def test_trends_need_two_snapshots(self, health_monitor, clock):
        trends = health_monitor.get_health_trends(clock.now() - timedelta(hours=1), clock.now())
        assert trends.overall_trend == Trend.STABLE
        assert trends.alert_trends == []
        assert trends.performance_metrics == []

    @pytest.mark.asyncio
    async def test_degrading_trend(self, health_monitor, clock):
        values = iter([100, 100, 100, 50, 50, 50])
        health_monitor.register_probe(1, "Input Validation Success Rate", lambda: next(values))
        start = clock.now()
        for _ in range(6):
            await health_monitor.run_health_check()
            clock.advance(30)

        trends = health_monitor.get_health_trends(start, clock.now())

        assert trends.overall_trend == Trend.DEGRADING
        assert trends.layer_trends[1] == Trend.DEGRADING
        assert trends.layer_trends[2] == Trend.STABLE
        assert len(trends.alert_trends) == 7
        assert trends.alert_trends[-1]["count"] == len(health_monitor.get_active_alerts())
        assert trends.alert_trends[-1]["severity"] == "critical"
        assert trends.performance_metrics[0]["metric"] == "Overall Health Score"
        assert health_monitor.get_layer_health(1).metrics[0].trend == Trend.DEGRADING


class TestScheduling:

    @pytest.mark.asyncio
    async def test_periodic_checks(self, health_monitor, scheduler):
        health_monitor.start()
        scheduler.start()
        assert scheduler.has_job(HEALTH_CHECK_JOB)

        assert await scheduler.advance(90) == 3
        assert len(health_monitor.history) == 3

        health_monitor.stop()
        assert not scheduler.has_job(HEALTH_CHECK_JOB)

    def test_disabled_adds_no_job(self, clock, scheduler):
        monitor = SystemHealthMonitor(
            clock=clock, scheduler=scheduler, config=HealthCheckConfig(enabled=False)
        )
        monitor.start()
        assert not scheduler.has_job(HEALTH_CHECK_JOB)

    @pytest.mark.asyncio
    async def test_custom_health_check(self, health_monitor, scheduler):
        async def queue_depth():
            return HealthCheckResult(MetricStatus.WARNING, 92)

        job = await health_monitor.create_health_check("Queue Depth", queue_depth, layer=1)

        assert job == "health-check-Queue Depth"
        assert scheduler.has_job(job)
        metric = health_monitor.get_layer_health(1).metrics[-1]
        assert metric.name == "Queue Depth"
        assert metric.value == 92
        assert metric.status == MetricStatus.WARNING

        await health_monitor.run_health_check()
        assert health_monitor.get_layer_health(1).score == 91
        assert metric.value == 92

    @pytest.mark.asyncio
    async def test_failing_custom_check_marks_metric_critical(self, health_monitor):
        async def broken():
            raise ConnectionError("probe host down")

        await health_monitor.create_health_check("Broker", broken, layer=4)
        metric = health_monitor.get_layer_health(4).metrics[-1]
        assert metric.status == MetricStatus.CRITICAL
        assert metric.value == 0.0

    @pytest.mark.asyncio
    async def test_custom_check_retried(self, clock, scheduler):
        monitor = SystemHealthMonitor(clock=clock, scheduler=scheduler, config=HealthCheckConfig(retries=1))
        check = AsyncMock(side_effect=[ConnectionError("reset"), HealthCheckResult(MetricStatus.HEALTHY, 99)])

        await monitor.create_health_check("Broker", check, layer=4)

        metric = monitor.get_layer_health(4).metrics[-1]
        assert check.await_count == 2
        assert metric.status == MetricStatus.HEALTHY
        assert metric.value == 99

    def test_probes_use_configured_retries(self, clock, scheduler):
        monitor = SystemHealthMonitor(clock=clock, scheduler=scheduler, config=HealthCheckConfig(retries=2))
        monitor.register_probe(2, "Memory Usage", lambda: 50)
        assert monitor.metric_source.retries == 2

    def test_update_health_metric(self, health_monitor):
        assert health_monitor.update_health_metric("Memory Usage", 90, MetricStatus.CRITICAL) == 1
        assert health_monitor.update_health_metric("Nope", 1, MetricStatus.HEALTHY) == 0
