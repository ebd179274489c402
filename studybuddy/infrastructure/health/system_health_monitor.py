"""
System Health Monitor

Runs a periodic check cycle over the five pipeline layers. Each cycle samples
every layer metric from the configured ``IMetricSource``, classifies it
against its warning/critical thresholds, scores the layer and the system,
raises alerts for critical layers and degraded metrics, refreshes host
information via psutil and appends a snapshot to the rolling history.

Scores:
- metric score: normalized value, x0.5 when critical, x0.8 when warning
- layer score: mean of its metric scores
- overall score: mean of the five layer scores
- status: >= 90 healthy, >= 70 degraded, otherwise critical
"""

import csv
import io
import json
import logging
import math
import random
import string
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Tuple

import psutil

from studybuddy.infrastructure.health.metric_sources import ProbeMetricSource, SimulatedMetricSource
from studybuddy.infrastructure.persistence.bounded_store import InMemoryBoundedStore
from studybuddy.infrastructure.scheduling import Clock, Scheduler, SystemClock
from studybuddy.models.health import (
    Alert,
    AlertAction,
    AlertSeverity,
    HealthCheckConfig,
    HealthMetric,
    HealthStatus,
    HealthTrends,
    LayerHealth,
    MetricStatus,
    MetricThreshold,
    SystemHealthStatus,
    SystemInfo,
    Trend,
)
from studybuddy.models.interfaces import IBoundedStore, IMetricSource, INotifier
from studybuddy.models.layers import LAYERS, get_layer
from studybuddy.utils.serialization import to_json_compatible


HEALTH_CHECK_JOB = "system-health-check"

# (name, value, unit, warning, critical, description)
LAYER_METRICS: Dict[int, List[Tuple[str, float, str, float, float, str]]] = {
    1: [
        ("Input Validation Success Rate", 100, "%", 95, 90, "Percentage of inputs successfully validated"),
        ("Average Processing Time", 50, "ms", 100, 200, "Average time to process input validation"),
    ],
    2: [
        ("Context Retrieval Success Rate", 100, "%", 95, 90, "Percentage of context retrievals that succeed"),
        ("Memory Usage", 60, "%", 70, 85, "Percentage of available memory used"),
    ],
    3: [
        ("Response Validation Accuracy", 98, "%", 95, 90, "Accuracy of response validation checks"),
        ("Fact-Check Success Rate", 95, "%", 90, 85, "Percentage of fact-checks that complete successfully"),
    ],
    4: [
        ("Feedback Processing Rate", 100, "%", 95, 90, "Percentage of feedback successfully processed"),
        ("Learning Model Accuracy", 85, "%", 80, 75, "Accuracy of learning model predictions"),
    ],
    5: [
        ("Quality Check Success Rate", 99, "%", 95, 90, "Percentage of quality checks that pass"),
        ("System Response Time", 200, "ms", 500, 1000, "Average system response time"),
    ],
}

STATUS_WEIGHTS = {
    MetricStatus.HEALTHY: 1.0,
    MetricStatus.WARNING: 0.8,
    MetricStatus.CRITICAL: 0.5,
}


def default_layer_metrics(layer: int) -> List[HealthMetric]:
    metrics = []
    for name, value, unit, warning, critical, description in LAYER_METRICS[layer]:
        metric = HealthMetric(
            name=name,
            value=value,
            unit=unit,
            threshold=MetricThreshold(warning=warning, critical=critical),
            description=description,
        )
        metric.status = metric.classify()
        metrics.append(metric)
    return metrics


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def metric_score(metric: HealthMetric) -> float:
    return metric.normalized_score() * STATUS_WEIGHTS[metric.status]


def calculate_layer_score(metrics: List[HealthMetric]) -> int:
    if not metrics:
        return 100
    return _round_half_up(sum(metric_score(m) for m in metrics) / len(metrics))


def determine_status(score: float) -> HealthStatus:
    if score >= 90:
        return HealthStatus.HEALTHY
    if score >= 70:
        return HealthStatus.DEGRADED
    return HealthStatus.CRITICAL


def calculate_trend(values: List[float], threshold_percent: float = 5.0) -> Trend:
    """Compare the mean of the last three values with the three before them."""
    recent = values[-3:]
    older = values[-6:-3]
    if len(values) < 2 or not older:
        return Trend.STABLE
    recent_avg = sum(recent) / len(recent)
    older_avg = sum(older) / len(older)
    if older_avg == 0:
        return Trend.IMPROVING if recent_avg > 0 else Trend.STABLE
    change = (recent_avg - older_avg) / older_avg * 100
    if change > threshold_percent:
        return Trend.IMPROVING
    if change < -threshold_percent:
        return Trend.DEGRADING
    return Trend.STABLE


@dataclass
class HealthSnapshot:
    """One entry of the rolling health history."""
    timestamp: datetime
    score: int
    overall: HealthStatus
    layer_scores: Dict[int, int] = field(default_factory=dict)


@dataclass
class HealthCheckResult:
    """Outcome reported by a custom health check."""
    status: MetricStatus
    value: float = 0.0
    message: Optional[str] = None


HealthCheckFunction = Callable[[], Awaitable[HealthCheckResult]]


class SystemHealthMonitor:
    """Periodic per-layer health checks, scoring and alert lifecycle."""

    def __init__(
        self,
        clock: Optional[Clock] = None,
        scheduler: Optional[Scheduler] = None,
        metric_source: Optional[IMetricSource] = None,
        notifier: Optional[INotifier] = None,
        config: Optional[HealthCheckConfig] = None,
        alert_store: Optional[IBoundedStore[str, Alert]] = None,
        max_history: int = 100,
        max_alerts: int = 1000,
        trend_threshold_percent: float = 5.0,
        version: str = "1.0.0",
        environment: str = "development",
    ):
        self.logger = logging.getLogger(__name__)
        self.clock = clock or SystemClock()
        self.scheduler = scheduler
        self.metric_source = metric_source or SimulatedMetricSource()
        self.notifier = notifier
        self.config = config or HealthCheckConfig()
        self.trend_threshold_percent = trend_threshold_percent
        self.alerts: IBoundedStore[str, Alert] = alert_store or InMemoryBoundedStore(
            max_alerts, timestamp_of=lambda alert: alert.timestamp
        )
        self.history: Deque[HealthSnapshot] = deque(maxlen=max_history)
        self.custom_checks: Dict[str, HealthCheckFunction] = {}
        self._metric_history: Dict[Tuple[int, str], Deque[float]] = {}
        self._layer_checks: Dict[int, List[int]] = {layer: [0, 0] for layer in LAYERS}
        self.started_at = self.clock.now()

        self.health_status = self._initialize_health_status(version, environment)

    def _initialize_health_status(self, version: str, environment: str) -> SystemHealthStatus:
        now = self.clock.now()
        layers = {}
        for layer, definition in LAYERS.items():
            metrics = default_layer_metrics(layer)
            score = calculate_layer_score(metrics)
            layers[layer] = LayerHealth(
                layer=layer,
                name=definition.name,
                status=determine_status(score),
                score=score,
                metrics=metrics,
                last_check=now,
            )
        score = _round_half_up(sum(l.score for l in layers.values()) / len(layers))
        return SystemHealthStatus(
            overall=determine_status(score),
            score=score,
            layers=layers,
            last_updated=now,
            alerts=[],
            recommendations=[],
            system_info=SystemInfo(
                version=version,
                environment=environment,
                uptime_seconds=0.0,
                last_restart=now,
                memory_usage_percent=0.0,
                cpu_usage_percent=0.0,
            ),
        )

    # Lifecycle

    def start(self) -> None:
        if not self.config.enabled:
            self.logger.info("System health monitoring disabled")
            return
        if self.scheduler is None:
            self.logger.warning("System health monitor has no scheduler; periodic checks disabled")
            return
        self.scheduler.add_job(HEALTH_CHECK_JOB, self.run_health_check, self.config.interval_seconds)
        self.logger.info(f"System health checks every {self.config.interval_seconds}s")

    def stop(self) -> None:
        if self.scheduler is None:
            return
        self.scheduler.remove_job(HEALTH_CHECK_JOB)
        for name in self.custom_checks:
            self.scheduler.remove_job(self._custom_job_name(name))

    # Check cycle

    async def run_health_check(self) -> SystemHealthStatus:
        """Run one full check cycle and return the refreshed status."""
        started = self.clock.monotonic()
        try:
            for layer in LAYERS:
                await self.check_layer_health(layer)
            self._update_overall_health()
            self._evaluate_alerts()
            self._update_system_info()
            self._add_to_history()
            self.logger.debug(f"Health check completed in {(self.clock.monotonic() - started) * 1000:.0f}ms")
        except Exception as e:
            self.logger.error(f"Health check failed: {e}", exc_info=True)
            self.create_alert(AlertSeverity.CRITICAL, "Health Check Failed", f"Health check process failed: {e}")
        return self.get_health_status()

    async def check_layer_health(self, layer: int) -> LayerHealth:
        layer_health = self.health_status.layers[layer]
        try:
            for metric in layer_health.metrics:
                if metric.name in self.custom_checks:
                    continue
                await self._check_metric(layer, metric)
            layer_health.score = calculate_layer_score(layer_health.metrics)
            layer_health.status = determine_status(layer_health.score)
        except Exception as e:
            self.logger.error(f"Layer {layer} health check failed: {e}")
            layer_health.status = HealthStatus.CRITICAL
            layer_health.score = 0

        layer_health.last_check = self.clock.now()
        layer_health.issues = [
            f"{m.name} is {m.status.value} at {m.value}{m.unit}"
            for m in layer_health.metrics if m.status != MetricStatus.HEALTHY
        ]
        layer_health.recommendations = self._layer_recommendations(layer_health)

        counts = self._layer_checks[layer]
        counts[0] += 1
        if layer_health.status != HealthStatus.CRITICAL:
            counts[1] += 1
        layer_health.uptime = round(counts[1] / counts[0] * 100, 2)
        return layer_health

    async def _check_metric(self, layer: int, metric: HealthMetric) -> None:
        value = await self.metric_source.sample(layer, metric)
        if value is not None:
            metric.value = value
        metric.status = metric.classify()
        values = self._metric_history.setdefault((layer, metric.name), deque(maxlen=6))
        values.append(metric.value)
        metric.trend = self._metric_trend(metric, list(values))

    def _metric_trend(self, metric: HealthMetric, values: List[float]) -> Trend:
        trend = calculate_trend(values, self.trend_threshold_percent)
        if metric.threshold.higher_is_better or trend == Trend.STABLE:
            return trend
        # A falling latency or usage is an improvement
        return Trend.DEGRADING if trend == Trend.IMPROVING else Trend.IMPROVING

    def _update_overall_health(self) -> None:
        layers = self.health_status.layers
        average = sum(l.score for l in layers.values()) / len(layers)
        self.health_status.score = _round_half_up(average)
        self.health_status.overall = determine_status(average)
        self.health_status.last_updated = self.clock.now()
        self.health_status.recommendations = self.generate_recommendations()

    def _evaluate_alerts(self) -> None:
        for layer, layer_health in self.health_status.layers.items():
            if layer_health.status == HealthStatus.CRITICAL:
                self.create_alert(
                    AlertSeverity.CRITICAL,
                    f"Layer {layer} Critical",
                    f"Layer {layer} health score is {layer_health.score}",
                    layer=layer,
                )
            for metric in layer_health.metrics:
                if metric.status == MetricStatus.CRITICAL:
                    self.create_alert(
                        AlertSeverity.ERROR,
                        f"{metric.name} Critical",
                        f"{metric.name} is at {metric.value}{metric.unit}",
                        layer=layer,
                        metric=metric.name,
                    )
                elif metric.status == MetricStatus.WARNING:
                    self.create_alert(
                        AlertSeverity.WARNING,
                        f"{metric.name} Warning",
                        f"{metric.name} is at {metric.value}{metric.unit}",
                        layer=layer,
                        metric=metric.name,
                    )

    def _update_system_info(self) -> None:
        info = self.health_status.system_info
        info.uptime_seconds = (self.clock.now() - self.started_at).total_seconds()
        try:
            info.memory_usage_percent = psutil.virtual_memory().percent
            info.cpu_usage_percent = psutil.cpu_percent(interval=None)
        except Exception as e:
            self.logger.warning(f"Failed to read host metrics: {e}")

    def _add_to_history(self) -> None:
        self.history.append(HealthSnapshot(
            timestamp=self.health_status.last_updated,
            score=self.health_status.score,
            overall=self.health_status.overall,
            layer_scores={layer: l.score for layer, l in self.health_status.layers.items()},
        ))

    # Alerts

    def create_alert(
        self,
        severity: AlertSeverity,
        title: str,
        message: str,
        layer: Optional[int] = None,
        metric: Optional[str] = None,
    ) -> Alert:
        now = self.clock.now()
        millis = int(now.timestamp() * 1000)
        suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
        alert = Alert(
            id=f"alert-{millis}-{suffix}",
            severity=AlertSeverity(severity),
            title=title,
            message=message,
            timestamp=now,
            layer=layer,
            metric=metric,
        )
        self._execute_alert_actions(alert)
        self.alerts.put(alert.id, alert)
        return alert

    def _execute_alert_actions(self, alert: Alert) -> None:
        now = self.clock.now()
        log_level = logging.WARNING if alert.severity.rank <= AlertSeverity.WARNING.rank else logging.ERROR
        self.logger.log(log_level, f"[ALERT] {alert.severity.value.upper()}: {alert.title} - {alert.message}")
        alert.actions.append(AlertAction("log", {}, True, "Logged successfully", now))

        notifications = self.config.notifications
        if not (notifications.enabled and self.notifier and notifications.channels):
            return
        config = {"channels": list(notifications.channels), "recipients": list(notifications.recipients)}
        try:
            self.notifier.notify(alert.title, to_json_compatible(alert), list(notifications.channels))
            alert.actions.append(AlertAction("notify", config, True, "Notification sent", now))
        except Exception as e:
            self.logger.error(f"Alert notification failed for {alert.id}: {e}")
            alert.actions.append(AlertAction("notify", config, False, f"Failed: {e}", now))

    def acknowledge_alert(self, alert_id: str, acknowledged_by: str) -> bool:
        alert = self.alerts.get(alert_id)
        if alert is None:
            return False
        alert.acknowledged = True
        alert.acknowledged_by = acknowledged_by
        alert.actions.append(AlertAction(
            "log",
            {"acknowledged_by": acknowledged_by},
            True,
            f"Alert acknowledged by {acknowledged_by}",
            self.clock.now(),
        ))
        return True

    def resolve_alert(self, alert_id: str, resolved_by: str, resolution: Optional[str] = None) -> bool:
        alert = self.alerts.get(alert_id)
        if alert is None:
            return False
        now = self.clock.now()
        alert.resolved = True
        alert.resolved_by = resolved_by
        alert.resolution_time = now
        suffix = f": {resolution}" if resolution else ""
        alert.actions.append(AlertAction(
            "log",
            {"resolved_by": resolved_by, "resolution": resolution},
            True,
            f"Alert resolved by {resolved_by}{suffix}",
            now,
        ))
        return True

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        return self.alerts.get(alert_id)

    def get_active_alerts(self) -> List[Alert]:
        return [a for a in self.alerts.values() if not a.resolved]

    def get_alert_history(self, limit: Optional[int] = None) -> List[Alert]:
        """All retained alerts, newest first."""
        history = sorted(self.alerts.values(), key=lambda a: a.timestamp, reverse=True)
        return history[:limit] if limit is not None else history

    # Queries

    def get_health_status(self) -> SystemHealthStatus:
        return replace(
            self.health_status,
            layers=dict(self.health_status.layers),
            alerts=self.get_active_alerts(),
            recommendations=list(self.health_status.recommendations),
        )

    def get_layer_health(self, layer: int) -> LayerHealth:
        get_layer(layer)
        return self.health_status.layers[layer]

    def generate_recommendations(self) -> List[str]:
        recommendations = []
        for layer_health in self.health_status.layers.values():
            recommendations.extend(self._layer_recommendations(layer_health))
        return recommendations

    @staticmethod
    def _layer_recommendations(layer_health: LayerHealth) -> List[str]:
        layer = layer_health.layer
        recommendations = []
        if layer_health.status == HealthStatus.CRITICAL:
            recommendations.append(f"Layer {layer} requires immediate attention - score: {layer_health.score}")
        elif layer_health.status == HealthStatus.DEGRADED:
            recommendations.append(f"Monitor Layer {layer} closely - score: {layer_health.score}")
        for metric in layer_health.metrics:
            if metric.status == MetricStatus.CRITICAL:
                recommendations.append(f"Critical metric {metric.name} in Layer {layer} needs immediate attention")
            elif metric.status == MetricStatus.WARNING:
                recommendations.append(f"Monitor metric {metric.name} in Layer {layer}")
        return recommendations

    def get_health_trends(self, start: datetime, end: datetime) -> HealthTrends:
        relevant = [h for h in self.history if start <= h.timestamp <= end]
        if len(relevant) < 2:
            return HealthTrends(
                overall_trend=Trend.STABLE,
                layer_trends={},
                alert_trends=[],
                performance_metrics=[],
            )

        threshold = self.trend_threshold_percent
        return HealthTrends(
            overall_trend=calculate_trend([h.score for h in relevant], threshold),
            layer_trends={
                layer: calculate_trend([h.layer_scores.get(layer, 0) for h in relevant], threshold)
                for layer in LAYERS
            },
            alert_trends=self._alert_trends(end),
            performance_metrics=self._performance_metrics(relevant),
        )

    def _alert_trends(self, end: datetime, days: int = 7) -> List[Dict[str, Any]]:
        """Alert counts per calendar day for the ``days`` days ending at ``end``."""
        trends = []
        alerts = self.alerts.values()
        for offset in range(days - 1, -1, -1):
            day = (end - timedelta(days=offset)).date()
            day_alerts = [a for a in alerts if a.timestamp.date() == day]
            worst = max((a.severity for a in day_alerts), key=lambda s: s.rank, default=AlertSeverity.INFO)
            trends.append({"date": day.isoformat(), "count": len(day_alerts), "severity": worst.value})
        return trends

    def _performance_metrics(self, history: List[HealthSnapshot]) -> List[Dict[str, Any]]:
        def change(first: float, last: float) -> float:
            return round((last - first) / first * 100, 1) if first else 0.0

        first, last = history[0], history[-1]
        metrics = [{
            "metric": "Overall Health Score",
            "trend": change(first.score, last.score),
            "current": self.health_status.score,
        }]
        for layer in LAYERS:
            metrics.append({
                "metric": f"Layer {layer} Score",
                "trend": change(first.layer_scores.get(layer, 0), last.layer_scores.get(layer, 0)),
                "current": self.health_status.layers[layer].score,
            })
        metrics.append({
            "metric": "Active Alerts",
            "trend": 0.0,
            "current": len(self.get_active_alerts()),
        })
        return metrics

    def export_health_report(self, format: str = "json") -> str:
        """Serialize status, trends, active alerts and recommendations.

        Args:
            format: ``json`` (full report) or ``csv`` (timestamp,score,status rows)

        Raises:
            ValueError: unsupported format
        """
        if format == "csv":
            return self._to_csv()
        if format != "json":
            raise ValueError(f"Unsupported report format: {format}")

        now = self.clock.now()
        report = {
            "generated_at": now,
            "system_health": self.get_health_status(),
            "trends": self.get_health_trends(now - timedelta(hours=24), now),
            "active_alerts": self.get_active_alerts(),
            "recommendations": self.generate_recommendations(),
        }
        return json.dumps(to_json_compatible(report), indent=2)

    def _to_csv(self) -> str:
        rows = list(self.history) or [HealthSnapshot(
            timestamp=self.health_status.last_updated,
            score=self.health_status.score,
            overall=self.health_status.overall,
        )]
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(["timestamp", "score", "status"])
        for snapshot in rows:
            writer.writerow([snapshot.timestamp.isoformat(), snapshot.score, snapshot.overall.value])
        return buffer.getvalue()

    # Custom checks

    async def create_health_check(
        self,
        name: str,
        check_function: HealthCheckFunction,
        interval_seconds: Optional[float] = None,
        threshold: Optional[MetricThreshold] = None,
        layer: Optional[int] = None,
        description: str = "",
        unit: str = "%",
    ) -> str:
        """Register a custom check that owns the metric called ``name``.

        When ``layer`` is given and has no such metric, one is added. The
        check runs once immediately and then on its own interval.

        Returns:
            The scheduler job name
        """
        if layer is not None:
            layer_health = self.health_status.layers[get_layer(layer).number]
            if not any(m.name == name for m in layer_health.metrics):
                layer_health.metrics.append(HealthMetric(
                    name=name,
                    value=0.0,
                    unit=unit,
                    threshold=threshold or MetricThreshold(warning=95, critical=90),
                    description=description or f"Custom health check {name}",
                ))

        self.custom_checks[name] = check_function
        job_name = self._custom_job_name(name)

        async def run_check() -> None:
            await self._run_custom_check(name, check_function)

        await run_check()
        if self.scheduler is not None:
            self.scheduler.add_job(job_name, run_check, interval_seconds or self.config.interval_seconds)
        return job_name

    async def _run_custom_check(self, name: str, check_function: HealthCheckFunction) -> None:
        attempts = self.config.retries + 1
        for attempt in range(1, attempts + 1):
            try:
                result = await check_function()
            except Exception as e:
                self.logger.warning(f"Health check '{name}' failed (attempt {attempt}/{attempts}): {e}")
                continue
            self.update_health_metric(name, result.value, result.status)
            return
        self.logger.error(f"Health check '{name}' failed after {attempts} attempts")
        self.update_health_metric(name, 0.0, MetricStatus.CRITICAL)

    def update_health_metric(self, name: str, value: float, status: MetricStatus) -> int:
        """Set value and status of every metric called ``name``; returns how many matched."""
        updated = 0
        for layer_health in self.health_status.layers.values():
            for metric in layer_health.metrics:
                if metric.name == name:
                    metric.value = value
                    metric.status = MetricStatus(status)
                    updated += 1
        return updated

    def register_probe(self, layer: int, metric_name: str, probe) -> None:
        """Replace simulated values of one metric with a live probe."""
        if not isinstance(self.metric_source, ProbeMetricSource):
            self.metric_source = ProbeMetricSource(
                fallback=self.metric_source,
                timeout_seconds=self.config.timeout_seconds,
                retries=self.config.retries,
            )
        self.metric_source.register_probe(get_layer(layer).number, metric_name, probe)

    @staticmethod
    def _custom_job_name(name: str) -> str:
        return f"health-check-{name}"
