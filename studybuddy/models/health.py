"""Health monitoring data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class HealthStatus(str, Enum):
    """Status of a layer or of the whole system."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return {"healthy": 0, "degraded": 1, "critical": 2}[self.value]


class MetricStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


class Trend(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DEGRADING = "degrading"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return {"info": 0, "warning": 1, "error": 2, "critical": 3}[self.value]


@dataclass
class MetricThreshold:
    warning: float
    critical: float

    @property
    def higher_is_better(self) -> bool:
        """Success-rate style metrics have their critical bound below warning."""
        return self.warning >= self.critical


@dataclass
class HealthMetric:
    """A named per-layer measurement classified against two thresholds."""
    name: str
    value: float
    unit: str
    threshold: MetricThreshold
    description: str
    status: MetricStatus = MetricStatus.HEALTHY
    trend: Trend = Trend.STABLE

    def classify(self) -> MetricStatus:
        if self.threshold.higher_is_better:
            if self.value <= self.threshold.critical:
                return MetricStatus.CRITICAL
            if self.value <= self.threshold.warning:
                return MetricStatus.WARNING
        else:
            if self.value >= self.threshold.critical:
                return MetricStatus.CRITICAL
            if self.value >= self.threshold.warning:
                return MetricStatus.WARNING
        return MetricStatus.HEALTHY

    def normalized_score(self) -> float:
        """0-100 score before status weighting.

        Percentages score as their value. Latency-style metrics score 100 up to
        the warning bound and fall off proportionally beyond it.
        """
        if self.threshold.higher_is_better:
            return max(0.0, min(100.0, self.value))
        if self.value <= self.threshold.warning or self.value <= 0:
            return 100.0
        return max(0.0, min(100.0, 100.0 * self.threshold.warning / self.value))


@dataclass
class LayerHealth:
    layer: int
    name: str
    status: HealthStatus
    score: int
    metrics: List[HealthMetric]
    last_check: datetime
    uptime: float = 100.0
    issues: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)


@dataclass
class SystemInfo:
    version: str
    environment: str
    uptime_seconds: float
    last_restart: datetime
    memory_usage_percent: float
    cpu_usage_percent: float
    active_connections: int = 0


@dataclass
class AlertAction:
    """Audit entry appended to an alert's action log."""
    type: str
    config: Dict[str, Any]
    executed: bool
    result: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass
class Alert:
    """An alert raised for a layer or metric; new -> acknowledged -> resolved."""
    id: str
    severity: AlertSeverity
    title: str
    message: str
    timestamp: datetime
    layer: Optional[int] = None
    metric: Optional[str] = None
    acknowledged: bool = False
    acknowledged_by: Optional[str] = None
    resolved: bool = False
    resolved_by: Optional[str] = None
    resolution_time: Optional[datetime] = None
    actions: List[AlertAction] = field(default_factory=list)

    @property
    def state(self) -> str:
        if self.resolved:
            return "resolved"
        if self.acknowledged:
            return "acknowledged"
        return "new"


@dataclass
class SystemHealthStatus:
    overall: HealthStatus
    score: int
    layers: Dict[int, LayerHealth]
    last_updated: datetime
    alerts: List[Alert]
    recommendations: List[str]
    system_info: SystemInfo


@dataclass
class NotificationConfig:
    enabled: bool = True
    channels: List[str] = field(default_factory=lambda: ["log"])
    recipients: List[str] = field(default_factory=list)


@dataclass
class HealthCheckConfig:
    enabled: bool = True
    interval_seconds: float = 30.0
    timeout_seconds: float = 10.0
    retries: int = 3
    notifications: NotificationConfig = field(default_factory=NotificationConfig)


@dataclass
class HealthTrends:
    overall_trend: Trend
    layer_trends: Dict[int, Trend]
    alert_trends: List[Dict[str, Any]]
    performance_metrics: List[Dict[str, Any]]
