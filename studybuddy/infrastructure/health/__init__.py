"""Per-layer health checks, scoring and alert lifecycle."""

from .metric_sources import ProbeMetricSource, SimulatedMetricSource
from .system_health_monitor import HealthCheckResult, HealthSnapshot, SystemHealthMonitor

__all__ = [
    "SystemHealthMonitor",
    "HealthCheckResult",
    "HealthSnapshot",
    "SimulatedMetricSource",
    "ProbeMetricSource",
]
