"""Event monitoring data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from studybuddy.exceptions import Impact
from studybuddy.models.health import HealthStatus, Trend


class EventType(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    RECOVERY = "recovery"
    TIMEOUT = "timeout"
    CASCADING = "cascading"


class EventSource(str, Enum):
    CLIENT = "client"
    SERVER = "server"
    AI_SERVICE = "ai-service"
    DATABASE = "database"
    NETWORK = "network"
    SYSTEM = "system"


_MUTABLE_EVENT_FIELDS = frozenset({"resolved", "resolution_time"})


@dataclass
class MonitoringEvent:
    """An entry in the event log.

    Once ``seal()`` has been called (the log does this on append) only
    ``resolved`` and ``resolution_time`` may change.
    """
    id: str
    timestamp: datetime
    type: EventType
    layer: int
    severity: Impact
    message: str
    source: EventSource = EventSource.SYSTEM
    correlation_id: Optional[str] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    conversation_id: Optional[str] = None
    duration_ms: Optional[float] = None
    retry_count: Optional[int] = None
    resolved: bool = False
    resolution_time: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    _sealed: bool = field(default=False, repr=False, compare=False)

    def seal(self) -> None:
        object.__setattr__(self, "_sealed", True)

    def __setattr__(self, name, value):
        if getattr(self, "_sealed", False) and name not in _MUTABLE_EVENT_FIELDS:
            raise AttributeError(f"MonitoringEvent.{name} is immutable once logged")
        object.__setattr__(self, name, value)

    @property
    def is_recovery(self) -> bool:
        return bool(self.metadata.get("recovery"))


class AlertConditionType(str, Enum):
    ERROR_RATE = "error_rate"
    RESPONSE_TIME = "response_time"
    SEVERITY = "severity"
    CASCADING = "cascading"
    RECOVERY_FAILURE = "recovery_failure"


@dataclass
class AlertCondition:
    type: AlertConditionType
    threshold: float
    time_window_minutes: float
    layer: Optional[int] = None
    severity: Optional[Impact] = None


@dataclass
class AlertRuleActions:
    log: bool = True
    notify: bool = False
    alert: bool = False
    auto_recovery: bool = False
    channels: List[str] = field(default_factory=lambda: ["console"])


@dataclass
class AlertRule:
    id: str
    name: str
    description: str
    condition: AlertCondition
    actions: AlertRuleActions = field(default_factory=AlertRuleActions)
    enabled: bool = True
    trigger_count: int = 0
    last_triggered: Optional[datetime] = None


@dataclass
class ErrorPattern:
    pattern: str
    count: int
    last_occurrence: datetime
    impact: str


@dataclass
class TrendAnalysis:
    direction: Trend
    change_rate: float
    predicted_issues: List[str] = field(default_factory=list)


@dataclass
class MonitoringMetrics:
    total_events: int
    events_by_type: Dict[str, int]
    errors_by_layer: Dict[int, int]
    errors_by_severity: Dict[str, int]
    average_resolution_time_ms: float
    recovery_success_rate: float
    cascading_error_rate: float
    top_error_patterns: List[ErrorPattern]
    system_health_score: float
    trend_analysis: TrendAnalysis


@dataclass
class LayerHealthSummary:
    status: HealthStatus
    error_rate: float
    event_count: int
    last_error: Optional[datetime] = None


@dataclass
class EventHealthReport:
    overall: HealthStatus
    layers: Dict[int, LayerHealthSummary]
    alerts: Dict[str, str]
    recommendations: List[str]
