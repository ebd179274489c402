"""Correlation and recovery records."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from studybuddy.exceptions import LayerError


class SystemState(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    FAILED = "failed"
    UNKNOWN = "unknown"


class ResolutionStrategy(str, Enum):
    """Closed set of per-layer recovery actions."""
    # Layer 1
    RETRY_WITH_INPUT_SANITIZATION = "retry_with_input_sanitization"
    RETRY_WITH_LONGER_TIMEOUT = "retry_with_longer_timeout"
    RETRY_WITH_FALLBACK_VALIDATION = "retry_with_fallback_validation"
    # Layer 2
    RETRY_WITH_CACHED_CONTEXT = "retry_with_cached_context"
    RETRY_WITH_MINIMAL_CONTEXT = "retry_with_minimal_context"
    RETRY_WITH_ENHANCED_CONTEXT = "retry_with_enhanced_context"
    # Layer 3
    RETRY_WITH_ALTERNATIVE_VALIDATION = "retry_with_alternative_validation"
    RETRY_WITHOUT_FACT_CHECKING = "retry_without_fact_checking"
    RETRY_WITH_RELAXED_VALIDATION = "retry_with_relaxed_validation"
    # Layer 4
    RETRY_WITH_LEARNED_PREFERENCES = "retry_with_learned_preferences"
    RETRY_WITH_DEFAULT_SETTINGS = "retry_with_default_settings"
    RETRY_WITH_PERSONALIZED_FALLBACK = "retry_with_personalized_fallback"
    # Layer 5
    SKIP_QUALITY_CHECKS = "skip_quality_checks"
    RETRY_WITH_REDUCED_MONITORING = "retry_with_reduced_monitoring"
    RETRY_WITH_MINIMAL_MONITORING = "retry_with_minimal_monitoring"


@dataclass
class RecoveryAttempt:
    """One execution of a resolution strategy against an error."""
    strategy: ResolutionStrategy
    success: bool
    timestamp: datetime
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "success": self.success,
            "timestamp": self.timestamp.isoformat(),
            "error": self.error,
        }


@dataclass
class ErrorCorrelation:
    """A primary error plus the cascade errors filed under the same id."""
    id: str
    timestamp: datetime
    primary_error: LayerError
    resolution_strategy: ResolutionStrategy
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    conversation_id: Optional[str] = None
    cascade_errors: List[LayerError] = field(default_factory=list)
    layers_involved: List[int] = field(default_factory=list)
    system_state: SystemState = SystemState.UNKNOWN

    def __post_init__(self):
        self.refresh_layers()

    @property
    def errors(self) -> List[LayerError]:
        return [self.primary_error] + self.cascade_errors

    @property
    def is_cascading(self) -> bool:
        return len(self.layers_involved) >= 2

    def refresh_layers(self) -> None:
        self.layers_involved = sorted({e.layer for e in self.errors})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "user_id": self.user_id,
            "session_id": self.session_id,
            "conversation_id": self.conversation_id,
            "layers_involved": list(self.layers_involved),
            "primary_error": self.primary_error.to_dict(),
            "cascade_errors": [e.to_dict() for e in self.cascade_errors],
            "system_state": self.system_state.value,
            "resolution_strategy": self.resolution_strategy.value,
        }
