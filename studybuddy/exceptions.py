"""Custom exceptions for the Study Buddy error-handling core."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class Impact(str, Enum):
    """Severity of consequence for a classified error."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _IMPACT_RANK[self]


_IMPACT_RANK = {
    Impact.LOW: 0,
    Impact.MEDIUM: 1,
    Impact.HIGH: 2,
    Impact.CRITICAL: 3,
}


class RecoveryResult(Enum):
    """Results of recovery attempts."""
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    NOT_ATTEMPTED = "not_attempted"


class StudyBuddyException(Exception):
    """Base exception for all Study Buddy errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidLayerError(StudyBuddyException, ValueError):
    """Raised when a pipeline layer number is outside 1..5."""

    def __init__(self, layer: Any):
        super().__init__(
            f"Invalid pipeline layer: {layer!r} (expected 1-5)",
            {"layer": layer},
        )
        self.layer = layer


class ConfigurationError(StudyBuddyException):
    """Raised when configuration is invalid."""
    pass


class NotFoundError(StudyBuddyException):
    """Raised when a requested record does not exist."""
    pass


class LayerError(StudyBuddyException):
    """A failure classified against one of the five pipeline layers.

    Instances are produced by the error classifier and carry everything the
    monitoring and feedback subsystems need: impact, recoverability, a
    user-facing message and the raw technical details.
    """

    def __init__(
        self,
        message: str,
        *,
        layer: int,
        layer_name: str,
        correlation_id: str,
        recoverable: bool,
        impact: Impact,
        user_friendly_message: str,
        technical_details: str,
        max_recovery_attempts: int,
        timestamp: datetime,
        context: Optional[Dict[str, Any]] = None,
        original_error: Optional[BaseException] = None,
        recovery_attempts: int = 0,
    ):
        super().__init__(message, context)
        self.layer = layer
        self.layer_name = layer_name
        self.correlation_id = correlation_id
        self.recoverable = recoverable
        self.impact = impact
        self.user_friendly_message = user_friendly_message
        self.technical_details = technical_details
        self.max_recovery_attempts = max_recovery_attempts
        self.recovery_attempts = recovery_attempts
        self.timestamp = timestamp
        self.context = self.details
        self.original_error = original_error

    @property
    def can_retry(self) -> bool:
        return self.recoverable and self.recovery_attempts < self.max_recovery_attempts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": "LayerError",
            "message": self.message,
            "layer": self.layer,
            "layer_name": self.layer_name,
            "correlation_id": self.correlation_id,
            "recoverable": self.recoverable,
            "impact": self.impact.value,
            "user_friendly_message": self.user_friendly_message,
            "technical_details": self.technical_details,
            "recovery_attempts": self.recovery_attempts,
            "max_recovery_attempts": self.max_recovery_attempts,
            "timestamp": self.timestamp.isoformat(),
            "context": dict(self.context),
        }

    def __repr__(self) -> str:
        return (
            f"LayerError(layer={self.layer}, impact={self.impact.value}, "
            f"correlation_id={self.correlation_id!r}, message={self.message!r})"
        )
