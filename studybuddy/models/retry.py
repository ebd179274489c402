"""Retry engine records."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, Generic, List, Optional, TypeVar

from studybuddy.exceptions import LayerError

if TYPE_CHECKING:
    from studybuddy.infrastructure.error_handling.retry import FallbackStrategy

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Bounded retry policy; delays are in milliseconds."""
    max_retries: int = 3
    base_delay_ms: float = 1000
    max_delay_ms: float = 10000
    backoff_multiplier: float = 2.0
    jitter: bool = True
    retry_condition: Optional[Callable[[BaseException], bool]] = None
    fallback_strategies: List["FallbackStrategy"] = field(default_factory=list)

    def __post_init__(self):
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("retry delays must be non-negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be at least 1")


@dataclass
class RetryContext:
    operation: str
    layer: int
    correlation_id: str
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    conversation_id: Optional[str] = None
    timeout_ms: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def as_error_context(self) -> Dict[str, Any]:
        ctx = {
            "user_id": self.user_id,
            "session_id": self.session_id,
            "conversation_id": self.conversation_id,
            "correlation_id": self.correlation_id,
            "operation": self.operation,
        }
        ctx.update(self.metadata)
        return {k: v for k, v in ctx.items() if v is not None}


@dataclass
class FallbackResult(Generic[T]):
    success: bool
    fallback_used: str
    result: Optional[T] = None
    message: Optional[str] = None
    recovery_time_ms: float = 0.0


@dataclass
class RetryResult(Generic[T]):
    """Outcome of executing an operation under a retry policy."""
    success: bool
    attempts: int
    total_time_ms: float
    correlation_id: str
    result: Optional[T] = None
    final_error: Optional[LayerError] = None
    recovered: bool = False
    fallback_used: Optional[str] = None
