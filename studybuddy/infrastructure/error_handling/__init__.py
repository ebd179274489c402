"""Layer-aware error classification, correlation, recovery and retry."""

from .classification import ErrorClassifier, KeywordRule, first_match, infer_source
from .correlation import CorrelationTracker
from .handler import EnhancedErrorHandler
from .messages import UserFriendlyMessageSystem, UserMessage, UserMessageContext
from .recovery import RecoveryManager
from .retry import (
    AlternateOperationFallback,
    CachedResponseFallback,
    FallbackStrategy,
    RetryEngine,
    StaticResponseFallback,
)

__all__ = [
    "ErrorClassifier",
    "KeywordRule",
    "first_match",
    "infer_source",
    "CorrelationTracker",
    "EnhancedErrorHandler",
    "UserFriendlyMessageSystem",
    "UserMessage",
    "UserMessageContext",
    "RecoveryManager",
    "RetryEngine",
    "FallbackStrategy",
    "CachedResponseFallback",
    "StaticResponseFallback",
    "AlternateOperationFallback",
]
