"""
Error classification.

Turns a raw failure plus pipeline-layer context into a ``LayerError``.
Every keyword decision (recoverability, impact, user message, resolution
strategy, event source) is an ordered table of ``KeywordRule`` entries
evaluated top to bottom; the first matching rule wins.
"""

import random
import string
import traceback
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Generic, Iterable, Mapping, Optional, Sequence, Tuple, TypeVar

from studybuddy.exceptions import Impact, LayerError
from studybuddy.infrastructure.logging.context import request_context
from studybuddy.infrastructure.logging.sink import LogSink
from studybuddy.infrastructure.scheduling import Clock, SystemClock
from studybuddy.models.correlation import ResolutionStrategy
from studybuddy.models.layers import get_layer
from studybuddy.models.monitoring import EventSource

T = TypeVar("T")


@dataclass(frozen=True)
class KeywordRule(Generic[T]):
    """Yields ``result`` when any keyword occurs in the (lower-cased) text."""
    keywords: Tuple[str, ...]
    result: T

    def matches(self, text: str) -> bool:
        lowered = text.lower()
        return any(k.lower() in lowered for k in self.keywords)


def first_match(rules: Iterable[KeywordRule[T]], text: str, default: T) -> T:
    for rule in rules:
        if rule.matches(text):
            return rule.result
    return default


NON_RECOVERABLE_PATTERNS: Tuple[str, ...] = (
    "Authentication failed",
    "Authorization denied",
    "Invalid API key",
    "Critical system failure",
)

IMPACT_RULES: Sequence[KeywordRule[Impact]] = (
    KeywordRule(
        ("Database connection failed", "Critical system error", "Memory overflow", "Security breach"),
        Impact.CRITICAL,
    ),
    KeywordRule(
        ("API timeout", "Rate limit exceeded", "Service unavailable", "Network error",
         "timeout", "rate limit"),
        Impact.HIGH,
    ),
)

# Unmatched errors fall back to these per-layer impacts, else LOW
LAYER_DEFAULT_IMPACT: Mapping[int, Impact] = {5: Impact.MEDIUM}

USER_MESSAGE_RULES: Mapping[int, Sequence[KeywordRule[str]]] = {
    1: (
        KeywordRule(("validation",), "Please check your input and try again."),
        KeywordRule(("timeout",), "The request is taking longer than expected. Please try again."),
    ),
    2: (
        KeywordRule(("context",), "I need to refresh my memory to help you better. Please try again in a moment."),
        KeywordRule(("memory",), "I'm having trouble accessing your conversation history. Please try again."),
    ),
    3: (
        KeywordRule(("validation",), "I'm double-checking my response to ensure accuracy. Please wait..."),
        KeywordRule(("fact",), "I want to make sure I give you the most accurate information. Please try again."),
    ),
    4: (
        KeywordRule(("feedback",), "I'm learning from your feedback to provide better responses."),
        KeywordRule(("learning",), "I'm improving based on our conversation. Please try again."),
    ),
    5: (
        KeywordRule(("monitoring",), "I'm running quality checks to ensure the best response."),
        KeywordRule(("performance",), "I'm optimizing performance to serve you better. Please try again."),
    ),
}

DEFAULT_USER_MESSAGES: Mapping[int, str] = {
    1: "There was an issue processing your input. Please try again.",
    2: "I'm having trouble accessing the information I need. Please try again.",
    3: "I'm validating my response to ensure quality. Please try again.",
    4: "I'm adapting to provide you with better help. Please try again.",
    5: "I'm monitoring system performance. Please try again in a moment.",
}

RESOLUTION_RULES: Mapping[int, Sequence[KeywordRule[ResolutionStrategy]]] = {
    1: (
        KeywordRule(("validation",), ResolutionStrategy.RETRY_WITH_INPUT_SANITIZATION),
        KeywordRule(("timeout",), ResolutionStrategy.RETRY_WITH_LONGER_TIMEOUT),
    ),
    2: (
        KeywordRule(("context",), ResolutionStrategy.RETRY_WITH_CACHED_CONTEXT),
        KeywordRule(("memory",), ResolutionStrategy.RETRY_WITH_MINIMAL_CONTEXT),
    ),
    3: (
        KeywordRule(("validation",), ResolutionStrategy.RETRY_WITH_ALTERNATIVE_VALIDATION),
        KeywordRule(("fact",), ResolutionStrategy.RETRY_WITHOUT_FACT_CHECKING),
    ),
    4: (
        KeywordRule(("feedback",), ResolutionStrategy.RETRY_WITH_LEARNED_PREFERENCES),
        KeywordRule(("learning",), ResolutionStrategy.RETRY_WITH_DEFAULT_SETTINGS),
    ),
    5: (
        KeywordRule(("monitoring",), ResolutionStrategy.SKIP_QUALITY_CHECKS),
        KeywordRule(("performance",), ResolutionStrategy.RETRY_WITH_REDUCED_MONITORING),
    ),
}

DEFAULT_RESOLUTION: Mapping[int, ResolutionStrategy] = {
    1: ResolutionStrategy.RETRY_WITH_FALLBACK_VALIDATION,
    2: ResolutionStrategy.RETRY_WITH_ENHANCED_CONTEXT,
    3: ResolutionStrategy.RETRY_WITH_RELAXED_VALIDATION,
    4: ResolutionStrategy.RETRY_WITH_PERSONALIZED_FALLBACK,
    5: ResolutionStrategy.RETRY_WITH_MINIMAL_MONITORING,
}

SOURCE_RULES: Sequence[KeywordRule[EventSource]] = (
    KeywordRule(("network", "connection", "timeout"), EventSource.NETWORK),
    KeywordRule(("database", "sql", "query"), EventSource.DATABASE),
    KeywordRule(("api", "service", "provider"), EventSource.AI_SERVICE),
    KeywordRule(("auth", "permission", "validation"), EventSource.CLIENT),
)


def infer_source(message: str) -> EventSource:
    """Guess where a failure originated from its message."""
    return first_match(SOURCE_RULES, message, EventSource.SERVER)


def _random_suffix(length: int = 9) -> str:
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=length))


class ErrorClassifier:
    """Builds LayerError instances and logs them to the logging boundary."""

    def __init__(self, clock: Optional[Clock] = None, log_sink: Optional[LogSink] = None):
        self.clock = clock or SystemClock()
        self.log_sink = log_sink or LogSink()

    def create_layer_error(
        self,
        layer: int,
        message: str,
        original_error: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> LayerError:
        """Classify a failure raised in ``layer``.

        Raises:
            InvalidLayerError: layer is not in 1..5
        """
        definition = get_layer(layer)
        ctx = self._merge_request_context(context)
        correlation_id = ctx.get("correlation_id") or self.generate_correlation_id(ctx)
        ctx["correlation_id"] = correlation_id
        timestamp = self.clock.now()
        text = self._classification_text(message, original_error)

        error = LayerError(
            message,
            layer=layer,
            layer_name=definition.name,
            correlation_id=correlation_id,
            recoverable=self.is_recoverable(message, original_error),
            impact=self.determine_impact(layer, text),
            user_friendly_message=self.user_friendly_message(layer, text),
            technical_details=self.technical_details(original_error, timestamp),
            max_recovery_attempts=definition.max_recovery_attempts,
            timestamp=timestamp,
            context=ctx,
            original_error=original_error,
        )
        if original_error is not None:
            error.__cause__ = original_error

        self.log_sink.log_error(
            f"Layer {layer} Error: {message}",
            {
                "layer": layer,
                "layer_name": definition.name,
                "correlation_id": correlation_id,
                "impact": error.impact.value,
                "recoverable": error.recoverable,
                "user_friendly_message": error.user_friendly_message,
                "original_error": str(original_error) if original_error else None,
                "context": ctx,
            },
        )
        return error

    @staticmethod
    def _merge_request_context(context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        ctx = dict(context or {})
        active = request_context.get()
        if active:
            for key, value in active.as_dict().items():
                if not ctx.get(key):
                    ctx[key] = value
        return ctx

    @staticmethod
    def _classification_text(message: str, original_error: Optional[BaseException]) -> str:
        if original_error is None:
            return message
        return f"{message} {original_error}"

    def generate_correlation_id(self, context: Optional[Dict[str, Any]] = None) -> str:
        ctx = context or {}
        user = str(ctx.get("user_id") or "anon")[:8]
        session = str(ctx.get("session_id") or "sess")[:8]
        millis = int(self.clock.now().timestamp() * 1000)
        return f"err-{user}-{session}-{millis}-{_random_suffix()}"

    @staticmethod
    def is_recoverable(message: str, original_error: Optional[BaseException] = None) -> bool:
        text = ErrorClassifier._classification_text(message, original_error).lower()
        return not any(p.lower() in text for p in NON_RECOVERABLE_PATTERNS)

    @staticmethod
    def determine_impact(layer: int, text: str) -> Impact:
        return first_match(IMPACT_RULES, text, LAYER_DEFAULT_IMPACT.get(layer, Impact.LOW))

    @staticmethod
    def user_friendly_message(layer: int, text: str) -> str:
        definition = get_layer(layer)
        body = first_match(USER_MESSAGE_RULES[layer], text, DEFAULT_USER_MESSAGES[layer])
        return f"{definition.name}: {body}"

    @staticmethod
    def resolution_strategy(error: LayerError) -> ResolutionStrategy:
        text = ErrorClassifier._classification_text(error.message, error.original_error)
        return first_match(RESOLUTION_RULES[error.layer], text, DEFAULT_RESOLUTION[error.layer])

    @staticmethod
    def technical_details(original_error: Optional[BaseException], timestamp: datetime) -> str:
        if original_error is None:
            return "No technical details available"
        if original_error.__traceback__ is not None:
            stack = "".join(traceback.format_exception(
                type(original_error), original_error, original_error.__traceback__
            )).rstrip()
        else:
            stack = "No stack trace available"
        return "\n".join([
            f"Error Type: {type(original_error).__name__}",
            f"Message: {original_error}",
            f"Timestamp: {timestamp.isoformat()}",
            f"Stack Trace: {stack}",
        ])
