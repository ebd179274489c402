"""
Retry/Fallback Engine

Executes an asynchronous operation under a bounded retry policy with
exponential backoff and jitter. When retrying stops without success, the
configured fallback strategies are tried in descending priority order.

The engine never raises for operation failures: every call resolves to a
``RetryResult`` carrying either the operation's value or the final
classified ``LayerError``.
"""

import logging
import random
import string
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, ClassVar, Dict, FrozenSet, Optional, Sequence

from studybuddy.exceptions import Impact, LayerError
from studybuddy.infrastructure.error_handling.classification import ErrorClassifier
from studybuddy.infrastructure.error_handling.correlation import CorrelationTracker
from studybuddy.infrastructure.scheduling import Clock, Scheduler, SystemClock
from studybuddy.models.retry import FallbackResult, RetryConfig, RetryContext, RetryResult

if TYPE_CHECKING:
    from studybuddy.infrastructure.monitoring.event_monitor import EventMonitor


logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[Any]]


class FallbackKind(str, Enum):
    CACHED_RESPONSE = "cached_response"
    STATIC_RESPONSE = "static_response"
    ALTERNATE_OPERATION = "alternate_operation"


@dataclass
class FallbackStrategy(ABC):
    """Alternative recovery action tried once retrying has stopped.

    ``can_handle`` is data-driven: a strategy restricted to ``layers`` or
    ``impacts`` only handles errors inside those sets, and a
    ``recoverable_only`` strategy skips non-recoverable errors.
    """
    name: str
    priority: int = 0
    description: str = ""
    layers: Optional[FrozenSet[int]] = None
    impacts: Optional[FrozenSet[Impact]] = None
    recoverable_only: bool = False

    kind: ClassVar[FallbackKind]

    def can_handle(self, error: LayerError) -> bool:
        if self.layers is not None and error.layer not in self.layers:
            return False
        if self.impacts is not None and error.impact not in self.impacts:
            return False
        if self.recoverable_only and not error.recoverable:
            return False
        return True

    @abstractmethod
    async def execute(self, context: RetryContext, error: LayerError) -> FallbackResult:
        pass


@dataclass
class CachedResponseFallback(FallbackStrategy):
    """Serves the last successful result of the same operation."""
    cache: Dict[str, Any] = field(default_factory=dict)

    kind: ClassVar[FallbackKind] = FallbackKind.CACHED_RESPONSE

    @staticmethod
    def cache_key(context: RetryContext) -> str:
        return context.operation

    def remember(self, context: RetryContext, value: Any) -> None:
        self.cache[self.cache_key(context)] = value

    def can_handle(self, error: LayerError) -> bool:
        return bool(self.cache) and super().can_handle(error)

    async def execute(self, context: RetryContext, error: LayerError) -> FallbackResult:
        key = self.cache_key(context)
        if key not in self.cache:
            return FallbackResult(success=False, fallback_used=self.name, message=f"No cached response for {key}")
        return FallbackResult(
            success=True,
            fallback_used=self.name,
            result=self.cache[key],
            message="Served cached response",
        )


@dataclass
class StaticResponseFallback(FallbackStrategy):
    """Returns a fixed degraded response."""
    response: Any = None
    message: str = "Served degraded response"

    kind: ClassVar[FallbackKind] = FallbackKind.STATIC_RESPONSE

    async def execute(self, context: RetryContext, error: LayerError) -> FallbackResult:
        return FallbackResult(success=True, fallback_used=self.name, result=self.response, message=self.message)


@dataclass
class AlternateOperationFallback(FallbackStrategy):
    """Runs a different operation, e.g. a secondary AI provider."""
    operation: Optional[Operation] = None

    kind: ClassVar[FallbackKind] = FallbackKind.ALTERNATE_OPERATION

    def __post_init__(self):
        if self.operation is None:
            raise ValueError(f"Fallback '{self.name}' requires an operation")

    async def execute(self, context: RetryContext, error: LayerError) -> FallbackResult:
        result = await self.operation()
        return FallbackResult(success=True, fallback_used=self.name, result=result, message="Alternate operation succeeded")


def retry_on_keywords(*keywords: str) -> Callable[[BaseException], bool]:
    """Build a retry condition matching any keyword in the error message."""
    lowered = tuple(k.lower() for k in keywords)

    def condition(error: BaseException) -> bool:
        text = str(error).lower()
        return any(k in text for k in lowered)

    return condition


def _retry_api_request(error: BaseException) -> bool:
    status = getattr(error, "status", None) or getattr(error, "status_code", None)
    if isinstance(status, int) and status >= 500:
        return True
    return retry_on_keywords("timeout", "network")(error)


def ai_query_config(**overrides) -> RetryConfig:
    values = dict(
        max_retries=3,
        base_delay_ms=1000,
        max_delay_ms=10000,
        backoff_multiplier=2,
        jitter=True,
        retry_condition=retry_on_keywords("timeout", "rate limit", "rate_limit", "temporary", "transient"),
    )
    values.update(overrides)
    return RetryConfig(**values)


def database_operation_config(**overrides) -> RetryConfig:
    values = dict(
        max_retries=2,
        base_delay_ms=500,
        max_delay_ms=5000,
        backoff_multiplier=1.5,
        jitter=True,
        retry_condition=retry_on_keywords("connection", "timeout", "temporary", "transient"),
    )
    values.update(overrides)
    return RetryConfig(**values)


def api_request_config(**overrides) -> RetryConfig:
    values = dict(
        max_retries=3,
        base_delay_ms=2000,
        max_delay_ms=15000,
        backoff_multiplier=2,
        jitter=True,
        retry_condition=_retry_api_request,
    )
    values.update(overrides)
    return RetryConfig(**values)


DEFAULT_RETRY_CONFIGS: Dict[str, Callable[..., RetryConfig]] = {
    "ai_query": ai_query_config,
    "database_operation": database_operation_config,
    "api_request": api_request_config,
}


class RetryEngine:
    """Bounded retry with backoff, then prioritized fallbacks."""

    def __init__(
        self,
        classifier: ErrorClassifier,
        scheduler: Scheduler,
        clock: Optional[Clock] = None,
        event_monitor: Optional["EventMonitor"] = None,
        tracker: Optional[CorrelationTracker] = None,
        jitter_ratio: float = 0.25,
        rng: Optional[random.Random] = None,
    ):
        self.classifier = classifier
        self.tracker = tracker
        self.scheduler = scheduler
        self.clock = clock or SystemClock()
        self.event_monitor = event_monitor
        self.jitter_ratio = jitter_ratio
        self.rng = rng or random.Random()

    def create_retry_context(
        self,
        operation: str,
        layer: int,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        timeout_ms: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> RetryContext:
        millis = int(self.clock.now().timestamp() * 1000)
        suffix = "".join(self.rng.choices(string.ascii_lowercase + string.digits, k=9))
        return RetryContext(
            operation=operation,
            layer=layer,
            correlation_id=f"corr_{millis}_{suffix}",
            user_id=user_id,
            session_id=session_id,
            conversation_id=conversation_id,
            timeout_ms=timeout_ms,
            metadata=dict(metadata or {}),
        )

    def calculate_delay(self, attempt: int, config: RetryConfig) -> float:
        """Backoff in milliseconds before the retry following ``attempt`` (0-based)."""
        delay = min(config.base_delay_ms * (config.backoff_multiplier ** attempt), config.max_delay_ms)
        if config.jitter:
            delay *= 1 + self.rng.uniform(-self.jitter_ratio, self.jitter_ratio)
        return max(0.0, delay)

    async def execute_with_retry(
        self,
        operation: Operation,
        config: RetryConfig,
        context: RetryContext,
    ) -> RetryResult:
        started = self.clock.monotonic()
        attempts = 0
        last_error: Optional[LayerError] = None

        while attempts < config.max_retries:
            attempts += 1
            try:
                result = await operation()
            except Exception as e:
                last_error = self._to_layer_error(e, context, attempts)
                self._log_failure(last_error, context, attempts)

                if not last_error.recoverable:
                    logger.info(f"{context.operation}: non-recoverable error, not retrying")
                    break
                if attempts >= config.max_retries:
                    break
                if config.retry_condition is not None and not config.retry_condition(e):
                    logger.info(f"{context.operation}: retry condition rejected {type(e).__name__}")
                    break

                delay_ms = self.calculate_delay(attempts - 1, config)
                logger.debug(
                    f"{context.operation}: attempt {attempts}/{config.max_retries} failed, "
                    f"retrying in {delay_ms:.0f}ms"
                )
                await self.scheduler.sleep(delay_ms / 1000)
                continue

            recovered = attempts > 1
            self._remember(config.fallback_strategies, context, result)
            if recovered:
                self._log_recovery(context, True, "retry", started, attempts)
            return RetryResult(
                success=True,
                attempts=attempts,
                total_time_ms=self._elapsed_ms(started),
                correlation_id=context.correlation_id,
                result=result,
                recovered=recovered,
            )

        fallback = await self._try_fallbacks(config.fallback_strategies, context, last_error)
        if fallback is not None:
            self._log_recovery(context, True, fallback.fallback_used, started, attempts)
            return RetryResult(
                success=True,
                attempts=attempts,
                total_time_ms=self._elapsed_ms(started),
                correlation_id=context.correlation_id,
                result=fallback.result,
                recovered=True,
                fallback_used=fallback.fallback_used,
            )

        self._log_recovery(context, False, "retry", started, attempts)
        return RetryResult(
            success=False,
            attempts=attempts,
            total_time_ms=self._elapsed_ms(started),
            correlation_id=context.correlation_id,
            final_error=last_error,
        )

    async def _try_fallbacks(
        self,
        strategies: Sequence[FallbackStrategy],
        context: RetryContext,
        error: Optional[LayerError],
    ) -> Optional[FallbackResult]:
        if not strategies or error is None:
            return None

        for strategy in sorted(strategies, key=lambda s: s.priority, reverse=True):
            if not strategy.can_handle(error):
                continue
            started = self.clock.monotonic()
            try:
                outcome = await strategy.execute(context, error)
            except Exception as e:
                logger.warning(f"Fallback strategy {strategy.name} failed: {e}")
                continue
            outcome.recovery_time_ms = self._elapsed_ms(started)
            if outcome.success:
                logger.info(f"{context.operation}: recovered with fallback {strategy.name}")
                return outcome
        return None

    def _to_layer_error(self, error: Exception, context: RetryContext, attempts: int) -> LayerError:
        if isinstance(error, LayerError):
            layer_error = error
        else:
            layer_error = self.classifier.create_layer_error(
                context.layer,
                f"{context.operation} failed: {error}",
                error,
                context.as_error_context(),
            )
        layer_error.recovery_attempts = min(attempts - 1, layer_error.max_recovery_attempts)
        if self.tracker is not None:
            self.tracker.track_error_correlation(layer_error, context.as_error_context())
        return layer_error

    @staticmethod
    def _remember(strategies: Sequence[FallbackStrategy], context: RetryContext, result: Any) -> None:
        for strategy in strategies:
            if isinstance(strategy, CachedResponseFallback):
                strategy.remember(context, result)

    def _log_failure(self, error: LayerError, context: RetryContext, attempts: int) -> None:
        if self.event_monitor is not None:
            self.event_monitor.log_error(error, {"operation": context.operation, "attempt": attempts})

    def _log_recovery(self, context: RetryContext, success: bool, strategy: str, started: float, attempts: int) -> None:
        if self.event_monitor is not None:
            self.event_monitor.log_recovery(
                context.correlation_id,
                success,
                strategy,
                self._elapsed_ms(started),
                {
                    "operation": context.operation,
                    "layer": context.layer,
                    "attempts": attempts,
                    "user_id": context.user_id,
                    "session_id": context.session_id,
                    "conversation_id": context.conversation_id,
                },
            )

    def _elapsed_ms(self, started: float) -> float:
        return (self.clock.monotonic() - started) * 1000
