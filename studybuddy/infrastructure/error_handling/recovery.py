"""
Error Recovery Framework

Executes the per-layer resolution strategy chosen for a LayerError. Strategies
are a closed enum (``ResolutionStrategy``); the host application registers
an async hook per strategy that performs the real recovery action (refresh a
cache, shrink the context window, relax validation). Strategies without a
registered hook fall back to waiting an exponential backoff and reporting
success, so the caller's next attempt runs against a settled system.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from studybuddy.exceptions import LayerError, RecoveryResult
from studybuddy.infrastructure.error_handling.classification import ErrorClassifier
from studybuddy.infrastructure.error_handling.correlation import CorrelationTracker
from studybuddy.infrastructure.scheduling import Clock, Scheduler, SystemClock
from studybuddy.models.correlation import RecoveryAttempt, ResolutionStrategy


RecoveryHook = Callable[[LayerError], Awaitable[bool]]


class RecoveryManager:
    """Runs resolution strategies and keeps a short analytics history."""

    def __init__(
        self,
        tracker: CorrelationTracker,
        scheduler: Scheduler,
        clock: Optional[Clock] = None,
        base_delay_ms: float = 1000,
        max_delay_ms: float = 10000,
        history_limit: int = 100,
    ):
        self.tracker = tracker
        self.scheduler = scheduler
        self.clock = clock or SystemClock()
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.history_limit = history_limit
        self.hooks: Dict[ResolutionStrategy, RecoveryHook] = {}
        self.recovery_history: List[Dict[str, Any]] = []
        self.logger = logging.getLogger(__name__)

    def register_hook(self, strategy: ResolutionStrategy, hook: RecoveryHook) -> None:
        """Install the recovery action for one strategy."""
        self.hooks[strategy] = hook
        self.logger.info(f"Registered recovery hook: {strategy.value}")

    def strategy_for(self, error: LayerError) -> ResolutionStrategy:
        correlation = self.tracker.get_correlation(error.correlation_id)
        if correlation is not None:
            return correlation.resolution_strategy
        return ErrorClassifier.resolution_strategy(error)

    async def attempt_recovery(self, error: LayerError) -> bool:
        """Run one recovery attempt for ``error``.

        Returns False without doing anything when the error is not
        recoverable or its attempt budget is spent. Otherwise increments
        ``error.recovery_attempts``, executes the strategy and records a
        RecoveryAttempt against the error's correlation.
        """
        if not error.recoverable:
            self.logger.debug(f"Error {error.correlation_id} is not recoverable")
            return False
        if error.recovery_attempts >= error.max_recovery_attempts:
            self.logger.warning(
                f"Max recovery attempts ({error.max_recovery_attempts}) reached "
                f"for {error.correlation_id}"
            )
            return False

        error.recovery_attempts += 1
        strategy = self.strategy_for(error)
        started = self.clock.monotonic()
        failure: Optional[str] = None

        try:
            success = await self.execute_strategy(strategy, error)
        except Exception as e:
            self.logger.error(f"Recovery strategy '{strategy.value}' raised: {e}")
            success = False
            failure = str(e)

        attempt = RecoveryAttempt(
            strategy=strategy,
            success=success,
            timestamp=self.clock.now(),
            error=failure,
        )
        self.tracker.record_recovery_attempt(error.correlation_id, attempt)
        self._record_history(error, strategy, success, started)

        self.logger.info(
            f"Recovery strategy '{strategy.value}' completed with result: "
            f"{(RecoveryResult.SUCCESS if success else RecoveryResult.FAILED).value}"
        )
        return success

    async def execute_strategy(self, strategy: ResolutionStrategy, error: LayerError) -> bool:
        hook = self.hooks.get(strategy)
        if hook is not None:
            return bool(await hook(error))
        return await self._default_recovery(error)

    async def _default_recovery(self, error: LayerError) -> bool:
        delay_ms = min(
            self.base_delay_ms * (2 ** (error.recovery_attempts - 1)),
            self.max_delay_ms,
        )
        await self.scheduler.sleep(delay_ms / 1000)
        return True

    def _record_history(self, error: LayerError, strategy: ResolutionStrategy, success: bool, started: float) -> None:
        self.recovery_history.append({
            "strategy": strategy.value,
            "layer": error.layer,
            "impact": error.impact.value,
            "correlation_id": error.correlation_id,
            "result": (RecoveryResult.SUCCESS if success else RecoveryResult.FAILED).value,
            "timestamp": self.clock.now().isoformat(),
            "duration_ms": int((self.clock.monotonic() - started) * 1000),
        })
        # Keep only recent history
        if len(self.recovery_history) > self.history_limit:
            self.recovery_history = self.recovery_history[-self.history_limit:]

    def get_recovery_analytics(self) -> Dict[str, Any]:
        """Get analytics about recovery attempts."""
        if not self.recovery_history:
            return {
                "total_attempts": 0,
                "success_rate": 0.0,
                "strategy_performance": {},
                "attempts_by_layer": {},
            }

        total_attempts = len(self.recovery_history)
        successful_attempts = len([r for r in self.recovery_history if r["result"] == "success"])

        strategy_stats: Dict[str, Dict[str, Any]] = {}
        for record in self.recovery_history:
            stats = strategy_stats.setdefault(record["strategy"], {"attempts": 0, "successes": 0, "total_duration": 0})
            stats["attempts"] += 1
            stats["total_duration"] += record["duration_ms"]
            if record["result"] == "success":
                stats["successes"] += 1

        for stats in strategy_stats.values():
            stats["success_rate"] = stats["successes"] / stats["attempts"]
            stats["avg_duration"] = stats.pop("total_duration") / stats["attempts"]

        by_layer: Dict[int, int] = {}
        for record in self.recovery_history:
            by_layer[record["layer"]] = by_layer.get(record["layer"], 0) + 1

        return {
            "total_attempts": total_attempts,
            "success_rate": successful_attempts / total_attempts,
            "strategy_performance": strategy_stats,
            "attempts_by_layer": by_layer,
            "recent_attempts": self.recovery_history[-10:],
        }
