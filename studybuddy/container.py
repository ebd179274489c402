"""Composition root

Builds every component of the error-handling core from ``StudyBuddySettings``
and owns their lifecycle. Nothing in the core is a module-level singleton:
the HTTP application creates one container at startup, tests create a fresh
one per test with a ``ManualClock`` and ``VirtualScheduler``.

Dependency graph (leaves first):
- clock, scheduler, log sink, notifier
- alert rule engine -> event monitor
- error classifier, correlation tracker -> recovery manager -> error handler
- retry engine (classifier, event monitor)
- system health monitor (notifier)
- user feedback service (event monitor)
"""

import asyncio
import logging
from typing import List, Optional

from studybuddy.config.settings import StudyBuddySettings, get_settings
from studybuddy.infrastructure.error_handling.classification import ErrorClassifier
from studybuddy.infrastructure.error_handling.correlation import CorrelationTracker
from studybuddy.infrastructure.error_handling.handler import EnhancedErrorHandler
from studybuddy.infrastructure.error_handling.messages import UserFriendlyMessageSystem
from studybuddy.infrastructure.error_handling.recovery import RecoveryManager
from studybuddy.infrastructure.error_handling.retry import RetryEngine
from studybuddy.infrastructure.health.metric_sources import SimulatedMetricSource
from studybuddy.infrastructure.health.system_health_monitor import SystemHealthMonitor
from studybuddy.infrastructure.logging.config import configure_logging
from studybuddy.infrastructure.logging.sink import LogSink
from studybuddy.infrastructure.monitoring.alerting import AlertRuleEngine
from studybuddy.infrastructure.monitoring.event_monitor import EventMonitor
from studybuddy.infrastructure.monitoring.notifications import NotificationDispatcher
from studybuddy.infrastructure.scheduling import AsyncioScheduler, Clock, Scheduler, SystemClock
from studybuddy.models.health import HealthCheckConfig
from studybuddy.models.interfaces import IMetricSource, INotifier
from studybuddy.models.monitoring import AlertRule, EventType, MonitoringEvent
from studybuddy.services.feedback_service import UserFeedbackService


logger = logging.getLogger(__name__)


class ErrorHandlingContainer:
    """Owns and wires the error-handling, monitoring and feedback components."""

    def __init__(
        self,
        settings: Optional[StudyBuddySettings] = None,
        clock: Optional[Clock] = None,
        scheduler: Optional[Scheduler] = None,
        log_sink: Optional[LogSink] = None,
        notifier: Optional[INotifier] = None,
        metric_source: Optional[IMetricSource] = None,
        configure_logs: bool = True,
    ):
        self.settings = settings or get_settings()
        if configure_logs:
            log_settings = self.settings.logging
            configure_logging(
                level=log_settings.level.value,
                renderer=log_settings.format,
                include_trace_id=log_settings.include_trace_id,
            )

        self.clock = clock or SystemClock()
        self.scheduler = scheduler or AsyncioScheduler()
        self.log_sink = log_sink or LogSink()
        self.started = False
        self._recovery_tasks = set()
        self._recovering = set()

        alerting = self.settings.alerting
        self.notifier = notifier or NotificationDispatcher(
            enabled=alerting.notifications_enabled,
            webhook_url=alerting.webhook_url,
            webhook_timeout_seconds=alerting.webhook_timeout_seconds,
        )

        monitoring = self.settings.monitoring
        self.alert_engine = AlertRuleEngine(
            clock=self.clock,
            log_sink=self.log_sink,
            notifier=self.notifier,
            max_triggered=monitoring.max_triggered_alerts,
        )
        self.alert_engine.auto_recovery_handler = self._auto_recover
        self.event_monitor = EventMonitor(
            clock=self.clock,
            scheduler=self.scheduler,
            log_sink=self.log_sink,
            alert_engine=self.alert_engine,
            max_events=monitoring.max_events,
            health_check_interval_seconds=monitoring.health_check_interval_seconds,
            recent_window_minutes=monitoring.recent_window_minutes,
            layer_degraded_error_rate=monitoring.layer_degraded_error_rate,
            layer_critical_error_rate=monitoring.layer_critical_error_rate,
        )

        error_handling = self.settings.error_handling
        self.classifier = ErrorClassifier(clock=self.clock, log_sink=self.log_sink)
        self.tracker = CorrelationTracker(
            clock=self.clock,
            max_correlations=error_handling.max_correlations,
            healthy_window_minutes=error_handling.healthy_window_minutes,
        )
        self.recovery = RecoveryManager(
            tracker=self.tracker,
            scheduler=self.scheduler,
            clock=self.clock,
            base_delay_ms=error_handling.recovery_base_delay_ms,
            max_delay_ms=error_handling.recovery_max_delay_ms,
        )
        self.messages = UserFriendlyMessageSystem()
        self.error_handler = EnhancedErrorHandler(
            classifier=self.classifier,
            tracker=self.tracker,
            recovery=self.recovery,
            event_monitor=self.event_monitor,
            messages=self.messages,
            clock=self.clock,
        )
        self.retry_engine = RetryEngine(
            classifier=self.classifier,
            scheduler=self.scheduler,
            clock=self.clock,
            event_monitor=self.event_monitor,
            tracker=self.tracker,
            jitter_ratio=self.settings.retry.jitter_ratio,
        )

        health = self.settings.health
        self.health_monitor = SystemHealthMonitor(
            clock=self.clock,
            scheduler=self.scheduler,
            metric_source=metric_source or SimulatedMetricSource(health.metric_variation_percent),
            notifier=self.notifier,
            config=HealthCheckConfig(
                enabled=health.enabled,
                interval_seconds=health.interval_seconds,
                timeout_seconds=health.timeout_seconds,
                retries=health.retries,
            ),
            max_history=health.max_history,
            max_alerts=health.max_alerts,
            trend_threshold_percent=health.trend_threshold_percent,
            version=health.version,
            environment=self.settings.environment.value,
        )

        feedback = self.settings.feedback
        self.feedback_service = UserFeedbackService(
            event_monitor=self.event_monitor,
            clock=self.clock,
            scheduler=self.scheduler,
            max_items=feedback.max_items,
            analytics_refresh_seconds=feedback.analytics_refresh_seconds,
        )

    async def start(self) -> None:
        """Register periodic jobs, start the scheduler and run a first health check."""
        if self.started:
            return
        self.event_monitor.start()
        self.health_monitor.start()
        self.feedback_service.start()
        self.scheduler.start()
        if self.health_monitor.config.enabled:
            await self.health_monitor.run_health_check()
        self.started = True
        logger.info("Error-handling container started")

    async def stop(self) -> None:
        if not self.started:
            return
        self.feedback_service.stop()
        self.health_monitor.stop()
        self.event_monitor.stop()
        self.scheduler.shutdown()
        if self._recovery_tasks:
            await asyncio.gather(*list(self._recovery_tasks), return_exceptions=True)
        if isinstance(self.notifier, NotificationDispatcher):
            await self.notifier.drain()
        self.started = False
        logger.info("Error-handling container stopped")

    def _auto_recover(self, rule: AlertRule, events: List[MonitoringEvent]) -> None:
        """Run recovery for retryable correlations behind a fired rule."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running loop; skipping auto-recovery for rule {rule.id}")
            return

        seen = set()
        for event in events:
            if event.type != EventType.ERROR or not event.correlation_id or event.correlation_id in seen:
                continue
            seen.add(event.correlation_id)
            correlation = self.tracker.get_correlation(event.correlation_id)
            if correlation is None or not correlation.primary_error.can_retry:
                continue
            if event.correlation_id in self._recovering:
                continue
            self._recovering.add(event.correlation_id)
            task = loop.create_task(self.error_handler.attempt_recovery(correlation.primary_error))
            self._recovery_tasks.add(task)
            task.add_done_callback(self._recovery_tasks.discard)
            task.add_done_callback(lambda _, cid=event.correlation_id: self._recovering.discard(cid))
