"""Shared pytest fixtures for the Study Buddy error-handling tests.

Every component is built against a ManualClock and a VirtualScheduler so
that timestamps, backoff sleeps and periodic jobs are deterministic.
"""

import random
from unittest.mock import Mock

import pytest

from studybuddy.config.settings import StudyBuddySettings
from studybuddy.container import ErrorHandlingContainer
from studybuddy.infrastructure.error_handling.classification import ErrorClassifier
from studybuddy.infrastructure.error_handling.correlation import CorrelationTracker
from studybuddy.infrastructure.error_handling.handler import EnhancedErrorHandler
from studybuddy.infrastructure.error_handling.messages import UserFriendlyMessageSystem
from studybuddy.infrastructure.error_handling.recovery import RecoveryManager
from studybuddy.infrastructure.error_handling.retry import RetryEngine
from studybuddy.infrastructure.health.metric_sources import ProbeMetricSource
from studybuddy.infrastructure.health.system_health_monitor import SystemHealthMonitor
from studybuddy.infrastructure.logging.sink import LogSink
from studybuddy.infrastructure.monitoring.alerting import AlertRuleEngine
from studybuddy.infrastructure.monitoring.event_monitor import EventMonitor
from studybuddy.infrastructure.scheduling import ManualClock, VirtualScheduler
from studybuddy.models.interfaces import INotifier
from studybuddy.services.feedback_service import UserFeedbackService


@pytest.fixture
def clock():
    """Clock fixed at 2025-01-01 12:00 UTC until advanced."""
    return ManualClock()


@pytest.fixture
def scheduler(clock):
    return VirtualScheduler(clock)


@pytest.fixture
def log_sink():
    return Mock(spec=LogSink)


@pytest.fixture
def notifier():
    return Mock(spec=INotifier)


@pytest.fixture
def classifier(clock, log_sink):
    return ErrorClassifier(clock=clock, log_sink=log_sink)


@pytest.fixture
def tracker(clock):
    return CorrelationTracker(clock=clock)


@pytest.fixture
def alert_engine(clock, log_sink, notifier):
    return AlertRuleEngine(clock=clock, log_sink=log_sink, notifier=notifier)


@pytest.fixture
def event_monitor(clock, scheduler, log_sink, alert_engine):
    return EventMonitor(clock=clock, scheduler=scheduler, log_sink=log_sink, alert_engine=alert_engine)


@pytest.fixture
def recovery(tracker, scheduler, clock):
    return RecoveryManager(tracker=tracker, scheduler=scheduler, clock=clock)


@pytest.fixture
def error_handler(classifier, tracker, recovery, event_monitor, clock):
    return EnhancedErrorHandler(
        classifier=classifier,
        tracker=tracker,
        recovery=recovery,
        event_monitor=event_monitor,
        messages=UserFriendlyMessageSystem(),
        clock=clock,
    )


@pytest.fixture
def retry_engine(classifier, scheduler, clock, event_monitor, tracker):
    return RetryEngine(
        classifier=classifier,
        scheduler=scheduler,
        clock=clock,
        event_monitor=event_monitor,
        tracker=tracker,
        rng=random.Random(7),
    )


@pytest.fixture
def health_monitor(clock, scheduler, notifier):
    """Health monitor whose metrics only change through registered probes."""
    return SystemHealthMonitor(
        clock=clock,
        scheduler=scheduler,
        metric_source=ProbeMetricSource(),
        notifier=notifier,
    )


@pytest.fixture
def feedback_service(event_monitor, clock, scheduler):
    return UserFeedbackService(event_monitor=event_monitor, clock=clock, scheduler=scheduler)


@pytest.fixture
def test_settings():
    return StudyBuddySettings()


@pytest.fixture
def container(test_settings, clock, scheduler, log_sink, notifier):
    """Fully wired container on virtual time with deterministic health metrics."""
    return ErrorHandlingContainer(
        settings=test_settings,
        clock=clock,
        scheduler=scheduler,
        log_sink=log_sink,
        notifier=notifier,
        metric_source=ProbeMetricSource(),
        configure_logs=False,
    )
