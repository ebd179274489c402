"""Tests for environment-driven configuration."""

import pytest
from pydantic import ValidationError

from studybuddy.config.settings import (
    Environment,
    LoggingSettings,
    StudyBuddySettings,
    get_settings,
    reset_settings,
)
from studybuddy.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def fresh_settings():
    reset_settings()
    yield
    reset_settings()


class TestStudyBuddySettings:

    def test_defaults(self):
        settings = StudyBuddySettings()
        assert settings.environment == Environment.DEVELOPMENT
        assert settings.monitoring.max_events == 10000
        assert settings.health.interval_seconds == 30
        assert settings.feedback.analytics_refresh_seconds == 300
        assert settings.alerting.webhook_url is None
        assert not settings.is_production()

    def test_section_prefixes(self, monkeypatch):
        monkeypatch.setenv("MONITORING_MAX_EVENTS", "50")
        monkeypatch.setenv("HEALTH_ENABLED", "false")
        monkeypatch.setenv("ALERT_WEBHOOK_URL", "http://alerts.local/hook")
        monkeypatch.setenv("STUDYBUDDY_ENVIRONMENT", "production")

        settings = StudyBuddySettings()

        assert settings.monitoring.max_events == 50
        assert settings.health.enabled is False
        assert settings.alerting.webhook_url == "http://alerts.local/hook"
        assert settings.is_production()

    def test_invalid_log_format(self, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "xml")
        with pytest.raises(ValidationError):
            LoggingSettings()

    def test_out_of_range_value(self, monkeypatch):
        monkeypatch.setenv("RETRY_JITTER_RATIO", "1.5")
        with pytest.raises(ValidationError):
            StudyBuddySettings()


class TestGetSettings:

    def test_singleton(self):
        assert get_settings() is get_settings()

    def test_reset(self):
        first = get_settings()
        reset_settings()
        assert get_settings() is not first

    def test_invalid_environment_raises_configuration_error(self, monkeypatch):
        monkeypatch.setenv("MONITORING_MAX_EVENTS", "0")
        with pytest.raises(ConfigurationError):
            get_settings()
