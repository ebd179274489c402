"""
Unified Configuration for the Study Buddy error-handling core

Single source of truth for all configuration using pydantic-settings.

ARCHITECTURAL PRINCIPLES:
- Only this module accesses environment variables directly
- All other modules receive configuration via dependency injection
- Type-safe validation with automatic conversion
"""

import logging
from enum import Enum
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


# =============================================================================
# ENVIRONMENT AND LOGGING ENUMS
# =============================================================================

class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# =============================================================================
# NESTED CONFIGURATION SECTIONS
# =============================================================================

class LoggingSettings(BaseSettings):
    """Logging configuration"""
    level: LogLevel = Field(default=LogLevel.INFO)
    # "json" for production log shipping, "console" for local development
    format: str = Field(default="json")
    include_trace_id: bool = Field(default=True)

    model_config = {"env_prefix": "LOG_", "extra": "ignore"}

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v not in ("json", "console"):
            raise ValueError("LOG_FORMAT must be 'json' or 'console'")
        return v


class ErrorHandlingSettings(BaseSettings):
    """Error classification and correlation tracking"""
    max_correlations: int = Field(default=1000, ge=1)
    healthy_window_minutes: float = Field(default=5, gt=0)
    recovery_base_delay_ms: float = Field(default=1000, ge=0)
    recovery_max_delay_ms: float = Field(default=10000, ge=0)

    model_config = {"env_prefix": "ERROR_HANDLING_", "extra": "ignore"}


class RetrySettings(BaseSettings):
    """Retry engine tuning"""
    jitter_ratio: float = Field(default=0.25, ge=0, le=1)

    model_config = {"env_prefix": "RETRY_", "extra": "ignore"}


class MonitoringSettings(BaseSettings):
    """Event monitor configuration"""
    max_events: int = Field(default=10000, ge=1)
    health_check_interval_seconds: float = Field(default=30, gt=0)
    recent_window_minutes: float = Field(default=60, gt=0)
    layer_degraded_error_rate: float = Field(default=10, ge=0)
    layer_critical_error_rate: float = Field(default=20, ge=0)
    max_triggered_alerts: int = Field(default=500, ge=1)

    model_config = {"env_prefix": "MONITORING_", "extra": "ignore"}


class HealthSettings(BaseSettings):
    """System health monitor configuration"""
    enabled: bool = Field(default=True)
    interval_seconds: float = Field(default=30, gt=0)
    timeout_seconds: float = Field(default=10, gt=0)
    retries: int = Field(default=3, ge=0)
    max_history: int = Field(default=100, ge=1)
    max_alerts: int = Field(default=1000, ge=1)
    trend_threshold_percent: float = Field(default=5, ge=0)
    metric_variation_percent: float = Field(default=5, ge=0)
    version: str = Field(default="1.0.0")

    model_config = {"env_prefix": "HEALTH_", "extra": "ignore"}


class FeedbackSettings(BaseSettings):
    """Feedback analytics configuration"""
    max_items: int = Field(default=5000, ge=1)
    analytics_refresh_seconds: float = Field(default=300, ge=0)

    model_config = {"env_prefix": "FEEDBACK_", "extra": "ignore"}


class AlertingSettings(BaseSettings):
    """Notification channel configuration"""
    notifications_enabled: bool = Field(default=True)
    webhook_url: Optional[str] = Field(default=None)
    webhook_timeout_seconds: float = Field(default=10, gt=0)

    model_config = {"env_prefix": "ALERT_", "extra": "ignore"}


class StudyBuddySettings(BaseSettings):
    """
    Unified configuration for the error-handling core.

    All configuration access should go through this class via dependency
    injection.
    """
    environment: Environment = Field(default=Environment.DEVELOPMENT)

    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    error_handling: ErrorHandlingSettings = Field(default_factory=ErrorHandlingSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    health: HealthSettings = Field(default_factory=HealthSettings)
    feedback: FeedbackSettings = Field(default_factory=FeedbackSettings)
    alerting: AlertingSettings = Field(default_factory=AlertingSettings)

    model_config = {
        "env_prefix": "STUDYBUDDY_",
        "case_sensitive": False,
        "validate_assignment": True,
        "extra": "ignore",
    }

    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION


# =============================================================================
# SINGLETON MANAGEMENT
# =============================================================================

_settings_instance: Optional[StudyBuddySettings] = None


def get_settings() -> StudyBuddySettings:
    """
    Get global settings instance (singleton pattern).

    The composition root calls this once and hands sections to the components
    it builds; components never call it themselves.

    Raises:
        ConfigurationError: If settings validation fails
    """
    global _settings_instance
    if _settings_instance is None:
        try:
            from dotenv import load_dotenv
            load_dotenv()
            _settings_instance = StudyBuddySettings()
        except Exception as e:
            from studybuddy.exceptions import ConfigurationError
            logging.getLogger(__name__).error(f"Settings validation failed: {e}")
            raise ConfigurationError(f"Invalid configuration: {e}") from e
    return _settings_instance


def reset_settings() -> None:
    """Reset global settings instance (mainly for testing)."""
    global _settings_instance
    _settings_instance = None
