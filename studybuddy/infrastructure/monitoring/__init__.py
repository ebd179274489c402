"""Event log, alert rules and alert notification."""

from .alerting import AlertRuleEngine, default_alert_rules
from .event_monitor import EventMonitor
from .notifications import ChannelConfig, NotificationChannel, NotificationDispatcher

__all__ = [
    "EventMonitor",
    "AlertRuleEngine",
    "default_alert_rules",
    "NotificationDispatcher",
    "NotificationChannel",
    "ChannelConfig",
]
