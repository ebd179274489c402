"""
Alert notification dispatch.

Delivers alert payloads to the configured channels:
- log: standard library logger at a configurable level
- console: the structured alert stream (structlog), watched by operators
- webhook: JSON POST via aiohttp
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set

import aiohttp

from studybuddy.infrastructure.logging.config import get_logger
from studybuddy.models.interfaces import INotifier


class NotificationChannel(str, Enum):
    LOG = "log"
    CONSOLE = "console"
    WEBHOOK = "webhook"


@dataclass
class ChannelConfig:
    channel: NotificationChannel
    enabled: bool = True
    config: Dict[str, Any] = field(default_factory=dict)


Handler = Callable[[str, Dict[str, Any]], Awaitable[None]]


class NotificationDispatcher(INotifier):
    """Routes alert payloads to channel handlers."""

    def __init__(
        self,
        enabled: bool = True,
        webhook_url: Optional[str] = None,
        webhook_timeout_seconds: float = 10,
        history_size: int = 200,
    ):
        self.logger = logging.getLogger(__name__)
        self.alert_logger = get_logger("studybuddy.alerts")
        self.enabled = enabled
        self.channel_configs: Dict[NotificationChannel, ChannelConfig] = {
            NotificationChannel.LOG: ChannelConfig(NotificationChannel.LOG, config={"log_level": "WARNING"}),
            NotificationChannel.CONSOLE: ChannelConfig(NotificationChannel.CONSOLE),
            NotificationChannel.WEBHOOK: ChannelConfig(
                NotificationChannel.WEBHOOK,
                enabled=bool(webhook_url),
                config={"url": webhook_url, "timeout_seconds": webhook_timeout_seconds},
            ),
        }
        self.handlers: Dict[NotificationChannel, Handler] = {
            NotificationChannel.LOG: self._send_log_notification,
            NotificationChannel.CONSOLE: self._send_console_notification,
            NotificationChannel.WEBHOOK: self._send_webhook_notification,
        }
        self.sent: Deque[Dict[str, Any]] = deque(maxlen=history_size)
        self._tasks: Set[asyncio.Task] = set()

    def configure_channel(self, config: ChannelConfig) -> None:
        self.channel_configs[config.channel] = config
        self.logger.info(f"Configured notification channel: {config.channel.value}")

    def notify(self, title: str, payload: Dict[str, Any], channels: List[str]) -> None:
        """Schedule delivery; runs inline for log/console when no loop is running."""
        if not self.enabled:
            return
        try:
            task = asyncio.get_running_loop().create_task(self.deliver(title, payload, channels))
        except RuntimeError:
            # No running event loop; only the synchronous channels can be served
            sync_channels = [c for c in channels if c != NotificationChannel.WEBHOOK.value]
            asyncio.run(self.deliver(title, payload, sync_channels))
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def deliver(self, title: str, payload: Dict[str, Any], channels: List[str]) -> None:
        for name in channels:
            try:
                channel = NotificationChannel(name)
            except ValueError:
                self.logger.warning(f"Unknown notification channel: {name}")
                continue
            config = self.channel_configs.get(channel)
            if not config or not config.enabled:
                continue
            try:
                await self.handlers[channel](title, payload)
                self.sent.append({
                    "channel": channel.value,
                    "title": title,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                })
            except Exception as e:
                self.logger.error(f"Failed to send notification to {channel.value}: {e}")

    async def drain(self) -> None:
        """Wait for scheduled deliveries to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _send_log_notification(self, title: str, payload: Dict[str, Any]) -> None:
        log_level = self.channel_configs[NotificationChannel.LOG].config.get("log_level", "WARNING")
        self.logger.log(getattr(logging, log_level, logging.WARNING), f"ALERT: {title}")

    async def _send_console_notification(self, title: str, payload: Dict[str, Any]) -> None:
        self.alert_logger.warning(f"ALERT: {title}", alert=payload)

    async def _send_webhook_notification(self, title: str, payload: Dict[str, Any]) -> None:
        webhook_config = self.channel_configs[NotificationChannel.WEBHOOK].config
        webhook_url = webhook_config.get("url")
        if not webhook_url:
            return

        body = {
            "title": title,
            "alert": payload,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        timeout = aiohttp.ClientTimeout(total=webhook_config.get("timeout_seconds", 10))
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(webhook_url, json=body) as response:
                if response.status < 300:
                    self.logger.debug(f"Webhook notification sent: {title}")
                else:
                    self.logger.warning(f"Webhook notification failed: {response.status}")
