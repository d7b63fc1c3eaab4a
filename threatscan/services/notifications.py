"""Webhook integrations — Slack, Discord, generic JSON.

Forwards ``threat_detected`` events from the event bus to external
services. Delivery is best effort: every failure is logged and reported as
``False``; nothing here raises into the scan path.

Architecture
------------
::

    WebhookRelay ── Subscription (EventBus)
      └── NotificationService
            ├── SlackNotifier    → Slack Incoming Webhook
            ├── DiscordNotifier  → Discord Webhook
            └── JsonNotifier     → any endpoint accepting a JSON POST
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from threatscan.core.config import Settings
from threatscan.core.types import Severity, ThreatEvent
from threatscan.services.events import Subscription

logger = logging.getLogger(__name__)

SEVERITY_RANK: dict[Severity, int] = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


def severity_at_least(severity: Severity | str, minimum: Severity | str) -> bool:
    return SEVERITY_RANK[Severity(severity)] >= SEVERITY_RANK[Severity(minimum)]


# ── Configuration ────────────────────────────────────────────────────────────


class NotificationChannel(str, Enum):
    SLACK = "slack"
    DISCORD = "discord"
    JSON = "json"


@dataclass
class WebhookConfig:
    """Configuration for a single webhook destination."""
    id: str
    channel: NotificationChannel
    webhook_url: str
    min_severity: Severity = Severity.HIGH
    enabled: bool = True
    timeout_seconds: float = 10.0
    discord_username: str = "threatscan"


# ── Base Notifier ────────────────────────────────────────────────────────────


class BaseNotifier:
    """Abstract base for notification channel implementations."""

    CHANNEL: NotificationChannel
    OK_STATUS: tuple[int, ...] = (200,)

    def __init__(self, config: WebhookConfig) -> None:
        self._config = config

    def build_body(self, event: ThreatEvent) -> dict[str, Any]:
        raise NotImplementedError

    def _should_send(self, event: ThreatEvent) -> bool:
        if not self._config.enabled:
            return False
        return severity_at_least(event.severity, self._config.min_severity)

    async def send(self, event: ThreatEvent) -> bool:
        """Send a notification. Returns True on success."""
        if not self._should_send(event):
            return False

        channel = self.CHANNEL.value
        try:
            async with httpx.AsyncClient(timeout=self._config.timeout_seconds) as client:
                resp = await client.post(
                    self._config.webhook_url,
                    json=self.build_body(event),
                    headers={"Content-Type": "application/json"},
                )
                if resp.status_code in self.OK_STATUS:
                    return True
                logger.warning("%s webhook returned %d: %s", channel, resp.status_code, resp.text)
        except Exception as exc:
            logger.warning("%s notification failed: %s", channel, exc)
        return False


def _title(event: ThreatEvent) -> str:
    return f"{event.severity.value.upper()} {event.category.value} threat on {event.address}"


# ── Slack ─────────────────────────────────────────────────────────────────────


class SlackNotifier(BaseNotifier):
    """Send notifications to Slack via Incoming Webhook."""

    CHANNEL = NotificationChannel.SLACK

    SEVERITY_COLORS = {
        Severity.CRITICAL: "#dc2626",  # red-600
        Severity.HIGH: "#ea580c",      # orange-600
        Severity.MEDIUM: "#f59e0b",    # amber-500
        Severity.LOW: "#3b82f6",       # blue-500
    }

    def build_body(self, event: ThreatEvent) -> dict[str, Any]:
        fields = {
            "Pattern": event.pattern_id,
            "Risk score": f"{event.risk_score:.1f}",
            "Finding": event.finding_id,
        }
        blocks = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": f":rotating_light: {_title(event)}"},
            },
            {
                "type": "section",
                "fields": [{"type": "mrkdwn", "text": f"*{k}*\n{v}"} for k, v in fields.items()],
            },
        ]
        return {
            "attachments": [{
                "color": self.SEVERITY_COLORS.get(event.severity, "#6b7280"),
                "blocks": blocks,
            }],
        }


# ── Discord ──────────────────────────────────────────────────────────────────


class DiscordNotifier(BaseNotifier):
    """Send notifications to Discord via webhook."""

    CHANNEL = NotificationChannel.DISCORD
    OK_STATUS = (200, 204)

    SEVERITY_COLORS = {
        Severity.CRITICAL: 0xDC2626,
        Severity.HIGH: 0xEA580C,
        Severity.MEDIUM: 0xF59E0B,
        Severity.LOW: 0x3B82F6,
    }

    def build_body(self, event: ThreatEvent) -> dict[str, Any]:
        embed = {
            "title": _title(event),
            "color": self.SEVERITY_COLORS.get(event.severity, 0x6B7280),
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(event.timestamp)),
            "fields": [
                {"name": "Pattern", "value": event.pattern_id or "-", "inline": True},
                {"name": "Risk score", "value": f"{event.risk_score:.1f}", "inline": True},
                {"name": "Finding", "value": event.finding_id, "inline": False},
            ],
            "footer": {"text": "threatscan"},
        }
        body: dict[str, Any] = {"embeds": [embed]}
        if self._config.discord_username:
            body["username"] = self._config.discord_username
        return body


# ── Generic JSON ─────────────────────────────────────────────────────────────


class JsonNotifier(BaseNotifier):
    """POST the raw event as JSON."""

    CHANNEL = NotificationChannel.JSON
    OK_STATUS = (200, 201, 202, 204)

    def build_body(self, event: ThreatEvent) -> dict[str, Any]:
        return event.model_dump(mode="json")


# ── Notification Service ─────────────────────────────────────────────────────


class NotificationService:
    """Manages webhook configs and dispatches events."""

    _NOTIFIER_MAP: dict[NotificationChannel, type[BaseNotifier]] = {
        NotificationChannel.SLACK: SlackNotifier,
        NotificationChannel.DISCORD: DiscordNotifier,
        NotificationChannel.JSON: JsonNotifier,
    }

    def __init__(self) -> None:
        self._configs: dict[str, WebhookConfig] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "NotificationService":
        """Register one webhook per configured URL."""
        service = cls()
        urls = {
            NotificationChannel.SLACK: settings.slack_webhook_url,
            NotificationChannel.DISCORD: settings.discord_webhook_url,
            NotificationChannel.JSON: settings.generic_webhook_url,
        }
        for channel, url in urls.items():
            if url:
                service.register(WebhookConfig(
                    id=channel.value,
                    channel=channel,
                    webhook_url=url,
                    min_severity=Severity(settings.webhook_min_severity),
                    timeout_seconds=settings.webhook_timeout_seconds,
                ))
        return service

    def register(self, config: WebhookConfig) -> None:
        self._configs[config.id] = config
        logger.info("Registered %s webhook %s", config.channel.value, config.id)

    def unregister(self, webhook_id: str) -> bool:
        return self._configs.pop(webhook_id, None) is not None

    def list_webhooks(self) -> list[WebhookConfig]:
        return list(self._configs.values())

    async def notify(self, event: ThreatEvent) -> dict[str, bool]:
        """Dispatch an event to all matching webhooks.

        Returns dict of webhook_id → success.
        """
        results: dict[str, bool] = {}
        tasks: list[tuple[str, asyncio.Task]] = []

        for config in self._configs.values():
            if not config.enabled or not severity_at_least(event.severity, config.min_severity):
                continue

            notifier_cls = self._NOTIFIER_MAP.get(config.channel)
            if not notifier_cls:
                continue

            notifier = notifier_cls(config)
            tasks.append((config.id, asyncio.create_task(notifier.send(event))))

        for config_id, task in tasks:
            try:
                results[config_id] = await task
            except Exception as exc:
                logger.warning("Notification %s failed: %s", config_id, exc)
                results[config_id] = False

        return results


# ── Relay ────────────────────────────────────────────────────────────────────


class WebhookRelay:
    """Consume a bus subscription and forward each event to the webhooks."""

    def __init__(self, service: NotificationService, subscription: Subscription) -> None:
        self._service = service
        self._subscription = subscription
        self.forwarded = 0

    async def relay_pending(self) -> int:
        """Forward every event already queued; returns how many were sent."""
        sent = 0
        for event in self._subscription.drain():
            results = await self._service.notify(event)
            if any(results.values()):
                sent += 1
        self.forwarded += sent
        return sent

    async def run(self) -> None:
        """Forward events until cancelled or the subscription is closed."""
        try:
            while not self._subscription.closed:
                event = await self._subscription.get()
                results = await self._service.notify(event)
                if any(results.values()):
                    self.forwarded += 1
        finally:
            self._subscription.close()
