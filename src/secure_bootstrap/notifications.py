"""
Notification Router module for the secure bootstrap system.

Sends the run summary to optional channels (Telegram, generic webhook) once
a pipeline run has finished. Delivery is attempted once per channel; a
failed delivery is logged and reported, and never changes the run outcome.
"""

import html
import socket
from abc import abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

import httpx

from secure_bootstrap.audit_logger import AuditLogger
from secure_bootstrap.config import NotificationConfig, TelegramConfig, WebhookConfig
from secure_bootstrap.enums import PipelineStatus
from secure_bootstrap.i18n import get_message
from secure_bootstrap.models import PipelineRun


def format_timestamp(iso_timestamp: str, language: str = "en") -> str:
    """
    Format an ISO timestamp to a human-readable format.

    Args:
        iso_timestamp: ISO 8601 timestamp string
        language: 'de' for German, 'en' for English

    Returns:
        Formatted timestamp string
    """
    try:
        dt = datetime.fromisoformat(iso_timestamp.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return iso_timestamp

    if language == "de":
        # German format: 10.12.2025, 05:29 Uhr
        return dt.strftime("%d.%m.%Y, %H:%M Uhr")
    # English format: Dec 10, 2025, 5:29 AM
    return dt.strftime("%b %d, %Y, %I:%M %p")


@dataclass
class RunSummaryPayload:
    """Payload for a run summary message."""

    host: str
    run_id: str
    status: str
    summary: list[str]
    timestamp: str
    language: str = "en"

    @classmethod
    def from_run(cls, run: PipelineRun, language: str = "en", host: Optional[str] = None) -> "RunSummaryPayload":
        return cls(
            host=host or socket.gethostname(),
            run_id=run.run_id,
            status=run.status.value,
            summary=run.summary_lines(language),
            timestamp=run.finished_at,
            language=language,
        )

    @property
    def title(self) -> str:
        key = (
            "notification.title_completed"
            if self.status == PipelineStatus.COMPLETED.value
            else "notification.title_attention"
        )
        return get_message(key, self.language)

    def get_formatted_timestamp(self) -> str:
        return format_timestamp(self.timestamp, self.language)


@dataclass
class NotificationResult:
    """Result of a notification delivery attempt."""

    channel: str
    success: bool
    error: Optional[str] = None


@runtime_checkable
class NotificationChannel(Protocol):
    """Protocol defining the interface for notification channels."""

    @abstractmethod
    async def send(self, payload: RunSummaryPayload) -> bool:
        """
        Send a notification.

        Returns:
            True if delivery was successful, False otherwise
        """
        ...

    @abstractmethod
    def get_name(self) -> str:
        ...


class TelegramChannel:
    """Telegram notification channel using Bot API."""

    def __init__(self, config: TelegramConfig, simulation_mode: bool = False) -> None:
        """
        Initialize Telegram channel.

        Args:
            config: Telegram configuration with bot_token and chat_id
            simulation_mode: If True, no real network requests are made
        """
        self._chat_id = config.chat_id
        self._base_url = f"https://api.telegram.org/bot{config.bot_token}"
        self._simulation_mode = simulation_mode

    async def send(self, payload: RunSummaryPayload) -> bool:
        """Send notification via Telegram Bot API."""
        if self._simulation_mode:
            return True

        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{self._base_url}/sendMessage",
                json={
                    "chat_id": self._chat_id,
                    "text": self.format_message(payload),
                    "parse_mode": "HTML",
                },
                timeout=30.0,
            )
            return response.status_code == 200

    def get_name(self) -> str:
        return "telegram"

    def format_message(self, payload: RunSummaryPayload) -> str:
        icon = "🟢" if payload.status == PipelineStatus.COMPLETED.value else "🔴"
        host_label = get_message("notification.host_label", payload.language)
        time_label = get_message("notification.time_label", payload.language)
        lines = [
            f"{icon} <b>{html.escape(payload.title)}</b>",
            "",
            f"{host_label}: <code>{html.escape(payload.host)}</code>",
            *(html.escape(line) for line in payload.summary),
            f"{time_label}: {payload.get_formatted_timestamp()}",
        ]
        return "\n".join(lines)


class WebhookChannel:
    """Generic webhook notification channel using HTTP POST."""

    def __init__(self, config: WebhookConfig, simulation_mode: bool = False) -> None:
        """
        Initialize Webhook channel.

        Args:
            config: Webhook configuration with URL and optional headers
            simulation_mode: If True, no real network requests are made
        """
        self._url = config.url
        self._headers = dict(config.headers)
        self._simulation_mode = simulation_mode

    async def send(self, payload: RunSummaryPayload) -> bool:
        """Send notification via HTTP POST webhook."""
        if self._simulation_mode:
            return True

        data = {
            "host": payload.host,
            "run_id": payload.run_id,
            "status": payload.status,
            "title": payload.title,
            "summary": payload.summary,
            "timestamp": payload.timestamp,
            "timestamp_formatted": payload.get_formatted_timestamp(),
            "language": payload.language,
        }
        headers = {"Content-Type": "application/json"}
        headers.update(self._headers)

        async with httpx.AsyncClient() as client:
            response = await client.post(self._url, json=data, headers=headers, timeout=30.0)
            return 200 <= response.status_code < 300

    def get_name(self) -> str:
        return "webhook"


@dataclass
class NotificationRouter:
    """Delivers a run summary to every registered channel, once each."""

    logger: Optional[AuditLogger] = None
    _channels: list = field(default_factory=list)

    def register_channel(self, channel: NotificationChannel) -> None:
        self._channels.append(channel)

    @property
    def channels(self) -> list[NotificationChannel]:
        return self._channels.copy()

    async def notify(self, payload: RunSummaryPayload) -> list[NotificationResult]:
        """
        Send the payload to all channels.

        Returns:
            List of NotificationResult for each channel
        """
        results = []
        for channel in self._channels:
            name = channel.get_name()
            try:
                success = await channel.send(payload)
                error = None if success else "Channel returned failure"
            except httpx.HTTPError as e:
                success, error = False, str(e)

            if not success and self.logger:
                self.logger.warn("notifications", f"Delivery to '{name}' failed", {
                    "channel": name,
                    "run_id": payload.run_id,
                    "error": error,
                })
            results.append(NotificationResult(channel=name, success=success, error=error))
        return results


def build_router(
    config: NotificationConfig,
    simulation_mode: bool = False,
    logger: Optional[AuditLogger] = None,
) -> NotificationRouter:
    """Create a router with a channel for each configured destination."""
    router = NotificationRouter(logger=logger)
    if config.telegram is not None:
        router.register_channel(TelegramChannel(config.telegram, simulation_mode))
    if config.webhook is not None:
        router.register_channel(WebhookChannel(config.webhook, simulation_mode))
    return router
