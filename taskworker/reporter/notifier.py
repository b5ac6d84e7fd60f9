"""Overdue notices: Slack webhook delivery with a log-only fallback."""

import httpx
import structlog
from typing import Optional, Protocol

from taskworker.config import settings
from taskworker.models import TaskRecord

logger = structlog.get_logger()


class Notifier(Protocol):
    """Notification sink. `notify` raises when the notice was not delivered."""

    async def notify(self, task: TaskRecord) -> None:
        ...


def format_overdue_notice(task: TaskRecord) -> str:
    """Build the overdue notice text for a task."""
    message_parts = [
        f"⏰ *Task overdue: {task.title}*",
        f"🆔 ID: `{task.id}`",
        f"📌 Status: {task.status.value}",
        f"🔺 Priority: {task.priority.value}",
    ]

    if task.due_at:
        message_parts.append(f"📅 Due: {task.due_at.strftime('%Y-%m-%d %H:%M')} UTC")

    return "\n".join(message_parts)


class SlackNotifier:
    """Send overdue notices to Slack via an incoming webhook."""

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize Slack notifier.

        Args:
            webhook_url: Incoming webhook URL. Uses settings if not provided.
            timeout: Request timeout in seconds
            client: Shared HTTP client; a short-lived one is opened per call otherwise
        """
        self.webhook_url = webhook_url or settings.slack_webhook_url
        if not self.webhook_url:
            raise ValueError("SlackNotifier requires a webhook URL")
        self.timeout = timeout
        self._client = client

        logger.info("slack_notifier_initialized", has_webhook=True)

    async def send_message(self, text: str) -> None:
        """Send a text message to Slack.

        Args:
            text: Message text

        Raises:
            httpx.HTTPError: If the webhook call fails
        """
        if self._client is not None:
            response = await self._client.post(
                self.webhook_url, json={"text": text}, timeout=self.timeout
            )
            response.raise_for_status()
        else:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self.webhook_url,
                    json={"text": text},
                    timeout=self.timeout,
                )
                response.raise_for_status()

        logger.info("slack_message_sent", text_length=len(text))

    async def notify(self, task: TaskRecord) -> None:
        await self.send_message(format_overdue_notice(task))


class LogNotifier:
    """Notifier used when no Slack webhook is configured."""

    async def notify(self, task: TaskRecord) -> None:
        logger.info(
            "overdue_notice",
            task_id=task.id,
            title=task.title,
            due_at=task.due_at.isoformat() if task.due_at else None,
            source="notifier",
        )


def build_notifier() -> Notifier:
    """Pick the notifier for the current settings."""
    if settings.slack_webhook_url:
        return SlackNotifier()
    return LogNotifier()
