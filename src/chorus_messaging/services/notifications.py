# src/chorus_messaging/services/notifications.py
"""Fire-and-forget notification events emitted after a write commits."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Protocol

import httpx

from chorus_messaging.core.settings import settings

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    MESSAGE = "message"
    MENTION = "mention"
    DELIVERED = "delivered"
    REQUEST_ACCEPTED = "request_accepted"


@dataclass(frozen=True)
class NotificationEvent:
    kind: NotificationKind
    recipient_id: str
    conversation_id: str
    message_id: str | None
    preview_text: str | None

    def to_payload(self) -> dict[str, str | None]:
        payload = asdict(self)
        payload["kind"] = self.kind.value
        return payload


class NotificationDispatcher(Protocol):
    def dispatch(self, event: NotificationEvent) -> None: ...


class LoggingNotificationDispatcher:
    """Default dispatcher: records events in the log and delivers nothing."""

    def dispatch(self, event: NotificationEvent) -> None:
        logger.info(
            "Notification %s for %s in %s (message %s)",
            event.kind.value,
            event.recipient_id,
            event.conversation_id,
            event.message_id,
        )


class WebhookNotificationDispatcher:
    """POST each event as JSON to the push service's webhook."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 5.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.url = url
        self._client = client or httpx.Client(timeout=timeout)

    def dispatch(self, event: NotificationEvent) -> None:
        response = self._client.post(self.url, json=event.to_payload())
        response.raise_for_status()

    def close(self) -> None:
        self._client.close()


def get_notification_dispatcher() -> NotificationDispatcher:
    """Return the dispatcher configured by settings."""
    if settings.notification_webhook_url:
        return WebhookNotificationDispatcher(
            settings.notification_webhook_url,
            timeout=settings.notification_timeout_seconds,
        )
    return LoggingNotificationDispatcher()
