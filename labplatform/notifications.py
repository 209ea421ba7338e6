"""Notification sinks for request lifecycle events.

Delivery is fire-and-forget: ``notify_safely`` logs failures and never
raises, so a broken sink cannot affect request state.
"""

from enum import Enum
from http import HTTPStatus
from typing import Any, Protocol

import aiohttp
import structlog

from labplatform.config import Settings
from labplatform.models import utcnow

logger = structlog.get_logger(__name__)


class NotificationEvent(str, Enum):
    REQUEST_APPROVED = "request_approved"
    REQUEST_REJECTED = "request_rejected"
    RESOURCE_PROVISIONED = "resource_provisioned"
    PROVISIONING_FAILED = "provisioning_failed"
    RESOURCE_DESTROYED = "resource_destroyed"


class NotificationSink(Protocol):
    async def send(
        self, event: NotificationEvent, user_id: str, payload: dict[str, Any]
    ) -> None: ...


class LoggingSink:
    """Writes notifications to the structured log."""

    async def send(self, event: NotificationEvent, user_id: str, payload: dict[str, Any]) -> None:
        logger.info("notification", notification_event=event.value, user_id=user_id, **payload)


class WebhookSink:
    """POSTs notifications as JSON to a webhook URL."""

    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout

    async def send(self, event: NotificationEvent, user_id: str, payload: dict[str, Any]) -> None:
        body = {
            "event": event.value,
            "user_id": user_id,
            "payload": payload,
            "sent_at": utcnow().isoformat(),
        }
        async with aiohttp.ClientSession() as session:
            async with session.post(
                self.url, json=body, timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as resp:
                if resp.status >= HTTPStatus.BAD_REQUEST:
                    error_text = await resp.text()
                    raise RuntimeError(f"webhook returned {resp.status}: {error_text[:200]}")
        logger.info("notification_sent", notification_event=event.value, user_id=user_id)


def sink_from_settings(settings: Settings) -> NotificationSink:
    if settings.notification_webhook_url:
        return WebhookSink(
            settings.notification_webhook_url, timeout=settings.notification_timeout_seconds
        )
    return LoggingSink()


async def notify_safely(
    sink: NotificationSink,
    event: NotificationEvent,
    user_id: str,
    payload: dict[str, Any],
) -> bool:
    """Deliver a notification; returns False instead of raising on failure."""
    try:
        await sink.send(event, user_id, payload)
        return True
    except TimeoutError:
        logger.error("notification_timeout", notification_event=event.value, user_id=user_id)
        return False
    except Exception as e:
        logger.error(
            "notification_error",
            notification_event=event.value,
            user_id=user_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        return False
