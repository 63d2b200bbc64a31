"""
Notification sender implementations.
"""

from typing import Optional

import httpx

from boxoffice.core.config import get_settings
from boxoffice.core.logging import get_logger
from boxoffice.core.metrics import notification_failures
from boxoffice.services.interfaces.notification import Notifier

logger = get_logger(__name__)


class LogNotifier(Notifier):
    """Writes notifications to the structured log (development default)."""

    async def notify(self, kind: str, payload: dict) -> None:
        logger.info("notification", kind=kind, payload=payload)


class WebhookNotifier(Notifier):
    """Forwards notifications to the mail/push service over HTTP."""

    def __init__(self, url: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        settings = get_settings()
        self.url = url or settings.NOTIFICATION_WEBHOOK_URL
        self.timeout = settings.NOTIFICATION_TIMEOUT
        self._transport = transport

    async def notify(self, kind: str, payload: dict) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, json={"type": kind, "data": payload})
                response.raise_for_status()
        except httpx.HTTPError as e:
            # Best effort: the operation that triggered this already committed
            notification_failures.labels(kind=kind).inc()
            logger.warning("notification_failed", kind=kind, error=str(e))


async def notify_safely(notifier: Notifier, kind: str, payload: dict) -> None:
    """Deliver a notification without letting a notifier fault reach the caller."""
    try:
        await notifier.notify(kind, payload)
    except Exception:
        notification_failures.labels(kind=kind).inc()
        logger.exception("notification_failed", kind=kind)
