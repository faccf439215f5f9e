"""Order notifications.

Terminal transitions and new messages are announced to a notification
sink (email service, chat bridge...). Delivery is fire-and-forget: a
failing sink is logged and never affects the order.
"""

import hashlib
import hmac
import json
from typing import Protocol

import httpx
import structlog

from storefront.domain.base import DomainEvent
from storefront.domain.events import CommunicationPosted, OrderStatusChanged

logger = structlog.get_logger()


class NotificationSink(Protocol):
    """Receives order events worth telling someone about."""

    async def notify(self, event: DomainEvent) -> None: ...


def is_notifiable(event: DomainEvent) -> bool:
    """Terminal/payment transitions and customer-visible messages."""
    if isinstance(event, OrderStatusChanged):
        return event.is_notifiable
    if isinstance(event, CommunicationPosted):
        return not event.is_internal
    return False


async def dispatch(sink: NotificationSink, events: list[DomainEvent]) -> None:
    """Send notifiable events to the sink, logging and dropping failures.

    Args:
        sink: Destination sink.
        events: Events collected from an aggregate or service.
    """
    for event in events:
        if not is_notifiable(event):
            continue
        try:
            await sink.notify(event)
        except Exception as e:
            logger.warning(
                "Notification failed",
                event_type=event.event_type,
                aggregate_id=event.aggregate_id,
                error=str(e),
            )


class LoggingNotificationSink:
    """Sink that writes events to the log. The default when no webhook is set."""

    async def notify(self, event: DomainEvent) -> None:
        logger.info(
            "Order notification",
            event_type=event.event_type,
            aggregate_id=event.aggregate_id,
            payload=event.to_dict()["payload"],
        )


class RecordingNotificationSink:
    """Sink that keeps events in memory, for inspection."""

    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    async def notify(self, event: DomainEvent) -> None:
        self.events.append(event)


class WebhookNotificationSink:
    """Sink that POSTs HMAC-signed events to a webhook URL."""

    SIGNATURE_HEADER = "X-Storefront-Signature"

    def __init__(
        self,
        webhook_url: str,
        webhook_secret: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize webhook sink.

        Args:
            webhook_url: URL to send events to.
            webhook_secret: Secret for HMAC signing.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport for tests.
        """
        self.webhook_url = webhook_url
        self.webhook_secret = webhook_secret
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    def sign_payload(self, payload: str) -> str:
        """Generate the ``sha256=<hex>`` HMAC signature for a payload."""
        signature = hmac.new(
            self.webhook_secret.encode(),
            payload.encode(),
            hashlib.sha256,
        ).hexdigest()
        return f"sha256={signature}"

    async def notify(self, event: DomainEvent) -> None:
        """Deliver one event.

        Raises:
            httpx.HTTPError: On transport failure or a non-2xx answer;
                ``dispatch`` logs and drops it.
        """
        body = json.dumps(event.to_dict(), separators=(",", ":"), default=str)
        response = await self._client.post(
            self.webhook_url,
            content=body,
            headers={
                "Content-Type": "application/json",
                self.SIGNATURE_HEADER: self.sign_payload(body),
                "X-Event-Id": str(event.event_id),
            },
        )
        response.raise_for_status()
        logger.info(
            "Notification delivered",
            event_type=event.event_type,
            event_id=str(event.event_id),
            status_code=response.status_code,
        )

    async def close(self) -> None:
        await self._client.aclose()
