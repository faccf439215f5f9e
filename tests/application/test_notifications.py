"""Tests for order notifications."""

import hashlib
import hmac
import json

import httpx
import pytest

from storefront.application.notifications import (
    RecordingNotificationSink,
    WebhookNotificationSink,
    dispatch,
    is_notifiable,
)
from storefront.domain.events import CommunicationPosted, OrderCreated, OrderStatusChanged


def status_changed(new_status: str, terminal: bool = False) -> OrderStatusChanged:
    return OrderStatusChanged(
        aggregate_id="order-1",
        order_id="order-1",
        customer_id="cust-1",
        previous_status="pending",
        new_status=new_status,
        payment_status="approved",
        actor_type="system",
        terminal=terminal,
    )


class FailingSink:
    async def notify(self, event) -> None:
        raise RuntimeError("mail server down")


class TestIsNotifiable:
    """Tests for event selection."""

    def test_payment_approval_notified(self) -> None:
        assert is_notifiable(status_changed("payment_approved"))

    def test_terminal_notified(self) -> None:
        assert is_notifiable(status_changed("cancelled", terminal=True))

    def test_intermediate_status_not_notified(self) -> None:
        assert not is_notifiable(status_changed("processing"))

    def test_internal_messages_not_notified(self) -> None:
        assert not is_notifiable(
            CommunicationPosted(order_id="order-1", communication_id="m1", is_internal=True)
        )

    def test_creation_not_notified(self) -> None:
        assert not is_notifiable(OrderCreated(order_id="order-1"))


class TestDispatch:
    """Tests for dispatch."""

    @pytest.mark.asyncio
    async def test_filters_events(self) -> None:
        sink = RecordingNotificationSink()
        await dispatch(sink, [status_changed("processing"), status_changed("payment_approved")])
        assert [e.new_status for e in sink.events] == ["payment_approved"]

    @pytest.mark.asyncio
    async def test_failures_are_swallowed(self) -> None:
        """A broken sink never breaks the caller."""
        await dispatch(FailingSink(), [status_changed("payment_approved")])


class TestWebhookNotificationSink:
    """Tests for the webhook sink."""

    @pytest.mark.asyncio
    async def test_posts_signed_event(self) -> None:
        received: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(request)
            return httpx.Response(204)

        sink = WebhookNotificationSink(
            "https://hooks.test/orders", "whsec", transport=httpx.MockTransport(handler)
        )
        event = status_changed("payment_approved")

        await sink.notify(event)
        await sink.close()

        request = received[0]
        body = request.content.decode()
        expected = hmac.new(b"whsec", body.encode(), hashlib.sha256).hexdigest()
        assert request.headers[WebhookNotificationSink.SIGNATURE_HEADER] == f"sha256={expected}"
        assert request.headers["X-Event-Id"] == str(event.event_id)
        assert json.loads(body)["event_type"] == "order.status_changed"
        assert json.loads(body)["payload"]["new_status"] == "payment_approved"

    @pytest.mark.asyncio
    async def test_error_status_raises(self) -> None:
        sink = WebhookNotificationSink(
            "https://hooks.test/orders",
            "whsec",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        with pytest.raises(httpx.HTTPStatusError):
            await sink.notify(status_changed("payment_approved"))
        await sink.close()
