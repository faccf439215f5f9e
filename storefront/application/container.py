"""Service wiring.

Builds the order engine from settings once per process. Tests replace
pieces through ``reset_services``.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import structlog

from storefront.application.audit_trail import OrderAuditTrail
from storefront.application.notifications import (
    LoggingNotificationSink,
    NotificationSink,
    WebhookNotificationSink,
)
from storefront.application.order_manager import OrderManager
from storefront.application.pending_guard import PendingOrderGuard
from storefront.application.transitions import TransitionWriter
from storefront.domain.base import Clock, utc_now
from storefront.domain.value_objects import Money, PricingPolicy
from storefront.infrastructure.cart_source import CartSource, InMemoryCartSource
from storefront.infrastructure.config import settings
from storefront.infrastructure.gateway_client import PaymentGatewayClient
from storefront.infrastructure.identity import HmacIdentityProvider, IdentityProvider
from storefront.infrastructure.store import InMemoryOrderStore, OrderStore

logger = structlog.get_logger()


@dataclass
class Services:
    """The wired order engine."""

    store: OrderStore
    gateway: PaymentGatewayClient
    notifier: NotificationSink
    audit: OrderAuditTrail
    guard: PendingOrderGuard
    manager: OrderManager
    identity: IdentityProvider
    cart_source: CartSource

    async def close(self) -> None:
        await self.gateway.close()
        if isinstance(self.notifier, WebhookNotificationSink):
            await self.notifier.close()


def _build_store() -> OrderStore:
    if settings.store_backend == "sql":
        from storefront.infrastructure.database import get_session_factory
        from storefront.infrastructure.sql_store import SqlAlchemyOrderStore

        return SqlAlchemyOrderStore(get_session_factory())
    if settings.store_backend != "memory":
        raise ValueError(f"Unknown store backend: {settings.store_backend}")
    return InMemoryOrderStore()


def _build_notifier() -> NotificationSink:
    if settings.notification_webhook_url:
        return WebhookNotificationSink(
            webhook_url=settings.notification_webhook_url,
            webhook_secret=settings.notification_webhook_secret,
        )
    return LoggingNotificationSink()


def build_services(
    store: OrderStore | None = None,
    gateway: PaymentGatewayClient | None = None,
    notifier: NotificationSink | None = None,
    identity: IdentityProvider | None = None,
    cart_source: CartSource | None = None,
    clock: Clock = utc_now,
) -> Services:
    """Wire the order engine, using settings for anything not supplied."""
    store = store or _build_store()
    gateway = gateway or PaymentGatewayClient.from_settings()
    notifier = notifier or _build_notifier()
    cart_source = cart_source or InMemoryCartSource()

    audit = OrderAuditTrail(
        store,
        notifier=notifier,
        write_attempts=settings.audit_write_attempts,
        clock=clock,
    )
    writer = TransitionWriter(store, audit, notifier)
    guard = PendingOrderGuard(
        writer,
        window=timedelta(minutes=settings.pending_order_ttl_minutes),
        clock=clock,
    )
    pricing = PricingPolicy(
        tax_rate_percent=settings.tax_rate_percent,
        shipping_cost=Money(amount=settings.shipping_cost, currency=settings.currency),
    )
    manager = OrderManager(
        writer,
        guard,
        gateway,
        pricing=pricing,
        cart_source=cart_source,
        clock=clock,
    )
    return Services(
        store=store,
        gateway=gateway,
        notifier=notifier,
        audit=audit,
        guard=guard,
        manager=manager,
        identity=identity or HmacIdentityProvider(settings.identity_secret),
        cart_source=cart_source,
    )


# Global services instance
_services: Services | None = None


def get_services() -> Services:
    """Get the services singleton."""
    global _services
    if _services is None:
        _services = build_services()
        logger.info("Order services initialized", store_backend=settings.store_backend)
    return _services


def reset_services(**overrides: Any) -> Services:
    """Rebuild the services (for testing).

    Args:
        **overrides: Components passed to ``build_services``.
    """
    global _services
    _services = build_services(**overrides)
    return _services
