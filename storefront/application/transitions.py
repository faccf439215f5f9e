"""Committing order transitions.

Every accepted transition is persisted the same way: save the order
with its version check, append the history entry, then announce the
events the order recorded. Events committed while an order lock is held
through ``TransitionWriter.locked`` are announced once the lock is
released.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar

import structlog

from storefront.application.audit_trail import OrderAuditTrail
from storefront.application.notifications import NotificationSink, dispatch
from storefront.domain.base import DomainEvent
from storefront.domain.entities import Order, StatusChange
from storefront.domain.exceptions import OrderNotFoundError
from storefront.infrastructure.store import OrderStore

logger = structlog.get_logger()

_outbox: ContextVar[list[DomainEvent] | None] = ContextVar("transition_outbox", default=None)


async def load_order(store: OrderStore, order_id: str, customer_id: str | None = None) -> Order:
    """Load an order, optionally checking that the customer owns it.

    Raises:
        OrderNotFoundError: If the order does not exist or belongs to
            another customer.
    """
    order = await store.get_order(order_id)
    if order is None or (customer_id is not None and order.customer_id != customer_id):
        raise OrderNotFoundError(order_id)
    return order


class TransitionWriter:
    """Persists orders after a transition and records the consequences."""

    def __init__(
        self,
        store: OrderStore,
        audit: OrderAuditTrail,
        notifier: NotificationSink | None = None,
    ) -> None:
        self.store = store
        self.audit = audit
        self.notifier = notifier

    @asynccontextmanager
    async def deferred_notifications(self) -> AsyncIterator[None]:
        """Hold back events committed inside the block until it exits.

        Nested blocks share the outermost block's queue.
        """
        if _outbox.get() is not None:
            yield
            return
        queued: list[DomainEvent] = []
        token = _outbox.set(queued)
        try:
            yield
        finally:
            _outbox.reset(token)
            await self._announce(queued)

    @asynccontextmanager
    async def locked(self, order_id: str) -> AsyncIterator[None]:
        """Hold the order's lock; its notifications go out after release."""
        async with self.deferred_notifications(), self.store.lock_order(order_id):
            yield

    async def commit(
        self,
        order: Order,
        expected_version: int,
        change: StatusChange | None = None,
    ) -> None:
        """Save the order and, for a transition, audit and announce it.

        Args:
            order: Mutated order.
            expected_version: Version the order had when it was loaded.
            change: Transition applied to the order, if any.

        Raises:
            ConcurrencyError: If the order was saved by someone else first.
        """
        await self.store.save_order(order, expected_version=expected_version)
        events = order.collect_events()
        if change is None:
            return
        logger.info(
            "Order status changed",
            order_id=change.order_id,
            previous_status=change.previous_status.value if change.previous_status else None,
            status=change.new_status.value,
            payment_status=order.payment_status.value,
            actor_type=change.actor_type.value,
        )
        await self.audit.record_transition(change)
        queued = _outbox.get()
        if queued is not None:
            queued.extend(events)
        else:
            await self._announce(events)

    async def _announce(self, events: list[DomainEvent]) -> None:
        if self.notifier is not None and events:
            await dispatch(self.notifier, events)
