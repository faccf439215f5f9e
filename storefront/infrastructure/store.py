"""Order persistence contract and the in-memory implementation.

The store persists orders and their audit entries. It also hands out the
process-local locks that serialize work on one order (payment,
callbacks, transitions) and on one customer (order creation).

``save_order`` is a compare-and-set on ``Order.version`` so writers in
other processes cannot silently overwrite each other.
"""

import asyncio
import copy
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime
from typing import Protocol

import structlog

from storefront.domain.entities import (
    Order,
    OrderCommunication,
    OrderStatusHistoryEntry,
    ShippingTrackingEntry,
)
from storefront.domain.exceptions import ConcurrencyError, OrderNotFoundError
from storefront.domain.state_machines import ActorType, OrderStatus

logger = structlog.get_logger()


# ============================================================================
# Keyed Locks
# ============================================================================


class KeyedLocks:
    """A registry of asyncio locks, one per key.

    Locks are created on demand and dropped once nobody holds or waits
    for them, so the registry does not grow with the number of orders.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)


# ============================================================================
# Store Protocol
# ============================================================================


class OrderStore(Protocol):
    """Persistence for orders and their audit entries."""

    # Locks

    def lock_order(self, order_id: str) -> AbstractAsyncContextManager[None]: ...

    def lock_customer(self, customer_id: str) -> AbstractAsyncContextManager[None]: ...

    # Orders

    async def add_order(self, order: Order) -> None: ...

    async def get_order(self, order_id: str) -> Order | None: ...

    async def save_order(self, order: Order, expected_version: int) -> None: ...

    async def find_by_reference(self, reference_code: str) -> Order | None: ...

    async def find_awaiting_payment(self, customer_id: str | None = None) -> list[Order]: ...

    async def list_orders(
        self,
        customer_id: str | None = None,
        status: OrderStatus | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Order], int]: ...

    # Status history

    async def add_history_entry(self, entry: OrderStatusHistoryEntry) -> None: ...

    async def get_history_entry(
        self, order_id: str, entry_id: str
    ) -> OrderStatusHistoryEntry | None: ...

    async def save_history_entry(self, entry: OrderStatusHistoryEntry) -> None: ...

    async def list_history(
        self, order_id: str, offset: int = 0, limit: int = 50, ascending: bool = True
    ) -> tuple[list[OrderStatusHistoryEntry], int]: ...

    # Communications

    async def add_communication(self, communication: OrderCommunication) -> None: ...

    async def list_communications(
        self,
        order_id: str,
        include_internal: bool = False,
        offset: int = 0,
        limit: int = 50,
        ascending: bool = True,
    ) -> tuple[list[OrderCommunication], int]: ...

    async def mark_communications_read(
        self, order_id: str, reader_type: ActorType, now: datetime
    ) -> int: ...

    async def count_unread(self, order_id: str, reader_type: ActorType) -> int: ...

    # Shipping tracking

    async def add_tracking(self, entry: ShippingTrackingEntry) -> None: ...

    async def get_tracking(self, order_id: str, tracking_id: str) -> ShippingTrackingEntry | None: ...

    async def save_tracking(self, entry: ShippingTrackingEntry) -> None: ...

    async def list_tracking(
        self, order_id: str, offset: int = 0, limit: int = 50, ascending: bool = True
    ) -> tuple[list[ShippingTrackingEntry], int]: ...


def _page(items: list, offset: int, limit: int) -> tuple[list, int]:
    return items[offset : offset + limit], len(items)


def _by_created_at(items: list, ascending: bool) -> list:
    # Ties keep insertion order, reversed for descending reads.
    ordered = sorted(items, key=lambda item: item.created_at)
    if not ascending:
        ordered.reverse()
    return ordered


# ============================================================================
# In-Memory Store
# ============================================================================


class InMemoryOrderStore:
    """In-memory order store.

    Orders are deep-copied on the way in and out, so an order loaded by
    one caller is never shared with another and unsaved mutations stay
    invisible, the same as with a database.
    """

    def __init__(self) -> None:
        self._orders: dict[str, Order] = {}
        self._history: dict[str, list[OrderStatusHistoryEntry]] = {}
        self._communications: dict[str, list[OrderCommunication]] = {}
        self._tracking: dict[str, list[ShippingTrackingEntry]] = {}
        self._order_locks = KeyedLocks()
        self._customer_locks = KeyedLocks()

    def lock_order(self, order_id: str) -> AbstractAsyncContextManager[None]:
        return self._order_locks.hold(order_id)

    def lock_customer(self, customer_id: str) -> AbstractAsyncContextManager[None]:
        return self._customer_locks.hold(customer_id)

    @staticmethod
    def _snapshot(order: Order) -> Order:
        stored = copy.deepcopy(order)
        stored.collect_events()
        return stored

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    async def add_order(self, order: Order) -> None:
        self._orders[str(order.id)] = self._snapshot(order)
        logger.debug("Order stored", order_id=str(order.id))

    async def get_order(self, order_id: str) -> Order | None:
        order = self._orders.get(order_id)
        return copy.deepcopy(order) if order else None

    async def save_order(self, order: Order, expected_version: int) -> None:
        """Replace the stored order if nobody saved it since it was loaded.

        Raises:
            OrderNotFoundError: If the order was never added.
            ConcurrencyError: If the stored version differs from
                ``expected_version``.
        """
        order_id = str(order.id)
        stored = self._orders.get(order_id)
        if stored is None:
            raise OrderNotFoundError(order_id)
        if stored.version != expected_version:
            raise ConcurrencyError(order_id, expected_version)
        self._orders[order_id] = self._snapshot(order)

    async def find_by_reference(self, reference_code: str) -> Order | None:
        for order in self._orders.values():
            if order.reference_code == reference_code:
                return copy.deepcopy(order)
        return None

    async def find_awaiting_payment(self, customer_id: str | None = None) -> list[Order]:
        return [
            copy.deepcopy(order)
            for order in self._orders.values()
            if order.is_awaiting_payment
            and (customer_id is None or order.customer_id == customer_id)
        ]

    async def list_orders(
        self,
        customer_id: str | None = None,
        status: OrderStatus | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Order], int]:
        orders = [
            order
            for order in self._orders.values()
            if (customer_id is None or order.customer_id == customer_id)
            and (status is None or order.status == status)
        ]
        page, total = _page(_by_created_at(orders, ascending=False), offset, limit)
        return [copy.deepcopy(o) for o in page], total

    # -------------------------------------------------------------------------
    # Status History
    # -------------------------------------------------------------------------

    async def add_history_entry(self, entry: OrderStatusHistoryEntry) -> None:
        self._history.setdefault(entry.order_id, []).append(copy.copy(entry))

    async def get_history_entry(
        self, order_id: str, entry_id: str
    ) -> OrderStatusHistoryEntry | None:
        for entry in self._history.get(order_id, []):
            if entry.id == entry_id:
                return copy.copy(entry)
        return None

    async def save_history_entry(self, entry: OrderStatusHistoryEntry) -> None:
        entries = self._history.get(entry.order_id, [])
        for index, existing in enumerate(entries):
            if existing.id == entry.id:
                entries[index] = copy.copy(entry)
                return

    async def list_history(
        self, order_id: str, offset: int = 0, limit: int = 50, ascending: bool = True
    ) -> tuple[list[OrderStatusHistoryEntry], int]:
        entries = _by_created_at(self._history.get(order_id, []), ascending)
        page, total = _page(entries, offset, limit)
        return [copy.copy(e) for e in page], total

    # -------------------------------------------------------------------------
    # Communications
    # -------------------------------------------------------------------------

    async def add_communication(self, communication: OrderCommunication) -> None:
        self._communications.setdefault(communication.order_id, []).append(
            copy.deepcopy(communication)
        )

    async def list_communications(
        self,
        order_id: str,
        include_internal: bool = False,
        offset: int = 0,
        limit: int = 50,
        ascending: bool = True,
    ) -> tuple[list[OrderCommunication], int]:
        messages = [
            m
            for m in self._communications.get(order_id, [])
            if include_internal or not m.is_internal
        ]
        page, total = _page(_by_created_at(messages, ascending), offset, limit)
        return [copy.deepcopy(m) for m in page], total

    async def mark_communications_read(
        self, order_id: str, reader_type: ActorType, now: datetime
    ) -> int:
        marked = 0
        for message in self._communications.get(order_id, []):
            if not message.is_read and message.is_addressed_to(reader_type):
                message.mark_read(now)
                marked += 1
        return marked

    async def count_unread(self, order_id: str, reader_type: ActorType) -> int:
        return sum(
            1
            for message in self._communications.get(order_id, [])
            if not message.is_read and message.is_addressed_to(reader_type)
        )

    # -------------------------------------------------------------------------
    # Shipping Tracking
    # -------------------------------------------------------------------------

    async def add_tracking(self, entry: ShippingTrackingEntry) -> None:
        self._tracking.setdefault(entry.order_id, []).append(copy.deepcopy(entry))

    async def get_tracking(self, order_id: str, tracking_id: str) -> ShippingTrackingEntry | None:
        for entry in self._tracking.get(order_id, []):
            if entry.id == tracking_id:
                return copy.deepcopy(entry)
        return None

    async def save_tracking(self, entry: ShippingTrackingEntry) -> None:
        entries = self._tracking.get(entry.order_id, [])
        for index, existing in enumerate(entries):
            if existing.id == entry.id:
                entries[index] = copy.deepcopy(entry)
                return

    async def list_tracking(
        self, order_id: str, offset: int = 0, limit: int = 50, ascending: bool = True
    ) -> tuple[list[ShippingTrackingEntry], int]:
        entries = _by_created_at(self._tracking.get(order_id, []), ascending)
        page, total = _page(entries, offset, limit)
        return [copy.deepcopy(e) for e in page], total
