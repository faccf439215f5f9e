"""Order audit trail.

Keeps the per-order record of what happened: one history entry per
accepted status transition, the customer/store conversation, and the
shipping tracking entries.

History writes are best-effort. A transition is already committed on
the order when its history entry is written, so a failing write is
retried and logged but never raised.
"""

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import structlog

from storefront.application.notifications import NotificationSink, dispatch
from storefront.domain.base import Clock, utc_now
from storefront.domain.entities import (
    OrderCommunication,
    OrderStatusHistoryEntry,
    ShippingTrackingEntry,
    StatusChange,
    new_entry_id,
)
from storefront.domain.events import CommunicationPosted
from storefront.domain.exceptions import EntryNotFoundError, ValidationError
from storefront.domain.state_machines import ActorType
from storefront.infrastructure.store import OrderStore

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    """One page of a read model.

    Attributes:
        items: Entries on this page.
        total: Entries across all pages.
        page: 1-based page number.
        page_size: Maximum entries per page.
    """

    items: list[T]
    total: int
    page: int
    page_size: int

    @property
    def has_more(self) -> bool:
        return self.page * self.page_size < self.total


def _offset(page: int, page_size: int) -> int:
    return (max(page, 1) - 1) * page_size


class OrderAuditTrail:
    """Writes and reads status history, communications and tracking."""

    def __init__(
        self,
        store: OrderStore,
        notifier: NotificationSink | None = None,
        write_attempts: int = 3,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize the audit trail.

        Args:
            store: Order store.
            notifier: Sink for new-message notifications.
            write_attempts: Attempts per history write before giving up.
            clock: Source of the current time.
        """
        self._store = store
        self._notifier = notifier
        self._write_attempts = max(write_attempts, 1)
        self._clock = clock

    # =========================================================================
    # Status History
    # =========================================================================

    async def record_transition(self, change: StatusChange) -> OrderStatusHistoryEntry | None:
        """Append the history entry for an accepted transition.

        Args:
            change: Transition returned by the order.

        Returns:
            The stored entry, or None if every attempt failed.
        """
        entry = OrderStatusHistoryEntry.from_change(change)
        for attempt in range(1, self._write_attempts + 1):
            try:
                await self._store.add_history_entry(entry)
                return entry
            except Exception as e:
                logger.warning(
                    "Status history write failed",
                    order_id=change.order_id,
                    status=change.new_status.value,
                    attempt=attempt,
                    error=str(e),
                )
        logger.error(
            "Status history entry dropped",
            order_id=change.order_id,
            previous_status=change.previous_status.value if change.previous_status else None,
            status=change.new_status.value,
            actor_type=change.actor_type.value,
        )
        return None

    async def status_history(
        self,
        order_id: str,
        page: int = 1,
        page_size: int = 50,
        ascending: bool = True,
    ) -> Page[OrderStatusHistoryEntry]:
        items, total = await self._store.list_history(
            order_id, offset=_offset(page, page_size), limit=page_size, ascending=ascending
        )
        return Page(items=items, total=total, page=page, page_size=page_size)

    async def update_history_notes(
        self, order_id: str, entry_id: str, notes: str | None
    ) -> OrderStatusHistoryEntry:
        """Correct the notes of a history entry.

        Raises:
            EntryNotFoundError: If the entry does not belong to the order.
        """
        entry = await self._store.get_history_entry(order_id, entry_id)
        if entry is None:
            raise EntryNotFoundError("Status history entry", entry_id)
        entry.notes = notes
        await self._store.save_history_entry(entry)
        logger.info("Status history notes updated", order_id=order_id, entry_id=entry_id)
        return entry

    # =========================================================================
    # Communications
    # =========================================================================

    async def post_communication(
        self,
        order_id: str,
        sender_id: str | None,
        sender_type: ActorType,
        message: str,
        is_internal: bool = False,
        attachments: dict[str, Any] | None = None,
    ) -> OrderCommunication:
        """Add a message to an order's conversation.

        Raises:
            ValidationError: If the message is blank or a customer tries
                to post an internal note.
        """
        if not message or not message.strip():
            raise ValidationError("Message cannot be empty", field="message")
        if is_internal and sender_type == ActorType.CUSTOMER:
            raise ValidationError("Customers cannot post internal notes", field="is_internal")

        communication = OrderCommunication(
            id=new_entry_id(),
            order_id=order_id,
            sender_id=sender_id,
            sender_type=sender_type,
            message=message.strip(),
            is_internal=is_internal,
            attachments=attachments,
            created_at=self._clock(),
        )
        await self._store.add_communication(communication)
        logger.info(
            "Communication posted",
            order_id=order_id,
            communication_id=communication.id,
            sender_type=sender_type.value,
            is_internal=is_internal,
        )
        if self._notifier is not None:
            await dispatch(
                self._notifier,
                [
                    CommunicationPosted(
                        aggregate_id=order_id,
                        order_id=order_id,
                        communication_id=communication.id,
                        sender_type=sender_type.value,
                        is_internal=is_internal,
                    )
                ],
            )
        return communication

    async def communications(
        self,
        order_id: str,
        reader_type: ActorType,
        page: int = 1,
        page_size: int = 50,
        ascending: bool = True,
    ) -> Page[OrderCommunication]:
        """Read an order's conversation. Customers never see internal notes."""
        items, total = await self._store.list_communications(
            order_id,
            include_internal=reader_type != ActorType.CUSTOMER,
            offset=_offset(page, page_size),
            limit=page_size,
            ascending=ascending,
        )
        return Page(items=items, total=total, page=page, page_size=page_size)

    async def mark_read(self, order_id: str, reader_type: ActorType) -> int:
        """Mark every message addressed to the reader as read.

        Returns:
            Number of messages marked.
        """
        return await self._store.mark_communications_read(order_id, reader_type, self._clock())

    async def unread_count(self, order_id: str, reader_type: ActorType) -> int:
        return await self._store.count_unread(order_id, reader_type)

    # =========================================================================
    # Shipping Tracking
    # =========================================================================

    async def add_tracking(
        self,
        order_id: str,
        carrier: str,
        tracking_number: str,
        created_by: str | None = None,
        **details: Any,
    ) -> ShippingTrackingEntry:
        """Record a shipping tracking entry.

        Args:
            order_id: Order being shipped.
            carrier: Carrier name.
            tracking_number: Carrier tracking number.
            created_by: Administrator recording the entry.
            **details: Optional ShippingTrackingEntry fields.

        Raises:
            ValidationError: If carrier or tracking number is blank.
        """
        now = self._clock()
        entry = ShippingTrackingEntry(
            id=new_entry_id(),
            order_id=order_id,
            carrier=carrier,
            tracking_number=tracking_number,
            created_by=created_by,
            created_at=now,
            updated_at=now,
            **{k: v for k, v in details.items() if v is not None},
        )
        await self._store.add_tracking(entry)
        logger.info(
            "Tracking entry added",
            order_id=order_id,
            tracking_id=entry.id,
            carrier=carrier,
        )
        return entry

    async def update_tracking(
        self, order_id: str, tracking_id: str, changes: dict[str, Any]
    ) -> ShippingTrackingEntry:
        """Apply a partial update to a tracking entry.

        Raises:
            EntryNotFoundError: If the entry does not belong to the order.
            ValidationError: If the update is invalid.
        """
        entry = await self._store.get_tracking(order_id, tracking_id)
        if entry is None:
            raise EntryNotFoundError("Tracking entry", tracking_id)
        entry.apply_update(changes, now=self._clock())
        await self._store.save_tracking(entry)
        return entry

    async def tracking(
        self,
        order_id: str,
        page: int = 1,
        page_size: int = 50,
        ascending: bool = False,
    ) -> Page[ShippingTrackingEntry]:
        items, total = await self._store.list_tracking(
            order_id, offset=_offset(page, page_size), limit=page_size, ascending=ascending
        )
        return Page(items=items, total=total, page=page, page_size=page_size)
