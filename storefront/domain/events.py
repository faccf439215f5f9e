"""Domain events emitted by the order aggregate.

Events are collected from the aggregate after it has been persisted and
handed to the notification sink.
"""

from dataclasses import dataclass
from typing import Any, ClassVar

from storefront.domain.base import DomainEvent


@dataclass(frozen=True)
class OrderCreated(DomainEvent):
    """Emitted when an order is created from a cart snapshot."""

    event_type: ClassVar[str] = "order.created"

    order_id: str = ""
    customer_id: str = ""
    total: int = 0
    currency: str = ""

    def _payload(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "total": self.total,
            "currency": self.currency,
        }


@dataclass(frozen=True)
class OrderStatusChanged(DomainEvent):
    """Emitted on every accepted status transition."""

    event_type: ClassVar[str] = "order.status_changed"

    order_id: str = ""
    customer_id: str = ""
    previous_status: str | None = None
    new_status: str = ""
    payment_status: str = ""
    actor_type: str = ""
    notes: str | None = None
    terminal: bool = False

    @property
    def is_notifiable(self) -> bool:
        """Terminal transitions and payment approval are announced."""
        return self.terminal or self.new_status == "payment_approved"

    def _payload(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "payment_status": self.payment_status,
            "actor_type": self.actor_type,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class CommunicationPosted(DomainEvent):
    """Emitted when a message is added to an order's conversation."""

    event_type: ClassVar[str] = "order.communication_posted"

    order_id: str = ""
    communication_id: str = ""
    sender_type: str = ""
    is_internal: bool = False

    def _payload(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "communication_id": self.communication_id,
            "sender_type": self.sender_type,
            "is_internal": self.is_internal,
        }
