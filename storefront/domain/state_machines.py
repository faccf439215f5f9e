"""Order status state machine.

The order lifecycle is an explicit enum plus a transition table. Payment
results drive the first step out of PENDING; every later step is issued
by an administrator and is deliberately not constrained to adjacent
statuses.
"""

from enum import Enum

from storefront.domain.exceptions import InvalidStateError, TerminalStateError


# ============================================================================
# Order State Machine
# ============================================================================


class OrderStatus(str, Enum):
    """Order lifecycle states.

    State diagram:
        PENDING ──payment approved──► PAYMENT_APPROVED
          │  │                            │
          │  └──payment rejected──► FAILED │ admin
          │                                ▼
          │          PROCESSING ─► READY_TO_SHIP ─► SHIPPED ─► IN_TRANSIT
          │                                                       │
          │                                                       ▼
          │                                        DELIVERED ─► COMPLETED
          │
          └──expiry / cancel──► CANCELLED        (any non-terminal) ─► RETURNED

    Administrators may jump between any non-terminal status and any of
    the fulfillment targets; the arrows above are the usual path.
    """

    PENDING = "pending"
    PAYMENT_APPROVED = "payment_approved"
    PROCESSING = "processing"
    READY_TO_SHIP = "ready_to_ship"
    SHIPPED = "shipped"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    RETURNED = "returned"

    def can_transition_to(self, target: "OrderStatus") -> bool:
        """Check if transition to target state is valid.

        Args:
            target: Target state to transition to.

        Returns:
            True if transition is valid.
        """
        return target in _ORDER_TRANSITIONS.get(self, frozenset())

    def allowed_transitions(self) -> list["OrderStatus"]:
        """Get valid target states, in declaration order."""
        allowed = _ORDER_TRANSITIONS.get(self, frozenset())
        return [status for status in OrderStatus if status in allowed]

    def is_terminal(self) -> bool:
        """Check if this is a terminal (final) state."""
        return self in TERMINAL_ORDER_STATUSES


TERMINAL_ORDER_STATUSES: frozenset[OrderStatus] = frozenset(
    {
        OrderStatus.COMPLETED,
        OrderStatus.FAILED,
        OrderStatus.CANCELLED,
        OrderStatus.RETURNED,
    }
)

# Targets an administrator may set directly.
ADMIN_TARGET_STATUSES: frozenset[OrderStatus] = frozenset(
    {
        OrderStatus.PROCESSING,
        OrderStatus.READY_TO_SHIP,
        OrderStatus.SHIPPED,
        OrderStatus.IN_TRANSIT,
        OrderStatus.DELIVERED,
        OrderStatus.COMPLETED,
        OrderStatus.CANCELLED,
        OrderStatus.RETURNED,
    }
)

# Statuses from which the customer may confirm receipt.
CUSTOMER_COMPLETABLE_STATUSES: frozenset[OrderStatus] = frozenset(
    {
        OrderStatus.SHIPPED,
        OrderStatus.IN_TRANSIT,
        OrderStatus.DELIVERED,
    }
)


def _build_order_transitions() -> dict[OrderStatus, frozenset[OrderStatus]]:
    table: dict[OrderStatus, frozenset[OrderStatus]] = {}
    for status in OrderStatus:
        if status in TERMINAL_ORDER_STATUSES:
            table[status] = frozenset()
        else:
            table[status] = ADMIN_TARGET_STATUSES - {status}
    table[OrderStatus.PENDING] = table[OrderStatus.PENDING] | {
        OrderStatus.PAYMENT_APPROVED,
        OrderStatus.FAILED,
    }
    return table


# Order state transitions (defined outside enum to avoid Enum restrictions)
_ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = _build_order_transitions()


# ============================================================================
# Payment Status
# ============================================================================


class PaymentStatus(str, Enum):
    """Payment lifecycle states.

    PENDING is the only non-final state. Once a payment is approved,
    rejected or cancelled it never changes again.
    """

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"

    def is_final(self) -> bool:
        """Check if the payment outcome is settled."""
        return self is not PaymentStatus.PENDING


class ActorType(str, Enum):
    """Who caused a status change or wrote a message."""

    CUSTOMER = "customer"
    ADMIN = "admin"
    SYSTEM = "system"


class PaymentMethod(str, Enum):
    """How the customer intends to pay. Stored, never interpreted."""

    EPAYCO = "epayco"
    WHATSAPP = "whatsapp"
    OTHER = "other"


# ============================================================================
# Transition Validation
# ============================================================================


def validate_order_transition(
    order_id: str,
    current: OrderStatus,
    target: OrderStatus,
) -> None:
    """Validate an order state transition.

    Args:
        order_id: Order ID for error message.
        current: Current order status.
        target: Target order status.

    Raises:
        TerminalStateError: If the order is already in a terminal status.
        InvalidStateError: If the transition is not in the table, including
            a transition to the current status.
    """
    if current.is_terminal():
        raise TerminalStateError(order_id, current.value, target.value)
    if current == target:
        raise InvalidStateError(
            order_id, current.value, target.value, reason="order is already in that status"
        )
    if not current.can_transition_to(target):
        raise InvalidStateError(order_id, current.value, target.value)
