"""Domain entities and aggregate roots.

The Order aggregate owns the order lifecycle. Every status change goes
through one of its transition methods, which validate against the state
machine, bump ``updated_at``/``version`` and return a StatusChange for
the audit trail.

The audit entities (status history, communications, shipping tracking)
belong to an order but are stored and read independently of it.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from storefront.domain.base import AggregateRoot, Entity, utc_now
from storefront.domain.events import OrderCreated, OrderStatusChanged
from storefront.domain.exceptions import (
    InvalidStateError,
    TerminalStateError,
    ValidationError,
)
from storefront.domain.state_machines import (
    ADMIN_TARGET_STATUSES,
    CUSTOMER_COMPLETABLE_STATUSES,
    ActorType,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    validate_order_transition,
)
from storefront.domain.value_objects import (
    CartLine,
    CartSnapshot,
    CustomerInfo,
    Money,
    OrderId,
    OrderTotals,
    PricingPolicy,
    ShippingSnapshot,
)

EXPIRY_NOTE = "Cancelled automatically: payment window expired"


def new_entry_id() -> str:
    """Generate an identifier for audit entries."""
    return str(uuid4())


# ============================================================================
# Status Change
# ============================================================================


@dataclass(frozen=True)
class StatusChange:
    """Result of an accepted status transition.

    Attributes:
        order_id: Order that changed.
        previous_status: Status before the change, None for creation.
        new_status: Status after the change.
        actor_type: Who caused the change.
        actor_id: Identifier of the actor, if any.
        notes: Free-text explanation recorded in the history.
        occurred_at: When the change was applied.
    """

    order_id: str
    previous_status: OrderStatus | None
    new_status: OrderStatus
    actor_type: ActorType
    actor_id: str | None = None
    notes: str | None = None
    occurred_at: datetime = field(default_factory=utc_now)


# ============================================================================
# Order Aggregate Root
# ============================================================================


@dataclass(frozen=True)
class OrderLine:
    """A line item in an order, copied from the cart at creation.

    Attributes:
        product_id: Product identifier.
        product_name: Product name at time of order.
        quantity: Ordered quantity.
        unit_price: Price per unit at time of order.
        size: Selected size, if any.
    """

    product_id: str
    product_name: str
    quantity: int
    unit_price: Money
    size: str | None = None

    @property
    def line_total(self) -> Money:
        return self.unit_price * self.quantity

    @classmethod
    def from_cart_line(cls, line: CartLine) -> "OrderLine":
        """Create an order line snapshot from a cart line."""
        return cls(
            product_id=line.product_id,
            product_name=line.product_name,
            quantity=line.quantity,
            unit_price=line.unit_price,
            size=line.size,
        )


@dataclass(kw_only=True, eq=False)
class Order(AggregateRoot[OrderId]):
    """Order aggregate root.

    Attributes:
        id: Unique order identifier.
        customer_id: Owning customer.
        customer: Customer contact details.
        shipping: Shipping snapshot taken at checkout.
        lines: Order lines copied from the cart.
        totals: Subtotal, tax, shipping and total.
        status: Current order status.
        payment_status: Current payment status.
        payment_method: Payment method chosen at checkout.
        transaction_id: Processor transaction identifier.
        reference_code: Processor reference (ref_payco).
        authorization_code: Authorization code of an approved charge.
        gateway_payload: Last raw processor payload, kept for audit only.
        payment_message: Last processor reason text shown to the customer.
    """

    id: OrderId
    customer_id: str
    customer: CustomerInfo
    shipping: ShippingSnapshot
    totals: OrderTotals
    lines: tuple[OrderLine, ...] = ()
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_method: PaymentMethod = PaymentMethod.EPAYCO
    transaction_id: str | None = None
    reference_code: str | None = None
    authorization_code: str | None = None
    gateway_payload: dict[str, Any] | None = None
    payment_message: str | None = None

    @classmethod
    def create(
        cls,
        customer_id: str,
        customer: CustomerInfo,
        shipping: ShippingSnapshot,
        cart: CartSnapshot,
        pricing: PricingPolicy,
        payment_method: PaymentMethod = PaymentMethod.EPAYCO,
        now: datetime | None = None,
        order_id: OrderId | None = None,
    ) -> "Order":
        """Create a pending order from a cart snapshot.

        Args:
            customer_id: Owning customer.
            customer: Customer contact details.
            shipping: Shipping snapshot.
            cart: Cart to copy lines from.
            pricing: Pricing policy for tax and shipping.
            payment_method: Chosen payment method.
            now: Creation time (defaults to current UTC time).
            order_id: Optional pre-generated order ID.

        Returns:
            New Order in PENDING / PENDING.

        Raises:
            ValidationError: If the cart is empty or belongs to someone else.
        """
        if cart.is_empty:
            raise ValidationError("Cannot create an order from an empty cart", field="items")
        if cart.customer_id != customer_id:
            raise ValidationError("Cart does not belong to this customer", field="customer_id")

        created_at = now or utc_now()
        order = cls(
            id=order_id or OrderId.generate(),
            customer_id=customer_id,
            customer=customer,
            shipping=shipping,
            totals=pricing.price(cart),
            lines=tuple(OrderLine.from_cart_line(line) for line in cart.lines),
            payment_method=payment_method,
            created_at=created_at,
            updated_at=created_at,
        )
        order._record_event(
            OrderCreated(
                aggregate_id=str(order.id),
                order_id=str(order.id),
                customer_id=customer_id,
                total=order.totals.total.amount,
                currency=order.totals.total.currency,
            )
        )
        return order

    def creation_change(self) -> StatusChange:
        """The history entry describing the order's creation."""
        return StatusChange(
            order_id=str(self.id),
            previous_status=None,
            new_status=OrderStatus.PENDING,
            actor_type=ActorType.CUSTOMER,
            actor_id=self.customer_id,
            notes="Order created",
            occurred_at=self.created_at,
        )

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def is_awaiting_payment(self) -> bool:
        """True while the order holds the customer's pending-order slot."""
        return (
            self.status == OrderStatus.PENDING
            and self.payment_status == PaymentStatus.PENDING
        )

    @property
    def has_charge_in_flight(self) -> bool:
        """True when a charge was accepted as pending and awaits confirmation."""
        return self.is_awaiting_payment and self.gateway_payload is not None

    def assert_payable(self) -> None:
        """Check that a charge may be attempted now.

        Raises:
            TerminalStateError: If the order is in a terminal status.
            InvalidStateError: If the order is not awaiting payment, or a
                previous charge is still awaiting confirmation.
        """
        if self.status.is_terminal():
            raise TerminalStateError(str(self.id), self.status.value, "pay")
        if not self.is_awaiting_payment:
            raise InvalidStateError(
                str(self.id),
                self.status.value,
                "pay",
                reason=f"payment is already {self.payment_status.value}",
            )
        if self.has_charge_in_flight:
            charge = self.reference_code or self.transaction_id
            raise InvalidStateError(
                str(self.id),
                self.status.value,
                "pay",
                reason=f"charge {charge or 'in flight'} is awaiting confirmation",
            )

    # -------------------------------------------------------------------------
    # Payment Transitions
    # -------------------------------------------------------------------------

    def approve_payment(
        self,
        transaction_id: str | None,
        reference_code: str | None,
        authorization_code: str | None,
        raw_payload: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> StatusChange:
        """Record an approved payment.

        Raises:
            TerminalStateError: If the order is terminal.
            InvalidStateError: If the payment is already settled.
        """
        self._require_pending_payment("approve_payment")
        self.transaction_id = transaction_id or self.transaction_id
        self.reference_code = reference_code or self.reference_code
        self.authorization_code = authorization_code
        self.gateway_payload = raw_payload
        self.payment_message = None
        return self._transition(
            OrderStatus.PAYMENT_APPROVED,
            payment_status=PaymentStatus.APPROVED,
            actor_type=ActorType.SYSTEM,
            notes=_join_note("Payment approved", reference_code),
            now=now,
        )

    def reject_payment(
        self,
        reason: str | None,
        raw_payload: dict[str, Any] | None = None,
        transaction_id: str | None = None,
        reference_code: str | None = None,
        now: datetime | None = None,
    ) -> StatusChange:
        """Record a rejected or failed payment. The order cannot be paid again.

        Raises:
            TerminalStateError: If the order is terminal.
            InvalidStateError: If the payment is already settled.
        """
        self._require_pending_payment("reject_payment")
        self.transaction_id = transaction_id or self.transaction_id
        self.reference_code = reference_code or self.reference_code
        self.gateway_payload = raw_payload
        self.payment_message = reason
        return self._transition(
            OrderStatus.FAILED,
            payment_status=PaymentStatus.REJECTED,
            actor_type=ActorType.SYSTEM,
            notes=_join_note("Payment rejected", reason),
            now=now,
        )

    def record_pending_payment(
        self,
        transaction_id: str | None,
        reference_code: str | None,
        raw_payload: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> None:
        """Store correlation data for a charge awaiting confirmation.

        No status transition happens.
        """
        self._require_pending_payment("record_pending_payment")
        self.transaction_id = transaction_id or self.transaction_id
        self.reference_code = reference_code or self.reference_code
        self.gateway_payload = raw_payload or {}
        self._touch(now)

    # -------------------------------------------------------------------------
    # Cancellation & Fulfillment
    # -------------------------------------------------------------------------

    def cancel(
        self,
        actor_type: ActorType,
        actor_id: str | None = None,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> StatusChange:
        """Cancel the order. An unsettled payment is cancelled with it.

        Raises:
            TerminalStateError: If the order is terminal.
        """
        payment_status = self.payment_status
        if payment_status == PaymentStatus.PENDING:
            payment_status = PaymentStatus.CANCELLED
        return self._transition(
            OrderStatus.CANCELLED,
            payment_status=payment_status,
            actor_type=actor_type,
            actor_id=actor_id,
            notes=notes,
            now=now,
        )

    def expire(self, now: datetime | None = None) -> StatusChange:
        """Cancel an order whose payment window has elapsed."""
        return self.cancel(ActorType.SYSTEM, notes=EXPIRY_NOTE, now=now)

    def admin_transition(
        self,
        target: OrderStatus,
        actor_id: str | None = None,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> StatusChange:
        """Apply an administrator-issued status change.

        Any fulfillment target is accepted from any non-terminal status.

        Raises:
            TerminalStateError: If the order is terminal.
            InvalidStateError: If the target is not an administrator target
                or equals the current status.
        """
        if self.status.is_terminal():
            raise TerminalStateError(str(self.id), self.status.value, target.value)
        if target not in ADMIN_TARGET_STATUSES:
            raise InvalidStateError(
                str(self.id),
                self.status.value,
                target.value,
                reason="status is set by the payment flow only",
            )
        if target == OrderStatus.CANCELLED:
            return self.cancel(ActorType.ADMIN, actor_id=actor_id, notes=notes, now=now)
        return self._transition(
            target,
            payment_status=self.payment_status,
            actor_type=ActorType.ADMIN,
            actor_id=actor_id,
            notes=notes,
            now=now,
        )

    def complete_by_customer(
        self,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> StatusChange:
        """Customer confirms the order arrived.

        Raises:
            TerminalStateError: If the order is terminal.
            InvalidStateError: If the order has not shipped yet.
        """
        if self.status.is_terminal():
            raise TerminalStateError(str(self.id), self.status.value, OrderStatus.COMPLETED.value)
        if self.status not in CUSTOMER_COMPLETABLE_STATUSES:
            raise InvalidStateError(
                str(self.id),
                self.status.value,
                OrderStatus.COMPLETED.value,
                reason="only shipped or delivered orders can be completed",
            )
        return self._transition(
            OrderStatus.COMPLETED,
            payment_status=self.payment_status,
            actor_type=ActorType.CUSTOMER,
            actor_id=self.customer_id,
            notes=notes or "Order received by customer",
            now=now,
        )

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _require_pending_payment(self, operation: str) -> None:
        if self.status.is_terminal():
            raise TerminalStateError(str(self.id), self.status.value, operation)
        if self.payment_status.is_final():
            raise InvalidStateError(
                str(self.id),
                self.status.value,
                operation,
                reason=f"payment is already {self.payment_status.value}",
            )

    def _transition(
        self,
        target: OrderStatus,
        payment_status: PaymentStatus,
        actor_type: ActorType,
        actor_id: str | None = None,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> StatusChange:
        validate_order_transition(str(self.id), self.status, target)
        occurred_at = now or utc_now()
        previous = self.status
        self.status = target
        self.payment_status = payment_status
        self._touch(occurred_at)
        self._record_event(
            OrderStatusChanged(
                aggregate_id=str(self.id),
                occurred_at=occurred_at,
                order_id=str(self.id),
                customer_id=self.customer_id,
                previous_status=previous.value,
                new_status=target.value,
                payment_status=payment_status.value,
                actor_type=actor_type.value,
                notes=notes,
                terminal=target.is_terminal(),
            )
        )
        return StatusChange(
            order_id=str(self.id),
            previous_status=previous,
            new_status=target,
            actor_type=actor_type,
            actor_id=actor_id,
            notes=notes,
            occurred_at=occurred_at,
        )


def _join_note(prefix: str, detail: str | None) -> str:
    return f"{prefix}: {detail}" if detail else prefix


# ============================================================================
# Audit Entities
# ============================================================================


@dataclass(eq=False)
class OrderStatusHistoryEntry(Entity[str]):
    """One accepted status transition. Append-only apart from notes.

    Attributes:
        id: Entry identifier.
        order_id: Order the entry belongs to.
        status: Status after the transition.
        previous_status: Status before the transition, None for creation.
        notes: Free-text notes; administrators may correct them.
        actor_type: Who caused the transition.
        actor_id: Identifier of the actor.
        created_at: When the transition happened.
    """

    order_id: str
    status: OrderStatus
    previous_status: OrderStatus | None = None
    notes: str | None = None
    actor_type: ActorType = ActorType.SYSTEM
    actor_id: str | None = None
    created_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_change(cls, change: StatusChange) -> "OrderStatusHistoryEntry":
        return cls(
            id=new_entry_id(),
            order_id=change.order_id,
            status=change.new_status,
            previous_status=change.previous_status,
            notes=change.notes,
            actor_type=change.actor_type,
            actor_id=change.actor_id,
            created_at=change.occurred_at,
        )


@dataclass(eq=False)
class OrderCommunication(Entity[str]):
    """A message between the customer and the store about an order.

    Attributes:
        id: Message identifier.
        order_id: Order the message belongs to.
        sender_id: Identifier of the sender.
        sender_type: Customer, admin or system.
        message: Message body.
        is_internal: Internal notes are never shown to the customer.
        is_read: Whether the recipient has read the message.
        read_at: When the recipient read the message.
        attachments: Optional attachment descriptor.
        created_at: When the message was posted.
    """

    order_id: str
    sender_id: str | None
    sender_type: ActorType
    message: str
    is_internal: bool = False
    is_read: bool = False
    read_at: datetime | None = None
    attachments: dict[str, Any] | None = None
    created_at: datetime = field(default_factory=utc_now)

    def is_visible_to(self, reader_type: ActorType) -> bool:
        return reader_type != ActorType.CUSTOMER or not self.is_internal

    def is_addressed_to(self, reader_type: ActorType) -> bool:
        """A reader is addressed by messages from the other party."""
        if not self.is_visible_to(reader_type):
            return False
        if reader_type == ActorType.CUSTOMER:
            return self.sender_type != ActorType.CUSTOMER
        return self.sender_type == ActorType.CUSTOMER

    def mark_read(self, now: datetime | None = None) -> None:
        self.is_read = True
        self.read_at = now or utc_now()


@dataclass(eq=False)
class ShippingTrackingEntry(Entity[str]):
    """A shipping event recorded by the store.

    Attributes:
        id: Entry identifier.
        order_id: Order being shipped.
        carrier: Carrier name.
        tracking_number: Carrier tracking number.
        carrier_service: Service level (optional).
        status: Carrier-side status text (optional).
        status_description: Human description of the status (optional).
        estimated_delivery: Estimated delivery time (optional).
        actual_delivery: Actual delivery time (optional).
        location: Last known location (optional).
        notes: Internal notes (optional).
        image_urls: Photos of the package or receipt.
        created_by: Administrator who recorded the entry.
        created_at: Creation timestamp.
        updated_at: Last update timestamp.
    """

    order_id: str
    carrier: str
    tracking_number: str
    carrier_service: str | None = None
    status: str | None = None
    status_description: str | None = None
    estimated_delivery: datetime | None = None
    actual_delivery: datetime | None = None
    location: str | None = None
    notes: str | None = None
    image_urls: list[str] = field(default_factory=list)
    created_by: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    UPDATABLE_FIELDS = frozenset(
        {
            "carrier",
            "tracking_number",
            "carrier_service",
            "status",
            "status_description",
            "estimated_delivery",
            "actual_delivery",
            "location",
            "notes",
            "image_urls",
        }
    )

    def __post_init__(self) -> None:
        if not self.carrier or not self.carrier.strip():
            raise ValidationError("Carrier is required", field="carrier")
        if not self.tracking_number or not self.tracking_number.strip():
            raise ValidationError("Tracking number is required", field="tracking_number")

    def apply_update(self, changes: dict[str, Any], now: datetime | None = None) -> None:
        """Apply a partial update.

        Args:
            changes: Field values to set; None values are ignored.
            now: Update time.

        Raises:
            ValidationError: If an unknown field is given or a required
                field is blanked.
        """
        unknown = set(changes) - self.UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown tracking fields: {sorted(unknown)}")
        for name, value in changes.items():
            if value is None:
                continue
            if name in ("carrier", "tracking_number") and not str(value).strip():
                raise ValidationError(f"{name} cannot be empty", field=name)
            setattr(self, name, value)
        self.updated_at = now or utc_now()
