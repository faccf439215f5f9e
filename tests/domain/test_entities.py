"""Tests for the Order aggregate and audit entities."""

from datetime import timedelta

import pytest

from storefront.domain import (
    EXPIRY_NOTE,
    ActorType,
    CartSnapshot,
    InvalidStateError,
    Order,
    OrderCommunication,
    OrderStatus,
    OrderStatusChanged,
    OrderStatusHistoryEntry,
    PaymentStatus,
    PricingPolicy,
    ShippingTrackingEntry,
    TerminalStateError,
    ValidationError,
)
from storefront.domain.events import OrderCreated
from tests.conftest import T0


@pytest.fixture
def order(customer, shipping, cart) -> Order:
    """Create a fresh pending order."""
    return Order.create(
        customer_id="cust-1",
        customer=customer,
        shipping=shipping,
        cart=cart,
        pricing=PricingPolicy(),
        now=T0,
    )


class TestOrderCreation:
    """Tests for Order.create."""

    def test_starts_pending(self, order: Order) -> None:
        """New orders are pending/pending at version 1."""
        assert order.status == OrderStatus.PENDING
        assert order.payment_status == PaymentStatus.PENDING
        assert order.is_awaiting_payment
        assert order.version == 1
        assert order.created_at == T0

    def test_copies_cart_lines(self, order: Order, cart: CartSnapshot) -> None:
        """Lines and totals are snapshotted from the cart."""
        assert [line.product_id for line in order.lines] == ["prod-1", "prod-2"]
        assert order.item_count == 3
        assert order.totals.total.amount == 134000

    def test_records_created_event(self, order: Order) -> None:
        events = order.collect_events()
        assert len(events) == 1
        assert isinstance(events[0], OrderCreated)
        assert order.collect_events() == []

    def test_empty_cart_rejected(self, customer, shipping) -> None:
        """An empty cart cannot become an order."""
        with pytest.raises(ValidationError):
            Order.create(
                customer_id="cust-1",
                customer=customer,
                shipping=shipping,
                cart=CartSnapshot(customer_id="cust-1"),
                pricing=PricingPolicy(),
            )

    def test_cart_of_other_customer_rejected(self, customer, shipping, cart) -> None:
        with pytest.raises(ValidationError):
            Order.create(
                customer_id="cust-2",
                customer=customer,
                shipping=shipping,
                cart=cart,
                pricing=PricingPolicy(),
            )

    def test_creation_change(self, order: Order) -> None:
        """The creation history entry has no previous status."""
        change = order.creation_change()
        assert change.previous_status is None
        assert change.new_status == OrderStatus.PENDING
        assert change.actor_type == ActorType.CUSTOMER


class TestPaymentTransitions:
    """Tests for payment results applied to an order."""

    def test_approve(self, order: Order) -> None:
        """Approval moves to payment_approved and stores correlation."""
        change = order.approve_payment("tx-1", "ref-1", "auth-1", raw_payload={"a": 1}, now=T0)
        assert order.status == OrderStatus.PAYMENT_APPROVED
        assert order.payment_status == PaymentStatus.APPROVED
        assert order.reference_code == "ref-1"
        assert order.authorization_code == "auth-1"
        assert order.version == 2
        assert change.previous_status == OrderStatus.PENDING
        assert change.actor_type == ActorType.SYSTEM

    def test_reject(self, order: Order) -> None:
        """Rejection fails the order and keeps the reason."""
        order.reject_payment("Fondos insuficientes", now=T0)
        assert order.status == OrderStatus.FAILED
        assert order.payment_status == PaymentStatus.REJECTED
        assert order.payment_message == "Fondos insuficientes"

    def test_rejected_order_cannot_be_paid(self, order: Order) -> None:
        order.reject_payment("Fondos insuficientes", now=T0)
        with pytest.raises(TerminalStateError):
            order.assert_payable()

    def test_pending_charge_blocks_another(self, order: Order) -> None:
        """A charge awaiting confirmation blocks a second attempt."""
        order.record_pending_payment("tx-1", "ref-1", raw_payload={"estado": "Pendiente"}, now=T0)
        assert order.status == OrderStatus.PENDING
        assert order.has_charge_in_flight
        with pytest.raises(InvalidStateError, match="awaiting confirmation"):
            order.assert_payable()

    def test_pending_charge_without_reference_still_blocks(self, order: Order) -> None:
        order.record_pending_payment(None, None, now=T0)
        assert order.has_charge_in_flight

    def test_approve_twice_rejected(self, order: Order) -> None:
        """A settled payment cannot be settled again."""
        order.approve_payment("tx-1", "ref-1", "auth-1", now=T0)
        with pytest.raises(InvalidStateError):
            order.approve_payment("tx-1", "ref-1", "auth-1", now=T0)

    def test_status_changed_event(self, order: Order) -> None:
        order.collect_events()
        order.approve_payment("tx-1", "ref-1", "auth-1", now=T0)
        (event,) = order.collect_events()
        assert isinstance(event, OrderStatusChanged)
        assert event.new_status == "payment_approved"
        assert event.is_notifiable


class TestCancellation:
    """Tests for cancel, expire and admin transitions."""

    def test_expire(self, order: Order) -> None:
        """Expiry cancels order and payment with the system note."""
        change = order.expire(now=T0 + timedelta(minutes=31))
        assert order.status == OrderStatus.CANCELLED
        assert order.payment_status == PaymentStatus.CANCELLED
        assert change.actor_type == ActorType.SYSTEM
        assert change.notes == EXPIRY_NOTE

    def test_admin_cancel_after_approval_keeps_payment(self, order: Order) -> None:
        """Cancelling a paid order leaves the payment approved."""
        order.approve_payment("tx-1", "ref-1", "auth-1", now=T0)
        order.admin_transition(OrderStatus.CANCELLED, actor_id="admin")
        assert order.status == OrderStatus.CANCELLED
        assert order.payment_status == PaymentStatus.APPROVED

    def test_admin_jumps_without_adjacency(self, order: Order) -> None:
        """Administrators may skip fulfillment steps."""
        order.approve_payment("tx-1", "ref-1", "auth-1", now=T0)
        order.admin_transition(OrderStatus.DELIVERED, actor_id="admin")
        assert order.status == OrderStatus.DELIVERED

    def test_admin_cannot_set_payment_statuses(self, order: Order) -> None:
        with pytest.raises(InvalidStateError):
            order.admin_transition(OrderStatus.PAYMENT_APPROVED)
        with pytest.raises(InvalidStateError):
            order.admin_transition(OrderStatus.FAILED)

    def test_terminal_takes_precedence(self, order: Order) -> None:
        """A terminal order reports TerminalStateError even for bad targets."""
        order.expire(now=T0)
        with pytest.raises(TerminalStateError):
            order.admin_transition(OrderStatus.PAYMENT_APPROVED)

    def test_customer_completion(self, order: Order) -> None:
        order.approve_payment("tx-1", "ref-1", "auth-1", now=T0)
        with pytest.raises(InvalidStateError):
            order.complete_by_customer()
        order.admin_transition(OrderStatus.SHIPPED)
        change = order.complete_by_customer()
        assert order.status == OrderStatus.COMPLETED
        assert change.actor_type == ActorType.CUSTOMER

    def test_version_bumps_per_transition(self, order: Order) -> None:
        order.approve_payment("tx-1", "ref-1", "auth-1", now=T0)
        order.admin_transition(OrderStatus.PROCESSING, now=T0 + timedelta(hours=1))
        assert order.version == 3
        assert order.updated_at == T0 + timedelta(hours=1)


class TestAuditEntities:
    """Tests for history, communication and tracking entities."""

    def test_history_from_change(self, order: Order) -> None:
        change = order.approve_payment("tx-1", "ref-1", "auth-1", now=T0)
        entry = OrderStatusHistoryEntry.from_change(change)
        assert entry.order_id == str(order.id)
        assert entry.status == OrderStatus.PAYMENT_APPROVED
        assert entry.previous_status == OrderStatus.PENDING
        assert entry.created_at == T0

    def test_internal_message_hidden_from_customer(self) -> None:
        note = OrderCommunication(
            id="m1",
            order_id="o1",
            sender_id="admin",
            sender_type=ActorType.ADMIN,
            message="Check fraud score",
            is_internal=True,
        )
        assert not note.is_visible_to(ActorType.CUSTOMER)
        assert not note.is_addressed_to(ActorType.CUSTOMER)
        assert note.is_visible_to(ActorType.ADMIN)

    def test_message_addressed_to_other_party(self) -> None:
        message = OrderCommunication(
            id="m1",
            order_id="o1",
            sender_id="cust-1",
            sender_type=ActorType.CUSTOMER,
            message="¿Cuándo llega?",
        )
        assert message.is_addressed_to(ActorType.ADMIN)
        assert not message.is_addressed_to(ActorType.CUSTOMER)

    def test_tracking_requires_carrier(self) -> None:
        with pytest.raises(ValidationError):
            ShippingTrackingEntry(id="t1", order_id="o1", carrier=" ", tracking_number="123")

    def test_tracking_update(self) -> None:
        entry = ShippingTrackingEntry(
            id="t1", order_id="o1", carrier="Servientrega", tracking_number="123", created_at=T0
        )
        entry.apply_update({"location": "Bogotá", "status": None}, now=T0 + timedelta(days=1))
        assert entry.location == "Bogotá"
        assert entry.status is None
        assert entry.updated_at == T0 + timedelta(days=1)

    def test_tracking_update_rejects_unknown_fields(self) -> None:
        entry = ShippingTrackingEntry(
            id="t1", order_id="o1", carrier="Servientrega", tracking_number="123"
        )
        with pytest.raises(ValidationError):
            entry.apply_update({"order_id": "o2"})
        with pytest.raises(ValidationError):
            entry.apply_update({"carrier": ""})
