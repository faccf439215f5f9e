"""Shared fixtures for the order engine tests."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from storefront.application.audit_trail import OrderAuditTrail
from storefront.application.notifications import RecordingNotificationSink
from storefront.application.order_manager import OrderManager
from storefront.application.pending_guard import PendingOrderGuard
from storefront.application.transitions import TransitionWriter
from storefront.domain.value_objects import (
    CardData,
    CartLine,
    CartSnapshot,
    CustomerInfo,
    DocumentType,
    Money,
    PricingPolicy,
    ShippingSnapshot,
)
from storefront.infrastructure.cart_source import InMemoryCartSource
from storefront.infrastructure.gateway_client import (
    Approved,
    ChargeResult,
    PaymentGatewayClient,
    SessionToken,
)
from storefront.infrastructure.store import InMemoryOrderStore

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable clock."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class ScriptedGateway(PaymentGatewayClient):
    """Gateway that answers charges and lookups from a script.

    Signature checking stays real; configure ``p_cust_id_cliente`` and
    ``p_key`` to turn it on.
    """

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(
            api_url="https://gateway.test",
            validation_url="https://validation.test",
            public_key="pub",
            private_key="priv",
            **kwargs,
        )
        self.charge_results: list[ChargeResult] = []
        self.lookup_results: list[ChargeResult] = []
        self.charge_calls: list[dict[str, Any]] = []
        self.lookup_calls: list[str] = []
        self.auth_error: Exception | None = None
        self.delay = 0.0

    async def authenticate(self, public_key: str | None = None, private_key: str | None = None) -> SessionToken:
        if self.auth_error is not None:
            raise self.auth_error
        return SessionToken(value="session-token")

    async def charge(self, session, order_total, card, customer, order_id=None, customer_id=None) -> ChargeResult:
        self.charge_calls.append(
            {"order_id": order_id, "amount": order_total.amount, "customer": customer}
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.charge_results:
            return self.charge_results.pop(0)
        return Approved(transaction_id="tx-1", reference_code="ref-1", authorization_code="auth-1")

    async def lookup_transaction(self, reference_code: str) -> ChargeResult:
        self.lookup_calls.append(reference_code)
        return self.lookup_results.pop(0)


# ============================================================================
# Domain Fixtures
# ============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def shipping() -> ShippingSnapshot:
    return ShippingSnapshot(
        full_name="Ana María Restrepo",
        phone="3001234567",
        email="ana@example.com",
        document_type=DocumentType.CC,
        document_number="1020304050",
        address="Calle 10 # 43-12",
        city="Medellín",
        department="Antioquia",
        neighborhood="El Poblado",
    )


@pytest.fixture
def customer() -> CustomerInfo:
    return CustomerInfo(email="ana@example.com", name="Ana María Restrepo", phone="3001234567")


@pytest.fixture
def cart() -> CartSnapshot:
    """Cart with a 100,000 COP subtotal."""
    return CartSnapshot(
        customer_id="cust-1",
        lines=(
            CartLine(
                product_id="prod-1",
                product_name="Camiseta básica",
                quantity=2,
                unit_price=Money(amount=30000),
                size="M",
            ),
            CartLine(
                product_id="prod-2",
                product_name="Gorra",
                quantity=1,
                unit_price=Money(amount=40000),
            ),
        ),
    )


@pytest.fixture
def card() -> CardData:
    return CardData(number="4575623182290326", exp_month="12", exp_year="29", cvc="123")


@pytest.fixture
def pricing() -> PricingPolicy:
    return PricingPolicy()


# ============================================================================
# Engine Fixtures
# ============================================================================


@pytest.fixture
def store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def notifier() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def gateway() -> ScriptedGateway:
    return ScriptedGateway()


@pytest.fixture
def audit(store, notifier, clock) -> OrderAuditTrail:
    return OrderAuditTrail(store, notifier=notifier, clock=clock)


@pytest.fixture
def writer(store, audit, notifier) -> TransitionWriter:
    return TransitionWriter(store, audit, notifier)


@pytest.fixture
def guard(writer, clock) -> PendingOrderGuard:
    return PendingOrderGuard(writer, window=timedelta(minutes=30), clock=clock)


@pytest.fixture
def cart_source() -> InMemoryCartSource:
    return InMemoryCartSource()


@pytest.fixture
def manager(writer, guard, gateway, pricing, cart_source, clock) -> OrderManager:
    return OrderManager(
        writer,
        guard,
        gateway,
        pricing=pricing,
        cart_source=cart_source,
        clock=clock,
    )


@pytest.fixture
def place_order(manager, customer, shipping, cart):
    """Create an order for ``cust-1`` (or another customer)."""

    async def _place(customer_id: str = "cust-1"):
        snapshot = CartSnapshot(customer_id=customer_id, lines=cart.lines)
        return await manager.create_order(customer_id, customer, shipping, cart=snapshot)

    return _place
