"""Domain layer - order aggregate, value objects, state machine, events.

- **Entities**: Order (aggregate root) and its audit entries
- **Value Objects**: Money, cart and shipping snapshots, pricing, card data
- **State Machine**: OrderStatus / PaymentStatus and the transition table
- **Domain Events**: Emitted by the order for notification
- **Exceptions**: Business-rule violations with stable error codes

Example usage:
    from storefront.domain import CartLine, CartSnapshot, Money, PricingPolicy

    cart = CartSnapshot(
        customer_id="cust-1",
        lines=[CartLine("SKU-001", "Hoodie", 2, Money(50000), size="M")],
    )
    totals = PricingPolicy().price(cart)
    print(totals.total)  # $134,000 COP
"""

from storefront.domain.base import AggregateRoot, Clock, DomainEvent, Entity, ValueObject, utc_now
from storefront.domain.entities import (
    EXPIRY_NOTE,
    Order,
    OrderCommunication,
    OrderLine,
    OrderStatusHistoryEntry,
    ShippingTrackingEntry,
    StatusChange,
)
from storefront.domain.events import CommunicationPosted, OrderCreated, OrderStatusChanged
from storefront.domain.exceptions import (
    AuthError,
    ConcurrencyError,
    ConflictError,
    DomainError,
    EntryNotFoundError,
    GatewayUnavailableError,
    InvalidStateError,
    OrderNotFoundError,
    TerminalStateError,
    UnauthorizedError,
    ValidationError,
)
from storefront.domain.state_machines import (
    ADMIN_TARGET_STATUSES,
    TERMINAL_ORDER_STATUSES,
    ActorType,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    validate_order_transition,
)
from storefront.domain.value_objects import (
    CardData,
    CartLine,
    CartSnapshot,
    CustomerInfo,
    DocumentType,
    Money,
    OrderId,
    OrderTotals,
    PaymentCustomerData,
    PricingPolicy,
    ShippingSnapshot,
)

__all__ = [
    # Base
    "AggregateRoot",
    "Clock",
    "DomainEvent",
    "Entity",
    "ValueObject",
    "utc_now",
    # Entities
    "EXPIRY_NOTE",
    "Order",
    "OrderCommunication",
    "OrderLine",
    "OrderStatusHistoryEntry",
    "ShippingTrackingEntry",
    "StatusChange",
    # Events
    "CommunicationPosted",
    "OrderCreated",
    "OrderStatusChanged",
    # Exceptions
    "AuthError",
    "ConcurrencyError",
    "ConflictError",
    "DomainError",
    "EntryNotFoundError",
    "GatewayUnavailableError",
    "InvalidStateError",
    "OrderNotFoundError",
    "TerminalStateError",
    "UnauthorizedError",
    "ValidationError",
    # State machine
    "ADMIN_TARGET_STATUSES",
    "TERMINAL_ORDER_STATUSES",
    "ActorType",
    "OrderStatus",
    "PaymentMethod",
    "PaymentStatus",
    "validate_order_transition",
    # Value objects
    "CardData",
    "CartLine",
    "CartSnapshot",
    "CustomerInfo",
    "DocumentType",
    "Money",
    "OrderId",
    "OrderTotals",
    "PaymentCustomerData",
    "PricingPolicy",
    "ShippingSnapshot",
]
