"""Value Objects for the domain layer.

Value objects are immutable objects that are defined by their attributes
rather than identity. Everything an order snapshots at creation time
(cart lines, shipping data, customer contact, totals) lives here.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Self
from uuid import UUID, uuid4

from storefront.domain.base import ValueObject
from storefront.domain.exceptions import (
    CurrencyMismatchError,
    NegativeMoneyError,
    ValidationError,
)

DEFAULT_CURRENCY = "COP"


# ============================================================================
# Typed Identifiers
# ============================================================================


@dataclass(frozen=True)
class OrderId(ValueObject):
    """Strongly-typed order identifier."""

    value: UUID

    @classmethod
    def generate(cls) -> Self:
        """Generate a new order ID."""
        return cls(value=uuid4())

    @classmethod
    def from_string(cls, value: str) -> Self:
        """Create OrderId from string representation.

        Args:
            value: String UUID representation.

        Returns:
            OrderId instance.

        Raises:
            ValidationError: If the value is not a UUID.
        """
        try:
            return cls(value=UUID(value))
        except (ValueError, AttributeError, TypeError) as e:
            raise ValidationError(f"Invalid order id: {value!r}", field="order_id") from e

    def __str__(self) -> str:
        return str(self.value)


# ============================================================================
# Money Value Object
# ============================================================================


@dataclass(frozen=True)
class Money(ValueObject):
    """Monetary value in whole currency units.

    Colombian pesos have no minor unit in practice, so amounts are plain
    integers of pesos.

    Attributes:
        amount: Amount in whole currency units.
        currency: ISO 4217 currency code.
    """

    amount: int
    currency: str = DEFAULT_CURRENCY

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise NegativeMoneyError(self.amount)
        object.__setattr__(self, "currency", self.currency.upper())

    @classmethod
    def zero(cls, currency: str = DEFAULT_CURRENCY) -> Self:
        """Create zero amount money."""
        return cls(amount=0, currency=currency)

    def __add__(self, other: "Money") -> "Money":
        """Add two money amounts.

        Raises:
            CurrencyMismatchError: If currencies don't match.
        """
        if self.currency != other.currency:
            raise CurrencyMismatchError(self.currency, other.currency)
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def __mul__(self, quantity: int) -> "Money":
        return Money(amount=self.amount * quantity, currency=self.currency)

    def __rmul__(self, quantity: int) -> "Money":
        return self.__mul__(quantity)

    def percent(self, rate_percent: int | Decimal) -> "Money":
        """Take a percentage, rounded half-up to the nearest unit.

        Args:
            rate_percent: Percentage to apply (19 means 19%).

        Returns:
            New Money with the rounded share.
        """
        share = (Decimal(self.amount) * Decimal(rate_percent) / Decimal(100)).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
        return Money(amount=int(share), currency=self.currency)

    def __str__(self) -> str:
        return f"${self.amount:,} {self.currency}"


# ============================================================================
# Cart Snapshot
# ============================================================================


@dataclass(frozen=True)
class CartLine(ValueObject):
    """One line of the customer's cart at checkout time.

    Attributes:
        product_id: Catalog product identifier.
        product_name: Display name at checkout time.
        quantity: Units ordered, at least one.
        unit_price: Price per unit at checkout time.
        size: Selected size, if the product has sizes.
    """

    product_id: str
    product_name: str
    quantity: int
    unit_price: Money
    size: str | None = None

    def __post_init__(self) -> None:
        if not self.product_id or not str(self.product_id).strip():
            raise ValidationError("Cart line is missing a product id", field="product_id")
        if self.quantity < 1:
            raise ValidationError(
                f"Quantity for product {self.product_id} must be at least 1",
                field="quantity",
            )

    @property
    def line_total(self) -> Money:
        """Unit price multiplied by quantity."""
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class CartSnapshot(ValueObject):
    """Immutable list of cart lines, taken at order creation.

    Attributes:
        customer_id: Owner of the cart.
        lines: Cart lines, in the order the customer added them.
    """

    customer_id: str
    lines: tuple[CartLine, ...] = ()

    def __post_init__(self) -> None:
        # Accept any iterable but store a tuple so the snapshot stays frozen.
        object.__setattr__(self, "lines", tuple(self.lines))

    @property
    def is_empty(self) -> bool:
        return len(self.lines) == 0

    def subtotal(self, currency: str = DEFAULT_CURRENCY) -> Money:
        """Sum of all line totals."""
        total = Money.zero(currency)
        for line in self.lines:
            total = total + line.line_total
        return total


# ============================================================================
# Pricing
# ============================================================================


@dataclass(frozen=True)
class OrderTotals(ValueObject):
    """Monetary breakdown of an order.

    Attributes:
        subtotal: Sum of line totals.
        tax: Tax on the subtotal.
        shipping_cost: Flat shipping charge.
        total: subtotal + tax + shipping_cost.
    """

    subtotal: Money
    tax: Money
    shipping_cost: Money
    total: Money

    def __post_init__(self) -> None:
        expected = self.subtotal + self.tax + self.shipping_cost
        if expected != self.total:
            raise ValueError(
                f"Order total {self.total.amount} does not equal "
                f"subtotal + tax + shipping ({expected.amount})"
            )


@dataclass(frozen=True)
class PricingPolicy(ValueObject):
    """Single-jurisdiction pricing: a flat tax rate and flat shipping.

    Attributes:
        tax_rate_percent: Tax rate applied to the subtotal, in percent.
        shipping_cost: Shipping charged once per order.
    """

    tax_rate_percent: int = 19
    shipping_cost: Money = field(default_factory=lambda: Money(amount=15000))

    def price(self, cart: CartSnapshot) -> OrderTotals:
        """Compute totals for a cart snapshot.

        Args:
            cart: Cart to price.

        Returns:
            OrderTotals with tax rounded half-up to whole units.
        """
        subtotal = cart.subtotal(self.shipping_cost.currency)
        tax = subtotal.percent(self.tax_rate_percent)
        return OrderTotals(
            subtotal=subtotal,
            tax=tax,
            shipping_cost=self.shipping_cost,
            total=subtotal + tax + self.shipping_cost,
        )


# ============================================================================
# Customer & Shipping Snapshots
# ============================================================================


class DocumentType(str, Enum):
    """Colombian identity document types accepted at checkout."""

    CC = "cc"
    CE = "ce"
    NIT = "nit"
    PASSPORT = "passport"


@dataclass(frozen=True)
class CustomerInfo(ValueObject):
    """Contact details of the customer placing the order.

    Attributes:
        email: Customer email.
        name: Customer name (optional).
        phone: Customer phone (optional).
    """

    email: str
    name: str | None = None
    phone: str | None = None

    def __post_init__(self) -> None:
        if not self.email or "@" not in self.email:
            raise ValidationError("A valid customer email is required", field="email")


@dataclass(frozen=True)
class ShippingSnapshot(ValueObject):
    """Shipping data captured at checkout. Never mutated afterwards.

    Attributes:
        full_name: Recipient name.
        phone: Recipient phone.
        email: Recipient email.
        document_type: Identity document type.
        document_number: Identity document number.
        address: Street address.
        city: City.
        department: Department (region).
        postal_code: Postal code (optional).
        neighborhood: Neighborhood (optional).
        additional_info: Apartment, tower, etc. (optional).
        notes: Free-text delivery notes (optional).
    """

    full_name: str
    phone: str
    email: str
    document_type: DocumentType
    document_number: str
    address: str
    city: str
    department: str
    postal_code: str | None = None
    neighborhood: str | None = None
    additional_info: str | None = None
    notes: str | None = None

    _REQUIRED = (
        "full_name",
        "phone",
        "email",
        "document_number",
        "address",
        "city",
        "department",
    )

    def __post_init__(self) -> None:
        for name in self._REQUIRED:
            value = getattr(self, name)
            if not value or not str(value).strip():
                raise ValidationError(f"Shipping field '{name}' is required", field=name)
        if "@" not in self.email:
            raise ValidationError("Shipping email is invalid", field="email")
        if not isinstance(self.document_type, DocumentType):
            try:
                object.__setattr__(
                    self, "document_type", DocumentType(str(self.document_type).lower())
                )
            except ValueError as e:
                raise ValidationError(
                    f"Unknown document type: {self.document_type}", field="document_type"
                ) from e

    def one_line_address(self) -> str:
        """Address formatted for the payment processor."""
        parts = [self.address, self.neighborhood, self.city, self.department]
        return ", ".join(part for part in parts if part)


# ============================================================================
# Payment Inputs
# ============================================================================


_DIGITS = re.compile(r"^\d+$")


@dataclass(frozen=True, repr=False)
class CardData(ValueObject):
    """Card details for a single charge. Never persisted.

    Attributes:
        number: Card number (spaces and dashes allowed on input).
        exp_month: Expiry month, 1-12.
        exp_year: Expiry year, two or four digits.
        cvc: Card verification code.
        installments: Number of installments ("dues"), at least one.
    """

    number: str
    exp_month: str
    exp_year: str
    cvc: str
    installments: int = 1

    def __post_init__(self) -> None:
        number = re.sub(r"[\s-]", "", str(self.number))
        if not _DIGITS.match(number) or not 13 <= len(number) <= 19:
            raise ValidationError("Card number is invalid", field="card_number")
        object.__setattr__(self, "number", number)

        month = str(self.exp_month).strip()
        if not _DIGITS.match(month) or not 1 <= int(month) <= 12:
            raise ValidationError("Card expiry month is invalid", field="card_exp_month")
        object.__setattr__(self, "exp_month", month.zfill(2))

        year = str(self.exp_year).strip()
        if not _DIGITS.match(year) or len(year) not in (2, 4):
            raise ValidationError("Card expiry year is invalid", field="card_exp_year")
        object.__setattr__(self, "exp_year", year)

        cvc = str(self.cvc).strip()
        if not _DIGITS.match(cvc) or len(cvc) not in (3, 4):
            raise ValidationError("Card CVC is invalid", field="card_cvc")
        object.__setattr__(self, "cvc", cvc)

        if self.installments < 1:
            raise ValidationError("Installments must be at least 1", field="installments")

    @property
    def bin(self) -> str:
        """First six digits, the only part of the number safe to log."""
        return self.number[:6]

    @property
    def full_exp_year(self) -> str:
        """Four-digit expiry year; two-digit years are in the current century."""
        if len(self.exp_year) == 2:
            century = datetime.now(timezone.utc).year // 100
            return f"{century}{self.exp_year}"
        return self.exp_year

    def __repr__(self) -> str:
        return f"CardData(bin={self.bin!r}, exp={self.exp_month}/{self.exp_year})"


@dataclass(frozen=True)
class PaymentCustomerData(ValueObject):
    """Payer details sent to the processor along with a charge.

    Every field is optional; missing values are filled from the order's
    shipping snapshot before the charge is built.
    """

    name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    cell_phone: str | None = None
    document_type: str | None = None
    document_number: str | None = None
    address: str | None = None
    ip: str | None = None
