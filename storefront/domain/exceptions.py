"""Domain exceptions.

Every business-rule violation raised by the order engine derives from
DomainError. Each class carries a stable ``error_code`` that the HTTP
layer exposes to clients unchanged.
"""

from typing import Any


class DomainError(Exception):
    """Base class for all domain exceptions."""

    error_code = "DOMAIN_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize domain error.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(DomainError):
    """Raised when input data is malformed or incomplete."""

    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message, details={"field": field} if field else {})
        self.field = field


# ============================================================================
# State Machine Errors
# ============================================================================


class InvalidStateError(DomainError):
    """Raised when an operation is not legal in the order's current state.

    Covers disallowed targets, self-transitions and payment attempts on
    orders that are no longer awaiting payment.
    """

    error_code = "INVALID_STATE"

    def __init__(
        self,
        order_id: str,
        current_status: str,
        target: str,
        reason: str | None = None,
    ) -> None:
        """Initialize invalid state error.

        Args:
            order_id: ID of the order.
            current_status: Status the order is in.
            target: Requested target status or operation name.
            reason: Optional explanation appended to the message.
        """
        message = f"Order {order_id} cannot move from '{current_status}' to '{target}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            details={
                "order_id": order_id,
                "current_status": current_status,
                "target": target,
            },
        )
        self.order_id = order_id
        self.current_status = current_status
        self.target = target


class TerminalStateError(DomainError):
    """Raised when a transition out of a terminal status is attempted."""

    error_code = "TERMINAL_STATE"

    def __init__(self, order_id: str, current_status: str, target: str) -> None:
        super().__init__(
            f"Order {order_id} is in terminal status '{current_status}' "
            f"and cannot move to '{target}'",
            details={
                "order_id": order_id,
                "current_status": current_status,
                "target": target,
            },
        )
        self.order_id = order_id
        self.current_status = current_status


# ============================================================================
# Order Errors
# ============================================================================


class ConflictError(DomainError):
    """Raised when a customer already holds an unexpired pending order."""

    error_code = "PENDING_ORDER_EXISTS"

    def __init__(self, customer_id: str, existing_order_id: str, remaining_ms: int) -> None:
        """Initialize conflict error.

        Args:
            customer_id: Customer attempting to create an order.
            existing_order_id: The pending order blocking creation.
            remaining_ms: Milliseconds until the existing order expires.
        """
        super().__init__(
            f"Customer {customer_id} already has a pending order {existing_order_id}",
            details={
                "existing_order_id": existing_order_id,
                "remaining_ms": remaining_ms,
            },
        )
        self.customer_id = customer_id
        self.existing_order_id = existing_order_id
        self.remaining_ms = remaining_ms


class OrderNotFoundError(DomainError):
    """Raised when an order does not exist or is not visible to the caller."""

    error_code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str) -> None:
        super().__init__(f"Order {order_id} not found", details={"order_id": order_id})
        self.order_id = order_id


class EntryNotFoundError(DomainError):
    """Raised when a history, communication or tracking entry is missing."""

    error_code = "ENTRY_NOT_FOUND"

    def __init__(self, kind: str, entry_id: str) -> None:
        super().__init__(
            f"{kind} {entry_id} not found",
            details={"kind": kind, "entry_id": entry_id},
        )


class ConcurrencyError(DomainError):
    """Raised when an order was modified by someone else since it was read."""

    error_code = "CONCURRENT_MODIFICATION"

    def __init__(self, order_id: str, expected_version: int) -> None:
        super().__init__(
            f"Order {order_id} was modified concurrently (expected version {expected_version})",
            details={"order_id": order_id, "expected_version": expected_version},
        )


# ============================================================================
# Authentication Errors
# ============================================================================


class AuthError(DomainError):
    """Raised when the payment gateway rejects or lacks merchant credentials."""

    error_code = "GATEWAY_AUTH_FAILED"


class GatewayUnavailableError(DomainError):
    """Raised when the payment gateway cannot be reached or times out."""

    error_code = "GATEWAY_ERROR"


class UnauthorizedError(DomainError):
    """Raised when a caller's identity cannot be established."""

    error_code = "UNAUTHORIZED"


# ============================================================================
# Money Errors
# ============================================================================


class MoneyError(DomainError):
    """Base class for money-related errors."""

    error_code = "INVALID_AMOUNT"


class CurrencyMismatchError(MoneyError):
    """Raised when attempting to combine money with different currencies."""

    def __init__(self, currency1: str, currency2: str) -> None:
        super().__init__(
            f"Cannot combine money with different currencies: {currency1} and {currency2}",
            details={"currency1": currency1, "currency2": currency2},
        )


class NegativeMoneyError(MoneyError):
    """Raised when attempting to create money with negative amount."""

    def __init__(self, amount: int) -> None:
        super().__init__(
            f"Money amount cannot be negative: {amount}",
            details={"amount": amount},
        )
