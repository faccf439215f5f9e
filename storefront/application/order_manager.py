"""Order manager.

The only component that creates orders and drives them through payment.
Work on one order (charging, gateway confirmations, administrator
transitions) is serialized with the store's per-order lock, and order
creation with the per-customer lock, so two concurrent payment attempts
can never both reach the processor.
"""

from dataclasses import dataclass
from typing import Any

import structlog

from storefront.application.audit_trail import OrderAuditTrail, Page
from storefront.application.pending_guard import Expired, PendingOrderGuard
from storefront.application.transitions import TransitionWriter, load_order
from storefront.domain.base import Clock, utc_now
from storefront.domain.entities import (
    Order,
    OrderCommunication,
    OrderStatusHistoryEntry,
    ShippingTrackingEntry,
    StatusChange,
)
from storefront.domain.exceptions import (
    GatewayUnavailableError,
    InvalidStateError,
    UnauthorizedError,
    ValidationError,
)
from storefront.domain.state_machines import (
    ActorType,
    OrderStatus,
    PaymentMethod,
)
from storefront.domain.value_objects import (
    CardData,
    CartSnapshot,
    CustomerInfo,
    PaymentCustomerData,
    PricingPolicy,
    ShippingSnapshot,
)
from storefront.infrastructure.cart_source import CartSource
from storefront.infrastructure.gateway_client import (
    Approved,
    ChargeResult,
    GatewayError,
    GatewayFailure,
    Pending,
    PaymentGatewayClient,
    Rejected,
    classify_confirmation,
)

logger = structlog.get_logger()


# ============================================================================
# Results
# ============================================================================


PENDING_MESSAGE = (
    "Your payment is awaiting confirmation from the processor. "
    "Your order will be updated as soon as it is confirmed."
)
UNCONFIRMED_MESSAGE = (
    "We could not confirm your payment with the processor. "
    "Your order will be updated as soon as the processor confirms it."
)
UNREACHABLE_MESSAGE = (
    "We could not reach the payment processor and your card was not charged. "
    "Please try again in a few minutes."
)
RETRY_MESSAGE = "Please create a new order to try again."


def customer_message(result: ChargeResult) -> str:
    """Customer-facing text for a charge result.

    Rejections show the processor's reason verbatim when it gave one.
    """
    if isinstance(result, Approved):
        reference = result.reference_code or result.transaction_id
        return f"Payment approved. Reference: {reference}." if reference else "Payment approved."
    if isinstance(result, Pending):
        return PENDING_MESSAGE
    if isinstance(result, Rejected):
        reason = (result.reason_text or "Your payment was rejected").rstrip(".")
        return f"{reason}. {RETRY_MESSAGE}"
    if result.failure == GatewayFailure.UNREACHABLE:
        return UNREACHABLE_MESSAGE
    if result.failure == GatewayFailure.UNCONFIRMED:
        return UNCONFIRMED_MESSAGE
    return f"We could not process your payment. {RETRY_MESSAGE}"


@dataclass(frozen=True)
class PaymentOutcome:
    """Result of a payment attempt.

    Attributes:
        order: The order after the result was applied.
        result: Classified processor result.
        message: Text to show the customer.
    """

    order: Order
    result: ChargeResult
    message: str

    @property
    def approved(self) -> bool:
        return isinstance(self.result, Approved)

    @property
    def error_code(self) -> str | None:
        """Error code for unsuccessful attempts, None otherwise."""
        if isinstance(self.result, Rejected):
            return "PAYMENT_REJECTED"
        if isinstance(self.result, GatewayError):
            return "GATEWAY_ERROR"
        return None

    @property
    def is_gateway_fault(self) -> bool:
        """True when the processor failed us rather than declining the card."""
        return isinstance(self.result, GatewayError) and not self.result.is_final


@dataclass(frozen=True)
class CallbackOutcome:
    """Result of reconciling one gateway confirmation.

    Attributes:
        status: ``applied`` (terminal transition), ``pending`` (correlation
            stored), ``noop`` (nothing to do) or ``ignored`` (no order).
        order_id: Order the confirmation referred to, if found.
        detail: Short explanation for logs and responses.
    """

    status: str
    order_id: str | None = None
    detail: str = ""


# ============================================================================
# Manager
# ============================================================================


class OrderManager:
    """Creates orders, takes payments and applies order transitions."""

    def __init__(
        self,
        writer: TransitionWriter,
        guard: PendingOrderGuard,
        gateway: PaymentGatewayClient,
        pricing: PricingPolicy | None = None,
        cart_source: CartSource | None = None,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize the manager.

        Args:
            writer: Persists transitions (store, audit trail, notifier).
            guard: Pending order guard.
            gateway: Payment gateway client.
            pricing: Tax and shipping policy.
            cart_source: Source of cart snapshots when none is supplied.
            clock: Source of the current time.
        """
        self._writer = writer
        self._store = writer.store
        self._audit: OrderAuditTrail = writer.audit
        self._guard = guard
        self._gateway = gateway
        self._pricing = pricing or PricingPolicy()
        self._cart_source = cart_source
        self._clock = clock

    @property
    def audit(self) -> OrderAuditTrail:
        return self._audit

    @property
    def guard(self) -> PendingOrderGuard:
        return self._guard

    # =========================================================================
    # Creation
    # =========================================================================

    async def create_order(
        self,
        customer_id: str,
        customer: CustomerInfo,
        shipping: ShippingSnapshot,
        cart: CartSnapshot | None = None,
        payment_method: PaymentMethod = PaymentMethod.EPAYCO,
    ) -> Order:
        """Create a pending order from the customer's cart.

        Args:
            customer_id: Customer placing the order.
            customer: Contact details.
            shipping: Shipping snapshot.
            cart: Cart snapshot; read from the cart source when omitted.
            payment_method: Chosen payment method.

        Returns:
            The new order in PENDING / PENDING.

        Raises:
            ConflictError: If the customer already has a live pending order.
            ValidationError: If the cart is empty or unavailable.
        """
        if cart is None:
            if self._cart_source is None:
                raise ValidationError("No cart was supplied", field="items")
            cart = await self._cart_source.get_cart_snapshot(customer_id)

        async with self._writer.deferred_notifications(), self._store.lock_customer(customer_id):
            await self._guard.reserve(customer_id)
            order = Order.create(
                customer_id=customer_id,
                customer=customer,
                shipping=shipping,
                cart=cart,
                pricing=self._pricing,
                payment_method=payment_method,
                now=self._clock(),
            )
            await self._store.add_order(order)
            order.collect_events()

        await self._audit.record_transition(order.creation_change())
        logger.info(
            "Order created",
            order_id=str(order.id),
            customer_id=customer_id,
            item_count=order.item_count,
            subtotal=order.totals.subtotal.amount,
            tax=order.totals.tax.amount,
            total=order.totals.total.amount,
        )
        return order

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_order(self, order_id: str, customer_id: str | None = None) -> Order:
        """Load an order, expiring it first if its payment window elapsed.

        Raises:
            OrderNotFoundError: If the order is not visible to the caller.
        """
        async with self._writer.locked(order_id):
            order = await load_order(self._store, order_id, customer_id)
            await self._guard.check_and_expire(order)
            return order

    async def list_orders(
        self,
        customer_id: str | None = None,
        status: OrderStatus | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Page[Order]:
        """List orders, newest first, expiring stale pending ones on the page.

        Orders expired here drop out of a status filter they no longer match.
        """
        offset = (max(page, 1) - 1) * page_size
        orders, total = await self._store.list_orders(
            customer_id=customer_id, status=status, offset=offset, limit=page_size
        )
        now = self._clock()
        items: list[Order] = []
        for order in orders:
            if order.is_awaiting_payment and isinstance(self._guard.evaluate(order, now), Expired):
                order = await self.get_order(str(order.id))
                if status is not None and order.status != status:
                    total -= 1
                    continue
            items.append(order)
        return Page(items=items, total=total, page=page, page_size=page_size)

    # =========================================================================
    # Payment
    # =========================================================================

    async def pay_order(
        self,
        order_id: str,
        card: CardData,
        customer_data: PaymentCustomerData | None = None,
        customer_id: str | None = None,
    ) -> PaymentOutcome:
        """Charge the card for a pending order and apply the result.

        The order lock is held across both gateway calls, so a second
        attempt on the same order waits and then finds it settled or
        awaiting confirmation.

        A login that never reaches the processor leaves the order payable.
        A charge whose answer is lost (timeout, transport error, non-2xx)
        leaves the order pending and awaiting confirmation, since the
        processor may still approve it through a callback. Only an answer
        with an unrecognized status fails the order.

        Args:
            order_id: Order to pay.
            card: Card details (never stored).
            customer_data: Payer details; gaps are filled from the order.
            customer_id: When given, the order must belong to this customer.

        Returns:
            PaymentOutcome with the updated order and customer message.

        Raises:
            OrderNotFoundError: If the order is not visible to the caller.
            InvalidStateError: If the order is not awaiting payment, its
                window has expired, or a charge awaits confirmation.
            TerminalStateError: If the order is terminal.
            AuthError: If the gateway refuses the merchant credentials.
        """
        async with self._writer.locked(order_id):
            order = await load_order(self._store, order_id, customer_id)
            state = await self._guard.check_and_expire(order)
            if isinstance(state, Expired):
                raise InvalidStateError(
                    order_id, order.status.value, "pay", reason="payment window expired"
                )
            order.assert_payable()

            log = logger.bind(order_id=order_id, customer_id=order.customer_id)
            result: ChargeResult
            try:
                session = await self._gateway.authenticate()
            except GatewayUnavailableError as e:
                result = GatewayError(
                    message=e.message, raw_payload=e.details, failure=GatewayFailure.UNREACHABLE
                )
            else:
                result = await self._gateway.charge(
                    session,
                    order.totals.total,
                    card,
                    self._payer_details(order, customer_data),
                    order_id=order_id,
                    customer_id=order.customer_id,
                )
            await self._apply_result(order, result)
            log.info(
                "Payment attempt finished",
                result=type(result).__name__,
                status=order.status.value,
                payment_status=order.payment_status.value,
            )
            return PaymentOutcome(order=order, result=result, message=customer_message(result))

    async def record_gateway_callback(self, payload: dict[str, Any]) -> CallbackOutcome:
        """Reconcile an asynchronous confirmation from the processor.

        Confirmations for unknown orders, settled payments and
        unrecognized results are logged and ignored. At most one terminal
        payment transition is ever applied to an order.

        Raises:
            UnauthorizedError: If signature checking is configured and the
                confirmation's signature does not match.
        """
        if not self._gateway.verify_confirmation_signature(payload):
            logger.warning(
                "Gateway confirmation signature mismatch",
                reference_code=payload.get("x_ref_payco"),
            )
            raise UnauthorizedError("Invalid confirmation signature")

        result = classify_confirmation(payload)
        order = await self._locate(payload)
        if order is None:
            logger.warning(
                "Gateway confirmation for unknown order",
                order_id=payload.get("x_extra1"),
                reference_code=payload.get("x_ref_payco"),
            )
            return CallbackOutcome(status="ignored", detail="order not found")

        order_id = str(order.id)
        async with self._writer.locked(order_id):
            order = await load_order(self._store, order_id)
            return await self._reconcile(order, result, source="callback")

    async def refresh_payment(self, order_id: str, customer_id: str | None = None) -> Order:
        """Ask the processor for the state of a charge awaiting confirmation.

        Lookup failures leave the order untouched.
        """
        async with self._writer.locked(order_id):
            order = await load_order(self._store, order_id, customer_id)
            await self._guard.check_and_expire(order)
            if not order.has_charge_in_flight or not order.reference_code:
                return order
            result = await self._gateway.lookup_transaction(order.reference_code)
            if isinstance(result, GatewayError):
                logger.warning(
                    "Payment lookup failed",
                    order_id=order_id,
                    reference_code=order.reference_code,
                    error=result.message,
                )
                return order
            await self._reconcile(order, result, source="lookup")
            return order

    # =========================================================================
    # Administration & Fulfillment
    # =========================================================================

    async def change_status(
        self,
        order_id: str,
        target: OrderStatus,
        actor_id: str | None = None,
        notes: str | None = None,
    ) -> Order:
        """Apply an administrator-issued status change.

        Raises:
            OrderNotFoundError: If the order does not exist.
            InvalidStateError: If the target is not allowed.
            TerminalStateError: If the order is terminal.
        """
        async with self._writer.locked(order_id):
            order = await load_order(self._store, order_id)
            await self._guard.check_and_expire(order)
            expected = order.version
            change = order.admin_transition(target, actor_id=actor_id, notes=notes, now=self._clock())
            await self._writer.commit(order, expected, change)
            return order

    async def complete_order(
        self, order_id: str, customer_id: str, notes: str | None = None
    ) -> Order:
        """Customer confirms receipt of a shipped or delivered order."""
        async with self._writer.locked(order_id):
            order = await load_order(self._store, order_id, customer_id)
            expected = order.version
            change = order.complete_by_customer(notes=notes, now=self._clock())
            await self._writer.commit(order, expected, change)
            return order

    async def cancel_order(
        self,
        order_id: str,
        actor_type: ActorType,
        actor_id: str | None = None,
        customer_id: str | None = None,
        notes: str | None = None,
    ) -> Order:
        """Cancel an order that is still awaiting payment."""
        return await self._guard.cancel(
            order_id,
            actor_type,
            actor_id=actor_id,
            customer_id=customer_id,
            notes=notes,
        )

    async def add_tracking(
        self,
        order_id: str,
        carrier: str,
        tracking_number: str,
        created_by: str | None = None,
        order_status: OrderStatus | None = None,
        **details: Any,
    ) -> tuple[ShippingTrackingEntry, Order]:
        """Record a tracking entry, optionally moving the order along.

        Args:
            order_id: Order being shipped.
            carrier: Carrier name.
            tracking_number: Carrier tracking number.
            created_by: Administrator recording the entry.
            order_status: Status to move the order to, under the same lock.
            **details: Optional tracking fields.

        Returns:
            The new tracking entry and the order.

        Raises:
            ValidationError: If carrier or tracking number is blank.
            InvalidStateError: If the order failed or was cancelled.
        """
        if not carrier or not carrier.strip():
            raise ValidationError("Carrier is required", field="carrier")
        if not tracking_number or not tracking_number.strip():
            raise ValidationError("Tracking number is required", field="tracking_number")

        async with self._writer.locked(order_id):
            order = await load_order(self._store, order_id)
            await self._guard.check_and_expire(order)
            if order.status in (OrderStatus.FAILED, OrderStatus.CANCELLED):
                raise InvalidStateError(
                    order_id,
                    order.status.value,
                    "add_tracking",
                    reason="failed or cancelled orders are not shipped",
                )
            change: StatusChange | None = None
            expected = order.version
            if order_status is not None and order_status != order.status:
                change = order.admin_transition(
                    order_status,
                    actor_id=created_by,
                    notes=f"Tracking {tracking_number} ({carrier})",
                    now=self._clock(),
                )
                await self._writer.commit(order, expected, change)
            entry = await self._audit.add_tracking(
                order_id, carrier, tracking_number, created_by=created_by, **details
            )
            return entry, order

    async def update_tracking(
        self, order_id: str, tracking_id: str, changes: dict[str, Any]
    ) -> ShippingTrackingEntry:
        await load_order(self._store, order_id)
        return await self._audit.update_tracking(order_id, tracking_id, changes)

    async def post_message(
        self,
        order_id: str,
        sender_id: str | None,
        sender_type: ActorType,
        message: str,
        is_internal: bool = False,
        attachments: dict[str, Any] | None = None,
        customer_id: str | None = None,
    ) -> OrderCommunication:
        """Post a message on an order the sender can see."""
        await load_order(self._store, order_id, customer_id)
        return await self._audit.post_communication(
            order_id,
            sender_id=sender_id,
            sender_type=sender_type,
            message=message,
            is_internal=is_internal,
            attachments=attachments,
        )

    async def update_history_notes(
        self, order_id: str, entry_id: str, notes: str | None
    ) -> OrderStatusHistoryEntry:
        await load_order(self._store, order_id)
        return await self._audit.update_history_notes(order_id, entry_id, notes)

    # =========================================================================
    # Internals
    # =========================================================================

    async def _locate(self, payload: dict[str, Any]) -> Order | None:
        order_id = payload.get("x_extra1")
        if order_id:
            order = await self._store.get_order(str(order_id))
            if order is not None:
                return order
        reference = payload.get("x_ref_payco")
        if reference:
            return await self._store.find_by_reference(str(reference))
        return None

    async def _apply_result(self, order: Order, result: ChargeResult) -> None:
        """Apply a classified result to an order awaiting payment. Lock held."""
        now = self._clock()
        expected = order.version
        change: StatusChange | None = None
        if isinstance(result, Approved):
            change = order.approve_payment(
                result.transaction_id,
                result.reference_code,
                result.authorization_code,
                raw_payload=result.raw_payload,
                now=now,
            )
        elif isinstance(result, Rejected):
            change = order.reject_payment(
                result.reason_text,
                raw_payload=result.raw_payload,
                transaction_id=result.transaction_id,
                reference_code=result.reference_code,
                now=now,
            )
        elif isinstance(result, GatewayError):
            if result.failure == GatewayFailure.UNREACHABLE:
                return
            if result.is_final:
                change = order.reject_payment(result.message, raw_payload=result.raw_payload, now=now)
            else:
                # The charge may have gone through; only a confirmation settles it.
                order.record_pending_payment(
                    None,
                    None,
                    raw_payload={"gateway_error": result.message, **result.raw_payload},
                    now=now,
                )
        else:
            order.record_pending_payment(
                result.transaction_id,
                result.reference_code,
                raw_payload=result.raw_payload,
                now=now,
            )
        await self._writer.commit(order, expected, change)

    async def _reconcile(self, order: Order, result: ChargeResult, source: str) -> CallbackOutcome:
        """Apply an out-of-band result. Lock held."""
        order_id = str(order.id)
        log = logger.bind(order_id=order_id, source=source, result=type(result).__name__)

        state = await self._guard.check_and_expire(order)
        if not order.is_awaiting_payment:
            if isinstance(state, Expired) and isinstance(result, Approved):
                log.warning("Approval arrived after the order expired; needs manual review")
            else:
                log.info("Confirmation for settled order ignored", payment_status=order.payment_status.value)
            return CallbackOutcome(status="noop", order_id=order_id, detail="payment already settled")

        if isinstance(result, GatewayError):
            log.warning("Unrecognized confirmation ignored", error=result.message)
            return CallbackOutcome(status="noop", order_id=order_id, detail="unrecognized result")

        await self._apply_result(order, result)
        if isinstance(result, Pending):
            return CallbackOutcome(status="pending", order_id=order_id, detail="awaiting confirmation")
        log.info("Confirmation applied", status=order.status.value)
        return CallbackOutcome(status="applied", order_id=order_id, detail=order.payment_status.value)

    @staticmethod
    def _payer_details(order: Order, data: PaymentCustomerData | None) -> PaymentCustomerData:
        data = data or PaymentCustomerData()
        first_name, _, last_name = order.shipping.full_name.strip().partition(" ")
        phone = data.phone or order.shipping.phone
        return PaymentCustomerData(
            name=data.name or first_name,
            last_name=data.last_name or last_name,
            email=data.email or order.customer.email,
            phone=phone,
            cell_phone=data.cell_phone or phone,
            document_type=data.document_type or order.shipping.document_type.value,
            document_number=data.document_number or order.shipping.document_number,
            address=data.address or order.shipping.one_line_address(),
            ip=data.ip,
        )
