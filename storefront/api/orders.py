"""Customer order API endpoints.

Provides endpoints for the customer side of the order lifecycle:
- POST /orders - create an order from the cart
- GET /orders - list the customer's orders (paginated)
- GET /orders/pending - the pending order and its countdown
- GET /orders/{id} - order details
- POST /orders/{id}/pay - pay a pending order by card
- GET /orders/{id}/payment - refresh the payment state from the processor
- POST /orders/{id}/cancel - cancel a pending order
- POST /orders/{id}/complete - confirm receipt
- status history, communications and tracking read models
"""

from datetime import datetime

from fastapi import APIRouter, HTTPException, Query, Request, status

from storefront.api.dependencies import Audit, CustomerId, Manager
from storefront.api.schemas import (
    CancelRequest,
    CommunicationListResponse,
    CommunicationRequest,
    CommunicationSchema,
    CompleteRequest,
    ErrorResponse,
    MarkReadResponse,
    OrderCreateRequest,
    OrderCustomerSchema,
    OrderItemSchema,
    OrderResponse,
    OrderShippingSchema,
    OrdersListResponse,
    OrderSummarySchema,
    PaymentRequest,
    PaymentResponse,
    PendingOrderConflictResponse,
    PendingOrderResponse,
    PriceSchema,
    SortOrder,
    StatusHistoryListResponse,
    StatusHistorySchema,
    TrackingListResponse,
    TrackingSchema,
    UnreadCountResponse,
)
from storefront.application.order_manager import OrderManager, PaymentOutcome
from storefront.domain.entities import (
    Order,
    OrderCommunication,
    OrderStatusHistoryEntry,
    ShippingTrackingEntry,
)
from storefront.domain.state_machines import ActorType, OrderStatus
from storefront.domain.value_objects import (
    CardData,
    CartLine,
    CartSnapshot,
    CustomerInfo,
    Money,
    PaymentCustomerData,
    ShippingSnapshot,
)

router = APIRouter(prefix="/orders", tags=["Orders"])


# ============================================================================
# Converters
# ============================================================================


def _price(money: Money) -> PriceSchema:
    return PriceSchema(amount=money.amount, currency=money.currency)


def order_to_response(order: Order, expires_at: datetime | None = None) -> OrderResponse:
    """Convert an Order to OrderResponse."""
    shipping = order.shipping
    return OrderResponse(
        id=str(order.id),
        customer_id=order.customer_id,
        status=order.status,
        payment_status=order.payment_status,
        payment_method=order.payment_method.value,
        customer=OrderCustomerSchema(
            email=order.customer.email,
            name=order.customer.name,
            phone=order.customer.phone,
        ),
        shipping=OrderShippingSchema(
            full_name=shipping.full_name,
            phone=shipping.phone,
            email=shipping.email,
            document_type=shipping.document_type.value,
            document_number=shipping.document_number,
            address=shipping.address,
            city=shipping.city,
            department=shipping.department,
            postal_code=shipping.postal_code,
            neighborhood=shipping.neighborhood,
            additional_info=shipping.additional_info,
            notes=shipping.notes,
        ),
        items=[
            OrderItemSchema(
                product_id=line.product_id,
                product_name=line.product_name,
                quantity=line.quantity,
                size=line.size,
                unit_price=_price(line.unit_price),
                line_total=_price(line.line_total),
            )
            for line in order.lines
        ],
        subtotal=_price(order.totals.subtotal),
        tax=_price(order.totals.tax),
        shipping_cost=_price(order.totals.shipping_cost),
        total=_price(order.totals.total),
        transaction_id=order.transaction_id,
        reference_code=order.reference_code,
        authorization_code=order.authorization_code,
        payment_message=order.payment_message,
        expires_at=expires_at,
        created_at=order.created_at,
        updated_at=order.updated_at,
    )


def order_to_summary(order: Order) -> OrderSummarySchema:
    """Convert an Order to OrderSummarySchema."""
    return OrderSummarySchema(
        id=str(order.id),
        customer_id=order.customer_id,
        status=order.status,
        payment_status=order.payment_status,
        total=_price(order.totals.total),
        item_count=order.item_count,
        created_at=order.created_at,
    )


def history_to_schema(entry: OrderStatusHistoryEntry) -> StatusHistorySchema:
    return StatusHistorySchema(
        id=entry.id,
        order_id=entry.order_id,
        status=entry.status,
        previous_status=entry.previous_status,
        notes=entry.notes,
        actor_type=entry.actor_type,
        actor_id=entry.actor_id,
        created_at=entry.created_at,
    )


def communication_to_schema(communication: OrderCommunication) -> CommunicationSchema:
    return CommunicationSchema(
        id=communication.id,
        order_id=communication.order_id,
        sender_id=communication.sender_id,
        sender_type=communication.sender_type,
        message=communication.message,
        is_internal=communication.is_internal,
        is_read=communication.is_read,
        read_at=communication.read_at,
        attachments=communication.attachments,
        created_at=communication.created_at,
    )


def tracking_to_schema(entry: ShippingTrackingEntry) -> TrackingSchema:
    return TrackingSchema(
        id=entry.id,
        order_id=entry.order_id,
        carrier=entry.carrier,
        tracking_number=entry.tracking_number,
        carrier_service=entry.carrier_service,
        status=entry.status,
        status_description=entry.status_description,
        estimated_delivery=entry.estimated_delivery,
        actual_delivery=entry.actual_delivery,
        location=entry.location,
        notes=entry.notes,
        image_urls=list(entry.image_urls),
        created_by=entry.created_by,
        created_at=entry.created_at,
        updated_at=entry.updated_at,
    )


def payment_to_response(order: Order, message: str | None = None) -> PaymentResponse:
    return PaymentResponse(
        order_id=str(order.id),
        payment_status=order.payment_status,
        order_status=order.status,
        gateway_reference=order.reference_code,
        transaction_id=order.transaction_id,
        authorization_code=order.authorization_code,
        message=message,
    )


def _expires_at(manager: OrderManager, order: Order) -> datetime | None:
    if not order.is_awaiting_payment:
        return None
    return order.created_at + manager.guard.window


# ============================================================================
# Orders
# ============================================================================


@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        409: {"model": PendingOrderConflictResponse},
    },
    summary="Create order",
    description="Create a pending order from the customer's cart.",
)
async def create_order(
    body: OrderCreateRequest,
    customer_id: CustomerId,
    manager: Manager,
) -> OrderResponse:
    """Create an order.

    Fails with 409 while the customer still has an unexpired pending
    order; the response names that order and its remaining time.
    """
    shipping = ShippingSnapshot(**body.shipping.model_dump())
    cart = None
    if body.items is not None:
        cart = CartSnapshot(
            customer_id=customer_id,
            lines=tuple(
                CartLine(
                    product_id=item.product_id,
                    product_name=item.product_name,
                    quantity=item.quantity,
                    unit_price=Money(amount=item.unit_price),
                    size=item.size,
                )
                for item in body.items
            ),
        )
    order = await manager.create_order(
        customer_id,
        CustomerInfo(
            email=shipping.email,
            name=body.customer_name or shipping.full_name,
            phone=shipping.phone,
        ),
        shipping,
        cart=cart,
    )
    return order_to_response(order, expires_at=_expires_at(manager, order))


@router.get(
    "",
    response_model=OrdersListResponse,
    responses={401: {"model": ErrorResponse}},
    summary="List orders",
)
async def list_orders(
    customer_id: CustomerId,
    manager: Manager,
    page: int = Query(default=1, ge=1, description="Page number"),
    page_size: int = Query(default=20, ge=1, le=100, description="Items per page"),
    order_status: OrderStatus | None = Query(default=None, alias="status"),
) -> OrdersListResponse:
    result = await manager.list_orders(
        customer_id=customer_id, status=order_status, page=page, page_size=page_size
    )
    return OrdersListResponse(
        items=[order_to_summary(order) for order in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        has_more=result.has_more,
    )


@router.get(
    "/pending",
    response_model=PendingOrderResponse,
    responses={401: {"model": ErrorResponse}},
    summary="Get pending order",
    description="The customer's order awaiting payment, with its countdown.",
)
async def get_pending_order(customer_id: CustomerId, manager: Manager) -> PendingOrderResponse:
    view = await manager.guard.get_pending(customer_id)
    if view is None:
        return PendingOrderResponse()
    return PendingOrderResponse(
        order=order_to_response(view.order, expires_at=view.expires_at),
        expires_at=view.expires_at,
        remaining_ms=view.remaining_ms,
    )


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Get order details",
)
async def get_order(order_id: str, customer_id: CustomerId, manager: Manager) -> OrderResponse:
    order = await manager.get_order(order_id, customer_id=customer_id)
    return order_to_response(order, expires_at=_expires_at(manager, order))


# ============================================================================
# Payment
# ============================================================================


@router.post(
    "/{order_id}/pay",
    response_model=PaymentResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
    summary="Pay order",
    description="Charge a card for a pending order.",
)
async def pay_order(
    order_id: str,
    body: PaymentRequest,
    request: Request,
    customer_id: CustomerId,
    manager: Manager,
) -> PaymentResponse:
    """Pay an order.

    Approved and pending-confirmation charges return 200. Rejections and an
    unrecognized processor answer return 400 with the order left failed.
    When the processor cannot be reached or its answer is lost the order
    stays pending and 502 is returned.

    Raises:
        HTTPException: If the processor rejected the charge or failed.
    """
    card = CardData(
        number=body.card_number,
        exp_month=body.card_exp_month,
        exp_year=body.card_exp_year,
        cvc=body.card_cvc,
        installments=body.installments,
    )
    payer = PaymentCustomerData(
        name=body.name,
        last_name=body.last_name,
        email=body.email,
        phone=body.phone,
        cell_phone=body.cell_phone,
        document_type=body.document_type,
        document_number=body.document_number,
        address=body.address,
        ip=request.client.host if request.client else None,
    )
    outcome: PaymentOutcome = await manager.pay_order(
        order_id, card, customer_data=payer, customer_id=customer_id
    )
    response = payment_to_response(outcome.order, outcome.message)
    if outcome.error_code is not None:
        raise HTTPException(
            status_code=(
                status.HTTP_502_BAD_GATEWAY
                if outcome.is_gateway_fault
                else status.HTTP_400_BAD_REQUEST
            ),
            detail={
                "error_code": outcome.error_code,
                "message": outcome.message,
                "details": response.model_dump(mode="json"),
            },
        )
    return response


@router.get(
    "/{order_id}/payment",
    response_model=PaymentResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Refresh payment status",
    description="Ask the processor for the state of a charge awaiting confirmation.",
)
async def refresh_payment(order_id: str, customer_id: CustomerId, manager: Manager) -> PaymentResponse:
    order = await manager.refresh_payment(order_id, customer_id=customer_id)
    return payment_to_response(order, order.payment_message)


# ============================================================================
# Cancellation & Completion
# ============================================================================


@router.post(
    "/{order_id}/cancel",
    response_model=OrderResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    summary="Cancel order",
    description="Cancel an order that is still awaiting payment.",
)
async def cancel_order(
    order_id: str,
    customer_id: CustomerId,
    manager: Manager,
    body: CancelRequest | None = None,
) -> OrderResponse:
    order = await manager.cancel_order(
        order_id,
        ActorType.CUSTOMER,
        actor_id=customer_id,
        customer_id=customer_id,
        notes=body.notes if body else None,
    )
    return order_to_response(order)


@router.post(
    "/{order_id}/complete",
    response_model=OrderResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    summary="Confirm receipt",
    description="Complete a shipped, in-transit or delivered order.",
)
async def complete_order(
    order_id: str,
    customer_id: CustomerId,
    manager: Manager,
    body: CompleteRequest | None = None,
) -> OrderResponse:
    order = await manager.complete_order(
        order_id, customer_id, notes=body.notes if body else None
    )
    return order_to_response(order)


# ============================================================================
# Audit Trail
# ============================================================================


@router.get(
    "/{order_id}/status-history",
    response_model=StatusHistoryListResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Order status history",
)
async def get_status_history(
    order_id: str,
    customer_id: CustomerId,
    manager: Manager,
    audit: Audit,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=100),
    order: SortOrder = Query(default=SortOrder.ASC),
) -> StatusHistoryListResponse:
    await manager.get_order(order_id, customer_id=customer_id)
    result = await audit.status_history(
        order_id, page=page, page_size=page_size, ascending=order == SortOrder.ASC
    )
    return StatusHistoryListResponse(
        items=[history_to_schema(entry) for entry in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        has_more=result.has_more,
    )


@router.get(
    "/{order_id}/communications",
    response_model=CommunicationListResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Order messages",
    description="Messages between the customer and the store. Internal notes are hidden.",
)
async def get_communications(
    order_id: str,
    customer_id: CustomerId,
    manager: Manager,
    audit: Audit,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=100),
    order: SortOrder = Query(default=SortOrder.ASC),
) -> CommunicationListResponse:
    await manager.get_order(order_id, customer_id=customer_id)
    result = await audit.communications(
        order_id,
        reader_type=ActorType.CUSTOMER,
        page=page,
        page_size=page_size,
        ascending=order == SortOrder.ASC,
    )
    return CommunicationListResponse(
        items=[communication_to_schema(item) for item in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        has_more=result.has_more,
    )


@router.post(
    "/{order_id}/communications",
    response_model=CommunicationSchema,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    summary="Post a message",
)
async def post_communication(
    order_id: str,
    body: CommunicationRequest,
    customer_id: CustomerId,
    manager: Manager,
) -> CommunicationSchema:
    communication = await manager.post_message(
        order_id,
        sender_id=customer_id,
        sender_type=ActorType.CUSTOMER,
        message=body.message,
        is_internal=body.is_internal,
        attachments=body.attachments,
        customer_id=customer_id,
    )
    return communication_to_schema(communication)


@router.get(
    "/{order_id}/communications/unread-count",
    response_model=UnreadCountResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Unread message count",
)
async def get_unread_count(
    order_id: str, customer_id: CustomerId, manager: Manager, audit: Audit
) -> UnreadCountResponse:
    await manager.get_order(order_id, customer_id=customer_id)
    count = await audit.unread_count(order_id, ActorType.CUSTOMER)
    return UnreadCountResponse(unread_count=count)


@router.post(
    "/{order_id}/communications/read",
    response_model=MarkReadResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Mark messages as read",
)
async def mark_communications_read(
    order_id: str, customer_id: CustomerId, manager: Manager, audit: Audit
) -> MarkReadResponse:
    await manager.get_order(order_id, customer_id=customer_id)
    marked = await audit.mark_read(order_id, ActorType.CUSTOMER)
    return MarkReadResponse(marked=marked)


@router.get(
    "/{order_id}/tracking",
    response_model=TrackingListResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Shipping tracking",
)
async def get_tracking(
    order_id: str,
    customer_id: CustomerId,
    manager: Manager,
    audit: Audit,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=100),
    order: SortOrder = Query(default=SortOrder.DESC),
) -> TrackingListResponse:
    await manager.get_order(order_id, customer_id=customer_id)
    result = await audit.tracking(
        order_id, page=page, page_size=page_size, ascending=order == SortOrder.ASC
    )
    return TrackingListResponse(
        items=[tracking_to_schema(entry) for entry in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        has_more=result.has_more,
    )
