"""Admin order API endpoints.

Every path here sits behind the admin API key (see ``AdminApiKeyMiddleware``).
Administrators drive fulfillment, correct the history, record shipping
tracking and talk to the customer.
"""

from fastapi import APIRouter, Query, Request, status

from storefront.api.dependencies import Audit, Manager
from storefront.api.orders import (
    communication_to_schema,
    history_to_schema,
    order_to_response,
    order_to_summary,
    tracking_to_schema,
)
from storefront.api.schemas import (
    CommunicationListResponse,
    CommunicationRequest,
    CommunicationSchema,
    ErrorResponse,
    ExpireSweepResponse,
    HistoryNotesUpdateRequest,
    OrderResponse,
    OrdersListResponse,
    SortOrder,
    StatusChangeRequest,
    StatusHistoryListResponse,
    StatusHistorySchema,
    TrackingCreatedResponse,
    TrackingCreateRequest,
    TrackingListResponse,
    TrackingSchema,
    TrackingUpdateRequest,
)
from storefront.domain.state_machines import ActorType, OrderStatus

router = APIRouter(prefix="/admin/orders", tags=["Admin"])

ADMIN_ACTOR_ID = "admin"


def _admin_id(request: Request) -> str:
    return getattr(request.state, "admin_id", ADMIN_ACTOR_ID)


# ============================================================================
# Orders
# ============================================================================


@router.get(
    "",
    response_model=OrdersListResponse,
    responses={401: {"model": ErrorResponse}},
    summary="List all orders",
)
async def list_orders(
    manager: Manager,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    order_status: OrderStatus | None = Query(default=None, alias="status"),
    customer_id: str | None = Query(default=None),
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


@router.post(
    "/expire-pending",
    response_model=ExpireSweepResponse,
    responses={401: {"model": ErrorResponse}},
    summary="Expire stale pending orders",
)
async def expire_pending(manager: Manager) -> ExpireSweepResponse:
    expired = await manager.guard.sweep()
    return ExpireSweepResponse(
        expired_count=len(expired),
        order_ids=[str(order.id) for order in expired],
    )


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Get any order",
)
async def get_order(order_id: str, manager: Manager) -> OrderResponse:
    order = await manager.get_order(order_id)
    return order_to_response(order)


@router.post(
    "/{order_id}/status",
    response_model=OrderResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Change order status",
    description="Move an order to a fulfillment status. Terminal orders cannot change.",
)
async def change_status(
    order_id: str,
    body: StatusChangeRequest,
    request: Request,
    manager: Manager,
) -> OrderResponse:
    order = await manager.change_status(
        order_id, body.status, actor_id=_admin_id(request), notes=body.notes
    )
    return order_to_response(order)


# ============================================================================
# Status History
# ============================================================================


@router.get(
    "/{order_id}/status-history",
    response_model=StatusHistoryListResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Order status history",
)
async def get_status_history(
    order_id: str,
    manager: Manager,
    audit: Audit,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=100),
    order: SortOrder = Query(default=SortOrder.ASC),
) -> StatusHistoryListResponse:
    await manager.get_order(order_id)
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


@router.patch(
    "/{order_id}/status-history/{entry_id}",
    response_model=StatusHistorySchema,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Correct history notes",
)
async def update_history_notes(
    order_id: str,
    entry_id: str,
    body: HistoryNotesUpdateRequest,
    manager: Manager,
) -> StatusHistorySchema:
    entry = await manager.update_history_notes(order_id, entry_id, body.notes)
    return history_to_schema(entry)


# ============================================================================
# Shipping Tracking
# ============================================================================


@router.post(
    "/{order_id}/tracking",
    response_model=TrackingCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    summary="Add tracking entry",
    description="Record a shipping tracking entry, optionally moving the order along.",
)
async def add_tracking(
    order_id: str,
    body: TrackingCreateRequest,
    request: Request,
    manager: Manager,
) -> TrackingCreatedResponse:
    details = body.model_dump(exclude={"carrier", "tracking_number", "order_status"})
    entry, order = await manager.add_tracking(
        order_id,
        body.carrier,
        body.tracking_number,
        created_by=_admin_id(request),
        order_status=body.order_status,
        **details,
    )
    return TrackingCreatedResponse(
        tracking=tracking_to_schema(entry),
        order=order_to_response(order),
    )


@router.patch(
    "/{order_id}/tracking/{tracking_id}",
    response_model=TrackingSchema,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    summary="Update tracking entry",
)
async def update_tracking(
    order_id: str,
    tracking_id: str,
    body: TrackingUpdateRequest,
    manager: Manager,
) -> TrackingSchema:
    entry = await manager.update_tracking(
        order_id, tracking_id, body.model_dump(exclude_unset=True)
    )
    return tracking_to_schema(entry)


@router.get(
    "/{order_id}/tracking",
    response_model=TrackingListResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Shipping tracking",
)
async def get_tracking(
    order_id: str,
    manager: Manager,
    audit: Audit,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=100),
    order: SortOrder = Query(default=SortOrder.DESC),
) -> TrackingListResponse:
    await manager.get_order(order_id)
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


# ============================================================================
# Communications
# ============================================================================


@router.post(
    "/{order_id}/communications",
    response_model=CommunicationSchema,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    summary="Post a message or internal note",
)
async def post_communication(
    order_id: str,
    body: CommunicationRequest,
    request: Request,
    manager: Manager,
) -> CommunicationSchema:
    communication = await manager.post_message(
        order_id,
        sender_id=_admin_id(request),
        sender_type=ActorType.ADMIN,
        message=body.message,
        is_internal=body.is_internal,
        attachments=body.attachments,
    )
    return communication_to_schema(communication)


@router.get(
    "/{order_id}/communications",
    response_model=CommunicationListResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Order messages including internal notes",
)
async def get_communications(
    order_id: str,
    manager: Manager,
    audit: Audit,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=100),
    order: SortOrder = Query(default=SortOrder.ASC),
) -> CommunicationListResponse:
    await manager.get_order(order_id)
    result = await audit.communications(
        order_id,
        reader_type=ActorType.ADMIN,
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
