"""API schemas for the storefront order API.

Pydantic models for request/response validation and serialization.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from storefront.domain.state_machines import ActorType, OrderStatus, PaymentStatus
from storefront.domain.value_objects import DocumentType


# ============================================================================
# Common Schemas
# ============================================================================


class PriceSchema(BaseModel):
    """Price representation."""

    amount: int = Field(..., description="Amount in whole currency units")
    currency: str = Field(default="COP", description="Currency code")


class ErrorDetail(BaseModel):
    """Detailed error information."""

    field: str | None = Field(default=None, description="Field that caused the error")
    message: str = Field(..., description="Error message")


class ErrorResponse(BaseModel):
    """Standard error response.

    All API errors follow this format for consistency.
    """

    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: list[ErrorDetail] | dict[str, Any] = Field(
        default_factory=list, description="Additional error details"
    )
    request_id: str | None = Field(
        default=None, description="Request ID for correlation"
    )


class PendingOrderConflictResponse(ErrorResponse):
    """Returned when the customer already has a pending order."""

    existing_order_id: str = Field(..., description="The blocking pending order")
    remaining_ms: int = Field(..., description="Advisory time left on its payment window")


class PaginatedResponse(BaseModel):
    """Base paginated response."""

    total: int = Field(..., description="Total number of items")
    page: int = Field(..., description="Current page number")
    page_size: int = Field(..., description="Items per page")
    has_more: bool = Field(..., description="Whether there are more pages")


class SortOrder(str, Enum):
    """Sort direction on created_at."""

    ASC = "asc"
    DESC = "desc"


# ============================================================================
# Order Request Schemas
# ============================================================================


class CartLineRequest(BaseModel):
    """A cart line submitted at checkout."""

    product_id: str = Field(..., min_length=1, description="Product identifier")
    product_name: str = Field(..., min_length=1, description="Product name")
    quantity: int = Field(..., ge=1, description="Quantity")
    unit_price: int = Field(..., ge=0, description="Unit price in whole currency units")
    size: str | None = Field(default=None, description="Selected size")


class ShippingRequest(BaseModel):
    """Shipping data captured at checkout."""

    full_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    document_type: DocumentType = Field(default=DocumentType.CC)
    document_number: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    department: str = Field(..., min_length=1)
    postal_code: str | None = None
    neighborhood: str | None = None
    additional_info: str | None = None
    notes: str | None = None


class OrderCreateRequest(BaseModel):
    """Request to create an order from the customer's cart.

    When ``items`` is omitted the cart is read from the cart source.
    """

    shipping: ShippingRequest
    customer_name: str | None = Field(default=None, description="Contact name")
    items: list[CartLineRequest] | None = Field(
        default=None, description="Cart snapshot taken by the storefront"
    )


class PaymentRequest(BaseModel):
    """Card payment for a pending order. Card data is never stored."""

    card_number: str = Field(..., description="Card number")
    card_exp_month: str = Field(..., description="Expiry month (MM)")
    card_exp_year: str = Field(..., description="Expiry year (YY or YYYY)")
    card_cvc: str = Field(..., description="Card verification code")
    installments: int = Field(default=1, ge=1, description="Number of installments")
    name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    cell_phone: str | None = None
    document_type: str | None = None
    document_number: str | None = None
    address: str | None = None


class CancelRequest(BaseModel):
    """Request to cancel a pending order."""

    notes: str | None = Field(default=None, max_length=1000)


class CompleteRequest(BaseModel):
    """Customer confirms receipt of an order."""

    notes: str | None = Field(default=None, max_length=1000)


class CommunicationRequest(BaseModel):
    """A message posted on an order."""

    message: str = Field(..., min_length=1, max_length=5000)
    is_internal: bool = Field(default=False, description="Admin-only note")
    attachments: dict[str, Any] | None = None


# ============================================================================
# Admin Request Schemas
# ============================================================================


class StatusChangeRequest(BaseModel):
    """Administrator status change."""

    status: OrderStatus
    notes: str | None = Field(default=None, max_length=1000)


class HistoryNotesUpdateRequest(BaseModel):
    """Correction of a status history entry's notes."""

    notes: str | None = Field(default=None, max_length=1000)


class TrackingCreateRequest(BaseModel):
    """New shipping tracking entry."""

    carrier: str = Field(..., min_length=1)
    tracking_number: str = Field(..., min_length=1)
    carrier_service: str | None = None
    status: str | None = None
    status_description: str | None = None
    estimated_delivery: datetime | None = None
    actual_delivery: datetime | None = None
    location: str | None = None
    notes: str | None = None
    image_urls: list[str] | None = None
    order_status: OrderStatus | None = Field(
        default=None, description="Move the order to this status as well"
    )


class TrackingUpdateRequest(BaseModel):
    """Partial update of a tracking entry."""

    carrier: str | None = None
    tracking_number: str | None = None
    carrier_service: str | None = None
    status: str | None = None
    status_description: str | None = None
    estimated_delivery: datetime | None = None
    actual_delivery: datetime | None = None
    location: str | None = None
    notes: str | None = None
    image_urls: list[str] | None = None


# ============================================================================
# Order Response Schemas
# ============================================================================


class OrderItemSchema(BaseModel):
    """Order line item."""

    product_id: str
    product_name: str
    quantity: int
    size: str | None = None
    unit_price: PriceSchema
    line_total: PriceSchema


class OrderCustomerSchema(BaseModel):
    """Customer contact information."""

    email: str
    name: str | None = None
    phone: str | None = None


class OrderShippingSchema(BaseModel):
    """Shipping snapshot."""

    full_name: str
    phone: str
    email: str
    document_type: str
    document_number: str
    address: str
    city: str
    department: str
    postal_code: str | None = None
    neighborhood: str | None = None
    additional_info: str | None = None
    notes: str | None = None


class OrderResponse(BaseModel):
    """Full order response."""

    id: str
    customer_id: str
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: str
    customer: OrderCustomerSchema
    shipping: OrderShippingSchema
    items: list[OrderItemSchema]
    subtotal: PriceSchema
    tax: PriceSchema
    shipping_cost: PriceSchema
    total: PriceSchema
    transaction_id: str | None = None
    reference_code: str | None = None
    authorization_code: str | None = None
    payment_message: str | None = None
    expires_at: datetime | None = Field(
        default=None, description="End of the payment window while awaiting payment"
    )
    created_at: datetime
    updated_at: datetime


class OrderSummarySchema(BaseModel):
    """Order summary for list views."""

    id: str
    customer_id: str
    status: OrderStatus
    payment_status: PaymentStatus
    total: PriceSchema
    item_count: int
    created_at: datetime


class OrdersListResponse(PaginatedResponse):
    """Paginated list of orders."""

    items: list[OrderSummarySchema]


class PendingOrderResponse(BaseModel):
    """The customer's pending order with its advisory countdown."""

    order: OrderResponse | None = None
    expires_at: datetime | None = None
    remaining_ms: int | None = None


class PaymentResponse(BaseModel):
    """Result of a payment attempt or refresh."""

    order_id: str
    payment_status: PaymentStatus
    order_status: OrderStatus
    gateway_reference: str | None = None
    transaction_id: str | None = None
    authorization_code: str | None = None
    message: str | None = None


class CallbackResponse(BaseModel):
    """Acknowledgement returned to the payment processor."""

    success: bool = True
    status: str
    order_id: str | None = None


# ============================================================================
# Audit Trail Schemas
# ============================================================================


class StatusHistorySchema(BaseModel):
    """One status history entry."""

    id: str
    order_id: str
    status: OrderStatus
    previous_status: OrderStatus | None = None
    notes: str | None = None
    actor_type: ActorType
    actor_id: str | None = None
    created_at: datetime


class StatusHistoryListResponse(PaginatedResponse):
    items: list[StatusHistorySchema]


class CommunicationSchema(BaseModel):
    """One order message."""

    id: str
    order_id: str
    sender_id: str | None = None
    sender_type: ActorType
    message: str
    is_internal: bool
    is_read: bool
    read_at: datetime | None = None
    attachments: dict[str, Any] | None = None
    created_at: datetime


class CommunicationListResponse(PaginatedResponse):
    items: list[CommunicationSchema]


class UnreadCountResponse(BaseModel):
    unread_count: int


class MarkReadResponse(BaseModel):
    marked: int


class TrackingSchema(BaseModel):
    """One shipping tracking entry."""

    id: str
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
    image_urls: list[str] = Field(default_factory=list)
    created_by: str | None = None
    created_at: datetime
    updated_at: datetime


class TrackingListResponse(PaginatedResponse):
    items: list[TrackingSchema]


class TrackingCreatedResponse(BaseModel):
    """Tracking entry plus the order it was recorded on."""

    tracking: TrackingSchema
    order: OrderResponse


class ExpireSweepResponse(BaseModel):
    """Result of an explicit pending order sweep."""

    expired_count: int
    order_ids: list[str]
