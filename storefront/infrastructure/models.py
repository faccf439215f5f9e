"""SQLAlchemy models for database tables.

Provides ORM models for orders, order items and the per-order audit
tables (status history, communications, shipping tracking).
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from storefront.infrastructure.database import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JsonType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Order Models
# ============================================================================


class OrderModel(Base):
    """Order model for database persistence.

    ``version`` backs optimistic concurrency: updates are issued as
    ``UPDATE ... WHERE version = :expected``.
    """

    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    customer_id = Column(String(100), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending", index=True)
    payment_status = Column(String(20), nullable=False, default="pending", index=True)
    payment_method = Column(String(20), nullable=False, default="epayco")
    version = Column(Integer, nullable=False, default=1)

    # Customer info
    customer_email = Column(String(255), nullable=False)
    customer_name = Column(String(255), nullable=True)
    customer_phone = Column(String(50), nullable=True)

    # Shipping snapshot
    shipping_full_name = Column(String(255), nullable=False)
    shipping_phone = Column(String(50), nullable=False)
    shipping_email = Column(String(255), nullable=False)
    shipping_document_type = Column(String(20), nullable=False)
    shipping_document_number = Column(String(50), nullable=False)
    shipping_address = Column(String(500), nullable=False)
    shipping_city = Column(String(100), nullable=False)
    shipping_department = Column(String(100), nullable=False)
    shipping_postal_code = Column(String(20), nullable=True)
    shipping_neighborhood = Column(String(255), nullable=True)
    shipping_additional_info = Column(Text, nullable=True)
    shipping_notes = Column(Text, nullable=True)

    # Totals
    subtotal = Column(Integer, nullable=False)
    tax = Column(Integer, nullable=False, default=0)
    shipping_cost = Column(Integer, nullable=False, default=0)
    total = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="COP")

    # Gateway correlation
    transaction_id = Column(String(100), nullable=True)
    reference_code = Column(String(100), nullable=True, index=True)
    authorization_code = Column(String(100), nullable=True)
    gateway_payload = Column(JsonType, nullable=True)
    payment_message = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    # Relationships
    items = relationship(
        "OrderItemModel",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItemModel.position",
        lazy="selectin",
    )


class OrderItemModel(Base):
    """Order line copied from the cart."""

    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = Column(Integer, nullable=False, default=0)
    product_id = Column(String(100), nullable=False)
    product_name = Column(String(500), nullable=False)
    size = Column(String(20), nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="COP")

    order = relationship("OrderModel", back_populates="items")


# ============================================================================
# Audit Models
# ============================================================================


class OrderStatusHistoryModel(Base):
    """Order status history model for audit trail."""

    __tablename__ = "order_status_history"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status = Column(String(20), nullable=False)
    previous_status = Column(String(20), nullable=True)
    notes = Column(Text, nullable=True)
    actor_type = Column(String(20), nullable=False, default="system")
    actor_id = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)


class OrderCommunicationModel(Base):
    """Message exchanged about an order."""

    __tablename__ = "order_communications"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sender_id = Column(String(100), nullable=True)
    sender_type = Column(String(20), nullable=False)
    message = Column(Text, nullable=False)
    is_internal = Column(Boolean, nullable=False, default=False)
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    attachments = Column(JsonType, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)


class ShippingTrackingModel(Base):
    """Shipping event recorded for an order."""

    __tablename__ = "shipping_tracking"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    carrier = Column(String(100), nullable=False)
    carrier_service = Column(String(100), nullable=True)
    tracking_number = Column(String(100), nullable=False)
    status = Column(String(50), nullable=True)
    status_description = Column(Text, nullable=True)
    estimated_delivery = Column(DateTime(timezone=True), nullable=True)
    actual_delivery = Column(DateTime(timezone=True), nullable=True)
    location = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    image_urls = Column(JsonType, nullable=True)
    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
