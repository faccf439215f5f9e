"""Create orders, order items and order audit tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _order_fk() -> sa.Column:
    return sa.Column(
        "order_id",
        sa.String(36),
        sa.ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )


def upgrade() -> None:
    """Create the order tables."""
    # Create orders table
    op.create_table(
        "orders",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("customer_id", sa.String(100), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("payment_method", sa.String(20), nullable=False, server_default="epayco"),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        # Customer info
        sa.Column("customer_email", sa.String(255), nullable=False),
        sa.Column("customer_name", sa.String(255), nullable=True),
        sa.Column("customer_phone", sa.String(50), nullable=True),
        # Shipping snapshot
        sa.Column("shipping_full_name", sa.String(255), nullable=False),
        sa.Column("shipping_phone", sa.String(50), nullable=False),
        sa.Column("shipping_email", sa.String(255), nullable=False),
        sa.Column("shipping_document_type", sa.String(20), nullable=False),
        sa.Column("shipping_document_number", sa.String(50), nullable=False),
        sa.Column("shipping_address", sa.String(500), nullable=False),
        sa.Column("shipping_city", sa.String(100), nullable=False),
        sa.Column("shipping_department", sa.String(100), nullable=False),
        sa.Column("shipping_postal_code", sa.String(20), nullable=True),
        sa.Column("shipping_neighborhood", sa.String(255), nullable=True),
        sa.Column("shipping_additional_info", sa.Text, nullable=True),
        sa.Column("shipping_notes", sa.Text, nullable=True),
        # Totals
        sa.Column("subtotal", sa.Integer, nullable=False),
        sa.Column("tax", sa.Integer, nullable=False, server_default="0"),
        sa.Column("shipping_cost", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="COP"),
        # Gateway correlation
        sa.Column("transaction_id", sa.String(100), nullable=True),
        sa.Column("reference_code", sa.String(100), nullable=True),
        sa.Column("authorization_code", sa.String(100), nullable=True),
        sa.Column("gateway_payload", postgresql.JSONB, nullable=True),
        sa.Column("payment_message", sa.Text, nullable=True),
        # Timestamps
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_orders_customer_id", "orders", ["customer_id"])
    op.create_index("ix_orders_status", "orders", ["status"])
    op.create_index("ix_orders_payment_status", "orders", ["payment_status"])
    op.create_index("ix_orders_reference_code", "orders", ["reference_code"])
    op.create_index(
        "ix_orders_awaiting_payment",
        "orders",
        ["customer_id", "created_at"],
        postgresql_where=sa.text("status = 'pending' AND payment_status = 'pending'"),
    )

    # Create order_items table
    op.create_table(
        "order_items",
        sa.Column("id", sa.String(36), primary_key=True),
        _order_fk(),
        sa.Column("position", sa.Integer, nullable=False, server_default="0"),
        sa.Column("product_id", sa.String(100), nullable=False),
        sa.Column("product_name", sa.String(500), nullable=False),
        sa.Column("size", sa.String(20), nullable=True),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("unit_price", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="COP"),
    )
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])

    # Create order_status_history table
    op.create_table(
        "order_status_history",
        sa.Column("id", sa.String(36), primary_key=True),
        _order_fk(),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("previous_status", sa.String(20), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("actor_type", sa.String(20), nullable=False, server_default="system"),
        sa.Column("actor_id", sa.String(100), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_order_status_history_order_id", "order_status_history", ["order_id"])
    op.create_index("ix_order_status_history_created_at", "order_status_history", ["created_at"])

    # Create order_communications table
    op.create_table(
        "order_communications",
        sa.Column("id", sa.String(36), primary_key=True),
        _order_fk(),
        sa.Column("sender_id", sa.String(100), nullable=True),
        sa.Column("sender_type", sa.String(20), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("is_internal", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attachments", postgresql.JSONB, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_order_communications_order_id", "order_communications", ["order_id"])
    op.create_index("ix_order_communications_created_at", "order_communications", ["created_at"])

    # Create shipping_tracking table
    op.create_table(
        "shipping_tracking",
        sa.Column("id", sa.String(36), primary_key=True),
        _order_fk(),
        sa.Column("carrier", sa.String(100), nullable=False),
        sa.Column("carrier_service", sa.String(100), nullable=True),
        sa.Column("tracking_number", sa.String(100), nullable=False),
        sa.Column("status", sa.String(50), nullable=True),
        sa.Column("status_description", sa.Text, nullable=True),
        sa.Column("estimated_delivery", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_delivery", sa.DateTime(timezone=True), nullable=True),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("image_urls", postgresql.JSONB, nullable=True),
        sa.Column("created_by", sa.String(100), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_shipping_tracking_order_id", "shipping_tracking", ["order_id"])
    op.create_index("ix_shipping_tracking_created_at", "shipping_tracking", ["created_at"])


def downgrade() -> None:
    """Drop the order tables."""
    op.drop_table("shipping_tracking")
    op.drop_table("order_communications")
    op.drop_table("order_status_history")
    op.drop_table("order_items")
    op.drop_index("ix_orders_awaiting_payment", table_name="orders")
    op.drop_table("orders")
