"""SQLAlchemy-backed order store.

Maps the Order aggregate and its audit entries onto the tables in
``storefront.infrastructure.models``. Each call runs in its own session.
"""

from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import false, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.domain.base import ensure_utc
from storefront.domain.entities import (
    Order,
    OrderCommunication,
    OrderLine,
    OrderStatusHistoryEntry,
    ShippingTrackingEntry,
)
from storefront.domain.exceptions import ConcurrencyError, OrderNotFoundError
from storefront.domain.state_machines import (
    ActorType,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from storefront.domain.value_objects import (
    CustomerInfo,
    DocumentType,
    Money,
    OrderId,
    OrderTotals,
    ShippingSnapshot,
)
from storefront.infrastructure.models import (
    OrderCommunicationModel,
    OrderItemModel,
    OrderModel,
    OrderStatusHistoryModel,
    ShippingTrackingModel,
)
from storefront.infrastructure.store import KeyedLocks

logger = structlog.get_logger()


def _utc(value: datetime | None) -> datetime | None:
    return ensure_utc(value) if value is not None else None


# ============================================================================
# Mapping
# ============================================================================


def _order_columns(order: Order) -> dict[str, Any]:
    """Column values for everything on the order except its lines."""
    shipping = order.shipping
    totals = order.totals
    return {
        "customer_id": order.customer_id,
        "status": order.status.value,
        "payment_status": order.payment_status.value,
        "payment_method": order.payment_method.value,
        "version": order.version,
        "customer_email": order.customer.email,
        "customer_name": order.customer.name,
        "customer_phone": order.customer.phone,
        "shipping_full_name": shipping.full_name,
        "shipping_phone": shipping.phone,
        "shipping_email": shipping.email,
        "shipping_document_type": shipping.document_type.value,
        "shipping_document_number": shipping.document_number,
        "shipping_address": shipping.address,
        "shipping_city": shipping.city,
        "shipping_department": shipping.department,
        "shipping_postal_code": shipping.postal_code,
        "shipping_neighborhood": shipping.neighborhood,
        "shipping_additional_info": shipping.additional_info,
        "shipping_notes": shipping.notes,
        "subtotal": totals.subtotal.amount,
        "tax": totals.tax.amount,
        "shipping_cost": totals.shipping_cost.amount,
        "total": totals.total.amount,
        "currency": totals.total.currency,
        "transaction_id": order.transaction_id,
        "reference_code": order.reference_code,
        "authorization_code": order.authorization_code,
        "gateway_payload": order.gateway_payload,
        "payment_message": order.payment_message,
        "created_at": order.created_at,
        "updated_at": order.updated_at,
    }


def order_to_model(order: Order) -> OrderModel:
    model = OrderModel(id=str(order.id), **_order_columns(order))
    model.items = [
        OrderItemModel(
            position=position,
            product_id=line.product_id,
            product_name=line.product_name,
            size=line.size,
            quantity=line.quantity,
            unit_price=line.unit_price.amount,
            currency=line.unit_price.currency,
        )
        for position, line in enumerate(order.lines)
    ]
    return model


def model_to_order(model: OrderModel) -> Order:
    currency = model.currency
    return Order(
        id=OrderId.from_string(model.id),
        customer_id=model.customer_id,
        customer=CustomerInfo(
            email=model.customer_email,
            name=model.customer_name,
            phone=model.customer_phone,
        ),
        shipping=ShippingSnapshot(
            full_name=model.shipping_full_name,
            phone=model.shipping_phone,
            email=model.shipping_email,
            document_type=DocumentType(model.shipping_document_type),
            document_number=model.shipping_document_number,
            address=model.shipping_address,
            city=model.shipping_city,
            department=model.shipping_department,
            postal_code=model.shipping_postal_code,
            neighborhood=model.shipping_neighborhood,
            additional_info=model.shipping_additional_info,
            notes=model.shipping_notes,
        ),
        totals=OrderTotals(
            subtotal=Money(model.subtotal, currency),
            tax=Money(model.tax, currency),
            shipping_cost=Money(model.shipping_cost, currency),
            total=Money(model.total, currency),
        ),
        lines=tuple(
            OrderLine(
                product_id=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                unit_price=Money(item.unit_price, item.currency),
                size=item.size,
            )
            for item in model.items
        ),
        status=OrderStatus(model.status),
        payment_status=PaymentStatus(model.payment_status),
        payment_method=PaymentMethod(model.payment_method),
        transaction_id=model.transaction_id,
        reference_code=model.reference_code,
        authorization_code=model.authorization_code,
        gateway_payload=model.gateway_payload,
        payment_message=model.payment_message,
        version=model.version,
        created_at=ensure_utc(model.created_at),
        updated_at=ensure_utc(model.updated_at),
    )


def _history_from_model(model: OrderStatusHistoryModel) -> OrderStatusHistoryEntry:
    return OrderStatusHistoryEntry(
        id=model.id,
        order_id=model.order_id,
        status=OrderStatus(model.status),
        previous_status=OrderStatus(model.previous_status) if model.previous_status else None,
        notes=model.notes,
        actor_type=ActorType(model.actor_type),
        actor_id=model.actor_id,
        created_at=ensure_utc(model.created_at),
    )


def _communication_from_model(model: OrderCommunicationModel) -> OrderCommunication:
    return OrderCommunication(
        id=model.id,
        order_id=model.order_id,
        sender_id=model.sender_id,
        sender_type=ActorType(model.sender_type),
        message=model.message,
        is_internal=model.is_internal,
        is_read=model.is_read,
        read_at=_utc(model.read_at),
        attachments=model.attachments,
        created_at=ensure_utc(model.created_at),
    )


def _tracking_columns(entry: ShippingTrackingEntry) -> dict[str, Any]:
    return {
        "order_id": entry.order_id,
        "carrier": entry.carrier,
        "carrier_service": entry.carrier_service,
        "tracking_number": entry.tracking_number,
        "status": entry.status,
        "status_description": entry.status_description,
        "estimated_delivery": entry.estimated_delivery,
        "actual_delivery": entry.actual_delivery,
        "location": entry.location,
        "notes": entry.notes,
        "image_urls": list(entry.image_urls),
        "created_by": entry.created_by,
        "created_at": entry.created_at,
        "updated_at": entry.updated_at,
    }


def _tracking_from_model(model: ShippingTrackingModel) -> ShippingTrackingEntry:
    return ShippingTrackingEntry(
        id=model.id,
        order_id=model.order_id,
        carrier=model.carrier,
        carrier_service=model.carrier_service,
        tracking_number=model.tracking_number,
        status=model.status,
        status_description=model.status_description,
        estimated_delivery=_utc(model.estimated_delivery),
        actual_delivery=_utc(model.actual_delivery),
        location=model.location,
        notes=model.notes,
        image_urls=list(model.image_urls or []),
        created_by=model.created_by,
        created_at=ensure_utc(model.created_at),
        updated_at=ensure_utc(model.updated_at),
    )


def _addressed_to(reader_type: ActorType) -> list[Any]:
    """SQL conditions matching messages a reader should read."""
    if reader_type == ActorType.CUSTOMER:
        return [
            OrderCommunicationModel.sender_type != ActorType.CUSTOMER.value,
            OrderCommunicationModel.is_internal == false(),
        ]
    return [OrderCommunicationModel.sender_type == ActorType.CUSTOMER.value]


# ============================================================================
# SQL Store
# ============================================================================


class SqlAlchemyOrderStore:
    """Order store backed by an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._order_locks = KeyedLocks()
        self._customer_locks = KeyedLocks()

    def lock_order(self, order_id: str) -> AbstractAsyncContextManager[None]:
        return self._order_locks.hold(order_id)

    def lock_customer(self, customer_id: str) -> AbstractAsyncContextManager[None]:
        return self._customer_locks.hold(customer_id)

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    async def add_order(self, order: Order) -> None:
        async with self._session_factory() as session:
            session.add(order_to_model(order))
            await session.commit()
        logger.debug("Order stored", order_id=str(order.id))

    async def get_order(self, order_id: str) -> Order | None:
        async with self._session_factory() as session:
            model = await session.get(OrderModel, order_id)
            return model_to_order(model) if model else None

    async def save_order(self, order: Order, expected_version: int) -> None:
        """Update the order row if its version still equals ``expected_version``.

        Raises:
            OrderNotFoundError: If no row exists for the order.
            ConcurrencyError: If another writer bumped the version first.
        """
        order_id = str(order.id)
        async with self._session_factory() as session:
            result = await session.execute(
                update(OrderModel)
                .where(OrderModel.id == order_id, OrderModel.version == expected_version)
                .values(**_order_columns(order))
            )
            if result.rowcount == 0:
                await session.rollback()
                exists = await session.scalar(
                    select(func.count()).select_from(OrderModel).where(OrderModel.id == order_id)
                )
                if not exists:
                    raise OrderNotFoundError(order_id)
                logger.warning(
                    "Optimistic lock conflict",
                    order_id=order_id,
                    expected_version=expected_version,
                )
                raise ConcurrencyError(order_id, expected_version)
            await session.commit()

    async def find_by_reference(self, reference_code: str) -> Order | None:
        async with self._session_factory() as session:
            model = await session.scalar(
                select(OrderModel).where(OrderModel.reference_code == reference_code).limit(1)
            )
            return model_to_order(model) if model else None

    async def find_awaiting_payment(self, customer_id: str | None = None) -> list[Order]:
        query = select(OrderModel).where(
            OrderModel.status == OrderStatus.PENDING.value,
            OrderModel.payment_status == PaymentStatus.PENDING.value,
        )
        if customer_id is not None:
            query = query.where(OrderModel.customer_id == customer_id)
        async with self._session_factory() as session:
            models = (await session.scalars(query.order_by(OrderModel.created_at))).all()
            return [model_to_order(m) for m in models]

    async def list_orders(
        self,
        customer_id: str | None = None,
        status: OrderStatus | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Order], int]:
        conditions = []
        if customer_id is not None:
            conditions.append(OrderModel.customer_id == customer_id)
        if status is not None:
            conditions.append(OrderModel.status == status.value)
        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(OrderModel).where(*conditions)
            )
            models = (
                await session.scalars(
                    select(OrderModel)
                    .where(*conditions)
                    .order_by(OrderModel.created_at.desc())
                    .offset(offset)
                    .limit(limit)
                )
            ).all()
            return [model_to_order(m) for m in models], total or 0

    # -------------------------------------------------------------------------
    # Status History
    # -------------------------------------------------------------------------

    async def add_history_entry(self, entry: OrderStatusHistoryEntry) -> None:
        async with self._session_factory() as session:
            session.add(
                OrderStatusHistoryModel(
                    id=entry.id,
                    order_id=entry.order_id,
                    status=entry.status.value,
                    previous_status=entry.previous_status.value if entry.previous_status else None,
                    notes=entry.notes,
                    actor_type=entry.actor_type.value,
                    actor_id=entry.actor_id,
                    created_at=entry.created_at,
                )
            )
            await session.commit()

    async def get_history_entry(
        self, order_id: str, entry_id: str
    ) -> OrderStatusHistoryEntry | None:
        async with self._session_factory() as session:
            model = await session.get(OrderStatusHistoryModel, entry_id)
            if model is None or model.order_id != order_id:
                return None
            return _history_from_model(model)

    async def save_history_entry(self, entry: OrderStatusHistoryEntry) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(OrderStatusHistoryModel)
                .where(OrderStatusHistoryModel.id == entry.id)
                .values(notes=entry.notes)
            )
            await session.commit()

    async def list_history(
        self, order_id: str, offset: int = 0, limit: int = 50, ascending: bool = True
    ) -> tuple[list[OrderStatusHistoryEntry], int]:
        order_by = (
            OrderStatusHistoryModel.created_at.asc()
            if ascending
            else OrderStatusHistoryModel.created_at.desc()
        )
        condition = OrderStatusHistoryModel.order_id == order_id
        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(OrderStatusHistoryModel).where(condition)
            )
            models = (
                await session.scalars(
                    select(OrderStatusHistoryModel)
                    .where(condition)
                    .order_by(order_by)
                    .offset(offset)
                    .limit(limit)
                )
            ).all()
            return [_history_from_model(m) for m in models], total or 0

    # -------------------------------------------------------------------------
    # Communications
    # -------------------------------------------------------------------------

    async def add_communication(self, communication: OrderCommunication) -> None:
        async with self._session_factory() as session:
            session.add(
                OrderCommunicationModel(
                    id=communication.id,
                    order_id=communication.order_id,
                    sender_id=communication.sender_id,
                    sender_type=communication.sender_type.value,
                    message=communication.message,
                    is_internal=communication.is_internal,
                    is_read=communication.is_read,
                    read_at=communication.read_at,
                    attachments=communication.attachments,
                    created_at=communication.created_at,
                )
            )
            await session.commit()

    async def list_communications(
        self,
        order_id: str,
        include_internal: bool = False,
        offset: int = 0,
        limit: int = 50,
        ascending: bool = True,
    ) -> tuple[list[OrderCommunication], int]:
        conditions = [OrderCommunicationModel.order_id == order_id]
        if not include_internal:
            conditions.append(OrderCommunicationModel.is_internal == false())
        order_by = (
            OrderCommunicationModel.created_at.asc()
            if ascending
            else OrderCommunicationModel.created_at.desc()
        )
        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(OrderCommunicationModel).where(*conditions)
            )
            models = (
                await session.scalars(
                    select(OrderCommunicationModel)
                    .where(*conditions)
                    .order_by(order_by)
                    .offset(offset)
                    .limit(limit)
                )
            ).all()
            return [_communication_from_model(m) for m in models], total or 0

    async def mark_communications_read(
        self, order_id: str, reader_type: ActorType, now: datetime
    ) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                update(OrderCommunicationModel)
                .where(
                    OrderCommunicationModel.order_id == order_id,
                    OrderCommunicationModel.is_read == false(),
                    *_addressed_to(reader_type),
                )
                .values(is_read=True, read_at=now)
            )
            await session.commit()
            return result.rowcount or 0

    async def count_unread(self, order_id: str, reader_type: ActorType) -> int:
        async with self._session_factory() as session:
            count = await session.scalar(
                select(func.count())
                .select_from(OrderCommunicationModel)
                .where(
                    OrderCommunicationModel.order_id == order_id,
                    OrderCommunicationModel.is_read == false(),
                    *_addressed_to(reader_type),
                )
            )
            return count or 0

    # -------------------------------------------------------------------------
    # Shipping Tracking
    # -------------------------------------------------------------------------

    async def add_tracking(self, entry: ShippingTrackingEntry) -> None:
        async with self._session_factory() as session:
            session.add(ShippingTrackingModel(id=entry.id, **_tracking_columns(entry)))
            await session.commit()

    async def get_tracking(self, order_id: str, tracking_id: str) -> ShippingTrackingEntry | None:
        async with self._session_factory() as session:
            model = await session.get(ShippingTrackingModel, tracking_id)
            if model is None or model.order_id != order_id:
                return None
            return _tracking_from_model(model)

    async def save_tracking(self, entry: ShippingTrackingEntry) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(ShippingTrackingModel)
                .where(ShippingTrackingModel.id == entry.id)
                .values(**_tracking_columns(entry))
            )
            await session.commit()

    async def list_tracking(
        self, order_id: str, offset: int = 0, limit: int = 50, ascending: bool = True
    ) -> tuple[list[ShippingTrackingEntry], int]:
        order_by = (
            ShippingTrackingModel.created_at.asc()
            if ascending
            else ShippingTrackingModel.created_at.desc()
        )
        condition = ShippingTrackingModel.order_id == order_id
        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(ShippingTrackingModel).where(condition)
            )
            models = (
                await session.scalars(
                    select(ShippingTrackingModel)
                    .where(condition)
                    .order_by(order_by)
                    .offset(offset)
                    .limit(limit)
                )
            ).all()
            return [_tracking_from_model(m) for m in models], total or 0
