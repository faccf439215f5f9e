"""Pending order guard.

A customer may hold at most one order that is still waiting for payment.
That order blocks new checkouts until it is paid, cancelled, or its
payment window elapses. Expiry is lazy: whoever touches an expired
pending order cancels it first, and an explicit sweep exists for
housekeeping.

The remaining time handed to clients is advisory only; the server always
recomputes ``created_at + window`` against its own clock.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog

from storefront.application.transitions import TransitionWriter, load_order
from storefront.domain.base import Clock, utc_now
from storefront.domain.entities import Order
from storefront.domain.exceptions import ConflictError, InvalidStateError
from storefront.domain.state_machines import ActorType

logger = structlog.get_logger()


# ============================================================================
# Evaluation Results
# ============================================================================


@dataclass(frozen=True)
class Active:
    """The pending order is within its payment window."""

    remaining_ms: int
    expires_at: datetime


@dataclass(frozen=True)
class Expired:
    """The pending order's payment window has elapsed."""

    expired_at: datetime


@dataclass(frozen=True)
class Lease:
    """Permission to create a new pending order for a customer."""

    customer_id: str
    granted_at: datetime


@dataclass(frozen=True)
class PendingOrderView:
    """A customer's pending order with its countdown."""

    order: Order
    expires_at: datetime
    remaining_ms: int


# ============================================================================
# Guard
# ============================================================================


class PendingOrderGuard:
    """Enforces the one-pending-order-per-customer rule and its expiry."""

    def __init__(
        self,
        writer: TransitionWriter,
        window: timedelta = timedelta(minutes=30),
        clock: Clock = utc_now,
    ) -> None:
        """Initialize the guard.

        Args:
            writer: Persists expiry and cancellation transitions.
            window: How long a pending order may wait for payment.
            clock: Source of the current time.
        """
        self._writer = writer
        self._store = writer.store
        self.window = window
        self._clock = clock

    def evaluate(self, order: Order, now: datetime | None = None) -> Active | Expired:
        """Evaluate an order's payment window. Pure.

        Args:
            order: Order to evaluate.
            now: Evaluation time; defaults to the guard's clock.

        Returns:
            Active with the remaining milliseconds, or Expired once
            ``now - created_at`` exceeds the window.
        """
        now = now or self._clock()
        expires_at = order.created_at + self.window
        if now - order.created_at > self.window:
            return Expired(expired_at=expires_at)
        remaining_ms = int((expires_at - now) / timedelta(milliseconds=1))
        return Active(remaining_ms=max(remaining_ms, 0), expires_at=expires_at)

    async def check_and_expire(self, order: Order) -> Active | Expired | None:
        """Cancel the order if it is pending and past its window.

        The caller must hold the order's lock. The order is mutated in
        place when it expires.

        Returns:
            None if the order is not awaiting payment, otherwise its
            evaluation (Expired means it has just been cancelled).
        """
        if not order.is_awaiting_payment:
            return None
        now = self._clock()
        state = self.evaluate(order, now)
        if isinstance(state, Expired):
            expected = order.version
            change = order.expire(now=now)
            await self._writer.commit(order, expected, change)
            logger.info(
                "Pending order expired",
                order_id=str(order.id),
                customer_id=order.customer_id,
                created_at=order.created_at.isoformat(),
            )
        return state

    async def reserve(self, customer_id: str) -> Lease:
        """Check that the customer may create a new pending order.

        Stale pending orders found along the way are expired. The caller
        must hold the customer's lock until the new order is stored.

        Raises:
            ConflictError: If an unexpired pending order exists.
        """
        for candidate in await self._store.find_awaiting_payment(customer_id):
            async with self._writer.locked(str(candidate.id)):
                order = await self._store.get_order(str(candidate.id))
                if order is None:
                    continue
                state = await self.check_and_expire(order)
                if isinstance(state, Active):
                    logger.info(
                        "Pending order blocks checkout",
                        customer_id=customer_id,
                        existing_order_id=str(order.id),
                        remaining_ms=state.remaining_ms,
                    )
                    raise ConflictError(customer_id, str(order.id), state.remaining_ms)
        return Lease(customer_id=customer_id, granted_at=self._clock())

    async def get_pending(self, customer_id: str) -> PendingOrderView | None:
        """Get the customer's live pending order, expiring stale ones."""
        for candidate in await self._store.find_awaiting_payment(customer_id):
            async with self._writer.locked(str(candidate.id)):
                order = await self._store.get_order(str(candidate.id))
                if order is None:
                    continue
                state = await self.check_and_expire(order)
                if isinstance(state, Active):
                    return PendingOrderView(
                        order=order,
                        expires_at=state.expires_at,
                        remaining_ms=state.remaining_ms,
                    )
        return None

    async def cancel(
        self,
        order_id: str,
        actor_type: ActorType,
        actor_id: str | None = None,
        customer_id: str | None = None,
        notes: str | None = None,
    ) -> Order:
        """Cancel a pending order before its window elapses.

        Args:
            order_id: Order to cancel.
            actor_type: Customer or admin.
            actor_id: Identifier of the actor.
            customer_id: When given, the order must belong to this customer.
            notes: Optional cancellation notes.

        Returns:
            The cancelled order.

        Raises:
            OrderNotFoundError: If the order is not visible to the caller.
            InvalidStateError: If the order is no longer awaiting payment.
        """
        async with self._writer.locked(order_id):
            order = await load_order(self._store, order_id, customer_id)
            state = await self.check_and_expire(order)
            if isinstance(state, Expired):
                return order
            if not order.is_awaiting_payment:
                raise InvalidStateError(
                    order_id,
                    order.status.value,
                    "cancelled",
                    reason="only orders awaiting payment can be cancelled here",
                )
            expected = order.version
            change = order.cancel(
                actor_type,
                actor_id=actor_id,
                notes=notes or f"Cancelled by {actor_type.value}",
                now=self._clock(),
            )
            await self._writer.commit(order, expected, change)
            return order

    async def sweep(self) -> list[Order]:
        """Expire every pending order past its window.

        Returns:
            Orders cancelled by this sweep.
        """
        expired: list[Order] = []
        for candidate in await self._store.find_awaiting_payment():
            async with self._writer.locked(str(candidate.id)):
                order = await self._store.get_order(str(candidate.id))
                if order is None:
                    continue
                if isinstance(await self.check_and_expire(order), Expired):
                    expired.append(order)
        if expired:
            logger.info("Pending order sweep", expired_count=len(expired))
        return expired
