"""Tests for the pending order guard."""

from datetime import timedelta

import pytest

from storefront.application.pending_guard import Active, Expired, PendingOrderGuard
from storefront.domain import (
    EXPIRY_NOTE,
    ActorType,
    ConflictError,
    InvalidStateError,
    OrderNotFoundError,
    OrderStatus,
    PaymentStatus,
)
from tests.conftest import T0


class TestEvaluate:
    """Tests for the pure window evaluation."""

    @pytest.mark.asyncio
    async def test_active_inside_window(self, guard: PendingOrderGuard, place_order) -> None:
        """Remaining time counts down from the creation time."""
        order = await place_order()
        state = guard.evaluate(order, now=T0 + timedelta(minutes=10))
        assert isinstance(state, Active)
        assert state.remaining_ms == 20 * 60 * 1000
        assert state.expires_at == T0 + timedelta(minutes=30)

    @pytest.mark.asyncio
    async def test_boundary_is_still_active(self, guard: PendingOrderGuard, place_order) -> None:
        """An order exactly at the window edge has not expired yet."""
        order = await place_order()
        state = guard.evaluate(order, now=T0 + timedelta(minutes=30))
        assert isinstance(state, Active)
        assert state.remaining_ms == 0

    @pytest.mark.asyncio
    async def test_expired_past_window(self, guard: PendingOrderGuard, place_order) -> None:
        order = await place_order()
        state = guard.evaluate(order, now=T0 + timedelta(minutes=30, milliseconds=1))
        assert isinstance(state, Expired)
        assert state.expired_at == T0 + timedelta(minutes=30)


class TestReserve:
    """Tests for the one-pending-order rule."""

    @pytest.mark.asyncio
    async def test_second_order_blocked(self, manager, place_order, clock) -> None:
        """A live pending order blocks checkout and reports its countdown."""
        first = await place_order()
        clock.advance(minutes=10)

        with pytest.raises(ConflictError) as exc_info:
            await place_order()

        assert exc_info.value.existing_order_id == str(first.id)
        assert exc_info.value.remaining_ms == 20 * 60 * 1000

    @pytest.mark.asyncio
    async def test_other_customers_not_blocked(self, place_order) -> None:
        await place_order("cust-1")
        other = await place_order("cust-2")
        assert other.customer_id == "cust-2"

    @pytest.mark.asyncio
    async def test_stale_order_expired_on_checkout(self, manager, place_order, clock) -> None:
        """After the window, checkout cancels the stale order and succeeds."""
        first = await place_order()
        clock.advance(minutes=31)

        second = await place_order()

        assert second.id != first.id
        stale = await manager.get_order(str(first.id))
        assert stale.status == OrderStatus.CANCELLED
        assert stale.payment_status == PaymentStatus.CANCELLED

        history = await manager.audit.status_history(str(first.id))
        last = history.items[-1]
        assert last.status == OrderStatus.CANCELLED
        assert last.actor_type == ActorType.SYSTEM
        assert last.notes == EXPIRY_NOTE
        assert last.created_at == T0 + timedelta(minutes=31)

    @pytest.mark.asyncio
    async def test_paid_order_does_not_block(self, manager, place_order, card) -> None:
        """Only orders awaiting payment hold the slot."""
        first = await place_order()
        await manager.pay_order(str(first.id), card)
        second = await place_order()
        assert second.status == OrderStatus.PENDING


class TestGetPending:
    """Tests for reading the pending order."""

    @pytest.mark.asyncio
    async def test_returns_live_order(self, guard: PendingOrderGuard, place_order, clock) -> None:
        order = await place_order()
        clock.advance(minutes=5)
        view = await guard.get_pending("cust-1")
        assert view is not None
        assert view.order.id == order.id
        assert view.remaining_ms == 25 * 60 * 1000

    @pytest.mark.asyncio
    async def test_expired_order_not_returned(self, guard: PendingOrderGuard, place_order, clock) -> None:
        """Reading the pending order expires a stale one."""
        await place_order()
        clock.advance(hours=1)
        assert await guard.get_pending("cust-1") is None
        assert await guard.get_pending("cust-1") is None

    @pytest.mark.asyncio
    async def test_no_orders(self, guard: PendingOrderGuard) -> None:
        assert await guard.get_pending("nobody") is None


class TestCancel:
    """Tests for cancelling a pending order."""

    @pytest.mark.asyncio
    async def test_customer_cancels(self, guard: PendingOrderGuard, place_order, notifier) -> None:
        """Cancelling frees the slot and notifies."""
        order = await place_order()
        cancelled = await guard.cancel(
            str(order.id), ActorType.CUSTOMER, actor_id="cust-1", customer_id="cust-1"
        )
        assert cancelled.status == OrderStatus.CANCELLED
        assert cancelled.payment_status == PaymentStatus.CANCELLED
        assert await guard.get_pending("cust-1") is None
        assert [e.new_status for e in notifier.events] == ["cancelled"]

    @pytest.mark.asyncio
    async def test_other_customer_cannot_cancel(self, guard: PendingOrderGuard, place_order) -> None:
        order = await place_order()
        with pytest.raises(OrderNotFoundError):
            await guard.cancel(str(order.id), ActorType.CUSTOMER, customer_id="cust-2")

    @pytest.mark.asyncio
    async def test_paid_order_cannot_be_cancelled_here(
        self, guard: PendingOrderGuard, manager, place_order, card
    ) -> None:
        order = await place_order()
        await manager.pay_order(str(order.id), card)
        with pytest.raises(InvalidStateError):
            await guard.cancel(str(order.id), ActorType.CUSTOMER, customer_id="cust-1")

    @pytest.mark.asyncio
    async def test_expired_order_reports_expiry(
        self, guard: PendingOrderGuard, place_order, clock
    ) -> None:
        """Cancelling an expired order returns it cancelled by the system."""
        order = await place_order()
        clock.advance(minutes=45)
        cancelled = await guard.cancel(str(order.id), ActorType.CUSTOMER, customer_id="cust-1")
        assert cancelled.status == OrderStatus.CANCELLED


class TestSweep:
    """Tests for the housekeeping sweep."""

    @pytest.mark.asyncio
    async def test_sweep_expires_only_stale_orders(
        self, guard: PendingOrderGuard, place_order, clock
    ) -> None:
        stale = await place_order("cust-1")
        clock.advance(minutes=20)
        fresh = await place_order("cust-2")
        clock.advance(minutes=15)

        expired = await guard.sweep()

        assert [o.id for o in expired] == [stale.id]
        view = await guard.get_pending("cust-2")
        assert view is not None and view.order.id == fresh.id

    @pytest.mark.asyncio
    async def test_sweep_is_idempotent(self, guard: PendingOrderGuard, place_order, clock) -> None:
        await place_order()
        clock.advance(hours=2)
        assert len(await guard.sweep()) == 1
        assert await guard.sweep() == []
