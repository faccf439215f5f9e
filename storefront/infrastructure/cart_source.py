"""Cart source.

Carts live in the storefront (browser storage or the cart API). The
order engine only needs an immutable snapshot at checkout time.
"""

from typing import Protocol

from storefront.domain.value_objects import CartLine, CartSnapshot


class CartSource(Protocol):
    """Provides the customer's current cart."""

    async def get_cart_snapshot(self, customer_id: str) -> CartSnapshot: ...


class InMemoryCartSource:
    """Cart source holding carts in a dictionary."""

    def __init__(self) -> None:
        self._carts: dict[str, tuple[CartLine, ...]] = {}

    def set_cart(self, customer_id: str, lines: list[CartLine]) -> None:
        self._carts[customer_id] = tuple(lines)

    def clear(self, customer_id: str) -> None:
        self._carts.pop(customer_id, None)

    async def get_cart_snapshot(self, customer_id: str) -> CartSnapshot:
        return CartSnapshot(customer_id=customer_id, lines=self._carts.get(customer_id, ()))
