"""
In-Memory Cart Store

Development and test double for the cart collaborator. Holds carts in a
dict keyed by user id; nothing is persisted.
"""

import logging
from typing import Optional

from foody.services.cart.base import BaseCartStore, CartLine, CartProduct

logger = logging.getLogger(__name__)


class MemoryCartStore(BaseCartStore):
    """
    Dict-backed cart store.

    Example:
        >>> store = MemoryCartStore()
        >>> store.add(7, CartProduct(id=1, name="Momo", price=300.0), quantity=2)
        >>> await store.get_populated(7)
        [CartLine(product=CartProduct(id=1, ...), quantity=2)]
    """

    def __init__(self, carts: Optional[dict[int, list[CartLine]]] = None):
        self._carts: dict[int, list[CartLine]] = carts or {}

    @property
    def provider_name(self) -> str:
        return "memory"

    def add(self, user_id: int, product: CartProduct, quantity: int = 1) -> None:
        """Add a line, merging quantities for a product already in the cart."""
        lines = self._carts.setdefault(user_id, [])
        for index, line in enumerate(lines):
            if line.product.id == product.id:
                lines[index] = CartLine(product=product, quantity=line.quantity + quantity)
                return
        lines.append(CartLine(product=product, quantity=quantity))

    async def get_populated(self, user_id: int) -> list[CartLine]:
        return list(self._carts.get(user_id, []))

    async def clear(self, user_id: int) -> None:
        self._carts.pop(user_id, None)
        logger.debug(f"Memory cart cleared for user {user_id}")
