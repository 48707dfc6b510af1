"""
Cart Store Factory

Provides the cart collaborator for a request.

Usage:
    from foody.services.cart import get_cart_store

    cart = get_cart_store(session)
    lines = await cart.get_populated(user_id)
"""

from sqlalchemy.ext.asyncio import AsyncSession

from foody.services.cart.base import BaseCartStore, CartLine, CartProduct
from foody.services.cart.memory import MemoryCartStore
from foody.services.cart.sql import SqlCartStore


def get_cart_store(session: AsyncSession) -> BaseCartStore:
    """
    Get the cart store bound to a request session.

    Carts live in the same database as orders, so the SQL store shares
    the request's session.
    """
    return SqlCartStore(session)


__all__ = [
    "get_cart_store",
    "BaseCartStore",
    "CartLine",
    "CartProduct",
    "MemoryCartStore",
    "SqlCartStore",
]
