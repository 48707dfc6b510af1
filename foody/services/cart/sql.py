"""
SQL Cart Store

Reads ``cart_items`` joined with ``products`` through the request's
session, so the price captured at checkout is the price in the database
at that moment.
"""

import logging

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from foody.models import CartItem, Product
from foody.services.cart.base import BaseCartStore, CartLine, CartProduct

logger = logging.getLogger(__name__)


class SqlCartStore(BaseCartStore):
    """Cart store over the ``cart_items`` table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @property
    def provider_name(self) -> str:
        return "sql"

    async def get_populated(self, user_id: int) -> list[CartLine]:
        result = await self.session.execute(
            select(CartItem, Product)
            .join(Product, Product.id == CartItem.product_id)
            .where(CartItem.user_id == user_id)
            .order_by(CartItem.added_at, CartItem.id)
        )
        return [
            CartLine(
                product=CartProduct(
                    id=product.id,
                    name=product.name,
                    price=product.price,
                    image=product.image or "",
                    is_veg=product.is_veg,
                ),
                quantity=item.quantity,
            )
            for item, product in result.all()
        ]

    async def clear(self, user_id: int) -> None:
        result = await self.session.execute(
            delete(CartItem).where(CartItem.user_id == user_id)
        )
        await self.session.commit()
        logger.debug(f"Cart cleared for user {user_id} ({result.rowcount} lines)")
