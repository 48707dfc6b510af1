"""
Checkout Converter

Turns a customer's cart into a placed order. Each cart line is copied
into an ``OrderItem`` snapshot (product id, name, price, quantity, image)
which is never refreshed from the product again.

Totals use the product's list price, not the promotional final price,
and are fixed at creation together with the tax rate in force.

Author: Foody Engineering
Version: 1.0.0
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from foody.core.config import get_settings
from foody.core.exceptions import ValidationError
from foody.database import with_write_retries
from foody.models import Order, OrderItem, OrderStatus
from foody.services.cart.base import BaseCartStore, CartLine
from foody.services.pricing import round_half_up

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderTotals:
    """Money fields of an order, all rounded to two decimals."""
    subtotal: float
    tax_rate: float
    tax: float
    total: float


def calculate_order_totals(lines: Iterable[CartLine], tax_rate: float) -> OrderTotals:
    """Calculate order subtotal, tax, and total from list prices."""
    subtotal = round_half_up(sum(line.product.price * line.quantity for line in lines))
    tax = round_half_up(subtotal * tax_rate)
    # not re-rounded: total == subtotal + tax must hold exactly
    total = subtotal + tax

    return OrderTotals(subtotal=subtotal, tax_rate=tax_rate, tax=tax, total=total)


class CheckoutConverter:
    """
    Converts the cart collaborator's contents into an ``Order``.

    Example:
        >>> converter = CheckoutConverter(session, get_cart_store(session))
        >>> order = await converter.place_order(user_id=7, table_number="3")
        >>> order.status, order.total
        (<OrderStatus.PENDING: 'pending'>, 630.0)
    """

    def __init__(
        self,
        session: AsyncSession,
        cart: BaseCartStore,
        tax_rate: Optional[float] = None,
    ):
        self.session = session
        self.cart = cart
        self.tax_rate = get_settings().tax_rate if tax_rate is None else tax_rate

    @staticmethod
    def snapshot(lines: list[CartLine]) -> list[OrderItem]:
        """Copy cart lines into order item snapshots, preserving their order."""
        items = []
        for position, line in enumerate(lines):
            if line.quantity < 1:
                raise ValidationError(
                    f"Quantity for '{line.product.name}' must be at least 1"
                )
            items.append(
                OrderItem(
                    position=position,
                    product_id=line.product.id,
                    name=line.product.name,
                    price=line.product.price,
                    quantity=line.quantity,
                    image=line.product.image or "",
                )
            )
        return items

    async def place_order(
        self,
        user_id: int,
        table_number: str = "",
        notes: str = "",
    ) -> Order:
        """
        Create a pending order from the user's cart.

        The cart is left untouched; clearing it is up to its owner once
        this returns.

        Raises:
            ValidationError: Cart is empty or holds an invalid line
        """
        lines = await self.cart.get_populated(user_id)
        if not lines:
            raise ValidationError("Cart is empty")

        totals = calculate_order_totals(lines, self.tax_rate)

        async def _create() -> Order:
            order = Order(
                user_id=user_id,
                table_number=(table_number or "").strip(),
                notes=(notes or "").strip(),
                status=OrderStatus.PENDING,
                subtotal=totals.subtotal,
                tax_rate=totals.tax_rate,
                tax=totals.tax,
                total=totals.total,
                is_paid=False,
                items=self.snapshot(lines),
            )
            self.session.add(order)
            await self.session.commit()
            return order

        order = await with_write_retries(
            self.session, _create, description=f"Checkout for user {user_id}"
        )

        logger.info(
            f"Order #{order.id} placed for user {user_id}: "
            f"{len(lines)} lines, total {order.total:.2f}"
        )
        return order
