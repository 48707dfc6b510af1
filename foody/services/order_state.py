"""
Order State Machine

Validates and applies order status transitions.

    pending -> confirmed -> preparing -> served -> completed
        \\___________\\____________\\___________\\-> cancelled

Orders move one step forward along the path, or to ``cancelled`` from
any state that is not terminal. ``completed`` and ``cancelled`` are
terminal. Earlier versions of the storefront accepted any status write;
enforcing the path is a deliberate hardening.

Writes are compare-and-set against the persisted status, so two staff
members advancing the same order cannot both succeed from the same
starting state. Payment (``is_paid``) is never touched here.

Author: Foody Engineering
Version: 1.0.0
"""

import logging
from typing import Union

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from foody.core.exceptions import InvalidStatus, InvalidTransition, NotFound
from foody.database import with_write_retries
from foody.models import Order, OrderStatus, utcnow

logger = logging.getLogger(__name__)


FORWARD_PATH: tuple[OrderStatus, ...] = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.SERVED,
    OrderStatus.COMPLETED,
)

TERMINAL_STATES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})


def _build_transition_table() -> dict[OrderStatus, frozenset[OrderStatus]]:
    table = {}
    for index, status in enumerate(FORWARD_PATH):
        if status in TERMINAL_STATES:
            table[status] = frozenset()
        else:
            table[status] = frozenset({FORWARD_PATH[index + 1], OrderStatus.CANCELLED})
    table[OrderStatus.CANCELLED] = frozenset()
    return table


TRANSITIONS = _build_transition_table()


def parse_status(value: Union[OrderStatus, str, None]) -> OrderStatus:
    """
    Parse a client-supplied status.

    Raises:
        InvalidStatus: Value is not one of the enumerated statuses
    """
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(value)
    except ValueError:
        valid = ", ".join(s.value for s in OrderStatus)
        raise InvalidStatus(f"Invalid status. Must be: {valid}")


def allowed_transitions(status: OrderStatus) -> frozenset[OrderStatus]:
    """Statuses reachable in one step from ``status``."""
    return TRANSITIONS[status]


def check_transition(current: OrderStatus, target: OrderStatus) -> None:
    """
    Raises:
        InvalidTransition: ``target`` is not reachable from ``current``
    """
    if target not in TRANSITIONS[current]:
        if current in TERMINAL_STATES:
            raise InvalidTransition(
                f"Order is {current.value}; no further status changes are allowed"
            )
        allowed = ", ".join(sorted(s.value for s in TRANSITIONS[current]))
        raise InvalidTransition(
            f"Cannot move order from {current.value} to {target.value}. "
            f"Allowed: {allowed}"
        )


class OrderStateMachine:
    """
    Applies status transitions to persisted orders.

    Example:
        >>> machine = OrderStateMachine(session)
        >>> order = await machine.transition(order_id=12, target="confirmed")
        >>> order.status
        <OrderStatus.CONFIRMED: 'confirmed'>
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def transition(
        self,
        order_id: int,
        target: Union[OrderStatus, str],
    ) -> Order:
        """
        Move an order to ``target``.

        Raises:
            InvalidStatus: Unknown target value
            NotFound: No such order
            InvalidTransition: Target unreachable from the persisted status,
                including when another writer changed it first
        """
        target = parse_status(target)

        async def _apply() -> Order:
            order = await self.session.get(Order, order_id, populate_existing=True)
            if order is None:
                raise NotFound(f"Order #{order_id} not found")

            current = order.status
            check_transition(current, target)

            result = await self.session.execute(
                update(Order)
                .where(Order.id == order_id, Order.status == current)
                .values(status=target, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.session.rollback()
                latest = await self.session.get(Order, order_id, populate_existing=True)
                raise InvalidTransition(
                    f"Order #{order_id} changed to {latest.status.value} while "
                    f"moving it from {current.value} to {target.value}"
                )

            await self.session.commit()
            await self.session.refresh(order)
            logger.info(f"Order #{order_id}: {current.value} -> {target.value}")
            return order

        return await with_write_retries(
            self.session, _apply, description=f"Status change for order #{order_id}"
        )

    async def cancel(self, order_id: int) -> Order:
        """Cancel an order that has not reached a terminal state."""
        return await self.transition(order_id, OrderStatus.CANCELLED)
