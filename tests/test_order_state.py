import asyncio

import pytest

from foody.core.exceptions import InvalidStatus, InvalidTransition, NotFound, ValidationError
from foody.models import Order, OrderStatus
from foody.services.order_state import (
    OrderStateMachine,
    allowed_transitions,
    check_transition,
    parse_status,
)


def test_transition_table():
    assert allowed_transitions(OrderStatus.PENDING) == {OrderStatus.CONFIRMED, OrderStatus.CANCELLED}
    assert allowed_transitions(OrderStatus.SERVED) == {OrderStatus.COMPLETED, OrderStatus.CANCELLED}
    assert allowed_transitions(OrderStatus.COMPLETED) == set()
    assert allowed_transitions(OrderStatus.CANCELLED) == set()


@pytest.mark.parametrize(
    "current, target",
    [
        (OrderStatus.PENDING, OrderStatus.SERVED),
        (OrderStatus.PREPARING, OrderStatus.CONFIRMED),
        (OrderStatus.CONFIRMED, OrderStatus.CONFIRMED),
        (OrderStatus.COMPLETED, OrderStatus.CANCELLED),
        (OrderStatus.CANCELLED, OrderStatus.PENDING),
    ],
)
def test_unreachable_targets(current, target):
    with pytest.raises(InvalidTransition):
        check_transition(current, target)


def test_parse_status():
    assert parse_status("served") == OrderStatus.SERVED
    with pytest.raises(InvalidStatus) as exc_info:
        parse_status("delivered")
    assert "Invalid status. Must be:" in exc_info.value.message
    # callers that only know about validation errors still catch it
    assert isinstance(exc_info.value, ValidationError)


async def test_walks_forward_path(session, make_product, make_order):
    product = await make_product()
    order = await make_order([(product, 1)])
    machine = OrderStateMachine(session)

    for target in ("confirmed", "preparing", "served", "completed"):
        order = await machine.transition(order.id, target)
        assert order.status == OrderStatus(target)
    assert order.is_paid is False

    with pytest.raises(InvalidTransition):
        await machine.cancel(order.id)


async def test_cancel_from_any_open_state(session, make_product, make_order):
    product = await make_product()
    order = await make_order([(product, 1)], status=OrderStatus.PREPARING)

    cancelled = await OrderStateMachine(session).cancel(order.id)
    assert cancelled.status == OrderStatus.CANCELLED


async def test_rejected_transition_leaves_status(session, make_product, make_order):
    product = await make_product()
    order = await make_order([(product, 1)])
    machine = OrderStateMachine(session)

    with pytest.raises(InvalidTransition):
        await machine.transition(order.id, OrderStatus.COMPLETED)
    with pytest.raises(InvalidStatus):
        await machine.transition(order.id, "lost")

    stored = await session.get(Order, order.id, populate_existing=True)
    assert stored.status == OrderStatus.PENDING


async def test_unknown_order(session):
    with pytest.raises(NotFound):
        await OrderStateMachine(session).transition(999, "confirmed")


async def test_concurrent_transitions_single_winner(session_maker, make_product, make_order):
    product = await make_product()
    order = await make_order([(product, 1)])

    async def advance():
        async with session_maker() as s:
            try:
                await OrderStateMachine(s).transition(order.id, OrderStatus.CONFIRMED)
                return "ok"
            except InvalidTransition:
                return "rejected"

    results = await asyncio.gather(*(advance() for _ in range(5)))
    assert results.count("ok") == 1
    assert results.count("rejected") == 4
