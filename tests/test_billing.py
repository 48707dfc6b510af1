import asyncio

import pytest
from sqlalchemy import select

from foody.core.exceptions import (
    Conflict,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    TransientError,
    ValidationError,
)
from foody.models import Bill, BillRequester, BillStatus, Order, OrderStatus, PaymentMethod
from foody.services.billing import BillingService, ledger_row
from foody.services.documents import get_bill_renderer

from conftest import CUSTOMER, OTHER_CUSTOMER


@pytest.fixture
async def order(make_product, make_order):
    momo = await make_product(name="Chicken Momo", price=250.0)
    lassi = await make_product(name="Mango Lassi", price=120.0)
    return await make_order([(momo, 2), (lassi, 1)])


async def test_generate_snapshots_order(session, order):
    bill = await BillingService(session).generate(order.id, "esewa")

    assert bill.bill_number == "BILL-000001"
    assert (bill.subtotal, bill.tax, bill.total) == (620.0, 31.0, 651.0)
    assert bill.payment_method == PaymentMethod.ESEWA
    assert bill.status == BillStatus.GENERATED
    assert bill.requested_by == BillRequester.STAFF
    assert bill.user_id == CUSTOMER.user_id
    assert bill.is_paid is False


async def test_generate_works_in_any_status(session, make_product, make_order):
    product = await make_product()
    cancelled = await make_order([(product, 1)], status=OrderStatus.CANCELLED)
    bill = await BillingService(session).generate(cancelled.id)
    assert bill.order_id == cancelled.id


async def test_second_generate_conflicts(session, order):
    billing = BillingService(session)
    first_id = (await billing.generate(order.id)).id

    with pytest.raises(Conflict):
        await billing.generate(order.id)

    bills = (await session.execute(select(Bill))).scalars().all()
    assert [b.id for b in bills] == [first_id]


async def test_generate_unknown_order(session):
    with pytest.raises(NotFound):
        await BillingService(session).generate(404)


async def test_generate_bad_payment_method(session, order):
    with pytest.raises(ValidationError):
        await BillingService(session).generate(order.id, "card")


async def test_numbers_continue_after_conflict(session, make_product, make_order):
    product = await make_product()
    first = await make_order([(product, 1)])
    second = await make_order([(product, 1)])
    billing = BillingService(session)

    await billing.generate(first.id)
    with pytest.raises(Conflict):
        await billing.generate(first.id)
    bill = await billing.generate(second.id)

    # the rolled back attempt did not burn a number
    assert bill.bill_number == "BILL-000002"


async def test_concurrent_generate_has_one_winner(session_maker, order):
    async def attempt():
        async with session_maker() as s:
            try:
                return await BillingService(s).generate(order.id)
            except Conflict:
                return None

    results = await asyncio.gather(*(attempt() for _ in range(6)))
    winners = [r for r in results if r is not None]
    assert len(winners) == 1

    async with session_maker() as s:
        count = len((await s.execute(select(Bill).where(Bill.order_id == order.id))).scalars().all())
    assert count == 1


async def test_concurrent_numbering_is_unique_and_increasing(session_maker, make_product, make_order):
    product = await make_product()
    orders = [await make_order([(product, 1)]) for _ in range(8)]

    async def generate(order_id):
        async with session_maker() as s:
            return await BillingService(s).generate(order_id)

    await asyncio.gather(*(generate(o.id) for o in orders))

    async with session_maker() as s:
        bills = (await s.execute(select(Bill).order_by(Bill.id))).scalars().all()
    numbers = [b.bill_number for b in bills]
    assert len(set(numbers)) == 8
    assert numbers == sorted(numbers)
    assert numbers[0] == "BILL-000001" and numbers[-1] == "BILL-000008"


async def test_exhausted_retries_become_transient(session, order, monkeypatch):
    from sqlalchemy.exc import OperationalError

    billing = BillingService(session)

    async def locked():
        raise OperationalError("UPDATE bill_sequences", {}, Exception("database is locked"))

    monkeypatch.setattr(billing, "_next_bill_number", locked)
    with pytest.raises(TransientError):
        await billing.generate(order.id)


class TestRequestBill:
    async def test_customer_request(self, session, make_product, make_order):
        product = await make_product()
        order = await make_order([(product, 1)], status=OrderStatus.SERVED)

        bill, created = await BillingService(session).request_bill(
            order.id, CUSTOMER, payment_method="khalti", call_waiter=True
        )
        assert created
        assert bill.status == BillStatus.REQUESTED
        assert bill.requested_by == BillRequester.CUSTOMER
        assert bill.call_waiter is True
        assert bill.payment_method == PaymentMethod.KHALTI

    async def test_request_is_idempotent(self, session, make_product, make_order):
        product = await make_product()
        order = await make_order([(product, 1)], status=OrderStatus.COMPLETED)
        billing = BillingService(session)

        first, _ = await billing.request_bill(order.id, CUSTOMER)
        again, created = await billing.request_bill(order.id, CUSTOMER, call_waiter=True)
        assert not created
        assert again.id == first.id
        assert again.call_waiter is True

    async def test_returns_staff_generated_bill(self, session, make_product, make_order):
        product = await make_product()
        order = await make_order([(product, 1)], status=OrderStatus.SERVED)
        billing = BillingService(session)

        generated = await billing.generate(order.id)
        bill, created = await billing.request_bill(order.id, CUSTOMER)
        assert not created
        assert bill.id == generated.id
        assert bill.status == BillStatus.GENERATED

    async def test_order_must_be_served(self, session, make_product, make_order):
        product = await make_product()
        order = await make_order([(product, 1)], status=OrderStatus.PREPARING)
        with pytest.raises(ValidationError) as exc_info:
            await BillingService(session).request_bill(order.id, CUSTOMER)
        assert exc_info.value.message == "Order must be served or completed"

    async def test_only_owner(self, session, make_product, make_order):
        product = await make_product()
        order = await make_order([(product, 1)], status=OrderStatus.SERVED)
        with pytest.raises(PermissionDenied):
            await BillingService(session).request_bill(order.id, OTHER_CUSTOMER)

    async def test_fulfil_request(self, session, make_product, make_order):
        product = await make_product()
        order = await make_order([(product, 1)], status=OrderStatus.SERVED)
        billing = BillingService(session)

        requested, _ = await billing.request_bill(order.id, CUSTOMER, call_waiter=True)
        bill = await billing.fulfil_request(requested.id)
        assert bill.status == BillStatus.GENERATED
        assert bill.call_waiter is False
        assert bill.requested_by == BillRequester.CUSTOMER

        with pytest.raises(InvalidTransition):
            await billing.fulfil_request(requested.id)


class TestMarkPaid:
    async def test_pays_bill_and_order_together(self, session, order):
        billing = BillingService(session)
        bill = await billing.generate(order.id)

        paid = await billing.mark_paid(bill.id, "bank")
        assert paid.is_paid is True
        assert paid.status == BillStatus.PAID
        assert paid.payment_method == PaymentMethod.BANK
        assert paid.paid_at is not None

        stored = await session.get(Order, order.id, populate_existing=True)
        assert stored.is_paid is True
        # payment does not move the order along
        assert stored.status == OrderStatus.PENDING

    async def test_keeps_method_when_not_given(self, session, order):
        billing = BillingService(session)
        bill = await billing.generate(order.id, PaymentMethod.KHALTI)
        paid = await billing.mark_paid(bill.id)
        assert paid.payment_method == PaymentMethod.KHALTI

    async def test_double_payment_conflicts(self, session, order):
        billing = BillingService(session)
        bill_id = (await billing.generate(order.id)).id
        paid_at = (await billing.mark_paid(bill_id, "cash")).paid_at

        with pytest.raises(Conflict):
            await billing.mark_paid(bill_id, "esewa")

        stored = await billing.get_bill(bill_id)
        assert stored.payment_method == PaymentMethod.CASH
        assert stored.paid_at == paid_at

    async def test_unknown_bill(self, session):
        with pytest.raises(NotFound):
            await BillingService(session).mark_paid(77)

    async def test_ledger_row(self, session, order):
        billing = BillingService(session)
        bill = await billing.mark_paid((await billing.generate(order.id)).id, "esewa")

        row = ledger_row(bill)
        assert row["bill_number"] == "BILL-000001"
        assert row["order_id"] == order.id
        assert row["total"] == 651.0
        assert row["payment_method"] == "esewa"
        assert row["requested_by"] == "staff"
        assert isinstance(row["paid_at"], str)


async def test_document(session, order):
    billing = BillingService(session)
    bill = await billing.generate(order.id)

    document = await billing.build_document(bill.id)
    assert document.bill.id == bill.id
    assert [i.name for i in document.items] == ["Chicken Momo", "Mango Lassi"]
    assert document.currency_code == "NPR"
    assert document.qr_payload["billNumber"] == "BILL-000001"
    assert "cash" not in document.qr_payload["paymentMethods"]

    rendered = await get_bill_renderer().render(document)
    text = rendered.content.decode("utf-8")
    assert rendered.filename == "bill-BILL-000001.txt"
    assert "BILL-000001" in text
    assert "Chicken Momo" in text
    assert "651.00" in text
