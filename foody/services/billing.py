"""
Billing Service

Derives exactly one bill from an order and records its payment.

Guarantees:
    - At most one bill per order. The unique constraint on
      ``bills.order_id`` decides concurrent ``generate`` calls: one insert
      wins, every other caller gets ``Conflict``.
    - Bill numbers (BILL-000001, BILL-000002, ...) come from a counter row
      incremented atomically in the same transaction as the insert, so they
      are unique and increase in creation order.
    - ``mark_paid`` flips the bill and its order to paid in one transaction.

Rendering a bill to PDF is the document renderer's job; this service only
assembles the populated ``BillDocument``.

Author: Foody Engineering
Version: 1.0.0
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Union

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from foody.core.config import get_settings
from foody.core.exceptions import (
    Conflict,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    ValidationError,
)
from foody.database import with_write_retries
from foody.models import (
    Bill,
    BillRequester,
    BillSequence,
    BillStatus,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    utcnow,
)
from foody.services.identity import Identity

logger = logging.getLogger(__name__)

BILL_SEQUENCE = "bill"

# A customer may ask for the bill once food is on the table
BILLABLE_ON_REQUEST = frozenset({OrderStatus.SERVED, OrderStatus.COMPLETED})


@dataclass
class BillDocument:
    """
    Everything the document renderer needs, fully loaded.

    Attributes:
        bill: The bill
        order: The order it was generated from
        items: The order's item snapshots, in checkout order
        restaurant_name: Header line
        currency_code: ISO code for all amounts
        qr_payload: Data for the "scan to pay" code
    """
    bill: Bill
    order: Order
    items: list[OrderItem]
    restaurant_name: str
    currency_code: str
    qr_payload: dict = field(default_factory=dict)


def parse_payment_method(value: Union[PaymentMethod, str, None]) -> PaymentMethod:
    """
    Raises:
        ValidationError: Value is not an accepted payment method
    """
    if isinstance(value, PaymentMethod):
        return value
    try:
        return PaymentMethod(value)
    except ValueError:
        valid = ", ".join(m.value for m in PaymentMethod)
        raise ValidationError(f"Payment method must be: {valid}")


class BillingService:
    """
    Generates bills and records payments.

    Example:
        >>> billing = BillingService(session)
        >>> bill = await billing.generate(order_id=12, payment_method="cash")
        >>> bill.bill_number
        'BILL-000001'
        >>> bill = await billing.mark_paid(bill.id, "esewa")
        >>> bill.is_paid, bill.status
        (True, <BillStatus.PAID: 'paid'>)
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.settings = get_settings()

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def _get_order(self, order_id: int) -> Order:
        order = await self.session.get(Order, order_id, populate_existing=True)
        if order is None:
            raise NotFound(f"Order #{order_id} not found")
        return order

    async def get_bill(self, bill_id: int) -> Bill:
        """
        Raises:
            NotFound: No such bill
        """
        bill = await self.session.get(Bill, bill_id, populate_existing=True)
        if bill is None:
            raise NotFound(f"Bill #{bill_id} not found")
        return bill

    async def find_by_order(self, order_id: int) -> Optional[Bill]:
        """The bill for an order, if one exists."""
        result = await self.session.execute(
            select(Bill)
            .where(Bill.order_id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    # =========================================================================
    # BILL NUMBERS
    # =========================================================================

    async def _next_bill_number(self) -> str:
        """
        Take the next value from the bill sequence.

        Must run inside the transaction that inserts the bill so a rollback
        gives the number back. The counter row is created on first use,
        seeded past any bills that predate it.
        """
        result = await self.session.execute(
            update(BillSequence)
            .where(BillSequence.name == BILL_SEQUENCE)
            .values(value=BillSequence.value + 1)
            .returning(BillSequence.value)
            .execution_options(synchronize_session=False)
        )
        value = result.scalar_one_or_none()

        if value is None:
            existing = await self.session.scalar(select(func.count(Bill.id)))
            value = (existing or 0) + 1
            self.session.add(BillSequence(name=BILL_SEQUENCE, value=value))
            await self.session.flush()
            logger.info(f"Bill sequence initialised at {value}")

        return self.settings.format_bill_number(value)

    async def _insert_bill(self, bill: Bill) -> Bill:
        """
        Number and insert a bill, committing the unit of work.

        Raises:
            Conflict: The order already has a bill
            IntegrityError: Bill number collision (retried by the caller)
        """
        bill.bill_number = await self._next_bill_number()
        self.session.add(bill)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            if await self.find_by_order(bill.order_id) is not None:
                raise Conflict(f"A bill already exists for order #{bill.order_id}")
            raise
        return bill

    # =========================================================================
    # GENERATION
    # =========================================================================

    async def generate(
        self,
        order_id: int,
        payment_method: Union[PaymentMethod, str] = PaymentMethod.CASH,
    ) -> Bill:
        """
        Generate the bill for an order (staff action).

        Works in any order status. Totals are copied from the order as it
        stands now.

        Raises:
            ValidationError: Unknown payment method
            NotFound: No such order
            Conflict: The order already has a bill
            TransientError: Gave up after repeated contention
        """
        method = parse_payment_method(payment_method)

        async def _create() -> Bill:
            order = await self._get_order(order_id)
            bill = Bill(
                order_id=order.id,
                user_id=order.user_id,
                subtotal=order.subtotal,
                tax=order.tax,
                total=order.total,
                payment_method=method,
                status=BillStatus.GENERATED,
                requested_by=BillRequester.STAFF,
                call_waiter=False,
                is_paid=False,
            )
            return await self._insert_bill(bill)

        bill = await with_write_retries(
            self.session,
            _create,
            description=f"Bill generation for order #{order_id}",
            retry_on=(OperationalError, IntegrityError),
        )
        logger.info(f"Bill {bill.bill_number} generated for order #{order_id}")
        return bill

    async def request_bill(
        self,
        order_id: int,
        actor: Identity,
        payment_method: Union[PaymentMethod, str] = PaymentMethod.CASH,
        call_waiter: bool = False,
    ) -> tuple[Bill, bool]:
        """
        Customer asks for the bill at the table.

        Creates a ``requested`` bill unless one already exists, in which case
        the existing bill is returned (with ``call_waiter`` raised if asked).

        Returns:
            (bill, created)

        Raises:
            NotFound: No such order
            PermissionDenied: Order belongs to someone else
            ValidationError: Order not yet served
        """
        method = parse_payment_method(payment_method)

        async def _request() -> tuple[Bill, bool]:
            order = await self._get_order(order_id)
            if not actor.owns(order.user_id):
                raise PermissionDenied("Not authorized to request a bill for this order")
            if order.status not in BILLABLE_ON_REQUEST:
                raise ValidationError("Order must be served or completed")

            existing = await self.find_by_order(order_id)
            if existing is not None:
                if call_waiter and not existing.call_waiter:
                    existing.call_waiter = True
                # ends the read transaction without expiring ``existing``
                await self.session.commit()
                return existing, False

            bill = Bill(
                order_id=order.id,
                user_id=order.user_id,
                subtotal=order.subtotal,
                tax=order.tax,
                total=order.total,
                payment_method=method,
                status=BillStatus.REQUESTED,
                requested_by=BillRequester.CUSTOMER,
                call_waiter=call_waiter,
                is_paid=False,
            )
            try:
                return await self._insert_bill(bill), True
            except Conflict:
                # lost the race to a concurrent request; hand back the winner
                winner = await self.find_by_order(order_id)
                await self.session.commit()
                return winner, False

        bill, created = await with_write_retries(
            self.session,
            _request,
            description=f"Bill request for order #{order_id}",
            retry_on=(OperationalError, IntegrityError),
        )
        if created:
            logger.info(
                f"Bill {bill.bill_number} requested by customer for order #{order_id}"
                f"{' (call waiter)' if call_waiter else ''}"
            )
        return bill, created

    async def fulfil_request(self, bill_id: int) -> Bill:
        """
        Staff confirm a customer-requested bill.

        Raises:
            NotFound: No such bill
            InvalidTransition: Bill is not in ``requested`` status
        """
        async def _fulfil() -> Bill:
            bill = await self.get_bill(bill_id)
            result = await self.session.execute(
                update(Bill)
                .where(Bill.id == bill_id, Bill.status == BillStatus.REQUESTED)
                .values(status=BillStatus.GENERATED, call_waiter=False, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InvalidTransition(
                    f"Bill {bill.bill_number} is {bill.status.value}, not requested"
                )
            await self.session.commit()
            await self.session.refresh(bill)
            return bill

        bill = await with_write_retries(
            self.session, _fulfil, description=f"Fulfilling bill #{bill_id}"
        )
        logger.info(f"Bill {bill.bill_number} generated from customer request")
        return bill

    # =========================================================================
    # PAYMENT
    # =========================================================================

    async def mark_paid(
        self,
        bill_id: int,
        payment_method: Union[PaymentMethod, str, None] = None,
    ) -> Bill:
        """
        Record payment of a bill and of the order behind it.

        Bill (is_paid, paid_at, payment_method, status) and ``Order.is_paid``
        change in one transaction; neither is visible without the other.

        Args:
            bill_id: Bill to settle
            payment_method: How it was paid; keeps the bill's method if None

        Raises:
            ValidationError: Unknown payment method
            NotFound: No such bill
            Conflict: Bill already paid
        """
        method = None if payment_method is None else parse_payment_method(payment_method)

        async def _pay() -> Bill:
            bill = await self.get_bill(bill_id)
            paid_at = utcnow()

            result = await self.session.execute(
                update(Bill)
                .where(Bill.id == bill_id, Bill.is_paid.is_(False))
                .values(
                    is_paid=True,
                    paid_at=paid_at,
                    status=BillStatus.PAID,
                    payment_method=method or bill.payment_method,
                    updated_at=paid_at,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise Conflict(f"Bill {bill.bill_number} is already paid")

            await self.session.execute(
                update(Order)
                .where(Order.id == bill.order_id)
                .values(is_paid=True, updated_at=paid_at)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
            await self.session.refresh(bill)
            return bill

        bill = await with_write_retries(
            self.session, _pay, description=f"Payment of bill #{bill_id}"
        )
        logger.info(
            f"Bill {bill.bill_number} paid via {bill.payment_method.value} "
            f"(order #{bill.order_id})"
        )
        return bill

    # =========================================================================
    # DOCUMENTS
    # =========================================================================

    async def build_document(self, bill_id: int) -> BillDocument:
        """
        Assemble the populated bill for the document renderer.

        Raises:
            NotFound: No such bill
        """
        bill = await self.get_bill(bill_id)
        order = await self._get_order(bill.order_id)

        return BillDocument(
            bill=bill,
            order=order,
            items=list(order.items),
            restaurant_name=self.settings.restaurant_name,
            currency_code=self.settings.currency_code,
            qr_payload={
                "billNumber": bill.bill_number,
                "total": bill.total,
                "restaurant": self.settings.restaurant_name,
                "paymentMethods": [
                    m.value for m in PaymentMethod if m != PaymentMethod.CASH
                ],
            },
        )


def ledger_row(bill: Bill) -> dict:
    """Flatten a paid bill for the Excel ledger task (JSON-serializable)."""
    return {
        "bill_id": bill.id,
        "bill_number": bill.bill_number,
        "order_id": bill.order_id,
        "user_id": bill.user_id,
        "subtotal": bill.subtotal,
        "tax": bill.tax,
        "total": bill.total,
        "payment_method": bill.payment_method.value,
        "requested_by": bill.requested_by.value,
        "paid_at": bill.paid_at.isoformat() if bill.paid_at else None,
        "created_at": bill.created_at.isoformat() if bill.created_at else None,
    }
