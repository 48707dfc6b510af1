"""
Plain Text Bill Renderer

Development stand-in for the PDF service. Lays the invoice out as
fixed-width text so it can be inspected in a terminal or a test.
"""

import json
import logging

from foody.services.billing import BillDocument
from foody.services.documents.base import BaseBillRenderer, RenderedDocument

logger = logging.getLogger(__name__)


class MockBillRenderer(BaseBillRenderer):
    """
    Renders bills as UTF-8 text.

    Example:
        >>> rendered = await MockBillRenderer().render(document)
        >>> rendered.filename
        'bill-BILL-000001.txt'
    """

    WIDTH = 48

    @property
    def provider_name(self) -> str:
        return "mock"

    def _money(self, currency: str, amount: float) -> str:
        return f"{currency} {amount:,.2f}"

    async def render(self, document: BillDocument) -> RenderedDocument:
        bill = document.bill
        order = document.order
        currency = document.currency_code
        rule = "-" * self.WIDTH

        lines = [
            document.restaurant_name.upper().center(self.WIDTH),
            "INVOICE".center(self.WIDTH),
            rule,
            f"Bill No: {bill.bill_number}",
            f"Date: {bill.created_at:%d %B %Y}" if bill.created_at else "Date: -",
            f"Order: #{order.id}",
        ]
        if order.table_number:
            lines.append(f"Table: {order.table_number}")
        lines += [
            f"Payment: {bill.payment_method.value.upper()}",
            f"Status: {'PAID' if bill.is_paid else 'UNPAID'}",
            rule,
            f"{'Item':<22}{'Qty':>5}{'Price':>10}{'Total':>11}",
            rule,
        ]
        for item in document.items:
            lines.append(
                f"{item.name[:22]:<22}{item.quantity:>5}"
                f"{item.price:>10.2f}{item.line_total:>11.2f}"
            )
        lines += [
            rule,
            f"{'Subtotal:':<30}{self._money(currency, bill.subtotal):>18}",
            f"{f'Tax ({order.tax_rate:.0%}):':<30}{self._money(currency, bill.tax):>18}",
            f"{'TOTAL:':<30}{self._money(currency, bill.total):>18}",
            rule,
            "Scan to pay:",
            json.dumps(document.qr_payload, sort_keys=True),
            "",
            "Thank you for dining with us!".center(self.WIDTH),
        ]

        logger.debug(f"Rendered text document for {bill.bill_number}")
        return RenderedDocument(
            content=("\n".join(lines) + "\n").encode("utf-8"),
            media_type="text/plain; charset=utf-8",
            filename=f"bill-{bill.bill_number}.txt",
        )
