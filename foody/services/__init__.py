"""
                        Services Module

Business logic of the ordering core. Collaborators that live outside
this service (cart, document renderer) sit behind an abstract base with
a development implementation, selected by a factory.

Services:
    - pricing: Promotional price quotes
    - checkout: Cart to order conversion
    - order_state: Order status transitions
    - billing: Bill generation, numbering and payment
    - reviews: Review writes and aggregate ratings
    - ledger: Process-safe Excel ledger of paid bills
"""

from foody.services.ledger import BillLedger

__all__ = ["BillLedger"]
