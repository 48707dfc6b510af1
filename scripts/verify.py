"""
Ledger Verification Script

Verifies data integrity of the paid bill ledger.
Run from project root: python scripts/verify.py

Author: Foody Engineering
Version: 1.0.0
"""

from datetime import datetime

from foody.core.config import get_settings
from foody.services.ledger import BillLedger


def verify_ledger() -> bool:
    """Check the ledger for duplicate and out-of-order bill numbers."""
    ledger = BillLedger()
    settings = get_settings()

    print("=" * 60)
    print("LEDGER VERIFICATION REPORT")
    print("=" * 60)
    print(f"Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"File: {ledger.path}")
    print("=" * 60)

    if not ledger.path.exists():
        print("\nLedger file not found!")
        print("   Pay a bill with the Celery worker running first.")
        return False

    report = ledger.verify()

    print("\nSTATISTICS:")
    print(f"   Paid bills: {report['rows']}")
    print(f"   Revenue: {settings.currency_symbol} {report['total_revenue']:.2f}")

    if report["duplicates"]:
        print(f"\n{len(report['duplicates'])} duplicate bill numbers: {report['duplicates']}")
    else:
        print("\nNo duplicate bill numbers")

    if report["strictly_increasing"]:
        print("Bill numbers increase with bill id")
    else:
        print("Bill numbers are NOT increasing with bill id")

    rows = ledger.get_all_bills()
    print("\nRECENT BILLS:")
    print("-" * 60)
    for row in rows[-5:]:
        print(
            f"   {row['bill_number']}  order #{row['order_id']}  "
            f"{row['payment_method']:<7} {row['total']:>10.2f}"
        )

    passed = not report["duplicates"] and report["strictly_increasing"]
    print("\n" + "=" * 60)
    print(f"VERIFICATION {'PASSED' if passed else 'FAILED'}")
    print("=" * 60)

    return passed


if __name__ == "__main__":
    raise SystemExit(0 if verify_ledger() else 1)
