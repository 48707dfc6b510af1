"""
Paid Bill Ledger with Concurrency Control

Appends every paid bill to an Excel workbook for the accounts team.
Several Celery workers may export at once, so every read-modify-write
of the workbook happens under a file lock.

Author: Foody Engineering
Version: 1.0.0
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import pandas as pd
from filelock import FileLock, Timeout

from foody.core.config import get_settings

logger = logging.getLogger(__name__)


class BillLedger:
    """Process-safe Excel ledger of paid bills."""

    COLUMNS = [
        "bill_number",
        "bill_id",
        "order_id",
        "user_id",
        "subtotal",
        "tax",
        "total",
        "payment_method",
        "requested_by",
        "created_at",
        "paid_at",
        "exported_at",
    ]

    def __init__(self, directory: Optional[Path] = None, filename: Optional[str] = None):
        settings = get_settings()
        self.directory = Path(directory or settings.data_directory)
        self.path = self.directory / (filename or settings.ledger_filename)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self.lock_timeout = settings.ledger_lock_timeout

    def _ensure_data_dir(self) -> None:
        """Create data directory if needed."""
        if not self.directory.exists():
            self.directory.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {self.directory}")

    def _load_or_create_df(self) -> pd.DataFrame:
        """Load the existing ledger or start an empty one."""
        if self.path.exists():
            return pd.read_excel(self.path, engine="openpyxl")
        return pd.DataFrame(columns=self.COLUMNS)

    def export_bill(self, bill_data: dict[str, Any]) -> dict[str, Any]:
        """
        Append a paid bill to the ledger.

        Exporting the same bill number twice is a no-op, so Celery retries
        cannot duplicate rows.
        """
        self._ensure_data_dir()

        bill_number = bill_data.get("bill_number", "unknown")
        result = {
            "success": False,
            "message": "",
            "bill_number": bill_number,
            "exported_at": None,
        }

        try:
            with FileLock(str(self.lock_path), timeout=self.lock_timeout):
                logger.debug(f"Lock acquired for {bill_number}")

                df = self._load_or_create_df()
                if bill_number in set(df["bill_number"].astype(str)):
                    result["success"] = True
                    result["message"] = f"{bill_number} already in ledger"
                    return result

                export_time = datetime.now().isoformat()
                row = {column: bill_data.get(column) for column in self.COLUMNS}
                row["exported_at"] = export_time

                df = pd.concat([df, pd.DataFrame([row])], ignore_index=True)
                df.to_excel(str(self.path), index=False, engine="openpyxl")

                logger.info(f"{bill_number} exported to ledger")
                result["success"] = True
                result["message"] = f"{bill_number} exported"
                result["exported_at"] = export_time

        except Timeout:
            result["message"] = f"Lock timeout ({self.lock_timeout}s)"
            logger.error(f"Lock timeout exporting {bill_number}")

        return result

    def get_all_bills(self) -> list[dict[str, Any]]:
        """All ledger rows, oldest first."""
        if not self.path.exists():
            return []
        with FileLock(str(self.lock_path), timeout=self.lock_timeout):
            df = pd.read_excel(self.path, engine="openpyxl")
        return df.to_dict("records")

    def verify(self) -> dict[str, Any]:
        """
        Check the ledger's bill numbers.

        Returns:
            dict: row count, duplicate numbers, and whether the numbers
            increase strictly in ledger order of bill id
        """
        rows = self.get_all_bills()
        numbers = [str(r["bill_number"]) for r in sorted(rows, key=lambda r: r["bill_id"])]
        duplicates = sorted({n for n in numbers if numbers.count(n) > 1})
        increasing = all(a < b for a, b in zip(numbers, numbers[1:]))
        return {
            "rows": len(rows),
            "duplicates": duplicates,
            "strictly_increasing": increasing,
            "total_revenue": round(sum(float(r["total"]) for r in rows), 2),
        }

    def clear_all(self) -> bool:
        """Delete the ledger and its lock file."""
        for f in (self.path, self.lock_path):
            if f.exists():
                f.unlink()
        logger.info("Bill ledger cleared")
        return True
