"""
Celery Tasks
Background work that must not hold up a request.
"""

import logging
import time
from datetime import datetime

from foody.celery_worker import celery_app
from foody.services.ledger import BillLedger

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(OSError,),
    retry_backoff=True
)
def export_bill_to_ledger(self, bill_data: dict) -> dict:
    """
    Append a paid bill to the Excel ledger.

    Args:
        bill_data: Flattened bill (see ``foody.services.billing.ledger_row``)

    Returns:
        dict: Result of the export operation
    """
    task_id = self.request.id
    bill_number = bill_data.get('bill_number', 'unknown')

    logger.info(f"Task {task_id}: exporting {bill_number}")
    start_time = time.time()

    result = BillLedger().export_bill(bill_data)

    elapsed = round(time.time() - start_time, 3)
    result['task_id'] = task_id
    result['processing_time_seconds'] = elapsed

    if result['success']:
        logger.info(f"Task {task_id}: {bill_number} done in {elapsed}s")
    else:
        logger.warning(f"Task {task_id}: {bill_number} failed - {result['message']}")

    return result


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': datetime.now().isoformat()
    }
