"""
Celery Worker Configuration
Paid bills are exported to the Excel ledger off the request path.

Ledger exports run on their own queue so one worker process owns the
workbook's file lock:

    celery -A foody.celery_worker worker -Q ledger --concurrency=1
    celery -A foody.celery_worker worker -Q foody
"""

from celery import Celery
from kombu import Queue

from foody.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    'foody_worker',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['foody.tasks']
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    # Queues
    task_default_queue='foody',
    task_queues=(
        Queue('foody'),
        Queue(settings.ledger_queue),
    ),
    task_routes={
        'foody.tasks.export_bill_to_ledger': {'queue': settings.ledger_queue},
    },

    worker_prefetch_multiplier=1,

    # Exports are idempotent per bill number; results are only for inspection
    result_expires=settings.ledger_result_expires,

    # A lost export is redelivered and skipped if the bill is already written
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    broker_connection_retry_on_startup=True,
)


if __name__ == '__main__':
    celery_app.start()
