"""
Celery Worker Configuration
Runs the Excel ledger export on Redis.

Every order change becomes one export task on the ``ledger`` queue. The
workbook is a single file behind a file lock, so the worker consumes that
queue one task at a time; out-of-order deliveries (retries, redelivery after
a lost worker) are resolved by ``ExcelManager`` keeping the newest row.

Start with: celery -A orderdesk.celery_worker worker -Q ledger
"""

from celery import Celery

from orderdesk.core.config import get_settings

settings = get_settings()

LEDGER_QUEUE = "ledger"

celery_app = Celery(
    'orderdesk_worker',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['orderdesk.tasks']
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone=settings.restaurant_timezone,
    enable_utc=True,

    # All ledger writes go through one queue
    task_default_queue=LEDGER_QUEUE,
    task_routes={'orderdesk.tasks.*': {'queue': LEDGER_QUEUE}},

    # One writer at a time: the workbook is rewritten whole on every export
    worker_concurrency=1,
    worker_prefetch_multiplier=1,

    # A task must outlive a full wait on the file lock
    task_soft_time_limit=settings.excel_lock_timeout + 30,
    task_time_limit=settings.excel_lock_timeout + 60,

    # Export results are only read while debugging
    result_expires=3600,

    # Redeliver exports of a crashed worker; stale ones are skipped on arrival
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    broker_connection_retry_on_startup=True,
)


if __name__ == '__main__':
    celery_app.start()
