"""
Celery Tasks
Background tasks that keep the Excel order ledger in step with the store.
"""

import logging
import time
from datetime import datetime

from orderdesk.celery_worker import celery_app
from orderdesk.core.config import get_settings
from orderdesk.schemas import Order
from orderdesk.services.excel_manager import ExcelManager

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(Exception,),
    retry_backoff=True
)
def export_order_to_excel(self, order_row: dict) -> dict:
    """
    Write one order's current state to the Excel ledger.
    This task runs asynchronously via Celery worker.

    Args:
        order_row: Row built by ExcelManager.build_order_row

    Returns:
        dict: Result of the export operation
    """
    task_id = self.request.id
    order_id = order_row.get('order_id', 'unknown')

    logger.info(f"📋 Task {task_id}: Processing order #{order_id}")
    start_time = time.time()

    try:
        result = ExcelManager().export_order(order_row)

        elapsed = round(time.time() - start_time, 3)
        result['task_id'] = task_id
        result['processing_time_seconds'] = elapsed

        if result['success']:
            logger.info(f"✅ Task {task_id}: Order #{order_id} completed in {elapsed}s")
        else:
            logger.warning(f"⚠️ Task {task_id}: Order #{order_id} failed - {result['message']}")

        return result

    except Exception as e:
        elapsed = round(time.time() - start_time, 3)
        logger.error(f"❌ Task {task_id}: Order #{order_id} error after {elapsed}s - {str(e)}")

        # Celery will auto-retry based on configuration
        raise


def queue_order_export(order: Order) -> None:
    """Order service exporter hook: enqueue the ledger update."""
    row = ExcelManager.build_order_row(order, get_settings().currency)
    export_order_to_excel.delay(row)


@celery_app.task
def clear_excel_file() -> dict:
    """
    Clear the Excel ledger (for testing/reset purposes).
    """
    success = ExcelManager().clear_all()
    return {
        'success': success,
        'message': 'Excel file cleared' if success else 'No Excel file to clear',
        'timestamp': datetime.now().isoformat()
    }
