"""
Celery Tasks
Background bookkeeping for completed payments.
"""

import logging
import time

from food_ordering.celery_worker import celery_app
from food_ordering.services.ledger import PaymentLedger

logger = logging.getLogger(__name__)


class LedgerWriteFailed(Exception):
    """Raised so Celery retries a ledger write that could not take the lock."""


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(LedgerWriteFailed,),
    retry_backoff=True
)
def record_completed_payment(self, payment_data: dict) -> dict:
    """
    Append a completed payment to the Excel ledger.

    Args:
        payment_data: Order id, amount, provider and correlation ids

    Returns:
        dict: Result of the ledger write
    """
    task_id = self.request.id
    order_id = payment_data.get('order_id', 'unknown')

    logger.info(f"Task {task_id}: Recording payment for order {order_id}")
    start_time = time.time()

    result = PaymentLedger.from_settings().record(payment_data)

    elapsed = round(time.time() - start_time, 3)
    result['task_id'] = task_id
    result['processing_time_seconds'] = elapsed

    if not result['success']:
        logger.warning(f"Task {task_id}: Order {order_id} not recorded - {result['message']}")
        raise LedgerWriteFailed(result['message'])

    logger.info(f"Task {task_id}: Order {order_id} done in {elapsed}s")
    return result
