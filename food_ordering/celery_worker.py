"""
Celery Worker Configuration
Sets up Celery with Redis as message broker and result backend.
"""

from celery import Celery

from food_ordering.core.config import get_settings

REDIS_URL = get_settings().redis_url

celery_app = Celery(
    'food_ordering_worker',
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=['food_ordering.tasks']
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    worker_prefetch_multiplier=1,  # Process one task at a time
    worker_concurrency=4,

    result_expires=3600,  # Results expire after 1 hour

    task_acks_late=True,  # Acknowledge task after completion
    task_reject_on_worker_lost=True,  # Requeue task if worker dies

    broker_connection_retry_on_startup=True,
)


if __name__ == '__main__':
    celery_app.start()
