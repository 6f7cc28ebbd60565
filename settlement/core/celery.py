"""
Celery configuration for background tasks
"""
from celery import Celery
import logging

from settlement.core.config import settings

logger = logging.getLogger(__name__)

celery_app = Celery(
    "settlement",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "settlement.modules.payments.tasks",
    ]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=5 * 60,
    task_soft_time_limit=4 * 60,
    worker_prefetch_multiplier=1,
    result_expires=3600,
    task_routes={
        "settlement.modules.payments.tasks.*": {"queue": "settlement"},
    },
    # Las tareas de reintento no deben colgar el request si el broker no responde
    broker_connection_timeout=2,
    task_publish_retry_policy={"max_retries": 1, "interval_start": 0, "interval_step": 0.5},
)

if __name__ == "__main__":
    celery_app.start()
