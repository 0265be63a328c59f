"""
Celery Application Configuration

Alternative to the embedded scheduler: beat fires the same ticks the API
process runs when RUN_EMBEDDED_WORKERS is set.
"""
from celery import Celery

from app.core.config import settings

celery_app = Celery(
    "doc_exchange",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["app.workers.tasks"]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    "process-integration-queue": {
        "task": "app.workers.tasks.process_integration_queue",
        "schedule": settings.QUEUE_POLL_INTERVAL_SECONDS,
    },
    "process-resync-jobs": {
        "task": "app.workers.tasks.process_resync_jobs",
        "schedule": settings.RESYNC_POLL_INTERVAL_SECONDS,
    },
    "dispatch-analytics-webhooks": {
        "task": "app.workers.tasks.dispatch_analytics_webhooks",
        "schedule": settings.WEBHOOK_POLL_INTERVAL_SECONDS,
    },
}
