from celery import Celery
from celery.schedules import crontab

from app.core.config import settings

celery_app = Celery(
    "audit_worker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "app.workers.notification_tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    broker_connection_retry_on_startup=True,
)

celery_app.conf.beat_schedule = {
    "dispatch-task-notifications-daily": {
        "task": "app.workers.notification_tasks.dispatch_task_notifications",
        "schedule": crontab(hour=settings.NOTIFICATION_DISPATCH_HOUR, minute=0),
    },
}
