"""Celery task for the daily task-notification run."""
import logging
from datetime import date, datetime, timezone

from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="app.workers.notification_tasks.dispatch_task_notifications")
def dispatch_task_notifications(day: str | None = None) -> dict:
    """Send every reminder scheduled for ``day`` (ISO date, default today UTC).

    Runs daily at NOTIFICATION_DISPATCH_HOUR. Pass ``day`` to replay a
    missed run.
    """
    from app.db.session import SyncSessionLocal
    from app.services.notifications import dispatch_due_notifications

    target = date.fromisoformat(day) if day else datetime.now(timezone.utc).date()
    logger.info("dispatch_task_notifications: starting run for %s", target.isoformat())

    with SyncSessionLocal() as db:
        stats = dispatch_due_notifications(db, today=target)

    logger.info("dispatch_task_notifications: done %s", stats)
    return {"day": target.isoformat(), **stats}
