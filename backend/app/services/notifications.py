"""Notification dispatch — the side-effecting half of the scheduler.

app.rules.notification_schedule decides *what* goes out *when*; this module
loads tasks, asks the scheduler for today's events and hands the email ones
to app.services.email.
"""
import logging
import uuid
from datetime import date, datetime, time, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.task import Task
from app.rules.enums import TaskStatus
from app.rules.notification_schedule import (
    NotificationConfig,
    NotificationEvent,
    build_notification_schedule,
    events_on,
    iter_notification_events,
)
from app.services import email as email_svc
from app.services.tasks import ensure_task_access, get_task
from app.services.users import make_user_resolver

logger = logging.getLogger(__name__)


def schedule_for_task(
    db: Session, task_id: uuid.UUID, now: datetime | None = None, viewer=None
) -> list[NotificationEvent]:
    """Full notification timeline for one task, as of ``now``."""
    task = get_task(db, task_id)
    if viewer is not None:
        ensure_task_access(task, viewer)
    config = NotificationConfig.from_settings(task.notification_settings)
    return build_notification_schedule(task, config, make_user_resolver(db), now)


def dispatch_due_notifications(db: Session, today: date | None = None) -> dict[str, int]:
    """Send every notification scheduled for ``today``.

    Approved tasks are skipped. The schedule is computed as of the start of
    ``today`` (UTC), so running the job twice on one day sends the same
    events twice rather than different ones.

    Returns:
        Counters: tasks scanned, events due today, emails sent, in-app only.
    """
    today = today or datetime.now(timezone.utc).date()
    now = datetime.combine(today, time.min, tzinfo=timezone.utc)
    resolve_user = make_user_resolver(db)

    tasks = db.execute(
        select(Task).where(
            Task.status != TaskStatus.approved.value,
            Task.due_date.isnot(None),
        )
    ).scalars().all()

    stats = {"tasks": 0, "events": 0, "emails": 0, "in_app": 0}
    for task in tasks:
        stats["tasks"] += 1
        config = NotificationConfig.from_settings(task.notification_settings)
        for event in events_on(iter_notification_events(task, config, resolve_user, now), today):
            stats["events"] += 1
            if event.via_email and email_svc.send_task_notification_email(event, task.name):
                stats["emails"] += 1
            else:
                stats["in_app"] += 1
                logger.info(
                    "In-app notification to %s (%s): %s",
                    event.recipient_id, event.recipient_role.value, event.message,
                )

    logger.info("dispatch_due_notifications %s: %s", today.isoformat(), stats)
    return stats
