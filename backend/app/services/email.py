"""Email notification service — console mock (MAIL_ENABLED=False).

When MAIL_ENABLED is False, email content is written to the log instead of
being sent. Set MAIL_ENABLED=True to wire a real transport.
"""
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)

_SUBJECT_PREFIX = {
    "pre_due": "Reminder",
    "due": "Due today",
    "overdue": "Overdue",
}


def _task_url(task_id) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}/tasks/{task_id}"


# ─── Task reminder email ───

def send_task_notification_email(event, task_name: str) -> bool:
    """Send (or mock-log) one scheduled task notification.

    Args:
        event: NotificationEvent from the scheduler; must carry a recipient email.
        task_name: Display name used in the subject line.

    Returns:
        True if the message was handed to a transport (or the console mock).
    """
    if not event.recipient_email:
        logger.warning(
            "No email address for %s %s; skipping task %s notification.",
            event.recipient_role.value, event.recipient_id, event.task_id,
        )
        return False

    subject = f"{_SUBJECT_PREFIX.get(event.kind, 'Notice')}: {task_name}"

    if not settings.MAIL_ENABLED:
        logger.info(
            "\n"
            "=== TASK NOTIFICATION EMAIL ===\n"
            "From: %s <%s>\n"
            "To: %s\n"
            "Subject: %s\n"
            "%s\n"
            "Open: %s\n"
            "===============================",
            settings.MAIL_FROM_NAME,
            settings.MAIL_FROM,
            event.recipient_email,
            subject,
            event.message,
            _task_url(event.task_id),
        )
        return True

    # Real SMTP path (not implemented)
    logger.warning(
        "MAIL_ENABLED=True but no SMTP transport is configured. "
        "Falling back to console log for task %s.",
        event.task_id,
    )
    logger.info(
        "TASK EMAIL (unsent): to=%s subject=%s message=%s",
        event.recipient_email, subject, event.message,
    )
    return True
