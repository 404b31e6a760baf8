"""Notification scheduler — derive the reminder timeline for a task.

Given a task, its notification configuration and a way to look up users,
produce the (date, recipient, message) events a delivery job should send.
The result is a pure function of its inputs: computing it twice with the
same ``now`` yields the same events in the same order. Nothing here sends
anything; see app.services.notifications for dispatch.

Timeline:
  * pre-due   — for each configured day ``d`` that still lies ahead, one
                warning on ``due - d`` days to every enabled role.
  * due       — on the due date, if the maker has not submitted, an error
                to Checker 1.
  * overdue   — every day for POST_DUE_HORIZON_DAYS after the due date
                (every 7th day when the frequency is weekly): Checker 1 on
                day 1, Checker 1 and Checker 2 afterwards.
"""
import uuid
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any

from app.core.errors import ValidationError
from app.rules.enums import PostNotificationFrequency, SUBMITTED_STATUSES, UserRole, parse_status

MANDATORY_PRE_DAYS = (1, 3, 7)
POST_DUE_HORIZON_DAYS = 30

SEVERITY_PRE = "warning"
SEVERITY_POST = "error"

KIND_PRE_DUE = "pre_due"
KIND_DUE = "due"
KIND_OVERDUE = "overdue"

_ROLE_FIELDS = (
    (UserRole.maker, "assigned_to"),
    (UserRole.checker1, "checker1"),
    (UserRole.checker2, "checker2"),
)

UserResolver = Callable[[Any], Any]


def normalize_pre_days(custom_days: Iterable[int] | None = None, baseline: Iterable[int] = MANDATORY_PRE_DAYS) -> list[int]:
    """Baseline days plus custom ones: sorted, unique, strictly positive."""
    days = list(baseline) + list(custom_days or [])
    bad = [d for d in days if int(d) <= 0]
    if bad:
        raise ValidationError.for_fields(
            "Reminder days must be positive.",
            {"pre_days": f"Invalid values: {sorted(set(bad))}."},
        )
    return sorted({int(d) for d in days})


@dataclass(frozen=True)
class NotificationConfig:
    enable_pre_notifications: bool = True
    pre_days: tuple[int, ...] = MANDATORY_PRE_DAYS
    enable_post_notifications: bool = True
    post_notification_frequency: PostNotificationFrequency = PostNotificationFrequency.daily
    send_emails: bool = True
    notify_maker: bool = True
    notify_checker1: bool = True
    notify_checker2: bool = True

    @classmethod
    def from_settings(cls, settings) -> "NotificationConfig":
        """Build from a TaskNotificationSettings row; ``None`` gives the defaults."""
        if settings is None:
            return cls()
        return cls(
            enable_pre_notifications=settings.enable_pre_notifications,
            pre_days=tuple(normalize_pre_days(settings.pre_days or [], baseline=())),
            enable_post_notifications=settings.enable_post_notifications,
            post_notification_frequency=PostNotificationFrequency(settings.post_notification_frequency),
            send_emails=settings.send_emails,
            notify_maker=settings.notify_maker,
            notify_checker1=settings.notify_checker1,
            notify_checker2=settings.notify_checker2,
        )

    def role_enabled(self, role: UserRole) -> bool:
        return {
            UserRole.maker: self.notify_maker,
            UserRole.checker1: self.notify_checker1,
            UserRole.checker2: self.notify_checker2,
        }.get(role, False)


@dataclass(frozen=True)
class Recipient:
    id: uuid.UUID | str
    role: UserRole
    name: str
    email: str | None = None


@dataclass(frozen=True)
class NotificationEvent:
    task_id: uuid.UUID | str
    date: date
    recipient_id: uuid.UUID | str
    recipient_role: UserRole
    message: str
    severity: str
    via_email: bool
    kind: str
    recipient_email: str | None = field(default=None, compare=False)


def _plural(n: int) -> str:
    return "" if n == 1 else "s"


def _to_utc_date(value: datetime) -> date:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).date()


def _resolve_recipients(task, config: NotificationConfig, resolve_user: UserResolver) -> dict[UserRole, Recipient]:
    recipients: dict[UserRole, Recipient] = {}
    for role, attr in _ROLE_FIELDS:
        if not config.role_enabled(role):
            continue
        user_id = getattr(task, attr, None)
        if not user_id:
            continue
        user = resolve_user(user_id)
        if user is None:
            continue
        recipients[role] = Recipient(
            id=user.id, role=role, name=user.name, email=getattr(user, "email", None)
        )
    return recipients


def _maker_name(task, recipients: dict[UserRole, Recipient], resolve_user: UserResolver) -> str:
    if UserRole.maker in recipients:
        return recipients[UserRole.maker].name
    maker = resolve_user(task.assigned_to) if getattr(task, "assigned_to", None) else None
    return maker.name if maker is not None else "the maker"


def _pre_due_message(task, role: UserRole, days: int, maker_name: str) -> str:
    if role is UserRole.maker:
        return f'Task "{task.name}" is due in {days} day{_plural(days)}'
    return (
        f'Task "{task.name}" assigned to {maker_name} is due in {days} day{_plural(days)} '
        f"and will need your review"
    )


def iter_notification_events(
    task,
    config: NotificationConfig,
    resolve_user: UserResolver,
    now: datetime | None = None,
) -> Iterator[NotificationEvent]:
    """Lazily yield the task's notification events in chronological order.

    A task without a due date yields nothing.
    """
    if task is None or task.due_date is None:
        return

    now = now or datetime.now(timezone.utc)
    today = _to_utc_date(now)
    due = _to_utc_date(task.due_date)
    days_until_due = (due - today).days

    recipients = _resolve_recipients(task, config, resolve_user)
    via_email = config.send_emails

    def event(on: date, recipient: Recipient, message: str, severity: str, kind: str) -> NotificationEvent:
        return NotificationEvent(
            task_id=task.id,
            date=on,
            recipient_id=recipient.id,
            recipient_role=recipient.role,
            message=message,
            severity=severity,
            via_email=via_email,
            kind=kind,
            recipient_email=recipient.email,
        )

    # Pre-due reminders, furthest-out day first so dates ascend.
    if config.enable_pre_notifications and recipients:
        maker_name = _maker_name(task, recipients, resolve_user)
        for days in sorted(set(config.pre_days), reverse=True):
            if days > days_until_due:
                continue
            on = today + timedelta(days=days_until_due - days)
            for role, _attr in _ROLE_FIELDS:
                if role in recipients:
                    yield event(on, recipients[role], _pre_due_message(task, role, days, maker_name), SEVERITY_PRE, KIND_PRE_DUE)

    if not config.enable_post_notifications:
        return
    if parse_status(task.status) in SUBMITTED_STATUSES:
        return

    checker1 = recipients.get(UserRole.checker1)
    checker2 = recipients.get(UserRole.checker2)

    if checker1 is not None:
        yield event(due, checker1, f'Task "{task.name}" is now due and not submitted', SEVERITY_POST, KIND_DUE)

    step = 7 if config.post_notification_frequency is PostNotificationFrequency.weekly else 1
    for day in range(1, POST_DUE_HORIZON_DAYS + 1):
        if day % step:
            continue
        on = due + timedelta(days=day)
        message = (
            f'Task "{task.name}" is overdue by {day} day{_plural(day)} '
            f"and has not been submitted"
        )
        targets = [checker1] if day == 1 else [checker1, checker2]
        for recipient in targets:
            if recipient is not None:
                yield event(on, recipient, message, SEVERITY_POST, KIND_OVERDUE)


def build_notification_schedule(
    task,
    config: NotificationConfig,
    resolve_user: UserResolver,
    now: datetime | None = None,
) -> list[NotificationEvent]:
    return list(iter_notification_events(task, config, resolve_user, now))


def events_on(events: Iterable[NotificationEvent], day: date) -> list[NotificationEvent]:
    return [e for e in events if e.date == day]
