"""Escalation inference.

A task is escalated either explicitly (someone pressed "escalate", stored on
the task) or implicitly because it was rejected or is overdue. Explicit
escalation always wins; inferred escalation is recomputed on every read and
never stored.
"""
from dataclasses import dataclass
from datetime import datetime, timezone

from app.rules.enums import OPEN_STATUSES, EscalationPriority, TaskStatus, parse_status

REJECTED_REASON = "Task was rejected"
OVERDUE_REASON = "Task is overdue"

# (days overdue strictly greater than, priority), checked top-down.
OVERDUE_THRESHOLDS: tuple[tuple[int, EscalationPriority], ...] = (
    (14, EscalationPriority.critical),
    (7, EscalationPriority.high),
    (3, EscalationPriority.medium),
)


@dataclass(frozen=True)
class Escalation:
    is_escalated: bool
    priority: EscalationPriority | None = None
    reason: str | None = None
    explicit: bool = False


NOT_ESCALATED = Escalation(is_escalated=False)


def days_overdue(due: datetime | None, now: datetime) -> int:
    """Whole days since ``due``; 0 when not yet due or no due date."""
    if due is None:
        return 0
    if due.tzinfo is None:
        due = due.replace(tzinfo=timezone.utc)
    return max((now - due).days, 0)


def overdue_priority(days: int) -> EscalationPriority:
    for threshold, priority in OVERDUE_THRESHOLDS:
        if days > threshold:
            return priority
    return EscalationPriority.low


def assess_escalation(task, now: datetime | None = None) -> Escalation:
    """Classify ``task``. Pure: same task and ``now`` give the same answer."""
    now = now or datetime.now(timezone.utc)

    if task.is_escalated:
        priority = task.escalation_priority
        return Escalation(
            is_escalated=True,
            priority=EscalationPriority(priority) if priority else None,
            reason=task.escalation_reason,
            explicit=True,
        )

    status = parse_status(task.status)
    if status is TaskStatus.rejected:
        return Escalation(True, EscalationPriority.high, REJECTED_REASON)

    due = task.due_date
    if status in OPEN_STATUSES and due is not None:
        if due.tzinfo is None:
            due = due.replace(tzinfo=timezone.utc)
        if due < now:
            return Escalation(True, overdue_priority(days_overdue(due, now)), OVERDUE_REASON)

    return NOT_ESCALATED


def is_escalated(task, now: datetime | None = None) -> bool:
    return assess_escalation(task, now).is_escalated


def priority_of(task, now: datetime | None = None) -> EscalationPriority | None:
    return assess_escalation(task, now).priority


def reason_of(task, now: datetime | None = None) -> str | None:
    return assess_escalation(task, now).reason


# ─── Manual escalation ───

def escalate(task, priority: EscalationPriority, reason: str, actor_id, now: datetime) -> None:
    """Mark ``task`` as explicitly escalated; re-escalating overwrites priority and reason.

    ``escalated_at``/``escalated_by`` keep the first escalation's values.
    """
    if not task.is_escalated:
        task.escalated_at = now
        task.escalated_by = actor_id
    task.is_escalated = True
    task.escalation_priority = EscalationPriority(priority).value
    task.escalation_reason = reason


def deescalate(task) -> None:
    """Clear the explicit escalation block; inference takes over again."""
    task.is_escalated = False
    task.escalation_priority = None
    task.escalation_reason = None
    task.escalated_at = None
    task.escalated_by = None
