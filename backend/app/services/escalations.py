"""Escalation queue: explicit escalations plus the ones inferred on read."""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.core.errors import ValidationError
from app.models.task import Task
from app.rules.enums import OPEN_STATUSES, EscalationPriority, TaskStatus
from app.rules.escalation import Escalation, assess_escalation, deescalate, escalate
from app.services import audit as audit_svc
from app.services.tasks import ensure_task_access, flush_or_conflict, load_task_for_update

logger = logging.getLogger(__name__)

# Only the task's checkers (or an admin) may raise or clear its escalation.
REVIEWER_SLOTS = ("checker1", "checker2")

_PRIORITY_RANK = {
    EscalationPriority.critical: 0,
    EscalationPriority.high: 1,
    EscalationPriority.medium: 2,
    EscalationPriority.low: 3,
    None: 4,
}


@dataclass
class EscalatedTask:
    task: Task
    escalation: Escalation


def list_escalations(
    db: Session,
    priority: EscalationPriority | None = None,
    now: datetime | None = None,
    user_id: uuid.UUID | None = None,
) -> tuple[list[EscalatedTask], dict[str, int]]:
    """Every escalated task, most urgent first, plus a count per priority.

    Candidates are loaded by a coarse SQL filter (explicitly escalated,
    rejected, or open and past due) and then classified one by one. The
    summary counts all escalated tasks regardless of ``priority``. ``user_id``
    narrows both to tasks where that user holds an assignment slot.
    """
    now = now or datetime.now(timezone.utc)
    stmt = select(Task).where(
        or_(
            Task.is_escalated.is_(True),
            Task.status == TaskStatus.rejected.value,
            (Task.status.in_([s.value for s in OPEN_STATUSES])) & (Task.due_date < now),
        )
    )
    if user_id:
        stmt = stmt.where(
            or_(Task.assigned_to == user_id, Task.checker1 == user_id, Task.checker2 == user_id)
        )
    candidates = db.execute(stmt).scalars().all()

    summary = {p.value: 0 for p in EscalationPriority}
    items: list[EscalatedTask] = []
    for task in candidates:
        escalation = assess_escalation(task, now)
        if not escalation.is_escalated:
            continue
        if escalation.priority is not None:
            summary[escalation.priority.value] += 1
        if priority is None or escalation.priority is priority:
            items.append(EscalatedTask(task, escalation))

    items.sort(key=lambda e: (_PRIORITY_RANK[e.escalation.priority], e.task.due_date))
    return items, summary


def escalate_task(
    db: Session,
    task_id: uuid.UUID,
    actor,
    priority: EscalationPriority,
    reason: str,
    expected_version: int | None = None,
    now: datetime | None = None,
) -> Task:
    """Explicitly escalate a task. Re-escalating updates priority and reason."""
    if not reason or not reason.strip():
        raise ValidationError.for_fields("An escalation needs a reason.", {"reason": "Required."})
    task = load_task_for_update(db, task_id, expected_version)
    ensure_task_access(task, actor, REVIEWER_SLOTS)
    before = audit_svc.task_snapshot(task)

    escalate(task, priority, reason.strip(), actor.id, now or datetime.now(timezone.utc))

    flush_or_conflict(db, task)
    audit_svc.log(
        db,
        action="task.escalated",
        entity_type="task",
        entity_id=task.id,
        actor=actor,
        before=before,
        after=audit_svc.task_snapshot(task, {"escalation_reason": task.escalation_reason}),
    )
    db.commit()
    logger.info("Task %s escalated (%s) by %s", task.id, task.escalation_priority, actor.id)
    return task


def deescalate_task(
    db: Session,
    task_id: uuid.UUID,
    actor,
    expected_version: int | None = None,
) -> Task:
    """Clear an explicit escalation. Inferred escalation may still apply afterwards."""
    task = load_task_for_update(db, task_id, expected_version)
    ensure_task_access(task, actor, REVIEWER_SLOTS)
    if not task.is_escalated:
        return task
    before = audit_svc.task_snapshot(task, {"escalation_reason": task.escalation_reason})

    deescalate(task)

    flush_or_conflict(db, task)
    audit_svc.log(
        db,
        action="task.deescalated",
        entity_type="task",
        entity_id=task.id,
        actor=actor,
        before=before,
        after=audit_svc.task_snapshot(task),
    )
    db.commit()
    logger.info("Task %s de-escalated by %s", task.id, actor.id)
    return task
