"""Maker-checker workflow: status transitions and instance rollover.

All functions accept a sync SQLAlchemy Session and run one
read-modify-write per call: the task (and its current instance) are loaded
``FOR UPDATE``, the transition is planned by app.rules.task_state, and only
then are the rows touched. A failed plan leaves nothing changed.
"""
import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from app.core.errors import PermissionDeniedError, ValidationError
from app.models.task import Task, TaskApproval, TaskComment, TaskInstance
from app.rules.enums import Decision, ObservationStatus, TaskStatus, UserRole, parse_status
from app.rules.maker_checker import Assignment
from app.rules.recurrence import new_instance, plan_rollover
from app.rules.roles import is_admin
from app.rules.task_state import ACTING_ROLE, Transition, TransitionOutcome, plan_transition
from app.services import audit as audit_svc
from app.services.tasks import current_instance, flush_or_conflict, load_task_for_update

logger = logging.getLogger(__name__)

_SLOT_FOR_ROLE = {
    UserRole.maker: "assigned_to",
    UserRole.checker1: "checker1",
    UserRole.checker2: "checker2",
}


def _ensure_actor(subject, transition: Transition, actor) -> None:
    """Only the assignee in the acting slot (or an admin) may perform ``transition``."""
    if is_admin(actor):
        return
    role = ACTING_ROLE[transition]
    assignee = getattr(subject, _SLOT_FOR_ROLE[role])
    if assignee is None or str(assignee) != str(actor.id):
        raise PermissionDeniedError(
            f"Only the task's {role.value} may perform '{transition.value}'.",
            details={"transition": transition.value, "required_role": role.value},
        )


def _apply_outcome(subject, outcome: TransitionOutcome, observation_status: str | None) -> None:
    subject.status = outcome.to_status.value
    if outcome.submitted_at is not None:
        subject.submitted_at = outcome.submitted_at
    if outcome.completed_at is not None:
        subject.completed_at = outcome.completed_at
    if observation_status is not None:
        subject.observation_status = observation_status


def _mirror(task: Task, instance: TaskInstance) -> None:
    """Copy the instance's workflow fields onto its template for display."""
    task.status = instance.status
    task.observation_status = instance.observation_status
    task.submitted_at = instance.submitted_at
    task.completed_at = instance.completed_at


# ─── Transitions ───

def apply_transition(
    db: Session,
    task_id: uuid.UUID,
    transition: Transition,
    actor,
    decision: Decision | None = None,
    comment: str | None = None,
    observation_status: str | None = None,
    expected_version: int | None = None,
    now: datetime | None = None,
) -> Task:
    """Move a task (or its current instance) through the approval workflow.

    Checker decisions append a TaskApproval; a comment, when given, is also
    appended to the task's discussion. When the current instance of a
    recurring task becomes approved, the next instance is rolled over in the
    same transaction.

    Raises:
        NotFoundError: unknown task.
        ConcurrentModificationError: stale ``expected_version`` or a lost update.
        IllegalTransitionError: the current status does not allow ``transition``.
        PermissionDeniedError: ``actor`` is not the assignee for this step.
        ValidationError: missing decision or bad observation status.
    """
    now = now or datetime.now(timezone.utc)
    task = load_task_for_update(db, task_id, expected_version)
    instance = current_instance(db, task, lock=True) if task.is_recurring else None
    subject = instance if instance is not None else task

    if observation_status is not None:
        if transition is not Transition.submit:
            raise ValidationError.for_fields(
                "Observation status is recorded on submit.",
                {"observation_status": "Only allowed when submitting."},
            )
        try:
            observation_status = ObservationStatus(observation_status).value
        except ValueError:
            raise ValidationError.for_fields(
                f"Invalid observation status '{observation_status}'.",
                {"observation_status": f"Must be one of {[o.value for o in ObservationStatus]}."},
            ) from None

    outcome = plan_transition(parse_status(subject.status), transition, now, decision)
    _ensure_actor(subject, transition, actor)

    before = audit_svc.task_snapshot(task)
    _apply_outcome(subject, outcome, observation_status)
    if instance is not None:
        _mirror(task, instance)

    instance_id = instance.id if instance is not None else None
    if outcome.approval is not None:
        db.add(
            TaskApproval(
                id=uuid.uuid4(),
                task_id=task.id,
                instance_id=instance_id,
                user_id=actor.id,
                user_role=outcome.approval.user_role.value,
                decision=outcome.approval.decision.value,
                comment=comment,
            )
        )
    if comment:
        db.add(
            TaskComment(
                id=uuid.uuid4(),
                task_id=task.id,
                instance_id=instance_id,
                user_id=actor.id,
                content=comment,
            )
        )

    flush_or_conflict(db, task)
    audit_svc.log(
        db,
        action=f"task.{transition.value}",
        entity_type="task_instance" if instance is not None else "task",
        entity_id=subject.id,
        actor=actor,
        before=before,
        after=audit_svc.task_snapshot(task, {"decision": decision.value if decision else None}),
        notes=comment,
    )

    if outcome.completes and task.is_recurring:
        _rollover(db, task, actor=None, now=now)

    db.commit()
    logger.info(
        "Task %s: %s %s -> %s by %s",
        task.id, transition.value, outcome.from_status.value, outcome.to_status.value, actor.id,
    )
    return task


# ─── Rollover ───

def _rollover(db: Session, task: Task, actor, now: datetime) -> TaskInstance:
    plan = plan_rollover(task)
    previous_id = task.current_instance_id

    instance = new_instance(task.id, plan.next_due, Assignment.of(task), frequency=task.frequency)
    db.add(instance)
    db.flush()

    task.current_instance_id = instance.id
    task.due_date = plan.next_due
    task.next_instance_date = plan.following_due
    task.status = TaskStatus.pending.value
    task.observation_status = None
    task.submitted_at = None
    task.completed_at = None

    flush_or_conflict(db, task)
    audit_svc.log(
        db,
        action="task.rolled_over",
        entity_type="task",
        entity_id=task.id,
        actor=actor,
        after={
            "previous_instance_id": previous_id,
            "instance_id": instance.id,
            "instance_reference": instance.instance_reference,
            "due_date": plan.next_due,
            "next_instance_date": plan.following_due,
            "at": now,
        },
    )
    logger.info("Task %s rolled over to instance %s due %s", task.id, instance.id, plan.next_due.date())
    return instance


def rollover_task(
    db: Session,
    task_id: uuid.UUID,
    actor=None,
    expected_version: int | None = None,
    now: datetime | None = None,
) -> TaskInstance:
    """Create the next instance of a recurring task and make it current.

    The previous instance keeps whatever status it had.

    Raises:
        NotRecurringError: one-time or non-recurring task.
    """
    task = load_task_for_update(db, task_id, expected_version)
    instance = _rollover(db, task, actor, now or datetime.now(timezone.utc))
    db.commit()
    return instance
