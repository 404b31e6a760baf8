"""Task CRUD, comments and attachments.

All functions accept a sync SQLAlchemy Session and commit on success. Every
write validates first and mutates second, so a raised DomainError leaves the
session untouched.
"""
import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import settings
from app.core.errors import (
    ConcurrentModificationError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from app.models.task import (
    Task,
    TaskAttachment,
    TaskComment,
    TaskInstance,
    TaskNotificationSettings,
)
from app.rules.enums import (
    OPEN_STATUSES,
    Frequency,
    ObservationStatus,
    PostNotificationFrequency,
    TaskPriority,
    parse_frequency,
    parse_status,
)
from app.rules.maker_checker import ASSIGNMENT_FIELDS, Assignment, ensure_valid_assignment
from app.rules.notification_schedule import normalize_pre_days
from app.rules.recurrence import new_instance, next_due_date
from app.rules.roles import is_admin
from app.services import audit as audit_svc

logger = logging.getLogger(__name__)

_SIMPLE_FIELDS = ("name", "description", "category")

NOTIFICATION_FIELDS = (
    "enable_pre_notifications",
    "pre_days",
    "enable_post_notifications",
    "post_notification_frequency",
    "send_emails",
    "notify_maker",
    "notify_checker1",
    "notify_checker2",
)

# Column defaults, applied up front so a new settings row is complete before flush.
NOTIFICATION_DEFAULTS = {
    "enable_pre_notifications": True,
    "enable_post_notifications": True,
    "post_notification_frequency": PostNotificationFrequency.daily.value,
    "send_emails": True,
    "notify_maker": True,
    "notify_checker1": True,
    "notify_checker2": True,
}


# ─── Loading & concurrency helpers ───

def get_task(db: Session, task_id: uuid.UUID) -> Task:
    task = db.get(Task, task_id)
    if task is None:
        raise NotFoundError.entity("Task", task_id)
    return task


def load_task_for_update(db: Session, task_id: uuid.UUID, expected_version: int | None = None) -> Task:
    """Load the task row with ``SELECT ... FOR UPDATE`` and check its version.

    Raises:
        NotFoundError: no such task.
        ConcurrentModificationError: ``expected_version`` is stale.
    """
    task = db.get(Task, task_id, with_for_update=True)
    if task is None:
        raise NotFoundError.entity("Task", task_id)
    check_version(task, expected_version)
    return task


def check_version(entity, expected_version: int | None) -> None:
    if expected_version is not None and entity.version != expected_version:
        raise ConcurrentModificationError(
            f"{type(entity).__name__} {entity.id} was modified by someone else; reload and retry.",
            details={"expected_version": expected_version, "current_version": entity.version},
        )


def current_instance(db: Session, task: Task, lock: bool = False) -> TaskInstance | None:
    if not task.current_instance_id:
        return None
    if lock:
        return db.get(TaskInstance, task.current_instance_id, with_for_update=True)
    return db.get(TaskInstance, task.current_instance_id)


# ─── Access ───

def ensure_task_access(task: Task, user, slots: tuple[str, ...] = ASSIGNMENT_FIELDS) -> None:
    """Admins see every task; everyone else must hold one of ``slots`` on it."""
    if is_admin(user):
        return
    if any(str(getattr(task, slot)) == str(user.id) for slot in slots):
        return
    raise PermissionDeniedError(
        f"You are not assigned to task {task.id}.",
        details={"task_id": str(task.id), "slots": list(slots)},
    )


def flush_or_conflict(db: Session, entity) -> None:
    """Flush pending changes, turning a lost update into ConcurrentModificationError."""
    try:
        db.flush()
    except StaleDataError as exc:
        db.rollback()
        logger.warning("Concurrent modification of %s %s: %s", type(entity).__name__, entity.id, exc)
        raise ConcurrentModificationError(
            f"{type(entity).__name__} {entity.id} was modified by someone else; reload and retry."
        ) from exc


# ─── Field validation ───

def _parse_enum(enum_cls, value, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError.for_fields(
            f"Invalid {field} '{value}'.",
            {field: f"Must be one of {[e.value for e in enum_cls]}."},
        ) from None


def parse_frequency_field(value) -> Frequency:
    try:
        return parse_frequency(value)
    except ValueError:
        raise ValidationError.for_fields(
            f"Invalid frequency '{value}'.",
            {"frequency": f"Must be one of {[f.value for f in Frequency]}."},
        ) from None


def _resolve_recurrence(frequency: Frequency, is_recurring: bool | None) -> bool:
    if is_recurring is None:
        return frequency is not Frequency.one_time
    if is_recurring and frequency is Frequency.one_time:
        raise ValidationError.for_fields(
            "A recurring task needs a repeating frequency.",
            {"frequency": "Choose a frequency other than one-time for a recurring task."},
        )
    return is_recurring


def _ensure_assignees_exist(db: Session, assignment: Assignment) -> None:
    from app.models.user import User

    missing = {}
    for field in ASSIGNMENT_FIELDS:
        user_id = getattr(assignment, field)
        if not user_id:
            missing[field] = "Required."
            continue
        user = db.get(User, user_id)
        if user is None or not user.is_active:
            missing[field] = f"User {user_id} does not exist or is inactive."
    if missing:
        raise ValidationError.for_fields("Every task needs a Maker, Checker 1 and Checker 2.", missing)


def _notification_values(values: dict[str, Any] | None, keep_pre_days: bool = False) -> dict[str, Any]:
    """Validate a notification settings payload; ``pre_days`` gets the baseline merged in.

    With ``keep_pre_days`` an omitted ``pre_days`` is left out of the result so
    the stored days survive a partial update.
    """
    values = {k: v for k, v in (values or {}).items() if k in NOTIFICATION_FIELDS and v is not None}
    if "pre_days" in values or not keep_pre_days:
        values["pre_days"] = normalize_pre_days(values.get("pre_days"), baseline=settings.default_pre_days)
    if "post_notification_frequency" in values:
        values["post_notification_frequency"] = _parse_enum(
            PostNotificationFrequency, values["post_notification_frequency"], "post_notification_frequency"
        ).value
    return values


# ─── Queries ───

def list_tasks(
    db: Session,
    status: str | None = None,
    category: str | None = None,
    user_id: uuid.UUID | None = None,
    escalated: bool | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Task], int]:
    """Paginated task list. ``user_id`` matches any of the three assignment slots."""
    stmt = select(Task)
    if status:
        try:
            stmt = stmt.where(Task.status == parse_status(status).value)
        except ValueError:
            raise ValidationError.for_fields(f"Unknown status '{status}'.", {"status": "Unknown status."}) from None
    if category:
        stmt = stmt.where(Task.category == category)
    if user_id:
        stmt = stmt.where(
            or_(Task.assigned_to == user_id, Task.checker1 == user_id, Task.checker2 == user_id)
        )
    if escalated is not None:
        stmt = stmt.where(Task.is_escalated.is_(escalated))

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    tasks = db.execute(
        stmt.order_by(Task.due_date.asc()).offset((page - 1) * page_size).limit(page_size)
    ).scalars().all()
    return list(tasks), total


def list_instances(db: Session, task_id: uuid.UUID, viewer=None) -> list[TaskInstance]:
    task = get_task(db, task_id)
    if viewer is not None:
        ensure_task_access(task, viewer)
    return list(
        db.execute(
            select(TaskInstance)
            .where(TaskInstance.base_task_id == task_id)
            .order_by(TaskInstance.due_date.desc())
        ).scalars().all()
    )


# ─── Create ───

def create_task(
    db: Session,
    actor,
    name: str,
    category: str,
    due_date: datetime,
    assigned_to: uuid.UUID,
    checker1: uuid.UUID,
    checker2: uuid.UUID,
    description: str = "",
    priority: str = TaskPriority.medium.value,
    frequency: str = Frequency.one_time.value,
    is_recurring: bool | None = None,
    observation_status: str | None = None,
    notification_settings: dict[str, Any] | None = None,
) -> Task:
    """Create a task (and, for recurring tasks, its first instance).

    Raises:
        ValidationError: colliding or missing assignees, or an invalid field.
    """
    assignment = Assignment(assigned_to, checker1, checker2)
    ensure_valid_assignment(assignment)
    _ensure_assignees_exist(db, assignment)

    freq = parse_frequency_field(frequency)
    recurring = _resolve_recurrence(freq, is_recurring)
    priority = _parse_enum(TaskPriority, priority, "priority").value
    if observation_status is not None:
        observation_status = _parse_enum(ObservationStatus, observation_status, "observation_status").value
    notif = _notification_values(notification_settings)

    task = Task(
        id=uuid.uuid4(),
        name=name,
        description=description or "",
        category=category,
        priority=priority,
        status="pending",
        due_date=due_date,
        frequency=freq.value,
        is_recurring=recurring,
        assigned_to=assigned_to,
        checker1=checker1,
        checker2=checker2,
        is_escalated=False,
        observation_status=observation_status,
        created_by=actor.id if actor is not None else None,
    )
    task.notification_settings = TaskNotificationSettings(task_id=task.id, **{**NOTIFICATION_DEFAULTS, **notif})
    db.add(task)
    db.flush()  # task row must exist before its instance references it

    if recurring:
        instance = new_instance(
            task.id, due_date, assignment, frequency=freq, observation_status=observation_status
        )
        db.add(instance)
        db.flush()
        task.current_instance_id = instance.id
        task.next_instance_date = next_due_date(due_date, freq)

    audit_svc.log(
        db,
        action="task.created",
        entity_type="task",
        entity_id=task.id,
        actor=actor,
        after=audit_svc.task_snapshot(task, {"name": name, "pre_days": notif["pre_days"]}),
    )
    db.commit()
    logger.info("Task %s created (frequency=%s recurring=%s)", task.id, freq.value, recurring)
    return task


# ─── Update ───

def update_task(
    db: Session,
    task_id: uuid.UUID,
    actor,
    changes: dict[str, Any],
    expected_version: int | None = None,
) -> Task:
    """Apply a partial update. Assignee changes are validated merged with stored values.

    The current instance keeps its frozen assignment; a new due date on a
    recurring task moves the current instance (if still open) and the next
    occurrence along with it.
    """
    task = load_task_for_update(db, task_id, expected_version)
    changes = {k: v for k, v in changes.items() if v is not None}
    before = audit_svc.task_snapshot(task)

    # Validate everything before touching the row.
    assignment = Assignment.of(task).merged(**changes)
    if any(field in changes for field in ASSIGNMENT_FIELDS):
        ensure_valid_assignment(assignment)
        _ensure_assignees_exist(db, assignment)

    freq = parse_frequency_field(changes.get("frequency", task.frequency))
    recurring = task.is_recurring
    if "is_recurring" in changes:
        recurring = _resolve_recurrence(freq, changes["is_recurring"])
    elif "frequency" in changes:
        recurring = _resolve_recurrence(freq, None)
    if "priority" in changes:
        changes["priority"] = _parse_enum(TaskPriority, changes["priority"], "priority").value
    if "observation_status" in changes:
        changes["observation_status"] = _parse_enum(
            ObservationStatus, changes["observation_status"], "observation_status"
        ).value
    notif = None
    if "notification_settings" in changes:
        notif = _notification_values(
            changes["notification_settings"], keep_pre_days=task.notification_settings is not None
        )

    # Apply.
    for field in _SIMPLE_FIELDS + ("priority", "observation_status"):
        if field in changes:
            setattr(task, field, changes[field])
    task.assigned_to, task.checker1, task.checker2 = (
        assignment.assigned_to, assignment.checker1, assignment.checker2,
    )
    task.frequency = freq.value

    instance = current_instance(db, task, lock=True) if task.is_recurring else None
    if "due_date" in changes:
        task.due_date = changes["due_date"]
        if instance is not None and parse_status(instance.status) in OPEN_STATUSES:
            instance.due_date = changes["due_date"]
    if recurring and freq is not Frequency.one_time:
        task.next_instance_date = next_due_date(task.due_date, freq)
        if instance is None:
            # Becoming recurring: the template's open cycle becomes the first instance.
            instance = new_instance(
                task.id, task.due_date, assignment, frequency=freq, status=parse_status(task.status)
            )
            db.add(instance)
            db.flush()
            task.current_instance_id = instance.id
    else:
        task.next_instance_date = None
        task.current_instance_id = None
    task.is_recurring = recurring

    if notif is not None:
        if task.notification_settings is None:
            task.notification_settings = TaskNotificationSettings(task_id=task.id, **{**NOTIFICATION_DEFAULTS, **notif})
        else:
            for field, value in notif.items():
                setattr(task.notification_settings, field, value)

    flush_or_conflict(db, task)
    audit_svc.log(
        db,
        action="task.updated",
        entity_type="task",
        entity_id=task.id,
        actor=actor,
        before=before,
        after=audit_svc.task_snapshot(task),
    )
    db.commit()
    return task


# ─── Delete ───

def delete_task(db: Session, task_id: uuid.UUID, actor, expected_version: int | None = None) -> None:
    """Delete a task together with its instances, approvals, comments and attachments."""
    task = load_task_for_update(db, task_id, expected_version)
    audit_svc.log(
        db,
        action="task.deleted",
        entity_type="task",
        entity_id=task.id,
        actor=actor,
        before=audit_svc.task_snapshot(task, {"name": task.name}),
    )
    # Break the template -> instance pointer so the instance rows can go first.
    task.current_instance_id = None
    db.flush()
    db.delete(task)
    db.commit()
    logger.info("Task %s deleted", task_id)


# ─── Comments & attachments ───

def add_comment(db: Session, task_id: uuid.UUID, actor, content: str) -> TaskComment:
    """Comment on the task; recurring tasks attach it to the current instance too."""
    if not content or not content.strip():
        raise ValidationError.for_fields("Comment is empty.", {"content": "Required."})
    task = get_task(db, task_id)
    ensure_task_access(task, actor)
    comment = TaskComment(
        id=uuid.uuid4(),
        task_id=task.id,
        instance_id=task.current_instance_id if task.is_recurring else None,
        user_id=actor.id,
        content=content.strip(),
    )
    db.add(comment)
    db.commit()
    return comment


def add_attachment(
    db: Session,
    task_id: uuid.UUID,
    actor,
    file_name: str,
    file_type: str | None = None,
    file_url: str | None = None,
    storage_key: str | None = None,
) -> TaskAttachment:
    """Record attachment metadata; the file itself is stored elsewhere."""
    if not file_url and not storage_key:
        raise ValidationError.for_fields(
            "An attachment needs a file URL or storage key.",
            {"file_url": "Provide file_url or storage_key."},
        )
    task = get_task(db, task_id)
    ensure_task_access(task, actor)
    attachment = TaskAttachment(
        id=uuid.uuid4(),
        task_id=task.id,
        instance_id=task.current_instance_id if task.is_recurring else None,
        uploaded_by=actor.id,
        file_name=file_name,
        file_type=file_type,
        file_url=file_url,
        storage_key=storage_key,
    )
    db.add(attachment)
    audit_svc.log(
        db,
        action="task.attachment_added",
        entity_type="task",
        entity_id=task.id,
        actor=actor,
        after={"file_name": file_name, "storage_key": storage_key},
    )
    db.commit()
    return attachment
