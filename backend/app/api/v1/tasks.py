"""Task API endpoints.

CRUD (admin):
  GET    /tasks                         — list (non-admins see their own tasks)
  POST   /tasks
  GET    /tasks/{task_id}               (assignees or admin)
  PUT    /tasks/{task_id}
  DELETE /tasks/{task_id}
  POST   /tasks/assignment/check        — edit-time maker/checker validation
  POST   /tasks/import                  — bulk create from a CSV upload

Workflow (assignee or admin):
  POST /tasks/{task_id}/start | submit | rework
  POST /tasks/{task_id}/checker1-decision
  POST /tasks/{task_id}/checker2-decision
  POST /tasks/{task_id}/generate-next-instance   (admin)

Related records (assignees or admin):
  GET  /tasks/{task_id}/instances
  POST /tasks/{task_id}/comments
  POST /tasks/{task_id}/attachments
  GET  /tasks/{task_id}/notification-schedule
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from sqlalchemy.orm import Session

from app.core.deps import get_current_user, require_role
from app.core.errors import ValidationError
from app.db.session import get_sync_session
from app.rules.escalation import assess_escalation
from app.rules.maker_checker import (
    ASSIGNMENT_FIELDS,
    Assignment,
    apply_assignee_change,
    field_errors,
    validate_assignment,
)
from app.rules.enums import parse_status
from app.rules.roles import is_admin
from app.rules.task_state import Transition, allowed_transitions
from app.schemas.imports import ImportResult
from app.schemas.notification import NotificationEventOut, NotificationScheduleResponse
from app.schemas.task import (
    AssignmentCheckRequest,
    AssignmentCheckResponse,
    AttachmentCreate,
    AttachmentOut,
    CommentCreate,
    CommentOut,
    DecisionRequest,
    EscalationOut,
    RolloverRequest,
    SubmitRequest,
    TaskCreate,
    TaskInstanceOut,
    TaskListResponse,
    TaskOut,
    TaskUpdate,
    TransitionRequest,
)
from app.services import notifications as notifications_svc
from app.services import task_import as task_import_svc
from app.services import tasks as tasks_svc
from app.services import workflow as workflow_svc

logger = logging.getLogger(__name__)

router = APIRouter()

DbSession = Annotated[Session, Depends(get_sync_session)]


def task_out(task, now: datetime | None = None) -> TaskOut:
    """Serialize a task with its effective escalation and the moves open from its status."""
    out = TaskOut.model_validate(task)
    out.allowed_transitions = [t.value for t in allowed_transitions(parse_status(task.status))]
    escalation = assess_escalation(task, now or datetime.now(timezone.utc))
    out.effective_escalation = EscalationOut(
        is_escalated=escalation.is_escalated,
        priority=escalation.priority.value if escalation.priority else None,
        reason=escalation.reason,
        explicit=escalation.explicit,
    )
    return out


# ─── Edit-time validation ───

@router.post(
    "/assignment/check",
    response_model=AssignmentCheckResponse,
    summary="Validate (and de-collide) an assignment while a form is being edited",
)
def check_assignment(
    body: AssignmentCheckRequest,
    current_user=Depends(get_current_user),
):
    """Apply ``changed_field`` the way the form does, then report the first collision.

    When ``changed_field`` is given, any other slot holding the same person is
    cleared and returned cleared; the caller should replace its form state.
    """
    assignment = Assignment(body.assigned_to, body.checker1, body.checker2)
    if body.changed_field:
        if body.changed_field not in ASSIGNMENT_FIELDS:
            raise ValidationError.for_fields(
                f"Unknown assignment field '{body.changed_field}'.",
                {"changed_field": f"Must be one of {list(ASSIGNMENT_FIELDS)}."},
            )
        assignment = apply_assignee_change(
            assignment, body.changed_field, getattr(assignment, body.changed_field, None)
        )
    result = validate_assignment(assignment.assigned_to, assignment.checker1, assignment.checker2)
    return AssignmentCheckResponse(
        result=result.value,
        assigned_to=assignment.assigned_to,
        checker1=assignment.checker1,
        checker2=assignment.checker2,
        field_errors=field_errors(result),
    )


# ─── CRUD ───

@router.get("", response_model=TaskListResponse, summary="List tasks")
def list_tasks(
    db: DbSession,
    current_user=Depends(get_current_user),
    status_filter: str | None = Query(default=None, alias="status"),
    category: str | None = Query(default=None),
    assignee: uuid.UUID | None = Query(default=None),
    escalated: bool | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
):
    # Non-admins only ever see tasks they are assigned to.
    user_id = assignee if is_admin(current_user) else current_user.id
    tasks, total = tasks_svc.list_tasks(
        db,
        status=status_filter,
        category=category,
        user_id=user_id,
        escalated=escalated,
        page=page,
        page_size=page_size,
    )
    now = datetime.now(timezone.utc)
    return TaskListResponse(
        items=[task_out(t, now) for t in tasks], total=total, page=page, page_size=page_size
    )


@router.post(
    "",
    response_model=TaskOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a task",
)
def create_task(
    body: TaskCreate,
    db: DbSession,
    current_user=Depends(require_role("admin")),
):
    task = tasks_svc.create_task(
        db,
        current_user,
        name=body.name,
        description=body.description,
        category=body.category,
        priority=body.priority.value,
        due_date=body.due_date,
        frequency=body.frequency,
        is_recurring=body.is_recurring,
        assigned_to=body.assigned_to,
        checker1=body.checker1,
        checker2=body.checker2,
        observation_status=body.observation_status,
        notification_settings=body.notification_settings.model_dump() if body.notification_settings else None,
    )
    return task_out(task)


@router.post("/import", response_model=ImportResult, summary="Bulk create tasks from a CSV file (admin)")
def import_tasks(
    db: DbSession,
    current_user=Depends(require_role("admin")),
    file: UploadFile = File(...),
):
    """Rows that fail validation are skipped and listed in ``errors``; the rest are created."""
    return task_import_svc.import_tasks(db, current_user, file.file.read())


@router.get("/{task_id}", response_model=TaskOut, summary="Get a task")
def get_task(task_id: uuid.UUID, db: DbSession, current_user=Depends(get_current_user)):
    task = tasks_svc.get_task(db, task_id)
    tasks_svc.ensure_task_access(task, current_user)
    return task_out(task)


@router.put("/{task_id}", response_model=TaskOut, summary="Update a task")
def update_task(
    task_id: uuid.UUID,
    body: TaskUpdate,
    db: DbSession,
    current_user=Depends(require_role("admin")),
):
    changes = body.model_dump(exclude_unset=True, exclude={"expected_version", "notification_settings"})
    if "priority" in changes and changes["priority"] is not None:
        changes["priority"] = changes["priority"].value
    if body.notification_settings is not None:
        changes["notification_settings"] = body.notification_settings.model_dump()
    task = tasks_svc.update_task(db, task_id, current_user, changes, expected_version=body.expected_version)
    return task_out(task)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a task")
def delete_task(
    task_id: uuid.UUID,
    db: DbSession,
    current_user=Depends(require_role("admin")),
    expected_version: int | None = Query(default=None),
):
    tasks_svc.delete_task(db, task_id, current_user, expected_version=expected_version)


# ─── Workflow ───

@router.post("/{task_id}/start", response_model=TaskOut, summary="Maker starts work")
def start_task(task_id: uuid.UUID, body: TransitionRequest, db: DbSession, current_user=Depends(get_current_user)):
    task = workflow_svc.apply_transition(
        db, task_id, Transition.start, current_user,
        comment=body.comment, expected_version=body.expected_version,
    )
    return task_out(task)


@router.post("/{task_id}/submit", response_model=TaskOut, summary="Maker submits for review")
def submit_task(task_id: uuid.UUID, body: SubmitRequest, db: DbSession, current_user=Depends(get_current_user)):
    task = workflow_svc.apply_transition(
        db, task_id, Transition.submit, current_user,
        comment=body.comment,
        observation_status=body.observation_status,
        expected_version=body.expected_version,
    )
    return task_out(task)


@router.post("/{task_id}/rework", response_model=TaskOut, summary="Maker reopens a rejected task")
def rework_task(task_id: uuid.UUID, body: TransitionRequest, db: DbSession, current_user=Depends(get_current_user)):
    task = workflow_svc.apply_transition(
        db, task_id, Transition.rework, current_user,
        comment=body.comment, expected_version=body.expected_version,
    )
    return task_out(task)


@router.post("/{task_id}/checker1-decision", response_model=TaskOut, summary="First-level review")
def checker1_decision(
    task_id: uuid.UUID, body: DecisionRequest, db: DbSession, current_user=Depends(get_current_user)
):
    task = workflow_svc.apply_transition(
        db, task_id, Transition.checker1_decision, current_user,
        decision=body.decision, comment=body.comment, expected_version=body.expected_version,
    )
    return task_out(task)


@router.post("/{task_id}/checker2-decision", response_model=TaskOut, summary="Final approval")
def checker2_decision(
    task_id: uuid.UUID, body: DecisionRequest, db: DbSession, current_user=Depends(get_current_user)
):
    task = workflow_svc.apply_transition(
        db, task_id, Transition.checker2_decision, current_user,
        decision=body.decision, comment=body.comment, expected_version=body.expected_version,
    )
    return task_out(task)


# ─── Recurrence ───

@router.get("/{task_id}/instances", response_model=list[TaskInstanceOut], summary="List task instances")
def list_instances(task_id: uuid.UUID, db: DbSession, current_user=Depends(get_current_user)):
    instances = tasks_svc.list_instances(db, task_id, viewer=current_user)
    return [TaskInstanceOut.model_validate(i) for i in instances]


@router.post(
    "/{task_id}/generate-next-instance",
    response_model=TaskInstanceOut,
    status_code=status.HTTP_201_CREATED,
    summary="Roll a recurring task over to its next instance",
)
def generate_next_instance(
    task_id: uuid.UUID,
    db: DbSession,
    body: RolloverRequest | None = None,
    current_user=Depends(require_role("admin")),
):
    instance = workflow_svc.rollover_task(
        db, task_id, actor=current_user, expected_version=body.expected_version if body else None
    )
    return TaskInstanceOut.model_validate(instance)


# ─── Comments & attachments ───

@router.post(
    "/{task_id}/comments",
    response_model=CommentOut,
    status_code=status.HTTP_201_CREATED,
    summary="Comment on a task",
)
def add_comment(task_id: uuid.UUID, body: CommentCreate, db: DbSession, current_user=Depends(get_current_user)):
    return CommentOut.model_validate(tasks_svc.add_comment(db, task_id, current_user, body.content))


@router.post(
    "/{task_id}/attachments",
    response_model=AttachmentOut,
    status_code=status.HTTP_201_CREATED,
    summary="Record an uploaded file against a task",
)
def add_attachment(
    task_id: uuid.UUID, body: AttachmentCreate, db: DbSession, current_user=Depends(get_current_user)
):
    attachment = tasks_svc.add_attachment(
        db,
        task_id,
        current_user,
        file_name=body.file_name,
        file_type=body.file_type,
        file_url=body.file_url,
        storage_key=body.storage_key,
    )
    return AttachmentOut.model_validate(attachment)


# ─── Notifications ───

@router.get(
    "/{task_id}/notification-schedule",
    response_model=NotificationScheduleResponse,
    summary="Preview every reminder this task will generate",
)
def notification_schedule(task_id: uuid.UUID, db: DbSession, current_user=Depends(get_current_user)):
    events = notifications_svc.schedule_for_task(db, task_id, viewer=current_user)
    return NotificationScheduleResponse(
        task_id=task_id,
        items=[
            NotificationEventOut(
                task_id=e.task_id,
                date=e.date,
                recipient_id=e.recipient_id,
                recipient_role=e.recipient_role.value,
                message=e.message,
                severity=e.severity,
                via_email=e.via_email,
                kind=e.kind,
            )
            for e in events
        ],
        total=len(events),
    )
