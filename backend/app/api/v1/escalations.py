"""Escalation endpoints.

  GET  /escalations                   — explicit + inferred, most urgent first;
                                         checkers see their own tasks only
  POST /tasks/{task_id}/escalate       (the task's checkers or admin)
  POST /tasks/{task_id}/deescalate
"""
import uuid
from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.v1.tasks import task_out
from app.core.deps import require_role
from app.rules.roles import is_admin
from app.db.session import get_sync_session
from app.rules.enums import EscalationPriority
from app.schemas.escalation import (
    DeescalateRequest,
    EscalatedTaskOut,
    EscalateRequest,
    EscalationListResponse,
)
from app.schemas.task import EscalationOut, TaskOut
from app.services import escalations as escalations_svc

router = APIRouter()
task_router = APIRouter()

DbSession = Annotated[Session, Depends(get_sync_session)]

_REVIEWERS = ("admin", "checker1", "checker2")


@router.get("", response_model=EscalationListResponse, summary="List escalated tasks")
def list_escalations(
    db: DbSession,
    current_user=Depends(require_role(*_REVIEWERS)),
    priority: EscalationPriority | None = Query(default=None),
):
    now = datetime.now(timezone.utc)
    items, summary = escalations_svc.list_escalations(
        db, priority=priority, now=now, user_id=None if is_admin(current_user) else current_user.id
    )
    return EscalationListResponse(
        items=[
            EscalatedTaskOut(
                task=TaskOut.model_validate(item.task),
                escalation=EscalationOut(
                    is_escalated=True,
                    priority=item.escalation.priority.value if item.escalation.priority else None,
                    reason=item.escalation.reason,
                    explicit=item.escalation.explicit,
                ),
            )
            for item in items
        ],
        total=len(items),
        summary=summary,
    )


@task_router.post("/{task_id}/escalate", response_model=TaskOut, summary="Escalate a task")
def escalate_task(
    task_id: uuid.UUID,
    body: EscalateRequest,
    db: DbSession,
    current_user=Depends(require_role(*_REVIEWERS)),
):
    task = escalations_svc.escalate_task(
        db, task_id, current_user, body.priority, body.reason, expected_version=body.expected_version
    )
    return task_out(task)


@task_router.post("/{task_id}/deescalate", response_model=TaskOut, summary="Clear an explicit escalation")
def deescalate_task(
    task_id: uuid.UUID,
    db: DbSession,
    body: DeescalateRequest | None = None,
    current_user=Depends(require_role(*_REVIEWERS)),
):
    task = escalations_svc.deescalate_task(
        db, task_id, current_user, expected_version=body.expected_version if body else None
    )
    return task_out(task)
