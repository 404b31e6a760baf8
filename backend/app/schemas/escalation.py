"""Pydantic schemas for the escalation queue."""
from pydantic import BaseModel, Field

from app.rules.enums import EscalationPriority
from app.schemas.task import EscalationOut, TaskOut


class EscalateRequest(BaseModel):
    priority: EscalationPriority
    reason: str = Field(min_length=1)
    expected_version: int | None = None


class DeescalateRequest(BaseModel):
    expected_version: int | None = None


class EscalatedTaskOut(BaseModel):
    task: TaskOut
    escalation: EscalationOut


class EscalationListResponse(BaseModel):
    items: list[EscalatedTaskOut]
    total: int
    summary: dict[str, int]  # priority -> count, over all escalated tasks
