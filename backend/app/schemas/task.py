"""Pydantic schemas for task, instance and workflow endpoints."""
import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.rules.enums import Decision, TaskPriority


# ─── Notification settings ───

class NotificationSettingsIn(BaseModel):
    enable_pre_notifications: bool | None = None
    pre_days: list[int] | None = Field(
        default=None, description="Custom reminder days; the mandatory 1/3/7 are always added."
    )
    enable_post_notifications: bool | None = None
    post_notification_frequency: str | None = None  # daily | weekly
    send_emails: bool | None = None
    notify_maker: bool | None = None
    notify_checker1: bool | None = None
    notify_checker2: bool | None = None


class NotificationSettingsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    enable_pre_notifications: bool
    pre_days: list[int]
    enable_post_notifications: bool
    post_notification_frequency: str
    send_emails: bool
    notify_maker: bool
    notify_checker1: bool
    notify_checker2: bool


# ─── Task create / update ───

class TaskCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str = ""
    category: str = Field(min_length=1, max_length=100)
    priority: TaskPriority = TaskPriority.medium
    due_date: datetime
    frequency: str = "one-time"
    is_recurring: bool | None = None
    assigned_to: uuid.UUID
    checker1: uuid.UUID
    checker2: uuid.UUID
    observation_status: str | None = None
    notification_settings: NotificationSettingsIn | None = None


class TaskUpdate(BaseModel):
    """Partial update; omitted fields are left unchanged."""
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    category: str | None = None
    priority: TaskPriority | None = None
    due_date: datetime | None = None
    frequency: str | None = None
    is_recurring: bool | None = None
    assigned_to: uuid.UUID | None = None
    checker1: uuid.UUID | None = None
    checker2: uuid.UUID | None = None
    observation_status: str | None = None
    notification_settings: NotificationSettingsIn | None = None
    expected_version: int | None = None


class AssignmentCheckRequest(BaseModel):
    """Form state for the edit-time validator; any slot may still be empty."""
    assigned_to: uuid.UUID | None = None
    checker1: uuid.UUID | None = None
    checker2: uuid.UUID | None = None
    changed_field: str | None = None


class AssignmentCheckResponse(BaseModel):
    result: str
    assigned_to: uuid.UUID | None
    checker1: uuid.UUID | None
    checker2: uuid.UUID | None
    field_errors: dict[str, str]


# ─── Task output ───

class EscalationOut(BaseModel):
    """Effective escalation: the stored one, or what inference derives."""
    is_escalated: bool
    priority: str | None = None
    reason: str | None = None
    explicit: bool = False


class TaskOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    description: str
    category: str
    priority: str
    status: str
    due_date: datetime
    frequency: str
    is_recurring: bool
    assigned_to: uuid.UUID
    checker1: uuid.UUID
    checker2: uuid.UUID
    observation_status: str | None
    is_escalated: bool
    escalation_priority: str | None
    escalation_reason: str | None
    escalated_at: datetime | None
    escalated_by: uuid.UUID | None
    current_instance_id: uuid.UUID | None
    next_instance_date: datetime | None
    submitted_at: datetime | None
    completed_at: datetime | None
    created_by: uuid.UUID | None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int | None = None

    # Populated by the API layer from escalation inference and the state machine.
    effective_escalation: EscalationOut | None = None
    allowed_transitions: list[str] = []
    notification_settings: NotificationSettingsOut | None = None


class TaskListResponse(BaseModel):
    items: list[TaskOut]
    total: int
    page: int
    page_size: int


class TaskInstanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    base_task_id: uuid.UUID
    status: str
    due_date: datetime
    assigned_to: uuid.UUID
    checker1: uuid.UUID
    checker2: uuid.UUID
    observation_status: str | None
    instance_reference: str
    period_start: datetime | None
    period_end: datetime | None
    submitted_at: datetime | None
    completed_at: datetime | None
    version: int | None = None


# ─── Workflow requests ───

class TransitionRequest(BaseModel):
    comment: str | None = None
    expected_version: int | None = None


class SubmitRequest(TransitionRequest):
    observation_status: str | None = None


class DecisionRequest(TransitionRequest):
    decision: Decision


class RolloverRequest(BaseModel):
    expected_version: int | None = None


# ─── Comments & attachments ───

class CommentCreate(BaseModel):
    content: str = Field(min_length=1)


class CommentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    task_id: uuid.UUID
    instance_id: uuid.UUID | None
    user_id: uuid.UUID
    content: str
    created_at: datetime | None = None


class AttachmentCreate(BaseModel):
    file_name: str = Field(min_length=1, max_length=500)
    file_type: str | None = None
    file_url: str | None = None
    storage_key: str | None = None


class AttachmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    task_id: uuid.UUID
    instance_id: uuid.UUID | None
    uploaded_by: uuid.UUID
    file_name: str
    file_type: str | None
    file_url: str | None
    storage_key: str | None
    created_at: datetime | None = None
