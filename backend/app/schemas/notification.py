"""Pydantic schemas for notification schedule previews."""
import uuid
from datetime import date

from pydantic import BaseModel


class NotificationEventOut(BaseModel):
    model_config = {"from_attributes": True}

    task_id: uuid.UUID
    date: date
    recipient_id: uuid.UUID
    recipient_role: str
    message: str
    severity: str
    via_email: bool
    kind: str


class NotificationScheduleResponse(BaseModel):
    task_id: uuid.UUID
    items: list[NotificationEventOut]
    total: int
