"""Pydantic schemas for CSV bulk task import results."""
import uuid

from pydantic import BaseModel


class ImportRowError(BaseModel):
    row: int
    field: str
    message: str


class ImportResult(BaseModel):
    created: int
    skipped: int
    errors: list[ImportRowError]
    task_ids: list[uuid.UUID] = []
