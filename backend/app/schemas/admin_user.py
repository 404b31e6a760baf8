"""Pydantic schemas for admin user management."""
import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr


class AdminUserCreate(BaseModel):
    """Create a new user (admin only). Omit ``password`` to generate one."""
    email: EmailStr
    name: str
    role: str
    roles: list[str] | None = None
    password: str | None = None


class AdminUserUpdate(BaseModel):
    """Update user fields (admin only)."""
    name: str | None = None
    role: str | None = None
    roles: list[str] | None = None
    is_active: bool | None = None


class AdminUserOut(BaseModel):
    """User response for admin endpoints."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    email: str
    name: str
    role: str
    roles: list[str]
    is_active: bool
    is_first_login: bool
    password_expires_at: datetime | None
    created_at: datetime


class AdminUserCreated(AdminUserOut):
    """Returned once on creation; the temporary password is never shown again."""
    temporary_password: str


class AdminUserListResponse(BaseModel):
    """Paginated list of users."""
    items: list[AdminUserOut]
    total: int
    page: int
    page_size: int
