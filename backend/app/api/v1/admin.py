"""Admin user management endpoints."""
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.deps import require_role
from app.db.session import get_sync_session
from app.schemas.admin_user import (
    AdminUserCreate,
    AdminUserCreated,
    AdminUserListResponse,
    AdminUserOut,
    AdminUserUpdate,
)
from app.services import users as users_svc

router = APIRouter()


# ─── GET /admin/users ───


@router.get(
    "/users",
    response_model=AdminUserListResponse,
    summary="List users with pagination",
)
def list_users(
    db: Annotated[Session, Depends(get_sync_session)],
    current_user=Depends(require_role("admin")),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    role: str | None = Query(default=None),
):
    """Return paginated list of users, optionally filtered by any held role."""
    users, total = users_svc.list_users(db, role=role, page=page, page_size=page_size)
    return AdminUserListResponse(
        items=[AdminUserOut.model_validate(user) for user in users],
        total=total,
        page=page,
        page_size=page_size,
    )


# ─── POST /admin/users ───


@router.post(
    "/users",
    response_model=AdminUserCreated,
    status_code=status.HTTP_201_CREATED,
    summary="Create a user with a temporary password",
)
def create_user(
    user_data: AdminUserCreate,
    db: Annotated[Session, Depends(get_sync_session)],
    current_user=Depends(require_role("admin")),
):
    user, temporary_password = users_svc.create_user(
        db,
        email=user_data.email,
        name=user_data.name,
        role=user_data.role,
        roles=user_data.roles,
        password=user_data.password,
        actor=current_user,
    )
    return AdminUserCreated(
        **AdminUserOut.model_validate(user).model_dump(),
        temporary_password=temporary_password,
    )


# ─── PATCH /admin/users/{id} ───


@router.patch(
    "/users/{user_id}",
    response_model=AdminUserOut,
    summary="Update a user",
)
def update_user(
    user_id: uuid.UUID,
    user_data: AdminUserUpdate,
    db: Annotated[Session, Depends(get_sync_session)],
    current_user=Depends(require_role("admin")),
):
    user = users_svc.update_user(
        db,
        user_id,
        actor=current_user,
        name=user_data.name,
        role=user_data.role,
        roles=user_data.roles,
        is_active=user_data.is_active,
    )
    return AdminUserOut.model_validate(user)


# ─── DELETE /admin/users/{id} ───


@router.delete(
    "/users/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a user who is no longer assigned to any task",
)
def delete_user(
    user_id: uuid.UUID,
    db: Annotated[Session, Depends(get_sync_session)],
    current_user=Depends(require_role("admin")),
):
    users_svc.delete_user(db, user_id, actor=current_user)
