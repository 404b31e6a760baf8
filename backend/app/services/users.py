"""User administration and the identity resolver.

All functions accept a sync SQLAlchemy Session so the notification job can
resolve recipients with the same code the API uses.
"""
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from app.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from app.core.security import (
    generate_temporary_password,
    hash_password,
    password_expiry_from,
    verify_password,
)
from app.models.user import User
from app.rules.roles import normalize_roles, password_expired
from app.services import audit as audit_svc

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def _user_snapshot(user: User) -> dict:
    return {
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "roles": list(user.roles or []),
        "is_active": user.is_active,
    }


# ─── Identity resolver ───

def get_user_by_id(db: Session, user_id: uuid.UUID | str | None) -> User | None:
    if not user_id:
        return None
    try:
        user_uuid = uuid.UUID(str(user_id))
    except ValueError:
        return None
    return db.get(User, user_uuid)


def get_user_or_404(db: Session, user_id: uuid.UUID | str) -> User:
    user = get_user_by_id(db, user_id)
    if user is None:
        raise NotFoundError.entity("User", user_id)
    return user


def make_user_resolver(db: Session) -> Callable[[uuid.UUID | str], User | None]:
    """Resolver for the notification scheduler, memoised per call site.

    Inactive users resolve to None so they receive nothing.
    """
    cache: dict[str, User | None] = {}

    def resolve(user_id):
        key = str(user_id)
        if key not in cache:
            user = get_user_by_id(db, user_id)
            cache[key] = user if user is not None and user.is_active else None
        return cache[key]

    return resolve


# ─── Authentication ───

def authenticate(db: Session, email: str, password: str) -> User | None:
    """Return the user for valid credentials, else None."""
    user = db.execute(select(User).where(User.email == email.lower())).scalars().first()
    if user is None or not verify_password(password, user.password_hash):
        return None
    return user


def change_password(
    db: Session,
    user: User,
    current_password: str,
    new_password: str,
    now: datetime | None = None,
) -> User:
    """Self-service password change; clears the first-login flag and extends expiry."""
    if not verify_password(current_password, user.password_hash):
        raise PermissionDeniedError("Current password is incorrect.")
    if len(new_password) < MIN_PASSWORD_LENGTH:
        raise ValidationError.for_fields(
            "Password too short.",
            {"new_password": f"Must be at least {MIN_PASSWORD_LENGTH} characters."},
        )
    if new_password == current_password:
        raise ValidationError.for_fields(
            "New password must differ from the current one.",
            {"new_password": "Choose a password you have not just used."},
        )

    now = now or datetime.now(timezone.utc)
    was_expired = password_expired(user, now)
    user.password_hash = hash_password(new_password)
    user.is_first_login = False
    user.password_expires_at = password_expiry_from(now)

    audit_svc.log(
        db,
        action="user.password_changed",
        entity_type="user",
        entity_id=user.id,
        actor=user,
        after={"password_expires_at": user.password_expires_at, "was_expired": was_expired},
    )
    db.commit()
    logger.info("Password changed for user %s", user.id)
    return user


# ─── Admin CRUD ───

def list_users(
    db: Session,
    role: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[User], int]:
    stmt = select(User)
    if role:
        # Primary role, or held as an additional role.
        stmt = stmt.where(or_(User.role == role, User.roles.contains([role])))

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    users = db.execute(
        stmt.order_by(User.created_at.desc()).offset((page - 1) * page_size).limit(page_size)
    ).scalars().all()
    return list(users), total


def create_user(
    db: Session,
    email: str,
    name: str,
    role: str,
    roles: list[str] | None = None,
    password: str | None = None,
    actor: User | None = None,
    now: datetime | None = None,
) -> tuple[User, str]:
    """Create a user with a temporary credential.

    Returns the user and the plaintext temporary password, which is shown to
    the admin once and never stored.

    Raises:
        ValidationError: unknown role names.
        ConflictError: the email is already registered.
    """
    role_list = normalize_roles(role, roles)
    email = email.lower()

    existing = db.execute(select(User).where(User.email == email)).scalars().first()
    if existing is not None:
        raise ConflictError(
            f"A user with email {email} already exists.", details={"email": email}
        )

    now = now or datetime.now(timezone.utc)
    temporary_password = password or generate_temporary_password()
    user = User(
        id=uuid.uuid4(),
        email=email,
        name=name,
        role=role,
        roles=role_list,
        password_hash=hash_password(temporary_password),
        is_active=True,
        is_first_login=True,
        password_expires_at=password_expiry_from(now),
    )
    db.add(user)
    db.flush()

    audit_svc.log(
        db,
        action="user.created",
        entity_type="user",
        entity_id=user.id,
        actor=actor,
        after=_user_snapshot(user),
    )
    db.commit()
    logger.info("User %s created with roles %s", user.email, role_list)
    return user, temporary_password


def update_user(
    db: Session,
    user_id: uuid.UUID,
    actor: User | None = None,
    name: str | None = None,
    role: str | None = None,
    roles: list[str] | None = None,
    is_active: bool | None = None,
) -> User:
    user = get_user_or_404(db, user_id)
    before = _user_snapshot(user)

    if name is not None:
        user.name = name
    if role is not None or roles is not None:
        new_role = role or user.role
        # Keep the existing extra roles unless a new set was supplied.
        user.roles = normalize_roles(new_role, roles if roles is not None else user.roles)
        user.role = new_role
    if is_active is not None:
        user.is_active = is_active

    audit_svc.log(
        db,
        action="user.updated",
        entity_type="user",
        entity_id=user.id,
        actor=actor,
        before=before,
        after=_user_snapshot(user),
    )
    db.commit()
    return user


def delete_user(db: Session, user_id: uuid.UUID, actor: User | None = None) -> None:
    """Hard delete, refused while any task or instance still names the user."""
    from app.models.task import Task, TaskInstance

    user = get_user_or_404(db, user_id)

    referenced = db.execute(
        select(func.count(Task.id)).where(
            or_(Task.assigned_to == user.id, Task.checker1 == user.id, Task.checker2 == user.id)
        )
    ).scalar_one()
    referenced += db.execute(
        select(func.count(TaskInstance.id)).where(
            or_(
                TaskInstance.assigned_to == user.id,
                TaskInstance.checker1 == user.id,
                TaskInstance.checker2 == user.id,
            )
        )
    ).scalar_one()
    if referenced:
        raise ConflictError(
            f"User {user.email} is still assigned to {referenced} task(s); reassign them first.",
            details={"user_id": str(user.id), "assignments": referenced},
        )

    audit_svc.log(
        db,
        action="user.deleted",
        entity_type="user",
        entity_id=user.id,
        actor=actor,
        before=_user_snapshot(user),
    )
    db.delete(user)
    db.commit()
    logger.info("User %s deleted", user.email)
