"""Identity & role model rules."""
from datetime import datetime, timezone

from app.core.errors import ValidationError
from app.rules.enums import UserRole


def normalize_roles(role: str, roles: list[str] | None = None) -> list[str]:
    """Return the role set for a user: primary role first, no duplicates.

    The primary role is always included even if the caller left it out.
    Raises ValidationError for unknown role names.
    """
    known = {r.value for r in UserRole}
    ordered: list[str] = []
    for name in [role, *(roles or [])]:
        if name not in known:
            raise ValidationError.for_fields(
                f"Unknown role '{name}'.",
                {"roles" if name != role else "role": f"Must be one of {sorted(known)}."},
            )
        if name not in ordered:
            ordered.append(name)
    return ordered


def has_role(user, role: "str | UserRole") -> bool:
    wanted = role.value if isinstance(role, UserRole) else role
    return wanted in (user.roles or [user.role])


def is_admin(user) -> bool:
    return has_role(user, UserRole.admin)


def password_expired(user, now: datetime | None = None) -> bool:
    if user.password_expires_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    return user.password_expires_at <= now
