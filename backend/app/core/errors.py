"""Domain error hierarchy.

Services raise these; the API layer renders them through a single
exception handler (see app.main). Each error is raised before any
mutation is applied, so callers never observe partial effects.
"""
from typing import Any


class DomainError(Exception):
    """Base class — carries a stable error code and the HTTP status to map to."""

    error_code: str = "DOMAIN_ERROR"
    http_status: int = 400

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        error_code: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details,
            }
        }


# ─── Validation ───

class ValidationError(DomainError):
    """Invalid input. ``details["fields"]`` maps field name → message."""

    error_code = "VALIDATION_ERROR"
    http_status = 400

    @classmethod
    def for_fields(cls, message: str, fields: dict[str, str]) -> "ValidationError":
        return cls(message, details={"fields": fields})

    @property
    def fields(self) -> dict[str, str]:
        return self.details.get("fields", {})


# ─── Authorization ───

class PermissionDeniedError(DomainError):
    error_code = "PERMISSION_DENIED"
    http_status = 403


# ─── Not found ───

class NotFoundError(DomainError):
    error_code = "NOT_FOUND"
    http_status = 404

    @classmethod
    def entity(cls, entity_type: str, entity_id: Any) -> "NotFoundError":
        return cls(
            f"{entity_type} {entity_id} not found.",
            details={"entity_type": entity_type, "entity_id": str(entity_id)},
        )


# ─── Conflicts ───

class ConflictError(DomainError):
    error_code = "CONFLICT"
    http_status = 409


class ConcurrentModificationError(ConflictError):
    """The entity changed since the caller last read it."""

    error_code = "CONCURRENT_MODIFICATION"


class IllegalTransitionError(ConflictError):
    """A status transition was attempted from a state that does not allow it."""

    error_code = "ILLEGAL_TRANSITION"

    def __init__(self, current_status: str, transition: str, allowed_from: list[str] | None = None):
        super().__init__(
            f"Cannot apply '{transition}' to a task in status '{current_status}'.",
            details={
                "current_status": current_status,
                "transition": transition,
                "allowed_from": allowed_from or [],
            },
        )
        self.current_status = current_status
        self.transition = transition


class NotRecurringError(ConflictError):
    """Rollover requested for a task that has no next occurrence."""

    error_code = "NOT_RECURRING"
