"""Maker-checker segregation of duties.

Maker, Checker1 and Checker2 of a task must be three different people.
``validate_assignment`` reports the first collision in a fixed order so a
form only ever shows one error at a time; ``apply_assignee_change`` is the
edit-time variant used while a form is being filled in.
"""
import enum
import uuid
from dataclasses import dataclass, replace

from app.core.errors import ValidationError

ASSIGNMENT_FIELDS = ("assigned_to", "checker1", "checker2")

UserId = uuid.UUID | str | None


class AssignmentCheck(str, enum.Enum):
    valid = "valid"
    maker_equals_checker1 = "maker_equals_checker1"
    maker_equals_checker2 = "maker_equals_checker2"
    checker1_equals_checker2 = "checker1_equals_checker2"


# Field-level messages for each violation, keyed by the fields to highlight.
_VIOLATION_FIELDS: dict[AssignmentCheck, dict[str, str]] = {
    AssignmentCheck.maker_equals_checker1: {
        "checker1": "Checker 1 cannot be the same person as the Maker.",
    },
    AssignmentCheck.maker_equals_checker2: {
        "checker2": "Checker 2 cannot be the same person as the Maker.",
    },
    AssignmentCheck.checker1_equals_checker2: {
        "checker2": "Checker 2 cannot be the same person as Checker 1.",
    },
}


@dataclass(frozen=True)
class Assignment:
    """The (maker, checker1, checker2) triple. Empty slots are ``None``."""

    assigned_to: UserId = None
    checker1: UserId = None
    checker2: UserId = None

    @classmethod
    def of(cls, entity) -> "Assignment":
        return cls(entity.assigned_to, entity.checker1, entity.checker2)

    def merged(self, **changes) -> "Assignment":
        """Overlay non-None changes (an update payload) on this assignment."""
        return replace(self, **{k: v for k, v in changes.items() if k in ASSIGNMENT_FIELDS and v is not None})


def _same(a: UserId, b: UserId) -> bool:
    if a is None or b is None or a == "" or b == "":
        return False
    return str(a) == str(b)


def validate_assignment(maker: UserId, checker1: UserId, checker2: UserId) -> AssignmentCheck:
    """Return the first violated pair, checked maker/c1, maker/c2, c1/c2."""
    if _same(maker, checker1):
        return AssignmentCheck.maker_equals_checker1
    if _same(maker, checker2):
        return AssignmentCheck.maker_equals_checker2
    if _same(checker1, checker2):
        return AssignmentCheck.checker1_equals_checker2
    return AssignmentCheck.valid


def field_errors(result: AssignmentCheck) -> dict[str, str]:
    """Field name → message for a validation result (empty when valid)."""
    return dict(_VIOLATION_FIELDS.get(result, {}))


def ensure_valid_assignment(assignment: Assignment) -> None:
    """Submit-time gate. Raises ValidationError carrying field-level errors."""
    result = validate_assignment(assignment.assigned_to, assignment.checker1, assignment.checker2)
    if result is not AssignmentCheck.valid:
        raise ValidationError.for_fields(
            "Maker, Checker 1 and Checker 2 must be different users.",
            field_errors(result),
        )


def apply_assignee_change(assignment: Assignment, field: str, value: UserId) -> Assignment:
    """Apply a single assignee pick the way an edit form does.

    The picked value is kept; any other slot already holding the same person
    is cleared so the form never holds a colliding triple. Run this on every
    change to any of the three fields.
    """
    if field not in ASSIGNMENT_FIELDS:
        raise ValueError(f"Unknown assignment field '{field}'.")
    changes: dict[str, UserId] = {field: value}
    for other in ASSIGNMENT_FIELDS:
        if other != field and _same(getattr(assignment, other), value):
            changes[other] = None
    return replace(assignment, **changes)
