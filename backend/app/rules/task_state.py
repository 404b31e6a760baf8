"""Task approval state machine.

    pending ──start──▶ in-progress
    pending / in-progress ──submit──▶ submitted
    submitted ──checker1-decision──▶ checker1-approved | rejected
    checker1-approved ──checker2-decision──▶ approved | rejected
    rejected ──rework──▶ in-progress

``plan_transition`` is pure: it validates the request against the current
status and returns what should change. Nothing is mutated when it raises.
"""
import enum
from dataclasses import dataclass
from datetime import datetime

from app.core.errors import IllegalTransitionError, ValidationError
from app.rules.enums import Decision, TaskStatus, UserRole


class Transition(str, enum.Enum):
    start = "start"
    submit = "submit"
    checker1_decision = "checker1-decision"
    checker2_decision = "checker2-decision"
    rework = "rework"


LEGAL_SOURCES: dict[Transition, frozenset[TaskStatus]] = {
    Transition.start: frozenset({TaskStatus.pending}),
    Transition.submit: frozenset({TaskStatus.pending, TaskStatus.in_progress}),
    Transition.checker1_decision: frozenset({TaskStatus.submitted}),
    Transition.checker2_decision: frozenset({TaskStatus.checker1_approved}),
    Transition.rework: frozenset({TaskStatus.rejected}),
}

# Which assignment slot may perform each transition.
ACTING_ROLE: dict[Transition, UserRole] = {
    Transition.start: UserRole.maker,
    Transition.submit: UserRole.maker,
    Transition.rework: UserRole.maker,
    Transition.checker1_decision: UserRole.checker1,
    Transition.checker2_decision: UserRole.checker2,
}

_DECISION_TARGETS: dict[Transition, dict[Decision, TaskStatus]] = {
    Transition.checker1_decision: {
        Decision.approved: TaskStatus.checker1_approved,
        Decision.rejected: TaskStatus.rejected,
    },
    Transition.checker2_decision: {
        Decision.approved: TaskStatus.approved,
        Decision.rejected: TaskStatus.rejected,
    },
}

_SIMPLE_TARGETS: dict[Transition, TaskStatus] = {
    Transition.start: TaskStatus.in_progress,
    Transition.submit: TaskStatus.submitted,
    Transition.rework: TaskStatus.in_progress,
}

TERMINAL_STATUSES = frozenset({TaskStatus.approved})


@dataclass(frozen=True)
class ApprovalRecord:
    user_role: UserRole
    decision: Decision


@dataclass(frozen=True)
class TransitionOutcome:
    transition: Transition
    from_status: TaskStatus
    to_status: TaskStatus
    submitted_at: datetime | None = None
    completed_at: datetime | None = None
    approval: ApprovalRecord | None = None

    @property
    def completes(self) -> bool:
        return self.to_status in TERMINAL_STATUSES


def can_apply(status: TaskStatus, transition: Transition) -> bool:
    return status in LEGAL_SOURCES[transition]


def allowed_transitions(status: TaskStatus) -> list[Transition]:
    return [t for t in Transition if status in LEGAL_SOURCES[t]]


def plan_transition(
    status: TaskStatus,
    transition: Transition,
    now: datetime,
    decision: Decision | None = None,
) -> TransitionOutcome:
    """Validate ``transition`` from ``status`` and describe its effects.

    Raises:
        IllegalTransitionError: ``status`` is not a legal source for ``transition``.
        ValidationError: a checker transition without a decision.
    """
    if not can_apply(status, transition):
        raise IllegalTransitionError(
            current_status=status.value,
            transition=transition.value,
            allowed_from=sorted(s.value for s in LEGAL_SOURCES[transition]),
        )

    if transition in _DECISION_TARGETS:
        if decision is None:
            raise ValidationError.for_fields(
                "A decision is required.", {"decision": "Must be 'approved' or 'rejected'."}
            )
        to_status = _DECISION_TARGETS[transition][decision]
        role = UserRole.checker1 if transition is Transition.checker1_decision else UserRole.checker2
        return TransitionOutcome(
            transition=transition,
            from_status=status,
            to_status=to_status,
            completed_at=now if to_status is TaskStatus.approved else None,
            approval=ApprovalRecord(user_role=role, decision=decision),
        )

    to_status = _SIMPLE_TARGETS[transition]
    return TransitionOutcome(
        transition=transition,
        from_status=status,
        to_status=to_status,
        submitted_at=now if transition is Transition.submit else None,
    )
