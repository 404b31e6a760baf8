"""Recurrence engine — next due dates and instance rollover for recurring tasks.

Calendar arithmetic uses ``dateutil.relativedelta``. Adding months keeps the
day of month where it exists and otherwise clamps to the last day of the
target month: 2024-01-31 + 1 month is 2024-02-29, 2023-01-31 + 1 month is
2023-02-28. Clamping is not undone later, so a monthly series that starts on
the 31st settles on the 28th/29th after February.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime

from dateutil.relativedelta import relativedelta

from app.core.errors import NotRecurringError
from app.models.task import TaskInstance
from app.rules.enums import Frequency, TaskStatus, parse_frequency
from app.rules.maker_checker import Assignment

INSTANCE_REFERENCE_FORMAT = "%b %Y"  # "Jan 2024"

_STEP: dict[Frequency, relativedelta] = {
    Frequency.daily: relativedelta(days=1),
    Frequency.weekly: relativedelta(days=7),
    Frequency.fortnightly: relativedelta(days=14),
    Frequency.monthly: relativedelta(months=1),
    Frequency.quarterly: relativedelta(months=3),
    Frequency.annually: relativedelta(months=12),
}


def next_due_date(due: datetime, frequency: "Frequency | str") -> datetime | None:
    """Due date of the occurrence after ``due``; ``None`` for one-time tasks."""
    step = _STEP.get(parse_frequency(frequency))
    if step is None:
        return None
    return due + step


def period_bounds(due: datetime, frequency: "Frequency | str") -> tuple[datetime, datetime]:
    """Reporting period an instance covers: one period back from its due date.

    Daily and one-time instances cover only the due date itself.
    """
    freq = parse_frequency(frequency)
    if freq in (Frequency.daily, Frequency.one_time):
        return due, due
    return due - _STEP[freq], due


def instance_reference(due: datetime) -> str:
    return due.strftime(INSTANCE_REFERENCE_FORMAT)


def new_instance(
    base_task_id: uuid.UUID,
    due_date: datetime,
    assignment: Assignment,
    frequency: "Frequency | str" = Frequency.one_time,
    status: TaskStatus = TaskStatus.pending,
    observation_status: str | None = None,
) -> TaskInstance:
    """Build (but do not persist) a TaskInstance for ``due_date``.

    The assignment triple is copied, so later changes to the template's
    assignees do not affect this instance.
    """
    period_start, period_end = period_bounds(due_date, frequency)
    return TaskInstance(
        id=uuid.uuid4(),
        base_task_id=base_task_id,
        status=status.value,
        due_date=due_date,
        assigned_to=assignment.assigned_to,
        checker1=assignment.checker1,
        checker2=assignment.checker2,
        observation_status=observation_status,
        instance_reference=instance_reference(due_date),
        period_start=period_start,
        period_end=period_end,
    )


@dataclass(frozen=True)
class RolloverPlan:
    next_due: datetime
    following_due: datetime | None


def plan_rollover(task) -> RolloverPlan:
    """Work out the due date of the next instance and the one after it.

    Uses the task's stored ``next_instance_date`` when present, otherwise
    steps forward from its current due date.

    Raises:
        NotRecurringError: the task is not recurring or its frequency has no
            next occurrence.
    """
    frequency = parse_frequency(task.frequency)
    if not task.is_recurring or frequency is Frequency.one_time:
        raise NotRecurringError(
            f"Task {task.id} is not recurring (frequency={frequency.value}).",
            details={"task_id": str(task.id), "frequency": frequency.value},
        )

    next_due = task.next_instance_date or next_due_date(task.due_date, frequency)
    return RolloverPlan(next_due=next_due, following_due=next_due_date(next_due, frequency))
