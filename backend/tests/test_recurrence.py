"""Tests for the recurrence engine: next dates, instances and rollover plans."""
import uuid
from datetime import datetime, timezone

import pytest

from app.core.errors import NotRecurringError
from app.models.task import Task
from app.rules.enums import Frequency, TaskStatus
from app.rules.maker_checker import Assignment
from app.rules.recurrence import (
    instance_reference,
    new_instance,
    next_due_date,
    period_bounds,
    plan_rollover,
)


def _dt(year, month, day) -> datetime:
    return datetime(year, month, day, 9, 0, tzinfo=timezone.utc)


def _make_task(frequency: str = "monthly", due: datetime | None = None, **overrides) -> Task:
    fields = dict(
        id=uuid.uuid4(),
        name="Bank reconciliation",
        status="pending",
        frequency=frequency,
        is_recurring=frequency != "one-time",
        due_date=due or _dt(2024, 1, 31),
        next_instance_date=None,
        assigned_to=uuid.uuid4(),
        checker1=uuid.uuid4(),
        checker2=uuid.uuid4(),
    )
    fields.update(overrides)
    return Task(**fields)


# ─── next_due_date ────────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "frequency, expected",
    [
        ("daily", _dt(2024, 3, 11)),
        ("weekly", _dt(2024, 3, 17)),
        ("fortnightly", _dt(2024, 3, 24)),
        ("bi-weekly", _dt(2024, 3, 24)),
        ("monthly", _dt(2024, 4, 10)),
        ("quarterly", _dt(2024, 6, 10)),
        ("annually", _dt(2025, 3, 10)),
        ("yearly", _dt(2025, 3, 10)),
    ],
)
def test_next_due_date_per_frequency(frequency, expected):
    assert next_due_date(_dt(2024, 3, 10), frequency) == expected


def test_one_time_has_no_next_date():
    assert next_due_date(_dt(2024, 3, 10), "one-time") is None
    assert next_due_date(_dt(2024, 3, 10), Frequency.one_time) is None


def test_month_end_clamps_to_leap_day():
    """Jan 31 + 1 month is the last day of February (leap year)."""
    assert next_due_date(_dt(2024, 1, 31), "monthly") == _dt(2024, 2, 29)


def test_month_end_clamps_in_common_year():
    assert next_due_date(_dt(2023, 1, 31), "monthly") == _dt(2023, 2, 28)


def test_clamped_day_is_not_restored():
    feb = next_due_date(_dt(2024, 1, 31), "monthly")
    assert next_due_date(feb, "monthly") == _dt(2024, 3, 29)


def test_quarterly_from_month_end():
    assert next_due_date(_dt(2024, 11, 30), "quarterly") == _dt(2025, 2, 28)


def test_unknown_frequency_raises():
    with pytest.raises(ValueError):
        next_due_date(_dt(2024, 1, 1), "hourly")


# ─── Instances ────────────────────────────────────────────────────────────────

def test_instance_reference_format():
    assert instance_reference(_dt(2024, 1, 15)) == "Jan 2024"


def test_period_bounds_monthly():
    assert period_bounds(_dt(2024, 3, 31), "monthly") == (_dt(2024, 2, 29), _dt(2024, 3, 31))


def test_period_bounds_daily_is_single_day():
    assert period_bounds(_dt(2024, 3, 31), "daily") == (_dt(2024, 3, 31), _dt(2024, 3, 31))


def test_new_instance_preserves_base_task_assignment_and_reference():
    base_task_id = uuid.uuid4()
    assignment = Assignment(uuid.uuid4(), uuid.uuid4(), uuid.uuid4())

    instance = new_instance(base_task_id, _dt(2024, 2, 29), assignment, frequency="monthly")

    assert instance.base_task_id == base_task_id
    assert (instance.assigned_to, instance.checker1, instance.checker2) == (
        assignment.assigned_to, assignment.checker1, assignment.checker2,
    )
    assert instance.instance_reference == "Feb 2024"
    assert instance.status == TaskStatus.pending.value
    assert instance.id is not None
    assert list(instance.approvals) == []
    assert list(instance.comments) == []
    assert list(instance.attachments) == []


def test_new_instance_explicit_status():
    instance = new_instance(uuid.uuid4(), _dt(2024, 2, 1), Assignment("a", "b", "c"), status=TaskStatus.in_progress)
    assert instance.status == "in-progress"


# ─── plan_rollover ────────────────────────────────────────────────────────────

def test_plan_rollover_steps_from_due_date():
    plan = plan_rollover(_make_task("monthly", _dt(2024, 1, 31)))
    assert plan.next_due == _dt(2024, 2, 29)
    assert plan.following_due == _dt(2024, 3, 29)


def test_plan_rollover_prefers_stored_next_instance_date():
    task = _make_task("weekly", _dt(2024, 1, 1), next_instance_date=_dt(2024, 1, 10))
    plan = plan_rollover(task)
    assert plan.next_due == _dt(2024, 1, 10)
    assert plan.following_due == _dt(2024, 1, 17)


def test_plan_rollover_one_time_raises():
    with pytest.raises(NotRecurringError) as exc_info:
        plan_rollover(_make_task("one-time"))
    assert exc_info.value.details["frequency"] == "one-time"


def test_plan_rollover_non_recurring_flag_raises():
    with pytest.raises(NotRecurringError):
        plan_rollover(_make_task("monthly", is_recurring=False))
