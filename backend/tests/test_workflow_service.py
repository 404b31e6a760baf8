"""Tests for the workflow service using a mocked sync session."""
import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import (
    ConcurrentModificationError,
    IllegalTransitionError,
    NotRecurringError,
    PermissionDeniedError,
    ValidationError,
)
from app.models.audit import AuditLog
from app.models.task import Task, TaskApproval, TaskComment, TaskInstance
from app.rules.enums import Decision
from app.rules.task_state import Transition
from app.services import workflow as workflow_svc

NOW = datetime(2024, 1, 31, 9, 0, tzinfo=timezone.utc)

MAKER_ID = uuid.uuid4()
CHECKER1_ID = uuid.uuid4()
CHECKER2_ID = uuid.uuid4()


def _user(user_id, role: str):
    return SimpleNamespace(id=user_id, role=role, roles=[role], email=f"{role}@example.com")


MAKER = _user(MAKER_ID, "maker")
CHECKER1 = _user(CHECKER1_ID, "checker1")
CHECKER2 = _user(CHECKER2_ID, "checker2")
ADMIN = _user(uuid.uuid4(), "admin")


def _make_task(status: str = "pending", frequency: str = "one-time", version: int = 1) -> Task:
    return Task(
        id=uuid.uuid4(),
        name="Payroll reconciliation",
        description="",
        category="Payroll",
        priority="medium",
        status=status,
        due_date=NOW,
        frequency=frequency,
        is_recurring=frequency != "one-time",
        assigned_to=MAKER_ID,
        checker1=CHECKER1_ID,
        checker2=CHECKER2_ID,
        is_escalated=False,
        version=version,
    )


def _make_instance(task: Task, status: str) -> TaskInstance:
    instance = TaskInstance(
        id=uuid.uuid4(),
        base_task_id=task.id,
        status=status,
        due_date=task.due_date,
        assigned_to=task.assigned_to,
        checker1=task.checker1,
        checker2=task.checker2,
        instance_reference="2024-01-31",
        version=1,
    )
    task.current_instance_id = instance.id
    task.status = status
    return instance


def make_db(task: Task, instance: TaskInstance | None = None) -> MagicMock:
    """Sync session mock whose get() serves the given task and instance."""
    db = MagicMock()

    def _get(model, ident, with_for_update=False):
        if model is Task and ident == task.id:
            return task
        if model is TaskInstance and instance is not None and ident == instance.id:
            return instance
        return None

    db.get.side_effect = _get
    return db


def added(db: MagicMock, model) -> list:
    return [c.args[0] for c in db.add.call_args_list if isinstance(c.args[0], model)]


# ─── One-time tasks ───────────────────────────────────────────────────────────

def test_maker_starts_pending_task():
    task = _make_task("pending")
    db = make_db(task)

    result = workflow_svc.apply_transition(db, task.id, Transition.start, MAKER, now=NOW)

    assert result.status == "in-progress"
    db.commit.assert_called_once()
    audit = added(db, AuditLog)
    assert [a.action for a in audit] == ["task.start"]
    assert audit[0].actor_id == MAKER_ID


def test_submit_records_submitted_at_and_observation():
    task = _make_task("in-progress")
    db = make_db(task)

    workflow_svc.apply_transition(
        db, task.id, Transition.submit, MAKER, observation_status="mixed", comment="Done", now=NOW
    )

    assert task.status == "submitted"
    assert task.submitted_at == NOW
    assert task.observation_status == "mixed"
    comments = added(db, TaskComment)
    assert len(comments) == 1 and comments[0].content == "Done"


def test_checker1_decision_appends_approval():
    task = _make_task("submitted")
    db = make_db(task)

    workflow_svc.apply_transition(
        db, task.id, Transition.checker1_decision, CHECKER1, decision=Decision.approved, now=NOW
    )

    assert task.status == "checker1-approved"
    approvals = added(db, TaskApproval)
    assert len(approvals) == 1
    assert approvals[0].user_role == "checker1"
    assert approvals[0].decision == "approved"
    assert approvals[0].user_id == CHECKER1_ID
    assert approvals[0].instance_id is None


def test_checker2_rejection_does_not_complete():
    task = _make_task("checker1-approved")
    db = make_db(task)

    workflow_svc.apply_transition(
        db, task.id, Transition.checker2_decision, CHECKER2, decision=Decision.rejected, now=NOW
    )

    assert task.status == "rejected"
    assert task.completed_at is None
    assert added(db, TaskApproval)[0].user_role == "checker2"


def test_illegal_transition_leaves_task_unchanged():
    task = _make_task("approved")
    db = make_db(task)

    with pytest.raises(IllegalTransitionError):
        workflow_svc.apply_transition(db, task.id, Transition.start, MAKER, now=NOW)

    assert task.status == "approved"
    db.add.assert_not_called()
    db.commit.assert_not_called()


def test_only_assigned_checker_may_decide():
    task = _make_task("submitted")
    db = make_db(task)

    with pytest.raises(PermissionDeniedError):
        workflow_svc.apply_transition(
            db, task.id, Transition.checker1_decision, CHECKER2, decision=Decision.approved, now=NOW
        )
    assert task.status == "submitted"
    db.commit.assert_not_called()


def test_admin_may_act_for_any_slot():
    task = _make_task("pending")
    db = make_db(task)

    workflow_svc.apply_transition(db, task.id, Transition.start, ADMIN, now=NOW)

    assert task.status == "in-progress"


def test_decision_required_for_checker_step():
    task = _make_task("submitted")
    db = make_db(task)

    with pytest.raises(ValidationError):
        workflow_svc.apply_transition(db, task.id, Transition.checker1_decision, CHECKER1, now=NOW)


def test_observation_status_only_on_submit():
    task = _make_task("pending")
    db = make_db(task)

    with pytest.raises(ValidationError) as exc_info:
        workflow_svc.apply_transition(
            db, task.id, Transition.start, MAKER, observation_status="yes", now=NOW
        )
    assert "observation_status" in exc_info.value.fields


# ─── Concurrency ──────────────────────────────────────────────────────────────

def test_stale_expected_version_is_rejected():
    task = _make_task("pending", version=4)
    db = make_db(task)

    with pytest.raises(ConcurrentModificationError) as exc_info:
        workflow_svc.apply_transition(db, task.id, Transition.start, MAKER, expected_version=3, now=NOW)

    assert exc_info.value.details["current_version"] == 4
    assert task.status == "pending"


def test_lost_update_becomes_conflict():
    task = _make_task("pending")
    db = make_db(task)
    db.flush.side_effect = StaleDataError("row version mismatch")

    with pytest.raises(ConcurrentModificationError):
        workflow_svc.apply_transition(db, task.id, Transition.start, MAKER, now=NOW)

    db.rollback.assert_called_once()
    db.commit.assert_not_called()


def test_task_is_loaded_for_update():
    task = _make_task("pending")
    db = make_db(task)

    workflow_svc.apply_transition(db, task.id, Transition.start, MAKER, now=NOW)

    db.get.assert_any_call(Task, task.id, with_for_update=True)


# ─── Recurring tasks ──────────────────────────────────────────────────────────

def test_recurring_transition_updates_instance_and_mirrors_template():
    task = _make_task(frequency="monthly")
    instance = _make_instance(task, "pending")
    db = make_db(task, instance)

    workflow_svc.apply_transition(db, task.id, Transition.start, MAKER, now=NOW)

    assert instance.status == "in-progress"
    assert task.status == "in-progress"
    audit = added(db, AuditLog)
    assert audit[0].entity_type == "task_instance"
    assert audit[0].entity_id == instance.id


def test_final_approval_rolls_recurring_task_over():
    task = _make_task(frequency="monthly")
    instance = _make_instance(task, "checker1-approved")
    db = make_db(task, instance)

    workflow_svc.apply_transition(
        db, task.id, Transition.checker2_decision, CHECKER2, decision=Decision.approved, now=NOW
    )

    assert instance.status == "approved"
    assert instance.completed_at == NOW

    new_instances = added(db, TaskInstance)
    assert len(new_instances) == 1
    successor = new_instances[0]
    # Jan 31 + 1 month clamps to Feb 29 in a leap year.
    assert successor.due_date == datetime(2024, 2, 29, 9, 0, tzinfo=timezone.utc)
    assert successor.status == "pending"
    assert successor.assigned_to == MAKER_ID

    assert task.current_instance_id == successor.id
    assert task.status == "pending"
    assert task.due_date == successor.due_date
    assert task.completed_at is None
    assert task.next_instance_date == datetime(2024, 3, 29, 9, 0, tzinfo=timezone.utc)
    actions = [a.action for a in added(db, AuditLog)]
    assert actions == ["task.checker2-decision", "task.rolled_over"]
    db.commit.assert_called_once()


def test_rollover_of_one_time_task_is_rejected():
    task = _make_task("approved")
    db = make_db(task)

    with pytest.raises(NotRecurringError):
        workflow_svc.rollover_task(db, task.id, actor=ADMIN, now=NOW)
    db.commit.assert_not_called()


def test_explicit_rollover_keeps_previous_instance_status():
    task = _make_task(frequency="weekly")
    instance = _make_instance(task, "in-progress")
    db = make_db(task, instance)

    successor = workflow_svc.rollover_task(db, task.id, actor=ADMIN, now=NOW)

    assert instance.status == "in-progress"
    assert successor.due_date == NOW + timedelta(days=7)
    assert task.current_instance_id == successor.id
