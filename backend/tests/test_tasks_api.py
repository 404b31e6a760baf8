"""API tests for task endpoints: validation, workflow and error rendering."""
import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from app.core.deps import get_current_user
from app.db.session import get_sync_session
from app.main import app
from app.models.task import Task

MAKER_ID = uuid.uuid4()
CHECKER1_ID = uuid.uuid4()
CHECKER2_ID = uuid.uuid4()
ADMIN_ID = uuid.uuid4()

PEOPLE = {
    MAKER_ID: SimpleNamespace(id=MAKER_ID, name="Morgan Maker", email="maker@example.com", is_active=True),
    CHECKER1_ID: SimpleNamespace(id=CHECKER1_ID, name="Casey Reviewer", email="c1@example.com", is_active=True),
    CHECKER2_ID: SimpleNamespace(id=CHECKER2_ID, name="Jordan Approver", email="c2@example.com", is_active=True),
}


# ─── Fixtures ─────────────────────────────────────────────────────────────────

def fake_user(user_id: uuid.UUID, role: str):
    return SimpleNamespace(id=user_id, role=role, roles=[role], email=f"{role}@example.com", is_active=True)


def make_task(status: str = "pending", due: datetime | None = None) -> Task:
    return Task(
        id=uuid.uuid4(),
        name="Fixed asset register",
        description="",
        category="Finance",
        priority="medium",
        status=status,
        due_date=due or datetime.now(timezone.utc) + timedelta(days=10),
        frequency="one-time",
        is_recurring=False,
        assigned_to=MAKER_ID,
        checker1=CHECKER1_ID,
        checker2=CHECKER2_ID,
        is_escalated=False,
        version=1,
    )


def make_sync_session(objects: dict | None = None) -> MagicMock:
    objects = objects or {}
    session = MagicMock()
    session.get.side_effect = lambda model, ident, with_for_update=False: objects.get(ident)
    return session


async def call(method: str, url: str, user, session: MagicMock | None = None, **kwargs):
    def _session_override():
        yield session if session is not None else make_sync_session()

    async def _user_override():
        return user

    app.dependency_overrides[get_sync_session] = _session_override
    app.dependency_overrides[get_current_user] = _user_override
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            return await client.request(method, url, **kwargs)
    finally:
        app.dependency_overrides.clear()


MAKER = fake_user(MAKER_ID, "maker")
CHECKER1 = fake_user(CHECKER1_ID, "checker1")
ADMIN = fake_user(ADMIN_ID, "admin")
OUTSIDER = fake_user(uuid.uuid4(), "maker")
OTHER_CHECKER = fake_user(uuid.uuid4(), "checker1")


# ─── Edit-time assignment check ───────────────────────────────────────────────

@pytest.mark.asyncio
async def test_assignment_check_reports_collision():
    response = await call(
        "POST", "/api/v1/tasks/assignment/check", ADMIN,
        json={"assigned_to": str(MAKER_ID), "checker1": str(CHECKER1_ID), "checker2": str(CHECKER1_ID)},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["result"] == "checker1_equals_checker2"
    assert "checker2" in data["field_errors"]


@pytest.mark.asyncio
async def test_assignment_check_clears_colliding_slot():
    response = await call(
        "POST", "/api/v1/tasks/assignment/check", ADMIN,
        json={
            "assigned_to": str(MAKER_ID),
            "checker1": str(MAKER_ID),
            "checker2": str(CHECKER2_ID),
            "changed_field": "checker1",
        },
    )
    data = response.json()
    assert data["result"] == "valid"
    assert data["assigned_to"] is None
    assert data["checker1"] == str(MAKER_ID)
    assert data["field_errors"] == {}


@pytest.mark.asyncio
async def test_assignment_check_unknown_field():
    response = await call(
        "POST", "/api/v1/tasks/assignment/check", ADMIN,
        json={"checker1": str(CHECKER1_ID), "changed_field": "reviewer"},
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


# ─── CRUD ─────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_task_collision_returns_field_errors():
    """Maker also picked as Checker 1 must be rejected with a field-level error."""
    response = await call(
        "POST", "/api/v1/tasks", ADMIN, session=make_sync_session(PEOPLE),
        json={
            "name": "Fixed asset register",
            "category": "Finance",
            "due_date": "2024-06-30T00:00:00Z",
            "assigned_to": str(MAKER_ID),
            "checker1": str(MAKER_ID),
            "checker2": str(CHECKER2_ID),
        },
    )
    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert "checker1" in error["details"]["fields"]


@pytest.mark.asyncio
async def test_create_task_returns_201():
    session = make_sync_session(PEOPLE)
    response = await call(
        "POST", "/api/v1/tasks", ADMIN, session=session,
        json={
            "name": "Fixed asset register",
            "category": "Finance",
            "due_date": "2099-06-30T00:00:00Z",
            "assigned_to": str(MAKER_ID),
            "checker1": str(CHECKER1_ID),
            "checker2": str(CHECKER2_ID),
            "frequency": "one-time",
        },
    )
    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "pending"
    assert data["created_by"] == str(ADMIN_ID)
    assert data["effective_escalation"]["is_escalated"] is False
    session.commit.assert_called_once()


@pytest.mark.asyncio
async def test_get_missing_task_returns_404():
    response = await call("GET", f"/api/v1/tasks/{uuid.uuid4()}", MAKER)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_get_overdue_task_shows_inferred_escalation():
    task = make_task("in-progress", due=datetime.now(timezone.utc) - timedelta(days=10))
    response = await call("GET", f"/api/v1/tasks/{task.id}", MAKER, session=make_sync_session({task.id: task}))

    assert response.status_code == 200
    data = response.json()
    assert data["is_escalated"] is False
    assert data["effective_escalation"] == {
        "is_escalated": True, "priority": "high", "reason": "Task is overdue", "explicit": False,
    }


@pytest.mark.asyncio
async def test_get_task_lists_moves_open_from_status():
    task = make_task("pending")
    response = await call("GET", f"/api/v1/tasks/{task.id}", MAKER, session=make_sync_session({task.id: task}))
    assert response.json()["allowed_transitions"] == ["start", "submit"]

    task.status = "checker1-approved"
    response = await call("GET", f"/api/v1/tasks/{task.id}", ADMIN, session=make_sync_session({task.id: task}))
    assert response.json()["allowed_transitions"] == ["checker2-decision"]


@pytest.mark.asyncio
async def test_non_admin_list_is_scoped_to_own_tasks():
    with patch("app.api.v1.tasks.tasks_svc.list_tasks", return_value=([], 0)) as mock_list:
        response = await call("GET", f"/api/v1/tasks?assignee={CHECKER1_ID}", MAKER)

    assert response.status_code == 200
    assert mock_list.call_args.kwargs["user_id"] == MAKER_ID


@pytest.mark.asyncio
async def test_admin_list_can_filter_by_assignee():
    with patch("app.api.v1.tasks.tasks_svc.list_tasks", return_value=([], 0)) as mock_list:
        await call("GET", f"/api/v1/tasks?assignee={CHECKER1_ID}&status=in_progress", ADMIN)

    assert mock_list.call_args.kwargs["user_id"] == CHECKER1_ID
    assert mock_list.call_args.kwargs["status"] == "in_progress"


# ─── Workflow ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_start_moves_task_in_progress():
    task = make_task("pending")
    session = make_sync_session({task.id: task})
    response = await call("POST", f"/api/v1/tasks/{task.id}/start", MAKER, session=session, json={})

    assert response.status_code == 200
    assert response.json()["status"] == "in-progress"
    session.commit.assert_called_once()


@pytest.mark.asyncio
async def test_illegal_transition_returns_409():
    task = make_task("approved")
    response = await call(
        "POST", f"/api/v1/tasks/{task.id}/start", MAKER,
        session=make_sync_session({task.id: task}), json={},
    )

    assert response.status_code == 409
    error = response.json()["error"]
    assert error["code"] == "ILLEGAL_TRANSITION"
    assert error["details"]["current_status"] == "approved"
    assert task.status == "approved"


@pytest.mark.asyncio
async def test_wrong_checker_returns_403():
    task = make_task("submitted")
    response = await call(
        "POST", f"/api/v1/tasks/{task.id}/checker2-decision", CHECKER1,
        session=make_sync_session({task.id: task}), json={"decision": "approved"},
    )
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "PERMISSION_DENIED"


@pytest.mark.asyncio
async def test_stale_version_returns_409():
    task = make_task("submitted")
    response = await call(
        "POST", f"/api/v1/tasks/{task.id}/checker1-decision", CHECKER1,
        session=make_sync_session({task.id: task}),
        json={"decision": "rejected", "expected_version": 7},
    )
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "CONCURRENT_MODIFICATION"


@pytest.mark.asyncio
async def test_invalid_decision_rejected_by_schema():
    task = make_task("submitted")
    response = await call(
        "POST", f"/api/v1/tasks/{task.id}/checker1-decision", CHECKER1,
        session=make_sync_session({task.id: task}), json={"decision": "maybe"},
    )
    assert response.status_code == 422


# ─── Notification schedule ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_notification_schedule_preview():
    task = make_task("pending", due=datetime.now(timezone.utc) + timedelta(days=2))
    session = make_sync_session({task.id: task, **PEOPLE})
    response = await call("GET", f"/api/v1/tasks/{task.id}/notification-schedule", MAKER, session=session)

    assert response.status_code == 200
    data = response.json()
    # 1-day reminder for three roles, due-day notice, day 1 to Checker 1, days 2..30 to both.
    assert data["total"] == 3 + 1 + 1 + 2 * 29
    first = data["items"][0]
    assert first["kind"] == "pre_due"
    assert first["severity"] == "warning"
    assert first["recipient_role"] == "maker"


# ─── Task access ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
@pytest.mark.parametrize("suffix", ["", "/instances", "/notification-schedule"])
async def test_unassigned_user_cannot_read_task(suffix):
    task = make_task("pending")
    session = make_sync_session({task.id: task, **PEOPLE})
    response = await call("GET", f"/api/v1/tasks/{task.id}{suffix}", OUTSIDER, session=session)

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "PERMISSION_DENIED"
    session.execute.assert_not_called()


@pytest.mark.asyncio
async def test_assigned_checker_can_read_task():
    task = make_task("submitted")
    response = await call("GET", f"/api/v1/tasks/{task.id}", CHECKER1, session=make_sync_session({task.id: task}))
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_unassigned_user_cannot_comment_or_attach():
    task = make_task("pending")
    session = make_sync_session({task.id: task})

    response = await call(
        "POST", f"/api/v1/tasks/{task.id}/comments", OUTSIDER, session=session, json={"content": "Looks off"},
    )
    assert response.status_code == 403
    response = await call(
        "POST", f"/api/v1/tasks/{task.id}/attachments", OUTSIDER, session=session,
        json={"file_name": "ledger.xlsx", "storage_key": "uploads/ledger.xlsx"},
    )
    assert response.status_code == 403
    session.add.assert_not_called()
    session.commit.assert_not_called()


@pytest.mark.asyncio
async def test_maker_can_comment_on_own_task():
    task = make_task("in-progress")
    session = make_sync_session({task.id: task})
    response = await call(
        "POST", f"/api/v1/tasks/{task.id}/comments", MAKER, session=session, json={"content": "Draft uploaded"},
    )
    assert response.status_code == 201
    session.commit.assert_called_once()


@pytest.mark.asyncio
async def test_checker_cannot_escalate_someone_elses_task():
    task = make_task("in-progress")
    session = make_sync_session({task.id: task})
    response = await call(
        "POST", f"/api/v1/tasks/{task.id}/escalate", OTHER_CHECKER, session=session,
        json={"priority": "high", "reason": "Blocked on evidence"},
    )

    assert response.status_code == 403
    assert task.is_escalated is False
    session.commit.assert_not_called()


@pytest.mark.asyncio
async def test_checker_can_escalate_own_task():
    task = make_task("in-progress")
    response = await call(
        "POST", f"/api/v1/tasks/{task.id}/escalate", CHECKER1, session=make_sync_session({task.id: task}),
        json={"priority": "high", "reason": "Blocked on evidence"},
    )

    assert response.status_code == 200
    assert response.json()["is_escalated"] is True


@pytest.mark.asyncio
async def test_checker_escalation_queue_is_scoped_to_own_tasks():
    with patch(
        "app.api.v1.escalations.escalations_svc.list_escalations",
        return_value=([], {"critical": 0, "high": 0, "medium": 0, "low": 0}),
    ) as mock_list:
        response = await call("GET", "/api/v1/escalations", CHECKER1)
        assert response.status_code == 200
        assert mock_list.call_args.kwargs["user_id"] == CHECKER1_ID

        await call("GET", "/api/v1/escalations", ADMIN)
        assert mock_list.call_args.kwargs["user_id"] is None
