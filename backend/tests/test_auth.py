"""Tests for authentication endpoints."""
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from app.core.security import create_access_token, decode_token
from app.db.session import get_session, get_sync_session
from app.main import app


# ─── Fixtures ─────────────────────────────────────────────────────────────────

class FakeUser:
    """Minimal user stub returned by DB mock."""

    def __init__(self, role: str = "admin", is_first_login: bool = False, password_expires_at=None):
        self.id = uuid.UUID("f96955d0-752f-4e0c-b1dc-d26d8dd1460e")
        self.email = "admin@example.com"
        self.name = "Admin User"
        self.role = role
        self.roles = [role]
        self.is_active = True
        self.is_first_login = is_first_login
        self.password_expires_at = password_expires_at
        self.password_hash = "$2b$12$placeholder"  # will be mocked


def make_sync_session(user=None):
    """Sync session mock whose user lookup returns ``user``."""
    mock_result = MagicMock()
    mock_result.scalars.return_value.first.return_value = user
    mock_session = MagicMock()
    mock_session.execute.return_value = mock_result
    return mock_session


def sync_session_override(mock_session):
    def _override():
        yield mock_session
    return _override


async def _login(username: str, password: str):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        return await client.post("/api/v1/auth/login", data={"username": username, "password": password})


# ─── Login Tests ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_login_valid_credentials_returns_jwt():
    """POST /api/v1/auth/login with valid credentials should return access_token."""
    mock_session = make_sync_session(FakeUser())

    with patch("app.services.users.verify_password", return_value=True):
        app.dependency_overrides[get_sync_session] = sync_session_override(mock_session)
        try:
            response = await _login("admin@example.com", "changeme123")
        finally:
            app.dependency_overrides.clear()

    assert response.status_code == 200
    data = response.json()
    assert data["token_type"] == "bearer"
    assert data["must_change_password"] is False
    payload = decode_token(data["access_token"])
    assert payload["sub"] == "f96955d0-752f-4e0c-b1dc-d26d8dd1460e"
    assert payload["type"] == "access"
    mock_session.commit.assert_called_once()


@pytest.mark.asyncio
async def test_first_login_must_change_password():
    """A user who never changed the temporary password is told to do so."""
    mock_session = make_sync_session(FakeUser(role="maker", is_first_login=True))

    with patch("app.services.users.verify_password", return_value=True):
        app.dependency_overrides[get_sync_session] = sync_session_override(mock_session)
        try:
            response = await _login("maker@example.com", "Temp#Pass123")
        finally:
            app.dependency_overrides.clear()

    assert response.status_code == 200
    assert response.json()["must_change_password"] is True


@pytest.mark.asyncio
async def test_expired_password_must_change():
    expired = datetime.now(timezone.utc) - timedelta(days=1)
    mock_session = make_sync_session(FakeUser(password_expires_at=expired))

    with patch("app.services.users.verify_password", return_value=True):
        app.dependency_overrides[get_sync_session] = sync_session_override(mock_session)
        try:
            response = await _login("admin@example.com", "changeme123")
        finally:
            app.dependency_overrides.clear()

    assert response.json()["must_change_password"] is True


@pytest.mark.asyncio
async def test_login_invalid_credentials_returns_401():
    """POST /api/v1/auth/login with an unknown user should return 401."""
    app.dependency_overrides[get_sync_session] = sync_session_override(make_sync_session(None))
    try:
        response = await _login("wrong@example.com", "badpass")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 401


# ─── /me Tests ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_me_with_valid_token_returns_user():
    """GET /api/v1/auth/me with valid Bearer token should return user data."""
    user_id = str(uuid.uuid4())
    token = create_access_token(subject=user_id, role="checker1")

    fake_user = FakeUser(role="checker1")
    fake_user.id = uuid.UUID(user_id)

    mock_result = MagicMock()
    mock_result.scalar_one_or_none.return_value = fake_user
    mock_session = AsyncMock()
    mock_session.execute = AsyncMock(return_value=mock_result)

    async def override_get_session():
        yield mock_session

    app.dependency_overrides[get_session] = override_get_session
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    data = response.json()
    assert data["email"] == "admin@example.com"
    assert data["roles"] == ["checker1"]


@pytest.mark.asyncio
async def test_me_without_token_returns_401():
    """GET /api/v1/auth/me without Authorization header should return 401."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/v1/auth/me")
    assert response.status_code == 401
