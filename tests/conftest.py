from __future__ import annotations

import os
import time

import pytest

# Keep developer .env files out of the test run.
os.environ.setdefault("APP_ENV", "test")

from fastapi.testclient import TestClient  # noqa: E402

from itsm_realtime.api import create_app  # noqa: E402
from itsm_realtime.core.config import Settings  # noqa: E402
from itsm_realtime.core.security import create_access_token  # noqa: E402
from itsm_realtime.models import User  # noqa: E402
from itsm_realtime.repositories import InMemoryUserRepository  # noqa: E402

ADMIN_ID = 1
ALICE_ID = 2
BOB_ID = 3


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, jwt_secret="test-secret", log_level="WARNING")


@pytest.fixture
def users() -> InMemoryUserRepository:
    return InMemoryUserRepository([
        User(id=ADMIN_ID, username="admin", role="admin"),
        User(id=ALICE_ID, username="alice"),
        User(id=BOB_ID, username="bob"),
    ])


@pytest.fixture
def app(settings, users):
    return create_app(settings, user_repo=users)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_token(settings):
    def _make(user_id: int, username: str = "someone", role: str = "user") -> str:
        return create_access_token(user_id, username, role, settings)
    return _make


@pytest.fixture
def auth_headers(make_token):
    def _headers(user_id: int, role: str = "user") -> dict:
        return {"Authorization": f"Bearer {make_token(user_id, role=role)}"}
    return _headers


@pytest.fixture
def wait_for_sessions(client):
    """Registration runs right after accept; poll /health until it lands."""
    def _wait(expected: int, timeout: float = 2.0) -> None:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if client.get("/health").json()["active_sessions"] == expected:
                return
            time.sleep(0.01)
        raise AssertionError(f"expected {expected} active sessions")
    return _wait
