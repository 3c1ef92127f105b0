"""
Shared fixtures.

Auth settings are read at import time, so the environment is prepared
here before any test module imports the application.
"""
import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-0123456789abcdef0123456789")
os.environ.setdefault("APP_USERNAME", "lager")
os.environ.setdefault("APP_PASSWORD", "skanna-2024")
os.environ.pop("REDIS_URL", None)
os.environ.pop("SENTRY_DSN", None)

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from scan_backend.auth import AuthSessionRegistry
from scan_backend.main import app
from scan_backend.storage import ScanSessionStore


@pytest.fixture
def store():
    return ScanSessionStore()


@pytest.fixture
def deliver():
    """Stands in for the SMTP report delivery."""
    return MagicMock(return_value="<msg@test>")


@pytest.fixture
def client(store, deliver):
    app.state.store = store
    app.state.auth_sessions = AuthSessionRegistry()
    app.state.deliver = deliver
    app.state.mailer = MagicMock()
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def token(client):
    resp = client.post("/api/auth/login", json={"username": "lager", "password": "skanna-2024"})
    assert resp.status_code == 200
    return resp.json()["sessionId"]


@pytest.fixture
def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}
