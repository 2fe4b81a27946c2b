"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend to avoid sandbox restrictions
that can affect the Trio backend (e.g., socketpair permission errors), and
give every test an isolated app wired to a fake school API.
"""
from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Optional

import httpx
import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from backend.identity_access.stores import SessionStore  # noqa: E402
from backend.school_api.client import ApiConfig  # noqa: E402
from backend.tests.fakes import API_BASE, FakeSchoolApi  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _clear_kehadiran_env(monkeypatch: pytest.MonkeyPatch):
    """Tests start from development defaults unless they opt into prod."""
    for var in list(os.environ):
        if var.startswith("KEHADIRAN_"):
            monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture
def school_api() -> FakeSchoolApi:
    return FakeSchoolApi()


@pytest.fixture
def api_config() -> ApiConfig:
    return ApiConfig(base_url=API_BASE, timeout_seconds=5.0)


@pytest.fixture
def session_store() -> SessionStore:
    return SessionStore(default_ttl_seconds=3600)


@pytest.fixture
def make_client(school_api: FakeSchoolApi, api_config: ApiConfig, session_store: SessionStore):
    """Return a factory for an `httpx.AsyncClient` bound to a fresh app.

    `token` creates a session first and sets its cookie; the record is exposed
    as `client.session_record` so form tests can read the CSRF token.
    """
    from backend.web.auth_utils import SESSION_COOKIE_NAME
    from backend.web.main import create_app

    def factory(*, token: Optional[str] = None, identity_wait_seconds: float = 2.0) -> httpx.AsyncClient:
        app = create_app(
            session_store=session_store,
            api_config=api_config,
            api_transport=school_api.transport,
            identity_wait_seconds=identity_wait_seconds,
        )
        client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")
        client.session_record = None  # type: ignore[attr-defined]
        if token is not None:
            record = session_store.create(token=token)
            client.cookies.set(SESSION_COOKIE_NAME, record.session_id)
            client.session_record = record  # type: ignore[attr-defined]
        return client

    return factory
