"""
Login and logout flows against the fake school API.

Requirements:
- Successful login stores the token server-side and sets only an opaque id
- Wrong credentials → 401 with a form error; empty fields → 400
- Cross-origin login posts are rejected
- Logout requires the session CSRF token and drops the stored session
"""
from __future__ import annotations

import httpx
import pytest

from backend.tests.fakes import TEACHER


pytestmark = pytest.mark.anyio("asyncio")


@pytest.mark.anyio
async def test_login_page_renders_form(make_client):
    async with make_client() as client:
        r = await client.get("/login")
    assert r.status_code == 200
    assert 'action="/login"' in r.text
    assert 'name="email"' in r.text
    assert r.headers["Cache-Control"] == "private, no-store"


@pytest.mark.anyio
async def test_login_success_creates_session_and_redirects(make_client, school_api, session_store):
    school_api.on("POST", "/login", json={"token": "api-token-123", "user": TEACHER})
    async with make_client() as client:
        r = await client.post("/login", data={"email": "budi@example.sch.id", "password": "rahasia"}, follow_redirects=False)

    assert r.status_code == 303
    assert r.headers["location"] == "/dashboard"
    assert len(session_store) == 1
    set_cookie = r.headers["set-cookie"]
    assert set_cookie.startswith("kehadiran_session=")
    assert "api-token-123" not in set_cookie
    assert "httponly" in set_cookie.lower()


@pytest.mark.anyio
async def test_login_replaces_previous_session(make_client, school_api, session_store):
    school_api.on("POST", "/login", json={"token": "fresh"})
    async with make_client(token="old") as client:
        old_id = client.session_record.session_id
        await client.post("/login", data={"email": "a@b.c", "password": "pw"}, follow_redirects=False)
    assert session_store.get(old_id) is None
    assert len(session_store) == 1


@pytest.mark.anyio
async def test_login_wrong_credentials_shows_error(make_client, school_api, session_store):
    school_api.on("POST", "/login", status=401, json={"message": "Invalid credentials"})
    async with make_client() as client:
        r = await client.post("/login", data={"email": "budi@example.sch.id", "password": "salah"})
    assert r.status_code == 401
    assert "Email atau password salah." in r.text
    assert 'value="budi@example.sch.id"' in r.text
    assert len(session_store) == 0


@pytest.mark.anyio
async def test_login_requires_both_fields(make_client, school_api):
    async with make_client() as client:
        r = await client.post("/login", data={"email": "", "password": ""})
    assert r.status_code == 400
    assert school_api.calls == []


@pytest.mark.anyio
async def test_login_rejects_cross_origin_post(make_client, school_api):
    async with make_client() as client:
        r = await client.post(
            "/login",
            data={"email": "a@b.c", "password": "pw"},
            headers={"Origin": "https://evil.example"},
        )
    assert r.status_code == 403
    assert school_api.calls == []


@pytest.mark.anyio
async def test_login_when_api_unreachable(make_client, school_api):
    def broken(request):
        raise httpx.ConnectError("refused", request=request)

    school_api.on("POST", "/login", handler=broken)
    async with make_client() as client:
        r = await client.post("/login", data={"email": "a@b.c", "password": "pw"})
    assert r.status_code == 503


@pytest.mark.anyio
async def test_login_page_redirects_signed_in_user(make_client, school_api):
    school_api.user(TEACHER)
    async with make_client(token="t") as client:
        r = await client.get("/login", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/dashboard"


@pytest.mark.anyio
async def test_logout_with_csrf_drops_session(make_client, school_api, session_store):
    school_api.on("POST", "/logout", status=204)
    async with make_client(token="t") as client:
        csrf = client.session_record.csrf_token
        r = await client.post("/logout", data={"csrf_token": csrf}, follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "/login"
    assert len(session_store) == 0
    assert school_api.last("POST", "/logout").headers["Authorization"] == "Bearer t"
    assert "Max-Age=0" in r.headers["set-cookie"]


@pytest.mark.anyio
async def test_logout_without_csrf_is_rejected(make_client, school_api, session_store):
    async with make_client(token="t") as client:
        r = await client.post("/logout", data={"csrf_token": "wrong"}, follow_redirects=False)
    assert r.status_code == 403
    assert len(session_store) == 1
    assert school_api.count("POST", "/logout") == 0


@pytest.mark.anyio
async def test_logout_survives_api_failure(make_client, school_api, session_store):
    school_api.on("POST", "/logout", status=500, json={"message": "Server Error"})
    async with make_client(token="t") as client:
        r = await client.post("/logout", data={"csrf_token": client.session_record.csrf_token}, follow_redirects=False)
    assert r.status_code == 303
    assert len(session_store) == 0
