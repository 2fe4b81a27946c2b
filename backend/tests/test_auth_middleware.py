"""
Tests for the access-gate middleware.

Requirements:
- HTML requests without session → 302 to /login
- HTMX requests without session → 401 + HX-Redirect header
- Allowlist: /login, /logout, /health, /static/* are not gated
- Students are routed through the onboarding steps
- A slow identity request renders a self-refreshing loading page
"""

import asyncio

import httpx
import pytest

from backend.identity_access.stores import SessionStore
from backend.tests.fakes import STUDENT_NEW, STUDENT_WITH_CONTRACT, TEACHER
from backend.web.auth_utils import SESSION_COOKIE_NAME
from backend.web.main import create_app


pytestmark = pytest.mark.anyio("asyncio")


@pytest.mark.anyio
async def test_html_request_without_session_redirects_to_login(make_client, school_api):
    async with make_client() as client:
        r = await client.get("/dashboard", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers.get("location") == "/login"
    assert school_api.calls == []


@pytest.mark.anyio
async def test_htmx_request_without_session_returns_401_with_hx_redirect(make_client):
    async with make_client() as client:
        r = await client.get("/dashboard", headers={"HX-Request": "true"}, follow_redirects=False)
    assert r.status_code == 401
    assert r.headers.get("HX-Redirect") == "/login"


@pytest.mark.anyio
async def test_allowlist_paths_not_redirected(make_client, school_api):
    async with make_client() as client:
        r_login = await client.get("/login", follow_redirects=False)
        r_health = await client.get("/health")
        r_static = await client.get("/static/css/kehadiran.css", follow_redirects=False)
        r_favicon = await client.get("/favicon.ico", follow_redirects=False)

    assert r_login.status_code == 200
    assert r_health.status_code == 200
    assert r_health.json() == {"status": "healthy"}
    assert r_static.status_code == 200
    assert r_favicon.status_code != 302
    assert school_api.calls == []


@pytest.mark.anyio
async def test_unknown_session_cookie_is_cleared(make_client):
    async with make_client() as client:
        client.cookies.set("kehadiran_session", "does-not-exist")
        r = await client.get("/dashboard", follow_redirects=False)
    assert r.status_code == 302
    set_cookie = r.headers.get("set-cookie", "")
    assert "kehadiran_session=" in set_cookie
    assert "Max-Age=0" in set_cookie


@pytest.mark.anyio
async def test_rejected_token_ends_session_and_redirects(make_client, school_api, session_store):
    school_api.on("GET", "/user", status=401, json={"message": "Unauthenticated."})
    async with make_client(token="expired") as client:
        r = await client.get("/dashboard", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/login"
    assert len(session_store) == 0


@pytest.mark.anyio
async def test_student_without_contract_is_sent_to_self_contract(make_client, school_api):
    school_api.user(STUDENT_NEW)
    async with make_client(token="t") as client:
        r = await client.get("/dashboard", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/self-contract"
    assert school_api.count("GET", "/stimulus-controls") == 0


@pytest.mark.anyio
async def test_htmx_onboarding_redirect_uses_hx_redirect(make_client, school_api):
    school_api.user(STUDENT_NEW)
    async with make_client(token="t") as client:
        r = await client.get("/reward", headers={"HX-Request": "true"}, follow_redirects=False)
    assert r.status_code == 200
    assert r.headers["HX-Redirect"] == "/self-contract"


@pytest.mark.anyio
async def test_student_without_stimulus_control_is_sent_there(make_client, school_api):
    school_api.user(STUDENT_WITH_CONTRACT)
    school_api.stimulus_controls([])
    async with make_client(token="t") as client:
        r = await client.get("/attendance", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/stimulus-control"


@pytest.mark.anyio
async def test_onboarded_student_reaches_the_page(make_client, school_api):
    school_api.user(STUDENT_WITH_CONTRACT)
    school_api.stimulus_controls([{"id": 5, "student_id": 3, "value": "Simpan HP di tas"}])
    async with make_client(token="t") as client:
        r = await client.get("/dashboard", follow_redirects=False)
    assert r.status_code == 200
    assert "Selamat datang, Siti Aminah" in r.text
    assert r.headers["Cache-Control"] == "private, no-store"


@pytest.mark.anyio
async def test_failed_stimulus_check_fails_open(make_client, school_api):
    school_api.user(STUDENT_WITH_CONTRACT)
    school_api.on("GET", "/stimulus-controls", status=500, json={"message": "Server Error"})
    async with make_client(token="t") as client:
        r = await client.get("/dashboard", follow_redirects=False)
    assert r.status_code == 200


@pytest.mark.anyio
async def test_invalid_stimulus_rows_do_not_open_the_gate(make_client, school_api):
    school_api.user(STUDENT_WITH_CONTRACT)
    school_api.stimulus_controls([{"id": 8, "student_id": None, "value": "yatim"}])
    async with make_client(token="t") as client:
        r = await client.get("/dashboard", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/stimulus-control"


@pytest.mark.anyio
async def test_injected_empty_session_store_is_kept(school_api, api_config):
    store = SessionStore()
    app = create_app(session_store=store, api_config=api_config, api_transport=school_api.transport)
    assert app.state.session_store is store
    school_api.user(TEACHER)
    record = store.create(token="t")
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        client.cookies.set(SESSION_COOKIE_NAME, record.session_id)
        r = await client.get("/dashboard", follow_redirects=False)
    assert r.status_code == 200
    assert school_api.count("GET", "/user") == 1


@pytest.mark.anyio
async def test_staff_skip_onboarding(make_client, school_api):
    school_api.user(TEACHER)
    school_api.on("GET", "/dashboard/stats", json={"data": {"total_students": 120}})
    async with make_client(token="t") as client:
        r = await client.get("/dashboard", follow_redirects=False)
    assert r.status_code == 200
    assert "120" in r.text
    assert school_api.count("GET", "/stimulus-controls") == 0


@pytest.mark.anyio
async def test_root_redirects_to_dashboard(make_client, school_api):
    school_api.user(TEACHER)
    async with make_client(token="t") as client:
        r = await client.get("/", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/dashboard"


@pytest.mark.anyio
async def test_slow_identity_renders_loading_page(make_client, school_api):
    async def slow_user(request):
        await asyncio.sleep(0.1)
        return httpx.Response(200, json=TEACHER)

    school_api.on("GET", "/user", handler=slow_user)
    async with make_client(token="t", identity_wait_seconds=0.01) as client:
        r = await client.get("/dashboard", follow_redirects=False)
        await asyncio.sleep(0.2)
    assert r.status_code == 200
    assert "Memuat data akun" in r.text
    assert r.headers["Refresh"] == "2"
    assert 'http-equiv="refresh"' in r.text


@pytest.mark.anyio
async def test_security_headers_are_set(make_client):
    async with make_client() as client:
        r = await client.get("/login")
    assert r.headers["X-Frame-Options"] == "SAMEORIGIN"
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert "default-src 'self'" in r.headers["Content-Security-Policy"]
