"""
Cookie policy tests to ensure host-only cookies and consistent flags.

Goals:
- After a successful login, Set-Cookie for `kehadiran_session` must NOT
  include a Domain attribute (host-only cookie → avoids leakage across hosts).
- Uniform (dev = prod): SameSite=lax, Secure always, HttpOnly always.
"""

from __future__ import annotations

import pytest

from backend.web.auth_utils import cookie_opts, validate_csrf


pytestmark = pytest.mark.anyio("asyncio")


@pytest.mark.parametrize("env", ["dev", "prod"])
def test_cookie_opts_are_identical_across_environments(env):
    assert cookie_opts(env) == {"secure": True, "samesite": "lax"}


def test_validate_csrf_requires_both_values():
    assert validate_csrf("abc", "abc")
    assert not validate_csrf("abc", "abd")
    assert not validate_csrf(None, "abc")
    assert not validate_csrf("abc", None)


@pytest.mark.anyio
@pytest.mark.parametrize("env", ["dev", "prod"])
async def test_login_sets_host_only_cookie(make_client, school_api, monkeypatch: pytest.MonkeyPatch, env):
    monkeypatch.setenv("KEHADIRAN_ENV", env)
    monkeypatch.setenv("KEHADIRAN_API_BASE_URL", "https://absensi.example.sch.id/api")
    school_api.on("POST", "/login", json={"token": "tok"})
    async with make_client() as client:
        r = await client.post("/login", data={"email": "a@b.c", "password": "pw"}, follow_redirects=False)

    assert r.status_code == 303
    set_cookie = r.headers.get("set-cookie", "")
    lowered = set_cookie.lower()
    assert "domain=" not in lowered
    assert "httponly" in lowered
    assert "samesite=lax" in lowered
    assert "secure" in lowered
    assert "path=/" in lowered
