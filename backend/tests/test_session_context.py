"""
SessionContext: one identity fetch per page load, explicit refresh/invalidate.
"""

import asyncio

import httpx
import pytest

from backend.identity_access.gate import LOADING
from backend.identity_access.session import SessionContext
from backend.identity_access.stores import SessionStore
from backend.school_api.client import ApiConfig, SchoolApiClient
from backend.tests.fakes import API_BASE, STUDENT_WITH_CONTRACT, TEACHER, FakeSchoolApi


pytestmark = pytest.mark.anyio("asyncio")


def _context(api: FakeSchoolApi, store: SessionStore, token="tok-1"):
    record = store.create(token=token) if token else None
    client = SchoolApiClient(ApiConfig(base_url=API_BASE), transport=api.transport)
    return SessionContext(client=client, store=store, record=record), record


@pytest.mark.anyio
async def test_concurrent_callers_share_one_user_request():
    api = FakeSchoolApi()

    async def slow_user(request):
        await asyncio.sleep(0.05)
        return httpx.Response(200, json=TEACHER)

    api.on("GET", "/user", handler=slow_user)
    ctx, _ = _context(api, SessionStore())

    results = await asyncio.gather(ctx.identity(), ctx.identity(), ctx.identity())

    assert all(r is not None and r.name == "Budi Santoso" for r in results)
    assert api.count("GET", "/user") == 1
    await ctx.identity()
    assert api.count("GET", "/user") == 1


@pytest.mark.anyio
async def test_bearer_token_is_sent_with_user_request():
    api = FakeSchoolApi()
    api.user(TEACHER)
    ctx, _ = _context(api, SessionStore(), token="secret-token")
    await ctx.identity()
    assert api.last("GET", "/user").headers["Authorization"] == "Bearer secret-token"


@pytest.mark.anyio
async def test_without_session_state_is_none_and_nothing_is_fetched():
    api = FakeSchoolApi()
    ctx, _ = _context(api, SessionStore(), token=None)
    assert ctx.state is None
    assert await ctx.identity() is None
    assert api.calls == []


@pytest.mark.anyio
async def test_state_is_loading_before_the_first_fetch():
    api = FakeSchoolApi()
    api.user(TEACHER)
    ctx, _ = _context(api, SessionStore())
    assert ctx.state is LOADING
    await ctx.identity()
    assert ctx.state.name == "Budi Santoso"


@pytest.mark.anyio
async def test_rejected_token_invalidates_the_session():
    api = FakeSchoolApi()
    api.on("GET", "/user", status=401, json={"message": "Unauthenticated."})
    store = SessionStore()
    ctx, record = _context(api, store)

    assert await ctx.identity() is None
    assert store.get(record.session_id) is None
    assert ctx.has_session is False
    assert ctx.state is None


@pytest.mark.anyio
async def test_server_error_keeps_the_token():
    api = FakeSchoolApi()
    api.on("GET", "/user", status=500, json={"message": "Server Error"})
    store = SessionStore()
    ctx, record = _context(api, store)

    assert await ctx.identity() is None
    assert store.get(record.session_id) is not None
    assert ctx.has_session is True


@pytest.mark.anyio
async def test_resolve_returns_loading_when_the_wait_runs_out():
    api = FakeSchoolApi()

    async def slow_user(request):
        await asyncio.sleep(0.2)
        return httpx.Response(200, json=TEACHER)

    api.on("GET", "/user", handler=slow_user)
    ctx, _ = _context(api, SessionStore())

    assert await ctx.resolve(timeout=0.01) is LOADING
    # The shared request keeps running and is reused.
    identity = await ctx.identity()
    assert identity is not None
    assert api.count("GET", "/user") == 1


@pytest.mark.anyio
async def test_refresh_fetches_again():
    api = FakeSchoolApi()
    api.user(TEACHER)
    ctx, _ = _context(api, SessionStore())
    await ctx.identity()
    api.user(STUDENT_WITH_CONTRACT)

    refreshed = await ctx.refresh()

    assert refreshed.is_student
    assert api.count("GET", "/user") == 2


@pytest.mark.anyio
async def test_invalidate_forgets_identity_and_token():
    api = FakeSchoolApi()
    api.user(TEACHER)
    store = SessionStore()
    ctx, record = _context(api, store)
    await ctx.identity()

    ctx.invalidate()

    assert ctx.state is None
    assert ctx.client.token is None
    assert len(store) == 0
