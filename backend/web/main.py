"""
Jurnal Kehadiran web application (FastAPI, server-side rendered).

Every navigation passes through the access-gate middleware:

    cookie -> SessionStore -> SessionContext -> GET /user -> AccessGate

The gate's decision is turned into a page render, a redirect (302, or
`HX-Redirect` for HTMX) or a self-refreshing loading page when the school API
has not answered within `KEHADIRAN_IDENTITY_WAIT_SECONDS`.

State lives on `app.state` (session store, API config, optional test
transport) and is created by `create_app()`, so tests build isolated apps.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional
import logging
import os
import sys

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from fastapi.staticfiles import StaticFiles

from backend.identity_access.gate import LOGIN_PATH, AccessGate, GateOutcome
from backend.identity_access.session import SessionContext
from backend.identity_access.stores import SessionStore
from backend.school_api.client import ApiConfig, SchoolApiClient, load_api_config
from backend.school_api.errors import UnauthenticatedError
from backend.web import config
from backend.web.auth_utils import clear_session_cookie, get_session_id
from backend.web.components import Layout, LoadingNotice
from backend.web.rendering import PRIVATE_NO_STORE, is_htmx, layout_response, redirect

logger = logging.getLogger("kehadiran.web")

STATIC_DIR = Path(__file__).resolve().parent / "static"
LOADING_REFRESH_SECONDS = 2


def _under_pytest() -> bool:
    return "pytest" in sys.modules or bool(os.getenv("PYTEST_CURRENT_TEST"))


def _load_dotenv_if_enabled() -> None:
    """Load a local `.env` for development; never under pytest."""
    if _under_pytest():
        return
    if (os.getenv("KEHADIRAN_ENABLE_DOTENV", "true") or "").lower() == "false":
        return
    from dotenv import load_dotenv

    load_dotenv()


def _is_public_path(path: str) -> bool:
    return path.startswith("/static/") or path in ("/login", "/logout", "/health", "/favicon.ico")


def _loading_response(request: Request) -> HTMLResponse:
    layout = Layout(
        title="Memuat",
        content=LoadingNotice().render(),
        show_nav=False,
        current_path=request.url.path,
        refresh_seconds=LOADING_REFRESH_SECONDS,
    )
    headers = dict(PRIVATE_NO_STORE)
    headers["Refresh"] = str(LOADING_REFRESH_SECONDS)
    return layout_response(request, layout, headers=headers)


def _login_redirect(request: Request, *, clear_cookie: bool) -> Response:
    if is_htmx(request):
        response: Response = Response(
            status_code=401,
            headers={"HX-Redirect": LOGIN_PATH, "Cache-Control": "private, no-store", "Vary": "HX-Request"},
        )
    else:
        response = RedirectResponse(url=LOGIN_PATH, status_code=302, headers=dict(PRIVATE_NO_STORE))
    if clear_cookie:
        clear_session_cookie(response, environment=config.environment())
    return response


def create_app(
    *,
    session_store: Optional[SessionStore] = None,
    api_config: Optional[ApiConfig] = None,
    api_transport: Optional[httpx.AsyncBaseTransport] = None,
    identity_wait_seconds: Optional[float] = None,
) -> FastAPI:
    """Build the application with its own session store and API settings."""
    _load_dotenv_if_enabled()
    config.ensure_secure_config_on_startup()

    app = FastAPI(title="Jurnal Kehadiran", docs_url=None, redoc_url=None, openapi_url=None)
    if session_store is None:
        session_store = SessionStore(default_ttl_seconds=config.session_ttl_seconds())
    app.state.session_store = session_store
    app.state.api_config = api_config or load_api_config()
    app.state.api_transport = api_transport
    app.state.identity_wait_seconds = (
        identity_wait_seconds if identity_wait_seconds is not None else config.identity_wait_seconds()
    )

    # --- Access gate -------------------------------------------------------

    @app.middleware("http")
    async def access_gate(request: Request, call_next):
        state = request.app.state
        store: SessionStore = state.session_store
        sid = get_session_id(request)
        record = store.get(sid) if sid else None
        client = SchoolApiClient(state.api_config, transport=state.api_transport)
        session = SessionContext(client=client, store=store, record=record)
        request.state.session = session
        request.state.user = None

        path = request.url.path
        if _is_public_path(path):
            return await call_next(request)

        identity = await session.resolve(timeout=state.identity_wait_seconds)
        decision = await AccessGate(session.client).evaluate(identity, path)

        if decision.outcome is GateOutcome.LOADING:
            return _loading_response(request)
        if decision.outcome is GateOutcome.REDIRECT:
            if decision.location == LOGIN_PATH:
                return _login_redirect(request, clear_cookie=bool(sid))
            return redirect(request, decision.location or "/", status_code=302)

        request.state.user = identity
        return await call_next(request)

    # --- Security headers --------------------------------------------------

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        if config.environment() in ("prod", "production"):
            csp = "default-src 'self'; script-src 'self'; style-src 'self'; img-src 'self' data:; form-action 'self';"
        else:
            csp = (
                "default-src 'self'; script-src 'self' 'unsafe-inline'; style-src 'self' 'unsafe-inline'; "
                "img-src 'self' data:; form-action 'self';"
            )
        response.headers.setdefault("Content-Security-Policy", csp)
        response.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        return response

    # --- A 401 during a page call ends the session -------------------------

    @app.exception_handler(UnauthenticatedError)
    async def on_unauthenticated(request: Request, exc: UnauthenticatedError):
        session = getattr(request.state, "session", None)
        if session is not None:
            session.invalidate()
        logger.info("School API rejected the session token on %s", request.url.path)
        return _login_redirect(request, clear_cookie=True)

    # --- Routes ------------------------------------------------------------

    from backend.web.routes.attendance import attendance_router
    from backend.web.routes.auth import auth_router
    from backend.web.routes.onboarding import onboarding_router
    from backend.web.routes.reports import reports_router
    from backend.web.routes.rewards import rewards_router
    from backend.web.routes.roster import roster_router

    app.include_router(auth_router)
    app.include_router(onboarding_router)
    app.include_router(attendance_router)
    app.include_router(rewards_router)
    app.include_router(roster_router)
    app.include_router(reports_router)

    @app.get("/health")
    async def health():
        return JSONResponse({"status": "healthy"}, headers=dict(PRIVATE_NO_STORE))

    @app.get("/")
    async def index(request: Request):
        return redirect(request, "/dashboard", status_code=302)

    app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")
    return app


app = create_app()
