"""
Authentication routes: sign in against the school API and sign out.

Why:
    The school API issues a bearer token on `POST /login`. The token stays in
    the server-side SessionStore; the browser only receives the opaque
    session id in the `kehadiran_session` cookie.

Notes:
    `/login` and `/logout` are public paths, so the gate middleware does not
    resolve the identity for them. `GET /login` does so itself to send an
    already signed-in user to the dashboard.
"""

from __future__ import annotations

from typing import Optional
import logging

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, Response

from backend.school_api.errors import ApiError, ApiUnavailableError, UnauthenticatedError
from backend.web import config
from backend.web.auth_utils import clear_session_cookie, set_session_cookie
from backend.web.components import Alert, SubmitButton, TextInputField
from backend.web.rendering import api, redirect, render_page, session_of
from backend.web.routes.security import form_is_trusted, is_same_origin


auth_router = APIRouter(tags=["Auth"])
logger = logging.getLogger("kehadiran.web.auth")

MAX_EMAIL_LEN = 254


def _login_form(*, email: str = "", error: Optional[str] = None) -> str:
    error_html = Alert(error, kind="error").render() if error else ""
    email_field = TextInputField("email", "Email", required=True)
    password_field = TextInputField("password", "Password", required=True)
    return f"""
    <section class="card login-card" aria-labelledby="login-heading">
        <h1 id="login-heading">Masuk</h1>
        <p class="text-muted">Jurnal Kehadiran Siswa</p>
        {error_html}
        <form method="post" action="/login" class="login-form">
            {email_field.render(value=email, input_type="email", autocomplete="username")}
            {password_field.render(input_type="password", autocomplete="current-password")}
            <div class="form-actions">{SubmitButton("Masuk").render()}</div>
        </form>
    </section>"""


def _login_page(request: Request, *, email: str = "", error: Optional[str] = None, status_code: int = 200) -> HTMLResponse:
    response = render_page(request, "Masuk", _login_form(email=email, error=error), status_code=status_code)
    response.headers["Cache-Control"] = "private, no-store"
    return response


@auth_router.get("/login", response_class=HTMLResponse)
async def login_page(request: Request):
    session = session_of(request)
    if session.has_session and await session.identity() is not None:
        return redirect(request, "/dashboard", status_code=302)
    return _login_page(request)


@auth_router.post("/login")
async def login_submit(request: Request):
    if not is_same_origin(request):
        return _login_page(request, error="Permintaan ditolak.", status_code=403)
    form = await request.form()
    email = str(form.get("email") or "").strip()[:MAX_EMAIL_LEN]
    password = str(form.get("password") or "")
    if not email or not password:
        return _login_page(request, email=email, error="Email dan password wajib diisi.", status_code=400)

    try:
        result = await api(request).login(email=email, password=password)
    except UnauthenticatedError:
        return _login_page(request, email=email, error="Email atau password salah.", status_code=401)
    except ApiUnavailableError:
        return _login_page(request, email=email, error="Server tidak dapat dihubungi. Coba lagi nanti.", status_code=503)
    except ApiError as exc:
        message = exc.message if exc.message and not exc.message.startswith("http_") else "Login gagal."
        return _login_page(request, email=email, error=message, status_code=400)

    store = request.app.state.session_store
    old = session_of(request)
    if old.session_id:
        store.delete(old.session_id)
    record = store.create(token=result.token)
    logger.info("User signed in (session created)")
    response = redirect(request, "/dashboard")
    set_session_cookie(response, record.session_id, environment=config.environment(), max_age=record.ttl_seconds)
    return response


@auth_router.post("/logout")
async def logout(request: Request):
    form = await request.form()
    session = session_of(request)
    if session.has_session and not form_is_trusted(request, form.get("csrf_token")):
        return render_page(request, "Akses Ditolak", Alert("Permintaan ditolak.").render(), status_code=403)

    if session.has_session:
        try:
            await session.client.logout()
        except ApiError as exc:
            # The local session is dropped regardless; the token expires server-side.
            logger.warning("School API logout failed: %s", exc.__class__.__name__)
        session.invalidate()

    response: Response = redirect(request, "/login")
    clear_session_cookie(response, environment=config.environment())
    return response
