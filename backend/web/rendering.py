"""
Response helpers shared by the page routers.

Why:
    Every page renders through the same Layout, applies the same cache policy
    for personalised content and answers HTMX requests with fragments and
    `HX-Redirect` headers. Routers import these helpers instead of `main` to
    avoid an import cycle with the application factory.
"""

from __future__ import annotations

from typing import Optional, Tuple

from fastapi import Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response

from backend.identity_access.domain import Identity
from backend.identity_access.session import SessionContext
from backend.school_api.client import SchoolApiClient
from backend.school_api.errors import ApiError, ApiUnavailableError, MalformedResponseError
from backend.web.components import AccessDenied, Alert, Layout

PRIVATE_NO_STORE = {"Cache-Control": "private, no-store"}


def is_htmx(request: Request) -> bool:
    return bool(request.headers.get("HX-Request"))


def current_user(request: Request) -> Optional[Identity]:
    return getattr(request.state, "user", None)


def session_of(request: Request) -> SessionContext:
    return request.state.session


def api(request: Request) -> SchoolApiClient:
    """Token-bound school API client for the current session."""
    return session_of(request).client


def layout_response(
    request: Request,
    layout: Layout,
    *,
    status_code: int = 200,
    headers: Optional[dict[str, str]] = None,
) -> HTMLResponse:
    """Render Layout with HTMX-aware semantics and return an HTMLResponse.

    Behavior:
        - Returns the fragment plus an out-of-band sidebar when `HX-Request`
          is present, otherwise the complete document.
        - Personalised pages default to `Cache-Control: private, no-store`.
        - Caller-provided headers override the defaults.
    """
    body = layout.render_fragment() if is_htmx(request) else layout.render()
    response = HTMLResponse(content=body, status_code=status_code)
    if current_user(request) is not None and not (headers and "Cache-Control" in headers):
        response.headers["Cache-Control"] = "private, no-store"
    if headers:
        for key, value in headers.items():
            response.headers[key] = value
    return response


def render_page(request: Request, title: str, content: str, *, status_code: int = 200) -> HTMLResponse:
    session = getattr(request.state, "session", None)
    layout = Layout(
        title=title,
        content=content,
        user=current_user(request),
        current_path=request.url.path,
        csrf_token=session.csrf_token if session is not None else None,
    )
    return layout_response(request, layout, status_code=status_code)


def redirect(request: Request, location: str, *, status_code: int = 303, htmx_status: int = 200) -> Response:
    """Redirect; HTMX callers receive the target in an `HX-Redirect` header."""
    if is_htmx(request):
        headers = dict(PRIVATE_NO_STORE)
        headers["HX-Redirect"] = location
        headers["Vary"] = "HX-Request"
        return Response(status_code=htmx_status, headers=headers)
    return RedirectResponse(url=location, status_code=status_code, headers=dict(PRIVATE_NO_STORE))


def forbidden(request: Request, message: Optional[str] = None, *, link_href: str = "/dashboard", link_text: str = "Kembali ke Dashboard") -> HTMLResponse:
    content = AccessDenied(message, link_href=link_href, link_text=link_text).render()
    return render_page(request, "Akses Ditolak", content, status_code=403)


def require_role(request: Request, *roles: str) -> Tuple[Optional[Identity], Optional[Response]]:
    """Return `(user, None)` when the role matches, else `(None, 403 page)`."""
    user = current_user(request)
    if user is None or not user.has_role(*roles):
        return None, forbidden(request)
    return user, None


def error_alert(exc: ApiError, fallback: str = "Terjadi kesalahan saat menghubungi server.") -> str:
    """Inline alert carrying the API's message when it sent one."""
    message = fallback
    if not isinstance(exc, (ApiUnavailableError, MalformedResponseError)) and exc.message and not exc.message.startswith("http_"):
        message = exc.message
    details = exc.field_messages()
    if details:
        message = f"{message} {' '.join(details)}"
    return Alert(message, kind="error").render()


def notice(message: Optional[str], kind: str = "success") -> str:
    return Alert(message, kind=kind).render() if message else ""
