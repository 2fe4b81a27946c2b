"""
Shared web security helpers for form posts.

Contains the same-origin check (Origin/Referer) and the CSRF token check used
by every router that accepts a form submission. Keeping a single
implementation avoids drift between routers.
"""
from __future__ import annotations

from typing import Optional
from urllib.parse import urlparse
import logging
import os

from fastapi import Request

from backend.web.auth_utils import validate_csrf


logger = logging.getLogger("kehadiran.web.security")


def _default_port(scheme: str) -> int:
    return 443 if scheme == "https" else 80


def _parse_origin(url: str) -> tuple[str, str, int]:
    p = urlparse(url)
    if not p.scheme or not p.hostname:
        raise ValueError("invalid_origin")
    scheme = p.scheme.lower()
    host = p.hostname.lower()
    port = p.port if p.port is not None else _default_port(scheme)
    return scheme, host, int(port)


def _parse_server(request: Request) -> tuple[str, str, int]:
    trust_proxy = (os.getenv("KEHADIRAN_TRUST_PROXY", "false") or "").lower() == "true"
    if trust_proxy:
        xf_proto = (request.headers.get("x-forwarded-proto") or request.url.scheme or "").split(",")[0].strip()
        xf_host = (request.headers.get("x-forwarded-host") or request.headers.get("host") or "").split(",")[0].strip()
        scheme = (xf_proto or request.url.scheme or "http").lower()
        if ":" in xf_host:
            host_only, port_str = xf_host.rsplit(":", 1)
            try:
                port = int(port_str)
            except ValueError:
                port = _default_port(scheme)
            host = host_only.lower()
        else:
            host = (xf_host or (request.url.hostname or "")).lower()
            port = int(request.url.port) if request.url.port else _default_port(scheme)
        xf_port_raw = request.headers.get("x-forwarded-port") or ""
        if xf_port_raw:
            try:
                port = int(xf_port_raw.split(",")[0].strip())
            except ValueError:
                port = _default_port(scheme)
        return scheme, host, port

    scheme = (request.url.scheme or "http").lower()
    host = (request.url.hostname or "").lower()
    port = int(request.url.port) if request.url.port else _default_port(scheme)
    return scheme, host, port


def is_same_origin(request: Request) -> bool:
    """Verify same-origin using Origin or Referer headers.

    Behavior:
    - If Origin is present, require exact scheme/host/port match with server.
    - Else if Referer is present, validate its origin similarly.
    - Else (no headers): allow to not break non-browser clients.
    Proxy awareness: Only trust X-Forwarded-* when KEHADIRAN_TRUST_PROXY=true.
    """
    try:
        server = _parse_server(request)
        origin_val = request.headers.get("origin")
        if origin_val:
            return _parse_origin(origin_val) == server
        referer_val = request.headers.get("referer")
        if referer_val:
            return _parse_origin(referer_val) == server
        return True
    except ValueError:
        return False


def form_is_trusted(request: Request, form_token: Optional[str]) -> bool:
    """Same-origin plus a matching session CSRF token.

    The session token is read from `request.state.session`, which the gate
    middleware sets for every request.
    """
    if not is_same_origin(request):
        logger.info("Rejected cross-origin form post to %s", request.url.path)
        return False
    session = getattr(request.state, "session", None)
    expected = session.csrf_token if session is not None else None
    if not validate_csrf(expected, form_token):
        logger.info("Rejected form post with invalid CSRF token to %s", request.url.path)
        return False
    return True
