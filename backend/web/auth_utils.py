"""
Shared session-cookie utilities.

Why:
    Avoid duplicating cookie policy and session lookup between the gate
    middleware, the login/logout routes and page handlers.

Design:
    The helpers are small and framework-light: they accept the request or an
    environment string and return plain values. Callers decide where the
    environment and the session store come from (app state).
"""

from __future__ import annotations

import hmac
from typing import Optional

from fastapi import Request
from fastapi.responses import Response

SESSION_COOKIE_NAME = "kehadiran_session"


def cookie_opts(environment: str) -> dict:
    """Return hardened cookie flags (dev = prod).

    Returns a mapping with keys:
      - secure: True
      - samesite: "lax"  # cookie is sent on top-level navigations after redirects
    """
    return {"secure": True, "samesite": "lax"}


def set_session_cookie(response: Response, value: str, *, environment: str, max_age: Optional[int] = None) -> None:
    opts = cookie_opts(environment)
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=value,
        httponly=True,
        secure=opts["secure"],
        samesite=opts["samesite"],
        path="/",
        max_age=max_age,
    )


def clear_session_cookie(response: Response, *, environment: str) -> None:
    opts = cookie_opts(environment)
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value="",
        httponly=True,
        secure=opts["secure"],
        samesite=opts["samesite"],
        path="/",
        expires=0,
        max_age=0,
    )


def get_session_id(request: Request) -> Optional[str]:
    return request.cookies.get(SESSION_COOKIE_NAME)


def validate_csrf(expected: Optional[str], form_value: Optional[str]) -> bool:
    if not expected or not form_value:
        return False
    return hmac.compare_digest(expected, str(form_value))
