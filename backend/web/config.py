"""
Configuration and startup security checks for the attendance front-end.

Why: The front-end forwards students' bearer tokens and photos to the school
API. In production that must only ever happen over HTTPS. This module reads
the few environment settings the web layer needs and provides a single guard
that enforces minimal production safety without burdening local development.

Permissions: The caller needs no special privileges. The guard simply reads
environment variables and raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

import os

DEFAULT_SESSION_TTL_SECONDS = 8 * 3600
DEFAULT_IDENTITY_WAIT_SECONDS = 5.0
DEFAULT_TIMEZONE = "Asia/Jakarta"


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def environment() -> str:
    return (os.getenv("KEHADIRAN_ENV", "dev") or "dev").lower()


def session_ttl_seconds() -> int:
    raw = (os.getenv("KEHADIRAN_SESSION_TTL_SECONDS") or "").strip()
    try:
        value = int(raw) if raw else DEFAULT_SESSION_TTL_SECONDS
    except ValueError:
        return DEFAULT_SESSION_TTL_SECONDS
    return value if value > 0 else DEFAULT_SESSION_TTL_SECONDS


def identity_wait_seconds() -> float:
    """How long the gate waits for `GET /user` before showing a loading page."""
    raw = (os.getenv("KEHADIRAN_IDENTITY_WAIT_SECONDS") or "").strip()
    try:
        value = float(raw) if raw else DEFAULT_IDENTITY_WAIT_SECONDS
    except ValueError:
        return DEFAULT_IDENTITY_WAIT_SECONDS
    return value if value > 0 else DEFAULT_IDENTITY_WAIT_SECONDS


def school_timezone() -> str:
    # The school API stores attendance dates in the school's local time.
    return (os.getenv("KEHADIRAN_TIMEZONE") or DEFAULT_TIMEZONE).strip()


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Intent: Abort process startup when obviously insecure settings are detected
    in production/staging. Development remains permissive for convenience.

    Checks:
    - KEHADIRAN_API_BASE_URL must be set and use https.
    - KEHADIRAN_SESSION_TTL_SECONDS, when set, must be a positive integer.
    """

    env = environment()
    if not _is_prod_like(env):
        return  # dev/test remain permissive

    base_url = (os.getenv("KEHADIRAN_API_BASE_URL") or "").strip()
    if not base_url:
        raise SystemExit("Refusing to start: KEHADIRAN_API_BASE_URL is unset in production.")
    if not base_url.lower().startswith("https://"):
        raise SystemExit(
            "Refusing to start: KEHADIRAN_API_BASE_URL must use https in production (got http)."
        )

    raw_ttl = (os.getenv("KEHADIRAN_SESSION_TTL_SECONDS") or "").strip()
    if raw_ttl:
        try:
            ttl = int(raw_ttl)
        except ValueError:
            raise SystemExit("Refusing to start: invalid KEHADIRAN_SESSION_TTL_SECONDS value in production.")
        if ttl <= 0:
            raise SystemExit("Refusing to start: KEHADIRAN_SESSION_TTL_SECONDS must be positive.")
