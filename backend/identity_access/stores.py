"""
In-memory session store: opaque session id -> cached bearer token.

Why: The school API authenticates with a bearer token. Keep that token
server-side and give the browser only an opaque session id, so the cookie
never carries a credential. For multi-instance deployments, replace with a
shared (Redis/DB-backed) store exposing the same three methods.

Security: Cookies carry only an opaque session id. Tokens stay server-side.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional
import secrets
import time


def _now() -> int:
    return int(time.time())


@dataclass
class SessionRecord:
    session_id: str
    token: str
    expires_at: Optional[int] = None
    ttl_seconds: int = 3600
    csrf_token: str = field(default_factory=lambda: secrets.token_urlsafe(24))


class SessionStore:
    def __init__(self, *, default_ttl_seconds: int = 3600):
        self._data: Dict[str, SessionRecord] = {}
        self.default_ttl_seconds = default_ttl_seconds

    def create(self, *, token: str, ttl_seconds: Optional[int] = None) -> SessionRecord:
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds
        sid = secrets.token_urlsafe(24)
        rec = SessionRecord(session_id=sid, token=token, expires_at=_now() + ttl, ttl_seconds=ttl)
        self._data[sid] = rec
        return rec

    def get(self, session_id: str) -> Optional[SessionRecord]:
        rec = self._data.get(session_id)
        if not rec:
            return None
        if rec.expires_at and rec.expires_at < _now():
            self._data.pop(session_id, None)
            return None
        return rec

    def delete(self, session_id: str) -> None:
        self._data.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._data)
