"""
Per-request session context: the signed-in Identity and its bearer token.

Why:
    Page handlers and the access gate all need "who is signed in". Instead of
    an ambient, module-level user cache, the web layer builds one
    `SessionContext` per request and passes it along on `request.state`.
    The context fetches `GET /user` at most once and exposes an explicit
    `refresh()` / `invalidate()` contract.

States (see `state`):
    - LOADING: a session exists and the identity request has not finished.
    - None: no session, the token was rejected, or the fetch failed.
    - Identity: the account as reported by the school API.

Error policy:
    - 401 from `GET /user` → the token is dead: invalidate the stored session.
    - Any other failure → no identity for this page load only; the token is
      kept so a transient outage does not sign the user out.
"""

from __future__ import annotations

from typing import Optional
import asyncio
import logging

from backend.school_api.client import SchoolApiClient
from backend.school_api.errors import ApiError, UnauthenticatedError

from .domain import Identity
from .gate import LOADING, IdentityState
from .stores import SessionRecord, SessionStore


logger = logging.getLogger("kehadiran.identity_access.session")


class SessionContext:
    def __init__(self, *, client: SchoolApiClient, store: SessionStore, record: Optional[SessionRecord]) -> None:
        self._store = store
        self._record = record
        self.client = client.with_token(record.token if record else None)
        self._identity: Optional[Identity] = None
        self._resolved = record is None
        self._task: Optional[asyncio.Future] = None
        self._generation = 0

    # --- Session facts -----------------------------------------------------

    @property
    def session_id(self) -> Optional[str]:
        return self._record.session_id if self._record else None

    @property
    def csrf_token(self) -> Optional[str]:
        return self._record.csrf_token if self._record else None

    @property
    def has_session(self) -> bool:
        return self._record is not None

    @property
    def state(self) -> IdentityState:
        if not self._resolved:
            return LOADING
        return self._identity

    # --- Identity ----------------------------------------------------------

    async def identity(self) -> Optional[Identity]:
        """Return the current identity, starting the single fetch if needed."""
        if self._resolved:
            return self._identity
        if self._task is None:
            self._task = asyncio.ensure_future(self._fetch(self._generation))
        # Shield: a waiter that gives up must not cancel the shared request.
        return await asyncio.shield(self._task)

    async def resolve(self, *, timeout: Optional[float] = None) -> IdentityState:
        """Wait up to `timeout` seconds; return LOADING if still in flight."""
        try:
            return await asyncio.wait_for(self.identity(), timeout)
        except asyncio.TimeoutError:
            logger.info("Identity request still pending after %ss", timeout)
            return LOADING

    async def refresh(self) -> Optional[Identity]:
        """Drop the cached identity and fetch it again."""
        self._generation += 1
        self._task = None
        self._identity = None
        self._resolved = self._record is None
        return await self.identity()

    def invalidate(self) -> None:
        """Forget the identity and delete the stored session (token)."""
        if self._record is not None:
            self._store.delete(self._record.session_id)
        self._record = None
        self._generation += 1
        self._task = None
        self._identity = None
        self._resolved = True
        self.client = self.client.with_token(None)

    async def _fetch(self, generation: int) -> Optional[Identity]:
        identity: Optional[Identity] = None
        try:
            identity = await self.client.current_user()
        except UnauthenticatedError:
            logger.info("Session token rejected by school API; invalidating session")
            if generation == self._generation:
                self.invalidate()
            return None
        except ApiError as exc:
            logger.warning("Identity fetch failed: %s", exc.__class__.__name__)
        if generation == self._generation:
            self._identity = identity
            self._resolved = True
        return identity


__all__ = ["SessionContext"]
