"""
Access gate: decides whether a signed-in user may view the requested page.

Why:
    Students must finish two onboarding steps before using the app: first a
    self-contract, then a stimulus-control record. The decision is a small
    tree that is easy to get subtly wrong when spread over page handlers, so
    it lives here as a pure function that the web middleware only wires to
    redirects.

Behavior:
    - `decide()` is synchronous and side-effect free. It either returns a
      final `GateDecision` or a `StimulusCheck` telling the caller that one
      remote existence check is required.
    - `AccessGate.evaluate()` performs that check through an injected lookup
      and applies the fail-open rule: if the check cannot be completed, the
      user is allowed in rather than trapped in a redirect loop.
    - Results are never cached; every qualifying navigation re-issues the
      check.

Note:
    `/self-contract` skips the stimulus-control check even after the contract
    exists, so a student can keep revisiting that page without being sent to
    `/stimulus-control`. It is unclear whether that is wanted (reviewing a
    saved contract) or a loophole; it is kept unchanged until decided.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Optional, Protocol, Union
import logging

from .domain import Identity, StimulusControlRecord, same_id


logger = logging.getLogger("kehadiran.identity_access.gate")

LOGIN_PATH = "/login"
SELF_CONTRACT_PATH = "/self-contract"
STIMULUS_CONTROL_PATH = "/stimulus-control"


class _Loading:
    """Marker for an identity request that is still in flight."""

    _instance: Optional["_Loading"] = None

    def __new__(cls) -> "_Loading":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "LOADING"

    def __bool__(self) -> bool:
        return False


LOADING = _Loading()

IdentityState = Union[Identity, None, _Loading]


class GateOutcome(str, Enum):
    ALLOW = "allow"
    REDIRECT = "redirect"
    LOADING = "loading"


@dataclass(frozen=True)
class GateDecision:
    outcome: GateOutcome
    location: Optional[str] = None

    @classmethod
    def allow(cls) -> "GateDecision":
        return cls(GateOutcome.ALLOW)

    @classmethod
    def redirect(cls, location: str) -> "GateDecision":
        return cls(GateOutcome.REDIRECT, location)

    @classmethod
    def loading(cls) -> "GateDecision":
        return cls(GateOutcome.LOADING)

    @property
    def allowed(self) -> bool:
        return self.outcome is GateOutcome.ALLOW


@dataclass(frozen=True)
class StimulusCheck:
    """The decision depends on whether this student has a stimulus-control record."""
    student_id: Any


class StimulusControlLookup(Protocol):
    async def list_stimulus_controls(self) -> list[StimulusControlRecord]:
        ...


def normalize_path(path: str) -> str:
    """Return `path` without a trailing slash ("/" stays "/")."""
    if not path:
        return "/"
    if len(path) > 1 and path.endswith("/"):
        return path.rstrip("/") or "/"
    return path


def decide(identity: IdentityState, requested_path: str) -> Union[GateDecision, StimulusCheck]:
    """Evaluate the onboarding gate up to (not including) the remote check."""
    if identity is LOADING:
        return GateDecision.loading()
    if identity is None:
        return GateDecision.redirect(LOGIN_PATH)
    if not identity.is_student:
        return GateDecision.allow()

    path = normalize_path(requested_path)
    student = identity.student
    if student is None or not student.has_self_contract:
        if path != SELF_CONTRACT_PATH:
            return GateDecision.redirect(SELF_CONTRACT_PATH)
        return GateDecision.allow()

    if path not in (STIMULUS_CONTROL_PATH, SELF_CONTRACT_PATH):
        return StimulusCheck(student_id=student.id)
    return GateDecision.allow()


def has_stimulus_control(records: Iterable[StimulusControlRecord], student_id: Any) -> bool:
    return any(same_id(record.student_id, student_id) for record in records)


def decide_after_check(check: StimulusCheck, records: Iterable[StimulusControlRecord]) -> GateDecision:
    if has_stimulus_control(records, check.student_id):
        return GateDecision.allow()
    return GateDecision.redirect(STIMULUS_CONTROL_PATH)


class AccessGate:
    """Runs `decide()` and, when needed, the stimulus-control existence check."""

    def __init__(self, lookup: StimulusControlLookup) -> None:
        self._lookup = lookup

    async def evaluate(self, identity: IdentityState, requested_path: str) -> GateDecision:
        step = decide(identity, requested_path)
        if isinstance(step, GateDecision):
            if step.outcome is GateOutcome.REDIRECT:
                logger.debug("Gate redirect %s -> %s", requested_path, step.location)
            return step

        try:
            records = await self._lookup.list_stimulus_controls()
            decision = decide_after_check(step, records)
        except Exception as exc:
            # Fail open: a flaky network must not lock out onboarded students.
            logger.warning("Stimulus-control check failed, allowing access: %s", exc.__class__.__name__)
            return GateDecision.allow()

        if decision.outcome is GateOutcome.REDIRECT:
            logger.debug("Gate redirect %s -> %s", requested_path, decision.location)
        return decision


__all__ = [
    "LOADING",
    "LOGIN_PATH",
    "SELF_CONTRACT_PATH",
    "STIMULUS_CONTROL_PATH",
    "AccessGate",
    "GateDecision",
    "GateOutcome",
    "StimulusCheck",
    "StimulusControlLookup",
    "decide",
    "decide_after_check",
    "has_stimulus_control",
    "normalize_path",
]
