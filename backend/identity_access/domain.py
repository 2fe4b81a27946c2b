"""
Identity domain: roles and the account payloads the web layer reasons about.

Why:
- Centralize allowed roles to avoid drift between the gate, navigation and
  page-level role checks.
- Parse the school API's `GET /user` payload once into a typed, immutable
  Identity so a navigation decision never sees a half-updated account.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class UserRole(str, Enum):
    """Account roles issued by the school API."""
    STUDENT = "student"
    TEACHER = "teacher"
    ADMINISTRATOR = "administrator"


# Keep roles minimal and explicit. Immutable to prevent accidental mutation.
ALLOWED_ROLES = frozenset(role.value for role in UserRole)
STAFF_ROLES = frozenset({UserRole.TEACHER.value, UserRole.ADMINISTRATOR.value})

RecordId = Union[int, str]


def same_id(left: Any, right: Any) -> bool:
    """Compare API identifiers that may arrive as numbers or strings."""
    if left is None or right is None:
        return False
    return str(left) == str(right)


class StudentRef(BaseModel):
    """Student profile embedded in the Identity payload."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: RecordId
    self_contract: Optional[str] = None
    fullname: Optional[str] = ""
    late_free_streak: Optional[int] = 0
    reward_eligible: Optional[bool] = False
    pending_reward: Optional[str] = None

    @property
    def has_self_contract(self) -> bool:
        return bool((self.self_contract or "").strip())


class Identity(BaseModel):
    """The signed-in account as reported by the school API."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: RecordId
    role: str
    name: Optional[str] = ""
    email: Optional[str] = ""
    username: Optional[str] = None
    created_at: Optional[str] = None
    student: Optional[StudentRef] = None

    @property
    def normalized_role(self) -> str:
        return (self.role or "").strip().lower()

    @property
    def is_student(self) -> bool:
        return self.normalized_role == UserRole.STUDENT.value

    @property
    def is_staff(self) -> bool:
        return self.normalized_role in STAFF_ROLES

    def has_role(self, *roles: str) -> bool:
        return self.normalized_role in {r.lower() for r in roles}


class StimulusControlRecord(BaseModel):
    """A student's stimulus-control strategy; only its existence gates access."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: RecordId
    student_id: RecordId
    value: Optional[str] = Field(default="")


def role_label(role: Optional[str]) -> str:
    mapping = {
        "student": "Siswa",
        "teacher": "Guru",
        "administrator": "Administrator",
    }
    return mapping.get((role or "").lower(), "Pengguna")


__all__ = [
    "UserRole",
    "ALLOWED_ROLES",
    "STAFF_ROLES",
    "StudentRef",
    "Identity",
    "StimulusControlRecord",
    "same_id",
    "role_label",
]
