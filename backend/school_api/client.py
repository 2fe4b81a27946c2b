"""
Thin async client for the school attendance REST API.

Why: Keep HTTP details (base URL, bearer header, timeouts, status mapping) out
of the web layer. Route handlers call typed operations and handle the small
exception taxonomy from `school_api.errors`.

Behavior:
- One `httpx.AsyncClient` per operation; no connection state is kept between
  page loads. Retries are not performed here.
- The transport is injectable so tests can substitute `httpx.MockTransport`.

Security: Never log tokens or credentials. Failures are logged with the
exception class name and the request path only.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence
import logging
import os

import httpx
from pydantic import ValidationError

from backend.identity_access.domain import Identity, StimulusControlRecord, same_id
from .errors import ApiError, ApiUnavailableError, MalformedResponseError, UnauthenticatedError


logger = logging.getLogger("kehadiran.school_api")

DEFAULT_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True)
class ApiConfig:
    base_url: str  # e.g., https://absensi.example.sch.id/api
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS


def load_api_config() -> ApiConfig:
    base_url = (os.getenv("KEHADIRAN_API_BASE_URL") or "http://localhost:8000/api").strip()
    raw_timeout = (os.getenv("KEHADIRAN_API_TIMEOUT_SECONDS") or "").strip()
    try:
        timeout = float(raw_timeout) if raw_timeout else DEFAULT_TIMEOUT_SECONDS
    except ValueError:
        timeout = DEFAULT_TIMEOUT_SECONDS
    if timeout <= 0:
        timeout = DEFAULT_TIMEOUT_SECONDS
    return ApiConfig(base_url=base_url, timeout_seconds=timeout)


@dataclass(frozen=True)
class LoginResult:
    token: str
    identity: Optional[Identity]


@dataclass(frozen=True)
class UploadedPhoto:
    filename: str
    content: bytes
    content_type: str = "image/jpeg"


def unwrap_collection(body: Any) -> List[Dict[str, Any]]:
    """Accept both a bare JSON list and a `{"data": [...]}` envelope."""
    if isinstance(body, list):
        items = body
    elif isinstance(body, dict) and isinstance(body.get("data"), list):
        items = body["data"]
    else:
        raise MalformedResponseError("expected_collection")
    return [item for item in items if isinstance(item, dict)]


def _error_from_response(resp: httpx.Response) -> ApiError:
    message = f"http_{resp.status_code}"
    errors: Dict[str, Any] = {}
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        if isinstance(body.get("message"), str) and body["message"]:
            message = body["message"]
        if isinstance(body.get("errors"), dict):
            errors = body["errors"]
    return ApiError(message, status_code=resp.status_code, errors=errors)


class Resource:
    """CRUD operations on one REST collection, e.g. `/students`."""

    def __init__(self, client: "SchoolApiClient", path: str) -> None:
        self._client = client
        self.path = path.rstrip("/")

    async def list(self, **params: Any) -> List[Dict[str, Any]]:
        clean = {k: v for k, v in params.items() if v not in (None, "")}
        body = await self._client.request("GET", self.path, params=clean or None)
        return unwrap_collection(body)

    async def get(self, record_id: Any) -> Dict[str, Any]:
        body = await self._client.request("GET", f"{self.path}/{record_id}")
        if isinstance(body, dict) and isinstance(body.get("data"), dict):
            return body["data"]
        if not isinstance(body, dict):
            raise MalformedResponseError("expected_object")
        return body

    async def create(self, data: Dict[str, Any]) -> Any:
        return await self._client.request("POST", self.path, json=data)

    async def update(self, record_id: Any, data: Dict[str, Any]) -> Any:
        return await self._client.request("PUT", f"{self.path}/{record_id}", json=data)

    async def delete(self, record_id: Any) -> Any:
        return await self._client.request("DELETE", f"{self.path}/{record_id}")


class SchoolApiClient:
    """Bearer-authenticated client bound to one session token (or none)."""

    def __init__(
        self,
        cfg: ApiConfig,
        *,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.cfg = cfg
        self.token = token
        self._transport = transport
        self.students = Resource(self, "/students")
        self.teachers = Resource(self, "/teachers")
        self.grades = Resource(self, "/grades")
        self.users = Resource(self, "/users")
        self.stimulus_controls = Resource(self, "/stimulus-controls")
        self.reward_punishment_rules = Resource(self, "/reward-punishment-rules")
        self.reward_punishment_records = Resource(self, "/reward-punishment-records")

    def with_token(self, token: Optional[str]) -> "SchoolApiClient":
        return SchoolApiClient(self.cfg, token=token, transport=self._transport)

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        data: Optional[Dict[str, Any]] = None,
        files: Optional[Sequence[tuple]] = None,
    ) -> Any:
        """Perform one API call and return the decoded JSON body (or None).

        Raises:
            UnauthenticatedError: on HTTP 401.
            ApiError: on any other non-2xx answer.
            ApiUnavailableError: on transport errors and timeouts.
            MalformedResponseError: when a 2xx body is not valid JSON.
        """
        try:
            async with httpx.AsyncClient(
                base_url=self.cfg.base_url,
                headers=self._headers(),
                timeout=self.cfg.timeout_seconds,
                transport=self._transport,
            ) as client:
                resp = await client.request(method, path, params=params, json=json, data=data, files=files)
        except httpx.HTTPError as exc:
            logger.warning("School API %s %s failed: %s", method, path, exc.__class__.__name__)
            raise ApiUnavailableError(exc.__class__.__name__) from exc

        if resp.status_code == 401:
            raise UnauthenticatedError()
        if resp.status_code >= 400:
            raise _error_from_response(resp)
        if resp.status_code == 204 or not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise MalformedResponseError("invalid_json", status_code=resp.status_code) from exc

    # --- Authentication --------------------------------------------------

    async def login(self, *, email: str, password: str) -> LoginResult:
        body = await self.request("POST", "/login", json={"email": email, "password": password})
        if not isinstance(body, dict) or not isinstance(body.get("token"), str) or not body["token"]:
            raise MalformedResponseError("token_missing")
        identity = None
        if isinstance(body.get("user"), dict):
            identity = _parse_identity(body["user"])
        return LoginResult(token=body["token"], identity=identity)

    async def logout(self) -> None:
        await self.request("POST", "/logout")

    async def current_user(self) -> Identity:
        body = await self.request("GET", "/user")
        if isinstance(body, dict) and "role" not in body and isinstance(body.get("data"), dict):
            body = body["data"]
        if not isinstance(body, dict):
            raise MalformedResponseError("expected_user")
        return _parse_identity(body)

    # --- Onboarding ------------------------------------------------------

    async def list_stimulus_controls(self) -> List[StimulusControlRecord]:
        # A malformed envelope raises; single bad rows are skipped.
        items = await self.stimulus_controls.list()
        records: List[StimulusControlRecord] = []
        for item in items:
            try:
                records.append(StimulusControlRecord.model_validate(item))
            except ValidationError:
                logger.warning("Skipping invalid stimulus-control record id=%s", item.get("id"))
        return records

    async def find_stimulus_control(self, student_id: Any) -> Optional[StimulusControlRecord]:
        for record in await self.list_stimulus_controls():
            if same_id(record.student_id, student_id):
                return record
        return None

    async def create_stimulus_control(self, *, student_id: Any, value: str) -> Any:
        return await self.stimulus_controls.create({"student_id": student_id, "value": value})

    async def update_stimulus_control(self, record_id: Any, *, value: str) -> Any:
        return await self.stimulus_controls.update(record_id, {"value": value})

    async def update_student(self, student_id: Any, data: Dict[str, Any]) -> Any:
        return await self.students.update(student_id, data)

    # --- Attendance ------------------------------------------------------

    async def attendances(
        self, *, date: str, status: Optional[str] = None, grade_id: Optional[str] = None
    ) -> Dict[str, Any]:
        params = {"date": date}
        if status:
            params["status"] = status
        if grade_id:
            params["grade_id"] = grade_id
        body = await self.request("GET", "/attendances", params=params)
        if not isinstance(body, dict):
            raise MalformedResponseError("expected_object")
        return body

    async def submit_attendance(self, *, remarks: str, photo: UploadedPhoto) -> Dict[str, Any]:
        files = [("images[]", (photo.filename, photo.content, photo.content_type))]
        body = await self.request("POST", "/attendances", data={"remarks": remarks}, files=files)
        if not isinstance(body, dict):
            raise MalformedResponseError("expected_object")
        return body

    async def late_reasons(self) -> Dict[str, Any]:
        body = await self.request("GET", "/attendances/late-reasons")
        if not isinstance(body, dict):
            raise MalformedResponseError("expected_object")
        return body

    # --- Reward / punishment ---------------------------------------------

    async def bulk_update_records_done(self, record_ids: Iterable[Any], notes: Optional[str] = None) -> Any:
        payload = {"record_ids": list(record_ids), "notes": notes}
        return await self.request("POST", "/reward-punishment-records/bulk-update-done", json=payload)

    async def update_reward_punishment_record(self, record_id: Any, data: Dict[str, Any]) -> Any:
        return await self.reward_punishment_records.update(record_id, data)

    async def students_with_records(self, **params: Any) -> List[Dict[str, Any]]:
        clean = {k: v for k, v in params.items() if v not in (None, "")}
        body = await self.request("GET", "/reward-punishment-records/students/list", params=clean or None)
        return unwrap_collection(body)

    # --- Reports ---------------------------------------------------------

    async def dashboard_stats(self) -> Dict[str, Any]:
        body = await self.request("GET", "/dashboard/stats")
        return body if isinstance(body, dict) else {}

    async def attendance_trend(self, *, period: str = "month", limit: int = 6) -> Any:
        return await self.request("GET", "/charts/attendance-trend", params={"period": period, "limit": limit})

    async def class_performance(self) -> Any:
        return await self.request("GET", "/charts/class-performance")


def _parse_identity(payload: Dict[str, Any]) -> Identity:
    try:
        return Identity.model_validate(payload)
    except ValidationError as exc:
        raise MalformedResponseError("invalid_user") from exc


__all__ = [
    "ApiConfig",
    "LoginResult",
    "Resource",
    "SchoolApiClient",
    "UploadedPhoto",
    "load_api_config",
    "unwrap_collection",
]
