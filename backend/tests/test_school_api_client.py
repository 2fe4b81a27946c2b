"""
School API client: bearer header, envelopes, error mapping and uploads.
"""

import json

import httpx
import pytest

from backend.school_api.client import ApiConfig, SchoolApiClient, UploadedPhoto, load_api_config, unwrap_collection
from backend.school_api.errors import ApiError, ApiUnavailableError, MalformedResponseError, UnauthenticatedError
from backend.tests.fakes import API_BASE, STUDENT_WITH_CONTRACT, FakeSchoolApi


pytestmark = pytest.mark.anyio("asyncio")


def _client(api: FakeSchoolApi, token="tok") -> SchoolApiClient:
    return SchoolApiClient(ApiConfig(base_url=API_BASE), token=token, transport=api.transport)


def test_unwrap_collection_accepts_list_and_envelope():
    assert unwrap_collection([{"id": 1}]) == [{"id": 1}]
    assert unwrap_collection({"data": [{"id": 2}, "junk"]}) == [{"id": 2}]
    with pytest.raises(MalformedResponseError):
        unwrap_collection({"items": []})


def test_load_api_config_falls_back_on_invalid_timeout(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("KEHADIRAN_API_BASE_URL", "https://absensi.example.sch.id/api")
    monkeypatch.setenv("KEHADIRAN_API_TIMEOUT_SECONDS", "abc")
    cfg = load_api_config()
    assert cfg.base_url == "https://absensi.example.sch.id/api"
    assert cfg.timeout_seconds == 10.0


@pytest.mark.anyio
async def test_login_returns_token_and_identity():
    api = FakeSchoolApi()
    api.on("POST", "/login", json={"token": "abc", "user": STUDENT_WITH_CONTRACT})
    result = await _client(api, token=None).login(email="siti@example.sch.id", password="pw")

    assert result.token == "abc"
    assert result.identity.student.has_self_contract
    sent = json.loads(api.last("POST", "/login").content)
    assert sent == {"email": "siti@example.sch.id", "password": "pw"}
    assert "Authorization" not in api.last("POST", "/login").headers


@pytest.mark.anyio
async def test_login_without_token_is_malformed():
    api = FakeSchoolApi()
    api.on("POST", "/login", json={"message": "ok"})
    with pytest.raises(MalformedResponseError):
        await _client(api, token=None).login(email="a@b.c", password="pw")


@pytest.mark.anyio
async def test_current_user_accepts_data_envelope():
    api = FakeSchoolApi()
    api.on("GET", "/user", json={"data": STUDENT_WITH_CONTRACT})
    identity = await _client(api).current_user()
    assert identity.is_student


@pytest.mark.anyio
async def test_401_maps_to_unauthenticated():
    api = FakeSchoolApi()
    api.on("GET", "/students", status=401, json={"message": "Unauthenticated."})
    with pytest.raises(UnauthenticatedError):
        await _client(api).students.list()


@pytest.mark.anyio
async def test_validation_errors_are_carried():
    api = FakeSchoolApi()
    api.on(
        "POST",
        "/grades",
        status=422,
        json={"message": "The given data was invalid.", "errors": {"name": ["Nama sudah dipakai."]}},
    )
    with pytest.raises(ApiError) as info:
        await _client(api).grades.create({"name": "X-1"})
    assert info.value.status_code == 422
    assert info.value.message == "The given data was invalid."
    assert info.value.field_messages() == ["Nama sudah dipakai."]


@pytest.mark.anyio
async def test_transport_failure_maps_to_unavailable():
    def broken(request):
        raise httpx.ConnectError("refused", request=request)

    client = SchoolApiClient(ApiConfig(base_url=API_BASE), transport=httpx.MockTransport(broken))
    with pytest.raises(ApiUnavailableError):
        await client.current_user()


@pytest.mark.anyio
async def test_invalid_json_is_malformed():
    api = FakeSchoolApi()
    api.on("GET", "/user", handler=lambda request: httpx.Response(200, content=b"<html>"))
    with pytest.raises(MalformedResponseError):
        await _client(api).current_user()


@pytest.mark.anyio
async def test_submit_attendance_sends_multipart_photo():
    api = FakeSchoolApi()
    api.on("POST", "/attendances", status=201, json={"message": "ok", "status": "present"})
    photo = UploadedPhoto(filename="selfie.jpg", content=b"\xff\xd8jpeg", content_type="image/jpeg")

    body = await _client(api).submit_attendance(remarks="Hadir pagi", photo=photo)

    assert body["status"] == "present"
    request = api.last("POST", "/attendances")
    assert request.headers["Content-Type"].startswith("multipart/form-data")
    assert b'name="images[]"; filename="selfie.jpg"' in request.content
    assert b'name="remarks"' in request.content


@pytest.mark.anyio
async def test_attendances_passes_filters_as_query():
    api = FakeSchoolApi()
    api.on("GET", "/attendances", json={"attendances": []})
    await _client(api).attendances(date="2024-05-02", status="late", grade_id="4")
    params = api.last("GET", "/attendances").url.params
    assert params["date"] == "2024-05-02"
    assert params["status"] == "late"
    assert params["grade_id"] == "4"


@pytest.mark.anyio
async def test_find_stimulus_control_matches_student_id():
    api = FakeSchoolApi()
    api.stimulus_controls([{"id": 1, "student_id": 8, "value": "a"}, {"id": 2, "student_id": "3", "value": "b"}])
    record = await _client(api).find_stimulus_control(3)
    assert record.id == 2
    assert await _client(api).find_stimulus_control(5) is None


@pytest.mark.anyio
async def test_invalid_stimulus_rows_are_skipped():
    api = FakeSchoolApi()
    api.stimulus_controls([{"id": 8, "student_id": None}, {"value": "tanpa id"}, {"id": 2, "student_id": 3, "value": "b"}])
    records = await _client(api).list_stimulus_controls()
    assert [r.id for r in records] == [2]
    assert (await _client(api).find_stimulus_control(3)).id == 2


@pytest.mark.anyio
async def test_malformed_stimulus_envelope_still_raises():
    api = FakeSchoolApi()
    api.on("GET", "/stimulus-controls", json={"data": "kosong"})
    with pytest.raises(MalformedResponseError):
        await _client(api).list_stimulus_controls()


@pytest.mark.anyio
async def test_bulk_update_records_done_posts_ids():
    api = FakeSchoolApi()
    api.on("POST", "/reward-punishment-records/bulk-update-done", json={"message": "ok"})
    await _client(api).bulk_update_records_done([1, 2], notes="Sudah dijalankan")
    sent = json.loads(api.last("POST", "/reward-punishment-records/bulk-update-done").content)
    assert sent == {"record_ids": [1, 2], "notes": "Sudah dijalankan"}
