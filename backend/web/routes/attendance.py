"""
Attendance pages: daily check-in, self-monitoring and the discipline overview.

Why:
    Students check in once per school day with a photo and a remark; the
    school API decides the status (present / late / excused / absent) and the
    points. Staff see the day's list; administrators filter it by status and
    grade on the discipline pages.

Dates:
    "Today" is computed in the school's timezone (`KEHADIRAN_TIMEZONE`,
    default Asia/Jakarta) because the API stores attendance dates in local
    school time.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo
import logging

from fastapi import APIRouter, Query, Request
from fastapi.responses import HTMLResponse

from backend.identity_access.domain import same_id
from backend.school_api.client import UploadedPhoto
from backend.school_api.errors import ApiError, UnauthenticatedError
from backend.web import config
from backend.web.components import (
    Component,
    DataTable,
    FileUploadField,
    SelectField,
    StatGrid,
    SubmitButton,
    TextAreaField,
    TextInputField,
    csrf_field,
)
from backend.web.rendering import (
    api,
    current_user,
    error_alert,
    forbidden,
    notice,
    redirect,
    render_page,
    require_role,
    session_of,
)
from backend.web.routes.security import form_is_trusted


attendance_router = APIRouter(tags=["Attendance"])
logger = logging.getLogger("kehadiran.web.attendance")

STATUS_LABELS = {
    "present": "Hadir",
    "late": "Terlambat",
    "excused": "Izin",
    "absent": "Tidak Hadir",
}
MAX_PHOTO_BYTES = 5 * 1024 * 1024
MAX_REMARKS_LEN = 500

SUBMIT_ERROR_MESSAGES = {
    409: "Anda sudah absen hari ini.",
    404: "Data siswa tidak ditemukan.",
    500: "Terjadi kesalahan server. Silakan coba lagi atau hubungi administrator.",
}


def today_in_school_tz() -> date:
    return datetime.now(ZoneInfo(config.school_timezone())).date()


def status_label(status: Optional[str]) -> str:
    return STATUS_LABELS.get((status or "").lower(), status or "-")


def _parse_date(raw: Optional[str]) -> str:
    """Return `raw` when it is an ISO date, else today's date."""
    if raw:
        try:
            return date.fromisoformat(raw).isoformat()
        except ValueError:
            pass
    return today_in_school_tz().isoformat()


def _with_labels(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    out = []
    for row in rows:
        item = dict(row)
        item["status_label"] = status_label(row.get("status") or row.get("attendance_status"))
        medias = row.get("medias")
        item["photo_count"] = len(medias) if isinstance(medias, list) else 0
        out.append(item)
    return out


# --- Daily check-in ---------------------------------------------------------


def submit_error_message(exc: ApiError) -> str:
    """Map a failed check-in to the message shown above the form."""
    if exc.status_code == 422:
        message = exc.message if exc.message and not exc.message.startswith("http_") else "Validasi gagal"
        details = exc.field_messages()
        return f"{message}: {', '.join(details)}" if details else message
    if exc.status_code in SUBMIT_ERROR_MESSAGES:
        return SUBMIT_ERROR_MESSAGES[exc.status_code]
    return "Gagal mengirim absensi. Silakan coba lagi."


def _checkin_form(csrf_token: Optional[str], *, remarks: str = "", resubmit: bool = False) -> str:
    photo = FileUploadField("photo", "Foto Kehadiran", required=True, help_text="Ambil atau unggah foto Anda hari ini.")
    remarks_field = TextAreaField("remarks", "Catatan", required=True)
    label = "Kirim Ulang Absensi" if resubmit else "Kirim Absensi"
    return f"""
    <form method="post" action="/attendance" enctype="multipart/form-data" class="checkin-form">
        {csrf_field(csrf_token)}
        {photo.render(accept="image/*", capture="user")}
        {remarks_field.render(value=remarks, rows=3, maxlength=str(MAX_REMARKS_LEN))}
        <div class="form-actions">{SubmitButton(label).render()}</div>
    </form>"""


def _record_card(record: Dict[str, Any]) -> str:
    remarks = record.get("remarks")
    remarks_html = f"<p><strong>Catatan:</strong> {Component.escape(remarks)}</p>" if remarks else ""
    return f"""
    <div class="card attendance-record">
        <p><strong>Status:</strong> <span class="badge badge-{Component.escape(record.get('status'))}">{Component.escape(status_label(record.get('status')))}</span></p>
        <p><strong>Waktu:</strong> {Component.escape(record.get('updated_at') or record.get('created_at') or '-')}</p>
        {remarks_html}
    </div>"""


def _student_attendance_view(record: Optional[Dict[str, Any]], csrf_token: Optional[str], *, remarks: str = "") -> str:
    can_submit = record is None or (record.get("status") == "absent")
    parts = []
    if record is not None:
        parts.append(_record_card(record))
    if can_submit:
        parts.append(_checkin_form(csrf_token, remarks=remarks, resubmit=record is not None))
    else:
        parts.append('<p class="text-muted">Anda sudah absen hari ini.</p>')
    return "".join(parts)


def _staff_attendance_view(rows: List[Dict[str, Any]]) -> str:
    table = DataTable(
        [
            ("student.fullname", "Nama Siswa"),
            ("student.grade.name", "Kelas"),
            ("status_label", "Status"),
            ("updated_at", "Waktu Absensi"),
            ("remarks", "Catatan"),
        ],
        _with_labels(rows),
        empty_text="Belum ada absensi hari ini.",
    )
    return table.render()


async def _load_own_attendance(request: Request, today: str, student_id: Any) -> Optional[Dict[str, Any]]:
    """Today's record for the signed-in student, from either response shape.

    Students normally get `{"attendance": {...}}`; some API versions answer
    with the full `{"attendances": [...]}` list, whose rows carry
    `attendance_status` instead of `status`.
    """
    try:
        body = await api(request).attendances(date=today)
    except UnauthenticatedError:
        raise
    except ApiError as exc:
        if exc.status_code == 404:
            return None
        raise
    record = body.get("attendance")
    if isinstance(record, dict):
        return record
    rows = body.get("attendances")
    if not isinstance(rows, list):
        return None
    for row in rows:
        if isinstance(row, dict) and same_id(row.get("student_id"), student_id):
            if not row.get("status"):
                row = dict(row, status=row.get("attendance_status"))
            return row
    return None


def _attendance_page(request: Request, body_html: str, *, status_code: int = 200) -> HTMLResponse:
    today = today_in_school_tz()
    content = f"""
    <section class="card" aria-labelledby="attendance-heading">
        <h1 id="attendance-heading">Absensi Hari Ini</h1>
        <p class="text-muted">{Component.escape(today.isoformat())}</p>
        {body_html}
    </section>"""
    return render_page(request, "Absensi", content, status_code=status_code)


@attendance_router.get("/attendance", response_class=HTMLResponse)
async def attendance_page(request: Request, ok: Optional[str] = None):
    user = current_user(request)
    today = today_in_school_tz().isoformat()
    flash = notice(f"Absensi berhasil dikirim. Status: {status_label(ok)}.") if ok else ""
    try:
        if user is not None and user.is_student:
            student_id = user.student.id if user.student is not None else None
            record = await _load_own_attendance(request, today, student_id)
            body_html = flash + _student_attendance_view(record, session_of(request).csrf_token)
        else:
            body = await api(request).attendances(date=today)
            rows = body.get("attendances")
            rows = rows if isinstance(rows, list) else []
            body_html = _staff_attendance_view([r for r in rows if isinstance(r, dict)])
    except UnauthenticatedError:
        raise
    except ApiError as exc:
        body_html = error_alert(exc, "Gagal memuat data absensi hari ini.")
    return _attendance_page(request, body_html)


@attendance_router.post("/attendance")
async def attendance_submit(request: Request):
    user = current_user(request)
    if user is None or not user.is_student:
        return forbidden(request, "Hanya siswa yang dapat mengirim absensi.")
    form = await request.form()
    if not form_is_trusted(request, form.get("csrf_token")):
        return forbidden(request, "Permintaan ditolak.")

    csrf_token = session_of(request).csrf_token
    remarks = str(form.get("remarks") or "").strip()[:MAX_REMARKS_LEN]
    upload = form.get("photo")

    def _fail(message: str, status_code: int) -> HTMLResponse:
        body_html = error_alert(ApiError(message)) + _checkin_form(csrf_token, remarks=remarks)
        return _attendance_page(request, body_html, status_code=status_code)

    if not remarks:
        return _fail("Catatan wajib diisi.", 400)
    if upload is None or isinstance(upload, str) or not getattr(upload, "filename", ""):
        return _fail("Silakan ambil atau unggah foto sebelum mengirim.", 400)
    content_type = (upload.content_type or "").lower()
    if not content_type.startswith("image/"):
        return _fail("File harus berupa gambar.", 400)
    content = await upload.read(MAX_PHOTO_BYTES + 1)
    if not content:
        return _fail("Silakan ambil atau unggah foto sebelum mengirim.", 400)
    if len(content) > MAX_PHOTO_BYTES:
        return _fail("Ukuran foto maksimal 5 MB.", 413)

    photo = UploadedPhoto(filename=upload.filename, content=content, content_type=content_type)
    try:
        body = await api(request).submit_attendance(remarks=remarks, photo=photo)
    except UnauthenticatedError:
        raise
    except ApiError as exc:
        logger.warning("Attendance submit failed: %s (status %s)", exc.__class__.__name__, exc.status_code)
        status_code = exc.status_code if exc.status_code and 400 <= exc.status_code < 500 else 502
        return _fail(submit_error_message(exc), status_code)

    record = body.get("attendance") if isinstance(body.get("attendance"), dict) else {}
    status = str(record.get("status") or "present")
    return redirect(request, f"/attendance?ok={status}")


# --- Self-monitoring --------------------------------------------------------


def late_count(student: Dict[str, Any]) -> int:
    """`total_lates` as an int; the API may send it as a string."""
    try:
        return int(student.get("total_lates") or 0)
    except (TypeError, ValueError):
        return 0


@attendance_router.get("/self-monitoring", response_class=HTMLResponse)
async def self_monitoring_page(request: Request):
    try:
        body = await api(request).late_reasons()
    except UnauthenticatedError:
        raise
    except ApiError as exc:
        return render_page(request, "Self-Monitoring", error_alert(exc, "Gagal memuat data keterlambatan."))

    if body.get("is_admin"):
        students = [s for s in body.get("students_data") or [] if isinstance(s, dict)]
        late_students = [s for s in students if late_count(s) > 0]
        total_lates = sum(late_count(s) for s in students)
        stats = StatGrid(
            [
                ("Siswa Pernah Terlambat", len(late_students)),
                ("Total Keterlambatan", total_lates),
            ]
        )
        table = DataTable(
            [("student.fullname", "Nama Siswa"), ("student.grade.name", "Kelas"), ("total_lates", "Jumlah Terlambat")],
            students,
            empty_text="Belum ada data siswa.",
        )
        body_html = stats.render() + table.render()
    else:
        lates = [a for a in body.get("late_attendances") or [] if isinstance(a, dict)]
        table = DataTable(
            [("date", "Tanggal"), ("late_reason", "Alasan Terlambat")],
            lates,
            empty_text="Anda belum pernah terlambat. Pertahankan!",
        )
        body_html = StatGrid([("Total Terlambat", len(lates))]).render() + table.render()

    content = f"""
    <section class="card" aria-labelledby="monitoring-heading">
        <h1 id="monitoring-heading">Self-Monitoring</h1>
        <p class="text-muted">Riwayat keterlambatan dan alasannya.</p>
        {body_html}
    </section>"""
    return render_page(request, "Self-Monitoring", content)


# --- Student discipline (administrators) ------------------------------------


def _filter_form(action: str, *, day: str, grades: List[Dict[str, Any]], grade_id: Optional[str], status: Optional[str], show_status: bool) -> str:
    date_field = TextInputField("date", "Tanggal")
    grade_field = SelectField("grade_id", "Kelas")
    grade_options = [("", "Semua Kelas")] + [(str(g.get("id")), str(g.get("name") or g.get("id"))) for g in grades]
    status_html = ""
    if show_status:
        status_options = [("", "Semua Status")] + list(STATUS_LABELS.items())
        status_html = SelectField("status", "Status").render(status_options, value=status or "")
    return f"""
    <form method="get" action="{Component.escape(action)}" class="filter-form">
        {date_field.render(value=day, input_type="date")}
        {grade_field.render(grade_options, value=grade_id or "")}
        {status_html}
        <div class="form-actions">{SubmitButton("Terapkan Filter", variant="secondary").render()}</div>
    </form>"""


def _discipline_table(rows: List[Dict[str, Any]]) -> str:
    return DataTable(
        [
            ("student.fullname", "Nama Siswa"),
            ("student.grade.name", "Kelas"),
            ("status_label", "Status Absensi"),
            ("updated_at", "Waktu Absensi"),
            ("points_earned", "Poin Diterima"),
            ("student.total_points", "Total Poin"),
            ("remarks", "Catatan"),
            ("photo_count", "Foto"),
        ],
        _with_labels(rows),
        empty_text="Tidak ada data absensi untuk filter ini.",
    ).render()


def status_counts(rows: List[Dict[str, Any]]) -> Dict[str, int]:
    counts = {key: 0 for key in STATUS_LABELS}
    for row in rows:
        status = (row.get("status") or "").lower()
        if status in counts:
            counts[status] += 1
    return counts


async def _load_discipline(request: Request, *, day: str, status: Optional[str], grade_id: Optional[str]):
    client = api(request)
    grades = await client.grades.list()
    body = await client.attendances(date=day, status=status, grade_id=grade_id)
    rows = body.get("attendances")
    if not isinstance(rows, list):
        rows = []
    return grades, [r for r in rows if isinstance(r, dict)]


@attendance_router.get("/student-discipline", response_class=HTMLResponse)
async def student_discipline_page(
    request: Request,
    day: Optional[str] = Query(None, alias="date"),
    status: Optional[str] = None,
    grade_id: Optional[str] = None,
):
    _, error = require_role(request, "administrator")
    if error:
        return error
    day = _parse_date(day)
    status = status if status in STATUS_LABELS else None
    try:
        grades, rows = await _load_discipline(request, day=day, status=status, grade_id=grade_id)
    except UnauthenticatedError:
        raise
    except ApiError as exc:
        return render_page(request, "Disiplin Siswa", error_alert(exc, "Gagal memuat data absensi."))

    counts = status_counts(rows)
    links = "".join(
        f'<a class="stat-card stat-link" href="/student-discipline/status/{key}?date={day}">'
        f'<span class="stat-label">{Component.escape(label)}</span>'
        f'<span class="stat-value">{counts[key]}</span></a>'
        for key, label in STATUS_LABELS.items()
    )
    content = f"""
    <section class="card" aria-labelledby="discipline-heading">
        <h1 id="discipline-heading">Disiplin Siswa</h1>
        {_filter_form("/student-discipline", day=day, grades=grades, grade_id=grade_id, status=status, show_status=True)}
        <div class="stat-grid">{links}</div>
        {_discipline_table(rows)}
    </section>"""
    return render_page(request, "Disiplin Siswa", content)


@attendance_router.get("/student-discipline/status/{status}", response_class=HTMLResponse)
async def student_discipline_status_page(
    request: Request,
    status: str,
    day: Optional[str] = Query(None, alias="date"),
    grade_id: Optional[str] = None,
):
    _, error = require_role(request, "administrator")
    if error:
        return error
    status = status.lower()
    if status not in STATUS_LABELS:
        return render_page(request, "Disiplin Siswa", error_alert(ApiError("Status tidak dikenal.")), status_code=404)
    day = _parse_date(day)
    try:
        grades, rows = await _load_discipline(request, day=day, status=status, grade_id=grade_id)
    except UnauthenticatedError:
        raise
    except ApiError as exc:
        return render_page(request, "Disiplin Siswa", error_alert(exc, "Gagal memuat data absensi."))

    label = STATUS_LABELS[status]
    content = f"""
    <section class="card" aria-labelledby="discipline-status-heading">
        <h1 id="discipline-status-heading">Siswa dengan Status {Component.escape(label)}</h1>
        <p><a href="/student-discipline?date={day}">Kembali ke Disiplin Siswa</a></p>
        {_filter_form(f"/student-discipline/status/{status}", day=day, grades=grades, grade_id=grade_id, status=status, show_status=False)}
        <p class="text-muted">Jumlah: {len(rows)}</p>
        {_discipline_table(rows)}
    </section>"""
    return render_page(request, "Disiplin Siswa", content)
