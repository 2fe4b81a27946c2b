"""
Reward pages: streak rewards, reward/punishment rules and point records.

Permissions:
    - `/reward`: students claim a reward once the API marks them eligible;
      staff see every student's streak.
    - `/reward-punishment-rules`: everyone reads; teachers and administrators
      create, edit and delete.
    - `/reward-punishment-records`: teachers and administrators only.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional
import logging

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse

from backend.identity_access.domain import STAFF_ROLES
from backend.school_api.errors import ApiError, UnauthenticatedError
from backend.web.components import (
    Component,
    DataTable,
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


rewards_router = APIRouter(tags=["Rewards"])
logger = logging.getLogger("kehadiran.web.rewards")

RULE_TYPES = {"reward": "Hadiah", "punishment": "Hukuman"}
MAX_TEXT_LEN = 500

FLASH = {
    "claimed": "Reward berhasil diklaim!",
    "created": "Aturan berhasil ditambahkan.",
    "updated": "Aturan berhasil diperbarui.",
    "deleted": "Aturan berhasil dihapus.",
    "done": "Catatan berhasil ditandai selesai.",
}


def _flash(ok: Optional[str]) -> str:
    return notice(FLASH.get(ok or ""))


# --- Reward claim -----------------------------------------------------------


def _claim_form(csrf_token: Optional[str], *, value: str = "", error: Optional[str] = None) -> str:
    field = TextInputField("reward", "Reward yang Diinginkan", required=True, error_text=error)
    return f"""
    <form method="post" action="/reward" class="reward-form">
        {csrf_field(csrf_token)}
        {field.render(value=value, maxlength=str(MAX_TEXT_LEN))}
        <div class="form-actions">{SubmitButton("Klaim Reward").render()}</div>
    </form>"""


def _student_reward_view(request: Request, *, value: str = "", error: Optional[str] = None) -> str:
    student = current_user(request).student
    streak = student.late_free_streak or 0
    stats = StatGrid([("Hari Tanpa Terlambat", f"{streak} hari")]).render()
    if student.pending_reward:
        body = f'<p>Reward Anda sedang diproses: <strong>{Component.escape(student.pending_reward)}</strong></p>'
    elif student.reward_eligible:
        body = "<p>Selamat! Anda berhak mendapatkan reward.</p>" + _claim_form(
            session_of(request).csrf_token, value=value, error=error
        )
    else:
        body = '<p class="text-muted">Pertahankan kehadiran tepat waktu untuk mendapatkan reward.</p>'
    return stats + body


def _staff_reward_view(students: List[Dict[str, Any]]) -> str:
    rows = []
    for student in students:
        item = dict(student)
        item["streak_label"] = f"{student.get('late_free_streak') or 0} hari"
        item["eligible_label"] = "Berhak" if student.get("reward_eligible") else "Belum"
        rows.append(item)
    return DataTable(
        [
            ("fullname", "Nama Siswa"),
            ("grade.name", "Kelas"),
            ("streak_label", "Hari Tanpa Terlambat"),
            ("eligible_label", "Status Reward"),
            ("pending_reward", "Reward Diklaim"),
        ],
        rows,
        empty_text="Belum ada data siswa.",
    ).render()


def _reward_page(request: Request, body_html: str, *, status_code: int = 200) -> HTMLResponse:
    content = f"""
    <section class="card" aria-labelledby="reward-heading">
        <h1 id="reward-heading">Reward</h1>
        {body_html}
    </section>"""
    return render_page(request, "Reward", content, status_code=status_code)


@rewards_router.get("/reward", response_class=HTMLResponse)
async def reward_page(request: Request, ok: Optional[str] = None):
    user = current_user(request)
    if user is not None and user.is_student and user.student is not None:
        return _reward_page(request, _flash(ok) + _student_reward_view(request))
    if user is None or not user.has_role(*STAFF_ROLES):
        return forbidden(request)
    try:
        students = await api(request).students.list()
    except UnauthenticatedError:
        raise
    except ApiError as exc:
        return _reward_page(request, error_alert(exc, "Gagal memuat data siswa."))
    return _reward_page(request, _staff_reward_view(students))


@rewards_router.post("/reward")
async def reward_claim(request: Request):
    user = current_user(request)
    if user is None or not user.is_student or user.student is None:
        return forbidden(request)
    form = await request.form()
    if not form_is_trusted(request, form.get("csrf_token")):
        return forbidden(request, "Permintaan ditolak.")
    if not user.student.reward_eligible:
        return _reward_page(request, error_alert(ApiError("Anda belum berhak mendapatkan reward.")), status_code=409)

    reward = str(form.get("reward") or "").strip()[:MAX_TEXT_LEN]
    if not reward:
        body = _student_reward_view(request, error="Reward tidak boleh kosong.")
        return _reward_page(request, body, status_code=400)

    payload = {"pending_reward": reward, "reward_eligible": False, "late_free_streak": 0}
    try:
        await api(request).update_student(user.student.id, payload)
    except UnauthenticatedError:
        raise
    except ApiError as exc:
        logger.warning("Reward claim failed: %s", exc.__class__.__name__)
        body = error_alert(exc, "Gagal mengklaim reward.") + _student_reward_view(request, value=reward)
        return _reward_page(request, body, status_code=502)
    return redirect(request, "/reward?ok=claimed")


# --- Rules ------------------------------------------------------------------


def _rule_form(csrf_token: Optional[str], *, rule: Optional[Dict[str, Any]] = None, error: Optional[str] = None) -> str:
    values = rule or {}
    action = f"/reward-punishment-rules/{values['id']}" if values.get("id") is not None else "/reward-punishment-rules"
    heading = "Edit Aturan" if values.get("id") is not None else "Tambah Aturan"
    type_field = SelectField("type", "Tipe", required=True)
    type_options = [("", "Pilih Tipe")] + list(RULE_TYPES.items())
    error_html = error_alert(ApiError(error)) if error else ""
    return f"""
    <section class="card" aria-labelledby="rule-form-heading">
        <h2 id="rule-form-heading">{heading}</h2>
        {error_html}
        <form method="post" action="{Component.escape(action)}" class="rule-form">
            {csrf_field(csrf_token)}
            {type_field.render(type_options, value=str(values.get("type") or ""))}
            {TextInputField("name", "Nama", required=True).render(value=str(values.get("name") or ""), maxlength="255")}
            {TextInputField("points", "Poin", required=True).render(value=str(values.get("points") if values.get("points") is not None else ""), input_type="number")}
            {TextAreaField("description", "Deskripsi").render(value=str(values.get("description") or ""), rows=3)}
            <div class="form-actions">{SubmitButton("Simpan").render()}</div>
        </form>
    </section>"""


def _rule_actions(csrf_token: Optional[str]):
    def render(rule: Dict[str, Any]) -> str:
        rule_id = Component.escape(rule.get("id"))
        return (
            f'<a class="btn btn-secondary" href="/reward-punishment-rules?edit={rule_id}">Edit</a>'
            f'<form method="post" action="/reward-punishment-rules/{rule_id}/delete" class="inline-form">'
            f"{csrf_field(csrf_token)}{SubmitButton('Hapus', variant='danger').render()}</form>"
        )

    return render


def _rules_table(rules: List[Dict[str, Any]], *, can_manage: bool, csrf_token: Optional[str]) -> str:
    rows = []
    for rule in rules:
        item = dict(rule)
        item["type_label"] = RULE_TYPES.get(str(rule.get("type") or ""), rule.get("type"))
        rows.append(item)
    return DataTable(
        [("type_label", "Tipe"), ("name", "Nama"), ("points", "Poin"), ("description", "Deskripsi")],
        rows,
        empty_text="Belum ada aturan.",
        actions=_rule_actions(csrf_token) if can_manage else None,
    ).render()


def parse_rule_form(form) -> tuple[Dict[str, Any], Optional[str]]:
    """Validate the rule form; returns `(payload, error_message)`."""
    rule_type = str(form.get("type") or "").strip()
    name = str(form.get("name") or "").strip()[:255]
    raw_points = str(form.get("points") or "").strip()
    description = str(form.get("description") or "").strip()[:MAX_TEXT_LEN]
    payload: Dict[str, Any] = {"type": rule_type, "name": name, "points": raw_points, "description": description}
    if rule_type not in RULE_TYPES:
        return payload, "Tipe aturan wajib dipilih."
    if not name:
        return payload, "Nama aturan wajib diisi."
    try:
        payload["points"] = int(raw_points)
    except ValueError:
        return payload, "Poin harus berupa angka."
    return payload, None


async def _rules_page(
    request: Request,
    *,
    ok: Optional[str] = None,
    edit_rule: Optional[Dict[str, Any]] = None,
    form_error: Optional[str] = None,
    alert_html: str = "",
    status_code: int = 200,
) -> HTMLResponse:
    user = current_user(request)
    can_manage = user is not None and user.has_role(*STAFF_ROLES)
    csrf_token = session_of(request).csrf_token
    try:
        rules = await api(request).reward_punishment_rules.list()
        table = _rules_table(rules, can_manage=can_manage, csrf_token=csrf_token)
    except UnauthenticatedError:
        raise
    except ApiError as exc:
        table = error_alert(exc, "Gagal memuat data aturan hadiah & hukuman.")
    form_html = _rule_form(csrf_token, rule=edit_rule, error=form_error) if can_manage else ""
    content = f"""
    <section class="card" aria-labelledby="rules-heading">
        <h1 id="rules-heading">Aturan Hadiah &amp; Hukuman</h1>
        {_flash(ok)}
        {alert_html}
        {table}
    </section>
    {form_html}"""
    return render_page(request, "Aturan Poin", content, status_code=status_code)


@rewards_router.get("/reward-punishment-rules", response_class=HTMLResponse)
async def rules_page(request: Request, ok: Optional[str] = None, edit: Optional[str] = None):
    edit_rule = None
    if edit and current_user(request) is not None and current_user(request).has_role(*STAFF_ROLES):
        try:
            edit_rule = await api(request).reward_punishment_rules.get(edit)
        except UnauthenticatedError:
            raise
        except ApiError as exc:
            logger.info("Rule %s could not be loaded for editing: %s", edit, exc.__class__.__name__)
    return await _rules_page(request, ok=ok, edit_rule=edit_rule)


async def _save_rule(request: Request, rule_id: Optional[str]):
    _, error = require_role(request, *STAFF_ROLES)
    if error:
        return error
    form = await request.form()
    if not form_is_trusted(request, form.get("csrf_token")):
        return forbidden(request, "Permintaan ditolak.")
    payload, message = parse_rule_form(form)
    if rule_id is not None:
        payload_for_form = dict(payload, id=rule_id)
    else:
        payload_for_form = payload
    if message:
        return await _rules_page(request, edit_rule=payload_for_form, form_error=message, status_code=400)

    resource = api(request).reward_punishment_rules
    try:
        if rule_id is None:
            await resource.create(payload)
        else:
            await resource.update(rule_id, payload)
    except UnauthenticatedError:
        raise
    except ApiError as exc:
        logger.warning("Saving rule failed: %s", exc.__class__.__name__)
        text = exc.message if exc.message and not exc.message.startswith("http_") else "Gagal menyimpan aturan."
        return await _rules_page(request, edit_rule=payload_for_form, form_error=text, status_code=502)
    return redirect(request, f"/reward-punishment-rules?ok={'created' if rule_id is None else 'updated'}")


@rewards_router.post("/reward-punishment-rules")
async def rule_create(request: Request):
    return await _save_rule(request, None)


@rewards_router.post("/reward-punishment-rules/{rule_id}")
async def rule_update(request: Request, rule_id: str):
    return await _save_rule(request, rule_id)


@rewards_router.post("/reward-punishment-rules/{rule_id}/delete")
async def rule_delete(request: Request, rule_id: str):
    _, error = require_role(request, *STAFF_ROLES)
    if error:
        return error
    form = await request.form()
    if not form_is_trusted(request, form.get("csrf_token")):
        return forbidden(request, "Permintaan ditolak.")
    try:
        await api(request).reward_punishment_rules.delete(rule_id)
    except UnauthenticatedError:
        raise
    except ApiError as exc:
        logger.warning("Deleting rule failed: %s", exc.__class__.__name__)
        return await _rules_page(request, alert_html=error_alert(exc, "Gagal menghapus aturan."), status_code=502)
    return redirect(request, "/reward-punishment-rules?ok=deleted")


# --- Records ----------------------------------------------------------------


def _record_type(record: Dict[str, Any]) -> Any:
    rule = record.get("rule")
    if isinstance(rule, dict) and rule.get("type"):
        return rule.get("type")
    return record.get("type")


def _record_checkbox(record: Dict[str, Any]) -> str:
    if _is_done(record):
        return ""
    record_id = Component.escape(record.get("id"))
    return f'<input type="checkbox" name="record_ids" value="{record_id}" form="bulk-done-form" aria-label="Pilih catatan {record_id}">'


def _is_done(record: Dict[str, Any]) -> bool:
    return str(record.get("status") or "").lower() == "done"


def _record_done_action(csrf_token: Optional[str]):
    def render(record: Dict[str, Any]) -> str:
        if _is_done(record):
            return ""
        record_id = Component.escape(record.get("id"))
        return (
            f'<form method="post" action="/reward-punishment-records/{record_id}/done" class="inline-form">'
            f"{csrf_field(csrf_token)}{SubmitButton('Selesai', variant='secondary').render()}</form>"
        )

    return render


def _records_view(records: List[Dict[str, Any]], students: List[Dict[str, Any]], csrf_token: Optional[str]) -> str:
    rows = []
    for record in records:
        item = dict(record)
        item["type_label"] = RULE_TYPES.get(str(_record_type(record)), _record_type(record))
        item["status_label"] = "Selesai" if _is_done(record) else "Belum Selesai"
        rows.append(item)
    records_table = DataTable(
        [
            ("student.fullname", "Nama Siswa"),
            ("rule.name", "Aturan"),
            ("type_label", "Tipe"),
            ("rule.points", "Poin"),
            ("status_label", "Status"),
            ("created_at", "Tanggal"),
            ("notes", "Catatan"),
        ],
        rows,
        empty_text="Belum ada catatan poin.",
        leading=_record_checkbox,
        actions=_record_done_action(csrf_token),
    ).render()
    notes_field = TextAreaField("notes", "Catatan (opsional)")
    bulk_form = f"""
    <form method="post" action="/reward-punishment-records/bulk-done" id="bulk-done-form" class="bulk-form">
        {csrf_field(csrf_token)}
        {notes_field.render(rows=2, maxlength=str(MAX_TEXT_LEN))}
        <div class="form-actions">{SubmitButton("Tandai Selesai").render()}</div>
    </form>"""
    students_table = DataTable(
        [("fullname", "Nama Siswa"), ("grade.name", "Kelas"), ("total_points", "Total Poin")],
        students,
        empty_text="Belum ada siswa dengan catatan poin.",
    ).render()
    return f"""
    {records_table}
    {bulk_form}
    <h2>Siswa dengan Catatan Poin</h2>
    {students_table}"""


async def _records_page(request: Request, *, ok: Optional[str] = None, error_html: str = "", status_code: int = 200) -> HTMLResponse:
    client = api(request)
    try:
        records = await client.reward_punishment_records.list()
        students = await client.students_with_records()
        body = _records_view(records, students, session_of(request).csrf_token)
    except UnauthenticatedError:
        raise
    except ApiError as exc:
        body = error_alert(exc, "Gagal memuat catatan poin.")
    content = f"""
    <section class="card" aria-labelledby="records-heading">
        <h1 id="records-heading">Catatan Hadiah &amp; Hukuman</h1>
        {_flash(ok)}
        {error_html}
        {body}
    </section>"""
    return render_page(request, "Catatan Poin", content, status_code=status_code)


@rewards_router.get("/reward-punishment-records", response_class=HTMLResponse)
async def records_page(request: Request, ok: Optional[str] = None):
    _, error = require_role(request, *STAFF_ROLES)
    if error:
        return error
    return await _records_page(request, ok=ok)


@rewards_router.post("/reward-punishment-records/bulk-done")
async def records_bulk_done(request: Request):
    _, error = require_role(request, *STAFF_ROLES)
    if error:
        return error
    form = await request.form()
    if not form_is_trusted(request, form.get("csrf_token")):
        return forbidden(request, "Permintaan ditolak.")
    record_ids = [str(v).strip() for v in form.getlist("record_ids") if str(v).strip()]
    notes = str(form.get("notes") or "").strip()[:MAX_TEXT_LEN] or None
    if not record_ids:
        alert = error_alert(ApiError("Pilih minimal satu catatan."))
        return await _records_page(request, error_html=alert, status_code=400)
    ids: List[Any] = [int(v) if v.isdigit() else v for v in record_ids]
    try:
        await api(request).bulk_update_records_done(ids, notes)
    except UnauthenticatedError:
        raise
    except ApiError as exc:
        logger.warning("Bulk update of records failed: %s", exc.__class__.__name__)
        return await _records_page(request, error_html=error_alert(exc, "Gagal memperbarui catatan."), status_code=502)
    return redirect(request, "/reward-punishment-records?ok=done")


@rewards_router.post("/reward-punishment-records/{record_id}/done")
async def record_mark_done(request: Request, record_id: str):
    _, error = require_role(request, *STAFF_ROLES)
    if error:
        return error
    form = await request.form()
    if not form_is_trusted(request, form.get("csrf_token")):
        return forbidden(request, "Permintaan ditolak.")
    notes = str(form.get("notes") or "").strip()[:MAX_TEXT_LEN] or None
    try:
        await api(request).update_reward_punishment_record(record_id, {"status": "done", "notes": notes})
    except UnauthenticatedError:
        raise
    except ApiError as exc:
        logger.warning("Updating record failed: %s", exc.__class__.__name__)
        return await _records_page(request, error_html=error_alert(exc, "Gagal memperbarui catatan."), status_code=502)
    return redirect(request, "/reward-punishment-records?ok=done")
