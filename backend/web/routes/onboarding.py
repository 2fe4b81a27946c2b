"""
Onboarding pages: self-contract and stimulus-control.

Students write a self-contract first and a stimulus-control strategy second;
the access gate keeps them on these pages until both exist. Administrators
get a read-only overview of every student's stimulus-control status.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional
import logging

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse

from backend.identity_access.domain import Identity, StimulusControlRecord, same_id
from backend.identity_access.gate import SELF_CONTRACT_PATH
from backend.school_api.errors import ApiError, UnauthenticatedError
from backend.web.components import Component, DataTable, SubmitButton, TextAreaField, csrf_field
from backend.web.rendering import api, current_user, error_alert, forbidden, redirect, render_page, session_of
from backend.web.routes.security import form_is_trusted


onboarding_router = APIRouter(tags=["Onboarding"])
logger = logging.getLogger("kehadiran.web.onboarding")

MAX_TEXT_LEN = 2000


def _self_contract_form(csrf_token: Optional[str], *, value: str = "", error: Optional[str] = None) -> str:
    field = TextAreaField(
        "self_contract",
        "Kontrak Diri Saya",
        required=True,
        help_text="Tuliskan komitmen Anda untuk menjadi lebih baik.",
        error_text=error,
    )
    return f"""
    <section class="card" aria-labelledby="self-contract-heading">
        <h1 id="self-contract-heading">Self Contract</h1>
        <p>Sebelum mulai menggunakan aplikasi ini, tuliskan kontrak diri Anda kepada diri sendiri.
        Bagaimana Anda akan lebih disiplin dan lebih baik dengan bantuan aplikasi ini?</p>
        <form method="post" action="/self-contract">
            {csrf_field(csrf_token)}
            {field.render(value=value, rows=8, maxlength=str(MAX_TEXT_LEN))}
            <div class="form-actions">{SubmitButton("Simpan Kontrak Diri").render()}</div>
        </form>
        <p class="text-muted">Kontrak ini akan membantu Anda tetap termotivasi dan disiplin.</p>
    </section>"""


@onboarding_router.get("/self-contract", response_class=HTMLResponse)
async def self_contract_page(request: Request):
    user = current_user(request)
    if user is None or not user.is_student or user.student is None:
        return forbidden(request, "Halaman ini hanya untuk siswa.")
    content = _self_contract_form(session_of(request).csrf_token, value=user.student.self_contract or "")
    return render_page(request, "Self Contract", content)


@onboarding_router.post("/self-contract")
async def self_contract_submit(request: Request):
    user = current_user(request)
    if user is None or not user.is_student or user.student is None:
        return forbidden(request, "Halaman ini hanya untuk siswa.")
    form = await request.form()
    if not form_is_trusted(request, form.get("csrf_token")):
        return forbidden(request, "Permintaan ditolak.")

    session = session_of(request)
    contract = str(form.get("self_contract") or "").strip()[:MAX_TEXT_LEN]
    if not contract:
        content = _self_contract_form(session.csrf_token, error="Self contract tidak boleh kosong.")
        return render_page(request, "Self Contract", content, status_code=400)

    try:
        await api(request).update_student(user.student.id, {"self_contract": contract})
    except UnauthenticatedError:
        raise
    except ApiError as exc:
        logger.warning("Saving self contract failed: %s", exc.__class__.__name__)
        content = error_alert(exc, "Gagal menyimpan self contract.") + _self_contract_form(session.csrf_token, value=contract)
        return render_page(request, "Self Contract", content, status_code=502)

    # The cached identity still carries the old (empty) contract.
    await session.refresh()
    return redirect(request, "/dashboard")


# --- Stimulus control -------------------------------------------------------


def _stimulus_form(csrf_token: Optional[str], *, value: str = "", error: Optional[str] = None) -> str:
    field = TextAreaField(
        "value",
        "Kontrol Stimulus Saya",
        required=True,
        help_text="Tuliskan strategi untuk mengontrol stimulus negatif.",
        error_text=error,
    )
    return f"""
    <section class="card" aria-labelledby="stimulus-heading">
        <h1 id="stimulus-heading">Stimulus Control</h1>
        <p>Sekarang, tuliskan strategi Stimulus Control Anda. Bagaimana Anda akan mengatur
        lingkungan untuk mendukung kebiasaan disiplin?</p>
        <form method="post" action="/stimulus-control">
            {csrf_field(csrf_token)}
            {field.render(value=value, rows=8, maxlength=str(MAX_TEXT_LEN), placeholder="Contoh: Saya akan meletakkan buku di meja belajar agar mudah diakses.")}
            <div class="form-actions">{SubmitButton("Simpan Stimulus Control").render()}</div>
        </form>
    </section>"""


def _stimulus_read_only(record: StimulusControlRecord) -> str:
    return f"""
    <section class="card" aria-labelledby="stimulus-heading">
        <h1 id="stimulus-heading">Stimulus Control</h1>
        <p>Ini adalah Stimulus Control yang telah Anda buat.</p>
        <blockquote class="contract-text">{Component.escape(record.value)}</blockquote>
        <a class="btn btn-primary" href="/dashboard">Kembali ke Dashboard</a>
    </section>"""


def _stimulus_overview(students: List[Dict[str, Any]], records: List[StimulusControlRecord]) -> str:
    rows = []
    for student in students:
        record = next((r for r in records if same_id(r.student_id, student.get("id"))), None)
        rows.append(
            {
                "fullname": student.get("fullname") or student.get("name"),
                "grade": student.get("grade"),
                "status": "Sudah Dibuat" if record else "Belum Dibuat",
                "value": record.value if record else "Belum ada stimulus control",
            }
        )
    table = DataTable(
        [("fullname", "Siswa"), ("grade.name", "Kelas"), ("status", "Status"), ("value", "Stimulus Control")],
        rows,
        empty_text="Belum ada siswa.",
    )
    return f"""
    <section class="card" aria-labelledby="stimulus-admin-heading">
        <h1 id="stimulus-admin-heading">Manajemen Stimulus Control Siswa</h1>
        <p class="text-muted">Pantau status stimulus control semua siswa.</p>
        {table.render()}
    </section>"""


def _student_without_contract() -> str:
    return f"""
    <section class="card access-denied">
        <h1>Akses Ditolak</h1>
        <p>Anda harus membuat Self Contract terlebih dahulu sebelum dapat mengakses Stimulus Control.</p>
        <a class="btn btn-primary" href="{SELF_CONTRACT_PATH}">Buat Self Contract Dulu</a>
    </section>"""


@onboarding_router.get("/stimulus-control", response_class=HTMLResponse)
async def stimulus_control_page(request: Request):
    user = current_user(request)
    client = api(request)
    if user is not None and user.has_role("administrator"):
        try:
            students = await client.students.list()
            records = await client.list_stimulus_controls()
        except UnauthenticatedError:
            raise
        except ApiError as exc:
            return render_page(request, "Stimulus Control", error_alert(exc, "Gagal memuat data."))
        return render_page(request, "Stimulus Control", _stimulus_overview(students, records))

    if user is None or not user.is_student:
        return forbidden(request)
    if user.student is None or not user.student.has_self_contract:
        return render_page(request, "Stimulus Control", _student_without_contract(), status_code=403)

    try:
        record = await client.find_stimulus_control(user.student.id)
    except UnauthenticatedError:
        raise
    except ApiError as exc:
        logger.warning("Loading stimulus control failed: %s", exc.__class__.__name__)
        record = None
    if record is not None:
        return render_page(request, "Stimulus Control", _stimulus_read_only(record))
    return render_page(request, "Stimulus Control", _stimulus_form(session_of(request).csrf_token))


async def _save_stimulus(user: Identity, request: Request, value: str) -> None:
    client = api(request)
    existing = await client.find_stimulus_control(user.student.id)
    if existing is not None:
        await client.update_stimulus_control(existing.id, value=value)
    else:
        await client.create_stimulus_control(student_id=user.student.id, value=value)


@onboarding_router.post("/stimulus-control")
async def stimulus_control_submit(request: Request):
    user = current_user(request)
    if user is None or not user.is_student or user.student is None or not user.student.has_self_contract:
        return forbidden(request)
    form = await request.form()
    if not form_is_trusted(request, form.get("csrf_token")):
        return forbidden(request, "Permintaan ditolak.")

    csrf_token = session_of(request).csrf_token
    value = str(form.get("value") or "").strip()[:MAX_TEXT_LEN]
    if not value:
        content = _stimulus_form(csrf_token, error="Stimulus control tidak boleh kosong.")
        return render_page(request, "Stimulus Control", content, status_code=400)

    try:
        await _save_stimulus(user, request, value)
    except UnauthenticatedError:
        raise
    except ApiError as exc:
        logger.warning("Saving stimulus control failed: %s", exc.__class__.__name__)
        content = error_alert(exc, "Gagal menyimpan stimulus control.") + _stimulus_form(csrf_token, value=value)
        return render_page(request, "Stimulus Control", content, status_code=502)
    return redirect(request, "/dashboard")
