"""
Roster management: students, teachers, grades and user accounts.

Why:
    The four pages differ only in their columns and form fields, so they are
    described by `RosterPage` entries and served by one set of handlers:

    - GET  /<page>                 list + create form (`?edit=<id>` pre-fills)
    - POST /<page>                 create
    - POST /<page>/<id>            update
    - POST /<page>/<id>/delete     delete

Permissions:
    Students, teachers and grades: teachers and administrators.
    User accounts: administrators only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple
import logging

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse

from backend.identity_access.domain import ALLOWED_ROLES, role_label
from backend.school_api.client import Resource
from backend.school_api.errors import ApiError, UnauthenticatedError
from backend.web.components import (
    Alert,
    Component,
    DataTable,
    SelectField,
    SubmitButton,
    TextAreaField,
    TextInputField,
    csrf_field,
)
from backend.web.rendering import api, error_alert, forbidden, notice, redirect, render_page, require_role, session_of
from backend.web.routes.security import form_is_trusted


roster_router = APIRouter(tags=["Roster"])
logger = logging.getLogger("kehadiran.web.roster")

MAX_FIELD_LEN = 255


@dataclass(frozen=True)
class RosterField:
    name: str
    label: str
    kind: str = "text"  # text | email | password | date | number | textarea | select
    required: bool = False
    options_from: Optional[str] = None  # grades | users | teachers | roles
    required_on_update: Optional[bool] = None

    def is_required(self, *, updating: bool) -> bool:
        if updating and self.required_on_update is not None:
            return self.required_on_update
        return self.required


@dataclass(frozen=True)
class RosterPage:
    path: str
    resource: str
    title: str
    singular: str
    roles: Tuple[str, ...]
    columns: Sequence[Tuple[str, str]]
    fields: Sequence[RosterField] = field(default_factory=tuple)


STAFF = ("teacher", "administrator")

ROSTER_PAGES: List[RosterPage] = [
    RosterPage(
        path="/students",
        resource="students",
        title="Data Siswa",
        singular="Siswa",
        roles=STAFF,
        columns=[("fullname", "Nama Lengkap"), ("grade.name", "Kelas"), ("birth_date", "Tanggal Lahir"), ("phone_number", "Nomor Telepon"), ("address", "Alamat")],
        fields=(
            RosterField("user_id", "Akun Pengguna", kind="select", required=True, options_from="users"),
            RosterField("fullname", "Nama Lengkap", required=True),
            RosterField("grade_id", "Kelas", kind="select", required=True, options_from="grades"),
            RosterField("birth_date", "Tanggal Lahir", kind="date"),
            RosterField("address", "Alamat", kind="textarea"),
            RosterField("phone_number", "Nomor Telepon"),
        ),
    ),
    RosterPage(
        path="/teachers",
        resource="teachers",
        title="Data Guru",
        singular="Guru",
        roles=STAFF,
        columns=[("fullname", "Nama Lengkap"), ("phone_number", "Nomor Telepon"), ("address", "Alamat"), ("subject", "Mata Pelajaran"), ("hire_date", "Tanggal Bergabung")],
        fields=(
            RosterField("user_id", "Akun Pengguna", kind="select", required=True, options_from="users"),
            RosterField("fullname", "Nama Lengkap", required=True),
            RosterField("phone_number", "Nomor Telepon"),
            RosterField("address", "Alamat", kind="textarea"),
            RosterField("subject", "Mata Pelajaran"),
            RosterField("hire_date", "Tanggal Bergabung", kind="date"),
        ),
    ),
    RosterPage(
        path="/grades",
        resource="grades",
        title="Data Kelas",
        singular="Kelas",
        roles=STAFF,
        columns=[("name", "Nama"), ("homeroom_teacher.fullname", "Guru Wali Kelas"), ("student_count", "Jumlah Siswa")],
        fields=(
            RosterField("name", "Nama Kelas", required=True),
            RosterField("homeroom_teacher_id", "Guru Wali Kelas", kind="select", options_from="teachers"),
        ),
    ),
    RosterPage(
        path="/users",
        resource="users",
        title="Manajemen Pengguna",
        singular="Pengguna",
        roles=("administrator",),
        columns=[("name", "Nama"), ("username", "Nama Pengguna"), ("email", "Email"), ("role_label", "Peran"), ("detail", "Detail")],
        fields=(
            RosterField("name", "Nama", required=True),
            RosterField("username", "Nama Pengguna", required=True),
            RosterField("email", "Email", kind="email", required=True),
            RosterField("password", "Password", kind="password", required=True, required_on_update=False),
            RosterField("role", "Peran", kind="select", required=True, options_from="roles"),
        ),
    ),
]

PAGES_BY_PATH = {page.path: page for page in ROSTER_PAGES}

FLASH = {
    "created": "Data berhasil ditambahkan.",
    "updated": "Data berhasil diperbarui.",
    "deleted": "Data berhasil dihapus.",
}


def _resource(request: Request, page: RosterPage) -> Resource:
    return getattr(api(request), page.resource)


def _decorate_rows(page: RosterPage, rows: List[Dict[str, Any]], options: Dict[str, List[Tuple[str, str]]]) -> List[Dict[str, Any]]:
    grade_names = dict(options.get("grades", []))
    teacher_names = dict(options.get("teachers", []))
    out = []
    for row in rows:
        item = dict(row)
        if page.resource == "students" and not isinstance(row.get("grade"), dict):
            item["grade"] = {"name": grade_names.get(str(row.get("grade_id")))}
        if page.resource == "grades":
            if not isinstance(row.get("homeroom_teacher"), dict):
                item["homeroom_teacher"] = {"fullname": teacher_names.get(str(row.get("homeroom_teacher_id")))}
            students = row.get("students")
            item["student_count"] = len(students) if isinstance(students, list) else 0
        if page.resource == "users":
            item["role_label"] = role_label(row.get("role"))
            if isinstance(row.get("teacher"), dict):
                item["detail"] = f"Guru: {row['teacher'].get('fullname') or ''}"
            elif isinstance(row.get("student"), dict):
                item["detail"] = f"Siswa: {row['student'].get('fullname') or ''}"
        out.append(item)
    return out


async def _load_options(request: Request, page: RosterPage) -> Dict[str, List[Tuple[str, str]]]:
    """Fetch the choices for select fields (grades, users, teachers, roles)."""
    client = api(request)
    sources = {f.options_from for f in page.fields if f.options_from}
    options: Dict[str, List[Tuple[str, str]]] = {}
    if "grades" in sources:
        options["grades"] = [(str(g.get("id")), str(g.get("name") or g.get("id"))) for g in await client.grades.list()]
    if "users" in sources:
        options["users"] = [
            (str(u.get("id")), f"{u.get('name') or ''} ({u.get('email') or ''})") for u in await client.users.list()
        ]
    if "teachers" in sources:
        options["teachers"] = [(str(t.get("id")), str(t.get("fullname") or t.get("id"))) for t in await client.teachers.list()]
    if "roles" in sources:
        options["roles"] = [(role, role_label(role)) for role in ("student", "teacher", "administrator")]
    return options


def _render_field(rf: RosterField, value: Any, options: Dict[str, List[Tuple[str, str]]], *, updating: bool) -> str:
    required = rf.is_required(updating=updating)
    text = "" if value is None else str(value)
    if rf.kind == "select":
        choices = [("", f"Pilih {rf.label}")] + options.get(rf.options_from or "", [])
        return SelectField(rf.name, rf.label, required=required).render(choices, value=text)
    if rf.kind == "textarea":
        return TextAreaField(rf.name, rf.label, required=required).render(value=text, rows=3)
    if rf.kind == "password":
        help_text = "Kosongkan jika tidak ingin mengubah password." if updating else None
        return TextInputField(rf.name, rf.label, required=required, help_text=help_text).render(
            input_type="password", autocomplete="new-password"
        )
    return TextInputField(rf.name, rf.label, required=required).render(
        value=text, input_type=rf.kind, maxlength=str(MAX_FIELD_LEN)
    )


def _form_html(
    page: RosterPage,
    csrf_token: Optional[str],
    options: Dict[str, List[Tuple[str, str]]],
    *,
    values: Optional[Dict[str, Any]] = None,
    record_id: Optional[str] = None,
    error: Optional[str] = None,
) -> str:
    values = values or {}
    updating = record_id is not None
    action = f"{page.path}/{record_id}" if updating else page.path
    heading = f"Edit {page.singular}" if updating else f"Tambah {page.singular}"
    error_html = Alert(error).render() if error else ""
    fields_html = "".join(_render_field(rf, values.get(rf.name), options, updating=updating) for rf in page.fields)
    cancel = f'<a class="btn btn-secondary" href="{page.path}">Batal</a>' if updating else ""
    return f"""
    <section class="card" aria-labelledby="roster-form-heading">
        <h2 id="roster-form-heading">{Component.escape(heading)}</h2>
        {error_html}
        <form method="post" action="{Component.escape(action)}" class="roster-form">
            {csrf_field(csrf_token)}
            {fields_html}
            <div class="form-actions">{SubmitButton("Simpan").render()}{cancel}</div>
        </form>
    </section>"""


def _row_actions(page: RosterPage, csrf_token: Optional[str]):
    def render(row: Dict[str, Any]) -> str:
        record_id = Component.escape(row.get("id"))
        return (
            f'<a class="btn btn-secondary" href="{page.path}?edit={record_id}">Edit</a>'
            f'<form method="post" action="{page.path}/{record_id}/delete" class="inline-form">'
            f"{csrf_field(csrf_token)}{SubmitButton('Hapus', variant='danger').render()}</form>"
        )

    return render


def parse_roster_form(page: RosterPage, form, *, updating: bool) -> Tuple[Dict[str, Any], Optional[str]]:
    """Build the API payload from the submitted form; returns `(payload, error)`."""
    payload: Dict[str, Any] = {}
    for rf in page.fields:
        raw = str(form.get(rf.name) or "").strip()
        if rf.kind != "textarea":
            raw = raw[:MAX_FIELD_LEN]
        if not raw:
            if rf.is_required(updating=updating):
                return payload, f"{rf.label} wajib diisi."
            if rf.kind == "password":
                continue
            payload[rf.name] = None
            continue
        if rf.name == "role" and raw not in ALLOWED_ROLES:
            return payload, "Peran tidak dikenal."
        if rf.kind == "select" and raw.isdigit():
            payload[rf.name] = int(raw)
        else:
            payload[rf.name] = raw
    return payload, None


async def _render_roster(
    request: Request,
    page: RosterPage,
    *,
    ok: Optional[str] = None,
    edit_values: Optional[Dict[str, Any]] = None,
    edit_id: Optional[str] = None,
    form_error: Optional[str] = None,
    alert_html: str = "",
    status_code: int = 200,
) -> HTMLResponse:
    csrf_token = session_of(request).csrf_token
    try:
        rows = await _resource(request, page).list()
        options = await _load_options(request, page)
    except UnauthenticatedError:
        raise
    except ApiError as exc:
        return render_page(request, page.title, error_alert(exc, "Gagal memuat data."), status_code=status_code)

    table = DataTable(
        page.columns,
        _decorate_rows(page, rows, options),
        empty_text="Belum ada data.",
        actions=_row_actions(page, csrf_token),
    ).render()
    form_html = _form_html(page, csrf_token, options, values=edit_values, record_id=edit_id, error=form_error)
    content = f"""
    <section class="card" aria-labelledby="roster-heading">
        <h1 id="roster-heading">{Component.escape(page.title)}</h1>
        {notice(FLASH.get(ok or ""))}
        {alert_html}
        {table}
    </section>
    {form_html}"""
    return render_page(request, page.title, content, status_code=status_code)


def _register(page: RosterPage) -> None:
    async def list_page(request: Request, ok: Optional[str] = None, edit: Optional[str] = None):
        _, error = require_role(request, *page.roles)
        if error:
            return error
        edit_values = None
        if edit:
            try:
                edit_values = await _resource(request, page).get(edit)
            except UnauthenticatedError:
                raise
            except ApiError as exc:
                logger.info("%s %s could not be loaded for editing: %s", page.resource, edit, exc.__class__.__name__)
                edit = None
        return await _render_roster(request, page, ok=ok, edit_values=edit_values, edit_id=edit)

    async def save(request: Request, record_id: Optional[str]):
        _, error = require_role(request, *page.roles)
        if error:
            return error
        form = await request.form()
        if not form_is_trusted(request, form.get("csrf_token")):
            return forbidden(request, "Permintaan ditolak.")
        updating = record_id is not None
        payload, message = parse_roster_form(page, form, updating=updating)
        if message:
            return await _render_roster(
                request, page, edit_values=payload, edit_id=record_id, form_error=message, status_code=400
            )
        resource = _resource(request, page)
        try:
            if updating:
                await resource.update(record_id, payload)
            else:
                await resource.create(payload)
        except UnauthenticatedError:
            raise
        except ApiError as exc:
            logger.warning("Saving %s failed: %s", page.resource, exc.__class__.__name__)
            details = exc.field_messages()
            text = exc.message if exc.message and not exc.message.startswith("http_") else "Gagal menyimpan data."
            if details:
                text = f"{text} {' '.join(details)}"
            return await _render_roster(
                request, page, edit_values=payload, edit_id=record_id, form_error=text, status_code=502
            )
        return redirect(request, f"{page.path}?ok={'updated' if updating else 'created'}")

    async def create(request: Request):
        return await save(request, None)

    async def update(request: Request, record_id: str):
        return await save(request, record_id)

    async def delete(request: Request, record_id: str):
        _, error = require_role(request, *page.roles)
        if error:
            return error
        form = await request.form()
        if not form_is_trusted(request, form.get("csrf_token")):
            return forbidden(request, "Permintaan ditolak.")
        try:
            await _resource(request, page).delete(record_id)
        except UnauthenticatedError:
            raise
        except ApiError as exc:
            logger.warning("Deleting %s failed: %s", page.resource, exc.__class__.__name__)
            return await _render_roster(
                request, page, alert_html=error_alert(exc, "Gagal menghapus data."), status_code=502
            )
        return redirect(request, f"{page.path}?ok=deleted")

    name = page.resource
    roster_router.add_api_route(page.path, list_page, methods=["GET"], response_class=HTMLResponse, name=f"{name}_list")
    roster_router.add_api_route(page.path, create, methods=["POST"], name=f"{name}_create")
    roster_router.add_api_route(f"{page.path}/{{record_id}}", update, methods=["POST"], name=f"{name}_update")
    roster_router.add_api_route(f"{page.path}/{{record_id}}/delete", delete, methods=["POST"], name=f"{name}_delete")


for _page in ROSTER_PAGES:
    _register(_page)
