"""
Dashboard, attendance report and profile pages.

Staff see the school-wide statistics from `/dashboard/stats`; students see
their own late-free streak. The report page turns the chart endpoints into
plain tables.
"""

from __future__ import annotations

from typing import Any, Dict, List, Sequence, Tuple
import logging

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse

from backend.identity_access.domain import Identity, role_label
from backend.school_api.errors import ApiError, UnauthenticatedError
from backend.web.components import Component, DataTable, StatGrid
from backend.web.rendering import api, current_user, error_alert, render_page, require_role


reports_router = APIRouter(tags=["Reports"])
logger = logging.getLogger("kehadiran.web.reports")

REWARD_STREAK_DAYS = 5
TREND_SERIES = (("present", "Hadir"), ("late", "Terlambat"), ("absent", "Tidak Hadir"))


def _data(body: Any) -> Dict[str, Any]:
    """Unwrap a `{"data": {...}}` envelope; anything else becomes `{}`."""
    if isinstance(body, dict) and isinstance(body.get("data"), dict):
        return body["data"]
    return body if isinstance(body, dict) else {}


def stat_items(stats: Dict[str, Any]) -> List[Tuple[str, Any]]:
    today = stats.get("today_attendance") if isinstance(stats.get("today_attendance"), dict) else {}
    rate = today.get("rate")
    return [
        ("Total Siswa", stats.get("total_students") or 0),
        ("Kehadiran Hari Ini", f"{rate or 0}%"),
        ("Tidak Hadir Hari Ini", today.get("absent") or 0),
        ("Total Kelas", stats.get("total_classes") or 0),
    ]


def chart_rows(chart: Dict[str, Any], series: Sequence[Tuple[str, str]]) -> List[Dict[str, Any]]:
    """Zip chart.js style `labels`/`datasets` into one row per label."""
    labels = chart.get("labels") if isinstance(chart.get("labels"), list) else []
    datasets = chart.get("datasets") if isinstance(chart.get("datasets"), list) else []
    rows = []
    for index, label in enumerate(labels):
        row: Dict[str, Any] = {"label": label}
        for position, (key, _title) in enumerate(series):
            values = datasets[position].get("data") if position < len(datasets) and isinstance(datasets[position], dict) else None
            row[key] = values[index] if isinstance(values, list) and index < len(values) else None
        rows.append(row)
    return rows


def _student_summary(user: Identity) -> str:
    student = user.student
    streak = (student.late_free_streak or 0) if student else 0
    if student is not None and student.pending_reward:
        reward = f"Reward yang diajukan: {student.pending_reward}"
    elif student is not None and student.reward_eligible:
        reward = "Kamu bisa mengklaim reward sekarang."
    else:
        reward = f"Kamu perlu {max(REWARD_STREAK_DAYS - streak, 0)} hari lagi tanpa telat untuk mendapatkan reward."
    return f"""
    {StatGrid([("Hari Tanpa Terlambat", f"{streak} hari")]).render()}
    <p><a href="/reward">{Component.escape(reward)}</a></p>
    <p><a class="btn btn-primary" href="/attendance">Isi Kehadiran Hari Ini</a></p>"""


@reports_router.get("/dashboard", response_class=HTMLResponse)
async def dashboard(request: Request):
    user = current_user(request)
    name = Component.escape(user.name if user is not None else "")
    greeting = f'<h1 id="dashboard-heading">Selamat datang, {name}</h1>'
    if user is None or not user.is_staff:
        body = _student_summary(user) if user is not None and user.is_student else ""
    else:
        try:
            stats = _data(await api(request).dashboard_stats())
        except UnauthenticatedError:
            raise
        except ApiError as exc:
            logger.warning("Loading dashboard stats failed: %s", exc.__class__.__name__)
            body = error_alert(exc, "Gagal memuat statistik.")
        else:
            body = StatGrid(stat_items(stats)).render()
    content = f"""
    <section class="card" aria-labelledby="dashboard-heading">
        {greeting}
        <p class="text-muted">{Component.escape(role_label(user.role if user else None))}</p>
        {body}
    </section>"""
    return render_page(request, "Dashboard", content)


@reports_router.get("/report", response_class=HTMLResponse)
async def report(request: Request):
    _, error = require_role(request, "teacher", "administrator")
    if error:
        return error
    client = api(request)
    try:
        stats = _data(await client.dashboard_stats())
        trend = _data(await client.attendance_trend(period="month", limit=6))
        classes = _data(await client.class_performance())
    except UnauthenticatedError:
        raise
    except ApiError as exc:
        logger.warning("Loading report failed: %s", exc.__class__.__name__)
        return render_page(request, "Laporan", error_alert(exc, "Gagal memuat data laporan."))

    trend_table = DataTable(
        [("label", "Bulan")] + [(key, title) for key, title in TREND_SERIES],
        chart_rows(trend, TREND_SERIES),
        empty_text="Belum ada data kehadiran.",
    )
    class_rows = chart_rows(classes, (("rate", "Kehadiran"),))
    for row in class_rows:
        row["rate"] = f"{row['rate']}%" if row["rate"] is not None else None
    class_table = DataTable([("label", "Kelas"), ("rate", "Kehadiran")], class_rows, empty_text="Belum ada data kelas.")
    content = f"""
    <section class="card" aria-labelledby="report-heading">
        <h1 id="report-heading">Laporan Kehadiran</h1>
        {StatGrid(stat_items(stats)).render()}
    </section>
    <section class="card">
        <h2>Trend Kehadiran 6 Bulan Terakhir</h2>
        {trend_table.render()}
    </section>
    <section class="card">
        <h2>Performa Kelas Bulan Ini</h2>
        {class_table.render()}
    </section>"""
    return render_page(request, "Laporan", content)


@reports_router.get("/profile", response_class=HTMLResponse)
async def profile(request: Request):
    user = current_user(request)
    if user is None:
        return render_page(request, "Profil", "")
    created = (user.created_at or "")[:10] or "N/A"
    details = [
        ("Nama", user.name),
        ("Email", user.email),
        ("Nama Pengguna", user.username or "N/A"),
        ("Peran", role_label(user.role)),
        ("Bergabung Sejak", created),
    ]
    items = "".join(
        f"<dt>{Component.escape(label)}</dt><dd>{Component.escape(value or '-')}</dd>" for label, value in details
    )
    content = f"""
    <section class="card" aria-labelledby="profile-heading">
        <h1 id="profile-heading">Profil</h1>
        <dl class="profile-details">{items}</dl>
    </section>"""
    return render_page(request, "Profil", content)
