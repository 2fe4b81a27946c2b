"""
Feedback components: inline alerts, the access-denied notice and the
loading placeholder shown while the account is still being resolved.
"""

from typing import Optional

from .base import Component


class Alert(Component):
    """Inline message box. `kind` is one of error, success, info, warning."""

    def __init__(self, message: str, *, kind: str = "error") -> None:
        self.message = message
        self.kind = kind

    def render(self) -> str:
        role = "alert" if self.kind == "error" else "status"
        return f'<div class="alert alert-{self.escape(self.kind)}" role="{role}">{self.escape(self.message)}</div>'


class AccessDenied(Component):
    """Shown (with HTTP 403) when the role may not open a page."""

    def __init__(self, message: Optional[str] = None, *, link_href: str = "/dashboard", link_text: str = "Kembali ke Dashboard") -> None:
        self.message = message or "Anda tidak memiliki izin untuk mengakses halaman ini."
        self.link_href = link_href
        self.link_text = link_text

    def render(self) -> str:
        return f"""
        <section class="card access-denied" aria-labelledby="access-denied-heading">
            <h1 id="access-denied-heading">Akses Ditolak</h1>
            <p>{self.escape(self.message)}</p>
            <a class="btn" href="{self.escape(self.link_href)}">{self.escape(self.link_text)}</a>
        </section>"""


class LoadingNotice(Component):
    def render(self) -> str:
        return """
        <section class="card loading" aria-busy="true">
            <div class="spinner" aria-hidden="true"></div>
            <p>Memuat data akun...</p>
        </section>"""
