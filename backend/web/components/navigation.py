"""
Navigation component

Role-based sidebar that adapts to the signed-in account
(student / teacher / administrator). Visibility of a link never grants
access: every page enforces its own role check and the access gate runs
on each navigation regardless of what the menu shows.
"""

from typing import Optional, List, Tuple

from backend.identity_access.domain import Identity, role_label
from .base import Component

NavItem = Tuple[str, str]

NAV_CONFIG = {
    "student": [
        ("/dashboard", "Dashboard"),
        ("/attendance", "Absensi"),
        ("/self-monitoring", "Self-Monitoring"),
        ("/reward", "Reward"),
        ("/reward-punishment-rules", "Aturan Poin"),
        ("/self-contract", "Kontrak Diri"),
        ("/stimulus-control", "Kontrol Stimulus"),
        ("/profile", "Profil"),
    ],
    "teacher": [
        ("/dashboard", "Dashboard"),
        ("/attendance", "Absensi"),
        ("/self-monitoring", "Self-Monitoring"),
        ("/reward", "Reward"),
        ("/reward-punishment-rules", "Aturan Poin"),
        ("/reward-punishment-records", "Catatan Poin"),
        ("/students", "Siswa"),
        ("/teachers", "Guru"),
        ("/grades", "Kelas"),
        ("/report", "Laporan"),
        ("/profile", "Profil"),
    ],
    "administrator": [
        ("/dashboard", "Dashboard"),
        ("/attendance", "Absensi"),
        ("/student-discipline", "Disiplin Siswa"),
        ("/self-monitoring", "Self-Monitoring"),
        ("/reward", "Reward"),
        ("/reward-punishment-rules", "Aturan Poin"),
        ("/reward-punishment-records", "Catatan Poin"),
        ("/stimulus-control", "Kontrol Stimulus"),
        ("/students", "Siswa"),
        ("/teachers", "Guru"),
        ("/grades", "Kelas"),
        ("/users", "Pengguna"),
        ("/report", "Laporan"),
        ("/profile", "Profil"),
    ],
}

DEFAULT_MENU: List[NavItem] = [
    ("/dashboard", "Dashboard"),
    ("/profile", "Profil"),
]


class Navigation(Component):
    """Sidebar with role-based menu items"""

    def __init__(self, user: Optional[Identity] = None, current_path: str = "/", csrf_token: Optional[str] = None):
        self.user = user
        self.current_path = current_path
        self.csrf_token = csrf_token

    def render(self) -> str:
        if not self.user:
            return self.render_aside()
        return f"""
    <button class="sidebar-toggle" data-action="sidebar-toggle" aria-label="Navigasi">
        <span class="sidebar-toggle-icon">&#9776;</span>
    </button>
    {self.render_aside()}"""

    def render_aside(self, oob: bool = False) -> str:
        """Render only the <aside> element (used for HTMX out-of-band swaps)."""
        oob_attr = ' hx-swap-oob="true"' if oob else ""
        if not self.user:
            items = self._create_nav_link("/login", "Masuk", is_active=self.current_path == "/login")
            footer = ""
        else:
            active = self._determine_active_href(self.nav_items())
            items = "".join(
                self._create_nav_link(href, text, is_active=(href == active))
                for href, text in self.nav_items()
            )
            items += self._render_logout()
            footer = f"""
            <div class="sidebar-footer">
                <div class="user-name">{self.escape(self.user.name)}</div>
                <div class="user-role">{self.escape(role_label(self.user.role))}</div>
            </div>"""
        return f"""
    <aside class="sidebar" id="sidebar" aria-label="Sidebar"{oob_attr}>
        <nav class="sidebar-nav" role="navigation" aria-label="Navigasi utama">
            <div class="sidebar-header">
                <span class="sidebar-title">Jurnal Kehadiran</span>
            </div>
            <div class="sidebar-items">
                {items}
            </div>
            {footer}
        </nav>
    </aside>"""

    def nav_items(self) -> List[NavItem]:
        """Return the menu for the account's role; unknown roles get a minimal menu."""
        if not self.user:
            return []
        return list(NAV_CONFIG.get(self.user.normalized_role, DEFAULT_MENU))

    def _determine_active_href(self, items: List[NavItem]) -> Optional[str]:
        """Pick the single active href using best prefix match."""
        path = self.current_path or "/"
        best = None
        best_len = 0
        for href, _text in items:
            if href == path:
                return href
            if path.startswith(href + "/") and len(href) > best_len:
                best = href
                best_len = len(href)
        return best

    def _create_nav_link(self, href: str, text: str, is_active: bool = False) -> str:
        active_class = " active" if is_active else ""
        aria_attr = ' aria-current="page"' if is_active else ""
        return f"""
        <a href="{href}" class="sidebar-link{active_class}"{aria_attr}>
            <span class="nav-text">{self.escape(text)}</span>
        </a>"""

    def _render_logout(self) -> str:
        # Logout is a POST so a cross-site link cannot sign the user out.
        token_field = (
            f'<input type="hidden" name="csrf_token" value="{self.escape(self.csrf_token)}">'
            if self.csrf_token
            else ""
        )
        return f"""
        <form method="post" action="/logout" class="sidebar-logout-form">
            {token_field}
            <button type="submit" class="sidebar-link sidebar-logout">Keluar</button>
        </form>"""
