"""
Layout component

Main layout wrapper that combines navigation and page content into a
complete HTML document, or into an HTMX fragment for partial swaps.
"""

from typing import Optional

from backend.identity_access.domain import Identity
from .base import Component
from .navigation import Navigation


class Layout(Component):
    """Assembles the complete page"""

    def __init__(
        self,
        title: str,
        content: str,
        user: Optional[Identity] = None,
        show_nav: bool = True,
        current_path: str = "/",
        csrf_token: Optional[str] = None,
        refresh_seconds: Optional[int] = None,
    ):
        """
        Args:
            title: Page title (will be escaped)
            content: Main content HTML (pre-rendered components)
            user: Current Identity (optional)
            show_nav: Whether to show the sidebar
            current_path: Current URL path for active navigation highlighting
            csrf_token: Session CSRF token for the logout form
            refresh_seconds: Emit a meta refresh (used by the loading page)
        """
        self.title = title
        self.content = content
        self.user = user
        self.show_nav = show_nav
        self.current_path = current_path
        self.csrf_token = csrf_token
        self.refresh_seconds = refresh_seconds

    def render(self) -> str:
        nav_html = (
            Navigation(self.user, self.current_path, csrf_token=self.csrf_token).render()
            if self.show_nav
            else ""
        )
        return f"""<!DOCTYPE html>
<html lang="id">
<head>
    {self._render_head()}
</head>
<body>
    <a href="#main-content" class="skip-link">Langsung ke konten</a>

    {nav_html}

    <main id="main-content" class="main-content" role="main">
        {self._render_main_inner()}
    </main>
</body>
</html>"""

    def render_fragment(self) -> str:
        """Return the `<main>` children plus an out-of-band sidebar for HTMX swaps."""
        main_inner = self._render_main_inner()
        if not self.show_nav:
            return main_inner
        sidebar_oob = Navigation(self.user, self.current_path, csrf_token=self.csrf_token).render_aside(oob=True)
        return f"{main_inner}{sidebar_oob}"

    def _render_head(self) -> str:
        refresh = (
            f'<meta http-equiv="refresh" content="{int(self.refresh_seconds)}">'
            if self.refresh_seconds
            else ""
        )
        return f"""
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    {refresh}
    <title>{self.escape(self.title)} - Jurnal Kehadiran</title>
    <link rel="stylesheet" href="/static/css/kehadiran.css?v=1">
    """

    def _render_main_inner(self) -> str:
        return f"""
        {self.content}
        <footer class="content-footer" role="contentinfo">
            <p class="text-center text-muted">Jurnal Kehadiran Siswa</p>
        </footer>
        """
