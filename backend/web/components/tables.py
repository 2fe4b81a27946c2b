"""
Data table component for roster and attendance listings.

Columns are `(key, label)` pairs; cell values are looked up on each row
mapping and escaped. Keys may use dots to reach nested mappings
(`"student.fullname"`). Pre-rendered HTML (action buttons, checkboxes) is
passed per row through `actions`.
"""

from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .base import Component

Column = Tuple[str, str]


def lookup(row: Mapping[str, Any], key: str) -> Any:
    value: Any = row
    for part in key.split("."):
        if not isinstance(value, Mapping):
            return None
        value = value.get(part)
    return value


class DataTable(Component):
    def __init__(
        self,
        columns: Sequence[Column],
        rows: Sequence[Dict[str, Any]],
        *,
        empty_text: str = "Belum ada data.",
        actions: Optional[Callable[[Dict[str, Any]], str]] = None,
        leading: Optional[Callable[[Dict[str, Any]], str]] = None,
        table_id: Optional[str] = None,
    ) -> None:
        self.columns = list(columns)
        self.rows = list(rows)
        self.empty_text = empty_text
        self.actions = actions
        self.leading = leading
        self.table_id = table_id

    def render(self) -> str:
        if not self.rows:
            return f'<p class="text-muted empty-state">{self.escape(self.empty_text)}</p>'
        head: List[str] = []
        if self.leading:
            head.append("<th></th>")
        head.extend(f"<th scope=\"col\">{self.escape(label)}</th>" for _key, label in self.columns)
        if self.actions:
            head.append("<th scope=\"col\">Aksi</th>")

        body = []
        for row in self.rows:
            cells = []
            if self.leading:
                cells.append(f"<td>{self.leading(row)}</td>")
            for key, _label in self.columns:
                value = lookup(row, key)
                cells.append(f"<td>{self.escape('-' if value in (None, '') else value)}</td>")
            if self.actions:
                cells.append(f"<td class=\"table-actions\">{self.actions(row)}</td>")
            body.append(f"<tr>{''.join(cells)}</tr>")

        table_attrs = self.attributes(id=self.table_id, class_="data-table")
        return (
            f"<table {table_attrs}>"
            f"<thead><tr>{''.join(head)}</tr></thead>"
            f"<tbody>{''.join(body)}</tbody>"
            "</table>"
        )


class StatGrid(Component):
    """Small cards with a label and a number, e.g. dashboard statistics."""

    def __init__(self, items: Sequence[Tuple[str, Any]]) -> None:
        self.items = list(items)

    def render(self) -> str:
        cards = "".join(
            f'<div class="stat-card"><span class="stat-label">{self.escape(label)}</span>'
            f'<span class="stat-value">{self.escape("-" if value is None else value)}</span></div>'
            for label, value in self.items
        )
        return f'<div class="stat-grid">{cards}</div>'
