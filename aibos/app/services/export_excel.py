"""Excel rendering of report tables using openpyxl."""
from __future__ import annotations

import io
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

if TYPE_CHECKING:
    from aibos.app.services.exports import ReportTable

# ── Shared styling constants ────────────────────────────────────────────────

_HEADER_FONT = Font(name="Calibri", bold=True, color="FFFFFF", size=11)
_HEADER_FILL = PatternFill(start_color="1F4E79", end_color="1F4E79", fill_type="solid")
_SECTION_FONT = Font(name="Calibri", bold=True, size=11)
_SECTION_FILL = PatternFill(start_color="D6E4F0", end_color="D6E4F0", fill_type="solid")
_TOTAL_FONT = Font(name="Calibri", bold=True, size=11)
_TOTAL_BORDER = Border(
    top=Side(style="thin"),
    bottom=Side(style="double"),
)
_CURRENCY_FMT = '#,##0.00'
_RIGHT = Alignment(horizontal="right")
_LEFT = Alignment(horizontal="left")


def _auto_width(ws: Any) -> None:
    """Auto-fit column widths based on content."""
    for col_idx in range(1, ws.max_column + 1):
        max_len = 0
        col_letter = get_column_letter(col_idx)
        for row in ws.iter_rows(min_col=col_idx, max_col=col_idx, values_only=False):
            cell = row[0]
            if cell.value is not None:
                max_len = max(max_len, len(str(cell.value)))
        ws.column_dimensions[col_letter].width = min(max_len + 4, 40)


def _write_header_row(ws: Any, row: int, values: list[str]) -> None:
    for col, val in enumerate(values, 1):
        cell = ws.cell(row=row, column=col, value=val)
        cell.font = _HEADER_FONT
        cell.fill = _HEADER_FILL
        cell.alignment = _RIGHT if col > 1 else _LEFT


def _write_title(ws: Any, title: str, subtitle: str) -> int:
    """Write report title and subtitle, return next available row."""
    ws.cell(row=1, column=1, value=title).font = Font(name="Calibri", bold=True, size=14)
    ws.cell(row=2, column=1, value=subtitle).font = Font(name="Calibri", size=10, italic=True)
    return 4


def render_xlsx(table: ReportTable) -> bytes:
    wb = Workbook()
    ws = wb.active
    # Sheet titles are limited to 31 characters.
    ws.title = table.title[:31]

    row = _write_title(ws, table.title, table.subtitle)
    _write_header_row(ws, row, table.headers)
    row += 1
    ws.freeze_panes = ws.cell(row=row, column=1)

    for index, values in enumerate(table.rows):
        is_section = index in table.section_rows
        is_total = index in table.total_rows
        for col, value in enumerate(values, 1):
            if isinstance(value, Decimal):
                cell = ws.cell(row=row, column=col, value=float(value))
                cell.number_format = _CURRENCY_FMT
                cell.alignment = _RIGHT
            else:
                cell = ws.cell(row=row, column=col, value=value if value != "" else None)
            if is_section:
                cell.font = _SECTION_FONT
                cell.fill = _SECTION_FILL
            elif is_total:
                cell.font = _TOTAL_FONT
                if isinstance(value, Decimal):
                    cell.border = _TOTAL_BORDER
        row += 1

    _auto_width(ws)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()
