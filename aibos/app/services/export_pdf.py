"""PDF rendering of report tables using fpdf2."""
from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any

from fpdf import FPDF

if TYPE_CHECKING:
    from aibos.app.services.exports import ReportTable

_COL_BG = (31, 78, 121)   # dark blue header
_SEC_BG = (214, 228, 240)  # light blue section
_LINE_H = 7
_FONT = "Helvetica"


def _new_pdf(title: str, subtitle: str, landscape: bool) -> FPDF:
    pdf = FPDF(orientation="L" if landscape else "P")
    pdf.add_page()
    pdf.set_auto_page_break(auto=True, margin=15)
    pdf.set_font(_FONT, "B", 16)
    pdf.cell(0, 10, _safe_text(title), new_x="LMARGIN", new_y="NEXT")
    pdf.set_font(_FONT, "", 9)
    pdf.cell(0, 6, _safe_text(subtitle), new_x="LMARGIN", new_y="NEXT")
    pdf.ln(4)
    return pdf


def _header_row(pdf: FPDF, headers: list[str], widths: list[float]) -> None:
    pdf.set_fill_color(*_COL_BG)
    pdf.set_text_color(255, 255, 255)
    pdf.set_font(_FONT, "B", 9)
    for i, (h, w) in enumerate(zip(headers, widths)):
        pdf.cell(w, _LINE_H, _safe_text(h), border=1, fill=True, align="R" if i > 0 else "L")
    pdf.ln()
    pdf.set_text_color(0, 0, 0)


def _data_row(pdf: FPDF, values: list[Any], widths: list[float], bold: bool = False) -> None:
    pdf.set_font(_FONT, "B" if bold else "", 8)
    for v, w in zip(values, widths):
        align = "R" if isinstance(v, Decimal) else "L"
        pdf.cell(w, _LINE_H, _safe_text(_fmt(v)), border="B", align=align)
    pdf.ln()


def _section_header(pdf: FPDF, text: str, total_width: float) -> None:
    pdf.set_fill_color(*_SEC_BG)
    pdf.set_font(_FONT, "B", 9)
    pdf.cell(total_width, _LINE_H, _safe_text(text), fill=True, new_x="LMARGIN", new_y="NEXT")


def _fmt(value: Any) -> str:
    if isinstance(value, Decimal):
        return f"{value:,.2f}"
    return "" if value is None else str(value)


def _safe_text(text: str) -> str:
    """Replace non-latin-1 characters for PDF built-in fonts."""
    return text.encode("latin-1", errors="replace").decode("latin-1")


def _widths(table: ReportTable, page_width: float) -> list[float]:
    # The first text column gets what the numeric columns leave over.
    n = len(table.headers)
    if n == 1:
        return [page_width]
    numeric = min(35.0, page_width / n)
    text_cols = [
        i for i in range(n)
        if not any(isinstance(r[i], Decimal) for r in table.rows if i < len(r))
    ] or [0]
    other_text = 25.0
    first = page_width - numeric * (n - len(text_cols)) - other_text * (len(text_cols) - 1)
    return [
        (first if i == text_cols[0] else other_text) if i in text_cols else numeric
        for i in range(n)
    ]


def render_pdf(table: ReportTable) -> bytes:
    landscape = len(table.headers) > 4
    pdf = _new_pdf(table.title, table.subtitle, landscape)
    widths = _widths(table, pdf.epw)

    _header_row(pdf, table.headers, widths)
    for index, values in enumerate(table.rows):
        if index in table.section_rows:
            _section_header(pdf, str(values[0]), sum(widths))
        else:
            _data_row(pdf, values, widths, bold=index in table.total_rows)
    return bytes(pdf.output())
