"""Report exports: flatten a report into a table, then render csv/xlsx/pdf.

Does NOT call db.commit(). The caller is responsible.
"""
from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable

from sqlalchemy.orm import Session

from aibos.app.core.errors import ValidationFailed
from aibos.app.core.timeutils import today as _today
from aibos.app.models.tenant import Company
from aibos.app.services import aging, reports
from aibos.app.services.audit import Actor, log_action
from aibos.app.services.export_excel import render_xlsx
from aibos.app.services.export_pdf import render_pdf

logger = logging.getLogger(__name__)

EXPORT_FORMATS = {
    "csv": "text/csv",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "pdf": "application/pdf",
}


@dataclass
class ReportTable:
    title: str
    subtitle: str
    headers: list[str]
    rows: list[list[Any]] = field(default_factory=list)
    # Indexes into rows that are section headings or totals, for styling.
    section_rows: set[int] = field(default_factory=set)
    total_rows: set[int] = field(default_factory=set)

    def section(self, label: str) -> None:
        self.section_rows.add(len(self.rows))
        self.rows.append([label] + [""] * (len(self.headers) - 1))

    def add(self, *values: Any) -> None:
        self.rows.append(list(values))

    def total(self, *values: Any) -> None:
        self.total_rows.add(len(self.rows))
        self.rows.append(list(values))


# ── Report → table ──────────────────────────────────────────────────────────


def _trial_balance_table(data: dict) -> ReportTable:
    table = ReportTable(
        title="Trial Balance",
        subtitle=f"As of {data['as_of']}",
        headers=["Code", "Account", "Opening", "Debit", "Credit", "Closing"],
    )
    for row in data["accounts"]:
        table.add(
            row["account_code"],
            row["account_name"],
            row["opening_balance"],
            row["period_debit"],
            row["period_credit"],
            row["closing_balance"],
        )
    table.total("", "Totals", "", data["total_debit"], data["total_credit"], "")
    return table


def _balance_sheet_table(data: dict) -> ReportTable:
    table = ReportTable(
        title="Balance Sheet", subtitle=f"As of {data['as_of']}", headers=["Account", "Balance"]
    )
    for key, label in (("assets", "Assets"), ("liabilities", "Liabilities")):
        table.section(label)
        for item in data[key]:
            table.add(f"  {item['account_code']} {item['account_name']}", item["balance"])
        table.total(f"Total {label}", data[f"total_{key}"])
    table.section("Equity")
    for item in data["equity"]:
        table.add(f"  {item['account_code']} {item['account_name']}", item["balance"])
    table.add("  Prior years' earnings", data["prior_years_earnings"])
    table.add("  Current year earnings", data["current_year_earnings"])
    table.total("Total Equity", data["total_equity"])
    table.total("Total Liabilities and Equity", data["total_liabilities_and_equity"])
    return table


_PL_LABELS = {
    "REVENUE": "Revenue",
    "COST_OF_SALES": "Cost of Sales",
    "OPERATING_EXPENSE": "Operating Expenses",
    "OTHER_INCOME": "Other Income",
    "OTHER_EXPENSE": "Other Expenses",
}


def _profit_loss_table(data: dict) -> ReportTable:
    table = ReportTable(
        title="Profit and Loss",
        subtitle=f"Period: {data['date_from']} to {data['date_to']}",
        headers=["Account", "Amount"],
    )
    for key in reports.PL_SECTIONS:
        section = data["sections"][key]
        table.section(_PL_LABELS[key])
        for item in section["accounts"]:
            table.add(f"  {item['account_code']} {item['account_name']}", item["amount"])
        table.total(f"Total {_PL_LABELS[key]}", section["total"])
        if key == "COST_OF_SALES":
            table.total("Gross Profit", data["gross_profit"])
        elif key == "OPERATING_EXPENSE":
            table.total("Operating Income", data["operating_income"])
    table.total("Net Income", data["net_income"])
    return table


def _cash_flow_table(data: dict) -> ReportTable:
    table = ReportTable(
        title="Cash Flow Statement",
        subtitle=f"Period: {data['date_from']} to {data['date_to']}",
        headers=["Item", "Amount"],
    )
    table.section("Operating Activities")
    table.add("  Net income", data["net_income"])
    for key, label in (
        ("operating", "Operating"),
        ("investing", "Investing"),
        ("financing", "Financing"),
    ):
        if key != "operating":
            table.section(f"{label} Activities")
        for item in data[key]["items"]:
            table.add(f"  {item['account_code']} {item['account_name']}", item["amount"])
        table.total(f"Net cash from {label.lower()} activities", data[key]["total"])
    table.total("Net change in cash", data["net_change"])
    table.add("Opening cash", data["opening_cash"])
    table.add("Closing cash", data["closing_cash"])
    return table


def _aging_table(title: str) -> Callable[[dict], ReportTable]:
    def build(data: dict) -> ReportTable:
        table = ReportTable(
            title=title,
            subtitle=f"As of {data['as_of']}",
            headers=["Name", "Current", "31-60", "61-90", "Over 90", "Total"],
        )
        for row in data["parties"] + [data["totals"]]:
            values = (
                row["name"], row["current"], row["days_31_60"],
                row["days_61_90"], row["over_90"], row["total"],
            )
            if row is data["totals"]:
                table.total(*values)
            else:
                table.add(*values)
        return table

    return build


RANGE_REPORTS = frozenset({"profit-loss", "cash-flow"})

# name → (runner, table builder). Runners take (db, company, params).
REPORTS: dict[str, tuple[Callable[..., dict], Callable[[dict], ReportTable]]] = {
    "trial-balance": (
        lambda db, company, p: reports.trial_balance(
            db, company, as_of=p["as_of"], include_zero=p.get("include_zero", False)
        ),
        _trial_balance_table,
    ),
    "balance-sheet": (
        lambda db, company, p: reports.balance_sheet(db, company, as_of=p["as_of"]),
        _balance_sheet_table,
    ),
    "profit-loss": (
        lambda db, company, p: reports.profit_loss(
            db, company, date_from=p["date_from"], date_to=p["date_to"]
        ),
        _profit_loss_table,
    ),
    "cash-flow": (
        lambda db, company, p: reports.cash_flow(
            db, company, date_from=p["date_from"], date_to=p["date_to"]
        ),
        _cash_flow_table,
    ),
    "ar-aging": (
        lambda db, company, p: aging.ar_aging(db, company.id, as_of=p["as_of"]),
        _aging_table("Accounts Receivable Aging"),
    ),
    "ap-aging": (
        lambda db, company, p: aging.ap_aging(db, company.id, as_of=p["as_of"]),
        _aging_table("Accounts Payable Aging"),
    ),
}


# ── Renderers ───────────────────────────────────────────────────────────────


def render_csv(table: ReportTable) -> bytes:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow([table.title])
    writer.writerow([table.subtitle])
    writer.writerow([])
    writer.writerow(table.headers)
    for row in table.rows:
        writer.writerow([str(v) if isinstance(v, Decimal) else v for v in row])
    return buf.getvalue().encode("utf-8")


def render(table: ReportTable, fmt: str) -> bytes:
    if fmt == "csv":
        return render_csv(table)
    if fmt == "xlsx":
        return render_xlsx(table)
    if fmt == "pdf":
        return render_pdf(table)
    raise ValidationFailed(f"Unsupported export format '{fmt}'", code="INVALID_FORMAT")


# ── Orchestration ───────────────────────────────────────────────────────────


@dataclass
class ExportFile:
    content: bytes
    media_type: str
    filename: str


def export_report(
    db: Session,
    actor: Actor,
    *,
    company: Company,
    report: str,
    fmt: str,
    params: dict[str, Any],
    reason: str | None = None,
) -> ExportFile:
    """Run *report*, render it as *fmt* and audit the export."""
    if report not in REPORTS:
        raise ValidationFailed(f"Unknown report '{report}'", code="UNKNOWN_REPORT")
    if fmt not in EXPORT_FORMATS:
        raise ValidationFailed(f"Unsupported export format '{fmt}'", code="INVALID_FORMAT")
    policy = company.policy_settings or {}
    if policy.get("export_requires_reason") and not (reason and reason.strip()):
        raise ValidationFailed(
            "A reason is required to export reports", code="EXPORT_REASON_REQUIRED"
        )

    required = ("date_from", "date_to") if report in RANGE_REPORTS else ("as_of",)
    missing = [key for key in required if params.get(key) is None]
    if missing:
        raise ValidationFailed(
            f"Missing report parameters: {', '.join(missing)}", code="MISSING_PARAMETERS"
        )

    runner, to_table = REPORTS[report]
    table = to_table(runner(db, company, params))
    content = render(table, fmt)

    log_action(
        db,
        actor=actor,
        action="REPORT_EXPORTED",
        entity_type="report",
        entity_id=report,
        company_id=company.id,
        changes={"format": fmt, "params": params, "reason": reason},
    )
    logger.info("Exported %s as %s for company %s", report, fmt, company.id)
    stamp = params.get("as_of") or params.get("date_to") or _today()
    return ExportFile(
        content=content,
        media_type=EXPORT_FORMATS[fmt],
        filename=f"{report}-{company.code}-{stamp}.{fmt}",
    )
