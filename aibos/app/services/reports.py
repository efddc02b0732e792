"""Service layer for financial reports.

All figures are in the company's base currency; journal lines are stored
converted. Only POSTED and REVERSED journals contribute, so a reversed
journal and its reversal net out.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from aibos.app.core.config import settings
from aibos.app.core.errors import ValidationFailed
from aibos.app.core.timeutils import today as _today
from aibos.app.models.account import Account, AccountCategory, AccountType
from aibos.app.models.journal import LEDGER_STATUSES, Journal, JournalLine
from aibos.app.models.period import FiscalPeriod
from aibos.app.models.tenant import Company

ZERO = Decimal("0")
PCT = Decimal("0.01")
HUNDRED = Decimal("100")

DEBIT_NORMAL = (AccountType.ASSET, AccountType.EXPENSE)
CASH_CATEGORIES = (AccountCategory.CASH, AccountCategory.BANK)
INVESTING_CATEGORIES = (AccountCategory.FIXED_ASSET, AccountCategory.INVESTMENT)

PL_SECTIONS = (
    "REVENUE",
    "COST_OF_SALES",
    "OPERATING_EXPENSE",
    "OTHER_INCOME",
    "OTHER_EXPENSE",
)


# ── Helpers ──────────────────────────────────────────────────────────────────


@dataclass
class _Totals:
    debit: Decimal = ZERO
    credit: Decimal = ZERO

    def signed(self, account_type: AccountType) -> Decimal:
        """Balance in the account's normal direction."""
        if account_type in DEBIT_NORMAL:
            return self.debit - self.credit
        return self.credit - self.debit


def _check_not_future(*dates: date, today: date | None = None) -> None:
    today = today or _today()
    for d in dates:
        if d is not None and d > today:
            raise ValidationFailed(
                "Report dates cannot be in the future", code="FUTURE_DATE"
            )


def _check_range(date_from: date, date_to: date) -> None:
    if date_to < date_from:
        raise ValidationFailed(
            "End date cannot be before start date", code="INVALID_DATE_RANGE"
        )


def _pct(part: Decimal, whole: Decimal) -> Decimal:
    if whole == ZERO:
        return ZERO
    return (part / whole * HUNDRED).quantize(PCT, rounding=ROUND_HALF_UP)


def fiscal_year_start(company: Company, on: date) -> date:
    """First day of the fiscal year containing *on*."""
    start_month = company.fiscal_year_end % 12 + 1
    year = on.year if on.month >= start_month else on.year - 1
    return date(year, start_month, 1)


def _period_start(db: Session, company: Company, on: date) -> date:
    """Start of the fiscal period containing *on*, or of its calendar month."""
    period = (
        db.query(FiscalPeriod)
        .filter(
            FiscalPeriod.company_id == company.id,
            FiscalPeriod.start_date <= on,
            FiscalPeriod.end_date >= on,
        )
        .first()
    )
    return period.start_date if period else on.replace(day=1)


def _accounts(db: Session, company_id: UUID) -> list[Account]:
    return (
        db.query(Account)
        .filter(Account.company_id == company_id)
        .order_by(Account.code)
        .all()
    )


def _sums(
    db: Session,
    company_id: UUID,
    *,
    date_from: date | None = None,
    date_to: date | None = None,
) -> dict[UUID, _Totals]:
    """Per-account debit/credit totals over ledger journals, date-bounded."""
    query = (
        db.query(
            JournalLine.account_id,
            func.coalesce(func.sum(JournalLine.debit), 0).label("total_debit"),
            func.coalesce(func.sum(JournalLine.credit), 0).label("total_credit"),
        )
        .join(Journal, JournalLine.journal_id == Journal.id)
        .filter(Journal.company_id == company_id, Journal.status.in_(LEDGER_STATUSES))
    )
    if date_from is not None:
        query = query.filter(Journal.journal_date >= date_from)
    if date_to is not None:
        query = query.filter(Journal.journal_date <= date_to)
    return {
        r.account_id: _Totals(Decimal(str(r.total_debit)), Decimal(str(r.total_credit)))
        for r in query.group_by(JournalLine.account_id).all()
    }


def _net_income(accounts: list[Account], sums: dict[UUID, _Totals]) -> Decimal:
    revenue = sum(
        (sums[a.id].signed(a.account_type) for a in accounts
         if a.account_type == AccountType.REVENUE and a.id in sums),
        ZERO,
    )
    expense = sum(
        (sums[a.id].signed(a.account_type) for a in accounts
         if a.account_type == AccountType.EXPENSE and a.id in sums),
        ZERO,
    )
    return revenue - expense


def _sides(account_type: AccountType, balance: Decimal) -> tuple[Decimal, Decimal]:
    """(debit, credit) columns for a normal-signed balance."""
    if account_type in DEBIT_NORMAL:
        return (balance, ZERO) if balance >= ZERO else (ZERO, -balance)
    return (ZERO, balance) if balance >= ZERO else (-balance, ZERO)


def _is_pl(account: Account) -> bool:
    return account.account_type in (AccountType.REVENUE, AccountType.EXPENSE)


# ── Trial Balance ───────────────────────────────────────────────────────────


def trial_balance(
    db: Session,
    company: Company,
    *,
    as_of: date,
    include_zero: bool = False,
    today: date | None = None,
) -> dict:
    """Opening, period activity and closing balance per account.

    The period is the fiscal period containing *as_of*. Revenue and expense
    openings start at the fiscal-year start; earlier profit is carried in
    retained earnings.
    """
    _check_not_future(as_of, today=today)
    fy_start = fiscal_year_start(company, as_of)
    period_start = max(_period_start(db, company, as_of), fy_start)
    before_period = period_start - timedelta(days=1)

    accounts = _accounts(db, company.id)
    prior_all = _sums(db, company.id, date_to=before_period)
    prior_year = _sums(db, company.id, date_from=fy_start, date_to=before_period)
    activity = _sums(db, company.id, date_from=period_start, date_to=as_of)
    before_fy = _sums(db, company.id, date_to=fy_start - timedelta(days=1))
    carried_earnings = _net_income(accounts, before_fy)

    retained = next(
        (a for a in accounts if a.category == AccountCategory.RETAINED_EARNINGS), None
    )

    rows: list[dict] = []
    total_debit = ZERO
    total_credit = ZERO
    by_type = {t.value: ZERO for t in AccountType}

    for account in accounts:
        source = prior_year if _is_pl(account) else prior_all
        opening = source.get(account.id, _Totals()).signed(account.account_type)
        if retained is not None and account.id == retained.id:
            opening += carried_earnings
        moved = activity.get(account.id, _Totals())
        closing = opening + moved.signed(account.account_type)

        untouched = moved.debit == ZERO and moved.credit == ZERO
        if not include_zero and untouched and opening == ZERO and closing == ZERO:
            continue

        debit_balance, credit_balance = _sides(account.account_type, closing)
        total_debit += debit_balance
        total_credit += credit_balance
        by_type[account.account_type.value] += closing

        rows.append({
            "account_id": account.id,
            "account_code": account.code,
            "account_name": account.name,
            "account_type": account.account_type.value,
            "normal_balance": account.normal_balance.value,
            "opening_balance": opening,
            "period_debit": moved.debit,
            "period_credit": moved.credit,
            "closing_balance": closing,
            "debit_balance": debit_balance,
            "credit_balance": credit_balance,
        })

    if retained is None and carried_earnings != ZERO:
        rows.append({
            "account_id": None,
            "account_code": "",
            "account_name": "Prior years' earnings",
            "account_type": AccountType.EQUITY.value,
            "normal_balance": "CREDIT",
            "opening_balance": carried_earnings,
            "period_debit": ZERO,
            "period_credit": ZERO,
            "closing_balance": carried_earnings,
            "debit_balance": _sides(AccountType.EQUITY, carried_earnings)[0],
            "credit_balance": _sides(AccountType.EQUITY, carried_earnings)[1],
        })
        total_debit += rows[-1]["debit_balance"]
        total_credit += rows[-1]["credit_balance"]
        by_type[AccountType.EQUITY.value] += carried_earnings

    net_income = by_type[AccountType.REVENUE.value] - by_type[AccountType.EXPENSE.value]
    return {
        "as_of": as_of,
        "fiscal_year_start": fy_start,
        "period_start": period_start,
        "accounts": rows,
        "total_debit": total_debit,
        "total_credit": total_credit,
        "totals_by_type": by_type,
        "net_income": net_income,
        "difference": total_debit - total_credit,
        "is_balanced": abs(total_debit - total_credit) <= settings.BALANCE_TOLERANCE,
    }


# ── Balance Sheet ───────────────────────────────────────────────────────────


def balance_sheet(
    db: Session, company: Company, *, as_of: date, today: date | None = None
) -> dict:
    """Cumulative balances to *as_of*. Profit is folded into equity."""
    _check_not_future(as_of, today=today)
    fy_start = fiscal_year_start(company, as_of)
    accounts = _accounts(db, company.id)
    cumulative = _sums(db, company.id, date_to=as_of)
    current_year = _sums(db, company.id, date_from=fy_start, date_to=as_of)

    sections: dict[str, list[dict]] = {"assets": [], "liabilities": [], "equity": []}
    totals = {"assets": ZERO, "liabilities": ZERO, "equity": ZERO}
    key_for = {
        AccountType.ASSET: "assets",
        AccountType.LIABILITY: "liabilities",
        AccountType.EQUITY: "equity",
    }
    for account in accounts:
        key = key_for.get(account.account_type)
        if key is None or account.id not in cumulative:
            continue
        balance = cumulative[account.id].signed(account.account_type)
        if balance == ZERO:
            continue
        sections[key].append({
            "account_id": account.id,
            "account_code": account.code,
            "account_name": account.name,
            "category": account.category.value,
            "balance": balance,
        })
        totals[key] += balance

    current_year_earnings = _net_income(accounts, current_year)
    prior_earnings = _net_income(accounts, cumulative) - current_year_earnings
    total_equity = totals["equity"] + prior_earnings + current_year_earnings
    total_l_and_e = totals["liabilities"] + total_equity

    return {
        "as_of": as_of,
        "assets": sections["assets"],
        "total_assets": totals["assets"],
        "liabilities": sections["liabilities"],
        "total_liabilities": totals["liabilities"],
        "equity": sections["equity"],
        "prior_years_earnings": prior_earnings,
        "current_year_earnings": current_year_earnings,
        "total_equity": total_equity,
        "total_liabilities_and_equity": total_l_and_e,
        "difference": totals["assets"] - total_l_and_e,
        "is_balanced": abs(totals["assets"] - total_l_and_e) <= settings.BALANCE_TOLERANCE,
    }


# ── Profit & Loss ───────────────────────────────────────────────────────────


def _pl_section(account: Account) -> str | None:
    if account.account_type == AccountType.REVENUE:
        return "OTHER_INCOME" if account.category == AccountCategory.OTHER_INCOME else "REVENUE"
    if account.account_type == AccountType.EXPENSE:
        if account.category == AccountCategory.COST_OF_SALES:
            return "COST_OF_SALES"
        if account.category == AccountCategory.OTHER_EXPENSE:
            return "OTHER_EXPENSE"
        return "OPERATING_EXPENSE"
    return None


def _profit_loss_figures(
    db: Session, company: Company, date_from: date, date_to: date
) -> dict:
    accounts = _accounts(db, company.id)
    sums = _sums(db, company.id, date_from=date_from, date_to=date_to)
    sections: dict[str, dict] = {
        name: {"accounts": [], "total": ZERO} for name in PL_SECTIONS
    }
    for account in accounts:
        section = _pl_section(account)
        if section is None or account.id not in sums:
            continue
        amount = sums[account.id].signed(account.account_type)
        if amount == ZERO:
            continue
        sections[section]["accounts"].append({
            "account_id": account.id,
            "account_code": account.code,
            "account_name": account.name,
            "amount": amount,
        })
        sections[section]["total"] += amount

    revenue = sections["REVENUE"]["total"]
    gross_profit = revenue - sections["COST_OF_SALES"]["total"]
    operating_income = gross_profit - sections["OPERATING_EXPENSE"]["total"]
    net_income = (
        operating_income
        + sections["OTHER_INCOME"]["total"]
        - sections["OTHER_EXPENSE"]["total"]
    )
    return {
        "date_from": date_from,
        "date_to": date_to,
        "sections": sections,
        "total_revenue": revenue,
        "gross_profit": gross_profit,
        "operating_income": operating_income,
        "net_income": net_income,
        "gross_margin": _pct(gross_profit, revenue),
        "operating_margin": _pct(operating_income, revenue),
        "net_margin": _pct(net_income, revenue),
    }


def profit_loss(
    db: Session,
    company: Company,
    *,
    date_from: date,
    date_to: date,
    compare_from: date | None = None,
    compare_to: date | None = None,
    today: date | None = None,
) -> dict:
    _check_range(date_from, date_to)
    _check_not_future(date_to, today=today)
    report = _profit_loss_figures(db, company, date_from, date_to)

    if compare_from is not None and compare_to is not None:
        _check_range(compare_from, compare_to)
        _check_not_future(compare_to, today=today)
        prior = _profit_loss_figures(db, company, compare_from, compare_to)
        variances = {}
        for key in ("total_revenue", "gross_profit", "operating_income", "net_income"):
            change = report[key] - prior[key]
            variances[key] = {
                "current": report[key],
                "comparative": prior[key],
                "variance": change,
                "variance_percentage": _pct(change, abs(prior[key])),
            }
        report["comparative"] = prior
        report["variances"] = variances
    return report


# ── Cash Flow ───────────────────────────────────────────────────────────────


def cash_flow(
    db: Session,
    company: Company,
    *,
    date_from: date,
    date_to: date,
    today: date | None = None,
) -> dict:
    """Indirect-method cash flow statement for [date_from, date_to]."""
    _check_range(date_from, date_to)
    _check_not_future(date_to, today=today)

    accounts = _accounts(db, company.id)
    opening = _sums(db, company.id, date_to=date_from - timedelta(days=1))
    closing = _sums(db, company.id, date_to=date_to)
    in_range = _sums(db, company.id, date_from=date_from, date_to=date_to)

    def change(account: Account) -> Decimal:
        before = opening.get(account.id, _Totals()).signed(account.account_type)
        after = closing.get(account.id, _Totals()).signed(account.account_type)
        return after - before

    net_income = _net_income(accounts, in_range)
    operating_items: list[dict] = []
    investing_items: list[dict] = []
    financing_items: list[dict] = []
    opening_cash = ZERO
    closing_cash = ZERO

    for account in accounts:
        delta = change(account)
        if account.category in CASH_CATEGORIES:
            opening_cash += opening.get(account.id, _Totals()).signed(account.account_type)
            closing_cash += closing.get(account.id, _Totals()).signed(account.account_type)
            continue
        if delta == ZERO:
            continue
        item = {"account_code": account.code, "account_name": account.name}
        if account.account_type == AccountType.ASSET:
            # An increase in a non-cash asset consumes cash.
            if account.category in INVESTING_CATEGORIES:
                investing_items.append({**item, "amount": -delta})
            else:
                operating_items.append({**item, "amount": -delta})
        elif account.account_type == AccountType.LIABILITY:
            if account.category == AccountCategory.LONG_TERM_LIABILITY:
                financing_items.append({**item, "amount": delta})
            else:
                operating_items.append({**item, "amount": delta})
        elif account.account_type == AccountType.EQUITY:
            if account.category != AccountCategory.RETAINED_EARNINGS:
                financing_items.append({**item, "amount": delta})

    operating = net_income + sum((i["amount"] for i in operating_items), ZERO)
    investing = sum((i["amount"] for i in investing_items), ZERO)
    financing = sum((i["amount"] for i in financing_items), ZERO)
    net_change = operating + investing + financing

    return {
        "date_from": date_from,
        "date_to": date_to,
        "net_income": net_income,
        "operating": {"items": operating_items, "total": operating},
        "investing": {"items": investing_items, "total": investing},
        "financing": {"items": financing_items, "total": financing},
        "net_change": net_change,
        "opening_cash": opening_cash,
        "closing_cash": closing_cash,
        "is_reconciled": abs(opening_cash + net_change - closing_cash)
        <= settings.BALANCE_TOLERANCE,
    }
