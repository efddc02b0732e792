"""Tax codes, tax arithmetic and the output/input tax summary."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from aibos.app.core.errors import ConflictError, NotFoundError, ValidationFailed
from aibos.app.models.account import Account, AccountType
from aibos.app.models.bill import Bill, BillLine, BillStatus
from aibos.app.models.invoice import Invoice, InvoiceLine, InvoiceStatus
from aibos.app.models.tax import TaxCode, TaxType
from aibos.app.models.tenant import Company
from aibos.app.services.audit import Actor, log_action

Q = Decimal("0.0001")
ZERO = Decimal("0")
HUNDRED = Decimal("100")

POSTED_INVOICE_STATUSES = (InvoiceStatus.SENT, InvoiceStatus.PAID, InvoiceStatus.OVERDUE)
POSTED_BILL_STATUSES = (BillStatus.POSTED, BillStatus.PAID, BillStatus.OVERDUE)


def _q(value: Decimal) -> Decimal:
    return value.quantize(Q, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class TaxResult:
    net: Decimal
    tax: Decimal
    gross: Decimal


def calculate_tax(amount: Decimal, rate: Decimal, inclusive: bool = False) -> TaxResult:
    """Split *amount* into net, tax and gross at *rate* percent.

    With ``inclusive=True`` the amount already contains the tax.
    """
    amount = Decimal(str(amount))
    rate = Decimal(str(rate))
    if rate < ZERO or rate > HUNDRED:
        raise ValidationFailed("Tax rate must be between 0 and 100", code="INVALID_TAX_RATE")
    if inclusive:
        gross = _q(amount)
        net = _q(amount * HUNDRED / (HUNDRED + rate))
        return TaxResult(net=net, tax=gross - net, gross=gross)
    net = _q(amount)
    tax = _q(amount * rate / HUNDRED)
    return TaxResult(net=net, tax=tax, gross=net + tax)


def effective_rate(tax_code: TaxCode | None) -> Decimal:
    if tax_code is None or tax_code.tax_type == TaxType.EXEMPT:
        return ZERO
    return Decimal(str(tax_code.rate))


def price_line(
    quantity: Decimal, unit_price: Decimal, tax_code: TaxCode | None
) -> tuple[Decimal, Decimal, Decimal]:
    """Return (rate, line_amount, tax_amount) for an invoice or bill line."""
    rate = effective_rate(tax_code)
    result = calculate_tax(Decimal(str(quantity)) * Decimal(str(unit_price)), rate)
    return rate, result.net, result.tax


# ─── Tax codes ───────────────────────────────────────────────────────────────


def list_tax_codes(
    db: Session, company_id: UUID, *, tax_type: TaxType | None = None, active_only: bool = False
) -> list[TaxCode]:
    q = db.query(TaxCode).filter(TaxCode.company_id == company_id)
    if tax_type is not None:
        q = q.filter(TaxCode.tax_type == tax_type)
    if active_only:
        q = q.filter(TaxCode.is_active.is_(True))
    return q.order_by(TaxCode.code).all()


def get_tax_code(db: Session, company_id: UUID, tax_code_id: UUID) -> TaxCode:
    tax_code = (
        db.query(TaxCode)
        .filter(TaxCode.id == tax_code_id, TaxCode.company_id == company_id)
        .first()
    )
    if tax_code is None:
        raise NotFoundError("Tax code not found", code="TAX_CODE_NOT_FOUND")
    return tax_code


def _check_tax_account(db: Session, company_id: UUID, account_id: UUID | None) -> None:
    if account_id is None:
        return
    account = (
        db.query(Account)
        .filter(Account.id == account_id, Account.company_id == company_id)
        .first()
    )
    if account is None:
        raise ValidationFailed("Tax account not found", code="ACCOUNT_NOT_FOUND")
    if account.account_type not in (AccountType.ASSET, AccountType.LIABILITY):
        raise ValidationFailed(
            "Tax account must be an asset or liability account", code="INVALID_TAX_ACCOUNT"
        )


def create_tax_code(
    db: Session,
    actor: Actor,
    *,
    company: Company,
    code: str,
    name: str,
    rate: Decimal,
    tax_type: TaxType,
    tax_account_id: UUID | None = None,
) -> TaxCode:
    exists = (
        db.query(TaxCode.id)
        .filter(TaxCode.company_id == company.id, TaxCode.code == code)
        .first()
    )
    if exists:
        raise ConflictError(f"Tax code '{code}' already exists", code="TAX_CODE_TAKEN")
    if tax_type != TaxType.EXEMPT and tax_account_id is None:
        raise ValidationFailed(
            "A tax account is required for taxable codes", code="ACCOUNT_NOT_FOUND"
        )
    _check_tax_account(db, company.id, tax_account_id)

    tax_code = TaxCode(
        tenant_id=company.tenant_id,
        company_id=company.id,
        code=code,
        name=name,
        rate=ZERO if tax_type == TaxType.EXEMPT else rate,
        tax_type=tax_type,
        tax_account_id=tax_account_id,
    )
    db.add(tax_code)
    db.flush()
    log_action(
        db,
        actor=actor,
        action="TAX_CODE_CREATED",
        entity_type="tax_code",
        entity_id=tax_code.id,
        company_id=company.id,
        changes={"code": code, "rate": tax_code.rate, "tax_type": tax_type.value},
    )
    return tax_code


def update_tax_code(
    db: Session,
    actor: Actor,
    *,
    company_id: UUID,
    tax_code_id: UUID,
    name: str | None = None,
    rate: Decimal | None = None,
    tax_account_id: UUID | None = None,
    is_active: bool | None = None,
) -> TaxCode:
    tax_code = get_tax_code(db, company_id, tax_code_id)
    old = {"name": tax_code.name, "rate": tax_code.rate, "is_active": tax_code.is_active}
    if name is not None:
        tax_code.name = name
    if rate is not None and tax_code.tax_type != TaxType.EXEMPT:
        tax_code.rate = rate
    if tax_account_id is not None:
        _check_tax_account(db, company_id, tax_account_id)
        tax_code.tax_account_id = tax_account_id
    if is_active is not None:
        tax_code.is_active = is_active
    db.flush()
    log_action(
        db,
        actor=actor,
        action="TAX_CODE_UPDATED",
        entity_type="tax_code",
        entity_id=tax_code.id,
        company_id=company_id,
        old_values=old,
        changes={"name": tax_code.name, "rate": tax_code.rate, "is_active": tax_code.is_active},
    )
    return tax_code


# ─── Summary ─────────────────────────────────────────────────────────────────


def tax_summary(
    db: Session, company_id: UUID, *, date_from: date, date_to: date
) -> dict:
    """Output tax on posted invoices minus input tax on posted bills.

    Amounts are converted to base currency with each document's rate.
    """
    if date_to < date_from:
        raise ValidationFailed("End date cannot be before start date", code="INVALID_DATE_RANGE")

    rows: dict[UUID, dict] = {}

    def _bucket(tax_code: TaxCode) -> dict:
        return rows.setdefault(
            tax_code.id,
            {
                "tax_code_id": tax_code.id,
                "code": tax_code.code,
                "name": tax_code.name,
                "tax_type": tax_code.tax_type.value,
                "rate": tax_code.rate,
                "taxable_amount": ZERO,
                "tax_amount": ZERO,
            },
        )

    invoice_lines = (
        db.query(InvoiceLine, Invoice, TaxCode)
        .join(Invoice, InvoiceLine.invoice_id == Invoice.id)
        .join(TaxCode, InvoiceLine.tax_code_id == TaxCode.id)
        .filter(
            Invoice.company_id == company_id,
            Invoice.status.in_(POSTED_INVOICE_STATUSES),
            Invoice.invoice_date >= date_from,
            Invoice.invoice_date <= date_to,
        )
        .all()
    )
    for line, invoice, tax_code in invoice_lines:
        fx = Decimal(str(invoice.exchange_rate or 1))
        bucket = _bucket(tax_code)
        bucket["taxable_amount"] += _q(line.line_amount * fx)
        bucket["tax_amount"] += _q(line.tax_amount * fx)

    bill_lines = (
        db.query(BillLine, Bill, TaxCode)
        .join(Bill, BillLine.bill_id == Bill.id)
        .join(TaxCode, BillLine.tax_code_id == TaxCode.id)
        .filter(
            Bill.company_id == company_id,
            Bill.status.in_(POSTED_BILL_STATUSES),
            Bill.bill_date >= date_from,
            Bill.bill_date <= date_to,
        )
        .all()
    )
    for line, bill, tax_code in bill_lines:
        fx = Decimal(str(bill.exchange_rate or 1))
        bucket = _bucket(tax_code)
        bucket["taxable_amount"] += _q(line.line_amount * fx)
        bucket["tax_amount"] += _q(line.tax_amount * fx)

    output_tax = sum(
        (r["tax_amount"] for r in rows.values() if r["tax_type"] == TaxType.OUTPUT.value), ZERO
    )
    input_tax = sum(
        (r["tax_amount"] for r in rows.values() if r["tax_type"] == TaxType.INPUT.value), ZERO
    )
    return {
        "date_from": date_from,
        "date_to": date_to,
        "codes": sorted(rows.values(), key=lambda r: r["code"]),
        "output_tax": output_tax,
        "input_tax": input_tax,
        "net_tax_payable": output_tax - input_tax,
    }


def load_tax_codes(
    db: Session, company_id: UUID, ids: Iterable[UUID | None]
) -> dict[UUID, TaxCode]:
    wanted = {i for i in ids if i is not None}
    if not wanted:
        return {}
    codes = (
        db.query(TaxCode)
        .filter(TaxCode.company_id == company_id, TaxCode.id.in_(wanted))
        .all()
    )
    found = {c.id: c for c in codes}
    missing = wanted - set(found)
    if missing:
        raise ValidationFailed(
            f"Tax code not found: {', '.join(sorted(str(m) for m in missing))}",
            code="TAX_CODE_NOT_FOUND",
        )
    return found
