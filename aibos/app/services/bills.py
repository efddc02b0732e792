"""Accounts payable: supplier bills.

Posting a bill:
    DEBIT  Expense (per line)     line_amount
    DEBIT  Input tax (per code)   tax_amount
    CREDIT Accounts Payable       total_amount

Bills above the company approval threshold must be approved (by someone
other than their creator) before they can be posted.

Does NOT call db.commit(). The caller is responsible.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session, selectinload

from aibos.app.core.config import settings
from aibos.app.core.errors import ConflictError, NotFoundError, PostingError, ValidationFailed
from aibos.app.core.timeutils import today as utc_today
from aibos.app.core.timeutils import utcnow
from aibos.app.models.account import AccountCategory, AccountType
from aibos.app.models.bill import Bill, BillLine, BillStatus
from aibos.app.models.customer import PAYMENT_TERM_DAYS, PartyStatus
from aibos.app.models.journal import Journal
from aibos.app.models.tax import TaxCode
from aibos.app.models.tenant import Company
from aibos.app.services.access import assert_segregated, enforce_sod
from aibos.app.services.accounts import check_accounts_of_type, find_by_category
from aibos.app.services.audit import Actor, log_action
from aibos.app.services.journals import approval_threshold
from aibos.app.services.parties import get_supplier
from aibos.app.services.posting import LineInput, build_reversal, post_journal_entry
from aibos.app.services.tax import load_tax_codes, price_line

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def create_bill(
    db: Session,
    actor: Actor,
    *,
    company: Company,
    supplier_id: UUID,
    bill_number: str,
    bill_date: date,
    lines: list[Any],
    due_date: date | None = None,
    currency: str | None = None,
    exchange_rate: Decimal | None = None,
    description: str | None = None,
) -> Bill:
    supplier = get_supplier(db, company.id, supplier_id)
    if supplier.status != PartyStatus.ACTIVE:
        raise ValidationFailed("Supplier is inactive", code="SUPPLIER_INACTIVE")
    if not lines:
        raise ValidationFailed("Bill must have at least one line", code="NO_LINES")
    if len(lines) > settings.MAX_JOURNAL_LINES:
        raise ValidationFailed("Bill cannot have more than 100 lines", code="TOO_MANY_LINES")

    due_date = due_date or bill_date + timedelta(days=PAYMENT_TERM_DAYS[supplier.payment_terms])
    if due_date < bill_date:
        raise ValidationFailed("Due date cannot be before bill date", code="INVALID_DUE_DATE")

    taken = (
        db.query(Bill.id)
        .filter(Bill.supplier_id == supplier.id, Bill.bill_number == bill_number)
        .first()
    )
    if taken:
        raise ConflictError(
            f"Bill {bill_number} already recorded for this supplier", code="BILL_NUMBER_TAKEN"
        )

    check_accounts_of_type(
        db, company.id, (ln.expense_account_id for ln in lines), AccountType.EXPENSE
    )
    tax_codes = load_tax_codes(db, company.id, (ln.tax_code_id for ln in lines))

    bill = Bill(
        tenant_id=company.tenant_id,
        company_id=company.id,
        supplier_id=supplier.id,
        bill_number=bill_number,
        bill_date=bill_date,
        due_date=due_date,
        currency=currency or supplier.currency or company.base_currency,
        exchange_rate=exchange_rate,
        description=description,
        status=BillStatus.DRAFT,
        created_by=actor.user_id,
    )
    subtotal = tax_total = ZERO
    for number, ln in enumerate(lines, start=1):
        tax_code = tax_codes.get(ln.tax_code_id) if ln.tax_code_id else None
        rate, line_amount, tax_amount = price_line(ln.quantity, ln.unit_price, tax_code)
        bill.lines.append(
            BillLine(
                line_number=number,
                description=ln.description,
                quantity=ln.quantity,
                unit_price=ln.unit_price,
                expense_account_id=ln.expense_account_id,
                tax_code_id=ln.tax_code_id,
                tax_rate=rate,
                line_amount=line_amount,
                tax_amount=tax_amount,
            )
        )
        subtotal += line_amount
        tax_total += tax_amount
    bill.subtotal = subtotal
    bill.tax_amount = tax_total
    bill.total_amount = subtotal + tax_total
    bill.paid_amount = ZERO
    bill.balance_amount = bill.total_amount
    db.add(bill)
    db.flush()

    log_action(
        db,
        actor=actor,
        action="BILL_CREATED",
        entity_type="bill",
        entity_id=bill.id,
        company_id=company.id,
        changes={
            "bill_number": bill_number,
            "supplier_id": supplier.id,
            "total_amount": bill.total_amount,
        },
    )
    return bill


def list_bills(
    db: Session,
    company_id: UUID,
    *,
    supplier_id: UUID | None = None,
    status: BillStatus | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Bill], int]:
    q = db.query(Bill).filter(Bill.company_id == company_id)
    if supplier_id is not None:
        q = q.filter(Bill.supplier_id == supplier_id)
    if status is not None:
        q = q.filter(Bill.status == status)
    if date_from is not None:
        q = q.filter(Bill.bill_date >= date_from)
    if date_to is not None:
        q = q.filter(Bill.bill_date <= date_to)
    total = q.count()
    rows = (
        q.order_by(Bill.bill_date.desc(), Bill.bill_number)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def get_bill(db: Session, company_id: UUID, bill_id: UUID) -> Bill:
    bill = (
        db.query(Bill)
        .options(selectinload(Bill.lines))
        .filter(Bill.id == bill_id, Bill.company_id == company_id)
        .first()
    )
    if bill is None:
        raise NotFoundError("Bill not found", code="BILL_NOT_FOUND")
    return bill


def approve_bill(db: Session, actor: Actor, *, company: Company, bill_id: UUID) -> Bill:
    enforce_sod(actor, "bill:approve")
    bill = get_bill(db, company.id, bill_id)
    if bill.status != BillStatus.DRAFT:
        raise ConflictError(
            f"Only draft bills can be approved (status is {bill.status.value})",
            code="INVALID_STATUS",
        )
    assert_segregated(bill.created_by, actor.user_id, "bill")
    bill.status = BillStatus.APPROVED
    bill.approved_by = actor.user_id
    bill.approved_at = utcnow()
    db.flush()

    log_action(
        db,
        actor=actor,
        action="BILL_APPROVED",
        entity_type="bill",
        entity_id=bill.id,
        company_id=company.id,
        old_values={"status": BillStatus.DRAFT.value},
        changes={"status": bill.status.value, "approved_by": actor.user_id},
    )
    return bill


def _build_journal_lines(db: Session, company: Company, bill: Bill) -> list[LineInput]:
    ap_account = find_by_category(db, company.id, AccountCategory.PAYABLE)
    if ap_account is None:
        raise PostingError("Accounts payable account not found", code="ACCOUNT_NOT_FOUND")

    lines = [
        LineInput(
            account_id=ln.expense_account_id,
            debit=ln.line_amount,
            description=ln.description,
            reference=bill.bill_number,
        )
        for ln in bill.lines
    ]
    tax_by_code: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
    for ln in bill.lines:
        if ln.tax_amount > ZERO and ln.tax_code_id is not None:
            tax_by_code[ln.tax_code_id] += ln.tax_amount
    for tax_code_id, amount in tax_by_code.items():
        tax_code = db.get(TaxCode, tax_code_id)
        if tax_code is None or tax_code.tax_account_id is None:
            raise PostingError(
                "Tax account not configured for tax code", code="ACCOUNT_NOT_FOUND"
            )
        lines.append(
            LineInput(
                account_id=tax_code.tax_account_id,
                debit=amount,
                description=f"Input tax {tax_code.code}",
                reference=bill.bill_number,
            )
        )
    lines.append(
        LineInput(
            account_id=ap_account.id,
            credit=bill.total_amount,
            description=f"Bill {bill.bill_number}",
            reference=bill.bill_number,
        )
    )
    return [ln for ln in lines if ln.debit > ZERO or ln.credit > ZERO]


def post_bill(db: Session, actor: Actor, *, company: Company, bill_id: UUID) -> Bill:
    enforce_sod(actor, "bill:post")
    bill = get_bill(db, company.id, bill_id)
    if bill.status not in (BillStatus.DRAFT, BillStatus.APPROVED):
        raise ConflictError(
            f"Bill cannot be posted in status {bill.status.value}", code="INVALID_STATUS"
        )
    if bill.total_amount <= ZERO:
        raise ValidationFailed("Bill total must be greater than zero", code="ZERO_AMOUNTS")

    fx = Decimal(str(bill.exchange_rate or 1))
    if bill.status == BillStatus.DRAFT and bill.total_amount * fx > approval_threshold(company):
        raise ValidationFailed(
            "Bill exceeds the approval threshold and must be approved before posting",
            code="APPROVAL_REQUIRED",
        )
    if bill.currency != company.base_currency and not bill.exchange_rate:
        raise PostingError(
            f"Exchange rate required for {bill.currency} bills", code="INVALID_CURRENCY"
        )

    old_status = bill.status.value
    journal = post_journal_entry(
        db,
        actor,
        company=company,
        journal_date=bill.bill_date,
        description=f"Bill {bill.bill_number}",
        lines=_build_journal_lines(db, company, bill),
        reference=bill.bill_number,
        currency=bill.currency,
        exchange_rate=bill.exchange_rate,
        source_type="bill",
        source_id=bill.id,
    )
    bill.journal_id = journal.id
    bill.status = BillStatus.POSTED
    db.flush()

    log_action(
        db,
        actor=actor,
        action="BILL_POSTED",
        entity_type="bill",
        entity_id=bill.id,
        company_id=company.id,
        old_values={"status": old_status},
        changes={"status": bill.status.value, "journal_id": journal.id},
    )
    logger.info("Bill %s posted as %s", bill.bill_number, journal.journal_number)
    return bill


def void_bill(
    db: Session, actor: Actor, *, company: Company, bill_id: UUID, reason: str | None = None
) -> Bill:
    enforce_sod(actor, "bill:void")
    bill = get_bill(db, company.id, bill_id)
    if bill.status in (BillStatus.CANCELLED, BillStatus.PAID):
        raise ConflictError(
            f"Bill cannot be voided in status {bill.status.value}", code="INVALID_STATUS"
        )
    if bill.paid_amount > ZERO:
        raise ConflictError(
            "Bill has payments applied. Void the payments first.", code="BILL_HAS_PAYMENTS"
        )
    old_status = bill.status.value
    if bill.journal_id is not None:
        build_reversal(
            db,
            actor,
            company=company,
            journal=db.get(Journal, bill.journal_id),
            reversal_date=utc_today(),
            description=f"Void bill {bill.bill_number}",
        )
    bill.status = BillStatus.CANCELLED
    bill.balance_amount = ZERO
    db.flush()

    log_action(
        db,
        actor=actor,
        action="BILL_VOIDED",
        entity_type="bill",
        entity_id=bill.id,
        company_id=company.id,
        old_values={"status": old_status},
        changes={"status": bill.status.value, "reason": reason},
    )
    return bill


def delete_bill(db: Session, actor: Actor, *, company_id: UUID, bill_id: UUID) -> None:
    bill = get_bill(db, company_id, bill_id)
    if bill.status not in (BillStatus.DRAFT, BillStatus.APPROVED):
        raise ConflictError("Only unposted bills can be deleted", code="INVALID_STATUS")
    log_action(
        db,
        actor=actor,
        action="BILL_DELETED",
        entity_type="bill",
        entity_id=bill.id,
        company_id=company_id,
        old_values={"bill_number": bill.bill_number, "total_amount": bill.total_amount},
    )
    db.delete(bill)
    db.flush()


def mark_overdue_bills(db: Session, today: date | None = None) -> int:
    today = today or utc_today()
    overdue = (
        db.query(Bill)
        .filter(
            Bill.status == BillStatus.POSTED,
            Bill.due_date < today,
            Bill.balance_amount > ZERO,
        )
        .all()
    )
    for bill in overdue:
        bill.status = BillStatus.OVERDUE
    db.flush()
    if overdue:
        logger.info("Marked %d bills overdue", len(overdue))
    return len(overdue)
