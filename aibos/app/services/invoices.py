"""Accounts receivable: invoice lifecycle and its GL postings.

Posting an invoice:
    DEBIT  Accounts Receivable   total_amount
    CREDIT Revenue (per line)    line_amount
    CREDIT Output tax (per code) tax_amount

Does NOT call db.commit(). The caller is responsible.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from aibos.app.core.config import settings
from aibos.app.core.database import next_sequence
from aibos.app.core.errors import ConflictError, NotFoundError, PostingError, ValidationFailed
from aibos.app.core.timeutils import today as utc_today
from aibos.app.models.account import AccountCategory, AccountType
from aibos.app.models.customer import PAYMENT_TERM_DAYS, Customer, PartyStatus
from aibos.app.models.invoice import OPEN_INVOICE_STATUSES, Invoice, InvoiceLine, InvoiceStatus
from aibos.app.models.journal import Journal
from aibos.app.models.tax import TaxCode
from aibos.app.models.tenant import Company
from aibos.app.services.access import enforce_sod
from aibos.app.services.accounts import check_accounts_of_type, find_by_category
from aibos.app.services.audit import Actor, log_action
from aibos.app.services.notification_service import NotificationService, NotificationType
from aibos.app.services.parties import customer_outstanding, get_customer
from aibos.app.services.posting import LineInput, build_reversal, post_journal_entry
from aibos.app.services.tax import load_tax_codes, price_line

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def next_invoice_number(db: Session, company_id: UUID, year: int) -> str:
    return next_sequence(
        db, Invoice.invoice_number, f"INV-{year}-", Invoice.company_id == company_id
    )


def create_invoice(
    db: Session,
    actor: Actor,
    *,
    company: Company,
    customer_id: UUID,
    invoice_date: date,
    lines: list[Any],
    due_date: date | None = None,
    currency: str | None = None,
    exchange_rate: Decimal | None = None,
    description: str | None = None,
    notes: str | None = None,
    invoice_number: str | None = None,
) -> Invoice:
    """Create a draft invoice. Line and document totals are computed here."""
    customer = get_customer(db, company.id, customer_id)
    if customer.status != PartyStatus.ACTIVE:
        raise ValidationFailed("Customer is inactive", code="CUSTOMER_INACTIVE")
    if not lines:
        raise ValidationFailed("Invoice must have at least one line", code="NO_LINES")
    if len(lines) > settings.MAX_JOURNAL_LINES:
        raise ValidationFailed("Invoice cannot have more than 100 lines", code="TOO_MANY_LINES")

    due_date = due_date or invoice_date + timedelta(days=PAYMENT_TERM_DAYS[customer.payment_terms])
    if due_date < invoice_date:
        raise ValidationFailed("Due date cannot be before invoice date", code="INVALID_DUE_DATE")

    number = invoice_number or next_invoice_number(db, company.id, invoice_date.year)
    taken = (
        db.query(Invoice.id)
        .filter(Invoice.company_id == company.id, Invoice.invoice_number == number)
        .first()
    )
    if taken:
        raise ConflictError(f"Invoice number {number} already exists", code="INVOICE_NUMBER_TAKEN")

    check_accounts_of_type(
        db, company.id, (ln.revenue_account_id for ln in lines), AccountType.REVENUE
    )
    tax_codes = load_tax_codes(db, company.id, (ln.tax_code_id for ln in lines))

    invoice = Invoice(
        tenant_id=company.tenant_id,
        company_id=company.id,
        customer_id=customer.id,
        invoice_number=number,
        invoice_date=invoice_date,
        due_date=due_date,
        currency=currency or customer.currency or company.base_currency,
        exchange_rate=exchange_rate,
        description=description,
        notes=notes,
        status=InvoiceStatus.DRAFT,
        created_by=actor.user_id,
    )
    subtotal = tax_total = ZERO
    for number_, ln in enumerate(lines, start=1):
        tax_code = tax_codes.get(ln.tax_code_id) if ln.tax_code_id else None
        rate, line_amount, tax_amount = price_line(ln.quantity, ln.unit_price, tax_code)
        invoice.lines.append(
            InvoiceLine(
                line_number=number_,
                description=ln.description,
                quantity=ln.quantity,
                unit_price=ln.unit_price,
                revenue_account_id=ln.revenue_account_id,
                tax_code_id=ln.tax_code_id,
                tax_rate=rate,
                line_amount=line_amount,
                tax_amount=tax_amount,
            )
        )
        subtotal += line_amount
        tax_total += tax_amount
    invoice.subtotal = subtotal
    invoice.tax_amount = tax_total
    invoice.total_amount = subtotal + tax_total
    invoice.paid_amount = ZERO
    invoice.balance_amount = invoice.total_amount
    db.add(invoice)
    db.flush()

    log_action(
        db,
        actor=actor,
        action="INVOICE_CREATED",
        entity_type="invoice",
        entity_id=invoice.id,
        company_id=company.id,
        changes={
            "invoice_number": invoice.invoice_number,
            "customer_id": customer.id,
            "currency": invoice.currency,
            "total_amount": invoice.total_amount,
        },
    )
    return invoice


def list_invoices(
    db: Session,
    company_id: UUID,
    *,
    customer_id: UUID | None = None,
    status: InvoiceStatus | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Invoice], int]:
    q = db.query(Invoice).filter(Invoice.company_id == company_id)
    if customer_id is not None:
        q = q.filter(Invoice.customer_id == customer_id)
    if status is not None:
        q = q.filter(Invoice.status == status)
    if date_from is not None:
        q = q.filter(Invoice.invoice_date >= date_from)
    if date_to is not None:
        q = q.filter(Invoice.invoice_date <= date_to)
    if search:
        pattern = f"%{search}%"
        q = q.join(Customer, Invoice.customer_id == Customer.id).filter(
            or_(
                Invoice.invoice_number.ilike(pattern),
                Invoice.description.ilike(pattern),
                Customer.name.ilike(pattern),
            )
        )
    total = q.count()
    rows = (
        q.order_by(Invoice.invoice_date.desc(), Invoice.invoice_number.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def get_invoice(db: Session, company_id: UUID, invoice_id: UUID) -> Invoice:
    invoice = (
        db.query(Invoice)
        .options(selectinload(Invoice.lines))
        .filter(Invoice.id == invoice_id, Invoice.company_id == company_id)
        .first()
    )
    if invoice is None:
        raise NotFoundError("Invoice not found", code="INVOICE_NOT_FOUND")
    return invoice


def _build_journal_lines(db: Session, company: Company, invoice: Invoice) -> list[LineInput]:
    ar_account = find_by_category(db, company.id, AccountCategory.RECEIVABLE)
    if ar_account is None:
        raise PostingError("Accounts receivable account not found", code="ACCOUNT_NOT_FOUND")

    lines = [
        LineInput(
            account_id=ar_account.id,
            debit=invoice.total_amount,
            description=f"Invoice {invoice.invoice_number}",
            reference=invoice.invoice_number,
        )
    ]
    for ln in invoice.lines:
        lines.append(
            LineInput(
                account_id=ln.revenue_account_id,
                credit=ln.line_amount,
                description=ln.description,
                reference=invoice.invoice_number,
            )
        )

    tax_by_code: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
    for ln in invoice.lines:
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
                credit=amount,
                description=f"Output tax {tax_code.code}",
                reference=invoice.invoice_number,
            )
        )
    # Zero-value lines (free items) are not journalled.
    return [ln for ln in lines if ln.debit > ZERO or ln.credit > ZERO]


def post_invoice(
    db: Session,
    actor: Actor,
    *,
    company: Company,
    invoice_id: UUID,
    notifier: NotificationService | None = None,
) -> Invoice:
    enforce_sod(actor, "invoice:post")
    invoice = get_invoice(db, company.id, invoice_id)
    if invoice.status != InvoiceStatus.DRAFT:
        raise ConflictError(
            f"Only draft invoices can be posted (status is {invoice.status.value})",
            code="INVALID_STATUS",
        )
    if invoice.total_amount <= ZERO:
        raise ValidationFailed("Invoice total must be greater than zero", code="ZERO_AMOUNTS")
    if invoice.currency != company.base_currency and not invoice.exchange_rate:
        raise PostingError(
            f"Exchange rate required for {invoice.currency} invoices",
            code="INVALID_CURRENCY",
        )

    customer = db.get(Customer, invoice.customer_id)
    if customer is not None and customer.credit_limit is not None:
        # Both sides in base currency; the limit is set in base currency.
        fx = Decimal(str(invoice.exchange_rate or 1))
        exposure = customer_outstanding(db, customer.id) + invoice.total_amount * fx
        if exposure > customer.credit_limit:
            logger.warning(
                "Credit limit exceeded for %s: exposure %s > limit %s",
                customer.customer_number, exposure, customer.credit_limit,
            )
            raise ValidationFailed(
                f"Credit limit of {customer.credit_limit} exceeded "
                f"(outstanding would be {exposure})",
                code="CREDIT_LIMIT_EXCEEDED",
            )

    journal = post_journal_entry(
        db,
        actor,
        company=company,
        journal_date=invoice.invoice_date,
        description=f"Invoice {invoice.invoice_number}",
        lines=_build_journal_lines(db, company, invoice),
        reference=invoice.invoice_number,
        currency=invoice.currency,
        exchange_rate=invoice.exchange_rate,
        source_type="invoice",
        source_id=invoice.id,
    )
    invoice.journal_id = journal.id
    invoice.status = InvoiceStatus.SENT
    invoice.balance_amount = invoice.total_amount - invoice.paid_amount
    db.flush()

    log_action(
        db,
        actor=actor,
        action="INVOICE_POSTED",
        entity_type="invoice",
        entity_id=invoice.id,
        company_id=company.id,
        old_values={"status": InvoiceStatus.DRAFT.value},
        changes={"status": invoice.status.value, "journal_id": journal.id},
    )
    logger.info("Invoice %s posted as %s", invoice.invoice_number, journal.journal_number)

    if customer is not None and customer.email:
        (notifier or NotificationService()).send(
            NotificationType.INVOICE_ISSUED,
            customer.email,
            invoice_number=invoice.invoice_number,
            company_name=company.name,
            currency=invoice.currency,
            amount=str(invoice.total_amount),
            due_date=invoice.due_date.isoformat(),
        )
    return invoice


def void_invoice(
    db: Session,
    actor: Actor,
    *,
    company: Company,
    invoice_id: UUID,
    reason: str | None = None,
) -> Invoice:
    enforce_sod(actor, "invoice:void")
    invoice = get_invoice(db, company.id, invoice_id)
    if invoice.status not in OPEN_INVOICE_STATUSES:
        raise ConflictError(
            f"Only posted, unpaid invoices can be voided (status is {invoice.status.value})",
            code="INVALID_STATUS",
        )
    if invoice.paid_amount > ZERO:
        raise ConflictError(
            "Invoice has payments applied. Void the payments first.",
            code="INVOICE_HAS_PAYMENTS",
        )
    old_status = invoice.status.value
    if invoice.journal_id is not None:
        journal = db.get(Journal, invoice.journal_id)
        build_reversal(
            db,
            actor,
            company=company,
            journal=journal,
            reversal_date=utc_today(),
            description=f"Void invoice {invoice.invoice_number}",
        )
    invoice.status = InvoiceStatus.CANCELLED
    invoice.balance_amount = ZERO
    db.flush()

    log_action(
        db,
        actor=actor,
        action="INVOICE_VOIDED",
        entity_type="invoice",
        entity_id=invoice.id,
        company_id=company.id,
        old_values={"status": old_status},
        changes={"status": invoice.status.value, "reason": reason},
    )
    return invoice


def delete_invoice(db: Session, actor: Actor, *, company_id: UUID, invoice_id: UUID) -> None:
    invoice = get_invoice(db, company_id, invoice_id)
    if invoice.status != InvoiceStatus.DRAFT:
        raise ConflictError("Only draft invoices can be deleted", code="INVALID_STATUS")
    log_action(
        db,
        actor=actor,
        action="INVOICE_DELETED",
        entity_type="invoice",
        entity_id=invoice.id,
        company_id=company_id,
        old_values={"invoice_number": invoice.invoice_number, "total_amount": invoice.total_amount},
    )
    db.delete(invoice)
    db.flush()


def mark_overdue_invoices(
    db: Session, today: date | None = None, notifier: NotificationService | None = None
) -> int:
    """Flip SENT invoices past their due date to OVERDUE and remind customers."""
    today = today or utc_today()
    overdue = (
        db.query(Invoice)
        .filter(
            Invoice.status == InvoiceStatus.SENT,
            Invoice.due_date < today,
            Invoice.balance_amount > ZERO,
        )
        .all()
    )
    notifier = notifier or NotificationService()
    for invoice in overdue:
        invoice.status = InvoiceStatus.OVERDUE
        customer = db.get(Customer, invoice.customer_id)
        if customer is not None and customer.email:
            notifier.send(
                NotificationType.INVOICE_OVERDUE,
                customer.email,
                invoice_number=invoice.invoice_number,
                currency=invoice.currency,
                amount=str(invoice.balance_amount),
                due_date=invoice.due_date.isoformat(),
            )
    db.flush()
    if overdue:
        logger.info("Marked %d invoices overdue", len(overdue))
    return len(overdue)
