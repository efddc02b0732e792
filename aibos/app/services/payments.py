"""Supplier payments and customer receipts.

A BILL payment settles supplier bills:
    DEBIT  Accounts Payable (per allocation)
    CREDIT Bank                               total
An INVOICE receipt settles customer invoices:
    DEBIT  Bank                               total
    CREDIT Accounts Receivable (per allocation)

Does NOT call db.commit(). The caller is responsible.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from aibos.app.core.config import settings
from aibos.app.core.database import next_sequence
from aibos.app.core.errors import ConflictError, NotFoundError, ValidationFailed
from aibos.app.core.timeutils import today as utc_today
from aibos.app.models.account import AccountCategory
from aibos.app.models.banking import BankAccount
from aibos.app.models.bill import OPEN_BILL_STATUSES, Bill, BillStatus
from aibos.app.models.invoice import OPEN_INVOICE_STATUSES, Invoice, InvoiceStatus
from aibos.app.models.journal import Journal
from aibos.app.models.payment import (
    Payment,
    PaymentAllocation,
    PaymentMethod,
    PaymentStatus,
    PaymentType,
)
from aibos.app.models.tenant import Company
from aibos.app.services.access import authorize, enforce_sod
from aibos.app.services.accounts import find_by_category
from aibos.app.services.audit import Actor, log_action
from aibos.app.services.parties import get_customer, get_supplier
from aibos.app.services.posting import LineInput, build_reversal, post_journal_entry

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


@dataclass
class AllocationInput:
    document_id: UUID
    amount: Decimal


@dataclass
class PaymentRequest:
    payment_type: PaymentType
    payment_date: date
    payment_method: PaymentMethod | str
    bank_account_id: UUID
    amount: Decimal
    allocations: list[AllocationInput]
    currency: str = "MYR"
    exchange_rate: Decimal = Decimal("1")
    supplier_id: UUID | None = None
    customer_id: UUID | None = None
    reference: str | None = None
    description: str | None = None


@dataclass
class ValidationResult:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass
class PaymentResult:
    payment: Payment
    warnings: list[str] = field(default_factory=list)


# ─── Validation ──────────────────────────────────────────────────────────────


def validate_payment(
    request: PaymentRequest,
    *,
    control_account_id: UUID | None,
    today: date | None = None,
) -> ValidationResult:
    """Field-level rules. Collects every failure instead of stopping at the first."""
    result = ValidationResult()
    today = today or utc_today()

    if request.payment_date > today:
        result.errors.append("Payment date cannot be in the future")
    if not request.currency or not _CURRENCY_RE.match(request.currency):
        result.errors.append("Currency must be a 3-letter ISO code")
    if request.exchange_rate is None or Decimal(request.exchange_rate) <= ZERO:
        result.errors.append("Exchange rate must be greater than zero")
    if request.amount is None or Decimal(request.amount) <= ZERO:
        result.errors.append("Payment amount must be greater than zero")
    if request.payment_method not in {m.value for m in PaymentMethod}:
        result.errors.append(f"Invalid payment method: {request.payment_method}")

    if not request.allocations:
        result.errors.append("At least one allocation is required")
    else:
        if any(Decimal(a.amount) <= ZERO for a in request.allocations):
            result.errors.append("Allocation amounts must be greater than zero")
        allocated = sum((Decimal(a.amount) for a in request.allocations), ZERO)
        difference = abs(allocated - Decimal(request.amount or 0))
        if difference > settings.BALANCE_TOLERANCE:
            result.errors.append(
                f"Allocations ({allocated}) must equal the payment amount ({request.amount})"
            )

    if request.payment_type == PaymentType.BILL:
        if request.supplier_id is None:
            result.errors.append("Supplier is required for bill payments")
        if control_account_id is None:
            result.errors.append("Accounts payable account not found")
    else:
        if request.customer_id is None:
            result.errors.append("Customer is required for invoice receipts")
        if control_account_id is None:
            result.errors.append("Accounts receivable account not found")
    return result


def validate_allocations(
    db: Session, company_id: UUID, request: PaymentRequest
) -> tuple[ValidationResult, list[tuple[Bill | Invoice, Decimal]]]:
    """Check each allocation against its document's outstanding balance.

    Over-allocations produce a warning and are capped at the balance.
    Returns the result and the (document, amount to apply) pairs.
    """
    result = ValidationResult()
    applied: list[tuple[Bill | Invoice, Decimal]] = []
    is_bill = request.payment_type == PaymentType.BILL
    model = Bill if is_bill else Invoice
    open_statuses = OPEN_BILL_STATUSES if is_bill else OPEN_INVOICE_STATUSES
    party_id = request.supplier_id if is_bill else request.customer_id
    # Several allocations may target the same document.
    remaining: dict[UUID, Decimal] = {}

    for alloc in request.allocations:
        doc = (
            db.query(model)
            .filter(model.id == alloc.document_id, model.company_id == company_id)
            .first()
        )
        party_matches = doc is not None and (
            (doc.supplier_id if is_bill else doc.customer_id) == party_id
        )
        if doc is None or not party_matches:
            result.errors.append(f"{model.__name__} {alloc.document_id} not found for this party")
            continue
        number = doc.bill_number if is_bill else doc.invoice_number
        if doc.status not in open_statuses or doc.balance_amount <= ZERO:
            result.errors.append(f"{model.__name__} {number} has no outstanding balance")
            continue
        if doc.currency != request.currency:
            result.errors.append(
                f"{model.__name__} {number} is in {doc.currency}, payment is in {request.currency}"
            )
            continue
        outstanding = remaining.setdefault(doc.id, doc.balance_amount)
        amount = Decimal(alloc.amount)
        if outstanding <= ZERO:
            result.warnings.append(
                f"Allocation {amount} to {number} skipped; already fully allocated"
            )
            continue
        if amount > outstanding:
            result.warnings.append(
                f"Allocation {amount} exceeds outstanding {outstanding} on {number}; "
                "capped at the outstanding balance"
            )
            amount = outstanding
        remaining[doc.id] = outstanding - amount
        applied.append((doc, amount))
    return result, applied


# ─── Processing ──────────────────────────────────────────────────────────────


def next_payment_number(
    db: Session, company: Company, payment_type: PaymentType, year: int
) -> str:
    kind = "PAY" if payment_type == PaymentType.BILL else "REC"
    return next_sequence(
        db,
        Payment.payment_number,
        f"{kind}-{company.code}-{year}-",
        Payment.company_id == company.id,
    )


def _get_bank_account(db: Session, company_id: UUID, bank_account_id: UUID) -> BankAccount:
    bank = (
        db.query(BankAccount)
        .filter(
            BankAccount.id == bank_account_id,
            BankAccount.company_id == company_id,
            BankAccount.is_active.is_(True),
        )
        .first()
    )
    if bank is None:
        raise ValidationFailed("Bank account not found", code="BANK_ACCOUNT_NOT_FOUND")
    return bank


def _settle(doc: Bill | Invoice, amount: Decimal) -> None:
    doc.paid_amount = doc.paid_amount + amount
    doc.balance_amount = doc.total_amount - doc.paid_amount
    if doc.balance_amount <= ZERO:
        doc.balance_amount = ZERO
        doc.status = BillStatus.PAID if isinstance(doc, Bill) else InvoiceStatus.PAID


def _unsettle(doc: Bill | Invoice, amount: Decimal, today: date) -> None:
    doc.paid_amount = max(doc.paid_amount - amount, ZERO)
    doc.balance_amount = doc.total_amount - doc.paid_amount
    if isinstance(doc, Bill):
        if doc.status == BillStatus.PAID:
            doc.status = BillStatus.OVERDUE if doc.due_date < today else BillStatus.POSTED
    elif doc.status == InvoiceStatus.PAID:
        doc.status = InvoiceStatus.OVERDUE if doc.due_date < today else InvoiceStatus.SENT


def process_payment(
    db: Session, actor: Actor, *, company: Company, request: PaymentRequest
) -> PaymentResult:
    enforce_sod(actor, "payment:create")
    fx = Decimal(request.exchange_rate or 1)
    authorize(
        actor,
        "payment",
        "create",
        {"amount": Decimal(request.amount or 0) * fx, "membership_active": True},
    )

    is_bill = request.payment_type == PaymentType.BILL
    control = find_by_category(
        db, company.id, AccountCategory.PAYABLE if is_bill else AccountCategory.RECEIVABLE
    )
    validation = validate_payment(request, control_account_id=control.id if control else None)
    if not validation.is_valid:
        logger.warning("Payment rejected: %s", "; ".join(validation.errors))
        raise ValidationFailed(
            validation.errors[0], code="PAYMENT_VALIDATION_FAILED", errors=validation.errors
        )

    bank = _get_bank_account(db, company.id, request.bank_account_id)
    if is_bill:
        party = get_supplier(db, company.id, request.supplier_id)
    else:
        party = get_customer(db, company.id, request.customer_id)

    alloc_result, applied = validate_allocations(db, company.id, request)
    if not alloc_result.is_valid:
        logger.warning("Payment allocations rejected: %s", "; ".join(alloc_result.errors))
        raise ValidationFailed(
            alloc_result.errors[0],
            code="ALLOCATION_VALIDATION_FAILED",
            errors=alloc_result.errors,
        )
    total = sum((amount for _, amount in applied), ZERO)

    number = next_payment_number(db, company, request.payment_type, request.payment_date.year)
    verb = "Payment to" if is_bill else "Receipt from"
    lines: list[LineInput] = []
    for doc, amount in applied:
        doc_number = doc.bill_number if is_bill else doc.invoice_number
        lines.append(
            LineInput(
                account_id=control.id,
                debit=amount if is_bill else ZERO,
                credit=ZERO if is_bill else amount,
                description=f"{'Payment' if is_bill else 'Receipt'} for {doc_number}",
                reference=doc_number,
            )
        )
    bank_line = LineInput(
        account_id=bank.gl_account_id,
        debit=ZERO if is_bill else total,
        credit=total if is_bill else ZERO,
        description=f"{party.name} via {bank.name}",
        reference=request.reference,
    )
    lines = lines + [bank_line] if is_bill else [bank_line] + lines

    journal = post_journal_entry(
        db,
        actor,
        company=company,
        journal_date=request.payment_date,
        description=request.description or f"{verb} {party.name}",
        lines=lines,
        reference=number,
        currency=request.currency,
        exchange_rate=fx,
        source_type="payment",
    )

    payment = Payment(
        tenant_id=company.tenant_id,
        company_id=company.id,
        payment_number=number,
        payment_type=request.payment_type,
        payment_date=request.payment_date,
        payment_method=PaymentMethod(request.payment_method),
        bank_account_id=bank.id,
        currency=request.currency,
        exchange_rate=fx,
        amount=total,
        reference=request.reference,
        description=request.description,
        supplier_id=request.supplier_id if is_bill else None,
        customer_id=None if is_bill else request.customer_id,
        status=PaymentStatus.POSTED,
        journal_id=journal.id,
        created_by=actor.user_id,
    )
    for doc, amount in applied:
        payment.allocations.append(
            PaymentAllocation(
                bill_id=doc.id if is_bill else None,
                invoice_id=None if is_bill else doc.id,
                allocated_amount=amount,
            )
        )
        _settle(doc, amount)
    db.add(payment)
    db.flush()
    journal.source_id = payment.id

    log_action(
        db,
        actor=actor,
        action="PAYMENT_PROCESSED",
        entity_type="payment",
        entity_id=payment.id,
        company_id=company.id,
        changes={
            "payment_number": number,
            "payment_type": request.payment_type.value,
            "amount": total,
            "currency": request.currency,
            "journal_id": journal.id,
            "allocations": [
                {"document_id": doc.id, "amount": amount} for doc, amount in applied
            ],
            "warnings": alloc_result.warnings,
        },
    )
    logger.info(
        "Processed %s %s for %s %s", request.payment_type.value, number, request.currency, total
    )
    return PaymentResult(payment=payment, warnings=alloc_result.warnings)


# ─── Queries ─────────────────────────────────────────────────────────────────


def list_payments(
    db: Session,
    company_id: UUID,
    *,
    payment_type: PaymentType | None = None,
    status: PaymentStatus | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Payment], int]:
    q = db.query(Payment).filter(Payment.company_id == company_id)
    if payment_type is not None:
        q = q.filter(Payment.payment_type == payment_type)
    if status is not None:
        q = q.filter(Payment.status == status)
    if date_from is not None:
        q = q.filter(Payment.payment_date >= date_from)
    if date_to is not None:
        q = q.filter(Payment.payment_date <= date_to)
    total = q.count()
    rows = (
        q.options(selectinload(Payment.allocations))
        .order_by(Payment.payment_date.desc(), Payment.payment_number.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def get_payment(db: Session, company_id: UUID, payment_id: UUID) -> Payment:
    payment = (
        db.query(Payment)
        .options(selectinload(Payment.allocations))
        .filter(Payment.id == payment_id, Payment.company_id == company_id)
        .first()
    )
    if payment is None:
        raise NotFoundError("Payment not found", code="PAYMENT_NOT_FOUND")
    return payment


def payment_summary(
    db: Session,
    company_id: UUID,
    *,
    date_from: date | None = None,
    date_to: date | None = None,
) -> dict[str, Any]:
    """Counts and totals of posted payments by type and by method."""
    base = db.query(Payment).filter(
        Payment.company_id == company_id, Payment.status == PaymentStatus.POSTED
    )
    if date_from is not None:
        base = base.filter(Payment.payment_date >= date_from)
    if date_to is not None:
        base = base.filter(Payment.payment_date <= date_to)
    sub = base.subquery()

    def _grouped(column) -> dict[str, dict[str, Any]]:
        rows = (
            db.query(
                column,
                func.count(),
                func.coalesce(func.sum(sub.c.amount * sub.c.exchange_rate), 0),
            )
            .group_by(column)
            .all()
        )
        return {
            (key.value if hasattr(key, "value") else str(key)): {
                "count": count,
                "total": Decimal(str(total)).quantize(Decimal("0.01")),
            }
            for key, count, total in rows
        }

    by_type = _grouped(sub.c.payment_type)
    by_method = _grouped(sub.c.payment_method)
    return {
        "total_count": sum(v["count"] for v in by_type.values()),
        "total_paid": by_type.get(PaymentType.BILL.value, {}).get("total", ZERO),
        "total_received": by_type.get(PaymentType.INVOICE.value, {}).get("total", ZERO),
        "by_type": by_type,
        "by_method": by_method,
    }


def void_payment(
    db: Session,
    actor: Actor,
    *,
    company: Company,
    payment_id: UUID,
    reason: str | None = None,
) -> Payment:
    enforce_sod(actor, "payment:void")
    payment = get_payment(db, company.id, payment_id)
    if payment.status != PaymentStatus.POSTED:
        raise ConflictError("Payment is already voided", code="INVALID_STATUS")
    if payment.is_reconciled:
        raise ConflictError(
            "Reconciled payments cannot be voided. Unmatch the bank transaction first.",
            code="PAYMENT_RECONCILED",
        )

    if payment.journal_id is not None:
        build_reversal(
            db,
            actor,
            company=company,
            journal=db.get(Journal, payment.journal_id),
            reversal_date=utc_today(),
            description=f"Void payment {payment.payment_number}",
        )
    today = utc_today()
    for alloc in payment.allocations:
        doc = db.get(Bill, alloc.bill_id) if alloc.bill_id else db.get(Invoice, alloc.invoice_id)
        if doc is not None:
            _unsettle(doc, alloc.allocated_amount, today)
    payment.status = PaymentStatus.VOIDED
    db.flush()

    log_action(
        db,
        actor=actor,
        action="PAYMENT_VOIDED",
        entity_type="payment",
        entity_id=payment.id,
        company_id=company.id,
        old_values={"status": PaymentStatus.POSTED.value},
        changes={"status": payment.status.value, "reason": reason},
    )
    logger.info("Voided payment %s", payment.payment_number)
    return payment
