"""Bank accounts, statement import and payment matching.

Does NOT call db.commit(). The caller is responsible.
"""

from __future__ import annotations

import csv
import io
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from uuid import UUID

from sqlalchemy.orm import Session

from aibos.app.core.errors import ConflictError, NotFoundError, ValidationFailed
from aibos.app.core.timeutils import today as _today
from aibos.app.core.timeutils import utcnow
from aibos.app.models.account import Account, AccountCategory
from aibos.app.models.banking import BankAccount, BankTransaction
from aibos.app.models.payment import Payment, PaymentStatus, PaymentType
from aibos.app.models.tenant import Company
from aibos.app.services.audit import Actor, log_action

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
AMOUNT_TOLERANCE = Decimal("0.01")

# Matching weights; confidence is score / sum(weights) * 100.
AMOUNT_WEIGHT = 40
DATE_WEIGHT = 20
REFERENCE_WEIGHT = 25
DESCRIPTION_WEIGHT = 15
MAX_SCORE = AMOUNT_WEIGHT + DATE_WEIGHT + REFERENCE_WEIGHT + DESCRIPTION_WEIGHT

DATE_TOLERANCE_DAYS = 7
SIMILARITY_THRESHOLD = 0.6
AUTO_MATCH_CONFIDENCE = 90
SUGGEST_CONFIDENCE = 70


# ─── Bank accounts ───────────────────────────────────────────────────────────


def list_bank_accounts(
    db: Session, company_id: UUID, *, active_only: bool = False
) -> list[BankAccount]:
    q = db.query(BankAccount).filter(BankAccount.company_id == company_id)
    if active_only:
        q = q.filter(BankAccount.is_active.is_(True))
    return q.order_by(BankAccount.name).all()


def get_bank_account(db: Session, company_id: UUID, bank_account_id: UUID) -> BankAccount:
    account = (
        db.query(BankAccount)
        .filter(BankAccount.id == bank_account_id, BankAccount.company_id == company_id)
        .first()
    )
    if account is None:
        raise NotFoundError("Bank account not found", code="BANK_ACCOUNT_NOT_FOUND")
    return account


def create_bank_account(
    db: Session,
    actor: Actor,
    *,
    company: Company,
    name: str,
    account_number: str,
    gl_account_id: UUID,
    bank_name: str | None = None,
    currency: str | None = None,
) -> BankAccount:
    gl_account = (
        db.query(Account)
        .filter(Account.id == gl_account_id, Account.company_id == company.id)
        .first()
    )
    if gl_account is None or not gl_account.is_active:
        raise ValidationFailed("GL account not found", code="ACCOUNT_NOT_FOUND")
    if gl_account.category not in (AccountCategory.CASH, AccountCategory.BANK):
        raise ValidationFailed(
            "Bank accounts must be linked to a cash or bank GL account",
            code="INVALID_GL_ACCOUNT",
        )
    exists = (
        db.query(BankAccount.id)
        .filter(
            BankAccount.company_id == company.id,
            BankAccount.account_number == account_number,
        )
        .first()
    )
    if exists:
        raise ConflictError(
            f"Bank account {account_number} already exists", code="BANK_ACCOUNT_TAKEN"
        )

    bank_account = BankAccount(
        tenant_id=company.tenant_id,
        company_id=company.id,
        name=name,
        bank_name=bank_name,
        account_number=account_number,
        currency=currency or company.base_currency,
        gl_account_id=gl_account_id,
    )
    db.add(bank_account)
    db.flush()
    log_action(
        db,
        actor=actor,
        action="BANK_ACCOUNT_CREATED",
        entity_type="bank_account",
        entity_id=bank_account.id,
        company_id=company.id,
        changes={"name": name, "account_number": account_number},
    )
    return bank_account


# ─── Statement import ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class StatementFormat:
    name: str
    date_column: str
    description_column: str
    date_formats: tuple[str, ...]
    reference_column: str | None = None
    debit_column: str | None = None
    credit_column: str | None = None
    amount_column: str | None = None
    type_column: str | None = None
    balance_column: str | None = None


STATEMENT_FORMATS: dict[str, StatementFormat] = {
    "standard": StatementFormat(
        name="standard",
        date_column="date",
        description_column="description",
        reference_column="reference",
        debit_column="debit",
        credit_column="credit",
        balance_column="balance",
        date_formats=("%Y-%m-%d", "%d/%m/%Y"),
    ),
    "maybank": StatementFormat(
        name="maybank",
        date_column="Date",
        description_column="Description",
        reference_column="Reference",
        debit_column="Debit",
        credit_column="Credit",
        balance_column="Balance",
        date_formats=("%d/%m/%Y",),
    ),
    "cimb": StatementFormat(
        name="cimb",
        date_column="Transaction Date",
        description_column="Description",
        reference_column="Reference No",
        amount_column="Amount",
        type_column="Dr/Cr",
        balance_column="Balance",
        date_formats=("%d-%m-%Y", "%d/%m/%Y"),
    ),
    "public_bank": StatementFormat(
        name="public_bank",
        date_column="Date",
        description_column="Transaction Details",
        debit_column="Withdrawal",
        credit_column="Deposit",
        balance_column="Balance",
        date_formats=("%d/%m/%Y",),
    ),
}


@dataclass
class ParsedRow:
    transaction_date: date
    description: str
    reference: str | None
    debit_amount: Decimal
    credit_amount: Decimal
    balance: Decimal | None


@dataclass
class ImportResult:
    imported: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    batch_id: str = ""
    format: str = ""


def detect_format(headers: list[str]) -> str:
    """Pick the statement format whose required columns all appear in *headers*."""
    present = {h.strip() for h in headers}
    # Most specific formats first; "standard" is lowercase and never collides.
    for key in ("cimb", "public_bank", "maybank", "standard"):
        fmt = STATEMENT_FORMATS[key]
        required = {fmt.date_column, fmt.description_column}
        required.update(c for c in (fmt.debit_column, fmt.credit_column, fmt.amount_column) if c)
        if required <= present:
            return key
    raise ValidationFailed(
        "Unrecognised statement format; pass format explicitly",
        code="UNKNOWN_STATEMENT_FORMAT",
    )


def parse_amount(raw: str | None) -> Decimal | None:
    """Parse a bank amount such as ``"1,234.50"`` or ``"(20.00)"``.

    Returns None for a blank cell, raises ``InvalidOperation`` for garbage.
    """
    if raw is None:
        return None
    text = raw.strip()
    if not text:
        return None
    negative = text.startswith("(") and text.endswith(")")
    cleaned = re.sub(r"[^\d.\-]", "", text)
    if not cleaned or cleaned in ("-", "."):
        raise InvalidOperation(raw)
    value = Decimal(cleaned)
    return -value if negative else value


def parse_date(raw: str, formats: tuple[str, ...]) -> date | None:
    for fmt in formats:
        try:
            return datetime.strptime(raw.strip(), fmt).date()
        except ValueError:
            continue
    return None


def _parse_row(row: dict[str, str], fmt: StatementFormat, row_number: int) -> ParsedRow:
    """Turn one CSV row into a ParsedRow, raising ValueError with a row message."""
    raw_date = (row.get(fmt.date_column) or "").strip()
    if not raw_date:
        raise ValueError(f"Row {row_number}: Missing date in column '{fmt.date_column}'")
    transaction_date = parse_date(raw_date, fmt.date_formats)
    if transaction_date is None:
        raise ValueError(f"Row {row_number}: Invalid date '{raw_date}'")

    description = (row.get(fmt.description_column) or "").strip()
    if not description:
        raise ValueError(f"Row {row_number}: Missing description")

    reference = None
    if fmt.reference_column:
        reference = (row.get(fmt.reference_column) or "").strip() or None

    try:
        if fmt.debit_column and fmt.credit_column:
            debit = parse_amount(row.get(fmt.debit_column)) or ZERO
            credit = parse_amount(row.get(fmt.credit_column)) or ZERO
            if debit < ZERO or credit < ZERO:
                raise ValueError(f"Row {row_number}: Amounts cannot be negative")
        else:
            amount = parse_amount(row.get(fmt.amount_column or "")) or ZERO
            kind = (row.get(fmt.type_column or "") or "").strip().upper()
            if kind.startswith("DR") or "DEBIT" in kind or "WITHDRAWAL" in kind:
                debit, credit = abs(amount), ZERO
            elif kind.startswith("CR") or "CREDIT" in kind or "DEPOSIT" in kind:
                debit, credit = ZERO, abs(amount)
            elif amount < ZERO:
                debit, credit = -amount, ZERO
            else:
                debit, credit = ZERO, amount
        balance = parse_amount(row.get(fmt.balance_column)) if fmt.balance_column else None
    except InvalidOperation:
        raise ValueError(f"Row {row_number}: Invalid amount") from None

    if debit == ZERO and credit == ZERO:
        raise ValueError(f"Row {row_number}: Transaction has no amount")
    if debit > ZERO and credit > ZERO:
        raise ValueError(f"Row {row_number}: Row has both a debit and a credit")

    return ParsedRow(
        transaction_date=transaction_date,
        description=description[:500],
        reference=reference,
        debit_amount=debit,
        credit_amount=credit,
        balance=balance,
    )


def import_statement(
    db: Session,
    actor: Actor,
    *,
    company_id: UUID,
    bank_account_id: UUID,
    content: bytes | str,
    statement_format: str | None = None,
    today: date | None = None,
) -> ImportResult:
    """Import a CSV bank statement into ``bank_transactions``.

    Rows with errors are reported and skipped, the rest are imported. Rows
    repeated within the file, or already imported for the same account, are
    skipped as duplicates.
    """
    bank_account = get_bank_account(db, company_id, bank_account_id)
    today = today or _today()

    if isinstance(content, bytes):
        text = content.decode("utf-8-sig", errors="replace")
    else:
        text = content
    if not text.strip():
        raise ValidationFailed("CSV file is empty", code="EMPTY_FILE")

    reader = csv.DictReader(io.StringIO(text))
    headers = [h.strip() for h in (reader.fieldnames or [])]
    reader.fieldnames = headers
    if statement_format:
        if statement_format not in STATEMENT_FORMATS:
            raise ValidationFailed(
                f"Unknown statement format '{statement_format}'",
                code="UNKNOWN_STATEMENT_FORMAT",
            )
        key = statement_format
    else:
        key = detect_format(headers)
    fmt = STATEMENT_FORMATS[key]

    batch_id = f"IMP-{utcnow():%Y%m%d%H%M%S}-{uuid.uuid4().hex[:8]}"
    result = ImportResult(batch_id=batch_id, format=key)
    two_years_ago = today - timedelta(days=730)
    seen: set[tuple] = set()

    for index, row in enumerate(reader, start=2):
        try:
            parsed = _parse_row(row, fmt, index)
        except ValueError as exc:
            result.errors.append(str(exc))
            continue

        if parsed.transaction_date > today:
            result.warnings.append(f"Row {index}: Transaction date is in the future")
        elif parsed.transaction_date < two_years_ago:
            result.warnings.append(f"Row {index}: Transaction is more than two years old")

        fingerprint = (
            parsed.transaction_date,
            parsed.description,
            parsed.reference,
            parsed.debit_amount,
            parsed.credit_amount,
        )
        if fingerprint in seen or _already_imported(db, bank_account.id, parsed):
            result.skipped += 1
            result.warnings.append(f"Row {index}: Duplicate transaction skipped")
            continue
        seen.add(fingerprint)

        db.add(
            BankTransaction(
                tenant_id=bank_account.tenant_id,
                company_id=bank_account.company_id,
                bank_account_id=bank_account.id,
                transaction_date=parsed.transaction_date,
                description=parsed.description,
                reference=parsed.reference,
                debit_amount=parsed.debit_amount,
                credit_amount=parsed.credit_amount,
                balance=parsed.balance,
                import_batch_id=result.batch_id,
            )
        )
        result.imported += 1

    db.flush()
    log_action(
        db,
        actor=actor,
        action="BANK_STATEMENT_IMPORTED",
        entity_type="bank_account",
        entity_id=bank_account.id,
        company_id=company_id,
        changes={
            "batch_id": result.batch_id,
            "format": key,
            "imported": result.imported,
            "skipped": result.skipped,
            "errors": len(result.errors),
        },
    )
    logger.info(
        "Imported %d bank transactions (%d skipped, %d errors) into %s",
        result.imported, result.skipped, len(result.errors), bank_account.id,
    )
    return result


def _already_imported(db: Session, bank_account_id: UUID, parsed: ParsedRow) -> bool:
    q = db.query(BankTransaction.id).filter(
        BankTransaction.bank_account_id == bank_account_id,
        BankTransaction.transaction_date == parsed.transaction_date,
        BankTransaction.description == parsed.description,
        BankTransaction.debit_amount == parsed.debit_amount,
        BankTransaction.credit_amount == parsed.credit_amount,
    )
    if parsed.reference is None:
        q = q.filter(BankTransaction.reference.is_(None))
    else:
        q = q.filter(BankTransaction.reference == parsed.reference)
    return q.first() is not None


def list_transactions(
    db: Session,
    company_id: UUID,
    bank_account_id: UUID,
    *,
    is_matched: bool | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[BankTransaction], int]:
    get_bank_account(db, company_id, bank_account_id)
    q = db.query(BankTransaction).filter(
        BankTransaction.company_id == company_id,
        BankTransaction.bank_account_id == bank_account_id,
    )
    if is_matched is not None:
        q = q.filter(BankTransaction.is_matched.is_(is_matched))
    if date_from:
        q = q.filter(BankTransaction.transaction_date >= date_from)
    if date_to:
        q = q.filter(BankTransaction.transaction_date <= date_to)
    total = q.count()
    rows = (
        q.order_by(BankTransaction.transaction_date.desc(), BankTransaction.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def get_transaction(db: Session, company_id: UUID, transaction_id: UUID) -> BankTransaction:
    txn = (
        db.query(BankTransaction)
        .filter(BankTransaction.id == transaction_id, BankTransaction.company_id == company_id)
        .first()
    )
    if txn is None:
        raise NotFoundError("Bank transaction not found", code="BANK_TRANSACTION_NOT_FOUND")
    return txn


# ─── Matching ────────────────────────────────────────────────────────────────


def similarity(a: str, b: str) -> float:
    """Levenshtein similarity in [0, 1]: 1 - distance / longer length."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (ca != cb),
                )
            )
        previous = current
    return 1.0 - previous[-1] / max(len(a), len(b))


def _direction(txn: BankTransaction) -> PaymentType:
    # Money leaving the bank pays a bill; money arriving settles an invoice.
    return PaymentType.BILL if txn.debit_amount > ZERO else PaymentType.INVOICE


def _txn_amount(txn: BankTransaction) -> Decimal:
    return txn.debit_amount if txn.debit_amount > ZERO else txn.credit_amount


@dataclass
class MatchScore:
    payment_id: UUID
    confidence: float
    reasons: list[str]
    amount_difference: Decimal
    date_difference: int


def score_match(txn: BankTransaction, payment: Payment) -> MatchScore:
    reasons: list[str] = []
    score = 0.0

    amount = _txn_amount(txn)
    candidate = Decimal(str(payment.amount))
    amount_diff = abs(amount - candidate)
    if amount_diff <= AMOUNT_TOLERANCE:
        score += AMOUNT_WEIGHT
        reasons.append("Exact amount match")
    elif amount_diff <= candidate * Decimal("0.01"):
        score += AMOUNT_WEIGHT * 0.8
        reasons.append("Close amount match (within 1%)")
    elif amount_diff <= candidate * Decimal("0.05"):
        score += AMOUNT_WEIGHT * 0.5
        reasons.append("Approximate amount match (within 5%)")

    days = abs((txn.transaction_date - payment.payment_date).days)
    if days <= 1:
        score += DATE_WEIGHT
        reasons.append("Same or next day")
    elif days <= DATE_TOLERANCE_DAYS:
        score += DATE_WEIGHT * (1 - days / DATE_TOLERANCE_DAYS)
        reasons.append(f"Within {days} days")

    txn_ref = (txn.reference or "").lower()
    pay_ref = (payment.reference or "").lower()
    number = payment.payment_number.lower()
    if txn_ref and pay_ref:
        if txn_ref == pay_ref:
            score += REFERENCE_WEIGHT
            reasons.append("Exact reference match")
        elif txn_ref in pay_ref or pay_ref in txn_ref:
            score += REFERENCE_WEIGHT * 0.7
            reasons.append("Partial reference match")
    elif txn_ref and (number in txn_ref or txn_ref in number):
        score += REFERENCE_WEIGHT * 0.8
        reasons.append("Reference matches document number")

    ratio = similarity(txn.description.lower(), (payment.description or "").lower())
    if ratio >= SIMILARITY_THRESHOLD:
        score += DESCRIPTION_WEIGHT * ratio
        reasons.append(f"Description similarity: {round(ratio * 100)}%")

    return MatchScore(
        payment_id=payment.id,
        confidence=round(score / MAX_SCORE * 100, 2),
        reasons=reasons,
        amount_difference=amount_diff,
        date_difference=days,
    )


def _unreconciled_payments(db: Session, bank_account: BankAccount) -> list[Payment]:
    return (
        db.query(Payment)
        .filter(
            Payment.company_id == bank_account.company_id,
            Payment.bank_account_id == bank_account.id,
            Payment.status == PaymentStatus.POSTED,
            Payment.is_reconciled.is_(False),
        )
        .all()
    )


def _apply_match(
    txn: BankTransaction, payment: Payment, actor: Actor, confidence: float | None
) -> None:
    txn.is_matched = True
    txn.matched_payment_id = payment.id
    txn.match_confidence = Decimal(str(confidence)) if confidence is not None else None
    txn.matched_by = actor.user_id
    txn.matched_at = utcnow()
    payment.is_reconciled = True


def auto_match(
    db: Session, actor: Actor, *, company_id: UUID, bank_account_id: UUID
) -> dict:
    """Score unmatched transactions against unreconciled payments.

    Each payment is matched at most once. Scores at or above
    AUTO_MATCH_CONFIDENCE are applied, those at or above SUGGEST_CONFIDENCE
    are only returned as suggestions.
    """
    bank_account = get_bank_account(db, company_id, bank_account_id)
    transactions = (
        db.query(BankTransaction)
        .filter(
            BankTransaction.bank_account_id == bank_account.id,
            BankTransaction.is_matched.is_(False),
        )
        .order_by(BankTransaction.transaction_date)
        .all()
    )
    payments = _unreconciled_payments(db, bank_account)
    used: set[UUID] = set()

    matched: list[dict] = []
    suggestions: list[dict] = []
    for txn in transactions:
        direction = _direction(txn)
        best: MatchScore | None = None
        for payment in payments:
            if payment.id in used or payment.payment_type != direction:
                continue
            candidate = score_match(txn, payment)
            if best is None or candidate.confidence > best.confidence:
                best = candidate
        if best is None or best.confidence < SUGGEST_CONFIDENCE:
            continue

        entry = {
            "transaction_id": txn.id,
            "payment_id": best.payment_id,
            "confidence": best.confidence,
            "reasons": best.reasons,
        }
        if best.confidence >= AUTO_MATCH_CONFIDENCE:
            payment = next(p for p in payments if p.id == best.payment_id)
            _apply_match(txn, payment, actor, best.confidence)
            used.add(payment.id)
            matched.append(entry)
        else:
            suggestions.append(entry)

    db.flush()
    if matched:
        log_action(
            db,
            actor=actor,
            action="BANK_AUTO_MATCHED",
            entity_type="bank_account",
            entity_id=bank_account.id,
            company_id=company_id,
            changes={"matched": len(matched), "suggested": len(suggestions)},
        )
    logger.info(
        "Auto-match on %s: %d matched, %d suggested of %d",
        bank_account.id, len(matched), len(suggestions), len(transactions),
    )
    return {
        "total_transactions": len(transactions),
        "matched_count": len(matched),
        "suggested_count": len(suggestions),
        "unmatched_count": len(transactions) - len(matched),
        "matched": matched,
        "suggestions": suggestions,
    }


def validate_match(txn: BankTransaction, payment: Payment) -> tuple[list[str], list[str]]:
    """Return (errors, warnings) for pairing *txn* with *payment*."""
    errors: list[str] = []
    warnings: list[str] = []
    if payment.payment_type != _direction(txn):
        errors.append("Transaction direction does not match the payment type")
    if payment.status != PaymentStatus.POSTED:
        errors.append("Payment is voided")
    if payment.bank_account_id != txn.bank_account_id:
        errors.append("Payment was made from a different bank account")

    amount = _txn_amount(txn)
    candidate = Decimal(str(payment.amount))
    if candidate > ZERO and abs(amount - candidate) > candidate * Decimal("0.10"):
        warnings.append("Amounts differ by more than 10%")
    if abs((txn.transaction_date - payment.payment_date).days) > 30:
        warnings.append("Dates are more than 30 days apart")
    return errors, warnings


def match_transaction(
    db: Session, actor: Actor, *, company_id: UUID, transaction_id: UUID, payment_id: UUID
) -> tuple[BankTransaction, list[str]]:
    txn = get_transaction(db, company_id, transaction_id)
    if txn.is_matched:
        raise ConflictError("Transaction is already matched", code="ALREADY_MATCHED")
    payment = (
        db.query(Payment)
        .filter(Payment.id == payment_id, Payment.company_id == company_id)
        .first()
    )
    if payment is None:
        raise NotFoundError("Payment not found", code="PAYMENT_NOT_FOUND")
    if payment.is_reconciled:
        raise ConflictError("Payment is already reconciled", code="PAYMENT_RECONCILED")

    errors, warnings = validate_match(txn, payment)
    if errors:
        raise ValidationFailed("Invalid match", code="INVALID_MATCH", errors=errors)

    _apply_match(txn, payment, actor, None)
    db.flush()
    log_action(
        db,
        actor=actor,
        action="BANK_TRANSACTION_MATCHED",
        entity_type="bank_transaction",
        entity_id=txn.id,
        company_id=company_id,
        changes={"payment_id": payment.id, "warnings": warnings},
    )
    return txn, warnings


def unmatch_transaction(
    db: Session, actor: Actor, *, company_id: UUID, transaction_id: UUID
) -> BankTransaction:
    txn = get_transaction(db, company_id, transaction_id)
    if not txn.is_matched:
        raise ConflictError("Transaction is not matched", code="NOT_MATCHED")

    old_payment_id = txn.matched_payment_id
    if old_payment_id is not None:
        payment = db.get(Payment, old_payment_id)
        if payment is not None:
            payment.is_reconciled = False
    txn.is_matched = False
    txn.matched_payment_id = None
    txn.match_confidence = None
    txn.matched_by = None
    txn.matched_at = None
    db.flush()
    log_action(
        db,
        actor=actor,
        action="BANK_TRANSACTION_UNMATCHED",
        entity_type="bank_transaction",
        entity_id=txn.id,
        company_id=company_id,
        old_values={"payment_id": old_payment_id},
    )
    return txn
