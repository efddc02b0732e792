"""GL posting rules.

New journals go through :func:`validate_journal`, whether typed in by a user
or generated from an invoice, bill or payment. Reversals mirror an already
validated journal and only re-check status, dates and the period in
:func:`build_reversal`. Lines are entered in the journal currency and stored
in the company's base currency.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from aibos.app.core.config import settings
from aibos.app.core.database import next_sequence
from aibos.app.core.errors import PostingError
from aibos.app.core.timeutils import today as utc_today
from aibos.app.core.timeutils import utcnow
from aibos.app.models.account import Account
from aibos.app.models.journal import Journal, JournalLine, JournalStatus
from aibos.app.models.tenant import Company
from aibos.app.services.audit import Actor, log_action
from aibos.app.services.periods import assert_period_open

logger = logging.getLogger(__name__)

Q = Decimal("0.0001")
ZERO = Decimal("0")
ONE = Decimal("1")
_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


def quantize(value: Decimal | int | float | str) -> Decimal:
    return Decimal(str(value)).quantize(Q, rounding=ROUND_HALF_UP)


@dataclass
class LineInput:
    account_id: UUID
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    description: str | None = None
    reference: str | None = None


@dataclass
class ValidatedJournal:
    """Lines converted to base currency, plus their totals."""

    currency: str
    exchange_rate: Decimal
    lines: list[LineInput] = field(default_factory=list)
    total_debit: Decimal = ZERO
    total_credit: Decimal = ZERO


# ─── Field-level checks ──────────────────────────────────────────────────────


def validate_lines(lines: list[LineInput]) -> None:
    if not lines:
        raise PostingError("Journal must have at least one line", code="NO_LINES")
    if len(lines) > settings.MAX_JOURNAL_LINES:
        raise PostingError(
            f"Journal cannot have more than {settings.MAX_JOURNAL_LINES} lines",
            code="TOO_MANY_LINES",
        )
    for idx, line in enumerate(lines, start=1):
        debit, credit = Decimal(line.debit or 0), Decimal(line.credit or 0)
        if debit < ZERO or credit < ZERO:
            raise PostingError(
                f"Line {idx}: amounts cannot be negative", code="INVALID_LINE_AMOUNTS"
            )
        if debit > ZERO and credit > ZERO:
            raise PostingError(
                f"Line {idx}: a line cannot have both debit and credit amounts",
                code="INVALID_LINE_AMOUNTS",
            )
        if debit == ZERO and credit == ZERO:
            raise PostingError(
                f"Line {idx}: either debit or credit must be greater than zero",
                code="ZERO_AMOUNTS",
            )


def validate_balanced(lines: list[LineInput]) -> tuple[Decimal, Decimal]:
    total_debit = sum((Decimal(ln.debit or 0) for ln in lines), ZERO)
    total_credit = sum((Decimal(ln.credit or 0) for ln in lines), ZERO)
    if abs(total_debit - total_credit) > settings.BALANCE_TOLERANCE:
        raise PostingError(
            f"Journal is not balanced: debits {total_debit} != credits {total_credit}",
            code="UNBALANCED_JOURNAL",
        )
    return total_debit, total_credit


def resolve_exchange_rate(
    currency: str, base_currency: str, exchange_rate: Decimal | None
) -> Decimal:
    if not currency or not _CURRENCY_RE.match(currency):
        raise PostingError(
            "Currency must be a 3-letter ISO code", code="INVALID_CURRENCY"
        )
    if currency == base_currency:
        return ONE
    if exchange_rate is None or Decimal(exchange_rate) <= ZERO:
        raise PostingError(
            f"Exchange rate required for {currency} (base currency {base_currency})",
            code="INVALID_CURRENCY",
        )
    return Decimal(exchange_rate)


def validate_accounts(
    db: Session, company_id: UUID, account_ids: set[UUID]
) -> dict[UUID, Account]:
    accounts = (
        db.query(Account)
        .filter(Account.company_id == company_id, Account.id.in_(account_ids))
        .all()
    )
    found = {a.id: a for a in accounts}
    missing = account_ids - set(found)
    if missing:
        raise PostingError(
            f"Account not found: {', '.join(sorted(str(m) for m in missing))}",
            code="ACCOUNT_NOT_FOUND",
        )
    inactive = [a.code for a in accounts if not a.is_active]
    if inactive:
        raise PostingError(
            f"Account is inactive: {', '.join(sorted(inactive))}",
            code="ACCOUNT_NOT_FOUND",
        )
    return found


def convert_to_base(lines: list[LineInput], rate: Decimal) -> list[LineInput]:
    converted = [
        LineInput(
            account_id=ln.account_id,
            debit=quantize(Decimal(ln.debit or 0) * rate),
            credit=quantize(Decimal(ln.credit or 0) * rate),
            description=ln.description,
            reference=ln.reference,
        )
        for ln in lines
    ]
    # The source-currency difference allowed by the tolerance, scaled by the
    # rate, plus per-line rounding. Anything beyond that is a real imbalance.
    limit = settings.BALANCE_TOLERANCE * rate + Q * len(converted)
    diff = sum(ln.debit for ln in converted) - sum(ln.credit for ln in converted)
    if abs(diff) > limit:
        raise PostingError(
            f"Journal is not balanced in base currency: difference {diff}",
            code="UNBALANCED_JOURNAL",
        )
    # The residual lands on the largest line of the short side.
    if diff > ZERO:
        target = max((ln for ln in converted if ln.credit > ZERO), key=lambda ln: ln.credit)
        target.credit += diff
    elif diff < ZERO:
        target = max((ln for ln in converted if ln.debit > ZERO), key=lambda ln: ln.debit)
        target.debit += -diff
    return converted


def validate_journal(
    db: Session,
    *,
    company: Company,
    journal_date: date,
    lines: list[LineInput],
    currency: str | None = None,
    exchange_rate: Decimal | None = None,
    check_period: bool = True,
    today: date | None = None,
) -> ValidatedJournal:
    """Run every GL rule and return base-currency lines.

    Raises :class:`PostingError` with a machine-readable code on the first
    failed rule.
    """
    validate_lines(lines)
    if journal_date > (today or utc_today()):
        raise PostingError("Journal date cannot be in the future", code="FUTURE_DATE")
    currency = (currency or company.base_currency).upper() if currency else company.base_currency
    rate = resolve_exchange_rate(currency, company.base_currency, exchange_rate)
    validate_balanced(lines)
    validate_accounts(db, company.id, {ln.account_id for ln in lines})
    if check_period:
        assert_period_open(db, company.id, journal_date)

    base_lines = convert_to_base(lines, rate)
    total_debit = sum((ln.debit for ln in base_lines), ZERO)
    total_credit = sum((ln.credit for ln in base_lines), ZERO)
    if total_debit != total_credit:
        raise PostingError(
            f"Journal is not balanced in base currency: debits {total_debit} "
            f"!= credits {total_credit}",
            code="UNBALANCED_JOURNAL",
        )
    return ValidatedJournal(
        currency=currency,
        exchange_rate=rate,
        lines=base_lines,
        total_debit=total_debit,
        total_credit=total_credit,
    )


# ─── Persistence ─────────────────────────────────────────────────────────────


def next_journal_number(db: Session, company_id: UUID, year: int) -> str:
    return next_sequence(
        db, Journal.journal_number, f"JE-{year}-", Journal.company_id == company_id
    )


def create_journal_record(
    db: Session,
    actor: Actor,
    *,
    company: Company,
    journal_date: date,
    description: str,
    validated: ValidatedJournal,
    status: JournalStatus,
    reference: str | None = None,
    source_type: str | None = None,
    source_id: UUID | None = None,
) -> Journal:
    journal = Journal(
        tenant_id=company.tenant_id,
        company_id=company.id,
        journal_number=next_journal_number(db, company.id, journal_date.year),
        journal_date=journal_date,
        description=description,
        reference=reference,
        currency=validated.currency,
        exchange_rate=validated.exchange_rate,
        total_debit=validated.total_debit,
        total_credit=validated.total_credit,
        status=status,
        source_type=source_type,
        source_id=source_id,
        created_by=actor.user_id,
    )
    if status == JournalStatus.POSTED:
        journal.posted_by = actor.user_id
        journal.posted_at = utcnow()
    for number, line in enumerate(validated.lines, start=1):
        journal.lines.append(
            JournalLine(
                line_number=number,
                account_id=line.account_id,
                debit=line.debit,
                credit=line.credit,
                description=line.description,
                reference=line.reference,
            )
        )
    db.add(journal)
    db.flush()
    return journal


def post_journal_entry(
    db: Session,
    actor: Actor,
    *,
    company: Company,
    journal_date: date,
    description: str,
    lines: list[LineInput],
    reference: str | None = None,
    currency: str | None = None,
    exchange_rate: Decimal | None = None,
    source_type: str | None = None,
    source_id: UUID | None = None,
) -> Journal:
    """Validate and write an already-posted system journal (AR, AP, payments)."""
    validated = validate_journal(
        db,
        company=company,
        journal_date=journal_date,
        lines=lines,
        currency=currency,
        exchange_rate=exchange_rate,
    )
    journal = create_journal_record(
        db,
        actor,
        company=company,
        journal_date=journal_date,
        description=description,
        validated=validated,
        status=JournalStatus.POSTED,
        reference=reference,
        source_type=source_type,
        source_id=source_id,
    )
    log_action(
        db,
        actor=actor,
        action="JOURNAL_POSTED",
        entity_type="journal",
        entity_id=journal.id,
        company_id=company.id,
        changes={
            "journal_number": journal.journal_number,
            "source_type": source_type,
            "total": journal.total_debit,
        },
    )
    logger.info(
        "Posted journal %s (%s) total=%s", journal.journal_number, source_type, journal.total_debit
    )
    return journal


def build_reversal(
    db: Session,
    actor: Actor,
    *,
    company: Company,
    journal: Journal,
    reversal_date: date,
    description: str | None = None,
    today: date | None = None,
) -> Journal:
    """Post the mirror image of *journal* and mark the original reversed.

    The mirrored lines are already balanced in base currency, so only the
    date rules of :func:`validate_journal` apply here.
    """
    if journal.status != JournalStatus.POSTED:
        raise PostingError(
            f"Only posted journals can be reversed (status is {journal.status.value})",
            code="INVALID_STATUS",
        )
    if reversal_date > (today or utc_today()):
        raise PostingError("Reversal date cannot be in the future", code="FUTURE_DATE")
    if reversal_date < journal.journal_date:
        raise PostingError(
            f"Reversal date {reversal_date} is before the journal date {journal.journal_date}",
            code="INVALID_REVERSAL_DATE",
        )
    assert_period_open(db, company.id, reversal_date)
    mirrored = [
        LineInput(
            account_id=ln.account_id,
            debit=ln.credit,
            credit=ln.debit,
            description=ln.description,
            reference=ln.reference,
        )
        for ln in journal.lines
    ]
    validated = ValidatedJournal(
        currency=journal.currency,
        exchange_rate=journal.exchange_rate,
        lines=mirrored,
        total_debit=journal.total_credit,
        total_credit=journal.total_debit,
    )
    reversal = create_journal_record(
        db,
        actor,
        company=company,
        journal_date=reversal_date,
        description=description or f"Reversal of {journal.journal_number}",
        validated=validated,
        status=JournalStatus.POSTED,
        reference=f"REV-{journal.journal_number}",
        source_type="reversal",
        source_id=journal.id,
    )
    reversal.reversal_of_id = journal.id
    journal.status = JournalStatus.REVERSED
    journal.reversed_by_id = reversal.id
    db.flush()

    log_action(
        db,
        actor=actor,
        action="JOURNAL_REVERSED",
        entity_type="journal",
        entity_id=journal.id,
        company_id=company.id,
        changes={"reversal_id": reversal.id, "reversal_number": reversal.journal_number},
    )
    logger.info("Reversed journal %s with %s", journal.journal_number, reversal.journal_number)
    return reversal
