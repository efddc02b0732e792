"""Fiscal periods and the period close.

Closing a period:
1. Validates it (no unposted journals, balanced trial balance, bank
   reconciliation warnings)
2. Schedules reversing entries for accrual journals on the first day of the
   next period
3. Marks it CLOSED and adds a POSTING lock so nothing else lands in it

Does NOT call db.commit(). The caller is responsible.
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from aibos.app.core.config import settings
from aibos.app.core.errors import (
    ConflictError,
    NotFoundError,
    PostingError,
    ValidationFailed,
)
from aibos.app.core.timeutils import today as utc_today
from aibos.app.core.timeutils import utcnow
from aibos.app.models.banking import BankTransaction
from aibos.app.models.journal import LEDGER_STATUSES, Journal, JournalLine, JournalStatus
from aibos.app.models.period import (
    FiscalPeriod,
    LockType,
    PeriodLock,
    PeriodStatus,
    ReversalStatus,
    ReversingEntry,
)
from aibos.app.models.tenant import Company
from aibos.app.services.audit import Actor, log_action
from aibos.app.services.notification_service import NotificationType, notify_tenant_admins

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
ACCRUAL_MARKER = "ACCRUAL"
_BLOCKING_LOCKS = (LockType.POSTING, LockType.FULL)


@dataclass
class PeriodCloseValidation:
    can_close: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class PeriodCloseResult:
    period: FiscalPeriod
    next_period_id: UUID | None
    reversing_entries_created: int
    validation: PeriodCloseValidation


def _shift_month(year: int, month: int, offset: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


# ─── Calendar ────────────────────────────────────────────────────────────────


def generate_periods(
    db: Session, actor: Actor, *, company: Company, fiscal_year: int
) -> list[FiscalPeriod]:
    """Create the twelve monthly periods of *fiscal_year*.

    The fiscal year is named after the calendar year it ends in, so with a
    June year end, FY2025 runs from July 2024 to June 2025.
    """
    exists = (
        db.query(FiscalPeriod.id)
        .filter(FiscalPeriod.company_id == company.id, FiscalPeriod.fiscal_year == fiscal_year)
        .first()
    )
    if exists:
        raise ConflictError(
            f"Periods for fiscal year {fiscal_year} already exist",
            code="PERIODS_ALREADY_GENERATED",
        )

    end_month = company.fiscal_year_end
    start_year, start_month = _shift_month(fiscal_year, end_month, -11)
    periods: list[FiscalPeriod] = []
    for number in range(1, 13):
        year, month = _shift_month(start_year, start_month, number - 1)
        last_day = calendar.monthrange(year, month)[1]
        period = FiscalPeriod(
            tenant_id=company.tenant_id,
            company_id=company.id,
            fiscal_year=fiscal_year,
            period_number=number,
            period_name=f"{calendar.month_abbr[month]} {year}",
            start_date=date(year, month, 1),
            end_date=date(year, month, last_day),
            status=PeriodStatus.OPEN,
        )
        db.add(period)
        periods.append(period)
    db.flush()

    log_action(
        db,
        actor=actor,
        action="PERIODS_GENERATED",
        entity_type="fiscal_year",
        entity_id=fiscal_year,
        company_id=company.id,
        changes={"fiscal_year": fiscal_year, "periods": len(periods)},
    )
    return periods


def list_periods(
    db: Session,
    company_id: UUID,
    *,
    status: PeriodStatus | None = None,
    fiscal_year: int | None = None,
) -> list[FiscalPeriod]:
    q = db.query(FiscalPeriod).filter(FiscalPeriod.company_id == company_id)
    if status is not None:
        q = q.filter(FiscalPeriod.status == status)
    if fiscal_year is not None:
        q = q.filter(FiscalPeriod.fiscal_year == fiscal_year)
    return q.order_by(FiscalPeriod.start_date).all()


def get_period(db: Session, company_id: UUID, period_id: UUID) -> FiscalPeriod:
    period = (
        db.query(FiscalPeriod)
        .filter(FiscalPeriod.id == period_id, FiscalPeriod.company_id == company_id)
        .first()
    )
    if period is None:
        raise NotFoundError("Period not found", code="PERIOD_NOT_FOUND")
    return period


def _period_for_action(db: Session, company_id: UUID, period_id: UUID) -> FiscalPeriod:
    period = (
        db.query(FiscalPeriod)
        .filter(FiscalPeriod.id == period_id, FiscalPeriod.company_id == company_id)
        .first()
    )
    if period is None:
        raise ValidationFailed("Period not found", code="PERIOD_NOT_FOUND")
    return period


def update_period(
    db: Session,
    actor: Actor,
    *,
    company_id: UUID,
    period_id: UUID,
    period_name: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    status: PeriodStatus | None = None,
) -> FiscalPeriod:
    period = get_period(db, company_id, period_id)
    old = {
        "period_name": period.period_name,
        "start_date": period.start_date,
        "end_date": period.end_date,
        "status": period.status.value,
    }
    new_start = start_date or period.start_date
    new_end = end_date or period.end_date
    if new_end < new_start:
        raise ValidationFailed(
            "End date cannot be before start date", code="INVALID_DATE_RANGE"
        )
    if period_name is not None:
        period.period_name = period_name
    period.start_date, period.end_date = new_start, new_end
    if status is not None:
        period.status = status
    db.flush()

    log_action(
        db,
        actor=actor,
        action="PERIOD_UPDATED",
        entity_type="fiscal_period",
        entity_id=period.id,
        company_id=company_id,
        old_values=old,
        changes={
            "period_name": period.period_name,
            "start_date": period.start_date,
            "end_date": period.end_date,
            "status": period.status.value,
        },
    )
    return period


# ─── Posting guard ───────────────────────────────────────────────────────────


def assert_period_open(db: Session, company_id: UUID, on_date: date) -> None:
    """Raise PERIOD_CLOSED if *on_date* falls in a closed or locked period.

    Call this before writing any journal. Dates outside every defined period
    are treated as open.
    """
    period = (
        db.query(FiscalPeriod)
        .filter(
            FiscalPeriod.company_id == company_id,
            FiscalPeriod.start_date <= on_date,
            FiscalPeriod.end_date >= on_date,
        )
        .first()
    )
    if period is None:
        return
    if period.status in (PeriodStatus.CLOSED, PeriodStatus.LOCKED):
        raise PostingError(
            f"Period {period.period_name} is {period.status.value.lower()}. "
            "No entries allowed in closed periods.",
            code="PERIOD_CLOSED",
        )
    blocking = (
        db.query(PeriodLock.id)
        .filter(
            PeriodLock.period_id == period.id,
            PeriodLock.is_active.is_(True),
            PeriodLock.lock_type.in_(_BLOCKING_LOCKS),
        )
        .first()
    )
    if blocking:
        raise PostingError(
            f"Period {period.period_name} is locked for posting",
            code="PERIOD_CLOSED",
        )


# ─── Close / open / lock ─────────────────────────────────────────────────────


def validate_period_close(db: Session, period: FiscalPeriod) -> PeriodCloseValidation:
    errors: list[str] = []
    warnings: list[str] = []

    unposted = (
        db.query(func.count(Journal.id))
        .filter(
            Journal.company_id == period.company_id,
            Journal.journal_date >= period.start_date,
            Journal.journal_date <= period.end_date,
            Journal.status.in_((JournalStatus.DRAFT, JournalStatus.PENDING_APPROVAL)),
        )
        .scalar()
    )
    if unposted:
        errors.append(f"{unposted} draft or pending journal(s) must be posted or deleted")

    total_debit, total_credit = (
        db.query(
            func.coalesce(func.sum(JournalLine.debit), 0),
            func.coalesce(func.sum(JournalLine.credit), 0),
        )
        .join(Journal, JournalLine.journal_id == Journal.id)
        .filter(
            Journal.company_id == period.company_id,
            Journal.journal_date >= period.start_date,
            Journal.journal_date <= period.end_date,
            Journal.status.in_(LEDGER_STATUSES),
        )
        .one()
    )
    difference = abs(Decimal(str(total_debit)) - Decimal(str(total_credit)))
    if difference > settings.BALANCE_TOLERANCE:
        errors.append(f"Trial balance is out of balance by {difference}")

    unmatched = (
        db.query(func.count(BankTransaction.id))
        .filter(
            BankTransaction.company_id == period.company_id,
            BankTransaction.transaction_date >= period.start_date,
            BankTransaction.transaction_date <= period.end_date,
            BankTransaction.is_matched.is_(False),
        )
        .scalar()
    )
    if unmatched:
        warnings.append(f"{unmatched} bank transaction(s) are not reconciled")

    return PeriodCloseValidation(can_close=not errors, errors=errors, warnings=warnings)


def _next_period(db: Session, period: FiscalPeriod) -> FiscalPeriod | None:
    return (
        db.query(FiscalPeriod)
        .filter(
            FiscalPeriod.company_id == period.company_id,
            FiscalPeriod.start_date > period.end_date,
        )
        .order_by(FiscalPeriod.start_date)
        .first()
    )


def _schedule_reversals(
    db: Session, actor: Actor, period: FiscalPeriod, reversal_date: date
) -> int:
    already = (
        db.query(ReversingEntry.original_journal_id)
        .filter(ReversingEntry.company_id == period.company_id)
        .scalar_subquery()
    )
    accruals = (
        db.query(Journal)
        .filter(
            Journal.company_id == period.company_id,
            Journal.journal_date >= period.start_date,
            Journal.journal_date <= period.end_date,
            Journal.status == JournalStatus.POSTED,
            Journal.reference.ilike(f"%{ACCRUAL_MARKER}%"),
            Journal.id.not_in(already),
        )
        .all()
    )
    for journal in accruals:
        db.add(
            ReversingEntry(
                tenant_id=period.tenant_id,
                company_id=period.company_id,
                original_journal_id=journal.id,
                reversal_date=reversal_date,
                status=ReversalStatus.PENDING,
                created_by=actor.user_id,
            )
        )
    return len(accruals)


def close_period(
    db: Session,
    actor: Actor,
    *,
    company: Company,
    period_id: UUID,
    close_date: date | None = None,
    force_close: bool = False,
    create_reversing_entries: bool = True,
    notes: str | None = None,
) -> PeriodCloseResult:
    """Close a period. Raises ValidationFailed with a code on every refusal."""
    if close_date is not None and close_date > utc_today():
        raise ValidationFailed("Close date cannot be in the future", code="FUTURE_DATE")

    period = _period_for_action(db, company.id, period_id)
    if period.status in (PeriodStatus.CLOSED, PeriodStatus.LOCKED):
        raise ValidationFailed(
            f"Period {period.period_name} is already {period.status.value.lower()}",
            code="PERIOD_ALREADY_CLOSED",
        )

    validation = validate_period_close(db, period)
    if not validation.can_close and not force_close:
        logger.warning(
            "Period close blocked for %s: %s", period.period_name, "; ".join(validation.errors)
        )
        raise ValidationFailed(
            "Period cannot be closed: " + "; ".join(validation.errors),
            code="PERIOD_CLOSE_VALIDATION_FAILED",
            errors=validation.errors,
        )

    next_period = _next_period(db, period)
    reversals = 0
    if create_reversing_entries:
        reversal_date = next_period.start_date if next_period else period.end_date + timedelta(days=1)
        reversals = _schedule_reversals(db, actor, period, reversal_date)

    period.status = PeriodStatus.CLOSED
    period.closed_at = utcnow()
    period.closed_by = actor.user_id
    period.locks.append(
        PeriodLock(
            lock_type=LockType.POSTING,
            reason=notes or "Period closed",
            is_active=True,
            locked_by=actor.user_id,
        )
    )
    db.flush()

    log_action(
        db,
        actor=actor,
        action="PERIOD_CLOSED",
        entity_type="fiscal_period",
        entity_id=period.id,
        company_id=company.id,
        changes={
            "period_name": period.period_name,
            "force_close": force_close,
            "reversing_entries": reversals,
            "warnings": validation.warnings,
            "notes": notes,
        },
    )
    logger.info(
        "Closed period %s for company %s (%d reversing entries)",
        period.period_name, company.code, reversals,
    )
    notify_tenant_admins(
        db,
        company.tenant_id,
        NotificationType.PERIOD_CLOSED,
        company_name=company.name,
        period_name=period.period_name,
        closed_by=str(actor.user_id),
    )
    return PeriodCloseResult(
        period=period,
        next_period_id=next_period.id if next_period else None,
        reversing_entries_created=reversals,
        validation=validation,
    )


def open_period(
    db: Session, actor: Actor, *, company: Company, period_id: UUID, reason: str | None
) -> FiscalPeriod:
    if not reason or not reason.strip():
        raise ValidationFailed("A reason is required to reopen a period", code="REASON_REQUIRED")
    period = _period_for_action(db, company.id, period_id)
    if period.status == PeriodStatus.OPEN:
        raise ValidationFailed(
            f"Period {period.period_name} is already open", code="PERIOD_ALREADY_OPEN"
        )
    old_status = period.status.value
    period.status = PeriodStatus.OPEN
    period.reopen_reason = reason.strip()
    period.closed_at = None
    period.closed_by = None
    for lock in period.locks:
        lock.is_active = False
    db.flush()

    log_action(
        db,
        actor=actor,
        action="PERIOD_REOPENED",
        entity_type="fiscal_period",
        entity_id=period.id,
        company_id=company.id,
        old_values={"status": old_status},
        changes={"status": period.status.value, "reason": period.reopen_reason},
    )
    logger.info("Reopened period %s: %s", period.period_name, period.reopen_reason)
    return period


def lock_period(
    db: Session,
    actor: Actor,
    *,
    company: Company,
    period_id: UUID,
    lock_type: LockType,
    reason: str | None,
) -> PeriodLock:
    if not reason or not reason.strip():
        raise ValidationFailed("A reason is required to lock a period", code="REASON_REQUIRED")
    period = _period_for_action(db, company.id, period_id)
    lock = PeriodLock(
        lock_type=lock_type,
        reason=reason.strip(),
        is_active=True,
        locked_by=actor.user_id,
    )
    period.locks.append(lock)
    if lock_type in _BLOCKING_LOCKS:
        period.status = PeriodStatus.LOCKED
    db.flush()

    log_action(
        db,
        actor=actor,
        action="PERIOD_LOCKED",
        entity_type="fiscal_period",
        entity_id=period.id,
        company_id=company.id,
        changes={"lock_type": lock_type.value, "reason": reason, "status": period.status.value},
    )
    return lock


# ─── Scheduled reversals ─────────────────────────────────────────────────────


def process_due_reversals(db: Session, today: date | None = None) -> int:
    """Post every PENDING reversing entry dated on or before *today*.

    Entries whose original journal was already reversed by hand are marked
    processed without a new journal. Entries that cannot post yet (their
    reversal date sits in a closed period) stay pending and are logged.
    """
    from aibos.app.services.posting import build_reversal

    today = today or utc_today()
    due = (
        db.query(ReversingEntry)
        .filter(
            ReversingEntry.status == ReversalStatus.PENDING,
            ReversingEntry.reversal_date <= today,
        )
        .order_by(ReversingEntry.reversal_date)
        .all()
    )
    processed = 0
    for entry in due:
        journal = db.get(Journal, entry.original_journal_id)
        company = db.get(Company, entry.company_id)
        if journal is None or company is None:
            logger.error("Reversing entry %s points at a missing journal", entry.id)
            continue
        if journal.status != JournalStatus.POSTED:
            entry.status = ReversalStatus.PROCESSED
            entry.reversal_journal_id = journal.reversed_by_id
            processed += 1
            continue
        actor = Actor(
            user_id=entry.created_by,
            tenant_id=entry.tenant_id,
            company_id=entry.company_id,
            role="admin",
        )
        try:
            reversal = build_reversal(
                db,
                actor,
                company=company,
                journal=journal,
                reversal_date=entry.reversal_date,
                description=f"Auto-reversal of accrual {journal.journal_number}",
                today=today,
            )
        except PostingError as exc:
            logger.warning(
                "Reversing entry %s for %s not posted: %s",
                entry.id, journal.journal_number, exc.detail,
            )
            continue
        entry.status = ReversalStatus.PROCESSED
        entry.reversal_journal_id = reversal.id
        processed += 1
    db.flush()
    if processed:
        logger.info("Processed %d reversing entries", processed)
    return processed
