"""Manual journal workflow: draft, post (or submit for approval), approve,
reverse and delete.

Does NOT call db.commit(). The caller is responsible.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session, selectinload

from aibos.app.core.errors import ConflictError, NotFoundError
from aibos.app.core.permissions import APPROVER_ROLES
from aibos.app.core.timeutils import today as utc_today
from aibos.app.core.timeutils import utcnow
from aibos.app.models.journal import Journal, JournalStatus
from aibos.app.models.tenant import DEFAULT_POLICY_SETTINGS, Company
from aibos.app.services.access import assert_segregated, enforce_sod
from aibos.app.services.audit import Actor, log_action
from aibos.app.services.posting import (
    LineInput,
    build_reversal,
    create_journal_record,
    validate_journal,
)

logger = logging.getLogger(__name__)


@dataclass
class PostResult:
    journal: Journal
    requires_approval: bool
    approver_roles: list[str] = field(default_factory=list)


def approval_threshold(company: Company) -> Decimal:
    policy = company.policy_settings or {}
    raw = policy.get("approval_threshold_rm", DEFAULT_POLICY_SETTINGS["approval_threshold_rm"])
    return Decimal(str(raw))


def create_journal(
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
) -> Journal:
    """Create a draft. Structure is validated now, the period when posting."""
    validated = validate_journal(
        db,
        company=company,
        journal_date=journal_date,
        lines=lines,
        currency=currency,
        exchange_rate=exchange_rate,
        check_period=False,
    )
    journal = create_journal_record(
        db,
        actor,
        company=company,
        journal_date=journal_date,
        description=description,
        validated=validated,
        status=JournalStatus.DRAFT,
        reference=reference,
        source_type="manual",
    )
    log_action(
        db,
        actor=actor,
        action="JOURNAL_CREATED",
        entity_type="journal",
        entity_id=journal.id,
        company_id=company.id,
        changes={
            "journal_number": journal.journal_number,
            "journal_date": journal.journal_date,
            "description": description,
            "reference": reference,
            "currency": journal.currency,
            "total": journal.total_debit,
            "lines": [
                {"account_id": ln.account_id, "debit": ln.debit, "credit": ln.credit}
                for ln in validated.lines
            ],
        },
    )
    return journal


def list_journals(
    db: Session,
    company_id: UUID,
    *,
    status: JournalStatus | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    reference: str | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[Journal], int]:
    q = db.query(Journal).filter(Journal.company_id == company_id)
    if status is not None:
        q = q.filter(Journal.status == status)
    if date_from is not None:
        q = q.filter(Journal.journal_date >= date_from)
    if date_to is not None:
        q = q.filter(Journal.journal_date <= date_to)
    if reference:
        q = q.filter(Journal.reference.ilike(f"%{reference}%"))
    total = q.count()
    rows = (
        q.options(selectinload(Journal.lines))
        .order_by(Journal.journal_date.desc(), Journal.journal_number.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def get_journal(db: Session, company_id: UUID, journal_id: UUID) -> Journal:
    journal = (
        db.query(Journal)
        .options(selectinload(Journal.lines))
        .filter(Journal.id == journal_id, Journal.company_id == company_id)
        .first()
    )
    if journal is None:
        raise NotFoundError("Journal not found", code="JOURNAL_NOT_FOUND")
    return journal


def _revalidate(db: Session, company: Company, journal: Journal) -> None:
    # Stored lines are already in base currency.
    validate_journal(
        db,
        company=company,
        journal_date=journal.journal_date,
        lines=[
            LineInput(account_id=ln.account_id, debit=ln.debit, credit=ln.credit)
            for ln in journal.lines
        ],
    )


def _require_status(journal: Journal, status: JournalStatus, verb: str) -> None:
    if journal.status != status:
        raise ConflictError(
            f"Cannot {verb} journal {journal.journal_number} in status {journal.status.value}",
            code="INVALID_STATUS",
        )


def post_journal(
    db: Session, actor: Actor, *, company: Company, journal_id: UUID
) -> PostResult:
    """Post a draft, or park it for approval.

    Approval is needed when the poster's role requires it, or when the
    journal total exceeds the company's approval threshold.
    """
    sod = enforce_sod(actor, "journal:post")
    journal = get_journal(db, company.id, journal_id)
    _require_status(journal, JournalStatus.DRAFT, "post")
    _revalidate(db, company, journal)

    threshold = approval_threshold(company)
    requires_approval = sod.requires_approval or journal.total_debit > threshold
    if requires_approval:
        journal.status = JournalStatus.PENDING_APPROVAL
        action = "JOURNAL_SUBMITTED_FOR_APPROVAL"
    else:
        journal.status = JournalStatus.POSTED
        journal.posted_by = actor.user_id
        journal.posted_at = utcnow()
        action = "JOURNAL_POSTED"
    db.flush()

    log_action(
        db,
        actor=actor,
        action=action,
        entity_type="journal",
        entity_id=journal.id,
        company_id=company.id,
        old_values={"status": JournalStatus.DRAFT.value},
        changes={
            "status": journal.status.value,
            "total": journal.total_debit,
            "approval_threshold": threshold,
        },
    )
    logger.info("Journal %s -> %s", journal.journal_number, journal.status.value)
    return PostResult(
        journal=journal,
        requires_approval=requires_approval,
        approver_roles=list(APPROVER_ROLES) if requires_approval else [],
    )


def approve_journal(
    db: Session, actor: Actor, *, company: Company, journal_id: UUID
) -> Journal:
    enforce_sod(actor, "journal:approve")
    journal = get_journal(db, company.id, journal_id)
    _require_status(journal, JournalStatus.PENDING_APPROVAL, "approve")
    assert_segregated(journal.created_by, actor.user_id, "journal")
    _revalidate(db, company, journal)

    journal.status = JournalStatus.POSTED
    journal.approved_by = actor.user_id
    journal.posted_by = actor.user_id
    journal.posted_at = utcnow()
    db.flush()

    log_action(
        db,
        actor=actor,
        action="JOURNAL_APPROVED",
        entity_type="journal",
        entity_id=journal.id,
        company_id=company.id,
        old_values={"status": JournalStatus.PENDING_APPROVAL.value},
        changes={"status": journal.status.value, "approved_by": actor.user_id},
    )
    logger.info("Journal %s approved by %s", journal.journal_number, actor.user_id)
    return journal


def reverse_journal(
    db: Session,
    actor: Actor,
    *,
    company: Company,
    journal_id: UUID,
    reversal_date: date | None = None,
    description: str | None = None,
) -> Journal:
    enforce_sod(actor, "journal:reverse")
    journal = get_journal(db, company.id, journal_id)
    return build_reversal(
        db,
        actor,
        company=company,
        journal=journal,
        reversal_date=reversal_date or utc_today(),
        description=description,
    )


def delete_journal(db: Session, actor: Actor, *, company_id: UUID, journal_id: UUID) -> None:
    journal = get_journal(db, company_id, journal_id)
    _require_status(journal, JournalStatus.DRAFT, "delete")
    log_action(
        db,
        actor=actor,
        action="JOURNAL_DELETED",
        entity_type="journal",
        entity_id=journal.id,
        company_id=company_id,
        old_values={"journal_number": journal.journal_number, "total": journal.total_debit},
    )
    db.delete(journal)
    db.flush()
