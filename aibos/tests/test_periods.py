"""Tests for fiscal periods: generation, close/reopen, locks and auto-reversals."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from aibos.app.core.errors import ConflictError, PostingError, ValidationFailed
from aibos.app.models.account import Account
from aibos.app.models.journal import Journal, JournalStatus
from aibos.app.models.period import (
    FiscalPeriod,
    LockType,
    PeriodStatus,
    ReversalStatus,
    ReversingEntry,
)
from aibos.app.models.tenant import Company, Tenant
from aibos.app.services import journals as journal_service
from aibos.app.services import periods as period_service
from aibos.app.services.audit import Actor
from aibos.app.services.posting import LineInput
from aibos.tests.conftest import auth

TODAY = date.today()


@pytest.fixture()
def periods(db: Session, admin_actor: Actor, company: Company) -> list[FiscalPeriod]:
    return period_service.generate_periods(
        db, admin_actor, company=company, fiscal_year=TODAY.year
    )


@pytest.fixture()
def current_period(periods: list[FiscalPeriod]) -> FiscalPeriod:
    return next(p for p in periods if p.start_date <= TODAY <= p.end_date)


def _posted(
    db: Session,
    actor: Actor,
    company: Company,
    accounts: dict[str, Account],
    reference: str | None = None,
) -> Journal:
    journal = journal_service.create_journal(
        db,
        actor,
        company=company,
        journal_date=TODAY,
        description="Accrued utilities",
        reference=reference,
        lines=[
            LineInput(account_id=accounts["6200"].id, debit=Decimal("320.00")),
            LineInput(account_id=accounts["2200"].id, credit=Decimal("320.00")),
        ],
    )
    journal_service.post_journal(db, actor, company=company, journal_id=journal.id)
    return journal


class TestGeneratePeriods:
    def test_twelve_monthly_periods(self, periods: list[FiscalPeriod]) -> None:
        assert len(periods) == 12
        assert periods[0].start_date == date(TODAY.year, 1, 1)
        assert periods[-1].end_date == date(TODAY.year, 12, 31)
        assert all(p.status == PeriodStatus.OPEN for p in periods)

    def test_june_year_end_starts_in_july(
        self, db: Session, admin_actor: Actor, company: Company
    ) -> None:
        company.fiscal_year_end = 6
        rows = period_service.generate_periods(
            db, admin_actor, company=company, fiscal_year=2025
        )
        assert rows[0].start_date == date(2024, 7, 1)
        assert rows[-1].end_date == date(2025, 6, 30)
        assert rows[1].period_name == "Aug 2024"

    def test_generating_twice_conflicts(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        periods: list[FiscalPeriod],
    ) -> None:
        with pytest.raises(ConflictError) as exc:
            period_service.generate_periods(
                db, admin_actor, company=company, fiscal_year=TODAY.year
            )
        assert exc.value.code == "PERIODS_ALREADY_GENERATED"


class TestClosePeriod:
    def test_draft_journal_blocks_close(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
        current_period: FiscalPeriod,
    ) -> None:
        journal_service.create_journal(
            db,
            admin_actor,
            company=company,
            journal_date=TODAY,
            description="Unposted",
            lines=[
                LineInput(account_id=accounts["6000"].id, debit=Decimal("10")),
                LineInput(account_id=accounts["1000"].id, credit=Decimal("10")),
            ],
        )

        with pytest.raises(ValidationFailed) as exc:
            period_service.close_period(
                db, admin_actor, company=company, period_id=current_period.id
            )
        assert exc.value.code == "PERIOD_CLOSE_VALIDATION_FAILED"
        assert exc.value.errors

    def test_force_close_overrides_validation(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
        current_period: FiscalPeriod,
    ) -> None:
        journal_service.create_journal(
            db,
            admin_actor,
            company=company,
            journal_date=TODAY,
            description="Unposted",
            lines=[
                LineInput(account_id=accounts["6000"].id, debit=Decimal("10")),
                LineInput(account_id=accounts["1000"].id, credit=Decimal("10")),
            ],
        )
        result = period_service.close_period(
            db, admin_actor, company=company, period_id=current_period.id, force_close=True
        )
        assert result.period.status == PeriodStatus.CLOSED

    def test_closed_period_rejects_posting(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
        current_period: FiscalPeriod,
    ) -> None:
        period_service.close_period(
            db, admin_actor, company=company, period_id=current_period.id
        )

        with pytest.raises(PostingError) as exc:
            _posted(db, admin_actor, company, accounts)
        assert exc.value.code == "PERIOD_CLOSED"

    def test_close_twice_rejected(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        current_period: FiscalPeriod,
    ) -> None:
        period_service.close_period(
            db, admin_actor, company=company, period_id=current_period.id
        )
        with pytest.raises(ValidationFailed) as exc:
            period_service.close_period(
                db, admin_actor, company=company, period_id=current_period.id
            )
        assert exc.value.code == "PERIOD_ALREADY_CLOSED"

    def test_future_close_date_rejected(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        current_period: FiscalPeriod,
    ) -> None:
        with pytest.raises(ValidationFailed) as exc:
            period_service.close_period(
                db,
                admin_actor,
                company=company,
                period_id=current_period.id,
                close_date=TODAY + timedelta(days=1),
            )
        assert exc.value.code == "FUTURE_DATE"

    def test_dates_without_a_period_are_open(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
    ) -> None:
        journal = _posted(db, admin_actor, company, accounts)
        assert journal.status == JournalStatus.POSTED


class TestReopenPeriod:
    def test_reason_required(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        current_period: FiscalPeriod,
    ) -> None:
        period_service.close_period(
            db, admin_actor, company=company, period_id=current_period.id
        )
        with pytest.raises(ValidationFailed) as exc:
            period_service.open_period(
                db, admin_actor, company=company, period_id=current_period.id, reason="  "
            )
        assert exc.value.code == "REASON_REQUIRED"

    def test_reopen_allows_posting_again(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
        current_period: FiscalPeriod,
    ) -> None:
        period_service.close_period(
            db, admin_actor, company=company, period_id=current_period.id
        )
        period = period_service.open_period(
            db,
            admin_actor,
            company=company,
            period_id=current_period.id,
            reason="Late supplier invoice",
        )

        assert period.status == PeriodStatus.OPEN
        assert period.reopen_reason == "Late supplier invoice"
        assert all(not lock.is_active for lock in period.locks)
        assert _posted(db, admin_actor, company, accounts).status == JournalStatus.POSTED

    def test_open_period_cannot_be_reopened(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        current_period: FiscalPeriod,
    ) -> None:
        with pytest.raises(ValidationFailed) as exc:
            period_service.open_period(
                db, admin_actor, company=company, period_id=current_period.id, reason="x"
            )
        assert exc.value.code == "PERIOD_ALREADY_OPEN"


class TestLockPeriod:
    def test_posting_lock_blocks_journals(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
        current_period: FiscalPeriod,
    ) -> None:
        period_service.lock_period(
            db,
            admin_actor,
            company=company,
            period_id=current_period.id,
            lock_type=LockType.POSTING,
            reason="Audit fieldwork",
        )
        assert current_period.status == PeriodStatus.LOCKED
        with pytest.raises(PostingError) as exc:
            _posted(db, admin_actor, company, accounts)
        assert exc.value.code == "PERIOD_CLOSED"

    def test_reporting_lock_still_allows_posting(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
        current_period: FiscalPeriod,
    ) -> None:
        period_service.lock_period(
            db,
            admin_actor,
            company=company,
            period_id=current_period.id,
            lock_type=LockType.REPORTING,
            reason="Board pack frozen",
        )
        assert current_period.status == PeriodStatus.OPEN
        assert _posted(db, admin_actor, company, accounts).status == JournalStatus.POSTED

    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_reason_required(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        current_period: FiscalPeriod,
        reason: str | None,
    ) -> None:
        with pytest.raises(ValidationFailed) as exc:
            period_service.lock_period(
                db,
                admin_actor,
                company=company,
                period_id=current_period.id,
                lock_type=LockType.POSTING,
                reason=reason,
            )
        assert exc.value.code == "REASON_REQUIRED"
        assert current_period.status == PeriodStatus.OPEN
        assert current_period.locks == []


class TestReversingEntries:
    def test_close_schedules_and_processes_accrual_reversal(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
        current_period: FiscalPeriod,
    ) -> None:
        accrual = _posted(db, admin_actor, company, accounts, reference="ACCRUAL-UTIL")
        _posted(db, admin_actor, company, accounts, reference="ROUTINE")

        result = period_service.close_period(
            db, admin_actor, company=company, period_id=current_period.id
        )
        assert result.reversing_entries_created == 1

        entry = db.query(ReversingEntry).one()
        assert entry.original_journal_id == accrual.id
        assert entry.reversal_date == current_period.end_date + timedelta(days=1)

        processed = period_service.process_due_reversals(db, today=entry.reversal_date)

        assert processed == 1
        assert entry.status == ReversalStatus.PROCESSED
        assert accrual.status == JournalStatus.REVERSED
        reversal = db.get(Journal, entry.reversal_journal_id)
        assert reversal.journal_date == entry.reversal_date
        assert reversal.reversal_of_id == accrual.id

    def test_not_due_yet_is_left_pending(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
        current_period: FiscalPeriod,
    ) -> None:
        _posted(db, admin_actor, company, accounts, reference="accrual-rent")
        period_service.close_period(
            db, admin_actor, company=company, period_id=current_period.id
        )
        entry = db.query(ReversingEntry).one()

        processed = period_service.process_due_reversals(
            db, today=entry.reversal_date - timedelta(days=1)
        )
        assert processed == 0
        assert entry.status == ReversalStatus.PENDING


class TestPeriodAPI:
    def test_accountant_cannot_reopen(
        self,
        client: TestClient,
        accountant_token: str,
        tenant: Tenant,
        company: Company,
        current_period: FiscalPeriod,
    ) -> None:
        resp = client.post(
            "/api/v1/periods",
            json={"action": "open", "period_id": str(current_period.id), "reason": "fix"},
            headers=auth(accountant_token, tenant, company),
        )
        assert resp.status_code == 403

    def test_admin_closes_via_api(
        self,
        client: TestClient,
        admin_token: str,
        tenant: Tenant,
        company: Company,
        current_period: FiscalPeriod,
    ) -> None:
        resp = client.post(
            "/api/v1/periods",
            json={"action": "close", "period_id": str(current_period.id)},
            headers=auth(admin_token, tenant, company),
        )
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["period"]["status"] == "CLOSED"
        assert body["validation"]["can_close"] is True

    def test_lock_without_reason_is_400(
        self,
        client: TestClient,
        admin_token: str,
        tenant: Tenant,
        company: Company,
        current_period: FiscalPeriod,
    ) -> None:
        resp = client.post(
            "/api/v1/periods",
            json={
                "action": "lock",
                "period_id": str(current_period.id),
                "lock_type": "POSTING",
            },
            headers=auth(admin_token, tenant, company),
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "REASON_REQUIRED"

    def test_list_periods(
        self,
        client: TestClient,
        admin_token: str,
        tenant: Tenant,
        company: Company,
        periods: list[FiscalPeriod],
    ) -> None:
        resp = client.get("/api/v1/periods", headers=auth(admin_token, tenant, company))
        assert resp.status_code == 200
        assert len(resp.json()) == 12
