"""Tests for journal validation, posting, approval and reversal."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from aibos.app.core.config import settings
from aibos.app.core.errors import ConflictError, PermissionDenied, PostingError
from aibos.app.models.account import Account
from aibos.app.models.journal import JournalStatus
from aibos.app.models.tenant import Company, Tenant
from aibos.app.services import journals as journal_service
from aibos.app.services.audit import Actor
from aibos.app.services.posting import (
    LineInput,
    convert_to_base,
    validate_balanced,
    validate_lines,
)
from aibos.tests.conftest import auth

TODAY = date.today()


def _lines(debit_account: Account, credit_account: Account, amount: str) -> list[LineInput]:
    return [
        LineInput(account_id=debit_account.id, debit=Decimal(amount)),
        LineInput(account_id=credit_account.id, credit=Decimal(amount)),
    ]


def _draft(
    db: Session,
    actor: Actor,
    company: Company,
    accounts: dict[str, Account],
    amount: str = "1500.00",
    **kwargs,
):
    return journal_service.create_journal(
        db,
        actor,
        company=company,
        journal_date=kwargs.pop("journal_date", TODAY),
        description=kwargs.pop("description", "Office rent"),
        lines=_lines(accounts["6100"], accounts["1100"], amount),
        **kwargs,
    )


# ─── Line validation ────────────────────────────────────────────────────────


class TestLineValidation:
    def test_unbalanced_lines_rejected(self, accounts: dict[str, Account]) -> None:
        lines = [
            LineInput(account_id=accounts["6100"].id, debit=Decimal("100.00")),
            LineInput(account_id=accounts["1100"].id, credit=Decimal("99.00")),
        ]
        with pytest.raises(PostingError) as exc:
            validate_balanced(lines)
        assert exc.value.code == "UNBALANCED_JOURNAL"

    def test_difference_within_tolerance_accepted(self, accounts: dict[str, Account]) -> None:
        lines = [
            LineInput(account_id=accounts["6100"].id, debit=Decimal("100.00")),
            LineInput(account_id=accounts["1100"].id, credit=Decimal("99.995")),
        ]
        debit, credit = validate_balanced(lines)
        assert debit == Decimal("100.00")

    def test_line_with_debit_and_credit_rejected(self, accounts: dict[str, Account]) -> None:
        lines = [
            LineInput(
                account_id=accounts["6100"].id, debit=Decimal("10"), credit=Decimal("10")
            ),
            LineInput(account_id=accounts["1100"].id, credit=Decimal("10")),
        ]
        with pytest.raises(PostingError) as exc:
            validate_lines(lines)
        assert exc.value.code == "INVALID_LINE_AMOUNTS"

    def test_negative_amount_rejected(self, accounts: dict[str, Account]) -> None:
        lines = [
            LineInput(account_id=accounts["6100"].id, debit=Decimal("-5")),
            LineInput(account_id=accounts["1100"].id, credit=Decimal("-5")),
        ]
        with pytest.raises(PostingError) as exc:
            validate_lines(lines)
        assert exc.value.code == "INVALID_LINE_AMOUNTS"

    def test_empty_journal_rejected(self) -> None:
        with pytest.raises(PostingError) as exc:
            validate_lines([])
        assert exc.value.code == "NO_LINES"

    def test_too_many_lines_rejected(self, accounts: dict[str, Account]) -> None:
        lines = [
            LineInput(account_id=accounts["6100"].id, debit=Decimal("1"))
            for _ in range(settings.MAX_JOURNAL_LINES)
        ]
        lines.append(
            LineInput(account_id=accounts["1100"].id, credit=Decimal(settings.MAX_JOURNAL_LINES))
        )
        with pytest.raises(PostingError) as exc:
            validate_lines(lines)
        assert exc.value.code == "TOO_MANY_LINES"

    def test_line_limit_itself_is_allowed(self, accounts: dict[str, Account]) -> None:
        lines = [
            LineInput(account_id=accounts["6100"].id, debit=Decimal("1"))
            for _ in range(settings.MAX_JOURNAL_LINES - 1)
        ]
        lines.append(
            LineInput(
                account_id=accounts["1100"].id, credit=Decimal(settings.MAX_JOURNAL_LINES - 1)
            )
        )
        validate_lines(lines)

    def test_zero_line_rejected(self, accounts: dict[str, Account]) -> None:
        lines = [
            LineInput(account_id=accounts["6100"].id, debit=Decimal("10")),
            LineInput(account_id=accounts["1100"].id, credit=Decimal("10")),
            LineInput(account_id=accounts["6200"].id),
        ]
        with pytest.raises(PostingError) as exc:
            validate_lines(lines)
        assert exc.value.code == "ZERO_AMOUNTS"
        assert "Line 3" in exc.value.detail


# ─── Draft creation ──────────────────────────────────────────────────────────


class TestCreateJournal:
    def test_creates_numbered_draft(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
    ) -> None:
        journal = _draft(db, admin_actor, company, accounts)

        assert journal.status == JournalStatus.DRAFT
        assert journal.journal_number == f"JE-{TODAY.year}-000001"
        assert journal.total_debit == journal.total_credit == Decimal("1500.00")
        assert len(journal.lines) == 2

    def test_numbers_increment(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
    ) -> None:
        _draft(db, admin_actor, company, accounts)
        second = _draft(db, admin_actor, company, accounts)
        assert second.journal_number == f"JE-{TODAY.year}-000002"

    def test_deleted_draft_number_not_reused(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
    ) -> None:
        first = _draft(db, admin_actor, company, accounts)
        _draft(db, admin_actor, company, accounts)
        journal_service.delete_journal(
            db, admin_actor, company_id=company.id, journal_id=first.id
        )

        third = _draft(db, admin_actor, company, accounts)
        assert third.journal_number == f"JE-{TODAY.year}-000003"

    def test_future_date_rejected(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
    ) -> None:
        with pytest.raises(PostingError) as exc:
            _draft(db, admin_actor, company, accounts, journal_date=TODAY + timedelta(days=3))
        assert exc.value.code == "FUTURE_DATE"

    def test_foreign_currency_needs_rate(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
    ) -> None:
        with pytest.raises(PostingError) as exc:
            _draft(db, admin_actor, company, accounts, currency="USD")
        assert exc.value.code == "INVALID_CURRENCY"

    def test_foreign_currency_converted_to_base(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
    ) -> None:
        journal = _draft(
            db,
            admin_actor,
            company,
            accounts,
            amount="100.00",
            currency="USD",
            exchange_rate=Decimal("4.5"),
        )
        assert journal.currency == "USD"
        assert journal.total_debit == Decimal("450.00")

    def test_tolerated_difference_balanced_in_base(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
    ) -> None:
        journal = journal_service.create_journal(
            db,
            admin_actor,
            company=company,
            journal_date=TODAY,
            description="Imported USD invoice",
            lines=[
                LineInput(account_id=accounts["6100"].id, debit=Decimal("100.00")),
                LineInput(account_id=accounts["1100"].id, credit=Decimal("99.99")),
            ],
            currency="USD",
            exchange_rate=Decimal("4.5"),
        )

        assert journal.total_debit == journal.total_credit == Decimal("450.00")
        bank = next(ln for ln in journal.lines if ln.account_id == accounts["1100"].id)
        assert bank.credit == Decimal("450.00")

    def test_base_imbalance_beyond_tolerance_rejected(
        self, accounts: dict[str, Account]
    ) -> None:
        lines = [
            LineInput(account_id=accounts["6100"].id, debit=Decimal("100.00")),
            LineInput(account_id=accounts["1100"].id, credit=Decimal("99.90")),
        ]
        with pytest.raises(PostingError) as exc:
            convert_to_base(lines, Decimal("4.5"))
        assert exc.value.code == "UNBALANCED_JOURNAL"


# ─── Posting & approval ──────────────────────────────────────────────────────


class TestPostJournal:
    def test_admin_posts_directly(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
    ) -> None:
        journal = _draft(db, admin_actor, company, accounts)
        result = journal_service.post_journal(
            db, admin_actor, company=company, journal_id=journal.id
        )

        assert result.requires_approval is False
        assert result.journal.status == JournalStatus.POSTED
        assert result.journal.posted_by == admin_actor.user_id

    def test_accountant_always_needs_approval(
        self,
        db: Session,
        accountant_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
    ) -> None:
        journal = _draft(db, accountant_actor, company, accounts, amount="10.00")
        result = journal_service.post_journal(
            db, accountant_actor, company=company, journal_id=journal.id
        )

        assert result.requires_approval is True
        assert result.journal.status == JournalStatus.PENDING_APPROVAL
        assert set(result.approver_roles) == {"admin", "manager"}

    def test_total_over_threshold_needs_approval(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
    ) -> None:
        journal = _draft(db, admin_actor, company, accounts, amount="75000.00")
        result = journal_service.post_journal(
            db, admin_actor, company=company, journal_id=journal.id
        )
        assert result.journal.status == JournalStatus.PENDING_APPROVAL

    def test_creator_cannot_approve_own_journal(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
    ) -> None:
        journal = _draft(db, admin_actor, company, accounts, amount="75000.00")
        journal_service.post_journal(db, admin_actor, company=company, journal_id=journal.id)

        with pytest.raises(PermissionDenied) as exc:
            journal_service.approve_journal(
                db, admin_actor, company=company, journal_id=journal.id
            )
        assert exc.value.code == "SOD_VIOLATION"

    def test_manager_approves_accountant_journal(
        self,
        db: Session,
        accountant_actor: Actor,
        manager_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
    ) -> None:
        journal = _draft(db, accountant_actor, company, accounts)
        journal_service.post_journal(
            db, accountant_actor, company=company, journal_id=journal.id
        )

        approved = journal_service.approve_journal(
            db, manager_actor, company=company, journal_id=journal.id
        )
        assert approved.status == JournalStatus.POSTED
        assert approved.approved_by == manager_actor.user_id

    def test_accountant_cannot_approve(
        self,
        db: Session,
        admin_actor: Actor,
        accountant_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
    ) -> None:
        journal = _draft(db, admin_actor, company, accounts, amount="75000.00")
        journal_service.post_journal(db, admin_actor, company=company, journal_id=journal.id)

        with pytest.raises(PermissionDenied) as exc:
            journal_service.approve_journal(
                db, accountant_actor, company=company, journal_id=journal.id
            )
        assert exc.value.code == "SOD_VIOLATION"

    def test_posted_journal_cannot_be_posted_again(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
    ) -> None:
        journal = _draft(db, admin_actor, company, accounts)
        journal_service.post_journal(db, admin_actor, company=company, journal_id=journal.id)
        with pytest.raises(ConflictError) as exc:
            journal_service.post_journal(
                db, admin_actor, company=company, journal_id=journal.id
            )
        assert exc.value.code == "INVALID_STATUS"


class TestReverseJournal:
    def test_reversal_mirrors_lines(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
    ) -> None:
        journal = _draft(db, admin_actor, company, accounts)
        journal_service.post_journal(db, admin_actor, company=company, journal_id=journal.id)

        reversal = journal_service.reverse_journal(
            db, admin_actor, company=company, journal_id=journal.id
        )

        assert journal.status == JournalStatus.REVERSED
        assert journal.reversed_by_id == reversal.id
        assert reversal.reversal_of_id == journal.id
        assert reversal.status == JournalStatus.POSTED
        rent = next(ln for ln in reversal.lines if ln.account_id == accounts["6100"].id)
        assert rent.credit == Decimal("1500.00")
        assert rent.debit == Decimal("0")

    def test_draft_cannot_be_reversed(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
    ) -> None:
        journal = _draft(db, admin_actor, company, accounts)
        with pytest.raises(PostingError) as exc:
            journal_service.reverse_journal(
                db, admin_actor, company=company, journal_id=journal.id
            )
        assert exc.value.code == "INVALID_STATUS"

    def test_future_reversal_date_rejected(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
    ) -> None:
        journal = _draft(db, admin_actor, company, accounts)
        journal_service.post_journal(db, admin_actor, company=company, journal_id=journal.id)

        with pytest.raises(PostingError) as exc:
            journal_service.reverse_journal(
                db,
                admin_actor,
                company=company,
                journal_id=journal.id,
                reversal_date=TODAY + timedelta(days=400),
            )
        assert exc.value.code == "FUTURE_DATE"
        assert journal.status == JournalStatus.POSTED
        assert journal.reversed_by_id is None

    def test_reversal_before_journal_date_rejected(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
    ) -> None:
        journal = _draft(
            db, admin_actor, company, accounts, journal_date=TODAY - timedelta(days=10)
        )
        journal_service.post_journal(db, admin_actor, company=company, journal_id=journal.id)

        with pytest.raises(PostingError) as exc:
            journal_service.reverse_journal(
                db,
                admin_actor,
                company=company,
                journal_id=journal.id,
                reversal_date=TODAY - timedelta(days=20),
            )
        assert exc.value.code == "INVALID_REVERSAL_DATE"

        reversal = journal_service.reverse_journal(
            db,
            admin_actor,
            company=company,
            journal_id=journal.id,
            reversal_date=journal.journal_date,
        )
        assert reversal.journal_date == journal.journal_date


# ─── API ─────────────────────────────────────────────────────────────────────


class TestJournalAPI:
    def _payload(self, accounts: dict[str, Account], amount: str = "250.00") -> dict:
        return {
            "journal_date": TODAY.isoformat(),
            "description": "Petty cash top-up",
            "lines": [
                {"account_id": str(accounts["1000"].id), "debit": amount, "credit": "0"},
                {"account_id": str(accounts["1100"].id), "debit": "0", "credit": amount},
            ],
        }

    def test_create_and_post(
        self,
        client: TestClient,
        admin_token: str,
        tenant: Tenant,
        company: Company,
        accounts: dict[str, Account],
    ) -> None:
        headers = auth(admin_token, tenant, company)
        resp = client.post("/api/v1/journals", json=self._payload(accounts), headers=headers)
        assert resp.status_code == 201, resp.text
        journal_id = resp.json()["id"]
        assert resp.json()["status"] == "draft"

        resp = client.post(f"/api/v1/journals/{journal_id}/post", headers=headers)
        assert resp.status_code == 200, resp.text
        assert resp.json()["requires_approval"] is False

    def test_unbalanced_returns_problem_json(
        self,
        client: TestClient,
        admin_token: str,
        tenant: Tenant,
        company: Company,
        accounts: dict[str, Account],
    ) -> None:
        payload = self._payload(accounts)
        payload["lines"][1]["credit"] = "200.00"
        resp = client.post(
            "/api/v1/journals", json=payload, headers=auth(admin_token, tenant, company)
        )
        assert resp.status_code == 422
        assert resp.headers["content-type"].startswith("application/problem+json")
        assert resp.json()["code"] == "VALIDATION_ERROR"

    def test_viewer_cannot_create(
        self,
        client: TestClient,
        viewer_token: str,
        tenant: Tenant,
        company: Company,
        accounts: dict[str, Account],
    ) -> None:
        resp = client.post(
            "/api/v1/journals",
            json=self._payload(accounts),
            headers=auth(viewer_token, tenant, company),
        )
        assert resp.status_code == 403
        assert resp.json()["code"] == "PERMISSION_DENIED"

    def test_list_filters_by_status(
        self,
        client: TestClient,
        admin_token: str,
        tenant: Tenant,
        company: Company,
        accounts: dict[str, Account],
    ) -> None:
        headers = auth(admin_token, tenant, company)
        client.post("/api/v1/journals", json=self._payload(accounts), headers=headers)
        client.post("/api/v1/journals", json=self._payload(accounts, "80.00"), headers=headers)

        resp = client.get("/api/v1/journals", params={"status": "draft"}, headers=headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["meta"]["total"] == 2
        assert all(j["status"] == "draft" for j in body["data"])
