"""Tests for financial statements, aging and report exports."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from aibos.app.core.errors import ValidationFailed
from aibos.app.models.account import Account
from aibos.app.models.audit import AuditLog
from aibos.app.models.customer import Customer
from aibos.app.models.supplier import Supplier
from aibos.app.models.tenant import Company, Tenant
from aibos.app.schemas.bills import BillLineIn
from aibos.app.schemas.invoices import InvoiceLineIn
from aibos.app.services import aging as aging_service
from aibos.app.services import bills as bill_service
from aibos.app.services import invoices as invoice_service
from aibos.app.services import journals as journal_service
from aibos.app.services import reports as report_service
from aibos.app.services.aging import bucket
from aibos.app.services.audit import Actor
from aibos.app.services.exports import export_report
from aibos.app.services.posting import LineInput
from aibos.tests.conftest import auth

TODAY = date.today()
MONTH_START = TODAY.replace(day=1)


def _post(
    db: Session,
    actor: Actor,
    company: Company,
    debit: Account,
    credit: Account,
    amount: str,
    description: str,
) -> None:
    journal = journal_service.create_journal(
        db,
        actor,
        company=company,
        journal_date=TODAY,
        description=description,
        lines=[
            LineInput(account_id=debit.id, debit=Decimal(amount)),
            LineInput(account_id=credit.id, credit=Decimal(amount)),
        ],
    )
    journal_service.post_journal(db, actor, company=company, journal_id=journal.id)


@pytest.fixture()
def ledger(
    db: Session,
    admin_actor: Actor,
    company: Company,
    customer: Customer,
    accounts: dict[str, Account],
) -> None:
    """Capital injection, one credit sale and a utilities bill paid in cash."""
    _post(db, admin_actor, company, accounts["1100"], accounts["3000"], "10000", "Capital")
    invoice = invoice_service.create_invoice(
        db,
        admin_actor,
        company=company,
        customer_id=customer.id,
        invoice_date=TODAY,
        lines=[
            InvoiceLineIn(
                description="Consulting",
                quantity=Decimal("1"),
                unit_price=Decimal("2000"),
                revenue_account_id=accounts["4100"].id,
            )
        ],
    )
    invoice_service.post_invoice(db, admin_actor, company=company, invoice_id=invoice.id)
    _post(db, admin_actor, company, accounts["6200"], accounts["1000"], "320", "Electricity")


class TestTrialBalance:
    def test_balanced_with_activity(
        self, db: Session, company: Company, ledger: None
    ) -> None:
        report = report_service.trial_balance(db, company, as_of=TODAY)

        assert report["is_balanced"] is True
        assert report["total_debit"] == report["total_credit"]
        by_code = {r["account_code"]: r for r in report["accounts"]}
        assert set(by_code) == {"1000", "1100", "1200", "3000", "4100", "6200"}
        assert by_code["1000"]["closing_balance"] == Decimal("-320")
        assert by_code["1000"]["credit_balance"] == Decimal("320")
        assert by_code["4100"]["period_credit"] == Decimal("2000")
        assert report["net_income"] == Decimal("1680")

    def test_include_zero_lists_every_account(
        self, db: Session, company: Company, accounts: dict[str, Account]
    ) -> None:
        report = report_service.trial_balance(db, company, as_of=TODAY, include_zero=True)
        assert len(report["accounts"]) == len(accounts)
        assert report["total_debit"] == Decimal("0")

    def test_future_date_rejected(self, db: Session, company: Company) -> None:
        with pytest.raises(ValidationFailed) as exc:
            report_service.trial_balance(db, company, as_of=TODAY + timedelta(days=1))
        assert exc.value.code == "FUTURE_DATE"


class TestStatements:
    def test_balance_sheet_folds_profit_into_equity(
        self, db: Session, company: Company, ledger: None
    ) -> None:
        report = report_service.balance_sheet(db, company, as_of=TODAY)

        assert report["total_assets"] == Decimal("11680")
        assert report["total_liabilities"] == Decimal("0")
        assert report["current_year_earnings"] == Decimal("1680")
        assert report["total_equity"] == Decimal("11680")
        assert report["is_balanced"] is True

    def test_profit_loss_margins(
        self, db: Session, company: Company, ledger: None
    ) -> None:
        report = report_service.profit_loss(
            db, company, date_from=MONTH_START, date_to=TODAY
        )

        assert report["total_revenue"] == Decimal("2000")
        assert report["sections"]["OPERATING_EXPENSE"]["total"] == Decimal("320")
        assert report["net_income"] == Decimal("1680")
        assert report["gross_margin"] == Decimal("100.00")
        assert report["net_margin"] == Decimal("84.00")

    def test_profit_loss_comparison(
        self, db: Session, company: Company, ledger: None
    ) -> None:
        earlier = MONTH_START - timedelta(days=1)
        report = report_service.profit_loss(
            db,
            company,
            date_from=MONTH_START,
            date_to=TODAY,
            compare_from=earlier.replace(day=1),
            compare_to=earlier,
        )
        assert report["comparative"]["net_income"] == Decimal("0")
        assert report["variances"]["net_income"]["variance"] == Decimal("1680")

    def test_inverted_range_rejected(self, db: Session, company: Company) -> None:
        with pytest.raises(ValidationFailed) as exc:
            report_service.profit_loss(
                db, company, date_from=TODAY, date_to=TODAY - timedelta(days=1)
            )
        assert exc.value.code == "INVALID_DATE_RANGE"


class TestCashFlow:
    def test_indirect_method_reconciles_to_cash(
        self, db: Session, company: Company, ledger: None
    ) -> None:
        report = report_service.cash_flow(db, company, date_from=MONTH_START, date_to=TODAY)

        assert report["net_income"] == Decimal("1680")
        # The unpaid invoice raised receivables without bringing in cash.
        assert report["operating"]["items"] == [
            {
                "account_code": "1200",
                "account_name": "Accounts Receivable",
                "amount": Decimal("-2000"),
            }
        ]
        assert report["operating"]["total"] == Decimal("-320")
        assert report["investing"]["total"] == Decimal("0")
        assert report["financing"]["total"] == Decimal("10000")
        assert report["net_change"] == Decimal("9680")
        assert report["opening_cash"] == Decimal("0")
        assert report["closing_cash"] == Decimal("9680")
        assert report["is_reconciled"] is True

    def test_investing_and_financing_sections(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
        ledger: None,
    ) -> None:
        _post(db, admin_actor, company, accounts["1500"], accounts["1100"], "4000", "Laptops")
        _post(db, admin_actor, company, accounts["1100"], accounts["2500"], "5000", "Bank loan")

        report = report_service.cash_flow(db, company, date_from=MONTH_START, date_to=TODAY)

        assert report["investing"]["items"] == [
            {
                "account_code": "1500",
                "account_name": "Office Equipment",
                "amount": Decimal("-4000"),
            }
        ]
        financing = {i["account_code"]: i["amount"] for i in report["financing"]["items"]}
        assert financing == {"2500": Decimal("5000"), "3000": Decimal("10000")}
        assert report["net_change"] == Decimal("10680")
        assert report["closing_cash"] == Decimal("10680")
        assert report["is_reconciled"] is True

    def test_quiet_period_has_no_movement(
        self, db: Session, company: Company, ledger: None
    ) -> None:
        before = MONTH_START - timedelta(days=1)
        report = report_service.cash_flow(
            db, company, date_from=before.replace(day=1), date_to=before
        )
        assert report["net_change"] == Decimal("0")
        assert report["operating"]["items"] == []
        assert report["is_reconciled"] is True

    def test_future_end_rejected(self, db: Session, company: Company) -> None:
        with pytest.raises(ValidationFailed) as exc:
            report_service.cash_flow(
                db, company, date_from=MONTH_START, date_to=TODAY + timedelta(days=1)
            )
        assert exc.value.code == "FUTURE_DATE"

class TestAging:
    @pytest.mark.parametrize(
        ("days", "expected"),
        [(0, "current"), (30, "current"), (31, "days_31_60"), (90, "days_61_90"), (91, "over_90")],
    )
    def test_bucket_edges(self, days: int, expected: str) -> None:
        assert bucket(days) == expected

    def test_ar_aging_for_new_invoice(
        self, db: Session, company: Company, customer: Customer, ledger: None
    ) -> None:
        report = aging_service.ar_aging(db, company.id, as_of=TODAY)

        assert report["kpi"]["total_receivable"] == Decimal("2000")
        assert report["kpi"]["total_overdue"] == Decimal("0")
        [row] = report["parties"]
        assert row["name"] == customer.name
        assert row["current"] == Decimal("2000")
        assert row["document_count"] == 1

    def test_ar_aging_buckets_overdue_invoice(
        self, db: Session, company: Company, ledger: None
    ) -> None:
        as_of = TODAY + timedelta(days=75)
        report = aging_service.ar_aging(db, company.id, as_of=as_of, today=as_of)
        # NET_30 due date puts the invoice 45 days past due.
        assert report["totals"]["days_31_60"] == Decimal("2000")
        assert report["kpi"]["total_overdue"] == Decimal("2000")

    def test_ap_aging_buckets_open_bills(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        supplier: Supplier,
        accounts: dict[str, Account],
    ) -> None:
        bill = bill_service.create_bill(
            db,
            admin_actor,
            company=company,
            supplier_id=supplier.id,
            bill_number="KOS-2040",
            bill_date=TODAY,
            lines=[
                BillLineIn(
                    description="Courier",
                    quantity=Decimal("2"),
                    unit_price=Decimal("150"),
                    expense_account_id=accounts["6300"].id,
                )
            ],
        )
        bill_service.post_bill(db, admin_actor, company=company, bill_id=bill.id)

        current = aging_service.ap_aging(db, company.id, as_of=TODAY)
        assert current["kpi"] == {"total_payable": Decimal("300"), "total_overdue": Decimal("0")}
        [row] = current["parties"]
        assert row["name"] == supplier.name
        assert row["current"] == Decimal("300")
        assert row["document_count"] == 1

        as_of = TODAY + timedelta(days=130)
        late = aging_service.ap_aging(db, company.id, as_of=as_of, today=as_of)
        assert late["totals"]["over_90"] == Decimal("300")
        assert late["totals"]["total"] == Decimal("300")
        assert late["kpi"]["total_overdue"] == Decimal("300")

    def test_ap_aging_ignores_draft_bills(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        supplier: Supplier,
        accounts: dict[str, Account],
    ) -> None:
        bill_service.create_bill(
            db,
            admin_actor,
            company=company,
            supplier_id=supplier.id,
            bill_number="KOS-2041",
            bill_date=TODAY,
            lines=[
                BillLineIn(
                    description="Stationery",
                    quantity=Decimal("1"),
                    unit_price=Decimal("80"),
                    expense_account_id=accounts["6300"].id,
                )
            ],
        )
        report = aging_service.ap_aging(db, company.id, as_of=TODAY)
        assert report["parties"] == []
        assert report["totals"]["total"] == Decimal("0")


class TestExports:
    @pytest.mark.parametrize(
        ("fmt", "magic"), [("csv", b"Trial Balance"), ("xlsx", b"PK"), ("pdf", b"%PDF")]
    )
    def test_trial_balance_formats(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        ledger: None,
        fmt: str,
        magic: bytes,
    ) -> None:
        exported = export_report(
            db,
            admin_actor,
            company=company,
            report="trial-balance",
            fmt=fmt,
            params={"as_of": TODAY},
        )
        assert exported.content.startswith(magic)
        assert exported.filename == f"trial-balance-ACME-{TODAY}.{fmt}"
        log = db.query(AuditLog).filter(AuditLog.action == "REPORT_EXPORTED").one()
        assert log.entity_id == "trial-balance"

    def test_range_report_needs_dates(
        self, db: Session, admin_actor: Actor, company: Company
    ) -> None:
        with pytest.raises(ValidationFailed) as exc:
            export_report(
                db,
                admin_actor,
                company=company,
                report="profit-loss",
                fmt="csv",
                params={"as_of": TODAY},
            )
        assert exc.value.code == "MISSING_PARAMETERS"

    def test_reason_required_by_policy(
        self, db: Session, admin_actor: Actor, company: Company
    ) -> None:
        company.policy_settings = {**(company.policy_settings or {}), "export_requires_reason": True}
        with pytest.raises(ValidationFailed) as exc:
            export_report(
                db,
                admin_actor,
                company=company,
                report="balance-sheet",
                fmt="csv",
                params={"as_of": TODAY},
            )
        assert exc.value.code == "EXPORT_REASON_REQUIRED"


class TestReportAPI:
    def test_trial_balance_endpoint(
        self,
        client: TestClient,
        viewer_token: str,
        tenant: Tenant,
        company: Company,
        ledger: None,
    ) -> None:
        resp = client.get(
            "/api/v1/reports/trial-balance",
            params={"as_of": TODAY.isoformat()},
            headers=auth(viewer_token, tenant, company),
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["is_balanced"] is True

    def test_export_download(
        self,
        client: TestClient,
        accountant_token: str,
        tenant: Tenant,
        company: Company,
        ledger: None,
    ) -> None:
        resp = client.get(
            "/api/v1/reports/ar-aging/export",
            params={"format": "csv", "as_of": TODAY.isoformat()},
            headers=auth(accountant_token, tenant, company),
        )
        assert resp.status_code == 200, resp.text
        assert resp.headers["content-type"].startswith("text/csv")
        assert "attachment;" in resp.headers["content-disposition"]
        assert "Accounts Receivable Aging" in resp.text

    def test_viewer_cannot_export(
        self,
        client: TestClient,
        viewer_token: str,
        tenant: Tenant,
        company: Company,
    ) -> None:
        resp = client.get(
            "/api/v1/reports/trial-balance/export",
            params={"as_of": TODAY.isoformat()},
            headers=auth(viewer_token, tenant, company),
        )
        assert resp.status_code == 403

    def test_unsupported_format_is_422(
        self,
        client: TestClient,
        admin_token: str,
        tenant: Tenant,
        company: Company,
    ) -> None:
        resp = client.get(
            "/api/v1/reports/trial-balance/export",
            params={"format": "docx", "as_of": TODAY.isoformat()},
            headers=auth(admin_token, tenant, company),
        )
        assert resp.status_code == 422
