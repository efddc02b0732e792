"""Tests for bank statement import and reconciliation matching."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from aibos.app.core.errors import ConflictError, ValidationFailed
from aibos.app.models.account import Account
from aibos.app.models.banking import BankAccount, BankTransaction
from aibos.app.models.customer import Customer
from aibos.app.models.invoice import Invoice
from aibos.app.models.payment import Payment, PaymentMethod, PaymentType
from aibos.app.models.tenant import Company, Tenant
from aibos.app.schemas.invoices import InvoiceLineIn
from aibos.app.services import banking as banking_service
from aibos.app.services import invoices as invoice_service
from aibos.app.services import payments as payment_service
from aibos.app.services.audit import Actor
from aibos.app.services.banking import detect_format, parse_amount
from aibos.app.services.payments import AllocationInput, PaymentRequest
from aibos.tests.conftest import auth

TODAY = date.today()
HEADER = "date,description,reference,debit,credit,balance\n"


def _csv(*rows: str) -> bytes:
    return (HEADER + "\n".join(rows) + "\n").encode("utf-8")


@pytest.fixture()
def receipt(
    db: Session,
    admin_actor: Actor,
    company: Company,
    customer: Customer,
    bank_account: BankAccount,
    accounts: dict[str, Account],
) -> Payment:
    invoice: Invoice = invoice_service.create_invoice(
        db,
        admin_actor,
        company=company,
        customer_id=customer.id,
        invoice_date=TODAY,
        lines=[
            InvoiceLineIn(
                description="Quarterly support",
                quantity=Decimal("1"),
                unit_price=Decimal("1500"),
                revenue_account_id=accounts["4100"].id,
            )
        ],
    )
    invoice_service.post_invoice(db, admin_actor, company=company, invoice_id=invoice.id)
    result = payment_service.process_payment(
        db,
        admin_actor,
        company=company,
        request=PaymentRequest(
            payment_type=PaymentType.INVOICE,
            payment_date=TODAY,
            payment_method=PaymentMethod.BANK_TRANSFER,
            bank_account_id=bank_account.id,
            amount=Decimal("1500"),
            customer_id=customer.id,
            reference="IBG-552019",
            description="Borneo Retail quarterly support",
            allocations=[AllocationInput(invoice.id, Decimal("1500"))],
        ),
    )
    return result.payment


def _import(
    db: Session, actor: Actor, company: Company, bank_account: BankAccount, content: bytes
) -> banking_service.ImportResult:
    return banking_service.import_statement(
        db,
        actor,
        company_id=company.id,
        bank_account_id=bank_account.id,
        content=content,
        today=TODAY,
    )


class TestParsing:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("1,234.50", Decimal("1234.50")),
            ("(20.00)", Decimal("-20.00")),
            ("RM 99.90", Decimal("99.90")),
            ("", None),
        ],
    )
    def test_parse_amount(self, raw: str, expected: Decimal | None) -> None:
        assert parse_amount(raw) == expected

    def test_detects_bank_formats(self) -> None:
        assert detect_format(["date", "description", "debit", "credit"]) == "standard"
        assert (
            detect_format(["Transaction Date", "Description", "Amount", "Dr/Cr", "Balance"])
            == "cimb"
        )
        assert (
            detect_format(["Date", "Transaction Details", "Withdrawal", "Deposit"])
            == "public_bank"
        )

    def test_unknown_headers_rejected(self) -> None:
        with pytest.raises(ValidationFailed) as exc:
            detect_format(["when", "what", "how much"])
        assert exc.value.code == "UNKNOWN_STATEMENT_FORMAT"


class TestImportStatement:
    def test_imports_standard_csv(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        bank_account: BankAccount,
    ) -> None:
        result = _import(
            db,
            admin_actor,
            company,
            bank_account,
            _csv(
                f"{TODAY.isoformat()},Transfer from Borneo Retail,IBG-552019,,1500.00,8500.00",
                f"{TODAY.isoformat()},Service charge,,2.50,,8497.50",
            ),
        )

        assert result.format == "standard"
        assert result.imported == 2
        assert result.errors == []
        rows = db.query(BankTransaction).order_by(BankTransaction.description).all()
        assert rows[0].debit_amount == Decimal("2.50")
        assert rows[1].credit_amount == Decimal("1500.00")
        assert {r.import_batch_id for r in rows} == {result.batch_id}

    def test_reimport_skips_duplicates(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        bank_account: BankAccount,
    ) -> None:
        content = _csv(f"{TODAY.isoformat()},Transfer in,REF1,,100.00,")
        _import(db, admin_actor, company, bank_account, content)

        again = _import(db, admin_actor, company, bank_account, content)

        assert again.imported == 0
        assert again.skipped == 1
        assert db.query(BankTransaction).count() == 1

    def test_bad_rows_reported_and_good_rows_kept(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        bank_account: BankAccount,
    ) -> None:
        result = _import(
            db,
            admin_actor,
            company,
            bank_account,
            _csv(
                "31/02/2025,Bad date,,10.00,,",
                f"{TODAY.isoformat()},,,10.00,,",
                f"{TODAY.isoformat()},Both sides,,10.00,5.00,",
                f"{TODAY.isoformat()},Cash deposit,,,250.00,",
            ),
        )

        assert result.imported == 1
        assert result.errors == [
            "Row 2: Invalid date '31/02/2025'",
            "Row 3: Missing description",
            "Row 4: Row has both a debit and a credit",
        ]

    def test_warns_on_old_and_future_dates(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        bank_account: BankAccount,
    ) -> None:
        result = _import(
            db,
            admin_actor,
            company,
            bank_account,
            _csv(
                f"{(TODAY + timedelta(days=3)).isoformat()},Post-dated cheque,,,40.00,",
                f"{(TODAY - timedelta(days=800)).isoformat()},Ancient fee,,1.00,,",
            ),
        )
        assert result.imported == 2
        assert "Row 2: Transaction date is in the future" in result.warnings
        assert "Row 3: Transaction is more than two years old" in result.warnings

    def test_empty_file_rejected(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        bank_account: BankAccount,
    ) -> None:
        with pytest.raises(ValidationFailed) as exc:
            _import(db, admin_actor, company, bank_account, b"   ")
        assert exc.value.code == "EMPTY_FILE"


class TestMatching:
    def test_auto_match_applies_exact_receipt(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        bank_account: BankAccount,
        receipt: Payment,
    ) -> None:
        _import(
            db,
            admin_actor,
            company,
            bank_account,
            _csv(
                f"{TODAY.isoformat()},Borneo Retail quarterly support,IBG-552019,,1500.00,",
                f"{TODAY.isoformat()},Unrelated deposit,,,77.00,",
            ),
        )

        summary = banking_service.auto_match(
            db, admin_actor, company_id=company.id, bank_account_id=bank_account.id
        )

        assert summary["total_transactions"] == 2
        assert summary["matched_count"] == 1
        assert summary["unmatched_count"] == 1
        assert summary["matched"][0]["payment_id"] == receipt.id
        assert summary["matched"][0]["confidence"] >= 90
        assert receipt.is_reconciled is True

    def test_manual_match_and_unmatch(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        bank_account: BankAccount,
        receipt: Payment,
    ) -> None:
        _import(
            db,
            admin_actor,
            company,
            bank_account,
            _csv(f"{TODAY.isoformat()},Deposit,,,1400.00,"),
        )
        txn = db.query(BankTransaction).one()

        matched, warnings = banking_service.match_transaction(
            db, admin_actor, company_id=company.id, transaction_id=txn.id, payment_id=receipt.id
        )
        assert matched.is_matched is True
        assert matched.matched_payment_id == receipt.id
        assert warnings == []

        with pytest.raises(ConflictError) as exc:
            banking_service.match_transaction(
                db,
                admin_actor,
                company_id=company.id,
                transaction_id=txn.id,
                payment_id=receipt.id,
            )
        assert exc.value.code == "ALREADY_MATCHED"

        banking_service.unmatch_transaction(
            db, admin_actor, company_id=company.id, transaction_id=txn.id
        )
        assert txn.is_matched is False
        assert receipt.is_reconciled is False

    def test_withdrawal_cannot_match_receipt(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        bank_account: BankAccount,
        receipt: Payment,
    ) -> None:
        _import(
            db,
            admin_actor,
            company,
            bank_account,
            _csv(f"{TODAY.isoformat()},Cheque 0042,,1500.00,,"),
        )
        txn = db.query(BankTransaction).one()

        with pytest.raises(ValidationFailed) as exc:
            banking_service.match_transaction(
                db,
                admin_actor,
                company_id=company.id,
                transaction_id=txn.id,
                payment_id=receipt.id,
            )
        assert exc.value.code == "INVALID_MATCH"
        assert "Transaction direction does not match the payment type" in exc.value.errors

    def test_unmatch_of_unmatched_rejected(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        bank_account: BankAccount,
    ) -> None:
        _import(
            db, admin_actor, company, bank_account, _csv(f"{TODAY.isoformat()},Fee,,3.00,,")
        )
        txn = db.query(BankTransaction).one()
        with pytest.raises(ConflictError) as exc:
            banking_service.unmatch_transaction(
                db, admin_actor, company_id=company.id, transaction_id=txn.id
            )
        assert exc.value.code == "NOT_MATCHED"


class TestBankingAPI:
    def test_upload_statement(
        self,
        client: TestClient,
        accountant_token: str,
        tenant: Tenant,
        company: Company,
        bank_account: BankAccount,
    ) -> None:
        resp = client.post(
            f"/api/v1/bank-accounts/{bank_account.id}/import",
            files={
                "file": (
                    "statement.csv",
                    _csv(f"{TODAY.isoformat()},Deposit,,,120.00,"),
                    "text/csv",
                )
            },
            headers=auth(accountant_token, tenant, company),
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["imported"] == 1

        listing = client.get(
            f"/api/v1/bank-accounts/{bank_account.id}/transactions",
            params={"is_matched": "false"},
            headers=auth(accountant_token, tenant, company),
        )
        assert listing.json()["meta"]["total"] == 1

    def test_clerk_cannot_import(
        self,
        client: TestClient,
        clerk_token: str,
        tenant: Tenant,
        company: Company,
        bank_account: BankAccount,
    ) -> None:
        resp = client.post(
            f"/api/v1/bank-accounts/{bank_account.id}/import",
            files={"file": ("s.csv", _csv(f"{TODAY.isoformat()},x,,,1.00,"), "text/csv")},
            headers=auth(clerk_token, tenant, company),
        )
        assert resp.status_code == 403

    def test_bank_account_needs_cash_gl(
        self,
        client: TestClient,
        admin_token: str,
        tenant: Tenant,
        company: Company,
        accounts: dict[str, Account],
    ) -> None:
        resp = client.post(
            "/api/v1/bank-accounts",
            json={
                "name": "Wrong",
                "account_number": "000-111",
                "gl_account_id": str(accounts["6100"].id),
            },
            headers=auth(admin_token, tenant, company),
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_GL_ACCOUNT"
