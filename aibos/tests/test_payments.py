"""Tests for payments and receipts: allocation, settlement, voiding, idempotency."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from aibos.app.core.errors import ConflictError, PermissionDenied, ValidationFailed
from aibos.app.models.account import Account
from aibos.app.models.banking import BankAccount
from aibos.app.models.bill import Bill, BillStatus
from aibos.app.models.customer import Customer
from aibos.app.models.invoice import Invoice, InvoiceStatus
from aibos.app.models.journal import Journal, JournalStatus
from aibos.app.models.payment import PaymentMethod, PaymentStatus, PaymentType
from aibos.app.models.supplier import Supplier
from aibos.app.models.tenant import Company, Tenant
from aibos.app.schemas.bills import BillLineIn
from aibos.app.schemas.invoices import InvoiceLineIn
from aibos.app.services import bills as bill_service
from aibos.app.services import invoices as invoice_service
from aibos.app.services import payments as payment_service
from aibos.app.services.audit import Actor
from aibos.app.services.payments import AllocationInput, PaymentRequest, validate_payment
from aibos.tests.conftest import auth

TODAY = date.today()


@pytest.fixture()
def sent_invoice(
    db: Session,
    admin_actor: Actor,
    company: Company,
    customer: Customer,
    accounts: dict[str, Account],
) -> Invoice:
    invoice = invoice_service.create_invoice(
        db,
        admin_actor,
        company=company,
        customer_id=customer.id,
        invoice_date=TODAY,
        lines=[
            InvoiceLineIn(
                description="Website retainer",
                quantity=Decimal("1"),
                unit_price=Decimal("2000"),
                revenue_account_id=accounts["4100"].id,
            )
        ],
    )
    return invoice_service.post_invoice(db, admin_actor, company=company, invoice_id=invoice.id)


@pytest.fixture()
def posted_bill(
    db: Session,
    admin_actor: Actor,
    company: Company,
    supplier: Supplier,
    accounts: dict[str, Account],
) -> Bill:
    bill = bill_service.create_bill(
        db,
        admin_actor,
        company=company,
        supplier_id=supplier.id,
        bill_number="KOS-1001",
        bill_date=TODAY,
        lines=[
            BillLineIn(
                description="Toner",
                quantity=Decimal("4"),
                unit_price=Decimal("125"),
                expense_account_id=accounts["6300"].id,
            )
        ],
    )
    return bill_service.post_bill(db, admin_actor, company=company, bill_id=bill.id)


def _receipt(
    customer: Customer,
    bank_account: BankAccount,
    invoice: Invoice,
    amount: str,
    allocated: str | None = None,
) -> PaymentRequest:
    return PaymentRequest(
        payment_type=PaymentType.INVOICE,
        payment_date=TODAY,
        payment_method=PaymentMethod.BANK_TRANSFER,
        bank_account_id=bank_account.id,
        amount=Decimal(amount),
        customer_id=customer.id,
        reference="IBG-552019",
        allocations=[AllocationInput(invoice.id, Decimal(allocated or amount))],
    )


class TestValidatePayment:
    def test_collects_every_error(self, bank_account: BankAccount) -> None:
        request = PaymentRequest(
            payment_type=PaymentType.BILL,
            payment_date=TODAY + timedelta(days=2),
            payment_method="BARTER",
            bank_account_id=bank_account.id,
            amount=Decimal("100"),
            currency="myr",
            allocations=[],
        )
        result = validate_payment(request, control_account_id=None)

        assert not result.is_valid
        assert "Payment date cannot be in the future" in result.errors
        assert "Currency must be a 3-letter ISO code" in result.errors
        assert "Invalid payment method: BARTER" in result.errors
        assert "At least one allocation is required" in result.errors
        assert "Supplier is required for bill payments" in result.errors

    def test_allocations_must_equal_amount(
        self,
        customer: Customer,
        bank_account: BankAccount,
        sent_invoice: Invoice,
        accounts: dict[str, Account],
    ) -> None:
        request = _receipt(customer, bank_account, sent_invoice, "500", allocated="450")
        result = validate_payment(request, control_account_id=accounts["1200"].id)
        assert any("must equal the payment amount" in e for e in result.errors)


class TestProcessPayment:
    def test_full_receipt_settles_invoice(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        customer: Customer,
        bank_account: BankAccount,
        sent_invoice: Invoice,
        accounts: dict[str, Account],
    ) -> None:
        result = payment_service.process_payment(
            db,
            admin_actor,
            company=company,
            request=_receipt(customer, bank_account, sent_invoice, "2000"),
        )

        payment = result.payment
        assert result.warnings == []
        assert payment.payment_number == f"REC-ACME-{TODAY.year}-000001"
        assert payment.amount == Decimal("2000")
        assert sent_invoice.status == InvoiceStatus.PAID
        assert sent_invoice.balance_amount == Decimal("0")

        journal = db.get(Journal, payment.journal_id)
        by_account = {ln.account_id: ln for ln in journal.lines}
        assert by_account[accounts["1100"].id].debit == Decimal("2000")
        assert by_account[accounts["1200"].id].credit == Decimal("2000")

    def test_partial_receipt_leaves_balance(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        customer: Customer,
        bank_account: BankAccount,
        sent_invoice: Invoice,
    ) -> None:
        payment_service.process_payment(
            db,
            admin_actor,
            company=company,
            request=_receipt(customer, bank_account, sent_invoice, "750"),
        )
        assert sent_invoice.status == InvoiceStatus.SENT
        assert sent_invoice.paid_amount == Decimal("750")
        assert sent_invoice.balance_amount == Decimal("1250")

    def test_over_allocation_capped_with_warning(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        customer: Customer,
        bank_account: BankAccount,
        sent_invoice: Invoice,
    ) -> None:
        result = payment_service.process_payment(
            db,
            admin_actor,
            company=company,
            request=_receipt(customer, bank_account, sent_invoice, "2500"),
        )

        assert len(result.warnings) == 1
        assert "capped at the outstanding balance" in result.warnings[0]
        assert result.payment.amount == Decimal("2000")
        assert sent_invoice.status == InvoiceStatus.PAID

    def test_split_allocations_to_one_invoice_share_its_balance(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        customer: Customer,
        bank_account: BankAccount,
        accounts: dict[str, Account],
        sent_invoice: Invoice,
    ) -> None:
        request = _receipt(customer, bank_account, sent_invoice, "3000")
        request.allocations = [
            AllocationInput(sent_invoice.id, Decimal("1500")),
            AllocationInput(sent_invoice.id, Decimal("1500")),
        ]

        result = payment_service.process_payment(
            db, admin_actor, company=company, request=request
        )

        assert len(result.warnings) == 1
        assert "exceeds outstanding 500" in result.warnings[0]
        assert result.payment.amount == Decimal("2000")
        assert [a.allocated_amount for a in result.payment.allocations] == [
            Decimal("1500"),
            Decimal("500"),
        ]
        assert sent_invoice.paid_amount == sent_invoice.total_amount
        assert sent_invoice.balance_amount == Decimal("0")
        journal = db.get(Journal, result.payment.journal_id)
        receivable = [ln for ln in journal.lines if ln.account_id == accounts["1200"].id]
        assert sum(ln.credit for ln in receivable) == Decimal("2000")

    def test_bill_payment(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        supplier: Supplier,
        bank_account: BankAccount,
        posted_bill: Bill,
        accounts: dict[str, Account],
    ) -> None:
        result = payment_service.process_payment(
            db,
            admin_actor,
            company=company,
            request=PaymentRequest(
                payment_type=PaymentType.BILL,
                payment_date=TODAY,
                payment_method=PaymentMethod.CHECK,
                bank_account_id=bank_account.id,
                amount=Decimal("500"),
                supplier_id=supplier.id,
                allocations=[AllocationInput(posted_bill.id, Decimal("500"))],
            ),
        )
        assert result.payment.payment_number.startswith("PAY-ACME-")
        assert posted_bill.status == BillStatus.PAID
        journal = db.get(Journal, result.payment.journal_id)
        by_account = {ln.account_id: ln for ln in journal.lines}
        assert by_account[accounts["2000"].id].debit == Decimal("500")
        assert by_account[accounts["1100"].id].credit == Decimal("500")

    def test_allocation_to_other_customers_invoice_rejected(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        supplier: Supplier,
        bank_account: BankAccount,
        sent_invoice: Invoice,
    ) -> None:
        with pytest.raises(ValidationFailed) as exc:
            payment_service.process_payment(
                db,
                admin_actor,
                company=company,
                request=PaymentRequest(
                    payment_type=PaymentType.BILL,
                    payment_date=TODAY,
                    payment_method=PaymentMethod.CHECK,
                    bank_account_id=bank_account.id,
                    amount=Decimal("100"),
                    supplier_id=supplier.id,
                    allocations=[AllocationInput(sent_invoice.id, Decimal("100"))],
                ),
            )
        assert exc.value.code == "ALLOCATION_VALIDATION_FAILED"

    def test_accountant_blocked_above_large_payment_limit(
        self,
        db: Session,
        accountant_actor: Actor,
        company: Company,
        customer: Customer,
        bank_account: BankAccount,
        sent_invoice: Invoice,
    ) -> None:
        with pytest.raises(PermissionDenied) as exc:
            payment_service.process_payment(
                db,
                accountant_actor,
                company=company,
                request=_receipt(customer, bank_account, sent_invoice, "150000"),
            )
        assert exc.value.code == "ACCESS_DENIED"


class TestVoidPayment:
    def test_void_restores_invoice_balance(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        customer: Customer,
        bank_account: BankAccount,
        sent_invoice: Invoice,
    ) -> None:
        result = payment_service.process_payment(
            db,
            admin_actor,
            company=company,
            request=_receipt(customer, bank_account, sent_invoice, "2000"),
        )

        payment = payment_service.void_payment(
            db, admin_actor, company=company, payment_id=result.payment.id, reason="Bounced"
        )

        assert payment.status == PaymentStatus.VOIDED
        assert sent_invoice.status == InvoiceStatus.SENT
        assert sent_invoice.balance_amount == Decimal("2000")
        assert db.get(Journal, payment.journal_id).status == JournalStatus.REVERSED

    def test_void_twice_rejected(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        customer: Customer,
        bank_account: BankAccount,
        sent_invoice: Invoice,
    ) -> None:
        result = payment_service.process_payment(
            db,
            admin_actor,
            company=company,
            request=_receipt(customer, bank_account, sent_invoice, "100"),
        )
        payment_service.void_payment(db, admin_actor, company=company, payment_id=result.payment.id)
        with pytest.raises(ConflictError) as exc:
            payment_service.void_payment(
                db, admin_actor, company=company, payment_id=result.payment.id
            )
        assert exc.value.code == "INVALID_STATUS"

    def test_reconciled_payment_cannot_be_voided(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        customer: Customer,
        bank_account: BankAccount,
        sent_invoice: Invoice,
    ) -> None:
        result = payment_service.process_payment(
            db,
            admin_actor,
            company=company,
            request=_receipt(customer, bank_account, sent_invoice, "100"),
        )
        result.payment.is_reconciled = True
        with pytest.raises(ConflictError) as exc:
            payment_service.void_payment(
                db, admin_actor, company=company, payment_id=result.payment.id
            )
        assert exc.value.code == "PAYMENT_RECONCILED"


class TestPaymentAPI:
    def _payload(
        self, customer: Customer, bank_account: BankAccount, invoice: Invoice, amount: str
    ) -> dict:
        return {
            "payment_type": "INVOICE",
            "payment_date": TODAY.isoformat(),
            "payment_method": "BANK_TRANSFER",
            "bank_account_id": str(bank_account.id),
            "amount": amount,
            "customer_id": str(customer.id),
            "allocations": [{"document_id": str(invoice.id), "amount": amount}],
        }

    def test_idempotent_retry_returns_same_payment(
        self,
        client: TestClient,
        admin_token: str,
        tenant: Tenant,
        company: Company,
        customer: Customer,
        bank_account: BankAccount,
        sent_invoice: Invoice,
    ) -> None:
        headers = {**auth(admin_token, tenant, company), "Idempotency-Key": "rcpt-0001"}
        payload = self._payload(customer, bank_account, sent_invoice, "600")

        first = client.post("/api/v1/payments", json=payload, headers=headers)
        assert first.status_code == 201, first.text
        second = client.post("/api/v1/payments", json=payload, headers=headers)

        assert second.status_code == 201
        assert second.headers["Idempotent-Replayed"] == "true"
        assert second.json()["payment"]["id"] == first.json()["payment"]["id"]
        listing = client.get("/api/v1/payments", headers=auth(admin_token, tenant, company))
        assert listing.json()["meta"]["total"] == 1

    def test_key_reused_with_different_body(
        self,
        client: TestClient,
        admin_token: str,
        tenant: Tenant,
        company: Company,
        customer: Customer,
        bank_account: BankAccount,
        sent_invoice: Invoice,
    ) -> None:
        headers = {**auth(admin_token, tenant, company), "Idempotency-Key": "rcpt-0002"}
        client.post(
            "/api/v1/payments",
            json=self._payload(customer, bank_account, sent_invoice, "600"),
            headers=headers,
        )
        resp = client.post(
            "/api/v1/payments",
            json=self._payload(customer, bank_account, sent_invoice, "700"),
            headers=headers,
        )
        assert resp.status_code == 409
        assert resp.json()["code"] == "IDEMPOTENCY_KEY_REUSED"

    def test_summary(
        self,
        client: TestClient,
        admin_token: str,
        tenant: Tenant,
        company: Company,
        customer: Customer,
        bank_account: BankAccount,
        sent_invoice: Invoice,
    ) -> None:
        headers = auth(admin_token, tenant, company)
        client.post(
            "/api/v1/payments",
            json=self._payload(customer, bank_account, sent_invoice, "600"),
            headers=headers,
        )
        resp = client.get("/api/v1/payments/summary", headers=headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["total_count"] == 1
        assert Decimal(str(body["total_received"])) == Decimal("600.00")
