"""Tests for tax calculation, tax codes and the tax summary."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from aibos.app.core.errors import ConflictError, ValidationFailed
from aibos.app.models.account import Account
from aibos.app.models.tax import TaxCode, TaxType
from aibos.app.models.tenant import Company, Tenant
from aibos.app.services.audit import Actor
from aibos.app.services.tax import calculate_tax, create_tax_code, price_line
from aibos.tests.conftest import auth


class TestCalculateTax:
    def test_exclusive(self) -> None:
        result = calculate_tax(Decimal("1000"), Decimal("6"))
        assert result.net == Decimal("1000.0000")
        assert result.tax == Decimal("60.0000")
        assert result.gross == Decimal("1060.0000")

    def test_inclusive(self) -> None:
        result = calculate_tax(Decimal("1060"), Decimal("6"), inclusive=True)
        assert result.gross == Decimal("1060.0000")
        assert result.net == Decimal("1000.0000")
        assert result.tax == Decimal("60.0000")

    def test_inclusive_parts_always_sum_to_gross(self) -> None:
        result = calculate_tax(Decimal("99.99"), Decimal("8"), inclusive=True)
        assert result.net + result.tax == result.gross

    def test_rounds_half_up_to_four_places(self) -> None:
        result = calculate_tax(Decimal("0.05"), Decimal("8.5"))
        assert result.tax == Decimal("0.0043")

    def test_zero_rate(self) -> None:
        result = calculate_tax(Decimal("250"), Decimal("0"))
        assert result.tax == Decimal("0")
        assert result.gross == Decimal("250.0000")

    @pytest.mark.parametrize("rate", ["-1", "100.01"])
    def test_rate_out_of_range(self, rate: str) -> None:
        with pytest.raises(ValidationFailed) as exc:
            calculate_tax(Decimal("100"), Decimal(rate))
        assert exc.value.code == "INVALID_TAX_RATE"


class TestTaxCodes:
    def test_price_line_uses_code_rate(self, sst: TaxCode) -> None:
        rate, amount, tax = price_line(Decimal("3"), Decimal("150"), sst)
        assert rate == Decimal("6")
        assert amount == Decimal("450.0000")
        assert tax == Decimal("27.0000")

    def test_exempt_code_has_zero_rate(
        self, db: Session, admin_actor: Actor, company: Company
    ) -> None:
        exempt = create_tax_code(
            db,
            admin_actor,
            company=company,
            code="EX",
            name="Exempt",
            rate=Decimal("6"),
            tax_type=TaxType.EXEMPT,
        )
        assert exempt.rate == Decimal("0")
        assert price_line(Decimal("1"), Decimal("100"), exempt)[2] == Decimal("0")

    def test_taxable_code_needs_account(
        self, db: Session, admin_actor: Actor, company: Company
    ) -> None:
        with pytest.raises(ValidationFailed) as exc:
            create_tax_code(
                db,
                admin_actor,
                company=company,
                code="ST10",
                name="Sales Tax 10%",
                rate=Decimal("10"),
                tax_type=TaxType.OUTPUT,
            )
        assert exc.value.code == "ACCOUNT_NOT_FOUND"

    def test_tax_account_must_be_balance_sheet(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
    ) -> None:
        with pytest.raises(ValidationFailed) as exc:
            create_tax_code(
                db,
                admin_actor,
                company=company,
                code="ST10",
                name="Sales Tax 10%",
                rate=Decimal("10"),
                tax_type=TaxType.OUTPUT,
                tax_account_id=accounts["4000"].id,
            )
        assert exc.value.code == "INVALID_TAX_ACCOUNT"

    def test_duplicate_code_conflicts(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
        sst: TaxCode,
    ) -> None:
        with pytest.raises(ConflictError):
            create_tax_code(
                db,
                admin_actor,
                company=company,
                code="SST6",
                name="Again",
                rate=Decimal("6"),
                tax_type=TaxType.OUTPUT,
                tax_account_id=accounts["2100"].id,
            )


class TestTaxAPI:
    def test_calculate_endpoint(
        self,
        client: TestClient,
        accountant_token: str,
        tenant: Tenant,
        company: Company,
    ) -> None:
        resp = client.post(
            "/api/v1/tax/calculate",
            json={"amount": "212", "rate": "6", "inclusive": True},
            headers=auth(accountant_token, tenant, company),
        )
        assert resp.status_code == 200, resp.text
        assert Decimal(resp.json()["net"]) == Decimal("200")
        assert Decimal(resp.json()["tax"]) == Decimal("12")

    def test_summary_rejects_inverted_range(
        self,
        client: TestClient,
        admin_token: str,
        tenant: Tenant,
        company: Company,
    ) -> None:
        resp = client.get(
            "/api/v1/tax/summary",
            params={"from": date(2025, 3, 31).isoformat(), "to": date(2025, 3, 1).isoformat()},
            headers=auth(admin_token, tenant, company),
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_DATE_RANGE"

    def test_list_codes(
        self,
        client: TestClient,
        admin_token: str,
        tenant: Tenant,
        company: Company,
        sst: TaxCode,
    ) -> None:
        resp = client.get("/api/v1/tax-codes", headers=auth(admin_token, tenant, company))
        assert resp.status_code == 200
        assert [c["code"] for c in resp.json()] == ["SST6"]
