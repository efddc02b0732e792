"""Tests for the chart of accounts, customers and suppliers."""

from __future__ import annotations

import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from aibos.app.core.errors import ConflictError, ValidationFailed
from aibos.app.models.account import Account, AccountCategory, AccountType
from aibos.app.models.customer import Customer
from aibos.app.models.supplier import Supplier
from aibos.app.models.tenant import Company, Tenant
from aibos.app.schemas.accounts import AccountCreate
from aibos.app.services import accounts as account_service
from aibos.app.services import parties as party_service
from aibos.app.services.audit import Actor
from aibos.tests.conftest import auth


class TestChartOfAccounts:
    def test_create_derives_normal_balance(
        self, db: Session, admin_actor: Actor, company: Company
    ) -> None:
        out = account_service.create_account(
            db,
            admin_actor,
            company=company,
            payload=AccountCreate(
                code="6400",
                name="Travel",
                account_type=AccountType.EXPENSE,
                category=AccountCategory.OPERATING_EXPENSE,
            ),
        )
        assert out.normal_balance.value == "DEBIT"
        assert out.is_system is False
        assert out.balance == "0"

    def test_duplicate_code(self, db: Session, admin_actor: Actor, company: Company) -> None:
        with pytest.raises(ConflictError) as exc:
            account_service.create_account(
                db,
                admin_actor,
                company=company,
                payload=AccountCreate(
                    code="4100",
                    name="Consulting",
                    account_type=AccountType.REVENUE,
                    category=AccountCategory.REVENUE,
                ),
            )
        assert exc.value.code == "ACCOUNT_CODE_TAKEN"

    def test_category_must_fit_type(
        self, db: Session, admin_actor: Actor, company: Company
    ) -> None:
        with pytest.raises(ValidationFailed) as exc:
            account_service.create_account(
                db,
                admin_actor,
                company=company,
                payload=AccountCreate(
                    code="1700",
                    name="Misfiled",
                    account_type=AccountType.ASSET,
                    category=AccountCategory.PAYABLE,
                ),
            )
        assert exc.value.code == "INVALID_CATEGORY"

    def test_parent_must_share_type(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
    ) -> None:
        with pytest.raises(ValidationFailed) as exc:
            account_service.create_account(
                db,
                admin_actor,
                company=company,
                payload=AccountCreate(
                    code="6010",
                    name="Overtime",
                    account_type=AccountType.EXPENSE,
                    category=AccountCategory.OPERATING_EXPENSE,
                    parent_id=accounts["4000"].id,
                ),
            )
        assert exc.value.code == "INVALID_PARENT"

    def test_system_accounts_are_protected(
        self,
        db: Session,
        admin_actor: Actor,
        company: Company,
        accounts: dict[str, Account],
    ) -> None:
        with pytest.raises(ValidationFailed) as exc:
            account_service.delete_account(
                db, admin_actor, company_id=company.id, account_id=accounts["1200"].id
            )
        assert exc.value.code == "SYSTEM_ACCOUNT"

        account_service.delete_account(
            db, admin_actor, company_id=company.id, account_id=accounts["6300"].id
        )
        assert account_service.find_by_code(db, company.id, "6300") is None

    def test_reseeding_adds_nothing(
        self, db: Session, admin_actor: Actor, company: Company
    ) -> None:
        assert account_service.seed_default_chart(db, admin_actor, company=company) == []


class TestParties:
    def test_numbers_are_sequential_per_company(
        self, db: Session, admin_actor: Actor, company: Company, customer: Customer
    ) -> None:
        second = party_service.create_customer(
            db, admin_actor, company=company, data={"name": "Sabah Foods"}
        )
        assert customer.customer_number == "CUST-00001"
        assert second.customer_number == "CUST-00002"
        assert second.currency == "MYR"

    def test_supplier_numbering(self, supplier: Supplier) -> None:
        assert supplier.supplier_number == "SUPP-00001"

    def test_search(
        self, db: Session, company: Company, customer: Customer
    ) -> None:
        assert party_service.list_customers(db, company.id, search="borneo") == [customer]
        assert party_service.list_customers(db, company.id, search="penang") == []


class TestAccountsAndPartiesAPI:
    def test_bad_account_code_is_422(
        self, client: TestClient, admin_token: str, tenant: Tenant, company: Company
    ) -> None:
        resp = client.post(
            "/api/v1/accounts",
            json={
                "code": "abc",
                "name": "Bad",
                "account_type": "ASSET",
                "category": "CASH",
            },
            headers=auth(admin_token, tenant, company),
        )
        assert resp.status_code == 422
        assert resp.json()["code"] == "VALIDATION_ERROR"

    def test_list_filters_by_type(
        self, client: TestClient, viewer_token: str, tenant: Tenant, company: Company
    ) -> None:
        resp = client.get(
            "/api/v1/accounts",
            params={"account_type": "LIABILITY"},
            headers=auth(viewer_token, tenant, company),
        )
        assert resp.status_code == 200, resp.text
        assert [a["code"] for a in resp.json()] == ["2000", "2100", "2200", "2500"]

    def test_clerk_creates_customer_viewer_cannot(
        self,
        client: TestClient,
        clerk_token: str,
        viewer_token: str,
        tenant: Tenant,
        company: Company,
    ) -> None:
        body = {"name": "Ipoh Hardware", "email": "buy@ipoh-hw.test"}
        created = client.post(
            "/api/v1/customers", json=body, headers=auth(clerk_token, tenant, company)
        )
        assert created.status_code == 201, created.text
        assert created.json()["customer_number"] == "CUST-00001"

        denied = client.post(
            "/api/v1/customers", json=body, headers=auth(viewer_token, tenant, company)
        )
        assert denied.status_code == 403

    def test_unknown_customer_is_404(
        self, client: TestClient, admin_token: str, tenant: Tenant, company: Company
    ) -> None:
        resp = client.get(
            f"/api/v1/customers/{uuid.uuid4()}", headers=auth(admin_token, tenant, company)
        )
        assert resp.status_code == 404
        assert resp.json()["code"] == "CUSTOMER_NOT_FOUND"
