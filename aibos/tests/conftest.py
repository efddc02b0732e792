"""Shared test fixtures.

Each test gets a fresh in-memory SQLite database (StaticPool keeps the one
connection alive across sessions) with the full schema created up front, a
tenant whose first company carries the default chart of accounts, and one
member per role.
"""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import aibos.app.models.registry  # noqa: F401  (registers every table)
from aibos.app.api.v1.endpoints.auth import login_limiter
from aibos.app.core.config import settings
from aibos.app.core.database import Base, get_db
from aibos.app.core.permissions import effective_permissions
from aibos.app.core.security import create_access_token, get_password_hash
from aibos.app.main import app
from aibos.app.models.account import Account
from aibos.app.models.banking import BankAccount
from aibos.app.models.customer import Customer, PaymentTerms
from aibos.app.models.supplier import Supplier
from aibos.app.models.tax import TaxCode, TaxType
from aibos.app.models.tenant import Company, Tenant
from aibos.app.models.user import Membership, User
from aibos.app.services.audit import Actor
from aibos.app.services.banking import create_bank_account
from aibos.app.services.parties import create_customer, create_supplier
from aibos.app.services.tax import create_tax_code
from aibos.app.services.tenants import create_tenant

PASSWORD = "Corr3ct-Horse!"

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


# ─── Database & client ───────────────────────────────────────────────────────


@pytest.fixture()
def db() -> Generator[Session, None, None]:
    """Yield a session on a freshly created schema; dropped after the test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client(db: Session) -> Generator[TestClient, None, None]:
    """FastAPI TestClient wired to the test session."""

    def _override_get_db() -> Generator[Session, None, None]:
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def _isolate_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "FILE_STORAGE_PATH", str(tmp_path / "files"))
    monkeypatch.setattr(settings, "NOTIFICATION_ENABLED", False)
    login_limiter.reset()


# ─── Users, tenant & memberships ────────────────────────────────────────────


def make_user(db: Session, email: str) -> User:
    user = User(
        email=email,
        first_name=email.split("@")[0].title(),
        hashed_password=get_password_hash(PASSWORD),
    )
    db.add(user)
    db.flush()
    return user


def add_member(
    db: Session,
    tenant: Tenant,
    role: str,
    email: str | None = None,
    company: Company | None = None,
) -> User:
    user = make_user(db, email or f"{role}@acme.test")
    db.add(
        Membership(
            user_id=user.id,
            tenant_id=tenant.id,
            company_id=company.id if company else None,
            role=role,
        )
    )
    db.flush()
    return user


def make_actor(user: User, company: Company, role: str) -> Actor:
    """Build the Actor a request by *user* in *role* would carry."""
    return Actor(
        user_id=user.id,
        tenant_id=company.tenant_id,
        company_id=company.id,
        role=role,
        ip_address="127.0.0.1",
        permissions=frozenset(effective_permissions(role)),
    )


@pytest.fixture()
def admin_user(db: Session) -> User:
    return make_user(db, "admin@acme.test")


@pytest.fixture()
def onboarded(db: Session, admin_user: User) -> tuple[Tenant, Company]:
    tenant, company, _ = create_tenant(
        db,
        admin_user,
        name="Acme Trading",
        slug="acme",
        company_code="ACME",
        company_name="Acme Trading Sdn Bhd",
    )
    db.commit()
    return tenant, company


@pytest.fixture()
def tenant(onboarded: tuple[Tenant, Company]) -> Tenant:
    return onboarded[0]


@pytest.fixture()
def company(onboarded: tuple[Tenant, Company]) -> Company:
    return onboarded[1]


@pytest.fixture()
def manager_user(db: Session, tenant: Tenant) -> User:
    return add_member(db, tenant, "manager")


@pytest.fixture()
def accountant_user(db: Session, tenant: Tenant) -> User:
    return add_member(db, tenant, "accountant")


@pytest.fixture()
def clerk_user(db: Session, tenant: Tenant) -> User:
    return add_member(db, tenant, "clerk")


@pytest.fixture()
def viewer_user(db: Session, tenant: Tenant) -> User:
    return add_member(db, tenant, "viewer")


@pytest.fixture()
def admin_actor(admin_user: User, company: Company) -> Actor:
    return make_actor(admin_user, company, "admin")


@pytest.fixture()
def manager_actor(manager_user: User, company: Company) -> Actor:
    return make_actor(manager_user, company, "manager")


@pytest.fixture()
def accountant_actor(accountant_user: User, company: Company) -> Actor:
    return make_actor(accountant_user, company, "accountant")


# ─── Auth helpers ────────────────────────────────────────────────────────────


@pytest.fixture()
def admin_token(admin_user: User) -> str:
    return create_access_token(subject=str(admin_user.id))


@pytest.fixture()
def manager_token(manager_user: User) -> str:
    return create_access_token(subject=str(manager_user.id))


@pytest.fixture()
def accountant_token(accountant_user: User) -> str:
    return create_access_token(subject=str(accountant_user.id))


@pytest.fixture()
def clerk_token(clerk_user: User) -> str:
    return create_access_token(subject=str(clerk_user.id))


@pytest.fixture()
def viewer_token(viewer_user: User) -> str:
    return create_access_token(subject=str(viewer_user.id))


def auth(token: str, tenant: Tenant | None = None, company: Company | None = None) -> dict[str, str]:
    """Return the Authorization header plus tenant/company context headers."""
    headers = {"Authorization": f"Bearer {token}"}
    if tenant is not None:
        headers["X-Tenant-Id"] = str(tenant.id)
    if company is not None:
        headers["X-Company-Id"] = str(company.id)
    return headers


# ─── Ledger fixtures ─────────────────────────────────────────────────────────


@pytest.fixture()
def accounts(db: Session, company: Company) -> dict[str, Account]:
    """The seeded default chart, keyed by account code."""
    return {
        a.code: a for a in db.query(Account).filter(Account.company_id == company.id).all()
    }


@pytest.fixture()
def customer(db: Session, admin_actor: Actor, company: Company) -> Customer:
    return create_customer(
        db,
        admin_actor,
        company=company,
        data={
            "name": "Borneo Retail Sdn Bhd",
            "email": "ap@borneo-retail.test",
            "payment_terms": PaymentTerms.NET_30,
        },
    )


@pytest.fixture()
def supplier(db: Session, admin_actor: Actor, company: Company) -> Supplier:
    return create_supplier(
        db,
        admin_actor,
        company=company,
        data={"name": "Klang Office Supplies", "payment_terms": PaymentTerms.NET_30},
    )


@pytest.fixture()
def bank_account(
    db: Session, admin_actor: Actor, company: Company, accounts: dict[str, Account]
) -> BankAccount:
    return create_bank_account(
        db,
        admin_actor,
        company=company,
        name="Maybank Current",
        account_number="5140-1234-5678",
        gl_account_id=accounts["1100"].id,
        bank_name="Maybank",
    )


@pytest.fixture()
def sst(
    db: Session, admin_actor: Actor, company: Company, accounts: dict[str, Account]
) -> TaxCode:
    """Output service tax at 6%."""
    return create_tax_code(
        db,
        admin_actor,
        company=company,
        code="SST6",
        name="Service Tax 6%",
        rate=Decimal("6"),
        tax_type=TaxType.OUTPUT,
        tax_account_id=accounts["2100"].id,
    )


@pytest.fixture()
def sst_input(
    db: Session, admin_actor: Actor, company: Company, accounts: dict[str, Account]
) -> TaxCode:
    return create_tax_code(
        db,
        admin_actor,
        company=company,
        code="SST6-IN",
        name="Input Service Tax 6%",
        rate=Decimal("6"),
        tax_type=TaxType.INPUT,
        tax_account_id=accounts["1300"].id,
    )
