"""Tests for registration, login, lockout, tenant onboarding and tenant context."""

from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from aibos.app.core.config import settings
from aibos.app.core.errors import AccountLocked, AuthenticationFailed, ConflictError, ValidationFailed
from aibos.app.core.timeutils import utcnow
from aibos.app.models.account import Account
from aibos.app.models.audit import AuditLog
from aibos.app.models.tenant import Company, Tenant
from aibos.app.models.user import User
from aibos.app.services import users as user_service
from aibos.app.services.tenants import create_tenant, get_recommended_pack
from aibos.tests.conftest import PASSWORD, auth, make_user


class TestRegistration:
    def test_register_normalises_email(self, db: Session) -> None:
        user = user_service.register_user(
            db, email="  Siti@Example.COM ", password=PASSWORD, first_name="Siti"
        )
        assert user.email == "siti@example.com"
        assert user.hashed_password != PASSWORD
        assert db.query(AuditLog).filter(AuditLog.action == "USER_REGISTERED").count() == 1

    def test_duplicate_email_conflicts(self, db: Session, admin_user: User) -> None:
        with pytest.raises(ConflictError) as exc:
            user_service.register_user(db, email="ADMIN@acme.test", password=PASSWORD)
        assert exc.value.code == "EMAIL_TAKEN"

    @pytest.mark.parametrize(
        "password", ["short1!A", "alllowercase1!", "ALLUPPERCASE1!", "NoDigitsHere!!", "NoSpecial12345"]
    )
    def test_weak_passwords_rejected(self, db: Session, password: str) -> None:
        with pytest.raises(ValidationFailed) as exc:
            user_service.register_user(db, email="new@example.com", password=password)
        assert exc.value.code == "WEAK_PASSWORD"


class TestAuthenticate:
    def test_success_resets_failures(self, db: Session, admin_user: User) -> None:
        admin_user.failed_login_attempts = 3
        user = user_service.authenticate(db, email="admin@acme.test", password=PASSWORD)
        assert user.id == admin_user.id
        assert user.failed_login_attempts == 0

    def test_unknown_email(self, db: Session) -> None:
        with pytest.raises(AuthenticationFailed):
            user_service.authenticate(db, email="ghost@acme.test", password=PASSWORD)

    def test_lockout_after_repeated_failures(self, db: Session, admin_user: User) -> None:
        now = utcnow()
        for _ in range(settings.MAX_LOGIN_ATTEMPTS):
            with pytest.raises(AuthenticationFailed):
                user_service.authenticate(
                    db, email="admin@acme.test", password="Wrong-Pass-123!", now=now
                )
        assert admin_user.locked_until is not None

        # Even the right password is refused while locked.
        with pytest.raises(AccountLocked):
            user_service.authenticate(db, email="admin@acme.test", password=PASSWORD, now=now)

        later = now + timedelta(minutes=settings.LOCKOUT_MINUTES, seconds=1)
        user = user_service.authenticate(
            db, email="admin@acme.test", password=PASSWORD, now=later
        )
        assert user.locked_until is None
        actions = [a for (a,) in db.query(AuditLog.action).all()]
        assert "ACCOUNT_LOCKED" in actions
        assert "LOGIN_BLOCKED" in actions


class TestTenantOnboarding:
    def test_creates_company_chart_and_admin(
        self, db: Session, admin_user: User, tenant: Tenant, company: Company
    ) -> None:
        assert tenant.slug == "acme"
        assert tenant.feature_flags["ar"] is True
        assert company.code == "ACME"
        codes = {a.code for a in db.query(Account).filter(Account.company_id == company.id)}
        assert {"1100", "1200", "2000", "2100", "3100"} <= codes
        [membership] = user_service.active_memberships(db, admin_user.id)
        assert membership.role == "admin"

    def test_slug_taken(self, db: Session, admin_user: User, tenant: Tenant) -> None:
        with pytest.raises(ConflictError) as exc:
            create_tenant(
                db,
                admin_user,
                name="Other",
                slug="acme",
                company_code="OTH",
                company_name="Other Sdn Bhd",
            )
        assert exc.value.code == "TENANT_SLUG_TAKEN"

    @pytest.mark.parametrize(
        ("users", "compliance", "pack"),
        [(5, False, "starter"), (50, False, "business"), (500, False, "enterprise"), (5, True, "regulated")],
    )
    def test_recommended_pack(self, users: int, compliance: bool, pack: str) -> None:
        assert get_recommended_pack(users, compliance) == pack


class TestAuthAPI:
    def test_register_login_me(self, client: TestClient) -> None:
        resp = client.post(
            "/api/v1/auth/register",
            json={"email": "farid@example.com", "password": PASSWORD, "first_name": "Farid"},
        )
        assert resp.status_code == 201, resp.text

        login = client.post(
            "/api/v1/auth/login/access-token",
            data={"username": "farid@example.com", "password": PASSWORD},
        )
        assert login.status_code == 200, login.text
        token = login.json()["access_token"]

        me = client.get("/api/v1/auth/me", headers=auth(token))
        assert me.status_code == 200
        assert me.json()["email"] == "farid@example.com"
        assert me.json()["memberships"] == []

    def test_bad_password_is_401(self, client: TestClient, admin_user: User) -> None:
        resp = client.post(
            "/api/v1/auth/login/access-token",
            data={"username": "admin@acme.test", "password": "Wrong-Pass-123!"},
        )
        assert resp.status_code == 401
        assert resp.headers["content-type"].startswith("application/problem+json")

    def test_login_rate_limited(self, client: TestClient, admin_user: User) -> None:
        for _ in range(5):
            client.post(
                "/api/v1/auth/login/access-token",
                data={"username": "nobody@acme.test", "password": "x"},
            )
        resp = client.post(
            "/api/v1/auth/login/access-token",
            data={"username": "admin@acme.test", "password": PASSWORD},
        )
        assert resp.status_code == 429
        assert resp.json()["code"] == "RATE_LIMITED"

    def test_logout_revokes_token(self, client: TestClient, admin_token: str) -> None:
        assert client.post("/api/v1/auth/logout", headers=auth(admin_token)).status_code == 200
        assert client.get("/api/v1/auth/me", headers=auth(admin_token)).status_code == 401

    def test_missing_token_is_401(self, client: TestClient) -> None:
        assert client.get("/api/v1/auth/me").status_code == 401


class TestTenantAPI:
    def test_onboard_tenant(self, client: TestClient, db: Session) -> None:
        user = make_user(db, "owner@kedai.test")
        db.commit()
        token = client.post(
            "/api/v1/auth/login/access-token",
            data={"username": "owner@kedai.test", "password": PASSWORD},
        ).json()["access_token"]

        resp = client.post(
            "/api/v1/tenants",
            json={
                "name": "Kedai Runcit",
                "slug": "kedai-runcit",
                "company": {"code": "KR", "name": "Kedai Runcit Enterprise"},
            },
            headers=auth(token),
        )
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["slug"] == "kedai-runcit"
        assert [c["code"] for c in body["companies"]] == ["KR"]
        assert user_service.active_memberships(db, user.id)[0].role == "admin"

    def test_tenant_header_required(self, client: TestClient, admin_token: str) -> None:
        resp = client.get("/api/v1/tenants/current", headers=auth(admin_token))
        assert resp.status_code == 400
        assert resp.json()["code"] == "TENANT_REQUIRED"

    def test_outsider_has_no_membership(
        self, client: TestClient, db: Session, tenant: Tenant, company: Company
    ) -> None:
        make_user(db, "outsider@elsewhere.test")
        db.commit()
        token = client.post(
            "/api/v1/auth/login/access-token",
            data={"username": "outsider@elsewhere.test", "password": PASSWORD},
        ).json()["access_token"]

        resp = client.get("/api/v1/accounts", headers=auth(token, tenant, company))
        assert resp.status_code == 403
        assert resp.json()["code"] == "NO_MEMBERSHIP"

    def test_feature_flag_toggle_via_governance_pack(
        self,
        client: TestClient,
        admin_token: str,
        tenant: Tenant,
        company: Company,
    ) -> None:
        resp = client.post(
            "/api/v1/tenants/current/governance-pack",
            json={"pack": "regulated"},
            headers=auth(admin_token, tenant, company),
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["governance_pack"] == "regulated"
        assert resp.json()["feature_flags"]["regulated_mode"] is True


class TestAuditAPI:
    def test_admin_reads_tenant_audit_trail(
        self,
        client: TestClient,
        admin_token: str,
        tenant: Tenant,
        company: Company,
    ) -> None:
        resp = client.get(
            "/api/v1/audit-logs",
            params={"action": "TENANT_CREATED"},
            headers=auth(admin_token, tenant, company),
        )
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["meta"]["total"] == 1
        assert body["data"][0]["entity_id"] == str(tenant.id)

    def test_accountant_cannot_read_audit_trail(
        self,
        client: TestClient,
        accountant_token: str,
        tenant: Tenant,
        company: Company,
    ) -> None:
        resp = client.get("/api/v1/audit-logs", headers=auth(accountant_token, tenant, company))
        assert resp.status_code == 403
