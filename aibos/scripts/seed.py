"""Seed subscription plans and, optionally, a first admin with a tenant.

Usage:
    python -m aibos.scripts.seed
"""

from __future__ import annotations

import getpass

import aibos.app.models.registry  # noqa: F401
from aibos.app.core.database import SessionLocal
from aibos.app.core.errors import DomainError
from aibos.app.services.subscriptions import seed_default_plans
from aibos.app.services.tenants import create_tenant
from aibos.app.services.users import find_user_by_email, register_user


def seed() -> None:
    db = SessionLocal()
    try:
        # ── Plans ──────────────────────────────────────────────────────
        for plan in seed_default_plans(db):
            print(f"Created plan: {plan.name}")
        db.commit()

        # ── First admin ────────────────────────────────────────────────
        email = input("Admin email (blank to skip): ").strip().lower()
        if not email:
            return
        user = find_user_by_email(db, email)
        if user is None:
            password = getpass.getpass("Password: ")
            user = register_user(
                db,
                email=email,
                password=password,
                first_name=input("First name: ").strip() or "Admin",
                last_name=input("Last name: ").strip() or "User",
            )
            print(f"Created user: {email}")

        slug = input("Tenant slug (blank to skip): ").strip().lower()
        if slug:
            tenant, company, _ = create_tenant(
                db,
                user,
                name=input("Tenant name: ").strip() or slug,
                slug=slug,
                company_code=input("Company code [HQ]: ").strip() or "HQ",
                company_name=input("Company name: ").strip() or slug,
            )
            print(f"Created tenant {tenant.slug} ({tenant.id}) with company {company.code}")
        db.commit()
    except DomainError as exc:
        db.rollback()
        print(f"Error: {exc.detail}")
    finally:
        db.close()


if __name__ == "__main__":
    seed()
