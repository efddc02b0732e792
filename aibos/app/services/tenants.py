"""Tenant onboarding, companies and governance packs.

A governance pack is a named bundle of feature flags and company policy
settings. Applying one overwrites the tenant's flags and merges the pack's
policy into every company, leaving policy keys the pack does not name alone.

Does NOT call db.commit(). The caller is responsible.
"""

from __future__ import annotations

import logging
import re
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from aibos.app.core.errors import ConflictError, NotFoundError, ValidationFailed
from aibos.app.core.permissions import MembershipRole
from aibos.app.models.tenant import (
    DEFAULT_FEATURE_FLAGS,
    DEFAULT_POLICY_SETTINGS,
    Company,
    Tenant,
)
from aibos.app.models.user import Membership, User
from aibos.app.services.accounts import seed_default_chart
from aibos.app.services.audit import Actor, log_action

logger = logging.getLogger(__name__)

SLUG_RE = re.compile(r"^[a-z0-9-]+$")
CURRENCY_RE = re.compile(r"^[A-Z]{3}$")

GOVERNANCE_PACKS: dict[str, dict[str, Any]] = {
    "starter": {
        "feature_flags": {**DEFAULT_FEATURE_FLAGS},
        "policy_settings": {
            "approval_threshold_rm": 50000,
            "export_requires_reason": False,
            "mfa_required_for_admin": False,
            "session_timeout_minutes": 480,
        },
    },
    "business": {
        "feature_flags": {**DEFAULT_FEATURE_FLAGS},
        "policy_settings": {
            "approval_threshold_rm": 25000,
            "export_requires_reason": False,
            "mfa_required_for_admin": True,
            "session_timeout_minutes": 240,
        },
    },
    "enterprise": {
        "feature_flags": {**DEFAULT_FEATURE_FLAGS},
        "policy_settings": {
            "approval_threshold_rm": 10000,
            "export_requires_reason": True,
            "mfa_required_for_admin": True,
            "session_timeout_minutes": 120,
        },
    },
    "regulated": {
        "feature_flags": {**DEFAULT_FEATURE_FLAGS, "regulated_mode": True},
        "policy_settings": {
            "approval_threshold_rm": 5000,
            "export_requires_reason": True,
            "mfa_required_for_admin": True,
            "session_timeout_minutes": 60,
        },
    },
    "franchise": {
        "feature_flags": {**DEFAULT_FEATURE_FLAGS, "ap": False},
        "policy_settings": {
            "approval_threshold_rm": 20000,
            "export_requires_reason": False,
            "mfa_required_for_admin": True,
            "session_timeout_minutes": 240,
        },
    },
}

UPDATABLE_COMPANY_FIELDS = ("name", "base_currency", "fiscal_year_end", "is_active")


def get_recommended_pack(user_count: int, has_compliance: bool = False) -> str:
    if has_compliance:
        return "regulated"
    if user_count <= 10:
        return "starter"
    if user_count <= 200:
        return "business"
    return "enterprise"


def _check_company_fields(base_currency: str | None, fiscal_year_end: int | None) -> None:
    if base_currency is not None and not CURRENCY_RE.match(base_currency):
        raise ValidationFailed(
            "base_currency must be a 3-letter ISO code", code="INVALID_CURRENCY"
        )
    if fiscal_year_end is not None and not 1 <= fiscal_year_end <= 12:
        raise ValidationFailed(
            "fiscal_year_end must be a month between 1 and 12",
            code="INVALID_FISCAL_YEAR_END",
        )


def _check_policy(policy: dict[str, Any]) -> None:
    unknown = set(policy) - set(DEFAULT_POLICY_SETTINGS)
    if unknown:
        raise ValidationFailed(
            f"Unknown policy settings: {', '.join(sorted(unknown))}",
            code="INVALID_POLICY",
        )
    threshold = policy.get("approval_threshold_rm")
    if threshold is not None and (not isinstance(threshold, (int, float)) or threshold < 0):
        raise ValidationFailed(
            "approval_threshold_rm must be a non-negative number", code="INVALID_POLICY"
        )


def get_tenant(db: Session, tenant_id: UUID) -> Tenant:
    tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
    if tenant is None:
        raise NotFoundError("Tenant not found", code="TENANT_NOT_FOUND")
    return tenant


def get_company(db: Session, tenant_id: UUID, company_id: UUID) -> Company:
    company = (
        db.query(Company)
        .filter(Company.id == company_id, Company.tenant_id == tenant_id)
        .first()
    )
    if company is None:
        raise NotFoundError("Company not found", code="COMPANY_NOT_FOUND")
    return company


def create_company(
    db: Session,
    actor: Actor,
    *,
    tenant: Tenant,
    code: str,
    name: str,
    base_currency: str = "MYR",
    fiscal_year_end: int = 12,
    seed_chart: bool = True,
) -> Company:
    """Create a company under *tenant* with the pack's policy and a starter chart."""
    code = code.strip().upper()
    _check_company_fields(base_currency, fiscal_year_end)
    taken = (
        db.query(Company.id)
        .filter(Company.tenant_id == tenant.id, Company.code == code)
        .first()
    )
    if taken:
        raise ConflictError(
            f"Company code '{code}' already exists", code="COMPANY_CODE_TAKEN"
        )

    pack = GOVERNANCE_PACKS.get(tenant.governance_pack, GOVERNANCE_PACKS["starter"])
    company = Company(
        tenant_id=tenant.id,
        code=code,
        name=name,
        base_currency=base_currency,
        fiscal_year_end=fiscal_year_end,
        policy_settings={**DEFAULT_POLICY_SETTINGS, **pack["policy_settings"]},
    )
    db.add(company)
    db.flush()

    log_action(
        db,
        actor=actor,
        action="COMPANY_CREATED",
        entity_type="company",
        entity_id=company.id,
        company_id=company.id,
        changes={"code": code, "name": name, "base_currency": base_currency},
    )
    if seed_chart:
        seed_default_chart(db, actor, company=company)
    return company


def create_tenant(
    db: Session,
    user: User,
    *,
    name: str,
    slug: str,
    company_code: str,
    company_name: str,
    base_currency: str = "MYR",
    fiscal_year_end: int = 12,
    governance_pack: str = "starter",
    ip_address: str | None = None,
    request_id: str | None = None,
) -> tuple[Tenant, Company, Membership]:
    """Onboard a new tenant: the tenant, its first company and an admin membership."""
    slug = slug.strip().lower()
    if not SLUG_RE.match(slug):
        raise ValidationFailed(
            "slug may only contain lowercase letters, digits and hyphens",
            code="INVALID_SLUG",
        )
    if governance_pack not in GOVERNANCE_PACKS:
        raise ValidationFailed(
            f"Unknown governance pack '{governance_pack}'", code="UNKNOWN_GOVERNANCE_PACK"
        )
    if db.query(Tenant.id).filter(Tenant.slug == slug).first():
        raise ConflictError(f"Slug '{slug}' is already taken", code="TENANT_SLUG_TAKEN")

    tenant = Tenant(
        name=name,
        slug=slug,
        governance_pack=governance_pack,
        feature_flags=dict(GOVERNANCE_PACKS[governance_pack]["feature_flags"]),
    )
    db.add(tenant)
    db.flush()

    actor = Actor(
        user_id=user.id,
        tenant_id=tenant.id,
        role=MembershipRole.ADMIN.value,
        ip_address=ip_address,
        request_id=request_id,
    )
    membership = Membership(
        user_id=user.id,
        tenant_id=tenant.id,
        role=MembershipRole.ADMIN.value,
        can_manage_users=True,
        can_manage_settings=True,
        can_view_reports=True,
        can_manage_companies=True,
    )
    db.add(membership)
    db.flush()

    log_action(
        db,
        actor=actor,
        action="TENANT_CREATED",
        entity_type="tenant",
        entity_id=tenant.id,
        changes={"name": name, "slug": slug, "governance_pack": governance_pack},
    )
    company = create_company(
        db,
        actor,
        tenant=tenant,
        code=company_code,
        name=company_name,
        base_currency=base_currency,
        fiscal_year_end=fiscal_year_end,
    )
    logger.info("Tenant %s onboarded by user %s", slug, user.id)
    return tenant, company, membership


def update_company(
    db: Session,
    actor: Actor,
    *,
    tenant_id: UUID,
    company_id: UUID,
    changes: dict[str, Any],
) -> Company:
    company = get_company(db, tenant_id, company_id)
    _check_company_fields(changes.get("base_currency"), changes.get("fiscal_year_end"))

    old: dict[str, Any] = {}
    new: dict[str, Any] = {}
    for field in UPDATABLE_COMPANY_FIELDS:
        if field in changes and changes[field] is not None:
            value = changes[field]
            if getattr(company, field) != value:
                old[field] = getattr(company, field)
                new[field] = value
                setattr(company, field, value)

    policy = changes.get("policy_settings")
    if policy:
        _check_policy(policy)
        merged = {**company.policy_settings, **policy}
        if merged != company.policy_settings:
            old["policy_settings"] = dict(company.policy_settings)
            new["policy_settings"] = merged
            # Reassign so the JSON column is flagged dirty.
            company.policy_settings = merged

    if new:
        db.flush()
        log_action(
            db,
            actor=actor,
            action="COMPANY_UPDATED",
            entity_type="company",
            entity_id=company.id,
            company_id=company.id,
            changes=new,
            old_values=old,
        )
    return company


def apply_governance_pack(db: Session, actor: Actor, *, tenant_id: UUID, pack: str) -> Tenant:
    if pack not in GOVERNANCE_PACKS:
        raise ValidationFailed(
            f"Unknown governance pack '{pack}'", code="UNKNOWN_GOVERNANCE_PACK"
        )
    tenant = get_tenant(db, tenant_id)
    definition = GOVERNANCE_PACKS[pack]
    previous = tenant.governance_pack

    tenant.governance_pack = pack
    tenant.feature_flags = dict(definition["feature_flags"])
    for company in tenant.companies:
        company.policy_settings = {**company.policy_settings, **definition["policy_settings"]}
    db.flush()

    log_action(
        db,
        actor=actor,
        action="GOVERNANCE_PACK_APPLIED",
        entity_type="tenant",
        entity_id=tenant.id,
        changes={"governance_pack": pack, "feature_flags": tenant.feature_flags},
        old_values={"governance_pack": previous},
    )
    logger.info("Tenant %s switched governance pack %s -> %s", tenant.slug, previous, pack)
    return tenant


def is_feature_enabled(tenant: Tenant, flag: str) -> bool:
    return bool({**DEFAULT_FEATURE_FLAGS, **(tenant.feature_flags or {})}.get(flag, False))
