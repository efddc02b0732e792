from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from aibos.app.api.deps import (
    TenantContext,
    client_ip,
    get_current_user,
    require_permission,
)
from aibos.app.core.database import get_db
from aibos.app.models.tenant import Company, Tenant
from aibos.app.models.user import User
from aibos.app.schemas.tenancy import (
    CompanyCreate,
    CompanyOut,
    CompanyUpdate,
    GovernancePackApply,
    RecommendedPack,
    TenantCreate,
    TenantOut,
)
from aibos.app.services import tenants as tenant_service

router = APIRouter()


@router.post("", response_model=TenantOut, status_code=status.HTTP_201_CREATED)
def create_tenant(
    body: TenantCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Tenant:
    """Onboard a tenant with its first company; the caller becomes its admin."""
    tenant, _company, _membership = tenant_service.create_tenant(
        db,
        current_user,
        name=body.name,
        slug=body.slug,
        company_code=body.company.code,
        company_name=body.company.name,
        base_currency=body.company.base_currency,
        fiscal_year_end=body.company.fiscal_year_end,
        governance_pack=body.governance_pack,
        ip_address=client_ip(request),
        request_id=getattr(request.state, "request_id", None),
    )
    db.commit()
    db.refresh(tenant)
    return tenant


@router.get("/recommended-pack", response_model=RecommendedPack)
def recommended_pack(
    user_count: int = Query(..., ge=1),
    has_compliance: bool = Query(False),
    _current_user: User = Depends(get_current_user),
) -> RecommendedPack:
    return RecommendedPack(
        pack=tenant_service.get_recommended_pack(user_count, has_compliance)
    )


@router.get("/current", response_model=TenantOut)
def current_tenant(
    ctx: TenantContext = Depends(require_permission("tenant:read")),
) -> Tenant:
    return ctx.tenant


@router.post(
    "/current/companies", response_model=CompanyOut, status_code=status.HTTP_201_CREATED
)
def create_company(
    body: CompanyCreate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("tenant:manage")),
) -> Company:
    company = tenant_service.create_company(
        db,
        ctx.actor,
        tenant=ctx.tenant,
        code=body.code,
        name=body.name,
        base_currency=body.base_currency,
        fiscal_year_end=body.fiscal_year_end,
    )
    db.commit()
    db.refresh(company)
    return company


@router.patch("/current/companies/{company_id}", response_model=CompanyOut)
def update_company(
    company_id: UUID,
    body: CompanyUpdate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("tenant:manage")),
) -> Company:
    changes = body.model_dump(exclude_unset=True)
    if body.policy_settings is not None:
        changes["policy_settings"] = body.policy_settings.model_dump(exclude_none=True)
    company = tenant_service.update_company(
        db, ctx.actor, tenant_id=ctx.tenant.id, company_id=company_id, changes=changes
    )
    db.commit()
    db.refresh(company)
    return company


@router.post("/current/governance-pack", response_model=TenantOut)
def apply_governance_pack(
    body: GovernancePackApply,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("tenant:manage")),
) -> Tenant:
    tenant = tenant_service.apply_governance_pack(
        db, ctx.actor, tenant_id=ctx.tenant.id, pack=body.pack
    )
    db.commit()
    db.refresh(tenant)
    return tenant
