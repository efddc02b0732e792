"""Request dependencies: authentication, tenant context and access guards.

Usage in endpoints::

    @router.post("")
    def create_account(
        body: AccountCreate,
        db: Session = Depends(get_db),
        ctx: TenantContext = Depends(require_permission("account:write")),
    ):
        company = ctx.require_company()
        ...
"""

from __future__ import annotations

import ipaddress
import json
import logging
from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from pydantic import BaseModel
from sqlalchemy.orm import Session

from aibos.app.core.database import get_db
from aibos.app.core.errors import NotFoundError, PermissionDenied, ValidationFailed
from aibos.app.core.permissions import effective_permissions, is_allowed
from aibos.app.core.security import decode_access_token, is_token_revoked
from aibos.app.models.tenant import Company, Tenant
from aibos.app.models.user import Membership, User
from aibos.app.services import idempotency as idempotency_service
from aibos.app.services.audit import Actor
from aibos.app.services.tenants import is_feature_enabled

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login/access-token")


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def get_current_user(
    db: Session = Depends(get_db),
    token: str = Depends(oauth2_scheme),
) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if is_token_revoked(token):
        raise credentials_exception

    try:
        payload = decode_access_token(token)
        user_id: str | None = payload.get("sub")
        if user_id is None:
            raise credentials_exception
        user_uuid = UUID(user_id)
    except (JWTError, ValueError):
        raise credentials_exception

    user = db.query(User).filter(User.id == user_uuid).first()
    if user is None:
        raise credentials_exception
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Inactive user"
        )
    return user


@dataclass
class TenantContext:
    """The authenticated user acting inside one tenant (and maybe one company)."""

    user: User
    membership: Membership
    tenant: Tenant
    company: Company | None
    permissions: frozenset[str]
    ip_address: str | None = None
    user_agent: str | None = None
    request_id: str | None = None

    @property
    def role(self) -> str:
        return self.membership.role

    @property
    def actor(self) -> Actor:
        return Actor(
            user_id=self.user.id,
            tenant_id=self.tenant.id,
            company_id=self.company.id if self.company else None,
            role=self.membership.role,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
            request_id=self.request_id,
            permissions=self.permissions,
        )

    def require_company(self) -> Company:
        if self.company is None:
            raise ValidationFailed(
                "X-Company-Id header is required for this operation",
                code="COMPANY_REQUIRED",
            )
        return self.company

    def can(self, code: str) -> bool:
        return is_allowed(self.permissions, code)


def _check_ip_allowlist(company: Company, ip: str) -> None:
    allowlist = (company.policy_settings or {}).get("ip_allowlist") or []
    if not allowlist:
        return
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        address = None
    for entry in allowlist:
        try:
            if address is not None and address in ipaddress.ip_network(entry, strict=False):
                return
        except ValueError:
            logger.warning("Ignoring malformed ip_allowlist entry %r on company %s", entry, company.id)
    raise PermissionDenied("Requests from this address are not allowed", code="IP_NOT_ALLOWED")


def get_tenant_context(
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    x_tenant_id: UUID | None = Header(None, alias="X-Tenant-Id"),
    x_company_id: UUID | None = Header(None, alias="X-Company-Id"),
) -> TenantContext:
    if x_tenant_id is None:
        raise ValidationFailed("X-Tenant-Id header is required", code="TENANT_REQUIRED")

    membership = (
        db.query(Membership)
        .filter(
            Membership.user_id == user.id,
            Membership.tenant_id == x_tenant_id,
            Membership.is_active.is_(True),
        )
        .first()
    )
    if membership is None:
        raise PermissionDenied("You are not a member of this tenant", code="NO_MEMBERSHIP")
    tenant = db.query(Tenant).filter(Tenant.id == x_tenant_id).first()
    if tenant is None or not tenant.is_active:
        raise PermissionDenied("Tenant is not active", code="NO_MEMBERSHIP")

    company_id = x_company_id or membership.company_id
    company: Company | None = None
    if company_id is not None:
        if membership.company_id is not None and membership.company_id != company_id:
            raise PermissionDenied(
                "Your membership does not cover this company", code="NO_MEMBERSHIP"
            )
        company = (
            db.query(Company)
            .filter(
                Company.id == company_id,
                Company.tenant_id == tenant.id,
                Company.is_active.is_(True),
            )
            .first()
        )
        if company is None:
            raise NotFoundError("Company not found", code="COMPANY_NOT_FOUND")
        _check_ip_allowlist(company, client_ip(request))

    return TenantContext(
        user=user,
        membership=membership,
        tenant=tenant,
        company=company,
        permissions=frozenset(effective_permissions(membership.role, membership.permissions)),
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        request_id=getattr(request.state, "request_id", None),
    )


def require_permission(*permission_codes: str):
    """Dependency factory: the member must hold **all** listed permissions.

    Returns the ``TenantContext`` so the endpoint can use it.
    """

    def _checker(ctx: TenantContext = Depends(get_tenant_context)) -> TenantContext:
        missing = [code for code in permission_codes if not ctx.can(code)]
        if missing:
            logger.warning(
                "Permission denied: user=%s role=%s missing=%s",
                ctx.user.id, ctx.role, ",".join(missing),
            )
            raise PermissionDenied(
                f"Missing permissions: {', '.join(sorted(missing))}",
                code="PERMISSION_DENIED",
            )
        return ctx

    return _checker


def require_feature(flag: str):
    """Dependency factory: 403 ``FEATURE_DISABLED`` unless the tenant flag is on."""

    def _checker(ctx: TenantContext = Depends(get_tenant_context)) -> TenantContext:
        if not is_feature_enabled(ctx.tenant, flag):
            raise PermissionDenied(
                f"The '{flag}' feature is disabled for this tenant",
                code="FEATURE_DISABLED",
            )
        return ctx

    return _checker


# ─── Idempotency-Key ─────────────────────────────────────────────────────────


@dataclass
class IdempotencyRequest:
    key: str
    body_hash: str


async def idempotency_key(
    request: Request,
    key: str | None = Header(None, alias="Idempotency-Key"),
) -> IdempotencyRequest | None:
    if key is None:
        return None
    raw = await request.body()
    try:
        body = json.loads(raw) if raw else None
    except ValueError:
        body = raw.decode("utf-8", errors="replace")
    return IdempotencyRequest(
        key=idempotency_service.check_key(key),
        body_hash=idempotency_service.request_hash(body),
    )


def replay(
    db: Session, ctx: TenantContext, scope: str, idem: IdempotencyRequest | None
) -> JSONResponse | None:
    """Return the stored response for a repeated request, if any."""
    if idem is None:
        return None
    record = idempotency_service.lookup(
        db, tenant_id=ctx.tenant.id, scope=scope, key=idem.key, body_hash=idem.body_hash
    )
    if record is None:
        return None
    logger.info("Replaying idempotent response for %s key=%s", scope, idem.key)
    return JSONResponse(
        status_code=record.response_status,
        content=record.response_body,
        headers={"Idempotent-Replayed": "true"},
    )


def remember(
    db: Session,
    ctx: TenantContext,
    scope: str,
    idem: IdempotencyRequest | None,
    status_code: int,
    body: object,
) -> None:
    if idem is None:
        return
    idempotency_service.store(
        db,
        tenant_id=ctx.tenant.id,
        scope=scope,
        key=idem.key,
        body_hash=idem.body_hash,
        status_code=status_code,
        response_body=body.model_dump(mode="json") if isinstance(body, BaseModel) else body,
    )
