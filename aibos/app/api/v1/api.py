from fastapi import APIRouter, Depends

from aibos.app.api.deps import require_feature
from aibos.app.api.v1.endpoints import (
    accounts,
    attachments,
    audit,
    auth,
    banking,
    billing,
    bills,
    customers,
    invoices,
    journals,
    payments,
    periods,
    reports,
    subscriptions,
    suppliers,
    tax,
    tenants,
    usage,
    users,
)

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(tenants.router, prefix="/tenants", tags=["tenants"])
api_router.include_router(users.router, prefix="/users", tags=["users"])
api_router.include_router(accounts.router, prefix="/accounts", tags=["accounts"])
api_router.include_router(
    journals.router,
    prefix="/journals",
    tags=["journals"],
    dependencies=[Depends(require_feature("je"))],
)
api_router.include_router(periods.router, prefix="/periods", tags=["periods"])
api_router.include_router(tax.router, tags=["tax"])
api_router.include_router(
    customers.router,
    prefix="/customers",
    tags=["customers"],
    dependencies=[Depends(require_feature("ar"))],
)
api_router.include_router(
    invoices.router,
    prefix="/invoices",
    tags=["invoices"],
    dependencies=[Depends(require_feature("ar"))],
)
api_router.include_router(
    suppliers.router,
    prefix="/suppliers",
    tags=["suppliers"],
    dependencies=[Depends(require_feature("ap"))],
)
api_router.include_router(
    bills.router,
    prefix="/bills",
    tags=["bills"],
    dependencies=[Depends(require_feature("ap"))],
)
api_router.include_router(payments.router, prefix="/payments", tags=["payments"])
api_router.include_router(banking.router, tags=["banking"])
api_router.include_router(
    reports.router,
    prefix="/reports",
    tags=["reports"],
    dependencies=[Depends(require_feature("reports"))],
)
api_router.include_router(
    attachments.router,
    prefix="/attachments",
    tags=["attachments"],
    dependencies=[Depends(require_feature("attachments"))],
)
api_router.include_router(subscriptions.router, prefix="/subscriptions", tags=["billing"])
api_router.include_router(billing.router, prefix="/billing", tags=["billing"])
api_router.include_router(usage.router, prefix="/usage", tags=["billing"])
api_router.include_router(audit.router, prefix="/audit-logs", tags=["audit"])
