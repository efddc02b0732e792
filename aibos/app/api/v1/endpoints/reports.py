from __future__ import annotations

from datetime import date
from typing import Literal

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from aibos.app.api.deps import TenantContext, require_permission
from aibos.app.core.database import get_db
from aibos.app.services import aging as aging_service
from aibos.app.services import reports as report_service
from aibos.app.services.access import enforce_sod
from aibos.app.services.exports import export_report

router = APIRouter()


@router.get("/trial-balance")
def trial_balance(
    as_of: date = Query(...),
    include_zero: bool = Query(False),
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("report:read")),
) -> dict[str, object]:
    return report_service.trial_balance(
        db, ctx.require_company(), as_of=as_of, include_zero=include_zero
    )


@router.get("/balance-sheet")
def balance_sheet(
    as_of: date = Query(...),
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("report:read")),
) -> dict[str, object]:
    return report_service.balance_sheet(db, ctx.require_company(), as_of=as_of)


@router.get("/profit-loss")
def profit_loss(
    date_from: date = Query(..., alias="from"),
    date_to: date = Query(..., alias="to"),
    compare_from: date | None = Query(None),
    compare_to: date | None = Query(None),
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("report:read")),
) -> dict[str, object]:
    return report_service.profit_loss(
        db,
        ctx.require_company(),
        date_from=date_from,
        date_to=date_to,
        compare_from=compare_from,
        compare_to=compare_to,
    )


@router.get("/cash-flow")
def cash_flow(
    date_from: date = Query(..., alias="from"),
    date_to: date = Query(..., alias="to"),
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("report:read")),
) -> dict[str, object]:
    return report_service.cash_flow(
        db, ctx.require_company(), date_from=date_from, date_to=date_to
    )


# ── Aging ───────────────────────────────────────────────────────────────────


@router.get("/ar-aging")
def ar_aging(
    as_of: date = Query(...),
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("report:read")),
) -> dict[str, object]:
    return aging_service.ar_aging(db, ctx.require_company().id, as_of=as_of)


@router.get("/ap-aging")
def ap_aging(
    as_of: date = Query(...),
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("report:read")),
) -> dict[str, object]:
    return aging_service.ap_aging(db, ctx.require_company().id, as_of=as_of)


# ── Exports ─────────────────────────────────────────────────────────────────


@router.get("/{report}/export")
def export(
    report: str,
    fmt: Literal["csv", "xlsx", "pdf"] = Query("csv", alias="format"),
    as_of: date | None = Query(None),
    date_from: date | None = Query(None, alias="from"),
    date_to: date | None = Query(None, alias="to"),
    reason: str | None = Query(None, max_length=500),
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("report:export")),
) -> Response:
    enforce_sod(ctx.actor, "report:export")
    exported = export_report(
        db,
        ctx.actor,
        company=ctx.require_company(),
        report=report,
        fmt=fmt,
        params={"as_of": as_of, "date_from": date_from, "date_to": date_to},
        reason=reason,
    )
    db.commit()
    return Response(
        content=exported.content,
        media_type=exported.media_type,
        headers={"Content-Disposition": f'attachment; filename="{exported.filename}"'},
    )
