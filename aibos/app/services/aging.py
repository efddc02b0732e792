from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func as sa_func
from sqlalchemy.orm import Session

from aibos.app.core.errors import ValidationFailed
from aibos.app.core.timeutils import today as _today
from aibos.app.models.bill import OPEN_BILL_STATUSES, Bill
from aibos.app.models.customer import Customer
from aibos.app.models.invoice import OPEN_INVOICE_STATUSES, Invoice, InvoiceStatus
from aibos.app.models.supplier import Supplier

ZERO = Decimal("0")
Q = Decimal("0.0001")
BUCKETS = ("current", "days_31_60", "days_61_90", "over_90")


def bucket(days_overdue: int) -> str:
    """Assign an aging bucket based on days past due."""
    if days_overdue <= 30:
        return "current"
    elif days_overdue <= 60:
        return "days_31_60"
    elif days_overdue <= 90:
        return "days_61_90"
    else:
        return "over_90"


def empty_buckets() -> dict[str, Decimal]:
    return {name: ZERO for name in BUCKETS}


def _base(amount: Decimal, rate: Decimal | None) -> Decimal:
    return (Decimal(str(amount)) * Decimal(str(rate or 1))).quantize(Q)


def _rows(party_data: dict[UUID, dict]) -> tuple[list[dict], dict]:
    rows = []
    grand = empty_buckets()
    for party_id, data in sorted(party_data.items(), key=lambda x: x[1]["name"]):
        b = data["buckets"]
        rows.append(
            {
                "party_id": party_id,
                "name": data["name"],
                **b,
                "total": sum(b.values(), ZERO),
                "document_count": data["count"],
            }
        )
        for k in grand:
            grand[k] += b[k]
    totals = {"name": "Total", **grand, "total": sum(grand.values(), ZERO)}
    return rows, totals


def _check_as_of(as_of: date, today: date | None) -> None:
    if as_of > (today or _today()):
        raise ValidationFailed("Report dates cannot be in the future", code="FUTURE_DATE")


def ar_aging(
    db: Session, company_id: UUID, *, as_of: date, today: date | None = None
) -> dict:
    """Open receivables per customer, bucketed by days past due, in base currency."""
    _check_as_of(as_of, today)
    invoices = (
        db.query(Invoice, Customer.name)
        .join(Customer, Invoice.customer_id == Customer.id)
        .filter(
            Invoice.company_id == company_id,
            Invoice.status.in_(OPEN_INVOICE_STATUSES),
            Invoice.invoice_date <= as_of,
            Invoice.balance_amount > 0,
        )
        .all()
    )

    customer_data: dict[UUID, dict] = {}
    total_receivable = ZERO
    total_overdue = ZERO
    for inv, name in invoices:
        outstanding = _base(inv.balance_amount, inv.exchange_rate)
        days_past_due = (as_of - inv.due_date).days
        data = customer_data.setdefault(
            inv.customer_id, {"name": name, "buckets": empty_buckets(), "count": 0}
        )
        data["buckets"][bucket(max(0, days_past_due))] += outstanding
        data["count"] += 1
        total_receivable += outstanding
        if days_past_due > 0:
            total_overdue += outstanding

    # DSO over the trailing year of issued invoices.
    year_ago = as_of - timedelta(days=365)
    base_total = Invoice.total_amount * sa_func.coalesce(Invoice.exchange_rate, 1)
    sales = (
        db.query(sa_func.coalesce(sa_func.sum(base_total), 0))
        .filter(
            Invoice.company_id == company_id,
            Invoice.status != InvoiceStatus.DRAFT,
            Invoice.status != InvoiceStatus.CANCELLED,
            Invoice.invoice_date > year_ago,
            Invoice.invoice_date <= as_of,
        )
        .scalar()
    )
    sales = Decimal(str(sales))
    dso = ZERO
    if sales > ZERO:
        dso = (total_receivable / sales * 365).quantize(Decimal("0.1"))

    customers, totals = _rows(customer_data)
    return {
        "as_of": as_of,
        "kpi": {
            "total_receivable": total_receivable,
            "total_overdue": total_overdue,
            "dso": dso,
        },
        "parties": customers,
        "totals": totals,
    }


def ap_aging(
    db: Session, company_id: UUID, *, as_of: date, today: date | None = None
) -> dict:
    """Open payables per supplier, bucketed by days past due, in base currency."""
    _check_as_of(as_of, today)
    bills = (
        db.query(Bill, Supplier.name)
        .join(Supplier, Bill.supplier_id == Supplier.id)
        .filter(
            Bill.company_id == company_id,
            Bill.status.in_(OPEN_BILL_STATUSES),
            Bill.bill_date <= as_of,
            Bill.balance_amount > 0,
        )
        .all()
    )

    supplier_data: dict[UUID, dict] = {}
    total_payable = ZERO
    total_overdue = ZERO
    for bill, name in bills:
        outstanding = _base(bill.balance_amount, bill.exchange_rate)
        days_past_due = (as_of - bill.due_date).days
        data = supplier_data.setdefault(
            bill.supplier_id, {"name": name, "buckets": empty_buckets(), "count": 0}
        )
        data["buckets"][bucket(max(0, days_past_due))] += outstanding
        data["count"] += 1
        total_payable += outstanding
        if days_past_due > 0:
            total_overdue += outstanding

    suppliers, totals = _rows(supplier_data)
    return {
        "as_of": as_of,
        "kpi": {"total_payable": total_payable, "total_overdue": total_overdue},
        "parties": suppliers,
        "totals": totals,
    }
