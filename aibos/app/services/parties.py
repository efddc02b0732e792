"""Customers and suppliers.

Does NOT call db.commit(). The caller is responsible.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from aibos.app.core.database import next_sequence
from aibos.app.core.errors import NotFoundError
from aibos.app.models.customer import Customer, PartyStatus
from aibos.app.models.invoice import Invoice, OPEN_INVOICE_STATUSES
from aibos.app.models.supplier import Supplier
from aibos.app.models.tenant import Company
from aibos.app.services.audit import Actor, log_action


def _next_number(db: Session, model, column, company_id: UUID, prefix: str) -> str:
    return next_sequence(db, column, f"{prefix}-", model.company_id == company_id, width=5)


# ─── Customers ───────────────────────────────────────────────────────────────


def list_customers(
    db: Session,
    company_id: UUID,
    *,
    status: PartyStatus | None = None,
    search: str | None = None,
) -> list[Customer]:
    q = db.query(Customer).filter(Customer.company_id == company_id)
    if status is not None:
        q = q.filter(Customer.status == status)
    if search:
        pattern = f"%{search}%"
        q = q.filter(
            or_(
                Customer.name.ilike(pattern),
                Customer.customer_number.ilike(pattern),
                Customer.email.ilike(pattern),
            )
        )
    return q.order_by(Customer.customer_number).all()


def get_customer(db: Session, company_id: UUID, customer_id: UUID) -> Customer:
    customer = (
        db.query(Customer)
        .filter(Customer.id == customer_id, Customer.company_id == company_id)
        .first()
    )
    if customer is None:
        raise NotFoundError("Customer not found", code="CUSTOMER_NOT_FOUND")
    return customer


def create_customer(
    db: Session, actor: Actor, *, company: Company, data: dict[str, Any]
) -> Customer:
    customer = Customer(
        tenant_id=company.tenant_id,
        company_id=company.id,
        customer_number=_next_number(db, Customer, Customer.customer_number, company.id, "CUST"),
        currency=data.pop("currency", None) or company.base_currency,
        **data,
    )
    db.add(customer)
    db.flush()
    log_action(
        db,
        actor=actor,
        action="CUSTOMER_CREATED",
        entity_type="customer",
        entity_id=customer.id,
        company_id=company.id,
        changes={"customer_number": customer.customer_number, "name": customer.name},
    )
    return customer


def update_customer(
    db: Session, actor: Actor, *, company_id: UUID, customer_id: UUID, data: dict[str, Any]
) -> Customer:
    customer = get_customer(db, company_id, customer_id)
    old = {k: getattr(customer, k) for k in data}
    for key, value in data.items():
        setattr(customer, key, value)
    db.flush()
    log_action(
        db,
        actor=actor,
        action="CUSTOMER_UPDATED",
        entity_type="customer",
        entity_id=customer.id,
        company_id=company_id,
        old_values=old,
        changes=data,
    )
    return customer


def customer_outstanding(db: Session, customer_id: UUID) -> Decimal:
    """Open receivable balance across posted, unpaid invoices, in base currency."""
    base_balance = Invoice.balance_amount * func.coalesce(Invoice.exchange_rate, 1)
    total = (
        db.query(func.coalesce(func.sum(base_balance), 0))
        .filter(Invoice.customer_id == customer_id, Invoice.status.in_(OPEN_INVOICE_STATUSES))
        .scalar()
    )
    return Decimal(str(total))


# ─── Suppliers ───────────────────────────────────────────────────────────────


def list_suppliers(
    db: Session,
    company_id: UUID,
    *,
    status: PartyStatus | None = None,
    search: str | None = None,
) -> list[Supplier]:
    q = db.query(Supplier).filter(Supplier.company_id == company_id)
    if status is not None:
        q = q.filter(Supplier.status == status)
    if search:
        pattern = f"%{search}%"
        q = q.filter(or_(Supplier.name.ilike(pattern), Supplier.supplier_number.ilike(pattern)))
    return q.order_by(Supplier.supplier_number).all()


def get_supplier(db: Session, company_id: UUID, supplier_id: UUID) -> Supplier:
    supplier = (
        db.query(Supplier)
        .filter(Supplier.id == supplier_id, Supplier.company_id == company_id)
        .first()
    )
    if supplier is None:
        raise NotFoundError("Supplier not found", code="SUPPLIER_NOT_FOUND")
    return supplier


def create_supplier(
    db: Session, actor: Actor, *, company: Company, data: dict[str, Any]
) -> Supplier:
    supplier = Supplier(
        tenant_id=company.tenant_id,
        company_id=company.id,
        supplier_number=_next_number(db, Supplier, Supplier.supplier_number, company.id, "SUPP"),
        currency=data.pop("currency", None) or company.base_currency,
        **data,
    )
    db.add(supplier)
    db.flush()
    log_action(
        db,
        actor=actor,
        action="SUPPLIER_CREATED",
        entity_type="supplier",
        entity_id=supplier.id,
        company_id=company.id,
        changes={"supplier_number": supplier.supplier_number, "name": supplier.name},
    )
    return supplier


def update_supplier(
    db: Session, actor: Actor, *, company_id: UUID, supplier_id: UUID, data: dict[str, Any]
) -> Supplier:
    supplier = get_supplier(db, company_id, supplier_id)
    old = {k: getattr(supplier, k) for k in data}
    for key, value in data.items():
        setattr(supplier, key, value)
    db.flush()
    log_action(
        db,
        actor=actor,
        action="SUPPLIER_UPDATED",
        entity_type="supplier",
        entity_id=supplier.id,
        company_id=company_id,
        old_values=old,
        changes=data,
    )
    return supplier
