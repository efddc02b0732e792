from __future__ import annotations

from decimal import Decimal
from typing import Iterable
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from aibos.app.core.errors import ConflictError, NotFoundError, ValidationFailed
from aibos.app.models.account import (
    Account,
    AccountCategory,
    AccountType,
    normal_balance_for,
)
from aibos.app.models.journal import LEDGER_STATUSES, Journal, JournalLine
from aibos.app.models.tenant import Company
from aibos.app.schemas.accounts import AccountCreate, AccountOut, AccountUpdate
from aibos.app.services.audit import Actor, log_action

# Category -> account type it may be used with.
_CATEGORY_TYPES: dict[AccountCategory, AccountType] = {
    AccountCategory.CASH: AccountType.ASSET,
    AccountCategory.BANK: AccountType.ASSET,
    AccountCategory.RECEIVABLE: AccountType.ASSET,
    AccountCategory.CURRENT_ASSET: AccountType.ASSET,
    AccountCategory.FIXED_ASSET: AccountType.ASSET,
    AccountCategory.INVESTMENT: AccountType.ASSET,
    AccountCategory.PAYABLE: AccountType.LIABILITY,
    AccountCategory.CURRENT_LIABILITY: AccountType.LIABILITY,
    AccountCategory.LONG_TERM_LIABILITY: AccountType.LIABILITY,
    AccountCategory.EQUITY: AccountType.EQUITY,
    AccountCategory.RETAINED_EARNINGS: AccountType.EQUITY,
    AccountCategory.REVENUE: AccountType.REVENUE,
    AccountCategory.OTHER_INCOME: AccountType.REVENUE,
    AccountCategory.COST_OF_SALES: AccountType.EXPENSE,
    AccountCategory.OPERATING_EXPENSE: AccountType.EXPENSE,
    AccountCategory.OTHER_EXPENSE: AccountType.EXPENSE,
}

# Malaysian SME starter chart: (code, name, type, category)
DEFAULT_CHART: list[tuple[str, str, AccountType, AccountCategory]] = [
    ("1000", "Cash on Hand", AccountType.ASSET, AccountCategory.CASH),
    ("1100", "Bank - Current Account", AccountType.ASSET, AccountCategory.BANK),
    ("1200", "Accounts Receivable", AccountType.ASSET, AccountCategory.RECEIVABLE),
    ("1300", "SST Input Tax", AccountType.ASSET, AccountCategory.TAX),
    ("1400", "Prepayments", AccountType.ASSET, AccountCategory.CURRENT_ASSET),
    ("1500", "Office Equipment", AccountType.ASSET, AccountCategory.FIXED_ASSET),
    ("1600", "Fixed Deposits", AccountType.ASSET, AccountCategory.INVESTMENT),
    ("2000", "Accounts Payable", AccountType.LIABILITY, AccountCategory.PAYABLE),
    ("2100", "SST Output Tax", AccountType.LIABILITY, AccountCategory.TAX),
    ("2200", "Accrued Liabilities", AccountType.LIABILITY, AccountCategory.CURRENT_LIABILITY),
    ("2500", "Term Loan", AccountType.LIABILITY, AccountCategory.LONG_TERM_LIABILITY),
    ("3000", "Share Capital", AccountType.EQUITY, AccountCategory.EQUITY),
    ("3100", "Retained Earnings", AccountType.EQUITY, AccountCategory.RETAINED_EARNINGS),
    ("4000", "Sales Revenue", AccountType.REVENUE, AccountCategory.REVENUE),
    ("4100", "Service Revenue", AccountType.REVENUE, AccountCategory.REVENUE),
    ("4900", "Other Income", AccountType.REVENUE, AccountCategory.OTHER_INCOME),
    ("5000", "Cost of Goods Sold", AccountType.EXPENSE, AccountCategory.COST_OF_SALES),
    ("6000", "Salaries and Wages", AccountType.EXPENSE, AccountCategory.OPERATING_EXPENSE),
    ("6100", "Rent", AccountType.EXPENSE, AccountCategory.OPERATING_EXPENSE),
    ("6200", "Utilities", AccountType.EXPENSE, AccountCategory.OPERATING_EXPENSE),
    ("6300", "Office Supplies", AccountType.EXPENSE, AccountCategory.OPERATING_EXPENSE),
    ("6900", "Bank Charges", AccountType.EXPENSE, AccountCategory.OTHER_EXPENSE),
]

# Accounts that AR/AP/payments post to and therefore cannot be deleted.
SYSTEM_CODES = frozenset({"1100", "1200", "1300", "2000", "2100", "3100"})


def _compute_balance(db: Session, account: Account) -> Decimal:
    row = (
        db.query(
            func.coalesce(func.sum(JournalLine.debit), 0).label("total_debit"),
            func.coalesce(func.sum(JournalLine.credit), 0).label("total_credit"),
        )
        .join(Journal, JournalLine.journal_id == Journal.id)
        .filter(JournalLine.account_id == account.id, Journal.status.in_(LEDGER_STATUSES))
        .one()
    )
    total_debit = Decimal(str(row.total_debit))
    total_credit = Decimal(str(row.total_credit))
    if account.account_type in (AccountType.ASSET, AccountType.EXPENSE):
        return total_debit - total_credit
    return total_credit - total_debit


def _to_out(db: Session, account: Account) -> AccountOut:
    return AccountOut(
        id=account.id,
        code=account.code,
        name=account.name,
        account_type=account.account_type,
        category=account.category,
        normal_balance=account.normal_balance,
        parent_id=account.parent_id,
        currency=account.currency,
        is_active=account.is_active,
        is_system=account.is_system,
        balance=str(_compute_balance(db, account)),
        created_at=account.created_at,
    )


def _get(db: Session, company_id: UUID, account_id: UUID) -> Account:
    account = (
        db.query(Account)
        .filter(Account.id == account_id, Account.company_id == company_id)
        .first()
    )
    if not account:
        raise NotFoundError("Account not found", code="ACCOUNT_NOT_FOUND")
    return account


def list_accounts(
    db: Session,
    company_id: UUID,
    *,
    account_type: AccountType | None = None,
    category: AccountCategory | None = None,
    include_inactive: bool = True,
) -> list[AccountOut]:
    q = db.query(Account).filter(Account.company_id == company_id)
    if account_type is not None:
        q = q.filter(Account.account_type == account_type)
    if category is not None:
        q = q.filter(Account.category == category)
    if not include_inactive:
        q = q.filter(Account.is_active.is_(True))
    return [_to_out(db, a) for a in q.order_by(Account.code).all()]


def get_account(db: Session, company_id: UUID, account_id: UUID) -> AccountOut:
    return _to_out(db, _get(db, company_id, account_id))


def find_by_category(
    db: Session, company_id: UUID, category: AccountCategory
) -> Account | None:
    """First active account of *category* by code, used for AR/AP/bank defaults."""
    return (
        db.query(Account)
        .filter(
            Account.company_id == company_id,
            Account.category == category,
            Account.is_active.is_(True),
        )
        .order_by(Account.code)
        .first()
    )


def find_by_code(db: Session, company_id: UUID, code: str) -> Account | None:
    return (
        db.query(Account)
        .filter(Account.company_id == company_id, Account.code == code)
        .first()
    )


def create_account(
    db: Session, actor: Actor, *, company: Company, payload: AccountCreate
) -> AccountOut:
    if find_by_code(db, company.id, payload.code):
        raise ConflictError(
            f"Account code '{payload.code}' already exists", code="ACCOUNT_CODE_TAKEN"
        )
    expected = _CATEGORY_TYPES.get(payload.category)
    if payload.category != AccountCategory.TAX and expected != payload.account_type:
        raise ValidationFailed(
            f"Category {payload.category.value} does not belong to {payload.account_type.value}",
            code="INVALID_CATEGORY",
        )
    if payload.parent_id is not None:
        parent = _get(db, company.id, payload.parent_id)
        if parent.account_type != payload.account_type:
            raise ValidationFailed(
                "Parent account must have the same type", code="INVALID_PARENT"
            )

    account = Account(
        tenant_id=company.tenant_id,
        company_id=company.id,
        code=payload.code,
        name=payload.name,
        account_type=payload.account_type,
        category=payload.category,
        parent_id=payload.parent_id,
        currency=payload.currency,
        is_system=False,
    )
    db.add(account)
    db.flush()

    log_action(
        db,
        actor=actor,
        action="ACCOUNT_CREATED",
        entity_type="account",
        entity_id=account.id,
        company_id=company.id,
        changes={
            "code": payload.code,
            "name": payload.name,
            "account_type": payload.account_type.value,
            "category": payload.category.value,
            "normal_balance": normal_balance_for(payload.account_type).value,
        },
    )
    return _to_out(db, account)


def update_account(
    db: Session, actor: Actor, *, company_id: UUID, account_id: UUID, payload: AccountUpdate
) -> AccountOut:
    account = _get(db, company_id, account_id)

    old_values: dict[str, str | bool] = {}
    new_values: dict[str, str | bool] = {}

    if payload.name is not None:
        old_values["name"] = account.name
        account.name = payload.name
        new_values["name"] = payload.name

    if payload.is_active is not None:
        if account.is_system and not payload.is_active:
            raise ValidationFailed(
                "System accounts cannot be deactivated", code="SYSTEM_ACCOUNT"
            )
        old_values["is_active"] = account.is_active
        account.is_active = payload.is_active
        new_values["is_active"] = payload.is_active

    db.flush()
    log_action(
        db,
        actor=actor,
        action="ACCOUNT_UPDATED",
        entity_type="account",
        entity_id=account.id,
        company_id=company_id,
        old_values=old_values,
        changes=new_values,
    )
    return _to_out(db, account)


def delete_account(db: Session, actor: Actor, *, company_id: UUID, account_id: UUID) -> None:
    account = _get(db, company_id, account_id)
    if account.is_system:
        raise ValidationFailed("System accounts cannot be deleted", code="SYSTEM_ACCOUNT")

    line_count = (
        db.query(func.count(JournalLine.id))
        .filter(JournalLine.account_id == account_id)
        .scalar()
    )
    if line_count:
        raise ConflictError(
            "Cannot delete account with existing transactions", code="ACCOUNT_IN_USE"
        )

    log_action(
        db,
        actor=actor,
        action="ACCOUNT_DELETED",
        entity_type="account",
        entity_id=account.id,
        company_id=company_id,
        old_values={"code": account.code, "name": account.name},
    )
    db.delete(account)
    db.flush()


def seed_default_chart(db: Session, actor: Actor, *, company: Company) -> list[Account]:
    """Install DEFAULT_CHART, skipping codes the company already has."""
    existing = {
        code
        for (code,) in db.query(Account.code).filter(Account.company_id == company.id).all()
    }
    created: list[Account] = []
    for code, name, account_type, category in DEFAULT_CHART:
        if code in existing:
            continue
        account = Account(
            tenant_id=company.tenant_id,
            company_id=company.id,
            code=code,
            name=name,
            account_type=account_type,
            category=category,
            currency=company.base_currency,
            is_system=code in SYSTEM_CODES,
        )
        db.add(account)
        created.append(account)
    db.flush()

    log_action(
        db,
        actor=actor,
        action="CHART_SEEDED",
        entity_type="company",
        entity_id=company.id,
        company_id=company.id,
        changes={"created": [a.code for a in created]},
    )
    return created


def check_accounts_of_type(
    db: Session, company_id: UUID, ids: Iterable[UUID], account_type: AccountType
) -> None:
    """Raise ACCOUNT_NOT_FOUND unless every id is an active *account_type* account."""
    wanted = set(ids)
    found = {
        account_id
        for (account_id,) in db.query(Account.id)
        .filter(
            Account.company_id == company_id,
            Account.id.in_(wanted),
            Account.account_type == account_type,
            Account.is_active.is_(True),
        )
        .all()
    }
    missing = wanted - found
    if missing:
        raise ValidationFailed(
            f"{account_type.value.title()} account not found: "
            f"{', '.join(sorted(str(m) for m in missing))}",
            code="ACCOUNT_NOT_FOUND",
        )
