"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
MONEY = sa.Numeric(precision=20, scale=4)
RATE = sa.Numeric(precision=20, scale=8)
PERCENT = sa.Numeric(precision=7, scale=4)

# Enum columns store member names.
ENUMS: dict[str, tuple[str, ...]] = {
    "accounttype": ("ASSET", "LIABILITY", "EQUITY", "REVENUE", "EXPENSE"),
    "accountcategory": (
        "CASH", "BANK", "RECEIVABLE", "CURRENT_ASSET", "FIXED_ASSET", "INVESTMENT",
        "PAYABLE", "CURRENT_LIABILITY", "LONG_TERM_LIABILITY", "TAX", "EQUITY",
        "RETAINED_EARNINGS", "REVENUE", "OTHER_INCOME", "COST_OF_SALES",
        "OPERATING_EXPENSE", "OTHER_EXPENSE",
    ),
    "taxtype": ("INPUT", "OUTPUT", "EXEMPT"),
    "paymentterms": ("NET_15", "NET_30", "NET_45", "NET_60", "COD", "PREPAID"),
    "partystatus": ("ACTIVE", "INACTIVE"),
    "journalstatus": ("DRAFT", "PENDING_APPROVAL", "POSTED", "REVERSED"),
    "periodstatus": ("OPEN", "CLOSED", "LOCKED"),
    "locktype": ("POSTING", "REPORTING", "FULL"),
    "reversalstatus": ("PENDING", "PROCESSED"),
    "invoicestatus": ("DRAFT", "SENT", "PAID", "OVERDUE", "CANCELLED"),
    "billstatus": ("DRAFT", "APPROVED", "POSTED", "PAID", "OVERDUE", "CANCELLED"),
    "paymenttype": ("BILL", "INVOICE"),
    "paymentmethod": (
        "BANK_TRANSFER", "CHECK", "CASH", "CREDIT_CARD", "DEBIT_CARD", "OTHER",
    ),
    "paymentstatus": ("POSTED", "VOIDED"),
    "plantype": ("FREE", "BASIC", "PROFESSIONAL", "ENTERPRISE"),
    "billingcycle": ("MONTHLY", "YEARLY"),
    "subscriptionstatus": ("TRIAL", "ACTIVE", "PAST_DUE", "CANCELLED", "EXPIRED"),
    "billinginvoicestatus": ("DRAFT", "SENT", "PAID", "OVERDUE", "CANCELLED"),
    "attachmentcategory": (
        "INVOICE", "RECEIPT", "CONTRACT", "REPORT", "STATEMENT", "TAX_DOCUMENT",
        "BANK_DOCUMENT", "LEGAL_DOCUMENT", "CORRESPONDENCE", "OTHER",
    ),
    "attachmentstatus": ("ACTIVE", "ARCHIVED", "DELETED", "PROCESSING", "FAILED"),
    "entitytype": (
        "INVOICE", "BILL", "JOURNAL", "CUSTOMER", "SUPPLIER", "PAYMENT",
        "BANK_TRANSACTION", "TAX_RETURN", "REPORT",
    ),
}


def _enum(name: str, create: bool = True) -> sa.types.TypeEngine:
    enum = sa.Enum(*ENUMS[name], name=name)
    if create:
        return enum
    # A Postgres enum type shared by two tables must only be created once.
    return enum.with_variant(
        postgresql.ENUM(*ENUMS[name], name=name, create_type=False), "postgresql"
    )


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    )


def _tenant_fk() -> sa.Column:
    return sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("tenants.id"), nullable=False)


def _company_fk() -> sa.Column:
    return sa.Column("company_id", sa.Uuid(), sa.ForeignKey("companies.id"), nullable=False)


def upgrade() -> None:
    # ─── Tenancy and users ──────────────────────────────────────────────────
    op.create_table(
        "tenants",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(100), unique=True, nullable=False),
        sa.Column("feature_flags", JSON, nullable=False),
        sa.Column("governance_pack", sa.String(30), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _created_at(),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_table(
        "companies",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _tenant_fk(),
        sa.Column("code", sa.String(20), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("base_currency", sa.String(3), nullable=False),
        sa.Column("fiscal_year_end", sa.Integer(), nullable=False),
        sa.Column("policy_settings", JSON, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _created_at(),
        sa.UniqueConstraint("tenant_id", "code", name="uq_company_tenant_code"),
        sa.CheckConstraint(
            "fiscal_year_end BETWEEN 1 AND 12", name="ck_company_fiscal_year_end"
        ),
    )
    op.create_index("ix_companies_tenant", "companies", ["tenant_id"])

    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _created_at(),
        sa.Column("failed_login_attempts", sa.Integer(), nullable=False),
        sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "memberships",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        _tenant_fk(),
        sa.Column("company_id", sa.Uuid(), sa.ForeignKey("companies.id"), nullable=True),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("permissions", JSON, nullable=False),
        sa.Column("can_manage_users", sa.Boolean(), nullable=False),
        sa.Column("can_manage_settings", sa.Boolean(), nullable=False),
        sa.Column("can_view_reports", sa.Boolean(), nullable=False),
        sa.Column("can_manage_companies", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _created_at(),
        sa.UniqueConstraint("user_id", "tenant_id", name="uq_membership_user_tenant"),
    )
    op.create_index("ix_memberships_tenant", "memberships", ["tenant_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("tenants.id"), nullable=True),
        sa.Column("company_id", sa.Uuid(), sa.ForeignKey("companies.id"), nullable=True),
        sa.Column("entity_type", sa.String(100), nullable=False),
        sa.Column("entity_id", sa.String(255), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("old_values", JSON, nullable=True),
        sa.Column("new_values", JSON, nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.Column("request_id", sa.String(128), nullable=True),
        _created_at(),
    )
    op.create_index("ix_audit_entity", "audit_logs", ["entity_type", "entity_id"])
    op.create_index("ix_audit_tenant_created", "audit_logs", ["tenant_id", "created_at"])
    op.create_index("ix_audit_action", "audit_logs", ["action"])
    op.create_index("ix_audit_user", "audit_logs", ["user_id"])

    # ─── Chart of accounts, tax, parties ────────────────────────────────────
    op.create_table(
        "accounts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _tenant_fk(),
        _company_fk(),
        sa.Column("code", sa.String(20), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("account_type", _enum("accounttype"), nullable=False),
        sa.Column("category", _enum("accountcategory"), nullable=False),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("parent_id", sa.Uuid(), sa.ForeignKey("accounts.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_system", sa.Boolean(), nullable=False),
        _created_at(),
        sa.UniqueConstraint("company_id", "code", name="uq_account_company_code"),
    )
    op.create_index("ix_accounts_company_type", "accounts", ["company_id", "account_type"])
    op.create_index("ix_accounts_category", "accounts", ["category"])

    op.create_table(
        "tax_codes",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _tenant_fk(),
        _company_fk(),
        sa.Column("code", sa.String(20), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("rate", PERCENT, nullable=False),
        sa.Column("tax_type", _enum("taxtype"), nullable=False),
        sa.Column("tax_account_id", sa.Uuid(), sa.ForeignKey("accounts.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _created_at(),
        sa.UniqueConstraint("company_id", "code", name="uq_tax_code_company_code"),
        sa.CheckConstraint("rate >= 0 AND rate <= 100", name="ck_tax_rate_range"),
    )

    op.create_table(
        "customers",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _tenant_fk(),
        _company_fk(),
        sa.Column("customer_number", sa.String(20), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("tax_id", sa.String(50), nullable=True),
        sa.Column("billing_address", JSON, nullable=True),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("payment_terms", _enum("paymentterms"), nullable=False),
        sa.Column("credit_limit", MONEY, nullable=True),
        sa.Column("status", _enum("partystatus"), nullable=False),
        _created_at(),
        sa.UniqueConstraint(
            "company_id", "customer_number", name="uq_customer_company_number"
        ),
    )
    op.create_index("ix_customers_company_name", "customers", ["company_id", "name"])

    op.create_table(
        "suppliers",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _tenant_fk(),
        _company_fk(),
        sa.Column("supplier_number", sa.String(20), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("contact_person", sa.String(255), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("tax_id", sa.String(50), nullable=True),
        sa.Column("address", JSON, nullable=True),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("payment_terms", _enum("paymentterms", create=False), nullable=False),
        sa.Column("status", _enum("partystatus", create=False), nullable=False),
        _created_at(),
        sa.UniqueConstraint(
            "company_id", "supplier_number", name="uq_supplier_company_number"
        ),
    )
    op.create_index("ix_suppliers_company_name", "suppliers", ["company_id", "name"])

    # ─── General ledger ─────────────────────────────────────────────────────
    op.create_table(
        "gl_journals",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _tenant_fk(),
        _company_fk(),
        sa.Column("journal_number", sa.String(50), nullable=False),
        sa.Column("journal_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("reference", sa.String(100), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("exchange_rate", RATE, nullable=False),
        sa.Column("total_debit", MONEY, nullable=False),
        sa.Column("total_credit", MONEY, nullable=False),
        sa.Column("status", _enum("journalstatus"), nullable=False),
        sa.Column("source_type", sa.String(30), nullable=True),
        sa.Column("source_id", sa.Uuid(), nullable=True),
        sa.Column("created_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("approved_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("posted_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("posted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "reversal_of_id", sa.Uuid(), sa.ForeignKey("gl_journals.id"), nullable=True
        ),
        sa.Column(
            "reversed_by_id", sa.Uuid(), sa.ForeignKey("gl_journals.id"), nullable=True
        ),
        _created_at(),
        sa.UniqueConstraint(
            "company_id", "journal_number", name="uq_journal_company_number"
        ),
        sa.CheckConstraint("exchange_rate > 0", name="ck_journal_exchange_rate_positive"),
    )
    op.create_index(
        "ix_gl_journals_company_date", "gl_journals", ["company_id", "journal_date"]
    )
    op.create_index("ix_gl_journals_status", "gl_journals", ["status"])
    op.create_index("ix_gl_journals_source", "gl_journals", ["source_type", "source_id"])

    op.create_table(
        "gl_journal_lines",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("journal_id", sa.Uuid(), sa.ForeignKey("gl_journals.id"), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("account_id", sa.Uuid(), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("debit", MONEY, nullable=False),
        sa.Column("credit", MONEY, nullable=False),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column("reference", sa.String(100), nullable=True),
        sa.CheckConstraint(
            "(debit > 0 AND credit = 0) OR (credit > 0 AND debit = 0)",
            name="ck_line_debit_xor_credit",
        ),
        sa.CheckConstraint("debit >= 0", name="ck_line_debit_non_negative"),
        sa.CheckConstraint("credit >= 0", name="ck_line_credit_non_negative"),
    )
    op.create_index("ix_gl_lines_journal", "gl_journal_lines", ["journal_id"])
    op.create_index("ix_gl_lines_account", "gl_journal_lines", ["account_id"])

    # ─── Fiscal periods ─────────────────────────────────────────────────────
    op.create_table(
        "fiscal_periods",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _tenant_fk(),
        _company_fk(),
        sa.Column("fiscal_year", sa.Integer(), nullable=False),
        sa.Column("period_number", sa.Integer(), nullable=False),
        sa.Column("period_name", sa.String(50), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("status", _enum("periodstatus"), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("reopen_reason", sa.String(500), nullable=True),
        _created_at(),
        sa.UniqueConstraint(
            "company_id",
            "fiscal_year",
            "period_number",
            name="uq_period_company_year_number",
        ),
        sa.CheckConstraint("end_date >= start_date", name="ck_period_dates"),
    )
    op.create_index(
        "ix_fiscal_periods_company_dates",
        "fiscal_periods",
        ["company_id", "start_date", "end_date"],
    )

    op.create_table(
        "period_locks",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "period_id", sa.Uuid(), sa.ForeignKey("fiscal_periods.id"), nullable=False
        ),
        sa.Column("lock_type", _enum("locktype"), nullable=False),
        sa.Column("reason", sa.String(500), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("locked_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "locked_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index("ix_period_locks_period", "period_locks", ["period_id"])

    op.create_table(
        "reversing_entries",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _tenant_fk(),
        _company_fk(),
        sa.Column(
            "original_journal_id",
            sa.Uuid(),
            sa.ForeignKey("gl_journals.id"),
            nullable=False,
        ),
        sa.Column("reversal_date", sa.Date(), nullable=False),
        sa.Column("status", _enum("reversalstatus"), nullable=False),
        sa.Column(
            "reversal_journal_id", sa.Uuid(), sa.ForeignKey("gl_journals.id"), nullable=True
        ),
        sa.Column("created_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        _created_at(),
    )
    op.create_index(
        "ix_reversing_entries_status_date",
        "reversing_entries",
        ["status", "reversal_date"],
    )

    # ─── Receivables and payables ───────────────────────────────────────────
    op.create_table(
        "ar_invoices",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _tenant_fk(),
        _company_fk(),
        sa.Column("customer_id", sa.Uuid(), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("invoice_number", sa.String(50), nullable=False),
        sa.Column("invoice_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("exchange_rate", RATE, nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("subtotal", MONEY, nullable=False),
        sa.Column("tax_amount", MONEY, nullable=False),
        sa.Column("total_amount", MONEY, nullable=False),
        sa.Column("paid_amount", MONEY, nullable=False),
        sa.Column("balance_amount", MONEY, nullable=False),
        sa.Column("status", _enum("invoicestatus"), nullable=False),
        sa.Column("journal_id", sa.Uuid(), sa.ForeignKey("gl_journals.id"), nullable=True),
        sa.Column("created_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        _created_at(),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint(
            "company_id", "invoice_number", name="uq_invoice_company_number"
        ),
        sa.CheckConstraint("due_date >= invoice_date", name="ck_invoice_due_after_issue"),
        sa.CheckConstraint("paid_amount >= 0", name="ck_invoice_paid_non_negative"),
    )
    op.create_index("ix_ar_invoices_customer", "ar_invoices", ["customer_id"])
    op.create_index("ix_ar_invoices_status_due", "ar_invoices", ["status", "due_date"])

    op.create_table(
        "ar_invoice_lines",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("invoice_id", sa.Uuid(), sa.ForeignKey("ar_invoices.id"), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(500), nullable=False),
        sa.Column("quantity", MONEY, nullable=False),
        sa.Column("unit_price", MONEY, nullable=False),
        sa.Column(
            "revenue_account_id", sa.Uuid(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("tax_code_id", sa.Uuid(), sa.ForeignKey("tax_codes.id"), nullable=True),
        sa.Column("tax_rate", PERCENT, nullable=False),
        sa.Column("line_amount", MONEY, nullable=False),
        sa.Column("tax_amount", MONEY, nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_invoice_line_quantity_positive"),
        sa.CheckConstraint("unit_price >= 0", name="ck_invoice_line_price_non_negative"),
    )
    op.create_index("ix_ar_invoice_lines_invoice", "ar_invoice_lines", ["invoice_id"])

    op.create_table(
        "ap_bills",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _tenant_fk(),
        _company_fk(),
        sa.Column("supplier_id", sa.Uuid(), sa.ForeignKey("suppliers.id"), nullable=False),
        sa.Column("bill_number", sa.String(50), nullable=False),
        sa.Column("bill_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("exchange_rate", RATE, nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("subtotal", MONEY, nullable=False),
        sa.Column("tax_amount", MONEY, nullable=False),
        sa.Column("total_amount", MONEY, nullable=False),
        sa.Column("paid_amount", MONEY, nullable=False),
        sa.Column("balance_amount", MONEY, nullable=False),
        sa.Column("status", _enum("billstatus"), nullable=False),
        sa.Column("journal_id", sa.Uuid(), sa.ForeignKey("gl_journals.id"), nullable=True),
        sa.Column("created_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("approved_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.UniqueConstraint("supplier_id", "bill_number", name="uq_bill_supplier_number"),
        sa.CheckConstraint("due_date >= bill_date", name="ck_bill_due_after_issue"),
    )
    op.create_index("ix_ap_bills_company_status", "ap_bills", ["company_id", "status"])

    op.create_table(
        "ap_bill_lines",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("bill_id", sa.Uuid(), sa.ForeignKey("ap_bills.id"), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(500), nullable=False),
        sa.Column("quantity", MONEY, nullable=False),
        sa.Column("unit_price", MONEY, nullable=False),
        sa.Column(
            "expense_account_id", sa.Uuid(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("tax_code_id", sa.Uuid(), sa.ForeignKey("tax_codes.id"), nullable=True),
        sa.Column("tax_rate", PERCENT, nullable=False),
        sa.Column("line_amount", MONEY, nullable=False),
        sa.Column("tax_amount", MONEY, nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_bill_line_quantity_positive"),
        sa.CheckConstraint("unit_price >= 0", name="ck_bill_line_price_non_negative"),
    )
    op.create_index("ix_ap_bill_lines_bill", "ap_bill_lines", ["bill_id"])

    # ─── Banking and payments ───────────────────────────────────────────────
    op.create_table(
        "bank_accounts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _tenant_fk(),
        _company_fk(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("bank_name", sa.String(255), nullable=True),
        sa.Column("account_number", sa.String(50), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("gl_account_id", sa.Uuid(), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _created_at(),
    )
    op.create_index("ix_bank_accounts_company", "bank_accounts", ["company_id"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _tenant_fk(),
        _company_fk(),
        sa.Column("payment_number", sa.String(50), nullable=False),
        sa.Column("payment_type", _enum("paymenttype"), nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("payment_method", _enum("paymentmethod"), nullable=False),
        sa.Column(
            "bank_account_id", sa.Uuid(), sa.ForeignKey("bank_accounts.id"), nullable=False
        ),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("exchange_rate", RATE, nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("reference", sa.String(100), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("supplier_id", sa.Uuid(), sa.ForeignKey("suppliers.id"), nullable=True),
        sa.Column("customer_id", sa.Uuid(), sa.ForeignKey("customers.id"), nullable=True),
        sa.Column("status", _enum("paymentstatus"), nullable=False),
        sa.Column("journal_id", sa.Uuid(), sa.ForeignKey("gl_journals.id"), nullable=True),
        sa.Column("is_reconciled", sa.Boolean(), nullable=False),
        sa.Column("created_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        _created_at(),
        sa.UniqueConstraint(
            "company_id", "payment_number", name="uq_payment_company_number"
        ),
        sa.CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
        sa.CheckConstraint("exchange_rate > 0", name="ck_payment_exchange_rate_positive"),
    )
    op.create_index("ix_payments_company_date", "payments", ["company_id", "payment_date"])

    op.create_table(
        "payment_allocations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("payment_id", sa.Uuid(), sa.ForeignKey("payments.id"), nullable=False),
        sa.Column("bill_id", sa.Uuid(), sa.ForeignKey("ap_bills.id"), nullable=True),
        sa.Column("invoice_id", sa.Uuid(), sa.ForeignKey("ar_invoices.id"), nullable=True),
        sa.Column("allocated_amount", MONEY, nullable=False),
        sa.CheckConstraint("allocated_amount > 0", name="ck_allocation_positive"),
        sa.CheckConstraint(
            "(bill_id IS NOT NULL AND invoice_id IS NULL) OR "
            "(invoice_id IS NOT NULL AND bill_id IS NULL)",
            name="ck_allocation_one_document",
        ),
    )
    op.create_index(
        "ix_payment_allocations_payment", "payment_allocations", ["payment_id"]
    )

    op.create_table(
        "bank_transactions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _tenant_fk(),
        _company_fk(),
        sa.Column(
            "bank_account_id", sa.Uuid(), sa.ForeignKey("bank_accounts.id"), nullable=False
        ),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("description", sa.String(500), nullable=False),
        sa.Column("reference", sa.String(255), nullable=True),
        sa.Column("debit_amount", MONEY, nullable=False),
        sa.Column("credit_amount", MONEY, nullable=False),
        sa.Column("balance", MONEY, nullable=True),
        sa.Column("is_matched", sa.Boolean(), nullable=False),
        sa.Column(
            "matched_payment_id", sa.Uuid(), sa.ForeignKey("payments.id"), nullable=True
        ),
        sa.Column("match_confidence", sa.Numeric(precision=5, scale=2), nullable=True),
        sa.Column("matched_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("matched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("import_batch_id", sa.String(100), nullable=True),
        _created_at(),
        sa.CheckConstraint(
            "(debit_amount > 0 AND credit_amount = 0) OR "
            "(credit_amount > 0 AND debit_amount = 0)",
            name="ck_bank_txn_one_direction",
        ),
    )
    op.create_index(
        "ix_bank_txn_account_date",
        "bank_transactions",
        ["bank_account_id", "transaction_date"],
    )
    op.create_index("ix_bank_txn_matched", "bank_transactions", ["is_matched"])

    # ─── Subscriptions and usage ────────────────────────────────────────────
    op.create_table(
        "subscription_plans",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(100), unique=True, nullable=False),
        sa.Column("plan_type", _enum("plantype"), nullable=False),
        sa.Column("price", MONEY, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("billing_cycle", _enum("billingcycle"), nullable=False),
        sa.Column("limits", JSON, nullable=False),
        sa.Column("features", JSON, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _created_at(),
    )
    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _tenant_fk(),
        sa.Column(
            "plan_id", sa.Uuid(), sa.ForeignKey("subscription_plans.id"), nullable=False
        ),
        sa.Column("status", _enum("subscriptionstatus"), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("trial_end_date", sa.Date(), nullable=True),
        sa.Column("auto_renew", sa.Boolean(), nullable=False),
        sa.Column("billing_address", JSON, nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("created_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        _created_at(),
    )
    op.create_index(
        "ix_subscriptions_tenant_status", "subscriptions", ["tenant_id", "status"]
    )

    op.create_table(
        "subscription_invoices",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _tenant_fk(),
        sa.Column(
            "subscription_id", sa.Uuid(), sa.ForeignKey("subscriptions.id"), nullable=False
        ),
        sa.Column("invoice_number", sa.String(50), unique=True, nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("status", _enum("billinginvoicestatus"), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("provider_reference", sa.String(255), nullable=True),
        _created_at(),
    )

    op.create_table(
        "usage_records",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _tenant_fk(),
        sa.Column("metric", sa.String(50), nullable=False),
        sa.Column("value", MONEY, nullable=False),
        sa.Column("unit", sa.String(20), nullable=False),
        sa.Column(
            "recorded_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("recorded_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
    )
    op.create_index(
        "ix_usage_records_tenant_metric_time",
        "usage_records",
        ["tenant_id", "metric", "recorded_at"],
    )

    # ─── Attachments and idempotency ────────────────────────────────────────
    op.create_table(
        "attachments",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _tenant_fk(),
        _company_fk(),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column("original_filename", sa.String(255), nullable=False),
        sa.Column("mime_type", sa.String(100), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False),
        sa.Column("file_hash", sa.String(64), nullable=False),
        sa.Column("storage_path", sa.String(500), nullable=False),
        sa.Column("category", _enum("attachmentcategory"), nullable=False),
        sa.Column("tags", JSON, nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_public", sa.Boolean(), nullable=False),
        sa.Column("status", _enum("attachmentstatus"), nullable=False),
        sa.Column("retention_until", sa.Date(), nullable=True),
        sa.Column("uploaded_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        _created_at(),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index(
        "ix_attachments_company_hash",
        "attachments",
        ["tenant_id", "company_id", "file_hash"],
    )
    op.create_index("ix_attachments_company_status", "attachments", ["company_id", "status"])
    op.create_index("ix_attachments_category", "attachments", ["category"])

    op.create_table(
        "attachment_links",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "attachment_id", sa.Uuid(), sa.ForeignKey("attachments.id"), nullable=False
        ),
        sa.Column("entity_type", _enum("entitytype"), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("link_type", sa.String(30), nullable=False),
        sa.Column("created_by", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        _created_at(),
        sa.UniqueConstraint(
            "attachment_id", "entity_type", "entity_id", name="uq_attachment_link_entity"
        ),
    )
    op.create_index(
        "ix_attachment_links_entity", "attachment_links", ["entity_type", "entity_id"]
    )

    op.create_table(
        "idempotency_keys",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _tenant_fk(),
        sa.Column("key", sa.String(255), nullable=False),
        sa.Column("scope", sa.String(100), nullable=False),
        sa.Column("request_hash", sa.String(64), nullable=False),
        sa.Column("response_status", sa.Integer(), nullable=False),
        sa.Column("response_body", JSON, nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        _created_at(),
        sa.UniqueConstraint(
            "tenant_id", "scope", "key", name="uq_idempotency_tenant_scope_key"
        ),
    )
    op.create_index("ix_idempotency_expires", "idempotency_keys", ["expires_at"])


# Children before parents.
TABLES = (
    "idempotency_keys",
    "attachment_links",
    "attachments",
    "usage_records",
    "subscription_invoices",
    "subscriptions",
    "subscription_plans",
    "bank_transactions",
    "payment_allocations",
    "payments",
    "bank_accounts",
    "ap_bill_lines",
    "ap_bills",
    "ar_invoice_lines",
    "ar_invoices",
    "reversing_entries",
    "period_locks",
    "fiscal_periods",
    "gl_journal_lines",
    "gl_journals",
    "suppliers",
    "customers",
    "tax_codes",
    "accounts",
    "audit_logs",
    "memberships",
    "users",
    "companies",
    "tenants",
)


def downgrade() -> None:
    for table in TABLES:
        op.drop_table(table)

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for name in ENUMS:
            sa.Enum(name=name).drop(bind, checkfirst=True)
