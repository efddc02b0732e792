"""Static access-control tables.

Three layers, all plain lookups:

* ``ROLE_PERMISSIONS``: RBAC. A membership role maps to permission patterns
  (``resource:action`` with ``*`` wildcards). Per-membership allow/deny
  overrides are applied on top by :func:`effective_permissions`.
* ``SOD_MATRIX``: separation of duties. Which roles may perform a sensitive
  action at all and which of them still need a second approver.
* ``ACCESS_RULES``: ABAC. Prioritised rules with attribute conditions,
  evaluated by :func:`evaluate_access`. Default deny.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from fnmatch import fnmatchcase
from typing import Any, Iterable


class MembershipRole(str, enum.Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    ACCOUNTANT = "accountant"
    CLERK = "clerk"
    VIEWER = "viewer"
    USER = "user"


ALL_PERMISSION_CODES: list[tuple[str, str]] = [
    ("tenant:read", "View tenant and companies"),
    ("tenant:manage", "Manage tenant, companies and governance"),
    ("user:read", "View members"),
    ("user:manage", "Invite, update and deactivate members"),
    ("account:read", "View chart of accounts"),
    ("account:write", "Manage chart of accounts"),
    ("journal:read", "View journals"),
    ("journal:create", "Create draft journals"),
    ("journal:post", "Post journals"),
    ("journal:approve", "Approve journals awaiting approval"),
    ("journal:reverse", "Reverse posted journals"),
    ("period:read", "View fiscal periods"),
    ("period:close", "Close fiscal periods"),
    ("period:open", "Reopen fiscal periods"),
    ("period:lock", "Lock fiscal periods"),
    ("tax:read", "View tax codes"),
    ("tax:write", "Manage tax codes"),
    ("customer:read", "View customers"),
    ("customer:write", "Manage customers"),
    ("invoice:read", "View invoices"),
    ("invoice:create", "Create invoices"),
    ("invoice:post", "Post invoices"),
    ("invoice:void", "Void invoices"),
    ("supplier:read", "View suppliers"),
    ("supplier:write", "Manage suppliers"),
    ("bill:read", "View bills"),
    ("bill:create", "Create bills"),
    ("bill:approve", "Approve bills"),
    ("bill:post", "Post bills"),
    ("bill:void", "Void bills"),
    ("payment:read", "View payments"),
    ("payment:create", "Record payments and receipts"),
    ("payment:void", "Void payments"),
    ("bank:read", "View bank accounts and transactions"),
    ("bank:write", "Manage bank accounts and import statements"),
    ("bank:reconcile", "Match bank transactions"),
    ("report:read", "View financial reports"),
    ("report:export", "Export financial reports"),
    ("attachment:read", "View attachments"),
    ("attachment:upload", "Upload attachments"),
    ("attachment:manage", "Archive, delete and tag attachments"),
    ("subscription:read", "View subscription and usage"),
    ("subscription:manage", "Manage subscription"),
    ("usage:write", "Record usage metrics"),
    ("audit:read", "View audit logs"),
]

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    MembershipRole.ADMIN.value: frozenset({"*"}),
    MembershipRole.MANAGER.value: frozenset({
        "tenant:read", "user:read", "user:manage",
        "account:*", "journal:*",
        "period:read", "period:close", "period:lock",
        "tax:*", "customer:*", "invoice:*", "supplier:*", "bill:*",
        "payment:*", "bank:*", "report:*", "attachment:*",
        "subscription:read", "usage:write", "audit:read",
    }),
    MembershipRole.ACCOUNTANT.value: frozenset({
        "tenant:read", "account:*",
        "journal:read", "journal:create", "journal:post",
        "period:read", "tax:*", "customer:*",
        "invoice:read", "invoice:create", "invoice:post",
        "supplier:*", "bill:read", "bill:create", "bill:post",
        "payment:read", "payment:create",
        "bank:*", "report:*", "attachment:read", "attachment:upload",
        "usage:write",
    }),
    MembershipRole.CLERK.value: frozenset({
        "tenant:read", "account:read", "journal:read", "journal:create",
        "period:read", "tax:read", "customer:*", "invoice:read", "invoice:create",
        "supplier:*", "bill:read", "bill:create", "payment:read", "bank:read",
        "report:read", "attachment:read", "attachment:upload",
    }),
    MembershipRole.VIEWER.value: frozenset({"*:read"}),
    MembershipRole.USER.value: frozenset({
        "tenant:read", "account:read", "journal:read", "report:read",
        "attachment:read", "attachment:upload",
    }),
}

# Roles allowed to hand out roles to other members.
ROLE_MANAGERS = frozenset({MembershipRole.ADMIN.value, MembershipRole.MANAGER.value})

APPROVER_ROLES: list[str] = [MembershipRole.MANAGER.value, MembershipRole.ADMIN.value]


# ─── RBAC ────────────────────────────────────────────────────────────────────


def has_permission(granted: Iterable[str], code: str) -> bool:
    """True when any pattern in *granted* matches *code*."""
    return any(fnmatchcase(code, pattern) for pattern in granted)


def effective_permissions(
    role: str, overrides: dict[str, Any] | None = None
) -> set[str]:
    """Role permissions plus membership ``allow`` patterns.

    ``deny`` patterns are returned prefixed with ``!`` so that
    :func:`is_allowed` can veto matching codes even when the role grants them.
    """
    perms = set(ROLE_PERMISSIONS.get(role, frozenset()))
    if overrides:
        perms.update(overrides.get("allow") or [])
        perms.update(f"!{p}" for p in overrides.get("deny") or [])
    return perms


def is_allowed(perms: Iterable[str], code: str) -> bool:
    perms = list(perms)
    denied = [p[1:] for p in perms if p.startswith("!")]
    if has_permission(denied, code):
        return False
    return has_permission([p for p in perms if not p.startswith("!")], code)


# ─── Separation of duties ────────────────────────────────────────────────────


@dataclass(frozen=True)
class SoDRule:
    allowed_roles: frozenset[str]
    approval_roles: frozenset[str] = frozenset()


@dataclass(frozen=True)
class SoDCheck:
    allowed: bool
    requires_approval: bool = False
    reason: str | None = None


_A, _M, _AC = (
    MembershipRole.ADMIN.value,
    MembershipRole.MANAGER.value,
    MembershipRole.ACCOUNTANT.value,
)

SOD_MATRIX: dict[str, SoDRule] = {
    "journal:post": SoDRule(frozenset({_A, _M, _AC}), frozenset({_AC})),
    "journal:approve": SoDRule(frozenset({_A, _M})),
    "journal:reverse": SoDRule(frozenset({_A, _M})),
    "invoice:post": SoDRule(frozenset({_A, _M, _AC})),
    "invoice:void": SoDRule(frozenset({_A, _M})),
    "bill:approve": SoDRule(frozenset({_A, _M})),
    "bill:post": SoDRule(frozenset({_A, _M, _AC})),
    "bill:void": SoDRule(frozenset({_A, _M})),
    "payment:create": SoDRule(frozenset({_A, _M, _AC})),
    "payment:void": SoDRule(frozenset({_A, _M})),
    "period:close": SoDRule(frozenset({_A, _M})),
    "period:open": SoDRule(frozenset({_A})),
    "period:lock": SoDRule(frozenset({_A, _M})),
    "report:export": SoDRule(frozenset({_A, _M, _AC})),
    "user:manage": SoDRule(frozenset({_A, _M})),
}


def check_sod(action: str, role: str) -> SoDCheck:
    rule = SOD_MATRIX.get(action)
    if rule is None:
        return SoDCheck(allowed=True)
    if role not in rule.allowed_roles:
        return SoDCheck(
            allowed=False,
            reason=f"Role '{role}' is not permitted to perform '{action}'",
        )
    return SoDCheck(allowed=True, requires_approval=role in rule.approval_roles)


# ─── ABAC ────────────────────────────────────────────────────────────────────


class Operator(str, enum.Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IN = "in"
    NOT_IN = "not_in"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    REGEX = "regex"


@dataclass(frozen=True)
class Condition:
    attribute: str
    operator: Operator
    value: Any


@dataclass(frozen=True)
class AccessRule:
    id: str
    effect: str  # "allow" | "deny"
    priority: int
    subjects: tuple[str, ...] = ("*",)
    resources: tuple[str, ...] = ("*",)
    actions: tuple[str, ...] = ("*",)
    conditions: tuple[Condition, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    rule_id: str | None
    reason: str


def _as_decimal(value: Any) -> Decimal | None:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def evaluate_condition(condition: Condition, attributes: dict[str, Any]) -> bool:
    actual = attributes.get(condition.attribute)
    expected = condition.value
    op = condition.operator
    if op is Operator.EQUALS:
        return actual == expected
    if op is Operator.NOT_EQUALS:
        return actual != expected
    if op is Operator.CONTAINS:
        return actual is not None and expected in actual
    if op is Operator.NOT_CONTAINS:
        return actual is None or expected not in actual
    if op is Operator.IN:
        return actual in expected
    if op is Operator.NOT_IN:
        return actual not in expected
    if op in (Operator.GREATER_THAN, Operator.LESS_THAN):
        left, right = _as_decimal(actual), _as_decimal(expected)
        if left is None or right is None:
            return False
        return left > right if op is Operator.GREATER_THAN else left < right
    if op is Operator.REGEX:
        return actual is not None and re.search(expected, str(actual)) is not None
    return False


def _matches(patterns: tuple[str, ...], value: str) -> bool:
    return any(fnmatchcase(value, p) for p in patterns)


LARGE_PAYMENT_LIMIT = Decimal("100000")

ACCESS_RULES: tuple[AccessRule, ...] = (
    AccessRule(
        id="deny-inactive-membership",
        effect="deny",
        priority=1000,
        conditions=(Condition("membership_active", Operator.EQUALS, False),),
    ),
    AccessRule(
        id="admin-full-access",
        effect="allow",
        priority=500,
        subjects=(_A,),
    ),
    AccessRule(
        id="regulated-export-needs-reason",
        effect="deny",
        priority=400,
        resources=("report",),
        actions=("export",),
        conditions=(
            Condition("regulated_mode", Operator.EQUALS, True),
            Condition("reason", Operator.IN, (None, "")),
        ),
    ),
    AccessRule(
        id="large-payment-manager-only",
        effect="deny",
        priority=300,
        subjects=(_AC, MembershipRole.CLERK.value),
        resources=("payment",),
        actions=("create",),
        conditions=(Condition("amount", Operator.GREATER_THAN, LARGE_PAYMENT_LIMIT),),
    ),
    AccessRule(
        id="role-permission",
        effect="allow",
        priority=100,
        conditions=(Condition("has_permission", Operator.EQUALS, True),),
    ),
)


def evaluate_access(
    role: str,
    resource: str,
    action: str,
    attributes: dict[str, Any] | None = None,
    rules: Iterable[AccessRule] = ACCESS_RULES,
) -> AccessDecision:
    """Evaluate *rules* highest priority first; the first match decides."""
    attributes = dict(attributes or {})
    for rule in sorted(rules, key=lambda r: r.priority, reverse=True):
        if not (
            _matches(rule.subjects, role)
            and _matches(rule.resources, resource)
            and _matches(rule.actions, action)
        ):
            continue
        if all(evaluate_condition(c, attributes) for c in rule.conditions):
            return AccessDecision(
                allowed=rule.effect == "allow",
                rule_id=rule.id,
                reason=f"Matched rule '{rule.id}'",
            )
    return AccessDecision(allowed=False, rule_id=None, reason="No rule matched (default deny)")
