"""Tests for RBAC overrides, separation of duties and attribute-based rules."""

from __future__ import annotations

from decimal import Decimal

import pytest

from aibos.app.core.errors import PermissionDenied
from aibos.app.core.permissions import (
    LARGE_PAYMENT_LIMIT,
    AccessRule,
    Condition,
    Operator,
    check_sod,
    effective_permissions,
    evaluate_access,
    evaluate_condition,
    is_allowed,
)
from aibos.app.services.access import authorize
from aibos.app.services.audit import Actor


class TestConditions:
    @pytest.mark.parametrize(
        ("operator", "expected", "actual", "outcome"),
        [
            (Operator.EQUALS, "MYR", "MYR", True),
            (Operator.EQUALS, "MYR", "USD", False),
            (Operator.NOT_EQUALS, "MYR", "USD", True),
            (Operator.CONTAINS, "finance", ["finance", "ops"], True),
            (Operator.CONTAINS, "finance", None, False),
            (Operator.NOT_CONTAINS, "finance", ["ops"], True),
            (Operator.NOT_CONTAINS, "finance", None, True),
            (Operator.IN, ("MY", "SG"), "SG", True),
            (Operator.IN, ("MY", "SG"), "TH", False),
            (Operator.NOT_IN, ("MY", "SG"), "TH", True),
            (Operator.GREATER_THAN, Decimal("100"), "100.01", True),
            (Operator.GREATER_THAN, Decimal("100"), 100, False),
            (Operator.GREATER_THAN, Decimal("100"), "lots", False),
            (Operator.LESS_THAN, 10, Decimal("9.99"), True),
            (Operator.LESS_THAN, 10, None, False),
            (Operator.REGEX, r"^INV-\d{4}-", "INV-2026-000001", True),
            (Operator.REGEX, r"^INV-", "BILL-1", False),
            (Operator.REGEX, r".*", None, False),
        ],
    )
    def test_operator(
        self, operator: Operator, expected: object, actual: object, outcome: bool
    ) -> None:
        condition = Condition("attr", operator, expected)
        assert evaluate_condition(condition, {"attr": actual}) is outcome


class TestEvaluateAccess:
    def test_no_matching_rule_denies(self) -> None:
        decision = evaluate_access("viewer", "journal", "read", {}, rules=())
        assert decision.allowed is False
        assert decision.rule_id is None
        assert "default deny" in decision.reason

    def test_highest_priority_rule_wins(self) -> None:
        rules = (
            AccessRule(id="allow-all", effect="allow", priority=10),
            AccessRule(
                id="deny-weekend-posting",
                effect="deny",
                priority=20,
                actions=("post",),
                conditions=(Condition("weekday", Operator.IN, ("sat", "sun")),),
            ),
        )
        weekend = evaluate_access("manager", "journal", "post", {"weekday": "sun"}, rules)
        weekday = evaluate_access("manager", "journal", "post", {"weekday": "tue"}, rules)

        assert (weekend.allowed, weekend.rule_id) == (False, "deny-weekend-posting")
        assert (weekday.allowed, weekday.rule_id) == (True, "allow-all")

    def test_all_conditions_must_hold(self) -> None:
        rule = AccessRule(
            id="sg-branch-only",
            effect="allow",
            priority=1,
            conditions=(
                Condition("country", Operator.EQUALS, "SG"),
                Condition("amount", Operator.LESS_THAN, 500),
            ),
        )
        assert evaluate_access("clerk", "bill", "create", {"country": "SG", "amount": 20}, [rule]).allowed
        assert not evaluate_access(
            "clerk", "bill", "create", {"country": "SG", "amount": 900}, [rule]
        ).allowed

    def test_inactive_membership_denied_even_for_admin(self) -> None:
        decision = evaluate_access("admin", "journal", "read", {"membership_active": False})
        assert decision.allowed is False
        assert decision.rule_id == "deny-inactive-membership"

    def test_admin_allowed_without_role_permission(self) -> None:
        decision = evaluate_access("admin", "tenant", "manage", {"membership_active": True})
        assert decision.rule_id == "admin-full-access"
        assert decision.allowed is True

    @pytest.mark.parametrize("role", ["accountant", "clerk"])
    def test_large_payment_limited_to_managers(self, role: str) -> None:
        attrs = {"has_permission": True, "amount": LARGE_PAYMENT_LIMIT + 1}
        decision = evaluate_access(role, "payment", "create", attrs)
        assert decision.allowed is False
        assert decision.rule_id == "large-payment-manager-only"

    def test_manager_may_make_large_payment(self) -> None:
        attrs = {"has_permission": True, "amount": LARGE_PAYMENT_LIMIT * 5}
        assert evaluate_access("manager", "payment", "create", attrs).allowed

    def test_regulated_export_needs_reason(self) -> None:
        attrs = {"has_permission": True, "regulated_mode": True, "reason": ""}
        denied = evaluate_access("manager", "report", "export", attrs)
        allowed = evaluate_access(
            "manager", "report", "export", {**attrs, "reason": "Quarterly audit"}
        )
        assert denied.rule_id == "regulated-export-needs-reason"
        assert allowed.allowed is True

    def test_missing_role_permission_falls_through_to_deny(self) -> None:
        decision = evaluate_access("viewer", "journal", "create", {"has_permission": False})
        assert decision.allowed is False
        assert decision.rule_id is None


class TestRolePermissions:
    def test_deny_override_beats_role_grant(self) -> None:
        perms = effective_permissions("manager", {"deny": ["payment:*"]})
        assert not is_allowed(perms, "payment:create")
        assert is_allowed(perms, "invoice:post")

    def test_allow_override_extends_role(self) -> None:
        perms = effective_permissions("viewer", {"allow": ["report:export"]})
        assert is_allowed(perms, "report:export")
        assert is_allowed(perms, "journal:read")
        assert not is_allowed(perms, "journal:create")

    def test_unknown_role_has_nothing(self) -> None:
        assert effective_permissions("auditor") == set()

    def test_separation_of_duties(self) -> None:
        assert check_sod("journal:post", "accountant").requires_approval is True
        assert check_sod("journal:post", "manager").requires_approval is False
        assert check_sod("period:open", "manager").allowed is False
        assert check_sod("journal:read", "viewer").allowed is True


class TestAuthorize:
    def test_accountant_blocked_above_limit(self, accountant_actor: Actor) -> None:
        with pytest.raises(PermissionDenied) as exc:
            authorize(
                accountant_actor,
                "payment",
                "create",
                {"amount": Decimal("150000"), "membership_active": True},
            )
        assert exc.value.code == "ACCESS_DENIED"

    def test_accountant_within_limit(self, accountant_actor: Actor) -> None:
        authorize(
            accountant_actor,
            "payment",
            "create",
            {"amount": Decimal("2500"), "membership_active": True},
        )
