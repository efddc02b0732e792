"""Runtime access checks built on the static tables in core.permissions."""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from aibos.app.core.errors import PermissionDenied
from aibos.app.core.permissions import (
    SoDCheck,
    check_sod,
    evaluate_access,
    is_allowed,
)
from aibos.app.services.audit import Actor

logger = logging.getLogger(__name__)


def enforce_sod(actor: Actor, action: str) -> SoDCheck:
    """Raise ``SOD_VIOLATION`` unless the actor's role may perform *action*."""
    result = check_sod(action, actor.role)
    if not result.allowed:
        logger.warning(
            "SoD violation: user=%s role=%s action=%s", actor.user_id, actor.role, action
        )
        raise PermissionDenied(result.reason or "Separation of duties violation", code="SOD_VIOLATION")
    return result


def assert_segregated(creator_id: UUID | None, approver_id: UUID | None, what: str) -> None:
    """The user who created a transaction may not approve it."""
    if creator_id is not None and creator_id == approver_id:
        raise PermissionDenied(
            f"The creator of this {what} cannot approve it",
            code="SOD_VIOLATION",
        )


def authorize(
    actor: Actor,
    resource: str,
    action: str,
    attributes: dict[str, Any] | None = None,
) -> None:
    """Run the ABAC rules for *resource*/*action*. Raises 403 on deny."""
    attrs = {"has_permission": is_allowed(actor.permissions, f"{resource}:{action}")}
    attrs.update(attributes or {})
    decision = evaluate_access(actor.role, resource, action, attrs)
    if not decision.allowed:
        logger.warning(
            "Access denied: user=%s %s:%s (%s)",
            actor.user_id, resource, action, decision.reason,
        )
        raise PermissionDenied(
            f"Access denied for {resource}:{action}. {decision.reason}",
            code="ACCESS_DENIED",
        )
