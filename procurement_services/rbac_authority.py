"""
procurement_services.rbac_authority -- Role enforcement at the workflow boundary.

Responsibility:
    Decide whether an actor may perform an action, optionally against a
    requisition snapshot (ownership and status matter for requesters).

Architecture position:
    Services layer.  Called by ``ProcurementWorkflow`` before any state
    machine, converter or master-data call.

Invariants:
    - Authorization is decided before any mutation; a denial never writes.
    - The matrix is closed: an action not listed for a role is denied.
"""

from __future__ import annotations

from procurement_kernel.domain.actor import Actor, Role
from procurement_kernel.exceptions import AuthorizationError
from procurement_kernel.logging_config import get_logger
from procurement_modules.requisitions.models import Requisition, RequisitionStatus

logger = get_logger("services.rbac")

CREATE_REQUISITION = "requisition.create"
EDIT_REQUISITION = "requisition.edit"
SUBMIT_REQUISITION = "requisition.submit"
APPROVE_REQUISITION = "requisition.approve"
REJECT_REQUISITION = "requisition.reject"
CANCEL_REQUISITION = "requisition.cancel"
CONVERT_REQUISITION = "requisition.convert"
FULFIL_PURCHASE_ORDER = "purchase_order.fulfil"
CANCEL_PURCHASE_ORDER = "purchase_order.cancel"
VIEW_DOCUMENTS = "documents.view"
VIEW_REPORTS = "reports.view"
MANAGE_MASTER_DATA = "master_data.manage"
EDIT_REFERENCED_PROJECT = "master_data.edit_referenced_project"

_EVERYONE = frozenset({
    CREATE_REQUISITION,
    EDIT_REQUISITION,
    SUBMIT_REQUISITION,
    CANCEL_REQUISITION,
    VIEW_DOCUMENTS,
    VIEW_REPORTS,
})

_APPROVERS = _EVERYONE | frozenset({
    APPROVE_REQUISITION,
    REJECT_REQUISITION,
    CONVERT_REQUISITION,
    FULFIL_PURCHASE_ORDER,
    CANCEL_PURCHASE_ORDER,
    MANAGE_MASTER_DATA,
})

ROLE_PERMISSIONS: dict[Role, frozenset[str]] = {
    Role.REQUESTER: _EVERYONE,
    Role.FINANCE: _APPROVERS,
    Role.ADMIN: _APPROVERS | frozenset({EDIT_REFERENCED_PROJECT}),
}

# Requesters may only perform these on their own requisitions.
OWNER_SCOPED_ACTIONS: frozenset[str] = frozenset({
    EDIT_REQUISITION,
    SUBMIT_REQUISITION,
    CANCEL_REQUISITION,
})

# Statuses from which a requester may cancel their own requisition.
REQUESTER_CANCELLABLE: frozenset[RequisitionStatus] = frozenset({
    RequisitionStatus.DRAFT,
    RequisitionStatus.PENDING_APPROVAL,
})


def check_permission(
    actor: Actor,
    action: str,
    requisition: Requisition | None = None,
) -> tuple[bool, str]:
    """Whether ``actor`` may perform ``action``.

    Returns:
        (allowed, reason). reason is empty when allowed.
    """
    permissions = ROLE_PERMISSIONS.get(actor.role, frozenset())
    if action not in permissions:
        return (False, f"role '{actor.role.value}' lacks permission '{action}'")

    if actor.role is Role.REQUESTER and action in OWNER_SCOPED_ACTIONS:
        if requisition is None:
            return (False, "requisition snapshot required for ownership check")
        if requisition.requester_id != actor.id:
            return (False, "requesters may only act on their own requisitions")
        if action == CANCEL_REQUISITION and requisition.status not in REQUESTER_CANCELLABLE:
            return (False, "requesters may only cancel before approval")

    return (True, "")


def authorize(
    actor: Actor,
    action: str,
    requisition: Requisition | None = None,
) -> None:
    """Raise AuthorizationError unless ``actor`` may perform ``action``."""
    allowed, reason = check_permission(actor, action, requisition)
    if allowed:
        return
    logger.warning(
        "authorization_denied",
        extra={
            "actor_id": actor.id,
            "role": actor.role.value,
            "action": action,
            "reason": reason,
            "requisition_id": str(requisition.id) if requisition else None,
        },
    )
    raise AuthorizationError(actor.id, actor.role.value, action, reason)


def is_permitted(actor: Actor, action: str) -> bool:
    """Role-only check, no document context."""
    return action in ROLE_PERMISSIONS.get(actor.role, frozenset())
