"""
ORM-Level Immutability Enforcement for purchase-order records.

===============================================================================
WHY THIS EXISTS
===============================================================================

A purchase order is a snapshot taken at conversion. Its number, its money
and its items must never change afterwards, whatever the live catalog or the
originating requisition do. The converter deep-copies items, and this module
makes sure nothing written through SQLAlchemy can alter the copy later.

===============================================================================
HOW IT WORKS
===============================================================================

Models opt in with class attributes:

    __append_only__ = True
        No column may change after INSERT (audit metadata excepted) and
        the row may never be deleted.  Used by PurchaseOrderItemModel.

    __immutable_fields__ = ("po_number", "total_amount", ...)
        The named columns may never change after INSERT; other columns
        (status, version) follow their workflow.  Rows may never be deleted.

Listeners are attached once to the declarative Base with propagate=True, so
every mapped subclass is covered without the kernel importing module models:

    session.flush()
         |
         v
    [before_update] --> _check_update() --> ImmutabilityViolationError
    [before_delete] --> _check_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Bulk ``update()`` statements bypass mapper events; the SQL ledger store only
issues them against requisition and purchase-order status columns.

===============================================================================
USAGE
===============================================================================

    from procurement_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # idempotent

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect

from procurement_kernel.db.base import Base
from procurement_kernel.exceptions import ImmutabilityViolationError
from procurement_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Audit metadata may change on otherwise frozen rows.
_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _is_protected(target) -> bool:
    cls = type(target)
    return bool(
        getattr(cls, "__append_only__", False)
        or getattr(cls, "__immutable_fields__", ())
    )


def _frozen_fields(target) -> frozenset[str] | None:
    """Names of frozen attributes, or None meaning every non-audit attribute."""
    cls = type(target)
    if getattr(cls, "__append_only__", False):
        return None
    return frozenset(getattr(cls, "__immutable_fields__", ()))


def _check_update(mapper, connection, target):
    """Block changes to frozen columns of an already-persisted row."""
    if not _is_protected(target):
        return

    frozen = _frozen_fields(target)
    insp = inspect(target)
    for attr in insp.mapper.column_attrs:
        key = attr.key
        if key in _AUDIT_FIELDS:
            continue
        if frozen is not None and key not in frozen:
            continue
        if insp.attrs[key].history.has_changes():
            entity_type = type(target).__name__
            logger.error(
                "immutability_violation_blocked",
                extra={
                    "entity_type": entity_type,
                    "entity_id": str(target.id),
                    "operation": "UPDATE",
                    "field": key,
                },
            )
            raise ImmutabilityViolationError(
                entity_type=entity_type,
                entity_id=str(target.id),
                reason=f"Cannot modify field '{key}' after conversion",
            )


def _check_delete(mapper, connection, target):
    """Block deletion of purchase-order rows."""
    if not _is_protected(target):
        return

    entity_type = type(target).__name__
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason="Purchase-order records cannot be deleted",
    )


def register_immutability_listeners() -> None:
    """Attach the update/delete guards to every model derived from Base."""
    if not event.contains(Base, "before_update", _check_update):
        event.listen(Base, "before_update", _check_update, propagate=True)
    if not event.contains(Base, "before_delete", _check_delete):
        event.listen(Base, "before_delete", _check_delete, propagate=True)


def unregister_immutability_listeners() -> None:
    """
    Remove the guards.

    WARNING: Only use this in tests that deliberately violate the rules.
    """
    if event.contains(Base, "before_update", _check_update):
        event.remove(Base, "before_update", _check_update)
    if event.contains(Base, "before_delete", _check_delete):
        event.remove(Base, "before_delete", _check_delete)
