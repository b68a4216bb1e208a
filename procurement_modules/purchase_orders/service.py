"""
Purchase Order Service (``procurement_modules.purchase_orders.service``).

Reads and status progression for issued purchase orders.  Item values and
totals are never touched; only status, cancellation reason and audit
timestamps move, following ``PURCHASE_ORDER_WORKFLOW``.
"""

from __future__ import annotations

from dataclasses import replace
from uuid import UUID

from procurement_kernel.domain.actor import Actor
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.exceptions import ConflictError, InvalidStateError, NotFoundError
from procurement_kernel.logging_config import get_logger
from procurement_modules.ledger.store import LedgerStore, LedgerTransaction
from procurement_modules.purchase_orders.models import PurchaseOrder, PurchaseOrderFilter
from procurement_modules.purchase_orders.workflows import (
    CANCEL,
    FULFIL,
    PURCHASE_ORDER_WORKFLOW,
)

logger = get_logger("modules.purchase_orders.service")


class PurchaseOrderService:
    """PO reads plus ``fulfil`` / ``cancel`` with optimistic versioning."""

    def __init__(self, store: LedgerStore, clock: Clock | None = None):
        self._store = store
        self._clock = clock or SystemClock()

    def get(self, purchase_order_id: UUID) -> PurchaseOrder:
        with self._store.transaction() as txn:
            return self._require(txn, purchase_order_id)

    def get_for_requisition(self, requisition_id: UUID) -> PurchaseOrder:
        with self._store.transaction() as txn:
            po = txn.get_purchase_order_by_requisition(requisition_id)
        if po is None:
            raise NotFoundError("PurchaseOrder", f"for requisition {requisition_id}")
        return po

    def list(self, filters: PurchaseOrderFilter | None = None) -> list[PurchaseOrder]:
        with self._store.transaction() as txn:
            return txn.list_purchase_orders(filters)

    def fulfil(
        self,
        purchase_order_id: UUID,
        actor: Actor,
        expected_version: int | None = None,
    ) -> PurchaseOrder:
        return self._apply(purchase_order_id, actor, FULFIL, expected_version)

    def cancel(
        self,
        purchase_order_id: UUID,
        actor: Actor,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> PurchaseOrder:
        return self._apply(purchase_order_id, actor, CANCEL, expected_version, reason)

    @staticmethod
    def _require(txn: LedgerTransaction, purchase_order_id: UUID) -> PurchaseOrder:
        po = txn.get_purchase_order(purchase_order_id)
        if po is None:
            raise NotFoundError("PurchaseOrder", str(purchase_order_id))
        return po

    def _apply(
        self,
        purchase_order_id: UUID,
        actor: Actor,
        action: str,
        expected_version: int | None,
        reason: str | None = None,
    ) -> PurchaseOrder:
        with self._store.transaction() as txn:
            current = self._require(txn, purchase_order_id)
            if expected_version is not None and current.version != expected_version:
                raise ConflictError(
                    "PurchaseOrder",
                    str(current.id),
                    expected_version=expected_version,
                    actual_version=current.version,
                )
            transition = PURCHASE_ORDER_WORKFLOW.find_transition(current.status, action)
            if transition is None:
                raise InvalidStateError(
                    "PurchaseOrder", str(current.id), current.status.value, action
                )
            updated = replace(
                current,
                status=transition.to_state,
                cancellation_reason=reason if action == CANCEL else current.cancellation_reason,
                updated_at=self._clock.now(),
            )
            stored = txn.save_purchase_order(updated, current.version)

        logger.info(
            "purchase_order_status_changed",
            extra={
                "purchase_order_id": str(stored.id),
                "po_number": stored.po_number,
                "action": action,
                "actor_id": actor.id,
                "from_status": current.status.value,
                "to_status": stored.status.value,
            },
        )
        return stored
