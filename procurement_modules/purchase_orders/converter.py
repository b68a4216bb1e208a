"""
Purchase Order Converter (``procurement_modules.purchase_orders.converter``).

Responsibility
--------------
Turns an approved requisition into an issued purchase order, exactly once.

Steps (one ledger transaction)
------------------------------
1. Re-read the requisition.  Already converted -> return its PO
   (``created=False``).  Not approved -> ``InvalidStateError``.
2. Re-validate items and the recorded total.
3. Allocate the next value of the global ``purchase_order`` sequence.
4. Deep-copy items into ``PurchaseOrderItem`` snapshots.
5. Insert the PO as ``issued``; save the requisition as ``converted`` with
   the PO back-reference.

Any failure aborts all of it: the requisition stays ``approved`` and may be
converted again.  A sequence value consumed by an aborted attempt is never
handed out again.

Idempotency
-----------
Keyed by requisition id.  When the commit loses a race (``ConflictError``)
and the caller did not pin ``expected_version``, the conversion is retried;
the re-read sees ``converted`` and returns the winner's PO.
"""

from __future__ import annotations

from dataclasses import replace
from uuid import UUID, uuid4

from procurement_kernel.domain.actor import Actor
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.totals import compute_total, validate_items, verify_total
from procurement_kernel.exceptions import ConflictError, NotFoundError
from procurement_kernel.logging_config import get_logger
from procurement_modules.ledger.store import LedgerStore, LedgerTransaction
from procurement_modules.purchase_orders.models import (
    ConversionOutcome,
    PurchaseOrder,
    PurchaseOrderItem,
    PurchaseOrderStatus,
)
from procurement_modules.requisitions.models import Requisition, RequisitionStatus
from procurement_modules.requisitions.service import check_version, require_transition
from procurement_modules.requisitions.workflows import CONVERT

logger = get_logger("modules.purchase_orders.converter")

PURCHASE_ORDER_SEQUENCE = "purchase_order"
DEFAULT_PO_NUMBER_FORMAT = "PO-{year}-{seq:05d}"


def snapshot_items(requisition: Requisition) -> tuple[PurchaseOrderItem, ...]:
    """Independent copies of the requisition's items with new ids."""
    return tuple(
        PurchaseOrderItem(
            id=uuid4(),
            line_number=item.line_number,
            requisition_item_id=item.id,
            description=item.description,
            quantity=item.quantity,
            unit=item.unit,
            unit_price=item.unit_price,
            line_total=item.line_total,
        )
        for item in requisition.items
    )


class PurchaseOrderConverter:
    """
    Approved requisition -> issued purchase order.

    Contract
    --------
    * ``convert`` returns ``ConversionOutcome(purchase_order, created)``.
    * At most one PO ever references a requisition.
    * PO numbers are strictly increasing in allocation order.

    Non-goals
    ---------
    * Authorization; the caller has already checked the actor's role.
    """

    def __init__(
        self,
        store: LedgerStore,
        clock: Clock | None = None,
        number_format: str = DEFAULT_PO_NUMBER_FORMAT,
        conflict_retries: int = 3,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._number_format = number_format
        self._conflict_retries = conflict_retries

    def convert(
        self,
        requisition_id: UUID,
        actor: Actor,
        expected_version: int | None = None,
    ) -> ConversionOutcome:
        attempt = 0
        while True:
            try:
                return self._convert_once(requisition_id, actor, expected_version)
            except ConflictError:
                if expected_version is not None or attempt >= self._conflict_retries:
                    raise
                attempt += 1
                logger.info(
                    "conversion_conflict_retry",
                    extra={
                        "requisition_id": str(requisition_id),
                        "attempt": attempt,
                        "max_retries": self._conflict_retries,
                    },
                )

    def _convert_once(
        self,
        requisition_id: UUID,
        actor: Actor,
        expected_version: int | None,
    ) -> ConversionOutcome:
        with self._store.transaction() as txn:
            requisition = txn.get_requisition(requisition_id)
            if requisition is None:
                raise NotFoundError("Requisition", str(requisition_id))

            if requisition.status == RequisitionStatus.CONVERTED:
                existing = self._existing_po(txn, requisition)
                logger.info(
                    "conversion_already_done",
                    extra={
                        "requisition_id": str(requisition.id),
                        "purchase_order_id": str(existing.id),
                        "po_number": existing.po_number,
                    },
                )
                return ConversionOutcome(purchase_order=existing, created=False)

            check_version(requisition, expected_version)
            transition = require_transition(requisition, CONVERT)

            existing = txn.get_purchase_order_by_requisition(requisition.id)
            if existing is not None:
                raise ConflictError(
                    "Requisition",
                    str(requisition.id),
                    reason=f"purchase order {existing.po_number} already references it",
                )

            validate_items(requisition.items, require_items=True)
            verify_total(requisition.items, requisition.total_amount)

            seq = txn.next_sequence_value(PURCHASE_ORDER_SEQUENCE)
            now = self._clock.now()
            items = snapshot_items(requisition)
            purchase_order = PurchaseOrder(
                id=uuid4(),
                po_number=self._number_format.format(year=now.year, seq=seq),
                po_sequence=seq,
                requisition_id=requisition.id,
                project_id=requisition.project_id,
                supplier_id=requisition.supplier_id,
                requester_id=requisition.requester_id,
                approver_id=requisition.approver_id,
                issue_date=now.date(),
                items=items,
                total_amount=compute_total(items),
                status=PurchaseOrderStatus.ISSUED,
                created_at=now,
                updated_at=now,
            )
            verify_total(purchase_order.items, requisition.total_amount)

            stored_po = txn.insert_purchase_order(purchase_order)
            txn.save_requisition(
                replace(
                    requisition,
                    status=transition.to_state,
                    purchase_order_id=stored_po.id,
                    updated_at=now,
                ),
                requisition.version,
            )

        logger.info(
            "requisition_converted",
            extra={
                "requisition_id": str(requisition.id),
                "requisition_number": requisition.requisition_number,
                "purchase_order_id": str(stored_po.id),
                "po_number": stored_po.po_number,
                "total_amount": str(stored_po.total_amount),
                "actor_id": actor.id,
            },
        )
        return ConversionOutcome(purchase_order=stored_po, created=True)

    @staticmethod
    def _existing_po(txn: LedgerTransaction, requisition: Requisition) -> PurchaseOrder:
        po = None
        if requisition.purchase_order_id is not None:
            po = txn.get_purchase_order(requisition.purchase_order_id)
        if po is None:
            po = txn.get_purchase_order_by_requisition(requisition.id)
        if po is None:
            raise NotFoundError("PurchaseOrder", f"for requisition {requisition.id}")
        return po
