"""
Requisition State Machine (``procurement_modules.requisitions.service``).

Responsibility
--------------
Owns every requisition lifecycle step: create, edit, submit, approve,
reject, cancel, plus reads.  Each step consults ``REQUISITION_WORKFLOW``,
validates items through the totals engine, and writes through one ledger
store transaction.

Architecture position
---------------------
**Modules layer**.  Called by ``procurement_services.approval_workflow``
after authorization.  Role checks are NOT performed here; the actor is
only stamped onto the document (approver, requester).

Invariants enforced
-------------------
* A requisition outside Draft always has >= 1 valid item.
* ``total_amount`` is recomputed from the items on every write.
* Transitions follow ``REQUISITION_WORKFLOW``; anything else is
  ``InvalidStateError`` carrying the current status.
* ``expected_version`` (when given) must equal the stored version, checked
  before any change; the store re-checks at commit.

Failure modes
-------------
* ``NotFoundError``       -- unknown requisition id.
* ``ConflictError``       -- stale ``expected_version`` or lost commit race.
* ``InvalidStateError``   -- action not legal from the current status.
* ``ValidationError``     -- bad header or items.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import replace
from uuid import UUID, uuid4

from procurement_kernel.domain.actor import Actor
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.totals import (
    ItemDraft,
    PricedLine,
    compute_total,
    line_total,
    validate_items,
    verify_total,
)
from procurement_kernel.domain.workflow import Transition
from procurement_kernel.exceptions import (
    ConflictError,
    FieldError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from procurement_kernel.logging_config import get_logger
from procurement_modules.ledger.store import LedgerStore, LedgerTransaction
from procurement_modules.requisitions.models import (
    Requisition,
    RequisitionFilter,
    RequisitionHeader,
    RequisitionItem,
    RequisitionStatus,
)
from procurement_modules.requisitions.workflows import (
    APPROVE,
    CANCEL,
    EDIT,
    REJECT,
    REQUISITION_WORKFLOW,
    SUBMIT,
)

logger = get_logger("modules.requisitions.service")

REQUISITION_SEQUENCE = "requisition"
DEFAULT_REQUISITION_NUMBER_FORMAT = "REQ-{year}-{seq:04d}"

_COMMIT_EVENTS = {
    EDIT: "requisition_edited",
    SUBMIT: "requisition_submitted",
    APPROVE: "requisition_approved",
    REJECT: "requisition_rejected",
    CANCEL: "requisition_cancelled",
}


def build_items(drafts: Sequence[PricedLine]) -> tuple[RequisitionItem, ...]:
    """Stored items for ``drafts``: fresh ids, 1-based line numbers, derived totals."""
    return tuple(
        RequisitionItem(
            id=uuid4(),
            line_number=index,
            description=draft.description.strip(),
            quantity=draft.quantity,
            unit=draft.unit.strip(),
            unit_price=draft.unit_price,
            line_total=line_total(draft.quantity, draft.unit_price),
        )
        for index, draft in enumerate(drafts, start=1)
    )


def check_version(requisition: Requisition, expected_version: int | None) -> None:
    """ConflictError when the caller's read token is stale."""
    if expected_version is not None and requisition.version != expected_version:
        raise ConflictError(
            "Requisition",
            str(requisition.id),
            expected_version=expected_version,
            actual_version=requisition.version,
        )


def require_transition(requisition: Requisition, action: str) -> Transition:
    """The workflow transition for ``action``, or InvalidStateError."""
    transition = REQUISITION_WORKFLOW.find_transition(requisition.status, action)
    if transition is None:
        raise InvalidStateError(
            "Requisition",
            str(requisition.id),
            requisition.status.value,
            action,
        )
    return transition


class RequisitionStateMachine:
    """
    Requisition lifecycle operations over a ledger store.

    Contract
    --------
    * Every mutating method runs inside exactly one store transaction and
      returns the committed snapshot (with its new version).
    * Nothing is written when a method raises.

    Non-goals
    ---------
    * Authorization (see ``procurement_services.rbac_authority``).
    * Notifications (see ``procurement_services.dispatch``).
    """

    def __init__(
        self,
        store: LedgerStore,
        clock: Clock | None = None,
        number_format: str = DEFAULT_REQUISITION_NUMBER_FORMAT,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._number_format = number_format

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, requisition_id: UUID) -> Requisition:
        with self._store.transaction() as txn:
            return self._require(txn, requisition_id)

    def list(self, filters: RequisitionFilter | None = None) -> list[Requisition]:
        with self._store.transaction() as txn:
            return txn.list_requisitions(filters)

    # ------------------------------------------------------------------
    # Create / edit
    # ------------------------------------------------------------------

    def create(
        self,
        actor: Actor,
        header: RequisitionHeader,
        items: Sequence[ItemDraft] = (),
    ) -> Requisition:
        """New Draft requisition with an allocated number and version 1."""
        validate_items(items)
        now = self._clock.now()
        with self._store.transaction() as txn:
            self._validate_header(txn, header)
            seq = txn.next_sequence_value(REQUISITION_SEQUENCE)
            stored_items = build_items(items)
            requisition = Requisition(
                id=uuid4(),
                requisition_number=self._number_format.format(year=now.year, seq=seq),
                project_id=header.project_id,
                supplier_id=header.supplier_id,
                requester_id=actor.id,
                request_date=header.request_date,
                delivery_date=header.delivery_date,
                delivery_address=header.delivery_address.strip(),
                delivery_instructions=header.delivery_instructions,
                items=stored_items,
                total_amount=compute_total(stored_items),
                status=RequisitionStatus.DRAFT,
                created_at=now,
                updated_at=now,
            )
            stored = txn.insert_requisition(requisition)

        logger.info(
            "requisition_created",
            extra={
                "requisition_id": str(stored.id),
                "requisition_number": stored.requisition_number,
                "requester_id": actor.id,
                "item_count": len(stored.items),
                "total_amount": str(stored.total_amount),
            },
        )
        return stored

    def edit(
        self,
        requisition_id: UUID,
        actor: Actor,
        header: RequisitionHeader,
        items: Sequence[ItemDraft],
        expected_version: int | None = None,
    ) -> Requisition:
        """Replace header and the whole item list (items get new ids)."""

        def mutate(txn: LedgerTransaction, current: Requisition) -> Requisition:
            validate_items(
                items,
                require_items=current.status == RequisitionStatus.PENDING_APPROVAL,
            )
            self._validate_header(txn, header)
            stored_items = build_items(items)
            return replace(
                current,
                project_id=header.project_id,
                supplier_id=header.supplier_id,
                request_date=header.request_date,
                delivery_date=header.delivery_date,
                delivery_address=header.delivery_address.strip(),
                delivery_instructions=header.delivery_instructions,
                items=stored_items,
                total_amount=compute_total(stored_items),
            )

        return self._apply(requisition_id, actor, EDIT, expected_version, mutate)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def submit(
        self,
        requisition_id: UUID,
        actor: Actor,
        expected_version: int | None = None,
    ) -> Requisition:
        """Draft -> PendingApproval; requires >= 1 valid item."""

        def mutate(txn: LedgerTransaction, current: Requisition) -> Requisition:
            validate_items(current.items, require_items=True)
            verify_total(current.items, current.total_amount)
            return current

        return self._apply(requisition_id, actor, SUBMIT, expected_version, mutate)

    def approve(
        self,
        requisition_id: UUID,
        actor: Actor,
        expected_version: int | None = None,
    ) -> Requisition:
        """PendingApproval -> Approved; stamps approver and time."""

        def mutate(txn: LedgerTransaction, current: Requisition) -> Requisition:
            return replace(
                current,
                approver_id=actor.id,
                approved_at=self._clock.now(),
            )

        return self._apply(requisition_id, actor, APPROVE, expected_version, mutate)

    def reject(
        self,
        requisition_id: UUID,
        actor: Actor,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> Requisition:
        """PendingApproval -> Rejected; stores the reason."""

        def mutate(txn: LedgerTransaction, current: Requisition) -> Requisition:
            return replace(current, rejection_reason=reason)

        return self._apply(requisition_id, actor, REJECT, expected_version, mutate)

    def cancel(
        self,
        requisition_id: UUID,
        actor: Actor,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> Requisition:
        """Draft/PendingApproval/Approved -> Cancelled."""

        def mutate(txn: LedgerTransaction, current: Requisition) -> Requisition:
            return replace(current, cancellation_reason=reason)

        return self._apply(requisition_id, actor, CANCEL, expected_version, mutate)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _require(txn: LedgerTransaction, requisition_id: UUID) -> Requisition:
        requisition = txn.get_requisition(requisition_id)
        if requisition is None:
            raise NotFoundError("Requisition", str(requisition_id))
        return requisition

    @staticmethod
    def _validate_header(txn: LedgerTransaction, header: RequisitionHeader) -> None:
        errors: list[FieldError] = []
        if txn.get_project(header.project_id) is None:
            errors.append(FieldError("project_id", "unknown project"))
        if txn.get_supplier(header.supplier_id) is None:
            errors.append(FieldError("supplier_id", "unknown supplier"))
        if not header.delivery_address or not header.delivery_address.strip():
            errors.append(FieldError("delivery_address", "must not be empty"))
        if header.delivery_date < header.request_date:
            errors.append(FieldError("delivery_date", "must not be before request date"))
        if errors:
            raise ValidationError(errors)

    def _apply(
        self,
        requisition_id: UUID,
        actor: Actor,
        action: str,
        expected_version: int | None,
        mutate: Callable[[LedgerTransaction, Requisition], Requisition],
    ) -> Requisition:
        with self._store.transaction() as txn:
            current = self._require(txn, requisition_id)
            check_version(current, expected_version)
            transition = require_transition(current, action)
            updated = mutate(txn, current)
            updated = replace(
                updated,
                status=transition.to_state,
                updated_at=self._clock.now(),
            )
            stored = txn.save_requisition(updated, current.version)

        logger.info(
            _COMMIT_EVENTS[action],
            extra={
                "requisition_id": str(stored.id),
                "requisition_number": stored.requisition_number,
                "actor_id": actor.id,
                "from_status": current.status.value,
                "to_status": stored.status.value,
                "version": stored.version,
            },
        )
        return stored
