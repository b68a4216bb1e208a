"""
Procurement Workflow facade (``procurement_services.approval_workflow``).

Responsibility
--------------
The public entry point for every lifecycle operation.  Each call:

1. binds ``actor_id`` / ``requisition_id`` / a fresh ``correlation_id``
   into ``LogContext``;
2. authorizes through ``rbac_authority``: role-only actions (approve,
   reject, convert, PO and master-data actions) are checked before any
   read; owner-scoped ones (edit, submit, cancel) against a stored snapshot;
3. delegates to the state machine, converter or PO service, pinning the
   snapshot's version as ``expected_version``;
4. after commit, publishes a ``DispatchEvent`` and waits at most
   ``dispatch.wait_timeout`` seconds for it.

Architecture position
---------------------
**Services layer**.  Composes ``procurement_modules`` services over one
``LedgerStore``.  Callers never reach the modules directly.

Invariants enforced
-------------------
* Authorization happens before any write; a denied call leaves every
  record and version untouched.
* A change between the authorization read and the write surfaces as
  ``ConflictError``, never as an unauthorized write.
* Dispatch problems never propagate to the caller.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from procurement_config.schema import ProcurementConfig
from procurement_kernel.domain.actor import Actor
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.totals import ItemDraft
from procurement_kernel.exceptions import ProcurementError
from procurement_kernel.logging_config import LogContext, configure_logging, get_logger
from procurement_modules.ledger.store import LedgerStore
from procurement_modules.master_data.models import Project, ProjectStatus, Supplier
from procurement_modules.master_data.service import MasterDataService
from procurement_modules.purchase_orders.converter import PurchaseOrderConverter
from procurement_modules.purchase_orders.models import PurchaseOrder, PurchaseOrderFilter
from procurement_modules.purchase_orders.service import PurchaseOrderService
from procurement_modules.requisitions.models import (
    Requisition,
    RequisitionFilter,
    RequisitionHeader,
)
from procurement_modules.requisitions.service import RequisitionStateMachine
from procurement_services import rbac_authority as rbac
from procurement_services.dispatch import (
    DispatchEvent,
    DispatchEventType,
    DispatchService,
    Dispatcher,
    Renderer,
)

logger = get_logger("services.approval_workflow")


class ProcurementWorkflow:
    """
    Facade over requisitions, purchase orders and master data.

    Contract
    --------
    * The actor is passed explicitly to every method; no session state.
    * Returned values are committed snapshots.

    Non-goals
    ---------
    * Authentication.  The actor is trusted as given.
    """

    def __init__(
        self,
        store: LedgerStore,
        clock: Clock | None = None,
        config: ProcurementConfig | None = None,
        dispatch: DispatchService | None = None,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._config = config or ProcurementConfig()
        self.dispatch = dispatch

        self.requisitions = RequisitionStateMachine(
            store,
            self._clock,
            number_format=self._config.numbering.requisition_format,
        )
        self.converter = PurchaseOrderConverter(
            store,
            self._clock,
            number_format=self._config.numbering.purchase_order_format,
            conflict_retries=self._config.workflow.conversion_conflict_retries,
        )
        self.purchase_orders = PurchaseOrderService(store, self._clock)
        self.master_data = MasterDataService(store, self._clock)

    # ------------------------------------------------------------------
    # Requisitions
    # ------------------------------------------------------------------

    def create_requisition(
        self,
        actor: Actor,
        header: RequisitionHeader,
        items: Sequence[ItemDraft] = (),
    ) -> Requisition:
        with self._scope(actor):
            rbac.authorize(actor, rbac.CREATE_REQUISITION)
            return self.requisitions.create(actor, header, items)

    def edit_requisition(
        self,
        actor: Actor,
        requisition_id: UUID,
        header: RequisitionHeader,
        items: Sequence[ItemDraft],
        expected_version: int | None = None,
    ) -> Requisition:
        with self._scope(actor, requisition_id):
            snapshot = self.requisitions.get(requisition_id)
            rbac.authorize(actor, rbac.EDIT_REQUISITION, snapshot)
            version = snapshot.version if expected_version is None else expected_version
            return self.requisitions.edit(requisition_id, actor, header, items, version)

    def submit_requisition(self, actor: Actor, requisition_id: UUID) -> Requisition:
        with self._scope(actor, requisition_id):
            snapshot = self.requisitions.get(requisition_id)
            rbac.authorize(actor, rbac.SUBMIT_REQUISITION, snapshot)
            stored = self.requisitions.submit(requisition_id, actor, snapshot.version)
            self._notify(DispatchEventType.SUBMITTED, actor, stored)
            return stored

    def approve_requisition(self, actor: Actor, requisition_id: UUID) -> Requisition:
        with self._scope(actor, requisition_id):
            rbac.authorize(actor, rbac.APPROVE_REQUISITION)
            snapshot = self.requisitions.get(requisition_id)
            stored = self.requisitions.approve(requisition_id, actor, snapshot.version)
            self._notify(DispatchEventType.APPROVED, actor, stored)
            return stored

    def reject_requisition(
        self,
        actor: Actor,
        requisition_id: UUID,
        reason: str | None = None,
    ) -> Requisition:
        with self._scope(actor, requisition_id):
            rbac.authorize(actor, rbac.REJECT_REQUISITION)
            snapshot = self.requisitions.get(requisition_id)
            stored = self.requisitions.reject(requisition_id, actor, reason, snapshot.version)
            self._notify(DispatchEventType.REJECTED, actor, stored)
            return stored

    def cancel_requisition(
        self,
        actor: Actor,
        requisition_id: UUID,
        reason: str | None = None,
    ) -> Requisition:
        with self._scope(actor, requisition_id):
            snapshot = self.requisitions.get(requisition_id)
            rbac.authorize(actor, rbac.CANCEL_REQUISITION, snapshot)
            return self.requisitions.cancel(requisition_id, actor, reason, snapshot.version)

    def convert_to_purchase_order(self, actor: Actor, requisition_id: UUID) -> PurchaseOrder:
        """The requisition's PO; created on first call, returned as-is after."""
        with self._scope(actor, requisition_id):
            rbac.authorize(actor, rbac.CONVERT_REQUISITION)
            outcome = self.converter.convert(requisition_id, actor)
            if outcome.created:
                requisition = self.requisitions.get(requisition_id)
                self._notify(
                    DispatchEventType.CONVERTED,
                    actor,
                    requisition,
                    purchase_order=outcome.purchase_order,
                )
            return outcome.purchase_order

    def get_requisition(self, actor: Actor, requisition_id: UUID) -> Requisition:
        with self._scope(actor, requisition_id):
            rbac.authorize(actor, rbac.VIEW_DOCUMENTS)
            return self.requisitions.get(requisition_id)

    def list_requisitions(
        self,
        actor: Actor,
        filters: RequisitionFilter | None = None,
    ) -> list[Requisition]:
        with self._scope(actor):
            rbac.authorize(actor, rbac.VIEW_DOCUMENTS)
            return self.requisitions.list(filters)

    # ------------------------------------------------------------------
    # Purchase orders
    # ------------------------------------------------------------------

    def get_purchase_order(self, actor: Actor, purchase_order_id: UUID) -> PurchaseOrder:
        with self._scope(actor, purchase_order_id=purchase_order_id):
            rbac.authorize(actor, rbac.VIEW_DOCUMENTS)
            return self.purchase_orders.get(purchase_order_id)

    def get_purchase_order_for_requisition(
        self,
        actor: Actor,
        requisition_id: UUID,
    ) -> PurchaseOrder:
        with self._scope(actor, requisition_id):
            rbac.authorize(actor, rbac.VIEW_DOCUMENTS)
            return self.purchase_orders.get_for_requisition(requisition_id)

    def list_purchase_orders(
        self,
        actor: Actor,
        filters: PurchaseOrderFilter | None = None,
    ) -> list[PurchaseOrder]:
        with self._scope(actor):
            rbac.authorize(actor, rbac.VIEW_DOCUMENTS)
            return self.purchase_orders.list(filters)

    def fulfil_purchase_order(self, actor: Actor, purchase_order_id: UUID) -> PurchaseOrder:
        with self._scope(actor, purchase_order_id=purchase_order_id):
            rbac.authorize(actor, rbac.FULFIL_PURCHASE_ORDER)
            snapshot = self.purchase_orders.get(purchase_order_id)
            return self.purchase_orders.fulfil(purchase_order_id, actor, snapshot.version)

    def cancel_purchase_order(
        self,
        actor: Actor,
        purchase_order_id: UUID,
        reason: str | None = None,
    ) -> PurchaseOrder:
        with self._scope(actor, purchase_order_id=purchase_order_id):
            rbac.authorize(actor, rbac.CANCEL_PURCHASE_ORDER)
            snapshot = self.purchase_orders.get(purchase_order_id)
            return self.purchase_orders.cancel(purchase_order_id, actor, reason, snapshot.version)

    # ------------------------------------------------------------------
    # Master data
    # ------------------------------------------------------------------

    def create_project(
        self,
        actor: Actor,
        name: str,
        contract_number: str,
        start_date: date,
        end_date: date | None = None,
        status: ProjectStatus = ProjectStatus.ACTIVE,
    ) -> Project:
        with self._scope(actor):
            rbac.authorize(actor, rbac.MANAGE_MASTER_DATA)
            return self.master_data.create_project(
                actor, name, contract_number, start_date, end_date, status
            )

    def update_project(self, actor: Actor, project_id: UUID, **changes) -> Project:
        """Keyword changes as ``MasterDataService.update_project``."""
        with self._scope(actor):
            rbac.authorize(actor, rbac.MANAGE_MASTER_DATA)
            return self.master_data.update_project(
                actor,
                project_id,
                allow_referenced_edit=rbac.is_permitted(actor, rbac.EDIT_REFERENCED_PROJECT),
                **changes,
            )

    def get_project(self, actor: Actor, project_id: UUID) -> Project:
        with self._scope(actor):
            rbac.authorize(actor, rbac.VIEW_DOCUMENTS)
            return self.master_data.get_project(project_id)

    def list_projects(self, actor: Actor) -> list[Project]:
        with self._scope(actor):
            rbac.authorize(actor, rbac.VIEW_DOCUMENTS)
            return self.master_data.list_projects()

    def create_supplier(
        self,
        actor: Actor,
        name: str,
        address: str,
        email: str,
        phone: str | None = None,
        contact_person: str | None = None,
    ) -> Supplier:
        with self._scope(actor):
            rbac.authorize(actor, rbac.MANAGE_MASTER_DATA)
            return self.master_data.create_supplier(
                actor, name, address, email, phone, contact_person
            )

    def update_supplier(self, actor: Actor, supplier_id: UUID, **changes) -> Supplier:
        with self._scope(actor):
            rbac.authorize(actor, rbac.MANAGE_MASTER_DATA)
            return self.master_data.update_supplier(actor, supplier_id, **changes)

    def delete_project(self, actor: Actor, project_id: UUID) -> None:
        with self._scope(actor):
            rbac.authorize(actor, rbac.MANAGE_MASTER_DATA)
            self.master_data.delete_project(actor, project_id)

    def get_supplier(self, actor: Actor, supplier_id: UUID) -> Supplier:
        with self._scope(actor):
            rbac.authorize(actor, rbac.VIEW_DOCUMENTS)
            return self.master_data.get_supplier(supplier_id)

    def list_suppliers(self, actor: Actor) -> list[Supplier]:
        with self._scope(actor):
            rbac.authorize(actor, rbac.VIEW_DOCUMENTS)
            return self.master_data.list_suppliers()

    def delete_supplier(self, actor: Actor, supplier_id: UUID) -> None:
        with self._scope(actor):
            rbac.authorize(actor, rbac.MANAGE_MASTER_DATA)
            self.master_data.delete_supplier(actor, supplier_id)

    def add_catalog_item(
        self,
        actor: Actor,
        supplier_id: UUID,
        description: str,
        unit: str,
        unit_price: Decimal,
    ) -> Supplier:
        with self._scope(actor):
            rbac.authorize(actor, rbac.MANAGE_MASTER_DATA)
            return self.master_data.add_catalog_item(
                actor, supplier_id, description, unit, unit_price
            )

    def update_catalog_item(
        self,
        actor: Actor,
        supplier_id: UUID,
        item_id: UUID,
        **changes,
    ) -> Supplier:
        with self._scope(actor):
            rbac.authorize(actor, rbac.MANAGE_MASTER_DATA)
            return self.master_data.update_catalog_item(actor, supplier_id, item_id, **changes)

    def remove_catalog_item(self, actor: Actor, supplier_id: UUID, item_id: UUID) -> Supplier:
        with self._scope(actor):
            rbac.authorize(actor, rbac.MANAGE_MASTER_DATA)
            return self.master_data.remove_catalog_item(actor, supplier_id, item_id)

    def quote_item(
        self,
        actor: Actor,
        supplier_id: UUID,
        supplier_item_id: UUID,
        quantity: int,
    ) -> ItemDraft:
        rbac.authorize(actor, rbac.CREATE_REQUISITION)
        return self.master_data.quote_item(supplier_id, supplier_item_id, quantity)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _scope(
        self,
        actor: Actor,
        requisition_id: UUID | None = None,
        purchase_order_id: UUID | None = None,
    ) -> Iterator[None]:
        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=actor.id,
            requisition_id=requisition_id,
            purchase_order_id=purchase_order_id,
        ):
            yield

    def _notify(
        self,
        event_type: DispatchEventType,
        actor: Actor,
        requisition: Requisition,
        purchase_order: PurchaseOrder | None = None,
    ) -> None:
        if self.dispatch is None:
            return
        try:
            with self._store.transaction() as txn:
                project = txn.get_project(requisition.project_id)
                supplier = txn.get_supplier(requisition.supplier_id)
        except ProcurementError:
            # Committed already; deliver without master-data names.
            logger.warning(
                "dispatch_master_data_unavailable",
                extra={"event_type": event_type.value},
                exc_info=True,
            )
            project = supplier = None

        event = DispatchEvent(
            event_type=event_type,
            requisition=requisition,
            actor_id=actor.id,
            purchase_order=purchase_order,
            project=project,
            supplier=supplier,
        )
        task = self.dispatch.publish(event)
        self.dispatch.wait(task, timeout=self.dispatch.wait_timeout)


def build_procurement_workflow(
    config: ProcurementConfig | None = None,
    renderer: Renderer | None = None,
    dispatcher: Dispatcher | None = None,
    clock: Clock | None = None,
) -> ProcurementWorkflow:
    """Build a SQL-backed ``ProcurementWorkflow`` from configuration.

    The single production entry point: configures logging, initializes the
    engine named by ``database.url``, creates missing tables and starts the
    dispatch workers when both collaborators are given.

    Args:
        config: Runtime configuration; ``get_active_config()`` when omitted.
        renderer: Document renderer for dispatch.
        dispatcher: Message sender for dispatch.
        clock: Optional clock; default SystemClock.
    """
    from procurement_config import get_active_config
    from procurement_kernel.db.engine import init_engine_from_url
    from procurement_modules._orm_registry import create_all_tables
    from procurement_modules.ledger.sql import SqlLedgerStore

    config = config or get_active_config()
    configure_logging(level=config.logging.level, fmt=config.logging.format)
    init_engine_from_url(
        config.database.url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
    )
    create_all_tables()

    dispatch = None
    if renderer is not None and dispatcher is not None:
        dispatch = DispatchService(renderer, dispatcher, config.dispatch)

    logger.info(
        "procurement_workflow_built",
        extra={
            "config_checksum": config.checksum,
            "dispatch_enabled": dispatch is not None and config.dispatch.enabled,
        },
    )
    return ProcurementWorkflow(SqlLedgerStore(), clock=clock, config=config, dispatch=dispatch)
