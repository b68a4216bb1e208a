"""
SqlLedgerStore -- LedgerStore over SQLAlchemy.

Responsibility:
    Persists procurement documents through the ORM models of each module.
    One session per transaction; commit on normal exit, rollback otherwise.

Concurrency:
    - Requisition, purchase-order, project and supplier updates are guarded
      ``UPDATE ... WHERE id = :id AND version = :expected``; zero affected
      rows means another transaction advanced the row -> ConflictError.
    - Unique constraints (requisition number, PO number, PO sequence, PO per
      requisition, contract number) surface as ConflictError.
    - Sequence values come from the locked counter rows of SequenceService,
      allocated and committed on a separate session; a rollback of the
      ledger transaction leaves a gap, never a reused value.

Failure modes:
    - ConflictError: stale version or unique constraint violated.
    - StoreUnavailableError: OperationalError from the driver.
    - SequenceAllocationError: the counter row could not be allocated.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from procurement_kernel.db.engine import get_session_factory
from procurement_kernel.db.immutability import register_immutability_listeners
from procurement_kernel.exceptions import (
    ConflictError,
    NotFoundError,
    SequenceAllocationError,
    StoreUnavailableError,
)
from procurement_kernel.logging_config import get_logger
from procurement_kernel.services.sequence_service import SequenceService
from procurement_modules._orm_registry import import_all_orm_models
from procurement_modules.ledger.store import LedgerStore, LedgerTransaction
from procurement_modules.master_data.models import Project, Supplier
from procurement_modules.master_data.orm import (
    ProjectModel,
    SupplierItemModel,
    SupplierModel,
)
from procurement_modules.purchase_orders.models import PurchaseOrder, PurchaseOrderFilter
from procurement_modules.purchase_orders.orm import PurchaseOrderModel
from procurement_modules.requisitions.models import Requisition, RequisitionFilter
from procurement_modules.requisitions.orm import RequisitionItemModel, RequisitionModel

logger = get_logger("modules.ledger.sql")


class _SqlTransaction(LedgerTransaction):
    """A LedgerTransaction bound to one SQLAlchemy session."""

    def __init__(self, session: Session, session_factory: sessionmaker[Session]):
        self._session = session
        self._session_factory = session_factory

    # -- generic plumbing --------------------------------------------------

    def _load(self, model, entity_id: UUID):
        return self._session.get(model, entity_id, populate_existing=True)

    def _add(self, entity_type: str, entity_id: UUID, row) -> None:
        self._session.add(row)
        try:
            self._session.flush()
        except IntegrityError as exc:
            logger.info(
                "ledger_insert_conflict",
                extra={"entity_type": entity_type, "entity_id": str(entity_id)},
            )
            raise ConflictError(
                entity_type, str(entity_id), reason="duplicate unique key"
            ) from exc

    def _guarded_update(
        self,
        model,
        entity_type: str,
        entity_id: UUID,
        expected_version: int,
        values: dict,
    ) -> None:
        """UPDATE ... WHERE version = expected; ConflictError on zero rows."""
        self._session.flush()
        try:
            result = self._session.execute(
                update(model)
                .where(model.id == entity_id, model.version == expected_version)
                .values(version=expected_version + 1, **values)
                .execution_options(synchronize_session=False)
            )
        except IntegrityError as exc:
            raise ConflictError(
                entity_type, str(entity_id), reason="duplicate unique key"
            ) from exc
        if result.rowcount != 1:
            self._raise_stale(model, entity_type, entity_id, expected_version)

    def _guarded_delete(self, model, entity_type: str, entity_id: UUID, expected_version: int) -> None:
        """DELETE ... WHERE version = expected; ConflictError on zero rows."""
        self._session.flush()
        try:
            result = self._session.execute(
                delete(model)
                .where(model.id == entity_id, model.version == expected_version)
                .execution_options(synchronize_session=False)
            )
        except IntegrityError as exc:
            raise ConflictError(
                entity_type, str(entity_id), reason="referenced by another record"
            ) from exc
        if result.rowcount != 1:
            self._raise_stale(model, entity_type, entity_id, expected_version)
        self._session.expire_all()

    def _raise_stale(self, model, entity_type: str, entity_id: UUID, expected_version: int) -> None:
        actual = self._session.scalar(
            select(model.version).where(model.id == entity_id)
        )
        if actual is None:
            raise NotFoundError(entity_type, str(entity_id))
        logger.info(
            "ledger_update_conflict",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "expected_version": expected_version,
                "actual_version": actual,
            },
        )
        raise ConflictError(
            entity_type,
            str(entity_id),
            expected_version=expected_version,
            actual_version=actual,
        )

    def _replace_children(self, child_model, parent_column, parent_id: UUID, new_rows: list) -> None:
        """Swap a child collection when its item ids changed."""
        stored_ids = set(
            self._session.scalars(
                select(child_model.id).where(parent_column == parent_id)
            )
        )
        if stored_ids == {row.id for row in new_rows}:
            return
        self._session.execute(
            delete(child_model)
            .where(parent_column == parent_id)
            .execution_options(synchronize_session=False)
        )
        self._session.add_all(new_rows)
        self._session.flush()

    def _refresh(self, model, entity_id: UUID):
        self._session.expire_all()
        return self._load(model, entity_id).to_dto()

    # -- projects ----------------------------------------------------------

    def get_project(self, project_id: UUID) -> Project | None:
        row = self._load(ProjectModel, project_id)
        return row.to_dto() if row else None

    def list_projects(self) -> list[Project]:
        rows = self._session.scalars(
            select(ProjectModel).order_by(ProjectModel.contract_number)
        )
        return [row.to_dto() for row in rows]

    def insert_project(self, project: Project) -> Project:
        row = ProjectModel.from_dto(project)
        row.version = 1
        self._add("Project", project.id, row)
        return row.to_dto()

    def save_project(self, project: Project, expected_version: int) -> Project:
        self._guarded_update(
            ProjectModel,
            "Project",
            project.id,
            expected_version,
            {
                "name": project.name,
                "contract_number": project.contract_number,
                "start_date": project.start_date,
                "end_date": project.end_date,
                "status": project.status.value,
                "updated_at": project.updated_at,
            },
        )
        return self._refresh(ProjectModel, project.id)

    def delete_project(self, project_id: UUID, expected_version: int) -> None:
        self._guarded_delete(ProjectModel, "Project", project_id, expected_version)

    # -- suppliers ---------------------------------------------------------

    def get_supplier(self, supplier_id: UUID) -> Supplier | None:
        row = self._load(SupplierModel, supplier_id)
        return row.to_dto() if row else None

    def list_suppliers(self) -> list[Supplier]:
        rows = self._session.scalars(
            select(SupplierModel).order_by(SupplierModel.name)
        )
        return [row.to_dto() for row in rows]

    def insert_supplier(self, supplier: Supplier) -> Supplier:
        row = SupplierModel.from_dto(supplier)
        row.version = 1
        self._add("Supplier", supplier.id, row)
        return row.to_dto()

    def save_supplier(self, supplier: Supplier, expected_version: int) -> Supplier:
        self._guarded_update(
            SupplierModel,
            "Supplier",
            supplier.id,
            expected_version,
            {
                "name": supplier.name,
                "address": supplier.address,
                "email": supplier.email,
                "phone": supplier.phone,
                "contact_person": supplier.contact_person,
                "updated_at": supplier.updated_at,
            },
        )
        # Catalog entries are edited in place or replaced wholesale.
        stored = {
            row.id: row
            for row in self._session.scalars(
                select(SupplierItemModel).where(SupplierItemModel.supplier_id == supplier.id)
            )
        }
        wanted = {item.id: item for item in supplier.catalog}
        for item_id, row in stored.items():
            if item_id not in wanted:
                self._session.delete(row)
        for item_id, item in wanted.items():
            row = stored.get(item_id)
            if row is None:
                new_row = SupplierItemModel.from_dto(item, supplier.created_by_id)
                new_row.supplier_id = supplier.id
                self._session.add(new_row)
            else:
                row.description = item.description
                row.unit = item.unit
                row.unit_price = item.unit_price
        self._session.flush()
        return self._refresh(SupplierModel, supplier.id)

    def delete_supplier(self, supplier_id: UUID, expected_version: int) -> None:
        self._session.execute(
            delete(SupplierItemModel)
            .where(SupplierItemModel.supplier_id == supplier_id)
            .execution_options(synchronize_session=False)
        )
        self._guarded_delete(SupplierModel, "Supplier", supplier_id, expected_version)

    # -- requisitions ------------------------------------------------------

    def get_requisition(self, requisition_id: UUID) -> Requisition | None:
        row = self._load(RequisitionModel, requisition_id)
        return row.to_dto() if row else None

    def list_requisitions(self, filters: RequisitionFilter | None = None) -> list[Requisition]:
        stmt = select(RequisitionModel).order_by(RequisitionModel.requisition_number)
        if filters is not None:
            if filters.status is not None:
                stmt = stmt.where(RequisitionModel.status == filters.status.value)
            if filters.requester_id is not None:
                stmt = stmt.where(RequisitionModel.requester_id == filters.requester_id)
            if filters.project_id is not None:
                stmt = stmt.where(RequisitionModel.project_id == filters.project_id)
            if filters.supplier_id is not None:
                stmt = stmt.where(RequisitionModel.supplier_id == filters.supplier_id)
        return [row.to_dto() for row in self._session.scalars(stmt)]

    def project_is_referenced(self, project_id: UUID) -> bool:
        found = self._session.scalar(
            select(RequisitionModel.id)
            .where(RequisitionModel.project_id == project_id)
            .limit(1)
        )
        return found is not None

    def insert_requisition(self, requisition: Requisition) -> Requisition:
        row = RequisitionModel.from_dto(requisition)
        row.version = 1
        self._add("Requisition", requisition.id, row)
        return row.to_dto()

    def save_requisition(self, requisition: Requisition, expected_version: int) -> Requisition:
        self._guarded_update(
            RequisitionModel,
            "Requisition",
            requisition.id,
            expected_version,
            RequisitionModel.mutable_values(requisition),
        )
        self._replace_children(
            RequisitionItemModel,
            RequisitionItemModel.requisition_id,
            requisition.id,
            [
                RequisitionItemModel.from_dto(item, requisition.id, requisition.requester_id)
                for item in requisition.items
            ],
        )
        return self._refresh(RequisitionModel, requisition.id)

    # -- purchase orders ---------------------------------------------------

    def get_purchase_order(self, purchase_order_id: UUID) -> PurchaseOrder | None:
        row = self._load(PurchaseOrderModel, purchase_order_id)
        return row.to_dto() if row else None

    def get_purchase_order_by_requisition(self, requisition_id: UUID) -> PurchaseOrder | None:
        row = self._session.scalars(
            select(PurchaseOrderModel)
            .where(PurchaseOrderModel.requisition_id == requisition_id)
            .execution_options(populate_existing=True)
        ).one_or_none()
        return row.to_dto() if row else None

    def list_purchase_orders(self, filters: PurchaseOrderFilter | None = None) -> list[PurchaseOrder]:
        stmt = select(PurchaseOrderModel).order_by(PurchaseOrderModel.po_sequence)
        if filters is not None:
            if filters.status is not None:
                stmt = stmt.where(PurchaseOrderModel.status == filters.status.value)
            if filters.project_id is not None:
                stmt = stmt.where(PurchaseOrderModel.project_id == filters.project_id)
            if filters.supplier_id is not None:
                stmt = stmt.where(PurchaseOrderModel.supplier_id == filters.supplier_id)
            if filters.requester_id is not None:
                stmt = stmt.where(PurchaseOrderModel.requester_id == filters.requester_id)
        return [row.to_dto() for row in self._session.scalars(stmt)]

    def insert_purchase_order(self, purchase_order: PurchaseOrder) -> PurchaseOrder:
        row = PurchaseOrderModel.from_dto(purchase_order)
        row.version = 1
        self._add("PurchaseOrder", purchase_order.id, row)
        return row.to_dto()

    def save_purchase_order(self, purchase_order: PurchaseOrder, expected_version: int) -> PurchaseOrder:
        self._guarded_update(
            PurchaseOrderModel,
            "PurchaseOrder",
            purchase_order.id,
            expected_version,
            {
                "status": purchase_order.status.value,
                "cancellation_reason": purchase_order.cancellation_reason,
                "updated_at": purchase_order.updated_at,
            },
        )
        return self._refresh(PurchaseOrderModel, purchase_order.id)

    # -- sequences ---------------------------------------------------------

    def next_sequence_value(self, sequence_name: str) -> int:
        # Own session, committed at once: the value stays spent if this
        # transaction later rolls back.
        session = self._session_factory()
        try:
            value = SequenceService(session).next_value(sequence_name)
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise SequenceAllocationError(sequence_name, str(exc)) from exc
        finally:
            session.close()
        return value


class SqlLedgerStore(LedgerStore):
    """
    Ledger store backed by the configured SQLAlchemy engine.

    Contract:
        ``session_factory`` defaults to the kernel engine's factory
        (``init_engine_from_url`` must have been called).
    """

    def __init__(self, session_factory: sessionmaker[Session] | None = None):
        import_all_orm_models()
        register_immutability_listeners()
        self._session_factory = session_factory or get_session_factory()

    @contextmanager
    def transaction(self) -> Iterator[LedgerTransaction]:
        session = self._session_factory()
        try:
            yield _SqlTransaction(session, self._session_factory)
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            logger.info("ledger_commit_conflict", extra={"reason": str(exc.orig)})
            raise ConflictError("Ledger", "commit", reason="duplicate unique key") from exc
        except OperationalError as exc:
            session.rollback()
            logger.error("ledger_store_unavailable", extra={"reason": str(exc.orig)})
            raise StoreUnavailableError(str(exc.orig)) from exc
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()
