"""
LedgerStore -- repository interface for procurement documents.

Responsibility:
    Key-indexed storage for projects, suppliers (with catalogs),
    requisitions (with items), purchase orders (with items) and named
    sequence counters, with transactional read-modify-write and optimistic
    versioning.

Architecture position:
    Modules > Ledger.  The state machine, the converter and the services
    talk only to this interface; ``InMemoryLedgerStore`` and
    ``SqlLedgerStore`` implement it.

Invariants enforced (by every implementation):
    - A transaction either commits every write or none.
    - ``save_*(entity, expected_version)`` stores the entity with version
      ``expected_version + 1`` and raises ConflictError if the stored
      version is not ``expected_version``, either when the write is staged
      or when the transaction commits.
    - Inserting a duplicate requisition number, PO number, PO for the same
      requisition, or project contract number raises ConflictError.
    - ``next_sequence_value`` is strictly increasing per name and never
      returns a value twice, even across aborted transactions.

Failure modes:
    - ConflictError: version advanced or uniqueness violated; nothing written.
    - StoreUnavailableError: the backing store failed; nothing written.
    - SequenceAllocationError: the allocator failed; nothing written.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from uuid import UUID

from procurement_modules.master_data.models import Project, Supplier
from procurement_modules.purchase_orders.models import PurchaseOrder, PurchaseOrderFilter
from procurement_modules.requisitions.models import Requisition, RequisitionFilter


class LedgerTransaction(ABC):
    """
    One unit of work against the store.

    Reads observe the transaction's own staged writes.  Returned DTOs are
    immutable snapshots; to change one, build a new DTO and ``save_*`` it
    with the version that was read.
    """

    # -- projects ----------------------------------------------------------

    @abstractmethod
    def get_project(self, project_id: UUID) -> Project | None: ...

    @abstractmethod
    def list_projects(self) -> list[Project]: ...

    @abstractmethod
    def insert_project(self, project: Project) -> Project: ...

    @abstractmethod
    def save_project(self, project: Project, expected_version: int) -> Project: ...

    @abstractmethod
    def delete_project(self, project_id: UUID, expected_version: int) -> None:
        """Remove the project; ConflictError if its version moved."""

    # -- suppliers ---------------------------------------------------------

    @abstractmethod
    def get_supplier(self, supplier_id: UUID) -> Supplier | None: ...

    @abstractmethod
    def list_suppliers(self) -> list[Supplier]: ...

    @abstractmethod
    def insert_supplier(self, supplier: Supplier) -> Supplier: ...

    @abstractmethod
    def save_supplier(self, supplier: Supplier, expected_version: int) -> Supplier: ...

    @abstractmethod
    def delete_supplier(self, supplier_id: UUID, expected_version: int) -> None:
        """Remove the supplier together with its catalog."""

    # -- requisitions ------------------------------------------------------

    @abstractmethod
    def get_requisition(self, requisition_id: UUID) -> Requisition | None: ...

    @abstractmethod
    def list_requisitions(self, filters: RequisitionFilter | None = None) -> list[Requisition]:
        """Matching requisitions ordered by requisition number."""

    @abstractmethod
    def insert_requisition(self, requisition: Requisition) -> Requisition: ...

    @abstractmethod
    def save_requisition(self, requisition: Requisition, expected_version: int) -> Requisition: ...

    def project_is_referenced(self, project_id: UUID) -> bool:
        return bool(self.list_requisitions(RequisitionFilter(project_id=project_id)))

    def supplier_is_referenced(self, supplier_id: UUID) -> bool:
        return bool(self.list_requisitions(RequisitionFilter(supplier_id=supplier_id)))

    # -- purchase orders ---------------------------------------------------

    @abstractmethod
    def get_purchase_order(self, purchase_order_id: UUID) -> PurchaseOrder | None: ...

    @abstractmethod
    def get_purchase_order_by_requisition(self, requisition_id: UUID) -> PurchaseOrder | None: ...

    @abstractmethod
    def list_purchase_orders(self, filters: PurchaseOrderFilter | None = None) -> list[PurchaseOrder]:
        """Matching purchase orders ordered by PO sequence."""

    @abstractmethod
    def insert_purchase_order(self, purchase_order: PurchaseOrder) -> PurchaseOrder: ...

    @abstractmethod
    def save_purchase_order(self, purchase_order: PurchaseOrder, expected_version: int) -> PurchaseOrder:
        """Persist a status change; item values are never rewritten."""

    # -- sequences ---------------------------------------------------------

    @abstractmethod
    def next_sequence_value(self, sequence_name: str) -> int: ...


class LedgerStore(ABC):
    """Factory of transactions over one durable (or in-process) store."""

    @abstractmethod
    def transaction(self) -> AbstractContextManager[LedgerTransaction]:
        """
        Open a unit of work.

        Commits when the block exits normally; discards every staged write
        when it raises.
        """
