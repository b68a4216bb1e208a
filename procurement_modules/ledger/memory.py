"""
InMemoryLedgerStore -- process-local LedgerStore for tests and single-process use.

Responsibility:
    Holds committed snapshots in dictionaries.  A transaction stages its
    writes privately (reads see them) and applies them atomically under the
    store lock at commit, after re-checking every written row's version
    against the version the transaction first read.

Concurrency:
    - Commit is the only mutation point for documents, serialized by
      ``_lock``.  Reads copy committed snapshots under the same lock.
    - Sequence values are allocated immediately under ``_sequence_lock``
      and are never returned; an aborted transaction leaves a gap.

Failure modes:
    - ConflictError when a staged row's base version moved, or when an
      insert would duplicate a unique key.  Nothing is applied.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from uuid import UUID

from procurement_kernel.exceptions import (
    ConflictError,
    NotFoundError,
    TransactionError,
)
from procurement_kernel.logging_config import get_logger
from procurement_modules.ledger.store import LedgerStore, LedgerTransaction
from procurement_modules.master_data.models import Project, Supplier
from procurement_modules.purchase_orders.models import PurchaseOrder, PurchaseOrderFilter
from procurement_modules.requisitions.models import Requisition, RequisitionFilter

logger = get_logger("modules.ledger.memory")

PROJECT = "Project"
SUPPLIER = "Supplier"
REQUISITION = "Requisition"
PURCHASE_ORDER = "PurchaseOrder"

_KINDS = (PROJECT, SUPPLIER, REQUISITION, PURCHASE_ORDER)

# kind -> ((key name, extractor), ...)
_UNIQUE_KEYS: dict[str, tuple[tuple[str, Callable], ...]] = {
    PROJECT: (("contract_number", lambda p: p.contract_number),),
    SUPPLIER: (),
    REQUISITION: (
        ("requisition_number", lambda r: r.requisition_number),
        ("purchase_order_id", lambda r: r.purchase_order_id),
    ),
    PURCHASE_ORDER: (
        ("po_number", lambda po: po.po_number),
        ("po_sequence", lambda po: po.po_sequence),
        ("requisition_id", lambda po: po.requisition_id),
    ),
}

# kind -> requisition field that references it
_REFERENCED_BY: dict[str, str] = {
    PROJECT: "project_id",
    SUPPLIER: "supplier_id",
}

_SORT_KEYS: dict[str, Callable] = {
    PROJECT: lambda p: p.contract_number,
    SUPPLIER: lambda s: (s.name, str(s.id)),
    REQUISITION: lambda r: r.requisition_number,
    PURCHASE_ORDER: lambda po: po.po_sequence,
}


def _unique_violation(kind: str, entity, others) -> str | None:
    """Name of the first unique key ``entity`` shares with another row."""
    for name, key in _UNIQUE_KEYS[kind]:
        value = key(entity)
        if value is None:
            continue
        for other in others:
            if other.id != entity.id and key(other) == value:
                return name
    return None


class _InMemoryTransaction(LedgerTransaction):
    """Staged unit of work; applied by ``InMemoryLedgerStore._commit``."""

    def __init__(self, store: InMemoryLedgerStore):
        self._store = store
        self._staged: dict[str, dict[UUID, object]] = {kind: {} for kind in _KINDS}
        self._inserted: set[tuple[str, UUID]] = set()
        self._deleted: set[tuple[str, UUID]] = set()
        # (kind, id) -> committed version this transaction built on
        self._base_versions: dict[tuple[str, UUID], int] = {}
        self._open = True

    # -- generic plumbing --------------------------------------------------

    def _ensure_open(self) -> None:
        if not self._open:
            raise TransactionError("transaction is already closed")

    def _get(self, kind: str, entity_id: UUID):
        self._ensure_open()
        if (kind, entity_id) in self._deleted:
            return None
        staged = self._staged[kind].get(entity_id)
        if staged is not None:
            return staged
        return self._store._committed_get(kind, entity_id)

    def _all(self, kind: str) -> list:
        self._ensure_open()
        merged = self._store._committed_snapshot(kind)
        merged.update(self._staged[kind])
        for deleted_kind, entity_id in self._deleted:
            if deleted_kind == kind:
                merged.pop(entity_id, None)
        return sorted(merged.values(), key=_SORT_KEYS[kind])

    def _insert(self, kind: str, entity):
        if self._get(kind, entity.id) is not None:
            raise ConflictError(kind, str(entity.id), reason="entity already exists")
        violated = _unique_violation(kind, entity, self._all(kind))
        if violated:
            raise ConflictError(kind, str(entity.id), reason=f"duplicate {violated}")
        stored = replace(entity, version=1)
        self._staged[kind][entity.id] = stored
        self._inserted.add((kind, entity.id))
        return stored

    def _save(self, kind: str, entity, expected_version: int):
        current = self._get(kind, entity.id)
        if current is None:
            raise NotFoundError(kind, str(entity.id))
        if current.version != expected_version:
            raise ConflictError(
                kind,
                str(entity.id),
                expected_version=expected_version,
                actual_version=current.version,
            )
        key = (kind, entity.id)
        if key not in self._inserted and key not in self._base_versions:
            self._base_versions[key] = current.version
        violated = _unique_violation(kind, entity, self._all(kind))
        if violated:
            raise ConflictError(kind, str(entity.id), reason=f"duplicate {violated}")
        stored = replace(entity, version=expected_version + 1)
        self._staged[kind][entity.id] = stored
        return stored

    def _delete(self, kind: str, entity_id: UUID, expected_version: int) -> None:
        current = self._get(kind, entity_id)
        if current is None:
            raise NotFoundError(kind, str(entity_id))
        if current.version != expected_version:
            raise ConflictError(
                kind,
                str(entity_id),
                expected_version=expected_version,
                actual_version=current.version,
            )
        key = (kind, entity_id)
        if key not in self._inserted and key not in self._base_versions:
            self._base_versions[key] = current.version
        self._staged[kind].pop(entity_id, None)
        self._inserted.discard(key)
        self._deleted.add(key)

    # -- projects ----------------------------------------------------------

    def get_project(self, project_id: UUID) -> Project | None:
        return self._get(PROJECT, project_id)

    def list_projects(self) -> list[Project]:
        return self._all(PROJECT)

    def insert_project(self, project: Project) -> Project:
        return self._insert(PROJECT, project)

    def save_project(self, project: Project, expected_version: int) -> Project:
        return self._save(PROJECT, project, expected_version)

    def delete_project(self, project_id: UUID, expected_version: int) -> None:
        self._delete(PROJECT, project_id, expected_version)

    # -- suppliers ---------------------------------------------------------

    def get_supplier(self, supplier_id: UUID) -> Supplier | None:
        return self._get(SUPPLIER, supplier_id)

    def list_suppliers(self) -> list[Supplier]:
        return self._all(SUPPLIER)

    def insert_supplier(self, supplier: Supplier) -> Supplier:
        return self._insert(SUPPLIER, supplier)

    def save_supplier(self, supplier: Supplier, expected_version: int) -> Supplier:
        return self._save(SUPPLIER, supplier, expected_version)

    def delete_supplier(self, supplier_id: UUID, expected_version: int) -> None:
        self._delete(SUPPLIER, supplier_id, expected_version)

    # -- requisitions ------------------------------------------------------

    def get_requisition(self, requisition_id: UUID) -> Requisition | None:
        return self._get(REQUISITION, requisition_id)

    def list_requisitions(self, filters: RequisitionFilter | None = None) -> list[Requisition]:
        rows = self._all(REQUISITION)
        if filters is None:
            return rows
        return [r for r in rows if filters.matches(r)]

    def insert_requisition(self, requisition: Requisition) -> Requisition:
        return self._insert(REQUISITION, requisition)

    def save_requisition(self, requisition: Requisition, expected_version: int) -> Requisition:
        return self._save(REQUISITION, requisition, expected_version)

    # -- purchase orders ---------------------------------------------------

    def get_purchase_order(self, purchase_order_id: UUID) -> PurchaseOrder | None:
        return self._get(PURCHASE_ORDER, purchase_order_id)

    def get_purchase_order_by_requisition(self, requisition_id: UUID) -> PurchaseOrder | None:
        for po in self._all(PURCHASE_ORDER):
            if po.requisition_id == requisition_id:
                return po
        return None

    def list_purchase_orders(self, filters: PurchaseOrderFilter | None = None) -> list[PurchaseOrder]:
        rows = self._all(PURCHASE_ORDER)
        if filters is None:
            return rows
        return [po for po in rows if filters.matches(po)]

    def insert_purchase_order(self, purchase_order: PurchaseOrder) -> PurchaseOrder:
        return self._insert(PURCHASE_ORDER, purchase_order)

    def save_purchase_order(self, purchase_order: PurchaseOrder, expected_version: int) -> PurchaseOrder:
        current = self._get(PURCHASE_ORDER, purchase_order.id)
        if current is not None:
            # Only status fields move; the snapshot stays as converted.
            purchase_order = replace(
                current,
                status=purchase_order.status,
                cancellation_reason=purchase_order.cancellation_reason,
                updated_at=purchase_order.updated_at,
            )
        return self._save(PURCHASE_ORDER, purchase_order, expected_version)

    # -- sequences ---------------------------------------------------------

    def next_sequence_value(self, sequence_name: str) -> int:
        self._ensure_open()
        return self._store._next_sequence(sequence_name)


class InMemoryLedgerStore(LedgerStore):
    """
    Dictionary-backed ledger store.

    Contract:
        Same observable semantics as the SQL store: atomic commit,
        optimistic versioning, unique keys, monotonic sequences.

    Non-goals:
        Durability across processes.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sequence_lock = threading.Lock()
        self._tables: dict[str, dict[UUID, object]] = {kind: {} for kind in _KINDS}
        self._sequences: dict[str, int] = {}

    @contextmanager
    def transaction(self) -> Iterator[LedgerTransaction]:
        txn = _InMemoryTransaction(self)
        try:
            yield txn
        except BaseException:
            logger.debug(
                "ledger_transaction_discarded",
                extra={"staged_rows": sum(len(s) for s in txn._staged.values())},
            )
            raise
        else:
            self._commit(txn)
        finally:
            txn._open = False

    # -- internals used by transactions --------------------------------------

    def _committed_get(self, kind: str, entity_id: UUID):
        with self._lock:
            return self._tables[kind].get(entity_id)

    def _committed_snapshot(self, kind: str) -> dict[UUID, object]:
        with self._lock:
            return dict(self._tables[kind])

    def _next_sequence(self, sequence_name: str) -> int:
        with self._sequence_lock:
            value = self._sequences.get(sequence_name, 0) + 1
            self._sequences[sequence_name] = value
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": value},
        )
        return value

    def _commit(self, txn: _InMemoryTransaction) -> None:
        with self._lock:
            for (kind, entity_id), base_version in txn._base_versions.items():
                committed = self._tables[kind].get(entity_id)
                actual = committed.version if committed is not None else None
                if actual != base_version:
                    logger.info(
                        "ledger_commit_conflict",
                        extra={
                            "entity_type": kind,
                            "entity_id": str(entity_id),
                            "expected_version": base_version,
                            "actual_version": actual,
                        },
                    )
                    raise ConflictError(
                        kind,
                        str(entity_id),
                        expected_version=base_version,
                        actual_version=actual,
                    )

            for kind, entity_id in txn._inserted:
                if entity_id in self._tables[kind]:
                    raise ConflictError(kind, str(entity_id), reason="entity already exists")

            for kind, staged in txn._staged.items():
                if not staged:
                    continue
                merged = dict(self._tables[kind])
                merged.update(staged)
                rows = list(merged.values())
                for entity in staged.values():
                    violated = _unique_violation(kind, entity, rows)
                    if violated:
                        raise ConflictError(
                            kind, str(entity.id), reason=f"duplicate {violated}"
                        )

            requisitions = dict(self._tables[REQUISITION])
            requisitions.update(txn._staged[REQUISITION])
            for kind, entity_id in txn._deleted:
                field = _REFERENCED_BY.get(kind)
                if field and any(getattr(r, field) == entity_id for r in requisitions.values()):
                    raise ConflictError(kind, str(entity_id), reason="referenced by a requisition")

            for kind, staged in txn._staged.items():
                self._tables[kind].update(staged)
            for kind, entity_id in txn._deleted:
                self._tables[kind].pop(entity_id, None)

        logger.debug(
            "ledger_transaction_committed",
            extra={
                "written_rows": sum(len(s) for s in txn._staged.values()),
                "deleted_rows": len(txn._deleted),
            },
        )
