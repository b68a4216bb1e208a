"""
Master Data Service (``procurement_modules.master_data.service``).

Responsibility
--------------
Create, update, read and delete projects and suppliers; maintain supplier
catalogs; quote catalog items into requisition item drafts at the live price.

Invariants enforced
-------------------
* Contract numbers are unique (``ValidationError`` on a duplicate).
* Once any requisition references a project, only its status may change
  unless the caller holds the referenced-project edit permission
  (``AuthorizationError`` otherwise).  The check runs inside the write
  transaction.
* A project or supplier named by any requisition cannot be deleted
  (``ValidationError``).
* Catalog prices are Decimal >= 0.  Changing them never touches existing
  requisitions or purchase orders; quotes copy the price at call time.

Non-goals
---------
* Role checks beyond the referenced-project rule; the facade authorizes.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from procurement_kernel.domain.actor import Actor
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.totals import ItemDraft
from procurement_kernel.exceptions import (
    AuthorizationError,
    ConflictError,
    FieldError,
    NotFoundError,
    ValidationError,
)
from procurement_kernel.logging_config import get_logger
from procurement_modules.ledger.store import LedgerStore, LedgerTransaction
from procurement_modules.master_data.models import (
    Project,
    ProjectStatus,
    Supplier,
    SupplierItem,
)

logger = get_logger("modules.master_data.service")

EDIT_REFERENCED_PROJECT = "edit_referenced_project"


def _blank(value: str | None) -> bool:
    return value is None or not str(value).strip()


def _check_version(entity_type: str, entity, expected_version: int | None) -> None:
    if expected_version is not None and entity.version != expected_version:
        raise ConflictError(
            entity_type,
            str(entity.id),
            expected_version=expected_version,
            actual_version=entity.version,
        )


def _catalog_errors(description, unit, unit_price) -> list[FieldError]:
    errors = []
    if _blank(description):
        errors.append(FieldError("description", "must not be empty"))
    if _blank(unit):
        errors.append(FieldError("unit", "must not be empty"))
    if not isinstance(unit_price, Decimal) or not unit_price.is_finite():
        errors.append(FieldError("unit_price", "must be a decimal amount"))
    elif unit_price < 0:
        errors.append(FieldError("unit_price", "must not be negative"))
    return errors


class MasterDataService:
    """
    Projects, suppliers and catalogs over a ledger store.

    Contract
    --------
    * Each mutating method runs in one store transaction and returns the
      committed snapshot.
    * ``expected_version`` works as in the requisition state machine.
    """

    def __init__(self, store: LedgerStore, clock: Clock | None = None):
        self._store = store
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Projects
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
        now = self._clock.now()
        project = Project(
            id=uuid4(),
            name=(name or "").strip(),
            contract_number=(contract_number or "").strip(),
            start_date=start_date,
            end_date=end_date,
            status=ProjectStatus(status),
            created_by_id=actor.id,
            created_at=now,
            updated_at=now,
        )
        self._validate_project(project)
        with self._store.transaction() as txn:
            self._check_contract_number(txn, project)
            stored = txn.insert_project(project)

        logger.info(
            "project_created",
            extra={
                "project_id": str(stored.id),
                "contract_number": stored.contract_number,
                "actor_id": actor.id,
            },
        )
        return stored

    def update_project(
        self,
        actor: Actor,
        project_id: UUID,
        *,
        name: str | None = None,
        contract_number: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        status: ProjectStatus | None = None,
        expected_version: int | None = None,
        allow_referenced_edit: bool = False,
    ) -> Project:
        """Apply the given changes; None leaves a field as it is."""
        with self._store.transaction() as txn:
            current = self._require_project(txn, project_id)
            _check_version("Project", current, expected_version)
            updated = replace(
                current,
                name=current.name if name is None else name.strip(),
                contract_number=(
                    current.contract_number if contract_number is None
                    else contract_number.strip()
                ),
                start_date=current.start_date if start_date is None else start_date,
                end_date=current.end_date if end_date is None else end_date,
                status=current.status if status is None else ProjectStatus(status),
                updated_at=self._clock.now(),
            )
            structural_change = replace(updated, status=current.status, updated_at=current.updated_at) != current
            if (
                structural_change
                and not allow_referenced_edit
                and txn.project_is_referenced(project_id)
            ):
                raise AuthorizationError(
                    actor.id,
                    actor.role.value,
                    EDIT_REFERENCED_PROJECT,
                    reason="project is referenced by requisitions; only its status may change",
                )
            self._validate_project(updated)
            if updated.contract_number != current.contract_number:
                self._check_contract_number(txn, updated)
            stored = txn.save_project(updated, current.version)

        logger.info(
            "project_updated",
            extra={
                "project_id": str(stored.id),
                "actor_id": actor.id,
                "status": stored.status.value,
                "version": stored.version,
            },
        )
        return stored

    def get_project(self, project_id: UUID) -> Project:
        with self._store.transaction() as txn:
            return self._require_project(txn, project_id)

    def list_projects(self) -> list[Project]:
        with self._store.transaction() as txn:
            return txn.list_projects()

    def delete_project(
        self,
        actor: Actor,
        project_id: UUID,
        expected_version: int | None = None,
    ) -> None:
        """Remove a project no requisition refers to."""
        with self._store.transaction() as txn:
            current = self._require_project(txn, project_id)
            _check_version("Project", current, expected_version)
            if txn.project_is_referenced(project_id):
                raise ValidationError.single("project_id", "project is referenced by requisitions")
            txn.delete_project(project_id, current.version)

        logger.info(
            "project_deleted",
            extra={"project_id": str(project_id), "actor_id": actor.id},
        )

    # ------------------------------------------------------------------
    # Suppliers
    # ------------------------------------------------------------------

    def create_supplier(
        self,
        actor: Actor,
        name: str,
        address: str,
        email: str,
        phone: str | None = None,
        contact_person: str | None = None,
    ) -> Supplier:
        now = self._clock.now()
        supplier = Supplier(
            id=uuid4(),
            name=(name or "").strip(),
            address=(address or "").strip(),
            email=(email or "").strip(),
            phone=phone,
            contact_person=contact_person,
            created_by_id=actor.id,
            created_at=now,
            updated_at=now,
        )
        self._validate_supplier(supplier)
        with self._store.transaction() as txn:
            stored = txn.insert_supplier(supplier)

        logger.info(
            "supplier_created",
            extra={"supplier_id": str(stored.id), "actor_id": actor.id},
        )
        return stored

    def update_supplier(
        self,
        actor: Actor,
        supplier_id: UUID,
        *,
        name: str | None = None,
        address: str | None = None,
        email: str | None = None,
        phone: str | None = None,
        contact_person: str | None = None,
        expected_version: int | None = None,
    ) -> Supplier:
        def change(current: Supplier) -> Supplier:
            return replace(
                current,
                name=current.name if name is None else name.strip(),
                address=current.address if address is None else address.strip(),
                email=current.email if email is None else email.strip(),
                phone=current.phone if phone is None else phone,
                contact_person=current.contact_person if contact_person is None else contact_person,
            )

        return self._save_supplier(actor, supplier_id, expected_version, change, "supplier_updated")

    def get_supplier(self, supplier_id: UUID) -> Supplier:
        with self._store.transaction() as txn:
            return self._require_supplier(txn, supplier_id)

    def list_suppliers(self) -> list[Supplier]:
        with self._store.transaction() as txn:
            return txn.list_suppliers()

    def delete_supplier(
        self,
        actor: Actor,
        supplier_id: UUID,
        expected_version: int | None = None,
    ) -> None:
        """Remove a supplier and its catalog; refused while requisitions name it."""
        with self._store.transaction() as txn:
            current = self._require_supplier(txn, supplier_id)
            _check_version("Supplier", current, expected_version)
            if txn.supplier_is_referenced(supplier_id):
                raise ValidationError.single("supplier_id", "supplier is referenced by requisitions")
            txn.delete_supplier(supplier_id, current.version)

        logger.info(
            "supplier_deleted",
            extra={"supplier_id": str(supplier_id), "actor_id": actor.id},
        )

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def add_catalog_item(
        self,
        actor: Actor,
        supplier_id: UUID,
        description: str,
        unit: str,
        unit_price: Decimal,
    ) -> Supplier:
        errors = _catalog_errors(description, unit, unit_price)
        if errors:
            raise ValidationError(errors)
        item = SupplierItem(
            id=uuid4(),
            description=description.strip(),
            unit=unit.strip(),
            unit_price=unit_price,
        )

        def change(current: Supplier) -> Supplier:
            return replace(current, catalog=current.catalog + (item,))

        return self._save_supplier(actor, supplier_id, None, change, "catalog_item_added")

    def update_catalog_item(
        self,
        actor: Actor,
        supplier_id: UUID,
        item_id: UUID,
        *,
        description: str | None = None,
        unit: str | None = None,
        unit_price: Decimal | None = None,
    ) -> Supplier:
        def change(current: Supplier) -> Supplier:
            item = current.catalog_item(item_id)
            if item is None:
                raise NotFoundError("SupplierItem", str(item_id))
            updated = replace(
                item,
                description=item.description if description is None else description.strip(),
                unit=item.unit if unit is None else unit.strip(),
                unit_price=item.unit_price if unit_price is None else unit_price,
            )
            errors = _catalog_errors(updated.description, updated.unit, updated.unit_price)
            if errors:
                raise ValidationError(errors)
            return replace(
                current,
                catalog=tuple(updated if i.id == item_id else i for i in current.catalog),
            )

        return self._save_supplier(actor, supplier_id, None, change, "catalog_item_updated")

    def remove_catalog_item(self, actor: Actor, supplier_id: UUID, item_id: UUID) -> Supplier:
        def change(current: Supplier) -> Supplier:
            if current.catalog_item(item_id) is None:
                raise NotFoundError("SupplierItem", str(item_id))
            return replace(
                current,
                catalog=tuple(i for i in current.catalog if i.id != item_id),
            )

        return self._save_supplier(actor, supplier_id, None, change, "catalog_item_removed")

    def quote_item(self, supplier_id: UUID, supplier_item_id: UUID, quantity: int) -> ItemDraft:
        """Item draft priced from the supplier's catalog as it is right now."""
        supplier = self.get_supplier(supplier_id)
        item = supplier.catalog_item(supplier_item_id)
        if item is None:
            raise NotFoundError("SupplierItem", str(supplier_item_id))
        return ItemDraft(
            description=item.description,
            quantity=quantity,
            unit=item.unit,
            unit_price=item.unit_price,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _save_supplier(self, actor, supplier_id, expected_version, change, event: str) -> Supplier:
        with self._store.transaction() as txn:
            current = self._require_supplier(txn, supplier_id)
            _check_version("Supplier", current, expected_version)
            updated = replace(change(current), updated_at=self._clock.now())
            self._validate_supplier(updated)
            stored = txn.save_supplier(updated, current.version)

        logger.info(
            event,
            extra={
                "supplier_id": str(stored.id),
                "actor_id": actor.id,
                "catalog_size": len(stored.catalog),
                "version": stored.version,
            },
        )
        return stored

    @staticmethod
    def _require_project(txn: LedgerTransaction, project_id: UUID) -> Project:
        project = txn.get_project(project_id)
        if project is None:
            raise NotFoundError("Project", str(project_id))
        return project

    @staticmethod
    def _require_supplier(txn: LedgerTransaction, supplier_id: UUID) -> Supplier:
        supplier = txn.get_supplier(supplier_id)
        if supplier is None:
            raise NotFoundError("Supplier", str(supplier_id))
        return supplier

    @staticmethod
    def _check_contract_number(txn: LedgerTransaction, project: Project) -> None:
        for other in txn.list_projects():
            if other.id != project.id and other.contract_number == project.contract_number:
                raise ValidationError.single("contract_number", "already in use")

    @staticmethod
    def _validate_project(project: Project) -> None:
        errors = []
        if _blank(project.name):
            errors.append(FieldError("name", "must not be empty"))
        if _blank(project.contract_number):
            errors.append(FieldError("contract_number", "must not be empty"))
        if project.end_date is not None and project.end_date < project.start_date:
            errors.append(FieldError("end_date", "must not be before start date"))
        if errors:
            raise ValidationError(errors)

    @staticmethod
    def _validate_supplier(supplier: Supplier) -> None:
        errors = []
        if _blank(supplier.name):
            errors.append(FieldError("name", "must not be empty"))
        if _blank(supplier.address):
            errors.append(FieldError("address", "must not be empty"))
        if _blank(supplier.email) or "@" not in supplier.email:
            errors.append(FieldError("email", "must be an email address"))
        if errors:
            raise ValidationError(errors)
