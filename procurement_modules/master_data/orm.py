"""
SQLAlchemy ORM persistence models for projects and suppliers.

Responsibility
--------------
Database-backed persistence for the master data requisitions reference.
Maps to the DTOs in ``procurement_modules.master_data.models``.

Invariants enforced
-------------------
* ``contract_number`` is unique across projects.
* Catalog prices are ``Decimal`` (Numeric(38,9)) -- NEVER float.
* ``SupplierItemModel`` belongs to exactly one ``SupplierModel``.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement_kernel.db.base import TrackedBase


class ProjectModel(TrackedBase):
    """A construction project."""

    __tablename__ = "procurement_projects"

    __table_args__ = (
        UniqueConstraint("contract_number", name="uq_project_contract_number"),
        Index("idx_project_status", "status"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    contract_number: Mapped[str] = mapped_column(String(100), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="active")
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    def to_dto(self):
        from procurement_modules.master_data.models import Project, ProjectStatus

        return Project(
            id=self.id,
            name=self.name,
            contract_number=self.contract_number,
            start_date=self.start_date,
            end_date=self.end_date,
            status=ProjectStatus(self.status),
            created_by_id=self.created_by_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto) -> "ProjectModel":
        return cls(
            id=dto.id,
            name=dto.name,
            contract_number=dto.contract_number,
            start_date=dto.start_date,
            end_date=dto.end_date,
            status=dto.status.value,
            created_by_id=dto.created_by_id,
            created_at=dto.created_at,
            updated_at=dto.updated_at,
            version=dto.version,
        )

    def __repr__(self) -> str:
        return f"<ProjectModel {self.contract_number} [{self.status}]>"


class SupplierModel(TrackedBase):
    """A supplier; its catalog rows hang off ``catalog``."""

    __tablename__ = "procurement_suppliers"

    __table_args__ = (
        Index("idx_supplier_name", "name"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    address: Mapped[str] = mapped_column(String(500), nullable=False)
    email: Mapped[str] = mapped_column(String(254), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    contact_person: Mapped[str | None] = mapped_column(String(200), nullable=True)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    catalog: Mapped[list["SupplierItemModel"]] = relationship(
        "SupplierItemModel",
        back_populates="supplier",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="SupplierItemModel.description",
    )

    def to_dto(self):
        from procurement_modules.master_data.models import Supplier

        return Supplier(
            id=self.id,
            name=self.name,
            address=self.address,
            email=self.email,
            phone=self.phone,
            contact_person=self.contact_person,
            catalog=tuple(item.to_dto() for item in self.catalog),
            created_by_id=self.created_by_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto) -> "SupplierModel":
        return cls(
            id=dto.id,
            name=dto.name,
            address=dto.address,
            email=dto.email,
            phone=dto.phone,
            contact_person=dto.contact_person,
            catalog=[
                SupplierItemModel.from_dto(item, dto.created_by_id)
                for item in dto.catalog
            ],
            created_by_id=dto.created_by_id,
            created_at=dto.created_at,
            updated_at=dto.updated_at,
            version=dto.version,
        )

    def __repr__(self) -> str:
        return f"<SupplierModel {self.name}>"


class SupplierItemModel(TrackedBase):
    """One catalog entry of a supplier."""

    __tablename__ = "procurement_supplier_items"

    __table_args__ = (
        Index("idx_supplier_item_supplier", "supplier_id"),
    )

    supplier_id: Mapped[UUID] = mapped_column(
        ForeignKey("procurement_suppliers.id"), nullable=False,
    )
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)

    supplier: Mapped["SupplierModel"] = relationship(
        "SupplierModel",
        back_populates="catalog",
    )

    def to_dto(self):
        from procurement_modules.master_data.models import SupplierItem

        return SupplierItem(
            id=self.id,
            description=self.description,
            unit=self.unit,
            unit_price=self.unit_price,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: str) -> "SupplierItemModel":
        return cls(
            id=dto.id,
            description=dto.description,
            unit=dto.unit,
            unit_price=dto.unit_price,
            created_by_id=created_by_id,
        )
