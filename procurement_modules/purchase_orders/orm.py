"""
SQLAlchemy ORM persistence models for purchase orders.

Invariants enforced
-------------------
* ``po_number``, ``po_sequence`` and ``requisition_id`` are each unique: a
  requisition converts at most once and a number is never reused.
* Identity, money and snapshot fields of ``PurchaseOrderModel`` are listed in
  ``__immutable_fields__``; ``PurchaseOrderItemModel`` is ``__append_only__``.
  ``procurement_kernel.db.immutability`` enforces both on flush.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement_kernel.db.base import TrackedBase
from procurement_kernel.db.types import round_money


class PurchaseOrderModel(TrackedBase):
    """A purchase order header row."""

    __tablename__ = "procurement_purchase_orders"

    __table_args__ = (
        UniqueConstraint("po_number", name="uq_po_number"),
        UniqueConstraint("po_sequence", name="uq_po_sequence"),
        UniqueConstraint("requisition_id", name="uq_po_requisition"),
        Index("idx_po_supplier", "supplier_id"),
        Index("idx_po_project", "project_id"),
        Index("idx_po_status", "status"),
    )

    __immutable_fields__ = (
        "po_number",
        "po_sequence",
        "requisition_id",
        "project_id",
        "supplier_id",
        "requester_id",
        "approver_id",
        "issue_date",
        "total_amount",
    )

    po_number: Mapped[str] = mapped_column(String(50), nullable=False)
    po_sequence: Mapped[int] = mapped_column(nullable=False)
    requisition_id: Mapped[UUID] = mapped_column(
        ForeignKey("procurement_requisitions.id"), nullable=False,
    )
    project_id: Mapped[UUID] = mapped_column(
        ForeignKey("procurement_projects.id"), nullable=False,
    )
    supplier_id: Mapped[UUID] = mapped_column(
        ForeignKey("procurement_suppliers.id"), nullable=False,
    )
    requester_id: Mapped[str] = mapped_column(String(100), nullable=False)
    approver_id: Mapped[str] = mapped_column(String(100), nullable=False)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="issued")
    cancellation_reason: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    items: Mapped[list["PurchaseOrderItemModel"]] = relationship(
        "PurchaseOrderItemModel",
        back_populates="purchase_order",
        cascade="save-update, merge",
        lazy="selectin",
        order_by="PurchaseOrderItemModel.line_number",
    )

    def to_dto(self):
        from procurement_modules.purchase_orders.models import (
            PurchaseOrder,
            PurchaseOrderStatus,
        )

        return PurchaseOrder(
            id=self.id,
            po_number=self.po_number,
            po_sequence=self.po_sequence,
            requisition_id=self.requisition_id,
            project_id=self.project_id,
            supplier_id=self.supplier_id,
            requester_id=self.requester_id,
            approver_id=self.approver_id,
            issue_date=self.issue_date,
            items=tuple(item.to_dto() for item in self.items),
            total_amount=round_money(self.total_amount),
            status=PurchaseOrderStatus(self.status),
            cancellation_reason=self.cancellation_reason,
            created_at=self.created_at,
            updated_at=self.updated_at,
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto) -> "PurchaseOrderModel":
        return cls(
            id=dto.id,
            po_number=dto.po_number,
            po_sequence=dto.po_sequence,
            requisition_id=dto.requisition_id,
            project_id=dto.project_id,
            supplier_id=dto.supplier_id,
            requester_id=dto.requester_id,
            approver_id=dto.approver_id,
            issue_date=dto.issue_date,
            items=[
                PurchaseOrderItemModel.from_dto(item, dto.id, dto.approver_id)
                for item in dto.items
            ],
            total_amount=dto.total_amount,
            status=dto.status.value,
            cancellation_reason=dto.cancellation_reason,
            created_by_id=dto.approver_id,
            created_at=dto.created_at,
            updated_at=dto.updated_at,
            version=dto.version,
        )

    def __repr__(self) -> str:
        return f"<PurchaseOrderModel {self.po_number} [{self.status}] v{self.version}>"


class PurchaseOrderItemModel(TrackedBase):
    """A frozen purchase-order line."""

    __tablename__ = "procurement_purchase_order_items"

    __table_args__ = (
        UniqueConstraint(
            "purchase_order_id", "line_number",
            name="uq_po_item_line_number",
        ),
        Index("idx_po_item_purchase_order", "purchase_order_id"),
    )

    __append_only__ = True

    purchase_order_id: Mapped[UUID] = mapped_column(
        ForeignKey("procurement_purchase_orders.id"), nullable=False,
    )
    requisition_item_id: Mapped[UUID] = mapped_column(nullable=False)
    line_number: Mapped[int]
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[int] = mapped_column(nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    line_total: Mapped[Decimal] = mapped_column(nullable=False)

    purchase_order: Mapped["PurchaseOrderModel"] = relationship(
        "PurchaseOrderModel",
        back_populates="items",
    )

    def to_dto(self):
        from procurement_modules.purchase_orders.models import PurchaseOrderItem

        return PurchaseOrderItem(
            id=self.id,
            line_number=self.line_number,
            requisition_item_id=self.requisition_item_id,
            description=self.description,
            quantity=self.quantity,
            unit=self.unit,
            unit_price=self.unit_price,
            line_total=round_money(self.line_total),
        )

    @classmethod
    def from_dto(cls, dto, purchase_order_id: UUID, created_by_id: str) -> "PurchaseOrderItemModel":
        return cls(
            id=dto.id,
            purchase_order_id=purchase_order_id,
            requisition_item_id=dto.requisition_item_id,
            line_number=dto.line_number,
            description=dto.description,
            quantity=dto.quantity,
            unit=dto.unit,
            unit_price=dto.unit_price,
            line_total=dto.line_total,
            created_by_id=created_by_id,
        )
