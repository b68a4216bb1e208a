"""
SQLAlchemy ORM persistence models for requisitions.

Responsibility
--------------
Database-backed persistence for requisitions and their line items.  Maps to
the DTOs in ``procurement_modules.requisitions.models``.

Invariants enforced
-------------------
* ``requisition_number`` is unique.
* ``purchase_order_id`` is unique when set (one PO per requisition).
* (requisition_id, line_number) is unique.
* All monetary fields use ``Decimal`` (Numeric(38,9)) -- NEVER float.
* Enum fields are stored as String(50).
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement_kernel.db.base import TrackedBase, UTCDateTime
from procurement_kernel.db.types import round_money


class RequisitionModel(TrackedBase):
    """A requisition row; ``version`` is the optimistic concurrency token."""

    __tablename__ = "procurement_requisitions"

    __table_args__ = (
        UniqueConstraint("requisition_number", name="uq_requisition_number"),
        UniqueConstraint("purchase_order_id", name="uq_requisition_purchase_order"),
        Index("idx_requisition_requester", "requester_id"),
        Index("idx_requisition_status", "status"),
        Index("idx_requisition_project", "project_id"),
    )

    requisition_number: Mapped[str] = mapped_column(String(50), nullable=False)
    project_id: Mapped[UUID] = mapped_column(
        ForeignKey("procurement_projects.id"), nullable=False,
    )
    supplier_id: Mapped[UUID] = mapped_column(
        ForeignKey("procurement_suppliers.id"), nullable=False,
    )
    requester_id: Mapped[str] = mapped_column(String(100), nullable=False)
    request_date: Mapped[date] = mapped_column(Date, nullable=False)
    delivery_date: Mapped[date] = mapped_column(Date, nullable=False)
    delivery_address: Mapped[str] = mapped_column(String(500), nullable=False)
    delivery_instructions: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="draft")
    rejection_reason: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    approver_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    purchase_order_id: Mapped[UUID | None]
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    items: Mapped[list["RequisitionItemModel"]] = relationship(
        "RequisitionItemModel",
        back_populates="requisition",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="RequisitionItemModel.line_number",
    )

    def to_dto(self):
        from procurement_modules.requisitions.models import Requisition, RequisitionStatus

        return Requisition(
            id=self.id,
            requisition_number=self.requisition_number,
            project_id=self.project_id,
            supplier_id=self.supplier_id,
            requester_id=self.requester_id,
            request_date=self.request_date,
            delivery_date=self.delivery_date,
            delivery_address=self.delivery_address,
            delivery_instructions=self.delivery_instructions,
            items=tuple(item.to_dto() for item in self.items),
            total_amount=round_money(self.total_amount),
            status=RequisitionStatus(self.status),
            rejection_reason=self.rejection_reason,
            cancellation_reason=self.cancellation_reason,
            approver_id=self.approver_id,
            approved_at=self.approved_at,
            purchase_order_id=self.purchase_order_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto) -> "RequisitionModel":
        return cls(
            id=dto.id,
            requisition_number=dto.requisition_number,
            items=[
                RequisitionItemModel.from_dto(item, dto.id, dto.requester_id)
                for item in dto.items
            ],
            created_by_id=dto.requester_id,
            created_at=dto.created_at,
            version=dto.version,
            **cls.mutable_values(dto),
        )

    @staticmethod
    def mutable_values(dto) -> dict:
        """Column values a lifecycle step may change (everything but identity)."""
        return {
            "project_id": dto.project_id,
            "supplier_id": dto.supplier_id,
            "requester_id": dto.requester_id,
            "request_date": dto.request_date,
            "delivery_date": dto.delivery_date,
            "delivery_address": dto.delivery_address,
            "delivery_instructions": dto.delivery_instructions,
            "total_amount": dto.total_amount,
            "status": dto.status.value,
            "rejection_reason": dto.rejection_reason,
            "cancellation_reason": dto.cancellation_reason,
            "approver_id": dto.approver_id,
            "approved_at": dto.approved_at,
            "purchase_order_id": dto.purchase_order_id,
            "updated_at": dto.updated_at,
        }

    def __repr__(self) -> str:
        return f"<RequisitionModel {self.requisition_number} [{self.status}] v{self.version}>"


class RequisitionItemModel(TrackedBase):
    """A line item on a requisition."""

    __tablename__ = "procurement_requisition_items"

    __table_args__ = (
        UniqueConstraint(
            "requisition_id", "line_number",
            name="uq_requisition_item_line_number",
        ),
        Index("idx_req_item_requisition", "requisition_id"),
    )

    requisition_id: Mapped[UUID] = mapped_column(
        ForeignKey("procurement_requisitions.id"), nullable=False,
    )
    line_number: Mapped[int]
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[int] = mapped_column(nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    line_total: Mapped[Decimal] = mapped_column(nullable=False)

    requisition: Mapped["RequisitionModel"] = relationship(
        "RequisitionModel",
        back_populates="items",
    )

    def to_dto(self):
        from procurement_modules.requisitions.models import RequisitionItem

        return RequisitionItem(
            id=self.id,
            line_number=self.line_number,
            description=self.description,
            quantity=self.quantity,
            unit=self.unit,
            unit_price=self.unit_price,
            line_total=round_money(self.line_total),
        )

    @classmethod
    def from_dto(cls, dto, requisition_id: UUID, created_by_id: str) -> "RequisitionItemModel":
        return cls(
            id=dto.id,
            requisition_id=requisition_id,
            line_number=dto.line_number,
            description=dto.description,
            quantity=dto.quantity,
            unit=dto.unit,
            unit_price=dto.unit_price,
            line_total=dto.line_total,
            created_by_id=created_by_id,
        )
