"""
Requisition Domain Models.

A requisition is a requester's request for goods, tied to one project and
one supplier, carrying an ordered list of priced items.  DTOs are frozen;
every lifecycle step produces a new snapshot with ``dataclasses.replace``.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class RequisitionStatus(str, Enum):
    """Requisition lifecycle states."""
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    CONVERTED = "converted"  # to PO
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class RequisitionHeader:
    """Caller-editable header fields of a requisition."""
    project_id: UUID
    supplier_id: UUID
    request_date: date
    delivery_date: date
    delivery_address: str
    delivery_instructions: str | None = None


@dataclass(frozen=True)
class RequisitionItem:
    """A stored line item; ``line_total`` is always derived, never input."""
    id: UUID
    line_number: int
    description: str
    quantity: int
    unit: str
    unit_price: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class Requisition:
    """A requisition snapshot as committed to the ledger store."""
    id: UUID
    requisition_number: str
    project_id: UUID
    supplier_id: UUID
    requester_id: str
    request_date: date
    delivery_date: date
    delivery_address: str
    delivery_instructions: str | None = None
    items: tuple[RequisitionItem, ...] = field(default_factory=tuple)
    total_amount: Decimal = Decimal("0.00")
    status: RequisitionStatus = RequisitionStatus.DRAFT
    rejection_reason: str | None = None
    cancellation_reason: str | None = None
    approver_id: str | None = None
    approved_at: datetime | None = None
    purchase_order_id: UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int = 1

    @property
    def header(self) -> RequisitionHeader:
        return RequisitionHeader(
            project_id=self.project_id,
            supplier_id=self.supplier_id,
            request_date=self.request_date,
            delivery_date=self.delivery_date,
            delivery_address=self.delivery_address,
            delivery_instructions=self.delivery_instructions,
        )


@dataclass(frozen=True)
class RequisitionFilter:
    """Optional equality filters for listing requisitions; None matches all."""
    status: RequisitionStatus | None = None
    requester_id: str | None = None
    project_id: UUID | None = None
    supplier_id: UUID | None = None

    def matches(self, requisition: Requisition) -> bool:
        if self.status is not None and requisition.status != self.status:
            return False
        if self.requester_id is not None and requisition.requester_id != self.requester_id:
            return False
        if self.project_id is not None and requisition.project_id != self.project_id:
            return False
        if self.supplier_id is not None and requisition.supplier_id != self.supplier_id:
            return False
        return True
