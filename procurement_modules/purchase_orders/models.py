"""
Purchase Order Domain Models.

A purchase order is the numbered, immutable snapshot produced when an
approved requisition is converted.  Its items are copies taken at conversion
time; only ``status`` (and audit metadata) may change afterwards.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class PurchaseOrderStatus(str, Enum):
    """Purchase order lifecycle states."""
    ISSUED = "issued"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class PurchaseOrderItem:
    """A frozen copy of one requisition item."""
    id: UUID
    line_number: int
    requisition_item_id: UUID
    description: str
    quantity: int
    unit: str
    unit_price: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class PurchaseOrder:
    """A purchase order snapshot."""
    id: UUID
    po_number: str
    po_sequence: int
    requisition_id: UUID
    project_id: UUID
    supplier_id: UUID
    requester_id: str
    approver_id: str
    issue_date: date
    items: tuple[PurchaseOrderItem, ...] = field(default_factory=tuple)
    total_amount: Decimal = Decimal("0.00")
    status: PurchaseOrderStatus = PurchaseOrderStatus.ISSUED
    cancellation_reason: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int = 1


@dataclass(frozen=True)
class PurchaseOrderFilter:
    """Optional equality filters for listing purchase orders."""
    status: PurchaseOrderStatus | None = None
    project_id: UUID | None = None
    supplier_id: UUID | None = None
    requester_id: str | None = None

    def matches(self, po: PurchaseOrder) -> bool:
        if self.status is not None and po.status != self.status:
            return False
        if self.project_id is not None and po.project_id != self.project_id:
            return False
        if self.supplier_id is not None and po.supplier_id != self.supplier_id:
            return False
        if self.requester_id is not None and po.requester_id != self.requester_id:
            return False
        return True


@dataclass(frozen=True)
class ConversionOutcome:
    """Result of a conversion: the PO and whether this call created it."""
    purchase_order: PurchaseOrder
    created: bool
