"""
Master Data Domain Models.

Projects a requisition is raised against and the suppliers it is placed
with.  A supplier's catalog is a live price list: quoting from it copies the
price into a requisition item, and nothing flows back the other way.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class ProjectStatus(str, Enum):
    """Construction project states."""
    ACTIVE = "active"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ON_HOLD = "on_hold"


@dataclass(frozen=True)
class Project:
    """A construction project, identified externally by its contract number."""
    id: UUID
    name: str
    contract_number: str
    start_date: date
    created_by_id: str
    end_date: date | None = None
    status: ProjectStatus = ProjectStatus.ACTIVE
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int = 1


@dataclass(frozen=True)
class SupplierItem:
    """One priced entry in a supplier's catalog."""
    id: UUID
    description: str
    unit: str
    unit_price: Decimal


@dataclass(frozen=True)
class Supplier:
    """A supplier and its catalog."""
    id: UUID
    name: str
    address: str
    email: str
    created_by_id: str
    phone: str | None = None
    contact_person: str | None = None
    catalog: tuple[SupplierItem, ...] = field(default_factory=tuple)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int = 1

    def catalog_item(self, item_id: UUID) -> SupplierItem | None:
        for item in self.catalog:
            if item.id == item_id:
                return item
        return None
