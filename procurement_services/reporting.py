"""
Reporting Service (``procurement_services.reporting``).

Responsibility
--------------
Read-only spend and activity summaries over committed ledger snapshots:
project expenditure, requisition status counts, top suppliers, monthly
purchase trend and requester expenditure.

Architecture position
---------------------
**Services layer**.  Reads through one ``LedgerStore`` transaction per
report; aggregation is done by the pure ``summarize_*`` functions below so
they can be tested without a store.

Invariants enforced
-------------------
* Read-only; no writes, no version changes.
* Amounts are ``Decimal`` rounded half-up to 2 dp.
* Cancelled purchase orders contribute to no purchase-order report.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from procurement_kernel.db.types import ZERO_MONEY, round_money
from procurement_kernel.domain.actor import Actor
from procurement_kernel.logging_config import get_logger
from procurement_modules.ledger.store import LedgerStore
from procurement_modules.master_data.models import Project, Supplier
from procurement_modules.purchase_orders.models import PurchaseOrder, PurchaseOrderStatus
from procurement_modules.requisitions.models import Requisition, RequisitionStatus
from procurement_services.rbac_authority import VIEW_REPORTS, authorize

logger = get_logger("services.reporting")


@dataclass(frozen=True)
class ProjectExpenditure:
    project_id: UUID
    project_name: str
    contract_number: str
    total_amount: Decimal
    purchase_order_count: int


@dataclass(frozen=True)
class SupplierSpend:
    supplier_id: UUID
    supplier_name: str
    purchase_order_count: int
    total_amount: Decimal


@dataclass(frozen=True)
class MonthlyPurchases:
    month: str  # YYYY-MM
    total_amount: Decimal
    purchase_order_count: int


@dataclass(frozen=True)
class RequesterExpenditure:
    requester_id: str
    requisition_count: int
    total_amount: Decimal


def _live(purchase_orders: Iterable[PurchaseOrder]) -> list[PurchaseOrder]:
    return [po for po in purchase_orders if po.status != PurchaseOrderStatus.CANCELLED]


def summarize_project_expenditures(
    projects: Iterable[Project],
    purchase_orders: Iterable[PurchaseOrder],
) -> list[ProjectExpenditure]:
    """Per project, non-cancelled PO totals; largest first, then by name."""
    totals: dict[UUID, Decimal] = defaultdict(lambda: ZERO_MONEY)
    counts: Counter[UUID] = Counter()
    for po in _live(purchase_orders):
        totals[po.project_id] += po.total_amount
        counts[po.project_id] += 1
    rows = [
        ProjectExpenditure(
            project_id=p.id,
            project_name=p.name,
            contract_number=p.contract_number,
            total_amount=round_money(totals[p.id]),
            purchase_order_count=counts[p.id],
        )
        for p in projects
    ]
    return sorted(rows, key=lambda r: (-r.total_amount, r.project_name))


def summarize_status_counts(
    requisitions: Iterable[Requisition],
) -> dict[RequisitionStatus, int]:
    counts = {status: 0 for status in RequisitionStatus}
    for req in requisitions:
        counts[req.status] += 1
    return counts


def summarize_top_suppliers(
    suppliers: Iterable[Supplier],
    purchase_orders: Iterable[PurchaseOrder],
    limit: int = 5,
) -> list[SupplierSpend]:
    if limit < 0:
        raise ValueError(f"limit must be non-negative, got {limit}")
    names = {s.id: s.name for s in suppliers}
    totals: dict[UUID, Decimal] = defaultdict(lambda: ZERO_MONEY)
    counts: Counter[UUID] = Counter()
    for po in _live(purchase_orders):
        totals[po.supplier_id] += po.total_amount
        counts[po.supplier_id] += 1
    rows = [
        SupplierSpend(
            supplier_id=supplier_id,
            supplier_name=names.get(supplier_id, ""),
            purchase_order_count=counts[supplier_id],
            total_amount=round_money(total),
        )
        for supplier_id, total in totals.items()
    ]
    rows.sort(key=lambda r: (-r.total_amount, -r.purchase_order_count, r.supplier_name))
    return rows[:limit]


def summarize_monthly_trend(
    purchase_orders: Iterable[PurchaseOrder],
) -> list[MonthlyPurchases]:
    totals: dict[str, Decimal] = defaultdict(lambda: ZERO_MONEY)
    counts: Counter[str] = Counter()
    for po in _live(purchase_orders):
        month = po.issue_date.strftime("%Y-%m")
        totals[month] += po.total_amount
        counts[month] += 1
    return [
        MonthlyPurchases(month=m, total_amount=round_money(totals[m]), purchase_order_count=counts[m])
        for m in sorted(totals)
    ]


def summarize_requester_expenditures(
    requisitions: Iterable[Requisition],
) -> list[RequesterExpenditure]:
    totals: dict[str, Decimal] = defaultdict(lambda: ZERO_MONEY)
    counts: Counter[str] = Counter()
    for req in requisitions:
        totals[req.requester_id] += req.total_amount
        counts[req.requester_id] += 1
    rows = [
        RequesterExpenditure(
            requester_id=requester_id,
            requisition_count=counts[requester_id],
            total_amount=round_money(total),
        )
        for requester_id, total in totals.items()
    ]
    return sorted(rows, key=lambda r: (-r.total_amount, r.requester_id))


class ReportingService:
    """
    Read-only reports; every method checks ``reports.view`` for the actor.
    """

    def __init__(self, store: LedgerStore):
        self._store = store

    def project_expenditures(self, actor: Actor) -> list[ProjectExpenditure]:
        authorize(actor, VIEW_REPORTS)
        with self._store.transaction() as txn:
            rows = summarize_project_expenditures(txn.list_projects(), txn.list_purchase_orders())
        self._log("project_expenditures", actor, len(rows))
        return rows

    def requisition_status_counts(self, actor: Actor) -> dict[RequisitionStatus, int]:
        authorize(actor, VIEW_REPORTS)
        with self._store.transaction() as txn:
            counts = summarize_status_counts(txn.list_requisitions())
        self._log("requisition_status_counts", actor, len(counts))
        return counts

    def top_suppliers(self, actor: Actor, limit: int = 5) -> list[SupplierSpend]:
        authorize(actor, VIEW_REPORTS)
        with self._store.transaction() as txn:
            rows = summarize_top_suppliers(txn.list_suppliers(), txn.list_purchase_orders(), limit)
        self._log("top_suppliers", actor, len(rows))
        return rows

    def monthly_purchase_trend(self, actor: Actor) -> list[MonthlyPurchases]:
        authorize(actor, VIEW_REPORTS)
        with self._store.transaction() as txn:
            rows = summarize_monthly_trend(txn.list_purchase_orders())
        self._log("monthly_purchase_trend", actor, len(rows))
        return rows

    def requester_expenditures(self, actor: Actor) -> list[RequesterExpenditure]:
        authorize(actor, VIEW_REPORTS)
        with self._store.transaction() as txn:
            rows = summarize_requester_expenditures(txn.list_requisitions())
        self._log("requester_expenditures", actor, len(rows))
        return rows

    @staticmethod
    def _log(report_type: str, actor: Actor, row_count: int) -> None:
        logger.info(
            "report_generated",
            extra={"report_type": report_type, "actor_id": actor.id, "row_count": row_count},
        )
