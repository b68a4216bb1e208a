"""
ProcurementWorkflow facade: role matrix, ownership, versions and logging.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from procurement_config.loader import config_from_dict
from procurement_kernel.db.engine import reset_engine
from procurement_kernel.domain.actor import Actor, Role
from procurement_kernel.exceptions import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from procurement_modules.master_data.models import ProjectStatus
from procurement_modules.purchase_orders.models import PurchaseOrderStatus
from procurement_modules.requisitions.models import (
    RequisitionFilter,
    RequisitionHeader,
    RequisitionStatus,
)
from procurement_services.approval_workflow import build_procurement_workflow
from procurement_services.rbac_authority import (
    APPROVE_REQUISITION,
    CANCEL_REQUISITION,
    EDIT_REFERENCED_PROJECT,
    MANAGE_MASTER_DATA,
    SUBMIT_REQUISITION,
    VIEW_REPORTS,
    check_permission,
    is_permitted,
)


@pytest.fixture
def draft(workflow, requester, header, items):
    return workflow.create_requisition(requester, header, items)


@pytest.fixture
def pending(workflow, requester, draft):
    return workflow.submit_requisition(requester, draft.id)


class TestRolePermissions:

    @pytest.mark.parametrize(
        "role, action, allowed",
        [
            (Role.REQUESTER, APPROVE_REQUISITION, False),
            (Role.FINANCE, APPROVE_REQUISITION, True),
            (Role.ADMIN, APPROVE_REQUISITION, True),
            (Role.REQUESTER, MANAGE_MASTER_DATA, False),
            (Role.FINANCE, MANAGE_MASTER_DATA, True),
            (Role.FINANCE, EDIT_REFERENCED_PROJECT, False),
            (Role.ADMIN, EDIT_REFERENCED_PROJECT, True),
            (Role.REQUESTER, VIEW_REPORTS, True),
        ],
    )
    def test_matrix(self, role, action, allowed):
        assert is_permitted(Actor("someone", role), action) is allowed

    def test_owner_scope_needs_snapshot(self, requester):
        allowed, reason = check_permission(requester, SUBMIT_REQUISITION)
        assert not allowed
        assert "snapshot" in reason

    def test_requester_cancel_after_approval_denied(self, workflow, requester, finance, pending):
        approved = workflow.approve_requisition(finance, pending.id)
        allowed, _ = check_permission(requester, CANCEL_REQUISITION, approved)
        assert not allowed


class TestRequesterFlow:

    def test_end_to_end(self, workflow, requester, finance, draft):
        assert draft.total_amount == Decimal("29.99")
        pending = workflow.submit_requisition(requester, draft.id)
        approved = workflow.approve_requisition(finance, pending.id)
        po = workflow.convert_to_purchase_order(finance, approved.id)

        assert po.total_amount == Decimal("29.99")
        assert workflow.get_requisition(requester, draft.id).status == RequisitionStatus.CONVERTED
        assert workflow.get_purchase_order_for_requisition(requester, draft.id).id == po.id
        assert workflow.get_purchase_order(requester, po.id).po_number == po.po_number

    def test_requester_cannot_approve(self, workflow, requester, pending):
        with pytest.raises(AuthorizationError):
            workflow.approve_requisition(requester, pending.id)
        assert workflow.get_requisition(requester, pending.id).version == pending.version

    def test_other_requester_cannot_submit(self, workflow, other_requester, draft):
        with pytest.raises(AuthorizationError):
            workflow.submit_requisition(other_requester, draft.id)
        assert workflow.get_requisition(other_requester, draft.id).status == RequisitionStatus.DRAFT

    def test_other_requester_cannot_edit(self, workflow, other_requester, header, items, draft):
        with pytest.raises(AuthorizationError):
            workflow.edit_requisition(other_requester, draft.id, header, items[:1])
        assert workflow.get_requisition(other_requester, draft.id).version == 1

    def test_finance_may_edit_any(self, workflow, finance, header, items, draft):
        edited = workflow.edit_requisition(finance, draft.id, header, items[:1])
        assert edited.total_amount == Decimal("20.00")

    def test_requester_cancels_own_pending(self, workflow, requester, pending):
        cancelled = workflow.cancel_requisition(requester, pending.id, reason="Not needed")
        assert cancelled.status == RequisitionStatus.CANCELLED

    def test_requester_cannot_cancel_approved(self, workflow, requester, finance, pending):
        approved = workflow.approve_requisition(finance, pending.id)
        with pytest.raises(AuthorizationError):
            workflow.cancel_requisition(requester, approved.id)
        assert workflow.get_requisition(requester, approved.id).status == RequisitionStatus.APPROVED

    def test_finance_cancels_approved(self, workflow, finance, pending):
        workflow.approve_requisition(finance, pending.id)
        assert workflow.cancel_requisition(finance, pending.id).status == RequisitionStatus.CANCELLED

    def test_reject_draft_is_invalid_state(self, workflow, finance, draft):
        with pytest.raises(InvalidStateError):
            workflow.reject_requisition(finance, draft.id, reason="too early")

    def test_requester_cannot_convert(self, workflow, requester, finance, pending):
        workflow.approve_requisition(finance, pending.id)
        with pytest.raises(AuthorizationError):
            workflow.convert_to_purchase_order(requester, pending.id)

    def test_unknown_requisition(self, workflow, finance):
        with pytest.raises(NotFoundError):
            workflow.approve_requisition(finance, uuid4())

    @pytest.mark.parametrize(
        "operation",
        ["approve_requisition", "reject_requisition", "convert_to_purchase_order"],
    )
    def test_role_checked_before_lookup(self, workflow, requester, operation):
        with pytest.raises(AuthorizationError):
            getattr(workflow, operation)(requester, uuid4())

    def test_edit_with_stale_version(self, workflow, requester, header, items, draft):
        from procurement_kernel.exceptions import ConflictError

        workflow.edit_requisition(requester, draft.id, header, items[:1], expected_version=1)
        with pytest.raises(ConflictError):
            workflow.edit_requisition(requester, draft.id, header, items, expected_version=1)


class TestConversionIdempotency:

    def test_repeat_convert_returns_same_po(self, workflow, finance, admin, approved_requisition):
        first = workflow.convert_to_purchase_order(finance, approved_requisition.id)
        second = workflow.convert_to_purchase_order(admin, approved_requisition.id)
        assert first.id == second.id
        assert len(workflow.list_purchase_orders(finance)) == 1


class TestPurchaseOrders:

    def test_fulfil(self, workflow, finance, approved_requisition):
        po = workflow.convert_to_purchase_order(finance, approved_requisition.id)
        assert workflow.fulfil_purchase_order(finance, po.id).status == PurchaseOrderStatus.FULFILLED

    def test_requester_cannot_cancel_po(self, workflow, requester, finance, approved_requisition):
        po = workflow.convert_to_purchase_order(finance, approved_requisition.id)
        with pytest.raises(AuthorizationError):
            workflow.cancel_purchase_order(requester, po.id)
        assert workflow.get_purchase_order(finance, po.id).version == po.version

    def test_catalog_change_leaves_po_untouched(
        self, workflow, requester, finance, header, supplier
    ):
        catalog_item = workflow.add_catalog_item(
            finance, supplier.id, "Plasterboard", "sheet", Decimal("8.75")
        ).catalog[0]
        draft = workflow.quote_item(requester, supplier.id, catalog_item.id, 4)
        req = workflow.create_requisition(requester, header, [draft])
        workflow.submit_requisition(requester, req.id)
        workflow.approve_requisition(finance, req.id)
        po = workflow.convert_to_purchase_order(finance, req.id)

        workflow.update_catalog_item(finance, supplier.id, catalog_item.id, unit_price=Decimal("99.00"))

        reloaded = workflow.get_purchase_order(finance, po.id)
        assert reloaded.items[0].unit_price == Decimal("8.75")
        assert reloaded.total_amount == Decimal("35.00")

    def test_list_filters(self, workflow, finance, approved_requisition, project):
        from procurement_modules.purchase_orders.models import PurchaseOrderFilter

        workflow.convert_to_purchase_order(finance, approved_requisition.id)
        assert len(workflow.list_purchase_orders(finance, PurchaseOrderFilter(project_id=project.id))) == 1
        assert workflow.list_purchase_orders(finance, PurchaseOrderFilter(project_id=uuid4())) == []


class TestMasterDataThroughFacade:

    def test_requester_cannot_manage(self, workflow, requester):
        with pytest.raises(AuthorizationError):
            workflow.create_supplier(requester, "X", "Y", "x@y.example")

    def test_finance_blocked_on_referenced_project(self, workflow, finance, admin, draft, project):
        with pytest.raises(AuthorizationError):
            workflow.update_project(finance, project.id, name="Renamed")
        assert workflow.update_project(finance, project.id, status=ProjectStatus.COMPLETED).status == ProjectStatus.COMPLETED
        assert workflow.update_project(admin, project.id, name="Renamed").name == "Renamed"

    def test_lists_visible_to_requesters(self, workflow, requester, project, supplier):
        assert [p.id for p in workflow.list_projects(requester)] == [project.id]
        assert [s.id for s in workflow.list_suppliers(requester)] == [supplier.id]

    def test_get_master_data(self, workflow, requester, project, supplier):
        assert workflow.get_project(requester, project.id).contract_number == "CN-2024-001"
        assert workflow.get_supplier(requester, supplier.id).email == "orders@acme.example"
        with pytest.raises(NotFoundError):
            workflow.get_project(requester, uuid4())

    def test_delete_requires_master_data_role(self, workflow, requester, finance, project, supplier):
        with pytest.raises(AuthorizationError):
            workflow.delete_project(requester, project.id)
        with pytest.raises(AuthorizationError):
            workflow.delete_supplier(requester, supplier.id)

        workflow.delete_project(finance, project.id)
        workflow.delete_supplier(finance, supplier.id)
        assert workflow.list_projects(finance) == []
        assert workflow.list_suppliers(finance) == []

    def test_delete_referenced_master_data_refused(
        self, workflow, requester, admin, header, items, project, supplier
    ):
        workflow.create_requisition(requester, header, items)
        with pytest.raises(ValidationError):
            workflow.delete_project(admin, project.id)
        with pytest.raises(ValidationError):
            workflow.delete_supplier(admin, supplier.id)


class TestFacadeLogging:

    def test_operations_log_with_context(self, workflow, requester, draft, captured_logs):
        workflow.submit_requisition(requester, draft.id)
        records = [r for r in captured_logs() if r["message"] == "requisition_submitted"]
        assert len(records) == 1
        assert records[0]["actor_id"] == requester.id
        assert records[0]["requisition_id"] == str(draft.id)
        assert "correlation_id" in records[0]

    def test_denial_logged(self, workflow, requester, pending, captured_logs):
        with pytest.raises(AuthorizationError):
            workflow.approve_requisition(requester, pending.id)
        denied = [r for r in captured_logs() if r["message"] == "authorization_denied"]
        assert denied and denied[0]["action"] == APPROVE_REQUISITION


class TestValidationThroughFacade:

    def test_submit_empty(self, workflow, requester, header):
        req = workflow.create_requisition(requester, header)
        with pytest.raises(ValidationError):
            workflow.submit_requisition(requester, req.id)

    def test_list_by_status(self, workflow, requester, draft, pending):
        found = workflow.list_requisitions(requester, RequisitionFilter(status=RequisitionStatus.PENDING_APPROVAL))
        assert [r.id for r in found] == [pending.id]


class TestBuildProcurementWorkflow:

    @pytest.fixture
    def built(self, clock, renderer, dispatcher):
        config = config_from_dict(
            {
                "database": {"url": "sqlite:///:memory:"},
                "dispatch": {"backoff_multiplier": 0, "backoff_max": 0, "wait_timeout": 2.0},
            }
        )
        workflow = build_procurement_workflow(config, renderer, dispatcher, clock)
        yield workflow
        workflow.dispatch.shutdown(wait=True)
        reset_engine()

    def test_sql_backed_lifecycle(self, built, admin, requester, finance, items, dispatcher):
        project = built.create_project(admin, "Harbour Depot", "CN-2024-007", date(2024, 1, 1))
        supplier = built.create_supplier(admin, "Northside Timber", "4 Mill Lane", "sales@northside.example")
        header = RequisitionHeader(
            project_id=project.id,
            supplier_id=supplier.id,
            request_date=date(2024, 1, 2),
            delivery_date=date(2024, 1, 20),
            delivery_address="Depot yard",
        )

        req = built.create_requisition(requester, header, items)
        built.submit_requisition(requester, req.id)
        built.approve_requisition(finance, req.id)
        po = built.convert_to_purchase_order(finance, req.id)

        assert po.total_amount == Decimal("29.99")
        assert built.get_requisition(requester, req.id).status == RequisitionStatus.CONVERTED
        assert built.dispatch.drain(timeout=5.0)
        assert sorted(m.context["event_type"] for m in dispatcher.sent) == [
            "approved",
            "converted",
            "submitted",
        ]

    def test_without_collaborators_has_no_dispatch(self, clock):
        workflow = build_procurement_workflow(config_from_dict({}), clock=clock)
        try:
            assert workflow.dispatch is None
        finally:
            reset_engine()
