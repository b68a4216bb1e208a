"""
MasterDataService: projects, suppliers, catalogs and catalog quotes.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from procurement_kernel.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from procurement_modules.master_data.models import ProjectStatus
from procurement_modules.requisitions.service import RequisitionStateMachine


class TestProjects:

    def test_create_and_get(self, master_data, admin, project):
        loaded = master_data.get_project(project.id)
        assert loaded.name == "Riverside Tower"
        assert loaded.status == ProjectStatus.ACTIVE
        assert loaded.created_by_id == admin.id
        assert loaded.version == 1

    def test_duplicate_contract_number(self, master_data, admin, project):
        with pytest.raises(ValidationError) as exc_info:
            master_data.create_project(admin, "Other", project.contract_number, date(2024, 2, 1))
        assert exc_info.value.fields == ("contract_number",)

    def test_end_before_start(self, master_data, admin):
        with pytest.raises(ValidationError) as exc_info:
            master_data.create_project(
                admin, "Short", "CN-X", date(2024, 2, 1), end_date=date(2024, 1, 1)
            )
        assert exc_info.value.fields == ("end_date",)

    def test_update_unreferenced_project(self, master_data, admin, finance, project):
        updated = master_data.update_project(
            finance, project.id, name="Riverside Tower II", expected_version=1
        )
        assert updated.name == "Riverside Tower II"
        assert updated.version == 2

    def test_stale_update_conflicts(self, master_data, finance, project):
        master_data.update_project(finance, project.id, name="A")
        with pytest.raises(ConflictError):
            master_data.update_project(finance, project.id, name="B", expected_version=1)

    def test_referenced_project_status_change_allowed(
        self, store, clock, master_data, requester, finance, header, project
    ):
        RequisitionStateMachine(store, clock).create(requester, header)
        updated = master_data.update_project(finance, project.id, status=ProjectStatus.ON_HOLD)
        assert updated.status == ProjectStatus.ON_HOLD

    def test_referenced_project_structural_edit_needs_permission(
        self, store, clock, master_data, requester, finance, admin, header, project
    ):
        RequisitionStateMachine(store, clock).create(requester, header)
        with pytest.raises(AuthorizationError) as exc_info:
            master_data.update_project(finance, project.id, name="Renamed")
        assert exc_info.value.action == "edit_referenced_project"
        assert master_data.get_project(project.id).version == 1

        updated = master_data.update_project(
            admin, project.id, name="Renamed", allow_referenced_edit=True
        )
        assert updated.name == "Renamed"

    def test_list(self, master_data, admin, project):
        master_data.create_project(admin, "Harbour Bridge", "CN-2024-002", date(2024, 3, 1))
        assert {p.contract_number for p in master_data.list_projects()} == {
            "CN-2024-001", "CN-2024-002"
        }

    def test_get_unknown(self, master_data):
        with pytest.raises(NotFoundError):
            master_data.get_project(uuid4())

    def test_delete_unreferenced_project(self, master_data, finance, project):
        master_data.delete_project(finance, project.id, expected_version=1)
        with pytest.raises(NotFoundError):
            master_data.get_project(project.id)
        assert master_data.list_projects() == []

    def test_delete_referenced_project_refused(
        self, store, clock, master_data, requester, finance, header, project
    ):
        RequisitionStateMachine(store, clock).create(requester, header)
        with pytest.raises(ValidationError) as exc_info:
            master_data.delete_project(finance, project.id)
        assert exc_info.value.fields == ("project_id",)
        assert master_data.get_project(project.id).version == 1

    def test_stale_delete_conflicts(self, master_data, finance, project):
        master_data.update_project(finance, project.id, name="A")
        with pytest.raises(ConflictError):
            master_data.delete_project(finance, project.id, expected_version=1)
        assert master_data.get_project(project.id).name == "A"


class TestSuppliers:

    def test_invalid_email(self, master_data, admin):
        with pytest.raises(ValidationError) as exc_info:
            master_data.create_supplier(admin, "Bad", "Addr", "not-an-email")
        assert exc_info.value.fields == ("email",)

    def test_update_supplier(self, master_data, finance, supplier):
        updated = master_data.update_supplier(finance, supplier.id, phone="555-0100")
        assert updated.phone == "555-0100"
        assert updated.name == supplier.name
        assert updated.version == 2

    def test_delete_unreferenced_supplier(self, master_data, finance, supplier):
        master_data.add_catalog_item(finance, supplier.id, "Rebar 12mm", "m", Decimal("3.10"))
        master_data.delete_supplier(finance, supplier.id)
        with pytest.raises(NotFoundError):
            master_data.get_supplier(supplier.id)
        assert master_data.list_suppliers() == []

    def test_delete_referenced_supplier_refused(
        self, store, clock, master_data, requester, finance, header, supplier
    ):
        RequisitionStateMachine(store, clock).create(requester, header)
        with pytest.raises(ValidationError) as exc_info:
            master_data.delete_supplier(finance, supplier.id)
        assert exc_info.value.fields == ("supplier_id",)
        assert master_data.get_supplier(supplier.id).name == supplier.name


class TestCatalog:

    def test_add_update_remove(self, master_data, finance, supplier):
        with_item = master_data.add_catalog_item(finance, supplier.id, "Plywood 18mm", "sheet", Decimal("42.50"))
        item = with_item.catalog[0]
        assert item.unit_price == Decimal("42.50")

        repriced = master_data.update_catalog_item(finance, supplier.id, item.id, unit_price=Decimal("45.00"))
        assert repriced.catalog_item(item.id).unit_price == Decimal("45.00")

        emptied = master_data.remove_catalog_item(finance, supplier.id, item.id)
        assert emptied.catalog == ()

    def test_negative_price_rejected(self, master_data, finance, supplier):
        with pytest.raises(ValidationError):
            master_data.add_catalog_item(finance, supplier.id, "Plywood", "sheet", Decimal("-1"))

    def test_unknown_item(self, master_data, finance, supplier):
        with pytest.raises(NotFoundError):
            master_data.remove_catalog_item(finance, supplier.id, uuid4())

    def test_quote_uses_live_price(self, master_data, finance, supplier):
        item = master_data.add_catalog_item(
            finance, supplier.id, "Plywood 18mm", "sheet", Decimal("42.50")
        ).catalog[0]
        draft = master_data.quote_item(supplier.id, item.id, 3)
        assert draft.description == "Plywood 18mm"
        assert draft.line_total == Decimal("127.50")

        master_data.update_catalog_item(finance, supplier.id, item.id, unit_price=Decimal("40.00"))
        assert master_data.quote_item(supplier.id, item.id, 3).line_total == Decimal("120.00")
        assert draft.unit_price == Decimal("42.50")
