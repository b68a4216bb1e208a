"""
Pytest fixtures for the procurement lifecycle test suite.

Provides:
- Deterministic clock and the three role actors
- In-memory and SQLite-backed ledger stores
- A seeded project/supplier pair and requisition header
- Captured structured logs
- Fake renderer / dispatcher collaborators for dispatch tests
"""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO

import pytest

from procurement_config.schema import DispatchConfig, ProcurementConfig
from procurement_kernel.db.engine import init_engine_from_url, reset_engine
from procurement_kernel.domain.actor import Actor, Role
from procurement_kernel.domain.clock import DeterministicClock
from procurement_kernel.domain.totals import ItemDraft
from procurement_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from procurement_modules._orm_registry import create_all_tables
from procurement_modules.ledger.memory import InMemoryLedgerStore
from procurement_modules.ledger.sql import SqlLedgerStore
from procurement_modules.master_data.service import MasterDataService
from procurement_modules.requisitions.models import RequisitionHeader
from procurement_services.approval_workflow import ProcurementWorkflow
from procurement_services.dispatch import DispatchService
from tests.fakes import FakeDispatcher, FakeRenderer


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture procurement logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, workflow):
            workflow.submit_requisition(...)
            logs = captured_logs()
            assert any(r["message"] == "requisition_submitted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("procurement")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Clock and actors
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock()


@pytest.fixture
def requester():
    return Actor(id="req-alice", role=Role.REQUESTER)


@pytest.fixture
def other_requester():
    return Actor(id="req-bob", role=Role.REQUESTER)


@pytest.fixture
def finance():
    return Actor(id="fin-carol", role=Role.FINANCE)


@pytest.fixture
def admin():
    return Actor(id="adm-dana", role=Role.ADMIN)


# =============================================================================
# Stores
# =============================================================================


@pytest.fixture
def memory_store():
    return InMemoryLedgerStore()


@pytest.fixture
def sql_store():
    """SQLite in-memory database with every table created."""
    init_engine_from_url("sqlite:///:memory:")
    create_all_tables()
    yield SqlLedgerStore()
    reset_engine()


@pytest.fixture(params=["memory", "sql"])
def store(request):
    """Each test using this runs against both ledger store implementations."""
    if request.param == "memory":
        return request.getfixturevalue("memory_store")
    return request.getfixturevalue("sql_store")


# =============================================================================
# Master data and requisition inputs
# =============================================================================


@pytest.fixture
def master_data(store, clock):
    return MasterDataService(store, clock)


@pytest.fixture
def project(master_data, admin):
    return master_data.create_project(
        admin,
        name="Riverside Tower",
        contract_number="CN-2024-001",
        start_date=date(2024, 1, 1),
    )


@pytest.fixture
def supplier(master_data, admin):
    return master_data.create_supplier(
        admin,
        name="Acme Building Supplies",
        address="1 Quarry Road",
        email="orders@acme.example",
    )


@pytest.fixture
def header(project, supplier):
    return RequisitionHeader(
        project_id=project.id,
        supplier_id=supplier.id,
        request_date=date(2024, 1, 1),
        delivery_date=date(2024, 1, 15),
        delivery_address="Site gate 3, Riverside",
    )


def make_item(
    description: str = "Cement bag 25kg",
    quantity: int = 2,
    unit: str = "bag",
    unit_price: str = "10.00",
) -> ItemDraft:
    return ItemDraft(
        description=description,
        quantity=quantity,
        unit=unit,
        unit_price=Decimal(unit_price),
    )


@pytest.fixture
def items():
    """2 x 10.00 + 3 x 3.33 = 29.99"""
    return (
        make_item("Cement bag 25kg", 2, "bag", "10.00"),
        make_item("Rebar 12mm", 3, "m", "3.33"),
    )


@pytest.fixture
def workflow(store, clock):
    return ProcurementWorkflow(store, clock=clock, config=ProcurementConfig())


@pytest.fixture
def approved_requisition(workflow, requester, finance, header, items):
    req = workflow.create_requisition(requester, header, items)
    workflow.submit_requisition(requester, req.id)
    return workflow.approve_requisition(finance, req.id)


# =============================================================================
# Dispatch collaborators
# =============================================================================


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def dispatch_config():
    return DispatchConfig(
        worker_count=2,
        max_attempts=3,
        backoff_multiplier=0.0,
        backoff_max=0.0,
        wait_timeout=2.0,
    )


@pytest.fixture
def dispatch_service(renderer, dispatcher, dispatch_config):
    service = DispatchService(renderer, dispatcher, dispatch_config)
    yield service
    service.shutdown(wait=True)


@pytest.fixture(name="make_item")
def make_item_fixture():
    return make_item
