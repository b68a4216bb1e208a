"""Tests for the structured logging system (procurement_kernel/logging_config.py)."""

import json
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from procurement_kernel.exceptions import InvalidStateError
from procurement_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)
from procurement_modules.requisitions.models import RequisitionStatus


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


class TestStructuredFormatter:
    """JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "procurement.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("requisition_created", extra={"item_count": 2, "status": "draft"})

        record = _parse_log(stream)
        assert record["item_count"] == 2
        assert record["status"] == "draft"

    def test_domain_values_serialized(self):
        @dataclass(frozen=True)
        class Point:
            x: int

        handler, stream = _make_handler()
        configure_logging(handler=handler)
        rid = uuid4()
        get_logger("test").info(
            "typed",
            extra={
                "rid": rid,
                "amount": Decimal("29.99"),
                "day": date(2024, 1, 15),
                "status": RequisitionStatus.APPROVED,
                "point": Point(3),
                "roles": frozenset({"finance", "admin"}),
            },
        )

        record = _parse_log(stream)
        assert record["rid"] == str(rid)
        assert record["amount"] == "29.99"
        assert record["day"] == "2024-01-15"
        assert record["status"] == "approved"
        assert record["point"] == {"x": 3}
        assert record["roles"] == ["admin", "finance"]

    def test_exception_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise InvalidStateError("Requisition", "r-1", "draft", "approve")
        except InvalidStateError:
            get_logger("test").exception("failed")

        record = _parse_log(stream)
        assert record["exc_type"] == "InvalidStateError"
        assert record["exc_code"] == "INVALID_STATE"
        assert record["exc_current_status"] == "draft"
        assert "traceback" in record


class TestLogContext:

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="corr-1", actor_id="fin-carol")
        get_logger("test").info("with_context")

        record = _parse_log(stream)
        assert record["correlation_id"] == "corr-1"
        assert record["actor_id"] == "fin-carol"

    def test_bind_restores_previous_values(self):
        LogContext.set(actor_id="outer")
        with LogContext.bind(actor_id="inner", requisition_id="r-1"):
            assert LogContext.get_all() == {"actor_id": "inner", "requisition_id": "r-1"}
        assert LogContext.get_all() == {"actor_id": "outer"}

    def test_clear(self):
        LogContext.set(task_id="t-1")
        LogContext.clear()
        assert LogContext.get_all() == {}


class TestConfigureLogging:

    def test_idempotent(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        configure_logging(handler=handler)
        get_logger("test").info("once")
        assert len(_parse_all_logs(stream)) == 1

    def test_level_filters(self):
        handler, stream = _make_handler()
        configure_logging(level="WARNING", handler=handler)
        log = get_logger("test")
        log.info("hidden")
        log.warning("shown")
        assert [r["message"] for r in _parse_all_logs(stream)] == ["shown"]

    def test_unknown_format_rejected(self):
        with pytest.raises(ValueError):
            configure_logging(fmt="xml")


class TestKeyValueFormatter:

    def test_line_layout(self):
        stream = StringIO()
        configure_logging(fmt="text", stream=stream)
        with LogContext.bind(actor_id="req-alice"):
            get_logger("test").info("requisition_submitted", extra={"total": Decimal("29.99")})

        line = stream.getvalue().strip()
        assert " INFO procurement.test requisition_submitted " in line
        assert 'actor_id="req-alice"' in line
        assert 'total="29.99"' in line


class TestLogContextFields:

    def test_unknown_field_rejected(self):
        with pytest.raises(TypeError):
            LogContext.set(tenant="x")
        with pytest.raises(TypeError):
            LogContext.bind(tenant="x")

    def test_values_stringified(self):
        rid = uuid4()
        with LogContext.bind(requisition_id=rid):
            assert LogContext.get_all() == {"requisition_id": str(rid)}
