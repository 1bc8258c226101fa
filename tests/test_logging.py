"""Tests for the structured logging system (pharmacy_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from pharmacy_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


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


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


def _parse_log(stream: StringIO) -> dict:
    return _parse_all_logs(stream)[0]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("sale_started")

        record = _parse_log(stream)
        assert record["message"] == "sale_started"
        assert record["level"] == "INFO"
        assert record["logger"] == "pharmacy_kernel.test"
        assert "ts" in record

    def test_extra_fields_and_decimal(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info(
            "sale_committed",
            extra={"line_count": 2, "total_amount": Decimal("12.50")},
        )

        record = _parse_log(stream)
        assert record["line_count"] == 2
        assert record["total_amount"] == "12.50"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)

        with LogContext.bind(correlation_id="abc-123", sale_id="sale-1"):
            get_logger("test").info("lot_decremented")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["sale_id"] == "sale-1"
        assert "medication_id" not in record

    def test_kernel_exception_fields_extracted(self):
        from pharmacy_kernel.exceptions import InsufficientStockError

        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise InsufficientStockError("med-1", requested=10, available=4, line_index=0)
        except InsufficientStockError:
            get_logger("test").error("stock_error", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "STOCK_INSUFFICIENT"
        assert record["exc_type"] == "InsufficientStockError"
        assert record["exc_medication_id"] == "med-1"
        assert record["exc_shortfall"] == 6
        assert "traceback" in record

    def test_uuid_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        lot_id = uuid4()
        get_logger("test").info("lot_locked", extra={"lot_id": lot_id})

        assert _parse_log(stream)["lot_id"] == str(lot_id)

    def test_debug_filtered_at_default_level(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["first", "second"]


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    def test_set_and_get(self):
        LogContext.set(correlation_id="x", operator_id="op")
        assert LogContext.get_all() == {"correlation_id": "x", "operator_id": "op"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous_values(self):
        LogContext.set(correlation_id="outer")
        with LogContext.bind(correlation_id="inner", medication_id="m"):
            assert LogContext.get_all()["correlation_id"] == "inner"
        ctx = LogContext.get_all()
        assert ctx["correlation_id"] == "outer"
        assert "medication_id" not in ctx

    def test_all_fields(self):
        LogContext.set(
            correlation_id="c",
            sale_id="s",
            operator_id="o",
            medication_id="m",
        )
        assert len(LogContext.get_all()) == 4


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)

        handlers = logging.getLogger("pharmacy_kernel").handlers
        assert h1 in handlers
        assert h2 not in handlers

    def test_reset_removes_only_installed_handler(self):
        kernel_logger = logging.getLogger("pharmacy_kernel")
        foreign = logging.NullHandler()
        kernel_logger.addHandler(foreign)
        try:
            installed, _ = _make_handler()
            configure_logging(handler=installed)
            reset_logging()

            assert installed not in kernel_logger.handlers
            assert foreign in kernel_logger.handlers
        finally:
            kernel_logger.removeHandler(foreign)

    def test_get_logger_returns_child(self):
        assert get_logger("services.sale_coordinator").name == (
            "pharmacy_kernel.services.sale_coordinator"
        )

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("deep.nested.module").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["logger"] == "pharmacy_kernel.deep.nested.module"
