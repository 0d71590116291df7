"""Tests for ops_kernel.logging_config."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from ops_kernel.domain.integrity import FindingCategory
from ops_kernel.exceptions import InsufficientInventoryError, MaintenanceLockHeldError
from ops_kernel.logging_config import (
    CONTEXT_FIELDS,
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _fresh_logging():
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


@pytest.fixture
def log_lines():
    """Configure logging into a buffer; returns a reader of parsed lines."""
    stream = StringIO()

    def _configure(level=logging.INFO):
        handler = logging.StreamHandler(stream)
        configure_logging(handler=handler, level=level)

    def _read() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines() if line]

    _read.configure = _configure
    return _read


class TestStructuredFormatter:
    def test_base_keys(self, log_lines):
        log_lines.configure()
        get_logger("services.repair_engine").info("integrity_sweep_started")

        (record,) = log_lines()
        assert list(record)[:4] == ["ts", "level", "logger", "message"]
        assert record["logger"] == "ops_kernel.services.repair_engine"
        assert record["message"] == "integrity_sweep_started"
        assert record["ts"].endswith("+00:00")

    def test_extra_values_are_top_level(self, log_lines):
        log_lines.configure()
        get_logger("test").info(
            "composite_write_completed",
            extra={"attempts": 2, "status": "committed", "batch_id": uuid4()},
        )
        (record,) = log_lines()
        assert record["attempts"] == 2
        assert record["status"] == "committed"
        assert len(record["batch_id"]) == 36

    def test_decimal_enum_serialized(self, log_lines):
        log_lines.configure()
        get_logger("test").info(
            "finding",
            extra={"category": FindingCategory.NEGATIVE_INVENTORY, "remaining": Decimal("-5.000")},
        )
        (record,) = log_lines()
        assert record["category"] == "negative_inventory"
        assert record["remaining"] == "-5.000"

    def test_context_precedes_extras(self, log_lines):
        log_lines.configure()
        LogContext.set(correlation_id="abc-123", operation="create_production_batch_atomic")
        get_logger("test").info("msg", extra={"operation": "ignored"})

        (record,) = log_lines()
        assert record["correlation_id"] == "abc-123"
        assert record["operation"] == "create_production_batch_atomic"

    def test_no_context_when_unbound(self, log_lines):
        log_lines.configure()
        get_logger("test").info("bare")
        (record,) = log_lines()
        assert not set(CONTEXT_FIELDS) & set(record)

    def test_plain_exception(self, log_lines):
        log_lines.configure()
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").error("failed", exc_info=True)

        (record,) = log_lines()
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "exc_code" not in record
        assert "Traceback" in record["traceback"]

    def test_kernel_exception_fields(self, log_lines):
        log_lines.configure()
        lot_id = uuid4()
        try:
            raise InsufficientInventoryError(lot_id, Decimal("15"), Decimal("10"), line_index=2)
        except InsufficientInventoryError:
            get_logger("test").error("inventory_error", exc_info=True)

        (record,) = log_lines()
        assert record["exc_code"] == "INSUFFICIENT_INVENTORY"
        assert record["exc_material_intake_id"] == str(lot_id)
        assert record["exc_requested_quantity"] == "15"
        assert record["exc_available_quantity"] == "10"
        assert record["exc_line_index"] == 2

    def test_lock_error_fields(self, log_lines):
        log_lines.configure()
        try:
            raise MaintenanceLockHeldError("integrity_repair", "host-a:1234")
        except MaintenanceLockHeldError:
            get_logger("test").warning("sweep_refused", exc_info=True)

        (record,) = log_lines()
        assert record["exc_code"] == "MAINTENANCE_LOCK_HELD"
        assert record["exc_holder"] == "host-a:1234"

    def test_level_filtering(self, log_lines):
        log_lines.configure(level=logging.INFO)
        logger = get_logger("test")
        logger.debug("hidden")
        logger.info("shown")
        logger.warning("also_shown")
        assert [r["message"] for r in log_lines()] == ["shown", "also_shown"]

    def test_formatter_standalone(self):
        record = logging.LogRecord("ops_kernel.x", logging.INFO, __file__, 1, "hi %s", ("there",), None)
        assert json.loads(StructuredFormatter().format(record))["message"] == "hi there"


class TestLogContext:
    def test_set_ignores_none_and_unknown(self):
        LogContext.set(correlation_id="c", actor_id=None, tenant="t")
        assert LogContext.get_all() == {"correlation_id": "c"}

    def test_clear(self):
        LogContext.set(sweep_id="s")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous(self):
        LogContext.set(correlation_id="outer")
        with LogContext.bind(correlation_id="inner", entity_id="e"):
            assert LogContext.get_all() == {"correlation_id": "inner", "entity_id": "e"}
        assert LogContext.get_all() == {"correlation_id": "outer"}

    def test_bind_restores_on_error(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(sweep_id="s"):
                raise RuntimeError
        assert LogContext.get_all() == {}

    def test_nested_bind(self):
        with LogContext.bind(sweep_id="s", operation="integrity_repair"):
            with LogContext.bind(entity_id="lot-1"):
                assert len(LogContext.get_all()) == 3
            assert "entity_id" not in LogContext.get_all()

    def test_every_field_settable(self):
        LogContext.set(**{name: name.upper() for name in CONTEXT_FIELDS})
        assert LogContext.get_all() == {name: name.upper() for name in CONTEXT_FIELDS}


class TestConfigureLogging:
    def test_only_first_call_counts(self, log_lines):
        log_lines.configure()
        second = logging.StreamHandler(StringIO())
        configure_logging(handler=second)

        handlers = logging.getLogger("ops_kernel").handlers
        assert second not in handlers
        # pytest adds its own capture handlers to non-propagating loggers
        structured = [h for h in handlers if isinstance(h.formatter, StructuredFormatter)]
        assert len(structured) == 1

    def test_does_not_propagate(self, log_lines):
        log_lines.configure()
        assert logging.getLogger("ops_kernel").propagate is False

    def test_children_share_handler(self, log_lines):
        log_lines.configure(level=logging.DEBUG)
        get_logger("selectors.consistency_auditor").debug("nested")
        (record,) = log_lines()
        assert record["logger"] == "ops_kernel.selectors.consistency_auditor"

    def test_reset_clears_handlers(self, log_lines):
        log_lines.configure()
        reset_logging()
        handlers = logging.getLogger("ops_kernel").handlers
        assert not [h for h in handlers if isinstance(h.formatter, StructuredFormatter)]

    def test_reset_keeps_other_handlers(self, log_lines):
        log_lines.configure()
        kernel_logger = logging.getLogger("ops_kernel")
        other = logging.NullHandler()
        kernel_logger.addHandler(other)
        try:
            reset_logging()
            assert other in kernel_logger.handlers
        finally:
            kernel_logger.removeHandler(other)
