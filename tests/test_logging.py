"""Tests for the structured logging system (lifecycle_kernel/logging_config.py)."""

import json
import logging
from datetime import date, datetime, timezone
from io import StringIO
from uuid import uuid4

import pytest

from lifecycle_kernel.domain.statuses import CustomerStatus
from lifecycle_kernel.exceptions import InvalidTransitionError, TransitionConflictError
from lifecycle_kernel.logging_config import (
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


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    """Tests for JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "lifecycle_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("transition_committed", extra={"seq": 4, "to_status": "CERTIFIED"})

        record = _parse_log(stream)
        assert record["seq"] == 4
        assert record["to_status"] == "CERTIFIED"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="abc-123", customer_id="cust-456")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["customer_id"] == "cust-456"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_kernel_exception_code_extracted(self):
        """Kernel exceptions carry a .code attribute and structured fields."""
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise TransitionConflictError("cust-1", "CERTIFIED", 4)
        except TransitionConflictError:
            get_logger("test").error("transition_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "TRANSITION_CONFLICT"
        assert record["exc_type"] == "TransitionConflictError"
        assert record["exc_customer_id"] == "cust-1"
        assert record["exc_attempts"] == 4

    def test_status_sets_serialized_sorted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise InvalidTransitionError(
                "cust-1",
                "CERTIFIED",
                "NEW",
                "cannot return",
                frozenset({CustomerStatus.SUBMITTED, CustomerStatus.ABORTED}),
            )
        except InvalidTransitionError:
            get_logger("test").warning("rejected", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_valid_targets"] == ["ABORTED", "SUBMITTED"]

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "correlation_id" not in record
        assert "customer_id" not in record

    def test_uuid_date_and_enum_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info(
            "typed_values",
            extra={
                "record_id": uid,
                "certified_at": date(2024, 3, 15),
                "occurred_at": datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc),
                "status": CustomerStatus.CERTIFIED,
            },
        )

        record = _parse_log(stream)
        assert record["record_id"] == str(uid)
        assert record["certified_at"] == "2024-03-15"
        assert record["occurred_at"] == "2024-03-15T12:00:00+00:00"
        assert record["status"] == "CERTIFIED"

    def test_valid_json_every_line(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        # Default level is INFO, so the debug line is dropped
        assert len(logs) == 2
        for record in logs:
            assert {"ts", "level", "logger", "message"} <= set(record)


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    """Tests for context propagation."""

    def test_set_and_get(self):
        LogContext.set(correlation_id="x", customer_id="y")
        assert LogContext.get_all() == {"correlation_id": "x", "customer_id": "y"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_context_manager(self):
        LogContext.set(customer_id="outer")
        with LogContext.bind(customer_id="inner"):
            assert LogContext.get_all()["customer_id"] == "inner"
        assert LogContext.get_all()["customer_id"] == "outer"

    def test_bind_restores_none(self):
        """bind() restores to None if there was no previous value."""
        assert "customer_id" not in LogContext.get_all()
        with LogContext.bind(customer_id="temp"):
            assert LogContext.get_all()["customer_id"] == "temp"
        assert "customer_id" not in LogContext.get_all()

    def test_bind_skips_none_values(self):
        LogContext.set(actor_id="a")
        with LogContext.bind(actor_id=None, customer_id="c"):
            assert LogContext.get_all() == {"actor_id": "a", "customer_id": "c"}

    def test_all_fields(self):
        LogContext.set(correlation_id="c", customer_id="u", actor_id="a", trace_id="t")
        ctx = LogContext.get_all()
        assert len(ctx) == 4
        assert ctx["trace_id"] == "t"


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    """Tests for initialization."""

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)  # second call is no-op
        root = logging.getLogger("lifecycle_kernel")
        assert len(root.handlers) == 1

    def test_get_logger_returns_child(self):
        assert get_logger("services.lifecycle").name == "lifecycle_kernel.services.lifecycle"

    def test_logger_hierarchy(self):
        """Child loggers inherit the lifecycle_kernel root config."""
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("deep.nested.module").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "lifecycle_kernel.deep.nested.module"

    def test_level_by_name(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level="debug")
        get_logger("test").debug("named_level")
        assert _parse_log(stream)["message"] == "named_level"

    def test_unknown_level_name(self):
        with pytest.raises(ValueError):
            configure_logging(level="LOUD")

    def test_unknown_context_field(self):
        with pytest.raises(TypeError):
            LogContext.set(event_id="nope")
        with pytest.raises(TypeError):
            with LogContext.bind(producer="nope"):
                pass
