"""
Tests for Logging Infrastructure
"""
import pytest
import json
import logging
from io import StringIO

from app.core.logging import (
    CorrelationIdFilter,
    JSONFormatter,
    correlation_id_var,
    generate_correlation_id,
    get_correlation_id,
    get_logger,
    log_async_operation,
    set_correlation_id,
    setup_logging,
)


@pytest.fixture
def log_stream() -> StringIO:
    return StringIO()


@pytest.fixture
def json_logger(log_stream: StringIO, request):
    """Structured logger writing JSON lines into log_stream"""
    handler = logging.StreamHandler(log_stream)
    handler.setFormatter(JSONFormatter())
    logger = get_logger(f"test.{request.node.name}")
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    yield logger
    logger.removeHandler(handler)


def _entries(log_stream: StringIO) -> list[dict]:
    return [json.loads(line) for line in log_stream.getvalue().splitlines() if line]


class TestCorrelationId:

    @pytest.mark.unit
    def test_generate_correlation_id(self):
        cid = generate_correlation_id()

        assert len(cid) == 8
        assert cid.isalnum()

    @pytest.mark.unit
    def test_set_and_get_correlation_id(self):
        assert set_correlation_id("tick0001") == "tick0001"
        assert get_correlation_id() == "tick0001"

    @pytest.mark.unit
    def test_set_correlation_id_generates_if_none(self):
        result = set_correlation_id(None)

        assert len(result) == 8
        assert get_correlation_id() == result

    @pytest.mark.unit
    def test_get_persists_generated_id(self):
        """A worker tick that never set an ID still logs one stable ID"""
        correlation_id_var.set("")

        first = get_correlation_id()

        assert first
        assert get_correlation_id() == first


class TestJSONFormatter:

    @pytest.mark.unit
    def test_json_format_basic(self, log_stream, json_logger):
        json_logger.info("Queue tick finished")

        [entry] = _entries(log_stream)
        assert entry["level"] == "INFO"
        assert entry["message"] == "Queue tick finished"
        assert entry["logger"] == json_logger.name
        assert entry["timestamp"].endswith("Z")

    @pytest.mark.unit
    def test_json_format_with_correlation_id(self, log_stream, json_logger):
        set_correlation_id("testcorr")

        json_logger.info("Correlated message")

        [entry] = _entries(log_stream)
        assert entry["correlation_id"] == "testcorr"

    @pytest.mark.unit
    def test_json_format_with_exception(self, log_stream, json_logger):
        try:
            raise ValueError("payload rejected")
        except ValueError:
            json_logger.error("Processing failed", exc_info=True)

        [entry] = _entries(log_stream)
        assert entry["level"] == "ERROR"
        assert "ValueError" in entry["exception"]


class TestStructuredLogger:

    @pytest.mark.unit
    def test_get_logger(self):
        assert get_logger("app.workers").name == "app.workers"

    @pytest.mark.unit
    def test_logger_with_extra_data(self, log_stream, json_logger):
        json_logger.warning(
            "Queue item failed",
            extra_data={"queue_item_id": 7, "attempts": 2},
        )

        [entry] = _entries(log_stream)
        assert entry["extra"] == {"queue_item_id": 7, "attempts": 2}

    @pytest.mark.unit
    def test_plain_text_filter_fills_correlation_id(self):
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
        set_correlation_id("plain001")

        assert CorrelationIdFilter().filter(record)
        assert record.correlation_id == "plain001"


class TestSetupLogging:

    @pytest.mark.unit
    def test_installs_single_json_handler(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging(level="debug", json_format=True, app_name="doc-exchange-test")

            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
            assert root.level == logging.DEBUG
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

    @pytest.mark.unit
    def test_plain_format_adds_filter(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging(level="INFO", json_format=False)

            [handler] = root.handlers
            assert any(isinstance(f, CorrelationIdFilter) for f in handler.filters)
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)


class TestAsyncLoggingDecorator:

    @pytest.mark.unit
    async def test_log_async_operation_success(self):
        @log_async_operation("refresh_status")
        async def refresh():
            return "Posted"

        assert await refresh() == "Posted"

    @pytest.mark.unit
    async def test_log_async_operation_failure(self):
        @log_async_operation("failing_operation")
        async def failing():
            raise ValueError("Test failure")

        with pytest.raises(ValueError):
            await failing()
