"""
Tests for edi_bridge.core.structured_logging.
"""

import asyncio
import json
import logging

import pytest

from edi_bridge.core.structured_logging import (
    ContextFilter,
    LogCategory,
    StructuredFormatter,
    configure_logging,
    get_current_context,
    log_context,
)


def make_record(message="Uploaded file", **extra):
    record = logging.LogRecord("edi_bridge.transport", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLogContext:
    """Context propagation."""

    def test_nested_contexts_merge(self):
        with log_context(tenant_id="t-1", partner_id="p-1"):
            with log_context(partner_id="p-2", operation="upload") as inner:
                assert inner.tenant_id == "t-1"
                assert inner.partner_id == "p-2"
                assert inner.operation == "upload"
            assert get_current_context().partner_id == "p-1"
        assert get_current_context() is None

    @pytest.mark.asyncio
    async def test_context_isolated_per_task(self):
        """Concurrent tasks see their own context."""

        async def worker(partner_id):
            with log_context(partner_id=partner_id):
                await asyncio.sleep(0.01)
                return get_current_context().partner_id

        results = await asyncio.gather(worker("a"), worker("b"))

        assert results == ["a", "b"]


class TestFormatting:
    """JSON output."""

    def test_structured_output(self):
        formatter = StructuredFormatter()
        record = make_record(category=LogCategory.TRANSPORT)

        with log_context(partner_id="p-1", correlation_id="c-1"):
            ContextFilter().filter(record)
        event = json.loads(formatter.format(record))

        assert event["message"] == "Uploaded file"
        assert event["level"] == "INFO"
        assert event["category"] == "transport"
        assert event["context"] == {"partner_id": "p-1", "correlation_id": "c-1"}

    def test_exception_details(self):
        try:
            raise ValueError("bad segment")
        except ValueError:
            import sys

            record = make_record(exc_info=sys.exc_info())

        event = json.loads(StructuredFormatter(include_context=False).format(record))

        assert event["exception"]["type"] == "ValueError"
        assert event["exception"]["message"] == "bad segment"
        assert "context" not in event
        assert event["category"] == "system"

    def test_configure_logging(self, reset_logging):
        configure_logging(level="debug", structured=False)

        logger = logging.getLogger("edi_bridge")
        assert logger.level == logging.DEBUG
        assert not logger.propagate
