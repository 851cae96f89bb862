"""
Tests for edi_bridge.transport.transport_log.
"""

import asyncio
from datetime import timedelta

import pytest

from edi_bridge.transport.types import (
    TransportDirection,
    TransportProtocol,
    TransportStatus,
    utcnow,
)


def start(transport_log, tenant="tenant-1", partner="partner-1", protocol=TransportProtocol.SFTP, **kwargs):
    return transport_log.start_log(tenant, partner, protocol, TransportDirection.OUTBOUND, **kwargs)


class TestLifecycle:
    """Entry state transitions."""

    def test_retry_then_complete(self, transport_log):
        """IN_PROGRESS -> RETRYING -> IN_PROGRESS -> COMPLETED."""
        log_id = start(transport_log, filename="po.edi", content_size=42)

        retrying = transport_log.increment_retry(log_id)
        assert retrying.status == TransportStatus.RETRYING
        assert retrying.retry_count == 1

        assert transport_log.resume_log(log_id).status == TransportStatus.IN_PROGRESS

        completed = transport_log.complete_log(log_id, message_id="msg-1", metadata={"remote_path": "/out/po.edi"})
        assert completed.status == TransportStatus.COMPLETED
        assert completed.message_id == "msg-1"
        assert completed.retry_count == 1
        assert completed.completed_at is not None
        assert completed.duration_ms >= 0
        assert completed.metadata == {"remote_path": "/out/po.edi"}

    def test_fail(self, transport_log):
        log_id = start(transport_log)

        failed = transport_log.fail_log(log_id, "Connection refused", {"retryable": True})

        assert failed.status == TransportStatus.FAILED
        assert failed.error == "Connection refused"
        assert failed.error_details == {"retryable": True}

    def test_terminal_entries_do_not_change(self, transport_log):
        """Completed entries ignore later failures and retries."""
        log_id = start(transport_log)
        transport_log.complete_log(log_id)

        assert transport_log.fail_log(log_id, "late error").status == TransportStatus.COMPLETED
        assert transport_log.increment_retry(log_id).retry_count == 0
        assert transport_log.get_log(log_id).error is None

    def test_update_keeps_status(self, transport_log):
        log_id = start(transport_log)

        updated = transport_log.update_log(log_id, message_id="m", content_size=5, metadata={"a": 1})

        assert updated.status == TransportStatus.IN_PROGRESS
        assert (updated.message_id, updated.content_size, updated.metadata) == ("m", 5, {"a": 1})

    def test_unknown_entry(self, transport_log):
        assert transport_log.complete_log("missing") is None
        assert transport_log.fail_log("missing", "x") is None
        assert transport_log.increment_retry("missing") is None
        assert transport_log.get_log("missing") is None

    def test_returned_entries_are_copies(self, transport_log):
        log_id = start(transport_log)

        transport_log.get_log(log_id).metadata["tampered"] = True

        assert transport_log.get_log(log_id).metadata == {}


class TestQueries:
    """Filtering, paging and statistics."""

    def test_query_filters_and_pages(self, transport_log):
        for _ in range(3):
            start(transport_log)
        start(transport_log, protocol=TransportProtocol.AS2)
        start(transport_log, tenant="tenant-2")

        logs, total = transport_log.query_logs("tenant-1", protocol=TransportProtocol.SFTP)
        assert total == 3
        assert all(log.protocol == TransportProtocol.SFTP for log in logs)

        page, total = transport_log.query_logs("tenant-1", page=2, limit=3)
        assert total == 4
        assert len(page) == 1

        newest_first, _ = transport_log.query_logs("tenant-1")
        assert newest_first == sorted(newest_first, key=lambda log: log.started_at, reverse=True)

    def test_correlation_lookup(self, transport_log):
        log_id = start(transport_log, correlation_id="job-1")

        assert transport_log.get_log_by_correlation_id("tenant-1", "job-1").id == log_id
        assert transport_log.get_log_by_correlation_id("tenant-2", "job-1") is None

    def test_statistics(self, transport_log):
        """Counts, breakdowns and error rate as a percentage."""
        transport_log.complete_log(start(transport_log))
        transport_log.complete_log(start(transport_log, protocol=TransportProtocol.AS2, partner="partner-2"))
        transport_log.fail_log(start(transport_log), "boom")
        start(transport_log)

        stats = transport_log.get_statistics("tenant-1")

        assert (stats.total, stats.completed, stats.failed, stats.in_progress) == (4, 2, 1, 1)
        assert stats.error_rate == 25.0
        assert stats.by_protocol["sftp"].total == 3
        assert stats.by_protocol["sftp"].failed == 1
        assert stats.by_partner["partner-2"].completed == 1
        assert stats.average_duration_ms >= 0

    def test_empty_statistics(self, transport_log):
        stats = transport_log.get_statistics("nobody")

        assert stats.total == 0
        assert stats.error_rate == 0.0

    def test_recent_errors(self, transport_log):
        for i in range(3):
            transport_log.fail_log(start(transport_log), f"error {i}")
        transport_log.complete_log(start(transport_log))

        errors = transport_log.get_recent_errors("tenant-1", limit=2)

        assert len(errors) == 2
        assert all(e.status == TransportStatus.FAILED for e in errors)


class TestRetention:
    """Expiry of old entries."""

    def test_purge_expired(self, transport_log):
        old_id = start(transport_log)
        fresh_id = start(transport_log)
        transport_log._logs[old_id].started_at = utcnow() - timedelta(days=8)

        assert transport_log.purge_expired() == 1
        assert transport_log.get_log(old_id) is None
        assert transport_log.get_log(fresh_id) is not None
        assert transport_log.purge_expired(retention_days=0) == 1

    def test_delete_log(self, transport_log):
        log_id = start(transport_log)

        assert transport_log.delete_log(log_id)
        assert not transport_log.delete_log(log_id)

    @pytest.mark.asyncio
    async def test_cleanup_task(self, transport_log):
        """The background task purges on its interval and stops cleanly."""
        transport_log.config.cleanup_interval_seconds = 0.01
        old_id = start(transport_log)
        transport_log._logs[old_id].started_at = utcnow() - timedelta(days=30)

        transport_log.start_cleanup()
        await asyncio.sleep(0.05)
        await transport_log.stop_cleanup()

        assert transport_log.get_log(old_id) is None
        assert transport_log._cleanup_task is None
