"""
Tests for edi_bridge.transport.file_polling.
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from edi_bridge.core.exceptions import PartnerNotFound, ValidationError
from edi_bridge.transport.file_polling import FileHandlerResult, FilePollingService
from edi_bridge.transport.types import SftpFile, SftpResult, TransportStatus

MODIFIED = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def remote_file(name, size=120):
    return SftpFile(filename=name, path=f"/inbound/{name}", size=size, modified_at=MODIFIED)


@pytest.fixture
def fake_sftp(sftp_profile):
    """SFTP client double serving two files from /inbound."""
    client = MagicMock()
    client.get_partner.side_effect = lambda pid: sftp_profile if pid == "partner-1" else None
    client.list = AsyncMock(
        return_value=SftpResult(
            success=True,
            operation="list",
            remote_path="/inbound",
            files=[remote_file("a.edi"), remote_file("b.edi", size=80)],
        )
    )
    client.download = AsyncMock(
        side_effect=lambda pid, path: SftpResult(
            success=True, operation="download", remote_path=path, content=b"ISA*00~", size=7
        )
    )
    client.move = AsyncMock(return_value=SftpResult(success=True, operation="move"))
    client.delete = AsyncMock(return_value=SftpResult(success=True, operation="delete"))
    return client


@pytest.fixture
def poller(fake_sftp, transport_log, test_config):
    return FilePollingService(fake_sftp, transport_log, test_config.polling)


class TestPollJobs:
    """Job creation and lifecycle."""

    @pytest.mark.asyncio
    async def test_create_uses_partner_inbound_settings(self, poller):
        job = await poller.create_poll_job("tenant-1", "partner-1", start=False)

        assert job.config.directory == "/inbound"
        assert job.config.filename_pattern == "*.edi"
        assert not job.is_active
        assert poller.list_poll_jobs("tenant-1") == [job]
        assert poller.list_poll_jobs("tenant-2") == []

    @pytest.mark.asyncio
    async def test_unknown_partner(self, poller):
        with pytest.raises(PartnerNotFound):
            await poller.create_poll_job("tenant-1", "missing")

    @pytest.mark.asyncio
    async def test_partner_without_inbound(self, poller, sftp_profile):
        sftp_profile.inbound = None

        with pytest.raises(ValidationError):
            await poller.create_poll_job("tenant-1", "partner-1")

    @pytest.mark.asyncio
    async def test_poll_unknown_job(self, poller):
        result = await poller.poll_now("missing")

        assert result.error == "Poll job not found"

    @pytest.mark.asyncio
    async def test_stop_poll_job(self, poller):
        job = await poller.create_poll_job("tenant-1", "partner-1")

        assert await poller.stop_poll_job(job.id)
        assert poller.get_poll_job(job.id) is None
        assert not await poller.stop_poll_job(job.id)

    @pytest.mark.asyncio
    async def test_update_toggles_schedule(self, poller):
        job = await poller.create_poll_job("tenant-1", "partner-1", start=False)

        await poller.update_poll_job(job.id, is_active=True)
        assert poller._jobs[job.id].task is not None

        await poller.update_poll_job(job.id, is_active=False)
        assert poller._jobs[job.id].task is None
        assert await poller.update_poll_job("missing") is None

    @pytest.mark.asyncio
    async def test_scheduled_ticks(self, poller, fake_sftp):
        """An active job polls on its interval until shut down."""
        poller.register_file_handler(lambda pid, name, content, meta: FileHandlerResult(success=True))
        job = await poller.create_poll_job("tenant-1", "partner-1")

        await asyncio.sleep(0.2)
        await poller.shutdown()

        assert fake_sftp.list.await_count >= 1
        assert job.last_poll_at is not None
        assert poller.list_poll_jobs("tenant-1") == []


class TestPolling:
    """A single poll tick."""

    @pytest.mark.asyncio
    async def test_accepted_files_are_moved(self, poller, fake_sftp, transport_log):
        """Accepted files go to the processed folder and their logs complete."""
        received = []

        async def handler(partner_id, filename, content, metadata):
            received.append((partner_id, filename, content, metadata["remote_path"]))
            return FileHandlerResult(success=True, message_id=f"msg-{filename}")

        poller.register_file_handler(handler)
        job = await poller.create_poll_job("tenant-1", "partner-1", start=False)

        result = await poller.poll_now(job.id)

        assert result.error is None
        assert (result.files_found, result.files_processed, result.files_failed) == (2, 2, 0)
        assert received[0] == ("partner-1", "a.edi", b"ISA*00~", "/inbound/a.edi")
        fake_sftp.move.assert_any_await("partner-1", "/inbound/a.edi", "/processed/a.edi", overwrite=True)

        logs, total = transport_log.query_logs("tenant-1", status=TransportStatus.COMPLETED)
        assert total == 2
        assert {log.message_id for log in logs} == {"msg-a.edi", "msg-b.edi"}
        assert all(log.metadata["disposition"] == "moved" for log in logs)

    @pytest.mark.asyncio
    async def test_seen_files_are_skipped(self, poller, fake_sftp):
        """A processed file is not picked up again while unchanged."""
        poller.register_file_handler(lambda pid, name, content, meta: FileHandlerResult(success=True))
        job = await poller.create_poll_job("tenant-1", "partner-1", start=False)

        await poller.poll_now(job.id)
        second = await poller.poll_now(job.id)

        assert second.files_found == 0
        assert fake_sftp.download.await_count == 2

    @pytest.mark.asyncio
    async def test_rejected_files_go_to_error_directory(self, poller, fake_sftp, transport_log):
        """A rejection from any handler fails the file."""
        poller.register_file_handler(lambda pid, name, content, meta: FileHandlerResult(success=True))
        poller.register_file_handler(
            lambda pid, name, content, meta: FileHandlerResult(success=False, error="Unknown sender")
        )
        job = await poller.create_poll_job("tenant-1", "partner-1", start=False)

        result = await poller.poll_now(job.id)

        assert result.files_failed == 2
        assert result.files[0].error == "Unknown sender"
        fake_sftp.move.assert_any_await("partner-1", "/inbound/a.edi", "/error/a.edi", overwrite=True)
        failed, _ = transport_log.query_logs("tenant-1", status=TransportStatus.FAILED)
        assert failed[0].error_details == {"stage": "handler"}

    @pytest.mark.asyncio
    async def test_handler_exception(self, poller):
        def broken(partner_id, filename, content, metadata):
            raise ValueError("cannot parse")

        poller.register_file_handler(broken)
        job = await poller.create_poll_job("tenant-1", "partner-1", start=False)

        result = await poller.poll_now(job.id)

        assert result.files_failed == 2
        assert result.files[0].error == "cannot parse"

    @pytest.mark.asyncio
    async def test_no_handlers(self, poller):
        job = await poller.create_poll_job("tenant-1", "partner-1", start=False)

        result = await poller.poll_now(job.id)

        assert result.files[0].error == "No file handlers registered"

    @pytest.mark.asyncio
    async def test_download_failure(self, poller, fake_sftp, transport_log):
        """Failed downloads are logged and retried on the next tick."""
        fake_sftp.download.side_effect = None
        fake_sftp.download.return_value = SftpResult(
            success=False, operation="download", error="Connection error: reset", retryable=True
        )
        poller.register_file_handler(lambda pid, name, content, meta: FileHandlerResult(success=True))
        job = await poller.create_poll_job("tenant-1", "partner-1", start=False)

        first = await poller.poll_now(job.id)
        second = await poller.poll_now(job.id)

        assert first.files_failed == 2
        assert second.files_found == 2
        fake_sftp.move.assert_not_awaited()
        failed, _ = transport_log.query_logs("tenant-1", status=TransportStatus.FAILED)
        assert failed[0].error_details["stage"] == "download"

    @pytest.mark.asyncio
    async def test_listing_failure(self, poller, fake_sftp):
        """A failed listing counts against the job."""
        fake_sftp.list.return_value = SftpResult(success=False, operation="list", error="Operation timed out")
        job = await poller.create_poll_job("tenant-1", "partner-1", start=False)

        result = await poller.poll_now(job.id)

        assert result.error == "Operation timed out"
        assert job.failure_count == 1
        assert job.last_error == "Operation timed out"
        assert poller.get_statistics("tenant-1").failed_jobs == 1

    @pytest.mark.asyncio
    async def test_listing_failure_is_logged(self, poller, fake_sftp, transport_log):
        """A refused listing leaves a failed inbound log entry."""
        fake_sftp.list.return_value = SftpResult(
            success=False, operation="list", error="Connection error: refused", retryable=True
        )
        job = await poller.create_poll_job("tenant-1", "partner-1", start=False)

        await poller.poll_now(job.id)

        logs, total = transport_log.query_logs("tenant-1", partner_id="partner-1")
        assert total == 1
        assert logs[0].status == TransportStatus.FAILED
        assert logs[0].error == "Connection error: refused"
        assert logs[0].error_details == {"stage": "list", "retryable": True}
        assert logs[0].metadata == {"poll_job_id": job.id, "directory": "/inbound"}

    @pytest.mark.asyncio
    async def test_seen_keys_follow_the_listing(self, poller, fake_sftp):
        """Files no longer listed are forgotten, so the seen set stays bounded."""
        poller.register_file_handler(lambda pid, name, content, meta: FileHandlerResult(success=True))
        job = await poller.create_poll_job("tenant-1", "partner-1", start=False)
        state = poller._jobs[job.id]

        await poller.poll_now(job.id)
        assert len(state.seen) == 2

        fake_sftp.list.return_value = SftpResult(
            success=True, operation="list", remote_path="/inbound", files=[remote_file("b.edi", size=80)]
        )
        await poller.poll_now(job.id)
        assert len(state.seen) == 1

        fake_sftp.list.return_value = SftpResult(success=True, operation="list", remote_path="/inbound")
        await poller.poll_now(job.id)
        assert state.seen == set()

    @pytest.mark.asyncio
    async def test_max_files_per_poll(self, poller, sftp_profile):
        sftp_profile.inbound.max_files_per_poll = 1
        poller.register_file_handler(lambda pid, name, content, meta: FileHandlerResult(success=True))
        job = await poller.create_poll_job("tenant-1", "partner-1", start=False)

        result = await poller.poll_now(job.id)

        assert result.files_found == 2
        assert len(result.files) == 1

    @pytest.mark.asyncio
    async def test_delete_after_processing(self, poller, fake_sftp, sftp_profile):
        sftp_profile.inbound.processed_directory = None
        sftp_profile.inbound.delete_after_processing = True
        poller.register_file_handler(lambda pid, name, content, meta: FileHandlerResult(success=True))
        job = await poller.create_poll_job("tenant-1", "partner-1", start=False)

        await poller.poll_now(job.id)

        fake_sftp.delete.assert_any_await("partner-1", "/inbound/a.edi")
        fake_sftp.move.assert_not_awaited()
