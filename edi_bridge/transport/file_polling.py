"""
EDI Bridge - File Polling Service

Scheduled pickup of inbound files from partner SFTP servers. Each poll job
runs as its own asyncio task: list, download new files, hand them to the
registered handlers, then move or delete what the handlers accepted.
"""

import asyncio
import inspect
import posixpath
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union
import logging

from ..core.config import PollingConfig, get_config
from ..core.exceptions import EdiBridgeException, PartnerNotFound, TransportFailure, ValidationError
from ..core.structured_logging import LogCategory, log_context
from ..monitoring.metrics import ACTIVE_POLL_JOBS, POLLED_FILES
from .sftp_client import SftpClient
from .transport_log import TransportLogService
from .types import (
    SftpFile,
    SftpInboundConfig,
    TransportDirection,
    TransportProtocol,
    utcnow,
)

logger = logging.getLogger(__name__)


@dataclass
class FileHandlerResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


FileHandler = Callable[
    [str, str, bytes, Dict[str, Any]],
    Union[Awaitable[FileHandlerResult], FileHandlerResult],
]


@dataclass
class PollJob:
    id: str
    tenant_id: str
    partner_id: str
    config: SftpInboundConfig
    protocol: TransportProtocol = TransportProtocol.SFTP
    is_active: bool = True
    last_poll_at: Optional[datetime] = None
    next_poll_at: Optional[datetime] = None
    failure_count: int = 0
    last_error: Optional[str] = None


@dataclass
class PollResultFile:
    filename: str
    remote_path: str
    size: int
    status: str
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class PollResult:
    job_id: str
    partner_id: str
    files_found: int = 0
    files_processed: int = 0
    files_failed: int = 0
    files: List[PollResultFile] = field(default_factory=list)
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)
    duration_ms: int = 0


@dataclass
class PollStatistics:
    total_jobs: int = 0
    active_jobs: int = 0
    running_jobs: int = 0
    failed_jobs: int = 0


class _PollJobState:
    """Scheduling state kept beside a job."""

    def __init__(self, job: PollJob):
        self.job = job
        self.task: Optional[asyncio.Task] = None
        self.running = False
        self.idle = asyncio.Event()
        self.idle.set()
        self.seen: Set[str] = set()


def _file_key(file: SftpFile) -> str:
    return f"{file.path}:{file.size}:{file.modified_at.timestamp()}"


class FilePollingService:
    """Inbound SFTP poller."""

    def __init__(
        self,
        sftp_client: SftpClient,
        transport_log: TransportLogService,
        config: Optional[PollingConfig] = None,
    ):
        self.sftp_client = sftp_client
        self.transport_log = transport_log
        self.config = config or get_config().polling
        self._jobs: Dict[str, _PollJobState] = {}
        self._handlers: List[FileHandler] = []
        self._shutting_down = False

    def register_file_handler(self, handler: FileHandler) -> None:
        self._handlers.append(handler)
        logger.info("Registered file handler")

    # ------------------------------------------------------------------
    # Job management
    # ------------------------------------------------------------------

    def _interval_seconds(self, job: PollJob) -> float:
        return (job.config.poll_interval_ms or self.config.poll_interval_ms) / 1000

    async def create_poll_job(
        self,
        tenant_id: str,
        partner_id: str,
        config: Optional[SftpInboundConfig] = None,
        start: bool = True,
    ) -> PollJob:
        """
        Create a poll job and schedule its first tick one interval from now.

        Args:
            tenant_id: Owning tenant
            partner_id: SFTP partner to poll
            config: Directory, pattern and interval; the partner's inbound
                settings are used when omitted
            start: Schedule the job immediately

        Raises:
            PartnerNotFound: If the SFTP partner is not registered
            ValidationError: If no inbound directory is known
        """
        partner = self.sftp_client.get_partner(partner_id)
        if partner is None:
            raise PartnerNotFound(partner_id)
        config = config or partner.inbound
        if config is None or not config.directory:
            raise ValidationError(f"No inbound directory for partner {partner_id}", field_name="directory")

        job = PollJob(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            partner_id=partner_id,
            config=replace(config),
            is_active=start,
        )
        state = _PollJobState(job)
        self._jobs[job.id] = state
        if start:
            self._schedule(state)

        logger.info(f"Created poll job: {job.id} for partner {partner_id}")
        return job

    def get_poll_job(self, job_id: str) -> Optional[PollJob]:
        state = self._jobs.get(job_id)
        return state.job if state else None

    def list_poll_jobs(self, tenant_id: str) -> List[PollJob]:
        return [s.job for s in self._jobs.values() if s.job.tenant_id == tenant_id]

    async def update_poll_job(
        self,
        job_id: str,
        config: Optional[SftpInboundConfig] = None,
        is_active: Optional[bool] = None,
    ) -> Optional[PollJob]:
        state = self._jobs.get(job_id)
        if state is None:
            return None

        if config is not None:
            state.job.config = replace(config)
        if is_active is not None and is_active != state.job.is_active:
            state.job.is_active = is_active
            if is_active:
                self._schedule(state)
            else:
                self._unschedule(state)

        logger.info(f"Updated poll job: {job_id}")
        return state.job

    async def stop_poll_job(self, job_id: str) -> bool:
        """Unschedule and remove a job, waiting for a tick in flight to finish."""
        state = self._jobs.get(job_id)
        if state is None:
            return False

        state.job.is_active = False
        self._unschedule(state)
        await state.idle.wait()

        self._jobs.pop(job_id, None)
        logger.info(f"Stopped poll job: {job_id}")
        return True

    async def shutdown(self) -> None:
        self._shutting_down = True
        for job_id in list(self._jobs):
            await self.stop_poll_job(job_id)
        logger.info("File polling service stopped")

    async def poll_now(self, job_id: str) -> PollResult:
        state = self._jobs.get(job_id)
        if state is None:
            return PollResult(job_id=job_id, partner_id="", error="Poll job not found")
        return await self._execute(state)

    def get_statistics(self, tenant_id: str) -> PollStatistics:
        stats = PollStatistics()
        for state in self._jobs.values():
            if state.job.tenant_id != tenant_id:
                continue
            stats.total_jobs += 1
            if state.job.is_active:
                stats.active_jobs += 1
            if state.running:
                stats.running_jobs += 1
            if state.job.failure_count > 0:
                stats.failed_jobs += 1
        return stats

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _refresh_gauge(self) -> None:
        ACTIVE_POLL_JOBS.set(sum(1 for s in self._jobs.values() if s.task and not s.task.done()))

    def _schedule(self, state: _PollJobState) -> None:
        if self._shutting_down or (state.task and not state.task.done()):
            return
        state.job.next_poll_at = utcnow() + timedelta(seconds=self._interval_seconds(state.job))
        state.task = asyncio.create_task(self._run(state))
        self._refresh_gauge()

    def _unschedule(self, state: _PollJobState) -> None:
        task, state.task = state.task, None
        # A tick in flight finishes on its own; only the sleep is interrupted
        if task is not None and not state.running:
            task.cancel()
        self._refresh_gauge()

    def _current(self, state: _PollJobState) -> bool:
        return state.task is asyncio.current_task() and state.job.is_active and not self._shutting_down

    async def _run(self, state: _PollJobState) -> None:
        while self._current(state):
            await asyncio.sleep(self._interval_seconds(state.job))
            if not self._current(state):
                break
            await self._execute(state)

    # ------------------------------------------------------------------
    # One tick
    # ------------------------------------------------------------------

    async def _execute(self, state: _PollJobState) -> PollResult:
        job = state.job
        if state.running:
            return PollResult(job_id=job.id, partner_id=job.partner_id, error="Poll already in progress")

        state.running = True
        state.idle.clear()
        start = time.monotonic()
        result = PollResult(job_id=job.id, partner_id=job.partner_id)

        try:
            with log_context(partner_id=job.partner_id, component="file_polling", operation="poll"):
                listing = await self.sftp_client.list(
                    job.partner_id,
                    directory=job.config.directory,
                    pattern=job.config.filename_pattern,
                )
                if not listing.success:
                    raise TransportFailure(
                        listing.error or "Failed to list files", retryable=listing.retryable, protocol="sftp"
                    )

                # Keys of files gone from the listing are dropped
                state.seen.intersection_update(_file_key(f) for f in listing.files)
                candidates = [
                    f for f in listing.files if not f.is_directory and _file_key(f) not in state.seen
                ]
                limit = job.config.max_files_per_poll or self.config.max_files_per_poll
                result.files_found = len(candidates)

                for file in candidates[:limit]:
                    outcome = await self._process_file(state, file)
                    result.files.append(outcome)

                result.files_processed = sum(1 for f in result.files if f.status == "processed")
                result.files_failed = sum(1 for f in result.files if f.status == "failed")
                job.failure_count = 0
                job.last_error = None
                logger.info(
                    f"Poll completed for job {job.id}: {result.files_processed} processed, "
                    f"{result.files_failed} failed",
                    extra={"category": LogCategory.TRANSPORT},
                )
        except Exception as e:
            error = e.message if isinstance(e, EdiBridgeException) else str(e)
            job.failure_count += 1
            job.last_error = error
            result.error = error
            logger.error(f"Poll failed for job {job.id}: {error}")
            details: Dict[str, Any] = {"stage": "poll"}
            if isinstance(e, TransportFailure):
                details = {"stage": "list", "retryable": e.retryable}
            self._record_poll_failure(job, error, details)
        finally:
            job.last_poll_at = utcnow()
            job.next_poll_at = job.last_poll_at + timedelta(seconds=self._interval_seconds(job))
            result.duration_ms = int((time.monotonic() - start) * 1000)
            state.running = False
            state.idle.set()

        return result

    def _record_poll_failure(self, job: PollJob, error: str, details: Dict[str, Any]) -> None:
        """A failed tick gets its own inbound log entry so it can be queried."""
        log_id = self.transport_log.start_log(
            tenant_id=job.tenant_id,
            partner_id=job.partner_id,
            protocol=job.protocol,
            direction=TransportDirection.INBOUND,
            correlation_id=str(uuid.uuid4()),
            metadata={"poll_job_id": job.id, "directory": job.config.directory},
        )
        self.transport_log.fail_log(log_id, error, details)

    async def _dispatch(
        self, partner_id: str, filename: str, content: bytes, metadata: Dict[str, Any]
    ) -> FileHandlerResult:
        """Hand the file to every handler; any rejection rejects the file."""
        if not self._handlers:
            return FileHandlerResult(success=False, error="No file handlers registered")

        message_id: Optional[str] = None
        errors: List[str] = []
        for handler in list(self._handlers):
            try:
                outcome = handler(partner_id, filename, content, metadata)
                if inspect.isawaitable(outcome):
                    outcome = await outcome
            except Exception as e:
                logger.error(f"File handler error for {filename}: {e}", exc_info=True)
                errors.append(str(e) or "Handler error")
                continue
            if outcome.success:
                message_id = outcome.message_id or message_id
            else:
                errors.append(outcome.error or "Handler rejected file")

        if errors:
            return FileHandlerResult(success=False, error="; ".join(errors))
        return FileHandlerResult(success=True, message_id=message_id)

    async def _process_file(self, state: _PollJobState, file: SftpFile) -> PollResultFile:
        job = state.job
        config = job.config
        log_id = self.transport_log.start_log(
            tenant_id=job.tenant_id,
            partner_id=job.partner_id,
            protocol=TransportProtocol.SFTP,
            direction=TransportDirection.INBOUND,
            filename=file.filename,
            correlation_id=str(uuid.uuid4()),
            metadata={"poll_job_id": job.id, "remote_path": file.path},
        )

        download = await self.sftp_client.download(job.partner_id, file.path)
        if not download.success:
            error = download.error or "Failed to download file"
            self.transport_log.fail_log(log_id, error, {"stage": "download", "retryable": download.retryable})
            POLLED_FILES.labels(status="failed").inc()
            return PollResultFile(file.filename, file.path, 0, "failed", error=error)

        self.transport_log.update_log(log_id, content_size=download.size)

        handled = await self._dispatch(
            job.partner_id,
            file.filename,
            download.content,
            {"remote_path": file.path, "poll_job_id": job.id},
        )

        if not handled.success:
            error = handled.error or "Handler rejected file"
            self.transport_log.fail_log(log_id, error, {"stage": "handler"})
            if config.error_directory:
                moved = await self.sftp_client.move(
                    job.partner_id,
                    file.path,
                    posixpath.join(config.error_directory, file.filename),
                    overwrite=True,
                )
                if moved.success:
                    state.seen.add(_file_key(file))
                else:
                    logger.warning(f"Could not move {file.path} to error directory: {moved.error}")
            POLLED_FILES.labels(status="failed").inc()
            return PollResultFile(file.filename, file.path, download.size, "failed", error=error)

        state.seen.add(_file_key(file))
        disposition = await self._dispose(job, file)
        self.transport_log.complete_log(
            log_id, message_id=handled.message_id, metadata={"disposition": disposition}
        )
        POLLED_FILES.labels(status="processed").inc()
        return PollResultFile(
            file.filename, file.path, download.size, "processed", message_id=handled.message_id
        )

    async def _dispose(self, job: PollJob, file: SftpFile) -> str:
        """Move or delete an accepted file; returns what was done."""
        config = job.config
        if config.processed_directory:
            outcome = await self.sftp_client.move(
                job.partner_id,
                file.path,
                posixpath.join(config.processed_directory, file.filename),
                overwrite=True,
            )
            action = "moved"
        elif config.delete_after_processing:
            outcome = await self.sftp_client.delete(job.partner_id, file.path)
            action = "deleted"
        else:
            return "kept"

        if not outcome.success:
            logger.warning(f"Processed file {file.path} could not be {action}: {outcome.error}")
            return f"{action}-failed"
        return action
