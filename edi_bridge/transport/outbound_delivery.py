"""
EDI Bridge - Outbound Delivery Service

Queue of outbound documents routed to AS2 or SFTP. A background dispatcher
picks due jobs by priority, retries retryable failures with exponential
backoff, and records every attempt in the transport log.
"""

import asyncio
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
import logging

from ..core.config import DeliveryConfig, get_config
from ..core.exceptions import TransportFailure
from ..core.retry import RetryPolicy, policy_for
from ..core.structured_logging import LogCategory, log_context
from ..monitoring.metrics import DELIVERY_JOBS
from .as2_client import As2Client
from .sftp_client import SftpClient
from .transport_log import TransportLogService
from .types import As2Mdn, TransportDirection, TransportProtocol, TransportStatus, utcnow

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "application/xml": ".xml",
    "text/xml": ".xml",
    "application/json": ".json",
    "text/plain": ".txt",
    "application/edi-x12": ".edi",
    "application/x-edi": ".edi",
    "application/edifact": ".edi",
}


@dataclass
class DeliveryJob:
    id: str
    tenant_id: str
    partner_id: str
    protocol: TransportProtocol
    message_id: str
    content: bytes
    content_type: str
    filename: Optional[str] = None
    correlation_id: Optional[str] = None
    priority: int = 0
    status: TransportStatus = TransportStatus.PENDING
    retry_count: int = 0
    max_retries: int = 3
    scheduled_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    log_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DeliveryResult:
    job_id: str
    partner_id: str
    protocol: TransportProtocol
    success: bool
    message_id: Optional[str] = None
    filename: Optional[str] = None
    error: Optional[str] = None
    retryable: bool = False
    status_code: Optional[int] = None
    mdn: Optional[As2Mdn] = None
    timestamp: datetime = field(default_factory=utcnow)
    duration_ms: int = 0


@dataclass
class DeliveryStatistics:
    total: int = 0
    pending: int = 0
    in_progress: int = 0
    retrying: int = 0
    completed: int = 0
    failed: int = 0


def extension_for(content_type: str) -> str:
    base = content_type.split(";")[0].strip().lower()
    return _EXTENSIONS.get(base, ".dat")


def _sort_key(job: DeliveryJob) -> Tuple[int, datetime]:
    return (-job.priority, job.scheduled_at)


class OutboundDeliveryService:
    """Outbound queue with retrying dispatcher."""

    def __init__(
        self,
        as2_client: As2Client,
        sftp_client: SftpClient,
        transport_log: TransportLogService,
        config: Optional[DeliveryConfig] = None,
    ):
        self.as2_client = as2_client
        self.sftp_client = sftp_client
        self.transport_log = transport_log
        self.config = config or get_config().delivery
        self.retry_policy = RetryPolicy(
            base_delay=self.config.base_delay_seconds,
            max_delay=self.config.max_delay_seconds,
        )
        self.rate_limit_policy = RetryPolicy(
            base_delay=self.config.rate_limit_base_delay_seconds,
            max_delay=self.config.rate_limit_max_delay_seconds,
        )

        self._jobs: Dict[str, DeliveryJob] = {}
        self._lock = threading.RLock()
        self._semaphore = asyncio.Semaphore(self.config.concurrency)
        self._task: Optional[asyncio.Task] = None
        self._stopping = False
        self._idle = asyncio.Event()
        self._idle.set()

    # ------------------------------------------------------------------
    # Queue management
    # ------------------------------------------------------------------

    def queue_delivery(
        self,
        tenant_id: str,
        partner_id: str,
        protocol: TransportProtocol,
        content: bytes,
        content_type: str,
        filename: Optional[str] = None,
        message_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
        priority: int = 0,
        max_retries: Optional[int] = None,
        scheduled_at: Optional[datetime] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> DeliveryJob:
        """Enqueue a PENDING job; higher ``priority`` dispatches first."""
        job_id = str(uuid.uuid4())
        job = DeliveryJob(
            id=job_id,
            tenant_id=tenant_id,
            partner_id=partner_id,
            protocol=TransportProtocol(protocol),
            message_id=message_id or job_id,
            content=content,
            content_type=content_type,
            filename=filename,
            correlation_id=correlation_id,
            priority=priority,
            max_retries=self.config.max_retries if max_retries is None else max_retries,
            scheduled_at=scheduled_at or utcnow(),
            metadata=dict(metadata or {}),
        )
        with self._lock:
            self._jobs[job_id] = job
        logger.info(f"Queued delivery job: {job_id} for partner {partner_id} via {job.protocol.value}")
        return job

    def get_delivery_job(self, job_id: str) -> Optional[DeliveryJob]:
        with self._lock:
            return self._jobs.get(job_id)

    def list_delivery_jobs(
        self,
        tenant_id: str,
        partner_id: Optional[str] = None,
        status: Optional[TransportStatus] = None,
        protocol: Optional[TransportProtocol] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Tuple[List[DeliveryJob], int]:
        with self._lock:
            jobs = [
                j
                for j in self._jobs.values()
                if j.tenant_id == tenant_id
                and (partner_id is None or j.partner_id == partner_id)
                and (status is None or j.status == status)
                and (protocol is None or j.protocol == protocol)
            ]
        jobs.sort(key=_sort_key)
        total = len(jobs)
        if page is not None and limit is not None:
            offset = (max(page, 1) - 1) * limit
            jobs = jobs[offset : offset + limit]
        return jobs, total

    def cancel_delivery_job(self, job_id: str) -> bool:
        """Remove a job that has not been dispatched yet."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != TransportStatus.PENDING:
                return False
            del self._jobs[job_id]
        logger.info(f"Cancelled delivery job: {job_id}")
        return True

    def retry_delivery_job(self, job_id: str) -> Optional[DeliveryJob]:
        """Put a FAILED job back to PENDING with a fresh retry budget."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != TransportStatus.FAILED:
                return None
            job.status = TransportStatus.PENDING
            job.retry_count = 0
            job.error = None
            job.log_id = None
            job.scheduled_at = utcnow()
        logger.info(f"Reset delivery job for retry: {job_id}")
        return job

    def get_statistics(self, tenant_id: Optional[str] = None) -> DeliveryStatistics:
        stats = DeliveryStatistics()
        counters = {
            TransportStatus.PENDING: "pending",
            TransportStatus.IN_PROGRESS: "in_progress",
            TransportStatus.RETRYING: "retrying",
            TransportStatus.COMPLETED: "completed",
            TransportStatus.FAILED: "failed",
        }
        with self._lock:
            for job in self._jobs.values():
                if tenant_id is not None and job.tenant_id != tenant_id:
                    continue
                stats.total += 1
                name = counters.get(job.status)
                if name:
                    setattr(stats, name, getattr(stats, name) + 1)
        return stats

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _claim(self, job_id: str) -> Tuple[Optional[DeliveryJob], Optional[str]]:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None, "Job not found"
            if job.status not in (TransportStatus.PENDING, TransportStatus.RETRYING):
                return job, f"Job is {job.status.value}"
            job.status = TransportStatus.IN_PROGRESS
            return job, None

    async def process_now(self, job_id: str) -> DeliveryResult:
        """Dispatch one job immediately, ignoring its schedule."""
        job, error = self._claim(job_id)
        if error:
            return DeliveryResult(
                job_id=job_id,
                partner_id=job.partner_id if job else "",
                protocol=job.protocol if job else TransportProtocol.AS2,
                success=False,
                error=error,
            )
        async with self._semaphore:
            return await self._execute(job)

    def due_jobs(self, now: Optional[datetime] = None) -> List[DeliveryJob]:
        now = now or utcnow()
        with self._lock:
            due = [
                j
                for j in self._jobs.values()
                if j.status in (TransportStatus.PENDING, TransportStatus.RETRYING) and j.scheduled_at <= now
            ]
        return sorted(due, key=_sort_key)

    async def process_queue(self) -> List[DeliveryResult]:
        """Dispatch every due job, at most ``concurrency`` at a time."""
        self._idle.clear()
        try:

            async def run(job_id: str) -> Optional[DeliveryResult]:
                async with self._semaphore:
                    job, error = self._claim(job_id)
                    if error:
                        return None
                    return await self._execute(job)

            results = await asyncio.gather(*(run(j.id) for j in self.due_jobs()))
            return [r for r in results if r is not None]
        finally:
            self._idle.set()

    async def _execute(self, job: DeliveryJob) -> DeliveryResult:
        start = time.monotonic()
        if job.log_id is None:
            job.log_id = self.transport_log.start_log(
                tenant_id=job.tenant_id,
                partner_id=job.partner_id,
                protocol=job.protocol,
                direction=TransportDirection.OUTBOUND,
                message_id=job.message_id,
                correlation_id=job.correlation_id,
                filename=job.filename,
                content_type=job.content_type,
                content_size=len(job.content),
                max_retries=job.max_retries,
                metadata=job.metadata,
            )
        else:
            self.transport_log.resume_log(job.log_id)

        with log_context(
            tenant_id=job.tenant_id,
            partner_id=job.partner_id,
            correlation_id=job.correlation_id,
            component="outbound_delivery",
            operation="deliver",
        ):
            try:
                if job.protocol == TransportProtocol.AS2:
                    result = await self._deliver_as2(job)
                else:
                    result = await self._deliver_sftp(job)
            except Exception as e:
                logger.exception(f"Unexpected error delivering job {job.id}")
                result = DeliveryResult(
                    job_id=job.id,
                    partner_id=job.partner_id,
                    protocol=job.protocol,
                    success=False,
                    message_id=job.message_id,
                    filename=job.filename,
                    error=f"Unexpected error: {e}",
                )
            result.duration_ms = int((time.monotonic() - start) * 1000)

            if result.success:
                with self._lock:
                    job.status = TransportStatus.COMPLETED
                    job.completed_at = utcnow()
                    job.error = None
                self.transport_log.complete_log(job.log_id, message_id=result.message_id)
                DELIVERY_JOBS.labels(protocol=job.protocol.value, status="completed").inc()
                logger.info(
                    f"Delivery completed: {job.id} in {result.duration_ms}ms",
                    extra={"category": LogCategory.TRANSPORT},
                )
            else:
                self._handle_failure(job, result)
            return result

    async def _deliver_as2(self, job: DeliveryJob) -> DeliveryResult:
        sent = await self.as2_client.send(
            job.partner_id,
            job.content,
            job.content_type,
            subject=f"Message {job.message_id}",
            filename=job.filename,
            request_mdn=True,
            sign=True,
            encrypt=True,
            correlation_id=job.correlation_id,
        )
        return DeliveryResult(
            job_id=job.id,
            partner_id=job.partner_id,
            protocol=TransportProtocol.AS2,
            success=sent.success,
            message_id=sent.message_id,
            filename=job.filename,
            error=sent.error,
            retryable=sent.retryable,
            status_code=sent.http_status,
            mdn=sent.mdn,
        )

    async def _deliver_sftp(self, job: DeliveryJob) -> DeliveryResult:
        filename = job.filename or self.generate_filename(job)
        uploaded = await self.sftp_client.upload(job.partner_id, job.content, filename)
        return DeliveryResult(
            job_id=job.id,
            partner_id=job.partner_id,
            protocol=TransportProtocol.SFTP,
            success=uploaded.success,
            message_id=job.message_id,
            filename=uploaded.filename or filename,
            error=uploaded.error,
            retryable=uploaded.retryable,
        )

    @staticmethod
    def generate_filename(job: DeliveryJob) -> str:
        timestamp = utcnow().strftime("%Y%m%dT%H%M%S%f")
        return f"{job.message_id}_{timestamp}{extension_for(job.content_type)}"

    def _handle_failure(self, job: DeliveryJob, result: DeliveryResult) -> None:
        error = result.error or "Unknown error"
        failure = TransportFailure(
            error,
            retryable=result.retryable,
            status_code=result.status_code,
            protocol=job.protocol.value,
        )
        self.transport_log.increment_retry(job.log_id)

        with self._lock:
            job.error = error
            job.retry_count += 1
            retry = failure.retryable and job.retry_count <= job.max_retries
            if retry:
                policy = policy_for(failure, self.retry_policy, self.rate_limit_policy)
                delay = policy.compute_delay(job.retry_count)
                job.scheduled_at = utcnow() + timedelta(seconds=delay)
                job.status = TransportStatus.RETRYING
            else:
                job.status = TransportStatus.FAILED
                job.completed_at = utcnow()

        if retry:
            DELIVERY_JOBS.labels(protocol=job.protocol.value, status="retrying").inc()
            logger.warning(
                f"Delivery failed, scheduling retry {job.retry_count}/{job.max_retries} "
                f"in {delay:.1f}s: {job.id} - {error}"
            )
        else:
            self.transport_log.fail_log(
                job.log_id,
                error,
                {"retryable": failure.retryable, "status_code": failure.status_code},
            )
            DELIVERY_JOBS.labels(protocol=job.protocol.value, status="failed").inc()
            logger.error(f"Delivery failed: {job.id} after {job.retry_count} attempt(s) - {error}")

    # ------------------------------------------------------------------
    # Background dispatcher
    # ------------------------------------------------------------------

    async def _loop(self) -> None:
        interval = self.config.processing_interval_ms / 1000
        while not self._stopping:
            try:
                await self.process_queue()
            except Exception as e:
                logger.error(f"Queue processing error: {e}", exc_info=True)
            await asyncio.sleep(interval)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._stopping = False
            self._task = asyncio.create_task(self._loop())
            logger.info("Outbound delivery dispatcher started")

    async def stop(self) -> None:
        """Stop dispatching; deliveries already in flight are allowed to finish."""
        self._stopping = True
        await self._idle.wait()
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Outbound delivery dispatcher stopped")
