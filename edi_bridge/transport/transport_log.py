"""
EDI Bridge - Transport Log

Audit trail of every transfer attempt. Entries move
IN_PROGRESS -> (COMPLETED | FAILED), with RETRYING in between for each
retry. Queries and statistics are tenant-scoped.
"""

import asyncio
import copy
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
import logging

from ..core.config import TransportLogConfig, get_config
from ..core.structured_logging import LogCategory
from .types import TransportDirection, TransportProtocol, TransportStatus, utcnow

logger = logging.getLogger(__name__)


@dataclass
class TransportLog:
    id: str
    tenant_id: str
    partner_id: str
    protocol: TransportProtocol
    direction: TransportDirection
    status: TransportStatus = TransportStatus.IN_PROGRESS
    message_id: Optional[str] = None
    correlation_id: Optional[str] = None
    filename: Optional[str] = None
    content_type: Optional[str] = None
    content_size: Optional[int] = None
    retry_count: int = 0
    max_retries: int = 3
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    error: Optional[str] = None
    error_details: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StatusBreakdown:
    total: int = 0
    completed: int = 0
    failed: int = 0


@dataclass
class LogStatistics:
    total: int = 0
    completed: int = 0
    failed: int = 0
    in_progress: int = 0
    average_duration_ms: float = 0.0
    by_protocol: Dict[str, StatusBreakdown] = field(default_factory=dict)
    by_partner: Dict[str, StatusBreakdown] = field(default_factory=dict)
    error_rate: float = 0.0


class TransportLogService:
    """In-memory transport log with an optional retention cleanup task."""

    def __init__(self, config: Optional[TransportLogConfig] = None):
        self.config = config or get_config().transport_log
        self._logs: Dict[str, TransportLog] = {}
        self._lock = threading.RLock()
        self._cleanup_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_log(
        self,
        tenant_id: str,
        partner_id: str,
        protocol: TransportProtocol,
        direction: TransportDirection,
        message_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
        content_size: Optional[int] = None,
        max_retries: int = 3,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Create an IN_PROGRESS entry and return its id."""
        entry = TransportLog(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            partner_id=partner_id,
            protocol=TransportProtocol(protocol),
            direction=TransportDirection(direction),
            message_id=message_id,
            correlation_id=correlation_id,
            filename=filename,
            content_type=content_type,
            content_size=content_size,
            max_retries=max_retries,
            metadata=dict(metadata or {}),
        )
        with self._lock:
            self._logs[entry.id] = entry
        logger.debug(f"Started transport log: {entry.id}")
        return entry.id

    def update_log(
        self,
        log_id: str,
        message_id: Optional[str] = None,
        content_size: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[TransportLog]:
        """Merge details into an entry; status is left as it is."""
        with self._lock:
            entry = self._logs.get(log_id)
            if entry is None:
                return None
            if message_id is not None:
                entry.message_id = message_id
            if content_size is not None:
                entry.content_size = content_size
            if metadata:
                entry.metadata.update(metadata)
            return copy.deepcopy(entry)

    def _finish(self, entry: TransportLog, status: TransportStatus) -> None:
        now = utcnow()
        entry.status = status
        entry.completed_at = now
        entry.duration_ms = int((now - entry.started_at).total_seconds() * 1000)

    def complete_log(
        self,
        log_id: str,
        message_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[TransportLog]:
        with self._lock:
            entry = self._logs.get(log_id)
            if entry is None:
                return None
            if entry.status.is_terminal:
                logger.warning(f"Transport log {log_id} already {entry.status.value}; not completing")
                return copy.deepcopy(entry)
            self._finish(entry, TransportStatus.COMPLETED)
            if message_id:
                entry.message_id = message_id
            if metadata:
                entry.metadata.update(metadata)
            logger.debug(f"Completed transport log: {log_id} in {entry.duration_ms}ms")
            return copy.deepcopy(entry)

    def fail_log(
        self,
        log_id: str,
        error: str,
        error_details: Optional[Dict[str, Any]] = None,
    ) -> Optional[TransportLog]:
        with self._lock:
            entry = self._logs.get(log_id)
            if entry is None:
                return None
            if entry.status.is_terminal:
                logger.warning(f"Transport log {log_id} already {entry.status.value}; not failing")
                return copy.deepcopy(entry)
            self._finish(entry, TransportStatus.FAILED)
            entry.error = error
            entry.error_details = dict(error_details or {})
            logger.warning(
                f"Failed transport log: {log_id} - {error}",
                extra={"category": LogCategory.TRANSPORT},
            )
            return copy.deepcopy(entry)

    def increment_retry(self, log_id: str) -> Optional[TransportLog]:
        """Count a retry and move a non-terminal entry to RETRYING."""
        with self._lock:
            entry = self._logs.get(log_id)
            if entry is None:
                return None
            if entry.status.is_terminal:
                logger.warning(f"Transport log {log_id} already {entry.status.value}; retry not recorded")
                return copy.deepcopy(entry)
            entry.retry_count += 1
            entry.status = TransportStatus.RETRYING
            logger.debug(f"Retrying transport log: {log_id} (attempt {entry.retry_count})")
            return copy.deepcopy(entry)

    def resume_log(self, log_id: str) -> Optional[TransportLog]:
        """RETRYING -> IN_PROGRESS when the next attempt starts."""
        with self._lock:
            entry = self._logs.get(log_id)
            if entry is None:
                return None
            if entry.status == TransportStatus.RETRYING:
                entry.status = TransportStatus.IN_PROGRESS
            return copy.deepcopy(entry)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_log(self, log_id: str) -> Optional[TransportLog]:
        with self._lock:
            entry = self._logs.get(log_id)
            return copy.deepcopy(entry) if entry else None

    def get_log_by_correlation_id(self, tenant_id: str, correlation_id: str) -> Optional[TransportLog]:
        logs, _ = self.query_logs(tenant_id, correlation_id=correlation_id, page=1, limit=1)
        return logs[0] if logs else None

    def query_logs(
        self,
        tenant_id: str,
        partner_id: Optional[str] = None,
        protocol: Optional[TransportProtocol] = None,
        direction: Optional[TransportDirection] = None,
        status: Optional[TransportStatus] = None,
        correlation_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Tuple[List[TransportLog], int]:
        """
        Filtered entries, newest first.

        Returns:
            The requested page (everything when ``limit`` is None) and the
            total number of matches
        """
        with self._lock:
            matches = [
                copy.deepcopy(e)
                for e in self._logs.values()
                if e.tenant_id == tenant_id
                and (partner_id is None or e.partner_id == partner_id)
                and (protocol is None or e.protocol == protocol)
                and (direction is None or e.direction == direction)
                and (status is None or e.status == status)
                and (correlation_id is None or e.correlation_id == correlation_id)
                and (start_date is None or e.started_at >= start_date)
                and (end_date is None or e.started_at <= end_date)
            ]
        matches.sort(key=lambda e: e.started_at, reverse=True)
        total = len(matches)
        if limit is not None:
            offset = (max(page or 1, 1) - 1) * limit
            matches = matches[offset : offset + limit]
        return matches, total

    def get_statistics(
        self,
        tenant_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> LogStatistics:
        logs, _ = self.query_logs(tenant_id, start_date=start_date, end_date=end_date)
        stats = LogStatistics()
        durations: List[int] = []

        for entry in logs:
            stats.total += 1
            if entry.status == TransportStatus.COMPLETED:
                stats.completed += 1
            elif entry.status == TransportStatus.FAILED:
                stats.failed += 1
            elif not entry.status.is_terminal:
                stats.in_progress += 1

            if entry.duration_ms is not None:
                durations.append(entry.duration_ms)

            for breakdown in (
                stats.by_protocol.setdefault(entry.protocol.value, StatusBreakdown()),
                stats.by_partner.setdefault(entry.partner_id, StatusBreakdown()),
            ):
                breakdown.total += 1
                if entry.status == TransportStatus.COMPLETED:
                    breakdown.completed += 1
                elif entry.status == TransportStatus.FAILED:
                    breakdown.failed += 1

        if durations:
            stats.average_duration_ms = sum(durations) / len(durations)
        stats.error_rate = stats.failed / stats.total * 100 if stats.total else 0.0
        return stats

    def get_recent_errors(self, tenant_id: str, limit: int = 10) -> List[TransportLog]:
        logs, _ = self.query_logs(tenant_id, status=TransportStatus.FAILED, page=1, limit=limit)
        return logs

    def delete_log(self, log_id: str) -> bool:
        with self._lock:
            return self._logs.pop(log_id, None) is not None

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def purge_expired(self, retention_days: Optional[int] = None) -> int:
        """Drop entries started before the retention window; returns how many."""
        days = self.config.retention_days if retention_days is None else retention_days
        cutoff = utcnow() - timedelta(days=days)
        with self._lock:
            expired = [log_id for log_id, e in self._logs.items() if e.started_at < cutoff]
            for log_id in expired:
                del self._logs[log_id]
        if expired:
            logger.info(f"Purged {len(expired)} transport log entries older than {days} days")
        return len(expired)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.cleanup_interval_seconds)
            self.purge_expired()

    def start_cleanup(self) -> None:
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            logger.info("Transport log cleanup task started")

    async def stop_cleanup(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Transport log cleanup task stopped")
