"""
EDI Bridge - Metrics Collection

Prometheus metrics for document exchange across AS2 and SFTP.
"""

import time
from contextlib import contextmanager
from typing import Iterator

from prometheus_client import Counter, Gauge, Histogram


# Metrics
AS2_MESSAGES = Counter(
    "edi_bridge_as2_messages_total",
    "AS2 messages by direction and outcome",
    ["direction", "status"],
)

AS2_MDN = Counter(
    "edi_bridge_as2_mdn_total",
    "AS2 receipts by mode and disposition",
    ["mode", "disposition"],
)

SFTP_OPERATIONS = Counter(
    "edi_bridge_sftp_operations_total",
    "SFTP operations by operation and outcome",
    ["operation", "status"],
)

DELIVERY_JOBS = Counter(
    "edi_bridge_delivery_jobs_total",
    "Outbound delivery attempts by protocol and outcome",
    ["protocol", "status"],
)

POLLED_FILES = Counter(
    "edi_bridge_polled_files_total",
    "Inbound files seen by polling, by outcome",
    ["status"],
)

DOCUMENTS_PARSED = Counter(
    "edi_bridge_documents_parsed_total",
    "Transaction sets parsed by code and outcome",
    ["transaction_set", "status"],
)

ACTIVE_POLL_JOBS = Gauge(
    "edi_bridge_active_poll_jobs",
    "Poll jobs currently scheduled",
)

TRANSPORT_LATENCY = Histogram(
    "edi_bridge_transport_latency_seconds",
    "Transport operation latency",
    ["protocol", "operation"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)


@contextmanager
def track_latency(protocol: str, operation: str) -> Iterator[None]:
    """Record the wall time of the enclosed block."""
    start = time.perf_counter()
    try:
        yield
    finally:
        TRANSPORT_LATENCY.labels(protocol=protocol, operation=operation).observe(
            time.perf_counter() - start
        )
