"""
EDI Bridge - Monitoring Module
"""

from .metrics import (
    AS2_MESSAGES,
    AS2_MDN,
    SFTP_OPERATIONS,
    DELIVERY_JOBS,
    POLLED_FILES,
    DOCUMENTS_PARSED,
    ACTIVE_POLL_JOBS,
    TRANSPORT_LATENCY,
    track_latency,
)

__all__ = [
    "AS2_MESSAGES",
    "AS2_MDN",
    "SFTP_OPERATIONS",
    "DELIVERY_JOBS",
    "POLLED_FILES",
    "DOCUMENTS_PARSED",
    "ACTIVE_POLL_JOBS",
    "TRANSPORT_LATENCY",
    "track_latency",
]
