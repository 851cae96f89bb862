"""
EDI Bridge - Transport Types

Profiles, requests, results and records shared by the AS2 and SFTP
transports and the services built on them.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Common enums
# ---------------------------------------------------------------------------


class TransportProtocol(str, Enum):
    AS2 = "as2"
    SFTP = "sftp"


class TransportDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class TransportStatus(str, Enum):
    """Status of a transport log entry or delivery job."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            TransportStatus.COMPLETED,
            TransportStatus.FAILED,
            TransportStatus.CANCELLED,
        )


# ---------------------------------------------------------------------------
# AS2
# ---------------------------------------------------------------------------


class MdnMode(str, Enum):
    SYNC = "sync"
    ASYNC = "async"


class MicAlgorithm(str, Enum):
    SHA1 = "sha1"
    SHA256 = "sha256"
    SHA384 = "sha384"
    SHA512 = "sha512"


class CompressionAlgorithm(str, Enum):
    ZLIB = "zlib"
    NONE = "none"


class HttpAuthType(str, Enum):
    NONE = "none"
    BASIC = "basic"
    BEARER = "bearer"


@dataclass
class HttpAuth:
    auth_type: HttpAuthType = HttpAuthType.NONE
    username: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None


@dataclass
class As2PartnerProfile:
    """Remote AS2 endpoint of a trading partner."""

    partner_id: str
    partner_name: str
    as2_id: str
    target_url: str
    mdn_mode: MdnMode = MdnMode.SYNC
    is_active: bool = True
    email: Optional[str] = None
    signing_certificate_id: Optional[str] = None
    encryption_certificate_id: Optional[str] = None
    signing_algorithm: MicAlgorithm = MicAlgorithm.SHA256
    compression: CompressionAlgorithm = CompressionAlgorithm.NONE
    mdn_async_url: Optional[str] = None
    request_signed_mdn: bool = False
    http_headers: Dict[str, str] = field(default_factory=dict)
    http_auth: Optional[HttpAuth] = None
    timeout_ms: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class As2LocalProfile:
    """A local AS2 identity this process answers as."""

    as2_id: str
    name: str
    signing_certificate_id: Optional[str] = None
    decryption_certificate_id: Optional[str] = None
    is_active: bool = True


@dataclass(frozen=True)
class MdnDisposition:
    """Parsed ``Disposition:`` field of a receipt."""

    action_mode: str = "automatic-action"
    sending_mode: str = "MDN-sent-automatically"
    disposition_type: str = "processed"
    modifier: Optional[str] = None
    modifier_text: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.disposition_type.lower() == "failed" or (
            self.modifier is not None and self.modifier.lower() in ("error", "failure")
        )

    def render(self) -> str:
        text = f"{self.action_mode}/{self.sending_mode}; {self.disposition_type}"
        if self.modifier:
            text += f"/{self.modifier}"
            if self.modifier_text:
                text += f": {self.modifier_text}"
        return text


@dataclass(frozen=True)
class As2Mdn:
    """A message disposition notification (AS2 receipt)."""

    message_id: str
    original_message_id: str
    as2_from: str
    as2_to: str
    disposition: MdnDisposition
    mic: Optional[str] = None
    mic_algorithm: Optional[str] = None
    human_readable: Optional[str] = None
    signed: bool = False
    timestamp: datetime = field(default_factory=utcnow)
    raw: Optional[bytes] = None


@dataclass
class As2SendResult:
    success: bool
    message_id: str
    mic: Optional[str] = None
    mdn: Optional[As2Mdn] = None
    http_status: Optional[int] = None
    error: Optional[str] = None
    retryable: bool = False
    timestamp: datetime = field(default_factory=utcnow)
    duration_ms: int = 0

    @property
    def rate_limited(self) -> bool:
        return self.http_status == 429


@dataclass
class As2ReceiveResult:
    success: bool
    message_id: str
    as2_from: str
    as2_to: str
    content: bytes = b""
    content_type: str = ""
    subject: Optional[str] = None
    filename: Optional[str] = None
    signed: bool = False
    encrypted: bool = False
    compressed: bool = False
    mdn: Optional[As2Mdn] = None
    mdn_body: Optional[bytes] = None
    mdn_headers: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class PendingMdn:
    """An outbound message awaiting its asynchronous receipt."""

    message_id: str
    partner_id: str
    mic: str
    mic_algorithm: str
    sent_at: datetime = field(default_factory=utcnow)
    mdn: Optional[As2Mdn] = None

    @property
    def resolved(self) -> bool:
        return self.mdn is not None


# ---------------------------------------------------------------------------
# SFTP
# ---------------------------------------------------------------------------


class SftpAuthMethod(str, Enum):
    PASSWORD = "password"
    KEY = "key"
    KEY_AND_PASSWORD = "key_and_password"


@dataclass
class SftpConnectionConfig:
    host: str
    username: str
    port: int = 22
    auth_method: SftpAuthMethod = SftpAuthMethod.PASSWORD
    password: Optional[str] = None
    private_key_id: Optional[str] = None
    passphrase: Optional[str] = None
    host_key_fingerprint: Optional[str] = None
    strict_host_key_checking: bool = False
    timeout_ms: Optional[int] = None


@dataclass
class SftpInboundConfig:
    directory: str
    filename_pattern: Optional[str] = None
    poll_interval_ms: Optional[int] = None
    processed_directory: Optional[str] = None
    error_directory: Optional[str] = None
    delete_after_processing: bool = False
    max_files_per_poll: Optional[int] = None


@dataclass
class SftpOutboundConfig:
    directory: str
    filename_template: Optional[str] = None
    use_temp_file: bool = True
    overwrite_existing: bool = False


@dataclass
class SftpPartnerProfile:
    partner_id: str
    partner_name: str
    connection: SftpConnectionConfig
    inbound: Optional[SftpInboundConfig] = None
    outbound: Optional[SftpOutboundConfig] = None
    is_active: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SftpFile:
    filename: str
    path: str
    size: int
    modified_at: datetime
    is_directory: bool = False
    permissions: Optional[str] = None


@dataclass
class SftpResult:
    """Outcome of one SFTP operation."""

    success: bool
    operation: str
    remote_path: str = ""
    filename: Optional[str] = None
    destination_path: Optional[str] = None
    content: bytes = b""
    size: int = 0
    files: List[SftpFile] = field(default_factory=list)
    error: Optional[str] = None
    retryable: bool = False
    timestamp: datetime = field(default_factory=utcnow)
    duration_ms: int = 0


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@dataclass
class ConnectionHealth:
    partner_id: str
    protocol: TransportProtocol
    is_healthy: bool
    checked_at: datetime = field(default_factory=utcnow)
    latency_ms: Optional[int] = None
    error: Optional[str] = None
