"""
EDI Bridge - Transport Module

AS2 and SFTP transports, key material, trading partners, the transport log,
inbound polling and outbound delivery.
"""

from .types import (
    As2LocalProfile,
    As2Mdn,
    As2PartnerProfile,
    As2ReceiveResult,
    As2SendResult,
    ConnectionHealth,
    MdnDisposition,
    MdnMode,
    MicAlgorithm,
    SftpAuthMethod,
    SftpConnectionConfig,
    SftpInboundConfig,
    SftpOutboundConfig,
    SftpPartnerProfile,
    SftpResult,
    TransportDirection,
    TransportProtocol,
    TransportStatus,
)
from .registry import ProfileRegistry
from .security import SecuredContent, SecurityProvider
from .as2_client import As2Client
from .as2_server import As2InboundMessage, As2Server
from .certificate_manager import Certificate, CertificateManager, CertificateType, SshKeyPair, SshKeyType
from .sftp_client import SftpClient
from .trading_partner import TradingPartner, TradingPartnerService
from .transport_log import LogStatistics, TransportLog, TransportLogService
from .file_polling import FileHandlerResult, FilePollingService, PollJob, PollResult
from .outbound_delivery import DeliveryJob, DeliveryResult, OutboundDeliveryService

__all__ = [
    "As2LocalProfile",
    "As2Mdn",
    "As2PartnerProfile",
    "As2ReceiveResult",
    "As2SendResult",
    "ConnectionHealth",
    "MdnDisposition",
    "MdnMode",
    "MicAlgorithm",
    "SftpAuthMethod",
    "SftpConnectionConfig",
    "SftpInboundConfig",
    "SftpOutboundConfig",
    "SftpPartnerProfile",
    "SftpResult",
    "TransportDirection",
    "TransportProtocol",
    "TransportStatus",
    "ProfileRegistry",
    "SecuredContent",
    "SecurityProvider",
    "As2Client",
    "As2InboundMessage",
    "As2Server",
    "Certificate",
    "CertificateManager",
    "CertificateType",
    "SshKeyPair",
    "SshKeyType",
    "SftpClient",
    "TradingPartner",
    "TradingPartnerService",
    "LogStatistics",
    "TransportLog",
    "TransportLogService",
    "FileHandlerResult",
    "FilePollingService",
    "PollJob",
    "PollResult",
    "DeliveryJob",
    "DeliveryResult",
    "OutboundDeliveryService",
]
