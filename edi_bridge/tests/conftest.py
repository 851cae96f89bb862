"""
EDI Bridge - Pytest Configuration and Fixtures

This module provides shared fixtures and configuration for all tests.
"""

import logging
import shutil
import tempfile
from unittest.mock import MagicMock

import pytest

from edi_bridge.core.config import (
    As2Config,
    CertificateConfig,
    Config,
    DeliveryConfig,
    Environment,
    PollingConfig,
    SftpConfig,
    TransportLogConfig,
)
from edi_bridge.transport.sftp_client import SftpClient, SftpConnection
from edi_bridge.transport.transport_log import TransportLogService
from edi_bridge.transport.types import (
    As2PartnerProfile,
    SftpConnectionConfig,
    SftpInboundConfig,
    SftpOutboundConfig,
    SftpPartnerProfile,
)


SAMPLE_850 = (
    "ISA*00*          *00*          *ZZ*BUYER          *ZZ*SELLER         "
    "*240101*1200*U*00401*000000001*0*P*>~"
    "GS*PO*BUYER*SELLER*20240101*1200*7*X*004010~"
    "ST*850*0001~"
    "BEG*00*SA*PO-1001**20240101~"
    "REF*DP*038~"
    "N1*ST*Acme Warehouse*92*WH1~"
    "N3*1 Dock Road~"
    "N4*Springfield*IL*62701*US~"
    "PO1*1*10*EA*2.50*PE*VP*SKU-1*UP*012345678905~"
    "PID*F****Blue widget~"
    "PO1*2*4*CA*12*PE*VP*SKU-2~"
    "CTT*2~"
    "SE*11*0001~"
    "GE*1*7~"
    "IEA*1*000000001~"
)


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests."""
    tmp_dir = tempfile.mkdtemp()
    yield tmp_dir
    shutil.rmtree(tmp_dir, ignore_errors=True)


@pytest.fixture
def test_config():
    """Create test configuration."""
    config = Config()
    config.environment = Environment.TESTING
    config.as2 = As2Config(as2_id="LOCALCO", domain="edi.example.com", mdn_email="as2@edi.example.com")
    config.sftp = SftpConfig(timeout_ms=2000)
    config.certificates = CertificateConfig(encryption_key=None, default_rsa_bits=2048)
    config.transport_log = TransportLogConfig(retention_days=7, cleanup_interval_seconds=1)
    config.delivery = DeliveryConfig(
        processing_interval_ms=10,
        concurrency=2,
        max_retries=3,
        base_delay_seconds=5.0,
        max_delay_seconds=60.0,
    )
    config.polling = PollingConfig(poll_interval_ms=50, max_files_per_poll=10)
    return config


@pytest.fixture
def sample_850():
    """An 850 purchase order inside an ISA/GS envelope."""
    return SAMPLE_850


@pytest.fixture
def as2_profile():
    """AS2 profile for a partner with synchronous receipts."""
    return As2PartnerProfile(
        partner_id="partner-1",
        partner_name="Retail Partner",
        as2_id="PARTNERCO",
        target_url="https://as2.partner.example.com/receive",
    )


@pytest.fixture
def sftp_profile():
    """SFTP profile with inbound and outbound folders and password auth."""
    return SftpPartnerProfile(
        partner_id="partner-1",
        partner_name="Retail Partner",
        connection=SftpConnectionConfig(
            host="sftp.partner.example.com",
            username="edi",
            password="secret",
        ),
        inbound=SftpInboundConfig(
            directory="/inbound",
            filename_pattern="*.edi",
            processed_directory="/processed",
            error_directory="/error",
        ),
        outbound=SftpOutboundConfig(directory="/outbound"),
    )


@pytest.fixture
def mock_sftp():
    """The SFTP channel handed to operations by a fake connection factory."""
    return MagicMock()


@pytest.fixture
def sftp_client(test_config, mock_sftp, sftp_profile):
    """SFTP client whose connections are backed by ``mock_sftp``."""
    factory = MagicMock(side_effect=lambda profile, key, timeout: SftpConnection(MagicMock(), mock_sftp))
    client = SftpClient(config=test_config.sftp, connection_factory=factory)
    client.register_partner(sftp_profile)
    return client


@pytest.fixture
def transport_log(test_config):
    """In-memory transport log."""
    return TransportLogService(test_config.transport_log)


@pytest.fixture
def reset_logging():
    """Undo configure_logging so later tests log through the default handlers."""
    yield
    for name in ("edi_bridge", None):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
    package_logger = logging.getLogger("edi_bridge")
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)
