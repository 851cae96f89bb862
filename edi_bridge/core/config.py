"""
EDI Bridge - Configuration Management

This module provides configuration management for the transport and
document services, supporting environment variables and YAML files.
"""

import os
import yaml
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional, Union
from pathlib import Path
from enum import Enum
import logging

from .exceptions import ConfigurationException

logger = logging.getLogger(__name__)


class Environment(str, Enum):
    """Environment types for configuration."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class As2Config:
    """Local AS2 identity and HTTP defaults."""

    as2_id: str = "EDIBRIDGE"
    domain: str = "localhost"
    mdn_email: str = "as2@localhost"
    timeout_ms: int = 30000
    user_agent: str = "EDI-Bridge AS2"


@dataclass
class SftpConfig:
    """SFTP connection defaults."""

    timeout_ms: int = 30000
    operation_timeout_ms: int = 300000  # whole transfer, connection included
    default_port: int = 22
    temp_suffix: str = ".tmp"


@dataclass
class CertificateConfig:
    """Key material settings."""

    encryption_key: Optional[str] = None  # Fernet key; MUST come from env or secrets
    default_rsa_bits: int = 4096
    expiry_warning_days: int = 30

    def __post_init__(self):
        """Load the encryption key from environment if not set."""
        if not self.encryption_key:
            self.encryption_key = os.getenv("EDI_BRIDGE_CERT_ENCRYPTION_KEY") or None


@dataclass
class TransportLogConfig:
    """Transport log retention."""

    retention_days: int = 30
    cleanup_interval_seconds: int = 3600


@dataclass
class DeliveryConfig:
    """Outbound delivery dispatcher settings."""

    processing_interval_ms: int = 5000
    concurrency: int = 5
    max_retries: int = 3
    base_delay_seconds: float = 5.0
    max_delay_seconds: float = 300.0
    rate_limit_base_delay_seconds: float = 30.0
    rate_limit_max_delay_seconds: float = 900.0


@dataclass
class PollingConfig:
    """Inbound polling defaults."""

    poll_interval_ms: int = 60000
    max_files_per_poll: int = 100


@dataclass
class MonitoringConfig:
    """Monitoring configuration."""

    enable_metrics: bool = True
    metrics_namespace: str = "edi_bridge"


@dataclass
class Config:
    """Main configuration class."""

    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False
    log_level: LogLevel = LogLevel.INFO
    service_name: str = "edi-bridge"
    version: str = "1.0.0"

    as2: As2Config = field(default_factory=As2Config)
    sftp: SftpConfig = field(default_factory=SftpConfig)
    certificates: CertificateConfig = field(default_factory=CertificateConfig)
    transport_log: TransportLogConfig = field(default_factory=TransportLogConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    @classmethod
    def load_from_file(cls, config_path: Union[str, Path]) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(config_path)

        if not config_path.exists():
            raise ConfigurationException(f"Configuration file not found: {config_path}")

        try:
            with open(config_path, "r") as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationException(f"Invalid YAML in configuration file: {e}")

        try:
            return cls._from_dict(config_data)
        except (TypeError, ValueError) as e:
            raise ConfigurationException(f"Error loading configuration file: {e}")

    @classmethod
    def load_from_env(cls, prefix: str = "EDI_BRIDGE_") -> "Config":
        """Load configuration from environment variables."""
        config = cls()

        try:
            config.environment = Environment(
                os.getenv(f"{prefix}ENVIRONMENT", config.environment.value)
            )
            config.debug = os.getenv(f"{prefix}DEBUG", str(config.debug)).lower() == "true"
            config.log_level = LogLevel(
                os.getenv(f"{prefix}LOG_LEVEL", config.log_level.value).upper()
            )

            # AS2 identity
            config.as2.as2_id = os.getenv(f"{prefix}AS2_ID", config.as2.as2_id)
            config.as2.domain = os.getenv(f"{prefix}AS2_DOMAIN", config.as2.domain)
            config.as2.mdn_email = os.getenv(f"{prefix}AS2_MDN_EMAIL", config.as2.mdn_email)
            config.as2.timeout_ms = int(
                os.getenv(f"{prefix}AS2_TIMEOUT_MS", str(config.as2.timeout_ms))
            )

            config.sftp.timeout_ms = int(
                os.getenv(f"{prefix}SFTP_TIMEOUT_MS", str(config.sftp.timeout_ms))
            )
            config.sftp.operation_timeout_ms = int(
                os.getenv(
                    f"{prefix}SFTP_OPERATION_TIMEOUT_MS", str(config.sftp.operation_timeout_ms)
                )
            )

            encryption_key = os.getenv(f"{prefix}CERT_ENCRYPTION_KEY")
            if encryption_key:
                config.certificates.encryption_key = encryption_key

            config.transport_log.retention_days = int(
                os.getenv(
                    f"{prefix}LOG_RETENTION_DAYS", str(config.transport_log.retention_days)
                )
            )

            # Delivery dispatcher
            config.delivery.processing_interval_ms = int(
                os.getenv(
                    f"{prefix}DELIVERY_INTERVAL_MS",
                    str(config.delivery.processing_interval_ms),
                )
            )
            config.delivery.concurrency = int(
                os.getenv(f"{prefix}DELIVERY_CONCURRENCY", str(config.delivery.concurrency))
            )
            config.delivery.max_retries = int(
                os.getenv(f"{prefix}DELIVERY_MAX_RETRIES", str(config.delivery.max_retries))
            )

            config.polling.poll_interval_ms = int(
                os.getenv(f"{prefix}POLL_INTERVAL_MS", str(config.polling.poll_interval_ms))
            )
            config.polling.max_files_per_poll = int(
                os.getenv(f"{prefix}POLL_MAX_FILES", str(config.polling.max_files_per_poll))
            )
        except ValueError as e:
            raise ConfigurationException(f"Invalid environment configuration: {e}")

        return config

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create configuration from dictionary."""
        config = cls()

        if "environment" in data:
            config.environment = Environment(data["environment"])
        if "debug" in data:
            config.debug = data["debug"]
        if "log_level" in data:
            config.log_level = LogLevel(str(data["log_level"]).upper())
        if "service_name" in data:
            config.service_name = data["service_name"]

        # Component configurations
        if "as2" in data:
            config.as2 = As2Config(**data["as2"])
        if "sftp" in data:
            config.sftp = SftpConfig(**data["sftp"])
        if "certificates" in data:
            config.certificates = CertificateConfig(**data["certificates"])
        if "transport_log" in data:
            config.transport_log = TransportLogConfig(**data["transport_log"])
        if "delivery" in data:
            config.delivery = DeliveryConfig(**data["delivery"])
        if "polling" in data:
            config.polling = PollingConfig(**data["polling"])
        if "monitoring" in data:
            config.monitoring = MonitoringConfig(**data["monitoring"])

        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        certificates = asdict(self.certificates)
        # Don't include key material in serialization
        certificates.pop("encryption_key", None)

        return {
            "environment": self.environment.value,
            "debug": self.debug,
            "log_level": self.log_level.value,
            "service_name": self.service_name,
            "version": self.version,
            "as2": asdict(self.as2),
            "sftp": asdict(self.sftp),
            "certificates": certificates,
            "transport_log": asdict(self.transport_log),
            "delivery": asdict(self.delivery),
            "polling": asdict(self.polling),
            "monitoring": asdict(self.monitoring),
        }

    def validate(self) -> None:
        """Validate configuration settings."""
        errors = []

        if not self.as2.as2_id:
            errors.append("AS2 identifier must be set")
        if not self.as2.domain:
            errors.append("AS2 domain must be set")
        if self.as2.timeout_ms <= 0:
            errors.append("AS2 timeout must be positive")
        if self.sftp.timeout_ms <= 0:
            errors.append("SFTP timeout must be positive")
        if self.sftp.operation_timeout_ms < self.sftp.timeout_ms:
            errors.append("SFTP operation timeout must not be shorter than the connection timeout")

        if self.transport_log.retention_days <= 0:
            errors.append("Log retention days must be positive")

        if self.delivery.processing_interval_ms <= 0:
            errors.append("Delivery processing interval must be positive")
        if self.delivery.concurrency <= 0:
            errors.append("Delivery concurrency must be positive")
        if self.delivery.max_retries < 0:
            errors.append("Delivery max retries cannot be negative")
        if self.delivery.base_delay_seconds > self.delivery.max_delay_seconds:
            errors.append("Delivery base delay cannot exceed max delay")

        if self.polling.poll_interval_ms <= 0:
            errors.append("Poll interval must be positive")
        if self.polling.max_files_per_poll <= 0:
            errors.append("Max files per poll must be positive")

        if self.certificates.default_rsa_bits < 2048:
            errors.append("RSA key size must be at least 2048 bits")

        if self.environment == Environment.PRODUCTION and not self.certificates.encryption_key:
            errors.append("Certificate encryption key is required in production")

        if errors:
            raise ConfigurationException(
                f"Configuration validation failed: {'; '.join(errors)}"
            )


# Global configuration instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load_from_env()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    config.validate()
    _config = config


def load_config(config_path: Union[str, Path]) -> Config:
    """Load and set configuration from file."""
    config = Config.load_from_file(config_path)
    set_config(config)
    return config
