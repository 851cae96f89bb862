"""
EDI Bridge - Core Module

Configuration management, exception hierarchy, structured logging and
retry policy shared by the document and transport layers.
"""

from .config import Config, get_config, set_config, load_config
from .exceptions import (
    EdiBridgeException,
    ConfigurationException,
    ValidationError,
    StructuralParseError,
    PartnerNotFound,
    PartnerInactive,
    TransportFailure,
    CredentialError,
)
from .retry import RetryPolicy, policy_for

__version__ = "1.0.0"
__all__ = [
    "Config",
    "get_config",
    "set_config",
    "load_config",
    "EdiBridgeException",
    "ConfigurationException",
    "ValidationError",
    "StructuralParseError",
    "PartnerNotFound",
    "PartnerInactive",
    "TransportFailure",
    "CredentialError",
    "RetryPolicy",
    "policy_for",
]
