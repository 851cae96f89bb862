"""
EDI Bridge - Custom Exceptions

This module defines the exception hierarchy for parsing, transport and
configuration errors.
"""

from typing import Any, Dict, List, Optional


class EdiBridgeException(Exception):
    """Base exception for all EDI Bridge errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "EDI_BRIDGE_ERROR"
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            return f"{self.message} (Code: {self.error_code}, Context: {self.context})"
        return f"{self.message} (Code: {self.error_code})"


class ValidationError(EdiBridgeException):
    """Exception raised for malformed inbound headers or input."""

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        error_code: str = "VALIDATION_ERROR",
    ):
        super().__init__(
            message,
            error_code=error_code,
            context={"field": field_name} if field_name else {},
        )


class ConfigurationException(ValidationError):
    """Exception raised for configuration-related errors."""

    def __init__(self, message: str, config_key: Optional[str] = None):
        super().__init__(message, field_name=config_key, error_code="CONFIG_ERROR")


class StructuralParseError(EdiBridgeException):
    """
    Exception raised when EDI text cannot be framed into transaction sets.

    Typed document parsers never raise this; they return issues as data.
    """

    def __init__(
        self,
        message: str,
        segment_id: Optional[str] = None,
        issues: Optional[List[Any]] = None,
    ):
        context = {}
        if segment_id:
            context["segment_id"] = segment_id
        super().__init__(message, error_code="STRUCTURAL_PARSE_ERROR", context=context)
        self.segment_id = segment_id
        self.issues = issues or []


class PartnerNotFound(EdiBridgeException):
    """Exception raised when a trading partner profile is not registered."""

    def __init__(self, partner_id: str):
        super().__init__(
            f"Partner not found: {partner_id}",
            error_code="PARTNER_NOT_FOUND",
            context={"partner_id": partner_id},
        )
        self.partner_id = partner_id


class PartnerInactive(EdiBridgeException):
    """Exception raised when a trading partner profile is deactivated."""

    def __init__(self, partner_id: str):
        super().__init__(
            f"Partner is inactive: {partner_id}",
            error_code="PARTNER_INACTIVE",
            context={"partner_id": partner_id},
        )
        self.partner_id = partner_id


class TransportFailure(EdiBridgeException):
    """Exception raised for network or protocol failures during a transfer."""

    def __init__(
        self,
        message: str,
        retryable: bool = False,
        status_code: Optional[int] = None,
        protocol: Optional[str] = None,
    ):
        context: Dict[str, Any] = {"retryable": retryable}
        if status_code is not None:
            context["status_code"] = status_code
        if protocol:
            context["protocol"] = protocol

        super().__init__(message, error_code="TRANSPORT_FAILURE", context=context)
        self.retryable = retryable
        self.status_code = status_code
        self.protocol = protocol

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429

    @classmethod
    def from_status(cls, status_code: int, protocol: str = "as2") -> "TransportFailure":
        """Classify an HTTP status: 5xx and 429 are retryable, other 4xx are not."""
        retryable = status_code == 429 or status_code >= 500
        return cls(
            f"HTTP {status_code} from partner endpoint",
            retryable=retryable,
            status_code=status_code,
            protocol=protocol,
        )


class CredentialError(EdiBridgeException):
    """Exception raised for missing or invalid key or certificate material."""

    def __init__(self, message: str, credential_id: Optional[str] = None):
        super().__init__(
            message,
            error_code="CREDENTIAL_ERROR",
            context={"credential_id": credential_id} if credential_id else {},
        )
        self.credential_id = credential_id
