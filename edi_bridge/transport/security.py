"""
EDI Bridge - AS2 Message Security

S/MIME signing and encryption are supplied by an external provider. The
transports only call through this interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class SecuredContent:
    """Payload after a security transform, with the content type to send or read next."""

    content: bytes
    content_type: str
    verified: Optional[bool] = None


class SecurityProvider(ABC):
    """S/MIME operations for AS2 payloads."""

    @abstractmethod
    async def sign(
        self, content: bytes, content_type: str, certificate_id: str, algorithm: str
    ) -> SecuredContent:
        """Wrap ``content`` in a signature made with the certificate's private key."""

    @abstractmethod
    async def encrypt(self, content: bytes, certificate_id: str) -> SecuredContent:
        """Envelope ``content`` for the certificate's public key."""

    @abstractmethod
    async def decrypt(self, content: bytes, certificate_id: str) -> SecuredContent:
        """Open an enveloped payload with the certificate's private key."""

    @abstractmethod
    async def verify(self, content: bytes, certificate_id: Optional[str]) -> SecuredContent:
        """
        Unwrap a signed payload.

        ``verified`` on the result is False when no certificate was available
        to check the signature against.
        """
