"""
EDI Bridge - Certificate Manager

Manages key material for EDI transport:
- SSH key pairs for SFTP authentication
- X.509 certificates for AS2 signing/encryption
- Encryption at rest of private material (Fernet)
"""

import asyncio
import base64
import binascii
import copy
import hashlib
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional
import logging

from cryptography import x509
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, rsa
from cryptography.x509.oid import NameOID

from ..core.config import CertificateConfig, get_config
from ..core.exceptions import CredentialError, ValidationError
from .types import utcnow

logger = logging.getLogger(__name__)


class SshKeyType(str, Enum):
    RSA = "rsa"
    ED25519 = "ed25519"
    ECDSA = "ecdsa"


class CertificateType(str, Enum):
    SIGNING = "signing"
    ENCRYPTION = "encryption"
    TLS = "tls"


@dataclass
class SshKeyPair:
    """SSH key pair metadata; private material is held by the manager only."""

    id: str
    tenant_id: str
    name: str
    public_key: str
    fingerprint: str
    key_type: SshKeyType
    key_size: Optional[int] = None
    has_private_key: bool = False
    partner_id: Optional[str] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class CertificateSubject:
    common_name: Optional[str] = None
    organization: Optional[str] = None
    organizational_unit: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    locality: Optional[str] = None
    email: Optional[str] = None


@dataclass
class Certificate:
    """Stored X.509 certificate."""

    id: str
    tenant_id: str
    name: str
    cert_type: CertificateType
    serial_number: str
    fingerprint: str
    subject: CertificateSubject
    issuer: CertificateSubject
    valid_from: datetime
    valid_to: datetime
    public_key: str
    has_private_key: bool = False
    is_ca: bool = False
    is_self_signed: bool = False
    key_usage: List[str] = field(default_factory=list)
    partner_id: Optional[str] = None
    is_active: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def fingerprint_algorithm(self) -> str:
        return "sha256"


_SUBJECT_OIDS = {
    NameOID.COMMON_NAME: "common_name",
    NameOID.ORGANIZATION_NAME: "organization",
    NameOID.ORGANIZATIONAL_UNIT_NAME: "organizational_unit",
    NameOID.COUNTRY_NAME: "country",
    NameOID.STATE_OR_PROVINCE_NAME: "state",
    NameOID.LOCALITY_NAME: "locality",
    NameOID.EMAIL_ADDRESS: "email",
}

_KEY_USAGE_FLAGS = (
    "digital_signature",
    "content_commitment",
    "key_encipherment",
    "data_encipherment",
    "key_agreement",
    "key_cert_sign",
    "crl_sign",
)


def blob_fingerprint(blob: bytes) -> str:
    digest = hashlib.sha256(blob).digest()
    return "SHA256:" + base64.b64encode(digest).decode("ascii").rstrip("=")


def ssh_fingerprint(public_key: str) -> str:
    """OpenSSH SHA256 fingerprint: ``SHA256:`` + unpadded base64 of the key blob digest."""
    parts = public_key.strip().split()
    if len(parts) < 2:
        raise CredentialError("Public key is not in OpenSSH format")
    try:
        blob = base64.b64decode(parts[1], validate=True)
    except (binascii.Error, ValueError):
        raise CredentialError("Public key blob is not valid base64")
    return blob_fingerprint(blob)


def detect_key_type(public_key: str) -> SshKeyType:
    if public_key.startswith("ssh-ed25519"):
        return SshKeyType.ED25519
    if public_key.startswith("ecdsa-sha2"):
        return SshKeyType.ECDSA
    return SshKeyType.RSA


def _subject(name: x509.Name) -> CertificateSubject:
    values: Dict[str, str] = {}
    for attribute in name:
        field_name = _SUBJECT_OIDS.get(attribute.oid)
        if field_name and field_name not in values:
            values[field_name] = str(attribute.value)
    return CertificateSubject(**values)


class CertificateManager:
    """
    Tenant-scoped store of SSH key pairs and X.509 certificates.

    Private material is never part of the returned records; it is only
    reachable through ``get_ssh_private_key`` and ``get_private_key``.
    """

    def __init__(self, config: Optional[CertificateConfig] = None):
        self.config = config or get_config().certificates
        self._fernet = Fernet(self.config.encryption_key) if self.config.encryption_key else None
        if self._fernet is None:
            logger.warning("No certificate encryption key configured; private keys are held unencrypted")

        self._ssh_keys: Dict[str, SshKeyPair] = {}
        self._ssh_private: Dict[str, bytes] = {}
        self._certificates: Dict[str, Certificate] = {}
        self._cert_private: Dict[str, bytes] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Private material at rest
    # ------------------------------------------------------------------

    def _seal(self, pem: bytes) -> bytes:
        return self._fernet.encrypt(pem) if self._fernet else pem

    def _unseal(self, stored: bytes, key_id: str) -> str:
        if self._fernet is None:
            return stored.decode("ascii")
        try:
            return self._fernet.decrypt(stored).decode("ascii")
        except InvalidToken:
            raise CredentialError("Stored private key could not be decrypted", credential_id=key_id)

    # ------------------------------------------------------------------
    # SSH key pairs
    # ------------------------------------------------------------------

    async def generate_ssh_key_pair(
        self,
        tenant_id: str,
        name: str,
        key_type: SshKeyType = SshKeyType.RSA,
        key_size: Optional[int] = None,
        partner_id: Optional[str] = None,
    ) -> SshKeyPair:
        """
        Generate an SSH key pair.

        Args:
            tenant_id: Owning tenant
            name: Display name, also used as the public key comment
            key_type: rsa or ed25519
            key_size: RSA modulus length (defaults to the configured size)
            partner_id: Optional partner the key is issued for

        Returns:
            Key pair metadata with the OpenSSH public key and fingerprint
        """
        key_type = SshKeyType(key_type)
        if key_type == SshKeyType.ECDSA:
            raise ValidationError("ECDSA keys can be imported but not generated", field_name="key_type")
        bits = key_size or self.config.default_rsa_bits

        public_key, private_pem = await asyncio.to_thread(self._generate, key_type, bits, name)

        key_pair = SshKeyPair(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            partner_id=partner_id,
            name=name,
            public_key=public_key,
            fingerprint=ssh_fingerprint(public_key),
            key_type=key_type,
            key_size=bits if key_type == SshKeyType.RSA else None,
            has_private_key=True,
        )

        with self._lock:
            self._ssh_keys[key_pair.id] = key_pair
            self._ssh_private[key_pair.id] = self._seal(private_pem)

        logger.info(f"Generated SSH key pair: {name} ({key_pair.id})")
        return copy.deepcopy(key_pair)

    @staticmethod
    def _generate(key_type: SshKeyType, bits: int, comment: str):
        if key_type == SshKeyType.RSA:
            private_key = rsa.generate_private_key(public_exponent=65537, key_size=bits)
        else:
            private_key = ed25519.Ed25519PrivateKey.generate()

        public_line = private_key.public_key().public_bytes(
            serialization.Encoding.OpenSSH, serialization.PublicFormat.OpenSSH
        ).decode("ascii")
        private_pem = private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.OpenSSH,
            serialization.NoEncryption(),
        )
        return f"{public_line} {comment}", private_pem

    async def import_ssh_public_key(
        self,
        tenant_id: str,
        name: str,
        public_key: str,
        partner_id: Optional[str] = None,
    ) -> SshKeyPair:
        """Register a partner-supplied OpenSSH public key (no private material)."""
        public_key = public_key.strip()
        key_pair = SshKeyPair(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            partner_id=partner_id,
            name=name,
            public_key=public_key,
            fingerprint=ssh_fingerprint(public_key),
            key_type=detect_key_type(public_key),
            has_private_key=False,
        )
        with self._lock:
            self._ssh_keys[key_pair.id] = key_pair

        logger.info(f"Imported SSH public key: {name} ({key_pair.id})")
        return copy.deepcopy(key_pair)

    def get_ssh_key_pair(self, key_id: str) -> Optional[SshKeyPair]:
        with self._lock:
            return copy.deepcopy(self._ssh_keys.get(key_id))

    def get_ssh_private_key(self, key_id: str) -> Optional[str]:
        """OpenSSH-format private key, or None if the pair has none."""
        with self._lock:
            stored = self._ssh_private.get(key_id)
        if stored is None:
            return None
        return self._unseal(stored, key_id)

    def list_ssh_key_pairs(self, tenant_id: str) -> List[SshKeyPair]:
        with self._lock:
            return [copy.deepcopy(k) for k in self._ssh_keys.values() if k.tenant_id == tenant_id]

    def delete_ssh_key_pair(self, key_id: str) -> bool:
        with self._lock:
            deleted = self._ssh_keys.pop(key_id, None) is not None
            self._ssh_private.pop(key_id, None)
        if deleted:
            logger.info(f"Deleted SSH key pair: {key_id}")
        return deleted

    # ------------------------------------------------------------------
    # X.509 certificates
    # ------------------------------------------------------------------

    async def upload_certificate(
        self,
        tenant_id: str,
        name: str,
        cert_type: CertificateType,
        certificate: bytes,
        private_key: Optional[bytes] = None,
        passphrase: Optional[str] = None,
        partner_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Certificate:
        """
        Store a PEM or DER X.509 certificate, optionally with its private key.

        Raises:
            CredentialError: If the certificate or key cannot be parsed
        """
        try:
            if certificate.lstrip().startswith(b"-----BEGIN"):
                cert = x509.load_pem_x509_certificate(certificate)
            else:
                cert = x509.load_der_x509_certificate(certificate)
            key = None
            if private_key:
                key = serialization.load_pem_private_key(
                    private_key, password=passphrase.encode() if passphrase else None
                )
        except (ValueError, TypeError) as e:
            raise CredentialError(f"Failed to parse certificate: {e}")

        try:
            constraints = cert.extensions.get_extension_for_class(x509.BasicConstraints).value
            is_ca = constraints.ca
        except x509.ExtensionNotFound:
            is_ca = False

        try:
            usage = cert.extensions.get_extension_for_class(x509.KeyUsage).value
            key_usage = [flag for flag in _KEY_USAGE_FLAGS if getattr(usage, flag)]
        except x509.ExtensionNotFound:
            key_usage = []

        record = Certificate(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            partner_id=partner_id,
            name=name,
            cert_type=CertificateType(cert_type),
            serial_number=format(cert.serial_number, "X"),
            fingerprint=cert.fingerprint(hashes.SHA256()).hex().upper(),
            subject=_subject(cert.subject),
            issuer=_subject(cert.issuer),
            valid_from=cert.not_valid_before_utc,
            valid_to=cert.not_valid_after_utc,
            public_key=cert.public_key()
            .public_bytes(serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo)
            .decode("ascii"),
            has_private_key=key is not None,
            is_ca=is_ca,
            is_self_signed=cert.subject == cert.issuer,
            key_usage=key_usage,
            metadata=dict(metadata or {}),
        )

        with self._lock:
            self._certificates[record.id] = record
            if key is not None:
                pem = key.private_bytes(
                    serialization.Encoding.PEM,
                    serialization.PrivateFormat.PKCS8,
                    serialization.NoEncryption(),
                )
                self._cert_private[record.id] = self._seal(pem)

        logger.info(f"Uploaded certificate: {name} ({record.id})")
        return copy.deepcopy(record)

    def get_certificate(self, cert_id: str) -> Optional[Certificate]:
        with self._lock:
            return copy.deepcopy(self._certificates.get(cert_id))

    def get_certificate_by_fingerprint(self, fingerprint: str) -> Optional[Certificate]:
        wanted = fingerprint.replace(":", "").upper()
        with self._lock:
            for cert in self._certificates.values():
                if cert.fingerprint == wanted:
                    return copy.deepcopy(cert)
        return None

    def list_certificates(
        self,
        tenant_id: str,
        cert_type: Optional[CertificateType] = None,
        is_active: Optional[bool] = None,
    ) -> List[Certificate]:
        with self._lock:
            return [
                copy.deepcopy(c)
                for c in self._certificates.values()
                if c.tenant_id == tenant_id
                and (cert_type is None or c.cert_type == cert_type)
                and (is_active is None or c.is_active == is_active)
            ]

    def get_private_key(self, cert_id: str) -> Optional[str]:
        with self._lock:
            stored = self._cert_private.get(cert_id)
        if stored is None:
            return None
        return self._unseal(stored, cert_id)

    def delete_certificate(self, cert_id: str) -> bool:
        with self._lock:
            deleted = self._certificates.pop(cert_id, None) is not None
            self._cert_private.pop(cert_id, None)
        if deleted:
            logger.info(f"Deleted certificate: {cert_id}")
        return deleted

    def update_certificate_status(self, cert_id: str, is_active: bool) -> Optional[Certificate]:
        with self._lock:
            cert = self._certificates.get(cert_id)
            if cert is None:
                return None
            cert.is_active = is_active
            cert.updated_at = utcnow()
            cert = copy.deepcopy(cert)
        logger.info(f"Updated certificate status: {cert_id} -> {'active' if is_active else 'inactive'}")
        return cert

    @staticmethod
    def is_certificate_valid(certificate: Certificate, at: Optional[datetime] = None) -> bool:
        now = at or utcnow()
        return certificate.is_active and certificate.valid_from <= now <= certificate.valid_to

    def get_certificates_expiring_soon(
        self, tenant_id: str, days: Optional[int] = None
    ) -> List[Certificate]:
        """Active, unexpired certificates whose validity ends within ``days``, soonest first."""
        horizon_days = self.config.expiry_warning_days if days is None else days
        now = utcnow()
        horizon = now + timedelta(days=horizon_days)
        with self._lock:
            expiring = [
                copy.deepcopy(c)
                for c in self._certificates.values()
                if c.tenant_id == tenant_id and c.is_active and now < c.valid_to <= horizon
            ]
        return sorted(expiring, key=lambda c: c.valid_to)
