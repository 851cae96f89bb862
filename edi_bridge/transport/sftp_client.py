"""
EDI Bridge - SFTP Client

SFTP file transfer for trading partners:
- Partner profile registry
- Password and key authentication (keys resolved via the certificate manager)
- Host key verification
- Upload with temp-file rename, download, list, delete, move

paramiko is blocking; every operation runs in a worker thread. The partner's
timeout bounds connecting and each channel read or write, and the configured
operation timeout bounds the whole transfer. A connection is opened per
operation and closed after it.
"""

import asyncio
import io
import posixpath
import re
import socket
import stat
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, TypeVar
import logging

import paramiko

from ..core.config import SftpConfig, get_config
from ..core.exceptions import (
    CredentialError,
    EdiBridgeException,
    PartnerInactive,
    PartnerNotFound,
    TransportFailure,
)
from ..core.structured_logging import LogCategory, log_context
from ..monitoring.metrics import SFTP_OPERATIONS, track_latency
from .certificate_manager import CertificateManager, SshKeyType, blob_fingerprint
from .registry import ProfileRegistry
from .types import (
    ConnectionHealth,
    SftpAuthMethod,
    SftpFile,
    SftpPartnerProfile,
    SftpResult,
    TransportProtocol,
    utcnow,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class SftpConnection:
    """An authenticated SSH transport and its SFTP channel."""

    transport: Any
    sftp: Any

    def close(self) -> None:
        try:
            self.sftp.close()
        finally:
            self.transport.close()


ConnectionFactory = Callable[[SftpPartnerProfile, Optional[paramiko.PKey], float], SftpConnection]


def pattern_to_regex(pattern: str) -> "re.Pattern[str]":
    """Anchored regex for a ``*``/``?`` glob."""
    escaped = re.escape(pattern).replace(r"\*", ".*").replace(r"\?", ".")
    return re.compile(f"^{escaped}$")


def render_filename(template: Optional[str], filename: str) -> str:
    """Expand ``{timestamp}``, ``{uuid}`` and ``{filename}`` in an outbound filename template."""
    if not template:
        return filename
    return (
        template.replace("{timestamp}", utcnow().strftime("%Y%m%d%H%M%S%f"))
        .replace("{uuid}", str(uuid.uuid4()))
        .replace("{filename}", filename)
    )


def verify_host_key(profile: SftpPartnerProfile, key: paramiko.PKey) -> None:
    """Compare the server key with the profile's pinned ``SHA256:`` fingerprint."""
    connection = profile.connection
    expected = connection.host_key_fingerprint
    actual = blob_fingerprint(key.asbytes())

    if not expected:
        if connection.strict_host_key_checking:
            raise TransportFailure(
                f"Strict host key checking enabled but no fingerprint configured for {connection.host}",
                retryable=False,
                protocol="sftp",
            )
        logger.warning(f"Accepting unpinned host key {actual} for {connection.host}")
        return

    if expected.strip() != actual:
        message = f"Host key mismatch for {connection.host}: expected {expected}, got {actual}"
        if connection.strict_host_key_checking:
            raise TransportFailure(message, retryable=False, protocol="sftp")
        logger.warning(message)


def open_connection(
    profile: SftpPartnerProfile, private_key: Optional[paramiko.PKey], timeout: float
) -> SftpConnection:
    """Connect, check the host key and authenticate."""
    connection = profile.connection
    sock = socket.create_connection((connection.host, connection.port), timeout=timeout)
    transport = paramiko.Transport(sock)
    transport.banner_timeout = timeout
    try:
        transport.start_client(timeout=timeout)
        verify_host_key(profile, transport.get_remote_server_key())

        if connection.auth_method in (SftpAuthMethod.KEY, SftpAuthMethod.KEY_AND_PASSWORD):
            transport.auth_publickey(connection.username, private_key)
        if connection.auth_method in (SftpAuthMethod.PASSWORD, SftpAuthMethod.KEY_AND_PASSWORD):
            if not transport.is_authenticated():
                transport.auth_password(connection.username, connection.password or "")

        sftp = paramiko.SFTPClient.from_transport(transport)
        sftp.get_channel().settimeout(timeout)
    except Exception:
        transport.close()
        raise
    return SftpConnection(transport=transport, sftp=sftp)


def _exists(sftp: Any, path: str) -> bool:
    try:
        sftp.stat(path)
    except FileNotFoundError:
        return False
    return True


def _same_content(sftp: Any, path: str, content: bytes) -> bool:
    """True when the remote file at ``path`` holds exactly ``content``."""
    if sftp.stat(path).st_size != len(content):
        return False
    with sftp.open(path, "rb") as handle:
        return handle.read() == content


def _makedirs(sftp: Any, directory: str) -> None:
    current = "/" if directory.startswith("/") else ""
    for part in [p for p in directory.split("/") if p]:
        current = posixpath.join(current, part) if current else part
        if not _exists(sftp, current):
            sftp.mkdir(current)


class SftpClient:
    """SFTP transport with partner registry."""

    def __init__(
        self,
        certificate_manager: Optional[CertificateManager] = None,
        config: Optional[SftpConfig] = None,
        partners: Optional[ProfileRegistry[SftpPartnerProfile]] = None,
        connection_factory: Optional[ConnectionFactory] = None,
    ):
        """
        Initialize SFTP client.

        Args:
            certificate_manager: Source of private keys for key authentication
            config: SFTP defaults (timeout, temp suffix)
            partners: Shared partner registry
            connection_factory: Opens a connection for a profile; replaced in tests
        """
        self.certificate_manager = certificate_manager
        self.config = config or get_config().sftp
        self.partners: ProfileRegistry[SftpPartnerProfile] = partners or ProfileRegistry(
            "SFTP partner", lambda p: p.partner_id
        )
        self._connection_factory = connection_factory or open_connection

    # ------------------------------------------------------------------
    # Partner registry
    # ------------------------------------------------------------------

    def register_partner(self, profile: SftpPartnerProfile) -> None:
        self.partners.register(profile)

    def get_partner(self, partner_id: str) -> Optional[SftpPartnerProfile]:
        return self.partners.get(partner_id)

    def remove_partner(self, partner_id: str) -> bool:
        return self.partners.remove(partner_id)

    def list_partners(self) -> List[SftpPartnerProfile]:
        return self.partners.list()

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    def _active_partner(self, partner_id: str) -> SftpPartnerProfile:
        partner = self.partners.get(partner_id)
        if partner is None:
            raise PartnerNotFound(partner_id)
        if not partner.is_active:
            raise PartnerInactive(partner_id)
        return partner

    def _timeout(self, partner: SftpPartnerProfile) -> float:
        return (partner.connection.timeout_ms or self.config.timeout_ms) / 1000

    def _operation_timeout(self, partner: SftpPartnerProfile) -> float:
        return max(self.config.operation_timeout_ms / 1000, self._timeout(partner))

    def _load_private_key(self, partner: SftpPartnerProfile) -> Optional[paramiko.PKey]:
        connection = partner.connection
        if connection.auth_method == SftpAuthMethod.PASSWORD:
            return None
        if not connection.private_key_id:
            raise CredentialError(f"Partner {partner.partner_id} uses key auth but has no private_key_id")
        if self.certificate_manager is None:
            raise CredentialError("Key authentication requires a certificate manager")

        key_pair = self.certificate_manager.get_ssh_key_pair(connection.private_key_id)
        pem = self.certificate_manager.get_ssh_private_key(connection.private_key_id)
        if key_pair is None or pem is None:
            raise CredentialError("SSH private key not found", credential_id=connection.private_key_id)

        key_class = paramiko.Ed25519Key if key_pair.key_type == SshKeyType.ED25519 else paramiko.RSAKey
        try:
            return key_class.from_private_key(io.StringIO(pem), password=connection.passphrase)
        except paramiko.SSHException as e:
            raise CredentialError(f"Could not load SSH private key: {e}", credential_id=connection.private_key_id)

    async def _execute(self, partner: SftpPartnerProfile, action: Callable[[Any], T]) -> T:
        private_key = self._load_private_key(partner)
        timeout = self._timeout(partner)

        def run() -> T:
            connection = self._connection_factory(partner, private_key, timeout)
            try:
                return action(connection.sftp)
            finally:
                connection.close()

        return await asyncio.wait_for(asyncio.to_thread(run), timeout=self._operation_timeout(partner))

    async def _operation(
        self,
        operation: str,
        partner_id: str,
        remote_path: str,
        action: Callable[[SftpPartnerProfile], Any],
    ) -> SftpResult:
        """Run ``action`` and fold every failure into an unsuccessful result."""
        start = time.monotonic()
        with log_context(partner_id=partner_id, component="sftp_client", operation=operation):
            try:
                partner = self._active_partner(partner_id)
                with track_latency("sftp", operation):
                    result: SftpResult = await action(partner)
                result.duration_ms = int((time.monotonic() - start) * 1000)
                SFTP_OPERATIONS.labels(operation=operation, status="success").inc()
                return result

            except asyncio.TimeoutError:
                error, retryable = "Operation timed out", True
            except (FileNotFoundError, PermissionError) as e:
                error, retryable = f"{type(e).__name__}: {e}", False
            except paramiko.AuthenticationException as e:
                error, retryable = f"Authentication failed: {e}", False
            except TransportFailure as e:
                error, retryable = e.message, e.retryable
            except EdiBridgeException as e:
                error, retryable = e.message, False
            except (paramiko.SSHException, OSError, EOFError) as e:
                error, retryable = f"Connection error: {e}", True
            except Exception as e:
                logger.exception(f"Unexpected error during SFTP {operation}")
                error, retryable = f"Unexpected error: {e}", False

            SFTP_OPERATIONS.labels(operation=operation, status="failure").inc()
            logger.error(f"SFTP {operation} failed: {error}", extra={"category": LogCategory.TRANSPORT})
            return SftpResult(
                success=False,
                operation=operation,
                remote_path=remote_path,
                error=error,
                retryable=retryable,
                duration_ms=int((time.monotonic() - start) * 1000),
            )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def upload(
        self,
        partner_id: str,
        content: bytes,
        filename: str,
        directory: Optional[str] = None,
        create_directories: bool = False,
    ) -> SftpResult:
        """
        Upload ``content`` to the partner's outbound directory.

        The outbound filename template, when set, is expanded around
        ``filename``. With ``use_temp_file`` the data lands under a hidden
        temporary name first and is renamed into place.
        """

        async def action(partner: SftpPartnerProfile) -> SftpResult:
            outbound = partner.outbound
            target_dir = directory or (outbound.directory if outbound else None) or "/"
            name = render_filename(outbound.filename_template if outbound else None, filename)
            remote_path = posixpath.join(target_dir, name)
            use_temp = outbound.use_temp_file if outbound else False
            overwrite = outbound.overwrite_existing if outbound else False

            logger.info(f"Uploading file to {partner.connection.host}:{remote_path}")

            def transfer(sftp: Any) -> None:
                if create_directories:
                    _makedirs(sftp, target_dir)
                if not overwrite and _exists(sftp, remote_path):
                    # An earlier attempt that outlived its timeout may have landed the file
                    if _same_content(sftp, remote_path, content):
                        logger.info(f"Identical file already at {remote_path}; treating upload as done")
                        return
                    raise TransportFailure(
                        f"Destination already exists: {remote_path}", retryable=False, protocol="sftp"
                    )
                write_path = remote_path
                if use_temp:
                    write_path = posixpath.join(target_dir, f".{name}.{uuid.uuid4()}{self.config.temp_suffix}")
                with sftp.open(write_path, "wb") as handle:
                    handle.write(content)
                if write_path != remote_path:
                    if overwrite:
                        sftp.posix_rename(write_path, remote_path)
                    else:
                        sftp.rename(write_path, remote_path)

            await self._execute(partner, transfer)
            return SftpResult(
                success=True,
                operation="upload",
                remote_path=remote_path,
                filename=name,
                size=len(content),
            )

        return await self._operation("upload", partner_id, "", action)

    async def download(self, partner_id: str, remote_path: str) -> SftpResult:
        async def action(partner: SftpPartnerProfile) -> SftpResult:
            logger.info(f"Downloading file from {partner.connection.host}:{remote_path}")

            def transfer(sftp: Any) -> bytes:
                with sftp.open(remote_path, "rb") as handle:
                    return handle.read()

            content = await self._execute(partner, transfer)
            return SftpResult(
                success=True,
                operation="download",
                remote_path=remote_path,
                filename=posixpath.basename(remote_path),
                content=content,
                size=len(content),
            )

        return await self._operation("download", partner_id, remote_path, action)

    async def list(
        self,
        partner_id: str,
        directory: Optional[str] = None,
        pattern: Optional[str] = None,
        include_hidden: bool = False,
    ) -> SftpResult:
        """List a directory, filtered by glob ``pattern`` (the inbound pattern by default)."""

        async def action(partner: SftpPartnerProfile) -> SftpResult:
            inbound = partner.inbound
            target_dir = directory or (inbound.directory if inbound else None) or "/"
            glob = pattern if pattern is not None else (inbound.filename_pattern if inbound else None)
            matcher = pattern_to_regex(glob) if glob else None

            logger.info(f"Listing files in {partner.connection.host}:{target_dir}")
            entries = await self._execute(partner, lambda sftp: sftp.listdir_attr(target_dir))

            files: List[SftpFile] = []
            for entry in entries:
                name = entry.filename
                if name in (".", "..") or (name.startswith(".") and not include_hidden):
                    continue
                if matcher and not matcher.match(name):
                    continue
                mode = entry.st_mode or 0
                files.append(
                    SftpFile(
                        filename=name,
                        path=posixpath.join(target_dir, name),
                        size=entry.st_size or 0,
                        modified_at=datetime.fromtimestamp(entry.st_mtime or 0, tz=timezone.utc),
                        is_directory=stat.S_ISDIR(mode),
                        permissions=stat.filemode(mode) if mode else None,
                    )
                )

            return SftpResult(success=True, operation="list", remote_path=target_dir, files=files)

        return await self._operation("list", partner_id, directory or "", action)

    async def delete(self, partner_id: str, remote_path: str) -> SftpResult:
        async def action(partner: SftpPartnerProfile) -> SftpResult:
            logger.info(f"Deleting file {partner.connection.host}:{remote_path}")
            await self._execute(partner, lambda sftp: sftp.remove(remote_path))
            return SftpResult(success=True, operation="delete", remote_path=remote_path)

        return await self._operation("delete", partner_id, remote_path, action)

    async def move(
        self,
        partner_id: str,
        source_path: str,
        destination_path: str,
        overwrite: bool = False,
    ) -> SftpResult:
        """Rename ``source_path``; an existing destination is an error unless ``overwrite``."""

        async def action(partner: SftpPartnerProfile) -> SftpResult:
            logger.info(f"Moving file {partner.connection.host}:{source_path} -> {destination_path}")

            def transfer(sftp: Any) -> None:
                if _exists(sftp, destination_path):
                    if not overwrite:
                        raise TransportFailure(
                            f"Destination already exists: {destination_path}",
                            retryable=False,
                            protocol="sftp",
                        )
                    sftp.posix_rename(source_path, destination_path)
                else:
                    sftp.rename(source_path, destination_path)

            await self._execute(partner, transfer)
            return SftpResult(
                success=True,
                operation="move",
                remote_path=source_path,
                destination_path=destination_path,
            )

        return await self._operation("move", partner_id, source_path, action)

    async def test_connection(self, partner_id: str) -> ConnectionHealth:
        """Open and close a connection, reporting latency."""
        start = time.monotonic()
        result = await self._operation(
            "test_connection",
            partner_id,
            "",
            lambda partner: self._check_connection(partner),
        )
        latency_ms = int((time.monotonic() - start) * 1000)
        if result.success:
            return ConnectionHealth(partner_id, TransportProtocol.SFTP, True, latency_ms=latency_ms)
        return ConnectionHealth(
            partner_id, TransportProtocol.SFTP, False, latency_ms=latency_ms, error=result.error
        )

    async def _check_connection(self, partner: SftpPartnerProfile) -> SftpResult:
        cwd = await self._execute(partner, lambda sftp: sftp.normalize("."))
        return SftpResult(success=True, operation="test_connection", remote_path=cwd or "")
