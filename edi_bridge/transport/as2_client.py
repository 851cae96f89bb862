"""
EDI Bridge - AS2 Client

Outbound AS2 (Applicability Statement 2) messaging:
- Partner profile registry
- MIC calculation over the outbound payload
- Optional zlib compression and external S/MIME signing/encryption
- Synchronous MDN validation and asynchronous MDN correlation
"""

import asyncio
import hmac
import threading
import time
import zlib
from email.utils import formatdate
from typing import Dict, List, Optional, Tuple
import logging

import aiohttp

from ..core.config import As2Config, get_config
from ..core.exceptions import (
    EdiBridgeException,
    PartnerInactive,
    PartnerNotFound,
    TransportFailure,
)
from ..core.structured_logging import LogCategory, log_context
from ..monitoring.metrics import AS2_MDN, AS2_MESSAGES, track_latency
from .mdn import (
    calculate_mic,
    generate_message_id,
    mic_algorithm_from_name,
    parse_mdn,
    verify_mic,
)
from .registry import ProfileRegistry
from .security import SecurityProvider
from .types import (
    As2Mdn,
    As2PartnerProfile,
    As2SendResult,
    CompressionAlgorithm,
    ConnectionHealth,
    HttpAuthType,
    MdnMode,
    MicAlgorithm,
    PendingMdn,
    TransportProtocol,
)

logger = logging.getLogger(__name__)

COMPRESSED_CONTENT_TYPE = "application/pkcs7-mime; smime-type=compressed-data"


class As2Client:
    """AS2 sender with partner registry and MDN handling."""

    def __init__(
        self,
        config: Optional[As2Config] = None,
        session: Optional[aiohttp.ClientSession] = None,
        security: Optional[SecurityProvider] = None,
        partners: Optional[ProfileRegistry[As2PartnerProfile]] = None,
    ):
        self.config = config or get_config().as2
        self.security = security
        self.partners: ProfileRegistry[As2PartnerProfile] = partners or ProfileRegistry(
            "AS2 partner", lambda p: p.partner_id
        )
        self._session = session
        self._pending: Dict[str, PendingMdn] = {}
        self._pending_lock = threading.RLock()

    # ------------------------------------------------------------------
    # Partner registry
    # ------------------------------------------------------------------

    def register_partner(self, profile: As2PartnerProfile) -> None:
        self.partners.register(profile)

    def get_partner(self, partner_id: str) -> Optional[As2PartnerProfile]:
        return self.partners.get(partner_id)

    def find_partner_by_as2_id(self, as2_id: str) -> Optional[As2PartnerProfile]:
        return self.partners.find(lambda p: p.as2_id == as2_id)

    def remove_partner(self, partner_id: str) -> bool:
        return self.partners.remove(partner_id)

    def list_partners(self) -> List[As2PartnerProfile]:
        return self.partners.list()

    # ------------------------------------------------------------------
    # Integrity helpers
    # ------------------------------------------------------------------

    def generate_message_id(self) -> str:
        return generate_message_id(self.config.domain)

    @staticmethod
    def calculate_mic(data: bytes, algorithm: str = "sha256") -> str:
        return calculate_mic(data, algorithm)

    @staticmethod
    def verify_mic(data: bytes, expected_mic: str, algorithm: str = "sha256") -> bool:
        return verify_mic(data, expected_mic, algorithm)

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    def _active_partner(self, partner_id: str) -> As2PartnerProfile:
        partner = self.partners.get(partner_id)
        if partner is None:
            raise PartnerNotFound(partner_id)
        if not partner.is_active:
            raise PartnerInactive(partner_id)
        return partner

    async def send(
        self,
        partner_id: str,
        content: bytes,
        content_type: str,
        subject: Optional[str] = None,
        filename: Optional[str] = None,
        request_mdn: bool = True,
        mdn_mode: Optional[MdnMode] = None,
        sign: bool = False,
        encrypt: bool = False,
        compress: bool = False,
        correlation_id: Optional[str] = None,
    ) -> As2SendResult:
        """
        Send a payload to a trading partner.

        Args:
            partner_id: Registered partner id
            content: Payload bytes
            content_type: MIME type of the payload
            subject: Subject header (defaults to "AS2 Message")
            filename: Optional Content-Disposition filename
            request_mdn: Ask the partner for a receipt
            mdn_mode: Override the partner's MDN mode
            sign: Sign with the partner's signing certificate via the security provider
            encrypt: Encrypt with the partner's encryption certificate
            compress: zlib-compress before signing
            correlation_id: Caller correlation id for logging

        Returns:
            As2SendResult; failures are reported in the result, never raised
        """
        start = time.monotonic()
        message_id = self.generate_message_id()
        mic: Optional[str] = None
        mdn: Optional[As2Mdn] = None
        status: Optional[int] = None

        with log_context(
            partner_id=partner_id,
            message_id=message_id,
            correlation_id=correlation_id,
            component="as2_client",
            operation="send",
        ):
            try:
                partner = self._active_partner(partner_id)
                mode = mdn_mode or partner.mdn_mode

                logger.info(
                    f"Sending AS2 message {message_id} to {partner.as2_id}",
                    extra={"category": LogCategory.TRANSPORT},
                )

                mic = calculate_mic(content, partner.signing_algorithm)
                payload, payload_type = await self._prepare_payload(
                    partner, content, content_type, sign, encrypt, compress
                )
                headers = self._build_headers(
                    message_id, partner, payload_type, subject, filename, request_mdn, mode
                )

                with track_latency("as2", "send"):
                    status, response_headers, body = await self._post(partner, headers, payload)

                if not 200 <= status < 300:
                    raise TransportFailure.from_status(status, "as2")

                if request_mdn and mode == MdnMode.SYNC and body:
                    mdn = parse_mdn(body, response_headers)
                    self._validate_mdn(mdn, message_id, content, mic, partner.signing_algorithm)
                    AS2_MDN.labels(mode="sync", disposition=mdn.disposition.disposition_type).inc()
                elif request_mdn and mode == MdnMode.ASYNC:
                    self._remember_pending(
                        PendingMdn(
                            message_id=message_id,
                            partner_id=partner_id,
                            mic=mic,
                            mic_algorithm=partner.signing_algorithm.value,
                        )
                    )

                duration_ms = int((time.monotonic() - start) * 1000)
                AS2_MESSAGES.labels(direction="outbound", status="success").inc()
                logger.info(f"AS2 message {message_id} sent in {duration_ms}ms")

                return As2SendResult(
                    success=True,
                    message_id=message_id,
                    mic=mic,
                    mdn=mdn,
                    http_status=status,
                    duration_ms=duration_ms,
                )

            except asyncio.TimeoutError:
                error, retryable = "Request timeout", True
            except aiohttp.ClientError as e:
                error, retryable = f"Connection error: {e}", True
            except TransportFailure as e:
                error, retryable = e.message, e.retryable
                status = e.status_code or status
            except EdiBridgeException as e:
                error, retryable = e.message, False
            except Exception as e:
                logger.exception(f"Unexpected error sending AS2 message {message_id}")
                error, retryable = f"Unexpected error: {e}", False

            duration_ms = int((time.monotonic() - start) * 1000)
            AS2_MESSAGES.labels(direction="outbound", status="failure").inc()
            logger.error(f"AS2 send failed for message {message_id}: {error}")

            return As2SendResult(
                success=False,
                message_id=message_id,
                mic=mic,
                mdn=mdn,
                http_status=status,
                error=error,
                retryable=retryable,
                duration_ms=duration_ms,
            )

    async def _prepare_payload(
        self,
        partner: As2PartnerProfile,
        content: bytes,
        content_type: str,
        sign: bool,
        encrypt: bool,
        compress: bool,
    ) -> Tuple[bytes, str]:
        payload, payload_type = content, content_type

        if compress or partner.compression == CompressionAlgorithm.ZLIB:
            payload = zlib.compress(payload)
            payload_type = COMPRESSED_CONTENT_TYPE

        if sign and partner.signing_certificate_id:
            if self.security is None:
                logger.warning(f"No security provider configured; sending {partner.partner_id} unsigned")
            else:
                secured = await self.security.sign(
                    payload, payload_type, partner.signing_certificate_id, partner.signing_algorithm.value
                )
                payload, payload_type = secured.content, secured.content_type

        if encrypt and partner.encryption_certificate_id:
            if self.security is None:
                logger.warning(f"No security provider configured; sending {partner.partner_id} unencrypted")
            else:
                secured = await self.security.encrypt(payload, partner.encryption_certificate_id)
                payload, payload_type = secured.content, secured.content_type

        return payload, payload_type

    def _build_headers(
        self,
        message_id: str,
        partner: As2PartnerProfile,
        content_type: str,
        subject: Optional[str],
        filename: Optional[str],
        request_mdn: bool,
        mode: MdnMode,
    ) -> Dict[str, str]:
        headers = {
            "Content-Type": content_type,
            "AS2-Version": "1.2",
            "AS2-From": self.config.as2_id,
            "AS2-To": partner.as2_id,
            "Message-ID": f"<{message_id}>",
            "Subject": subject or "AS2 Message",
            "Date": formatdate(usegmt=True),
            "MIME-Version": "1.0",
            "User-Agent": self.config.user_agent,
        }

        if filename:
            headers["Content-Disposition"] = f'attachment; filename="{filename}"'

        if request_mdn:
            headers["Disposition-Notification-To"] = self.config.mdn_email
            # The micalg option tells the receiver which digest to return
            options = f"signed-receipt-micalg=optional, {partner.signing_algorithm.value}"
            if partner.request_signed_mdn:
                options = f"signed-receipt-protocol=optional, pkcs7-signature; {options}"
            headers["Disposition-Notification-Options"] = options
            if mode == MdnMode.ASYNC and partner.mdn_async_url:
                headers["Receipt-Delivery-Option"] = partner.mdn_async_url

        auth = partner.http_auth
        if auth is not None:
            if auth.auth_type == HttpAuthType.BASIC:
                headers["Authorization"] = aiohttp.BasicAuth(
                    auth.username or "", auth.password or ""
                ).encode()
            elif auth.auth_type == HttpAuthType.BEARER:
                headers["Authorization"] = f"Bearer {auth.token}"

        headers.update(partner.http_headers)
        return headers

    async def _post(
        self, partner: As2PartnerProfile, headers: Dict[str, str], payload: bytes
    ) -> Tuple[int, Dict[str, str], bytes]:
        timeout = aiohttp.ClientTimeout(total=(partner.timeout_ms or self.config.timeout_ms) / 1000)
        if self._session is not None:
            return await self._do_post(self._session, partner.target_url, headers, payload, timeout)
        async with aiohttp.ClientSession() as session:
            return await self._do_post(session, partner.target_url, headers, payload, timeout)

    @staticmethod
    async def _do_post(
        session: aiohttp.ClientSession,
        url: str,
        headers: Dict[str, str],
        payload: bytes,
        timeout: aiohttp.ClientTimeout,
    ) -> Tuple[int, Dict[str, str], bytes]:
        async with session.post(url, data=payload, headers=headers, timeout=timeout) as response:
            body = await response.read()
            response_headers = {k.lower(): v for k, v in response.headers.items()}
            return response.status, response_headers, body

    def _validate_mdn(
        self,
        mdn: As2Mdn,
        message_id: str,
        content: bytes,
        mic: str,
        algorithm: MicAlgorithm,
    ) -> None:
        if mdn.original_message_id and mdn.original_message_id != message_id:
            logger.warning(
                f"MDN original message id mismatch: expected {message_id}, "
                f"got {mdn.original_message_id}"
            )

        if mdn.disposition.failed:
            text = mdn.disposition.modifier_text or mdn.human_readable or "Unknown error"
            raise TransportFailure(f"MDN indicates failure: {text}", retryable=False, protocol="as2")

        if not mdn.mic:
            return

        # The receiver may answer with another digest than the one requested
        returned_algorithm = mic_algorithm_from_name(mdn.mic_algorithm) or algorithm
        expected = mic
        if returned_algorithm != algorithm:
            logger.info(
                f"MDN for {message_id} uses {returned_algorithm.value} instead of {algorithm.value}"
            )
            expected = calculate_mic(content, returned_algorithm)

        if not hmac.compare_digest(mdn.mic.encode(), expected.encode()):
            raise TransportFailure(
                "MDN MIC does not match the MIC of the sent content",
                retryable=False,
                protocol="as2",
            )

    # ------------------------------------------------------------------
    # Asynchronous MDN
    # ------------------------------------------------------------------

    def _remember_pending(self, pending: PendingMdn) -> None:
        with self._pending_lock:
            self._pending[pending.message_id] = pending
        logger.info(f"Awaiting asynchronous MDN for {pending.message_id}")

    def get_pending_mdn(self, message_id: str) -> Optional[PendingMdn]:
        with self._pending_lock:
            return self._pending.get(message_id)

    def list_pending_mdns(self) -> List[PendingMdn]:
        with self._pending_lock:
            return list(self._pending.values())

    def handle_async_mdn(self, headers: Dict[str, str], body: bytes) -> Optional[PendingMdn]:
        """
        Correlate an asynchronous receipt with the message it acknowledges.

        The entry leaves the pending map once resolved.

        Returns:
            The resolved pending entry, or None if the receipt names no
            message awaiting one
        """
        mdn = parse_mdn(body, headers)

        with self._pending_lock:
            pending = self._pending.pop(mdn.original_message_id, None)
            if pending is None:
                logger.warning(f"Asynchronous MDN for unknown message {mdn.original_message_id!r}")
                return None
            pending.mdn = mdn

        disposition = mdn.disposition.disposition_type
        returned_algorithm = mic_algorithm_from_name(mdn.mic_algorithm)
        if returned_algorithm is not None and returned_algorithm.value != pending.mic_algorithm:
            disposition = "mic-mismatch"
            logger.error(
                f"Asynchronous MDN for {pending.message_id} uses {returned_algorithm.value}, "
                f"expected {pending.mic_algorithm}"
            )
        elif mdn.mic and not hmac.compare_digest(mdn.mic.encode(), pending.mic.encode()):
            disposition = "mic-mismatch"
            logger.error(f"Asynchronous MDN MIC mismatch for {pending.message_id}")
        elif mdn.disposition.failed:
            logger.error(
                f"Asynchronous MDN reports failure for {pending.message_id}: "
                f"{mdn.disposition.modifier_text or mdn.human_readable}"
            )
        else:
            logger.info(f"Asynchronous MDN received for {pending.message_id}")

        AS2_MDN.labels(mode="async", disposition=disposition).inc()
        return pending

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def test_connection(self, partner_id: str) -> ConnectionHealth:
        """Report the partner's profile state without sending a request."""
        partner = self.partners.get(partner_id)
        if partner is None:
            return ConnectionHealth(
                partner_id, TransportProtocol.AS2, False, error=f"Partner not found: {partner_id}"
            )
        if not partner.is_active:
            return ConnectionHealth(
                partner_id, TransportProtocol.AS2, False, error=f"Partner is inactive: {partner_id}"
            )
        return ConnectionHealth(partner_id, TransportProtocol.AS2, True, latency_ms=0)
