"""
EDI Bridge - AS2 Server

Inbound AS2 message handling:
- Header validation and local identity resolution
- Decryption, signature verification and decompression
- Handler dispatch
- MDN generation
"""

import inspect
import re
import zlib
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Union
import logging

from ..core.config import As2Config, get_config
from ..core.exceptions import ValidationError
from ..core.structured_logging import LogCategory, log_context
from ..monitoring.metrics import AS2_MDN, AS2_MESSAGES
from .as2_client import As2Client
from .mdn import (
    build_mdn,
    calculate_mic,
    generate_message_id,
    mic_algorithm_from_name,
    strip_angle_brackets,
)
from .registry import ProfileRegistry
from .security import SecurityProvider
from .types import (
    As2LocalProfile,
    As2Mdn,
    As2PartnerProfile,
    As2ReceiveResult,
    MdnDisposition,
    MicAlgorithm,
)

logger = logging.getLogger(__name__)

REQUIRED_HEADERS = ("as2-from", "as2-to", "message-id")

_FILENAME_RE = re.compile(r'filename\*?=(?:"([^"]+)"|([^\s;]+))', re.IGNORECASE)
_MICALG_RE = re.compile(r"signed-receipt-micalg\s*=\s*[\w-]+\s*,\s*([\w-]+)", re.IGNORECASE)


@dataclass
class As2InboundMessage:
    """A received message after security processing, as given to handlers."""

    message_id: str
    as2_from: str
    as2_to: str
    content: bytes
    content_type: str
    subject: Optional[str] = None
    filename: Optional[str] = None
    signed: bool = False
    encrypted: bool = False
    signature_verified: Optional[bool] = None
    decompressed: bool = False
    partner_id: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)


MessageHandler = Callable[[As2InboundMessage], Union[Awaitable[None], None]]


def normalize_headers(headers: Dict[str, str]) -> Dict[str, str]:
    return {k.lower(): v for k, v in headers.items()}


def extract_filename(headers: Dict[str, str]) -> Optional[str]:
    disposition = headers.get("content-disposition")
    if not disposition:
        return None
    match = _FILENAME_RE.search(disposition)
    if not match:
        return None
    return match.group(1) or match.group(2)


def requested_mic_algorithm(headers: Dict[str, str]) -> MicAlgorithm:
    """MIC algorithm named in Disposition-Notification-Options; sha256 otherwise."""
    match = _MICALG_RE.search(headers.get("disposition-notification-options", ""))
    if match:
        algorithm = mic_algorithm_from_name(match.group(1))
        if algorithm is not None:
            return algorithm
        logger.warning(f"Unsupported MIC algorithm requested: {match.group(1)}")
    return MicAlgorithm.SHA256


class As2Server:
    """Receiver for inbound AS2 messages."""

    def __init__(
        self,
        client: As2Client,
        config: Optional[As2Config] = None,
        security: Optional[SecurityProvider] = None,
        local_profiles: Optional[ProfileRegistry[As2LocalProfile]] = None,
    ):
        self.client = client
        self.config = config or get_config().as2
        self.security = security
        self.local_profiles: ProfileRegistry[As2LocalProfile] = local_profiles or ProfileRegistry(
            "AS2 local", lambda p: p.as2_id
        )
        self._handlers: List[MessageHandler] = []

    def register_local_profile(self, profile: As2LocalProfile) -> None:
        self.local_profiles.register(profile)

    def get_local_profile(self, as2_id: str) -> Optional[As2LocalProfile]:
        return self.local_profiles.get(as2_id)

    def remove_local_profile(self, as2_id: str) -> bool:
        return self.local_profiles.remove(as2_id)

    def register_message_handler(self, handler: MessageHandler) -> None:
        self._handlers.append(handler)
        logger.info("Registered AS2 message handler")

    async def receive(self, headers: Dict[str, str], body: bytes) -> As2ReceiveResult:
        """
        Receive and process one inbound AS2 message.

        Args:
            headers: HTTP request headers (any case)
            body: HTTP request body

        Returns:
            As2ReceiveResult carrying the MDN to return, if one was requested
        """
        normalized = normalize_headers(headers)
        message_id = strip_angle_brackets(normalized.get("message-id", ""))
        as2_from = normalized.get("as2-from", "").strip()
        as2_to = normalized.get("as2-to", "").strip()

        with log_context(message_id=message_id, component="as2_server", operation="receive"):
            logger.info(
                f"Receiving AS2 message {message_id} from {as2_from} to {as2_to}",
                extra={"category": LogCategory.TRANSPORT},
            )

            local: Optional[As2LocalProfile] = None
            try:
                missing = [name for name in REQUIRED_HEADERS if not normalized.get(name)]
                if missing:
                    raise ValidationError(f"Missing required AS2 headers: {', '.join(missing)}")

                local = self.local_profiles.get(as2_to)
                if local is None:
                    raise ValidationError(f"Unknown AS2 recipient: {as2_to}", field_name="as2-to")
                if not local.is_active:
                    raise ValidationError(f"AS2 recipient is inactive: {as2_to}", field_name="as2-to")

                partner = self.client.find_partner_by_as2_id(as2_from)
                if partner is None:
                    logger.warning(f"Unknown AS2 sender: {as2_from} - processing without partner profile")

                inbound = await self._process(message_id, as2_from, as2_to, body, normalized, local, partner)

            except Exception as e:
                error = e.message if isinstance(e, ValidationError) else str(e)
                logger.error(f"AS2 receive failed for message {message_id}: {error}")
                AS2_MESSAGES.labels(direction="inbound", status="failure").inc()

                result = As2ReceiveResult(
                    success=False,
                    message_id=message_id,
                    as2_from=as2_from,
                    as2_to=as2_to,
                    error=error,
                )
                if normalized.get("disposition-notification-to") and as2_from and as2_to and local:
                    self._attach_mdn(
                        result,
                        MdnDisposition(
                            disposition_type="failed",
                            modifier="error",
                            modifier_text=error,
                        ),
                        mic=None,
                        headers=normalized,
                        human_readable=error,
                    )
                return result

            await self._notify(inbound)

            result = As2ReceiveResult(
                success=True,
                message_id=message_id,
                as2_from=as2_from,
                as2_to=as2_to,
                content=inbound.content,
                content_type=inbound.content_type,
                subject=inbound.subject,
                filename=inbound.filename,
                signed=inbound.signed,
                encrypted=inbound.encrypted,
                compressed=inbound.decompressed,
            )

            if normalized.get("disposition-notification-to"):
                algorithm = requested_mic_algorithm(normalized)
                self._attach_mdn(
                    result,
                    MdnDisposition(),
                    mic=calculate_mic(inbound.content, algorithm),
                    headers=normalized,
                    mic_algorithm=algorithm,
                )

            AS2_MESSAGES.labels(direction="inbound", status="success").inc()
            logger.info(f"AS2 message {message_id} received ({len(inbound.content)} bytes)")
            return result

    async def _process(
        self,
        message_id: str,
        as2_from: str,
        as2_to: str,
        body: bytes,
        headers: Dict[str, str],
        local: As2LocalProfile,
        partner: Optional[As2PartnerProfile],
    ) -> As2InboundMessage:
        content = body
        content_type = headers.get("content-type", "application/octet-stream")
        signed = encrypted = decompressed = False
        verified: Optional[bool] = None

        if "enveloped-data" in content_type:
            if not local.decryption_certificate_id:
                raise ValidationError("No decryption certificate configured")
            if self.security is None:
                raise ValidationError("Encrypted message received but no security provider is configured")
            opened = await self.security.decrypt(content, local.decryption_certificate_id)
            content, content_type = opened.content, opened.content_type
            encrypted = True

        if "signed-data" in content_type or "pkcs7-signature" in content_type or "multipart/signed" in content_type:
            if self.security is None:
                raise ValidationError("Signed message received but no security provider is configured")
            certificate_id = partner.signing_certificate_id if partner else None
            unwrapped = await self.security.verify(content, certificate_id)
            content, content_type = unwrapped.content, unwrapped.content_type
            verified = unwrapped.verified
            signed = True
            if not verified:
                logger.warning("Signature not verified - no partner certificate configured")

        if "compressed-data" in content_type:
            try:
                content = zlib.decompress(content)
            except zlib.error as e:
                raise ValidationError(f"Could not decompress message: {e}")
            content_type = "application/octet-stream"
            decompressed = True

        return As2InboundMessage(
            message_id=message_id,
            as2_from=as2_from,
            as2_to=as2_to,
            content=content,
            content_type=content_type,
            subject=headers.get("subject"),
            filename=extract_filename(headers),
            signed=signed,
            encrypted=encrypted,
            signature_verified=verified,
            decompressed=decompressed,
            partner_id=partner.partner_id if partner else None,
            headers=headers,
        )

    async def _notify(self, inbound: As2InboundMessage) -> None:
        for handler in list(self._handlers):
            try:
                outcome = handler(inbound)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.error(f"Message handler error: {e}", exc_info=True)

    def _attach_mdn(
        self,
        result: As2ReceiveResult,
        disposition: MdnDisposition,
        mic: Optional[str],
        headers: Dict[str, str],
        mic_algorithm: MicAlgorithm = MicAlgorithm.SHA256,
        human_readable: Optional[str] = None,
    ) -> As2Mdn:
        # The receipt travels back, so its from/to are the original's swapped
        mdn, mdn_headers, mdn_body = build_mdn(
            message_id=generate_message_id(self.config.domain),
            original_message_id=result.message_id,
            as2_from=result.as2_to,
            as2_to=result.as2_from,
            disposition=disposition,
            mic=mic,
            mic_algorithm=mic_algorithm,
            reporting_ua=self.config.user_agent,
            human_readable=human_readable,
        )
        result.mdn = mdn
        result.mdn_headers = mdn_headers
        result.mdn_body = mdn_body

        async_url = headers.get("receipt-delivery-option")
        mode = "async" if async_url else "sync"
        if async_url:
            logger.info(f"MDN for {result.message_id} requested at {async_url}")
        AS2_MDN.labels(mode=mode, disposition=disposition.disposition_type).inc()
        return mdn
