"""
EDI Bridge - AS2 Receipts and Integrity

Message id generation, MIC calculation, and building and parsing of
message disposition notifications (MDNs). MDN bodies are read and written
with the standard ``email`` MIME machinery.
"""

import base64
import hashlib
import hmac
import re
import uuid
from email import message_from_bytes, policy
from email.message import Message
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Dict, Optional, Tuple, Union
import logging

from .types import As2Mdn, MdnDisposition, MicAlgorithm

logger = logging.getLogger(__name__)

PROCESSED_TEXT = "Your message was received and processed."
REPORTING_UA = "EDI-Bridge AS2"

_DISPOSITION_RE = re.compile(
    r"^\s*(?P<action>[\w-]+)/(?P<sending>[\w-]+)\s*;\s*(?P<type>[\w-]+)"
    r"(?:\s*/\s*(?P<modifier>[\w-]+)(?:\s*:\s*(?P<text>.*))?)?",
    re.IGNORECASE | re.DOTALL,
)


def generate_message_id(domain: str) -> str:
    """Unique AS2 message id of the form ``<uuid4>@<domain>``."""
    return f"{uuid.uuid4()}@{domain}"


def strip_angle_brackets(message_id: str) -> str:
    return message_id.strip().lstrip("<").rstrip(">")


def _digest(algorithm: Union[MicAlgorithm, str]) -> str:
    return MicAlgorithm(algorithm).value


def mic_algorithm_from_name(name: Optional[str]) -> Optional[MicAlgorithm]:
    """Map a micalg name such as ``sha-256`` or ``SHA1``; None when unknown."""
    if not name:
        return None
    try:
        return MicAlgorithm(name.strip().lower().replace("-", ""))
    except ValueError:
        return None


def calculate_mic(data: bytes, algorithm: Union[MicAlgorithm, str] = MicAlgorithm.SHA256) -> str:
    """Base64 digest of ``data`` with sha1/sha256/sha384/sha512."""
    digest = hashlib.new(_digest(algorithm), data).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_mic(
    data: bytes, expected_mic: str, algorithm: Union[MicAlgorithm, str] = MicAlgorithm.SHA256
) -> bool:
    """Constant-time comparison of ``data``'s MIC against ``expected_mic``."""
    if not expected_mic:
        return False
    calculated = calculate_mic(data, algorithm)
    return hmac.compare_digest(calculated.encode("ascii"), expected_mic.strip().encode("ascii", "replace"))


def parse_disposition(text: str) -> MdnDisposition:
    """Parse a ``Disposition:`` value; unparseable text reads as processed."""
    match = _DISPOSITION_RE.match(text or "")
    if not match:
        logger.warning(f"Could not parse MDN disposition: {text!r}")
        return MdnDisposition()
    return MdnDisposition(
        action_mode=match.group("action"),
        sending_mode=match.group("sending"),
        disposition_type=match.group("type").lower(),
        modifier=match.group("modifier").lower() if match.group("modifier") else None,
        modifier_text=match.group("text").strip() if match.group("text") else None,
    )


def build_mdn(
    message_id: str,
    original_message_id: str,
    as2_from: str,
    as2_to: str,
    disposition: MdnDisposition,
    mic: Optional[str] = None,
    mic_algorithm: Union[MicAlgorithm, str] = MicAlgorithm.SHA256,
    reporting_ua: str = REPORTING_UA,
    human_readable: Optional[str] = None,
) -> Tuple[As2Mdn, Dict[str, str], bytes]:
    """
    Build a multipart/report MDN.

    ``as2_from``/``as2_to`` are the MDN's own direction, i.e. the swap of the
    original message.

    Returns:
        The MDN record, its HTTP headers and its body
    """
    text = human_readable or PROCESSED_TEXT

    fields = [
        f"Reporting-UA: {reporting_ua}",
        f"Original-Message-ID: <{original_message_id}>",
        f"Final-Recipient: rfc822; {as2_from}",
        f"Original-Recipient: rfc822; {as2_from}",
        f"Disposition: {disposition.render()}",
    ]
    algorithm_name = _digest(mic_algorithm)
    if mic:
        fields.append(f"Received-Content-MIC: {mic}, {algorithm_name}")

    report = MIMEMultipart("report")
    report.set_param("report-type", "disposition-notification")
    report.attach(MIMEText(text + "\r\n", "plain", "us-ascii"))
    notification = MIMEBase("message", "disposition-notification")
    notification.set_payload("\r\n".join(fields) + "\r\n")
    report.attach(notification)

    raw = report.as_bytes(policy=policy.HTTP)
    _, _, body = raw.partition(b"\r\n\r\n")

    headers = {
        "Content-Type": report["Content-Type"],
        "AS2-Version": "1.2",
        "AS2-From": as2_from,
        "AS2-To": as2_to,
        "Message-ID": f"<{message_id}>",
        "MIME-Version": "1.0",
    }

    mdn = As2Mdn(
        message_id=message_id,
        original_message_id=original_message_id,
        as2_from=as2_from,
        as2_to=as2_to,
        disposition=disposition,
        mic=mic,
        mic_algorithm=algorithm_name if mic else None,
        human_readable=text,
        signed=False,
        raw=body,
    )
    return mdn, headers, body


def _notification_fields(part: Message) -> Message:
    """The header block of a message/disposition-notification part."""
    payload = part.get_payload()
    if isinstance(payload, list) and payload:
        return payload[0]
    raw = part.get_payload(decode=True) or b""
    return message_from_bytes(raw.strip() + b"\r\n\r\n")


def parse_mdn(body: bytes, headers: Optional[Dict[str, str]] = None) -> As2Mdn:
    """
    Parse a received MDN.

    Args:
        body: HTTP body of the receipt
        headers: HTTP headers of the receipt (any case)

    Returns:
        The parsed As2Mdn
    """
    lowered = {k.lower(): v for k, v in (headers or {}).items()}
    content_type = lowered.get("content-type", "")

    if content_type:
        raw = f"Content-Type: {content_type}\r\n\r\n".encode("ascii", "replace") + body
    else:
        raw = body
    message = message_from_bytes(raw)

    human_readable: Optional[str] = None
    fields: Optional[Message] = None
    for part in message.walk():
        if fields is not None and part is fields:
            continue
        ctype = part.get_content_type()
        if ctype == "message/disposition-notification":
            fields = _notification_fields(part)
        elif ctype == "text/plain" and human_readable is None:
            payload = part.get_payload(decode=True) or b""
            human_readable = payload.decode(part.get_content_charset() or "us-ascii", "replace").strip()

    mic = None
    mic_algorithm = None
    disposition = MdnDisposition()
    original_message_id = ""

    if fields is not None:
        disposition = parse_disposition(fields.get("Disposition", ""))
        original_message_id = strip_angle_brackets(fields.get("Original-Message-ID", ""))
        received_mic = fields.get("Received-Content-MIC")
        if received_mic:
            mic_part, _, alg_part = received_mic.partition(",")
            mic = mic_part.strip() or None
            mic_algorithm = alg_part.strip().lower() or None
    else:
        logger.warning("MDN has no message/disposition-notification part")

    return As2Mdn(
        message_id=strip_angle_brackets(lowered.get("message-id", "")),
        original_message_id=original_message_id,
        as2_from=lowered.get("as2-from", ""),
        as2_to=lowered.get("as2-to", ""),
        disposition=disposition,
        mic=mic,
        mic_algorithm=mic_algorithm,
        human_readable=human_readable,
        signed="signed" in content_type.lower(),
        raw=body,
    )
