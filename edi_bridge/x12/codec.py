"""
X12 Segment Text Codec

Reads and writes ST..SE transaction sets as delimited text. Interchange and
functional group envelopes (ISA/GS/GE/IEA) are skipped on read and never
written.
"""

from dataclasses import dataclass, field
from typing import List, Optional
import logging

from edi_bridge.core.exceptions import StructuralParseError
from edi_bridge.x12.segments import ParseIssue, Segment, TransactionSet

logger = logging.getLogger(__name__)

ENVELOPE_SEGMENTS = frozenset({"ISA", "GS", "GE", "IEA"})


@dataclass(frozen=True)
class Delimiters:
    """Separator characters for one interchange."""

    element: str = "*"
    segment: str = "~"
    component: str = ":"
    repetition: str = "^"

    @classmethod
    def from_isa(cls, text: str) -> Optional["Delimiters"]:
        """
        Detect delimiters from a leading ISA segment.

        The element separator is the character after ``ISA``; ISA16 holds the
        component separator and is followed by the segment terminator.
        """
        stripped = text.lstrip()
        if not stripped.startswith("ISA") or len(stripped) < 4:
            return None

        element = stripped[3]
        parts = stripped.split(element, 17)
        if len(parts) < 17 or len(parts[16]) < 2:
            return None

        repetition = parts[11] if len(parts[11]) == 1 and not parts[11].isalnum() else "^"
        return cls(
            element=element,
            segment=parts[16][1],
            component=parts[16][0],
            repetition=repetition,
        )


DEFAULT_DELIMITERS = Delimiters()


def _pad_control(value: str) -> str:
    return value.zfill(4) if value.isdigit() else value


def encode_segment(segment: Segment, delimiters: Delimiters = DEFAULT_DELIMITERS) -> str:
    """Render one segment without its terminator, dropping trailing empty elements."""
    elements = list(segment.elements)
    while elements and elements[-1] == "":
        elements.pop()
    return delimiters.element.join([segment.segment_id, *elements])


def encode(
    transaction_set: TransactionSet,
    delimiters: Delimiters = DEFAULT_DELIMITERS,
    line_separator: str = "",
) -> str:
    """
    Write one transaction set as ST..SE text.

    ST02 and SE02 control numbers are zero-padded to four digits.
    """
    segments = transaction_set.to_segments()
    st, se = segments[0], segments[-1]
    st = Segment(st.segment_id, (st.element(1), _pad_control(st.element(2)), *st.elements[2:]))
    se = Segment(se.segment_id, (se.element(1), _pad_control(se.element(2))))

    terminator = delimiters.segment + line_separator
    lines = [encode_segment(s, delimiters) for s in [st, *segments[1:-1], se]]
    return terminator.join(lines) + terminator


def split_segments(text: str, delimiters: Delimiters = DEFAULT_DELIMITERS) -> List[Segment]:
    """Split delimited text into segments, tolerating line breaks around terminators."""
    segments = []
    for raw in text.split(delimiters.segment):
        raw = raw.strip("\r\n\t ")
        if not raw:
            continue
        parts = raw.split(delimiters.element)
        segments.append(Segment(parts[0].strip(), tuple(parts[1:])))
    return segments


@dataclass
class DecodedBatch:
    """Transaction sets recovered from one input and the framing problems met."""

    sets: List[TransactionSet] = field(default_factory=list)
    issues: List[ParseIssue] = field(default_factory=list)


def _unterminated(frame: List[Segment], closed_by: str) -> ParseIssue:
    control_number = frame[0].element(2)
    return ParseIssue(
        "MISSING_SE",
        f"Transaction set {control_number} is missing its SE trailer (closed by {closed_by})",
        "SE",
    )


def decode_batch(text: str, delimiters: Optional[Delimiters] = None) -> DecodedBatch:
    """
    Read every ST..SE transaction set out of ``text``, recovering from bad frames.

    A set left open by a following ST, an envelope segment or the end of
    input is dropped and reported as a ``MISSING_SE`` issue; the sets around
    it are kept.

    Args:
        text: Raw X12 text, with or without an interchange envelope
        delimiters: Explicit delimiters; detected from ISA when omitted
    """
    if delimiters is None:
        delimiters = Delimiters.from_isa(text) or DEFAULT_DELIMITERS

    batch = DecodedBatch()
    current: Optional[List[Segment]] = None

    for segment in split_segments(text, delimiters):
        sid = segment.segment_id

        if sid in ENVELOPE_SEGMENTS:
            if current is not None:
                batch.issues.append(_unterminated(current, sid))
                current = None
            continue

        if sid == "ST":
            if current is not None:
                batch.issues.append(_unterminated(current, f"ST {segment.element(2)}"))
            current = [segment]
            continue

        if current is None:
            logger.warning(f"Ignoring segment {sid} outside of an ST..SE frame")
            continue

        current.append(segment)
        if sid == "SE":
            batch.sets.append(TransactionSet.from_segments(current))
            current = None

    if current is not None:
        batch.issues.append(_unterminated(current, "end of input"))

    for issue in batch.issues:
        logger.warning(issue.message)
    return batch


def decode(text: str, delimiters: Optional[Delimiters] = None) -> List[TransactionSet]:
    """
    Read every complete ST..SE transaction set out of ``text``.

    Broken frames are skipped as in ``decode_batch``.

    Returns:
        Transaction sets in document order

    Raises:
        StructuralParseError: If no complete ST..SE frame can be formed
    """
    batch = decode_batch(text, delimiters)
    if not batch.sets:
        if batch.issues:
            raise StructuralParseError(batch.issues[0].message, segment_id="SE")
        raise StructuralParseError("No ST..SE transaction set found in input", segment_id="ST")
    return batch.sets
