"""
X12 Segment Model

Generic segment and transaction-set envelope shared by every document
parser and generator.

Structure of one transaction set:
- ST  Transaction Set Header (set code, control number)
- ... data segments
- SE  Transaction Set Trailer (segment count including ST and SE, control number)
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple


class IssueSeverity(str, Enum):
    """Severity of a parse issue."""

    FATAL = "fatal"      # no document could be produced
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class ParseIssue:
    """A structural problem found while reading a transaction set."""

    code: str
    message: str
    segment_id: Optional[str] = None
    severity: IssueSeverity = IssueSeverity.ERROR
    position: Optional[int] = None  # 1-based index of the segment within ST..SE

    @property
    def is_fatal(self) -> bool:
        return self.severity == IssueSeverity.FATAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "segment_id": self.segment_id,
            "severity": self.severity.value,
            "position": self.position,
        }


def _render(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


@dataclass(frozen=True)
class Segment:
    """
    One X12 segment: a segment id plus ordered element values.

    Element positions are 1-based. A position past the end of ``elements``
    is absent, which is distinct from a present empty element.
    """

    segment_id: str
    elements: Tuple[str, ...] = ()

    @classmethod
    def build(cls, segment_id: str, *values: Any) -> "Segment":
        """Create a segment from typed values, dropping trailing empty elements."""
        rendered = [_render(v) for v in values]
        while rendered and rendered[-1] == "":
            rendered.pop()
        return cls(segment_id, tuple(rendered))

    def element(self, position: int) -> str:
        """Element value at a 1-based position; absent positions read as empty."""
        if position < 1 or position > len(self.elements):
            return ""
        return self.elements[position - 1]

    def has_element(self, position: int) -> bool:
        return 1 <= position <= len(self.elements)

    def __len__(self) -> int:
        return len(self.elements)


@dataclass(frozen=True)
class TransactionSetHeader:
    """ST segment."""

    code: str
    control_number: str
    implementation_reference: Optional[str] = None

    def to_segment(self) -> Segment:
        return Segment.build(
            "ST", self.code, self.control_number, self.implementation_reference
        )


@dataclass(frozen=True)
class TransactionSetTrailer:
    """SE segment."""

    segment_count: int
    control_number: str

    def to_segment(self) -> Segment:
        return Segment.build("SE", self.segment_count, self.control_number)


@dataclass(frozen=True)
class TransactionSet:
    """A transaction set: header, ordered data segments and trailer."""

    header: TransactionSetHeader
    segments: Tuple[Segment, ...]
    trailer: TransactionSetTrailer

    @classmethod
    def build(
        cls,
        code: str,
        control_number: str,
        segments: Iterable[Segment],
        implementation_reference: Optional[str] = None,
    ) -> "TransactionSet":
        """Assemble a set, computing the trailer count as 2 + data segment count."""
        data = tuple(segments)
        return cls(
            header=TransactionSetHeader(code, control_number, implementation_reference),
            segments=data,
            trailer=TransactionSetTrailer(len(data) + 2, control_number),
        )

    @classmethod
    def from_segments(cls, segments: List[Segment]) -> "TransactionSet":
        """
        Frame a list that starts with ST and ends with SE.

        Counts are taken as read so that ``validate`` can report mismatches.
        """
        if not segments or segments[0].segment_id != "ST":
            raise ValueError("Transaction set must start with ST")
        if segments[-1].segment_id != "SE":
            raise ValueError("Transaction set must end with SE")

        st, se = segments[0], segments[-1]
        count_text = se.element(1)
        try:
            count = int(count_text)
        except ValueError:
            count = -1

        return cls(
            header=TransactionSetHeader(st.element(1), st.element(2), st.element(3) or None),
            segments=tuple(segments[1:-1]),
            trailer=TransactionSetTrailer(count, se.element(2)),
        )

    @property
    def code(self) -> str:
        return self.header.code

    @property
    def control_number(self) -> str:
        return self.header.control_number

    def to_segments(self) -> List[Segment]:
        """All segments including the ST header and SE trailer."""
        return [self.header.to_segment(), *self.segments, self.trailer.to_segment()]

    def find(self, segment_id: str) -> Optional[Segment]:
        for segment in self.segments:
            if segment.segment_id == segment_id:
                return segment
        return None

    def validate(self) -> List[ParseIssue]:
        """Check the envelope invariants."""
        issues: List[ParseIssue] = []

        if not self.header.code:
            issues.append(
                ParseIssue("MISSING_SET_CODE", "ST01 transaction set code is empty", "ST")
            )

        expected = len(self.segments) + 2
        if self.trailer.segment_count != expected:
            issues.append(
                ParseIssue(
                    "SEGMENT_COUNT_MISMATCH",
                    f"SE01 count {self.trailer.segment_count} does not match "
                    f"actual segment count {expected}",
                    "SE",
                )
            )

        if self.trailer.control_number != self.header.control_number:
            issues.append(
                ParseIssue(
                    "CONTROL_NUMBER_MISMATCH",
                    f"SE02 control number {self.trailer.control_number} does not match "
                    f"ST02 {self.header.control_number}",
                    "SE",
                )
            )

        return issues
