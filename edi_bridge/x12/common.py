"""
Shared X12 building blocks

Segment-level models reused across transaction sets, typed element
extraction, the loop state used by every loop parser, and the parse
result container.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Generic, Iterator, List, Optional, Tuple, TypeVar

from edi_bridge.x12.segments import IssueSeverity, ParseIssue, Segment

T = TypeVar("T")


@dataclass(frozen=True)
class LoopState:
    """
    Position of a forward-pass loop parser.

    ``loop_id`` is None while outside every loop (``Outside``) and names the
    open loop otherwise (``InLoop(loop_id)``).
    """

    loop_id: Optional[str] = None

    @property
    def outside(self) -> bool:
        return self.loop_id is None

    def is_in(self, loop_id: str) -> bool:
        return self.loop_id == loop_id


OUTSIDE = LoopState()


def in_loop(loop_id: str) -> LoopState:
    return LoopState(loop_id)


@dataclass(frozen=True)
class ParseResult(Generic[T]):
    """
    Outcome of parsing one transaction set.

    Unpacks as ``document, errors``.
    """

    document: Optional[T]
    errors: Tuple[ParseIssue, ...] = ()

    def __iter__(self) -> Iterator[Any]:
        yield self.document
        yield list(self.errors)

    @property
    def has_fatal(self) -> bool:
        return any(issue.is_fatal for issue in self.errors)

    @property
    def is_clean(self) -> bool:
        """True when a document was produced with no errors (warnings allowed)."""
        return self.document is not None and not any(
            issue.severity != IssueSeverity.WARNING for issue in self.errors
        )

    @classmethod
    def fatal(cls, code: str, message: str, segment_id: str) -> "ParseResult[T]":
        return cls(None, (ParseIssue(code, message, segment_id, IssueSeverity.FATAL),))


class ElementReader:
    """Typed 1-based element extraction that records conversion problems."""

    def __init__(self, issues: List[ParseIssue]):
        self.issues = issues

    def text(self, segment: Segment, position: int) -> str:
        return segment.element(position)

    def optional(self, segment: Segment, position: int) -> Optional[str]:
        return segment.element(position) or None

    def decimal(self, segment: Segment, position: int) -> Optional[Decimal]:
        raw = segment.element(position)
        if not raw:
            return None
        try:
            return Decimal(raw)
        except InvalidOperation:
            self.issues.append(
                ParseIssue(
                    "INVALID_NUMBER",
                    f"{segment.segment_id}{position:02d} is not numeric: {raw!r}",
                    segment.segment_id,
                )
            )
            return None

    def integer(self, segment: Segment, position: int) -> Optional[int]:
        raw = segment.element(position)
        if not raw:
            return None
        try:
            return int(raw)
        except ValueError:
            self.issues.append(
                ParseIssue(
                    "INVALID_NUMBER",
                    f"{segment.segment_id}{position:02d} is not an integer: {raw!r}",
                    segment.segment_id,
                )
            )
            return None

    def pairs(self, segment: Segment, start: int) -> Tuple["ProductId", ...]:
        """Qualifier/value pairs from ``start`` to the end of the segment."""
        result = []
        position = start
        while position < len(segment):
            qualifier = segment.element(position)
            value = segment.element(position + 1)
            if qualifier and value:
                result.append(ProductId(qualifier, value))
            position += 2
        return tuple(result)


def unexpected(segment: Segment, state: LoopState, position: int) -> ParseIssue:
    where = f"loop {state.loop_id}" if state.loop_id else "header"
    return ParseIssue(
        "UNEXPECTED_SEGMENT",
        f"Segment {segment.segment_id} is not expected in {where}; ignored",
        segment.segment_id,
        IssueSeverity.WARNING,
        position,
    )


# ---------------------------------------------------------------------------
# Shared segment models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProductId:
    """Product/service id qualifier and value (PO1, LIN)."""

    qualifier: str
    product_id: str


@dataclass(frozen=True)
class Reference:
    """REF segment."""

    qualifier: str
    reference_id: str
    description: Optional[str] = None

    @classmethod
    def read(cls, segment: Segment, reader: ElementReader) -> "Reference":
        return cls(
            qualifier=reader.text(segment, 1),
            reference_id=reader.text(segment, 2),
            description=reader.optional(segment, 3),
        )

    def to_segment(self) -> Segment:
        return Segment.build("REF", self.qualifier, self.reference_id, self.description)


@dataclass(frozen=True)
class Contact:
    """PER segment."""

    function_code: str
    name: Optional[str] = None
    communication_qualifier: Optional[str] = None
    communication_number: Optional[str] = None

    @classmethod
    def read(cls, segment: Segment, reader: ElementReader) -> "Contact":
        return cls(
            function_code=reader.text(segment, 1),
            name=reader.optional(segment, 2),
            communication_qualifier=reader.optional(segment, 3),
            communication_number=reader.optional(segment, 4),
        )

    def to_segment(self) -> Segment:
        return Segment.build(
            "PER",
            self.function_code,
            self.name,
            self.communication_qualifier,
            self.communication_number,
        )


@dataclass(frozen=True)
class DateTimeReference:
    """DTM segment."""

    qualifier: str
    date: Optional[str] = None
    time: Optional[str] = None

    @classmethod
    def read(cls, segment: Segment, reader: ElementReader) -> "DateTimeReference":
        return cls(
            qualifier=reader.text(segment, 1),
            date=reader.optional(segment, 2),
            time=reader.optional(segment, 3),
        )

    def to_segment(self) -> Segment:
        return Segment.build("DTM", self.qualifier, self.date, self.time)


@dataclass(frozen=True)
class Address:
    """N3 and N4 segments of a party loop."""

    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state_code: Optional[str] = None
    postal_code: Optional[str] = None
    country_code: Optional[str] = None

    def to_segments(self) -> List[Segment]:
        segments = []
        if self.address_line1 or self.address_line2:
            segments.append(Segment.build("N3", self.address_line1, self.address_line2))
        if self.city or self.state_code or self.postal_code or self.country_code:
            segments.append(
                Segment.build(
                    "N4", self.city, self.state_code, self.postal_code, self.country_code
                )
            )
        return segments


@dataclass(frozen=True)
class Party:
    """N1 loop: N1 with optional N3, N4, REF and PER children."""

    entity_id_code: str
    name: Optional[str] = None
    id_code_qualifier: Optional[str] = None
    id_code: Optional[str] = None
    address: Optional[Address] = None
    references: Tuple[Reference, ...] = ()
    contacts: Tuple[Contact, ...] = ()

    def to_segments(self) -> List[Segment]:
        segments = [
            Segment.build(
                "N1", self.entity_id_code, self.name, self.id_code_qualifier, self.id_code
            )
        ]
        if self.address:
            segments.extend(self.address.to_segments())
        segments.extend(ref.to_segment() for ref in self.references)
        segments.extend(contact.to_segment() for contact in self.contacts)
        return segments


@dataclass
class PartyLoop:
    """Accumulates one open N1 loop until its closing segment arrives."""

    n1: Segment
    reader: ElementReader
    address: Dict[str, Optional[str]] = field(default_factory=dict)
    references: List[Reference] = field(default_factory=list)
    contacts: List[Contact] = field(default_factory=list)

    CHILDREN = ("N3", "N4", "REF", "PER")

    def accept(self, segment: Segment) -> bool:
        """Absorb a child segment; False if the segment does not belong to the loop."""
        sid = segment.segment_id
        if sid == "N3":
            self.address["address_line1"] = self.reader.optional(segment, 1)
            self.address["address_line2"] = self.reader.optional(segment, 2)
        elif sid == "N4":
            self.address["city"] = self.reader.optional(segment, 1)
            self.address["state_code"] = self.reader.optional(segment, 2)
            self.address["postal_code"] = self.reader.optional(segment, 3)
            self.address["country_code"] = self.reader.optional(segment, 4)
        elif sid == "REF":
            self.references.append(Reference.read(segment, self.reader))
        elif sid == "PER":
            self.contacts.append(Contact.read(segment, self.reader))
        else:
            return False
        return True

    def close(self) -> Party:
        address = Address(**self.address) if any(self.address.values()) else None
        return Party(
            entity_id_code=self.reader.text(self.n1, 1),
            name=self.reader.optional(self.n1, 2),
            id_code_qualifier=self.reader.optional(self.n1, 3),
            id_code=self.reader.optional(self.n1, 4),
            address=address,
            references=tuple(self.references),
            contacts=tuple(self.contacts),
        )


@dataclass(frozen=True)
class Totals:
    """CTT segment."""

    line_item_count: Optional[int]
    hash_total: Optional[Decimal] = None

    @classmethod
    def read(cls, segment: Segment, reader: ElementReader) -> "Totals":
        return cls(
            line_item_count=reader.integer(segment, 1),
            hash_total=reader.decimal(segment, 2),
        )

    def to_segment(self) -> Segment:
        return Segment.build("CTT", self.line_item_count, self.hash_total)
