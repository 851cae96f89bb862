"""
X12 997 Functional Acknowledgment

Typed model, parser and generator for the 997 transaction set.

Segment layout:
- AK1  Functional Group Response Header (required)
- AK2 loop [0..n]: AK2, AK3 loop (AK3, AK4*)*, AK5
- AK9  Functional Group Response Trailer (required)
"""

from dataclasses import dataclass
from typing import ClassVar, List, Optional, Tuple
import logging

from edi_bridge.x12.codes import AcknowledgmentCode
from edi_bridge.x12.common import (
    OUTSIDE,
    ElementReader,
    LoopState,
    ParseResult,
    in_loop,
    unexpected,
)
from edi_bridge.x12.segments import IssueSeverity, ParseIssue, Segment, TransactionSet

logger = logging.getLogger(__name__)

COMPONENT_SEPARATOR = ":"


@dataclass(frozen=True)
class GroupResponseHeader:
    """AK1 segment."""

    functional_id_code: str
    group_control_number: str
    version: Optional[str] = None


@dataclass(frozen=True)
class ElementNote:
    """AK4 segment: one element in error."""

    position: str
    error_code: str
    data_element_reference: Optional[str] = None
    bad_data_copy: Optional[str] = None

    @property
    def element_position(self) -> Optional[int]:
        head = self.position.split(COMPONENT_SEPARATOR)[0]
        return int(head) if head.isdigit() else None

    @property
    def component_position(self) -> Optional[int]:
        parts = self.position.split(COMPONENT_SEPARATOR)
        if len(parts) > 1 and parts[1].isdigit():
            return int(parts[1])
        return None


@dataclass(frozen=True)
class SegmentNote:
    """AK3 loop: one segment in error with its element notes."""

    segment_id: str
    position: Optional[int] = None
    loop_id: Optional[str] = None
    error_code: Optional[str] = None
    elements: Tuple[ElementNote, ...] = ()


@dataclass(frozen=True)
class SetResponseTrailer:
    """AK5 segment."""

    ack_code: str
    syntax_error_codes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SetResponse:
    """AK2 loop: the response for one received transaction set."""

    transaction_set_code: str
    control_number: str
    implementation_reference: Optional[str] = None
    notes: Tuple[SegmentNote, ...] = ()
    trailer: Optional[SetResponseTrailer] = None

    @property
    def accepted(self) -> bool:
        if self.trailer is None:
            return False
        code = AcknowledgmentCode.from_code(self.trailer.ack_code)
        return bool(code and code.is_accepted)


@dataclass(frozen=True)
class GroupResponseTrailer:
    """AK9 segment."""

    ack_code: str
    included_count: Optional[int] = None
    received_count: Optional[int] = None
    accepted_count: Optional[int] = None
    syntax_error_codes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class FunctionalAcknowledgment:
    """A parsed 997 Functional Acknowledgment."""

    transaction_set_code: ClassVar[str] = "997"

    control_number: str
    group_response: GroupResponseHeader
    group_trailer: GroupResponseTrailer
    set_responses: Tuple[SetResponse, ...] = ()

    @property
    def ack_code(self) -> str:
        return self.group_trailer.ack_code


def _codes(reader: ElementReader, segment: Segment, start: int, end: int) -> Tuple[str, ...]:
    return tuple(
        reader.text(segment, pos) for pos in range(start, end + 1) if reader.text(segment, pos)
    )


class _SetResponseLoop:
    def __init__(self, ak2: Segment, reader: ElementReader):
        self.ak2 = ak2
        self.reader = reader
        self.notes: List[SegmentNote] = []
        self.note: Optional[Segment] = None
        self.note_elements: List[ElementNote] = []
        self.trailer: Optional[SetResponseTrailer] = None

    def _close_note(self) -> None:
        if self.note is None:
            return
        r, ak3 = self.reader, self.note
        self.notes.append(
            SegmentNote(
                segment_id=r.text(ak3, 1),
                position=r.integer(ak3, 2),
                loop_id=r.optional(ak3, 3),
                error_code=r.optional(ak3, 4),
                elements=tuple(self.note_elements),
            )
        )
        self.note = None
        self.note_elements = []

    def accept(self, segment: Segment) -> bool:
        sid = segment.segment_id
        r = self.reader
        if sid == "AK3":
            self._close_note()
            self.note = segment
        elif sid == "AK4":
            if self.note is None:
                return False
            self.note_elements.append(
                ElementNote(
                    position=r.text(segment, 1),
                    data_element_reference=r.optional(segment, 2),
                    error_code=r.text(segment, 3),
                    bad_data_copy=r.optional(segment, 4),
                )
            )
        elif sid == "AK5":
            if self.trailer is not None:
                return False
            self._close_note()
            self.trailer = SetResponseTrailer(r.text(segment, 1), _codes(r, segment, 2, 6))
        else:
            return False
        return True

    def close(self) -> SetResponse:
        self._close_note()
        r, ak2 = self.reader, self.ak2
        return SetResponse(
            transaction_set_code=r.text(ak2, 1),
            control_number=r.text(ak2, 2),
            implementation_reference=r.optional(ak2, 3),
            notes=tuple(self.notes),
            trailer=self.trailer,
        )


class FunctionalAcknowledgmentParser:
    """997 Functional Acknowledgment parser."""

    def __init__(self):
        self.errors: List[ParseIssue] = []

    def _check_ack_code(self, code: str, segment_id: str, position: int) -> None:
        if AcknowledgmentCode.from_code(code) is None:
            self.errors.append(
                ParseIssue(
                    "INVALID_ACK_CODE",
                    f"{segment_id}01 acknowledgment code {code!r} is not recognized",
                    segment_id,
                    IssueSeverity.WARNING,
                    position,
                )
            )

    def parse(self, transaction_set: TransactionSet) -> ParseResult[FunctionalAcknowledgment]:
        self.errors = []

        ak1 = transaction_set.find("AK1")
        ak9 = transaction_set.find("AK9")
        if ak1 is None:
            return ParseResult.fatal("MISSING_AK1", "AK1 segment is required for 997", "AK1")
        if ak9 is None:
            return ParseResult.fatal("MISSING_AK9", "AK9 segment is required for 997", "AK9")

        reader = ElementReader(self.errors)
        state: LoopState = OUTSIDE
        responses: List[SetResponse] = []
        loop: Optional[_SetResponseLoop] = None

        for position, segment in enumerate(transaction_set.segments, 1):
            sid = segment.segment_id

            if sid == "AK1":
                if segment is not ak1:
                    self.errors.append(unexpected(segment, state, position))
                continue

            if sid == "AK2":
                if loop is not None:
                    responses.append(loop.close())
                loop = _SetResponseLoop(segment, reader)
                state = in_loop("AK2")
                continue

            if sid == "AK9":
                if loop is not None:
                    responses.append(loop.close())
                    loop = None
                if segment is not ak9:
                    self.errors.append(unexpected(segment, state, position))
                else:
                    self._check_ack_code(reader.text(segment, 1), "AK9", position)
                state = OUTSIDE
                continue

            if state.is_in("AK2") and loop is not None and loop.accept(segment):
                if sid == "AK5":
                    self._check_ack_code(reader.text(segment, 1), "AK5", position)
                continue

            self.errors.append(unexpected(segment, state, position))

        if loop is not None:
            responses.append(loop.close())

        for response in responses:
            if response.trailer is None:
                self.errors.append(
                    ParseIssue(
                        "MISSING_AK5",
                        f"AK2 loop for set {response.control_number} has no AK5",
                        "AK5",
                    )
                )

        document = FunctionalAcknowledgment(
            control_number=transaction_set.control_number,
            group_response=GroupResponseHeader(
                functional_id_code=reader.text(ak1, 1),
                group_control_number=reader.text(ak1, 2),
                version=reader.optional(ak1, 3),
            ),
            group_trailer=GroupResponseTrailer(
                ack_code=reader.text(ak9, 1),
                included_count=reader.integer(ak9, 2),
                received_count=reader.integer(ak9, 3),
                accepted_count=reader.integer(ak9, 4),
                syntax_error_codes=_codes(reader, ak9, 5, 9),
            ),
            set_responses=tuple(responses),
        )
        return ParseResult(document, tuple(self.errors))


class FunctionalAcknowledgmentGenerator:
    """997 Functional Acknowledgment generator."""

    def generate(self, ack: FunctionalAcknowledgment) -> TransactionSet:
        header = ack.group_response
        segments: List[Segment] = [
            Segment.build("AK1", header.functional_id_code, header.group_control_number, header.version)
        ]

        for response in ack.set_responses:
            segments.append(
                Segment.build(
                    "AK2",
                    response.transaction_set_code,
                    response.control_number,
                    response.implementation_reference,
                )
            )
            for note in response.notes:
                segments.append(
                    Segment.build("AK3", note.segment_id, note.position, note.loop_id, note.error_code)
                )
                for element in note.elements:
                    segments.append(
                        Segment.build(
                            "AK4",
                            element.position,
                            element.data_element_reference,
                            element.error_code,
                            element.bad_data_copy,
                        )
                    )
            if response.trailer:
                segments.append(
                    Segment.build("AK5", response.trailer.ack_code, *response.trailer.syntax_error_codes)
                )

        trailer = ack.group_trailer
        segments.append(
            Segment.build(
                "AK9",
                trailer.ack_code,
                trailer.included_count,
                trailer.received_count,
                trailer.accepted_count,
                *trailer.syntax_error_codes,
            )
        )

        return TransactionSet.build(
            FunctionalAcknowledgment.transaction_set_code, ack.control_number, segments
        )
