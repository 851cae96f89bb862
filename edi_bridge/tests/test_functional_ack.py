"""
Tests for the 997 Functional Acknowledgment parser and generator.
"""

from edi_bridge.x12.codec import decode, encode
from edi_bridge.x12.functional_ack import (
    ElementNote,
    FunctionalAcknowledgment,
    FunctionalAcknowledgmentGenerator,
    FunctionalAcknowledgmentParser,
    GroupResponseHeader,
    GroupResponseTrailer,
    SegmentNote,
    SetResponse,
    SetResponseTrailer,
)
from edi_bridge.x12.segments import IssueSeverity

SAMPLE_997 = (
    "ST*997*0001~"
    "AK1*PO*7*004010~"
    "AK2*850*0001~"
    "AK3*N1*4**8~"
    "AK4*2:1*93*1*BAD~"
    "AK5*R*5~"
    "AK2*850*0002~"
    "AK5*A~"
    "AK9*P*2*2*1~"
    "SE*10*0001~"
)


def parse(text):
    return FunctionalAcknowledgmentParser().parse(decode(text)[0])


class TestFunctionalAcknowledgmentParser:
    """997 parsing."""

    def test_parse_set_responses(self):
        """AK2 loops carry their AK3/AK4 notes and AK5 trailer."""
        ack, errors = parse(SAMPLE_997)

        assert errors == []
        assert ack.group_response == GroupResponseHeader("PO", "7", "004010")
        assert ack.ack_code == "P"
        assert ack.group_trailer.included_count == 2
        assert ack.group_trailer.accepted_count == 1

        rejected, accepted = ack.set_responses
        assert rejected.control_number == "0001"
        assert not rejected.accepted
        assert rejected.trailer.syntax_error_codes == ("5",)
        note = rejected.notes[0]
        assert note.segment_id == "N1"
        assert note.position == 4
        assert note.error_code == "8"
        element = note.elements[0]
        assert element.element_position == 2
        assert element.component_position == 1
        assert element.data_element_reference == "93"
        assert element.bad_data_copy == "BAD"

        assert accepted.accepted
        assert accepted.notes == ()

    def test_missing_ak1_is_single_fatal_error(self):
        """AK1 is required."""
        ack, errors = parse("ST*997*0001~AK9*A*1*1*1~SE*3*0001~")

        assert ack is None
        assert [e.code for e in errors] == ["MISSING_AK1"]
        assert errors[0].severity == IssueSeverity.FATAL

    def test_missing_ak9_is_single_fatal_error(self):
        """AK9 is required."""
        ack, errors = parse("ST*997*0001~AK1*PO*7~SE*3*0001~")

        assert ack is None
        assert [e.code for e in errors] == ["MISSING_AK9"]

    def test_ak2_without_ak5_is_reported(self):
        """An AK2 loop that never gets its AK5 is flagged."""
        ack, errors = parse("ST*997*0001~AK1*PO*7~AK2*850*0001~AK9*R*1*1*0~SE*5*0001~")

        assert ack.set_responses[0].trailer is None
        assert [e.code for e in errors] == ["MISSING_AK5"]

    def test_unknown_ack_code_warns(self):
        """An AK9 code outside the code list is kept with a warning."""
        ack, errors = parse("ST*997*0001~AK1*PO*7~AK9*Z*1*1*1~SE*4*0001~")

        assert ack.ack_code == "Z"
        assert [e.code for e in errors] == ["INVALID_ACK_CODE"]
        assert errors[0].severity == IssueSeverity.WARNING

    def test_ak4_without_ak3_is_unexpected(self):
        """Element notes need an open segment note."""
        _, errors = parse("ST*997*0001~AK1*PO*7~AK2*850*0001~AK4*1**7~AK5*A~AK9*A*1*1*1~SE*7*0001~")

        assert [e.code for e in errors] == ["UNEXPECTED_SEGMENT"]


class TestFunctionalAcknowledgmentGenerator:
    """997 generation."""

    def test_generate_rejection(self):
        """Notes and trailers are written in AK order."""
        ack = FunctionalAcknowledgment(
            control_number="0005",
            group_response=GroupResponseHeader("SH", "12"),
            group_trailer=GroupResponseTrailer("R", 1, 1, 0),
            set_responses=(
                SetResponse(
                    transaction_set_code="856",
                    control_number="0009",
                    notes=(SegmentNote("HL", 3, error_code="8", elements=(ElementNote("2", "7"),)),),
                    trailer=SetResponseTrailer("R", ("5",)),
                ),
            ),
        )

        text = encode(FunctionalAcknowledgmentGenerator().generate(ack))

        assert text == (
            "ST*997*0005~AK1*SH*12~AK2*856*0009~AK3*HL*3**8~AK4*2**7~AK5*R*5~AK9*R*1*1*0~SE*8*0005~"
        )

    def test_parse_of_generated_ack_matches(self):
        """Parsing generated output yields the same document."""
        ack, _ = parse(SAMPLE_997)

        again, errors = FunctionalAcknowledgmentParser().parse(
            FunctionalAcknowledgmentGenerator().generate(ack)
        )

        assert errors == []
        assert again == ack
