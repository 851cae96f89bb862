"""
Tests for the 856 Ship Notice parser and generator.
"""

from decimal import Decimal

from edi_bridge.x12.codec import decode
from edi_bridge.x12.codes import HierarchicalLevelCode
from edi_bridge.x12.ship_notice import (
    Packaging,
    ShipNoticeGenerator,
    ShipNoticeParser,
    ShippedQuantity,
)
from edi_bridge.x12.segments import IssueSeverity

SAMPLE_856 = (
    "ST*856*0001~"
    "BSN*00*SHIP-1*20240105*1030*0001~"
    "DTM*011*20240105~"
    "HL*1**S~"
    "TD5**2*UPSN*M~"
    "REF*BM*BOL-1~"
    "N1*ST*Store*92*S1~"
    "N3*1 Main~"
    "HL*2*1*O~"
    "PRF*PO-1001~"
    "HL*3*2*P~"
    "TD1*CTN*2****G*12.5*LB~"
    "MAN*GM*00012345~"
    "HL*4*3*I~"
    "LIN*1*VP*SKU-1~"
    "SN1**10*EA~"
    "PID*F****Blue widget~"
    "SER*SN001~"
    "REF*SN*SN002~"
    "CTT*4~"
    "SE*21*0001~"
)


def parse(text):
    return ShipNoticeParser().parse(decode(text)[0])


class TestShipNoticeParser:
    """856 parsing."""

    def test_parse_hierarchy(self):
        """Every HL level is read with its level-specific body."""
        notice, errors = parse(SAMPLE_856)

        assert errors == []
        assert notice.shipment_id == "SHIP-1"
        assert notice.beginning.shipment_time == "1030"
        assert notice.beginning.hierarchical_structure_code == "0001"
        assert [d.qualifier for d in notice.dates] == ["011"]
        assert [level.level_code for level in notice.levels] == ["S", "O", "P", "I"]

        shipment = notice.levels_of("S")[0]
        assert shipment.parent_id is None
        assert shipment.level == HierarchicalLevelCode.SHIPMENT
        assert shipment.shipment.carrier.carrier_code == "UPSN"
        assert shipment.shipment.carrier.transportation_method_code == "M"
        assert shipment.shipment.references[0].reference_id == "BOL-1"
        assert shipment.shipment.parties[0].address.address_line1 == "1 Main"

        order = notice.levels_of("O")[0]
        assert order.parent_id == "1"
        assert order.order.purchase_order_number == "PO-1001"

        pack = notice.levels_of("P")[0]
        assert pack.pack.packaging == Packaging("CTN", 2, "G", Decimal("12.5"), "LB")
        assert pack.pack.marks[0].marks == "00012345"

        item = notice.levels_of("I")[0].item
        assert item.line_number == "1"
        assert item.product_ids[0].product_id == "SKU-1"
        assert item.shipped == ShippedQuantity(Decimal("10"), "EA")
        assert item.descriptions == ("Blue widget",)
        assert item.all_serial_numbers == ("SN001", "SN002")

        assert notice.totals.line_item_count == 4

    def test_children_of(self):
        """Parent links can be followed downwards."""
        notice, _ = parse(SAMPLE_856)

        assert [level.hl_id for level in notice.children_of("2")] == ["3"]

    def test_missing_bsn_is_single_fatal_error(self):
        """Without BSN no document is produced."""
        notice, errors = parse("ST*856*0001~HL*1**S~SE*3*0001~")

        assert notice is None
        assert [e.code for e in errors] == ["MISSING_BSN"]
        assert errors[0].severity == IssueSeverity.FATAL

    def test_no_hl_segments_is_error(self):
        """A ship notice without any HL is reported."""
        notice, errors = parse("ST*856*0001~BSN*00*SHIP-1*20240105~SE*3*0001~")

        assert notice.levels == ()
        assert [e.code for e in errors] == ["NO_HL_SEGMENTS"]

    def test_orphan_hl_warns(self):
        """A parent id that was never seen is a warning, the level is still kept."""
        notice, errors = parse("ST*856*0001~BSN*00*SHIP-1*20240105~HL*1**S~HL*2*9*O~SE*5*0001~")

        assert len(notice.levels) == 2
        assert [e.code for e in errors] == ["ORPHAN_HL"]
        assert errors[0].severity == IssueSeverity.WARNING
        assert errors[0].position == 3

    def test_segment_for_other_level_is_unexpected(self):
        """LIN is not part of an order level."""
        notice, errors = parse(
            "ST*856*0001~BSN*00*SHIP-1*20240105~HL*1**S~HL*2*1*O~LIN*1*VP*X~SE*6*0001~"
        )

        assert notice.levels_of("O")[0].order.purchase_order_number is None
        assert [e.code for e in errors] == ["UNEXPECTED_SEGMENT"]

    def test_hl_after_summary_is_unexpected(self):
        """HL after CTT is ignored with a warning."""
        notice, errors = parse(
            "ST*856*0001~BSN*00*SHIP-1*20240105~HL*1**S~CTT*1~HL*2*1*O~SE*6*0001~"
        )

        assert len(notice.levels) == 1
        assert [e.code for e in errors] == ["UNEXPECTED_SEGMENT"]


class TestShipNoticeGenerator:
    """856 generation."""

    def test_generated_set_is_valid(self):
        """The generated envelope passes validation with the right count."""
        notice, _ = parse(SAMPLE_856)

        ts = ShipNoticeGenerator().generate(notice)

        assert ts.validate() == []
        assert ts.trailer.segment_count == 21
        assert ts.segments[0].segment_id == "BSN"

    def test_parse_of_generated_notice_matches(self):
        """Parsing generated output yields the same document."""
        notice, _ = parse(SAMPLE_856)

        again, errors = ShipNoticeParser().parse(ShipNoticeGenerator().generate(notice))

        assert errors == []
        assert again == notice
