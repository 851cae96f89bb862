"""
Tests for the 850 Purchase Order parser and generator.
"""

from decimal import Decimal

from edi_bridge.x12.codec import decode, encode
from edi_bridge.x12.common import Address, DateTimeReference, Party, ProductId, Reference, Totals
from edi_bridge.x12.purchase_order import (
    BeginningSegment,
    ItemDescription,
    LineItem,
    PurchaseOrder,
    PurchaseOrderGenerator,
    PurchaseOrderParser,
)
from edi_bridge.x12.segments import IssueSeverity


def parse(text):
    return PurchaseOrderParser().parse(decode(text)[0])


class TestPurchaseOrderParser:
    """850 parsing."""

    def test_parse_sample_order(self, sample_850):
        """Header, party loop and line items are read into the model."""
        order, errors = parse(sample_850)

        assert errors == []
        assert order.purchase_order_number == "PO-1001"
        assert order.beginning.purpose_code == "00"
        assert order.beginning.order_type_code == "SA"
        assert order.beginning.order_date == "20240101"
        assert order.beginning.release_number is None
        assert order.references == (Reference("DP", "038"),)

        ship_to = order.party("ST")
        assert ship_to.name == "Acme Warehouse"
        assert ship_to.id_code == "WH1"
        assert ship_to.address.city == "Springfield"
        assert ship_to.address.postal_code == "62701"

        assert len(order.line_items) == 2
        first = order.line_items[0]
        assert first.assigned_id == "1"
        assert first.quantity == Decimal("10")
        assert first.unit_of_measure == "EA"
        assert first.unit_price == Decimal("2.50")
        assert first.product_id("VP") == "SKU-1"
        assert first.product_id("UP") == "012345678905"
        assert first.descriptions == (ItemDescription("F", "Blue widget"),)
        assert first.extended_amount == Decimal("25.00")

        assert order.totals == Totals(line_item_count=2)

    def test_missing_beg_is_single_fatal_error(self):
        """Without BEG no document is produced and exactly one fatal issue is returned."""
        order, errors = parse("ST*850*0001~PO1*1*1*EA*1~SE*3*0001~")

        assert order is None
        assert len(errors) == 1
        assert errors[0].code == "MISSING_BEG"
        assert errors[0].severity == IssueSeverity.FATAL

    def test_no_line_items_is_error(self):
        """An order without PO1 still parses but reports the gap."""
        order, errors = parse("ST*850*0001~BEG*00*SA*PO-1**20240101~SE*3*0001~")

        assert order is not None
        assert [e.code for e in errors] == ["NO_LINE_ITEMS"]
        assert errors[0].severity == IssueSeverity.ERROR

    def test_party_after_line_items_is_warned_and_ignored(self):
        """N1 after the PO1 loop started is unexpected."""
        order, errors = parse(
            "ST*850*0001~BEG*00*SA*PO-1**20240101~PO1*1*1*EA*1~N1*BT*Late Party~SE*5*0001~"
        )

        assert order.parties == ()
        assert errors[0].code == "UNEXPECTED_SEGMENT"
        assert errors[0].severity == IssueSeverity.WARNING
        assert errors[0].position == 3

    def test_duplicate_beg_uses_first(self):
        """A second BEG is reported as a warning and ignored."""
        order, errors = parse(
            "ST*850*0001~BEG*00*SA*FIRST**20240101~BEG*00*SA*SECOND**20240102~PO1*1*1*EA*1~SE*5*0001~"
        )

        assert order.purchase_order_number == "FIRST"
        assert [e.code for e in errors] == ["DUPLICATE_SEGMENT"]

    def test_invalid_quantity_reported(self):
        """Non-numeric PO102 is recorded and read as None."""
        order, errors = parse("ST*850*0001~BEG*00*SA*PO-1**20240101~PO1*1*TEN*EA*1~SE*4*0001~")

        assert order.line_items[0].quantity is None
        assert [e.code for e in errors] == ["INVALID_NUMBER"]

    def test_line_item_children_stay_with_their_line(self):
        """PID and DTM attach to the preceding PO1."""
        order, _ = parse(
            "ST*850*0001~BEG*00*SA*PO-1**20240101~"
            "PO1*1*1*EA*1~PID*F****First~"
            "PO1*2*1*EA*1~DTM*002*20240201~"
            "SE*7*0001~"
        )

        first, second = order.line_items
        assert [d.description for d in first.descriptions] == ["First"]
        assert first.dates == ()
        assert second.dates == (DateTimeReference("002", "20240201"),)


class TestPurchaseOrderGenerator:
    """850 generation."""

    def test_generate_sample_order(self):
        """The generated set has BEG first and a correct trailer."""
        order = PurchaseOrder(
            control_number="0042",
            beginning=BeginningSegment("00", "SA", "PO-9", "20240301"),
            parties=(
                Party("ST", "Store 9", "92", "S9", address=Address(city="Austin", state_code="TX")),
            ),
            line_items=(
                LineItem(
                    quantity=Decimal("3"),
                    unit_of_measure="EA",
                    assigned_id="1",
                    unit_price=Decimal("1.25"),
                    product_ids=(ProductId("VP", "SKU-9"),),
                ),
            ),
            totals=Totals(1),
        )

        ts = PurchaseOrderGenerator().generate(order)
        text = encode(ts)

        assert text.startswith("ST*850*0042~BEG*00*SA*PO-9**20240301~N1*ST*Store 9*92*S9~N4*Austin*TX~")
        assert "PO1*1*3*EA*1.25**VP*SKU-9~" in text
        assert text.endswith("CTT*1~SE*7*0042~")
        assert ts.validate() == []

    def test_parse_of_generated_order_matches(self, sample_850):
        """Parsing generated output yields the same document."""
        order, _ = parse(sample_850)

        ts = PurchaseOrderGenerator().generate(order)
        again, errors = PurchaseOrderParser().parse(ts)

        assert errors == []
        assert again == order
