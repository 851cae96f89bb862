"""
Tests for the 810 Invoice parser and generator.
"""

from decimal import Decimal

from edi_bridge.x12.codec import decode, encode
from edi_bridge.x12.common import DateTimeReference, ProductId, Reference, Totals
from edi_bridge.x12.invoice import (
    AllowanceCharge,
    Invoice,
    InvoiceBeginning,
    InvoiceGenerator,
    InvoiceLineItem,
    InvoiceParser,
    PaymentTerms,
    TotalMonetarySummary,
)
from edi_bridge.x12.purchase_order import Currency, ItemDescription, Tax
from edi_bridge.x12.segments import IssueSeverity

SAMPLE_810 = (
    "ST*810*0001~"
    "BIG*20240115*INV-77*20240101*PO-1001~"
    "CUR*SE*USD~"
    "REF*IA*VEND-9~"
    "N1*RE*Acme Supply*92*REMIT1~"
    "N3*1 Main St~"
    "N4*Springfield*IL*62701~"
    "ITD*01*3*2**10**30~"
    "DTM*011*20240112~"
    "IT1*1*10*EA*2.50**VP*SKU-1~"
    "PID*F****Blue widget~"
    "IT1*2*4*EA*5**VP*SKU-2~"
    "SAC*C*D240***5.00~"
    "TDS*4500~"
    "TXI*ST*3.15*7~"
    "CAD*M****UPS~"
    "ISS*14*EA*30*LB~"
    "CTT*2~"
    "SE*19*0001~"
)


def parse(text):
    return InvoiceParser().parse(decode(text)[0])


class TestInvoiceParser:
    """810 parsing."""

    def test_parse_sample_invoice(self):
        """Header, terms, line items and summary are read into the model."""
        invoice, errors = parse(SAMPLE_810)

        assert errors == []
        assert invoice.invoice_number == "INV-77"
        assert invoice.beginning.invoice_date == "20240115"
        assert invoice.beginning.purchase_order_number == "PO-1001"
        assert invoice.currency == Currency("SE", "USD")
        assert invoice.references == (Reference("IA", "VEND-9"),)

        remit_to = invoice.party("RE")
        assert remit_to.name == "Acme Supply"
        assert remit_to.address.city == "Springfield"

        terms = invoice.payment_terms[0]
        assert terms.discount_percent == Decimal("2")
        assert terms.discount_days_due == 10
        assert terms.net_days == 30
        assert invoice.dates == (DateTimeReference("011", "20240112"),)

        first, second = invoice.line_items
        assert first.quantity == Decimal("10")
        assert first.product_id("VP") == "SKU-1"
        assert first.descriptions == (ItemDescription("F", "Blue widget"),)
        assert second.allowances_charges == (AllowanceCharge("C", "D240", Decimal("5.00")),)
        assert second.allowances_charges[0].is_charge

        assert invoice.total_summary.total_amount == Decimal("45.00")
        assert invoice.line_item_total == Decimal("45.00")
        assert invoice.taxes == (Tax("ST", Decimal("3.15"), Decimal("7")),)
        assert invoice.carrier_detail.transportation_method_code == "M"
        assert invoice.carrier_detail.routing == "UPS"
        assert invoice.shipment_summary.weight == Decimal("30")
        assert invoice.totals == Totals(line_item_count=2)

    def test_missing_big_is_single_fatal_error(self):
        """Without BIG no document is produced."""
        invoice, errors = parse("ST*810*0001~IT1*1*1*EA*1~TDS*100~SE*4*0001~")

        assert invoice is None
        assert [e.code for e in errors] == ["MISSING_BIG"]
        assert errors[0].severity == IssueSeverity.FATAL

    def test_missing_tds_is_single_fatal_error(self):
        """An invoice without a total is refused."""
        invoice, errors = parse("ST*810*0001~BIG*20240115*INV-1~IT1*1*1*EA*1~SE*4*0001~")

        assert invoice is None
        assert [e.code for e in errors] == ["MISSING_TDS"]

    def test_no_line_items_is_error(self):
        """An invoice without IT1 still parses but reports the gap."""
        invoice, errors = parse("ST*810*0001~BIG*20240115*INV-1~TDS*0~SE*4*0001~")

        assert invoice is not None
        assert invoice.total_summary.total_amount == Decimal("0")
        assert [e.code for e in errors] == ["NO_LINE_ITEMS"]
        assert errors[0].severity == IssueSeverity.ERROR

    def test_line_item_after_summary_is_warned_and_ignored(self):
        """IT1 after TDS is unexpected."""
        invoice, errors = parse(
            "ST*810*0001~BIG*20240115*INV-1~IT1*1*1*EA*1~TDS*100~IT1*2*1*EA*1~SE*6*0001~"
        )

        assert len(invoice.line_items) == 1
        assert errors[0].code == "UNEXPECTED_SEGMENT"
        assert errors[0].severity == IssueSeverity.WARNING
        assert errors[0].position == 4

    def test_terms_after_party_loop_close_it(self):
        """ITD ends the open N1 loop instead of being dropped."""
        invoice, errors = parse(
            "ST*810*0001~BIG*20240115*INV-1~N1*BT*Buyer~ITD*01**1.5~"
            "IT1*1*1*EA*1~TDS*100~SE*7*0001~"
        )

        assert errors == []
        assert [p.entity_id_code for p in invoice.parties] == ["BT"]
        assert invoice.payment_terms == (PaymentTerms("01", discount_percent=Decimal("1.5")),)

    def test_line_tax_stays_with_its_line(self):
        """TXI inside the IT1 loop belongs to the line, after TDS to the invoice."""
        invoice, _ = parse(
            "ST*810*0001~BIG*20240115*INV-1~IT1*1*1*EA*1~TXI*ST*0.07~TDS*107~TXI*LS*1~SE*7*0001~"
        )

        assert invoice.line_items[0].taxes == (Tax("ST", Decimal("0.07")),)
        assert invoice.taxes == (Tax("LS", Decimal("1")),)


class TestInvoiceGenerator:
    """810 generation."""

    def test_generate_writes_implied_decimal_total(self):
        """TDS01 is written in cents with no decimal point."""
        invoice = Invoice(
            control_number="0007",
            beginning=InvoiceBeginning("20240301", "INV-9"),
            total_summary=TotalMonetarySummary(Decimal("12.34")),
            line_items=(
                InvoiceLineItem(
                    quantity=Decimal("2"),
                    unit_of_measure="EA",
                    assigned_id="1",
                    unit_price=Decimal("6.17"),
                    product_ids=(ProductId("VP", "SKU-9"),),
                ),
            ),
            totals=Totals(1),
        )

        ts = InvoiceGenerator().generate(invoice)
        text = encode(ts)

        assert text.startswith("ST*810*0007~BIG*20240301*INV-9~IT1*1*2*EA*6.17**VP*SKU-9~")
        assert text.endswith("TDS*1234~CTT*1~SE*6*0007~")
        assert ts.validate() == []

    def test_parse_of_generated_invoice_matches(self):
        """Parsing generated output yields the same document."""
        invoice, _ = parse(SAMPLE_810)

        again, errors = InvoiceParser().parse(InvoiceGenerator().generate(invoice))

        assert errors == []
        assert again == invoice
