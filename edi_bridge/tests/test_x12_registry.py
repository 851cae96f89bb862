"""
Tests for transaction set dispatch and 997 construction.
"""

import pytest

from edi_bridge.x12.codec import decode
from edi_bridge.x12.codes import AcknowledgmentCode, TransactionSetCode, functional_id_for
from edi_bridge.x12.invoice import Invoice
from edi_bridge.x12.po_acknowledgment import PurchaseOrderAcknowledgment
from edi_bridge.x12.purchase_order import PurchaseOrder
from edi_bridge.x12.registry import (
    acknowledgment_code,
    build_acknowledgment,
    generate_transaction_set,
    parse_transaction_set,
    supported_codes,
)
from edi_bridge.x12.segments import IssueSeverity, ParseIssue
from edi_bridge.x12.ship_notice import ShipNotice


class TestDispatch:
    """Parser lookup by ST01."""

    def test_supported_codes(self):
        """810, 850, 855, 856 and 997 have typed handlers."""
        assert supported_codes() == ["810", "850", "855", "856", "997"]

    def test_parse_dispatches_by_code(self, sample_850):
        """An 850 set is parsed into a PurchaseOrder."""
        document, errors = parse_transaction_set(decode(sample_850)[0])

        assert isinstance(document, PurchaseOrder)
        assert errors == []

    def test_invoice_and_acknowledgment_dispatch(self):
        """810 and 855 sets parse into their typed documents."""
        invoice, _ = parse_transaction_set(
            decode("ST*810*0001~BIG*20240115*INV-1~IT1*1*1*EA*1~TDS*100~SE*5*0001~")[0]
        )
        ack, errors = parse_transaction_set(
            decode("ST*855*0001~BAK*00*AD*PO-1*20240101~SE*3*0001~")[0]
        )

        assert isinstance(invoice, Invoice)
        assert isinstance(ack, PurchaseOrderAcknowledgment)
        assert errors == []
        assert generate_transaction_set(invoice).code == "810"

    def test_unsupported_code_is_fatal(self):
        """A set without a handler yields one fatal issue."""
        document, errors = parse_transaction_set(decode("ST*820*0001~BPR*C*100~SE*3*0001~")[0])

        assert document is None
        assert [e.code for e in errors] == ["UNSUPPORTED_TRANSACTION_SET"]
        assert errors[0].is_fatal

    def test_envelope_issues_are_included(self):
        """A wrong SE01 count is reported next to document issues."""
        text = "ST*856*0001~BSN*00*S1*20240101~HL*1**S~SE*9*0001~"

        document, errors = parse_transaction_set(decode(text)[0])

        assert isinstance(document, ShipNotice)
        assert [e.code for e in errors] == ["SEGMENT_COUNT_MISMATCH"]

    def test_generate_dispatches_by_document(self, sample_850):
        """Generation picks the generator from the document's set code."""
        order, _ = parse_transaction_set(decode(sample_850)[0])

        ts = generate_transaction_set(order)

        assert ts.code == "850"

    def test_generate_rejects_unknown_document(self):
        """Objects without a registered set code are refused."""

        class PaymentOrder:
            transaction_set_code = "820"

        with pytest.raises(ValueError):
            generate_transaction_set(PaymentOrder())


class TestCodes:
    """Code list helpers."""

    def test_functional_ids(self):
        """GS01 identifiers follow the set code."""
        assert functional_id_for("850") == "PO"
        assert functional_id_for("856") == "SH"
        assert functional_id_for("810") == "IN"
        assert functional_id_for("999") == ""

    def test_transaction_set_lookup(self):
        """Set codes resolve to their enum member."""
        assert TransactionSetCode.from_code("997") is TransactionSetCode.FUNCTIONAL_ACK
        assert TransactionSetCode.from_code("123") is None

    @pytest.mark.parametrize("code,accepted", [("A", True), ("E", True), ("P", True), ("R", False), ("X", False)])
    def test_acceptance(self, code, accepted):
        """A, E and P count as accepted."""
        assert AcknowledgmentCode.from_code(code).is_accepted is accepted


class TestAcknowledgment:
    """997 construction from parse issues."""

    def test_code_without_issues(self):
        """No issues is an A."""
        assert acknowledgment_code([]) == AcknowledgmentCode.ACCEPTED

    def test_code_with_warnings_only(self):
        """Warnings alone accept with errors noted."""
        issues = [ParseIssue("UNEXPECTED_SEGMENT", "x", "N1", IssueSeverity.WARNING, 3)]

        assert acknowledgment_code(issues) == AcknowledgmentCode.ACCEPTED_WITH_ERRORS

    def test_code_with_errors(self):
        """Any error rejects."""
        issues = [
            ParseIssue("UNEXPECTED_SEGMENT", "x", "N1", IssueSeverity.WARNING, 3),
            ParseIssue("NO_LINE_ITEMS", "y", "PO1"),
        ]

        assert acknowledgment_code(issues) == AcknowledgmentCode.REJECTED

    def test_accepted_set(self, sample_850):
        """A clean 850 is acknowledged with A in AK5 and AK9."""
        ts = decode(sample_850)[0]
        _, errors = parse_transaction_set(ts)

        ack = build_acknowledgment(ts, errors, group_control_number="7", control_number="1")

        assert ack.group_response.functional_id_code == "PO"
        assert ack.group_response.group_control_number == "7"
        assert ack.group_response.version == "005010"
        assert ack.ack_code == "A"
        assert ack.group_trailer.accepted_count == 1
        response = ack.set_responses[0]
        assert response.transaction_set_code == "850"
        assert response.control_number == "0001"
        assert response.accepted
        assert response.notes == ()

    def test_rejected_set_carries_notes(self):
        """Positioned issues become AK3 notes counted from ST."""
        ts = decode("ST*850*0001~BEG*00*SA*PO-1**20240101~N1*ST*X~SE*4*0001~")[0]
        _, errors = parse_transaction_set(ts)

        ack = build_acknowledgment(ts, errors, group_control_number="3", control_number="2")

        response = ack.set_responses[0]
        assert ack.ack_code == "R"
        assert ack.group_trailer.accepted_count == 0
        assert response.trailer.ack_code == "R"
        assert response.trailer.syntax_error_codes == ()
        assert response.notes == ()

    def test_warning_positions_become_segment_notes(self):
        """An unexpected segment at data position 3 is AK3 position 4 with code 2."""
        ts = decode("ST*850*0001~BEG*00*SA*PO-1**20240101~PO1*1*1*EA*1~N1*BT*X~SE*5*0001~")[0]
        _, errors = parse_transaction_set(ts)

        ack = build_acknowledgment(ts, errors, group_control_number="3", control_number="2")

        note = ack.set_responses[0].notes[0]
        assert ack.ack_code == "E"
        assert note.segment_id == "N1"
        assert note.position == 4
        assert note.error_code == "2"

    def test_count_mismatch_sets_syntax_code(self):
        """SE01 mismatches map to AK5 code 4."""
        ts = decode("ST*856*0001~BSN*00*S1*20240101~HL*1**S~SE*9*0001~")[0]
        _, errors = parse_transaction_set(ts)

        ack = build_acknowledgment(ts, errors, group_control_number="1", control_number="1")

        assert ack.set_responses[0].trailer.syntax_error_codes == ("4",)

    def test_unsupported_set_is_rejected(self):
        """Unsupported sets are rejected with AK5 code 1."""
        ts = decode("ST*820*0001~BPR*C*100~SE*3*0001~")[0]
        _, errors = parse_transaction_set(ts)

        ack = build_acknowledgment(ts, errors, group_control_number="1", control_number="1")

        assert ack.ack_code == "R"
        assert ack.group_response.functional_id_code == ""
        assert ack.set_responses[0].trailer.syntax_error_codes == ("1",)
