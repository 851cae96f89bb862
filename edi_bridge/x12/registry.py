"""
Transaction Set Dispatch

Lookup table from transaction set code to its parser/generator pair, plus
the 997 acknowledgment builder for received sets.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Union
import logging

from edi_bridge.monitoring.metrics import DOCUMENTS_PARSED
from edi_bridge.x12.codes import AcknowledgmentCode, functional_id_for
from edi_bridge.x12.common import ParseResult
from edi_bridge.x12.functional_ack import (
    FunctionalAcknowledgment,
    FunctionalAcknowledgmentGenerator,
    FunctionalAcknowledgmentParser,
    GroupResponseHeader,
    GroupResponseTrailer,
    SegmentNote,
    SetResponse,
    SetResponseTrailer,
)
from edi_bridge.x12.invoice import Invoice, InvoiceGenerator, InvoiceParser
from edi_bridge.x12.po_acknowledgment import (
    PurchaseOrderAcknowledgment,
    PurchaseOrderAcknowledgmentGenerator,
    PurchaseOrderAcknowledgmentParser,
)
from edi_bridge.x12.purchase_order import (
    PurchaseOrder,
    PurchaseOrderGenerator,
    PurchaseOrderParser,
)
from edi_bridge.x12.segments import IssueSeverity, ParseIssue, TransactionSet
from edi_bridge.x12.ship_notice import ShipNotice, ShipNoticeGenerator, ShipNoticeParser

logger = logging.getLogger(__name__)

Document = Union[
    PurchaseOrder, PurchaseOrderAcknowledgment, ShipNotice, Invoice, FunctionalAcknowledgment
]

X12_VERSION = "005010"

# AK3-04 segment syntax error codes
UNEXPECTED_SEGMENT = "2"
SEGMENT_HAS_DATA_ELEMENT_ERRORS = "8"
# AK5-02 transaction set syntax error codes
SET_NOT_SUPPORTED = "1"
SET_CONTROL_MISMATCH = "3"
SET_COUNT_MISMATCH = "4"
SEGMENTS_IN_ERROR = "5"


@dataclass(frozen=True)
class DocumentHandler:
    """Parser and generator for one transaction set code."""

    code: str
    parse: Callable[[TransactionSet], ParseResult]
    generate: Callable[[Document], TransactionSet]


HANDLERS: Dict[str, DocumentHandler] = {
    "810": DocumentHandler(
        "810",
        lambda ts: InvoiceParser().parse(ts),
        lambda doc: InvoiceGenerator().generate(doc),
    ),
    "850": DocumentHandler(
        "850",
        lambda ts: PurchaseOrderParser().parse(ts),
        lambda doc: PurchaseOrderGenerator().generate(doc),
    ),
    "855": DocumentHandler(
        "855",
        lambda ts: PurchaseOrderAcknowledgmentParser().parse(ts),
        lambda doc: PurchaseOrderAcknowledgmentGenerator().generate(doc),
    ),
    "856": DocumentHandler(
        "856",
        lambda ts: ShipNoticeParser().parse(ts),
        lambda doc: ShipNoticeGenerator().generate(doc),
    ),
    "997": DocumentHandler(
        "997",
        lambda ts: FunctionalAcknowledgmentParser().parse(ts),
        lambda doc: FunctionalAcknowledgmentGenerator().generate(doc),
    ),
}


def supported_codes() -> List[str]:
    return sorted(HANDLERS)


def parse_transaction_set(transaction_set: TransactionSet) -> ParseResult[Document]:
    """
    Parse a transaction set with the handler registered for its ST01 code.

    Envelope issues from ``TransactionSet.validate`` are reported alongside
    the document issues. Never raises for malformed content.
    """
    code = transaction_set.code
    handler = HANDLERS.get(code)
    if handler is None:
        DOCUMENTS_PARSED.labels(transaction_set=code or "unknown", status="unsupported").inc()
        return ParseResult.fatal(
            "UNSUPPORTED_TRANSACTION_SET",
            f"Transaction set {code!r} is not supported",
            "ST",
        )

    document, errors = handler.parse(transaction_set)
    issues = list(transaction_set.validate()) + errors

    if document is None:
        status = "fatal"
    elif any(issue.severity != IssueSeverity.WARNING for issue in issues):
        status = "error"
    else:
        status = "ok"
    DOCUMENTS_PARSED.labels(transaction_set=code, status=status).inc()

    return ParseResult(document, tuple(issues))


def generate_transaction_set(document: Document) -> TransactionSet:
    """Generate the transaction set for a typed document."""
    handler = HANDLERS.get(document.transaction_set_code)
    if handler is None:
        raise ValueError(f"No generator for transaction set {document.transaction_set_code}")
    return handler.generate(document)


def acknowledgment_code(issues: Iterable[ParseIssue]) -> AcknowledgmentCode:
    """A without issues, E with only warnings, R with any error."""
    issues = list(issues)
    if not issues:
        return AcknowledgmentCode.ACCEPTED
    if all(issue.severity == IssueSeverity.WARNING for issue in issues):
        return AcknowledgmentCode.ACCEPTED_WITH_ERRORS
    return AcknowledgmentCode.REJECTED


def _set_syntax_codes(issues: List[ParseIssue]) -> tuple:
    codes = []
    for issue in issues:
        if issue.code == "UNSUPPORTED_TRANSACTION_SET":
            code = SET_NOT_SUPPORTED
        elif issue.code == "SEGMENT_COUNT_MISMATCH":
            code = SET_COUNT_MISMATCH
        elif issue.code == "CONTROL_NUMBER_MISMATCH":
            code = SET_CONTROL_MISMATCH
        elif issue.is_fatal:
            code = SEGMENTS_IN_ERROR
        else:
            continue
        if code not in codes:
            codes.append(code)
    return tuple(codes[:5])


def _segment_notes(issues: List[ParseIssue]) -> tuple:
    notes = []
    for issue in issues:
        if issue.position is None or not issue.segment_id:
            continue
        if issue.code == "UNEXPECTED_SEGMENT":
            error_code = UNEXPECTED_SEGMENT
        else:
            error_code = SEGMENT_HAS_DATA_ELEMENT_ERRORS
        # AK3-02 counts from ST as position 1
        notes.append(
            SegmentNote(
                segment_id=issue.segment_id,
                position=issue.position + 1,
                error_code=error_code,
            )
        )
    return tuple(notes)


def build_acknowledgment(
    transaction_set: TransactionSet,
    errors: Iterable[ParseIssue],
    group_control_number: str,
    control_number: str,
    version: Optional[str] = X12_VERSION,
) -> FunctionalAcknowledgment:
    """
    Build a 997 for one received transaction set.

    Args:
        transaction_set: The received set
        errors: Issues reported while parsing it
        group_control_number: GS06 of the functional group that carried it
        control_number: ST02 for the 997 being built

    Returns:
        FunctionalAcknowledgment with one AK2 loop
    """
    issues = list(errors)
    ack = acknowledgment_code(issues)
    accepted = 1 if ack.is_accepted else 0

    response = SetResponse(
        transaction_set_code=transaction_set.code,
        control_number=transaction_set.control_number,
        implementation_reference=transaction_set.header.implementation_reference,
        notes=_segment_notes(issues),
        trailer=SetResponseTrailer(ack.code, _set_syntax_codes(issues)),
    )

    logger.info(
        f"Built 997 for {transaction_set.code} {transaction_set.control_number}: "
        f"{ack.code} ({len(issues)} issues)"
    )

    return FunctionalAcknowledgment(
        control_number=control_number,
        group_response=GroupResponseHeader(
            functional_id_code=functional_id_for(transaction_set.code),
            group_control_number=group_control_number,
            version=version,
        ),
        group_trailer=GroupResponseTrailer(
            ack_code=ack.code,
            included_count=1,
            received_count=1,
            accepted_count=accepted,
        ),
        set_responses=(response,),
    )
