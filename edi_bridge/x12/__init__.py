"""
EDI Bridge - X12 Module

Segment model, text codec and typed 810/850/855/856/997 transaction sets.
"""

from .segments import (
    IssueSeverity,
    ParseIssue,
    Segment,
    TransactionSet,
    TransactionSetHeader,
    TransactionSetTrailer,
)
from .codec import DecodedBatch, Delimiters, decode, decode_batch, encode, encode_segment
from .common import ParseResult
from .purchase_order import PurchaseOrder, PurchaseOrderGenerator, PurchaseOrderParser
from .ship_notice import ShipNotice, ShipNoticeGenerator, ShipNoticeParser
from .invoice import Invoice, InvoiceGenerator, InvoiceParser
from .po_acknowledgment import (
    PurchaseOrderAcknowledgment,
    PurchaseOrderAcknowledgmentGenerator,
    PurchaseOrderAcknowledgmentParser,
    acknowledge_order,
)
from .functional_ack import (
    FunctionalAcknowledgment,
    FunctionalAcknowledgmentGenerator,
    FunctionalAcknowledgmentParser,
)
from .registry import (
    HANDLERS,
    Document,
    build_acknowledgment,
    generate_transaction_set,
    parse_transaction_set,
)

__all__ = [
    "IssueSeverity",
    "ParseIssue",
    "Segment",
    "TransactionSet",
    "TransactionSetHeader",
    "TransactionSetTrailer",
    "DecodedBatch",
    "Delimiters",
    "decode",
    "decode_batch",
    "encode",
    "encode_segment",
    "ParseResult",
    "PurchaseOrder",
    "PurchaseOrderGenerator",
    "PurchaseOrderParser",
    "ShipNotice",
    "ShipNoticeGenerator",
    "ShipNoticeParser",
    "Invoice",
    "InvoiceGenerator",
    "InvoiceParser",
    "PurchaseOrderAcknowledgment",
    "PurchaseOrderAcknowledgmentGenerator",
    "PurchaseOrderAcknowledgmentParser",
    "acknowledge_order",
    "FunctionalAcknowledgment",
    "FunctionalAcknowledgmentGenerator",
    "FunctionalAcknowledgmentParser",
    "HANDLERS",
    "Document",
    "build_acknowledgment",
    "generate_transaction_set",
    "parse_transaction_set",
]
