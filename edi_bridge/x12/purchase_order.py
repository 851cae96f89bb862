"""
X12 850 Purchase Order

Typed model, parser and generator for the 850 transaction set.

Segment layout:
- BEG  Beginning Segment (required)
- CUR, REF*, PER*, DTM*, TD5*  header
- N1 loop [0..n]: N1, N3, N4, REF*, PER*  (closed by the next N1 or PO1)
- PO1 loop [1..n]: PO1, PID*, DTM*, TXI*  (closed by the next PO1, CTT or AMT)
- CTT, AMT*  summary
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar, List, Optional, Tuple
import logging

from edi_bridge.x12.common import (
    OUTSIDE,
    ElementReader,
    LoopState,
    ParseResult,
    Party,
    PartyLoop,
    ProductId,
    Reference,
    Contact,
    DateTimeReference,
    Totals,
    in_loop,
    unexpected,
)
from edi_bridge.x12.segments import IssueSeverity, ParseIssue, Segment, TransactionSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BeginningSegment:
    """BEG segment."""

    purpose_code: str
    order_type_code: str
    purchase_order_number: str
    order_date: str
    release_number: Optional[str] = None
    contract_number: Optional[str] = None


@dataclass(frozen=True)
class Currency:
    """CUR segment."""

    entity_id_code: str
    currency_code: str
    exchange_rate: Optional[Decimal] = None


@dataclass(frozen=True)
class CarrierDetail:
    """TD5 segment."""

    routing_sequence_code: Optional[str] = None
    id_code_qualifier: Optional[str] = None
    id_code: Optional[str] = None
    transportation_method_code: Optional[str] = None
    routing: Optional[str] = None


@dataclass(frozen=True)
class ItemDescription:
    """PID segment (free-form description)."""

    description_type: str
    description: str


@dataclass(frozen=True)
class Tax:
    """TXI segment."""

    tax_type_code: str
    amount: Optional[Decimal] = None
    percent: Optional[Decimal] = None


@dataclass(frozen=True)
class LineItem:
    """PO1 loop."""

    quantity: Optional[Decimal]
    unit_of_measure: str
    assigned_id: Optional[str] = None
    unit_price: Optional[Decimal] = None
    price_basis: Optional[str] = None
    product_ids: Tuple[ProductId, ...] = ()
    descriptions: Tuple[ItemDescription, ...] = ()
    dates: Tuple[DateTimeReference, ...] = ()
    taxes: Tuple[Tax, ...] = ()

    @property
    def extended_amount(self) -> Optional[Decimal]:
        if self.quantity is None or self.unit_price is None:
            return None
        return self.quantity * self.unit_price

    def product_id(self, qualifier: str) -> Optional[str]:
        for pid in self.product_ids:
            if pid.qualifier == qualifier:
                return pid.product_id
        return None


@dataclass(frozen=True)
class MonetaryAmount:
    """AMT segment."""

    qualifier: str
    amount: Optional[Decimal]


@dataclass(frozen=True)
class PurchaseOrder:
    """A parsed 850 Purchase Order."""

    transaction_set_code: ClassVar[str] = "850"

    control_number: str
    beginning: BeginningSegment
    line_items: Tuple[LineItem, ...] = ()
    currency: Optional[Currency] = None
    references: Tuple[Reference, ...] = ()
    contacts: Tuple[Contact, ...] = ()
    dates: Tuple[DateTimeReference, ...] = ()
    carrier_details: Tuple[CarrierDetail, ...] = ()
    parties: Tuple[Party, ...] = ()
    totals: Optional[Totals] = None
    amounts: Tuple[MonetaryAmount, ...] = ()

    @property
    def purchase_order_number(self) -> str:
        return self.beginning.purchase_order_number

    def party(self, entity_id_code: str) -> Optional[Party]:
        for party in self.parties:
            if party.entity_id_code == entity_id_code:
                return party
        return None


class _LineItemLoop:
    """Accumulates one open PO1 loop."""

    CHILDREN = ("PID", "DTM", "TXI")

    def __init__(self, po1: Segment, reader: ElementReader):
        self.po1 = po1
        self.reader = reader
        self.descriptions: List[ItemDescription] = []
        self.dates: List[DateTimeReference] = []
        self.taxes: List[Tax] = []

    def accept(self, segment: Segment) -> bool:
        sid = segment.segment_id
        r = self.reader
        if sid == "PID":
            self.descriptions.append(ItemDescription(r.text(segment, 1), r.text(segment, 5)))
        elif sid == "DTM":
            self.dates.append(DateTimeReference.read(segment, r))
        elif sid == "TXI":
            self.taxes.append(
                Tax(r.text(segment, 1), r.decimal(segment, 2), r.decimal(segment, 3))
            )
        else:
            return False
        return True

    def close(self) -> LineItem:
        r, po1 = self.reader, self.po1
        return LineItem(
            assigned_id=r.optional(po1, 1),
            quantity=r.decimal(po1, 2),
            unit_of_measure=r.text(po1, 3),
            unit_price=r.decimal(po1, 4),
            price_basis=r.optional(po1, 5),
            product_ids=r.pairs(po1, 6),
            descriptions=tuple(self.descriptions),
            dates=tuple(self.dates),
            taxes=tuple(self.taxes),
        )


class PurchaseOrderParser:
    """
    850 Purchase Order parser.

    Single forward pass over the data segments; the loop state moves
    Outside -> InLoop(N1) -> InLoop(PO1) -> InLoop(SUMMARY).
    """

    HEADER_SEGMENTS = ("CUR", "REF", "PER", "DTM", "TD5")

    def __init__(self):
        self.errors: List[ParseIssue] = []

    def parse(self, transaction_set: TransactionSet) -> ParseResult[PurchaseOrder]:
        """
        Parse an 850 transaction set.

        Args:
            transaction_set: Framed ST..SE set

        Returns:
            ParseResult with the purchase order, or no document and one fatal
            error when BEG is missing
        """
        self.errors = []
        segments = transaction_set.segments

        beg = transaction_set.find("BEG")
        if beg is None:
            return ParseResult.fatal("MISSING_BEG", "BEG segment is required for 850", "BEG")

        reader = ElementReader(self.errors)
        state: LoopState = OUTSIDE

        currency: Optional[Currency] = None
        references: List[Reference] = []
        contacts: List[Contact] = []
        dates: List[DateTimeReference] = []
        carriers: List[CarrierDetail] = []
        parties: List[Party] = []
        items: List[LineItem] = []
        totals: Optional[Totals] = None
        amounts: List[MonetaryAmount] = []

        party_loop: Optional[PartyLoop] = None
        item_loop: Optional[_LineItemLoop] = None

        for position, segment in enumerate(segments, 1):
            sid = segment.segment_id

            if sid == "BEG":
                if segment is not beg:
                    self.errors.append(
                        ParseIssue(
                            "DUPLICATE_SEGMENT",
                            "Only the first BEG segment is used",
                            "BEG",
                            IssueSeverity.WARNING,
                            position,
                        )
                    )
                continue

            if sid == "N1":
                if state.is_in("PO1") or state.is_in("SUMMARY"):
                    self.errors.append(unexpected(segment, state, position))
                    continue
                if party_loop is not None:
                    parties.append(party_loop.close())
                party_loop = PartyLoop(segment, reader)
                state = in_loop("N1")
                continue

            if sid == "PO1":
                if state.is_in("SUMMARY"):
                    self.errors.append(unexpected(segment, state, position))
                    continue
                if party_loop is not None:
                    parties.append(party_loop.close())
                    party_loop = None
                if item_loop is not None:
                    items.append(item_loop.close())
                item_loop = _LineItemLoop(segment, reader)
                state = in_loop("PO1")
                continue

            if sid in ("CTT", "AMT"):
                if party_loop is not None:
                    parties.append(party_loop.close())
                    party_loop = None
                if item_loop is not None:
                    items.append(item_loop.close())
                    item_loop = None
                state = in_loop("SUMMARY")
                if sid == "CTT":
                    totals = Totals.read(segment, reader)
                else:
                    amounts.append(
                        MonetaryAmount(reader.text(segment, 1), reader.decimal(segment, 2))
                    )
                continue

            if state.is_in("N1") and party_loop is not None and party_loop.accept(segment):
                continue
            if state.is_in("PO1") and item_loop is not None and item_loop.accept(segment):
                continue

            if state.outside and sid in self.HEADER_SEGMENTS:
                if sid == "CUR":
                    currency = Currency(
                        reader.text(segment, 1),
                        reader.text(segment, 2),
                        reader.decimal(segment, 3),
                    )
                elif sid == "REF":
                    references.append(Reference.read(segment, reader))
                elif sid == "PER":
                    contacts.append(Contact.read(segment, reader))
                elif sid == "DTM":
                    dates.append(DateTimeReference.read(segment, reader))
                elif sid == "TD5":
                    carriers.append(
                        CarrierDetail(
                            routing_sequence_code=reader.optional(segment, 1),
                            id_code_qualifier=reader.optional(segment, 2),
                            id_code=reader.optional(segment, 3),
                            transportation_method_code=reader.optional(segment, 4),
                            routing=reader.optional(segment, 5),
                        )
                    )
                continue

            self.errors.append(unexpected(segment, state, position))

        # Close whatever loop is still open at SE
        if party_loop is not None:
            parties.append(party_loop.close())
        if item_loop is not None:
            items.append(item_loop.close())

        if not items:
            self.errors.append(
                ParseIssue("NO_LINE_ITEMS", "At least one PO1 segment is required", "PO1")
            )

        document = PurchaseOrder(
            control_number=transaction_set.control_number,
            beginning=BeginningSegment(
                purpose_code=reader.text(beg, 1),
                order_type_code=reader.text(beg, 2),
                purchase_order_number=reader.text(beg, 3),
                release_number=reader.optional(beg, 4),
                order_date=reader.text(beg, 5),
                contract_number=reader.optional(beg, 6),
            ),
            line_items=tuple(items),
            currency=currency,
            references=tuple(references),
            contacts=tuple(contacts),
            dates=tuple(dates),
            carrier_details=tuple(carriers),
            parties=tuple(parties),
            totals=totals,
            amounts=tuple(amounts),
        )

        logger.debug(
            f"Parsed 850 {document.purchase_order_number}: "
            f"{len(items)} line items, {len(self.errors)} issues"
        )
        return ParseResult(document, tuple(self.errors))


class PurchaseOrderGenerator:
    """850 Purchase Order generator."""

    def generate(self, order: PurchaseOrder) -> TransactionSet:
        """Build the ST..SE transaction set for a purchase order."""
        beg = order.beginning
        segments: List[Segment] = [
            Segment.build(
                "BEG",
                beg.purpose_code,
                beg.order_type_code,
                beg.purchase_order_number,
                beg.release_number,
                beg.order_date,
                beg.contract_number,
            )
        ]

        if order.currency:
            cur = order.currency
            segments.append(
                Segment.build("CUR", cur.entity_id_code, cur.currency_code, cur.exchange_rate)
            )
        segments.extend(ref.to_segment() for ref in order.references)
        segments.extend(contact.to_segment() for contact in order.contacts)
        segments.extend(dtm.to_segment() for dtm in order.dates)
        for td5 in order.carrier_details:
            segments.append(
                Segment.build(
                    "TD5",
                    td5.routing_sequence_code,
                    td5.id_code_qualifier,
                    td5.id_code,
                    td5.transportation_method_code,
                    td5.routing,
                )
            )

        for party in order.parties:
            segments.extend(party.to_segments())

        for item in order.line_items:
            product_values = []
            for pid in item.product_ids:
                product_values.extend([pid.qualifier, pid.product_id])
            segments.append(
                Segment.build(
                    "PO1",
                    item.assigned_id,
                    item.quantity,
                    item.unit_of_measure,
                    item.unit_price,
                    item.price_basis,
                    *product_values,
                )
            )
            for desc in item.descriptions:
                segments.append(
                    Segment.build("PID", desc.description_type, None, None, None, desc.description)
                )
            segments.extend(dtm.to_segment() for dtm in item.dates)
            for tax in item.taxes:
                segments.append(Segment.build("TXI", tax.tax_type_code, tax.amount, tax.percent))

        if order.totals:
            segments.append(order.totals.to_segment())
        for amt in order.amounts:
            segments.append(Segment.build("AMT", amt.qualifier, amt.amount))

        return TransactionSet.build(PurchaseOrder.transaction_set_code, order.control_number, segments)
