"""
X12 855 Purchase Order Acknowledgment

Typed model, parser and generator for the 855 transaction set, plus
``acknowledge_order`` for answering a received 850 line by line.

Segment layout:
- BAK  Beginning Segment for Purchase Order Acknowledgment (required)
- CUR, REF*, PER*, DTM*  header
- N1 loop [0..n]: N1, N3, N4, REF*, PER*  (closed by the next N1 or PO1)
- PO1 loop [0..n]: PO1, PID*, ACK*, DTM*  (closed by the next PO1 or CTT)
- CTT  summary
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar, List, Optional, Tuple
import logging

from edi_bridge.x12.common import (
    OUTSIDE,
    Contact,
    DateTimeReference,
    ElementReader,
    LoopState,
    ParseResult,
    Party,
    PartyLoop,
    ProductId,
    Reference,
    Totals,
    in_loop,
    unexpected,
)
from edi_bridge.x12.purchase_order import Currency, ItemDescription, PurchaseOrder
from edi_bridge.x12.segments import IssueSeverity, ParseIssue, Segment, TransactionSet

logger = logging.getLogger(__name__)

# BAK02
ACCEPTED_NO_CHANGE = "AD"
ACCEPTED_WITH_CHANGE = "AC"
REJECTED = "RJ"
# ACK01
ITEM_ACCEPTED = "IA"
ITEM_REJECTED = "IR"
ITEM_BACKORDERED = "IB"
# ACK04 date qualifier for the estimated delivery date
ESTIMATED_DELIVERY = "068"


@dataclass(frozen=True)
class AcknowledgmentBeginning:
    """BAK segment."""

    purpose_code: str
    acknowledgment_type: str
    purchase_order_number: str
    purchase_order_date: str
    release_number: Optional[str] = None
    request_reference_number: Optional[str] = None
    contract_number: Optional[str] = None
    acknowledgment_date: Optional[str] = None


@dataclass(frozen=True)
class LineItemAcknowledgment:
    """ACK segment."""

    status_code: str
    quantity: Optional[Decimal] = None
    unit_of_measure: Optional[str] = None
    date_qualifier: Optional[str] = None
    date: Optional[str] = None

    @property
    def is_accepted(self) -> bool:
        return self.status_code == ITEM_ACCEPTED


@dataclass(frozen=True)
class AcknowledgedLineItem:
    """PO1 loop of an 855."""

    assigned_id: Optional[str] = None
    quantity: Optional[Decimal] = None
    unit_of_measure: Optional[str] = None
    unit_price: Optional[Decimal] = None
    price_basis: Optional[str] = None
    product_ids: Tuple[ProductId, ...] = ()
    descriptions: Tuple[ItemDescription, ...] = ()
    acknowledgments: Tuple[LineItemAcknowledgment, ...] = ()
    dates: Tuple[DateTimeReference, ...] = ()

    @property
    def accepted_quantity(self) -> Decimal:
        return sum(
            (a.quantity for a in self.acknowledgments if a.is_accepted and a.quantity is not None),
            Decimal("0"),
        )


@dataclass(frozen=True)
class PurchaseOrderAcknowledgment:
    """A parsed 855 Purchase Order Acknowledgment."""

    transaction_set_code: ClassVar[str] = "855"

    control_number: str
    beginning: AcknowledgmentBeginning
    line_items: Tuple[AcknowledgedLineItem, ...] = ()
    currency: Optional[Currency] = None
    references: Tuple[Reference, ...] = ()
    contacts: Tuple[Contact, ...] = ()
    dates: Tuple[DateTimeReference, ...] = ()
    parties: Tuple[Party, ...] = ()
    totals: Optional[Totals] = None

    @property
    def purchase_order_number(self) -> str:
        return self.beginning.purchase_order_number

    @property
    def is_rejected(self) -> bool:
        return self.beginning.acknowledgment_type == REJECTED


class _AcknowledgedLineLoop:
    """Accumulates one open PO1 loop."""

    def __init__(self, po1: Segment, reader: ElementReader):
        self.po1 = po1
        self.reader = reader
        self.descriptions: List[ItemDescription] = []
        self.acknowledgments: List[LineItemAcknowledgment] = []
        self.dates: List[DateTimeReference] = []

    def accept(self, segment: Segment) -> bool:
        sid = segment.segment_id
        r = self.reader
        if sid == "PID":
            self.descriptions.append(ItemDescription(r.text(segment, 1), r.text(segment, 5)))
        elif sid == "ACK":
            self.acknowledgments.append(
                LineItemAcknowledgment(
                    status_code=r.text(segment, 1),
                    quantity=r.decimal(segment, 2),
                    unit_of_measure=r.optional(segment, 3),
                    date_qualifier=r.optional(segment, 4),
                    date=r.optional(segment, 5),
                )
            )
        elif sid == "DTM":
            self.dates.append(DateTimeReference.read(segment, r))
        else:
            return False
        return True

    def close(self) -> AcknowledgedLineItem:
        r, po1 = self.reader, self.po1
        return AcknowledgedLineItem(
            assigned_id=r.optional(po1, 1),
            quantity=r.decimal(po1, 2),
            unit_of_measure=r.optional(po1, 3),
            unit_price=r.decimal(po1, 4),
            price_basis=r.optional(po1, 5),
            product_ids=r.pairs(po1, 6),
            descriptions=tuple(self.descriptions),
            acknowledgments=tuple(self.acknowledgments),
            dates=tuple(self.dates),
        )


class PurchaseOrderAcknowledgmentParser:
    """
    855 Purchase Order Acknowledgment parser.

    Same forward pass as the 850; an 855 may carry no PO1 loop at all
    when the order is acknowledged without detail.
    """

    HEADER_SEGMENTS = ("CUR", "REF", "PER", "DTM")

    def __init__(self):
        self.errors: List[ParseIssue] = []

    def parse(self, transaction_set: TransactionSet) -> ParseResult[PurchaseOrderAcknowledgment]:
        self.errors = []

        bak = transaction_set.find("BAK")
        if bak is None:
            return ParseResult.fatal("MISSING_BAK", "BAK segment is required for 855", "BAK")

        reader = ElementReader(self.errors)
        state: LoopState = OUTSIDE

        currency: Optional[Currency] = None
        references: List[Reference] = []
        contacts: List[Contact] = []
        dates: List[DateTimeReference] = []
        parties: List[Party] = []
        items: List[AcknowledgedLineItem] = []
        totals: Optional[Totals] = None

        party_loop: Optional[PartyLoop] = None
        item_loop: Optional[_AcknowledgedLineLoop] = None

        for position, segment in enumerate(transaction_set.segments, 1):
            sid = segment.segment_id

            if sid == "BAK":
                if segment is not bak:
                    self.errors.append(
                        ParseIssue(
                            "DUPLICATE_SEGMENT",
                            "Only the first BAK segment is used",
                            "BAK",
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
                item_loop = _AcknowledgedLineLoop(segment, reader)
                state = in_loop("PO1")
                continue

            if sid == "CTT":
                if party_loop is not None:
                    parties.append(party_loop.close())
                    party_loop = None
                if item_loop is not None:
                    items.append(item_loop.close())
                    item_loop = None
                state = in_loop("SUMMARY")
                totals = Totals.read(segment, reader)
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
                else:
                    dates.append(DateTimeReference.read(segment, reader))
                continue

            self.errors.append(unexpected(segment, state, position))

        if party_loop is not None:
            parties.append(party_loop.close())
        if item_loop is not None:
            items.append(item_loop.close())

        document = PurchaseOrderAcknowledgment(
            control_number=transaction_set.control_number,
            beginning=AcknowledgmentBeginning(
                purpose_code=reader.text(bak, 1),
                acknowledgment_type=reader.text(bak, 2),
                purchase_order_number=reader.text(bak, 3),
                purchase_order_date=reader.text(bak, 4),
                release_number=reader.optional(bak, 5),
                request_reference_number=reader.optional(bak, 6),
                contract_number=reader.optional(bak, 7),
                acknowledgment_date=reader.optional(bak, 9),
            ),
            line_items=tuple(items),
            currency=currency,
            references=tuple(references),
            contacts=tuple(contacts),
            dates=tuple(dates),
            parties=tuple(parties),
            totals=totals,
        )

        logger.debug(
            f"Parsed 855 for {document.purchase_order_number}: "
            f"{document.beginning.acknowledgment_type}, {len(items)} line items, "
            f"{len(self.errors)} issues"
        )
        return ParseResult(document, tuple(self.errors))


class PurchaseOrderAcknowledgmentGenerator:
    """855 Purchase Order Acknowledgment generator."""

    def generate(self, ack: PurchaseOrderAcknowledgment) -> TransactionSet:
        bak = ack.beginning
        segments: List[Segment] = [
            Segment.build(
                "BAK",
                bak.purpose_code,
                bak.acknowledgment_type,
                bak.purchase_order_number,
                bak.purchase_order_date,
                bak.release_number,
                bak.request_reference_number,
                bak.contract_number,
                None,
                bak.acknowledgment_date,
            )
        ]

        if ack.currency:
            cur = ack.currency
            segments.append(
                Segment.build("CUR", cur.entity_id_code, cur.currency_code, cur.exchange_rate)
            )
        segments.extend(ref.to_segment() for ref in ack.references)
        segments.extend(contact.to_segment() for contact in ack.contacts)
        segments.extend(dtm.to_segment() for dtm in ack.dates)

        for party in ack.parties:
            segments.extend(party.to_segments())

        for item in ack.line_items:
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
            for line_ack in item.acknowledgments:
                segments.append(
                    Segment.build(
                        "ACK",
                        line_ack.status_code,
                        line_ack.quantity,
                        line_ack.unit_of_measure,
                        line_ack.date_qualifier,
                        line_ack.date,
                    )
                )
            segments.extend(dtm.to_segment() for dtm in item.dates)

        if ack.totals:
            segments.append(ack.totals.to_segment())

        return TransactionSet.build(
            PurchaseOrderAcknowledgment.transaction_set_code, ack.control_number, segments
        )


def acknowledge_order(
    order: PurchaseOrder,
    control_number: str,
    acknowledgment_date: str,
    rejected_lines: Tuple[str, ...] = (),
    delivery_date: Optional[str] = None,
) -> PurchaseOrderAcknowledgment:
    """
    Build an 855 answering every PO1 line of a received 850.

    Args:
        order: The purchase order being acknowledged
        control_number: ST02 for the 855
        acknowledgment_date: BAK09, CCYYMMDD
        rejected_lines: PO101 assigned ids to reject; all others are accepted
        delivery_date: Estimated delivery date carried on accepted lines

    Returns:
        Acknowledgment of type AD when every line is accepted, RJ when every
        line is rejected and AC otherwise
    """
    items = []
    for line in order.line_items:
        rejected = line.assigned_id is not None and line.assigned_id in rejected_lines
        items.append(
            AcknowledgedLineItem(
                assigned_id=line.assigned_id,
                quantity=line.quantity,
                unit_of_measure=line.unit_of_measure,
                unit_price=line.unit_price,
                price_basis=line.price_basis,
                product_ids=line.product_ids,
                acknowledgments=(
                    LineItemAcknowledgment(
                        status_code=ITEM_REJECTED if rejected else ITEM_ACCEPTED,
                        quantity=line.quantity,
                        unit_of_measure=line.unit_of_measure,
                        date_qualifier=ESTIMATED_DELIVERY if delivery_date and not rejected else None,
                        date=delivery_date if not rejected else None,
                    ),
                ),
            )
        )

    statuses = {item.acknowledgments[0].status_code for item in items}
    if statuses == {ITEM_REJECTED}:
        ack_type = REJECTED
    elif ITEM_REJECTED in statuses:
        ack_type = ACCEPTED_WITH_CHANGE
    else:
        ack_type = ACCEPTED_NO_CHANGE

    beg = order.beginning
    return PurchaseOrderAcknowledgment(
        control_number=control_number,
        beginning=AcknowledgmentBeginning(
            purpose_code="00",
            acknowledgment_type=ack_type,
            purchase_order_number=beg.purchase_order_number,
            purchase_order_date=beg.order_date,
            release_number=beg.release_number,
            contract_number=beg.contract_number,
            acknowledgment_date=acknowledgment_date,
        ),
        line_items=tuple(items),
        parties=order.parties,
        totals=Totals(line_item_count=len(items)),
    )
