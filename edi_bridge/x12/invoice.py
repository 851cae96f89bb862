"""
X12 810 Invoice

Typed model, parser and generator for the 810 transaction set.

Segment layout:
- BIG  Beginning Segment for Invoice (required)
- CUR, REF*, PER*  header
- N1 loop [0..n]: N1, N3, N4, REF*, PER*  (closed by the next N1 or any header segment)
- ITD*, DTM*  terms and dates
- IT1 loop [1..n]: IT1, PID*, TXI*, SAC*  (closed by the next IT1, TDS or CTT)
- TDS (required), TXI*, CAD, SAC*, ISS, CTT  summary

TDS amounts carry two implied decimal places on the wire; the model holds
them in currency units.
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
from edi_bridge.x12.purchase_order import Currency, ItemDescription, Tax
from edi_bridge.x12.segments import IssueSeverity, ParseIssue, Segment, TransactionSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InvoiceBeginning:
    """BIG segment."""

    invoice_date: str
    invoice_number: str
    purchase_order_date: Optional[str] = None
    purchase_order_number: Optional[str] = None
    release_number: Optional[str] = None
    change_order_sequence: Optional[str] = None
    transaction_type_code: Optional[str] = None


@dataclass(frozen=True)
class PaymentTerms:
    """ITD segment."""

    terms_type_code: Optional[str] = None
    basis_date_code: Optional[str] = None
    discount_percent: Optional[Decimal] = None
    discount_due_date: Optional[str] = None
    discount_days_due: Optional[int] = None
    net_due_date: Optional[str] = None
    net_days: Optional[int] = None
    discount_amount: Optional[Decimal] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class AllowanceCharge:
    """SAC segment."""

    indicator: str
    code: Optional[str] = None
    amount: Optional[Decimal] = None
    description: Optional[str] = None

    @property
    def is_charge(self) -> bool:
        return self.indicator == "C"


@dataclass(frozen=True)
class TotalMonetarySummary:
    """TDS segment."""

    total_amount: Decimal
    amount_subject_to_discount: Optional[Decimal] = None
    discounted_amount: Optional[Decimal] = None
    terms_discount_amount: Optional[Decimal] = None


@dataclass(frozen=True)
class CarrierDetail:
    """CAD segment."""

    transportation_method_code: Optional[str] = None
    equipment_code: Optional[str] = None
    routing: Optional[str] = None
    status_code: Optional[str] = None


@dataclass(frozen=True)
class ShipmentSummary:
    """ISS segment."""

    units_shipped: Optional[Decimal] = None
    unit_of_measure: Optional[str] = None
    weight: Optional[Decimal] = None
    weight_unit: Optional[str] = None


@dataclass(frozen=True)
class InvoiceLineItem:
    """IT1 loop."""

    quantity: Optional[Decimal]
    unit_of_measure: str
    assigned_id: Optional[str] = None
    unit_price: Optional[Decimal] = None
    price_basis: Optional[str] = None
    product_ids: Tuple[ProductId, ...] = ()
    descriptions: Tuple[ItemDescription, ...] = ()
    taxes: Tuple[Tax, ...] = ()
    allowances_charges: Tuple[AllowanceCharge, ...] = ()

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
class Invoice:
    """A parsed 810 Invoice."""

    transaction_set_code: ClassVar[str] = "810"

    control_number: str
    beginning: InvoiceBeginning
    total_summary: TotalMonetarySummary
    line_items: Tuple[InvoiceLineItem, ...] = ()
    currency: Optional[Currency] = None
    references: Tuple[Reference, ...] = ()
    contacts: Tuple[Contact, ...] = ()
    parties: Tuple[Party, ...] = ()
    payment_terms: Tuple[PaymentTerms, ...] = ()
    dates: Tuple[DateTimeReference, ...] = ()
    taxes: Tuple[Tax, ...] = ()
    carrier_detail: Optional[CarrierDetail] = None
    allowances_charges: Tuple[AllowanceCharge, ...] = ()
    shipment_summary: Optional[ShipmentSummary] = None
    totals: Optional[Totals] = None

    @property
    def invoice_number(self) -> str:
        return self.beginning.invoice_number

    @property
    def line_item_total(self) -> Decimal:
        """Sum of the priced line extensions."""
        return sum(
            (item.extended_amount for item in self.line_items if item.extended_amount is not None),
            Decimal("0"),
        )

    def party(self, entity_id_code: str) -> Optional[Party]:
        for party in self.parties:
            if party.entity_id_code == entity_id_code:
                return party
        return None


def _implied_cents(reader: ElementReader, segment: Segment, position: int) -> Optional[Decimal]:
    value = reader.decimal(segment, position)
    return value.scaleb(-2) if value is not None else None


def _to_implied_cents(amount: Optional[Decimal]) -> Optional[Decimal]:
    if amount is None:
        return None
    return amount.scaleb(2).quantize(Decimal("1"))


def _read_tax(segment: Segment, reader: ElementReader) -> Tax:
    return Tax(reader.text(segment, 1), reader.decimal(segment, 2), reader.decimal(segment, 3))


def _read_allowance_charge(segment: Segment, reader: ElementReader) -> AllowanceCharge:
    return AllowanceCharge(
        indicator=reader.text(segment, 1),
        code=reader.optional(segment, 2),
        amount=reader.decimal(segment, 5),
        description=reader.optional(segment, 15),
    )


def _tax_segment(tax: Tax) -> Segment:
    return Segment.build("TXI", tax.tax_type_code, tax.amount, tax.percent)


def _allowance_charge_segment(sac: AllowanceCharge) -> Segment:
    return Segment.build(
        "SAC", sac.indicator, sac.code, None, None, sac.amount, *([None] * 9), sac.description
    )


class _InvoiceLineLoop:
    """Accumulates one open IT1 loop."""

    def __init__(self, it1: Segment, reader: ElementReader):
        self.it1 = it1
        self.reader = reader
        self.descriptions: List[ItemDescription] = []
        self.taxes: List[Tax] = []
        self.allowances_charges: List[AllowanceCharge] = []

    def accept(self, segment: Segment) -> bool:
        sid = segment.segment_id
        r = self.reader
        if sid == "PID":
            self.descriptions.append(ItemDescription(r.text(segment, 1), r.text(segment, 5)))
        elif sid == "TXI":
            self.taxes.append(_read_tax(segment, r))
        elif sid == "SAC":
            self.allowances_charges.append(_read_allowance_charge(segment, r))
        else:
            return False
        return True

    def close(self) -> InvoiceLineItem:
        r, it1 = self.reader, self.it1
        return InvoiceLineItem(
            assigned_id=r.optional(it1, 1),
            quantity=r.decimal(it1, 2),
            unit_of_measure=r.text(it1, 3),
            unit_price=r.decimal(it1, 4),
            price_basis=r.optional(it1, 5),
            product_ids=r.pairs(it1, 6),
            descriptions=tuple(self.descriptions),
            taxes=tuple(self.taxes),
            allowances_charges=tuple(self.allowances_charges),
        )


class InvoiceParser:
    """
    810 Invoice parser.

    Single forward pass; the loop state moves
    Outside -> InLoop(N1) -> Outside -> InLoop(IT1) -> InLoop(SUMMARY).
    """

    HEADER_SEGMENTS = ("CUR", "REF", "PER", "ITD", "DTM")
    SUMMARY_SEGMENTS = ("TXI", "CAD", "SAC", "ISS", "CTT")

    def __init__(self):
        self.errors: List[ParseIssue] = []

    def parse(self, transaction_set: TransactionSet) -> ParseResult[Invoice]:
        """
        Parse an 810 transaction set.

        Returns:
            ParseResult with the invoice, or no document and one fatal error
            when BIG or TDS is missing
        """
        self.errors = []

        big = transaction_set.find("BIG")
        if big is None:
            return ParseResult.fatal("MISSING_BIG", "BIG segment is required for 810", "BIG")
        tds = transaction_set.find("TDS")
        if tds is None:
            return ParseResult.fatal("MISSING_TDS", "TDS segment is required for 810", "TDS")

        reader = ElementReader(self.errors)
        state: LoopState = OUTSIDE

        currency: Optional[Currency] = None
        references: List[Reference] = []
        contacts: List[Contact] = []
        parties: List[Party] = []
        terms: List[PaymentTerms] = []
        dates: List[DateTimeReference] = []
        items: List[InvoiceLineItem] = []
        taxes: List[Tax] = []
        carrier: Optional[CarrierDetail] = None
        charges: List[AllowanceCharge] = []
        shipment: Optional[ShipmentSummary] = None
        totals: Optional[Totals] = None

        party_loop: Optional[PartyLoop] = None
        item_loop: Optional[_InvoiceLineLoop] = None

        for position, segment in enumerate(transaction_set.segments, 1):
            sid = segment.segment_id

            if sid in ("BIG", "TDS"):
                if segment is not big and segment is not tds:
                    self.errors.append(
                        ParseIssue(
                            "DUPLICATE_SEGMENT",
                            f"Only the first {sid} segment is used",
                            sid,
                            IssueSeverity.WARNING,
                            position,
                        )
                    )
                elif sid == "TDS":
                    if party_loop is not None:
                        parties.append(party_loop.close())
                        party_loop = None
                    if item_loop is not None:
                        items.append(item_loop.close())
                        item_loop = None
                    state = in_loop("SUMMARY")
                continue

            if sid == "N1":
                if not (state.outside or state.is_in("N1")):
                    self.errors.append(unexpected(segment, state, position))
                    continue
                if party_loop is not None:
                    parties.append(party_loop.close())
                party_loop = PartyLoop(segment, reader)
                state = in_loop("N1")
                continue

            if sid == "IT1":
                if state.is_in("SUMMARY"):
                    self.errors.append(unexpected(segment, state, position))
                    continue
                if party_loop is not None:
                    parties.append(party_loop.close())
                    party_loop = None
                if item_loop is not None:
                    items.append(item_loop.close())
                item_loop = _InvoiceLineLoop(segment, reader)
                state = in_loop("IT1")
                continue

            if state.is_in("N1") and party_loop is not None:
                if party_loop.accept(segment):
                    continue
                if sid in self.HEADER_SEGMENTS:
                    parties.append(party_loop.close())
                    party_loop = None
                    state = OUTSIDE

            if state.is_in("IT1") and item_loop is not None:
                if item_loop.accept(segment):
                    continue
                if sid == "CTT":
                    items.append(item_loop.close())
                    item_loop = None
                    state = in_loop("SUMMARY")

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
                elif sid == "ITD":
                    terms.append(
                        PaymentTerms(
                            terms_type_code=reader.optional(segment, 1),
                            basis_date_code=reader.optional(segment, 2),
                            discount_percent=reader.decimal(segment, 3),
                            discount_due_date=reader.optional(segment, 4),
                            discount_days_due=reader.integer(segment, 5),
                            net_due_date=reader.optional(segment, 6),
                            net_days=reader.integer(segment, 7),
                            discount_amount=reader.decimal(segment, 8),
                            description=reader.optional(segment, 12),
                        )
                    )
                else:
                    dates.append(DateTimeReference.read(segment, reader))
                continue

            if state.is_in("SUMMARY") and sid in self.SUMMARY_SEGMENTS:
                if sid == "TXI":
                    taxes.append(_read_tax(segment, reader))
                elif sid == "CAD":
                    carrier = CarrierDetail(
                        transportation_method_code=reader.optional(segment, 1),
                        equipment_code=reader.optional(segment, 2),
                        routing=reader.optional(segment, 5),
                        status_code=reader.optional(segment, 7),
                    )
                elif sid == "SAC":
                    charges.append(_read_allowance_charge(segment, reader))
                elif sid == "ISS":
                    shipment = ShipmentSummary(
                        units_shipped=reader.decimal(segment, 1),
                        unit_of_measure=reader.optional(segment, 2),
                        weight=reader.decimal(segment, 3),
                        weight_unit=reader.optional(segment, 4),
                    )
                else:
                    totals = Totals.read(segment, reader)
                continue

            self.errors.append(unexpected(segment, state, position))

        if party_loop is not None:
            parties.append(party_loop.close())
        if item_loop is not None:
            items.append(item_loop.close())

        if not items:
            self.errors.append(
                ParseIssue("NO_LINE_ITEMS", "At least one IT1 segment is required for 810", "IT1")
            )

        document = Invoice(
            control_number=transaction_set.control_number,
            beginning=InvoiceBeginning(
                invoice_date=reader.text(big, 1),
                invoice_number=reader.text(big, 2),
                purchase_order_date=reader.optional(big, 3),
                purchase_order_number=reader.optional(big, 4),
                release_number=reader.optional(big, 5),
                change_order_sequence=reader.optional(big, 6),
                transaction_type_code=reader.optional(big, 7),
            ),
            total_summary=TotalMonetarySummary(
                total_amount=_implied_cents(reader, tds, 1) or Decimal("0"),
                amount_subject_to_discount=_implied_cents(reader, tds, 2),
                discounted_amount=_implied_cents(reader, tds, 3),
                terms_discount_amount=_implied_cents(reader, tds, 4),
            ),
            line_items=tuple(items),
            currency=currency,
            references=tuple(references),
            contacts=tuple(contacts),
            parties=tuple(parties),
            payment_terms=tuple(terms),
            dates=tuple(dates),
            taxes=tuple(taxes),
            carrier_detail=carrier,
            allowances_charges=tuple(charges),
            shipment_summary=shipment,
            totals=totals,
        )

        logger.debug(
            f"Parsed 810 {document.invoice_number}: "
            f"{len(items)} line items, {len(self.errors)} issues"
        )
        return ParseResult(document, tuple(self.errors))


class InvoiceGenerator:
    """810 Invoice generator."""

    def generate(self, invoice: Invoice) -> TransactionSet:
        """Build the ST..SE transaction set for an invoice."""
        big = invoice.beginning
        segments: List[Segment] = [
            Segment.build(
                "BIG",
                big.invoice_date,
                big.invoice_number,
                big.purchase_order_date,
                big.purchase_order_number,
                big.release_number,
                big.change_order_sequence,
                big.transaction_type_code,
            )
        ]

        if invoice.currency:
            cur = invoice.currency
            segments.append(
                Segment.build("CUR", cur.entity_id_code, cur.currency_code, cur.exchange_rate)
            )
        segments.extend(ref.to_segment() for ref in invoice.references)
        segments.extend(contact.to_segment() for contact in invoice.contacts)

        for party in invoice.parties:
            segments.extend(party.to_segments())

        for itd in invoice.payment_terms:
            segments.append(
                Segment.build(
                    "ITD",
                    itd.terms_type_code,
                    itd.basis_date_code,
                    itd.discount_percent,
                    itd.discount_due_date,
                    itd.discount_days_due,
                    itd.net_due_date,
                    itd.net_days,
                    itd.discount_amount,
                    None,
                    None,
                    None,
                    itd.description,
                )
            )
        segments.extend(dtm.to_segment() for dtm in invoice.dates)

        for item in invoice.line_items:
            product_values = []
            for pid in item.product_ids:
                product_values.extend([pid.qualifier, pid.product_id])
            segments.append(
                Segment.build(
                    "IT1",
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
            segments.extend(_tax_segment(tax) for tax in item.taxes)
            segments.extend(_allowance_charge_segment(sac) for sac in item.allowances_charges)

        tds = invoice.total_summary
        segments.append(
            Segment.build(
                "TDS",
                _to_implied_cents(tds.total_amount),
                _to_implied_cents(tds.amount_subject_to_discount),
                _to_implied_cents(tds.discounted_amount),
                _to_implied_cents(tds.terms_discount_amount),
            )
        )
        segments.extend(_tax_segment(tax) for tax in invoice.taxes)
        if invoice.carrier_detail:
            cad = invoice.carrier_detail
            segments.append(
                Segment.build(
                    "CAD",
                    cad.transportation_method_code,
                    cad.equipment_code,
                    None,
                    None,
                    cad.routing,
                    None,
                    cad.status_code,
                )
            )
        segments.extend(_allowance_charge_segment(sac) for sac in invoice.allowances_charges)
        if invoice.shipment_summary:
            iss = invoice.shipment_summary
            segments.append(
                Segment.build("ISS", iss.units_shipped, iss.unit_of_measure, iss.weight, iss.weight_unit)
            )
        if invoice.totals:
            segments.append(invoice.totals.to_segment())

        return TransactionSet.build(Invoice.transaction_set_code, invoice.control_number, segments)
