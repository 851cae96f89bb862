"""
X12 856 Ship Notice/Manifest

Typed model, parser and generator for the 856 transaction set.

Segment layout:
- BSN  Beginning Segment for Ship Notice (required)
- DTM*  header dates, before the first HL
- HL loop [1..n]: HL followed by level-specific segments up to the next HL
    S (shipment): TD5, REF*, DTM*, N1 loops
    O (order):    PRF, REF*
    P (pack):     TD1, MAN*
    I (item):     LIN, SN1, PID*, SER*, REF*
- CTT  summary
"""

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import ClassVar, Dict, List, Optional, Tuple
import logging

from edi_bridge.x12.codes import HierarchicalLevelCode
from edi_bridge.x12.common import (
    OUTSIDE,
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
from edi_bridge.x12.segments import IssueSeverity, ParseIssue, Segment, TransactionSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShipNoticeBeginning:
    """BSN segment."""

    purpose_code: str
    shipment_id: str
    shipment_date: str
    shipment_time: Optional[str] = None
    hierarchical_structure_code: Optional[str] = None


@dataclass(frozen=True)
class Carrier:
    """TD5 segment at shipment level."""

    routing_sequence_code: Optional[str] = None
    id_code_qualifier: Optional[str] = None
    carrier_code: Optional[str] = None
    transportation_method_code: Optional[str] = None
    routing: Optional[str] = None


@dataclass(frozen=True)
class ShipmentLevel:
    carrier: Optional[Carrier] = None
    references: Tuple[Reference, ...] = ()
    dates: Tuple[DateTimeReference, ...] = ()
    parties: Tuple[Party, ...] = ()


@dataclass(frozen=True)
class OrderLevel:
    purchase_order_number: Optional[str] = None
    references: Tuple[Reference, ...] = ()


@dataclass(frozen=True)
class Packaging:
    """TD1 segment."""

    packaging_code: Optional[str] = None
    lading_quantity: Optional[int] = None
    weight_qualifier: Optional[str] = None
    weight: Optional[Decimal] = None
    weight_unit: Optional[str] = None


@dataclass(frozen=True)
class Marks:
    """MAN segment."""

    qualifier: Optional[str] = None
    marks: Optional[str] = None


@dataclass(frozen=True)
class PackLevel:
    packaging: Optional[Packaging] = None
    marks: Tuple[Marks, ...] = ()


@dataclass(frozen=True)
class ShippedQuantity:
    """SN1 segment."""

    quantity: Optional[Decimal]
    unit_of_measure: Optional[str] = None
    assigned_id: Optional[str] = None


@dataclass(frozen=True)
class ItemLevel:
    line_number: Optional[str] = None
    product_ids: Tuple[ProductId, ...] = ()
    shipped: Optional[ShippedQuantity] = None
    descriptions: Tuple[str, ...] = ()
    serial_numbers: Tuple[str, ...] = ()
    references: Tuple[Reference, ...] = ()

    @property
    def all_serial_numbers(self) -> Tuple[str, ...]:
        """SER serial numbers followed by REF*SN references."""
        from_refs = tuple(
            ref.reference_id
            for ref in self.references
            if ref.qualifier == "SN" and ref.reference_id
        )
        return self.serial_numbers + from_refs


@dataclass(frozen=True)
class HierarchicalLevel:
    """One HL loop; exactly one of the level bodies is set for S/O/P/I."""

    hl_id: str
    level_code: str
    parent_id: Optional[str] = None
    child_code: Optional[str] = None
    shipment: Optional[ShipmentLevel] = None
    order: Optional[OrderLevel] = None
    pack: Optional[PackLevel] = None
    item: Optional[ItemLevel] = None

    @property
    def level(self) -> Optional[HierarchicalLevelCode]:
        return HierarchicalLevelCode.from_code(self.level_code)


@dataclass(frozen=True)
class ShipNotice:
    """A parsed 856 Ship Notice."""

    transaction_set_code: ClassVar[str] = "856"

    control_number: str
    beginning: ShipNoticeBeginning
    levels: Tuple[HierarchicalLevel, ...] = ()
    dates: Tuple[DateTimeReference, ...] = ()
    totals: Optional[Totals] = None

    @property
    def shipment_id(self) -> str:
        return self.beginning.shipment_id

    def levels_of(self, level_code: str) -> List[HierarchicalLevel]:
        return [level for level in self.levels if level.level_code == level_code]

    def children_of(self, hl_id: str) -> List[HierarchicalLevel]:
        return [level for level in self.levels if level.parent_id == hl_id]


class _LevelLoop:
    """Accumulates the level-specific segments of one open HL loop."""

    ACCEPTS: Dict[str, Tuple[str, ...]] = {
        "S": ("TD5", "REF", "DTM", "N1", "N3", "N4", "PER"),
        "O": ("PRF", "REF"),
        "P": ("TD1", "MAN"),
        "I": ("LIN", "SN1", "PID", "SER", "REF"),
    }

    def __init__(self, hl: Segment, reader: ElementReader):
        self.hl = hl
        self.reader = reader
        self.level_code = reader.text(hl, 3)
        self.segments: Dict[str, List[Segment]] = {}
        self.party_loop: Optional[PartyLoop] = None
        self.parties: List[Party] = []
        self.references: List[Reference] = []

    def accept(self, segment: Segment) -> bool:
        sid = segment.segment_id
        if sid not in self.ACCEPTS.get(self.level_code, ()):
            return False

        if self.level_code == "S":
            if sid == "N1":
                if self.party_loop is not None:
                    self.parties.append(self.party_loop.close())
                self.party_loop = PartyLoop(segment, self.reader)
                return True
            if self.party_loop is not None:
                return self.party_loop.accept(segment)
            if sid in ("N3", "N4", "PER"):
                return False

        if sid == "REF":
            self.references.append(Reference.read(segment, self.reader))
        else:
            self.segments.setdefault(sid, []).append(segment)
        return True

    def _first(self, segment_id: str) -> Optional[Segment]:
        found = self.segments.get(segment_id)
        return found[0] if found else None

    def _all(self, segment_id: str) -> List[Segment]:
        return self.segments.get(segment_id, [])

    def close(self) -> HierarchicalLevel:
        r, hl = self.reader, self.hl
        level = HierarchicalLevel(
            hl_id=r.text(hl, 1),
            parent_id=r.optional(hl, 2),
            level_code=self.level_code,
            child_code=r.optional(hl, 4),
        )

        if self.level_code == "S":
            if self.party_loop is not None:
                self.parties.append(self.party_loop.close())
            td5 = self._first("TD5")
            carrier = None
            if td5 is not None:
                carrier = Carrier(
                    routing_sequence_code=r.optional(td5, 1),
                    id_code_qualifier=r.optional(td5, 2),
                    carrier_code=r.optional(td5, 3),
                    transportation_method_code=r.optional(td5, 4),
                    routing=r.optional(td5, 5),
                )
            return replace(
                level,
                shipment=ShipmentLevel(
                    carrier=carrier,
                    references=tuple(self.references),
                    dates=tuple(DateTimeReference.read(s, r) for s in self._all("DTM")),
                    parties=tuple(self.parties),
                ),
            )

        if self.level_code == "O":
            prf = self._first("PRF")
            return replace(
                level,
                order=OrderLevel(
                    purchase_order_number=r.optional(prf, 1) if prf else None,
                    references=tuple(self.references),
                ),
            )

        if self.level_code == "P":
            td1 = self._first("TD1")
            packaging = None
            if td1 is not None:
                packaging = Packaging(
                    packaging_code=r.optional(td1, 1),
                    lading_quantity=r.integer(td1, 2),
                    weight_qualifier=r.optional(td1, 6),
                    weight=r.decimal(td1, 7),
                    weight_unit=r.optional(td1, 8),
                )
            return replace(
                level,
                pack=PackLevel(
                    packaging=packaging,
                    marks=tuple(
                        Marks(r.optional(s, 1), r.optional(s, 2)) for s in self._all("MAN")
                    ),
                ),
            )

        if self.level_code == "I":
            lin = self._first("LIN")
            sn1 = self._first("SN1")
            return replace(
                level,
                item=ItemLevel(
                    line_number=r.optional(lin, 1) if lin else None,
                    product_ids=r.pairs(lin, 2) if lin else (),
                    shipped=ShippedQuantity(
                        quantity=r.decimal(sn1, 2),
                        unit_of_measure=r.optional(sn1, 3),
                        assigned_id=r.optional(sn1, 1),
                    )
                    if sn1
                    else None,
                    descriptions=tuple(r.text(s, 5) for s in self._all("PID")),
                    serial_numbers=tuple(
                        r.text(s, 1) for s in self._all("SER") if r.text(s, 1)
                    ),
                    references=tuple(self.references),
                ),
            )

        return level


class ShipNoticeParser:
    """
    856 Ship Notice parser.

    Each HL opens a loop that runs until the next HL or CTT. Parent ids are
    checked against HL ids seen earlier in the set.
    """

    def __init__(self):
        self.errors: List[ParseIssue] = []

    def parse(self, transaction_set: TransactionSet) -> ParseResult[ShipNotice]:
        self.errors = []

        bsn = transaction_set.find("BSN")
        if bsn is None:
            return ParseResult.fatal("MISSING_BSN", "BSN segment is required for 856", "BSN")

        reader = ElementReader(self.errors)
        state: LoopState = OUTSIDE

        header_dates: List[DateTimeReference] = []
        levels: List[HierarchicalLevel] = []
        totals: Optional[Totals] = None
        seen_ids = set()
        loop: Optional[_LevelLoop] = None

        for position, segment in enumerate(transaction_set.segments, 1):
            sid = segment.segment_id

            if sid == "BSN":
                if segment is not bsn:
                    self.errors.append(unexpected(segment, state, position))
                continue

            if sid == "HL":
                if state.is_in("SUMMARY"):
                    self.errors.append(unexpected(segment, state, position))
                    continue
                if loop is not None:
                    levels.append(loop.close())

                hl_id = reader.text(segment, 1)
                parent_id = reader.text(segment, 2)
                if parent_id and parent_id not in seen_ids:
                    self.errors.append(
                        ParseIssue(
                            "ORPHAN_HL",
                            f"HL {hl_id} names parent {parent_id} which does not precede it",
                            "HL",
                            IssueSeverity.WARNING,
                            position,
                        )
                    )
                seen_ids.add(hl_id)

                loop = _LevelLoop(segment, reader)
                state = in_loop("HL")
                continue

            if sid == "CTT":
                if loop is not None:
                    levels.append(loop.close())
                    loop = None
                totals = Totals.read(segment, reader)
                state = in_loop("SUMMARY")
                continue

            if state.outside and sid == "DTM":
                header_dates.append(DateTimeReference.read(segment, reader))
                continue

            if state.is_in("HL") and loop is not None and loop.accept(segment):
                continue

            self.errors.append(unexpected(segment, state, position))

        if loop is not None:
            levels.append(loop.close())

        if not levels:
            self.errors.append(
                ParseIssue("NO_HL_SEGMENTS", "At least one HL segment is required for 856", "HL")
            )

        document = ShipNotice(
            control_number=transaction_set.control_number,
            beginning=ShipNoticeBeginning(
                purpose_code=reader.text(bsn, 1),
                shipment_id=reader.text(bsn, 2),
                shipment_date=reader.text(bsn, 3),
                shipment_time=reader.optional(bsn, 4),
                hierarchical_structure_code=reader.optional(bsn, 5),
            ),
            levels=tuple(levels),
            dates=tuple(header_dates),
            totals=totals,
        )

        logger.debug(
            f"Parsed 856 {document.shipment_id}: {len(levels)} HL levels, "
            f"{len(self.errors)} issues"
        )
        return ParseResult(document, tuple(self.errors))


class ShipNoticeGenerator:
    """856 Ship Notice generator."""

    def generate(self, notice: ShipNotice) -> TransactionSet:
        bsn = notice.beginning
        segments: List[Segment] = [
            Segment.build(
                "BSN",
                bsn.purpose_code,
                bsn.shipment_id,
                bsn.shipment_date,
                bsn.shipment_time,
                bsn.hierarchical_structure_code,
            )
        ]
        segments.extend(dtm.to_segment() for dtm in notice.dates)

        for level in notice.levels:
            segments.append(
                Segment.build("HL", level.hl_id, level.parent_id, level.level_code, level.child_code)
            )
            segments.extend(self._level_segments(level))

        if notice.totals:
            segments.append(notice.totals.to_segment())

        return TransactionSet.build(ShipNotice.transaction_set_code, notice.control_number, segments)

    def _level_segments(self, level: HierarchicalLevel) -> List[Segment]:
        segments: List[Segment] = []

        if level.shipment:
            shipment = level.shipment
            if shipment.carrier:
                c = shipment.carrier
                segments.append(
                    Segment.build(
                        "TD5",
                        c.routing_sequence_code,
                        c.id_code_qualifier,
                        c.carrier_code,
                        c.transportation_method_code,
                        c.routing,
                    )
                )
            segments.extend(ref.to_segment() for ref in shipment.references)
            segments.extend(dtm.to_segment() for dtm in shipment.dates)
            for party in shipment.parties:
                segments.extend(party.to_segments())

        elif level.order:
            if level.order.purchase_order_number:
                segments.append(Segment.build("PRF", level.order.purchase_order_number))
            segments.extend(ref.to_segment() for ref in level.order.references)

        elif level.pack:
            p = level.pack.packaging
            if p:
                segments.append(
                    Segment.build(
                        "TD1",
                        p.packaging_code,
                        p.lading_quantity,
                        None,
                        None,
                        None,
                        p.weight_qualifier,
                        p.weight,
                        p.weight_unit,
                    )
                )
            for mark in level.pack.marks:
                segments.append(Segment.build("MAN", mark.qualifier, mark.marks))

        elif level.item:
            item = level.item
            if item.line_number is not None or item.product_ids:
                values = []
                for pid in item.product_ids:
                    values.extend([pid.qualifier, pid.product_id])
                segments.append(Segment.build("LIN", item.line_number, *values))
            if item.shipped:
                s = item.shipped
                segments.append(Segment.build("SN1", s.assigned_id, s.quantity, s.unit_of_measure))
            for description in item.descriptions:
                segments.append(Segment.build("PID", "F", None, None, None, description))
            for serial in item.serial_numbers:
                segments.append(Segment.build("SER", serial))
            segments.extend(ref.to_segment() for ref in item.references)

        return segments
