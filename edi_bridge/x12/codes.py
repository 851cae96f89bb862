"""
X12 Code Lists

Code values used by the supported transaction sets.
"""

from enum import Enum
from typing import Optional


class TransactionSetCode(Enum):
    """Transaction set identifier codes (ST01) with their functional group id (GS01)."""

    PURCHASE_ORDER = ("850", "PO", "Purchase Order")
    SHIP_NOTICE = ("856", "SH", "Ship Notice/Manifest")
    PURCHASE_ORDER_ACK = ("855", "PR", "Purchase Order Acknowledgment")
    INVOICE = ("810", "IN", "Invoice")
    FUNCTIONAL_ACK = ("997", "FA", "Functional Acknowledgment")

    def __init__(self, code: str, functional_id: str, description: str):
        self.code = code
        self.functional_id = functional_id
        self.description = description

    @classmethod
    def from_code(cls, code: str) -> Optional["TransactionSetCode"]:
        for member in cls:
            if member.code == code:
                return member
        return None


class AcknowledgmentCode(Enum):
    """AK5/AK9 acknowledgment codes."""

    ACCEPTED = ("A", "Accepted")
    ACCEPTED_WITH_ERRORS = ("E", "Accepted But Errors Were Noted")
    PARTIALLY_ACCEPTED = ("P", "Partially Accepted")
    REJECTED = ("R", "Rejected")
    REJECTED_MAC_FAILED = ("M", "Rejected, Message Authentication Code Failed")
    REJECTED_ASSURANCE_FAILED = ("W", "Rejected, Assurance Failed Validity Tests")
    REJECTED_DECRYPT_FAILED = ("X", "Rejected, Content After Decryption Could Not Be Analyzed")

    def __init__(self, code: str, description: str):
        self.code = code
        self.description = description

    @property
    def is_accepted(self) -> bool:
        return self.code in ("A", "E", "P")

    @classmethod
    def from_code(cls, code: str) -> Optional["AcknowledgmentCode"]:
        for member in cls:
            if member.code == code:
                return member
        return None


class HierarchicalLevelCode(Enum):
    """HL03 level codes for a ship notice."""

    SHIPMENT = ("S", "Shipment")
    ORDER = ("O", "Order")
    TARE = ("T", "Shipping Tare")
    PACK = ("P", "Pack")
    ITEM = ("I", "Item")

    def __init__(self, code: str, description: str):
        self.code = code
        self.description = description

    @classmethod
    def from_code(cls, code: str) -> Optional["HierarchicalLevelCode"]:
        for member in cls:
            if member.code == code:
                return member
        return None


def functional_id_for(transaction_set_code: str) -> str:
    """GS01 functional identifier for a set code; unknown codes map to an empty string."""
    member = TransactionSetCode.from_code(transaction_set_code)
    return member.functional_id if member else ""
