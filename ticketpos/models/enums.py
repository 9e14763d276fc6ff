"""Tagged enums and their storage codec.

Every enum is written to the database as a short text code taken from an
explicit, versioned table. Reads are validated: an unknown code raises
``ValidationError`` instead of silently falling back to a default. Codes
written by the previous (version 0) schema are still understood on read.
"""
from __future__ import annotations

from enum import Enum
from typing import Dict, Type

from sqlalchemy import String
from sqlalchemy.types import TypeDecorator

from ticketpos.core.errors import ValidationError

STORAGE_VERSION = 1


class TicketKind(str, Enum):
    DINE_IN = "dine_in"
    COUNTER_PICKUP = "counter_pickup"
    DELIVERY = "delivery"


class TicketStatus(str, Enum):
    OPEN = "open"
    BILL_REQUESTED = "bill_requested"
    PAID = "paid"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    NONE = "none"
    CASH = "cash"
    CARD = "card"
    SPLIT = "split"


class LineStatus(str, Enum):
    PENDING = "pending"
    IN_PREPARATION = "in_preparation"
    DONE = "done"
    CANCELLED = "cancelled"
    COMPED = "comped"


class TableStatus(str, Enum):
    FREE = "free"
    OCCUPIED = "occupied"
    BILL_REQUESTED = "bill_requested"
    RESERVED = "reserved"


class TableZone(str, Enum):
    INSIDE = "inside"
    OUTSIDE = "outside"
    TERRACE = "terrace"


class OperatorRole(str, Enum):
    STAFF = "staff"
    MANAGER = "manager"
    ADMIN = "admin"


class AuthAction(str, Enum):
    DISCOUNT = "discount"
    COMP = "comp"


# version -> enum -> {stored code: member}
_CODES: Dict[int, Dict[Type[Enum], Dict[str, Enum]]] = {
    1: {cls: {m.value: m for m in cls} for cls in (
        TicketKind, TicketStatus, PaymentMethod, LineStatus,
        TableStatus, TableZone, OperatorRole, AuthAction,
    )},
    0: {
        TicketKind: {
            "Masa": TicketKind.DINE_IN,
            "GelAl": TicketKind.COUNTER_PICKUP,
            "Paket": TicketKind.DELIVERY,
        },
        TicketStatus: {
            "Acik": TicketStatus.OPEN,
            "Hesap": TicketStatus.BILL_REQUESTED,
            "Odendi": TicketStatus.PAID,
            "Iptal": TicketStatus.CANCELLED,
        },
        PaymentMethod: {
            "Nakit": PaymentMethod.CASH,
            "Kart": PaymentMethod.CARD,
            "Karisik": PaymentMethod.SPLIT,
        },
        LineStatus: {
            "Bekliyor": LineStatus.PENDING,
            "Hazirlaniyor": LineStatus.IN_PREPARATION,
            "Tamamlandi": LineStatus.DONE,
            "Iptal": LineStatus.CANCELLED,
            "Ikram": LineStatus.COMPED,
        },
        TableStatus: {
            "Bos": TableStatus.FREE,
            "Dolu": TableStatus.OCCUPIED,
            "Hesap": TableStatus.BILL_REQUESTED,
            "Rezerve": TableStatus.RESERVED,
        },
        TableZone: {
            "Iceri": TableZone.INSIDE,
            "Disari": TableZone.OUTSIDE,
            "Teras": TableZone.TERRACE,
        },
        OperatorRole: {
            "Calisan": OperatorRole.STAFF,
            "Yonetici": OperatorRole.MANAGER,
            "Admin": OperatorRole.ADMIN,
        },
    },
}


def encode(member: Enum) -> str:
    for code, m in _CODES[STORAGE_VERSION][type(member)].items():
        if m is member:
            return code
    raise ValidationError(f"{member!r} has no storage code", code="unknown_enum_code")


def decode(enum_cls: Type[Enum], code: str) -> Enum:
    """Resolve a stored code, newest schema version first."""
    for version in sorted(_CODES, reverse=True):
        member = _CODES[version].get(enum_cls, {}).get(code)
        if member is not None:
            return member
    raise ValidationError(
        f"unknown {enum_cls.__name__} code {code!r}", code="unknown_enum_code"
    )


class EnumCode(TypeDecorator):
    """Stores an Enum as its versioned text code and validates on read."""

    impl = String(32)
    cache_ok = True

    def __init__(self, enum_cls: Type[Enum], *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.enum_cls = enum_cls

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, self.enum_cls):
            return encode(value)
        # plain strings go through the same validation as reads
        return encode(decode(self.enum_cls, value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return decode(self.enum_cls, value)
