"""Table state coordinator.

A table's status follows the lifecycle of the ticket bound to it. The ticket
services call the ``on_*`` hooks; nothing else should write ``status``
directly except ``set_reserved`` for tables with no ticket.

Hooks only stage changes on the session. The caller commits, so a table
update always lands in the same transaction as the ticket change behind it.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ticketpos.core.errors import Conflict, InvalidState, NotFound, ValidationError
from ticketpos.models.enums import LineStatus, TableStatus, TableZone, TicketStatus
from ticketpos.models.table import DiningTable
from ticketpos.models.ticket import ACTIVE_TICKET_STATUSES, Ticket, TicketLine

logger = logging.getLogger(__name__)


def get_table(db: Session, table_id: int) -> DiningTable:
    t = db.get(DiningTable, table_id)
    if not t:
        raise NotFound(f"table {table_id} not found", code="table_not_found")
    return t


def list_tables(db: Session, zone: Optional[TableZone] = None) -> List[DiningTable]:
    q = db.query(DiningTable).filter(DiningTable.active.is_(True))
    if zone is not None:
        q = q.filter(DiningTable.zone == zone)
    return q.order_by(DiningTable.zone, DiningTable.number).all()


def create_table(db: Session, number: str, zone: TableZone = TableZone.INSIDE, capacity: int = 4) -> DiningTable:
    number = (number or "").strip()
    if not number:
        raise ValidationError("table number required")
    if capacity <= 0:
        raise ValidationError("capacity must be positive")
    if db.query(DiningTable).filter_by(number=number).first():
        raise Conflict(f"table {number} already exists", code="table_exists")
    t = DiningTable(number=number, zone=zone, capacity=capacity, status=TableStatus.FREE)
    db.add(t)
    db.commit()
    db.refresh(t)
    logger.info("Table created: %s (id=%s, zone=%s)", t.number, t.id, t.zone.value)
    return t


def _set_status(t: DiningTable, status: TableStatus, why: str) -> None:
    if t.status == status:
        return
    logger.info("Table %s: %s -> %s (%s)", t.number, t.status.value, status.value, why)
    t.status = status


def bound_ticket(db: Session, table_id: int) -> Optional[Ticket]:
    return (
        db.query(Ticket)
        .filter(Ticket.table_id == table_id, Ticket.status.in_(ACTIVE_TICKET_STATUSES))
        .order_by(Ticket.created_at.desc(), Ticket.id.desc())
        .first()
    )


# ---------- ticket events ----------

def on_line_added(db: Session, ticket: Ticket) -> None:
    if ticket.table_id is None:
        return
    t = get_table(db, ticket.table_id)
    if t.status in (TableStatus.FREE, TableStatus.RESERVED):
        _set_status(t, TableStatus.OCCUPIED, f"first line on ticket {ticket.id}")


def on_bill_requested(db: Session, ticket: Ticket) -> None:
    if ticket.table_id is None:
        return
    _set_status(get_table(db, ticket.table_id), TableStatus.BILL_REQUESTED, f"bill for ticket {ticket.id}")


def on_bill_reopened(db: Session, ticket: Ticket) -> None:
    if ticket.table_id is None:
        return
    _set_status(get_table(db, ticket.table_id), TableStatus.OCCUPIED, f"ticket {ticket.id} reopened")


def release(db: Session, ticket: Ticket, why: str = "ticket closed") -> None:
    if ticket.table_id is None:
        return
    _set_status(get_table(db, ticket.table_id), TableStatus.FREE, f"{why}: {ticket.id}")


def on_ticket_abandoned(db: Session, ticket: Ticket) -> None:
    release(db, ticket, "empty ticket abandoned")


def on_ticket_cancelled(db: Session, ticket: Ticket) -> None:
    release(db, ticket, "ticket cancelled")


# ---------- explicit operations ----------

def set_reserved(db: Session, table_id: int, reserved: bool) -> DiningTable:
    t = get_table(db, table_id)
    if reserved:
        if t.status != TableStatus.FREE:
            raise InvalidState(f"table {t.number} is {t.status.value}", code="table_not_free")
        _set_status(t, TableStatus.RESERVED, "reserved")
    else:
        if t.status != TableStatus.RESERVED:
            raise InvalidState(f"table {t.number} is not reserved", code="table_not_reserved")
        _set_status(t, TableStatus.FREE, "reservation lifted")
    db.commit()
    db.refresh(t)
    return t


def reconcile(db: Session, table_id: int) -> DiningTable:
    """Re-derive a table's status from its bound ticket and persist it."""
    t = get_table(db, table_id)
    ticket = bound_ticket(db, table_id)
    if ticket is None:
        if t.status in (TableStatus.OCCUPIED, TableStatus.BILL_REQUESTED):
            _set_status(t, TableStatus.FREE, "no open ticket")
    elif ticket.status == TicketStatus.BILL_REQUESTED:
        _set_status(t, TableStatus.BILL_REQUESTED, f"ticket {ticket.id} awaiting payment")
    else:
        active = (
            db.query(TicketLine)
            .filter(TicketLine.ticket_id == ticket.id, TicketLine.status != LineStatus.CANCELLED)
            .count()
        )
        if active:
            _set_status(t, TableStatus.OCCUPIED, f"ticket {ticket.id} has {active} lines")
        elif t.status == TableStatus.OCCUPIED:
            _set_status(t, TableStatus.FREE, f"ticket {ticket.id} is empty")
    db.commit()
    db.refresh(t)
    return t
