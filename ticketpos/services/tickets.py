"""Ticket lifecycle: creation, line mutations and the total recompute rule.

Every mutating call ends in ``recompute_total``, which re-reads the ticket's
lines and sums them. The total is never adjusted arithmetically.
"""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ticketpos.core.errors import Conflict, InvalidState, NotFound, ValidationError
from ticketpos.core.money import ZERO, money
from ticketpos.models.enums import LineStatus, TicketKind, TicketStatus
from ticketpos.models.ticket import (
    ACTIVE_TICKET_STATUSES,
    NON_BILLABLE_LINE_STATUSES,
    Ticket,
    TicketLine,
)

from . import tables

logger = logging.getLogger(__name__)

_LINE_PROGRESSION = {
    LineStatus.PENDING: LineStatus.IN_PREPARATION,
    LineStatus.IN_PREPARATION: LineStatus.DONE,
}


# ---------- lookups ----------

def get_ticket(db: Session, ticket_id: int) -> Ticket:
    t = db.get(Ticket, ticket_id)
    if not t:
        raise NotFound(f"ticket {ticket_id} not found", code="ticket_not_found")
    return t


def get_line(db: Session, line_id: int) -> TicketLine:
    line = db.get(TicketLine, line_id)
    if not line:
        raise NotFound(f"line {line_id} not found", code="line_not_found")
    return line


def list_lines(db: Session, ticket_id: int, include_cancelled: bool = False) -> List[TicketLine]:
    q = db.query(TicketLine).filter(TicketLine.ticket_id == ticket_id)
    if not include_cancelled:
        q = q.filter(TicketLine.status != LineStatus.CANCELLED)
    return q.order_by(TicketLine.created_at, TicketLine.id).all()


def active_ticket_for_table(db: Session, table_id: int) -> Optional[Ticket]:
    return tables.bound_ticket(db, table_id)


def list_open_tickets(db: Session, kinds: Optional[Iterable[TicketKind]] = None) -> List[Ticket]:
    q = db.query(Ticket).filter(Ticket.status.in_(ACTIVE_TICKET_STATUSES))
    if kinds:
        q = q.filter(Ticket.kind.in_(list(kinds)))
    return q.order_by(Ticket.created_at.desc(), Ticket.id.desc()).all()


# ---------- guards ----------

def _require_open(ticket: Ticket) -> None:
    if ticket.status != TicketStatus.OPEN:
        raise InvalidState(
            f"ticket {ticket.id} is {ticket.status.value}", code="ticket_not_open"
        )


def require_adjustable(ticket: Ticket) -> None:
    """Checkout-time adjustments (comp, discount) are allowed until the ticket closes."""
    if not ticket.is_active:
        raise InvalidState(
            f"ticket {ticket.id} is {ticket.status.value}", code="ticket_closed"
        )


def _line_and_open_ticket(db: Session, line_id: int) -> Tuple[TicketLine, Ticket]:
    line = get_line(db, line_id)
    ticket = get_ticket(db, line.ticket_id)
    _require_open(ticket)
    return line, ticket


def _flush(db: Session) -> None:
    try:
        db.flush()
    except StaleDataError as ex:
        db.rollback()
        raise Conflict("ticket was modified concurrently", code="stale_ticket") from ex


def commit_ticket(db: Session) -> None:
    try:
        db.commit()
    except StaleDataError as ex:
        db.rollback()
        raise Conflict("ticket was modified concurrently", code="stale_ticket") from ex


def _positive_price(price) -> Decimal:
    if price is None:
        raise ValidationError("price required")
    p = money(price)
    if p <= 0:
        raise ValidationError("price must be positive", code="invalid_price")
    return p


# ---------- totals ----------

def calculate_total(db: Session, ticket_id: int) -> Decimal:
    lines = (
        db.query(TicketLine)
        .filter(
            TicketLine.ticket_id == ticket_id,
            TicketLine.status.notin_(NON_BILLABLE_LINE_STATUSES),
        )
        .all()
    )
    return money(sum((Decimal(l.quantity) * money(l.unit_price) for l in lines), ZERO))


def recompute_total(db: Session, ticket: Ticket) -> Decimal:
    """Stage ``ticket.total`` from its persisted lines; the caller commits."""
    _flush(db)
    total = calculate_total(db, ticket.id)
    ticket.total = total
    # a discount never exceeds what is left to discount
    if money(ticket.discount) > total:
        logger.info("Ticket %s: discount clamped to new total %s", ticket.id, total)
        ticket.discount = total
    return total


def get_total(db: Session, ticket_id: int) -> Decimal:
    return money(get_ticket(db, ticket_id).total)


# ---------- ticket lifecycle ----------

def create_ticket(
    db: Session,
    operator_id: int,
    kind: TicketKind,
    table_id: Optional[int] = None,
    note: Optional[str] = None,
) -> Ticket:
    if kind == TicketKind.DINE_IN and table_id is None:
        raise ValidationError("dine-in ticket needs a table", code="table_required")
    if table_id is not None:
        tables.get_table(db, table_id)
        existing = tables.bound_ticket(db, table_id)
        if existing is not None:
            raise Conflict(
                f"table {table_id} already has open ticket {existing.id}", code="table_busy"
            )
    t = Ticket(
        table_id=table_id,
        operator_id=operator_id,
        kind=kind,
        status=TicketStatus.OPEN,
        total=ZERO,
        discount=ZERO,
        note=note,
    )
    db.add(t)
    commit_ticket(db)
    db.refresh(t)
    logger.info("Ticket created: %s, table=%s, kind=%s", t.id, table_id, kind.value)
    return t


def open_for_table(db: Session, table_id: int, operator_id: int) -> Ticket:
    """Return the table's running ticket, or start one."""
    existing = tables.bound_ticket(db, table_id)
    if existing is not None:
        return existing
    return create_ticket(db, operator_id, TicketKind.DINE_IN, table_id=table_id)


def request_bill(db: Session, ticket_id: int) -> Ticket:
    t = get_ticket(db, ticket_id)
    _require_open(t)
    t.status = TicketStatus.BILL_REQUESTED
    tables.on_bill_requested(db, t)
    commit_ticket(db)
    db.refresh(t)
    logger.info("Bill requested: ticket %s", t.id)
    return t


def reopen_ticket(db: Session, ticket_id: int) -> Ticket:
    t = get_ticket(db, ticket_id)
    if t.status != TicketStatus.BILL_REQUESTED:
        raise InvalidState(f"ticket {t.id} is {t.status.value}", code="ticket_not_billed")
    t.status = TicketStatus.OPEN
    tables.on_bill_reopened(db, t)
    commit_ticket(db)
    db.refresh(t)
    logger.info("Ticket reopened: %s", t.id)
    return t


def cancel_ticket(db: Session, ticket_id: int, reason: str, cancelled_by: int) -> Ticket:
    if not reason or not reason.strip():
        raise ValidationError("cancel reason required", code="reason_required")
    t = get_ticket(db, ticket_id)
    require_adjustable(t)
    t.status = TicketStatus.CANCELLED
    t.cancel_reason = reason.strip()
    t.cancelled_by = cancelled_by
    t.closed_at = datetime.utcnow()
    tables.on_ticket_cancelled(db, t)
    commit_ticket(db)
    db.refresh(t)
    logger.info("Ticket cancelled: %s by %s (%s)", t.id, cancelled_by, t.cancel_reason)
    return t


def abandon_ticket(db: Session, ticket_id: int) -> Ticket:
    """Leaving a ticket. An empty dine-in ticket gives its table back."""
    t = get_ticket(db, ticket_id)
    if t.status != TicketStatus.OPEN or t.kind != TicketKind.DINE_IN:
        return t
    if list_lines(db, t.id):
        return t
    t.status = TicketStatus.CANCELLED
    t.cancel_reason = "abandoned without lines"
    t.cancelled_by = t.operator_id
    t.closed_at = datetime.utcnow()
    tables.on_ticket_abandoned(db, t)
    commit_ticket(db)
    db.refresh(t)
    logger.info("Empty ticket %s abandoned, table %s released", t.id, t.table_id)
    return t


# ---------- lines ----------

def add_line(
    db: Session,
    ticket_id: int,
    product_id: int,
    quantity: int = 1,
    unit_price=None,
    half_portion: bool = False,
    note: Optional[str] = None,
) -> TicketLine:
    if quantity is None or quantity <= 0:
        raise ValidationError("quantity must be positive", code="invalid_quantity")
    price = _positive_price(unit_price)
    ticket = get_ticket(db, ticket_id)
    _require_open(ticket)
    note = (note or "").strip() or None

    line = None
    if note is None:
        line = (
            db.query(TicketLine)
            .filter(
                TicketLine.ticket_id == ticket.id,
                TicketLine.product_id == product_id,
                TicketLine.half_portion == bool(half_portion),
                TicketLine.unit_price == price,
                (TicketLine.note.is_(None)) | (TicketLine.note == ""),
                TicketLine.status == LineStatus.PENDING,
            )
            .order_by(TicketLine.id)
            .first()
        )
    if line is not None:
        line.quantity = line.quantity + quantity
        logger.debug("Line %s merged, quantity now %s", line.id, line.quantity)
    else:
        line = TicketLine(
            ticket_id=ticket.id,
            product_id=product_id,
            quantity=quantity,
            unit_price=price,
            half_portion=bool(half_portion),
            note=note,
            status=LineStatus.PENDING,
        )
        db.add(line)

    recompute_total(db, ticket)
    tables.on_line_added(db, ticket)
    commit_ticket(db)
    db.refresh(line)
    logger.debug("Line %s on ticket %s: product %s x%s", line.id, ticket.id, product_id, line.quantity)
    return line


def add_line_lazy(
    db: Session,
    ticket_id: Optional[int],
    kind: TicketKind,
    operator_id: int,
    product_id: int,
    quantity: int = 1,
    unit_price=None,
    half_portion: bool = False,
    note: Optional[str] = None,
) -> Tuple[int, int]:
    """Counter/delivery flow: the ticket only exists once its first item does."""
    if ticket_id is None:
        if kind == TicketKind.DINE_IN:
            raise ValidationError("dine-in tickets are opened from a table", code="table_required")
        if quantity is None or quantity <= 0:
            raise ValidationError("quantity must be positive", code="invalid_quantity")
        _positive_price(unit_price)
        ticket_id = create_ticket(db, operator_id, kind).id
    line = add_line(db, ticket_id, product_id, quantity, unit_price, half_portion, note)
    return ticket_id, line.id


def cancel_line(db: Session, line_id: int) -> TicketLine:
    line, ticket = _line_and_open_ticket(db, line_id)
    line.status = LineStatus.CANCELLED
    recompute_total(db, ticket)
    commit_ticket(db)
    db.refresh(line)
    logger.info("Line cancelled: %s (ticket %s)", line.id, ticket.id)
    return line


def set_line_quantity(db: Session, line_id: int, new_quantity: int) -> TicketLine:
    if new_quantity <= 0:
        return cancel_line(db, line_id)
    line, ticket = _line_and_open_ticket(db, line_id)
    if line.status == LineStatus.CANCELLED:
        raise InvalidState(f"line {line.id} is cancelled", code="line_cancelled")
    line.quantity = new_quantity
    recompute_total(db, ticket)
    commit_ticket(db)
    db.refresh(line)
    logger.debug("Line %s quantity set to %s", line.id, new_quantity)
    return line


def change_line_price(db: Session, line_id: int, new_price) -> TicketLine:
    """Reprice one unit. With quantity > 1 the unit is split off to keep the old price history."""
    price = _positive_price(new_price)
    line, ticket = _line_and_open_ticket(db, line_id)
    if line.status in NON_BILLABLE_LINE_STATUSES:
        raise InvalidState(f"line {line.id} is {line.status.value}", code="line_not_billable")

    if line.quantity > 1:
        line.quantity = line.quantity - 1
        target = TicketLine(
            ticket_id=line.ticket_id,
            product_id=line.product_id,
            quantity=1,
            unit_price=price,
            half_portion=line.half_portion,
            note=line.note,
            status=line.status,
        )
        db.add(target)
        logger.info("Line %s split, one unit repriced to %s", line.id, price)
    else:
        line.unit_price = price
        target = line
        logger.info("Line %s repriced to %s", line.id, price)

    recompute_total(db, ticket)
    commit_ticket(db)
    db.refresh(target)
    return target


def set_line_note(db: Session, line_id: int, note: Optional[str]) -> TicketLine:
    line, _ = _line_and_open_ticket(db, line_id)
    line.note = (note or "").strip() or None
    commit_ticket(db)
    db.refresh(line)
    return line


def advance_line(db: Session, line_id: int, status: LineStatus) -> TicketLine:
    """Kitchen progression, forward only: pending -> in_preparation -> done."""
    line, _ = _line_and_open_ticket(db, line_id)
    if _LINE_PROGRESSION.get(line.status) != status:
        raise InvalidState(
            f"line {line.id} cannot go {line.status.value} -> {status.value}",
            code="invalid_line_transition",
        )
    line.status = status
    commit_ticket(db)
    db.refresh(line)
    return line


def comp_line(db: Session, line_id: int, reason: str) -> TicketLine:
    """Zero-charge a line. Callers outside settlement must pass through the authorization gate."""
    if not reason or not reason.strip():
        raise ValidationError("comp reason required", code="reason_required")
    line = get_line(db, line_id)
    ticket = get_ticket(db, line.ticket_id)
    require_adjustable(ticket)
    if not line.is_billable:
        raise InvalidState(f"line {line.id} is {line.status.value}", code="line_not_billable")
    line.status = LineStatus.COMPED
    line.comp_reason = reason.strip()
    recompute_total(db, ticket)
    commit_ticket(db)
    db.refresh(line)
    logger.info("Line comped: %s (ticket %s), reason: %s", line.id, ticket.id, line.comp_reason)
    return line
