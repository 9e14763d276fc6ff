"""Read-only rollups over closed tickets, and the receipt snapshot."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.orm import Session, selectinload

from ticketpos.core.config import settings
from ticketpos.core.errors import ValidationError
from ticketpos.core.money import ZERO, money
from ticketpos.models.enums import LineStatus, PaymentMethod, TicketStatus
from ticketpos.models.table import DiningTable
from ticketpos.models.ticket import Ticket

from . import tickets


def paid_tickets_between(db: Session, start: datetime, end: datetime) -> List[Ticket]:
    """Paid tickets whose ``closed_at`` falls in ``[start, end)``, lines loaded."""
    if end <= start:
        raise ValidationError("report range end must be after start", code="invalid_range")
    return (
        db.query(Ticket)
        .options(selectinload(Ticket.lines))
        .filter(
            Ticket.status == TicketStatus.PAID,
            Ticket.closed_at >= start,
            Ticket.closed_at < end,
        )
        .order_by(Ticket.closed_at, Ticket.id)
        .all()
    )


@dataclass
class DailySummary:
    day: date
    ticket_count: int = 0
    gross: Decimal = ZERO
    discount: Decimal = ZERO
    net: Decimal = ZERO
    cash: Decimal = ZERO
    card: Decimal = ZERO
    by_method: Dict[PaymentMethod, Decimal] = field(default_factory=dict)
    comped_lines: int = 0


def daily_summary(db: Session, day: date) -> DailySummary:
    start = datetime.combine(day, time.min)
    summary = DailySummary(day=day)
    for t in paid_tickets_between(db, start, start + timedelta(days=1)):
        due = money(money(t.total) - money(t.discount))
        summary.ticket_count += 1
        summary.gross += money(t.total)
        summary.discount += money(t.discount)
        summary.net += due
        # cash_amount holds the tender for plain cash sales; count only what was due
        if t.payment_method == PaymentMethod.CASH:
            summary.cash += due
        else:
            summary.cash += money(t.cash_amount)
            summary.card += money(t.card_amount)
        summary.by_method[t.payment_method] = summary.by_method.get(t.payment_method, ZERO) + due
        summary.comped_lines += sum(1 for l in t.lines if l.status == LineStatus.COMPED)
    return summary


@dataclass(frozen=True)
class ReceiptLine:
    line_id: int
    product_id: int
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    half_portion: bool
    note: Optional[str]
    comped: bool
    comp_reason: Optional[str]


@dataclass(frozen=True)
class Receipt:
    ticket_id: int
    table_number: Optional[str]
    kind: str
    status: str
    operator_id: int
    created_at: datetime
    closed_at: Optional[datetime]
    currency: str
    lines: List[ReceiptLine]
    total: Decimal
    discount: Decimal
    discount_reason: Optional[str]
    amount_due: Decimal
    payment_method: str
    cash_amount: Decimal
    card_amount: Decimal


def receipt_snapshot(db: Session, ticket_id: int) -> Receipt:
    t = tickets.get_ticket(db, ticket_id)
    table_number = None
    if t.table_id is not None:
        table = db.get(DiningTable, t.table_id)
        table_number = table.number if table else None
    lines = [
        ReceiptLine(
            line_id=l.id,
            product_id=l.product_id,
            quantity=l.quantity,
            unit_price=money(l.unit_price),
            line_total=money(l.line_total),
            half_portion=bool(l.half_portion),
            note=l.note,
            comped=l.status == LineStatus.COMPED,
            comp_reason=l.comp_reason,
        )
        for l in tickets.list_lines(db, t.id)
    ]
    return Receipt(
        ticket_id=t.id,
        table_number=table_number,
        kind=t.kind.value,
        status=t.status.value,
        operator_id=t.operator_id,
        created_at=t.created_at,
        closed_at=t.closed_at,
        currency=settings.currency,
        lines=lines,
        total=money(t.total),
        discount=money(t.discount),
        discount_reason=t.discount_reason,
        amount_due=money(money(t.total) - money(t.discount)),
        payment_method=t.payment_method.value,
        cash_amount=money(t.cash_amount),
        card_amount=money(t.card_amount),
    )
