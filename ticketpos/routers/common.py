"""Dependencies and JSON shapes shared by the routers. Money leaves as strings."""
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from ticketpos.core.money import money_str
from ticketpos.db import get_db
from ticketpos.models.table import DiningTable
from ticketpos.models.ticket import Ticket, TicketLine
from ticketpos.services.operators import OperatorContext, current_operator


def get_operator(
    x_operator_id: Optional[int] = Header(default=None, alias="X-Operator-Id"),
    db: Session = Depends(get_db),
) -> OperatorContext:
    return current_operator(db, x_operator_id)


def _iso(dt):
    return dt.isoformat() if dt else None


def line_out(l: TicketLine) -> dict:
    return {
        "id": l.id,
        "ticket_id": l.ticket_id,
        "product_id": l.product_id,
        "quantity": l.quantity,
        "unit_price": money_str(l.unit_price),
        "line_total": money_str(l.line_total),
        "half_portion": bool(l.half_portion),
        "note": l.note,
        "status": l.status.value,
        "comp_reason": l.comp_reason,
    }


def ticket_out(t: Ticket, lines=None) -> dict:
    out = {
        "id": t.id,
        "table_id": t.table_id,
        "operator_id": t.operator_id,
        "kind": t.kind.value,
        "status": t.status.value,
        "total": money_str(t.total),
        "discount": money_str(t.discount),
        "discount_reason": t.discount_reason,
        "payment_method": t.payment_method.value,
        "cash_amount": money_str(t.cash_amount),
        "card_amount": money_str(t.card_amount),
        "note": t.note,
        "created_at": _iso(t.created_at),
        "closed_at": _iso(t.closed_at),
        "cancel_reason": t.cancel_reason,
    }
    if lines is not None:
        out["lines"] = [line_out(l) for l in lines]
    return out


def table_out(t: DiningTable) -> dict:
    return {
        "id": t.id,
        "number": t.number,
        "zone": t.zone.value,
        "status": t.status.value,
        "capacity": t.capacity,
    }


def payment_out(r) -> dict:
    return {
        "ticket_id": r.ticket_id,
        "method": r.method.value,
        "amount_due": money_str(r.amount_due),
        "cash_amount": money_str(r.cash_amount),
        "card_amount": money_str(r.card_amount),
        "change": money_str(r.change),
    }
