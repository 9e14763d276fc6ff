from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from ticketpos.core.money import money_str
from ticketpos.core.schemas import (
    CancelIn,
    LazyLineIn,
    LineIn,
    LineStatusIn,
    NoteIn,
    PriceIn,
    QuantityIn,
    TicketIn,
)
from ticketpos.db import get_db
from ticketpos.models.enums import TicketKind
from ticketpos.services import tickets
from ticketpos.services.operators import OperatorContext

from .common import get_operator, line_out, ticket_out

router = APIRouter(tags=["tickets"])


def _with_lines(db: Session, ticket_id: int) -> dict:
    t = tickets.get_ticket(db, ticket_id)
    return ticket_out(t, tickets.list_lines(db, t.id))


@router.post("/tickets")
def create_ticket(
    payload: TicketIn = Body(...),
    db: Session = Depends(get_db),
    operator: OperatorContext = Depends(get_operator),
):
    t = tickets.create_ticket(db, operator.id, payload.kind, payload.table_id, payload.note)
    return ticket_out(t, [])


@router.get("/tickets")
def list_open(kind: Optional[List[TicketKind]] = Query(default=None), db: Session = Depends(get_db)):
    return [ticket_out(t) for t in tickets.list_open_tickets(db, kind)]


@router.get("/tickets/{ticket_id}")
def get_ticket(ticket_id: int, include_cancelled: bool = False, db: Session = Depends(get_db)):
    t = tickets.get_ticket(db, ticket_id)
    return ticket_out(t, tickets.list_lines(db, t.id, include_cancelled=include_cancelled))


@router.get("/tickets/{ticket_id}/total")
def get_total(ticket_id: int, db: Session = Depends(get_db)):
    return {"ticket_id": ticket_id, "total": money_str(tickets.get_total(db, ticket_id))}


@router.post("/tickets/{ticket_id}/lines")
def add_line(ticket_id: int, payload: LineIn = Body(...), db: Session = Depends(get_db)):
    line = tickets.add_line(
        db, ticket_id, payload.product_id, payload.quantity,
        payload.unit_price, payload.half_portion, payload.note,
    )
    return {"line": line_out(line), "ticket": _with_lines(db, ticket_id)}


@router.post("/tickets/lines")
def add_line_lazy(
    payload: LazyLineIn = Body(...),
    db: Session = Depends(get_db),
    operator: OperatorContext = Depends(get_operator),
):
    ticket_id, line_id = tickets.add_line_lazy(
        db, payload.ticket_id, payload.kind, operator.id, payload.product_id,
        payload.quantity, payload.unit_price, payload.half_portion, payload.note,
    )
    return {"ticket_id": ticket_id, "line_id": line_id, "ticket": _with_lines(db, ticket_id)}


@router.post("/tickets/{ticket_id}/request-bill")
def request_bill(ticket_id: int, db: Session = Depends(get_db)):
    return ticket_out(tickets.request_bill(db, ticket_id))


@router.post("/tickets/{ticket_id}/reopen")
def reopen(ticket_id: int, db: Session = Depends(get_db)):
    return ticket_out(tickets.reopen_ticket(db, ticket_id))


@router.post("/tickets/{ticket_id}/cancel")
def cancel(
    ticket_id: int,
    payload: CancelIn = Body(...),
    db: Session = Depends(get_db),
    operator: OperatorContext = Depends(get_operator),
):
    return ticket_out(tickets.cancel_ticket(db, ticket_id, payload.reason, operator.id))


@router.post("/tickets/{ticket_id}/abandon")
def abandon(ticket_id: int, db: Session = Depends(get_db)):
    return ticket_out(tickets.abandon_ticket(db, ticket_id))


@router.delete("/lines/{line_id}")
def cancel_line(line_id: int, db: Session = Depends(get_db)):
    return line_out(tickets.cancel_line(db, line_id))


@router.patch("/lines/{line_id}/quantity")
def set_quantity(line_id: int, payload: QuantityIn = Body(...), db: Session = Depends(get_db)):
    return line_out(tickets.set_line_quantity(db, line_id, payload.quantity))


@router.patch("/lines/{line_id}/price")
def change_price(line_id: int, payload: PriceIn = Body(...), db: Session = Depends(get_db)):
    # with quantity > 1 this is the newly split-off line
    return line_out(tickets.change_line_price(db, line_id, payload.unit_price))


@router.patch("/lines/{line_id}/note")
def set_note(line_id: int, payload: NoteIn = Body(...), db: Session = Depends(get_db)):
    return line_out(tickets.set_line_note(db, line_id, payload.note))


@router.patch("/lines/{line_id}/status")
def advance(line_id: int, payload: LineStatusIn = Body(...), db: Session = Depends(get_db)):
    return line_out(tickets.advance_line(db, line_id, payload.status))
