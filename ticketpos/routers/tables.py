from typing import Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from ticketpos.core.schemas import ReserveIn, TableIn
from ticketpos.db import get_db
from ticketpos.models.enums import TableZone
from ticketpos.services import tables, tickets
from ticketpos.services.operators import OperatorContext

from .common import get_operator, table_out, ticket_out

router = APIRouter(prefix="/tables", tags=["tables"])


@router.get("")
def list_tables(zone: Optional[TableZone] = None, db: Session = Depends(get_db)):
    return [table_out(t) for t in tables.list_tables(db, zone)]


@router.post("")
def create_table(payload: TableIn = Body(...), db: Session = Depends(get_db)):
    return table_out(tables.create_table(db, payload.number, payload.zone, payload.capacity))


@router.get("/{table_id}")
def get_table(table_id: int, db: Session = Depends(get_db)):
    t = tables.get_table(db, table_id)
    ticket = tickets.active_ticket_for_table(db, table_id)
    out = table_out(t)
    out["ticket_id"] = ticket.id if ticket else None
    return out


@router.post("/{table_id}/reserve")
def reserve(table_id: int, payload: ReserveIn = Body(...), db: Session = Depends(get_db)):
    return table_out(tables.set_reserved(db, table_id, payload.reserved))


@router.post("/{table_id}/reconcile")
def reconcile(table_id: int, db: Session = Depends(get_db)):
    return table_out(tables.reconcile(db, table_id))


@router.post("/{table_id}/open")
def open_ticket(
    table_id: int,
    db: Session = Depends(get_db),
    operator: OperatorContext = Depends(get_operator),
):
    """Tap on a table: its running ticket, or a fresh one."""
    t = tickets.open_for_table(db, table_id, operator.id)
    return ticket_out(t, tickets.list_lines(db, t.id))
