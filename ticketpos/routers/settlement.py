from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from ticketpos.core.money import money_str
from ticketpos.core.schemas import CashIn, CompIn, DiscountIn, SplitIn
from ticketpos.db import get_db
from ticketpos.services import settlement
from ticketpos.services.operators import OperatorContext

from .common import get_operator, line_out, payment_out, ticket_out

router = APIRouter(tags=["settlement"])


@router.get("/tickets/{ticket_id}/due")
def amount_due(ticket_id: int, db: Session = Depends(get_db)):
    return {"ticket_id": ticket_id, "amount_due": money_str(settlement.amount_due(db, ticket_id))}


@router.post("/tickets/{ticket_id}/pay/cash")
def pay_cash(ticket_id: int, payload: CashIn = Body(...), db: Session = Depends(get_db)):
    return payment_out(settlement.process_cash(db, ticket_id, payload.tendered))


@router.post("/tickets/{ticket_id}/pay/card")
def pay_card(ticket_id: int, db: Session = Depends(get_db)):
    return payment_out(settlement.process_card(db, ticket_id))


@router.post("/tickets/{ticket_id}/pay/split")
def pay_split(ticket_id: int, payload: SplitIn = Body(...), db: Session = Depends(get_db)):
    return payment_out(settlement.process_split(db, ticket_id, payload.cash_portion))


@router.post("/tickets/{ticket_id}/discount")
def discount(
    ticket_id: int,
    payload: DiscountIn = Body(...),
    db: Session = Depends(get_db),
    operator: OperatorContext = Depends(get_operator),
):
    t = settlement.apply_discount(
        db, ticket_id, payload.reason, operator,
        percent=payload.percent,
        fixed_amount=payload.fixed_amount,
        manager_secret=payload.manager_secret,
    )
    return ticket_out(t)


@router.post("/lines/{line_id}/comp")
def comp(
    line_id: int,
    payload: CompIn = Body(...),
    db: Session = Depends(get_db),
    operator: OperatorContext = Depends(get_operator),
):
    return line_out(settlement.apply_comp(db, line_id, payload.reason, operator, payload.manager_secret))
