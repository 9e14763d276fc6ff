"""Split-by-guest checkout over HTTP.

Sessions live in this process only, keyed by an opaque token. Losing the
process loses open checkouts, which is the same as abandoning them: nothing
is written to the ticket until the last unit row is paid.
"""
import logging
import uuid
from collections import OrderedDict
from typing import Dict

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ticketpos.core.config import settings
from ticketpos.core.errors import NotFound
from ticketpos.core.money import money_str
from ticketpos.core.schemas import ApproveIn, CashIn, CompIn, DiscountIn, RowKeyIn, RowsIn, SplitIn
from ticketpos.db import get_db
from ticketpos.services import authorization
from ticketpos.services.operators import OperatorContext
from ticketpos.services.split_session import SettlementSession

from .common import get_operator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["split"])

_SESSIONS: "OrderedDict[str, SettlementSession]" = OrderedDict()


def _register(session: SettlementSession) -> str:
    while len(_SESSIONS) >= settings.split_sessions_max:
        token, dropped = _SESSIONS.popitem(last=False)
        logger.warning("Split session %s for ticket %s evicted", token, dropped.ticket_id)
    token = uuid.uuid4().hex
    _SESSIONS[token] = session
    return token


def _session(token: str) -> SettlementSession:
    s = _SESSIONS.get(token)
    if s is None:
        raise NotFound(f"split session {token} not found", code="session_not_found")
    return s


def _session_out(token: str, s: SettlementSession) -> Dict:
    pending = s.pending if s.pending is not None and not s.pending.spent else None
    return {
        "token": token,
        "ticket_id": s.ticket_id,
        "amount_due": money_str(s.amount_due),
        "paid": money_str(s.paid),
        "remaining": money_str(s.remaining),
        "selected_due": money_str(s.selected_due),
        "cash_paid": money_str(s.cash_paid),
        "card_paid": money_str(s.card_paid),
        "last_method": s.last_method.value if s.last_method else None,
        "closed": s.closed,
        "pending_approval": pending.action.value if pending else None,
        "rows": [
            {
                "line_id": r.line_id,
                "unit_index": r.unit_index,
                "product_id": r.product_id,
                "unit_price": money_str(r.unit_price),
                "half_portion": r.half_portion,
                "selected": r.selected,
                "settled": r.settled,
            }
            for r in s.rows.values()
        ],
    }


def _payment_out(token: str, s: SettlementSession, p) -> Dict:
    if s.closed:
        _SESSIONS.pop(token, None)
    return {
        "ticket_id": s.ticket_id,
        "method": p.method.value,
        "amount": money_str(p.amount),
        "cash_amount": money_str(p.cash_amount),
        "card_amount": money_str(p.card_amount),
        "change": money_str(p.change),
        "remaining": money_str(p.remaining),
        "ticket_closed": p.ticket_closed,
        "session": _session_out(token, s),
    }


def _gated(token: str, s: SettlementSession, outcome):
    if isinstance(outcome, authorization.PendingApproval):
        return JSONResponse(status_code=202, content=_session_out(token, s))
    if s.closed:
        _SESSIONS.pop(token, None)
    return _session_out(token, s)


@router.post("/tickets/{ticket_id}/split")
def open_split(ticket_id: int, db: Session = Depends(get_db)):
    s = SettlementSession.open(db, ticket_id)
    token = _register(s)
    return _session_out(token, s)


@router.get("/split/{token}")
def get_split(token: str):
    return _session_out(token, _session(token))


@router.delete("/split/{token}")
def abandon_split(token: str):
    s = _SESSIONS.pop(token, None)
    if s is None:
        raise NotFound(f"split session {token} not found", code="session_not_found")
    s.cancel_pending()
    logger.info("Split session %s for ticket %s abandoned", token, s.ticket_id)
    return {"token": token, "abandoned": True}


@router.post("/split/{token}/toggle")
def toggle(token: str, payload: RowKeyIn = Body(...)):
    s = _session(token)
    s.toggle(payload.line_id, payload.unit_index)
    return _session_out(token, s)


@router.post("/split/{token}/select")
def select_rows(token: str, payload: RowsIn = Body(...)):
    """Replace the selection with the given rows; an empty list selects everything unpaid."""
    s = _session(token)
    s.clear_selection()
    if not payload.rows:
        s.select_all()
    for key in payload.rows:
        s.toggle(key.line_id, key.unit_index)
    return _session_out(token, s)


@router.post("/split/{token}/clear")
def clear(token: str):
    s = _session(token)
    s.clear_selection()
    return _session_out(token, s)


@router.post("/split/{token}/pay/cash")
def pay_cash(token: str, payload: CashIn = Body(...), db: Session = Depends(get_db)):
    s = _session(token)
    return _payment_out(token, s, s.pay_cash(db, payload.tendered))


@router.post("/split/{token}/pay/card")
def pay_card(token: str, db: Session = Depends(get_db)):
    s = _session(token)
    return _payment_out(token, s, s.pay_card(db))


@router.post("/split/{token}/pay/split")
def pay_split(token: str, payload: SplitIn = Body(...), db: Session = Depends(get_db)):
    s = _session(token)
    return _payment_out(token, s, s.pay_split(db, payload.cash_portion))


@router.post("/split/{token}/finish")
def finish(token: str, db: Session = Depends(get_db)):
    """Retry the close after a failed attempt; every row must already be settled."""
    s = _session(token)
    s.finish(db)
    _SESSIONS.pop(token, None)
    return _session_out(token, s)


@router.post("/split/{token}/lines/{line_id}/comp")
def comp(
    token: str,
    line_id: int,
    payload: CompIn = Body(...),
    db: Session = Depends(get_db),
    operator: OperatorContext = Depends(get_operator),
):
    s = _session(token)
    outcome = s.comp_line(db, operator, line_id, payload.reason)
    if isinstance(outcome, authorization.PendingApproval) and payload.manager_secret:
        outcome = s.approve_pending(db, payload.manager_secret)
    return _gated(token, s, outcome)


@router.post("/split/{token}/discount")
def discount(
    token: str,
    payload: DiscountIn = Body(...),
    db: Session = Depends(get_db),
    operator: OperatorContext = Depends(get_operator),
):
    s = _session(token)
    outcome = s.apply_discount(
        db, operator, payload.reason, percent=payload.percent, fixed_amount=payload.fixed_amount
    )
    if isinstance(outcome, authorization.PendingApproval) and payload.manager_secret:
        outcome = s.approve_pending(db, payload.manager_secret)
    return _gated(token, s, outcome)


@router.post("/split/{token}/approve")
def approve(token: str, payload: ApproveIn = Body(...), db: Session = Depends(get_db)):
    s = _session(token)
    s.approve_pending(db, payload.manager_secret)
    return _gated(token, s, None)


@router.post("/split/{token}/approve/cancel")
def cancel_approval(token: str):
    s = _session(token)
    s.cancel_pending()
    return _session_out(token, s)
