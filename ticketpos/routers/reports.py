from datetime import date, datetime

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ticketpos.core.config import settings
from ticketpos.core.money import money_str
from ticketpos.db import get_db
from ticketpos.services import reporting

from .common import line_out

router = APIRouter(tags=["reports"])


@router.get("/reports/daily")
def daily(day: date, db: Session = Depends(get_db)):
    s = reporting.daily_summary(db, day)
    return {
        "day": s.day.isoformat(),
        "currency": settings.currency,
        "ticket_count": s.ticket_count,
        "gross": money_str(s.gross),
        "discount": money_str(s.discount),
        "net": money_str(s.net),
        "cash": money_str(s.cash),
        "card": money_str(s.card),
        "by_method": [{"method": m.value, "amount": money_str(a)} for m, a in s.by_method.items()],
        "comped_lines": s.comped_lines,
    }


@router.get("/reports/paid")
def paid(start: datetime, end: datetime, db: Session = Depends(get_db)):
    rows = reporting.paid_tickets_between(db, start, end)
    return [
        {
            "id": t.id,
            "table_id": t.table_id,
            "kind": t.kind.value,
            "closed_at": t.closed_at.isoformat(),
            "total": money_str(t.total),
            "discount": money_str(t.discount),
            "payment_method": t.payment_method.value,
            "lines": [line_out(l) for l in t.lines],
        }
        for t in rows
    ]


@router.get("/tickets/{ticket_id}/receipt")
def receipt(ticket_id: int, db: Session = Depends(get_db)):
    r = reporting.receipt_snapshot(db, ticket_id)
    return {
        "ticket_id": r.ticket_id,
        "table_number": r.table_number,
        "kind": r.kind,
        "status": r.status,
        "operator_id": r.operator_id,
        "created_at": r.created_at.isoformat(),
        "closed_at": r.closed_at.isoformat() if r.closed_at else None,
        "currency": r.currency,
        "lines": [
            {
                "line_id": l.line_id,
                "product_id": l.product_id,
                "quantity": l.quantity,
                "unit_price": money_str(l.unit_price),
                "line_total": money_str(l.line_total),
                "half_portion": l.half_portion,
                "note": l.note,
                "comped": l.comped,
                "comp_reason": l.comp_reason,
            }
            for l in r.lines
        ],
        "total": money_str(r.total),
        "discount": money_str(r.discount),
        "discount_reason": r.discount_reason,
        "amount_due": money_str(r.amount_due),
        "payment_method": r.payment_method,
        "cash_amount": money_str(r.cash_amount),
        "card_amount": money_str(r.card_amount),
    }
