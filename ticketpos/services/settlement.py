"""Settlement engine: amount due, tenders, discounts, comps and the atomic close."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ticketpos.core.errors import (
    Conflict,
    InsufficientAmount,
    InvalidState,
    PersistenceFailure,
    PosError,
    ValidationError,
)
from ticketpos.core.money import ZERO, money
from ticketpos.models.enums import AuthAction, PaymentMethod, TicketStatus
from ticketpos.models.ticket import Ticket, TicketLine

from . import authorization, tables, tickets
from .operators import OperatorContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentResult:
    ticket_id: int
    method: PaymentMethod
    amount_due: Decimal
    cash_amount: Decimal
    card_amount: Decimal
    change: Decimal = ZERO


def amount_due(db: Session, ticket_id: int) -> Decimal:
    t = tickets.get_ticket(db, ticket_id)
    return money(money(t.total) - money(t.discount))


def _require_payable(t: Ticket) -> None:
    if t.status == TicketStatus.PAID:
        raise Conflict(f"ticket {t.id} already paid", code="ticket_already_paid")
    if t.status == TicketStatus.CANCELLED:
        raise InvalidState(f"ticket {t.id} is cancelled", code="ticket_closed")


def _payable_due(db: Session, ticket_id: int) -> Decimal:
    """Amount due, once the ticket is known to still take a payment."""
    _require_payable(tickets.get_ticket(db, ticket_id))
    return amount_due(db, ticket_id)


def close_ticket(
    db: Session,
    ticket_id: int,
    method: PaymentMethod,
    cash_amount,
    card_amount,
) -> Ticket:
    """Mark the ticket paid and free its table in one transaction.

    Either both writes commit or neither does; on failure the ticket stays
    open and the table keeps its status.
    """
    t = tickets.get_ticket(db, ticket_id)
    _require_payable(t)
    if method == PaymentMethod.NONE:
        raise ValidationError("payment method required", code="method_required")

    try:
        t.status = TicketStatus.PAID
        t.payment_method = method
        t.cash_amount = money(cash_amount)
        t.card_amount = money(card_amount)
        t.closed_at = datetime.utcnow()
        tables.release(db, t)
        db.commit()
    except StaleDataError as ex:
        db.rollback()
        logger.warning("Close of ticket %s lost a concurrent update race", ticket_id)
        raise Conflict("ticket was modified concurrently", code="stale_ticket") from ex
    except PosError:
        db.rollback()
        raise
    except Exception as ex:
        db.rollback()
        logger.exception("Close of ticket %s rolled back", ticket_id)
        raise PersistenceFailure(f"could not close ticket {ticket_id}") from ex

    db.refresh(t)
    logger.info(
        "Ticket closed: %s, method=%s, cash=%s, card=%s",
        t.id, method.value, t.cash_amount, t.card_amount,
    )
    return t


def process_cash(db: Session, ticket_id: int, tendered) -> PaymentResult:
    due = _payable_due(db, ticket_id)
    tendered = money(tendered)
    if tendered < due:
        raise InsufficientAmount(f"tendered {tendered} below amount due {due}")
    change = tendered - due
    close_ticket(db, ticket_id, PaymentMethod.CASH, tendered, ZERO)
    logger.info("Cash payment: ticket %s, tendered %s, change %s", ticket_id, tendered, change)
    return PaymentResult(ticket_id, PaymentMethod.CASH, due, tendered, ZERO, change)


def process_card(db: Session, ticket_id: int) -> PaymentResult:
    due = _payable_due(db, ticket_id)
    close_ticket(db, ticket_id, PaymentMethod.CARD, ZERO, due)
    logger.info("Card payment: ticket %s, amount %s", ticket_id, due)
    return PaymentResult(ticket_id, PaymentMethod.CARD, due, ZERO, due)


def process_split(db: Session, ticket_id: int, cash_portion) -> PaymentResult:
    due = _payable_due(db, ticket_id)
    cash = money(cash_portion)
    if cash < 0:
        raise ValidationError("cash portion cannot be negative", code="invalid_cash_portion")
    if cash > due:
        raise ValidationError(
            f"cash portion {cash} exceeds amount due {due}", code="cash_exceeds_due"
        )
    card = due - cash
    close_ticket(db, ticket_id, PaymentMethod.SPLIT, cash, card)
    logger.info("Split payment: ticket %s, cash %s, card %s", ticket_id, cash, card)
    return PaymentResult(ticket_id, PaymentMethod.SPLIT, due, cash, card)


# ---------- authorization-gated adjustments ----------

def discount_amount(total: Decimal, percent, fixed_amount) -> Decimal:
    if (percent is None) == (fixed_amount is None):
        raise ValidationError("give either percent or fixed_amount", code="discount_kind")
    value = Decimal(str(percent if percent is not None else fixed_amount))
    if value <= 0:
        raise ValidationError("discount must be positive", code="invalid_discount")
    raw = total * value / Decimal(100) if percent is not None else value
    return money(min(max(raw, ZERO), total))


def record_discount(db: Session, ticket_id: int, reason: str, approver_id: int,
                    percent=None, fixed_amount=None) -> Ticket:
    """Write an already-authorized discount."""
    ticket = tickets.get_ticket(db, ticket_id)
    tickets.require_adjustable(ticket)
    amount = discount_amount(money(ticket.total), percent, fixed_amount)
    ticket.discount = amount
    ticket.discount_reason = reason.strip()
    tickets.commit_ticket(db)
    db.refresh(ticket)
    logger.info(
        "Discount applied: ticket %s, amount %s, reason %s, approved by %s",
        ticket.id, amount, ticket.discount_reason, approver_id,
    )
    return ticket


def apply_discount(
    db: Session,
    ticket_id: int,
    reason: str,
    operator: OperatorContext,
    percent=None,
    fixed_amount=None,
    manager_secret: Optional[str] = None,
) -> Ticket:
    if not reason or not reason.strip():
        raise ValidationError("discount reason required", code="reason_required")
    t = tickets.get_ticket(db, ticket_id)
    tickets.require_adjustable(t)
    # fail bad input before a manager credential gets spent on it
    discount_amount(money(t.total), percent, fixed_amount)

    def perform(session: Session, approver_id: int) -> Ticket:
        return record_discount(session, ticket_id, reason, approver_id, percent, fixed_amount)

    return authorization.guarded(db, operator, AuthAction.DISCOUNT, perform, manager_secret)


def apply_comp(
    db: Session,
    line_id: int,
    reason: str,
    operator: OperatorContext,
    manager_secret: Optional[str] = None,
) -> TicketLine:
    if not reason or not reason.strip():
        raise ValidationError("comp reason required", code="reason_required")
    line = tickets.get_line(db, line_id)
    tickets.require_adjustable(tickets.get_ticket(db, line.ticket_id))

    def perform(session: Session, approver_id: int) -> TicketLine:
        comped = tickets.comp_line(session, line_id, reason)
        logger.info("Comp on line %s approved by %s", line_id, approver_id)
        return comped

    return authorization.guarded(db, operator, AuthAction.COMP, perform, manager_secret)
