"""Split-by-guest settlement.

A session explodes every billable line of quantity N into N unit rows keyed by
``(line_id, unit_index)``. Guests pay for selected rows with the usual cash,
card or split tender math; rows are marked settled in memory only. Once no
unsettled row is left the ticket is closed with a single ``close_ticket``
call, which is the only write the session ever makes to the ticket's payment
fields.

Sessions are never persisted. Drop the object to abandon a checkout.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ticketpos.core.errors import (
    ApprovalRequired,
    Conflict,
    InsufficientAmount,
    InvalidState,
    NotFound,
    ValidationError,
)
from ticketpos.core.money import ZERO, money
from ticketpos.models.enums import AuthAction, LineStatus, PaymentMethod
from ticketpos.models.ticket import Ticket

from . import authorization, settlement, tickets
from .operators import OperatorContext

logger = logging.getLogger(__name__)

RowKey = Tuple[int, int]


@dataclass
class UnitRow:
    line_id: int
    unit_index: int
    product_id: int
    unit_price: Decimal
    half_portion: bool = False
    note: Optional[str] = None
    selected: bool = False
    settled: bool = False

    @property
    def key(self) -> RowKey:
        return (self.line_id, self.unit_index)


@dataclass(frozen=True)
class PartialPayment:
    method: PaymentMethod
    amount: Decimal
    cash_amount: Decimal
    card_amount: Decimal
    change: Decimal
    rows: Tuple[RowKey, ...]
    remaining: Decimal
    ticket_closed: bool


@dataclass
class SettlementSession:
    ticket_id: int
    ticket_total: Decimal
    amount_due: Decimal
    rows: Dict[RowKey, UnitRow] = field(default_factory=dict)
    paid: Decimal = ZERO
    cash_paid: Decimal = ZERO
    card_paid: Decimal = ZERO
    last_method: Optional[PaymentMethod] = None
    pending: Optional[authorization.PendingApproval] = None
    payments: List[PartialPayment] = field(default_factory=list)
    closed: bool = False

    # ---------- construction ----------

    @classmethod
    def open(cls, db: Session, ticket_id: int) -> "SettlementSession":
        t = tickets.get_ticket(db, ticket_id)
        tickets.require_adjustable(t)
        session = cls(
            ticket_id=t.id,
            ticket_total=money(t.total),
            amount_due=settlement.amount_due(db, t.id),
        )
        session._explode(db)
        logger.info(
            "Split session opened: ticket %s, %s unit rows, due %s",
            t.id, len(session.rows), session.amount_due,
        )
        return session

    def _explode(self, db: Session) -> None:
        settled = {k for k, r in self.rows.items() if r.settled}
        rows: Dict[RowKey, UnitRow] = {}
        for line in tickets.list_lines(db, self.ticket_id):
            if line.status == LineStatus.COMPED:
                continue
            for i in range(line.quantity):
                row = UnitRow(
                    line_id=line.id,
                    unit_index=i,
                    product_id=line.product_id,
                    unit_price=money(line.unit_price),
                    half_portion=bool(line.half_portion),
                    note=line.note,
                    settled=(line.id, i) in settled,
                )
                rows[row.key] = row
        self.rows = rows

    # ---------- views ----------

    @property
    def unsettled(self) -> List[UnitRow]:
        return [r for r in self.rows.values() if not r.settled]

    @property
    def selected(self) -> List[UnitRow]:
        return [r for r in self.rows.values() if r.selected and not r.settled]

    @property
    def remaining(self) -> Decimal:
        return money(self.amount_due - self.paid)

    @property
    def selected_due(self) -> Decimal:
        """Sum of selected rows, capped so a discount is absorbed by the last rows paid."""
        raw = sum((r.unit_price for r in self.selected), ZERO)
        return money(min(raw, self.remaining))

    @property
    def complete(self) -> bool:
        return not self.unsettled

    # ---------- selection ----------

    def _require_live(self) -> None:
        if self.closed:
            raise InvalidState("settlement session already closed", code="session_closed")

    def toggle(self, line_id: int, unit_index: int) -> bool:
        self._require_live()
        row = self.rows.get((line_id, unit_index))
        if row is None:
            raise NotFound(f"no unit row {line_id}/{unit_index}", code="row_not_found")
        if row.settled:
            raise InvalidState(f"unit row {line_id}/{unit_index} already settled", code="row_settled")
        row.selected = not row.selected
        return row.selected

    def select_all(self) -> None:
        self._require_live()
        for r in self.unsettled:
            r.selected = True

    def clear_selection(self) -> None:
        for r in self.rows.values():
            r.selected = False

    # ---------- payments ----------

    def _check_ticket(self, db: Session) -> Ticket:
        self._require_live()
        t = tickets.get_ticket(db, self.ticket_id)
        tickets.require_adjustable(t)
        if money(t.total) != self.ticket_total or settlement.amount_due(db, t.id) != self.amount_due:
            raise Conflict("ticket changed since checkout began", code="stale_session")
        return t

    def _settle(self, db: Session, method: PaymentMethod, due: Decimal,
                cash: Decimal, card: Decimal, change: Decimal) -> PartialPayment:
        keys = tuple(r.key for r in self.selected)
        for key in keys:
            row = self.rows[key]
            row.selected = False
            row.settled = True
        self.paid = money(self.paid + due)
        self.cash_paid = money(self.cash_paid + cash)
        self.card_paid = money(self.card_paid + card)
        self.last_method = method
        logger.info(
            "Partial payment on ticket %s: %s rows, %s via %s, remaining %s",
            self.ticket_id, len(keys), due, method.value, self.remaining,
        )
        closed = self._maybe_close(db)
        payment = PartialPayment(method, due, cash, card, change, keys, self.remaining, closed)
        self.payments.append(payment)
        return payment

    def _selection_due(self, db: Session) -> Decimal:
        self._check_ticket(db)
        if not self.selected:
            raise ValidationError("select at least one unit row", code="nothing_selected")
        return self.selected_due

    def pay_cash(self, db: Session, tendered) -> PartialPayment:
        due = self._selection_due(db)
        tendered = money(tendered)
        if tendered < due:
            raise InsufficientAmount(f"tendered {tendered} below selected amount {due}")
        return self._settle(db, PaymentMethod.CASH, due, due, ZERO, tendered - due)

    def pay_card(self, db: Session) -> PartialPayment:
        due = self._selection_due(db)
        return self._settle(db, PaymentMethod.CARD, due, ZERO, due, ZERO)

    def pay_split(self, db: Session, cash_portion) -> PartialPayment:
        due = self._selection_due(db)
        cash = money(cash_portion)
        if cash < 0 or cash > due:
            raise ValidationError(
                f"cash portion {cash} outside 0..{due}", code="cash_exceeds_due"
            )
        return self._settle(db, PaymentMethod.SPLIT, due, cash, due - cash, ZERO)

    # ---------- close ----------

    def _final_method(self) -> PaymentMethod:
        # last tender used; a checkout that took no payment at all closes as cash
        return self.last_method or PaymentMethod.CASH

    def _maybe_close(self, db: Session) -> bool:
        if not self.complete:
            return False
        return self.finish(db)

    def finish(self, db: Session) -> bool:
        """Close the ticket once every row is settled. Safe to call again after a failed close."""
        if self.closed:
            return True
        if not self.complete:
            raise InvalidState(
                f"{len(self.unsettled)} unit rows still unpaid", code="session_incomplete"
            )
        settlement.close_ticket(
            db, self.ticket_id, self._final_method(), self.cash_paid, self.card_paid
        )
        self.closed = True
        logger.info(
            "Split session finished: ticket %s, cash %s, card %s",
            self.ticket_id, self.cash_paid, self.card_paid,
        )
        return True

    # ---------- adjustments inside checkout ----------

    def _require_no_payments(self) -> None:
        if self.paid > 0 or any(r.settled for r in self.rows.values()):
            raise InvalidState(
                "adjustments must happen before the first partial payment",
                code="session_has_payments",
            )

    def _after_adjustment(self, db: Session) -> None:
        t = tickets.get_ticket(db, self.ticket_id)
        self.ticket_total = money(t.total)
        self.amount_due = settlement.amount_due(db, t.id)
        self._explode(db)

    def comp_line(self, db: Session, operator: OperatorContext, line_id: int, reason: str):
        """Comp a line from the checkout. Returns the comped line, or leaves a pending approval."""
        self._require_live()
        self._require_no_payments()
        if not reason or not reason.strip():
            raise ValidationError("comp reason required", code="reason_required")
        if not any(r.line_id == line_id for r in self.rows.values()):
            raise NotFound(f"line {line_id} not payable in this checkout", code="line_not_found")

        def perform(session: Session, approver_id: int):
            line = tickets.comp_line(session, line_id, reason)
            logger.info("Comp on line %s approved by %s (split session)", line_id, approver_id)
            self._after_adjustment(session)
            self._maybe_close(session)
            return line

        return self._gate(db, operator, AuthAction.COMP, perform)

    def apply_discount(self, db: Session, operator: OperatorContext, reason: str,
                       percent=None, fixed_amount=None):
        self._require_live()
        self._require_no_payments()
        if not reason or not reason.strip():
            raise ValidationError("discount reason required", code="reason_required")
        settlement.discount_amount(self.ticket_total, percent, fixed_amount)

        def perform(session: Session, approver_id: int):
            ticket = settlement.record_discount(
                session, self.ticket_id, reason, approver_id, percent, fixed_amount
            )
            self._after_adjustment(session)
            return ticket

        return self._gate(db, operator, AuthAction.DISCOUNT, perform)

    def _gate(self, db: Session, operator: OperatorContext, action: AuthAction, perform):
        if self.pending is not None and not self.pending.spent:
            raise InvalidState("another approval is pending", code="approval_pending")
        outcome = authorization.request(db, operator, action, perform)
        if isinstance(outcome, authorization.PendingApproval):
            self.pending = outcome
        return outcome

    def approve_pending(self, db: Session, secret: str):
        if self.pending is None or self.pending.spent:
            raise ApprovalRequired("no approval pending", code="no_pending_approval")
        pending, self.pending = self.pending, None
        return pending.approve(db, secret)

    def cancel_pending(self) -> None:
        if self.pending is not None:
            self.pending.discard()
        self.pending = None

