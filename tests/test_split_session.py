from decimal import Decimal

import pytest

from conftest import MANAGER_SECRET
from ticketpos.core.errors import (
    AuthorizationDenied,
    Conflict,
    InsufficientAmount,
    InvalidState,
    ValidationError,
)
from ticketpos.models.enums import LineStatus, PaymentMethod, TableStatus, TicketKind, TicketStatus
from ticketpos.services import authorization, settlement, tables, tickets
from ticketpos.services.split_session import SettlementSession


@pytest.fixture
def three_units(db_session, table, staff):
    t = tickets.create_ticket(db_session, staff.id, TicketKind.DINE_IN, table_id=table.id)
    line = tickets.add_line(db_session, t.id, product_id=1, quantity=3, unit_price="10.00")
    return t, line


def test_guests_pay_their_share_then_ticket_closes(db_session, three_units, table):
    t, line = three_units
    s = SettlementSession.open(db_session, t.id)
    assert len(s.rows) == 3

    s.toggle(line.id, 0)
    first = s.pay_cash(db_session, "10.00")
    assert first.change == Decimal("0.00")
    assert not first.ticket_closed
    assert tickets.get_ticket(db_session, t.id).status == TicketStatus.OPEN

    s.select_all()
    last = s.pay_card(db_session)
    assert last.ticket_closed

    closed = tickets.get_ticket(db_session, t.id)
    assert closed.status == TicketStatus.PAID
    assert closed.total == Decimal("30.00")
    assert closed.cash_amount == Decimal("10.00")
    assert closed.card_amount == Decimal("20.00")
    # the close takes the last tender used; the amounts keep the per-tender split
    assert closed.payment_method == PaymentMethod.CARD
    assert closed.payment_method == s.last_method
    assert tables.get_table(db_session, table.id).status == TableStatus.FREE


def test_settled_rows_cannot_be_paid_twice(db_session, three_units):
    t, line = three_units
    s = SettlementSession.open(db_session, t.id)
    s.toggle(line.id, 1)
    s.pay_card(db_session)
    with pytest.raises(InvalidState):
        s.toggle(line.id, 1)
    s.select_all()
    assert s.selected_due == Decimal("20.00")
    assert s.remaining == Decimal("20.00")


def test_empty_selection_is_rejected(db_session, three_units):
    t, _ = three_units
    s = SettlementSession.open(db_session, t.id)
    with pytest.raises(ValidationError):
        s.pay_card(db_session)


def test_cash_below_selection_is_rejected(db_session, three_units):
    t, line = three_units
    s = SettlementSession.open(db_session, t.id)
    s.toggle(line.id, 0)
    s.toggle(line.id, 2)
    with pytest.raises(InsufficientAmount):
        s.pay_cash(db_session, "19.99")
    assert s.paid == Decimal("0.00")
    assert all(not r.settled for r in s.rows.values())


def test_single_tender_close_keeps_its_method(db_session, three_units):
    t, line = three_units
    s = SettlementSession.open(db_session, t.id)
    s.toggle(line.id, 0)
    s.pay_card(db_session)
    s.select_all()
    s.pay_card(db_session)
    closed = tickets.get_ticket(db_session, t.id)
    assert closed.payment_method == PaymentMethod.CARD
    assert closed.card_amount == Decimal("30.00")


def test_discount_is_absorbed_by_last_rows(db_session, three_units, manager):
    t, line = three_units
    s = SettlementSession.open(db_session, t.id)
    s.apply_discount(db_session, manager, "regular", fixed_amount="5.00")
    assert s.amount_due == Decimal("25.00")

    s.toggle(line.id, 0)
    s.toggle(line.id, 1)
    assert s.selected_due == Decimal("20.00")
    s.pay_split(db_session, "5.00")
    s.select_all()
    assert s.selected_due == Decimal("5.00")
    s.pay_cash(db_session, "5.00")

    closed = tickets.get_ticket(db_session, t.id)
    assert closed.status == TicketStatus.PAID
    assert closed.cash_amount + closed.card_amount == Decimal("25.00")
    assert closed.cash_amount == Decimal("10.00")


def test_comp_inside_session_drops_rows(db_session, table, staff, manager):
    t = tickets.create_ticket(db_session, staff.id, TicketKind.DINE_IN, table_id=table.id)
    soup = tickets.add_line(db_session, t.id, 1, 2, "8.00")
    tea = tickets.add_line(db_session, t.id, 2, 1, "3.00")
    s = SettlementSession.open(db_session, t.id)

    s.comp_line(db_session, manager, tea.id, "on the house")
    assert len(s.rows) == 2
    assert s.amount_due == Decimal("16.00")

    s.select_all()
    s.pay_card(db_session)
    assert s.closed
    assert tickets.get_line(db_session, soup.id).status == LineStatus.PENDING


def test_staff_comp_waits_for_manager(db_session, three_units, staff, manager):
    t, line = three_units
    s = SettlementSession.open(db_session, t.id)
    outcome = s.comp_line(db_session, staff, line.id, "cold food")
    assert isinstance(outcome, authorization.PendingApproval)
    assert tickets.get_line(db_session, line.id).status == LineStatus.PENDING

    s.approve_pending(db_session, MANAGER_SECRET)
    assert tickets.get_line(db_session, line.id).status == LineStatus.COMPED
    # nothing left to pay, and no tender was ever used
    assert s.closed
    closed = tickets.get_ticket(db_session, t.id)
    assert closed.status == TicketStatus.PAID
    assert closed.payment_method == PaymentMethod.CASH



def test_last_tender_decides_the_method(db_session, three_units):
    t, line = three_units
    s = SettlementSession.open(db_session, t.id)
    s.toggle(line.id, 0)
    s.toggle(line.id, 1)
    s.pay_card(db_session)
    s.select_all()
    s.pay_cash(db_session, "10.00")
    closed = tickets.get_ticket(db_session, t.id)
    assert closed.payment_method == PaymentMethod.CASH
    assert (closed.cash_amount, closed.card_amount) == (Decimal("10.00"), Decimal("20.00"))


def test_pending_comp_is_written_on_the_approving_session(
    session_factory, db_session, three_units, staff, manager, monkeypatch
):
    t, line = three_units
    first = session_factory()
    s = SettlementSession.open(first, t.id)
    s.comp_line(first, staff, line.id, "cold food")
    first.close()

    used = []
    real_comp = tickets.comp_line

    def spy(db, line_id, reason):
        used.append(db)
        return real_comp(db, line_id, reason)

    monkeypatch.setattr(tickets, "comp_line", spy)
    second = session_factory()
    try:
        s.approve_pending(second, MANAGER_SECRET)
    finally:
        second.close()

    assert used == [second]
    db_session.expire_all()
    assert tickets.get_line(db_session, line.id).status == LineStatus.COMPED

def test_staff_comp_with_wrong_credential_is_discarded(db_session, three_units, staff, manager):
    t, line = three_units
    s = SettlementSession.open(db_session, t.id)
    s.comp_line(db_session, staff, line.id, "cold food")
    with pytest.raises(AuthorizationDenied):
        s.approve_pending(db_session, "0000")
    assert s.pending is None
    assert tickets.get_line(db_session, line.id).status == LineStatus.PENDING


def test_adjustments_refused_after_partial_payment(db_session, three_units, manager):
    t, line = three_units
    s = SettlementSession.open(db_session, t.id)
    s.toggle(line.id, 0)
    s.pay_card(db_session)
    with pytest.raises(InvalidState):
        s.comp_line(db_session, manager, line.id, "late")
    with pytest.raises(InvalidState):
        s.apply_discount(db_session, manager, "late", percent=10)


def test_ticket_changed_elsewhere_invalidates_session(db_session, three_units, manager):
    t, line = three_units
    s = SettlementSession.open(db_session, t.id)
    settlement.apply_discount(db_session, t.id, "outside", manager, percent=10)
    s.toggle(line.id, 0)
    with pytest.raises(Conflict):
        s.pay_card(db_session)


def test_abandoned_session_leaves_ticket_untouched(db_session, three_units):
    t, line = three_units
    s = SettlementSession.open(db_session, t.id)
    s.toggle(line.id, 0)
    s.pay_cash(db_session, "20.00")
    del s
    fresh = tickets.get_ticket(db_session, t.id)
    assert fresh.status == TicketStatus.OPEN
    assert fresh.cash_amount == Decimal("0.00")
    assert settlement.amount_due(db_session, t.id) == Decimal("30.00")
