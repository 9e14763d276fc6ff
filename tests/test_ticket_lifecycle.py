from decimal import Decimal

import pytest

from ticketpos.core.errors import Conflict, InvalidState, ValidationError
from ticketpos.models.enums import LineStatus, TableStatus, TicketKind, TicketStatus
from ticketpos.services import tables, tickets


def _dine_in(db, table, staff):
    return tickets.create_ticket(db, staff.id, TicketKind.DINE_IN, table_id=table.id)


def test_total_tracks_lines(db_session, table, staff):
    t = _dine_in(db_session, table, staff)
    tickets.add_line(db_session, t.id, product_id=1, quantity=2, unit_price="10.00")
    tickets.add_line(db_session, t.id, product_id=2, quantity=1, unit_price="15.00")
    assert tickets.get_total(db_session, t.id) == Decimal("35.00")


def test_same_product_merges_into_one_line(db_session, table, staff):
    t = _dine_in(db_session, table, staff)
    first = tickets.add_line(db_session, t.id, 1, 1, "10.00")
    again = tickets.add_line(db_session, t.id, 1, 2, "10.00")
    assert again.id == first.id
    assert again.quantity == 3
    assert len(tickets.list_lines(db_session, t.id)) == 1


def test_noted_or_half_lines_do_not_merge(db_session, table, staff):
    t = _dine_in(db_session, table, staff)
    tickets.add_line(db_session, t.id, 1, 1, "10.00")
    tickets.add_line(db_session, t.id, 1, 1, "10.00", note="no onions")
    tickets.add_line(db_session, t.id, 1, 1, "10.00", half_portion=True)
    assert len(tickets.list_lines(db_session, t.id)) == 3


def test_line_in_preparation_is_not_merged(db_session, table, staff):
    t = _dine_in(db_session, table, staff)
    first = tickets.add_line(db_session, t.id, 1, 1, "10.00")
    tickets.advance_line(db_session, first.id, LineStatus.IN_PREPARATION)
    second = tickets.add_line(db_session, t.id, 1, 1, "10.00")
    assert second.id != first.id


def test_quantity_zero_cancels_line(db_session, table, staff):
    t = _dine_in(db_session, table, staff)
    line = tickets.add_line(db_session, t.id, 1, 2, "10.00")
    tickets.add_line(db_session, t.id, 2, 1, "5.00")
    out = tickets.set_line_quantity(db_session, line.id, 0)
    assert out.status == LineStatus.CANCELLED
    assert tickets.get_total(db_session, t.id) == Decimal("5.00")
    # cancelled lines stay on record
    assert len(tickets.list_lines(db_session, t.id, include_cancelled=True)) == 2


def test_price_change_splits_one_unit_off(db_session, table, staff):
    t = _dine_in(db_session, table, staff)
    line = tickets.add_line(db_session, t.id, 1, 3, "10.00")
    repriced = tickets.change_line_price(db_session, line.id, "7.50")
    db_session.refresh(line)
    assert repriced.id != line.id
    assert (line.quantity, repriced.quantity) == (2, 1)
    assert repriced.unit_price == Decimal("7.50")
    assert tickets.get_total(db_session, t.id) == Decimal("27.50")


def test_price_change_on_single_unit_edits_in_place(db_session, table, staff):
    t = _dine_in(db_session, table, staff)
    line = tickets.add_line(db_session, t.id, 1, 1, "10.00")
    repriced = tickets.change_line_price(db_session, line.id, "12.00")
    assert repriced.id == line.id
    assert tickets.get_total(db_session, t.id) == Decimal("12.00")


@pytest.mark.parametrize("qty,price", [(0, "10.00"), (-1, "10.00"), (1, "0"), (1, "-2.00")])
def test_add_line_rejects_non_positive_input(db_session, table, staff, qty, price):
    t = _dine_in(db_session, table, staff)
    with pytest.raises(ValidationError):
        tickets.add_line(db_session, t.id, 1, qty, price)
    assert tickets.get_total(db_session, t.id) == Decimal("0.00")


def test_dine_in_requires_table(db_session, staff):
    with pytest.raises(ValidationError):
        tickets.create_ticket(db_session, staff.id, TicketKind.DINE_IN)


def test_second_ticket_on_busy_table_conflicts(db_session, table, staff):
    _dine_in(db_session, table, staff)
    with pytest.raises(Conflict):
        _dine_in(db_session, table, staff)


def test_open_for_table_reuses_running_ticket(db_session, table, staff):
    first = tickets.open_for_table(db_session, table.id, staff.id)
    again = tickets.open_for_table(db_session, table.id, staff.id)
    assert again.id == first.id


def test_first_line_occupies_table(db_session, table, staff):
    t = _dine_in(db_session, table, staff)
    assert tables.get_table(db_session, table.id).status == TableStatus.FREE
    tickets.add_line(db_session, t.id, 1, 1, "10.00")
    assert tables.get_table(db_session, table.id).status == TableStatus.OCCUPIED


def test_lazy_counter_ticket_created_on_first_item(db_session, staff):
    assert tickets.list_open_tickets(db_session) == []
    ticket_id, line_id = tickets.add_line_lazy(
        db_session, None, TicketKind.COUNTER_PICKUP, staff.id, 5, 2, "4.00"
    )
    t = tickets.get_ticket(db_session, ticket_id)
    assert t.kind == TicketKind.COUNTER_PICKUP
    assert t.table_id is None
    assert t.total == Decimal("8.00")
    again, _ = tickets.add_line_lazy(
        db_session, ticket_id, TicketKind.COUNTER_PICKUP, staff.id, 6, 1, "1.00"
    )
    assert again == ticket_id


def test_lazy_rejects_bad_item_before_creating_ticket(db_session, staff):
    with pytest.raises(ValidationError):
        tickets.add_line_lazy(db_session, None, TicketKind.DELIVERY, staff.id, 5, 1, "0")
    assert tickets.list_open_tickets(db_session) == []


def test_bill_request_blocks_line_edits_until_reopened(db_session, table, staff):
    t = _dine_in(db_session, table, staff)
    tickets.add_line(db_session, t.id, 1, 1, "10.00")
    tickets.request_bill(db_session, t.id)
    assert tables.get_table(db_session, table.id).status == TableStatus.BILL_REQUESTED
    with pytest.raises(InvalidState):
        tickets.add_line(db_session, t.id, 2, 1, "3.00")

    tickets.reopen_ticket(db_session, t.id)
    assert tables.get_table(db_session, table.id).status == TableStatus.OCCUPIED
    tickets.add_line(db_session, t.id, 2, 1, "3.00")
    assert tickets.get_total(db_session, t.id) == Decimal("13.00")


def test_cancel_requires_reason_and_frees_table(db_session, table, staff):
    t = _dine_in(db_session, table, staff)
    tickets.add_line(db_session, t.id, 1, 1, "10.00")
    with pytest.raises(ValidationError):
        tickets.cancel_ticket(db_session, t.id, "  ", staff.id)
    out = tickets.cancel_ticket(db_session, t.id, "customer left", staff.id)
    assert out.status == TicketStatus.CANCELLED
    assert out.cancelled_by == staff.id
    assert tables.get_table(db_session, table.id).status == TableStatus.FREE


def test_closed_ticket_is_immutable(db_session, table, staff):
    t = _dine_in(db_session, table, staff)
    line = tickets.add_line(db_session, t.id, 1, 1, "10.00")
    tickets.cancel_ticket(db_session, t.id, "mistake", staff.id)
    with pytest.raises(InvalidState):
        tickets.add_line(db_session, t.id, 1, 1, "10.00")
    with pytest.raises(InvalidState):
        tickets.set_line_quantity(db_session, line.id, 4)
    with pytest.raises(InvalidState):
        tickets.comp_line(db_session, line.id, "late")


def test_abandon_empty_ticket_releases_table(db_session, table, staff):
    t = _dine_in(db_session, table, staff)
    out = tickets.abandon_ticket(db_session, t.id)
    assert out.status == TicketStatus.CANCELLED
    assert tables.bound_ticket(db_session, table.id) is None


def test_abandon_keeps_ticket_with_lines(db_session, table, staff):
    t = _dine_in(db_session, table, staff)
    tickets.add_line(db_session, t.id, 1, 1, "10.00")
    out = tickets.abandon_ticket(db_session, t.id)
    assert out.status == TicketStatus.OPEN
    assert tables.get_table(db_session, table.id).status == TableStatus.OCCUPIED


def test_kitchen_progression_is_forward_only(db_session, table, staff):
    t = _dine_in(db_session, table, staff)
    line = tickets.add_line(db_session, t.id, 1, 1, "10.00")
    with pytest.raises(InvalidState):
        tickets.advance_line(db_session, line.id, LineStatus.DONE)
    tickets.advance_line(db_session, line.id, LineStatus.IN_PREPARATION)
    out = tickets.advance_line(db_session, line.id, LineStatus.DONE)
    assert out.status == LineStatus.DONE


def test_discount_clamped_when_total_drops(db_session, table, staff, manager):
    from ticketpos.services import settlement

    t = _dine_in(db_session, table, staff)
    big = tickets.add_line(db_session, t.id, 1, 1, "20.00")
    tickets.add_line(db_session, t.id, 2, 1, "5.00")
    settlement.apply_discount(db_session, t.id, "regular", manager, fixed_amount="15.00")
    tickets.cancel_line(db_session, big.id)
    t = tickets.get_ticket(db_session, t.id)
    assert t.total == Decimal("5.00")
    assert t.discount == Decimal("5.00")
