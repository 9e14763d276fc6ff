import asyncio
import uuid

from ticketpos.middleware import idempotency
from ticketpos.middleware.idempotency import _KeyedLocks, success_key_for


def _open_with_line(client, table, staff):
    ticket_id = client.post(
        f"/tables/{table.id}/open", headers={"X-Operator-Id": str(staff.id)}
    ).json()["id"]
    client.post(f"/tickets/{ticket_id}/lines", json={"product_id": 1, "unit_price": "20.00"})
    return ticket_id


def test_payment_paths_are_guarded():
    assert success_key_for("/tickets/12/pay/cash") == "ticket_id"
    assert success_key_for("/split/ab12cd/pay/card") == "ticket_id"
    assert success_key_for("/tickets/12/lines") is None


def test_repeated_payment_is_replayed(client, table, staff):
    ticket_id = _open_with_line(client, table, staff)
    headers = {"Idempotency-Key": f"pay-{uuid.uuid4().hex}"}

    first = client.post(f"/tickets/{ticket_id}/pay/cash", json={"tendered": "50.00"}, headers=headers)
    assert first.status_code == 200, first.text
    assert "replay" not in first.json()

    again = client.post(f"/tickets/{ticket_id}/pay/cash", json={"tendered": "50.00"}, headers=headers)
    assert again.status_code == 200
    assert again.headers.get("Idempotent-Replay") == "true"
    assert again.json()["replay"] is True
    assert again.json()["change"] == first.json()["change"]


def test_without_key_second_payment_conflicts(client, table, staff):
    ticket_id = _open_with_line(client, table, staff)
    assert client.post(f"/tickets/{ticket_id}/pay/card").status_code == 200
    assert client.post(f"/tickets/{ticket_id}/pay/card").status_code == 409


def test_failed_payment_is_not_stored(client, table, staff):
    ticket_id = _open_with_line(client, table, staff)
    headers = {"Idempotency-Key": f"pay-{uuid.uuid4().hex}"}

    short = client.post(f"/tickets/{ticket_id}/pay/cash", json={"tendered": "5.00"}, headers=headers)
    assert short.status_code == 409
    assert short.json()["detail"] == "insufficient_amount"

    ok = client.post(f"/tickets/{ticket_id}/pay/cash", json={"tendered": "20.00"}, headers=headers)
    assert ok.status_code == 200
    assert ok.headers.get("Idempotent-Replay") is None


def test_key_locks_are_dropped_after_use():
    locks = _KeyedLocks()

    async def scenario():
        await locks.acquire("POST:/tickets/1/pay/card:k1")
        await locks.acquire("POST:/tickets/2/pay/card:k2")
        assert len(locks) == 2
        await locks.release("POST:/tickets/1/pay/card:k1")
        await locks.release("POST:/tickets/2/pay/card:k2")

    asyncio.run(scenario())
    assert len(locks) == 0


def test_waiting_request_keeps_the_lock_until_it_is_done():
    locks = _KeyedLocks()
    order = []

    async def holder(key):
        await locks.acquire(key)
        order.append("first")
        await asyncio.sleep(0)
        await locks.release(key)

    async def waiter(key):
        await locks.acquire(key)
        order.append("second")
        await locks.release(key)

    async def scenario():
        await asyncio.gather(holder("k"), waiter("k"))

    asyncio.run(scenario())
    assert order == ["first", "second"]
    assert len(locks) == 0


def test_payment_requests_leave_no_lock_behind(client, table, staff):
    ticket_id = _open_with_line(client, table, staff)
    for _ in range(2):
        client.post(
            f"/tickets/{ticket_id}/pay/card",
            headers={"Idempotency-Key": f"pay-{uuid.uuid4().hex}"},
        )
    assert len(idempotency.keyed_locks) == 0
