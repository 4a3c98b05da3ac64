import asyncio

import pytest
from sqlalchemy import select

from boxoffice.models import Ticket
from tests.helpers import (
    ADMIN,
    AGENT,
    BUYER,
    auth,
    buy_paid_ticket,
    buy_ticket,
    callback,
    create_event,
    get_event,
    get_ticket,
    scan,
)

pytestmark = pytest.mark.asyncio


async def test_scan_once_then_already_used(client):
    event_id = await create_event(client, title="Entry Event")
    ticket_id = await buy_paid_ticket(client, event_id)

    r1 = (await scan(client, ticket_id, event_id=event_id)).json()
    assert r1["status"] == "ACCEPTED"
    assert r1["reason_code"] == "OK"
    assert r1["ticket_id"] == ticket_id
    assert r1["ticket"]["status"] == "used"
    assert r1["ticket"]["holder_name"] == "Awa Diop"
    assert r1["scan"]["scanned"] is True
    assert r1["scan"]["scanned_by"] == "agent_1"
    first_scan_at = r1["scan"]["scanned_at"]

    r2 = (await scan(client, ticket_id, event_id=event_id, headers=auth("agent_2", "agent"))).json()
    assert r2["status"] == "REJECTED"
    assert r2["reason_code"] == "ALREADY_USED"
    # the operator sees who let the ticket in, and when
    assert r2["scan"]["scanned_at"] == first_scan_at
    assert r2["scan"]["scanned_by"] == "agent_1"

    event = await get_event(client, event_id)
    assert event["tickets_used"] == 1


async def test_concurrent_scan_one_wins(client):
    event_id = await create_event(client, title="Concurrency Event")
    ticket_id = await buy_paid_ticket(client, event_id)

    async def one(i):
        return (await scan(client, ticket_id, headers=auth(f"agent_{i}", "agent"))).json()

    results = await asyncio.gather(*[one(i) for i in range(20)])
    accepted = [x for x in results if x.get("status") == "ACCEPTED"]
    rejected = [x for x in results if x.get("status") == "REJECTED"]

    assert len(accepted) == 1, f"Expected exactly 1 ACCEPTED, got {len(accepted)}"
    assert len(rejected) == 19
    assert all(r.get("reason_code") == "ALREADY_USED" for r in rejected)

    winner = accepted[0]["scan"]["scanned_by"]
    ticket = (await get_ticket(client, ticket_id)).json()["data"]["ticket"]
    assert ticket["scanned_by"] == winner
    assert (await get_event(client, event_id))["tickets_used"] == 1


async def test_scan_accepts_the_qr_url(client):
    event_id = await create_event(client)
    ticket_id = await buy_paid_ticket(client, event_id)
    qr = (await get_ticket(client, ticket_id)).json()["data"]["ticket"]["qr_code"]

    r = (await scan(client, qr)).json()
    assert r["status"] == "ACCEPTED"
    assert r["ticket_id"] == ticket_id


async def test_scan_by_path(client):
    event_id = await create_event(client)
    ticket_id = await buy_paid_ticket(client, event_id)

    r = await client.post(f"/api/tickets/verify/{ticket_id}", headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["status"] == "ACCEPTED"


async def test_pending_ticket_is_not_paid_and_untouched(client):
    event_id = await create_event(client)
    ticket_id = (await buy_ticket(client, event_id))["ticket"]["ticket_id"]

    r = (await scan(client, ticket_id)).json()
    assert (r["status"], r["reason_code"]) == ("REJECTED", "NOT_PAID")
    assert r["scan"]["scanned"] is False

    ticket = (await get_ticket(client, ticket_id)).json()["data"]["ticket"]
    assert ticket["status"] == "pending"
    assert ticket["scanned"] is False
    assert (await get_event(client, event_id))["tickets_used"] == 0


async def test_cancelled_ticket_is_voided(client):
    event_id = await create_event(client)
    ticket_id = (await buy_ticket(client, event_id))["ticket"]["ticket_id"]
    await callback(client, "FAILED", ticket_id=ticket_id)

    r = (await scan(client, ticket_id)).json()
    assert (r["status"], r["reason_code"]) == ("REJECTED", "VOIDED")


async def test_unknown_and_garbage_codes(client):
    r = (await scan(client, "https://evil.example/not-a-ticket")).json()
    assert (r["status"], r["reason_code"]) == ("REJECTED", "INVALID_CODE")
    assert r["ticket_id"] is None

    r = (await scan(client, "TKT-1718000000000-DEADBEEF")).json()
    assert (r["status"], r["reason_code"]) == ("REJECTED", "NOT_FOUND")
    assert r["ticket_id"] == "TKT-1718000000000-DEADBEEF"


async def test_wrong_event_leaves_ticket_valid(client):
    event_id = await create_event(client, title="Main Stage")
    other_event = await create_event(client, title="Side Stage")
    ticket_id = await buy_paid_ticket(client, event_id)

    r = (await scan(client, ticket_id, event_id=other_event)).json()
    assert (r["status"], r["reason_code"]) == ("REJECTED", "WRONG_EVENT")

    r = (await scan(client, ticket_id, event_id=event_id)).json()
    assert r["status"] == "ACCEPTED"


async def test_scan_outside_event_day_is_only_a_warning(client):
    # events from create_event start a week out
    event_id = await create_event(client)
    ticket_id = await buy_paid_ticket(client, event_id)

    r = (await scan(client, ticket_id)).json()
    assert r["status"] == "ACCEPTED"
    assert r["warnings"] == ["EVENT_NOT_TODAY"]


async def test_only_staff_can_scan(client):
    event_id = await create_event(client)
    ticket_id = await buy_paid_ticket(client, event_id)

    r = await scan(client, ticket_id, headers=BUYER)
    assert r.status_code == 403
    assert r.json()["error_code"] == "FORBIDDEN"

    r = await client.post("/api/tickets/verify", json={"code": ticket_id})
    assert r.status_code == 401

    ticket = (await get_ticket(client, ticket_id)).json()["data"]["ticket"]
    assert ticket["status"] == "paid"


async def test_every_decision_is_audited(client):
    event_id = await create_event(client, title="Audit Event")
    ticket_id = await buy_paid_ticket(client, event_id)

    d1 = (await scan(client, ticket_id, event_id=event_id)).json()
    d2 = (await scan(client, ticket_id, event_id=event_id)).json()

    logs = (await client.get("/admin/audit", params={"event_id": event_id}, headers=ADMIN)).json()
    by_decision = {x["decision_id"]: x for x in logs}
    assert by_decision[d1["decision_id"]]["reason_code"] == "OK"
    assert by_decision[d1["decision_id"]]["status"] == "ACCEPTED"
    assert by_decision[d2["decision_id"]]["reason_code"] == "ALREADY_USED"
    assert by_decision[d2["decision_id"]]["validator_id"] == "agent_1"
    assert by_decision[d2["decision_id"]]["event_title"] == "Audit Event"


async def test_scanned_implies_used(client, session_factory):
    event_id = await create_event(client)
    paid = [await buy_paid_ticket(client, event_id) for _ in range(3)]
    await buy_ticket(client, event_id)
    await asyncio.gather(*[scan(client, t) for t in paid[:2] for _ in range(3)])

    with session_factory() as db:
        tickets = db.execute(select(Ticket).where(Ticket.event_id == event_id)).scalars().all()
    assert len(tickets) == 4
    for t in tickets:
        if t.scanned:
            assert t.status == "used"
            assert t.scanned_at is not None and t.scanned_by is not None
    assert sum(t.scanned for t in tickets) == 2
