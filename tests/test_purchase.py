import asyncio
import json
from datetime import timedelta

import httpx
import pytest
from sqlalchemy import func, select

from boxoffice.errors import PaymentGatewayError
from boxoffice.models import Event, Ticket
from boxoffice.purchase import purchase as run_purchase
from boxoffice.security import Principal, Role
from tests.helpers import BUYER, create_event, get_event, insert_event, purchase

pytestmark = pytest.mark.asyncio


async def test_purchase_creates_pending_ticket_and_initiates_payment(client, provider):
    event_id = await create_event(client, price=5000)

    r = await purchase(client, event_id, quantity=2)
    assert r.status_code == 200, r.text
    data = r.json()["data"]

    ticket = data["ticket"]
    assert ticket["ticket_id"].startswith("TKT-")
    assert ticket["status"] == "pending"
    assert ticket["payment_status"] == "processing"
    assert ticket["total_price"] == 10000
    assert ticket["currency"] == "FCFA"
    assert ticket["qr_code"].endswith(f"/verify-ticket/{ticket['ticket_id']}")

    assert data["payment"]["transaction_id"] == "TX-1"
    assert data["payment"]["payment_url"] == "https://pay.test/checkout/1"
    assert data["event"]["event_id"] == event_id

    # one outbound call, carrying the ticket id and the full amount
    (req,) = provider.initiations
    body = json.loads(req.content)
    assert body["idFromClient"] == ticket["ticket_id"]
    assert body["amount"] == 10000
    assert body["serviceCode"] == "PAIEMENTMARCHANDOMSN2"
    assert body["callback"] == "http://test/api/payments/callback"
    assert body["additionnalInfos"]["recipientEmail"] == "awa@example.com"

    # not counted until paid
    event = await get_event(client, event_id)
    assert event["tickets_sold"] == 0
    assert event["revenue"] == 0


async def test_purchase_stores_buyer_as_holder(client):
    event_id = await create_event(client)
    data = (await purchase(client, event_id)).json()["data"]

    detail = (await client.get(f"/api/tickets/{data['ticket']['ticket_id']}", headers=BUYER)).json()["data"]["ticket"]
    assert detail["holder"] == {"first_name": "Awa", "last_name": "Diop", "email": "awa@example.com", "phone": "771234567"}
    assert detail["payment_id"] == "TX-1"
    assert detail["unit_price"] == 5000


async def test_purchase_requires_authentication(client):
    event_id = await create_event(client)
    r = await client.post(
        "/api/payments/purchase",
        json={"event_id": event_id, "quantity": 1, "recipient_number": "771234567", "payment_method": "wave"},
    )
    assert r.status_code == 401


@pytest.mark.parametrize(
    "overrides",
    [
        {"quantity": 0},
        {"quantity": 11},
        {"recipient_number": "661234567"},
        {"recipient_number": "+33612345678"},
        {"payment_method": "paypal"},
    ],
)
async def test_invalid_input_is_rejected_before_any_mutation(client, provider, overrides):
    event_id = await create_event(client)
    body = {"event_id": event_id, "quantity": 1, "recipient_number": "771234567", "payment_method": "wave", **overrides}

    r = await client.post("/api/payments/purchase", json=body, headers=BUYER)
    assert r.status_code == 400
    err = r.json()
    assert err["success"] is False
    assert err["error_code"] == "INVALID_INPUT"
    assert err["message"]
    assert provider.requests == []


async def test_malformed_body_uses_the_error_envelope(client):
    r = await client.post("/api/payments/purchase", json={"event_id": "evt_x", "quantity": "lots"}, headers=BUYER)
    assert r.status_code == 400
    assert r.json()["error_code"] == "INVALID_INPUT"


async def test_international_prefixes_are_accepted(client):
    event_id = await create_event(client)
    for number in ("+221771234567", "00221781234567"):
        r = await client.post(
            "/api/payments/purchase",
            json={"event_id": event_id, "quantity": 1, "recipient_number": number, "payment_method": "free_money"},
            headers=BUYER,
        )
        assert r.status_code == 200, r.text


async def test_unknown_event_is_not_found(client):
    r = await purchase(client, "evt_missing")
    assert r.status_code == 404
    assert r.json()["error_code"] == "EVENT_NOT_FOUND"


async def test_event_checks_are_conflicts(client, provider):
    draft = await create_event(client, status="draft")
    past = await create_event(client, starts_in=timedelta(days=-1))
    small = await create_event(client, capacity=1)

    r = await purchase(client, draft)
    assert (r.status_code, r.json()["error_code"]) == (409, "EVENT_NOT_OPEN")

    r = await purchase(client, past)
    assert (r.status_code, r.json()["error_code"]) == (409, "EVENT_PASSED")

    r = await purchase(client, small, quantity=2)
    assert (r.status_code, r.json()["error_code"]) == (409, "INSUFFICIENT_TICKETS")

    assert provider.requests == []


async def test_network_failure_removes_the_pending_ticket(client, provider):
    event_id = await create_event(client)
    provider.error = httpx.ConnectError("connection refused")

    r = await purchase(client, event_id, quantity=2)
    assert r.status_code == 502
    assert r.json()["error_code"] == "PAYMENT_PROVIDER_ERROR"

    # the ticket existed while the provider was called...
    body = json.loads(provider.initiations[0].content)
    ticket_id = body["idFromClient"]

    # ...and is gone afterwards
    r = await client.get(f"/api/tickets/{ticket_id}", headers=BUYER)
    assert r.status_code == 404
    mine = (await client.get("/api/tickets", headers=BUYER)).json()["data"]
    assert mine["pagination"]["total_tickets"] == 0

    event = await get_event(client, event_id)
    assert (event["tickets_sold"], event["revenue"]) == (0, 0)


async def test_provider_rejection_removes_the_pending_ticket(client, provider):
    event_id = await create_event(client)
    provider.reject_with = 500

    r = await purchase(client, event_id)
    assert r.status_code == 502
    mine = (await client.get("/api/tickets", headers=BUYER)).json()["data"]
    assert mine["tickets"] == []


async def test_idempotent_purchase_replays_the_first_response(client, provider):
    event_id = await create_event(client)

    r1 = await purchase(client, event_id, **{"Idempotency-Key": "order-1"})
    r2 = await purchase(client, event_id, **{"Idempotency-Key": "order-1"})
    assert r1.json() == r2.json()
    assert len(provider.initiations) == 1

    r3 = await purchase(client, event_id, **{"Idempotency-Key": "order-2"})
    assert r3.json()["data"]["ticket"]["ticket_id"] != r1.json()["data"]["ticket"]["ticket_id"]


# -------------------------
# Service level: timeouts
# -------------------------
class SlowGateway:
    async def initiate(self, request):
        await asyncio.sleep(5)


class BrokenGateway:
    async def initiate(self, request):
        raise RuntimeError("bug in adapter")


def _count_tickets(db) -> int:
    return db.execute(select(func.count()).select_from(Ticket)).scalar_one()


async def _buy(db, gateway, **kw):
    return await run_purchase(
        db,
        gateway,
        event_id="evt_test",
        quantity=2,
        recipient_number="771234567",
        payment_method="wave",
        buyer=Principal(user_id="user_1", role=Role.USER),
        callback_url="http://test/api/payments/callback",
        **kw,
    )


async def test_provider_timeout_is_an_initiation_failure(db):
    insert_event(db)

    with pytest.raises(PaymentGatewayError, match="timed out"):
        await _buy(db, SlowGateway(), timeout=0.05)

    assert _count_tickets(db) == 0
    event = db.get(Event, "evt_test", populate_existing=True)
    assert event.tickets_sold == 0


async def test_unexpected_adapter_error_still_compensates(db):
    insert_event(db)

    with pytest.raises(RuntimeError):
        await _buy(db, BrokenGateway())

    assert _count_tickets(db) == 0


class HangingGateway:
    def __init__(self):
        self.called = asyncio.Event()

    async def initiate(self, request):
        self.called.set()
        await asyncio.sleep(60)


async def test_cancelled_request_still_compensates(db):
    insert_event(db)
    gateway = HangingGateway()

    task = asyncio.create_task(_buy(db, gateway))
    await gateway.called.wait()
    assert _count_tickets(db) == 1

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert _count_tickets(db) == 0
