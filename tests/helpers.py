import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx

from boxoffice.gateway import InTouchGateway
from boxoffice.models import Event
from boxoffice.notifications import NotificationError
from boxoffice.security import mint_access_token

PHONE = "771234567"


def token(user_id="user_1", role="user", ttl_minutes=60, **claims) -> str:
    exp = int((datetime.now(timezone.utc) + timedelta(minutes=ttl_minutes)).timestamp())
    return mint_access_token({"sub": user_id, "role": role, "exp": exp, **claims})


def auth(user_id="user_1", role="user", **claims) -> dict:
    return {"Authorization": f"Bearer {token(user_id, role, **claims)}"}


BUYER = auth("user_1", email="awa@example.com", first_name="Awa", last_name="Diop")
OTHER_BUYER = auth("user_2", email="moussa@example.com")
AGENT = auth("agent_1", "agent")
ADMIN = auth("admin_1", "admin")


class FakeProvider:
    """Stands in for the InTouch aggregator behind an httpx.MockTransport."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.verify_status = "PENDING"
        self.error: Exception | None = None
        self.reject_with: int | None = None
        self._seq = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.reject_with is not None:
            return httpx.Response(self.reject_with, json={"error": "rejected"})

        if request.method == "PUT":
            self._seq += 1
            body = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "transactionId": f"TX-{self._seq}",
                    "status": "PENDING",
                    "paymentUrl": f"https://pay.test/checkout/{self._seq}",
                    "idFromClient": body["idFromClient"],
                },
            )
        if request.method == "GET":
            transaction_id = request.url.path.rsplit("/", 1)[-1]
            return httpx.Response(200, json={"transactionId": transaction_id, "status": self.verify_status})
        return httpx.Response(405)

    @property
    def initiations(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "PUT"]


def make_gateway(provider: FakeProvider) -> InTouchGateway:
    return InTouchGateway(
        base_url="https://intouch.test/api",
        merchant_id="M123",
        login_agent="agent",
        password_agent="agent-pw",
        username="api-user",
        password="api-pw",
        partner_name="TESTCO",
        frontend_url="https://tickets.test",
        timeout=5,
        transport=httpx.MockTransport(provider),
    )


class RecordingNotifier:
    def __init__(self):
        self.sent: list[str] = []
        self.fail = False

    async def send_ticket_issued(self, ticket, event) -> bool:
        if self.fail:
            raise NotificationError("email API down")
        self.sent.append(ticket.id)
        return True


def insert_event(db, *, event_id="evt_test", price="5000", capacity=100, starts_in=timedelta(days=7), status="published") -> Event:
    event = Event(
        id=event_id,
        title="Test Event",
        starts_at=datetime.now(timezone.utc) + starts_in,
        location="Dakar Arena",
        capacity=capacity,
        price=Decimal(price),
        currency="FCFA",
        status=status,
        tickets_sold=0,
        revenue=Decimal("0"),
        tickets_used=0,
    )
    db.add(event)
    db.commit()
    return event


async def create_event(
    client: httpx.AsyncClient,
    title="Test Event",
    capacity=100,
    price=5000,
    starts_in=timedelta(days=7),
    status="published",
) -> str:
    starts_at = (datetime.now(timezone.utc) + starts_in).isoformat()
    r = await client.post(
        "/admin/events",
        json={
            "title": title,
            "starts_at": starts_at,
            "location": "Dakar Arena",
            "capacity": capacity,
            "price": price,
            "status": status,
        },
        headers=ADMIN,
    )
    r.raise_for_status()
    data = r.json()
    assert data.get("success") is True, data
    return data["data"]["event"]["event_id"]


async def get_event(client: httpx.AsyncClient, event_id: str) -> dict:
    r = await client.get("/admin/events", headers=ADMIN)
    r.raise_for_status()
    return next(e for e in r.json()["data"]["events"] if e["event_id"] == event_id)


async def get_ticket(client: httpx.AsyncClient, ticket_id: str, headers=ADMIN) -> httpx.Response:
    return await client.get(f"/api/tickets/{ticket_id}", headers=headers)


async def purchase(client: httpx.AsyncClient, event_id: str, quantity=1, headers=BUYER, method="orange_money", **extra) -> httpx.Response:
    return await client.post(
        "/api/payments/purchase",
        json={"event_id": event_id, "quantity": quantity, "recipient_number": PHONE, "payment_method": method},
        headers={**headers, **extra},
    )


async def buy_ticket(client: httpx.AsyncClient, event_id: str, quantity=1, headers=BUYER) -> dict:
    r = await purchase(client, event_id, quantity=quantity, headers=headers)
    r.raise_for_status()
    return r.json()["data"]


async def callback(client: httpx.AsyncClient, status="SUCCESSFUL", ticket_id=None, transaction_id=None) -> httpx.Response:
    payload = {"status": status, "amount": 10000, "currency": "XOF"}
    if ticket_id:
        payload["idFromClient"] = ticket_id
    if transaction_id:
        payload["transactionId"] = transaction_id
    return await client.post("/api/payments/callback", json=payload)


async def buy_paid_ticket(client: httpx.AsyncClient, event_id: str, quantity=1, headers=BUYER) -> str:
    data = await buy_ticket(client, event_id, quantity=quantity, headers=headers)
    ticket_id = data["ticket"]["ticket_id"]
    r = await callback(client, "SUCCESSFUL", ticket_id=ticket_id, transaction_id=data["payment"]["transaction_id"])
    r.raise_for_status()
    assert r.json()["status"] == "paid", r.json()
    return ticket_id


async def scan(client: httpx.AsyncClient, code: str, event_id=None, headers=AGENT, **extra) -> httpx.Response:
    body = {"code": code}
    if event_id:
        body["event_id"] = event_id
    return await client.post("/api/tickets/verify", json=body, headers={**headers, **extra})
