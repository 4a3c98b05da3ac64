from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel
from redis.asyncio import Redis
from sqlalchemy.orm import Session

from .config import PUBLIC_API_URL
from .deps import get_db, get_gateway, get_notifier, get_redis
from .errors import ErrorCode, InputValidationError
from .gateway import InTouchGateway, PaymentMethod
from .idempotency import get_cached_response, scope_for, set_cached_response
from .notifications import Notifier
from .purchase import purchase
from .reconciliation import handle_provider_callback, verify_payment
from .security import Principal, get_current_principal
from .serializers import event_brief, ticket_summary

router = APIRouter(prefix="/api/payments", tags=["payments"])


class PurchaseReq(BaseModel):
    event_id: str
    quantity: int
    recipient_number: str
    payment_method: str


def _callback_url(request: Request) -> str:
    if PUBLIC_API_URL:
        return f"{PUBLIC_API_URL}{router.prefix}/callback"
    return str(request.url_for("payment_callback"))


@router.post("/purchase")
async def purchase_ticket(
    req: PurchaseReq,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    gateway: InTouchGateway = Depends(get_gateway),
    redis: Redis = Depends(get_redis),
):
    scope = scope_for("purchase", principal.user_id)
    if idempotency_key:
        cached = await get_cached_response(redis, scope, idempotency_key)
        if cached:
            return cached

    result = await purchase(
        db,
        gateway,
        event_id=req.event_id,
        quantity=req.quantity,
        recipient_number=req.recipient_number,
        payment_method=req.payment_method,
        buyer=principal,
        callback_url=_callback_url(request),
    )

    resp = {
        "success": True,
        "message": "Order created",
        "data": {
            "ticket": ticket_summary(result.ticket),
            "payment": {
                "transaction_id": result.payment.transaction_id,
                "status": result.payment.status,
                "payment_url": result.payment.payment_url,
            },
            "event": event_brief(result.event),
        },
    }
    if idempotency_key:
        await set_cached_response(redis, scope, idempotency_key, resp)
    return resp


@router.post("/callback", name="payment_callback")
async def payment_callback(
    request: Request,
    db: Session = Depends(get_db),
    gateway: InTouchGateway = Depends(get_gateway),
    notifier: Notifier = Depends(get_notifier),
):
    try:
        payload = await request.json()
    except ValueError:
        raise InputValidationError("Callback body must be JSON", code=ErrorCode.INVALID_CALLBACK)

    result = await handle_provider_callback(db, gateway, notifier, payload)
    return {
        "success": True,
        "message": "Callback processed",
        "ticket_id": result.ticket.id,
        "status": result.ticket.status,
        "payment_status": result.ticket.payment_status,
        "transitioned": result.transitioned,
    }


@router.get("/verify/{reference}")
async def verify(
    reference: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    gateway: InTouchGateway = Depends(get_gateway),
    notifier: Notifier = Depends(get_notifier),
):
    result = await verify_payment(db, gateway, notifier, reference, principal)
    verification = result.verification
    return {
        "success": True,
        "data": {
            "ticket": {
                "ticket_id": result.ticket.id,
                "status": result.ticket.status,
                "payment_status": result.ticket.payment_status,
                "is_paid": result.is_paid,
            },
            "payment": verification.raw if verification else None,
            "transitioned": result.transitioned,
            "notes": result.notes,
        },
    }


@router.get("/methods")
async def payment_methods():
    return {
        "success": True,
        "data": {
            "methods": [
                {"id": m.value, "name": m.label, "service_code": m.service_code, "is_active": True}
                for m in PaymentMethod
            ]
        },
    }
