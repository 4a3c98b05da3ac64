from fastapi import APIRouter, Depends, Header, Query, Request, Response
from pydantic import BaseModel
from redis.asyncio import Redis
from sqlalchemy.orm import Session

from . import entry, store
from .cancellation import cancel_ticket
from .config import SCAN_RATE_CAPACITY, SCAN_RATE_REFILL_PER_SEC
from .deps import get_db, get_notifier, get_redis
from .errors import ConflictError, ErrorCode, ForbiddenError, TicketNotFoundError, UpstreamError
from .idempotency import get_cached_response, scope_for, set_cached_response
from .models import Event, TicketStatus
from .notifications import NotificationError, Notifier
from .qr import render_qr_png
from .rate_limit import token_bucket
from .security import Principal, Role, get_current_principal, require_roles
from .serializers import ticket_detail

router = APIRouter(prefix="/api/tickets", tags=["tickets"])

staff_only = require_roles(Role.ADMIN, Role.AGENT)


class ValidateReq(BaseModel):
    code: str
    event_id: str | None = None


@router.get("")
async def my_tickets(
    status: str | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    tickets, total = store.list_user_tickets(
        db, principal.user_id, status=status, offset=(page - 1) * limit, limit=limit
    )
    return {
        "success": True,
        "data": {
            "tickets": [ticket_detail(t) for t in tickets],
            "pagination": {
                "current_page": page,
                "total_pages": (total + limit - 1) // limit,
                "total_tickets": total,
            },
        },
    }


@router.post("/verify")
async def validate_ticket(
    req: ValidateReq,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    principal: Principal = Depends(staff_only),
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
):
    return await _validate(req.code, req.event_id, request, idempotency_key, principal, db, redis)


@router.post("/verify/{ticket_id}")
async def validate_ticket_by_id(
    ticket_id: str,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    principal: Principal = Depends(staff_only),
    db: Session = Depends(get_db),
    redis: Redis = Depends(get_redis),
):
    return await _validate(ticket_id, None, request, idempotency_key, principal, db, redis)


async def _validate(code, event_id, request: Request, idempotency_key, principal: Principal, db: Session, redis: Redis):
    ip = request.client.host if request.client else "unknown"
    ua = request.headers.get("user-agent", "")
    scope = scope_for("scan", principal.user_id)

    # Idempotency
    if idempotency_key:
        cached = await get_cached_response(redis, scope, idempotency_key)
        if cached:
            return cached

    allowed = await token_bucket(redis, key=f"scan:{ip}", capacity=SCAN_RATE_CAPACITY, refill_per_sec=SCAN_RATE_REFILL_PER_SEC)
    if not allowed:
        decision = entry.rejected(entry.RATE_LIMITED)
        entry.record_decision(db, decision, principal, event_id, ip, ua)
    else:
        decision = entry.validate_entry(db, code, principal, event_id=event_id, ip=ip, user_agent=ua)

    resp = decision.to_dict()
    if idempotency_key:
        await set_cached_response(redis, scope, idempotency_key, resp)
    return resp


def _owned_ticket(db: Session, ticket_id: str, principal: Principal, *, staff_can_read: bool = False):
    ticket = store.get_ticket(db, ticket_id)
    if ticket is None:
        raise TicketNotFoundError(ticket_id)
    if ticket.user_id != principal.user_id and not (staff_can_read and principal.is_staff):
        raise ForbiddenError("Ticket belongs to another user")
    return ticket


@router.get("/{ticket_id}")
async def get_ticket(
    ticket_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    ticket = _owned_ticket(db, ticket_id, principal, staff_can_read=True)
    return {"success": True, "data": {"ticket": ticket_detail(ticket)}}


@router.get("/{ticket_id}/qr")
async def get_ticket_qr(
    ticket_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    ticket = _owned_ticket(db, ticket_id, principal)
    return Response(
        content=render_qr_png(ticket.qr_data),
        media_type="image/png",
        headers={"Cache-Control": "public, max-age=3600"},
    )


@router.post("/{ticket_id}/resend-email")
async def resend_ticket_email(
    ticket_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    ticket = _owned_ticket(db, ticket_id, principal)
    if ticket.status != TicketStatus.PAID.value:
        raise ConflictError(code=ErrorCode.TICKET_NOT_PAID, message="Ticket must be paid to resend it")

    try:
        delivered = await notifier.send_ticket_issued(ticket, db.get(Event, ticket.event_id))
    except NotificationError as e:
        raise UpstreamError(code=ErrorCode.NOTIFICATION_FAILED, message="Could not send the ticket email") from e
    if not delivered:
        return {"success": True, "message": "No email transport configured", "sent": False}
    store.mark_email_sent(db, ticket.id)
    db.commit()
    return {"success": True, "message": "Email sent", "sent": True}


@router.delete("/{ticket_id}")
async def cancel(
    ticket_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    ticket = cancel_ticket(db, ticket_id, principal)
    return {"success": True, "message": "Ticket cancelled", "data": {"ticket": ticket_detail(ticket)}}
