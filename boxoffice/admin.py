import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from . import store
from .cancellation import refund_ticket
from .deps import get_db
from .errors import EventNotFoundError, InputValidationError
from .models import CURRENCIES, AuditLog, Event, EventStatus
from .security import Principal, Role, require_roles
from .serializers import event_detail, iso, ticket_detail

admin_only = require_roles(Role.ADMIN)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(admin_only)])


# -------------------------
# Helpers
# -------------------------
def _gen_event_id() -> str:
    return f"evt_{uuid.uuid4().hex[:8]}"


def _event_status(value: str) -> EventStatus:
    try:
        return EventStatus(value)
    except ValueError:
        raise InputValidationError(f"Unknown event status '{value}'")


# -------------------------
# Events
# -------------------------
class CreateEventReq(BaseModel):
    title: str = Field(min_length=1)
    starts_at: datetime
    location: str = ""
    capacity: int = Field(ge=0)
    price: Decimal = Field(ge=0)
    currency: str = "FCFA"
    status: str = EventStatus.DRAFT.value


class EventStatusReq(BaseModel):
    status: str


@router.post("/events")
def create_event(req: CreateEventReq, db: Session = Depends(get_db)):
    if req.currency not in CURRENCIES:
        raise InputValidationError(f"Currency must be one of {', '.join(CURRENCIES)}")
    status = _event_status(req.status)

    event = Event(
        id=_gen_event_id(),
        title=req.title,
        starts_at=req.starts_at,
        location=req.location,
        capacity=req.capacity,
        price=req.price,
        currency=req.currency,
        status=status.value,
        tickets_sold=0,
        revenue=Decimal("0"),
        tickets_used=0,
    )
    db.add(event)
    db.commit()
    return {"success": True, "data": {"event": event_detail(event)}}


@router.patch("/events/{event_id}/status")
def set_event_status(event_id: str, req: EventStatusReq, db: Session = Depends(get_db)):
    event = db.get(Event, event_id)
    if event is None:
        raise EventNotFoundError(event_id)
    event.status = _event_status(req.status).value
    db.commit()
    return {"success": True, "data": {"event": event_detail(event)}}


@router.get("/events")
def list_events(db: Session = Depends(get_db)):
    rows = db.execute(select(Event).order_by(Event.created_at.desc())).scalars().all()
    return {"success": True, "data": {"events": [event_detail(e) for e in rows]}}


@router.get("/events/{event_id}/tickets")
def list_tickets(event_id: str, limit: int = 500, db: Session = Depends(get_db)):
    if db.get(Event, event_id) is None:
        raise EventNotFoundError(event_id)
    tickets = store.list_event_tickets(db, event_id, limit=limit)
    return {"success": True, "data": {"tickets": [ticket_detail(t) for t in tickets]}}


# -------------------------
# Refunds
# -------------------------
@router.post("/tickets/{ticket_id}/refund")
def refund(ticket_id: str, principal: Principal = Depends(admin_only), db: Session = Depends(get_db)):
    ticket = refund_ticket(db, ticket_id, principal)
    return {"success": True, "message": "Ticket refunded", "data": {"ticket": ticket_detail(ticket)}}


# -------------------------
# Logs
# -------------------------
@router.get("/audit")
def get_audit(limit: int = 80, event_id: Optional[str] = None, db: Session = Depends(get_db)):
    q = select(AuditLog, Event).join(Event, Event.id == AuditLog.event_id, isouter=True)
    if event_id:
        q = q.where(AuditLog.event_id == event_id)
    rows = db.execute(q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)).all()

    out = []
    for log, ev in rows:
        out.append({
            "created_at": iso(log.created_at),
            "ticket_id": log.ticket_id,
            "event_id": log.event_id,
            "event_title": ev.title if ev else None,
            "validator_id": log.validator_id,
            "status": log.status,
            "reason_code": log.reason_code,
            "decision_id": log.decision_id,
        })
    return out
