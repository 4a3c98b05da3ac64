"""Venue entry validation.

A ticket can be admitted exactly once: ``paid`` and unscanned becomes
``used`` in one guarded UPDATE, so of two simultaneous scans only one sees a
row change. Rejections carry enough context (status, prior scan) for the
operator at the gate to tell a double entry from a forged or unpaid code.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.orm import Session

from . import inventory, store
from .app_logger import get_logger
from .errors import ForbiddenError
from .models import AuditLog, Event, Ticket, TicketStatus, as_utc, utcnow
from .qr import parse_ticket_reference
from .serializers import iso
from .security import Principal

log = get_logger("entry")

ACCEPTED = "ACCEPTED"
REJECTED = "REJECTED"

# reason codes
OK = "OK"
INVALID_CODE = "INVALID_CODE"
NOT_FOUND = "NOT_FOUND"
WRONG_EVENT = "WRONG_EVENT"
NOT_PAID = "NOT_PAID"
VOIDED = "VOIDED"
ALREADY_USED = "ALREADY_USED"
RATE_LIMITED = "RATE_LIMITED"

EVENT_NOT_TODAY = "EVENT_NOT_TODAY"


@dataclass
class EntryDecision:
    status: str
    reason_code: str
    decision_id: str
    ticket_id: str | None = None
    ticket: Ticket | None = None
    event: Event | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.status == ACCEPTED

    def to_dict(self) -> dict:
        out = {
            "status": self.status,
            "reason_code": self.reason_code,
            "decision_id": self.decision_id,
            "ticket_id": self.ticket_id,
            "warnings": list(self.warnings),
            "ticket": None,
            "scan": None,
        }
        t = self.ticket
        if t is not None:
            out["ticket"] = {
                "ticket_id": t.id,
                "status": t.status,
                "quantity": t.quantity,
                "holder_name": t.holder_name,
                "event_id": t.event_id,
                "event_title": self.event.title if self.event else None,
                "event_date": iso(self.event.starts_at) if self.event else None,
                "event_location": self.event.location if self.event else None,
            }
            out["scan"] = {
                "scanned": t.scanned,
                "scanned_at": iso(t.scanned_at),
                "scanned_by": t.scanned_by,
            }
        return out


def rejected(reason_code: str, ticket_id: str | None = None) -> EntryDecision:
    return EntryDecision(status=REJECTED, reason_code=reason_code, decision_id=str(uuid.uuid4()), ticket_id=ticket_id)


def validate_entry(
    db: Session,
    code: str,
    validator: Principal,
    *,
    event_id: str | None = None,
    ip: str = "unknown",
    user_agent: str = "",
    now: datetime | None = None,
) -> EntryDecision:
    if not validator.is_staff:
        raise ForbiddenError("Only agents and admins can validate tickets")

    now = now or utcnow()
    decision_id = str(uuid.uuid4())

    ticket_id = parse_ticket_reference(code)
    if ticket_id is None:
        return record_decision(db, EntryDecision(REJECTED, INVALID_CODE, decision_id), validator, event_id, ip, user_agent)

    ticket = store.get_ticket(db, ticket_id, fresh=True)
    if ticket is None:
        decision = EntryDecision(REJECTED, NOT_FOUND, decision_id, ticket_id=ticket_id)
        return record_decision(db, decision, validator, event_id, ip, user_agent)

    event = db.get(Event, ticket.event_id)
    decision = EntryDecision(REJECTED, OK, decision_id, ticket_id=ticket_id, ticket=ticket, event=event)

    if event_id and ticket.event_id != event_id:
        decision.reason_code = WRONG_EVENT
    elif ticket.scanned or ticket.status == TicketStatus.USED.value:
        decision.reason_code = ALREADY_USED
    elif ticket.status == TicketStatus.PENDING.value:
        decision.reason_code = NOT_PAID
    elif ticket.status != TicketStatus.PAID.value:
        decision.reason_code = VOIDED
    elif store.mark_scanned(db, ticket_id, validator.user_id, now):
        inventory.record_entry(db, ticket.event_id)
        decision.status = ACCEPTED
    else:
        # lost the race to a concurrent scan
        decision.reason_code = ALREADY_USED

    if event is not None and as_utc(event.starts_at).date() != now.date():
        decision.warnings.append(EVENT_NOT_TODAY)
        log.warning("ticket %s scanned outside event day (event %s)", ticket_id, event.id)

    record_decision(db, decision, validator, event_id or ticket.event_id, ip, user_agent)
    decision.ticket = store.get_ticket(db, ticket_id, fresh=True)
    return decision


def record_decision(
    db: Session,
    decision: EntryDecision,
    validator: Principal,
    event_id: str | None,
    ip: str,
    user_agent: str,
) -> EntryDecision:
    db.add(
        AuditLog(
            decision_id=decision.decision_id,
            ip=ip,
            user_agent=user_agent,
            event_id=event_id,
            ticket_id=decision.ticket_id,
            validator_id=validator.user_id,
            status=decision.status,
            reason_code=decision.reason_code,
        )
    )
    db.commit()

    if decision.accepted:
        log.info("entry accepted ticket_id=%s by=%s", decision.ticket_id, validator.user_id)
    else:
        log.warning("entry rejected ticket_id=%s reason=%s by=%s", decision.ticket_id, decision.reason_code, validator.user_id)
    return decision
