from datetime import datetime

from sqlalchemy.orm import Session

from . import config, inventory, store
from .app_logger import get_logger
from .errors import (
    CancellationWindowClosedError,
    ForbiddenError,
    TicketAlreadyUsedError,
    TicketNotCancellableError,
    TicketNotFoundError,
)
from .models import Event, Ticket, TicketStatus, as_utc, utcnow
from .security import Principal

log = get_logger("cancellation")


def hours_until_event(event: Event, now: datetime) -> float:
    return (as_utc(event.starts_at) - now).total_seconds() / 3600


def _load_for_change(db: Session, ticket_id: str, requester: Principal) -> tuple[Ticket, Event]:
    ticket = store.get_ticket(db, ticket_id, fresh=True)
    if ticket is None:
        raise TicketNotFoundError(ticket_id)
    if ticket.user_id != requester.user_id and not requester.is_admin:
        raise ForbiddenError("Ticket belongs to another user")
    return ticket, db.get(Event, ticket.event_id)


def _check_window(ticket: Ticket, event: Event, now: datetime) -> None:
    if ticket.scanned or ticket.status == TicketStatus.USED.value:
        raise TicketAlreadyUsedError()
    if ticket.status in (TicketStatus.CANCELLED.value, TicketStatus.REFUNDED.value):
        raise TicketNotCancellableError(ticket.status)
    if hours_until_event(event, now) < config.CANCELLATION_CUTOFF_HOURS:
        raise CancellationWindowClosedError(config.CANCELLATION_CUTOFF_HOURS)


def cancel_ticket(db: Session, ticket_id: str, requester: Principal, *, now: datetime | None = None) -> Ticket:
    """Cancel an unused ticket at least the cutoff window before the event.

    A paid ticket gives its seats and revenue back to the event; a pending one
    was never counted and leaves inventory alone.
    """
    now = now or utcnow()
    ticket, event = _load_for_change(db, ticket_id, requester)
    _check_window(ticket, event, now)

    if store.transition_status(db, ticket_id, TicketStatus.PAID, TicketStatus.CANCELLED):
        inventory.release_sale(db, ticket.event_id, ticket.quantity, ticket.total_price)
    elif not store.transition_status(db, ticket_id, TicketStatus.PENDING, TicketStatus.CANCELLED):
        db.rollback()
        _raise_for_current(db, ticket_id)
    db.commit()

    log.info("ticket cancelled ticket_id=%s by=%s", ticket_id, requester.user_id)
    return store.get_ticket(db, ticket_id, fresh=True)


def refund_ticket(db: Session, ticket_id: str, requester: Principal, *, now: datetime | None = None) -> Ticket:
    if not requester.is_admin:
        raise ForbiddenError("Only admins can refund tickets")

    now = now or utcnow()
    ticket, event = _load_for_change(db, ticket_id, requester)
    _check_window(ticket, event, now)
    if ticket.status != TicketStatus.PAID.value:
        raise TicketNotCancellableError(ticket.status)

    if not store.transition_status(db, ticket_id, TicketStatus.PAID, TicketStatus.REFUNDED):
        db.rollback()
        _raise_for_current(db, ticket_id)
    inventory.release_sale(db, ticket.event_id, ticket.quantity, ticket.total_price)
    db.commit()

    log.info("ticket refunded ticket_id=%s by=%s", ticket_id, requester.user_id)
    return store.get_ticket(db, ticket_id, fresh=True)


def _raise_for_current(db: Session, ticket_id: str) -> None:
    # the ticket changed under us between the read and the guarded update
    current = store.get_ticket(db, ticket_id, fresh=True)
    if current is None:
        raise TicketNotFoundError(ticket_id)
    if current.scanned or current.status == TicketStatus.USED.value:
        raise TicketAlreadyUsedError()
    raise TicketNotCancellableError(current.status)
