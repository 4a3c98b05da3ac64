"""Ticket persistence.

Every lifecycle transition is a conditional ``UPDATE`` whose WHERE clause is
the guard; ``rowcount`` tells the caller whether it won. Nothing here commits:
the services decide where the transaction ends.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from .models import Event, PaymentAttempt, PaymentStatus, Ticket, TicketStatus, utcnow
from .qr import build_qr_payload, generate_ticket_id


def create_pending_ticket(
    db: Session,
    *,
    event: Event,
    user_id: str,
    quantity: int,
    payment_method: str,
    holder_first_name: str | None = None,
    holder_last_name: str | None = None,
    holder_email: str | None = None,
    holder_phone: str | None = None,
) -> Ticket:
    ticket_id = generate_ticket_id()
    unit_price = Decimal(event.price)
    ticket = Ticket(
        id=ticket_id,
        user_id=user_id,
        event_id=event.id,
        payment_method=payment_method,
        quantity=quantity,
        unit_price=unit_price,
        total_price=unit_price * quantity,
        currency=event.currency,
        status=TicketStatus.PENDING.value,
        payment_status=PaymentStatus.PENDING.value,
        qr_data=build_qr_payload(ticket_id),
        scanned=False,
        holder_first_name=holder_first_name,
        holder_last_name=holder_last_name,
        holder_email=holder_email,
        holder_phone=holder_phone,
    )
    db.add(ticket)
    db.flush()
    return ticket


def get_ticket(db: Session, ticket_id: str, *, fresh: bool = False) -> Ticket | None:
    if fresh:
        return db.get(Ticket, ticket_id, populate_existing=True)
    return db.get(Ticket, ticket_id)


def find_by_reference(
    db: Session,
    *,
    ticket_id: str | None = None,
    transaction_id: str | None = None,
) -> Ticket | None:
    """Find a ticket by the provider transaction id, else by its own id."""
    if transaction_id:
        ticket = db.execute(
            select(Ticket).where(Ticket.payment_id == transaction_id).execution_options(populate_existing=True)
        ).scalars().first()
        if ticket is not None:
            return ticket
    if ticket_id:
        return get_ticket(db, ticket_id, fresh=True)
    return None


def list_user_tickets(
    db: Session, user_id: str, *, status: str | None = None, offset: int = 0, limit: int = 10
) -> tuple[list[Ticket], int]:
    q = select(Ticket).where(Ticket.user_id == user_id)
    if status:
        q = q.where(Ticket.status == status)
    total = db.execute(select(func.count()).select_from(q.subquery())).scalar_one()
    rows = db.execute(q.order_by(Ticket.created_at.desc()).offset(offset).limit(limit)).scalars().all()
    return list(rows), total


def list_event_tickets(db: Session, event_id: str, *, limit: int = 500) -> list[Ticket]:
    return list(
        db.execute(
            select(Ticket).where(Ticket.event_id == event_id).order_by(Ticket.created_at.desc()).limit(limit)
        ).scalars().all()
    )


def delete_pending_ticket(db: Session, ticket_id: str) -> bool:
    result = db.execute(
        delete(Ticket)
        .where(Ticket.id == ticket_id, Ticket.status == TicketStatus.PENDING.value)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def attach_payment(db: Session, ticket_id: str, transaction_id: str) -> None:
    db.execute(
        update(Ticket)
        .where(Ticket.id == ticket_id)
        .values(payment_id=transaction_id, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    # a callback may already have moved payment_status past pending
    db.execute(
        update(Ticket)
        .where(Ticket.id == ticket_id, Ticket.payment_status == PaymentStatus.PENDING.value)
        .values(payment_status=PaymentStatus.PROCESSING.value)
        .execution_options(synchronize_session=False)
    )


def set_payment_status(db: Session, ticket_id: str, payment_status: PaymentStatus) -> None:
    db.execute(
        update(Ticket)
        .where(Ticket.id == ticket_id)
        .values(payment_status=payment_status.value, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )


def transition_status(db: Session, ticket_id: str, from_status: TicketStatus, to_status: TicketStatus) -> bool:
    """Compare-and-set on ``status``; scanned tickets never move."""
    result = db.execute(
        update(Ticket)
        .where(
            Ticket.id == ticket_id,
            Ticket.status == from_status.value,
            Ticket.scanned.is_(False),
        )
        .values(status=to_status.value, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def mark_scanned(db: Session, ticket_id: str, validator_id: str, scanned_at: datetime) -> bool:
    result = db.execute(
        update(Ticket)
        .where(
            Ticket.id == ticket_id,
            Ticket.status == TicketStatus.PAID.value,
            Ticket.scanned.is_(False),
        )
        .values(
            scanned=True,
            scanned_at=scanned_at,
            scanned_by=validator_id,
            status=TicketStatus.USED.value,
            updated_at=scanned_at,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def mark_email_sent(db: Session, ticket_id: str) -> None:
    now = utcnow()
    db.execute(
        update(Ticket)
        .where(Ticket.id == ticket_id)
        .values(is_email_sent=True, email_sent_at=now)
        .execution_options(synchronize_session=False)
    )


def record_payment_attempt(
    db: Session,
    *,
    ticket_id: str,
    source: str,
    status: PaymentStatus,
    transaction_id: str | None = None,
    service_code: str | None = None,
    raw_payload: dict | None = None,
) -> PaymentAttempt:
    attempt = PaymentAttempt(
        ticket_id=ticket_id,
        transaction_id=transaction_id,
        service_code=service_code,
        source=source,
        status=status.value,
        raw_payload=raw_payload,
    )
    db.add(attempt)
    return attempt
