"""Purchase orchestration: pending ticket, provider initiation, compensation.

The ticket row exists before the provider is called so that the provider can
echo its id back (``idFromClient``). If initiation fails or times out the row
is deleted again; a pending ticket only survives when the provider accepted
the request and a callback or poll will settle it.
"""

import asyncio
import re
from dataclasses import dataclass

from sqlalchemy.orm import Session

from . import config, store
from .app_logger import get_logger
from .errors import (
    ErrorCode,
    EventNotFoundError,
    EventNotOpenError,
    InputValidationError,
    InsufficientTicketsError,
    PaymentGatewayError,
)
from .gateway import InitiationResult, InTouchGateway, PaymentMethod, PaymentRequest
from .models import Event, EventStatus, PaymentStatus, Ticket, as_utc, utcnow
from .security import Principal

log = get_logger("purchase")

SENEGAL_MOBILE_RE = re.compile(r"^(\+221|00221)?7[0-9]{8}$")


@dataclass
class PurchaseResult:
    ticket: Ticket
    event: Event
    payment: InitiationResult


def _validate_input(quantity: int, recipient_number: str, payment_method: str) -> PaymentMethod:
    if not isinstance(quantity, int) or isinstance(quantity, bool):
        raise InputValidationError("Quantity must be an integer")
    if quantity < 1 or quantity > config.MAX_TICKETS_PER_ORDER:
        raise InputValidationError(f"Quantity must be between 1 and {config.MAX_TICKETS_PER_ORDER}")
    if not recipient_number or not SENEGAL_MOBILE_RE.match(recipient_number.strip()):
        raise InputValidationError("Invalid Senegalese mobile number")
    try:
        return PaymentMethod(payment_method)
    except ValueError:
        raise InputValidationError(f"Unsupported payment method '{payment_method}'")


def _check_event(event: Event | None, event_id: str, quantity: int) -> Event:
    if event is None:
        raise EventNotFoundError(event_id)
    if event.available_tickets < quantity:
        raise InsufficientTicketsError(event.available_tickets, quantity)
    if as_utc(event.starts_at) <= utcnow():
        raise EventNotOpenError(ErrorCode.EVENT_PASSED, "Event has already taken place")
    if event.status != EventStatus.PUBLISHED.value:
        raise EventNotOpenError(ErrorCode.EVENT_NOT_OPEN, "Event is not open for sale")
    return event


async def purchase(
    db: Session,
    gateway: InTouchGateway,
    *,
    event_id: str,
    quantity: int,
    recipient_number: str,
    payment_method: str,
    buyer: Principal,
    callback_url: str,
    timeout: float | None = None,
) -> PurchaseResult:
    method = _validate_input(quantity, recipient_number, payment_method)
    recipient_number = recipient_number.strip()
    event = _check_event(db.get(Event, event_id), event_id, quantity)

    ticket = store.create_pending_ticket(
        db,
        event=event,
        user_id=buyer.user_id,
        quantity=quantity,
        payment_method=method.value,
        holder_first_name=buyer.first_name,
        holder_last_name=buyer.last_name,
        holder_email=buyer.email,
        holder_phone=recipient_number,
    )
    ticket_id, total_price = ticket.id, ticket.total_price
    db.commit()
    log.info("pending ticket created ticket_id=%s event_id=%s qty=%s total=%s", ticket_id, event_id, quantity, total_price)

    request = PaymentRequest(
        amount=total_price,
        recipient_number=recipient_number,
        callback_url=callback_url,
        client_ref=ticket_id,
        method=method,
        recipient_email=buyer.email,
        recipient_first_name=buyer.first_name,
        recipient_last_name=buyer.last_name,
    )

    try:
        result = await asyncio.wait_for(
            gateway.initiate(request),
            timeout=timeout if timeout is not None else config.PAYMENT_TIMEOUT_SECONDS,
        )
    except PaymentGatewayError:
        _compensate(db, ticket_id)
        raise
    except asyncio.TimeoutError as e:
        _compensate(db, ticket_id)
        raise PaymentGatewayError("Payment provider timed out") from e
    except BaseException:
        # includes request cancellation: no orphaned pending tickets
        _compensate(db, ticket_id)
        raise

    store.attach_payment(db, ticket_id, result.transaction_id)
    store.record_payment_attempt(
        db,
        ticket_id=ticket_id,
        source="initiate",
        status=PaymentStatus.PROCESSING,
        transaction_id=result.transaction_id,
        service_code=result.service_code,
        raw_payload=result.raw,
    )
    db.commit()
    log.info("payment initiated ticket_id=%s transaction_id=%s", ticket_id, result.transaction_id)

    return PurchaseResult(ticket=store.get_ticket(db, ticket_id, fresh=True), event=event, payment=result)


def _compensate(db: Session, ticket_id: str) -> None:
    db.rollback()
    removed = store.delete_pending_ticket(db, ticket_id)
    db.commit()
    log.error("payment initiation failed ticket_id=%s removed=%s", ticket_id, removed)

