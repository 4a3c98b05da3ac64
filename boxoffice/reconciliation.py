"""Payment reconciliation.

Provider callbacks and on-demand verification polls both end in
``apply_payment_status``. The ``pending -> paid`` move is a compare-and-set
on the ticket row, and the inventory increment runs in the same transaction,
so a duplicate callback or a callback racing a poll counts the sale once.
"""

import asyncio
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from . import config, inventory, store
from .app_logger import get_logger
from .errors import ErrorCode, ForbiddenError, InputValidationError, PaymentGatewayError, TicketNotFoundError
from .gateway import InTouchGateway, VerificationResult
from .models import Event, PaymentStatus, Ticket, TicketStatus
from .notifications import Notifier
from .security import Principal

log = get_logger("reconciliation")

FAILURE_STATUSES = (PaymentStatus.FAILED, PaymentStatus.CANCELLED)


@dataclass
class ReconciliationResult:
    ticket: Ticket
    payment_status: PaymentStatus
    previous_status: str
    transitioned: bool
    verification: VerificationResult | None = None
    notes: list[str] = field(default_factory=list)

    @property
    def is_paid(self) -> bool:
        return self.ticket.status in (TicketStatus.PAID.value, TicketStatus.USED.value)


async def apply_payment_status(
    db: Session,
    notifier: Notifier | None,
    ticket_id: str,
    payment_status: PaymentStatus,
) -> ReconciliationResult:
    ticket = store.get_ticket(db, ticket_id, fresh=True)
    if ticket is None:
        raise TicketNotFoundError(ticket_id)
    previous_status = ticket.status
    event_id, quantity, total_price = ticket.event_id, ticket.quantity, ticket.total_price

    store.set_payment_status(db, ticket_id, payment_status)

    transitioned = False
    if payment_status == PaymentStatus.COMPLETED:
        if store.transition_status(db, ticket_id, TicketStatus.PENDING, TicketStatus.PAID):
            inventory.record_sale(db, event_id, quantity, total_price)
            transitioned = True
    elif payment_status in FAILURE_STATUSES:
        transitioned = store.transition_status(db, ticket_id, TicketStatus.PENDING, TicketStatus.CANCELLED)

    db.commit()

    ticket = store.get_ticket(db, ticket_id, fresh=True)
    if transitioned:
        log.info("ticket %s: %s -> %s (payment %s)", ticket_id, previous_status, ticket.status, payment_status.value)
    else:
        log.warning(
            "ticket %s: status unchanged at %s (payment %s)", ticket_id, ticket.status, payment_status.value
        )

    result = ReconciliationResult(
        ticket=ticket,
        payment_status=payment_status,
        previous_status=previous_status,
        transitioned=transitioned,
    )

    if transitioned and ticket.status == TicketStatus.PAID.value:
        await _notify_issued(db, notifier, ticket, result)

    return result


async def _notify_issued(db: Session, notifier: Notifier | None, ticket: Ticket, result: ReconciliationResult) -> None:
    if notifier is None:
        return
    event = db.get(Event, ticket.event_id)
    try:
        delivered = await notifier.send_ticket_issued(ticket, event)
    except Exception:
        log.exception("ticket-issued notification failed ticket_id=%s", ticket.id)
        result.notes.append("NOTIFICATION_FAILED")
        return
    if not delivered:
        return
    store.mark_email_sent(db, ticket.id)
    db.commit()


async def handle_provider_callback(
    db: Session,
    gateway: InTouchGateway,
    notifier: Notifier | None,
    payload,
) -> ReconciliationResult:
    callback = gateway.parse_callback(payload)
    log.debug("provider callback: %s", callback.raw)

    ticket = store.find_by_reference(db, ticket_id=callback.client_ref, transaction_id=callback.transaction_id)
    if ticket is None:
        log.error(
            "no ticket for callback transaction_id=%s idFromClient=%s",
            callback.transaction_id,
            callback.client_ref,
        )
        raise TicketNotFoundError(callback.client_ref or callback.transaction_id)
    if callback.client_ref and ticket.id != callback.client_ref and store.get_ticket(db, callback.client_ref):
        log.error(
            "callback references disagree: transaction_id=%s is ticket %s, idFromClient=%s",
            callback.transaction_id,
            ticket.id,
            callback.client_ref,
        )
        raise InputValidationError("Callback references two different tickets", code=ErrorCode.INVALID_CALLBACK)

    store.record_payment_attempt(
        db,
        ticket_id=ticket.id,
        source="callback",
        status=callback.status,
        transaction_id=callback.transaction_id,
        raw_payload=callback.raw,
    )

    status = callback.status
    if config.CONFIRM_CALLBACKS and status == PaymentStatus.COMPLETED:
        status = await _confirm_with_provider(db, gateway, ticket.id, ticket.payment_id or callback.transaction_id)
    return await apply_payment_status(db, notifier, ticket.id, status)


async def _confirm_with_provider(
    db: Session, gateway: InTouchGateway, ticket_id: str, transaction_id: str | None
) -> PaymentStatus:
    if not transaction_id:
        log.warning("cannot confirm callback without a transaction id ticket_id=%s", ticket_id)
        return PaymentStatus.PROCESSING

    db.commit()
    try:
        verification = await asyncio.wait_for(gateway.verify(transaction_id), timeout=config.PAYMENT_TIMEOUT_SECONDS)
    except asyncio.TimeoutError as e:
        log.error("callback confirmation timed out ticket_id=%s", ticket_id)
        raise PaymentGatewayError("Payment provider timed out") from e

    store.record_payment_attempt(
        db,
        ticket_id=ticket_id,
        source="verify",
        status=verification.status,
        transaction_id=transaction_id,
        raw_payload=verification.raw,
    )
    if not verification.is_paid:
        log.warning(
            "provider does not confirm callback ticket_id=%s provider_status=%s",
            ticket_id,
            verification.provider_status,
        )
    return verification.status


async def verify_payment(
    db: Session,
    gateway: InTouchGateway,
    notifier: Notifier | None,
    reference: str,
    requester: Principal,
    *,
    timeout: float | None = None,
) -> ReconciliationResult:
    """Poll the provider for a ticket's payment and apply the outcome.

    ``reference`` may be the ticket id or the provider transaction id.
    """
    ticket = store.find_by_reference(db, ticket_id=reference, transaction_id=reference)
    if ticket is None:
        raise TicketNotFoundError(reference)
    if ticket.user_id != requester.user_id and not requester.is_admin:
        raise ForbiddenError("Ticket belongs to another user")

    if not ticket.payment_id:
        return ReconciliationResult(
            ticket=ticket,
            payment_status=PaymentStatus(ticket.payment_status),
            previous_status=ticket.status,
            transitioned=False,
            notes=["NO_TRANSACTION"],
        )

    ticket_id, payment_id = ticket.id, ticket.payment_id
    db.commit()
    try:
        verification = await asyncio.wait_for(
            gateway.verify(payment_id),
            timeout=timeout if timeout is not None else config.PAYMENT_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError as e:
        log.error("verification timed out ticket_id=%s", ticket_id)
        raise PaymentGatewayError("Payment provider timed out") from e

    store.record_payment_attempt(
        db,
        ticket_id=ticket_id,
        source="verify",
        status=verification.status,
        transaction_id=payment_id,
        raw_payload=verification.raw,
    )
    result = await apply_payment_status(db, notifier, ticket_id, verification.status)
    result.verification = verification
    return result
