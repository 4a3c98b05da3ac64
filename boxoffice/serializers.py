"""Plain-dict views of persisted rows for JSON responses."""

from decimal import Decimal

from .models import Event, Ticket, as_utc


def money(value: Decimal | None) -> float:
    return float(value) if value is not None else 0.0


def iso(value) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None


def ticket_summary(ticket: Ticket) -> dict:
    return {
        "ticket_id": ticket.id,
        "status": ticket.status,
        "payment_status": ticket.payment_status,
        "quantity": ticket.quantity,
        "total_price": money(ticket.total_price),
        "currency": ticket.currency,
        "qr_code": ticket.qr_data,
    }


def ticket_detail(ticket: Ticket) -> dict:
    out = ticket_summary(ticket)
    out.update(
        {
            "event_id": ticket.event_id,
            "user_id": ticket.user_id,
            "payment_id": ticket.payment_id,
            "payment_method": ticket.payment_method,
            "unit_price": money(ticket.unit_price),
            "holder": {
                "first_name": ticket.holder_first_name,
                "last_name": ticket.holder_last_name,
                "email": ticket.holder_email,
                "phone": ticket.holder_phone,
            },
            "scanned": ticket.scanned,
            "scanned_at": iso(ticket.scanned_at),
            "scanned_by": ticket.scanned_by,
            "is_email_sent": ticket.is_email_sent,
            "created_at": iso(ticket.created_at),
        }
    )
    if ticket.event is not None:
        out["event"] = event_brief(ticket.event)
    return out


def event_brief(event: Event) -> dict:
    return {
        "event_id": event.id,
        "title": event.title,
        "date": iso(event.starts_at),
        "location": event.location,
    }


def event_detail(event: Event) -> dict:
    out = event_brief(event)
    out.update(
        {
            "status": event.status,
            "capacity": event.capacity,
            "price": money(event.price),
            "currency": event.currency,
            "tickets_sold": event.tickets_sold,
            "available_tickets": event.available_tickets,
            "revenue": money(event.revenue),
            "tickets_used": event.tickets_used,
            "created_at": iso(event.created_at),
        }
    )
    return out
