"""Ticket-issued notifications.

Delivery is best-effort: callers log and move on when it fails, a paid
ticket stays paid whether or not the email went out.
"""

from typing import Protocol

import httpx

from . import config
from .app_logger import get_logger
from .models import Event, Ticket

log = get_logger("notifications")


class NotificationError(Exception):
    pass


class Notifier(Protocol):
    async def send_ticket_issued(self, ticket: Ticket, event: Event) -> bool:
        """Deliver the ticket; False when nothing was actually sent."""
        ...


def render_ticket_email(ticket: Ticket, event: Event) -> tuple[str, str]:
    subject = f"Your ticket for {event.title}"
    holder = ticket.holder_name or "there"
    html = (
        "<html><body>"
        f"<p>Hello {holder},</p>"
        f"<p>Your payment for <strong>{event.title}</strong> is confirmed.</p>"
        "<ul>"
        f"<li>Ticket: {ticket.id}</li>"
        f"<li>Date: {event.starts_at:%Y-%m-%d %H:%M}</li>"
        f"<li>Location: {event.location}</li>"
        f"<li>Quantity: {ticket.quantity}</li>"
        f"<li>Total: {ticket.total_price} {ticket.currency}</li>"
        "</ul>"
        f'<p>Show this QR link at the entrance: <a href="{ticket.qr_data}">{ticket.qr_data}</a></p>'
        "</body></html>"
    )
    return subject, html


class EmailNotifier:
    """Sends transactional email through a Brevo-style JSON API."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        sender: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout
        self._transport = transport

    async def send_ticket_issued(self, ticket: Ticket, event: Event) -> bool:
        if not ticket.holder_email:
            raise NotificationError(f"ticket {ticket.id} has no holder email")

        subject, html = render_ticket_email(ticket, event)
        payload = {
            "sender": {"name": "Box Office", "email": self.sender},
            "to": [{"email": ticket.holder_email, "name": ticket.holder_name or ticket.holder_email}],
            "subject": subject,
            "htmlContent": html,
        }
        headers = {"accept": "application/json", "api-key": self.api_key}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                r = await client.post(self.api_url, json=payload, headers=headers)
                r.raise_for_status()
            except httpx.HTTPError as e:
                raise NotificationError(f"email API error for ticket {ticket.id}: {e}") from e

        log.info("ticket email sent ticket_id=%s to=%s", ticket.id, ticket.holder_email)
        return True


class LoggingNotifier:
    """Used when no email API is configured: logs the issue, sends nothing."""

    async def send_ticket_issued(self, ticket: Ticket, event: Event) -> bool:
        log.info("ticket issued ticket_id=%s event_id=%s holder=%s", ticket.id, event.id, ticket.holder_email)
        return False


def notifier_from_config() -> Notifier:
    if config.EMAIL_API_URL:
        return EmailNotifier(config.EMAIL_API_URL, config.EMAIL_API_KEY, config.EMAIL_SENDER)
    return LoggingNotifier()
