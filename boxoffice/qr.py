"""Ticket identifiers and the QR payloads that embed them.

A ticket identifier looks like ``TKT-1718000000000-9F3A01BC``: a fixed
prefix, the creation time in epoch milliseconds and eight upper-case hex
characters. The QR payload is the verification URL
``<FRONTEND_URL>/verify-ticket/<ticket id>``; scanners may submit either the
URL or the bare identifier.
"""

import io
import re
import time
import uuid
from urllib.parse import urlsplit

import qrcode

from .config import FRONTEND_URL

TICKET_PREFIX = "TKT"
VERIFY_PATH = "verify-ticket"

TICKET_ID_RE = re.compile(r"^TKT-\d{13}-[0-9A-F]{8}$")


def generate_ticket_id(now_ms: int | None = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = uuid.uuid4().hex[:8].upper()
    return f"{TICKET_PREFIX}-{now_ms:013d}-{suffix}"


def build_qr_payload(ticket_id: str, base_url: str = FRONTEND_URL) -> str:
    return f"{base_url.rstrip('/')}/{VERIFY_PATH}/{ticket_id}"


def is_ticket_id(value: str) -> bool:
    return bool(TICKET_ID_RE.match(value))


def parse_ticket_reference(raw: str | None) -> str | None:
    """Extract a ticket id from a scanned QR payload or a typed-in id.

    Returns None when the input is neither a verification URL ending in a
    well-formed id nor a well-formed id itself.
    """
    if not raw:
        return None
    value = raw.strip()
    if not value:
        return None

    if "://" in value:
        segments = [s for s in urlsplit(value).path.split("/") if s]
        if len(segments) < 2 or segments[-2] != VERIFY_PATH:
            return None
        value = segments[-1]

    candidate = value.upper()
    return candidate if is_ticket_id(candidate) else None


def render_qr_png(payload: str) -> bytes:
    qr = qrcode.QRCode(box_size=10, border=2)
    qr.add_data(payload)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
