import enum
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything is stored in UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class EventStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class TicketStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    USED = "used"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


CURRENCIES = ("FCFA", "EUR", "USD")


class Event(Base):
    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    title: Mapped[str] = mapped_column(String, index=True)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    location: Mapped[str] = mapped_column(String, default="")
    capacity: Mapped[int] = mapped_column(Integer)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    currency: Mapped[str] = mapped_column(String(8), default="FCFA")
    status: Mapped[str] = mapped_column(String(16), default=EventStatus.DRAFT.value, index=True)
    tickets_sold: Mapped[int] = mapped_column(Integer, default=0)
    revenue: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    tickets_used: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    tickets: Mapped[list["Ticket"]] = relationship(back_populates="event")

    __table_args__ = (
        CheckConstraint("capacity >= 0", name="ck_event_capacity"),
        CheckConstraint("price >= 0", name="ck_event_price"),
    )

    @property
    def available_tickets(self) -> int:
        return max(self.capacity - self.tickets_sold, 0)


class Ticket(Base):
    __tablename__ = "tickets"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    event_id: Mapped[str] = mapped_column(ForeignKey("events.id"), index=True)
    payment_id: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    payment_method: Mapped[str] = mapped_column(String(32))

    quantity: Mapped[int] = mapped_column(Integer)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    total_price: Mapped[Decimal] = mapped_column(Numeric(14, 2))
    currency: Mapped[str] = mapped_column(String(8), default="FCFA")

    status: Mapped[str] = mapped_column(String(16), default=TicketStatus.PENDING.value, index=True)
    payment_status: Mapped[str] = mapped_column(String(16), default=PaymentStatus.PENDING.value)

    qr_data: Mapped[str] = mapped_column(String)
    scanned: Mapped[bool] = mapped_column(Boolean, default=False)
    scanned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    scanned_by: Mapped[str | None] = mapped_column(String, nullable=True)

    holder_first_name: Mapped[str | None] = mapped_column(String, nullable=True)
    holder_last_name: Mapped[str | None] = mapped_column(String, nullable=True)
    holder_email: Mapped[str | None] = mapped_column(String, nullable=True)
    holder_phone: Mapped[str | None] = mapped_column(String, nullable=True)

    is_email_sent: Mapped[bool] = mapped_column(Boolean, default=False)
    email_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    event: Mapped[Event] = relationship(back_populates="tickets")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_ticket_quantity"),
        # a scanned ticket is always a used ticket
        CheckConstraint("NOT scanned OR status = 'used'", name="ck_ticket_scanned_used"),
    )

    @property
    def holder_name(self) -> str | None:
        if self.holder_first_name and self.holder_last_name:
            return f"{self.holder_first_name} {self.holder_last_name}"
        return None


class PaymentAttempt(Base):
    __tablename__ = "payment_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[str] = mapped_column(String, index=True)
    transaction_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    service_code: Mapped[str | None] = mapped_column(String, nullable=True)
    source: Mapped[str] = mapped_column(String(16))
    status: Mapped[str] = mapped_column(String(16))
    raw_payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    decision_id: Mapped[str] = mapped_column(String, index=True)
    ip: Mapped[str] = mapped_column(String)
    user_agent: Mapped[str] = mapped_column(String)
    event_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    ticket_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    validator_id: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String)
    reason_code: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
