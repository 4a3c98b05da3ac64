"""Event inventory counters.

Counters are only ever changed with ``SET col = col + :n`` statements so the
database applies concurrent increments without lost updates. Callers own the
transaction: each helper runs inside the caller's unit of work, next to the
ticket transition that justifies it.
"""

from decimal import Decimal

from sqlalchemy import case, update
from sqlalchemy.orm import Session

from .models import Event


def record_sale(db: Session, event_id: str, quantity: int, amount: Decimal) -> None:
    db.execute(
        update(Event)
        .where(Event.id == event_id)
        .values(
            tickets_sold=Event.tickets_sold + quantity,
            revenue=Event.revenue + amount,
        )
        .execution_options(synchronize_session=False)
    )


def release_sale(db: Session, event_id: str, quantity: int, amount: Decimal) -> None:
    # clamp at zero instead of trusting every caller
    db.execute(
        update(Event)
        .where(Event.id == event_id)
        .values(
            tickets_sold=case(
                (Event.tickets_sold >= quantity, Event.tickets_sold - quantity),
                else_=0,
            ),
            revenue=case(
                (Event.revenue >= amount, Event.revenue - amount),
                else_=0,
            ),
        )
        .execution_options(synchronize_session=False)
    )


def record_entry(db: Session, event_id: str) -> None:
    db.execute(
        update(Event)
        .where(Event.id == event_id)
        .values(tickets_used=Event.tickets_used + 1)
        .execution_options(synchronize_session=False)
    )
