import logging
import random
import re
import string
import time
import uuid
from decimal import Decimal

from sqlalchemy import update, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tickethub.core.errors import Conflict, InvariantViolation
from tickethub.core.money import money
from tickethub.models.receipt import Receipt
from tickethub.models.ticket import Ticket
from tickethub.models.trip import Trip

logger = logging.getLogger(__name__)

# Attempts per ticket before giving up on finding a free identifier
MAX_ID_ATTEMPTS = 8

_BASE36 = string.digits + string.ascii_uppercase


def _base36(n: int) -> str:
    out = ""
    while n:
        n, r = divmod(n, 36)
        out = _BASE36[r] + out
    return out or "0"


def trip_initials(name: str) -> str:
    words = re.findall(r"[A-Za-z0-9]+", name or "")
    initials = "".join(w[0] for w in words).upper()
    if len(initials) < 3:
        initials = (initials + "".join(words).upper() + "XXX")[:3]
    return initials[:3]


def make_ticket_number(receipt_id: str, index: int) -> str:
    prefix = receipt_id.replace("-", "")[:8].upper()
    return f"{prefix}-{random.randint(0, 9999):04d}-{index + 1}-{random.randint(0, 99):02d}"


def make_serial_number(trip: Trip, sequence: int) -> str:
    """Human-legible serial: trip initials, trip id fragment, time, sequence, noise."""
    trip_part = trip.id.replace("-", "")[:4].upper()
    stamp = _base36(int(time.time() * 1000))[-6:]
    noise = "".join(random.choices(_BASE36, k=3))
    return f"{trip_initials(trip.name)}-{trip_part}-{stamp}{(sequence + 1) % 100:02d}{noise}"


def allocate_seats(db: Session, trip_id: str, quantity: int) -> None:
    """Compare-and-decrement on the trip's seat counter.

    Runs inside the admission transaction. Zero matched rows means another
    admission took the seats since they were last read.
    """
    if quantity < 1:
        raise InvariantViolation("invalid_allocation", "seat allocation needs a positive quantity")
    res = db.execute(
        update(Trip)
        .where(Trip.id == trip_id, Trip.available_seats >= quantity)
        .values(available_seats=Trip.available_seats - quantity)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise Conflict("sold_out", "not enough seats left on this trip")
    _expire_trip(db, trip_id)


def release_seats(db: Session, trip_id: str, quantity: int) -> None:
    if quantity < 1:
        return
    res = db.execute(
        update(Trip)
        .where(Trip.id == trip_id, Trip.available_seats + quantity <= Trip.total_seats)
        .values(available_seats=Trip.available_seats + quantity)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise InvariantViolation("seat_overflow", "releasing seats would exceed trip capacity")
    _expire_trip(db, trip_id)


def _expire_trip(db: Session, trip_id: str) -> None:
    trip = db.get(Trip, trip_id)
    if trip is not None:
        db.expire(trip, ["available_seats"])


def issue_tickets(db: Session, receipt: Receipt, trip: Trip, status: str = "pending") -> list[Ticket]:
    """Create exactly `receipt.quantity` tickets for a flushed receipt.

    Each insert runs in a SAVEPOINT so an identifier collision only retries that
    ticket with fresh random parts; uniqueness itself is enforced by the unique
    indexes on ticket_number and serial_number.
    """
    quantity = int(receipt.quantity)
    unit_price = money(Decimal(receipt.final_amount) / quantity) if quantity else Decimal("0")
    # the last ticket absorbs the rounding so prices add up to the receipt total
    last_price = money(receipt.final_amount) - unit_price * (quantity - 1) if quantity else unit_price
    issued: list[Ticket] = []
    for idx in range(quantity):
        for attempt in range(MAX_ID_ATTEMPTS):
            t = Ticket(
                id=str(uuid.uuid4()),
                ticket_number=make_ticket_number(receipt.id, idx),
                serial_number=make_serial_number(trip, idx),
                receipt_id=receipt.id,
                trip_id=trip.id,
                customer_id=receipt.customer_id,
                purchase_price=last_price if idx == quantity - 1 else unit_price,
                status=status,
            )
            try:
                with db.begin_nested():
                    db.add(t)
            except IntegrityError:
                logger.warning("ticket identifier collision for receipt %s (attempt %d)", receipt.id, attempt + 1)
                continue
            issued.append(t)
            break
        else:
            raise InvariantViolation("ticket_number_exhausted", "could not allocate a unique ticket number")

    if len(issued) != quantity:
        raise InvariantViolation("ticket_count_mismatch", "issued ticket count does not match quantity")
    return issued


def tickets_for_receipt(db: Session, receipt_id: str) -> list[Ticket]:
    return list(
        db.execute(select(Ticket).where(Ticket.receipt_id == receipt_id).order_by(Ticket.ticket_number)).scalars()
    )


def set_ticket_status(db: Session, receipt_id: str, from_statuses: tuple[str, ...], to_status: str) -> int:
    res = db.execute(
        update(Ticket)
        .where(Ticket.receipt_id == receipt_id, Ticket.status.in_(from_statuses))
        .values(status=to_status)
        .execution_options(synchronize_session="fetch")
    )
    return res.rowcount


def customer_tickets(db: Session, customer_id: str) -> list[Ticket]:
    return list(
        db.execute(
            select(Ticket).where(Ticket.customer_id == customer_id).order_by(Ticket.issued_at.desc())
        ).scalars()
    )
