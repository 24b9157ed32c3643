import re
import uuid
from decimal import Decimal

import pytest

from tickethub.core.errors import Conflict, InvariantViolation
from tickethub.models.receipt import Receipt
from tickethub.models.ticket import Ticket
from tickethub.models.trip import Trip
from tickethub.services import ticket_service
from tickethub.services.ticket_service import (
    allocate_seats, issue_tickets, make_serial_number, make_ticket_number, release_seats, trip_initials,
)

from conftest import make_customer, make_trip, open_manual_session, submit


def _receipt(db, trip, quantity=2, final="1000"):
    r = Receipt(
        id=str(uuid.uuid4()),
        reference_number=f"MAN{uuid.uuid4().hex[:8]}",
        reference_key=f"MAN{uuid.uuid4().hex[:8]}".upper(),
        trip_id=trip.id,
        payment_method="cash",
        quantity=quantity,
        base_amount=Decimal(final),
        final_amount=Decimal(final),
        amount_paid=Decimal(final),
        approval_status="approved",
    )
    db.add(r)
    db.flush()
    return r


@pytest.mark.parametrize("name,expected", [
    ("Lake Langano Weekend", "LLW"),
    ("Simien Mountains Trek Adventure", "SMT"),
    ("Entoto", "EEN"),
    ("", "XXX"),
])
def test_trip_initials(name, expected):
    assert trip_initials(name) == expected


def test_identifier_shapes(db):
    trip = make_trip(db, name="Lake Langano Weekend")
    rid = str(uuid.uuid4())
    number = make_ticket_number(rid, 0)
    assert re.fullmatch(r"[0-9A-F]{8}-\d{4}-1-\d{2}", number)
    assert number.startswith(rid.replace("-", "")[:8].upper())
    serial = make_serial_number(trip, 4)
    assert serial.startswith(f"LLW-{trip.id.replace('-', '')[:4].upper()}-")


def test_allocate_and_release(db):
    trip = make_trip(db, seats=3)
    allocate_seats(db, trip.id, 2)
    assert db.get(Trip, trip.id).available_seats == 1
    with pytest.raises(Conflict) as e:
        allocate_seats(db, trip.id, 2)
    assert e.value.kind == "sold_out"
    release_seats(db, trip.id, 2)
    assert db.get(Trip, trip.id).available_seats == 3
    with pytest.raises(InvariantViolation) as e:
        release_seats(db, trip.id, 1)
    assert e.value.kind == "seat_overflow"


def test_allocate_needs_positive_quantity(db):
    trip = make_trip(db)
    with pytest.raises(InvariantViolation):
        allocate_seats(db, trip.id, 0)


def test_issue_exact_quantity_with_split_price(db):
    trip = make_trip(db)
    r = _receipt(db, trip, quantity=3, final="1000")
    tickets = issue_tickets(db, r, trip, status="confirmed")
    db.commit()
    assert len(tickets) == 3
    assert len({t.ticket_number for t in tickets}) == 3
    assert len({t.serial_number for t in tickets}) == 3
    assert [t.purchase_price for t in tickets] == [Decimal("333.33"), Decimal("333.33"), Decimal("333.34")]
    assert sum(t.purchase_price for t in tickets) == Decimal("1000.00")


def test_identifier_collision_retries_that_ticket(db, monkeypatch):
    trip = make_trip(db)
    r = _receipt(db, trip, quantity=2)
    numbers = iter(["DUPLICATE-1", "DUPLICATE-1", "UNIQUE-2"])
    monkeypatch.setattr(ticket_service, "make_ticket_number", lambda receipt_id, index: next(numbers))

    tickets = issue_tickets(db, r, trip)
    db.commit()
    assert [t.ticket_number for t in tickets] == ["DUPLICATE-1", "UNIQUE-2"]
    assert db.query(Ticket).filter(Ticket.receipt_id == r.id).count() == 2


def test_identifier_exhaustion(db, monkeypatch):
    trip = make_trip(db)
    r = _receipt(db, trip, quantity=2)
    monkeypatch.setattr(ticket_service, "make_ticket_number", lambda receipt_id, index: "ALWAYS-SAME")
    with pytest.raises(InvariantViolation) as e:
        issue_tickets(db, r, trip)
    assert e.value.kind == "ticket_number_exhausted"
    db.rollback()


def test_customer_tickets(db):
    trip = make_trip(db)
    customer = make_customer(db)
    submit(db, customer, open_manual_session(db, customer, trip, quantity=2), "1000")
    tickets = ticket_service.customer_tickets(db, customer.id)
    assert len(tickets) == 2
    assert all(t.customer_id == customer.id for t in tickets)
