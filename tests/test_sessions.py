import uuid
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import IntegrityError

from tickethub.core.errors import Conflict, NotFound, ValidationFailed
from tickethub.models.booking_session import BookingSession
from tickethub.services import pricing_service
from tickethub.services.session_service import cancel_session, check_method, open_session, plan_session_open

from conftest import make_customer, make_trip, open_manual_session, submit


def test_plan_cancels_every_open_session():
    prior = [
        SimpleNamespace(id="a", status="awaiting_receipt"),
        SimpleNamespace(id="b", status="completed"),
        SimpleNamespace(id="c", status="awaiting_auto_payment"),
    ]
    plan = plan_session_open(prior, "telebirr_auto")
    assert plan.cancel_ids == ("a", "c")
    assert plan.new_status == "awaiting_auto_payment"
    assert plan_session_open([], "bank").new_status == "awaiting_receipt"


def test_unknown_method():
    with pytest.raises(ValidationFailed) as e:
        check_method("paypal")
    assert e.value.kind == "invalid_payment_method"
    assert check_method(" Bank ") == "bank"


def test_new_session_replaces_open_one(db):
    trip = make_trip(db)
    other = make_trip(db, name="Other Trip")
    customer = make_customer(db)
    first = open_manual_session(db, customer, trip)
    second = open_manual_session(db, customer, other, quantity=2, method="telebirr")

    db.refresh(first)
    assert first.status == "cancelled"
    assert second.status == "awaiting_receipt"
    assert second.final_amount == Decimal("1000.00")
    open_count = db.query(BookingSession).filter(
        BookingSession.customer_id == customer.id,
        BookingSession.status.in_(("awaiting_receipt", "awaiting_auto_payment")),
    ).count()
    assert open_count == 1


def test_session_snapshots_voucher(db):
    from conftest import make_voucher
    trip = make_trip(db, price="200")
    make_voucher(db, code="HALF", percent="50")
    s = open_manual_session(db, make_customer(db), trip, quantity=2, voucher="HALF")
    assert s.discount_code == "HALF"
    assert s.discount_amount == Decimal("200.00")
    assert s.final_amount == Decimal("200.00")


def test_storage_allows_one_open_session_per_customer(db):
    trip = make_trip(db)
    customer = make_customer(db)
    for _ in range(2):
        db.add(BookingSession(
            id=str(uuid.uuid4()), customer_id=customer.id, trip_id=trip.id, payment_method="bank",
            quantity=1, base_amount=Decimal("500"), final_amount=Decimal("500"), status="awaiting_receipt",
        ))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_cancel_session(db):
    trip = make_trip(db)
    customer = make_customer(db)
    s = open_manual_session(db, customer, trip)
    assert cancel_session(db, s.id, customer.id).status == "cancelled"
    # idempotent
    assert cancel_session(db, s.id, customer.id).status == "cancelled"


def test_cancel_someone_elses_session(db):
    trip = make_trip(db)
    s = open_manual_session(db, make_customer(db), trip)
    with pytest.raises(NotFound):
        cancel_session(db, s.id, make_customer(db).id)


def test_cannot_cancel_completed_session(db):
    trip = make_trip(db)
    customer = make_customer(db)
    s = open_manual_session(db, customer, trip)
    submit(db, customer, s, "500")
    with pytest.raises(Conflict) as e:
        cancel_session(db, s.id, customer.id)
    assert e.value.kind == "session_closed"


def test_open_session_leaves_commit_to_caller(db):
    trip = make_trip(db)
    customer = make_customer(db)
    q = pricing_service.quote(db, trip.id, 1)
    s = open_session(db, customer, "bank", q)
    sid = s.id
    db.rollback()
    assert db.get(BookingSession, sid) is None
