import json
import os
from datetime import date, timedelta
from decimal import Decimal

import pytest

from tickethub.core.clock import today
from tickethub.core.errors import Conflict, NotFound, ValidationFailed
from tickethub.models.booking_session import BookingSession
from tickethub.models.discount_voucher import DiscountVoucher
from tickethub.models.receipt import Receipt
from tickethub.models.ticket import Ticket
from tickethub.models.trip import Trip
from tickethub.services import receipt_service
from tickethub.services.receipt_service import (
    base_reference, confirm_auto_payment, make_reference_number, reference_key, submit_receipt,
)

from conftest import make_customer, make_trip, make_voucher, open_manual_session, submit


def _seats(db, trip_id):
    return db.get(Trip, trip_id).available_seats


def test_reference_helpers():
    stored = make_reference_number("FT24123ABC")
    assert stored.startswith("FT24123ABC-") and len(stored) == len("FT24123ABC") + 7
    assert base_reference(stored) == "FT24123ABC"
    assert reference_key("ft24123abc-123456") == "FT24123ABC"
    assert base_reference("ABC-12345") == "ABC-12345"


def test_submit_admits_receipt_and_takes_seats(db):
    trip = make_trip(db, price="500", seats=5)
    make_voucher(db, code="SAVE10", percent="10", usage_limit=3)
    customer = make_customer(db)
    s = open_manual_session(db, customer, trip, quantity=2, voucher="SAVE10")

    r = submit(db, customer, s, "900", receipt_date=today())

    assert r.approval_status == "pending"
    assert r.final_amount == Decimal("900.00")
    assert r.reference_number.startswith("FT24123ABC-")
    assert r.attachment_url.startswith("local://receipts/")
    assert r.receipt_hash
    tickets = db.query(Ticket).filter(Ticket.receipt_id == r.id).all()
    assert len(tickets) == 2
    assert {t.status for t in tickets} == {"pending"}
    assert {t.purchase_price for t in tickets} == {Decimal("450.00")}
    assert _seats(db, trip.id) == 3
    assert db.get(BookingSession, s.id).status == "completed"
    assert db.query(DiscountVoucher).filter_by(code="SAVE10").one().usage_count == 1


def test_submit_by_trip_and_method(db):
    trip = make_trip(db)
    customer = make_customer(db)
    open_manual_session(db, customer, trip, method="telebirr")
    r = submit_receipt(db, customer, amount="500", reference="TB998877",
                       link="https://transactioninfo.ethiotelecom.et/receipt/TB998877",
                       trip_id=trip.id, method="telebirr")
    assert r.receipt_provider == "telebirr"
    assert "provider:telebirr" in json.loads(r.validation_flags)


def test_session_required(db):
    with pytest.raises(ValidationFailed) as e:
        submit_receipt(db, make_customer(db), amount="500", reference="X123")
    assert e.value.kind == "session_required"


def test_no_open_session_for_trip(db):
    trip = make_trip(db)
    with pytest.raises(NotFound):
        submit_receipt(db, make_customer(db), amount="500", reference="X123", trip_id=trip.id, method="bank")


def test_reference_required(db):
    trip = make_trip(db)
    customer = make_customer(db)
    s = open_manual_session(db, customer, trip)
    with pytest.raises(ValidationFailed) as e:
        submit(db, customer, s, "500", reference="  ")
    assert e.value.kind == "reference_required"


def test_attachment_or_link_required(db):
    trip = make_trip(db)
    customer = make_customer(db)
    s = open_manual_session(db, customer, trip)
    with pytest.raises(ValidationFailed) as e:
        submit(db, customer, s, "500", attachment=None)
    assert e.value.kind == "attachment_required"


def test_strict_mode_blocks_mismatch(db):
    from tickethub.services.settings_service import set_receipt_policy
    set_receipt_policy(db, strict=True)
    trip = make_trip(db)
    customer = make_customer(db)
    s = open_manual_session(db, customer, trip)
    with pytest.raises(ValidationFailed) as e:
        submit(db, customer, s, "500", reference="TB111111",
               link="https://transactioninfo.ethiotelecom.et/receipt/TB222222")
    assert e.value.kind == "validation_mismatch"
    assert db.query(Receipt).count() == 0


def test_insufficient_amount(db):
    trip = make_trip(db, price="500")
    customer = make_customer(db)
    s = open_manual_session(db, customer, trip, quantity=2)
    with pytest.raises(ValidationFailed) as e:
        submit(db, customer, s, "999.99")
    assert e.value.kind == "insufficient_amount"
    assert e.value.details["expected"] == "1000.00"
    assert _seats(db, trip.id) == 10


@pytest.mark.parametrize("amount", ["0", "-5", "abc"])
def test_invalid_amount(db, amount):
    trip = make_trip(db)
    customer = make_customer(db)
    s = open_manual_session(db, customer, trip)
    with pytest.raises(ValidationFailed) as e:
        submit(db, customer, s, amount)
    assert e.value.kind == "invalid_amount"


def test_overpayment_is_accepted(db):
    trip = make_trip(db, price="500")
    customer = make_customer(db)
    s = open_manual_session(db, customer, trip)
    assert submit(db, customer, s, "520").amount_paid == Decimal("520.00")


def test_receipt_date_after_departure(db):
    trip = make_trip(db, departure_date=date.today() + timedelta(days=3))
    customer = make_customer(db)
    s = open_manual_session(db, customer, trip)
    with pytest.raises(ValidationFailed) as e:
        submit(db, customer, s, "500", receipt_date=(date.today() + timedelta(days=4)).isoformat())
    assert e.value.kind == "receipt_date_out_of_range"


def test_trip_not_bookable(db):
    trip = make_trip(db)
    customer = make_customer(db)
    s = open_manual_session(db, customer, trip)
    db.get(Trip, trip.id).status = "cancelled"
    db.commit()
    with pytest.raises(Conflict) as e:
        submit(db, customer, s, "500")
    assert e.value.kind == "trip_not_bookable"


def test_sold_out_before_submission(db):
    trip = make_trip(db, seats=1)
    a, b = make_customer(db), make_customer(db)
    sa = open_manual_session(db, a, trip)
    sb = open_manual_session(db, b, trip)
    submit(db, a, sa, "500", reference="REF-A1")
    with pytest.raises(Conflict) as e:
        submit(db, b, sb, "500", reference="REF-B1")
    assert e.value.kind == "sold_out"


def test_sold_out_race_rolls_back_everything(db, monkeypatch):
    """The seat counter decides when the early availability check was passed by both."""
    trip = make_trip(db, seats=1)
    make_voucher(db, code="RACE", percent="10")
    a, b = make_customer(db), make_customer(db)
    sa = open_manual_session(db, a, trip, voucher="RACE")
    sb = open_manual_session(db, b, trip, voucher="RACE")
    submit(db, a, sa, "450", reference="REF-A2")

    monkeypatch.setattr(receipt_service, "check_trip_bookable", lambda trip, quantity: None)
    with pytest.raises(Conflict) as e:
        submit(db, b, sb, "450", reference="REF-B2")
    assert e.value.kind == "sold_out"

    assert _seats(db, trip.id) == 0
    assert db.query(Receipt).filter(Receipt.customer_id == b.id).count() == 0
    assert db.query(Ticket).filter(Ticket.trip_id == trip.id).count() == 1
    assert db.get(BookingSession, sb.id).status == "awaiting_receipt"
    assert db.query(DiscountVoucher).filter_by(code="RACE").one().usage_count == 1


def test_refused_admission_removes_uploaded_proof(db, monkeypatch, tmp_path):
    trip = make_trip(db, seats=1)
    a, b = make_customer(db), make_customer(db)
    sa = open_manual_session(db, a, trip)
    sb = open_manual_session(db, b, trip)
    kept = submit(db, a, sa, "500", reference="REF-A3")

    monkeypatch.setattr(receipt_service, "check_trip_bookable", lambda trip, quantity: None)
    with pytest.raises(Conflict) as e:
        submit(db, b, sb, "500", reference="REF-B3")
    assert e.value.kind == "sold_out"

    stored = os.listdir(tmp_path / "files" / "receipts")
    assert stored == [kept.attachment_url.rsplit("/", 1)[-1]]


def test_duplicate_reference(db):
    trip = make_trip(db)
    a, b = make_customer(db), make_customer(db)
    submit(db, a, open_manual_session(db, a, trip), "500", reference="FT555")
    sb = open_manual_session(db, b, trip)
    with pytest.raises(Conflict) as e:
        submit(db, b, sb, "500", reference="ft555")
    assert e.value.kind == "duplicate_reference"


def test_duplicate_reference_with_storage_suffix(db):
    trip = make_trip(db)
    a, b = make_customer(db), make_customer(db)
    first = submit(db, a, open_manual_session(db, a, trip), "500", reference="FT777")
    sb = open_manual_session(db, b, trip)
    with pytest.raises(Conflict):
        submit(db, b, sb, "500", reference=first.reference_number)


def test_duplicate_reference_matches_both_ways(db):
    trip = make_trip(db)
    a, b, c = make_customer(db), make_customer(db), make_customer(db)
    submit(db, a, open_manual_session(db, a, trip), "500", reference="FT9100")
    with pytest.raises(Conflict) as e:
        submit(db, b, open_manual_session(db, b, trip), "500", reference="FT9100-B")
    assert e.value.kind == "duplicate_reference"

    submit(db, b, open_manual_session(db, b, trip), "500", reference="FT9200-B")
    with pytest.raises(Conflict) as e:
        submit(db, c, open_manual_session(db, c, trip), "500", reference="FT9200")
    assert e.value.kind == "duplicate_reference"


def test_duplicate_reference_race_caught_by_unique_key(db, monkeypatch):
    trip = make_trip(db)
    a, b = make_customer(db), make_customer(db)
    submit(db, a, open_manual_session(db, a, trip), "500", reference="FT888")
    sb = open_manual_session(db, b, trip)

    monkeypatch.setattr(receipt_service, "find_duplicate", lambda db, reference: None)
    with pytest.raises(Conflict) as e:
        submit(db, b, sb, "500", reference="FT888")
    assert e.value.kind == "duplicate_reference"
    assert _seats(db, trip.id) == 9
    assert db.get(BookingSession, sb.id).status == "awaiting_receipt"


def test_voucher_exhausted_before_receipt(db):
    trip = make_trip(db)
    v = make_voucher(db, code="LAST", usage_limit=1)
    customer = make_customer(db)
    s = open_manual_session(db, customer, trip, voucher="LAST")
    db.get(DiscountVoucher, v.id).usage_count = 1
    db.commit()
    with pytest.raises(Conflict) as e:
        submit(db, customer, s, "450")
    assert e.value.kind == "voucher_exhausted"


def test_submit_to_closed_session(db):
    trip = make_trip(db)
    customer = make_customer(db)
    s = open_manual_session(db, customer, trip)
    submit(db, customer, s, "500", reference="FIRST1")
    with pytest.raises(Conflict) as e:
        submit(db, customer, s, "500", reference="SECOND2")
    assert e.value.kind == "session_closed"


def test_auto_session_does_not_take_receipts(db):
    trip = make_trip(db)
    customer = make_customer(db)
    s = open_manual_session(db, customer, trip, method="telebirr_auto")
    with pytest.raises(ValidationFailed) as e:
        submit(db, customer, s, "500")
    assert e.value.kind == "invalid_payment_method"


def test_auto_confirmation_lands_approved(db):
    trip = make_trip(db, seats=4)
    customer = make_customer(db)
    s = open_manual_session(db, customer, trip, quantity=2, method="telebirr_auto")

    r = confirm_auto_payment(db, s.id, "TX-900100", "1000")
    assert r.approval_status == "approved"
    assert r.decided_by == "gateway"
    tickets = db.query(Ticket).filter(Ticket.receipt_id == r.id).all()
    assert [t.status for t in tickets] == ["confirmed", "confirmed"]
    assert _seats(db, trip.id) == 2
    assert db.get(BookingSession, s.id).status == "completed"


def test_auto_confirmation_replay_is_idempotent(db):
    trip = make_trip(db)
    customer = make_customer(db)
    s = open_manual_session(db, customer, trip, method="telebirr_auto")
    first = confirm_auto_payment(db, s.id, "TX-1", "500")
    again = confirm_auto_payment(db, s.id, "TX-1", "500")
    assert again.id == first.id
    assert db.query(Ticket).filter(Ticket.receipt_id == first.id).count() == 1
    assert _seats(db, trip.id) == 9


def test_auto_confirmation_transaction_reused_elsewhere(db):
    trip = make_trip(db)
    a, b = make_customer(db), make_customer(db)
    confirm_auto_payment(db, open_manual_session(db, a, trip, method="telebirr_auto").id, "TX-2", "500")
    sb = open_manual_session(db, b, trip, method="telebirr_auto")
    with pytest.raises(Conflict) as e:
        confirm_auto_payment(db, sb.id, "TX-2", "500")
    assert e.value.kind == "duplicate_reference"


def test_auto_confirmation_honours_exhausted_voucher(db):
    trip = make_trip(db, price="500")
    v = make_voucher(db, code="FLASH", percent="20", usage_limit=1)
    customer = make_customer(db)
    s = open_manual_session(db, customer, trip, method="telebirr_auto", voucher="FLASH")
    db.get(DiscountVoucher, v.id).usage_count = 1
    db.commit()

    r = confirm_auto_payment(db, s.id, "TX-3", "400")
    assert r.final_amount == Decimal("400.00")
    assert "voucher_exhausted_at_confirmation" in json.loads(r.validation_flags)
    assert db.get(DiscountVoucher, v.id).usage_count == 1


def test_auto_confirmation_underpaid(db):
    trip = make_trip(db)
    customer = make_customer(db)
    s = open_manual_session(db, customer, trip, method="telebirr_auto")
    with pytest.raises(ValidationFailed) as e:
        confirm_auto_payment(db, s.id, "TX-4", "100")
    assert e.value.kind == "insufficient_amount"
    assert db.query(Receipt).count() == 0


def test_auto_confirmation_for_manual_session(db):
    trip = make_trip(db)
    customer = make_customer(db)
    s = open_manual_session(db, customer, trip)
    with pytest.raises(ValidationFailed) as e:
        confirm_auto_payment(db, s.id, "TX-5", "500")
    assert e.value.kind == "invalid_payment_method"


def test_auto_confirmation_for_cancelled_trip_is_refused(db):
    trip = make_trip(db, seats=4)
    customer = make_customer(db)
    s = open_manual_session(db, customer, trip, method="telebirr_auto")
    db.get(Trip, trip.id).status = "cancelled"
    db.commit()

    with pytest.raises(Conflict) as e:
        confirm_auto_payment(db, s.id, "TX-CANCEL1", "500")
    assert e.value.kind == "trip_not_bookable"
    assert db.query(Receipt).filter(Receipt.session_id == s.id).count() == 0
    assert _seats(db, trip.id) == 4
    assert db.get(BookingSession, s.id).status == "awaiting_auto_payment"
