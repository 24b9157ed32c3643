from datetime import timedelta
from decimal import Decimal

import pytest

from tickethub.core.clock import utcnow
from tickethub.core.errors import Conflict, NotFound, ValidationFailed
from tickethub.models.discount_voucher import DiscountVoucher
from tickethub.services import pricing_service
from tickethub.services.pricing_service import calculate_discount, check_quantity, consume_voucher, quote

from conftest import make_trip, make_voucher


def test_discount_rounds_half_up_to_cents():
    base, discount, final = calculate_discount(Decimal("333.33"), Decimal("15"))
    assert base == Decimal("333.33")
    assert discount == Decimal("50.00")
    assert final == Decimal("283.33")


def test_discount_never_exceeds_base():
    _, discount, final = calculate_discount(Decimal("100"), Decimal("150"))
    assert discount == Decimal("100.00")
    assert final == Decimal("0.00")


def test_negative_percent_is_ignored():
    assert calculate_discount(Decimal("100"), Decimal("-5"))[2] == Decimal("100.00")


@pytest.mark.parametrize("qty", [0, -1, 1.5, "2", True, None])
def test_quantity_must_be_positive_int(qty):
    with pytest.raises(ValidationFailed) as e:
        check_quantity(qty)
    assert e.value.kind == "invalid_quantity"


def test_quote_without_voucher(db):
    trip = make_trip(db, price="450")
    q = quote(db, trip.id, 3)
    assert q.base == Decimal("1350.00")
    assert q.discount == Decimal("0.00")
    assert q.final == Decimal("1350.00")
    assert q.voucher_id is None


def test_quote_with_voucher_normalizes_code(db):
    trip = make_trip(db, price="500")
    make_voucher(db, code="SAVE10", percent="10")
    q = quote(db, trip.id, 2, " save10 ")
    assert q.voucher_code == "SAVE10"
    assert q.discount == Decimal("100.00")
    assert q.final == Decimal("900.00")
    assert q.as_dict()["final"] == "900.00"


def test_blank_voucher_code_means_no_discount(db):
    trip = make_trip(db)
    assert quote(db, trip.id, 1, "   ").voucher_id is None


def test_unknown_trip(db):
    with pytest.raises(NotFound):
        quote(db, "missing", 1)


def test_unknown_voucher_is_invalid(db):
    trip = make_trip(db)
    with pytest.raises(ValidationFailed) as e:
        quote(db, trip.id, 1, "NOPE")
    assert e.value.kind == "voucher_invalid"


def test_voucher_scoped_to_another_trip(db):
    trip = make_trip(db)
    other = make_trip(db, name="Other")
    make_voucher(db, code="ONLYOTHER", trip_id=other.id)
    with pytest.raises(ValidationFailed) as e:
        quote(db, trip.id, 1, "ONLYOTHER")
    assert e.value.kind == "voucher_invalid"


def test_inactive_voucher(db):
    trip = make_trip(db)
    make_voucher(db, code="OFF", is_active=False)
    with pytest.raises(ValidationFailed) as e:
        quote(db, trip.id, 1, "OFF")
    assert e.value.kind == "voucher_invalid"


def test_expired_voucher(db):
    trip = make_trip(db)
    make_voucher(db, code="OLD", expires_at=utcnow() - timedelta(days=1))
    with pytest.raises(ValidationFailed) as e:
        quote(db, trip.id, 1, "OLD")
    assert e.value.kind == "voucher_expired"


def test_voucher_not_yet_valid(db):
    trip = make_trip(db)
    make_voucher(db, code="SOON", valid_from=utcnow() + timedelta(days=2))
    with pytest.raises(ValidationFailed) as e:
        quote(db, trip.id, 1, "SOON")
    assert e.value.kind == "voucher_invalid"


def test_exhausted_voucher_is_a_conflict(db):
    trip = make_trip(db)
    make_voucher(db, code="GONE", usage_limit=2, usage_count=2)
    with pytest.raises(Conflict) as e:
        quote(db, trip.id, 1, "GONE")
    assert e.value.kind == "voucher_exhausted"


def test_consume_voucher_stops_at_limit(db):
    v = make_voucher(db, code="ONCE", usage_limit=1)
    consume_voucher(db, v.id)
    db.commit()
    assert db.get(DiscountVoucher, v.id).usage_count == 1
    with pytest.raises(Conflict):
        consume_voucher(db, v.id)
    db.rollback()
    assert db.get(DiscountVoucher, v.id).usage_count == 1


def test_consume_unlimited_voucher(db):
    v = make_voucher(db, code="MANY")
    for _ in range(5):
        consume_voucher(db, v.id)
    db.commit()
    assert db.get(DiscountVoucher, v.id).usage_count == 5


def test_normalize_voucher_code_drops_noise():
    assert pricing_service.normalize_voucher_code(" sa ve-10!") == "SAVE-10"
