import json

import pytest
import requests

from tickethub.core.config import settings
from tickethub.core.errors import Conflict, Unavailable, ValidationFailed
from tickethub.core.security import verify_payload_signature
from tickethub.models.booking_session import BookingSession
from tickethub.models.notification_log import NotificationLog
from tickethub.services.booking_service import start_booking
from tickethub.services.payment_gateway import PaymentInitiatorError, gateway_client

from conftest import make_customer, make_trip


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload or {}
        self.text = json.dumps(self._payload)

    def json(self):
        return self._payload


@pytest.fixture()
def gateway(monkeypatch):
    monkeypatch.setattr(settings, "PAYMENT_GATEWAY_URL", "https://pay.example/api/")
    monkeypatch.setattr(settings, "PAYMENT_GATEWAY_APP_ID", "tickethub")
    monkeypatch.setattr(settings, "PAYMENT_GATEWAY_SECRET", "s3cret")
    calls = []

    def fake_request(method, url, data, headers, timeout):
        calls.append({"method": method, "url": url, "data": data, "headers": headers})
        return FakeResponse(200, {"redirectUrl": "https://pay.example/checkout/abc"})

    monkeypatch.setattr(requests, "request", fake_request)
    return calls


def test_manual_booking_gets_instructions(db):
    trip = make_trip(db, payment_instructions="CBE account 1000123456, Tickethub PLC")
    customer = make_customer(db)
    started = start_booking(db, customer, trip.id, "bank", 2)
    assert started.session.status == "awaiting_receipt"
    assert started.quote.final == started.session.final_amount
    assert started.instructions == "CBE account 1000123456, Tickethub PLC"
    log = db.query(NotificationLog).filter_by(customer_id=customer.id).one()
    assert log.kind == "manual_payment_instructions"
    assert "1000.00 ETB" in log.body


def test_default_instructions(db):
    started = start_booking(db, make_customer(db), make_trip(db).id, "telebirr", 1)
    assert started.instructions == settings.DEFAULT_PAYMENT_INSTRUCTIONS


def test_automated_checkout(db, gateway):
    trip = make_trip(db)
    started = start_booking(db, make_customer(db), trip.id, "telebirr_auto", 1, notify_url="https://hub/cb")
    assert started.checkout_url == "https://pay.example/checkout/abc"
    assert started.session.status == "awaiting_auto_payment"
    assert db.get(BookingSession, started.session.id).checkout_url == started.checkout_url

    call = gateway[0]
    assert call["url"] == "https://pay.example/api/checkout/orders"
    body = json.loads(call["data"])
    assert body["merchantOrderId"] == started.session.id
    assert body["amount"] == "500.00"
    assert body["notifyUrl"] == "https://hub/cb"
    assert verify_payload_signature("s3cret", call["data"], call["headers"]["X-Signature"])


def test_gateway_timeout_keeps_session_open(db, gateway, monkeypatch):
    def slow(**kwargs):
        raise requests.Timeout("read timed out")

    monkeypatch.setattr(requests, "request", slow)
    customer = make_customer(db)
    with pytest.raises(Unavailable) as e:
        start_booking(db, customer, make_trip(db).id, "telebirr_auto", 1)
    assert e.value.kind == "payment_initiator_unavailable"
    assert e.value.details["maybe_completed"] is True
    s = db.get(BookingSession, e.value.details["session_id"])
    assert s.status == "awaiting_auto_payment"


def test_gateway_error_status(db, gateway, monkeypatch):
    monkeypatch.setattr(requests, "request", lambda **kw: FakeResponse(503, {"error": "maintenance"}))
    with pytest.raises(Unavailable) as e:
        start_booking(db, make_customer(db), make_trip(db).id, "telebirr_auto", 1)
    assert e.value.details["maybe_completed"] is False


def test_gateway_not_configured():
    with pytest.raises(PaymentInitiatorError):
        gateway_client()


def test_cannot_start_on_sold_out_trip(db):
    trip = make_trip(db, seats=1)
    with pytest.raises(Conflict) as e:
        start_booking(db, make_customer(db), trip.id, "bank", 2)
    assert e.value.kind == "sold_out"


def test_unknown_method(db):
    with pytest.raises(ValidationFailed):
        start_booking(db, make_customer(db), make_trip(db).id, "cheque", 1)
