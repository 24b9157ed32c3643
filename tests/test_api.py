import base64
import json

import pytest

from tickethub.core.config import settings
from tickethub.core.security import create_refresh_token, sign_payload
from tickethub.services.ticket_service import tickets_for_receipt

from conftest import PNG, auth_header, make_customer, make_trip, make_user, open_manual_session

API = "/api/v1"


def _book(client, trip, chat_id="5550001", method="bank", quantity=1, **extra):
    return client.post(f"{API}/bookings", json={
        "chatId": chat_id, "fullName": "Selam", "tripId": trip.id,
        "paymentMethod": method, "quantity": quantity, **extra,
    })


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_login_and_me(client, db):
    user = make_user(db, "finance", email="fin@example.com")
    bad = client.post(f"{API}/auth/login", json={"email": "fin@example.com", "password": "nope"})
    assert bad.status_code == 401

    tokens = client.post(f"{API}/auth/login", json={"email": " FIN@example.com", "password": "secret123"}).json()
    me = client.get(f"{API}/auth/me", headers={"Authorization": f"Bearer {tokens['access_token']}"})
    assert me.json()["role"] == "finance"

    # a refresh token is not an access token
    r = client.get(f"{API}/auth/me", headers={"Authorization": f"Bearer {create_refresh_token(user.id)}"})
    assert r.status_code == 401
    refreshed = client.post(f"{API}/auth/refresh", params={"refresh_token": tokens["refresh_token"]})
    assert refreshed.status_code == 200


def test_trips_and_quote(client, db):
    make_trip(db, name="Wenchi Crater", price="750")
    make_trip(db, name="Closed", status="cancelled")
    trips = client.get(f"{API}/trips").json()
    assert [t["name"] for t in trips] == ["Wenchi Crater"]

    q = client.post(f"{API}/quote", json={"tripId": trips[0]["id"], "quantity": 2}).json()
    assert q["final"] == "1500.00"
    assert q["currency"] == "ETB"
    bad = client.post(f"{API}/quote", json={"tripId": trips[0]["id"], "quantity": 1, "voucherCode": "NOPE"})
    assert bad.status_code == 400
    assert bad.json()["detail"]["error"] == "voucher_invalid"


def test_manual_booking_receipt_and_approval(client, db):
    trip = make_trip(db, price="500")
    booking = _book(client, trip, quantity=2).json()
    assert booking["status"] == "awaiting_receipt"
    assert booking["quote"]["final"] == "1000.00"

    short = client.post(f"{API}/receipts", json={
        "chatId": "5550001", "sessionId": booking["sessionId"], "amount": "900", "reference": "FT1001",
        "fileBase64": base64.b64encode(PNG).decode(), "fileMime": "image/png",
    })
    assert short.status_code == 400
    assert short.json()["detail"]["error"] == "insufficient_amount"

    data_url = "data:image/png;base64," + base64.b64encode(PNG).decode()
    receipt = client.post(f"{API}/receipts", json={
        "chatId": "5550001", "sessionId": booking["sessionId"], "amount": "1000",
        "reference": "FT1001", "fileBase64": data_url,
    }).json()
    assert receipt["approvalStatus"] == "pending"
    assert len(receipt["tickets"]) == 2

    dup = client.post(f"{API}/receipts", json={
        "chatId": "5550001", "tripId": trip.id, "paymentMethod": "bank", "amount": "1000", "reference": "FT1001",
        "receiptLink": "https://bank.example/r?ref=FT1001",
    })
    assert dup.status_code == 404  # the session was completed by the first receipt

    admin = make_user(db, "admin")
    assert client.post(f"{API}/admin/receipts/{receipt['receiptId']}/decision", json={"action": "approve"}).status_code == 401
    decided = client.post(f"{API}/admin/receipts/{receipt['receiptId']}/decision",
                          json={"action": "approve"}, headers=auth_header(admin)).json()
    assert decided["approvalStatus"] == "approved"
    assert {t["status"] for t in decided["tickets"]} == {"confirmed"}

    listed = client.get(f"{API}/admin/receipts", params={"status": "approved"}, headers=auth_header(admin)).json()
    assert listed["total"] == 1

    mine = client.get(f"{API}/customers/5550001/tickets").json()
    assert len(mine) == 2


def test_bad_base64_attachment(client, db):
    trip = make_trip(db)
    booking = _book(client, trip).json()
    r = client.post(f"{API}/receipts", json={
        "chatId": "5550001", "sessionId": booking["sessionId"], "amount": "500",
        "reference": "FT2002", "fileBase64": "***", "fileMime": "image/png",
    })
    assert r.status_code == 400
    assert r.json()["detail"]["error"] == "attachment_invalid"


def test_multipart_upload(client, db):
    trip = make_trip(db)
    booking = _book(client, trip, chat_id="5550002").json()
    r = client.post(
        f"{API}/receipts/upload",
        data={"chatId": "5550002", "sessionId": booking["sessionId"], "amount": "500", "reference": "FT3003"},
        files={"file": ("proof.png", PNG, "image/png")},
    )
    assert r.status_code == 200
    assert r.json()["referenceNumber"].startswith("FT3003-")


def test_cancel_booking(client, db):
    trip = make_trip(db)
    booking = _book(client, trip, chat_id="5550003").json()
    r = client.post(f"{API}/bookings/{booking['sessionId']}/cancel", json={"chatId": "5550003"})
    assert r.json()["status"] == "cancelled"
    assert client.post(f"{API}/bookings/{booking['sessionId']}/cancel", json={"chatId": "nobody"}).status_code == 404


def test_unknown_customer_tickets(client):
    assert client.get(f"{API}/customers/unknown/tickets").status_code == 404


def test_permissions(client, db):
    ops = make_user(db, "ops")
    assert client.get(f"{API}/admin/vouchers", headers=auth_header(ops)).status_code == 403
    assert client.get(f"{API}/admin/vouchers", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_voucher_and_trip_admin(client, db):
    admin = make_user(db, "admin")
    h = auth_header(admin)
    trip = client.post(f"{API}/admin/trips", json={"name": "Bale Mountains", "unitPrice": "1200", "totalSeats": 3},
                       headers=h).json()
    assert trip["availableSeats"] == 3

    v = client.post(f"{API}/admin/vouchers", json={"code": "bale20", "discountPercent": "20", "usageLimit": 5},
                    headers=h)
    assert v.json()["code"] == "BALE20"
    assert client.post(f"{API}/admin/vouchers", json={"code": "BALE20", "discountPercent": "5"},
                       headers=h).status_code == 409
    assert client.post(f"{API}/admin/vouchers", json={"code": "BAD", "discountPercent": "120"},
                       headers=h).status_code == 400

    q = client.post(f"{API}/quote", json={"tripId": trip["id"], "quantity": 1, "voucherCode": "bale20"}).json()
    assert q["final"] == "960.00"
    assert client.delete(f"{API}/admin/vouchers/{v.json()['id']}", headers=h).json() == {"ok": True}

    resized = client.patch(f"{API}/admin/trips/{trip['id']}", json={"totalSeats": 5}, headers=h).json()
    assert (resized["totalSeats"], resized["availableSeats"]) == (5, 5)


def test_payment_webhook(client, db, monkeypatch):
    monkeypatch.setattr(settings, "PAYMENT_WEBHOOK_VERIFY", True)
    monkeypatch.setattr(settings, "PAYMENT_GATEWAY_SECRET", "whsec")
    trip = make_trip(db)
    customer = make_customer(db)
    s = open_manual_session(db, customer, trip, method="telebirr_auto")

    body = json.dumps({"sessionId": s.id, "transactionId": "TX-7001", "amount": "500"}).encode()
    unsigned = client.post(f"{API}/webhooks/payment", content=body, headers={"Content-Type": "application/json"})
    assert unsigned.status_code == 401

    headers = {"Content-Type": "application/json", "X-Signature": sign_payload("whsec", body)}
    first = client.post(f"{API}/webhooks/payment", content=body, headers=headers).json()
    assert first["approvalStatus"] == "approved"
    replay = client.post(f"{API}/webhooks/payment", content=body, headers=headers).json()
    assert replay["receiptId"] == first["receiptId"]
    assert len(tickets_for_receipt(db, first["receiptId"])) == 1

    failed = json.dumps({"sessionId": s.id, "transactionId": "TX-7002", "amount": "500", "status": "failed"}).encode()
    r = client.post(f"{API}/webhooks/payment", content=failed,
                    headers={"Content-Type": "application/json", "X-Signature": sign_payload("whsec", failed)})
    assert r.json() == {"ok": True, "ignored": True}


def test_check_in_and_ticket_card(client, db):
    trip = make_trip(db, name="Lake Langano Weekend")
    ops = make_user(db, "ops")
    sale = client.post(f"{API}/admin/manual-sales", json={
        "tripId": trip.id, "reference": "CASH-77", "amountPaid": "500", "buyerName": "Dawit",
    }, headers=auth_header(ops)).json()
    ticket_id = sale["tickets"][0]["id"]

    card = client.get(f"{API}/admin/tickets/{ticket_id}/card", headers=auth_header(ops))
    assert card.headers["content-type"] == "application/pdf"
    assert card.content.startswith(b"%PDF")
    again = client.get(f"{API}/admin/tickets/{ticket_id}/card", headers=auth_header(ops))
    assert again.content == card.content

    used = client.post(f"{API}/admin/tickets/{ticket_id}/check-in", headers=auth_header(ops)).json()
    assert used["status"] == "used"


def test_gnpl_over_http(client, db):
    admin = make_user(db, "admin")
    h = auth_header(admin)
    assert client.put(f"{API}/admin/settings/gnpl", json={"enabled": True}, headers=h).json()["enabled"] is True
    trip = make_trip(db, price="800", allow_gnpl=True)

    booking = _book(client, trip, chat_id="5550009", method="gnpl").json()
    assert booking["gnplStatus"] == "pending_approval"
    account_id = booking["gnplAccountId"]

    assert client.post(f"{API}/admin/gnpl/accounts/{account_id}/decision", json={"action": "maybe"},
                       headers=h).status_code == 400
    approved = client.post(f"{API}/admin/gnpl/accounts/{account_id}/decision", json={"action": "approve"},
                           headers=h).json()
    assert approved["status"] == "active"
    assert approved["totalOutstanding"] == "800.00"

    paid = client.post(f"{API}/gnpl/accounts/{account_id}/payments",
                       json={"chatId": "5550009", "amount": "300", "reference": "GNPLPAY1"}).json()
    assert paid["paymentStatus"] == "pending_review"
    assert paid["status"] == "active"
    payments = client.get(f"{API}/admin/gnpl/accounts/{account_id}/payments", headers=h).json()
    out = client.post(f"{API}/admin/gnpl/payments/{payments[0]['id']}/decision", json={"action": "approve"},
                      headers=h).json()
    assert out["totalOutstanding"] == "500.00"

    accounts = client.get(f"{API}/customers/5550009/gnpl").json()
    assert accounts[0]["principalPaid"] == "300.00"
    assert client.post(f"{API}/admin/gnpl/run-penalties", headers=h).json()["checked"] == 0


def test_reconciliation_over_http(client, db):
    trip = make_trip(db)
    finance = make_user(db, "finance")
    ops = make_user(db, "ops")
    client.post(f"{API}/admin/manual-sales", json={
        "tripId": trip.id, "paymentMethod": "bank", "reference": "FT9001", "amountPaid": "500",
    }, headers=auth_header(ops))

    r = client.post(f"{API}/admin/reconciliation", json={"csvText": "reference,amount\nFT9001,500\nFT9999,20"},
                    headers=auth_header(finance)).json()
    assert r["summary"]["lines"] == {"entries": 2, "matched": 1, "missing": 1, "mismatched": 0}
    assert r["summary"]["receipts"]["approvedAmount"] == "500.00"

    empty = client.post(f"{API}/admin/reconciliation", json={"csvText": "reference,amount\n"},
                        headers=auth_header(finance))
    assert empty.status_code == 400
    assert empty.json()["detail"]["error"] == "no_statement_entries"

    reversed_range = client.post(f"{API}/admin/reconciliation", json={"dateFrom": "2026-02-01", "dateTo": "2026-01-01"},
                                 headers=auth_header(finance))
    assert reversed_range.status_code == 400

    export = client.get(f"{API}/admin/reconciliation/export", headers=auth_header(finance))
    assert export.headers["content-type"].startswith("text/csv")
    assert "FT9001" in export.text
    assert client.get(f"{API}/admin/reconciliation/export", headers=auth_header(ops)).status_code == 403


def test_cash_over_http(client, db):
    trip = make_trip(db)
    ops = make_user(db, "ops")
    boss = make_user(db, "superadmin")
    client.post(f"{API}/admin/manual-sales", json={"tripId": trip.id, "reference": "CASH-1", "amountPaid": "500"},
                headers=auth_header(ops))
    assert client.get(f"{API}/admin/cash/summary", headers=auth_header(ops)).json()["outstanding"] == "500.00"

    rem = client.post(f"{API}/admin/cash/remittances", json={"amount": "500"}, headers=auth_header(ops)).json()
    assert rem["status"] == "pending"
    listing = client.get(f"{API}/admin/cash/remittances", headers=auth_header(ops)).json()
    assert listing["canApprove"] is False
    assert len(listing["items"]) == 1

    assert client.post(f"{API}/admin/cash/remittances/{rem['id']}/decision", json={"action": "approve"},
                       headers=auth_header(ops)).status_code == 403
    ok = client.post(f"{API}/admin/cash/remittances/{rem['id']}/decision", json={"action": "approve"},
                     headers=auth_header(boss)).json()
    assert ok["status"] == "approved"
