import pytest
import requests

from tickethub.core.config import settings
from tickethub.models.notification_log import NotificationLog
from tickethub.services import notification_service
from tickethub.services.notification_service import notify, process_pending_notifications, render_message

from conftest import make_customer


class _Resp:
    def __init__(self, status_code=200, text="{}"):
        self.status_code = status_code
        self.text = text


def test_render_known_and_unknown_kinds():
    assert render_message("receipt_rejected", {"reference": "FT1", "reason": "blurry"}) == \
        "Your payment FT1 was rejected. Reason: blurry."
    assert render_message("gnpl_reminder", {}) == "Reminder:   is due on ."
    assert render_message("custom", {"b": 2, "a": 1}) == "custom: a=1, b=2"


def test_unconfigured_channel_is_skipped(db):
    customer = make_customer(db)
    log_id = notify(db, customer.id, "gnpl_paid")
    log = db.get(NotificationLog, log_id)
    assert log.status == "skipped"
    assert log.attempts == 1


def test_notify_without_customer():
    assert notify(None, None, "gnpl_paid") is None


def test_delivery(db, monkeypatch):
    monkeypatch.setattr(settings, "TELEGRAM_BOT_TOKEN", "123:abc")
    sent = []
    monkeypatch.setattr(requests, "post", lambda url, json, timeout: sent.append((url, json)) or _Resp())
    customer = make_customer(db, chat_id="4242")
    log = db.get(NotificationLog, notify(db, customer.id, "gnpl_paid"))
    assert log.status == "sent"
    assert log.sent_at is not None
    assert sent[0][0].endswith("/bot123:abc/sendMessage")
    assert sent[0][1]["chat_id"] == "4242"


def test_failure_never_raises_and_is_retried(db, monkeypatch):
    monkeypatch.setattr(settings, "TELEGRAM_BOT_TOKEN", "123:abc")

    def down(*args, **kwargs):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(requests, "post", down)
    customer = make_customer(db)
    log_id = notify(db, customer.id, "receipt_submitted", {"reference": "FT1", "quantity": 1})
    assert db.get(NotificationLog, log_id).status == "failed"

    monkeypatch.setattr(requests, "post", lambda *a, **k: _Resp())
    assert process_pending_notifications(db) == {"processed": 1, "sent": 1, "failed": 0}
    assert db.get(NotificationLog, log_id).attempts == 2


def test_retries_stop_after_max_attempts(db, monkeypatch):
    monkeypatch.setattr(settings, "TELEGRAM_BOT_TOKEN", "123:abc")
    monkeypatch.setattr(requests, "post", lambda *a, **k: _Resp(500, "boom"))
    log_id = notify(db, make_customer(db).id, "gnpl_paid")
    for _ in range(5):
        process_pending_notifications(db)
    log = db.get(NotificationLog, log_id)
    assert log.status == "failed"
    assert log.attempts == notification_service.MAX_ATTEMPTS
