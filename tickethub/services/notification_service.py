import logging
import uuid
from datetime import datetime, timezone

import requests
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tickethub.core.config import settings
from tickethub.models.customer import Customer
from tickethub.models.notification_log import NotificationLog

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3

_TEMPLATES = {
    "receipt_submitted": "We received your payment proof {reference} for {quantity} ticket(s). It is pending review.",
    "receipt_approved": "Your payment {reference} was approved. Ticket numbers: {tickets}.",
    "receipt_rejected": "Your payment {reference} was rejected. Reason: {reason}.",
    "receipt_rolled_back": "The approval of payment {reference} was reverted and is under review again.",
    "auto_payment_confirmed": "Payment {reference} confirmed. Ticket numbers: {tickets}.",
    "manual_payment_instructions": "Pay {amount} {currency} for {quantity} ticket(s). {instructions}",
    "gnpl_submitted": "Your pay-later request for {quantity} ticket(s) is awaiting approval. Due date: {due_date}.",
    "gnpl_approved": "Your pay-later request was approved. Pay {amount} {currency} by {due_date}.",
    "gnpl_rejected": "Your pay-later request was rejected. Reason: {reason}.",
    "gnpl_payment_approved": "Payment {reference} applied. Outstanding balance: {outstanding} {currency}.",
    "gnpl_payment_rejected": "Payment {reference} was rejected. Reason: {reason}.",
    "gnpl_paid": "Your pay-later balance is fully settled. Thank you!",
    "gnpl_reminder": "Reminder: {outstanding} {currency} is due on {due_date}.",
    "gnpl_overdue": "Your pay-later balance is overdue. Outstanding: {outstanding} {currency}.",
}


class _Blank(dict):
    def __missing__(self, key):
        return ""


def render_message(kind: str, payload: dict) -> str:
    template = _TEMPLATES.get(kind)
    if not template:
        return f"{kind}: " + ", ".join(f"{k}={v}" for k, v in sorted(payload.items()))
    return template.format_map(_Blank(payload))


def send_message(chat_id: str, text: str) -> bool:
    """Deliver through the Telegram Bot API. Returns False when the channel is not configured."""
    if not settings.TELEGRAM_BOT_TOKEN:
        return False
    r = requests.post(
        f"{settings.TELEGRAM_API_BASE}/bot{settings.TELEGRAM_BOT_TOKEN}/sendMessage",
        json={"chat_id": chat_id, "text": text},
        timeout=settings.NOTIFY_TIMEOUT,
    )
    if r.status_code >= 400:
        raise RuntimeError(f"Telegram error {r.status_code}: {r.text[:200]}")
    return True


def _attempt(log: NotificationLog) -> None:
    log.attempts = (log.attempts or 0) + 1
    try:
        delivered = send_message(log.chat_id, log.body or "")
    except (requests.RequestException, RuntimeError) as e:
        log.status = "failed"
        logger.warning("notification %s (%s) failed: %s", log.id, log.kind, e)
        return
    if delivered:
        log.status = "sent"
        log.sent_at = datetime.now(timezone.utc)
    else:
        log.status = "skipped"


def notify(db: Session, customer_id: str | None, kind: str, payload: dict | None = None) -> str | None:
    """Best effort, fire once. Call after the business transaction has committed.

    Never raises: a failed notification must not surface as a failed booking.
    """
    if not customer_id:
        return None
    try:
        customer = db.get(Customer, customer_id)
        if not customer or not customer.chat_id:
            return None
        log = NotificationLog(
            id=str(uuid.uuid4()),
            customer_id=customer_id,
            chat_id=customer.chat_id,
            kind=kind,
            body=render_message(kind, payload or {}),
            status="queued",
        )
        db.add(log)
        db.commit()
        _attempt(log)
        db.commit()
        return log.id
    except SQLAlchemyError:
        db.rollback()
        logger.exception("could not record notification %s for customer %s", kind, customer_id)
        return None


def process_pending_notifications(db: Session, limit: int = 50) -> dict:
    """Retry queued or failed notifications that still have attempts left."""
    pending = (
        db.query(NotificationLog)
        .filter(
            NotificationLog.status.in_(["queued", "failed"]),
            NotificationLog.attempts < MAX_ATTEMPTS,
            NotificationLog.body.isnot(None),
        )
        .order_by(NotificationLog.created_at.asc())
        .limit(limit)
        .all()
    )
    sent, failed = 0, 0
    for log in pending:
        _attempt(log)
        if log.status == "sent":
            sent += 1
        elif log.status == "failed":
            failed += 1
    if pending:
        db.commit()
    return {"processed": len(pending), "sent": sent, "failed": failed}
