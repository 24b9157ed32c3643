import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from tickethub.db.session import get_db
from tickethub.api.deps import raise_http
from tickethub.core.config import settings
from tickethub.core.errors import DomainError
from tickethub.core.security import verify_payload_signature
from tickethub.schemas.booking import PaymentWebhook
from tickethub.services import receipt_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

PAID_STATUSES = ("completed", "success", "paid")


@router.post("/webhooks/payment", name="payment_webhook")
async def payment_webhook(request: Request, db: Session = Depends(get_db)):
    """Asynchronous checkout confirmation. Replays are answered with the same receipt."""
    body = await request.body()
    if settings.PAYMENT_WEBHOOK_VERIFY:
        if not verify_payload_signature(settings.PAYMENT_GATEWAY_SECRET, body, request.headers.get("x-signature")):
            logger.warning("payment webhook rejected: bad signature")
            raise HTTPException(status_code=401, detail="Invalid signature")
    try:
        event = PaymentWebhook.model_validate(json.loads(body or b"{}"))
    except (ValueError, ValidationError):
        raise HTTPException(status_code=400, detail="Invalid payload")

    if event.status.strip().lower() not in PAID_STATUSES:
        logger.info("payment webhook for session %s ignored (status %s)", event.sessionId, event.status)
        return {"ok": True, "ignored": True}

    try:
        r = receipt_service.confirm_auto_payment(db, event.sessionId, event.transactionId, event.amount)
    except DomainError as e:
        raise_http(e)
    return {"ok": True, "receiptId": r.id, "approvalStatus": r.approval_status}
