import base64
import binascii
import re

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from sqlalchemy.orm import Session
from tickethub.db.session import get_db
from tickethub.api.deps import raise_http
from tickethub.api.v1.serializers import quote_out, receipt_out, ticket_out
from tickethub.core.errors import DomainError, ValidationFailed
from tickethub.schemas.booking import BookingCreate, BookingOut, CancelRequest, ReceiptCreate, ReceiptOut
from tickethub.services import booking_service, receipt_service, session_service, ticket_service
from tickethub.services.customer_service import find_customer, get_or_create_customer

router = APIRouter(tags=["bookings"])

_DATA_URL = re.compile(r"^data:([^;,]+);base64,(.+)$", re.IGNORECASE | re.DOTALL)


def decode_attachment(payload: str | None, mime: str | None, filename: str | None):
    """Body of a base64 (or data: URL) upload, or None when nothing was attached."""
    if not payload:
        return None
    m = _DATA_URL.match(payload.strip())
    if m:
        mime = mime or m.group(1)
        payload = m.group(2)
    try:
        data = base64.b64decode(re.sub(r"\s+", "", payload), validate=True)
    except (binascii.Error, ValueError):
        raise ValidationFailed("attachment_invalid", "receipt file is not valid base64")
    return receipt_service.Attachment(data=data, mime=(mime or "").strip().lower(), filename=filename or "")


@router.post("/bookings", response_model=BookingOut)
def create_booking(body: BookingCreate, request: Request, db: Session = Depends(get_db)):
    try:
        customer = get_or_create_customer(db, body.chatId, body.fullName, body.phone)
        started = booking_service.start_booking(
            db, customer, body.tripId, body.paymentMethod, body.quantity, body.voucherCode,
            notify_url=str(request.url_for("payment_webhook")),
        )
    except DomainError as e:
        raise_http(e)
    s = started.session
    a = started.gnpl_account
    return BookingOut(
        sessionId=s.id if s else None,
        status=s.status if s else None,
        paymentMethod=body.paymentMethod.strip().lower(),
        quote=quote_out(started.quote),
        instructions=started.instructions,
        checkoutUrl=started.checkout_url,
        gnplAccountId=a.id if a else None,
        gnplStatus=a.status if a else None,
        dueDate=a.due_date.isoformat() if a else None,
    )


@router.post("/bookings/{session_id}/cancel")
def cancel_booking(session_id: str, body: CancelRequest, db: Session = Depends(get_db)):
    try:
        customer = find_customer(db, body.chatId)
        s = session_service.cancel_session(db, session_id, customer.id)
    except DomainError as e:
        raise_http(e)
    return {"ok": True, "sessionId": s.id, "status": s.status}


def _submit(db: Session, chat_id: str, attachment, **fields) -> ReceiptOut:
    try:
        customer = find_customer(db, chat_id)
        r = receipt_service.submit_receipt(db, customer, attachment=attachment, **fields)
    except DomainError as e:
        raise_http(e)
    return receipt_out(r, ticket_service.tickets_for_receipt(db, r.id))


@router.post("/receipts", response_model=ReceiptOut)
def submit_receipt(body: ReceiptCreate, db: Session = Depends(get_db)):
    try:
        attachment = decode_attachment(body.fileBase64, body.fileMime, body.fileName)
    except DomainError as e:
        raise_http(e)
    return _submit(
        db, body.chatId, attachment,
        amount=body.amount, reference=body.reference, link=body.receiptLink, receipt_date=body.receiptDate,
        session_id=body.sessionId, trip_id=body.tripId, method=body.paymentMethod,
    )


@router.post("/receipts/upload", response_model=ReceiptOut)
async def upload_receipt(chatId: str = Form(...), amount: str = Form(...), sessionId: str | None = Form(None),
                         tripId: str | None = Form(None), paymentMethod: str | None = Form(None),
                         reference: str | None = Form(None), receiptLink: str | None = Form(None),
                         receiptDate: str | None = Form(None), file: UploadFile | None = File(None),
                         db: Session = Depends(get_db)):
    attachment = None
    if file is not None and file.filename:
        attachment = receipt_service.Attachment(
            data=await file.read(), mime=(file.content_type or "").lower(), filename=file.filename
        )
    return _submit(
        db, chatId, attachment,
        amount=amount, reference=reference, link=receiptLink, receipt_date=receiptDate,
        session_id=sessionId, trip_id=tripId, method=paymentMethod,
    )


@router.get("/customers/{chat_id}/tickets")
def my_tickets(chat_id: str, db: Session = Depends(get_db)):
    try:
        customer = find_customer(db, chat_id)
    except DomainError as e:
        raise_http(e)
    return [ticket_out(t) for t in ticket_service.customer_tickets(db, customer.id)]
