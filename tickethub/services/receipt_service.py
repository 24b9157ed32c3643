"""Receipt admission.

A receipt is admitted in two phases. The checks run first, in a fixed order, and
each has its own error kind. Then one transaction does the work: insert the
receipt, take the seats, consume the voucher, issue the tickets and close the
session. If any step in that transaction loses a race, the whole transaction
rolls back.
"""
import hashlib
import json
import logging
import re
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable

from sqlalchemy import select, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tickethub.core.clock import utcnow
from tickethub.core.config import settings
from tickethub.core.errors import DomainError, ValidationFailed, Conflict, NotFound
from tickethub.core.money import money
from tickethub.models.booking_session import BookingSession, OPEN_STATUSES
from tickethub.models.customer import Customer
from tickethub.models.payment_reference import PaymentReference
from tickethub.models.receipt import Receipt
from tickethub.models.ticket import Ticket
from tickethub.models.trip import Trip, BOOKABLE_STATUSES
from tickethub.services import pricing_service, session_service, ticket_service
from tickethub.services.audit_service import log_audit
from tickethub.services.notification_service import notify
from tickethub.services.receipt_intelligence import analyze_receipt, normalize_reference, validate_attachment
from tickethub.services.settings_service import get_receipt_policy
from tickethub.services import storage_service

logger = logging.getLogger(__name__)

_SUFFIX = re.compile(r"-\d{6}$")


@dataclass
class Attachment:
    data: bytes
    mime: str
    filename: str = ""


def base_reference(reference: str) -> str:
    """Strip the six digit collision suffix added at storage time."""
    return _SUFFIX.sub("", (reference or "").strip())


def reference_key(reference: str) -> str:
    return base_reference(reference).upper()


def make_reference_number(reference: str) -> str:
    return f"{reference}-{str(int(time.time() * 1000))[-6:]}"


def _like_prefix(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "-%"


def _dash_prefixes(value: str) -> list[str]:
    parts = value.split("-")
    return [p for p in ("-".join(parts[:i]) for i in range(1, len(parts))) if p]


def find_duplicate(db: Session, reference: str) -> PaymentReference | None:
    """Earlier claim on this reference by a receipt or a pay-later instalment.

    Matches work in both directions: entering `ABC` finds a stored `ABC-X`, and
    entering `ABC-X` finds a stored `ABC`. This is the early, friendly check. The
    primary key on payment_references is what actually guarantees a reference is
    consumed once.
    """
    key = reference_key(reference)
    upper = reference.strip().upper()
    candidates = {key, upper, *_dash_prefixes(upper)}
    return db.execute(
        select(PaymentReference).where(
            or_(
                PaymentReference.reference_key.in_(candidates),
                PaymentReference.reference_key.like(_like_prefix(upper), escape="\\"),
            )
        ).limit(1)
    ).scalar_one_or_none()


def claim_reference(db: Session, key: str, source: str, source_id: str) -> PaymentReference:
    """Stage the system-wide claim; a clash surfaces as IntegrityError on flush."""
    claim = PaymentReference(reference_key=key, source=source, source_id=source_id)
    db.add(claim)
    return claim


def check_trip_bookable(trip: Trip, quantity: int) -> None:
    if trip.status not in BOOKABLE_STATUSES:
        raise Conflict("trip_not_bookable", f"trip is {trip.status}")
    if trip.available_seats < quantity:
        raise Conflict("sold_out", f"only {trip.available_seats} seat(s) left", available=trip.available_seats)


def check_amount(amount) -> Decimal:
    try:
        value = money(amount)
    except ValueError:
        raise ValidationFailed("invalid_amount", "amount must be a number")
    if value <= 0:
        raise ValidationFailed("invalid_amount", "amount must be greater than zero")
    return value


def check_paid_enough(paid: Decimal, final: Decimal) -> None:
    if paid + settings.RECEIPT_AMOUNT_EPSILON < final:
        raise ValidationFailed(
            "insufficient_amount",
            f"amount paid {paid} is less than the amount due {final}",
            expected=str(final),
            paid=str(paid),
        )


def admit(db: Session, receipt: Receipt, trip: Trip, quote: pricing_service.PriceQuote, *,
          ticket_status: str, actor, action: str, session: BookingSession | None = None,
          strict_voucher: bool = True, details: dict | None = None,
          before_commit: Callable[[Receipt, list[Ticket]], None] | None = None) -> list[Ticket]:
    """Insert `receipt` and everything that hangs off it as one unit of work."""
    try:
        db.add(receipt)
        claim_reference(db, receipt.reference_key, "receipt", receipt.id)
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            raise Conflict("duplicate_reference", "this payment reference was already used")

        ticket_service.allocate_seats(db, trip.id, receipt.quantity)
        if quote.voucher_id:
            try:
                pricing_service.consume_voucher(db, quote.voucher_id)
            except Conflict:
                if strict_voucher:
                    raise
                logger.warning("voucher %s exhausted after payment for receipt %s, honouring discount",
                               quote.voucher_code, receipt.id)
                _add_flag(receipt, "voucher_exhausted_at_confirmation")
        tickets = ticket_service.issue_tickets(db, receipt, trip, status=ticket_status)
        if session is not None and session.status in OPEN_STATUSES:
            session_service.complete_session(db, session)
        if before_commit is not None:
            before_commit(receipt, tickets)
        log_audit(db, actor, action, "receipt", receipt.id, {
            "reference": receipt.reference_number,
            "quantity": receipt.quantity,
            "final": str(receipt.final_amount),
            "paid": str(receipt.amount_paid),
            "method": receipt.payment_method,
            **(details or {}),
        })
        db.commit()
    except DomainError:
        db.rollback()
        raise
    db.refresh(receipt)
    return tickets


def _add_flag(receipt: Receipt, flag: str) -> None:
    flags = json.loads(receipt.validation_flags or "[]")
    if flag not in flags:
        flags.append(flag)
    receipt.validation_flags = json.dumps(flags)


def _discard_upload(url: str) -> None:
    try:
        storage_service.delete(url)
    except (OSError, ValueError) as e:
        logger.warning("could not remove upload %s of a refused receipt: %s", url, e)


def _resolve_session(db: Session, customer: Customer, session_id: str | None, trip_id: str | None,
                     method: str | None) -> BookingSession:
    if session_id:
        s = session_service.get_customer_session(db, session_id, customer.id)
        if s.status not in OPEN_STATUSES:
            raise Conflict("session_closed", "booking session is no longer open")
        return s
    if not (trip_id and method):
        raise ValidationFailed("session_required", "session id or trip and payment method are required")
    s = session_service.find_open_session(db, customer.id, trip_id, method)
    if not s:
        raise NotFound("session_not_found", "no open booking for this trip and payment method")
    return s


def submit_receipt(db: Session, customer: Customer, *, amount, reference: str | None = None,
                   link: str | None = None, receipt_date=None, attachment: Attachment | None = None,
                   session_id: str | None = None, trip_id: str | None = None, method: str | None = None,
                   now: datetime | None = None) -> Receipt:
    """Admit a customer's proof of payment for their open manual-payment session."""
    session = _resolve_session(db, customer, session_id, trip_id, method)
    if session.payment_method not in session_service.MANUAL_METHODS:
        raise ValidationFailed("invalid_payment_method", "this booking does not take a receipt")
    paid = check_amount(amount)
    policy = get_receipt_policy(db)

    # 1-2: reference and link consistency
    analysis = analyze_receipt(reference, link, receipt_date, paid, strict=policy.strict,
                               amount_tolerance=settings.RECEIPT_LINK_AMOUNT_TOLERANCE)
    if analysis.error == "reference_required":
        raise ValidationFailed("reference_required", "a valid payment reference is required")
    if analysis.error == "validation_mismatch":
        raise ValidationFailed("validation_mismatch", "receipt link does not match the entered details",
                               flags=analysis.flags)

    mime = None
    if attachment is not None:
        mime = validate_attachment(len(attachment.data), attachment.mime,
                                   max_bytes=policy.max_file_mb * 1024 * 1024,
                                   min_bytes=settings.RECEIPT_MIN_FILE_BYTES)
    elif not analysis.link.url:
        raise ValidationFailed("attachment_required", "attach the receipt file or paste the receipt link")

    # 3: inventory, re-checked for real inside the transaction
    trip = db.get(Trip, session.trip_id)
    if not trip:
        raise NotFound("trip_not_found", "trip not found")
    check_trip_bookable(trip, session.quantity)

    # 4: receipt date window
    if analysis.receipt_date is not None:
        opened = trip.created_at.date() if trip.created_at else None
        if (opened and analysis.receipt_date < opened) or (trip.departure_date and analysis.receipt_date > trip.departure_date):
            raise ValidationFailed("receipt_date_out_of_range",
                                   "receipt date must fall between the trip's creation and departure dates")

    # 5: amount against the session's price
    quote = pricing_service.quote(db, trip.id, session.quantity, session.discount_code, now=now)
    check_paid_enough(paid, quote.final)

    # 6: anti double spend
    if find_duplicate(db, analysis.reference):
        raise Conflict("duplicate_reference", "this payment reference was already used")

    attachment_url = receipt_hash = None
    if attachment is not None:
        receipt_hash = hashlib.sha256(attachment.data).hexdigest()
        attachment_url = storage_service.store(attachment.data, mime, folder="receipts")

    receipt = Receipt(
        id=str(uuid.uuid4()),
        reference_number=make_reference_number(analysis.reference),
        reference_key=reference_key(analysis.reference),
        customer_id=customer.id,
        trip_id=trip.id,
        session_id=session.id,
        payment_method=session.payment_method,
        quantity=session.quantity,
        base_amount=quote.base,
        discount_code=quote.voucher_code,
        discount_percent=quote.discount_percent,
        discount_amount=quote.discount,
        final_amount=quote.final,
        amount_paid=paid,
        currency=settings.CURRENCY,
        attachment_url=attachment_url,
        attachment_mime=mime,
        attachment_size=len(attachment.data) if attachment is not None else None,
        receipt_hash=receipt_hash,
        receipt_link=analysis.link.url or None,
        receipt_provider=analysis.link.provider if analysis.link.url else None,
        receipt_date=analysis.receipt_date,
        validation_mode="strict" if policy.strict else "lenient",
        validation_score=analysis.score,
        validation_flags=json.dumps(analysis.flags),
        approval_status="pending",
    )
    try:
        admit(db, receipt, trip, quote, ticket_status="pending", actor=customer, action="receipt.submit",
              session=session, details={"score": analysis.score, "flags": analysis.flags})
    except DomainError:
        if attachment_url:
            _discard_upload(attachment_url)
        raise
    logger.info("receipt %s admitted for session %s (score %d)", receipt.reference_number, session.id, analysis.score)

    notify(db, customer.id, "receipt_submitted", {
        "reference": receipt.reference_number,
        "quantity": receipt.quantity,
    })
    return receipt


def confirm_auto_payment(db: Session, session_id: str, transaction_id: str, amount) -> Receipt:
    """Gateway confirmation for an automated checkout. Lands approved with confirmed tickets.

    Replays of the same confirmation return the receipt created the first time.
    """
    reference = normalize_reference(transaction_id)
    if not reference:
        raise ValidationFailed("reference_required", "transaction id is required")
    key = reference_key(reference)

    existing = db.execute(select(Receipt).where(Receipt.reference_key == key)).scalar_one_or_none()
    if existing:
        if existing.session_id == session_id:
            return existing
        raise Conflict("duplicate_reference", "transaction already used for another booking")

    session = db.get(BookingSession, session_id)
    if not session:
        raise NotFound("session_not_found", "booking session not found")
    if session.payment_method not in session_service.AUTO_METHODS:
        raise ValidationFailed("invalid_payment_method", "session is not an automated checkout")
    if session.status == "completed":
        raise Conflict("session_closed", "booking session already completed")
    trip = db.get(Trip, session.trip_id)
    if not trip:
        raise NotFound("trip_not_found", "trip not found")
    if trip.status not in BOOKABLE_STATUSES:
        logger.error("paid checkout %s for session %s arrived after trip %s became %s, refund or settle by hand",
                     reference, session_id, trip.id, trip.status)
        raise Conflict("trip_not_bookable", f"trip is {trip.status}")

    paid = check_amount(amount)
    # Money has already moved: honour the price quoted when the checkout started.
    final = money(session.final_amount)
    check_paid_enough(paid, final)
    quote = pricing_service.PriceQuote(
        trip_id=trip.id,
        quantity=session.quantity,
        unit_price=money(trip.unit_price),
        base=money(session.base_amount),
        discount_percent=Decimal(session.discount_percent or 0),
        discount=money(session.discount_amount),
        final=final,
        voucher_id=session.voucher_id,
        voucher_code=session.discount_code,
    )
    now = utcnow()
    receipt = Receipt(
        id=str(uuid.uuid4()),
        reference_number=make_reference_number(reference),
        reference_key=key,
        customer_id=session.customer_id,
        trip_id=trip.id,
        session_id=session.id,
        payment_method=session.payment_method,
        quantity=session.quantity,
        base_amount=quote.base,
        discount_code=quote.voucher_code,
        discount_percent=quote.discount_percent,
        discount_amount=quote.discount,
        final_amount=quote.final,
        amount_paid=paid,
        currency=settings.CURRENCY,
        validation_mode="gateway",
        validation_score=100,
        validation_flags=json.dumps(["provider:gateway"]),
        approval_status="approved",
        approval_notes="Auto-approved via payment gateway confirmation",
        decided_by="gateway",
        decided_at=now,
    )
    try:
        tickets = admit(db, receipt, trip, quote, ticket_status="confirmed", actor="gateway",
                        action="receipt.auto_confirm", session=session, strict_voucher=False)
    except Conflict as e:
        if e.kind != "duplicate_reference":
            logger.error("paid checkout %s for session %s could not be admitted: %s", reference, session_id, e.kind)
            raise
        # A concurrent replay won the insert
        existing = db.execute(select(Receipt).where(Receipt.reference_key == key)).scalar_one_or_none()
        if existing and existing.session_id == session_id:
            return existing
        raise

    notify(db, receipt.customer_id, "auto_payment_confirmed", {
        "reference": receipt.reference_number,
        "tickets": ", ".join(t.ticket_number for t in tickets),
    })
    return receipt
