"""Administrator decisions over a receipt and the tickets it produced.

    pending  --approve-->  approved   (tickets pending -> confirmed)
    pending  --reject-->   rejected   (tickets pending -> cancelled)
    approved --rollback--> pending    (tickets confirmed -> pending)

Each transition is a compare-and-set on approval_status, so two admins acting on
the same receipt cannot both win.
"""
import logging
import uuid
from datetime import date

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from tickethub.core.clock import utcnow, today as utc_today
from tickethub.core.config import settings
from tickethub.core.errors import DomainError, ValidationFailed, Conflict, NotFound, Forbidden
from tickethub.core.permissions import can
from tickethub.models.receipt import Receipt
from tickethub.models.ticket import Ticket
from tickethub.models.trip import Trip
from tickethub.models.user import User
from tickethub.services import pricing_service, ticket_service
from tickethub.services.audit_service import log_audit
from tickethub.services.customer_service import get_or_create_customer
from tickethub.services.notification_service import notify
from tickethub.services.receipt_intelligence import normalize_reference
from tickethub.services.receipt_service import (
    admit, check_amount, check_paid_enough, check_trip_bookable, find_duplicate,
    make_reference_number, reference_key,
)

logger = logging.getLogger(__name__)

ACTIONS = ("approve", "reject", "rollback")
MANUAL_SALE_METHODS = ("cash", "bank", "telebirr")
DEFAULT_REJECT_REASON = "No reason provided"


def require(actor, action: str) -> None:
    if not can(actor, action):
        raise Forbidden("forbidden", f"not allowed to {action}")


def transition_receipt(db: Session, receipt: Receipt, from_status: str, to_status: str, **values) -> None:
    res = db.execute(
        update(Receipt)
        .where(Receipt.id == receipt.id, Receipt.approval_status == from_status)
        .values(approval_status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise Conflict("concurrent_decision", "receipt was decided by someone else, reload and retry")
    db.expire(receipt)


def _lock_receipt(db: Session, receipt_id: str) -> Receipt:
    r = db.execute(select(Receipt).where(Receipt.id == receipt_id).with_for_update()).scalar_one_or_none()
    if not r:
        raise NotFound("receipt_not_found", "receipt not found")
    return r


def _approve(db: Session, r: Receipt, actor: User, note: str | None) -> dict:
    if r.approval_status == "approved":
        raise Conflict("already_approved", "receipt is already approved")
    if r.approval_status != "pending":
        raise Conflict("receipt_already_decided", f"receipt is {r.approval_status}")
    transition_receipt(db, r, "pending", "approved", decided_by=actor.id, decided_at=utcnow(),
                       approval_notes=note, rejection_reason=None)
    moved = ticket_service.set_ticket_status(db, r.id, ("pending",), "confirmed")
    if moved != r.quantity:
        raise Conflict("concurrent_decision", "ticket states changed during approval")
    return {"tickets": moved}


def _reject(db: Session, r: Receipt, actor: User, reason: str | None) -> dict:
    if r.approval_status == "rejected":
        raise Conflict("already_rejected", "receipt is already rejected")
    if r.approval_status != "pending":
        raise Conflict("receipt_already_decided", "roll back the approval before rejecting")
    reason = (reason or "").strip() or DEFAULT_REJECT_REASON
    transition_receipt(db, r, "pending", "rejected", decided_by=actor.id, decided_at=utcnow(),
                       rejection_reason=reason)
    cancelled = ticket_service.set_ticket_status(db, r.id, ("pending",), "cancelled")
    if settings.RESTORE_SEATS_ON_REJECT and cancelled:
        ticket_service.release_seats(db, r.trip_id, cancelled)
    return {"reason": reason, "tickets": cancelled, "seats_restored": settings.RESTORE_SEATS_ON_REJECT}


def _rollback(db: Session, r: Receipt, actor: User, confirmation: str | None, note: str | None) -> dict:
    if r.approval_status != "approved":
        raise Conflict("not_approved", "only approved receipts can be rolled back")
    tickets = ticket_service.tickets_for_receipt(db, r.id)
    wanted = (confirmation or "").strip().upper()
    if not wanted or wanted not in {t.ticket_number.upper() for t in tickets}:
        raise ValidationFailed("rollback_confirmation_mismatch", "enter one of this receipt's ticket numbers to confirm")
    if any(t.status == "used" for t in tickets):
        raise Conflict("rollback_ticket_used", "a ticket was already checked in; rollback is not allowed")
    transition_receipt(db, r, "approved", "pending", decided_by=None, decided_at=None, approval_notes=note)
    moved = ticket_service.set_ticket_status(db, r.id, ("confirmed",), "pending")
    if moved != len(tickets):
        # A check-in slipped in between the read and the update
        raise Conflict("rollback_ticket_used", "a ticket was checked in during rollback")
    return {"confirmation": wanted, "tickets": moved}


def decide(db: Session, receipt_id: str, action: str, actor: User, reason: str | None = None,
           confirmation: str | None = None) -> Receipt:
    action = (action or "").strip().lower()
    if action not in ACTIONS:
        raise ValidationFailed("invalid_action", f"action must be one of {', '.join(ACTIONS)}")
    require(actor, f"receipt.{action}")

    try:
        r = _lock_receipt(db, receipt_id)
        if r.payment_method == "gnpl":
            raise ValidationFailed("gnpl_receipt", "pay-later bookings are decided on the GNPL account")
        if action == "approve":
            details = _approve(db, r, actor, reason)
        elif action == "reject":
            details = _reject(db, r, actor, reason)
        else:
            details = _rollback(db, r, actor, confirmation, reason)
        log_audit(db, actor, f"receipt.{action}", "receipt", receipt_id, details)
        db.commit()
    except DomainError:
        db.rollback()
        raise

    r = db.get(Receipt, receipt_id)
    logger.info("receipt %s %s by %s", r.reference_number, action, actor.id)
    if action == "approve":
        tickets = ticket_service.tickets_for_receipt(db, r.id)
        notify(db, r.customer_id, "receipt_approved", {
            "reference": r.reference_number,
            "tickets": ", ".join(t.ticket_number for t in tickets),
        })
    elif action == "reject":
        notify(db, r.customer_id, "receipt_rejected", {"reference": r.reference_number, "reason": r.rejection_reason})
    else:
        notify(db, r.customer_id, "receipt_rolled_back", {"reference": r.reference_number})
    return r


def check_in(db: Session, ticket_id: str, actor: User, on_date: date | None = None) -> Ticket:
    """confirmed -> used. Checking in a used ticket again is a successful no-op."""
    require(actor, "ticket.check_in")
    t = db.execute(select(Ticket).where(Ticket.id == ticket_id).with_for_update()).scalar_one_or_none()
    if not t:
        raise NotFound("ticket_not_found", "ticket not found")
    if t.status == "used":
        return t
    if t.status != "confirmed":
        raise Conflict("ticket_not_confirmed", f"ticket is {t.status}")

    if settings.CHECKIN_TRIP_DAY_ONLY:
        trip = db.get(Trip, t.trip_id)
        day = on_date or utc_today()
        if trip and trip.departure_date and day != trip.departure_date:
            raise ValidationFailed("checkin_wrong_day", f"check-in is only open on {trip.departure_date.isoformat()}")

    res = db.execute(
        update(Ticket)
        .where(Ticket.id == ticket_id, Ticket.status == "confirmed")
        .values(status="used", checked_in_at=utcnow(), checked_in_by=actor.id)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.rollback()
        t = db.get(Ticket, ticket_id)
        if t and t.status == "used":
            return t
        raise Conflict("ticket_not_confirmed", "ticket changed while checking in")
    log_audit(db, actor, "ticket.check_in", "ticket", ticket_id, {"ticket_number": t.ticket_number})
    db.commit()
    db.refresh(t)
    return t


def record_manual_sale(db: Session, actor: User, trip_id: str, quantity: int, method: str, reference: str,
                       amount, buyer_name: str = "", buyer_phone: str = "", buyer_chat_id: str | None = None,
                       voucher_code: str | None = None, notes: str | None = None) -> tuple[Receipt, list[Ticket]]:
    """Operator-entered sale. Skips the session and lands approved with confirmed tickets."""
    require(actor, "manual_sale.create")
    method = (method or "").strip().lower()
    if method not in MANUAL_SALE_METHODS:
        raise ValidationFailed("invalid_payment_method", f"method must be one of {', '.join(MANUAL_SALE_METHODS)}")
    pricing_service.check_quantity(quantity)
    ref = normalize_reference(reference)
    if not ref:
        raise ValidationFailed("reference_required", "a payment reference is required")
    paid = check_amount(amount)

    trip = db.get(Trip, trip_id)
    if not trip:
        raise NotFound("trip_not_found", "trip not found")
    check_trip_bookable(trip, quantity)
    quote = pricing_service.quote(db, trip_id, quantity, voucher_code)
    check_paid_enough(paid, quote.final)
    if find_duplicate(db, ref):
        raise Conflict("duplicate_reference", "this payment reference was already used")

    customer = get_or_create_customer(db, buyer_chat_id, buyer_name, buyer_phone) if buyer_chat_id else None
    now = utcnow()
    receipt = Receipt(
        id=str(uuid.uuid4()),
        reference_number=make_reference_number(ref),
        reference_key=reference_key(ref),
        customer_id=customer.id if customer else None,
        trip_id=trip.id,
        payment_method=method,
        quantity=quantity,
        base_amount=quote.base,
        discount_code=quote.voucher_code,
        discount_percent=quote.discount_percent,
        discount_amount=quote.discount,
        final_amount=quote.final,
        amount_paid=paid,
        currency=settings.CURRENCY,
        validation_mode="manual",
        validation_score=100,
        validation_flags="[]",
        approval_status="approved",
        approval_notes=notes,
        decided_by=actor.id,
        decided_at=now,
        sold_by=actor.id,
        buyer_name=buyer_name or (customer.full_name if customer else None),
        buyer_phone=buyer_phone or None,
    )
    tickets = admit(db, receipt, trip, quote, ticket_status="confirmed", actor=actor,
                    action="manual_sale.create", details={"buyer": buyer_name})
    logger.info("manual sale %s: %d ticket(s) by %s", receipt.reference_number, quantity, actor.id)
    if customer:
        notify(db, customer.id, "receipt_approved", {
            "reference": receipt.reference_number,
            "tickets": ", ".join(t.ticket_number for t in tickets),
        })
    return receipt, tickets
