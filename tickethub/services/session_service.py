"""Booking session state machine.

awaiting_receipt / awaiting_auto_payment --(receipt admitted)--> completed
awaiting_receipt / awaiting_auto_payment --(cancel or replaced)--> cancelled

completed and cancelled are terminal. A customer has at most one open session;
opening a new one cancels the others in the same transaction.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tickethub.core.clock import utcnow
from tickethub.core.errors import Conflict, NotFound, ValidationFailed
from tickethub.models.booking_session import BookingSession, OPEN_STATUSES
from tickethub.models.customer import Customer
from tickethub.services.pricing_service import PriceQuote

logger = logging.getLogger(__name__)

MANUAL_METHODS = ("bank", "telebirr")
AUTO_METHODS = ("telebirr_auto",)
CREDIT_METHODS = ("gnpl",)
PAYMENT_METHODS = MANUAL_METHODS + AUTO_METHODS + CREDIT_METHODS


@dataclass(frozen=True)
class SessionTransition:
    cancel_ids: tuple[str, ...]
    new_status: str


def check_method(method: str) -> str:
    method = (method or "").strip().lower()
    if method not in PAYMENT_METHODS:
        raise ValidationFailed("invalid_payment_method", f"payment method must be one of {', '.join(PAYMENT_METHODS)}")
    return method


def initial_status(method: str) -> str:
    return "awaiting_auto_payment" if method in AUTO_METHODS else "awaiting_receipt"


def plan_session_open(prior: Sequence[BookingSession], method: str) -> SessionTransition:
    """Given every session the customer currently has, decide the next state."""
    cancel_ids = tuple(s.id for s in prior if s.status in OPEN_STATUSES)
    return SessionTransition(cancel_ids=cancel_ids, new_status=initial_status(method))


def open_session(db: Session, customer: Customer, method: str, quote: PriceQuote) -> BookingSession:
    """Replace the customer's open sessions with a new one. The caller commits."""
    method = check_method(method)
    # Serialize concurrent session creation for the same customer.
    db.execute(select(Customer.id).where(Customer.id == customer.id).with_for_update())
    prior = list(
        db.execute(
            select(BookingSession)
            .where(BookingSession.customer_id == customer.id, BookingSession.status.in_(OPEN_STATUSES))
            .with_for_update()
        ).scalars()
    )
    plan = plan_session_open(prior, method)
    for s in prior:
        if s.id in plan.cancel_ids:
            s.status = "cancelled"
    db.flush()

    session = BookingSession(
        id=str(uuid.uuid4()),
        customer_id=customer.id,
        trip_id=quote.trip_id,
        payment_method=method,
        quantity=quote.quantity,
        discount_code=quote.voucher_code,
        discount_percent=quote.discount_percent,
        voucher_id=quote.voucher_id,
        base_amount=quote.base,
        discount_amount=quote.discount,
        final_amount=quote.final,
        status=plan.new_status,
    )
    db.add(session)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise Conflict("session_conflict", "another booking was started at the same time, try again")
    if plan.cancel_ids:
        logger.info("customer %s: replaced sessions %s", customer.id, ",".join(plan.cancel_ids))
    return session


def find_open_session(db: Session, customer_id: str, trip_id: str, method: str,
                      lock: bool = False) -> BookingSession | None:
    stmt = (
        select(BookingSession)
        .where(
            BookingSession.customer_id == customer_id,
            BookingSession.trip_id == trip_id,
            BookingSession.payment_method == method,
            BookingSession.status.in_(OPEN_STATUSES),
        )
        .order_by(BookingSession.created_at.desc())
    )
    if lock:
        stmt = stmt.with_for_update()
    return db.execute(stmt).scalars().first()


def get_customer_session(db: Session, session_id: str, customer_id: str) -> BookingSession:
    s = db.get(BookingSession, session_id)
    if not s or s.customer_id != customer_id:
        raise NotFound("session_not_found", "booking session not found")
    return s


def _transition(db: Session, session: BookingSession, to_status: str) -> bool:
    res = db.execute(
        update(BookingSession)
        .where(BookingSession.id == session.id, BookingSession.status.in_(OPEN_STATUSES))
        .values(status=to_status, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.expire(session, ["status", "updated_at"])
    return res.rowcount == 1


def complete_session(db: Session, session: BookingSession) -> None:
    """Open -> completed inside the admission transaction."""
    if not _transition(db, session, "completed"):
        raise Conflict("session_closed", "booking session is no longer open")


def cancel_session(db: Session, session_id: str, customer_id: str) -> BookingSession:
    s = get_customer_session(db, session_id, customer_id)
    if s.status == "cancelled":
        return s
    if not _transition(db, s, "cancelled"):
        raise Conflict("session_closed", "booking session is already completed")
    db.commit()
    return s
