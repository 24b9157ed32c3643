import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from tickethub.core.config import settings
from tickethub.core.errors import DomainError, NotFound, Unavailable
from tickethub.models.booking_session import BookingSession
from tickethub.models.customer import Customer
from tickethub.models.gnpl_account import GnplAccount
from tickethub.models.trip import Trip
from tickethub.services import gnpl_service, pricing_service, session_service
from tickethub.services.audit_service import log_audit
from tickethub.services.notification_service import notify
from tickethub.services.payment_gateway import PaymentInitiatorError, gateway_client
from tickethub.services.receipt_service import check_trip_bookable

logger = logging.getLogger(__name__)


@dataclass
class BookingStart:
    session: BookingSession
    quote: pricing_service.PriceQuote
    instructions: str | None = None
    checkout_url: str | None = None
    gnpl_account: GnplAccount | None = None


def payment_instructions(trip: Trip) -> str:
    return (trip.payment_instructions or "").strip() or settings.DEFAULT_PAYMENT_INSTRUCTIONS


def start_booking(db: Session, customer: Customer, trip_id: str, method: str, quantity: int,
                  voucher_code: str | None = None, notify_url: str = "",
                  now: datetime | None = None) -> BookingStart:
    """Open a booking session for the chosen payment method.

    Manual methods answer with payment instructions, the automated method with a
    checkout URL, and GNPL originates a credit account straight away.
    """
    method = session_service.check_method(method)
    quote = pricing_service.quote(db, trip_id, quantity, voucher_code, now=now)
    trip = db.get(Trip, trip_id)
    if not trip:
        raise NotFound("trip_not_found", "trip not found")
    check_trip_bookable(trip, quantity)

    if method in session_service.CREDIT_METHODS:
        account = gnpl_service.originate(db, customer, trip, quote, now=now)
        session = db.get(BookingSession, account.session_id) if getattr(account, "session_id", None) else None
        return BookingStart(session=session, quote=quote, gnpl_account=account)

    try:
        session = session_service.open_session(db, customer, method, quote)
        log_audit(db, customer, "session.open", "booking_session", session.id, {
            "trip": trip.id, "method": method, "quantity": quantity, "final": str(quote.final),
        })
        db.commit()
    except DomainError:
        db.rollback()
        raise
    db.refresh(session)

    if method in session_service.MANUAL_METHODS:
        instructions = payment_instructions(trip)
        notify(db, customer.id, "manual_payment_instructions", {
            "amount": str(quote.final),
            "currency": settings.CURRENCY,
            "quantity": quantity,
            "instructions": instructions,
        })
        return BookingStart(session=session, quote=quote, instructions=instructions)

    try:
        url = gateway_client().initiate(quote.final, reference=session.id, notify_url=notify_url, title=trip.name)
    except PaymentInitiatorError as e:
        # The session stays open: a late confirmation for it is still accepted.
        logger.warning("checkout for session %s not started: %s", session.id, e)
        raise Unavailable("payment_initiator_unavailable", "online checkout is unavailable, try again or pay manually",
                          session_id=session.id, maybe_completed=e.maybe_completed)
    session.checkout_url = url
    db.commit()
    return BookingStart(session=session, quote=quote, checkout_url=url)
