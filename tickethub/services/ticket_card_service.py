from __future__ import annotations

import io
import logging
from datetime import datetime, timezone

from reportlab.lib.pagesizes import A6, landscape
from reportlab.pdfgen import canvas
from sqlalchemy.orm import Session

from tickethub.core.config import settings
from tickethub.core.errors import Conflict, NotFound
from tickethub.models.customer import Customer
from tickethub.models.receipt import Receipt
from tickethub.models.ticket import Ticket
from tickethub.models.trip import Trip
from tickethub.services import storage_service

logger = logging.getLogger(__name__)

CARD_STATUSES = ("confirmed", "used")


def render_ticket_card(*, ticket_number: str, serial_number: str, trip_name: str, destination: str,
                       departure: str, holder: str, price: str, status: str) -> bytes:
    """Return a one page PDF card. Pure function."""
    buf = io.BytesIO()
    size = landscape(A6)
    c = canvas.Canvas(buf, pagesize=size)
    w, h = size

    c.setFont("Helvetica-Bold", 16)
    c.drawString(24, h - 36, settings.APP_NAME.replace(" API", ""))
    c.setFont("Helvetica", 9)
    c.drawRightString(w - 24, h - 36, f"Serial {serial_number}")

    c.setFont("Helvetica-Bold", 13)
    c.drawString(24, h - 70, trip_name)
    c.setFont("Helvetica", 10)
    if destination:
        c.drawString(24, h - 86, f"Destination: {destination}")
    c.drawString(24, h - 102, f"Departure:   {departure or 'TBA'}")
    c.drawString(24, h - 118, f"Holder:      {holder or '(Not provided)'}")
    c.drawString(24, h - 134, f"Price:       {price} {settings.CURRENCY}")
    c.drawString(24, h - 150, f"Status:      {status}")

    c.setFont("Helvetica-Bold", 14)
    c.drawString(24, 48, ticket_number)
    c.setFont("Helvetica", 7)
    c.drawString(24, 24, f"Present this ticket number at check-in. Generated {datetime.now(timezone.utc).isoformat()}")

    c.showPage()
    c.save()
    return buf.getvalue()


def ensure_ticket_card(db: Session, ticket_id: str) -> tuple[Ticket, bytes]:
    """Render (or re-read) the card of a confirmed ticket and remember where it is stored."""
    t = db.get(Ticket, ticket_id)
    if not t:
        raise NotFound("ticket_not_found", "ticket not found")
    if t.status not in CARD_STATUSES:
        raise Conflict("ticket_not_confirmed", f"ticket is {t.status}")

    if t.card_url:
        try:
            return t, storage_service.retrieve(t.card_url)
        except (OSError, ValueError) as e:
            logger.warning("card for ticket %s unreadable at %s, rendering again: %s", t.ticket_number, t.card_url, e)

    trip = db.get(Trip, t.trip_id)
    receipt = db.get(Receipt, t.receipt_id)
    holder = ""
    if t.customer_id:
        customer = db.get(Customer, t.customer_id)
        holder = customer.full_name if customer else ""
    if not holder and receipt:
        holder = receipt.buyer_name or ""

    pdf = render_ticket_card(
        ticket_number=t.ticket_number,
        serial_number=t.serial_number,
        trip_name=trip.name if trip else "",
        destination=trip.destination if trip else "",
        departure=trip.departure_date.isoformat() if trip and trip.departure_date else "",
        holder=holder,
        price=f"{t.purchase_price:.2f}",
        status=t.status,
    )
    t.card_url = storage_service.store(pdf, "application/pdf", folder="tickets")
    db.commit()
    db.refresh(t)
    return t, pdf
