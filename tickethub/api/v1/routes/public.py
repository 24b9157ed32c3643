from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from tickethub.db.session import get_db
from tickethub.api.deps import raise_http
from tickethub.api.v1.serializers import quote_out, trip_out
from tickethub.core.errors import DomainError
from tickethub.models.trip import Trip, BOOKABLE_STATUSES
from tickethub.schemas.booking import QuoteRequest, QuoteOut
from tickethub.services import pricing_service

router = APIRouter(tags=["public"])


@router.get("/trips")
def list_trips(db: Session = Depends(get_db)):
    """Trips open for booking, soonest departure first."""
    items = (
        db.query(Trip)
        .filter(Trip.status.in_(BOOKABLE_STATUSES))
        .order_by(Trip.departure_date.asc(), Trip.created_at.asc())
        .all()
    )
    return [trip_out(t) for t in items]


@router.post("/quote", response_model=QuoteOut)
def get_quote(body: QuoteRequest, db: Session = Depends(get_db)):
    try:
        return quote_out(pricing_service.quote(db, body.tripId, body.quantity, body.voucherCode))
    except DomainError as e:
        raise_http(e)
