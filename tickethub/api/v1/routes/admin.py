import uuid
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy.orm import Session

from tickethub.db.session import get_db
from tickethub.api.deps import raise_http, require_permission
from tickethub.api.v1.serializers import receipt_out, ticket_out, trip_out, voucher_out
from tickethub.core.errors import DomainError
from tickethub.core.money import money, to_decimal
from tickethub.models.discount_voucher import DiscountVoucher
from tickethub.models.receipt import Receipt
from tickethub.models.trip import Trip
from tickethub.models.user import User
from tickethub.schemas.admin import (
    ApproverRoleIn, CheckInIn, DecisionIn, GnplPolicyIn, ManualSaleIn, ReceiptPolicyIn,
    TripIn, TripUpdate, VoucherIn, VoucherUpdate,
)
from tickethub.services import settings_service, settlement_service, ticket_card_service, ticket_service
from tickethub.services.audit_service import log_audit
from tickethub.services.pricing_service import normalize_voucher_code

router = APIRouter(tags=["admin"])

TRIP_STATUSES = ("active", "cancelled", "completed", "archived")


def _decimal(value: str, field: str):
    try:
        return to_decimal(value)
    except ValueError:
        raise HTTPException(status_code=400, detail={"error": "invalid_amount", "message": f"{field} must be a number"})


# Receipts

@router.get("/admin/receipts")
def list_receipts(status: str | None = None, method: str | None = None, limit: int = 50, offset: int = 0,
                  db: Session = Depends(get_db),
                  me: User = Depends(require_permission("receipt.approve"))):
    query = db.query(Receipt)
    if status:
        query = query.filter(Receipt.approval_status == status)
    if method:
        query = query.filter(Receipt.payment_method == method)
    total = query.count()
    items = query.order_by(Receipt.created_at.desc()).limit(min(limit, 200)).offset(max(offset, 0)).all()
    return {"total": total, "items": [receipt_out(r).model_dump() for r in items]}


@router.post("/admin/receipts/{receipt_id}/decision")
def decide_receipt(receipt_id: str, body: DecisionIn, db: Session = Depends(get_db),
                   me: User = Depends(require_permission("receipt.approve"))):
    try:
        r = settlement_service.decide(db, receipt_id, body.action, me, reason=body.reason,
                                      confirmation=body.confirmationTicketNumber)
    except DomainError as e:
        raise_http(e)
    return receipt_out(r, ticket_service.tickets_for_receipt(db, r.id))


# Tickets

@router.post("/admin/tickets/{ticket_id}/check-in")
def check_in(ticket_id: str, body: CheckInIn | None = None, db: Session = Depends(get_db),
             me: User = Depends(require_permission("ticket.check_in"))):
    try:
        t = settlement_service.check_in(db, ticket_id, me, on_date=body.onDate if body else None)
    except DomainError as e:
        raise_http(e)
    return ticket_out(t)


@router.get("/admin/tickets/{ticket_id}/card")
def ticket_card(ticket_id: str, db: Session = Depends(get_db),
                me: User = Depends(require_permission("ticket.check_in"))):
    try:
        t, pdf = ticket_card_service.ensure_ticket_card(db, ticket_id)
    except DomainError as e:
        raise_http(e)
    return Response(content=pdf, media_type="application/pdf",
                    headers={"Content-Disposition": f'inline; filename="{t.ticket_number}.pdf"'})


@router.post("/admin/manual-sales")
def manual_sale(body: ManualSaleIn, db: Session = Depends(get_db),
                me: User = Depends(require_permission("manual_sale.create"))):
    try:
        r, tickets = settlement_service.record_manual_sale(
            db, me, body.tripId, body.quantity, body.paymentMethod, body.reference, body.amountPaid,
            buyer_name=body.buyerName, buyer_phone=body.buyerPhone, buyer_chat_id=body.buyerChatId,
            voucher_code=body.voucherCode, notes=body.notes,
        )
    except DomainError as e:
        raise_http(e)
    return receipt_out(r, tickets)


# Vouchers

@router.get("/admin/vouchers")
def list_vouchers(db: Session = Depends(get_db), me: User = Depends(require_permission("voucher.manage"))):
    return [voucher_out(v) for v in db.query(DiscountVoucher).order_by(DiscountVoucher.created_at.desc()).all()]


def _check_voucher_values(percent, usage_limit):
    if percent is not None and (percent <= 0 or percent > 100):
        raise HTTPException(status_code=400, detail={"error": "invalid_discount", "message": "discount must be in (0, 100]"})
    if usage_limit is not None and usage_limit < 1:
        raise HTTPException(status_code=400, detail={"error": "invalid_usage_limit", "message": "usage limit must be >= 1"})


@router.post("/admin/vouchers")
def create_voucher(body: VoucherIn, db: Session = Depends(get_db),
                   me: User = Depends(require_permission("voucher.manage"))):
    code = normalize_voucher_code(body.code)
    if not code:
        raise HTTPException(status_code=400, detail={"error": "voucher_invalid", "message": "code required"})
    percent = _decimal(body.discountPercent, "discountPercent")
    _check_voucher_values(percent, body.usageLimit)
    if db.query(DiscountVoucher).filter(DiscountVoucher.code == code).first():
        raise HTTPException(status_code=409, detail={"error": "voucher_exists", "message": "code already exists"})
    if body.tripId and not db.get(Trip, body.tripId):
        raise HTTPException(status_code=404, detail={"error": "trip_not_found", "message": "trip not found"})
    v = DiscountVoucher(
        id=str(uuid.uuid4()),
        code=code,
        discount_percent=percent,
        usage_count=0,
        usage_limit=body.usageLimit,
        trip_id=body.tripId,
        valid_from=body.validFrom,
        expires_at=body.expiresAt,
        is_active=body.isActive,
        created_by=me.id,
    )
    db.add(v)
    log_audit(db, me, "voucher.create", "discount_voucher", v.id, {"code": code, "percent": str(percent)})
    db.commit()
    return voucher_out(v)


@router.patch("/admin/vouchers/{voucher_id}")
def update_voucher(voucher_id: str, body: VoucherUpdate, db: Session = Depends(get_db),
                   me: User = Depends(require_permission("voucher.manage"))):
    v = db.get(DiscountVoucher, voucher_id)
    if not v:
        raise HTTPException(status_code=404, detail={"error": "voucher_not_found", "message": "not found"})
    percent = _decimal(body.discountPercent, "discountPercent") if body.discountPercent is not None else None
    _check_voucher_values(percent, body.usageLimit)
    if body.usageLimit is not None and body.usageLimit < v.usage_count:
        raise HTTPException(status_code=400, detail={"error": "invalid_usage_limit", "message": "limit is below current usage"})
    if percent is not None:
        v.discount_percent = percent
    if body.usageLimit is not None:
        v.usage_limit = body.usageLimit
    if body.expiresAt is not None:
        v.expires_at = body.expiresAt
    if body.isActive is not None:
        v.is_active = body.isActive
    log_audit(db, me, "voucher.update", "discount_voucher", v.id, body.model_dump(exclude_none=True))
    db.commit()
    return voucher_out(v)


@router.delete("/admin/vouchers/{voucher_id}")
def deactivate_voucher(voucher_id: str, db: Session = Depends(get_db),
                       me: User = Depends(require_permission("voucher.manage"))):
    v = db.get(DiscountVoucher, voucher_id)
    if not v:
        raise HTTPException(status_code=404, detail={"error": "voucher_not_found", "message": "not found"})
    v.is_active = False
    log_audit(db, me, "voucher.deactivate", "discount_voucher", v.id, {"code": v.code})
    db.commit()
    return {"ok": True}


# Trips

@router.get("/admin/trips")
def list_all_trips(db: Session = Depends(get_db), me: User = Depends(require_permission("trip.manage"))):
    return [trip_out(t) for t in db.query(Trip).order_by(Trip.created_at.desc()).all()]


@router.post("/admin/trips")
def create_trip(body: TripIn, db: Session = Depends(get_db), me: User = Depends(require_permission("trip.manage"))):
    price = money(_decimal(body.unitPrice, "unitPrice"))
    if price < 0:
        raise HTTPException(status_code=400, detail={"error": "invalid_amount", "message": "price must be >= 0"})
    t = Trip(
        id=str(uuid.uuid4()),
        name=body.name.strip(),
        destination=body.destination.strip(),
        unit_price=price,
        total_seats=body.totalSeats,
        available_seats=body.totalSeats,
        status="active",
        departure_date=body.departureDate,
        allow_gnpl=body.allowGnpl,
        payment_instructions=body.paymentInstructions,
    )
    db.add(t)
    log_audit(db, me, "trip.create", "trip", t.id, {"name": t.name, "seats": t.total_seats})
    db.commit()
    return trip_out(t)


@router.patch("/admin/trips/{trip_id}")
def update_trip(trip_id: str, body: TripUpdate, db: Session = Depends(get_db),
                me: User = Depends(require_permission("trip.manage"))):
    t = db.query(Trip).filter(Trip.id == trip_id).with_for_update().first()
    if not t:
        raise HTTPException(status_code=404, detail={"error": "trip_not_found", "message": "not found"})
    if body.totalSeats is not None and body.totalSeats != t.total_seats:
        sold = t.total_seats - t.available_seats
        if body.totalSeats < sold:
            raise HTTPException(status_code=400, detail={"error": "invalid_capacity",
                                                         "message": f"{sold} seat(s) are already sold"})
        t.available_seats = body.totalSeats - sold
        t.total_seats = body.totalSeats
    if body.status is not None:
        if body.status not in TRIP_STATUSES:
            raise HTTPException(status_code=400, detail={"error": "invalid_status", "message": "invalid status"})
        t.status = body.status
    if body.unitPrice is not None:
        t.unit_price = money(_decimal(body.unitPrice, "unitPrice"))
    for attr, value in (("name", body.name), ("destination", body.destination),
                        ("departure_date", body.departureDate), ("allow_gnpl", body.allowGnpl),
                        ("payment_instructions", body.paymentInstructions)):
        if value is not None:
            setattr(t, attr, value)
    log_audit(db, me, "trip.update", "trip", t.id, body.model_dump(exclude_none=True))
    db.commit()
    return trip_out(t)


# Settings

@router.get("/admin/settings/gnpl")
def get_gnpl_settings(db: Session = Depends(get_db), me: User = Depends(require_permission("settings.manage"))):
    p = settings_service.get_gnpl_policy(db)
    return {**p.__dict__, "penalty_percent": str(p.penalty_percent)}


@router.put("/admin/settings/gnpl")
def put_gnpl_settings(body: GnplPolicyIn, db: Session = Depends(get_db),
                      me: User = Depends(require_permission("settings.manage"))):
    updates = body.model_dump(exclude_none=True)
    try:
        p = settings_service.set_gnpl_policy(db, updates, actor_id=me.id)
    except DomainError as e:
        raise_http(e)
    log_audit(db, me, "settings.gnpl", "setting", settings_service.GNPL_POLICY_KEY, updates)
    db.commit()
    return {**p.__dict__, "penalty_percent": str(p.penalty_percent)}


@router.get("/admin/settings/receipts")
def get_receipt_settings(db: Session = Depends(get_db), me: User = Depends(require_permission("settings.manage"))):
    p = settings_service.get_receipt_policy(db)
    return {"strict": p.strict, "maxFileMb": p.max_file_mb}


@router.put("/admin/settings/receipts")
def put_receipt_settings(body: ReceiptPolicyIn, db: Session = Depends(get_db),
                         me: User = Depends(require_permission("settings.manage"))):
    try:
        p = settings_service.set_receipt_policy(db, strict=body.strict, max_file_mb=body.maxFileMb, actor_id=me.id)
    except DomainError as e:
        raise_http(e)
    return {"strict": p.strict, "maxFileMb": p.max_file_mb}


@router.put("/admin/settings/cash-approver")
def put_cash_approver(body: ApproverRoleIn, db: Session = Depends(get_db),
                      me: User = Depends(require_permission("settings.manage"))):
    try:
        role = settings_service.set_cash_approver_role(db, body.role, actor_id=me.id)
    except DomainError as e:
        raise_http(e)
    return {"role": role}
