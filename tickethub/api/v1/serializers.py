"""Response shapes shared by the customer and admin routes."""
import json

from tickethub.core.config import settings
from tickethub.models.gnpl_account import GnplAccount
from tickethub.models.gnpl_payment import GnplPayment
from tickethub.models.manual_cash_remittance import ManualCashRemittance
from tickethub.models.receipt import Receipt
from tickethub.models.ticket import Ticket
from tickethub.models.trip import Trip
from tickethub.models.discount_voucher import DiscountVoucher
from tickethub.schemas.booking import QuoteOut, ReceiptOut
from tickethub.services.gnpl_service import snapshot
from tickethub.services.pricing_service import PriceQuote


def _iso(v):
    return v.isoformat() if v else None


def quote_out(q: PriceQuote) -> QuoteOut:
    return QuoteOut(
        tripId=q.trip_id,
        quantity=q.quantity,
        unitPrice=str(q.unit_price),
        base=str(q.base),
        discountPercent=str(q.discount_percent),
        discount=str(q.discount),
        final=str(q.final),
        voucherCode=q.voucher_code,
        currency=settings.CURRENCY,
    )


def ticket_out(t: Ticket) -> dict:
    return {
        "id": t.id,
        "ticketNumber": t.ticket_number,
        "serialNumber": t.serial_number,
        "tripId": t.trip_id,
        "receiptId": t.receipt_id,
        "status": t.status,
        "purchasePrice": str(t.purchase_price),
        "issuedAt": _iso(t.issued_at),
        "checkedInAt": _iso(t.checked_in_at),
    }


def receipt_out(r: Receipt, tickets: list[Ticket] | None = None) -> ReceiptOut:
    return ReceiptOut(
        receiptId=r.id,
        referenceNumber=r.reference_number,
        approvalStatus=r.approval_status,
        paymentMethod=r.payment_method,
        quantity=r.quantity,
        finalAmount=str(r.final_amount),
        amountPaid=str(r.amount_paid),
        validationScore=r.validation_score or 0,
        validationFlags=json.loads(r.validation_flags or "[]"),
        tickets=[ticket_out(t) for t in tickets or []],
    )


def trip_out(t: Trip) -> dict:
    return {
        "id": t.id,
        "name": t.name,
        "destination": t.destination,
        "unitPrice": str(t.unit_price),
        "currency": settings.CURRENCY,
        "totalSeats": t.total_seats,
        "availableSeats": t.available_seats,
        "status": t.status,
        "departureDate": _iso(t.departure_date),
        "allowGnpl": bool(t.allow_gnpl),
    }


def voucher_out(v: DiscountVoucher) -> dict:
    return {
        "id": v.id,
        "code": v.code,
        "discountPercent": str(v.discount_percent),
        "usageCount": v.usage_count,
        "usageLimit": v.usage_limit,
        "tripId": v.trip_id,
        "validFrom": _iso(v.valid_from),
        "expiresAt": _iso(v.expires_at),
        "isActive": v.is_active,
    }


def account_out(a: GnplAccount) -> dict:
    return {
        "id": a.id,
        "customerId": a.customer_id,
        "tripId": a.trip_id,
        "receiptId": a.receipt_id,
        "quantity": a.quantity,
        "penaltyPercent": str(a.penalty_percent),
        "penaltyPeriodDays": a.penalty_period_days,
        "createdAt": _iso(a.created_at),
        **snapshot(a).as_dict(),
    }


def payment_out(p: GnplPayment) -> dict:
    return {
        "id": p.id,
        "accountId": p.account_id,
        "amount": str(p.amount),
        "reference": p.reference,
        "receiptLink": p.receipt_link,
        "status": p.status,
        "principalComponent": str(p.principal_component or 0),
        "penaltyComponent": str(p.penalty_component or 0),
        "rejectionReason": p.rejection_reason,
        "createdAt": _iso(p.created_at),
    }


def remittance_out(m: ManualCashRemittance) -> dict:
    return {
        "id": m.id,
        "submittedBy": m.submitted_by,
        "method": m.method,
        "totalCashSold": str(m.total_cash_sold),
        "alreadyRemitted": str(m.already_remitted),
        "outstandingBefore": str(m.outstanding_before),
        "remittedAmount": str(m.remitted_amount),
        "bankReceiptUrl": m.bank_receipt_url,
        "notes": m.notes,
        "status": m.status,
        "decidedBy": m.decided_by,
        "decidedAt": _iso(m.decided_at),
        "rejectionReason": m.rejection_reason,
        "createdAt": _iso(m.created_at),
    }
