from pydantic import BaseModel, Field
from typing import Optional
from datetime import date, datetime


class DecisionIn(BaseModel):
    action: str  # approve, reject, rollback
    reason: Optional[str] = None
    confirmationTicketNumber: Optional[str] = None


class CheckInIn(BaseModel):
    onDate: Optional[date] = None


class ManualSaleIn(BaseModel):
    tripId: str
    quantity: int = 1
    paymentMethod: str = "cash"
    reference: str
    amountPaid: str
    buyerName: str = ""
    buyerPhone: str = ""
    buyerChatId: Optional[str] = None
    voucherCode: Optional[str] = None
    notes: Optional[str] = None


class VoucherIn(BaseModel):
    code: str
    discountPercent: str
    usageLimit: Optional[int] = None
    tripId: Optional[str] = None
    validFrom: Optional[datetime] = None
    expiresAt: Optional[datetime] = None
    isActive: bool = True


class VoucherUpdate(BaseModel):
    discountPercent: Optional[str] = None
    usageLimit: Optional[int] = None
    expiresAt: Optional[datetime] = None
    isActive: Optional[bool] = None


class TripIn(BaseModel):
    name: str
    destination: str = ""
    unitPrice: str
    totalSeats: int = Field(ge=1)
    departureDate: Optional[date] = None
    allowGnpl: bool = False
    paymentInstructions: Optional[str] = None


class TripUpdate(BaseModel):
    name: Optional[str] = None
    destination: Optional[str] = None
    unitPrice: Optional[str] = None
    totalSeats: Optional[int] = Field(default=None, ge=1)
    status: Optional[str] = None
    departureDate: Optional[date] = None
    allowGnpl: Optional[bool] = None
    paymentInstructions: Optional[str] = None


class GnplPolicyIn(BaseModel):
    enabled: Optional[bool] = None
    require_approval: Optional[bool] = None
    term_days: Optional[int] = None
    penalty_enabled: Optional[bool] = None
    penalty_percent: Optional[str] = None
    penalty_period_days: Optional[int] = None
    reminder_enabled: Optional[bool] = None
    reminder_days_before: Optional[int] = None
    allocation_order: Optional[str] = None


class ReceiptPolicyIn(BaseModel):
    strict: Optional[bool] = None
    maxFileMb: Optional[int] = None


class StatementEntry(BaseModel):
    reference: str
    amount: str


class ReconcileIn(BaseModel):
    dateFrom: Optional[date] = None
    dateTo: Optional[date] = None
    paymentMethod: Optional[str] = None
    entries: list[StatementEntry] = []
    csvText: Optional[str] = None


class RemittanceIn(BaseModel):
    amount: str
    method: str = "cash_handover"
    bankReceiptUrl: Optional[str] = None
    notes: Optional[str] = None


class RemittanceDecisionIn(BaseModel):
    action: str  # approve, reject
    reason: Optional[str] = None


class ApproverRoleIn(BaseModel):
    role: str
