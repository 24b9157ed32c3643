from pydantic import BaseModel, Field
from typing import Optional


class CustomerRef(BaseModel):
    chatId: str = Field(min_length=1, max_length=64)
    fullName: str = ""
    phone: str = ""


class QuoteRequest(BaseModel):
    tripId: str
    quantity: int = 1
    voucherCode: Optional[str] = None


class QuoteOut(BaseModel):
    tripId: str
    quantity: int
    unitPrice: str
    base: str
    discountPercent: str
    discount: str
    final: str
    voucherCode: Optional[str] = None
    currency: str = "ETB"


class BookingCreate(CustomerRef):
    tripId: str
    paymentMethod: str  # bank, telebirr, telebirr_auto, gnpl
    quantity: int = 1
    voucherCode: Optional[str] = None


class BookingOut(BaseModel):
    sessionId: Optional[str] = None
    status: Optional[str] = None
    paymentMethod: str
    quote: QuoteOut
    instructions: Optional[str] = None
    checkoutUrl: Optional[str] = None
    gnplAccountId: Optional[str] = None
    gnplStatus: Optional[str] = None
    dueDate: Optional[str] = None


class CancelRequest(BaseModel):
    chatId: str


class ReceiptCreate(BaseModel):
    chatId: str
    amount: str
    sessionId: Optional[str] = None
    tripId: Optional[str] = None
    paymentMethod: Optional[str] = None
    reference: Optional[str] = None
    receiptLink: Optional[str] = None
    receiptDate: Optional[str] = None
    # base64 file body, optionally as a data: URL
    fileBase64: Optional[str] = None
    fileMime: Optional[str] = None
    fileName: Optional[str] = None


class ReceiptOut(BaseModel):
    receiptId: str
    referenceNumber: str
    approvalStatus: str
    paymentMethod: str
    quantity: int
    finalAmount: str
    amountPaid: str
    validationScore: int = 0
    validationFlags: list[str] = []
    tickets: list[dict] = []


class PaymentWebhook(BaseModel):
    sessionId: str
    transactionId: str
    amount: str
    status: str = "completed"
