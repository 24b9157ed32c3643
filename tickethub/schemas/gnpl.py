from pydantic import BaseModel
from typing import Optional


class GnplPaymentIn(BaseModel):
    chatId: str
    amount: str
    reference: str
    receiptLink: Optional[str] = None


class GnplDecisionIn(BaseModel):
    action: str  # approve, reject
    reason: Optional[str] = None
