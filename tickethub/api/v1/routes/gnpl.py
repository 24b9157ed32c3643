from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from tickethub.db.session import get_db
from tickethub.api.deps import raise_http, require_permission
from tickethub.api.v1.serializers import account_out, payment_out
from tickethub.core.errors import DomainError
from tickethub.models.user import User
from tickethub.schemas.gnpl import GnplDecisionIn, GnplPaymentIn
from tickethub.services import gnpl_service
from tickethub.services.customer_service import find_customer

router = APIRouter(tags=["gnpl"])

DECISIONS = ("approve", "reject")


def _check_action(action: str) -> str:
    action = (action or "").strip().lower()
    if action not in DECISIONS:
        raise HTTPException(status_code=400, detail={"error": "invalid_action", "message": "action must be approve or reject"})
    return action


@router.get("/customers/{chat_id}/gnpl")
def my_accounts(chat_id: str, db: Session = Depends(get_db)):
    try:
        customer = find_customer(db, chat_id)
    except DomainError as e:
        raise_http(e)
    return [account_out(a) for a in gnpl_service.customer_accounts(db, customer.id)]


@router.post("/gnpl/accounts/{account_id}/payments")
def pay(account_id: str, body: GnplPaymentIn, db: Session = Depends(get_db)):
    try:
        customer = find_customer(db, body.chatId)
        snap = gnpl_service.submit_payment(db, account_id, customer, body.amount, body.reference, body.receiptLink)
    except DomainError as e:
        raise_http(e)
    return {"ok": True, "paymentStatus": "pending_review", **snap.as_dict()}


@router.get("/admin/gnpl/accounts")
def list_accounts(status: str | None = None, limit: int = 100, db: Session = Depends(get_db),
                  me: User = Depends(require_permission("gnpl.manage"))):
    return [account_out(a) for a in gnpl_service.list_accounts(db, status=status, limit=limit)]


@router.get("/admin/gnpl/accounts/{account_id}/payments")
def list_payments(account_id: str, db: Session = Depends(get_db),
                  me: User = Depends(require_permission("gnpl.manage"))):
    return [payment_out(p) for p in gnpl_service.account_payments(db, account_id)]


@router.post("/admin/gnpl/accounts/{account_id}/decision")
def decide_account(account_id: str, body: GnplDecisionIn, db: Session = Depends(get_db),
                   me: User = Depends(require_permission("gnpl.manage"))):
    action = _check_action(body.action)
    try:
        if action == "approve":
            a = gnpl_service.approve_account(db, account_id, me)
        else:
            a = gnpl_service.reject_account(db, account_id, me, body.reason)
    except DomainError as e:
        raise_http(e)
    return account_out(a)


@router.post("/admin/gnpl/payments/{payment_id}/decision")
def decide_payment(payment_id: str, body: GnplDecisionIn, db: Session = Depends(get_db),
                   me: User = Depends(require_permission("gnpl.manage"))):
    action = _check_action(body.action)
    try:
        if action == "approve":
            snap = gnpl_service.approve_payment(db, payment_id, me)
            return {"ok": True, "paymentStatus": "approved", **snap.as_dict()}
        p = gnpl_service.reject_payment(db, payment_id, me, body.reason)
    except DomainError as e:
        raise_http(e)
    return payment_out(p)


@router.post("/admin/gnpl/run-penalties")
def run_penalties(db: Session = Depends(get_db), me: User = Depends(require_permission("gnpl.manage"))):
    return gnpl_service.accrue_penalties(db)


@router.post("/admin/gnpl/run-reminders")
def run_reminders(db: Session = Depends(get_db), me: User = Depends(require_permission("gnpl.manage"))):
    return gnpl_service.send_due_reminders(db)
