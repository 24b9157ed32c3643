from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from tickethub.db.session import get_db
from tickethub.api.deps import get_current_user, raise_http, require_permission
from tickethub.api.v1.serializers import remittance_out
from tickethub.core.errors import DomainError
from tickethub.models.user import User
from tickethub.schemas.admin import RemittanceDecisionIn, RemittanceIn
from tickethub.services import cash_service
from tickethub.services.settings_service import get_cash_approver_role

router = APIRouter(tags=["cash"])


@router.get("/admin/cash/summary")
def my_cash(db: Session = Depends(get_db), me: User = Depends(require_permission("cash.remit"))):
    return cash_service.cash_position(db, me.id).as_dict()


@router.get("/admin/cash/remittances")
def remittances(status: str | None = None, scope: str | None = None, db: Session = Depends(get_db),
                me: User = Depends(get_current_user)):
    approver_role = get_cash_approver_role(db)
    items = cash_service.list_remittances(db, me, status=status, mine=(scope == "mine"))
    return {
        "canApprove": cash_service.can_approve(me, approver_role),
        "approverRole": approver_role,
        "items": [remittance_out(m) for m in items],
    }


@router.post("/admin/cash/remittances")
def submit(body: RemittanceIn, db: Session = Depends(get_db), me: User = Depends(require_permission("cash.remit"))):
    try:
        m = cash_service.submit_remittance(db, me, body.amount, body.method, body.bankReceiptUrl, body.notes)
    except DomainError as e:
        raise_http(e)
    return remittance_out(m)


@router.post("/admin/cash/remittances/{remittance_id}/decision")
def decide(remittance_id: str, body: RemittanceDecisionIn, db: Session = Depends(get_db),
           me: User = Depends(get_current_user)):
    action = (body.action or "").strip().lower()
    if action not in ("approve", "reject"):
        raise HTTPException(status_code=400, detail={"error": "invalid_action", "message": "action must be approve or reject"})
    try:
        m = cash_service.decide_remittance(db, remittance_id, me, approve=(action == "approve"), reason=body.reason)
    except DomainError as e:
        raise_http(e)
    return remittance_out(m)
