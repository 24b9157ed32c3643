"""Cash an operator collected through manual sales, and what they have handed over.

An operator's liability is the cash they sold (manual cash receipts that were
not rejected) minus approved remittances.
"""
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select, update, func
from sqlalchemy.orm import Session

from tickethub.core.clock import utcnow
from tickethub.core.errors import ValidationFailed, Conflict, NotFound, Forbidden
from tickethub.core.money import money, ZERO
from tickethub.models.manual_cash_remittance import ManualCashRemittance
from tickethub.models.receipt import Receipt
from tickethub.models.user import User
from tickethub.services.audit_service import log_audit
from tickethub.services.receipt_service import check_amount
from tickethub.services.settings_service import get_cash_approver_role
from tickethub.services.settlement_service import require

logger = logging.getLogger(__name__)

REMITTANCE_METHODS = ("cash_handover", "bank_deposit")


@dataclass(frozen=True)
class CashPosition:
    total_cash_sold: Decimal
    cash_sale_count: int
    approved_remitted: Decimal
    pending_remitted: Decimal
    outstanding: Decimal

    def as_dict(self) -> dict:
        return {
            "totalCashSold": str(self.total_cash_sold),
            "cashSaleCount": self.cash_sale_count,
            "approvedRemitted": str(self.approved_remitted),
            "pendingRemitted": str(self.pending_remitted),
            "outstanding": str(self.outstanding),
        }


def _remitted(db: Session, operator_id: str, status: str) -> Decimal:
    total = db.execute(
        select(func.coalesce(func.sum(ManualCashRemittance.remitted_amount), 0)).where(
            ManualCashRemittance.submitted_by == operator_id, ManualCashRemittance.status == status
        )
    ).scalar_one()
    return money(total)


def cash_position(db: Session, operator_id: str) -> CashPosition:
    sold, count = db.execute(
        select(func.coalesce(func.sum(Receipt.amount_paid), 0), func.count(Receipt.id)).where(
            Receipt.sold_by == operator_id,
            Receipt.payment_method == "cash",
            Receipt.approval_status != "rejected",
        )
    ).one()
    sold = money(sold)
    approved = _remitted(db, operator_id, "approved")
    return CashPosition(
        total_cash_sold=sold,
        cash_sale_count=int(count or 0),
        approved_remitted=approved,
        pending_remitted=_remitted(db, operator_id, "pending"),
        outstanding=max(ZERO, sold - approved),
    )


def can_approve(actor: User, approver_role: str) -> bool:
    if actor is None or not actor.is_active:
        return False
    return actor.role == "superadmin" or actor.role == approver_role


def submit_remittance(db: Session, operator: User, amount, method: str = "cash_handover",
                      bank_receipt_url: str | None = None, notes: str | None = None) -> ManualCashRemittance:
    """The whole outstanding balance is handed over at once; a short handover is refused."""
    require(operator, "cash.remit")
    method = (method or "").strip().lower()
    if method not in REMITTANCE_METHODS:
        raise ValidationFailed("invalid_remittance_method", f"method must be one of {', '.join(REMITTANCE_METHODS)}")
    value = check_amount(amount)
    proof = (bank_receipt_url or "").strip() or None
    if method == "bank_deposit" and not proof:
        raise ValidationFailed("bank_receipt_required", "a bank deposit needs the deposit receipt")

    # One pending remittance per operator; the lock keeps two submissions from racing.
    db.execute(select(User.id).where(User.id == operator.id).with_for_update())
    pending = db.execute(
        select(ManualCashRemittance.id).where(
            ManualCashRemittance.submitted_by == operator.id, ManualCashRemittance.status == "pending"
        ).limit(1)
    ).scalar_one_or_none()
    if pending:
        db.rollback()
        raise Conflict("remittance_pending", "a remittance is already waiting for review")

    pos = cash_position(db, operator.id)
    if pos.outstanding <= 0:
        db.rollback()
        raise ValidationFailed("nothing_to_remit", "no outstanding cash to remit")
    if value < pos.outstanding:
        db.rollback()
        raise ValidationFailed("remittance_below_outstanding",
                               f"amount is below the outstanding balance {pos.outstanding}",
                               outstanding=str(pos.outstanding))

    rem = ManualCashRemittance(
        id=str(uuid.uuid4()),
        submitted_by=operator.id,
        method=method,
        total_cash_sold=pos.total_cash_sold,
        already_remitted=pos.approved_remitted,
        outstanding_before=pos.outstanding,
        remitted_amount=value,
        bank_receipt_url=proof,
        notes=(notes or "").strip() or None,
        status="pending",
    )
    db.add(rem)
    log_audit(db, operator, "cash.remit", "manual_cash_remittance", rem.id, {
        "amount": str(value), "method": method, "outstanding": str(pos.outstanding),
    })
    db.commit()
    db.refresh(rem)
    logger.info("operator %s remitted %s (%s)", operator.id, value, method)
    return rem


def decide_remittance(db: Session, remittance_id: str, actor: User, approve: bool,
                      reason: str | None = None) -> ManualCashRemittance:
    approver_role = get_cash_approver_role(db)
    if not can_approve(actor, approver_role):
        raise Forbidden("forbidden", f"only {approver_role} can review remittances")
    rem = db.get(ManualCashRemittance, remittance_id)
    if not rem:
        raise NotFound("remittance_not_found", "remittance not found")
    if rem.submitted_by == actor.id:
        raise Forbidden("self_approval", "you cannot review your own remittance")

    status = "approved" if approve else "rejected"
    values = {"status": status, "decided_by": actor.id, "decided_at": utcnow()}
    if not approve:
        values["rejection_reason"] = (reason or "").strip() or "Rejected by approver"
    res = db.execute(
        update(ManualCashRemittance)
        .where(ManualCashRemittance.id == remittance_id, ManualCashRemittance.status == "pending")
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.rollback()
        raise Conflict("remittance_already_decided", f"remittance is already {rem.status}")
    log_audit(db, actor, f"cash.{'approve' if approve else 'reject'}", "manual_cash_remittance", remittance_id,
              {"reason": values.get("rejection_reason")})
    db.commit()
    db.refresh(rem)
    return rem


def list_remittances(db: Session, actor: User, status: str | None = None, mine: bool = False,
                     limit: int = 300) -> list[ManualCashRemittance]:
    """Approvers see everyone's; everybody else only their own."""
    stmt = select(ManualCashRemittance).order_by(ManualCashRemittance.created_at.desc()).limit(limit)
    if mine or not can_approve(actor, get_cash_approver_role(db)):
        stmt = stmt.where(ManualCashRemittance.submitted_by == actor.id)
    if status:
        stmt = stmt.where(ManualCashRemittance.status == status)
    return list(db.execute(stmt).scalars())
