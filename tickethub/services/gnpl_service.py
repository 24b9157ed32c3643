"""Go Now, Pay Later credit ledger.

Seats and tickets are taken when the account is originated; the customer then
pays the principal (plus any penalty) in one or more instalments that an admin
approves. Penalties are charged per whole period past the due date, and the
number of charged periods is stored on the account so re-running the job is safe.
"""
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tickethub.core.clock import utcnow
from tickethub.core.config import settings
from tickethub.core.errors import DomainError, ValidationFailed, Conflict, NotFound
from tickethub.core.money import money, ZERO
from tickethub.models.customer import Customer
from tickethub.models.gnpl_account import GnplAccount, OPEN_ACCOUNT_STATUSES
from tickethub.models.gnpl_payment import GnplPayment
from tickethub.models.receipt import Receipt
from tickethub.models.trip import Trip
from tickethub.models.user import User
from tickethub.services import session_service, ticket_service
from tickethub.services.audit_service import log_audit
from tickethub.services.notification_service import notify
from tickethub.services.pricing_service import PriceQuote
from tickethub.services.receipt_intelligence import normalize_reference
from tickethub.services.receipt_service import admit, check_amount, claim_reference, find_duplicate, reference_key
from tickethub.services.settings_service import GnplPolicy, get_gnpl_policy
from tickethub.services.settlement_service import require, transition_receipt

logger = logging.getLogger(__name__)

PAYABLE_STATUSES = ("active", "overdue")


@dataclass(frozen=True)
class GnplSnapshot:
    principal_amount: Decimal
    principal_paid: Decimal
    principal_outstanding: Decimal
    penalty_accrued: Decimal
    penalty_paid: Decimal
    penalty_outstanding: Decimal
    total_outstanding: Decimal
    due_date: date
    status: str

    def as_dict(self) -> dict:
        return {
            "principalAmount": str(self.principal_amount),
            "principalPaid": str(self.principal_paid),
            "principalOutstanding": str(self.principal_outstanding),
            "penaltyAccrued": str(self.penalty_accrued),
            "penaltyPaid": str(self.penalty_paid),
            "penaltyOutstanding": str(self.penalty_outstanding),
            "totalOutstanding": str(self.total_outstanding),
            "dueDate": self.due_date.isoformat(),
            "status": self.status,
        }


@dataclass(frozen=True)
class PaymentSplit:
    principal: Decimal
    penalty: Decimal


def snapshot(account: GnplAccount) -> GnplSnapshot:
    principal = money(account.principal_amount)
    principal_paid = money(account.principal_paid)
    penalty = money(account.penalty_accrued)
    penalty_paid = money(account.penalty_paid)
    principal_out = max(ZERO, principal - principal_paid)
    penalty_out = max(ZERO, penalty - penalty_paid)
    return GnplSnapshot(
        principal_amount=principal,
        principal_paid=principal_paid,
        principal_outstanding=principal_out,
        penalty_accrued=penalty,
        penalty_paid=penalty_paid,
        penalty_outstanding=penalty_out,
        total_outstanding=principal_out + penalty_out,
        due_date=account.due_date,
        status=account.status,
    )


def allocate_payment(snap: GnplSnapshot, amount: Decimal, order: str = "penalty_first") -> PaymentSplit:
    """Split a payment between penalty and principal in the configured order."""
    amount = money(amount)
    if amount <= 0:
        raise ValidationFailed("invalid_amount", "payment must be greater than zero")
    if amount > snap.total_outstanding:
        raise ValidationFailed("overpayment", f"payment exceeds outstanding balance {snap.total_outstanding}",
                               outstanding=str(snap.total_outstanding))
    if order == "principal_first":
        principal = min(amount, snap.principal_outstanding)
        penalty = amount - principal
    else:
        penalty = min(amount, snap.penalty_outstanding)
        principal = amount - penalty
    return PaymentSplit(principal=money(principal), penalty=money(penalty))


def elapsed_penalty_periods(due_date: date, today: date, period_days: int) -> int:
    """Whole periods past the due date: 10 days late on a 7-day period is one period."""
    if period_days < 1 or today <= due_date:
        return 0
    return (today - due_date).days // period_days


def make_gnpl_reference(account_id: str) -> str:
    return f"GNPL-{int(time.time() * 1000)}-{account_id.replace('-', '')[:6].upper()}"


def _check_origination(db: Session, customer: Customer, trip: Trip, policy: GnplPolicy) -> None:
    if not policy.enabled:
        raise ValidationFailed("gnpl_disabled", "pay later is not available right now")
    if not trip.allow_gnpl:
        raise ValidationFailed("gnpl_not_allowed", "pay later is not offered for this trip")
    existing = db.execute(
        select(GnplAccount.id).where(
            GnplAccount.customer_id == customer.id,
            GnplAccount.trip_id == trip.id,
            GnplAccount.status.in_(OPEN_ACCOUNT_STATUSES),
        ).limit(1)
    ).scalar_one_or_none()
    if existing:
        raise Conflict("gnpl_account_exists", "you already have an open pay-later booking for this trip")


def originate(db: Session, customer: Customer, trip: Trip, quote: PriceQuote,
              now: datetime | None = None) -> GnplAccount:
    """Open a credit account and issue its tickets in one unit of work."""
    policy = get_gnpl_policy(db)
    now = now or utcnow()
    try:
        # Locks the customer row, which also serializes the duplicate-account check below.
        session = session_service.open_session(db, customer, "gnpl", quote)
        _check_origination(db, customer, trip, policy)
    except DomainError:
        db.rollback()
        raise

    needs_approval = policy.require_approval
    account_id = str(uuid.uuid4())
    reference = make_gnpl_reference(account_id)
    account = GnplAccount(
        id=account_id,
        customer_id=customer.id,
        trip_id=trip.id,
        session_id=session.id,
        quantity=quote.quantity,
        principal_amount=quote.final,
        principal_paid=ZERO,
        penalty_accrued=ZERO,
        penalty_paid=ZERO,
        penalty_periods_applied=0,
        penalty_percent=policy.penalty_percent,
        penalty_period_days=policy.penalty_period_days,
        due_date=now.date() + timedelta(days=policy.term_days),
        status="pending_approval" if needs_approval else "active",
        approved_at=None if needs_approval else now,
    )
    receipt = Receipt(
        id=str(uuid.uuid4()),
        reference_number=reference,
        reference_key=reference.upper(),
        customer_id=customer.id,
        trip_id=trip.id,
        session_id=session.id,
        payment_method="gnpl",
        quantity=quote.quantity,
        base_amount=quote.base,
        discount_code=quote.voucher_code,
        discount_percent=quote.discount_percent,
        discount_amount=quote.discount,
        final_amount=quote.final,
        amount_paid=ZERO,
        currency=settings.CURRENCY,
        validation_mode="credit",
        validation_score=0,
        validation_flags="[]",
        approval_status="pending" if needs_approval else "approved",
        decided_by=None if needs_approval else "system",
        decided_at=None if needs_approval else now,
        gnpl_account_id=account_id,
    )

    def _attach(receipt: Receipt, tickets):
        account.receipt_id = receipt.id
        db.add(account)

    admit(db, receipt, trip, quote, ticket_status="pending" if needs_approval else "confirmed",
          actor=customer, action="gnpl.originate", session=session, before_commit=_attach,
          details={"account": account_id, "due_date": account.due_date.isoformat()})
    db.refresh(account)
    logger.info("gnpl account %s originated for customer %s (%s)", account.id, customer.id, account.status)

    kind = "gnpl_submitted" if needs_approval else "gnpl_approved"
    notify(db, customer.id, kind, {
        "quantity": account.quantity,
        "amount": str(account.principal_amount),
        "currency": settings.CURRENCY,
        "due_date": account.due_date.isoformat(),
    })
    return account


def _lock_account(db: Session, account_id: str) -> GnplAccount:
    a = db.execute(select(GnplAccount).where(GnplAccount.id == account_id).with_for_update()).scalar_one_or_none()
    if not a:
        raise NotFound("gnpl_account_not_found", "pay-later account not found")
    return a


def _set_account_status(db: Session, account: GnplAccount, from_status: str, to_status: str, **values) -> None:
    res = db.execute(
        update(GnplAccount)
        .where(GnplAccount.id == account.id, GnplAccount.status == from_status)
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise Conflict("concurrent_decision", "account was updated by someone else, reload and retry")
    db.expire(account)


def approve_account(db: Session, account_id: str, actor: User) -> GnplAccount:
    require(actor, "gnpl.manage")
    try:
        a = _lock_account(db, account_id)
        if a.status != "pending_approval":
            raise Conflict("account_already_decided", f"account is {a.status}")
        receipt = db.get(Receipt, a.receipt_id)
        _set_account_status(db, a, "pending_approval", "active", approved_by=actor.id, approved_at=utcnow())
        transition_receipt(db, receipt, "pending", "approved", decided_by=actor.id, decided_at=utcnow())
        ticket_service.set_ticket_status(db, a.receipt_id, ("pending",), "confirmed")
        log_audit(db, actor, "gnpl.approve", "gnpl_account", a.id, {"receipt": a.receipt_id})
        db.commit()
    except DomainError:
        db.rollback()
        raise
    db.refresh(a)
    notify(db, a.customer_id, "gnpl_approved", {
        "amount": str(snapshot(a).total_outstanding),
        "currency": settings.CURRENCY,
        "due_date": a.due_date.isoformat(),
    })
    return a


def reject_account(db: Session, account_id: str, actor: User, reason: str | None = None) -> GnplAccount:
    """Credit refused: tickets are cancelled and their seats go back on sale."""
    require(actor, "gnpl.manage")
    reason = (reason or "").strip() or "No reason provided"
    try:
        a = _lock_account(db, account_id)
        if a.status != "pending_approval":
            raise Conflict("account_already_decided", f"account is {a.status}")
        receipt = db.get(Receipt, a.receipt_id)
        _set_account_status(db, a, "pending_approval", "rejected", rejection_reason=reason)
        transition_receipt(db, receipt, "pending", "rejected", decided_by=actor.id, decided_at=utcnow(),
                           rejection_reason=reason)
        cancelled = ticket_service.set_ticket_status(db, a.receipt_id, ("pending",), "cancelled")
        ticket_service.release_seats(db, a.trip_id, cancelled)
        log_audit(db, actor, "gnpl.reject", "gnpl_account", a.id, {"reason": reason, "tickets": cancelled})
        db.commit()
    except DomainError:
        db.rollback()
        raise
    db.refresh(a)
    notify(db, a.customer_id, "gnpl_rejected", {"reason": reason})
    return a


def _pending_total(db: Session, account_id: str) -> Decimal:
    total = db.execute(
        select(func.coalesce(func.sum(GnplPayment.amount), 0)).where(
            GnplPayment.account_id == account_id, GnplPayment.status == "pending"
        )
    ).scalar_one()
    return money(total)


def submit_payment(db: Session, account_id: str, customer: Customer, amount, reference: str,
                   link: str | None = None) -> GnplSnapshot:
    """Record an instalment for admin review. Returns the balance as it stands now."""
    ref = normalize_reference(reference)
    if not ref:
        raise ValidationFailed("reference_required", "a payment reference is required")
    paid = check_amount(amount)
    a = db.get(GnplAccount, account_id)
    if not a or a.customer_id != customer.id:
        raise NotFound("gnpl_account_not_found", "pay-later account not found")
    if a.status not in PAYABLE_STATUSES:
        raise Conflict("account_not_payable", f"account is {a.status}")

    snap = snapshot(a)
    in_review = _pending_total(db, a.id)
    if paid + in_review > snap.total_outstanding:
        raise ValidationFailed("overpayment", f"payment exceeds outstanding balance {snap.total_outstanding - in_review}",
                               outstanding=str(snap.total_outstanding), pending=str(in_review))
    if find_duplicate(db, ref):
        raise Conflict("duplicate_reference", "this payment reference was already used")

    payment = GnplPayment(
        id=str(uuid.uuid4()),
        account_id=a.id,
        customer_id=customer.id,
        amount=paid,
        reference=ref.upper(),
        receipt_link=(link or "").strip() or None,
        status="pending",
    )
    db.add(payment)
    claim_reference(db, reference_key(ref), "gnpl_payment", payment.id)
    log_audit(db, customer, "gnpl.payment_submit", "gnpl_payment", payment.id, {"account": a.id, "amount": str(paid)})
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("duplicate_reference", "this payment reference was already used")
    return snap


def apply_payment(account: GnplAccount, amount: Decimal, order: str, now: datetime | None = None) -> PaymentSplit:
    """Apply a split to the loaded account in memory; flips to paid when nothing is left."""
    split = allocate_payment(snapshot(account), amount, order)
    account.principal_paid = money(account.principal_paid) + split.principal
    account.penalty_paid = money(account.penalty_paid) + split.penalty
    if snapshot(account).total_outstanding == ZERO:
        account.status = "paid"
        account.paid_at = now or utcnow()
    return split


def approve_payment(db: Session, payment_id: str, actor: User) -> GnplSnapshot:
    require(actor, "gnpl.manage")
    policy = get_gnpl_policy(db)
    try:
        p = db.execute(select(GnplPayment).where(GnplPayment.id == payment_id).with_for_update()).scalar_one_or_none()
        if not p:
            raise NotFound("gnpl_payment_not_found", "payment not found")
        if p.status != "pending":
            raise Conflict("payment_already_decided", f"payment is {p.status}")
        a = _lock_account(db, p.account_id)
        if a.status not in PAYABLE_STATUSES:
            raise Conflict("account_not_payable", f"account is {a.status}")

        split = apply_payment(a, money(p.amount), policy.allocation_order)
        res = db.execute(
            update(GnplPayment)
            .where(GnplPayment.id == p.id, GnplPayment.status == "pending")
            .values(status="approved", principal_component=split.principal, penalty_component=split.penalty,
                    decided_by=actor.id, decided_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise Conflict("concurrent_decision", "payment was decided by someone else")
        log_audit(db, actor, "gnpl.payment_approve", "gnpl_payment", p.id, {
            "account": a.id, "principal": str(split.principal), "penalty": str(split.penalty),
        })
        db.commit()
    except DomainError:
        db.rollback()
        raise
    db.refresh(a)
    db.refresh(p)
    snap = snapshot(a)
    notify(db, a.customer_id, "gnpl_payment_approved", {
        "reference": p.reference, "outstanding": str(snap.total_outstanding), "currency": settings.CURRENCY,
    })
    if a.status == "paid":
        notify(db, a.customer_id, "gnpl_paid", {})
    return snap


def reject_payment(db: Session, payment_id: str, actor: User, reason: str | None = None) -> GnplPayment:
    require(actor, "gnpl.manage")
    reason = (reason or "").strip() or "No reason provided"
    res = db.execute(
        update(GnplPayment)
        .where(GnplPayment.id == payment_id, GnplPayment.status == "pending")
        .values(status="rejected", rejection_reason=reason, decided_by=actor.id, decided_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.rollback()
        p = db.get(GnplPayment, payment_id)
        if not p:
            raise NotFound("gnpl_payment_not_found", "payment not found")
        raise Conflict("payment_already_decided", f"payment is {p.status}")
    log_audit(db, actor, "gnpl.payment_reject", "gnpl_payment", payment_id, {"reason": reason})
    db.commit()
    p = db.get(GnplPayment, payment_id)
    db.refresh(p)
    notify(db, p.customer_id, "gnpl_payment_rejected", {"reference": p.reference, "reason": reason})
    return p


def accrue_penalties(db: Session, today: date | None = None) -> dict:
    """Charge every whole penalty period not yet charged. Safe to run repeatedly."""
    policy = get_gnpl_policy(db)
    today = today or utcnow().date()
    accounts = list(
        db.execute(
            select(GnplAccount)
            .where(GnplAccount.status.in_(PAYABLE_STATUSES), GnplAccount.due_date < today)
            .with_for_update()
        ).scalars()
    )
    charged, flipped = 0, []
    for a in accounts:
        if a.status == "active":
            a.status = "overdue"
            flipped.append(a)
        periods = elapsed_penalty_periods(a.due_date, today, a.penalty_period_days)
        new_periods = periods - (a.penalty_periods_applied or 0)
        if new_periods <= 0:
            continue
        pct = Decimal(a.penalty_percent or 0)
        if policy.penalty_enabled and pct > 0:
            for _ in range(new_periods):
                outstanding = max(ZERO, money(a.principal_amount) - money(a.principal_paid))
                a.penalty_accrued = money(a.penalty_accrued) + money(outstanding * pct / Decimal("100"))
            charged += 1
            log_audit(db, None, "gnpl.penalty", "gnpl_account", a.id, {
                "periods": new_periods, "penalty_accrued": str(a.penalty_accrued),
            })
        # Periods skipped while penalties are disabled are not charged later.
        a.penalty_periods_applied = periods
    db.commit()
    for a in flipped:
        notify(db, a.customer_id, "gnpl_overdue", {
            "outstanding": str(snapshot(a).total_outstanding), "currency": settings.CURRENCY,
        })
    logger.info("gnpl penalties: %d account(s) checked, %d charged, %d now overdue", len(accounts), charged, len(flipped))
    return {"checked": len(accounts), "charged": charged, "overdue": len(flipped)}


def reminder_cycle(account: GnplAccount, today: date) -> date:
    """The due date a reminder on `today` belongs to; every penalty period past due starts a new cycle."""
    periods = elapsed_penalty_periods(account.due_date, today, account.penalty_period_days)
    return account.due_date + timedelta(days=periods * account.penalty_period_days)


def send_due_reminders(db: Session, today: date | None = None) -> dict:
    policy = get_gnpl_policy(db)
    if not policy.reminder_enabled:
        return {"skipped": True, "reason": "reminders_disabled"}
    today = today or utcnow().date()
    horizon = today + timedelta(days=policy.reminder_days_before)
    accounts = list(
        db.execute(
            select(GnplAccount).where(GnplAccount.status.in_(PAYABLE_STATUSES), GnplAccount.due_date <= horizon)
        ).scalars()
    )
    due = []
    for a in accounts:
        cycle = reminder_cycle(a, today)
        if a.reminder_due_date == cycle:
            continue
        a.reminder_due_date = cycle
        a.reminder_last_sent_on = today
        due.append(a)
    db.commit()
    for a in due:
        notify(db, a.customer_id, "gnpl_reminder", {
            "outstanding": str(snapshot(a).total_outstanding),
            "currency": settings.CURRENCY,
            "due_date": a.due_date.isoformat(),
        })
    return {"checked": len(accounts), "reminded": len(due)}


def customer_accounts(db: Session, customer_id: str) -> list[GnplAccount]:
    return list(
        db.execute(
            select(GnplAccount).where(GnplAccount.customer_id == customer_id).order_by(GnplAccount.created_at.desc())
        ).scalars()
    )


def list_accounts(db: Session, status: str | None = None, limit: int = 100) -> list[GnplAccount]:
    stmt = select(GnplAccount).order_by(GnplAccount.created_at.desc()).limit(min(limit, 500))
    if status:
        stmt = stmt.where(GnplAccount.status == status)
    return list(db.execute(stmt).scalars())


def account_payments(db: Session, account_id: str) -> list[GnplPayment]:
    return list(
        db.execute(
            select(GnplPayment).where(GnplPayment.account_id == account_id).order_by(GnplPayment.created_at.asc())
        ).scalars()
    )
