from sqlalchemy import String, Integer, Date, DateTime, Numeric, Text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import date, datetime, timezone
from decimal import Decimal
from tickethub.db.session import Base

OPEN_ACCOUNT_STATUSES = ("pending_approval", "active", "overdue")

class GnplAccount(Base):
    __tablename__ = "gnpl_accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    customer_id: Mapped[str] = mapped_column(String(36), index=True)
    trip_id: Mapped[str] = mapped_column(String(36), index=True)
    receipt_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    session_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, default=1)

    principal_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    principal_paid: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    penalty_accrued: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    penalty_paid: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    # Number of whole penalty periods already charged; makes accrual replay-safe.
    penalty_periods_applied: Mapped[int] = mapped_column(Integer, default=0)
    penalty_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))
    penalty_period_days: Mapped[int] = mapped_column(Integer, default=7)

    due_date: Mapped[date] = mapped_column(Date, index=True)
    status: Mapped[str] = mapped_column(String(20), default="pending_approval", index=True)  # pending_approval, active, overdue, paid, rejected

    reminder_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    reminder_last_sent_on: Mapped[date | None] = mapped_column(Date, nullable=True)

    approved_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
