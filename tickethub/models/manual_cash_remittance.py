from sqlalchemy import String, DateTime, Numeric, Text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from decimal import Decimal
from tickethub.db.session import Base

class ManualCashRemittance(Base):
    __tablename__ = "manual_cash_remittances"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    submitted_by: Mapped[str] = mapped_column(String(36), index=True)
    method: Mapped[str] = mapped_column(String(20))  # cash_handover, bank_deposit

    # Snapshot of the operator's position when submitted
    total_cash_sold: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    already_remitted: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    outstanding_before: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    remitted_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))

    bank_receipt_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)  # pending, approved, rejected
    decided_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
