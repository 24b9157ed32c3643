from sqlalchemy import String, Integer, Date, DateTime, Numeric, Text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import date, datetime, timezone
from decimal import Decimal
from tickethub.db.session import Base

class Receipt(Base):
    __tablename__ = "receipts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    # Stored reference: normalized base plus a six digit suffix.
    reference_number: Mapped[str] = mapped_column(String(120), unique=True, index=True)
    # Upper-cased base reference; the unique index is what stops double spending.
    reference_key: Mapped[str] = mapped_column(String(100), unique=True, index=True)

    customer_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    trip_id: Mapped[str] = mapped_column(String(36), index=True)
    session_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    payment_method: Mapped[str] = mapped_column(String(20), index=True)  # bank, telebirr, telebirr_auto, cash, gnpl
    quantity: Mapped[int] = mapped_column(Integer, default=1)

    base_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    discount_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    discount_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    final_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    currency: Mapped[str] = mapped_column(String(3), default="ETB")

    attachment_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    attachment_mime: Mapped[str | None] = mapped_column(String(64), nullable=True)
    attachment_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    receipt_hash: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    receipt_link: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    receipt_provider: Mapped[str | None] = mapped_column(String(40), nullable=True)
    receipt_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    validation_mode: Mapped[str] = mapped_column(String(10), default="lenient")  # strict | lenient
    validation_score: Mapped[int] = mapped_column(Integer, default=0)
    validation_flags: Mapped[str] = mapped_column(Text, default="[]")  # JSON list

    approval_status: Mapped[str] = mapped_column(String(20), default="pending", index=True)  # pending, approved, rejected
    approval_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    sold_by: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)  # operator for manual sales
    buyer_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    buyer_phone: Mapped[str | None] = mapped_column(String(40), nullable=True)
    gnpl_account_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)
