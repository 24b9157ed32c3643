from sqlalchemy import String, Integer, DateTime, Numeric, Index, text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from decimal import Decimal
from tickethub.db.session import Base

OPEN_STATUSES = ("awaiting_receipt", "awaiting_auto_payment")
TERMINAL_STATUSES = ("completed", "cancelled")

_OPEN_FILTER = text("status IN ('awaiting_receipt', 'awaiting_auto_payment')")

class BookingSession(Base):
    __tablename__ = "booking_sessions"
    __table_args__ = (
        # At most one non-terminal session per customer.
        Index(
            "uq_booking_sessions_open_customer",
            "customer_id",
            unique=True,
            postgresql_where=_OPEN_FILTER,
            sqlite_where=_OPEN_FILTER,
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    customer_id: Mapped[str] = mapped_column(String(36), index=True)
    trip_id: Mapped[str] = mapped_column(String(36), index=True)
    payment_method: Mapped[str] = mapped_column(String(20))  # bank, telebirr, telebirr_auto, gnpl
    quantity: Mapped[int] = mapped_column(Integer, default=1)

    discount_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    discount_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))
    voucher_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    base_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    final_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))

    status: Mapped[str] = mapped_column(String(30), default="awaiting_receipt", index=True)
    checkout_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                                                 onupdate=lambda: datetime.now(timezone.utc))
