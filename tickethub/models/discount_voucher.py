from sqlalchemy import String, Integer, DateTime, Boolean, Numeric, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from decimal import Decimal
from tickethub.db.session import Base

class DiscountVoucher(Base):
    __tablename__ = "discount_vouchers"
    __table_args__ = (
        CheckConstraint("usage_limit IS NULL OR usage_count <= usage_limit", name="ck_vouchers_usage_within_limit"),
        CheckConstraint("usage_count >= 0", name="ck_vouchers_usage_nonneg"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    discount_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2))
    usage_count: Mapped[int] = mapped_column(Integer, default=0)
    usage_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)  # None = unlimited
    trip_id: Mapped[str | None] = mapped_column(String(36), nullable=True)  # None = every trip
    valid_from: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
