from sqlalchemy import String, Integer, Date, DateTime, Boolean, Numeric, Text, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import date, datetime, timezone
from decimal import Decimal
from tickethub.db.session import Base

BOOKABLE_STATUSES = ("active",)

class Trip(Base):
    __tablename__ = "trips"
    __table_args__ = (
        CheckConstraint("available_seats >= 0", name="ck_trips_available_seats_nonneg"),
        CheckConstraint("available_seats <= total_seats", name="ck_trips_available_seats_le_total"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    destination: Mapped[str] = mapped_column(String(200), default="")
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    total_seats: Mapped[int] = mapped_column(Integer)
    available_seats: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(20), default="active", index=True)  # active, cancelled, completed, archived
    departure_date: Mapped[date] = mapped_column(Date, nullable=True)
    allow_gnpl: Mapped[bool] = mapped_column(Boolean, default=False)
    payment_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
