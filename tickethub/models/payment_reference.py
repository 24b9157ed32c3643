from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from tickethub.db.session import Base

class PaymentReference(Base):
    """One row per bank or telecom reference ever consumed, by any ledger."""
    __tablename__ = "payment_references"

    # Upper-cased base reference, as produced by receipt_service.reference_key
    reference_key: Mapped[str] = mapped_column(String(100), primary_key=True)
    source: Mapped[str] = mapped_column(String(20))  # receipt, gnpl_payment
    source_id: Mapped[str] = mapped_column(String(36), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
