import logging
import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select, update, or_
from sqlalchemy.orm import Session

from tickethub.core.clock import utcnow, as_utc
from tickethub.core.errors import ValidationFailed, NotFound, Conflict
from tickethub.core.money import money, ZERO
from tickethub.models.discount_voucher import DiscountVoucher
from tickethub.models.trip import Trip

logger = logging.getLogger(__name__)

_CODE_STRIP = re.compile(r"[^A-Z0-9_-]")


@dataclass(frozen=True)
class PriceQuote:
    trip_id: str
    quantity: int
    unit_price: Decimal
    base: Decimal
    discount_percent: Decimal
    discount: Decimal
    final: Decimal
    voucher_id: str | None = None
    voucher_code: str | None = None

    def as_dict(self) -> dict:
        return {
            "tripId": self.trip_id,
            "quantity": self.quantity,
            "unitPrice": str(self.unit_price),
            "base": str(self.base),
            "discountPercent": str(self.discount_percent),
            "discount": str(self.discount),
            "final": str(self.final),
            "voucherCode": self.voucher_code,
        }


def normalize_voucher_code(raw: str | None) -> str:
    return _CODE_STRIP.sub("", (raw or "").strip().upper())


def calculate_discount(base, percent) -> tuple[Decimal, Decimal, Decimal]:
    """Return (base, discount, final), each rounded to cents. The discount never exceeds base."""
    base = money(base)
    pct = Decimal(percent or 0)
    if pct < 0:
        pct = Decimal("0")
    discount = min(base, money(base * pct / Decimal("100")))
    final = max(ZERO, money(base - discount))
    return base, discount, final


def check_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationFailed("invalid_quantity", "quantity must be a whole number >= 1")
    return quantity


def resolve_voucher(db: Session, code: str, trip_id: str, now: datetime | None = None,
                    lock: bool = False) -> DiscountVoucher:
    """Find a usable voucher for `trip_id` or raise.

    Unknown, inactive, out-of-scope or not-yet-valid codes are validation failures.
    An exhausted usage limit is a conflict: the same input may have worked a moment ago.
    """
    normalized = normalize_voucher_code(code)
    if not normalized:
        raise ValidationFailed("voucher_invalid", "discount code is empty")
    now = now or utcnow()

    stmt = select(DiscountVoucher).where(DiscountVoucher.code == normalized)
    if lock:
        stmt = stmt.with_for_update()
    v = db.execute(stmt).scalar_one_or_none()
    if not v:
        raise ValidationFailed("voucher_invalid", "discount code not found", code=normalized)
    if not v.is_active:
        raise ValidationFailed("voucher_invalid", "discount code is inactive", code=normalized)
    if v.trip_id and v.trip_id != trip_id:
        raise ValidationFailed("voucher_invalid", "discount code is not valid for this trip", code=normalized)
    if v.valid_from and as_utc(v.valid_from) > now:
        raise ValidationFailed("voucher_invalid", "discount code is not active yet", code=normalized)
    if v.expires_at and as_utc(v.expires_at) <= now:
        raise ValidationFailed("voucher_expired", "discount code has expired", code=normalized)
    if v.usage_limit is not None and v.usage_count >= v.usage_limit:
        raise Conflict("voucher_exhausted", "discount code usage limit reached", code=normalized)
    if Decimal(v.discount_percent or 0) <= 0:
        raise ValidationFailed("voucher_invalid", "discount code has no discount", code=normalized)
    return v


def quote(db: Session, trip_id: str, quantity: int, voucher_code: str | None = None,
          now: datetime | None = None) -> PriceQuote:
    check_quantity(quantity)
    trip = db.get(Trip, trip_id)
    if not trip:
        raise NotFound("trip_not_found", "trip not found")

    unit_price = money(trip.unit_price)
    base = unit_price * quantity
    voucher = None
    # Only an explicitly supplied code can fail; no code means no discount.
    if voucher_code is not None and voucher_code.strip():
        voucher = resolve_voucher(db, voucher_code, trip_id, now=now)

    pct = Decimal(voucher.discount_percent) if voucher else Decimal("0")
    base, discount, final = calculate_discount(base, pct)
    return PriceQuote(
        trip_id=trip_id,
        quantity=quantity,
        unit_price=unit_price,
        base=base,
        discount_percent=pct,
        discount=discount,
        final=final,
        voucher_id=voucher.id if voucher else None,
        voucher_code=voucher.code if voucher else None,
    )


def consume_voucher(db: Session, voucher_id: str) -> None:
    """Atomically take one use of a voucher inside the caller's transaction.

    The guarded UPDATE is the serialization point: when two admissions race for the
    last use, exactly one matches the WHERE clause.
    """
    stmt = (
        update(DiscountVoucher)
        .where(
            DiscountVoucher.id == voucher_id,
            DiscountVoucher.is_active == True,  # noqa: E712
            or_(DiscountVoucher.usage_limit.is_(None), DiscountVoucher.usage_count < DiscountVoucher.usage_limit),
        )
        .values(usage_count=DiscountVoucher.usage_count + 1)
        .execution_options(synchronize_session=False)
    )
    res = db.execute(stmt)
    if res.rowcount != 1:
        logger.info("voucher %s exhausted at consumption", voucher_id)
        raise Conflict("voucher_exhausted", "discount code usage limit reached")
    v = db.get(DiscountVoucher, voucher_id)
    if v is not None:
        db.expire(v, ["usage_count"])
