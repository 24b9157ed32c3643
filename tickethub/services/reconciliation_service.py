"""Match bank and telecom statement lines against recorded receipts.

Read-only: nothing here changes a receipt.
"""
import csv
import io
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from tickethub.core.config import settings
from tickethub.core.errors import ValidationFailed
from tickethub.core.money import money, to_decimal, ZERO
from tickethub.models.receipt import Receipt

logger = logging.getLogger(__name__)

MAX_RECEIPTS = 20000
EXPORT_COLUMNS = (
    "receipt_id", "reference_number", "payment_method", "amount_paid", "currency",
    "approval_status", "created_at", "customer_id", "trip_id",
)

_SUFFIX = re.compile(r"-\d{6}$")
_WS = re.compile(r"\s+")


@dataclass(frozen=True)
class StatementLine:
    reference: str
    amount: Decimal


@dataclass
class MethodSummary:
    method: str
    total_count: int = 0
    total_amount: Decimal = ZERO
    approved_count: int = 0
    approved_amount: Decimal = ZERO
    pending_count: int = 0
    pending_amount: Decimal = ZERO

    def add(self, status: str, amount: Decimal) -> None:
        self.total_count += 1
        self.total_amount += amount
        if status == "approved":
            self.approved_count += 1
            self.approved_amount += amount
        elif status == "pending":
            self.pending_count += 1
            self.pending_amount += amount


@dataclass
class ReceiptSummary:
    total: MethodSummary = field(default_factory=lambda: MethodSummary("all"))
    by_method: dict[str, MethodSummary] = field(default_factory=dict)


@dataclass
class LineMatch:
    reference: str
    statement_amount: Decimal
    status: str  # matched, missing, mismatched
    receipt_reference: str | None = None
    recorded_amount: Decimal | None = None
    approval_status: str | None = None
    payment_method: str | None = None


@dataclass
class ReconciliationReport:
    summary: ReceiptSummary
    matches: list[LineMatch]

    def counts(self) -> dict:
        out = {"entries": len(self.matches), "matched": 0, "missing": 0, "mismatched": 0}
        for m in self.matches:
            out[m.status] += 1
        return out


def normalize_statement_reference(value) -> str:
    return _WS.sub("", str(value or "")).upper()


def base_reference(value: str) -> str:
    return _SUFFIX.sub("", value or "")


def _line(reference, amount) -> StatementLine | None:
    ref = normalize_statement_reference(reference)
    try:
        value = to_decimal(amount)
    except ValueError:
        return None
    if not ref or value <= 0:
        return None
    return StatementLine(reference=ref, amount=money(value))


def parse_statement_csv(text: str) -> list[StatementLine]:
    """`reference,amount` rows; a first row mentioning "reference" is taken as a header.

    Rows without a reference or with a non-positive amount are skipped.
    """
    rows = [r for r in csv.reader(io.StringIO(text or "")) if any(c.strip() for c in r)]
    if rows and "reference" in ",".join(rows[0]).lower():
        rows = rows[1:]
    lines = []
    for row in rows:
        parsed = _line(row[0] if row else "", row[1].strip() if len(row) > 1 else "0")
        if parsed:
            lines.append(parsed)
    return lines


def coerce_lines(entries: Iterable[dict]) -> list[StatementLine]:
    lines = []
    for e in entries:
        parsed = _line(e.get("reference"), e.get("amount", 0))
        if parsed:
            lines.append(parsed)
    return lines


def summarize(receipts: Iterable[Receipt]) -> ReceiptSummary:
    summary = ReceiptSummary()
    for r in receipts:
        method = (r.payment_method or "unknown").lower()
        status = (r.approval_status or "").lower()
        amount = money(r.amount_paid or 0)
        summary.total.add(status, amount)
        summary.by_method.setdefault(method, MethodSummary(method)).add(status, amount)
    return summary


def match_lines(receipts: Sequence[Receipt], lines: Iterable[StatementLine],
                tolerance: Decimal | None = None) -> list[LineMatch]:
    """Exact stored reference first, then the reference without its storage suffix."""
    tolerance = money(settings.RECONCILIATION_TOLERANCE if tolerance is None else tolerance)
    exact: dict[str, Receipt] = {}
    by_base: dict[str, Receipt] = {}
    for r in receipts:
        ref = normalize_statement_reference(r.reference_number)
        if not ref:
            continue
        exact.setdefault(ref, r)
        by_base.setdefault(base_reference(ref), r)

    out = []
    for line in lines:
        r = exact.get(line.reference) or by_base.get(base_reference(line.reference))
        if r is None:
            out.append(LineMatch(line.reference, line.amount, "missing"))
            continue
        recorded = money(r.amount_paid or 0)
        status = "mismatched" if abs(recorded - line.amount) > tolerance else "matched"
        out.append(LineMatch(
            reference=line.reference,
            statement_amount=line.amount,
            status=status,
            receipt_reference=r.reference_number,
            recorded_amount=recorded,
            approval_status=r.approval_status,
            payment_method=r.payment_method,
        ))
    return out


def receipts_in_range(db: Session, date_from: date | None = None, date_to: date | None = None,
                      method: str | None = None) -> list[Receipt]:
    if date_from and date_to and date_from > date_to:
        raise ValidationFailed("invalid_date_range", "date_from must not be after date_to")
    stmt = select(Receipt).order_by(Receipt.created_at.desc()).limit(MAX_RECEIPTS)
    if date_from:
        stmt = stmt.where(Receipt.created_at >= datetime.combine(date_from, time.min, tzinfo=timezone.utc))
    if date_to:
        stmt = stmt.where(Receipt.created_at <= datetime.combine(date_to, time.max, tzinfo=timezone.utc))
    if method:
        stmt = stmt.where(Receipt.payment_method == method.strip().lower())
    return list(db.execute(stmt).scalars())


def reconcile(db: Session, date_from: date | None = None, date_to: date | None = None,
              method: str | None = None, lines: Sequence[StatementLine] = ()) -> ReconciliationReport:
    receipts = receipts_in_range(db, date_from, date_to, method)
    report = ReconciliationReport(summary=summarize(receipts), matches=match_lines(receipts, lines))
    logger.info("reconciliation %s..%s method=%s: %d receipt(s), %s",
                date_from, date_to, method or "*", len(receipts), report.counts())
    return report


def export_csv(receipts: Iterable[Receipt]) -> str:
    buf = io.StringIO()
    w = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    w.writerow(EXPORT_COLUMNS)
    for r in receipts:
        w.writerow([
            r.id,
            r.reference_number or "",
            r.payment_method or "",
            f"{money(r.amount_paid or 0):.2f}",
            r.currency or settings.CURRENCY,
            r.approval_status or "",
            r.created_at.isoformat() if r.created_at else "",
            r.customer_id or "",
            r.trip_id or "",
        ])
    return buf.getvalue()
