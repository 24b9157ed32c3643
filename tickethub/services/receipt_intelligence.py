"""Pure parsing and scoring of customer-submitted payment proof.

Nothing here touches the database. `analyze_receipt` extracts the reference, amount
and date a customer claims, compares them with whatever a provider receipt link
carries, and returns a confidence score plus advisory flags. Under strict mode a
conflict between the two is a blocking error; otherwise it is only recorded.
"""
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from urllib.parse import urlparse, parse_qs

from tickethub.core.errors import ValidationFailed
from tickethub.core.money import money

_REFERENCE_TOKEN = re.compile(r"[A-Za-z0-9_-]{3,80}")

# receipt host -> provider name
KNOWN_PROVIDERS = {
    "transactioninfo.ethiotelecom.et": "telebirr",
    "apps.cbe.com.et": "cbe",
    "cbepay1.cbe.com.et": "cbe_birr",
}

REFERENCE_PARAMS = (
    "ref", "reference", "referenceNumber", "tx_ref", "txref",
    "transaction", "transaction_id", "payment_ref", "paymentReference",
)
AMOUNT_PARAMS = ("amount", "paid", "value")
DATE_PARAMS = ("date", "payment_date", "created_at", "time")

ALLOWED_ATTACHMENT_MIME = {"image/jpeg", "image/jpg", "image/png", "application/pdf"}

_DATE_FORMATS = ("%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y", "%Y/%m/%d")


@dataclass(frozen=True)
class ParsedReceiptLink:
    url: str = ""
    provider: str = "unknown"
    reference: str = ""
    amount: Decimal | None = None
    receipt_date: date | None = None


@dataclass
class ReceiptAnalysis:
    reference: str
    receipt_date: date | None
    link: ParsedReceiptLink
    score: int
    flags: list[str] = field(default_factory=list)
    error: str | None = None  # reference_required | validation_mismatch

    @property
    def ok(self) -> bool:
        return self.error is None


def normalize_reference(raw) -> str:
    """First run of 3-80 reference characters in the input, or ''."""
    text = str(raw or "").strip()
    m = _REFERENCE_TOKEN.search(text)
    return m.group(0) if m else ""


def parse_receipt_date(raw) -> date | None:
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    value = str(raw).strip()
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def _parse_amount(raw: str) -> Decimal | None:
    token = (raw or "").strip().replace(",", "")
    if not token:
        return None
    try:
        value = money(token)
    except ValueError:
        return None
    return value if value > 0 else None


def _first_param(params: dict, names) -> str:
    for name in names:
        values = params.get(name)
        if values and values[0].strip():
            return values[0].strip()
    return ""


def parse_receipt_link(link: str | None) -> ParsedReceiptLink:
    value = (link or "").strip()
    if not value:
        return ParsedReceiptLink()
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return ParsedReceiptLink()

    host = (parsed.hostname or "").lower()
    params = parse_qs(parsed.query)
    provider = KNOWN_PROVIDERS.get(host, "unknown")

    reference = ""
    if provider == "telebirr":
        parts = [p for p in parsed.path.split("/") if p]
        reference = parts[-1] if parts else ""
    elif provider == "cbe":
        reference = _first_param(params, ("id",))
    elif provider == "cbe_birr":
        reference = _first_param(params, ("TID", "tid"))
    if not reference:
        reference = _first_param(params, REFERENCE_PARAMS)

    return ParsedReceiptLink(
        url=value,
        provider=provider,
        reference=normalize_reference(reference),
        amount=_parse_amount(_first_param(params, AMOUNT_PARAMS)),
        receipt_date=parse_receipt_date(_first_param(params, DATE_PARAMS)),
    )


def analyze_receipt(reference_input, link: str | None, receipt_date_input, amount_paid,
                    strict: bool, amount_tolerance: Decimal = Decimal("1.00")) -> ReceiptAnalysis:
    parsed = parse_receipt_link(link)
    typed_reference = normalize_reference(reference_input)
    typed_date = parse_receipt_date(receipt_date_input)
    receipt_date = typed_date or parsed.receipt_date
    flags: list[str] = []
    score = 40

    if parsed.url:
        score += 20
    else:
        flags.append("no_receipt_link")

    if parsed.provider != "unknown":
        score += 20
        flags.append(f"provider:{parsed.provider}")
    elif parsed.url:
        flags.append("unknown_receipt_provider")

    reference = typed_reference or parsed.reference
    if not reference:
        return ReceiptAnalysis("", receipt_date, parsed, 0, flags + ["missing_reference"], "reference_required")

    mismatch = False
    if typed_reference and parsed.reference and typed_reference.upper() != parsed.reference.upper():
        flags.append("reference_mismatch_with_link")
        score -= 20
        mismatch = True
    elif parsed.reference:
        score += 15

    if parsed.amount is not None:
        if abs(money(amount_paid) - parsed.amount) > amount_tolerance:
            flags.append("amount_mismatch_with_link")
            score -= 20
            mismatch = True
        else:
            score += 10

    if receipt_date is None:
        flags.append("missing_receipt_date")
    else:
        score += 5

    score = max(0, min(100, score))
    error = "validation_mismatch" if (mismatch and strict) else None
    return ReceiptAnalysis(reference, receipt_date, parsed, score, flags, error)


def validate_attachment(size: int, mime: str, max_bytes: int, min_bytes: int = 1024) -> str:
    """Check a proof file's declared type and size; returns the normalized mime."""
    mime = (mime or "").strip().lower()
    if mime not in ALLOWED_ATTACHMENT_MIME:
        raise ValidationFailed("attachment_invalid", "receipt file must be JPEG, PNG or PDF")
    if size < min_bytes:
        raise ValidationFailed("attachment_invalid", "receipt file is too small or empty")
    if size > max_bytes:
        raise ValidationFailed("attachment_too_large", f"receipt file exceeds {max_bytes // (1024 * 1024)} MB")
    return "image/jpeg" if mime == "image/jpg" else mime
