import json
import logging
from dataclasses import dataclass, asdict, fields, replace
from decimal import Decimal
from sqlalchemy.orm import Session

from tickethub.core.config import settings
from tickethub.core.errors import ValidationFailed
from tickethub.core.money import to_decimal
from tickethub.models.setting import Setting

logger = logging.getLogger(__name__)

GNPL_POLICY_KEY = "GNPL_POLICY"
RECEIPT_POLICY_KEY = "RECEIPT_POLICY"


@dataclass(frozen=True)
class GnplPolicy:
    enabled: bool
    require_approval: bool
    term_days: int
    penalty_enabled: bool
    penalty_percent: Decimal
    penalty_period_days: int
    reminder_enabled: bool
    reminder_days_before: int
    allocation_order: str  # penalty_first | principal_first


@dataclass(frozen=True)
class ReceiptPolicy:
    strict: bool
    max_file_mb: int


def default_gnpl_policy() -> GnplPolicy:
    return GnplPolicy(
        enabled=settings.GNPL_ENABLED,
        require_approval=settings.GNPL_REQUIRE_ADMIN_APPROVAL,
        term_days=settings.GNPL_TERM_DAYS,
        penalty_enabled=settings.GNPL_PENALTY_ENABLED,
        penalty_percent=settings.GNPL_PENALTY_PERCENT,
        penalty_period_days=settings.GNPL_PENALTY_PERIOD_DAYS,
        reminder_enabled=settings.GNPL_REMINDER_ENABLED,
        reminder_days_before=settings.GNPL_REMINDER_DAYS_BEFORE,
        allocation_order=settings.GNPL_ALLOCATION_ORDER,
    )


def default_receipt_policy() -> ReceiptPolicy:
    return ReceiptPolicy(strict=settings.RECEIPT_STRICT_VALIDATION, max_file_mb=settings.RECEIPT_MAX_FILE_MB)


def _load_json(db: Session, key: str) -> dict:
    s = db.get(Setting, key)
    if s and s.str_value:
        try:
            data = json.loads(s.str_value)
            return data if isinstance(data, dict) else {}
        except (json.JSONDecodeError, TypeError):
            logger.warning("setting %s holds invalid JSON, using defaults", key)
    return {}


def _store_json(db: Session, key: str, data: dict, actor_id: str | None = None):
    s = db.get(Setting, key)
    payload = json.dumps(data, default=str)
    if not s:
        db.add(Setting(key=key, int_value=None, str_value=payload, updated_by=actor_id))
    else:
        s.str_value = payload
        s.updated_by = actor_id


def _coerce_gnpl(data: dict, base: GnplPolicy) -> GnplPolicy:
    names = {f.name for f in fields(GnplPolicy)}
    known = {k: v for k, v in data.items() if k in names}
    try:
        if "penalty_percent" in known:
            known["penalty_percent"] = to_decimal(known["penalty_percent"])
        for k in ("term_days", "penalty_period_days", "reminder_days_before"):
            if k in known:
                known[k] = int(known[k])
        for k in ("enabled", "require_approval", "penalty_enabled", "reminder_enabled"):
            if k in known:
                known[k] = bool(known[k])
    except (TypeError, ValueError) as e:
        raise ValidationFailed("invalid_setting", f"invalid GNPL setting: {e}")
    return replace(base, **known)


def get_gnpl_policy(db: Session) -> GnplPolicy:
    stored = _load_json(db, GNPL_POLICY_KEY)
    if not stored:
        return default_gnpl_policy()
    try:
        return _coerce_gnpl(stored, default_gnpl_policy())
    except ValidationFailed:
        logger.warning("stored GNPL policy is invalid, using defaults")
        return default_gnpl_policy()


def set_gnpl_policy(db: Session, updates: dict, actor_id: str | None = None) -> GnplPolicy:
    policy = _coerce_gnpl(updates, get_gnpl_policy(db))
    if policy.term_days < 1:
        raise ValidationFailed("invalid_setting", "term_days must be >= 1")
    if policy.penalty_period_days < 1:
        raise ValidationFailed("invalid_setting", "penalty_period_days must be >= 1")
    if policy.penalty_percent < 0 or policy.penalty_percent > 100:
        raise ValidationFailed("invalid_setting", "penalty_percent must be between 0 and 100")
    if policy.reminder_days_before < 0:
        raise ValidationFailed("invalid_setting", "reminder_days_before must be >= 0")
    if policy.allocation_order not in ("penalty_first", "principal_first"):
        raise ValidationFailed("invalid_setting", "allocation_order must be penalty_first or principal_first")
    _store_json(db, GNPL_POLICY_KEY, asdict(policy), actor_id)
    db.commit()
    return policy


def get_receipt_policy(db: Session) -> ReceiptPolicy:
    stored = _load_json(db, RECEIPT_POLICY_KEY)
    base = default_receipt_policy()
    strict = stored.get("strict", base.strict)
    max_mb = stored.get("max_file_mb", base.max_file_mb)
    try:
        return ReceiptPolicy(strict=bool(strict), max_file_mb=max(1, int(max_mb)))
    except (TypeError, ValueError):
        return base


def set_receipt_policy(db: Session, strict: bool | None = None, max_file_mb: int | None = None,
                       actor_id: str | None = None) -> ReceiptPolicy:
    current = get_receipt_policy(db)
    if max_file_mb is not None and max_file_mb < 1:
        raise ValidationFailed("invalid_setting", "max_file_mb must be >= 1")
    policy = ReceiptPolicy(
        strict=current.strict if strict is None else bool(strict),
        max_file_mb=current.max_file_mb if max_file_mb is None else int(max_file_mb),
    )
    _store_json(db, RECEIPT_POLICY_KEY, asdict(policy), actor_id)
    db.commit()
    return policy


CASH_APPROVER_ROLE_KEY = "MANUAL_CASH_APPROVER_ROLE"
OPERATOR_ROLES = ("ops", "finance", "admin", "superadmin")


def get_cash_approver_role(db: Session) -> str:
    s = db.get(Setting, CASH_APPROVER_ROLE_KEY)
    role = (s.str_value or "").strip().lower() if s else ""
    return role or settings.MANUAL_CASH_APPROVER_ROLE


def set_cash_approver_role(db: Session, role: str, actor_id: str | None = None) -> str:
    role = (role or "").strip().lower()
    if role not in OPERATOR_ROLES:
        raise ValidationFailed("invalid_setting", f"role must be one of {', '.join(OPERATOR_ROLES)}")
    s = db.get(Setting, CASH_APPROVER_ROLE_KEY)
    if not s:
        db.add(Setting(key=CASH_APPROVER_ROLE_KEY, int_value=None, str_value=role, updated_by=actor_id))
    else:
        s.str_value = role
        s.updated_by = actor_id
    db.commit()
    return role
