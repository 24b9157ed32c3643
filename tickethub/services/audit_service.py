import uuid, json
from sqlalchemy.orm import Session
from tickethub.models.audit_log import AuditLog

SYSTEM_ACTOR = "system"

def actor_id(actor) -> str:
    """Audit id for a User, a Customer, a raw id string or None (background jobs)."""
    if actor is None:
        return SYSTEM_ACTOR
    if isinstance(actor, str):
        return actor
    return getattr(actor, "id", None) or SYSTEM_ACTOR

def log_audit(db: Session, actor, action: str, entity_type: str, entity_id: str, details: dict | None = None):
    """Stage an audit row in the caller's transaction; the caller commits."""
    db.add(AuditLog(
        id=str(uuid.uuid4()),
        actor_user_id=actor_id(actor),
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details_json=json.dumps(details or {}, ensure_ascii=False, default=str),
    ))
