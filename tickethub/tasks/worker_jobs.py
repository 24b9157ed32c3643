"""Job bodies, kept apart from Celery so they can run from tests or a shell."""
import logging
from datetime import date

from sqlalchemy.orm import Session
from sqlalchemy.exc import OperationalError, ProgrammingError

from tickethub.db.session import SessionLocal
from tickethub.services import gnpl_service
from tickethub.services.notification_service import process_pending_notifications

logger = logging.getLogger(__name__)


def _run(fn, *args, db: Session | None = None, **kwargs):
    own = db is None
    db = db or SessionLocal()
    try:
        try:
            return fn(db, *args, **kwargs)
        except (ProgrammingError, OperationalError) as e:
            # DB not migrated yet; don't crash the worker.
            db.rollback()
            logger.warning("%s skipped: %s", fn.__name__, e.__class__.__name__)
            return {"skipped": True, "reason": "missing_tables"}
    finally:
        if own:
            db.close()


def accrue_gnpl_penalties(today: date | None = None, db: Session | None = None):
    return _run(gnpl_service.accrue_penalties, today, db=db)


def send_gnpl_reminders(today: date | None = None, db: Session | None = None):
    return _run(gnpl_service.send_due_reminders, today, db=db)


def process_notification_queue(limit: int = 50, db: Session | None = None):
    return _run(process_pending_notifications, limit, db=db)
