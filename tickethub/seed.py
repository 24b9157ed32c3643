import logging
import uuid

from sqlalchemy.orm import Session
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, ProgrammingError

from tickethub.db.session import SessionLocal
from tickethub.core.config import settings
from tickethub.core.security import hash_password
from tickethub.models.user import User

logger = logging.getLogger(__name__)


def ensure_user(db: Session, email: str, password: str, role: str, name: str) -> bool:
    email = email.strip().lower()
    if db.query(User).filter(User.email == email).first():
        return False
    db.add(
        User(
            id=str(uuid.uuid4()),
            email=email,
            full_name=name,
            role=role,
            password_hash=hash_password(password),
            is_active=True,
        )
    )
    db.commit()
    return True


def run(db=None):
    own = db is None
    if own:
        db = SessionLocal()
    try:
        # If migrations haven't been applied yet, seeding must not crash the API.
        try:
            db.execute(text("SELECT 1 FROM users LIMIT 1"))
        except (ProgrammingError, OperationalError):
            db.rollback()
            logger.warning("users table not found yet, skipping seed (run alembic upgrade head)")
            return
        if not (settings.SEED_ADMIN_EMAIL and settings.SEED_ADMIN_PASSWORD):
            logger.info("SEED_ADMIN_EMAIL/SEED_ADMIN_PASSWORD not set, no operator seeded")
            return
        if ensure_user(db, settings.SEED_ADMIN_EMAIL, settings.SEED_ADMIN_PASSWORD, "superadmin", "Super Admin"):
            logger.info("seeded superadmin %s", settings.SEED_ADMIN_EMAIL)
    finally:
        if own:
            db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run()
