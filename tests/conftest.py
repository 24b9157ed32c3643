import os
import uuid
from datetime import date, timedelta
from decimal import Decimal

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("PAYMENT_WEBHOOK_VERIFY", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tickethub.core.config import settings
from tickethub.core.security import create_access_token, hash_password
from tickethub.db.base import Base
from tickethub.db.session import get_db
from tickethub.main import app
from tickethub.models.customer import Customer
from tickethub.models.discount_voucher import DiscountVoucher
from tickethub.models.trip import Trip
from tickethub.models.user import User
from tickethub.services import pricing_service
from tickethub.services.receipt_service import Attachment, submit_receipt
from tickethub.services.session_service import open_session

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 2048


@pytest.fixture()
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)

    # pysqlite needs this to honour SAVEPOINT inside an explicit transaction
    @event.listens_for(eng, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "STORAGE_LOCAL_DIR", str(tmp_path / "files"))
    monkeypatch.setattr(settings, "TELEGRAM_BOT_TOKEN", "")
    monkeypatch.setattr(settings, "GCS_BUCKET_NAME", "")


@pytest.fixture()
def client(db):
    def _override():
        yield db

    app.dependency_overrides[get_db] = _override
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def make_trip(db, name="Lake Langano Weekend", price="500", seats=10, **kw):
    t = Trip(
        id=str(uuid.uuid4()),
        name=name,
        destination=kw.pop("destination", "Langano"),
        unit_price=Decimal(price),
        total_seats=seats,
        available_seats=kw.pop("available", seats),
        status=kw.pop("status", "active"),
        departure_date=kw.pop("departure_date", date.today() + timedelta(days=30)),
        allow_gnpl=kw.pop("allow_gnpl", False),
        **kw,
    )
    db.add(t)
    db.commit()
    return t


def make_customer(db, chat_id=None, name="Abebe Kebede"):
    c = Customer(id=str(uuid.uuid4()), chat_id=chat_id or str(uuid.uuid4().int)[:10], full_name=name, phone="0911000000")
    db.add(c)
    db.commit()
    return c


def make_user(db, role="admin", email=None):
    u = User(
        id=str(uuid.uuid4()),
        email=email or f"{role}-{uuid.uuid4().hex[:6]}@example.com",
        full_name=role.title(),
        role=role,
        password_hash=hash_password("secret123"),
        is_active=True,
    )
    db.add(u)
    db.commit()
    return u


def make_voucher(db, code="SAVE10", percent="10", usage_limit=None, **kw):
    v = DiscountVoucher(
        id=str(uuid.uuid4()),
        code=code,
        discount_percent=Decimal(percent),
        usage_count=kw.pop("usage_count", 0),
        usage_limit=usage_limit,
        is_active=kw.pop("is_active", True),
        **kw,
    )
    db.add(v)
    db.commit()
    return v


def open_manual_session(db, customer, trip, quantity=1, method="bank", voucher=None):
    q = pricing_service.quote(db, trip.id, quantity, voucher)
    s = open_session(db, customer, method, q)
    db.commit()
    return s


def submit(db, customer, session, amount, reference="FT24123ABC", **kw):
    kw.setdefault("attachment", Attachment(data=PNG, mime="image/png", filename="r.png"))
    return submit_receipt(db, customer, amount=amount, reference=reference, session_id=session.id, **kw)


def auth_header(user):
    return {"Authorization": f"Bearer {create_access_token(user.id, role=user.role)}"}
