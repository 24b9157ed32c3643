import uuid
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tickethub.core.errors import ValidationFailed, NotFound
from tickethub.models.customer import Customer


def get_or_create_customer(db: Session, chat_id: str, full_name: str = "", phone: str = "") -> Customer:
    chat_id = str(chat_id or "").strip()
    if not chat_id:
        raise ValidationFailed("customer_required", "customer chat id is required")
    c = db.execute(select(Customer).where(Customer.chat_id == chat_id)).scalar_one_or_none()
    if c:
        changed = False
        if full_name and c.full_name != full_name:
            c.full_name = full_name
            changed = True
        if phone and c.phone != phone:
            c.phone = phone
            changed = True
        if changed:
            db.commit()
        return c
    c = Customer(id=str(uuid.uuid4()), chat_id=chat_id, full_name=full_name or "", phone=phone or "")
    db.add(c)
    try:
        db.commit()
    except IntegrityError:
        # Created by a concurrent request for the same chat user
        db.rollback()
        c = db.execute(select(Customer).where(Customer.chat_id == chat_id)).scalar_one()
    return c


def find_customer(db: Session, chat_id: str) -> Customer:
    c = db.execute(select(Customer).where(Customer.chat_id == str(chat_id or "").strip())).scalar_one_or_none()
    if not c:
        raise NotFound("customer_not_found", "customer not found")
    return c
