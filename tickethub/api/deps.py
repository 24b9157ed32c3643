from typing import NoReturn
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from sqlalchemy.orm import Session
from tickethub.db.session import get_db
from tickethub.core.errors import DomainError
from tickethub.core.permissions import can
from tickethub.core.security import decode_token
from tickethub.models.user import User

bearer = HTTPBearer(auto_error=False)

def raise_http(e: DomainError) -> NoReturn:
    raise HTTPException(status_code=e.status_code, detail=e.to_dict())

def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: Session = Depends(get_db),
) -> User:
    if not creds:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = decode_token(creds.credentials)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token")
    user = db.get(User, payload.get("sub"))
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return user

def require_permission(action: str):
    def _guard(user: User = Depends(get_current_user)) -> User:
        if not can(user, action):
            raise HTTPException(status_code=403, detail={"error": "forbidden", "message": f"not allowed to {action}"})
        return user
    return _guard
