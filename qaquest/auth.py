import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .config import Settings, current_settings
from .db import get_db
from .evaluation import positive_int
from .models import User

_log = logging.getLogger(__name__)

ALGORITHM = "HS256"


def extract_token(header_value: Optional[str]) -> Optional[str]:
    if not header_value:
        return None
    candidate = header_value.strip()
    if " " in candidate:
        prefix, token = candidate.split(" ", 1)
        if prefix.lower() != "bearer":
            return None
        candidate = token.strip()
    return candidate or None


def decode_user_id(token: str, secret: str) -> Optional[int]:
    """User id from a verified token (``userId`` claim, falling back to ``sub``)."""
    try:
        claims = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError as err:
        _log.info("token_rejected reason=%s", err)
        return None
    raw = claims.get("userId", claims.get("sub"))
    return positive_int(raw)


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(current_settings),
) -> User:
    token = extract_token(request.headers.get("authorization"))
    if token is None:
        raise HTTPException(status_code=401, detail="missing or invalid token")
    if not settings.jwt_secret:
        _log.error("auth_not_configured JWT_SECRET is empty")
        raise HTTPException(status_code=401, detail="authentication is not configured")
    user_id = decode_user_id(token, settings.jwt_secret)
    if user_id is None:
        raise HTTPException(status_code=401, detail="missing or invalid token")
    user = db.query(User).filter(User.id == user_id).one_or_none()
    if user is None:
        raise HTTPException(status_code=401, detail="user no longer exists")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != "admin":
        raise HTTPException(status_code=403, detail="admin role required")
    return user
