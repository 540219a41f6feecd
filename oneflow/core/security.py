# oneflow/core/security.py
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import bcrypt
from jose import JWTError, jwt

from .config import (
    ACCESS_TOKEN_EXPIRES,
    JWT_ALGORITHM,
    JWT_REFRESH_SECRET,
    JWT_SECRET,
    REFRESH_TOKEN_EXPIRES,
)

ALGORITHM = JWT_ALGORITHM

_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}


@dataclass(frozen=True)
class Principal:
    user_id: int
    role: str
    group_id: int


def parse_expiry(value: str, default: timedelta = timedelta(days=7)) -> timedelta:
    """Turn ``15m`` / ``12h`` / ``7d`` style strings into a timedelta."""
    if not value:
        return default
    unit = _UNITS.get(value[-1])
    if unit is None or not value[:-1].isdigit():
        return default
    return timedelta(**{unit: int(value[:-1])})


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=10)).decode("utf-8")


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        return False


def _encode(principal: Principal, secret: str, lifetime: timedelta, kind: str) -> str:
    payload = {
        "sub": str(principal.user_id),
        "role": principal.role,
        "group_id": principal.group_id,
        "type": kind,
        "exp": datetime.utcnow() + lifetime,
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def _decode(token: str, secret: str, kind: str) -> Optional[Principal]:
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if payload.get("type") != kind:
        return None
    try:
        return Principal(
            user_id=int(payload["sub"]),
            role=payload["role"],
            group_id=int(payload["group_id"]),
        )
    except (KeyError, TypeError, ValueError):
        return None


def create_access_token(principal: Principal) -> str:
    return _encode(principal, JWT_SECRET, parse_expiry(ACCESS_TOKEN_EXPIRES, timedelta(minutes=15)), "access")


def create_refresh_token(principal: Principal) -> str:
    return _encode(principal, JWT_REFRESH_SECRET, parse_expiry(REFRESH_TOKEN_EXPIRES), "refresh")


def authenticate(token: str) -> Optional[Principal]:
    return _decode(token, JWT_SECRET, "access")


def verify_refresh_token(token: str) -> Optional[Principal]:
    return _decode(token, JWT_REFRESH_SECRET, "refresh")
