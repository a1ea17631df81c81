from datetime import datetime, timedelta, timezone
from typing import Iterable

from jose import jwt

from caseforms.core.config import settings


def create_jwt(payload: dict, secret: str, expires_delta: timedelta) -> str:
    now = datetime.now(timezone.utc)
    data = payload.copy()
    data.update({"iat": int(now.timestamp()), "exp": int((now + expires_delta).timestamp())})
    return jwt.encode(data, secret, algorithm="HS256")


def decode_jwt(token: str, secret: str) -> dict:
    return jwt.decode(token, secret, algorithms=["HS256"])


def create_access_token(subject: str, *, email: str | None = None, roles: Iterable[str] = ()) -> str:
    payload = {"sub": str(subject), "email": email, "roles": [str(role) for role in roles]}
    return create_jwt(payload, settings.JWT_SECRET, timedelta(minutes=settings.JWT_TTL_MINUTES))
