from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from jose import jwt

from app.db import settings


def create_access_token(data: Dict[str, Any], expires_minutes: int | None = None) -> str:
    """Sign a platform-style token. Production tokens come from the auth
    provider; this is used by the seed script and the tests."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or settings.access_token_expire_minutes
    )
    to_encode.update({"exp": expire})
    if settings.auth_audience and "aud" not in to_encode:
        to_encode["aud"] = settings.auth_audience
    return jwt.encode(to_encode, settings.auth_secret, algorithm=settings.auth_algorithm)


def decode_access_token(token: str) -> Dict[str, Any]:
    options = {"verify_aud": bool(settings.auth_audience)}
    return jwt.decode(
        token,
        settings.auth_secret,
        algorithms=[settings.auth_algorithm],
        audience=settings.auth_audience,
        options=options,
    )
