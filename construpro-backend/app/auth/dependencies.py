from fastapi import Depends, Header, HTTPException, Request, status
from jose import JWTError
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app import models
from app.db import get_db
from app.security import decode_access_token


class TokenData(BaseModel):
    sub: str
    role: str | None = None


def _decode_token(token: str) -> TokenData:
    try:
        payload = decode_access_token(token)
    except JWTError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    sub = payload.get("sub")
    if not sub:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    return TokenData(sub=sub, role=payload.get("role"))


def _bearer(authorization: str | None) -> str:
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1].strip()
        if token:
            return token
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing credentials")


def get_current_user_id(
    request: Request,
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> str:
    user_id = _decode_token(_bearer(authorization)).sub
    request.state.user_id = user_id
    return user_id


def get_current_vendor(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> models.Vendor:
    vendor = (
        db.query(models.Vendor)
        .filter(models.Vendor.user_id == user_id, models.Vendor.is_active.is_(True))
        .first()
    )
    if not vendor:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Perfil de vendedor não encontrado")
    return vendor


def require_admin(
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> str:
    token_data = _decode_token(_bearer(authorization))
    if token_data.role != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not enough permissions")
    return token_data.sub
