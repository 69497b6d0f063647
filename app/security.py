from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from app.config import settings


class TokenError(Exception):
    pass


@dataclass(frozen=True)
class Claims:
    user_id: int
    email: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_access_token(
    user_id: int,
    email: str = "",
    expires_minutes: int = 15,
    extra_claims: Optional[Dict[str, Any]] = None,
) -> str:
    """Issue a token in the format the user service hands out."""
    to_encode: Dict[str, Any] = {"user_id": user_id, "email": email}
    if extra_claims:
        to_encode.update(extra_claims)
    to_encode["exp"] = _utcnow() + timedelta(minutes=expires_minutes)
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Claims:
    """
    Validate signature and expiry and return the claims.

    Raises ``TokenError`` for anything that does not carry a positive
    ``user_id``.
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise TokenError("invalid or expired token") from exc

    user_id = payload.get("user_id")
    if isinstance(user_id, bool) or not isinstance(user_id, int) or user_id <= 0:
        raise TokenError("token carries no valid user_id")
    return Claims(user_id=user_id, email=str(payload.get("email") or ""))
