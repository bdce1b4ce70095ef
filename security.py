# security.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt, JWTError

from settings import settings

ROLE_ADMIN = "ADMIN"
ROLE_USER = "USER"

TOKEN_TYPE_ACCESS = "access"


def create_access_token(sub: str, role: str = ROLE_USER, minutes: Optional[int] = None) -> str:
    """Signed bearer token for a referrer (USER) or an operator (ADMIN)."""
    now = datetime.now(timezone.utc)
    ttl = timedelta(minutes=minutes or settings.JWT_ACCESS_MINUTES)
    claims = {
        "sub": str(sub),
        "role": (role or ROLE_USER).upper(),
        "typ": TOKEN_TYPE_ACCESS,
        "iat": int(now.timestamp()),
        "exp": int((now + ttl).timestamp()),
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def decode_token(token: str) -> Dict[str, Any]:
    # empty dict means "not authenticated"; callers never see JWTError
    try:
        claims = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except JWTError:
        return {}
    if claims.get("typ", TOKEN_TYPE_ACCESS) != TOKEN_TYPE_ACCESS:
        return {}
    return claims
