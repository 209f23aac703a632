"""JWT helpers: tokens are issued by the session service and verified here"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from portal.core.config import settings

DEFAULT_EXPIRE_MINUTES = 60


def create_access_token(
    user_id: int,
    organization_id: int,
    role: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Issue a token carrying the active organization and membership role.

    Production tokens come from the session service; this helper mints
    compatible ones for the test suite and local development.
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "org": organization_id,
        "role": role,
        "exp": now + (expires_delta or timedelta(minutes=DEFAULT_EXPIRE_MINUTES)),
        "iat": now,
    }
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Optional[dict]:
    """Decode a token; None when the signature, expiry or claims are invalid"""
    try:
        payload = jwt.decode(
            token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError:
        return None
    if not payload.get("sub") or payload.get("org") is None or not payload.get("role"):
        return None
    return payload
