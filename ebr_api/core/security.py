from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from ebr_api.core.settings import get_app_settings

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


# PUBLIC_INTERFACE
def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain password against a hashed password using bcrypt."""
    return _pwd_context.verify(plain_password, hashed_password)


# PUBLIC_INTERFACE
def get_password_hash(password: str) -> str:
    """Hash a password using bcrypt."""
    return _pwd_context.hash(password)


# PUBLIC_INTERFACE
def create_session_token(
    *,
    user_id: str,
    tenant_id: str,
    role: str,
    full_name: Optional[str],
    email: str,
    tenant_slug: Optional[str] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    """
    Create a signed session token carrying the user id (``sub``), role and tenant claims.

    The tenant claim is the only source of tenant scoping for the request.
    """
    settings = get_app_settings()
    now = datetime.now(tz=timezone.utc)
    expire = now + timedelta(minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    payload: Dict[str, Any] = {
        "sub": user_id,
        "tenant_id": tenant_id,
        "tenant_slug": tenant_slug,
        "role": role,
        "full_name": full_name,
        "email": email,
        "iat": now,
        "exp": expire,
        "type": "session",
    }
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


# PUBLIC_INTERFACE
def decode_token(token: str) -> Dict[str, Any]:
    """Decode and validate a JWT; raises JWTError if invalid/expired."""
    settings = get_app_settings()
    return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
