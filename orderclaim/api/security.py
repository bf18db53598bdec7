"""
JWT bearer tokens.

Drivers authenticate with a token whose ``sub`` is their driver id; that
id is the only identity the claim / reject operations trust.  Admin
tokens carry ``role: admin``.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from orderclaim.config import settings


def create_access_token(
    subject: str,
    role: str = "driver",
    expires_delta: Optional[timedelta] = None,
) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    payload = {"sub": subject, "role": role, "exp": expire}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Return the payload of a valid token, ``None`` otherwise."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
