"""Bearer token verification.

Tokens are issued by the marketplace's identity provider; this service only
verifies the signature and trusts the ``sub`` claim as the caller's user id.
"""

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from auction_service.core.config import settings


def create_access_token(subject: str, expires_minutes: int = 60) -> str:
    """Create a signed access token (used by tests and local tooling)."""
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    payload = {"sub": subject, "exp": expire}
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Decode and verify a JWT access token.

    Returns:
        Token payload, or None if the token is invalid or expired
    """
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except jwt.PyJWTError:
        return None
