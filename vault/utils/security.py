"""
JWT helpers.

Access tokens are issued by the external auth service with the user id as
``sub``; this service only validates them. ``create_access_token`` exists for
service-to-service calls and tests.
"""
import hmac
from datetime import datetime, timedelta
from typing import Optional

from jose import JWTError, jwt

from vault.config import get_settings
from vault.schemas.user import TokenPayload


def create_access_token(
    user_id: int,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        user_id: User ID to encode in the token
        expires_delta: Optional expiration time delta

    Returns:
        Encoded JWT token string
    """
    settings = get_settings()
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.access_token_expire_minutes)

    to_encode = {
        "sub": str(user_id),  # JWT subject must be a string
        "exp": datetime.utcnow() + expires_delta,
    }
    return jwt.encode(
        to_encode,
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )


def decode_access_token(token: str) -> Optional[TokenPayload]:
    """
    Decode and validate a JWT access token.

    Args:
        token: JWT token string

    Returns:
        TokenPayload if valid, None if invalid
    """
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
        user_id = payload.get("sub")
        exp = payload.get("exp")
        if user_id is None or exp is None:
            return None
        return TokenPayload(
            sub=int(user_id),
            exp=datetime.utcfromtimestamp(exp),
        )
    except (JWTError, ValueError, TypeError):
        return None


def verify_shared_secret(provided: Optional[str], expected: str) -> bool:
    """Constant-time comparison for scheduler trigger secrets. Empty expected never matches."""
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())
