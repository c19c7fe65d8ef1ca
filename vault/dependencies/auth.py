"""
Authentication dependencies for FastAPI.
"""
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from vault.config import get_settings
from vault.database import get_db
from vault.models.user import User
from vault.utils.security import decode_access_token, verify_shared_secret

logger = logging.getLogger("vault.auth")

# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Dependency to get the current authenticated user.

    Args:
        credentials: Bearer token from request header
        db: Database session

    Returns:
        Current authenticated User

    Raises:
        HTTPException: If token is missing, invalid, or user not found
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not credentials:
        logger.warning("Auth failed", extra={"event": "auth", "reason": "no_token"})
        raise credentials_exception

    token_payload = decode_access_token(credentials.credentials)
    if token_payload is None:
        logger.warning("Auth failed", extra={"event": "auth", "reason": "invalid_or_expired_token"})
        raise credentials_exception

    user = await db.get(User, token_payload.sub)
    if user is None:
        logger.warning(
            "Auth failed",
            extra={"event": "auth", "reason": "user_not_found", "user_id": token_payload.sub},
        )
        raise credentials_exception

    return user


async def get_current_active_user(
    current_user: User = Depends(get_current_user),
) -> User:
    """Dependency to get the current user, rejecting inactive accounts with 403."""
    if not current_user.is_active:
        logger.warning(
            "Inactive user rejected",
            extra={"event": "auth", "reason": "inactive", "user_id": current_user.id},
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user",
        )
    return current_user


async def require_scheduler_secret(
    x_scheduler_secret: Optional[str] = Header(None),
) -> None:
    """Guard for the cron-triggered endpoints."""
    if not verify_shared_secret(x_scheduler_secret, get_settings().auto_sync_secret):
        logger.warning("Scheduler trigger rejected", extra={"event": "auth", "reason": "bad_secret"})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid scheduler secret",
        )
