"""
Authentication: JWT bearer tokens issued by /api/auth/login and /api/auth/register.

- Mutating ad endpoints require a user (get_current_user).
- Read endpoints accept anonymous callers (get_optional_user); ownership then decides visibility.
"""

import logging
import uuid
from typing import Optional
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from marketplace.database import get_db
from marketplace.models import User
from marketplace.services.auth_service import decode_access_token

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


async def _user_from_token(token: str, db: AsyncSession) -> Optional[User]:
    payload = decode_access_token(token)
    if not payload or not payload.get("sub"):
        return None
    try:
        user_id = uuid.UUID(payload["sub"])
    except ValueError:
        return None
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Require a valid JWT and return the User from DB."""
    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Missing authorization. Include header: Authorization: Bearer <token>",
        )

    user = await _user_from_token(credentials.credentials, db)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid or expired token. Please log in again.")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="Account is disabled")

    return user


async def get_optional_user(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> Optional[User]:
    """Like get_current_user, but anonymous or bad tokens yield None instead of 401."""
    if not credentials:
        return None
    user = await _user_from_token(credentials.credentials, db)
    if user and not user.is_active:
        return None
    return user
