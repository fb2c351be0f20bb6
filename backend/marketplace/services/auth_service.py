"""
Auth Service: password hashing and the bearer tokens ad owners authenticate with.
"""

import logging
from datetime import datetime, timezone, timedelta
from functools import lru_cache
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from marketplace.config import get_settings

logger = logging.getLogger(__name__)


@lru_cache
def _pwd_context() -> CryptContext:
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=get_settings().bcrypt_rounds)


def hash_password(password: str) -> str:
    return _pwd_context().hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return _pwd_context().verify(plain, hashed)
    except ValueError:
        # Not a bcrypt hash (e.g. a seeded placeholder)
        return False


def create_access_token(user_id: str, email: str) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "email": email,
        "iat": now,
        "exp": now + timedelta(minutes=settings.access_token_expire_minutes),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Optional[dict]:
    """Claims of a valid, unexpired token; None otherwise."""
    settings = get_settings()
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        logger.debug(f"Rejected access token: {e}")
        return None
