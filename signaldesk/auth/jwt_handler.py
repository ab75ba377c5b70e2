"""
JWT Session Tokens
Access tokens carried as a bearer header or the session cookie
"""
from jose import jwt, JWTError
from datetime import datetime, timedelta
from fastapi import Cookie, Header
from typing import Optional
import logging

from config import settings
from signaldesk.errors import Unauthenticated

logger = logging.getLogger(__name__)


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create JWT access token

    Args:
        user_id: Profile ObjectId as string
        expires_delta: Override for the configured lifetime

    Returns:
        JWT access token string
    """
    now = datetime.utcnow()
    expire = now + (expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES))

    payload = {
        "sub": user_id,
        "type": "access",
        "exp": expire,
        "iat": now
    }

    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str, token_type: str = "access") -> dict:
    """
    Verify JWT token and return payload

    Raises:
        Unauthenticated: If token is invalid, expired or of the wrong type
    """
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT verification failed: {str(e)}")
        raise Unauthenticated("Invalid authentication token")

    if payload.get("type") != token_type:
        raise Unauthenticated(f"Invalid token type. Expected {token_type}")

    return payload


def _extract_token(authorization: Optional[str], cookie_token: Optional[str]) -> Optional[str]:
    if authorization:
        parts = authorization.split()
        if len(parts) != 2 or parts[0].lower() != "bearer":
            raise Unauthenticated("Invalid authorization header format")
        return parts[1]
    return cookie_token


async def get_current_user_id(
    authorization: Optional[str] = Header(None),
    session_token: Optional[str] = Cookie(None, alias=settings.AUTH_COOKIE_NAME)
) -> str:
    """
    FastAPI dependency to extract the profile id from the session

    Raises:
        Unauthenticated: If no session or an invalid one is presented
    """
    token = _extract_token(authorization, session_token)
    if not token:
        raise Unauthenticated("Please sign in to continue.")

    user_id = verify_token(token, token_type="access").get("sub")
    if not user_id:
        raise Unauthenticated("Invalid token payload")

    return user_id


async def get_optional_user_id(
    authorization: Optional[str] = Header(None),
    session_token: Optional[str] = Cookie(None, alias=settings.AUTH_COOKIE_NAME)
) -> Optional[str]:
    """Same as get_current_user_id but anonymous callers get None"""
    try:
        return await get_current_user_id(authorization, session_token)
    except Unauthenticated:
        return None
