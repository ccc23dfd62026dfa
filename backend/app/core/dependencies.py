"""
FastAPI dependency injection functions.

Provides the shared Redis client, the verified access-token claims and the
current user. Database sessions come from app.core.database.get_db.
"""

from __future__ import annotations

from uuid import UUID

import redis.asyncio as aioredis
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import AsyncSessionLocal, get_db
from app.core.security import TokenClaims, TokenKind, TokenLedger, read_token
from app.models.user import User

# auto_error=False so a missing header gets our own 401 body
bearer_scheme = HTTPBearer(auto_error=False)

# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------

_redis_pool: aioredis.Redis | None = None


async def get_redis() -> aioredis.Redis:
    """
    Return a shared async Redis client.

    Uses a module-level pool so connections are reused across requests.
    """
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = aioredis.from_url(
            str(settings.REDIS_URL),
            encoding="utf-8",
            decode_responses=True,
        )
    return _redis_pool


# ---------------------------------------------------------------------------
# Bearer tokens
# ---------------------------------------------------------------------------

def _unauthorized(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": code, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def _active_user(db: AsyncSession, user_id: UUID) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None or not user.is_active:
        return None
    return user


async def get_access_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    redis: aioredis.Redis = Depends(get_redis),
) -> TokenClaims:
    """Claims of a valid, unrevoked access token, or 401."""
    if credentials is None:
        raise _unauthorized("MISSING_TOKEN", "Authorization header required")
    try:
        claims = read_token(credentials.credentials, TokenKind.access)
    except JWTError:
        raise _unauthorized("INVALID_TOKEN", "Token is invalid or expired")
    if await TokenLedger(redis).is_revoked(claims):
        raise _unauthorized("TOKEN_REVOKED", "Token has been revoked")
    return claims


async def get_current_user(
    claims: TokenClaims = Depends(get_access_claims),
    db: AsyncSession = Depends(get_db),
) -> User:
    user = await _active_user(db, claims.user_id)
    if user is None:
        raise _unauthorized("USER_NOT_FOUND", "User not found or inactive")
    return user


async def authenticate_ws_token(token: str, redis: aioredis.Redis) -> User | None:
    """
    Resolve a token passed as a WebSocket query parameter.

    Returns None instead of raising so the endpoint can close with 4001.
    Uses its own short session: the socket outlives any request scope.
    """
    try:
        claims = read_token(token, TokenKind.access)
    except JWTError:
        return None
    if await TokenLedger(redis).is_revoked(claims):
        return None
    async with AsyncSessionLocal() as session:
        return await _active_user(session, claims.user_id)
