"""
Credentials and session tokens.

bcrypt password hashes, signed JWT access/refresh pairs, the Redis ledger
that makes refresh tokens single-use and access tokens revocable, and the
random secrets behind reset PINs and invitation links.
"""

from __future__ import annotations

import enum
import secrets
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import bcrypt
import redis.asyncio as aioredis
from jose import JWTError, jwt

from app.core.config import settings

BCRYPT_ROUNDS = 12
# bcrypt ignores everything past 72 bytes; newer releases raise instead
BCRYPT_MAX_BYTES = 72


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------

def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(_password_bytes(password), salt).decode("ascii")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_password_bytes(password), password_hash.encode("ascii"))
    except ValueError:
        # Malformed stored hash
        return False


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

class TokenKind(str, enum.Enum):
    access = "access"
    refresh = "refresh"

    @property
    def lifetime(self) -> timedelta:
        if self is TokenKind.access:
            return timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
        return timedelta(days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS)


@dataclass(frozen=True)
class TokenClaims:
    """The claims Teamboard reads back out of a verified token."""

    user_id: uuid.UUID
    jti: str
    kind: TokenKind
    expires_at: datetime

    @property
    def ttl_seconds(self) -> int:
        remaining = (self.expires_at - datetime.now(UTC)).total_seconds()
        return max(1, int(remaining))


def issue_token(user_id: uuid.UUID | str, kind: TokenKind) -> tuple[str, TokenClaims]:
    """Sign a new token of `kind` for the user. Returns (encoded, claims)."""
    now = datetime.now(UTC)
    claims = TokenClaims(
        user_id=uuid.UUID(str(user_id)),
        jti=str(uuid.uuid4()),
        kind=kind,
        expires_at=now + kind.lifetime,
    )
    payload = {
        "sub": str(claims.user_id),
        "jti": claims.jti,
        "type": kind.value,
        "iat": now,
        "exp": claims.expires_at,
    }
    encoded = jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    return encoded, claims


def read_token(token: str, kind: TokenKind) -> TokenClaims:
    """
    Verify signature, expiry and type.

    Raises:
        JWTError: for any token that is not a live `kind` token.
    """
    payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    if payload.get("type") != kind.value:
        raise JWTError(f"Not an {kind.value} token")
    try:
        return TokenClaims(
            user_id=uuid.UUID(payload["sub"]),
            jti=str(payload["jti"]),
            kind=kind,
            expires_at=datetime.fromtimestamp(payload["exp"], UTC),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise JWTError("Malformed token claims") from exc


# ---------------------------------------------------------------------------
# Redis ledger
# ---------------------------------------------------------------------------

class TokenLedger:
    """
    Server-side token state.

    A refresh token is usable only while its `refresh:{user}:{jti}` key
    exists; consuming it deletes the key. A revoked access token leaves a
    `blacklist:{jti}` key until it would have expired anyway.
    """

    def __init__(self, redis: aioredis.Redis) -> None:
        self.redis = redis

    @staticmethod
    def refresh_key(claims: TokenClaims) -> str:
        return f"refresh:{claims.user_id}:{claims.jti}"

    @staticmethod
    def revoked_key(jti: str) -> str:
        return f"blacklist:{jti}"

    async def remember(self, claims: TokenClaims) -> None:
        await self.redis.setex(self.refresh_key(claims), claims.ttl_seconds, "1")

    async def consume(self, claims: TokenClaims) -> bool:
        """Delete a refresh token's key. False when it was already gone."""
        return bool(await self.redis.delete(self.refresh_key(claims)))

    async def revoke(self, claims: TokenClaims) -> None:
        await self.redis.setex(self.revoked_key(claims.jti), claims.ttl_seconds, "1")

    async def is_revoked(self, claims: TokenClaims) -> bool:
        return bool(await self.redis.exists(self.revoked_key(claims.jti)))


# ---------------------------------------------------------------------------
# One-time secrets
# ---------------------------------------------------------------------------

def generate_reset_pin() -> str:
    """Six random digits, zero padded."""
    return f"{secrets.randbelow(1_000_000):06d}"


def generate_invitation_token() -> str:
    """URL-safe random token for invitation links."""
    return secrets.token_urlsafe(32)
