"""
Account and session logic.

Registration, password login, refresh-token rotation, logout, the PIN-based
password reset and the caller's own profile. Routers only map HTTP onto
these calls.
"""

from __future__ import annotations

import logging
from datetime import timedelta

import redis.asyncio as aioredis
from fastapi import HTTPException, status
from jose import JWTError
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.security import (
    TokenClaims,
    TokenKind,
    TokenLedger,
    generate_reset_pin,
    hash_password,
    issue_token,
    read_token,
    verify_password,
)
from app.models.base import as_utc, utcnow
from app.models.password_reset import PasswordResetPin
from app.models.user import User
from app.schemas.auth import (
    LoginRequest,
    MeResponse,
    ProfileUpdateRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenResponse,
    VerifyPinRequest,
)

logger = logging.getLogger(__name__)


def _invalid_credentials() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "INVALID_CREDENTIALS", "message": "Invalid email or password"},
    )


def _invalid_pin() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"code": "INVALID_PIN", "message": "Invalid or expired PIN"},
    )


class AuthService:

    def __init__(self, db: AsyncSession, redis: aioredis.Redis) -> None:
        self.db = db
        self.redis = redis
        self.ledger = TokenLedger(redis)

    # -----------------------------------------------------------------------
    # Sessions
    # -----------------------------------------------------------------------

    async def register(self, data: RegisterRequest) -> TokenResponse:
        email = data.email.lower()
        if await self._user_by_email(email) is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={"code": "EMAIL_TAKEN", "message": "Email is already registered"},
            )

        user = User(email=email, password_hash=hash_password(data.password), full_name=data.full_name)
        self.db.add(user)
        await self.db.flush()

        logger.info("User registered: user_id=%s", user.id)
        return await self._start_session(user)

    async def login(self, data: LoginRequest) -> TokenResponse:
        """Never reveals whether the email or the password was wrong."""
        user = await self._user_by_email(data.email)
        if user is None or not user.password_hash:
            raise _invalid_credentials()
        if not verify_password(data.password, user.password_hash):
            raise _invalid_credentials()
        if not user.is_active:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"code": "ACCOUNT_DISABLED", "message": "Account is disabled"},
            )
        return await self._start_session(user)

    async def refresh(self, refresh_token: str) -> TokenResponse:
        """Rotate a refresh token. Each one can be exchanged exactly once."""
        try:
            claims = read_token(refresh_token, TokenKind.refresh)
        except JWTError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": "INVALID_TOKEN", "message": "Refresh token is invalid or expired"},
            )

        if not await self.ledger.consume(claims):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": "TOKEN_REVOKED", "message": "Refresh token has been revoked"},
            )

        user = await self.db.get(User, claims.user_id)
        if user is None or not user.is_active:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": "USER_NOT_FOUND", "message": "User not found or inactive"},
            )
        return await self._start_session(user)

    async def logout(self, access: TokenClaims, refresh_token: str | None) -> None:
        await self.ledger.revoke(access)
        if not refresh_token:
            return
        try:
            claims = read_token(refresh_token, TokenKind.refresh)
        except JWTError:
            # Already expired or foreign; nothing left to delete
            return
        if claims.user_id == access.user_id:
            await self.ledger.consume(claims)

    async def _start_session(self, user: User) -> TokenResponse:
        access_token, _ = issue_token(user.id, TokenKind.access)
        refresh_token, refresh_claims = issue_token(user.id, TokenKind.refresh)
        await self.ledger.remember(refresh_claims)
        return TokenResponse(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=int(TokenKind.access.lifetime.total_seconds()),
        )

    # -----------------------------------------------------------------------
    # Password reset
    # -----------------------------------------------------------------------

    async def forgot_password(self, email: str) -> None:
        """
        Issue a 6-digit reset PIN and mail it.

        Succeeds silently for unknown addresses. A new PIN replaces any
        earlier one for the same address.
        """
        email = email.lower()
        if await self._user_by_email(email) is None:
            logger.info("Password reset requested for unknown email")
            return

        await self.db.execute(delete(PasswordResetPin).where(PasswordResetPin.email == email))
        pin = generate_reset_pin()
        lifetime = settings.PASSWORD_RESET_PIN_EXPIRE_MINUTES
        self.db.add(PasswordResetPin(email=email, pin=pin, expires_at=utcnow() + timedelta(minutes=lifetime)))
        await self.db.commit()

        from app.workers.email_tasks import send_password_reset_pin_email

        try:
            send_password_reset_pin_email.delay(to_email=email, pin=pin, expire_minutes=lifetime)
        except Exception:
            logger.exception("Failed to enqueue password reset email")

    async def verify_pin(self, data: VerifyPinRequest) -> None:
        """
        Mark the PIN verified.

        Wrong guesses count against PASSWORD_RESET_PIN_MAX_ATTEMPTS and the
        PIN is deleted once they run out.
        """
        record = await self._live_pin(data.email)
        if record.pin == data.pin:
            record.verified = True
            await self.db.flush()
            return

        record.attempts += 1
        if record.attempts >= settings.PASSWORD_RESET_PIN_MAX_ATTEMPTS:
            await self.db.delete(record)
            logger.info("Reset PIN burned after %d attempts", record.attempts)
        # The attempt must survive the error response's rollback
        await self.db.commit()
        raise _invalid_pin()

    async def reset_password(self, data: ResetPasswordRequest) -> None:
        """Needs a verified, unexpired PIN. The PIN is single-use."""
        record = await self._live_pin(data.email)
        if not record.verified or record.pin != data.pin:
            raise _invalid_pin()

        user = await self._user_by_email(data.email)
        if user is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "USER_NOT_FOUND", "message": "User not found"},
            )

        user.password_hash = hash_password(data.new_password)
        await self.db.delete(record)
        await self.db.flush()
        logger.info("Password reset completed: user_id=%s", user.id)

    # -----------------------------------------------------------------------
    # Profile
    # -----------------------------------------------------------------------

    async def get_me(self, user: User) -> MeResponse:
        return MeResponse.model_validate(user)

    async def update_profile(self, user: User, data: ProfileUpdateRequest) -> MeResponse:
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(user, field, value)
        await self.db.flush()
        return MeResponse.model_validate(user)

    # -----------------------------------------------------------------------
    # Lookups
    # -----------------------------------------------------------------------

    async def _user_by_email(self, email: str) -> User | None:
        result = await self.db.execute(select(User).where(User.email == email.lower()))
        return result.scalar_one_or_none()

    async def _live_pin(self, email: str) -> PasswordResetPin:
        result = await self.db.execute(
            select(PasswordResetPin)
            .where(PasswordResetPin.email == email.lower())
            .order_by(PasswordResetPin.created_at.desc())
            .limit(1)
        )
        record = result.scalar_one_or_none()
        if record is None or as_utc(record.expires_at) <= utcnow():
            raise _invalid_pin()
        return record
