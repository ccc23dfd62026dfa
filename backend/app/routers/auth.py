"""
Authentication endpoints.

Register, login, refresh, logout, PIN-based password reset, me.
"""

from __future__ import annotations

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.dependencies import get_access_claims, get_current_user, get_redis
from app.core.security import TokenClaims
from app.models.user import User
from app.schemas.auth import (
    ForgotPasswordRequest,
    LoginRequest,
    LogoutRequest,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenResponse,
    VerifyPinRequest,
)
from app.services.auth_service import AuthService

router = APIRouter()


def get_auth_service(
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> AuthService:
    return AuthService(db=db, redis=redis)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

@router.post(
    "/register",
    response_model=TokenResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new user",
)
async def register(
    data: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    """Email must be unused. Password needs 8+ characters including a digit."""
    return await service.register(data)


@router.post("/login", response_model=TokenResponse, summary="Login with email and password")
async def login(
    data: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    return await service.login(data)


@router.post("/refresh", response_model=TokenResponse, summary="Rotate the token pair")
async def refresh(
    data: RefreshRequest,
    service: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    return await service.refresh(data.refresh_token)


@router.post(
    "/logout",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Revoke the current access token",
)
async def logout(
    data: LogoutRequest | None = None,
    claims: TokenClaims = Depends(get_access_claims),
    service: AuthService = Depends(get_auth_service),
) -> None:
    """Also drops the refresh token when the body carries one."""
    await service.logout(claims, data.refresh_token if data else None)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------

@router.post(
    "/forgot-password",
    response_model=MessageResponse,
    summary="Request a password reset PIN",
)
async def forgot_password(
    data: ForgotPasswordRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Same answer whether or not the address is registered."""
    await service.forgot_password(data.email)
    return MessageResponse(message="If that email is registered, a reset PIN has been sent")


@router.post("/verify-pin", response_model=MessageResponse, summary="Verify a reset PIN")
async def verify_pin(
    data: VerifyPinRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    await service.verify_pin(data)
    return MessageResponse(message="PIN verified")


@router.post(
    "/reset-password",
    response_model=MessageResponse,
    summary="Set a new password with a verified PIN",
)
async def reset_password(
    data: ResetPasswordRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    await service.reset_password(data)
    return MessageResponse(message="Password updated")


# ---------------------------------------------------------------------------
# Me
# ---------------------------------------------------------------------------

@router.get("/me", response_model=MeResponse, summary="Get current user profile")
async def get_me(
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> MeResponse:
    return await service.get_me(current_user)
