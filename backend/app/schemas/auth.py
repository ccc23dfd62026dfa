"""
Authentication schemas.

Request/response models for auth, password reset and profile endpoints.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import AliasChoices, BaseModel, EmailStr, Field, field_validator


# ---------------------------------------------------------------------------
# Register
# ---------------------------------------------------------------------------

class RegisterRequest(BaseModel):
    """Request body for POST /auth/register."""

    full_name: str | None = Field(default=None, min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)

    @field_validator("password")
    @classmethod
    def password_must_contain_number(cls, v: str) -> str:
        if not any(c.isdigit() for c in v):
            raise ValueError("Password must contain at least one number")
        return v


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------

class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""

    email: EmailStr
    password: str = Field(min_length=1)


class TokenResponse(BaseModel):
    """Response for login and token refresh."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(description="Access token TTL in seconds")


# ---------------------------------------------------------------------------
# Refresh / Logout
# ---------------------------------------------------------------------------

class RefreshRequest(BaseModel):
    """Request body for POST /auth/refresh."""

    refresh_token: str


class LogoutRequest(BaseModel):
    """Request body for POST /auth/logout. The refresh token is optional."""

    refresh_token: str | None = None


# ---------------------------------------------------------------------------
# Password reset (PIN flow)
# ---------------------------------------------------------------------------

class ForgotPasswordRequest(BaseModel):
    """Request body for POST /auth/forgot-password."""

    email: EmailStr


class VerifyPinRequest(BaseModel):
    """Request body for POST /auth/verify-pin."""

    email: EmailStr
    pin: str = Field(min_length=6, max_length=6, pattern=r"^\d{6}$")


class ResetPasswordRequest(BaseModel):
    """Request body for POST /auth/reset-password."""

    email: EmailStr
    pin: str = Field(min_length=6, max_length=6)
    # Accepts the camelCase name sent by browser clients
    new_password: str = Field(
        min_length=6,
        max_length=128,
        validation_alias=AliasChoices("new_password", "newPassword"),
    )


class MessageResponse(BaseModel):
    message: str


# ---------------------------------------------------------------------------
# User / profile
# ---------------------------------------------------------------------------

class MeResponse(BaseModel):
    """Response for GET /auth/me and GET /profile."""

    id: UUID
    email: str
    full_name: str | None
    avatar_url: str | None
    timezone: str | None
    display_name: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ProfileUpdateRequest(BaseModel):
    """Request body for PATCH /profile. Only provided fields are changed."""

    full_name: str | None = Field(default=None, max_length=100)
    avatar_url: str | None = Field(default=None, max_length=500)
    timezone: str | None = Field(default=None, max_length=64)
