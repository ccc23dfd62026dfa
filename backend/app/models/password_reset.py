"""
PasswordResetPin ORM model.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, CreatedAtMixin, UUIDMixin


class PasswordResetPin(Base, UUIDMixin, CreatedAtMixin):
    """Six-digit PIN mailed to the user. Must be verified before use; deleted on use."""

    __tablename__ = "password_reset_pins"

    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    pin: Mapped[str] = mapped_column(String(6), nullable=False)
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<PasswordResetPin email={self.email!r} verified={self.verified}>"
