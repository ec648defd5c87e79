"""Verification code model - short-lived numeric codes.

One live record per (email, purpose). The composite primary key enforces
that in the database, so creation can be an atomic upsert.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from verification_engine.models.base import Base, TimestampMixin

# Widest code the column can hold
MAX_CODE_LENGTH = 12


class VerificationPurpose(str, Enum):
    """Purposes issued by the surrounding application.

    Purpose is an open string; these are the values known to be in use.
    """

    PASSWORD_RESET = "password-reset"
    TWO_FACTOR_LOGIN = "two-factor-login"
    TWO_FACTOR_TOGGLE = "two-factor-toggle"


class VerificationCode(Base, TimestampMixin):
    """Pending verification code for an (email, purpose) pair.

    Entries are single-use and time-limited. Deleted on successful
    verification, on a verification attempt after expiry, or explicitly.

    Attributes:
        email: Normalized (trimmed, lowercased) email address.
        purpose: Flow the code belongs to, e.g. ``"password-reset"``.
        user_id: Caller-supplied correlation id. Not used for lookup.
        code: Plain numeric code to match.
        expires_at: The code is invalid at or after this instant.
        meta: Caller-supplied context (IP, user agent, ...).
        last_sent_at: Set on creation and every resend.
        resend_count: Number of resends since creation.
    """

    __tablename__ = "verification_codes"
    __table_args__ = (Index("ix_verification_codes_expires_at", "expires_at"),)

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        primary_key=True,
    )
    purpose: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        primary_key=True,
    )
    user_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )
    code: Mapped[str] = mapped_column(
        String(MAX_CODE_LENGTH),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    meta: Mapped[dict[str, Any] | None] = mapped_column(
        JSONB(none_as_null=True),
        nullable=True,
    )
    last_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    resend_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )
