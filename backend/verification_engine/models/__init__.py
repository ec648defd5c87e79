"""SQLAlchemy ORM models for the verification engine.

    from verification_engine.models import VerificationCode
"""

from verification_engine.models.base import Base, TimestampMixin
from verification_engine.models.verification_code import (
    MAX_CODE_LENGTH,
    VerificationCode,
    VerificationPurpose,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "MAX_CODE_LENGTH",
    "VerificationCode",
    "VerificationPurpose",
]
