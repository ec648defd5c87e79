"""Verification code lifecycle: issue, resend, verify, delete.

Codes are bound to a normalized (email, purpose) pair. At most one code is
live per pair; issuing a new one supersedes the old.

Failure modes, in the order verification checks them:
1. Missing arguments -> ArgumentMissingError
2. No record -> VerificationNotFoundError
3. Record expired -> record deleted, VerificationExpiredError
4. Code mismatch -> record untouched, InvalidVerificationCodeError
5. Match -> record deleted (single-use), record returned

The service never delivers codes. Callers send the returned code out of
band (email, SMS) after the call returns.
"""

import math
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from verification_engine.core.config import settings
from verification_engine.core.errors import (
    ArgumentMissingError,
    InvalidArgumentError,
    InvalidVerificationCodeError,
    ResendTooSoonError,
    VerificationExpiredError,
    VerificationNotFoundError,
)
from verification_engine.models.verification_code import (
    MAX_CODE_LENGTH,
    VerificationCode,
    VerificationPurpose,
)
from verification_engine.services.code_generator import generate_numeric_code
from verification_engine.services.verification_code_store import (
    VerificationCodeStore,
)

logger = structlog.get_logger()

# One week; also keeps expires_at well inside datetime's range
_MAX_TTL_MINUTES = 7 * 24 * 60


@dataclass(frozen=True)
class IssuedVerificationCode:
    """A freshly issued or reissued code.

    Attributes:
        code: Plain code to deliver to the user. Not logged anywhere.
        expires_at: When the code stops being accepted.
        record: Stored record (detached copy).
    """

    code: str
    expires_at: datetime
    record: VerificationCode


def normalize_email(email: str) -> str:
    """Trim and lowercase an email address."""
    return email.strip().lower()


def _mask_email(email: str) -> str:
    """Mask the local part for logs: ``jane@example.com`` -> ``j***@example.com``."""
    local, sep, domain = email.partition("@")
    if not sep:
        return "***"
    return f"{local[:1]}***@{domain}"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _required(value: Any, name: str) -> str:
    """Return ``value`` as a stripped string, or raise ArgumentMissingError."""
    if isinstance(value, VerificationPurpose):
        value = value.value
    text = str(value).strip() if value is not None else ""
    if not text:
        raise ArgumentMissingError(f"{name} required")
    return text


class VerificationCodeService:
    """Issues and checks verification codes against a store.

    Expiry and cooldown are evaluated against ``now()`` only.
    """

    def __init__(
        self,
        store: VerificationCodeStore,
        *,
        now: Callable[[], datetime] | None = None,
        ttl_minutes: float | None = None,
        code_length: int | None = None,
        resend_interval: timedelta | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            store: Persistence backend.
            now: Clock returning timezone-aware datetimes. Defaults to UTC now.
            ttl_minutes: Default code lifetime. Defaults to settings.
            code_length: Default number of digits. Defaults to settings.
            resend_interval: Minimum gap between sends for a pair.
                Defaults to settings.
        """
        self._store = store
        self._now = now or _utcnow
        self._ttl_minutes = (
            ttl_minutes
            if ttl_minutes is not None
            else settings.verification_code_ttl_minutes
        )
        self._code_length = (
            code_length if code_length is not None else settings.verification_code_length
        )
        self._resend_interval = (
            resend_interval
            if resend_interval is not None
            else timedelta(minutes=settings.verification_resend_interval_minutes)
        )

    # =========================================================================
    # Issuance
    # =========================================================================

    async def create_verification_code(
        self,
        *,
        email: str | None,
        purpose: str | None,
        user_id: str | None = None,
        ttl_minutes: float | None = None,
        code_length: int | None = None,
        meta: dict[str, Any] | None = None,
    ) -> IssuedVerificationCode:
        """Issue a new code, superseding any pending one for the pair.

        Args:
            email: Recipient email (normalized before use).
            purpose: Flow the code is for.
            user_id: Optional caller correlation id.
            ttl_minutes: Lifetime override.
            code_length: Digit count override.
            meta: Optional caller context stored with the record.

        Returns:
            IssuedVerificationCode with the plain code and expiry.

        Raises:
            ArgumentMissingError: If email or purpose is missing.
            InvalidArgumentError: If ttl or code length is out of range.
        """
        email = normalize_email(_required(email, "email"))
        purpose = _required(purpose, "purpose")
        ttl = self._ttl(ttl_minutes)
        length = self._length(code_length)

        now = self._now()
        code = generate_numeric_code(length)
        expires_at = now + ttl

        record = await self._store.replace(
            email=email,
            purpose=purpose,
            code=code,
            expires_at=expires_at,
            sent_at=now,
            user_id=user_id,
            meta=meta,
        )

        logger.info(
            "verification_code_issued",
            email=_mask_email(email),
            purpose=purpose,
            expires_at=expires_at.isoformat(),
        )
        return IssuedVerificationCode(code=code, expires_at=expires_at, record=record)

    # =========================================================================
    # Resend
    # =========================================================================

    async def resend_verification_code(
        self,
        *,
        email: str | None,
        purpose: str | None,
        ttl_minutes: float | None = None,
        code_length: int | None = None,
    ) -> IssuedVerificationCode:
        """Reissue the code for a pending request, subject to the cooldown.

        Only refreshes an existing record; never creates one.

        Args:
            email: Recipient email (normalized before use).
            purpose: Flow the code is for.
            ttl_minutes: Lifetime override for the new code.
            code_length: Digit count override for the new code.

        Returns:
            IssuedVerificationCode with the new plain code and expiry.

        Raises:
            ArgumentMissingError: If email or purpose is missing.
            InvalidArgumentError: If ttl or code length is out of range.
            VerificationNotFoundError: If there is no pending request.
            ResendTooSoonError: If the cooldown has not elapsed.
        """
        email = normalize_email(_required(email, "email"))
        purpose = _required(purpose, "purpose")
        ttl = self._ttl(ttl_minutes)
        length = self._length(code_length)

        now = self._now()
        current = await self._store.get(email=email, purpose=purpose)
        if current is None:
            raise VerificationNotFoundError("no pending request")
        self._raise_if_too_soon(current, now)

        code = generate_numeric_code(length)
        while code == current.code:
            code = generate_numeric_code(length)
        expires_at = now + ttl

        # Cooldown is re-checked in the write itself; another resend may
        # have landed since the read above.
        record = await self._store.refresh_if_due(
            email=email,
            purpose=purpose,
            code=code,
            expires_at=expires_at,
            sent_at=now,
            sent_before=now - self._resend_interval,
        )
        if record is None:
            latest = await self._store.get(email=email, purpose=purpose)
            if latest is None:
                raise VerificationNotFoundError("no pending request")
            self._raise_if_too_soon(latest, now)
            raise ResendTooSoonError(wait_seconds=1)

        logger.info(
            "verification_code_resent",
            email=_mask_email(email),
            purpose=purpose,
            resend_count=record.resend_count,
            expires_at=expires_at.isoformat(),
        )
        return IssuedVerificationCode(code=code, expires_at=expires_at, record=record)

    # =========================================================================
    # Verification
    # =========================================================================

    async def verify_code_for_purpose(
        self,
        *,
        email: str | None,
        purpose: str | None,
        code: str | None,
    ) -> VerificationCode:
        """Check a submitted code and consume the record on success.

        Args:
            email: Email the code was issued to.
            purpose: Flow the code was issued for.
            code: Submitted code. Surrounding whitespace is ignored.

        Returns:
            The consumed record.

        Raises:
            ArgumentMissingError: If email, purpose or code is missing.
            VerificationNotFoundError: If there is no pending code.
            VerificationExpiredError: If the code expired (record deleted).
            InvalidVerificationCodeError: If the code does not match.
        """
        email = normalize_email(_required(email, "email"))
        purpose = _required(purpose, "purpose")
        if code is None or code == "":
            raise ArgumentMissingError("code required")
        submitted = str(code).strip()

        now = self._now()
        record = await self._store.get(email=email, purpose=purpose)
        if record is None:
            raise VerificationNotFoundError("verification code not found")

        if now >= record.expires_at:
            await self._store.delete(email=email, purpose=purpose)
            logger.info(
                "verification_code_expired",
                email=_mask_email(email),
                purpose=purpose,
            )
            raise VerificationExpiredError("verification code expired")

        if not secrets.compare_digest(submitted.encode(), record.code.encode()):
            logger.info(
                "verification_code_invalid",
                email=_mask_email(email),
                purpose=purpose,
            )
            raise InvalidVerificationCodeError("invalid verification code")

        consumed = await self._store.consume(
            email=email, purpose=purpose, code=submitted
        )
        if consumed is None:
            # A concurrent request consumed the record or changed its code
            if await self._store.get(email=email, purpose=purpose) is None:
                raise VerificationNotFoundError("verification code not found")
            raise InvalidVerificationCodeError("invalid verification code")

        logger.info(
            "verification_code_consumed",
            email=_mask_email(email),
            purpose=purpose,
        )
        return consumed

    # =========================================================================
    # Cleanup
    # =========================================================================

    async def delete_verification_codes(
        self,
        *,
        email: str | None,
        purpose: str | None,
    ) -> None:
        """Delete any pending code for the pair.

        No-op when email or purpose is missing, or nothing is stored.

        Args:
            email: Email the code was issued to.
            purpose: Flow the code was issued for.
        """
        try:
            email = normalize_email(_required(email, "email"))
            purpose = _required(purpose, "purpose")
        except ArgumentMissingError:
            return

        deleted = await self._store.delete(email=email, purpose=purpose)
        logger.info(
            "verification_codes_deleted",
            email=_mask_email(email),
            purpose=purpose,
            deleted=deleted,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _ttl(self, ttl_minutes: float | None) -> timedelta:
        minutes = ttl_minutes if ttl_minutes is not None else self._ttl_minutes
        if isinstance(minutes, bool) or not isinstance(minutes, int | float):
            raise InvalidArgumentError(f"ttl_minutes must be a number, got {minutes!r}")
        if not 0 < minutes <= _MAX_TTL_MINUTES:
            raise InvalidArgumentError(
                f"ttl_minutes must be in (0, {_MAX_TTL_MINUTES}], got {minutes!r}"
            )
        return timedelta(minutes=minutes)

    def _length(self, code_length: int | None) -> int:
        length = code_length if code_length is not None else self._code_length
        if isinstance(length, bool) or not isinstance(length, int):
            raise InvalidArgumentError(f"code_length must be an integer, got {length!r}")
        if not 1 <= length <= MAX_CODE_LENGTH:
            raise InvalidArgumentError(
                f"code_length must be between 1 and {MAX_CODE_LENGTH}, got {length}"
            )
        return length

    def _raise_if_too_soon(self, record: VerificationCode, now: datetime) -> None:
        """Raise ResendTooSoonError while the cooldown for ``record`` runs.

        A missing last_sent_at means no cooldown applies.
        """
        if record.last_sent_at is None:
            return

        remaining = self._resend_interval - (now - record.last_sent_at)
        if remaining <= timedelta(0):
            return

        wait_seconds = math.ceil(remaining.total_seconds())
        logger.info(
            "verification_code_resend_too_soon",
            email=_mask_email(record.email),
            purpose=record.purpose,
            wait_seconds=wait_seconds,
        )
        raise ResendTooSoonError(wait_seconds=wait_seconds)
