"""Repository for VerificationCode CRUD operations.

Codes are keyed by the natural key (email, purpose). Every write is a single
statement so that concurrent requests for the same pair cannot interleave
between a check and the write that depends on it.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import delete, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from verification_engine.models.verification_code import VerificationCode


class VerificationCodeRepository:
    """Stateless repository for verification_codes table operations.

    All methods are static; no instance state.
    """

    @staticmethod
    async def get(
        db: AsyncSession,
        *,
        email: str,
        purpose: str,
    ) -> VerificationCode | None:
        """Look up the pending code for an (email, purpose) pair.

        Args:
            db: Async database session.
            email: Normalized email address.
            purpose: Verification purpose.

        Returns:
            VerificationCode if found, None otherwise.
        """
        stmt = select(VerificationCode).where(
            VerificationCode.email == email,
            VerificationCode.purpose == purpose,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def upsert(
        db: AsyncSession,
        *,
        email: str,
        purpose: str,
        code: str,
        expires_at: datetime,
        sent_at: datetime,
        user_id: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> VerificationCode:
        """Insert a code, replacing any existing one for the pair.

        INSERT ... ON CONFLICT DO UPDATE, so the previous code stops being
        valid in the same statement that stores the new one.

        Args:
            db: Async database session.
            email: Normalized email address.
            purpose: Verification purpose.
            code: Plain numeric code.
            expires_at: Code expiry timestamp.
            sent_at: Issue time, stored as last_sent_at and created_at.
            user_id: Optional caller correlation id.
            meta: Optional caller context.

        Returns:
            The stored VerificationCode.
        """
        insert_stmt = pg_insert(VerificationCode).values(
            email=email,
            purpose=purpose,
            user_id=user_id,
            code=code,
            expires_at=expires_at,
            meta=meta,
            last_sent_at=sent_at,
            resend_count=0,
            created_at=sent_at,
            updated_at=sent_at,
        )
        stmt = (
            insert_stmt.on_conflict_do_update(
                index_elements=["email", "purpose"],
                set_={
                    "user_id": insert_stmt.excluded.user_id,
                    "code": insert_stmt.excluded.code,
                    "expires_at": insert_stmt.excluded.expires_at,
                    "meta": insert_stmt.excluded.meta,
                    "last_sent_at": insert_stmt.excluded.last_sent_at,
                    "resend_count": 0,
                    "created_at": insert_stmt.excluded.created_at,
                    "updated_at": insert_stmt.excluded.updated_at,
                },
            )
            .returning(VerificationCode)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one()

    @staticmethod
    async def refresh_if_due(
        db: AsyncSession,
        *,
        email: str,
        purpose: str,
        code: str,
        expires_at: datetime,
        sent_at: datetime,
        sent_before: datetime,
    ) -> VerificationCode | None:
        """Replace the code only if the last send is old enough.

        Conditional UPDATE: the cooldown check and the write are one
        statement. A missing last_sent_at never blocks a resend.

        Args:
            db: Async database session.
            email: Normalized email address.
            purpose: Verification purpose.
            code: New plain numeric code.
            expires_at: New expiry timestamp.
            sent_at: Resend time, stored as last_sent_at.
            sent_before: Latest last_sent_at that still allows a resend.

        Returns:
            Updated VerificationCode, or None if no row qualified (record
            missing or cooldown still running).
        """
        stmt = (
            update(VerificationCode)
            .where(
                VerificationCode.email == email,
                VerificationCode.purpose == purpose,
                or_(
                    VerificationCode.last_sent_at.is_(None),
                    VerificationCode.last_sent_at <= sent_before,
                ),
            )
            .values(
                code=code,
                expires_at=expires_at,
                last_sent_at=sent_at,
                resend_count=VerificationCode.resend_count + 1,
                updated_at=sent_at,
            )
            .returning(VerificationCode)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def consume(
        db: AsyncSession,
        *,
        email: str,
        purpose: str,
        code: str,
    ) -> VerificationCode | None:
        """Delete the record if its code matches (single-use).

        Args:
            db: Async database session.
            email: Normalized email address.
            purpose: Verification purpose.
            code: Submitted code, already trimmed.

        Returns:
            The deleted VerificationCode, or None if nothing matched.
        """
        stmt = (
            delete(VerificationCode)
            .where(
                VerificationCode.email == email,
                VerificationCode.purpose == purpose,
                VerificationCode.code == code,
            )
            .returning(VerificationCode)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def delete(
        db: AsyncSession,
        *,
        email: str,
        purpose: str,
    ) -> int:
        """Delete the record for an (email, purpose) pair.

        Args:
            db: Async database session.
            email: Normalized email address.
            purpose: Verification purpose.

        Returns:
            Number of deleted rows (0 or 1).
        """
        stmt = delete(VerificationCode).where(
            VerificationCode.email == email,
            VerificationCode.purpose == purpose,
        )
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count

    @staticmethod
    async def delete_expired(db: AsyncSession, *, now: datetime) -> int:
        """Delete all codes at or past their expiry (periodic cleanup).

        Args:
            db: Async database session.
            now: Reference time.

        Returns:
            Number of deleted rows.
        """
        stmt = delete(VerificationCode).where(
            VerificationCode.expires_at <= now,
        )
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count
