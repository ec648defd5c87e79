"""Persistence abstraction for verification codes.

Services only see records through VerificationCodeStore. Two backends:

- SqlVerificationCodeStore: PostgreSQL via VerificationCodeRepository.
  Each write is one statement and is committed immediately, so a failing
  verification still leaves its side effects (expired-record deletion) in
  place.
- InMemoryVerificationCodeStore: dict-backed, for tests and single-process
  deployments.

Both return detached copies: changing a returned record never changes
stored state.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from verification_engine.core.errors import VerificationStoreError
from verification_engine.models.verification_code import VerificationCode
from verification_engine.repositories.verification_code_repository import (
    VerificationCodeRepository,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RECORD_FIELDS = (
    "email",
    "purpose",
    "user_id",
    "code",
    "expires_at",
    "meta",
    "last_sent_at",
    "resend_count",
    "created_at",
    "updated_at",
)


class VerificationCodeStore(ABC):
    """Keyed store of verification codes, at most one per (email, purpose).

    Callers pass normalized emails. Every method is a single atomic step
    with respect to other calls on the same pair.
    """

    @abstractmethod
    async def get(self, *, email: str, purpose: str) -> VerificationCode | None:
        """Return the record for the pair, or None."""

    @abstractmethod
    async def replace(
        self,
        *,
        email: str,
        purpose: str,
        code: str,
        expires_at: datetime,
        sent_at: datetime,
        user_id: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> VerificationCode:
        """Store a fresh record, superseding any existing one (upsert).

        The new record has resend_count 0 and last_sent_at ``sent_at``.
        """

    @abstractmethod
    async def refresh_if_due(
        self,
        *,
        email: str,
        purpose: str,
        code: str,
        expires_at: datetime,
        sent_at: datetime,
        sent_before: datetime,
    ) -> VerificationCode | None:
        """Swap in a new code if last_sent_at is missing or <= sent_before.

        Increments resend_count and sets last_sent_at to ``sent_at``.

        Returns:
            Updated record, or None when the record is missing or the
            cooldown has not elapsed.
        """

    @abstractmethod
    async def consume(
        self, *, email: str, purpose: str, code: str
    ) -> VerificationCode | None:
        """Delete and return the record if its code equals ``code``."""

    @abstractmethod
    async def delete(self, *, email: str, purpose: str) -> int:
        """Delete the record for the pair. Returns number removed."""

    @abstractmethod
    async def delete_expired(self, *, now: datetime) -> int:
        """Delete every record with expires_at <= now. Returns number removed."""


def _copy(record: VerificationCode) -> VerificationCode:
    """Detached copy of a record (meta is copied one level deep)."""
    values = {name: getattr(record, name) for name in _RECORD_FIELDS}
    if values["meta"] is not None:
        values["meta"] = dict(values["meta"])
    return VerificationCode(**values)


class SqlVerificationCodeStore(VerificationCodeStore):
    """PostgreSQL-backed store bound to one session.

    Driver errors are logged and re-raised as VerificationStoreError.
    """

    def __init__(self, db: AsyncSession) -> None:
        """Initialize the store.

        Args:
            db: Async database session. Writes are committed on it.
        """
        self._db = db

    async def get(self, *, email: str, purpose: str) -> VerificationCode | None:
        return await self._run(
            "get",
            VerificationCodeRepository.get(self._db, email=email, purpose=purpose),
            commit=False,
        )

    async def replace(
        self,
        *,
        email: str,
        purpose: str,
        code: str,
        expires_at: datetime,
        sent_at: datetime,
        user_id: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> VerificationCode:
        return await self._run(
            "replace",
            VerificationCodeRepository.upsert(
                self._db,
                email=email,
                purpose=purpose,
                code=code,
                expires_at=expires_at,
                sent_at=sent_at,
                user_id=user_id,
                meta=meta,
            ),
        )

    async def refresh_if_due(
        self,
        *,
        email: str,
        purpose: str,
        code: str,
        expires_at: datetime,
        sent_at: datetime,
        sent_before: datetime,
    ) -> VerificationCode | None:
        return await self._run(
            "refresh",
            VerificationCodeRepository.refresh_if_due(
                self._db,
                email=email,
                purpose=purpose,
                code=code,
                expires_at=expires_at,
                sent_at=sent_at,
                sent_before=sent_before,
            ),
        )

    async def consume(
        self, *, email: str, purpose: str, code: str
    ) -> VerificationCode | None:
        return await self._run(
            "consume",
            VerificationCodeRepository.consume(
                self._db, email=email, purpose=purpose, code=code
            ),
        )

    async def delete(self, *, email: str, purpose: str) -> int:
        return await self._run(
            "delete",
            VerificationCodeRepository.delete(self._db, email=email, purpose=purpose),
        )

    async def delete_expired(self, *, now: datetime) -> int:
        return await self._run(
            "delete_expired",
            VerificationCodeRepository.delete_expired(self._db, now=now),
        )

    async def _run(self, operation: str, call: Awaitable[T], *, commit: bool = True) -> T:
        """Await a repository call, committing writes.

        Raises:
            VerificationStoreError: If the database operation fails.
        """
        try:
            result = await call
            if isinstance(result, VerificationCode):
                self._detach(result)
            if commit:
                await self._db.commit()
            return result
        except SQLAlchemyError as exc:
            logger.error("Verification store %s failed: %s", operation, exc)
            await self._db.rollback()
            raise VerificationStoreError(
                f"Verification store {operation} failed"
            ) from exc

    def _detach(self, record: VerificationCode) -> None:
        # Detached before commit so expire_on_commit sessions leave it loaded
        if record in self._db:
            self._db.expunge(record)


class InMemoryVerificationCodeStore(VerificationCodeStore):
    """In-memory store keyed by (email, purpose).

    Note: Safe for async/await usage (single-threaded event loop). Each
    method runs without awaiting, so it is atomic with respect to other
    coroutines. Not safe for multi-threaded access or multiple processes.
    """

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], VerificationCode] = {}

    async def get(self, *, email: str, purpose: str) -> VerificationCode | None:
        record = self._records.get((email, purpose))
        return _copy(record) if record is not None else None

    async def replace(
        self,
        *,
        email: str,
        purpose: str,
        code: str,
        expires_at: datetime,
        sent_at: datetime,
        user_id: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> VerificationCode:
        record = VerificationCode(
            email=email,
            purpose=purpose,
            user_id=user_id,
            code=code,
            expires_at=expires_at,
            meta=dict(meta) if meta is not None else None,
            last_sent_at=sent_at,
            resend_count=0,
            created_at=sent_at,
            updated_at=sent_at,
        )
        self._records[(email, purpose)] = record
        return _copy(record)

    async def refresh_if_due(
        self,
        *,
        email: str,
        purpose: str,
        code: str,
        expires_at: datetime,
        sent_at: datetime,
        sent_before: datetime,
    ) -> VerificationCode | None:
        record = self._records.get((email, purpose))
        if record is None:
            return None
        if record.last_sent_at is not None and record.last_sent_at > sent_before:
            return None

        record.code = code
        record.expires_at = expires_at
        record.last_sent_at = sent_at
        record.resend_count = (record.resend_count or 0) + 1
        record.updated_at = sent_at
        return _copy(record)

    async def consume(
        self, *, email: str, purpose: str, code: str
    ) -> VerificationCode | None:
        record = self._records.get((email, purpose))
        if record is None or record.code != code:
            return None
        del self._records[(email, purpose)]
        return _copy(record)

    async def delete(self, *, email: str, purpose: str) -> int:
        return 1 if self._records.pop((email, purpose), None) is not None else 0

    async def delete_expired(self, *, now: datetime) -> int:
        expired = [
            key for key, record in self._records.items() if record.expires_at <= now
        ]
        for key in expired:
            del self._records[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._records)

    def clear(self) -> None:
        """Clear all records (for testing)."""
        self._records.clear()


# Singleton instance for the application
_store: InMemoryVerificationCodeStore | None = None


def get_verification_code_store() -> InMemoryVerificationCodeStore:
    """Get the process-wide in-memory store.

    Returns:
        The InMemoryVerificationCodeStore singleton.
    """
    global _store
    if _store is None:
        _store = InMemoryVerificationCodeStore()
    return _store


def reset_verification_code_store() -> None:
    """Reset the in-memory store singleton (for testing)."""
    global _store
    if _store is not None:
        _store.clear()
    _store = None
