"""Tests for VerificationCodeRepository and SqlVerificationCodeStore.

Repository and store behavior is checked against PostgreSQL (skipped when
the database is not running). Error wrapping is checked with a mocked
session.
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tests.conftest import TEST_START, FrozenClock
from verification_engine.core.errors import (
    InvalidVerificationCodeError,
    VerificationExpiredError,
    VerificationNotFoundError,
    VerificationStoreError,
)
from verification_engine.models.verification_code import VerificationCode
from verification_engine.repositories.verification_code_repository import (
    VerificationCodeRepository,
)
from verification_engine.services.verification_code_service import (
    VerificationCodeService,
)
from verification_engine.services.verification_code_store import (
    SqlVerificationCodeStore,
)

_EMAIL = "user@example.com"
_PURPOSE = "password-reset"
_EXPIRES = TEST_START + timedelta(minutes=10)


# =============================================================================
# Helpers
# =============================================================================


async def _upsert(db: AsyncSession, *, code: str = "123456", **overrides):
    """Upsert a code with test defaults."""
    kwargs = {
        "email": _EMAIL,
        "purpose": _PURPOSE,
        "code": code,
        "expires_at": _EXPIRES,
        "sent_at": TEST_START,
    }
    kwargs.update(overrides)
    return await VerificationCodeRepository.upsert(db, **kwargs)


async def _row_count(db: AsyncSession) -> int:
    result = await db.execute(select(func.count()).select_from(VerificationCode))
    return result.scalar_one()


# =============================================================================
# TestUpsert
# =============================================================================


class TestUpsert:
    """Tests for VerificationCodeRepository.upsert()."""

    async def test_inserts_new_record(self, db_session: AsyncSession) -> None:
        """Fresh pair gets a row with resend_count 0."""
        record = await _upsert(db_session, user_id="u-1", meta={"ip": "10.0.0.1"})

        assert record.email == _EMAIL
        assert record.code == "123456"
        assert record.expires_at == _EXPIRES
        assert record.last_sent_at == TEST_START
        assert record.resend_count == 0
        assert record.user_id == "u-1"
        assert record.meta == {"ip": "10.0.0.1"}

    async def test_replaces_existing_record(self, db_session: AsyncSession) -> None:
        """Second upsert overwrites code, meta and counters in place."""
        await _upsert(db_session, code="111111", meta={"a": 1})
        later = TEST_START + timedelta(minutes=5)
        await VerificationCodeRepository.refresh_if_due(
            db_session,
            email=_EMAIL,
            purpose=_PURPOSE,
            code="222222",
            expires_at=_EXPIRES,
            sent_at=later,
            sent_before=later,
        )

        record = await _upsert(db_session, code="333333", sent_at=later)

        assert await _row_count(db_session) == 1
        assert record.code == "333333"
        assert record.resend_count == 0
        assert record.meta is None
        assert record.last_sent_at == later

    async def test_purposes_get_separate_rows(self, db_session: AsyncSession) -> None:
        """(email, purpose) is the key, not email alone."""
        await _upsert(db_session)
        await _upsert(db_session, purpose="two-factor-login")

        assert await _row_count(db_session) == 2


# =============================================================================
# TestGet
# =============================================================================


class TestGet:
    """Tests for VerificationCodeRepository.get()."""

    async def test_returns_record(self, db_session: AsyncSession) -> None:
        """Existing pair is found."""
        await _upsert(db_session)

        record = await VerificationCodeRepository.get(
            db_session, email=_EMAIL, purpose=_PURPOSE
        )
        assert record is not None
        assert record.code == "123456"

    async def test_returns_none_for_missing(self, db_session: AsyncSession) -> None:
        """Unknown pair returns None."""
        assert (
            await VerificationCodeRepository.get(
                db_session, email=_EMAIL, purpose=_PURPOSE
            )
            is None
        )


# =============================================================================
# TestRefreshIfDue
# =============================================================================


class TestRefreshIfDue:
    """Tests for VerificationCodeRepository.refresh_if_due()."""

    async def test_updates_when_due(self, db_session: AsyncSession) -> None:
        """Cooldown elapsed: new code, expiry, last_sent_at, count + 1."""
        await _upsert(db_session, user_id="u-1")
        later = TEST_START + timedelta(minutes=2)

        record = await VerificationCodeRepository.refresh_if_due(
            db_session,
            email=_EMAIL,
            purpose=_PURPOSE,
            code="654321",
            expires_at=later + timedelta(minutes=10),
            sent_at=later,
            sent_before=later - timedelta(minutes=1),
        )

        assert record is not None
        assert record.code == "654321"
        assert record.expires_at == later + timedelta(minutes=10)
        assert record.last_sent_at == later
        assert record.resend_count == 1
        assert record.user_id == "u-1"

    async def test_boundary_is_inclusive(self, db_session: AsyncSession) -> None:
        """last_sent_at equal to sent_before qualifies."""
        await _upsert(db_session)

        record = await VerificationCodeRepository.refresh_if_due(
            db_session,
            email=_EMAIL,
            purpose=_PURPOSE,
            code="654321",
            expires_at=_EXPIRES,
            sent_at=TEST_START + timedelta(minutes=1),
            sent_before=TEST_START,
        )
        assert record is not None

    async def test_returns_none_when_not_due(self, db_session: AsyncSession) -> None:
        """Cooldown running: no row changes."""
        await _upsert(db_session)

        record = await VerificationCodeRepository.refresh_if_due(
            db_session,
            email=_EMAIL,
            purpose=_PURPOSE,
            code="654321",
            expires_at=_EXPIRES,
            sent_at=TEST_START + timedelta(seconds=10),
            sent_before=TEST_START - timedelta(seconds=50),
        )
        assert record is None

        db_session.expire_all()
        stored = await VerificationCodeRepository.get(
            db_session, email=_EMAIL, purpose=_PURPOSE
        )
        assert stored.code == "123456"
        assert stored.resend_count == 0

    async def test_returns_none_for_missing(self, db_session: AsyncSession) -> None:
        """Refresh never inserts."""
        record = await VerificationCodeRepository.refresh_if_due(
            db_session,
            email=_EMAIL,
            purpose=_PURPOSE,
            code="654321",
            expires_at=_EXPIRES,
            sent_at=TEST_START,
            sent_before=TEST_START,
        )
        assert record is None
        assert await _row_count(db_session) == 0


# =============================================================================
# TestConsumeAndDelete
# =============================================================================


class TestConsumeAndDelete:
    """Tests for consume(), delete() and delete_expired()."""

    async def test_consume_matching_code(self, db_session: AsyncSession) -> None:
        """Match deletes the row and returns it."""
        await _upsert(db_session)

        record = await VerificationCodeRepository.consume(
            db_session, email=_EMAIL, purpose=_PURPOSE, code="123456"
        )
        assert record is not None
        assert record.code == "123456"
        assert await _row_count(db_session) == 0

    async def test_consume_wrong_code(self, db_session: AsyncSession) -> None:
        """Mismatch deletes nothing."""
        await _upsert(db_session)

        record = await VerificationCodeRepository.consume(
            db_session, email=_EMAIL, purpose=_PURPOSE, code="000000"
        )
        assert record is None
        assert await _row_count(db_session) == 1

    async def test_delete_returns_rowcount(self, db_session: AsyncSession) -> None:
        """1 for an existing pair, 0 afterwards."""
        await _upsert(db_session)

        assert (
            await VerificationCodeRepository.delete(
                db_session, email=_EMAIL, purpose=_PURPOSE
            )
            == 1
        )
        assert (
            await VerificationCodeRepository.delete(
                db_session, email=_EMAIL, purpose=_PURPOSE
            )
            == 0
        )

    async def test_delete_expired(self, db_session: AsyncSession) -> None:
        """Rows at or before now are removed."""
        await _upsert(db_session, email="old@example.com", expires_at=TEST_START)
        await _upsert(db_session, email="live@example.com")

        deleted = await VerificationCodeRepository.delete_expired(
            db_session, now=TEST_START
        )
        assert deleted == 1
        assert await _row_count(db_session) == 1


# =============================================================================
# TestSqlStore
# =============================================================================


class TestSqlStore:
    """SqlVerificationCodeStore against PostgreSQL."""

    async def test_returned_records_are_detached(
        self, db_session: AsyncSession
    ) -> None:
        """Records handed out are not tracked by the session."""
        store = SqlVerificationCodeStore(db_session)

        record = await store.replace(
            email=_EMAIL,
            purpose=_PURPOSE,
            code="123456",
            expires_at=_EXPIRES,
            sent_at=TEST_START,
        )
        assert record not in db_session
        assert record.code == "123456"

        fetched = await store.get(email=_EMAIL, purpose=_PURPOSE)
        assert fetched not in db_session

    async def test_service_lifecycle(self, db_session: AsyncSession) -> None:
        """create, invalid attempt, resend, verify, single use."""
        clock = FrozenClock()
        service = VerificationCodeService(
            SqlVerificationCodeStore(db_session),
            now=clock,
            ttl_minutes=10,
            code_length=6,
            resend_interval=timedelta(minutes=1),
        )

        first = await service.create_verification_code(
            email="A@B.com", purpose=_PURPOSE, meta={"ip": "10.0.0.1"}
        )
        wrong = "1" * 6 if first.code != "1" * 6 else "2" * 6
        with pytest.raises(InvalidVerificationCodeError):
            await service.verify_code_for_purpose(
                email="a@b.com", purpose=_PURPOSE, code=wrong
            )

        clock.advance(minutes=2)
        second = await service.resend_verification_code(
            email="a@b.com", purpose=_PURPOSE
        )
        assert second.code != first.code
        assert second.record.resend_count == 1

        record = await service.verify_code_for_purpose(
            email="a@b.com", purpose=_PURPOSE, code=second.code
        )
        assert record.meta == {"ip": "10.0.0.1"}

        with pytest.raises(VerificationNotFoundError):
            await service.verify_code_for_purpose(
                email="a@b.com", purpose=_PURPOSE, code=second.code
            )

    async def test_expired_deletion_is_committed(
        self, db_session: AsyncSession
    ) -> None:
        """The delete on expiry survives the raised error."""
        clock = FrozenClock()
        service = VerificationCodeService(
            SqlVerificationCodeStore(db_session), now=clock, ttl_minutes=1
        )
        issued = await service.create_verification_code(
            email=_EMAIL, purpose=_PURPOSE
        )
        clock.advance(minutes=2)

        with pytest.raises(VerificationExpiredError):
            await service.verify_code_for_purpose(
                email=_EMAIL, purpose=_PURPOSE, code=issued.code
            )

        await db_session.rollback()
        assert await _row_count(db_session) == 0


class TestSqlStoreErrors:
    """Driver errors are wrapped (no database needed)."""

    @pytest.mark.parametrize(
        "error",
        [
            SQLAlchemyError("boom"),
            OperationalError("SELECT 1", {}, Exception("connection lost")),
        ],
    )
    async def test_wraps_driver_errors(self, error) -> None:
        """SQLAlchemy failures become VerificationStoreError and roll back."""
        session = AsyncMock()
        session.execute = AsyncMock(side_effect=error)
        store = SqlVerificationCodeStore(session)

        with pytest.raises(VerificationStoreError) as exc_info:
            await store.get(email=_EMAIL, purpose=_PURPOSE)

        assert exc_info.value.code == "VERIFICATION_STORE_ERROR"
        assert exc_info.value.__cause__ is error
        session.rollback.assert_awaited_once()
        session.commit.assert_not_awaited()

    async def test_write_failure_does_not_commit(self) -> None:
        """A failed write is rolled back, never committed."""
        session = AsyncMock()
        session.execute = AsyncMock(side_effect=SQLAlchemyError("boom"))
        store = SqlVerificationCodeStore(session)

        with pytest.raises(VerificationStoreError, match="delete failed"):
            await store.delete(email=_EMAIL, purpose=_PURPOSE)

        session.commit.assert_not_awaited()
        session.rollback.assert_awaited_once()

    async def test_successful_write_commits(self) -> None:
        """Writes commit on the bound session."""
        session = AsyncMock()
        session.execute = AsyncMock(return_value=MagicMock(rowcount=1))
        store = SqlVerificationCodeStore(session)

        assert await store.delete(email=_EMAIL, purpose=_PURPOSE) == 1
        session.commit.assert_awaited_once()
