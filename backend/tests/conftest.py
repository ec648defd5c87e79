import socket
from collections.abc import AsyncGenerator, Iterator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from verification_engine.core.config import settings
from verification_engine.models.base import Base
from verification_engine.services.verification_code_service import (
    VerificationCodeService,
)
from verification_engine.services.verification_code_store import (
    InMemoryVerificationCodeStore,
)

# Use separate test database
TEST_DATABASE_URL = settings.database_url.replace(
    settings.database_name, f"{settings.database_name}_test"
)

# Fixed starting instant for clock-driven tests
TEST_START = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

# Service defaults used by the service fixture
TEST_TTL_MINUTES = 10
TEST_RESEND_INTERVAL = timedelta(minutes=1)


class FrozenClock:
    """Manually advanced clock for expiry and cooldown tests."""

    def __init__(self, start: datetime = TEST_START) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        """Move the clock forward by a timedelta built from kwargs."""
        self.current = self.current + timedelta(**kwargs)
        return self.current


def _is_postgres_available() -> bool:
    """Check if PostgreSQL is accepting connections.

    Returns:
        True if PostgreSQL is reachable on port 5432, False otherwise.
    """
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(1)
        result = sock.connect_ex(("127.0.0.1", 5432))
        sock.close()
        return result == 0
    except OSError:
        return False


# Check once at module load time
_POSTGRES_AVAILABLE = _is_postgres_available()


def skip_if_no_postgres() -> None:
    """Skip test if PostgreSQL is not available.

    Called by fixtures that require database connection.
    """
    if not _POSTGRES_AVAILABLE:
        pytest.skip(
            "PostgreSQL not available on port 5432. "
            "Start database with: docker compose up -d"
        )


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create test database engine.

    Skips test if PostgreSQL is not available (e.g., Docker not running).
    """
    skip_if_no_postgres()

    engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FrozenClock:
    """Clock starting at TEST_START."""
    return FrozenClock()


@pytest.fixture
def memory_store() -> InMemoryVerificationCodeStore:
    """Fresh in-memory store for each test."""
    return InMemoryVerificationCodeStore()


@pytest.fixture
def service(
    memory_store: InMemoryVerificationCodeStore, clock: FrozenClock
) -> VerificationCodeService:
    """Service over the in-memory store with a frozen clock.

    TTL 10 minutes, 6 digits, 1 minute resend cooldown.
    """
    return VerificationCodeService(
        memory_store,
        now=clock,
        ttl_minutes=TEST_TTL_MINUTES,
        code_length=6,
        resend_interval=TEST_RESEND_INTERVAL,
    )


# =============================================================================
# Autouse Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_verification_code_store() -> Iterator[None]:
    """Reset the in-memory store singleton before each test.

    Yields:
        None (autouse fixture).
    """
    from verification_engine.services.verification_code_store import (
        reset_verification_code_store as reset_store,
    )

    reset_store()
    yield
    reset_store()
