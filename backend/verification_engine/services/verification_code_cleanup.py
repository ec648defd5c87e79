"""Background expiry sweep for verification codes.

Deletes every code at or past its expiry. Verification already deletes an
expired code when it finds one, so this sweep only keeps the table small;
correctness never depends on it running.

Intended to be scheduled by the surrounding application (cron, worker
loop). The engine itself starts no timers.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from verification_engine.core.database import async_session_factory
from verification_engine.services.verification_code_store import (
    SqlVerificationCodeStore,
    VerificationCodeStore,
)

logger = logging.getLogger(__name__)


async def purge_expired_verification_codes(
    store: VerificationCodeStore,
    *,
    now: datetime | None = None,
) -> int:
    """Delete expired verification codes from a store.

    Args:
        store: Store to sweep.
        now: Reference time. Defaults to the current UTC time.

    Returns:
        Number of records deleted.

    Raises:
        VerificationStoreError: If the database operation fails.
    """
    now = now or datetime.now(UTC)
    deleted = await store.delete_expired(now=now)
    if deleted:
        logger.info("Purged %d expired verification code(s)", deleted)
    return deleted


async def run_expiry_sweep(
    session_factory: Callable[[], AsyncSession] = async_session_factory,
    *,
    now: datetime | None = None,
) -> int:
    """Sweep the database table using a fresh session.

    Args:
        session_factory: Session factory. Defaults to the application's.
        now: Reference time. Defaults to the current UTC time.

    Returns:
        Number of records deleted.

    Raises:
        VerificationStoreError: If the database operation fails.
    """
    async with session_factory() as session:
        return await purge_expired_verification_codes(
            SqlVerificationCodeStore(session), now=now
        )
