"""Atomic transaction utilities for escrow ledger operations"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models import EscrowRecord
from services.escrow_exceptions import NotFoundError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def async_atomic_transaction(
    session_factory: async_sessionmaker,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Async context manager for one atomic database transaction.

    Everything staged on the yielded session commits together when the block
    exits normally and is rolled back when it raises.
    """
    async with session_factory() as session:
        try:
            async with session.begin():
                yield session
            logger.debug("Async atomic transaction committed successfully")
        except Exception as e:
            logger.debug(f"Async atomic transaction rolled back: {e!r}")
            raise


async def locked_escrow_operation_async(escrow_id: str, session: AsyncSession) -> EscrowRecord:
    """
    Load an escrow inside the caller's transaction with a row-level lock.

    On PostgreSQL this is SELECT ... FOR UPDATE, so concurrent ledger
    operations on the same escrow run their read-check-write sequences one
    after another. SQLite drops FOR UPDATE; its engine takes the write lock at
    BEGIN IMMEDIATE instead (see database.create_database_engine).

    populate_existing makes sure a record cached in the identity map is
    re-read rather than trusted.
    """
    stmt = (
        select(EscrowRecord)
        .where(EscrowRecord.id == escrow_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    escrow = result.scalar_one_or_none()

    if escrow is None:
        raise NotFoundError(f"Escrow record {escrow_id} not found", escrow_id)

    logger.debug(f"Acquired lock for escrow {escrow_id}")
    return escrow
