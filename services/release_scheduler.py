"""
Release Scheduler - periodic sweep of due escrow holds

Finds held, undisputed escrows whose holding period has passed and releases
each one through the ledger. Every candidate is awaited to completion on its
own; one failure never hides the outcome of the others.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from config import EscrowSettings
from models import DisputeStatus, EscrowRecord, EscrowStatus
from services.escrow_exceptions import EscrowLedgerError
from services.escrow_ledger import EscrowLedger
from utils.datetime_helpers import Clock, get_naive_utc_now

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0


class ReleaseScheduler:
    """Batch release of due holds"""

    def __init__(
        self,
        ledger: EscrowLedger,
        session_factory: async_sessionmaker,
        settings: Optional[EscrowSettings] = None,
        clock: Optional[Clock] = None,
    ):
        self.ledger = ledger
        self.session_factory = session_factory
        self.settings = settings or EscrowSettings.from_config()
        self.clock = clock or get_naive_utc_now

    async def find_due_escrow_ids(self) -> List[str]:
        now = self.clock()
        stmt = (
            select(EscrowRecord.id)
            .where(
                EscrowRecord.released.is_(False),
                EscrowRecord.status == EscrowStatus.HELD.value,
                EscrowRecord.dispute_status == DisputeStatus.NONE.value,
                EscrowRecord.scheduled_release_date <= now,
            )
            .order_by(EscrowRecord.scheduled_release_date)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def sweep_due_releases(self) -> SweepResult:
        """
        Release every due hold and return aggregate counts.

        Per-record failures (gateway errors, records that became ineligible
        between the query and the release) are logged and counted, never
        raised.
        """
        escrow_ids = await self.find_due_escrow_ids()
        if not escrow_ids:
            logger.info("RELEASE_SWEEP: no due escrows")
            return SweepResult()

        logger.info(f"🔄 RELEASE_SWEEP: {len(escrow_ids)} due escrow(s) found")
        semaphore = asyncio.Semaphore(max(1, self.settings.sweep_max_concurrency))

        async def _release_one(escrow_id: str):
            async with semaphore:
                return await self.ledger.release(escrow_id)

        outcomes = await asyncio.gather(
            *(_release_one(escrow_id) for escrow_id in escrow_ids),
            return_exceptions=True,
        )

        result = SweepResult(attempted=len(escrow_ids))
        for escrow_id, outcome in zip(escrow_ids, outcomes):
            if isinstance(outcome, BaseException):
                result.failed += 1
                if isinstance(outcome, EscrowLedgerError):
                    logger.error(f"❌ RELEASE_SWEEP: {escrow_id} not released: {outcome.message}")
                else:
                    logger.error(f"❌ RELEASE_SWEEP: unexpected error releasing {escrow_id}: {outcome!r}")
            else:
                result.succeeded += 1

        log = logger.warning if result.failed else logger.info
        log(
            f"{'⚠️' if result.failed else '✅'} RELEASE_SWEEP: attempted={result.attempted} "
            f"succeeded={result.succeeded} failed={result.failed}"
        )
        return result
