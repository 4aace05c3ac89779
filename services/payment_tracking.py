"""
Payment Tracking Mirror

PaymentTracking rows are a 1:1 projection of EscrowRecord status and history
used by admin and analytics queries ("every completed payment for transaction
X"). The mirror has no rules of its own.

Ledger code never touches the audit log or the mirror directly: it calls
EscrowUnitOfWork.record(), which appends the audit entry and the matching
mirror timeline entry in the same transaction. A transition therefore cannot
be recorded on one side only.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models import AuditAction, EscrowRecord, PaymentTracking, TrackingStatus
from services.risk_scoring import RISK_FACTORS
from utils.atomic_transactions import async_atomic_transaction, locked_escrow_operation_async
from utils.datetime_helpers import Clock, to_iso

logger = logging.getLogger(__name__)


def build_tracking_record(escrow: EscrowRecord, now: datetime) -> PaymentTracking:
    """New mirror record for a freshly created hold (timeline filled by record())"""
    return PaymentTracking(
        escrow_id=escrow.id,
        transaction_id=escrow.transaction_id,
        status=TrackingStatus.INITIATED.value,
        timeline=[],
        risk_assessment={
            "score": (escrow.security_checks or {}).get("riskLevel", 0),
            "factors": list(RISK_FACTORS),
        },
        tracking_metadata={
            "bookingId": escrow.booking_id,
            "customerId": escrow.customer_id,
            "landownerId": escrow.landowner_id,
            "amount": str(escrow.amount),
        },
        updated_at=now,
    )


async def get_tracking_by_transaction_id(session: AsyncSession, transaction_id: str) -> Optional[PaymentTracking]:
    result = await session.execute(
        select(PaymentTracking).where(PaymentTracking.transaction_id == transaction_id).limit(1)
    )
    return result.scalar_one_or_none()


async def get_tracking_by_escrow_id(session: AsyncSession, escrow_id: str) -> Optional[PaymentTracking]:
    result = await session.execute(
        select(PaymentTracking)
        .where(PaymentTracking.escrow_id == escrow_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


class EscrowUnitOfWork:
    """One escrow, its tracking mirror and the transaction they are written in"""

    def __init__(self, session: AsyncSession, escrow: EscrowRecord, tracking: PaymentTracking, now: datetime):
        self.session = session
        self.escrow = escrow
        self.tracking = tracking
        self.now = now
        self.recorded: List[str] = []

    def record(
        self,
        action: AuditAction,
        details: str,
        tracking_status: Optional[TrackingStatus] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Append an audit entry and mirror it onto the tracking timeline"""
        timestamp = to_iso(self.now)

        # JSON columns only detect reassignment, never in-place append
        self.escrow.audit_log = [
            *(self.escrow.audit_log or []),
            {"action": action.value, "timestamp": timestamp, "details": details},
        ]
        self.escrow.version = (self.escrow.version or 0) + 1

        timeline_entry = {
            "status": tracking_status.value if tracking_status else action.value,
            "timestamp": timestamp,
            "details": details,
        }
        if extra:
            timeline_entry.update(extra)
        self.tracking.timeline = [*(self.tracking.timeline or []), timeline_entry]
        if tracking_status is not None:
            self.tracking.status = tracking_status.value
        self.tracking.updated_at = self.now

        self.recorded.append(action.value)


@asynccontextmanager
async def new_escrow_unit_of_work(
    session_factory: async_sessionmaker, escrow: EscrowRecord, now: datetime
) -> AsyncGenerator[EscrowUnitOfWork, None]:
    """Unit of work that inserts a new escrow together with its mirror record"""
    async with async_atomic_transaction(session_factory) as session:
        tracking = build_tracking_record(escrow, now)
        session.add(escrow)
        # Escrow row first; the mirror references it
        await session.flush()
        session.add(tracking)
        uow = EscrowUnitOfWork(session, escrow, tracking, now)
        yield uow
        if not uow.recorded:
            raise RuntimeError(f"Escrow {escrow.id} created without an audit entry")


@asynccontextmanager
async def locked_escrow_unit_of_work(
    session_factory: async_sessionmaker, escrow_id: str, clock: Clock
) -> AsyncGenerator[EscrowUnitOfWork, None]:
    """
    Unit of work over an existing escrow, read fresh under the row lock.

    The clock is read after the lock is held so time-based guards see the
    moment the operation actually runs.
    """
    async with async_atomic_transaction(session_factory) as session:
        escrow = await locked_escrow_operation_async(escrow_id, session)
        now = clock()
        tracking = await get_tracking_by_escrow_id(session, escrow_id)
        if tracking is None:
            logger.warning(f"⚠️ PAYMENT_TRACKING: mirror missing for escrow {escrow_id}, rebuilding")
            tracking = build_tracking_record(escrow, now)
            tracking.timeline = [
                {"status": "rebuilt", "timestamp": to_iso(now), "details": "Tracking mirror rebuilt from escrow"}
            ]
            session.add(tracking)
        yield EscrowUnitOfWork(session, escrow, tracking, now)
