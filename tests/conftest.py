"""
Shared fixtures for escrow ledger tests

Key Components:
1. File-backed SQLite database per test (BEGIN IMMEDIATE engine, real locking)
2. FakeClock shared by the ledger and the release scheduler
3. RecordingPaymentGateway test double with failure injection
4. Party factory for customer/landowner profiles
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from config import EscrowSettings
from database import create_database_engine, create_session_factory, create_tables
from models import LedgerTransaction, UserProfile, UserRole
from services.escrow_exceptions import GatewayError
from services.escrow_ledger import EscrowLedger
from services.payment_gateway import PaymentGateway
from services.release_scheduler import ReleaseScheduler

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

START_TIME = datetime(2024, 3, 1, 12, 0, 0)


class FakeClock:
    """Deterministic naive-UTC clock"""

    def __init__(self, start: datetime = START_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingPaymentGateway(PaymentGateway):
    """
    In-memory gateway that records every call.

    Failures are injected either for the next N calls of an operation
    (fail_next) or permanently for a reference (fail_for): the payer for
    authorize, the hold for capture/void and the booking (transfer group)
    for transfer.
    """

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self.calls: List[Dict[str, Any]] = []
        self._fail_counts: Dict[str, int] = defaultdict(int)
        self._fail_refs: Dict[str, Set[str]] = defaultdict(set)
        self._sequence = 0

    def fail_next(self, operation: str, times: int = 1):
        self._fail_counts[operation] += times

    def fail_for(self, operation: str, ref: str):
        self._fail_refs[operation].add(ref)

    def clear_failures(self):
        self._fail_counts.clear()
        self._fail_refs.clear()

    def calls_for(self, operation: str, succeeded: Optional[bool] = None) -> List[Dict[str, Any]]:
        return [
            call for call in self.calls
            if call["operation"] == operation and (succeeded is None or call["succeeded"] == succeeded)
        ]

    async def _call(self, operation: str, ref: str, **details) -> str:
        if self.latency:
            await asyncio.sleep(self.latency)
        call = {"operation": operation, "ref": ref, "succeeded": False, **details}
        self.calls.append(call)

        if self._fail_counts[operation] > 0:
            self._fail_counts[operation] -= 1
            raise GatewayError(f"{operation} declined by test gateway", operation=operation)
        if ref in self._fail_refs[operation]:
            raise GatewayError(f"{operation} declined for {ref}", operation=operation)

        self._sequence += 1
        call["succeeded"] = True
        return f"{operation}_{self._sequence}"

    async def authorize(self, amount, payer_ref, *, currency="usd", metadata=None) -> str:
        return await self._call("authorize", payer_ref, amount=amount, currency=currency, metadata=metadata)

    async def capture(self, hold_ref: str) -> None:
        await self._call("capture", hold_ref)

    async def transfer(self, amount, destination_ref, group_ref, *, currency="usd", metadata=None) -> str:
        return await self._call(
            "transfer", group_ref, amount=amount, destination=destination_ref,
            currency=currency, metadata=metadata,
        )

    async def void(self, hold_ref: str) -> None:
        await self._call("void", hold_ref)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway():
    return RecordingPaymentGateway()


@pytest.fixture
def settings():
    return EscrowSettings(
        hold_days=5,
        max_retry_attempts=3,
        max_amount=Decimal("10000"),
        currency="usd",
        tracking_version="1.0",
        sweep_max_concurrency=10,
    )


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_database_engine(f"sqlite+aiosqlite:///{tmp_path / 'escrow_ledger.db'}", echo=False)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def ledger(session_factory, gateway, settings, clock):
    return EscrowLedger(session_factory, gateway, settings=settings, clock=clock)


@pytest.fixture
def release_scheduler(ledger, session_factory, settings, clock):
    return ReleaseScheduler(ledger, session_factory, settings=settings, clock=clock)


@pytest.fixture
def profile_factory(session_factory):
    """Insert a UserProfile row"""

    async def _create(
        user_id: str,
        role: UserRole = UserRole.CUSTOMER,
        verified: bool = True,
        payout_account_ref: Optional[str] = None,
    ) -> UserProfile:
        async with session_factory() as session:
            async with session.begin():
                profile = UserProfile(
                    id=user_id,
                    role=role.value,
                    verified=verified,
                    payout_account_ref=payout_account_ref,
                )
                session.add(profile)
        return profile

    return _create


@pytest_asyncio.fixture
async def parties(profile_factory):
    """Default customer cust1 and landowner land1 (with a payout destination)"""
    customer = await profile_factory("cust1", UserRole.CUSTOMER)
    landowner = await profile_factory("land1", UserRole.LANDOWNER, payout_account_ref="acct_land1")
    return customer, landowner


@pytest.fixture
def count_rows(session_factory):
    async def _count(model) -> int:
        async with session_factory() as session:
            return await session.scalar(select(func.count()).select_from(model))

    return _count


@pytest.fixture
def ledger_rows(session_factory):
    async def _rows(escrow_id: str) -> List[LedgerTransaction]:
        async with session_factory() as session:
            result = await session.execute(
                select(LedgerTransaction).where(LedgerTransaction.escrow_id == escrow_id)
            )
            return list(result.scalars().all())

    return _rows
