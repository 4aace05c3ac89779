"""
Tracking mirror tests: unit of work recording and mirror rebuild
"""

import pytest
from sqlalchemy import delete

from models import AuditAction, PaymentTracking, TrackingStatus
from services.payment_tracking import get_tracking_by_escrow_id, locked_escrow_unit_of_work


@pytest.mark.usefixtures("parties")
class TestEscrowUnitOfWork:

    @pytest.mark.asyncio
    async def test_record_appends_audit_and_timeline_together(self, ledger, session_factory, clock):
        hold = await ledger.create_hold("B1", 500, "cust1", "land1")

        async with locked_escrow_unit_of_work(session_factory, hold.escrow_id, clock) as uow:
            uow.record(AuditAction.DISPUTE_CREATED, "note", TrackingStatus.DISPUTED, extra={"disputeId": "d1"})

        escrow = await ledger.get_escrow(hold.escrow_id)
        tracking = await ledger.get_tracking(hold.transaction_id)
        assert [entry["action"] for entry in escrow.audit_log] == ["created", "dispute_created"]
        assert len(tracking.timeline) == len(escrow.audit_log)
        assert tracking.timeline[-1] == {
            "status": "disputed",
            "timestamp": escrow.audit_log[-1]["timestamp"],
            "details": "note",
            "disputeId": "d1",
        }
        assert tracking.status == "disputed"
        assert escrow.version == 2

    @pytest.mark.asyncio
    async def test_rolled_back_unit_of_work_records_nothing(self, ledger, session_factory, clock):
        hold = await ledger.create_hold("B1", 500, "cust1", "land1")

        with pytest.raises(RuntimeError):
            async with locked_escrow_unit_of_work(session_factory, hold.escrow_id, clock) as uow:
                uow.record(AuditAction.VOIDED, "should vanish", TrackingStatus.VOIDED)
                raise RuntimeError("abort")

        escrow = await ledger.get_escrow(hold.escrow_id)
        tracking = await ledger.get_tracking(hold.transaction_id)
        assert [entry["action"] for entry in escrow.audit_log] == ["created"]
        assert tracking.status == "initiated"

    @pytest.mark.asyncio
    async def test_missing_mirror_is_rebuilt(self, ledger, session_factory, clock):
        hold = await ledger.create_hold("B1", 500, "cust1", "land1")
        async with session_factory() as session:
            async with session.begin():
                await session.execute(delete(PaymentTracking))

        async with locked_escrow_unit_of_work(session_factory, hold.escrow_id, clock) as uow:
            uow.record(AuditAction.DISPUTE_CREATED, "Payment disputed", TrackingStatus.DISPUTED)

        async with session_factory() as session:
            tracking = await get_tracking_by_escrow_id(session, hold.escrow_id)
        assert tracking.status == "disputed"
        assert [entry["status"] for entry in tracking.timeline] == ["rebuilt", "disputed"]
