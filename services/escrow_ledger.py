"""
Escrow Ledger

Holds a customer's booking payment, transfers it to the landowner at most
once, and freezes the transfer while a dispute is pending.

Every write goes through an EscrowUnitOfWork: the escrow row is read fresh
under a lock, guards run, and the escrow, its tracking mirror and any
LedgerTransaction/Dispute rows commit together. Two concurrent releases of
the same escrow cannot both pass the guard: the second one either waits for
the first to commit and sees released=True (or the bumped attempt count), or
it ran first itself.

Gateway capture/transfer calls happen inside that transaction, before the
commit. That keeps the at-most-once guarantee but means gateway latency is
lock hold time, so nothing else is done while the lock is held.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import EscrowSettings
from models import (
    AuditAction, Dispute, DisputeStatus, EscrowRecord, EscrowStatus,
    LedgerTransaction, LedgerTransactionType, PaymentTracking, TrackingStatus, UserProfile,
)
from services.escrow_exceptions import GatewayError, NotFoundError, PreconditionError, ValidationError
from services.escrow_id_generator import generate_dispute_id, generate_transaction_id
from services.escrow_notifications import EscrowNotifier
from services.escrow_validation_service import EscrowValidationService
from services.payment_gateway import PaymentGateway
from services.payment_tracking import (
    EscrowUnitOfWork, get_tracking_by_transaction_id,
    locked_escrow_unit_of_work, new_escrow_unit_of_work,
)
from services.risk_scoring import NoOpRiskScorer, RiskScorer, clamp_risk_level
from utils.datetime_helpers import Clock, calculate_release_date, get_naive_utc_now, to_iso
from utils.escrow_state_machine import EscrowStateValidator

logger = logging.getLogger(__name__)


@dataclass
class HoldResult:
    escrow_id: str
    gateway_hold_ref: str
    transaction_id: str


@dataclass
class ReleaseResult:
    escrow_id: str
    released: bool
    transfer_ref: Optional[str]


@dataclass
class DisputeResult:
    escrow_id: str
    dispute_id: str


@dataclass
class VoidResult:
    escrow_id: str
    voided: bool


def _as_gateway_error(error: Exception, escrow_id: Optional[str], operation: str) -> GatewayError:
    if isinstance(error, GatewayError):
        if error.escrow_id is None:
            error.escrow_id = escrow_id
        return error
    wrapped = GatewayError(f"{operation} failed: {error}", escrow_id, operation=operation)
    wrapped.__cause__ = error
    return wrapped


class EscrowLedger:
    """Owns EscrowRecord, Dispute, LedgerTransaction and PaymentTracking writes"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        gateway: PaymentGateway,
        settings: Optional[EscrowSettings] = None,
        risk_scorer: Optional[RiskScorer] = None,
        clock: Optional[Clock] = None,
        notifier: Optional[EscrowNotifier] = None,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.settings = settings or EscrowSettings.from_config()
        self.risk_scorer = risk_scorer or NoOpRiskScorer()
        self.clock = clock or get_naive_utc_now
        self.notifier = notifier or EscrowNotifier()

    # ------------------------------------------------------------------
    # Hold creation
    # ------------------------------------------------------------------

    async def create_hold(
        self, booking_id: str, amount: Any, customer_id: str, landowner_id: str
    ) -> HoldResult:
        """
        Authorize the booking amount against the customer and record the hold.

        Nothing is persisted until the gateway authorization succeeds, so a
        ValidationError or GatewayError leaves no trace in the store.
        """
        if not booking_id:
            raise ValidationError("booking_id is required")
        amount = EscrowValidationService.validate_amount(amount, self.settings.max_amount)

        async with self.session_factory() as session:
            customer, landowner = await EscrowValidationService.resolve_parties(
                session, customer_id, landowner_id
            )
            existing = await session.scalar(
                select(EscrowRecord.id).where(EscrowRecord.booking_id == booking_id)
            )
        if existing is not None:
            raise PreconditionError(f"Escrow already exists for booking {booking_id}", existing)

        risk_level = clamp_risk_level(await self.risk_scorer.score(customer_id, amount))
        security_checks = EscrowValidationService.build_security_checks(customer, landowner, risk_level)

        now = self.clock()
        transaction_id = generate_transaction_id(booking_id, now)

        try:
            hold_ref = await self.gateway.authorize(
                amount,
                customer_id,
                currency=self.settings.currency,
                metadata={
                    "bookingId": booking_id,
                    "landownerId": landowner_id,
                    "type": "parking_payment",
                    "transactionId": transaction_id,
                },
            )
        except Exception as e:
            error = _as_gateway_error(e, None, "authorize")
            logger.error(f"❌ ESCROW_HOLD: authorization failed for booking {booking_id}: {error.message}")
            raise error

        escrow = EscrowRecord(
            id=uuid.uuid4().hex,
            booking_id=booking_id,
            customer_id=customer_id,
            landowner_id=landowner_id,
            amount=amount,
            currency=self.settings.currency,
            transaction_id=transaction_id,
            gateway_hold_ref=hold_ref,
            status=EscrowStatus.HELD.value,
            released=False,
            created_at=now,
            scheduled_release_date=calculate_release_date(now, self.settings.hold_days),
            dispute_status=DisputeStatus.NONE.value,
            security_checks=security_checks,
            attempts=0,
            tracking_version=self.settings.tracking_version,
            audit_log=[],
            version=0,
        )

        try:
            async with new_escrow_unit_of_work(self.session_factory, escrow, now) as uow:
                uow.record(AuditAction.CREATED, "Payment escrow created", TrackingStatus.INITIATED)
        except Exception as e:
            # The authorization exists but the hold was not recorded; release it
            await self._void_orphaned_hold(hold_ref, booking_id)
            if isinstance(e, IntegrityError):
                raise PreconditionError(f"Escrow already exists for booking {booking_id}") from e
            raise

        logger.info(
            f"✅ ESCROW_HOLD: {escrow.id} created for booking {booking_id} "
            f"({amount} {self.settings.currency.upper()}, releasable {escrow.scheduled_release_date.isoformat()})"
        )
        return HoldResult(escrow_id=escrow.id, gateway_hold_ref=hold_ref, transaction_id=transaction_id)

    async def _void_orphaned_hold(self, hold_ref: str, booking_id: str) -> None:
        try:
            await self.gateway.void(hold_ref)
            logger.warning(f"⚠️ ESCROW_HOLD: voided unrecorded authorization {hold_ref} for booking {booking_id}")
        except Exception as void_error:
            logger.critical(
                f"🚨 ESCROW_HOLD: authorization {hold_ref} for booking {booking_id} is orphaned "
                f"and could not be voided: {void_error}"
            )

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    async def release(self, escrow_id: str) -> ReleaseResult:
        """
        Capture the hold and transfer it to the landowner.

        Raises:
            NotFoundError: unknown escrow
            PreconditionError: already released, dispute pending, retry budget
                exhausted, holding period not elapsed (HoldingPeriodError) or no
                payout destination; nothing is mutated
            GatewayError: capture/transfer failed; the failed attempt is
                committed before the error is raised
        """
        return await self._release(escrow_id)

    async def force_release(self, escrow_id: str, operator_id: str, reason: str) -> ReleaseResult:
        """
        Administrative release that ignores the retry budget.

        This is the manual way out for holds whose automatic retries are
        exhausted. Every other guard still applies.
        """
        if not operator_id or not reason:
            raise ValidationError("operator_id and reason are required for a forced release")
        logger.warning(f"⚠️ ESCROW_RELEASE: forced release of {escrow_id} requested by {operator_id}")
        return await self._release(escrow_id, operator_id=operator_id, reason=reason)

    async def _release(
        self, escrow_id: str, operator_id: Optional[str] = None, reason: Optional[str] = None
    ) -> ReleaseResult:
        forced = operator_id is not None
        failure: Optional[GatewayError] = None
        release_data: Dict[str, Any] = {}

        async with locked_escrow_unit_of_work(self.session_factory, escrow_id, self.clock) as uow:
            escrow = uow.escrow
            EscrowStateValidator.ensure_releasable(
                escrow, uow.now, self.settings.max_retry_attempts, enforce_retry_budget=not forced
            )
            destination = await self._payout_destination(uow.session, escrow)

            if forced:
                uow.record(
                    AuditAction.FORCE_RELEASE_REQUESTED,
                    f"Forced release requested by {operator_id}: {reason}",
                    extra={"operatorId": operator_id},
                )

            try:
                if escrow.captured_at is None:
                    await self.gateway.capture(escrow.gateway_hold_ref)
                    escrow.captured_at = uow.now
                transfer_ref = await self.gateway.transfer(
                    escrow.amount,
                    destination,
                    escrow.booking_id,
                    currency=escrow.currency,
                    metadata={"transactionId": escrow.transaction_id, "escrowId": escrow.id},
                )
            except Exception as e:
                failure = _as_gateway_error(e, escrow_id, "release")
                self._record_failed_attempt(uow, failure)
            else:
                self._record_release(uow, transfer_ref, forced)
                release_data = {
                    "escrow_id": escrow.id,
                    "booking_id": escrow.booking_id,
                    "landowner_id": escrow.landowner_id,
                    "amount": escrow.amount,
                    "transfer_ref": transfer_ref,
                    "released_at": escrow.released_at,
                }

        if failure is not None:
            logger.error(
                f"❌ ESCROW_RELEASE: {escrow_id} failed (attempt {escrow.attempts}/"
                f"{self.settings.max_retry_attempts}): {failure.message}"
            )
            raise failure

        logger.info(f"✅ ESCROW_RELEASE: {escrow_id} released, transfer {release_data['transfer_ref']}")
        await self._notify(self.notifier.payment_released, release_data)
        return ReleaseResult(escrow_id=escrow_id, released=True, transfer_ref=release_data["transfer_ref"])

    async def _payout_destination(self, session: AsyncSession, escrow: EscrowRecord) -> str:
        landowner = await session.get(UserProfile, escrow.landowner_id)
        if landowner is None or not landowner.payout_account_ref:
            raise PreconditionError(
                f"Landowner {escrow.landowner_id} has no payout destination", escrow.id
            )
        return landowner.payout_account_ref

    def _record_release(self, uow: EscrowUnitOfWork, transfer_ref: str, forced: bool) -> None:
        escrow = uow.escrow
        escrow.status = EscrowStatus.RELEASED.value
        escrow.released = True
        escrow.released_at = uow.now
        escrow.transfer_ref = transfer_ref
        escrow.attempts += 1
        escrow.last_attempt_at = uow.now

        uow.record(
            AuditAction.RELEASED,
            f"Payment released. Transfer ID: {transfer_ref}",
            TrackingStatus.COMPLETED,
            extra={"transferId": transfer_ref},
        )

        uow.session.add(
            LedgerTransaction(
                type=LedgerTransactionType.PAYMENT_RELEASE.value,
                escrow_id=escrow.id,
                transaction_id=escrow.transaction_id,
                booking_id=escrow.booking_id,
                customer_id=escrow.customer_id,
                landowner_id=escrow.landowner_id,
                amount=escrow.amount,
                transfer_ref=transfer_ref,
                security_checks=escrow.security_checks,
                transaction_metadata={
                    "holdingPeriodDays": self.settings.hold_days,
                    "releaseAttempts": escrow.attempts,
                    "forced": forced,
                },
                created_at=uow.now,
            )
        )

    def _record_failed_attempt(self, uow: EscrowUnitOfWork, failure: GatewayError) -> None:
        escrow = uow.escrow
        escrow.attempts += 1
        escrow.last_attempt_at = uow.now
        escrow.last_error = failure.message
        uow.record(AuditAction.RELEASE_FAILED, failure.message, extra={"attempt": escrow.attempts})

    async def release_for_completed_booking(self, booking_id: str) -> Optional[ReleaseResult]:
        """
        Release a completed booking's payment right away if it is eligible.

        Returns None when the booking has no unreleased escrow, the escrow is
        disputed, or its holding period is still running; the release sweep
        picks those up later.
        """
        async with self.session_factory() as session:
            escrow = await session.scalar(
                select(EscrowRecord).where(
                    EscrowRecord.booking_id == booking_id,
                    EscrowRecord.released.is_(False),
                    EscrowRecord.status == EscrowStatus.HELD.value,
                )
            )

        if escrow is None:
            logger.info(f"BOOKING_COMPLETED: no unreleased escrow for booking {booking_id}")
            return None
        if escrow.dispute_status != DisputeStatus.NONE.value:
            logger.info(f"BOOKING_COMPLETED: escrow {escrow.id} is disputed, not releasing")
            return None
        if self.clock() < escrow.scheduled_release_date:
            logger.info(f"BOOKING_COMPLETED: escrow {escrow.id} still in holding period")
            return None

        return await self.release(escrow.id)

    # ------------------------------------------------------------------
    # Dispute
    # ------------------------------------------------------------------

    async def dispute(self, escrow_id: str, details: Any) -> DisputeResult:
        """Open a dispute; release is blocked until it is cleared outside the ledger"""
        async with locked_escrow_unit_of_work(self.session_factory, escrow_id, self.clock) as uow:
            escrow = uow.escrow
            EscrowStateValidator.ensure_disputable(escrow)

            dispute_id = generate_dispute_id()
            escrow.dispute_status = DisputeStatus.PENDING.value
            escrow.dispute_id = dispute_id
            escrow.dispute_details = details
            escrow.dispute_created_at = uow.now

            uow.record(
                AuditAction.DISPUTE_CREATED,
                "Payment disputed",
                TrackingStatus.DISPUTED,
                extra={"disputeId": dispute_id},
            )

            uow.session.add(
                Dispute(
                    id=dispute_id,
                    escrow_id=escrow.id,
                    booking_id=escrow.booking_id,
                    customer_id=escrow.customer_id,
                    landowner_id=escrow.landowner_id,
                    amount=escrow.amount,
                    details=details,
                    status=DisputeStatus.PENDING.value,
                    evidence=[],
                    resolution=None,
                    timeline=[
                        {"status": "created", "timestamp": to_iso(uow.now), "details": "Dispute initiated"}
                    ],
                    security_checks=escrow.security_checks,
                    dispute_metadata={
                        "transactionId": escrow.transaction_id,
                        "gatewayHoldRef": escrow.gateway_hold_ref,
                    },
                    created_at=uow.now,
                )
            )
            dispute_data = {
                "dispute_id": dispute_id,
                "escrow_id": escrow.id,
                "booking_id": escrow.booking_id,
                "amount": escrow.amount,
            }

        logger.info(f"✅ ESCROW_DISPUTE: dispute {dispute_id} opened on escrow {escrow_id}")
        await self._notify(self.notifier.dispute_opened, dispute_data)
        return DisputeResult(escrow_id=escrow_id, dispute_id=dispute_id)

    # ------------------------------------------------------------------
    # Void
    # ------------------------------------------------------------------

    async def void_hold(self, escrow_id: str, operator_id: str, reason: str) -> VoidResult:
        """
        Administrative cancellation of an uncaptured hold.

        Allowed while a dispute is pending; this is how a disputed hold is
        terminated. A gateway failure rolls everything back.
        """
        if not operator_id or not reason:
            raise ValidationError("operator_id and reason are required to void a hold")

        async with locked_escrow_unit_of_work(self.session_factory, escrow_id, self.clock) as uow:
            escrow = uow.escrow
            EscrowStateValidator.ensure_voidable(escrow)

            try:
                await self.gateway.void(escrow.gateway_hold_ref)
            except Exception as e:
                raise _as_gateway_error(e, escrow_id, "void")

            escrow.status = EscrowStatus.VOIDED.value
            escrow.voided_at = uow.now
            uow.record(
                AuditAction.VOIDED,
                f"Authorization voided by {operator_id}: {reason}",
                TrackingStatus.VOIDED,
                extra={"operatorId": operator_id},
            )

        logger.warning(f"⚠️ ESCROW_VOID: {escrow_id} voided by {operator_id}: {reason}")
        return VoidResult(escrow_id=escrow_id, voided=True)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_escrow(self, escrow_id: str) -> EscrowRecord:
        async with self.session_factory() as session:
            escrow = await session.get(EscrowRecord, escrow_id)
        if escrow is None:
            raise NotFoundError(f"Escrow record {escrow_id} not found", escrow_id)
        return escrow

    async def get_dispute(self, dispute_id: str) -> Dispute:
        async with self.session_factory() as session:
            dispute = await session.get(Dispute, dispute_id)
        if dispute is None:
            raise NotFoundError(f"Dispute {dispute_id} not found")
        return dispute

    async def get_tracking(self, transaction_id: str) -> PaymentTracking:
        async with self.session_factory() as session:
            tracking = await get_tracking_by_transaction_id(session, transaction_id)
        if tracking is None:
            raise NotFoundError(f"No payment tracking for transaction {transaction_id}")
        return tracking

    async def list_ledger_transactions(
        self, transaction_id: Optional[str] = None, escrow_id: Optional[str] = None
    ) -> List[LedgerTransaction]:
        stmt = select(LedgerTransaction).order_by(LedgerTransaction.created_at)
        if transaction_id is not None:
            stmt = stmt.where(LedgerTransaction.transaction_id == transaction_id)
        if escrow_id is not None:
            stmt = stmt.where(LedgerTransaction.escrow_id == escrow_id)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def _notify(self, hook, data: Dict[str, Any]) -> None:
        try:
            await hook(data)
        except Exception as e:
            logger.error(f"Failed to send escrow notification via {getattr(hook, '__name__', hook)}: {e}")
