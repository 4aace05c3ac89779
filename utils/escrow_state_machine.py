"""
Escrow State Machine
Transition map and guard checks for escrow holds. Guards raise before any
mutation so a rejected operation leaves the record untouched.
"""

import logging
from datetime import datetime
from typing import Dict, Optional, Set

from models import DisputeStatus, EscrowRecord, EscrowStatus
from services.escrow_exceptions import HoldingPeriodError, PreconditionError

logger = logging.getLogger(__name__)


class EscrowStateValidator:
    """Validates escrow state transitions and operation preconditions"""

    VALID_TRANSITIONS: Dict[Optional[str], Set[str]] = {
        None: {EscrowStatus.HELD.value},
        EscrowStatus.HELD.value: {
            EscrowStatus.RELEASED.value,
            EscrowStatus.VOIDED.value,
        },
        # Terminal states
        EscrowStatus.RELEASED.value: set(),
        EscrowStatus.VOIDED.value: set(),
    }

    @classmethod
    def is_valid_transition(cls, current_status: Optional[str], new_status: str) -> bool:
        return new_status in cls.VALID_TRANSITIONS.get(current_status, set())

    @classmethod
    def is_terminal_state(cls, status: str) -> bool:
        return len(cls.VALID_TRANSITIONS.get(status, set())) == 0

    @classmethod
    def ensure_releasable(
        cls,
        escrow: EscrowRecord,
        now: datetime,
        max_attempts: int,
        enforce_retry_budget: bool = True,
    ) -> None:
        """
        Guard for release. Order matters only for the error reported:
        terminal/blocked states first, then the holding period.
        """
        if escrow.released or escrow.status == EscrowStatus.RELEASED.value:
            raise PreconditionError("Payment already released", escrow.id)
        if not cls.is_valid_transition(escrow.status, EscrowStatus.RELEASED.value):
            raise PreconditionError(f"Cannot release escrow in {escrow.status} status", escrow.id)
        if escrow.dispute_status == DisputeStatus.PENDING.value:
            raise PreconditionError("Payment cannot be released while a dispute is pending", escrow.id)
        if enforce_retry_budget and escrow.attempts >= max_attempts:
            raise PreconditionError(
                f"Release retry budget exhausted ({escrow.attempts}/{max_attempts} attempts)", escrow.id
            )
        if now < escrow.scheduled_release_date:
            raise HoldingPeriodError(
                f"Holding period not completed (releasable from {escrow.scheduled_release_date.isoformat()})",
                escrow.id,
            )

    @classmethod
    def ensure_disputable(cls, escrow: EscrowRecord) -> None:
        if escrow.released or escrow.status != EscrowStatus.HELD.value:
            raise PreconditionError(
                f"Dispute cannot be created for escrow in {escrow.status} status", escrow.id
            )
        if escrow.dispute_status != DisputeStatus.NONE.value:
            raise PreconditionError("Dispute already open for this payment", escrow.id)

    @classmethod
    def ensure_voidable(cls, escrow: EscrowRecord) -> None:
        if not cls.is_valid_transition(escrow.status, EscrowStatus.VOIDED.value) or escrow.released:
            raise PreconditionError(f"Cannot void escrow in {escrow.status} status", escrow.id)
        if escrow.captured_at is not None:
            # Captured funds need a refund, not a void
            raise PreconditionError("Cannot void a captured payment", escrow.id)


__all__ = [
    "EscrowStateValidator",
]
