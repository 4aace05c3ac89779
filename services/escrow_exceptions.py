"""Typed failures surfaced by the escrow ledger"""

from typing import Optional


class EscrowLedgerError(Exception):
    """Base exception for escrow ledger errors"""

    def __init__(self, message: str, escrow_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.escrow_id = escrow_id


class ValidationError(EscrowLedgerError):
    """Bad amount or unknown party; raised before anything is written"""

    pass


class GatewayError(EscrowLedgerError):
    """Payment gateway rejected authorize/capture/transfer/void"""

    def __init__(
        self,
        message: str,
        escrow_id: Optional[str] = None,
        operation: Optional[str] = None,
        retryable: bool = True,
    ):
        super().__init__(message, escrow_id)
        self.operation = operation
        self.retryable = retryable


class PreconditionError(EscrowLedgerError):
    """Operation not allowed in the escrow's current state; nothing was mutated"""

    pass


class HoldingPeriodError(PreconditionError):
    """Release attempted before the scheduled release date"""

    pass


class NotFoundError(EscrowLedgerError):
    """Unknown escrow or dispute id"""

    pass
