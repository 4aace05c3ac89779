"""
Identifier generation for escrow operations

Transaction ids are human-traceable (booking id, millisecond timestamp and a
random suffix) so support staff can grep logs for them. Dispute ids are
128-bit random tokens.
"""

import logging
import secrets
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from utils.datetime_helpers import ensure_naive_datetime

logger = logging.getLogger(__name__)


class EntityType(Enum):
    """Entity prefixes for generated ids"""
    TRANSACTION = "TXN"


TRANSACTION_RANDOM_BYTES = 4
DISPUTE_ID_BYTES = 16  # 128 bits


def _epoch_millis(moment: datetime) -> int:
    naive = ensure_naive_datetime(moment)
    return int(naive.replace(tzinfo=timezone.utc).timestamp() * 1000)


def generate_transaction_id(booking_id: str, now: Optional[datetime] = None) -> str:
    """TXN-{bookingId}-{epochMillis}-{8 hex chars}"""
    if not booking_id:
        raise ValueError("booking_id is required to generate a transaction id")
    moment = now or datetime.now(timezone.utc)
    suffix = secrets.token_hex(TRANSACTION_RANDOM_BYTES)
    transaction_id = f"{EntityType.TRANSACTION.value}-{booking_id}-{_epoch_millis(moment)}-{suffix}"
    logger.debug(f"Generated transaction id {transaction_id}")
    return transaction_id


def generate_dispute_id() -> str:
    """32 hex chars of cryptographic randomness"""
    return secrets.token_hex(DISPUTE_ID_BYTES)
