"""
Datetime helper utilities to ensure consistent timezone handling across the ledger.

CRITICAL: escrow tables store timezone-naive UTC datetimes (DateTime(timezone=False)).
Comparing an aware "now" with a naive scheduled_release_date raises TypeError, so
every timestamp the ledger writes or compares goes through these helpers.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
import logging

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def ensure_naive_datetime(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Convert timezone-aware datetime to naive UTC datetime.

    Example:
        >>> aware_dt = datetime.now(timezone.utc)
        >>> naive_dt = ensure_naive_datetime(aware_dt)
        >>> assert naive_dt.tzinfo is None
    """
    if dt is None:
        return None

    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)

    return dt


def get_naive_utc_now() -> datetime:
    """Current UTC time as naive datetime; the default ledger clock"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def calculate_release_date(created_at: datetime, hold_days: int) -> datetime:
    """Earliest moment a hold created at created_at may be released"""
    return ensure_naive_datetime(created_at) + timedelta(days=hold_days)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """ISO-8601 with a trailing Z, as stored in audit logs and timelines"""
    if dt is None:
        return None
    return ensure_naive_datetime(dt).isoformat(timespec="milliseconds") + "Z"
