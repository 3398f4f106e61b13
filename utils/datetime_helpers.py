"""
Datetime helper utilities to keep timestamp handling consistent.

All model timestamp columns are timezone-naive UTC (DateTime(timezone=False)),
so every value written to them must come through these helpers.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
import logging

logger = logging.getLogger(__name__)


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
    """Current UTC time without timezone info"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def days_ago(days: int, now: Optional[datetime] = None) -> datetime:
    """Naive UTC cutoff `days` before `now` (defaults to the current time)"""
    reference = ensure_naive_datetime(now) if now is not None else get_naive_utc_now()
    return reference - timedelta(days=days)


def isoformat_or_none(dt: Optional[datetime]) -> Optional[str]:
    """Serialize a naive UTC timestamp for API responses"""
    if dt is None:
        return None
    return ensure_naive_datetime(dt).isoformat() + "Z"
