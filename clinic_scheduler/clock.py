# clinic_scheduler/clock.py
from __future__ import annotations
from datetime import datetime
from typing import Callable, Optional

import pytz

from .config import settings

# A clock returns the current clinic-local time as a NAIVE datetime.
Clock = Callable[[], datetime]


def _local_tz(timezone_str: Optional[str] = None):
    return pytz.timezone(timezone_str or settings.TIMEZONE)


def now_local() -> datetime:
    return datetime.now(_local_tz()).replace(tzinfo=None)


def to_local_naive(dt: datetime, timezone_str: Optional[str] = None) -> datetime:
    """
    Aware datetimes are moved to the clinic TZ; naive ones are taken as
    clinic-local already. Result is naive.
    """
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(_local_tz(timezone_str)).replace(tzinfo=None)


def localize(dt_naive: datetime, timezone_str: Optional[str] = None) -> datetime:
    """Attaches the clinic TZ to a naive local datetime."""
    return _local_tz(timezone_str).localize(dt_naive)
