# clinic_scheduler/services/availability_cache.py
"""
Process-wide memo over SlotGenerator lookups.

Entries are keyed by date (vacation flag, slot grid) or weekday (has an
active schedule). Mutations of schedules, vacations or clinic settings evict
whole buckets synchronously, in the same call that committed the change.
"""
from __future__ import annotations
import logging
import threading
import time as _time
from datetime import date, time
from typing import Any, Callable, Dict, Hashable, List, Optional, Set, Tuple

from ..config import settings
from .. import models
from .slots import SlotGenerator, _SlotQueries

logger = logging.getLogger(__name__)

_MISSING = object()


class AvailabilityCache:
    def __init__(self, ttl_seconds: Optional[int] = None, timer: Callable[[], float] = _time.monotonic):
        self.ttl = settings.SLOTS_CACHE_TTL if ttl_seconds is None else ttl_seconds
        self._timer = timer
        self._lock = threading.Lock()
        # bucket -> key -> (expires_at, value)
        self._vacation: Dict[date, Tuple[float, bool]] = {}
        self._weekday: Dict[int, Tuple[float, bool]] = {}
        self._grid: Dict[Tuple[date, int], Tuple[float, Tuple[time, ...]]] = {}

    # ---- memo primitives ----
    def _get(self, bucket: Dict, key: Hashable) -> Any:
        with self._lock:
            entry = bucket.get(key)
            if entry is None:
                return _MISSING
            expires_at, value = entry
            if self._timer() >= expires_at:
                bucket.pop(key, None)
                return _MISSING
            return value

    def _put(self, bucket: Dict, key: Hashable, value: Any) -> None:
        if self.ttl <= 0:
            return
        with self._lock:
            bucket[key] = (self._timer() + self.ttl, value)

    def _remember(self, bucket: Dict, key: Hashable, compute: Callable[[], Any]) -> Any:
        value = self._get(bucket, key)
        if value is _MISSING:
            value = compute()
            self._put(bucket, key, value)
        return value

    # ---- buckets ----
    def vacation_flag(self, day: date, compute: Callable[[], bool]) -> bool:
        return self._remember(self._vacation, day, compute)

    def weekday_open(self, day_of_week: int, compute: Callable[[], bool]) -> bool:
        return self._remember(self._weekday, int(day_of_week), compute)

    def grid(self, day: date, duration_min: int, compute: Callable[[], List[time]]) -> List[time]:
        return list(self._remember(self._grid, (day, duration_min), lambda: tuple(compute())))

    # ---- invalidation ----
    def invalidate_weekday(self, day_of_week: int) -> None:
        day_of_week = int(day_of_week)
        with self._lock:
            self._weekday.pop(day_of_week, None)
            stale = [k for k in self._grid if models.DayOfWeek.from_date(k[0]) == day_of_week]
            for k in stale:
                del self._grid[k]
        logger.debug("Availability cache: weekday %s evicted (%d grids)", day_of_week, len(stale))

    def invalidate_dates(self, start: date, end: date) -> None:
        with self._lock:
            for d in [d for d in self._vacation if start <= d <= end]:
                del self._vacation[d]
            stale = [k for k in self._grid if start <= k[0] <= end]
            for k in stale:
                del self._grid[k]
        logger.debug("Availability cache: %s..%s evicted (%d grids)", start, end, len(stale))

    def clear(self) -> None:
        with self._lock:
            self._vacation.clear()
            self._weekday.clear()
            self._grid.clear()
        logger.debug("Availability cache cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._vacation) + len(self._weekday) + len(self._grid)

    def wrap(self, generator: SlotGenerator) -> "CachedSlotGenerator":
        return CachedSlotGenerator(generator, self)


class CachedSlotGenerator(_SlotQueries):
    """Same interface as SlotGenerator, memoized through an AvailabilityCache."""

    def __init__(self, inner: SlotGenerator, cache: AvailabilityCache):
        self.inner = inner
        self.cache = cache

    @property
    def config(self):
        return self.inner.config

    @property
    def clock(self):
        return self.inner.clock

    def is_vacation_day(self, day: date) -> bool:
        return self.cache.vacation_flag(day, lambda: self.inner.is_vacation_day(day))

    def vacation_dates(self, start: date, end: date) -> Set[date]:
        return self.inner.vacation_dates(start, end)

    def has_active_schedule(self, weekday: int) -> bool:
        return self.cache.weekday_open(weekday, lambda: self.inner.has_active_schedule(weekday))

    def grid_for(self, day: date) -> List[time]:
        return self.cache.grid(day, self.config.slot_duration_minutes, lambda: self.inner.grid_for(day))
