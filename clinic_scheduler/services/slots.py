# clinic_scheduler/services/slots.py
"""
Slot Generation Service

Turns (date, weekly schedule, vacations, clinic config) into the ordered list
of structurally available slot start times. Occupancy is not considered here;
see BookingLedger for that.
"""
from __future__ import annotations
import logging
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Set, Any, TYPE_CHECKING

from sqlalchemy.orm import Session

from ..clock import Clock, now_local
from .. import models
from .clinic_config import ClinicConfig
from .schedule import ScheduleService, schedule_slots
from .vacations import VacationCalendar

if TYPE_CHECKING:
    from .ledger import BookingLedger

logger = logging.getLogger(__name__)


def compute_grid(schedule: Optional[models.Schedule], on_vacation: bool, config: ClinicConfig) -> List[time]:
    """Structural grid, independent of the current time."""
    if on_vacation or schedule is None:
        return []
    return schedule_slots(schedule, config.slot_duration_minutes)


def drop_elapsed(day: date, grid: List[time], now: datetime) -> List[time]:
    today = now.date()
    if day < today:
        return []
    if day > today:
        return list(grid)
    return [t for t in grid if datetime.combine(day, t) > now]


class _SlotQueries:
    """
    Shared composition over four primitives: is_vacation_day(day),
    vacation_dates(start, end), has_active_schedule(weekday) and grid_for(day).
    """
    config: ClinicConfig
    clock: Clock

    def is_date_available(self, day: date) -> bool:
        if self.is_vacation_day(day):
            return False
        return self.has_active_schedule(models.DayOfWeek.from_date(day))

    def open_dates(self, start: date, end: date) -> List[date]:
        """Dates in [start, end] with an active schedule and no vacation."""
        closed = self.vacation_dates(start, end)
        open_weekdays: Dict[int, bool] = {}
        out = []
        day = start
        while day <= end:
            weekday = int(models.DayOfWeek.from_date(day))
            if weekday not in open_weekdays:
                open_weekdays[weekday] = self.has_active_schedule(weekday)
            if open_weekdays[weekday] and day not in closed:
                out.append(day)
            day += timedelta(days=1)
        return out

    def slots_for(self, day: date) -> List[time]:
        return drop_elapsed(day, self.grid_for(day), self.clock())

    def is_candidate(self, when: datetime) -> bool:
        """True when `when` (clinic-local, naive) is a generated slot start."""
        if when.second or when.microsecond:
            return False
        return when.time() in self.slots_for(when.date())


class SlotGenerator(_SlotQueries):
    """Storage-backed slot generator. Request-scoped: one per DB session."""

    def __init__(self, db: Session, config: ClinicConfig, clock: Clock = now_local):
        self.db = db
        self.config = config
        self.clock = clock
        self.schedules = ScheduleService(db)
        self.vacations = VacationCalendar(db, clock=clock)

    def is_vacation_day(self, day: date) -> bool:
        return self.vacations.is_vacation_day(day)

    def vacation_dates(self, start: date, end: date) -> Set[date]:
        return self.vacations.dates_in_range(start, end)

    def has_active_schedule(self, weekday: int) -> bool:
        return self.schedules.active_for(weekday) is not None

    def grid_for(self, day: date) -> List[time]:
        """Slot grid for `day` ignoring the current time."""
        on_vacation = self.is_vacation_day(day)
        schedule = None if on_vacation else self.schedules.active_for(models.DayOfWeek.from_date(day))
        return compute_grid(schedule, on_vacation, self.config)


# ====== Availability views (slots + occupancy) ======
class AvailabilityQueries:
    """Read-side views used by the slot listing endpoints and dashboards."""

    def __init__(self, slots: _SlotQueries, ledger: "BookingLedger"):
        self.slots = slots
        self.ledger = ledger

    @property
    def config(self) -> ClinicConfig:
        return self.slots.config

    def slots_with_occupancy(self, day: date) -> List[Dict[str, Any]]:
        capacity = self.config.max_patients_per_slot
        times = self.slots.slots_for(day)
        taken = self.ledger.active_counts_for_date(day)
        out = []
        for t in times:
            used = taken.get(t, 0)
            out.append({
                "time": t.strftime("%H:%M"),
                "datetime": datetime.combine(day, t).isoformat(),
                "capacity_remaining": max(0, capacity - used),
                "is_available": used < capacity,
            })
        return out

    def available_dates(self, days: Optional[int] = None) -> List[Dict[str, Any]]:
        days = self.config.advance_booking_days if days is None else days
        today = self.slots.clock().date()
        out = []
        for day in self.slots.open_dates(today, today + timedelta(days=days)):
            count = len(self.slots.slots_for(day))
            weekday = models.DayOfWeek.from_date(day)
            out.append({
                "date": day.isoformat(),
                "day_of_week": int(weekday),
                "day_name": weekday.label,
                "slots_count": count,
            })
        return out

    def next_available_slot(self) -> Optional[Dict[str, Any]]:
        today = self.slots.clock().date()
        for i in range(self.config.advance_booking_days + 1):
            day = today + timedelta(days=i)
            for slot in self.slots_with_occupancy(day):
                if slot["is_available"]:
                    return {"date": day.isoformat(), "time": slot["time"], "datetime": slot["datetime"]}
        return None

    def slots_summary(self, days: Optional[int] = None) -> Dict[str, Any]:
        days = self.config.advance_booking_days if days is None else days
        today = self.slots.clock().date()
        total = available = open_days = 0
        for day in self.slots.open_dates(today, today + timedelta(days=days)):
            open_days += 1
            listing = self.slots_with_occupancy(day)
            total += len(listing)
            available += sum(1 for s in listing if s["is_available"])
        return {
            "total_days": days + 1,
            "available_dates": open_days,
            "total_slots": total,
            "available_slots": available,
            "next_available": self.next_available_slot(),
        }
