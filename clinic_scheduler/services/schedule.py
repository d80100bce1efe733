# clinic_scheduler/services/schedule.py
"""
Weekly availability template.

One active window per weekday (Sunday=0 … Saturday=6) with an optional single
break. The slot grid for a window is plain minute arithmetic; everything that
touches storage lives in ScheduleService.
"""
from __future__ import annotations
import logging
from datetime import time, datetime
from typing import List, Optional, Union, TYPE_CHECKING

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import ValidationError, NotFound
from .. import models

if TYPE_CHECKING:
    from .availability_cache import AvailabilityCache

logger = logging.getLogger(__name__)

TimeLike = Union[time, str]

_FIELDS = ("day_of_week", "start_time", "end_time", "break_start", "break_end", "is_active")


# ====== Slot grid arithmetic ======
def _minutes(t: time) -> int:
    return t.hour * 60 + t.minute


def _from_minutes(m: int) -> time:
    return time(m // 60, m % 60)


def generate_day_slots(
    start_time: time,
    end_time: time,
    duration_min: int,
    break_start: Optional[time] = None,
    break_end: Optional[time] = None,
) -> List[time]:
    """
    Slot starts in [start_time, end_time) every `duration_min` minutes.

    A candidate [t, t+d) overlapping the break [break_start, break_end) is not
    emitted; the walk jumps straight to break_end. No partial slot at the end
    of the window.
    """
    if duration_min <= 0:
        raise ValueError("duration_min must be positive")

    start, end = _minutes(start_time), _minutes(end_time)
    has_break = break_start is not None and break_end is not None
    b_start = _minutes(break_start) if has_break else None
    b_end = _minutes(break_end) if has_break else None

    slots: List[time] = []
    cur = start
    while cur + duration_min <= end:
        if has_break and cur < b_end and cur + duration_min > b_start:
            cur = b_end
            continue
        slots.append(_from_minutes(cur))
        cur += duration_min
    return slots


def schedule_slots(schedule: models.Schedule, duration_min: int) -> List[time]:
    return generate_day_slots(
        schedule.start_time,
        schedule.end_time,
        duration_min,
        schedule.break_start if schedule.has_break else None,
        schedule.break_end if schedule.has_break else None,
    )


def slots_count(schedule: models.Schedule, duration_min: int) -> int:
    return len(schedule_slots(schedule, duration_min))


# ====== Validation ======
def _to_time(value: Optional[TimeLike], field: str) -> Optional[time]:
    if value is None or value == "":
        return None
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    try:
        return datetime.strptime(str(value).strip(), "%H:%M").time()
    except ValueError:
        raise ValidationError(f"Invalid {field} format. Use HH:MM.", "invalid_time", {"field": field, "value": value})


def validate_schedule_fields(
    day_of_week: int,
    start_time: Optional[time],
    end_time: Optional[time],
    break_start: Optional[time] = None,
    break_end: Optional[time] = None,
) -> None:
    if day_of_week is None or not isinstance(day_of_week, int) or not 0 <= int(day_of_week) <= 6:
        raise ValidationError("day_of_week must be between 0 (Sunday) and 6 (Saturday).", "invalid_day",
                              {"day_of_week": day_of_week})
    if start_time is None or end_time is None:
        raise ValidationError("start_time and end_time are required.", "missing_field")
    if end_time <= start_time:
        raise ValidationError("end_time must be after start_time.", "invalid_window",
                              {"start_time": start_time, "end_time": end_time})

    if (break_start is None) != (break_end is None):
        raise ValidationError("break_start and break_end must be given together.", "incomplete_break")
    if break_start is not None:
        if break_end <= break_start:
            raise ValidationError("break_end must be after break_start.", "invalid_break",
                                  {"break_start": break_start, "break_end": break_end})
        if break_start < start_time or break_end > end_time:
            raise ValidationError("The break must fall inside the working window.", "break_outside_window",
                                  {"break_start": break_start, "break_end": break_end})


# ====== Admin mutations ======
class ScheduleService:
    """
    Create/update/delete/toggle weekly schedules.

    Every mutation re-validates the row and the one-active-per-weekday rule,
    commits, then evicts the affected weekday from the availability cache
    before returning.
    """

    def __init__(self, db: Session, cache: Optional["AvailabilityCache"] = None):
        self.db = db
        self.cache = cache

    # ---- reads ----
    def list(self) -> List[models.Schedule]:
        return (
            self.db.query(models.Schedule)
            .order_by(models.Schedule.day_of_week.asc(), models.Schedule.id.asc())
            .all()
        )

    def get(self, schedule_id: int) -> models.Schedule:
        schedule = self.db.get(models.Schedule, schedule_id)
        if schedule is None:
            raise NotFound("Schedule not found.", "schedule_not_found", {"schedule_id": schedule_id})
        return schedule

    def active_for(self, day_of_week: int) -> Optional[models.Schedule]:
        return (
            self.db.query(models.Schedule)
            .filter(models.Schedule.day_of_week == int(day_of_week))
            .filter(models.Schedule.is_active.is_(True))
            .order_by(models.Schedule.id.asc())
            .first()
        )

    # ---- writes ----
    def create(
        self,
        day_of_week: int,
        start_time: TimeLike,
        end_time: TimeLike,
        break_start: Optional[TimeLike] = None,
        break_end: Optional[TimeLike] = None,
        is_active: bool = True,
    ) -> models.Schedule:
        values = self._normalize(dict(
            day_of_week=day_of_week,
            start_time=start_time,
            end_time=end_time,
            break_start=break_start,
            break_end=break_end,
            is_active=is_active,
        ))
        self._validate(values, exclude_id=None)

        schedule = models.Schedule(**values)
        self.db.add(schedule)
        self._commit()
        self.db.refresh(schedule)
        logger.info("Schedule created: id=%s day=%s %s-%s", schedule.id, schedule.day_of_week,
                    schedule.start_time, schedule.end_time)
        self._invalidate(schedule.day_of_week)
        return schedule

    def update(self, schedule_id: int, **changes) -> models.Schedule:
        unknown = set(changes) - set(_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown schedule fields: {', '.join(sorted(unknown))}.", "unknown_field")

        schedule = self.get(schedule_id)
        previous_day = schedule.day_of_week
        values = {field: getattr(schedule, field) for field in _FIELDS}
        values.update(changes)
        values = self._normalize(values)
        self._validate(values, exclude_id=schedule.id)

        for field, value in values.items():
            setattr(schedule, field, value)
        self._commit()
        self.db.refresh(schedule)
        logger.info("Schedule updated: id=%s changes=%s", schedule.id, sorted(changes))
        self._invalidate(previous_day, schedule.day_of_week)
        return schedule

    def delete(self, schedule_id: int) -> None:
        schedule = self.get(schedule_id)
        day = schedule.day_of_week
        self.db.delete(schedule)
        self._commit()
        logger.info("Schedule deleted: id=%s day=%s", schedule_id, day)
        self._invalidate(day)

    def toggle(self, schedule_id: int) -> models.Schedule:
        schedule = self.get(schedule_id)
        return self.update(schedule_id, is_active=not schedule.is_active)

    # ---- internals ----
    @staticmethod
    def _normalize(values: dict) -> dict:
        out = dict(values)
        for field in ("start_time", "end_time", "break_start", "break_end"):
            out[field] = _to_time(out.get(field), field)
        if isinstance(out.get("day_of_week"), models.DayOfWeek):
            out["day_of_week"] = int(out["day_of_week"])
        if out.get("is_active") is None:
            raise ValidationError("is_active cannot be null.", "missing_field", {"field": "is_active"})
        out["is_active"] = bool(out["is_active"])
        return out

    def _validate(self, values: dict, exclude_id: Optional[int]) -> None:
        validate_schedule_fields(
            values["day_of_week"],
            values["start_time"],
            values["end_time"],
            values["break_start"],
            values["break_end"],
        )
        if values["is_active"]:
            clash = self.active_for(values["day_of_week"])
            if clash is not None and clash.id != exclude_id:
                raise ValidationError(
                    "There is already an active schedule for this day.",
                    "duplicate_active_schedule",
                    {"day_of_week": values["day_of_week"], "schedule_id": clash.id},
                )

    def _commit(self) -> None:
        try:
            self.db.commit()
        except IntegrityError:
            # A concurrent admin activated the same weekday first
            self.db.rollback()
            raise ValidationError("There is already an active schedule for this day.",
                                  "duplicate_active_schedule")

    def _invalidate(self, *days: int) -> None:
        if self.cache is None:
            return
        for day in set(days):
            self.cache.invalidate_weekday(day)
