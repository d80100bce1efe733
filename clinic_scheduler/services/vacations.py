# clinic_scheduler/services/vacations.py
from __future__ import annotations
import logging
from datetime import date, datetime, timedelta
from typing import List, Optional, Set, Union, TYPE_CHECKING

from sqlalchemy.orm import Session

from ..clock import Clock, now_local
from ..errors import ValidationError, NotFound
from .. import models

if TYPE_CHECKING:
    from .availability_cache import AvailabilityCache

logger = logging.getLogger(__name__)

DateLike = Union[date, str]

_FIELDS = ("title", "reason", "start_date", "end_date")


def _to_date(value: Optional[DateLike], field: str) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip(), "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError(f"Invalid {field} format. Use YYYY-MM-DD.", "invalid_date", {"field": field, "value": value})


class VacationCalendar:
    """
    Inclusive date ranges that blank out availability regardless of the
    weekly schedule.
    """

    def __init__(self, db: Session, cache: Optional["AvailabilityCache"] = None, clock: Clock = now_local):
        self.db = db
        self.cache = cache
        self.clock = clock

    # ---- lookups ----
    def _covering(self, day: date):
        return (
            self.db.query(models.Vacation)
            .filter(models.Vacation.start_date <= day)
            .filter(models.Vacation.end_date >= day)
        )

    def is_vacation_day(self, day: date) -> bool:
        return self.db.query(self._covering(day).exists()).scalar()

    def for_date(self, day: date) -> List[models.Vacation]:
        return self._covering(day).order_by(models.Vacation.start_date.asc()).all()

    def dates_in_range(self, start: date, end: date) -> Set[date]:
        """Every vacation date inside [start, end], from a single query."""
        rows = (
            self.db.query(models.Vacation)
            .filter(models.Vacation.start_date <= end)
            .filter(models.Vacation.end_date >= start)
            .all()
        )
        out: Set[date] = set()
        for v in rows:
            cur = max(v.start_date, start)
            last = min(v.end_date, end)
            while cur <= last:
                out.add(cur)
                cur += timedelta(days=1)
        return out

    def list(self) -> List[models.Vacation]:
        return self.db.query(models.Vacation).order_by(models.Vacation.start_date.asc()).all()

    def upcoming(self) -> List[models.Vacation]:
        today = self.clock().date()
        return (
            self.db.query(models.Vacation)
            .filter(models.Vacation.end_date >= today)
            .order_by(models.Vacation.start_date.asc())
            .all()
        )

    def get(self, vacation_id: int) -> models.Vacation:
        vacation = self.db.get(models.Vacation, vacation_id)
        if vacation is None:
            raise NotFound("Vacation not found.", "vacation_not_found", {"vacation_id": vacation_id})
        return vacation

    # ---- admin mutations ----
    def create(self, title: str, start_date: DateLike, end_date: DateLike, reason: Optional[str] = None) -> models.Vacation:
        start = _to_date(start_date, "start_date")
        end = _to_date(end_date, "end_date")
        self._validate(title, start, end)

        today = self.clock().date()
        if start < today:
            raise ValidationError("start_date cannot be in the past.", "start_in_past",
                                  {"start_date": start, "today": today})

        vacation = models.Vacation(title=title.strip(), reason=reason, start_date=start, end_date=end)
        self.db.add(vacation)
        self.db.commit()
        self.db.refresh(vacation)
        logger.info("Vacation created: id=%s %s..%s", vacation.id, start, end)
        self._invalidate((start, end))
        return vacation

    def update(self, vacation_id: int, **changes) -> models.Vacation:
        unknown = set(changes) - set(_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown vacation fields: {', '.join(sorted(unknown))}.", "unknown_field")

        vacation = self.get(vacation_id)
        old_range = (vacation.start_date, vacation.end_date)

        title = changes.get("title", vacation.title)
        start = _to_date(changes["start_date"], "start_date") if "start_date" in changes else vacation.start_date
        end = _to_date(changes["end_date"], "end_date") if "end_date" in changes else vacation.end_date
        self._validate(title, start, end)

        vacation.title = title.strip()
        vacation.start_date = start
        vacation.end_date = end
        if "reason" in changes:
            vacation.reason = changes["reason"]
        self.db.commit()
        self.db.refresh(vacation)
        logger.info("Vacation updated: id=%s %s..%s", vacation.id, start, end)
        self._invalidate(old_range, (start, end))
        return vacation

    def delete(self, vacation_id: int) -> None:
        vacation = self.get(vacation_id)
        old_range = (vacation.start_date, vacation.end_date)
        self.db.delete(vacation)
        self.db.commit()
        logger.info("Vacation deleted: id=%s", vacation_id)
        self._invalidate(old_range)

    # ---- internals ----
    @staticmethod
    def _validate(title: Optional[str], start: Optional[date], end: Optional[date]) -> None:
        if not title or not str(title).strip():
            raise ValidationError("Vacation title is required.", "missing_field", {"field": "title"})
        if start is None or end is None:
            raise ValidationError("start_date and end_date are required.", "missing_field")
        if end < start:
            raise ValidationError("end_date must be on or after start_date.", "invalid_range",
                                  {"start_date": start, "end_date": end})

    def _invalidate(self, *ranges) -> None:
        if self.cache is None:
            return
        for start, end in ranges:
            self.cache.invalidate_dates(start, end)
