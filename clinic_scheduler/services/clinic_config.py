# clinic_scheduler/services/clinic_config.py
from __future__ import annotations
import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Optional, TYPE_CHECKING

from sqlalchemy.orm import Session

from ..config import settings
from ..errors import ValidationError
from .. import models

if TYPE_CHECKING:
    from .availability_cache import AvailabilityCache

logger = logging.getLogger(__name__)

# Admin-editable ranges: field -> (min, max)
_LIMITS = {
    "slot_duration_minutes": (10, 120),
    "max_patients_per_slot": (1, 10),
    "advance_booking_days": (1, 90),
    "cancellation_hours": (0, 72),
}

# Value-object field -> ClinicSetting column
_COLUMNS = {
    "slot_duration_minutes": "slot_duration",
    "max_patients_per_slot": "max_patients_per_slot",
    "advance_booking_days": "advance_booking_days",
    "cancellation_hours": "cancellation_hours",
}


@dataclass(frozen=True)
class ClinicConfig:
    """Immutable snapshot of the clinic settings row."""
    slot_duration_minutes: int = 30
    advance_booking_days: int = 30
    cancellation_hours: int = 24
    max_patients_per_slot: int = 1

    def __post_init__(self):
        if self.slot_duration_minutes <= 0:
            raise ValidationError("Slot duration must be positive.", "invalid_config",
                                  {"slot_duration_minutes": self.slot_duration_minutes})
        if self.advance_booking_days < 0 or self.cancellation_hours < 0:
            raise ValidationError("Booking horizon and cancellation hours cannot be negative.", "invalid_config")
        if self.max_patients_per_slot < 1:
            raise ValidationError("Each slot must admit at least one patient.", "invalid_config",
                                  {"max_patients_per_slot": self.max_patients_per_slot})

    @classmethod
    def defaults(cls) -> "ClinicConfig":
        return cls(
            slot_duration_minutes=settings.DEFAULT_SLOT_DURATION,
            advance_booking_days=settings.DEFAULT_ADVANCE_BOOKING_DAYS,
            cancellation_hours=settings.DEFAULT_CANCELLATION_HOURS,
            max_patients_per_slot=settings.DEFAULT_MAX_PATIENTS_PER_SLOT,
        )

    @classmethod
    def from_row(cls, row: models.ClinicSetting) -> "ClinicConfig":
        return cls(**{field: getattr(row, column) for field, column in _COLUMNS.items()})

    def max_booking_date(self, today: date) -> date:
        """Latest bookable date."""
        return today + timedelta(days=self.advance_booking_days)

    def cancellation_deadline(self, appointment_at: datetime) -> datetime:
        return appointment_at - timedelta(hours=self.cancellation_hours)

    def can_cancel_appointment(self, appointment_at: datetime, now: datetime) -> bool:
        return now < self.cancellation_deadline(appointment_at)


class ClinicConfigStore:
    """
    Reads and writes the single clinic_settings row.

    The row is created with defaults from settings on first read. Updates
    drop every cached slot grid since slot duration changes the whole grid.
    """

    def __init__(self, db: Session, cache: Optional["AvailabilityCache"] = None):
        self.db = db
        self.cache = cache
        self._config: Optional[ClinicConfig] = None

    def _row(self) -> models.ClinicSetting:
        row = self.db.query(models.ClinicSetting).order_by(models.ClinicSetting.id.asc()).first()
        if row is None:
            defaults = ClinicConfig.defaults()
            row = models.ClinicSetting(**{column: getattr(defaults, field) for field, column in _COLUMNS.items()})
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
            logger.info("Clinic settings row created with defaults: %s", defaults)
        return row

    def get(self) -> ClinicConfig:
        if self._config is None:
            self._config = ClinicConfig.from_row(self._row())
        return self._config

    def refresh(self) -> ClinicConfig:
        self._config = None
        self.db.expire_all()
        return self.get()

    def update(self, **fields) -> ClinicConfig:
        unknown = set(fields) - set(_COLUMNS)
        if unknown:
            raise ValidationError(f"Unknown settings: {', '.join(sorted(unknown))}.", "unknown_field",
                                  {"fields": sorted(unknown)})
        for field, value in fields.items():
            low, high = _LIMITS[field]
            if not isinstance(value, int) or isinstance(value, bool) or not (low <= value <= high):
                raise ValidationError(f"{field} must be an integer between {low} and {high}.", "out_of_range",
                                      {"field": field, "value": value})

        new_config = replace(self.get(), **fields)
        row = self._row()
        for field, column in _COLUMNS.items():
            setattr(row, column, getattr(new_config, field))
        self.db.commit()
        self._config = new_config
        logger.info("Clinic settings updated: %s", fields)

        if self.cache is not None:
            self.cache.clear()
        return new_config
