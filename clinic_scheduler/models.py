# clinic_scheduler/models.py
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Date, Time, DateTime, Enum, ForeignKey, Boolean, Text, Index, UniqueConstraint, text
from datetime import date as date_type, datetime, time as time_type, timezone
import enum
from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AppointmentStatus(str, enum.Enum):
    pending = "pending"
    confirmed = "confirmed"
    completed = "completed"
    cancelled = "cancelled"
    no_show = "no_show"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES

    @property
    def is_final(self) -> bool:
        return self in FINAL_STATUSES


ACTIVE_STATUSES = (AppointmentStatus.pending, AppointmentStatus.confirmed)
FINAL_STATUSES = (AppointmentStatus.completed, AppointmentStatus.cancelled, AppointmentStatus.no_show)


class CancelledBy(str, enum.Enum):
    patient = "patient"
    admin = "admin"
    system = "system"


class UserRole(str, enum.Enum):
    patient = "patient"
    admin = "admin"
    secretary = "secretary"


class DayOfWeek(enum.IntEnum):
    """Clinic week numbering: Sunday is 0, Saturday is 6."""
    sunday = 0
    monday = 1
    tuesday = 2
    wednesday = 3
    thursday = 4
    friday = 5
    saturday = 6

    @classmethod
    def from_date(cls, day: date_type) -> "DayOfWeek":
        # date.weekday(): Monday=0 … Sunday=6
        return cls((day.weekday() + 1) % 7)

    @property
    def label(self) -> str:
        return self.name.capitalize()


class Patient(Base):
    __tablename__ = "patients"
    __table_args__ = (
        UniqueConstraint("contact", name="uq_patients_contact"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True, default=None, index=True)
    contact: Mapped[str] = mapped_column(String(120), nullable=False, index=True)

    appointments = relationship(
        "Appointment",
        back_populates="patient",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class ClinicSetting(Base):
    """Single row; see services.clinic_config for the lazy default."""
    __tablename__ = "clinic_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    slot_duration: Mapped[int] = mapped_column(Integer, nullable=False)
    max_patients_per_slot: Mapped[int] = mapped_column(Integer, nullable=False)
    advance_booking_days: Mapped[int] = mapped_column(Integer, nullable=False)
    cancellation_hours: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class Schedule(Base):
    __tablename__ = "schedules"
    __table_args__ = (
        # At most one active row per weekday
        Index(
            "uq_schedules_active_day",
            "day_of_week",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    start_time: Mapped[time_type] = mapped_column(Time, nullable=False)
    end_time: Mapped[time_type] = mapped_column(Time, nullable=False)
    break_start: Mapped[Optional[time_type]] = mapped_column(Time, nullable=True)
    break_end: Mapped[Optional[time_type]] = mapped_column(Time, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def has_break(self) -> bool:
        return self.break_start is not None and self.break_end is not None

    @property
    def weekday(self) -> DayOfWeek:
        return DayOfWeek(self.day_of_week)


class Vacation(Base):
    __tablename__ = "vacations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Inclusive on both ends
    start_date: Mapped[date_type] = mapped_column(Date, nullable=False, index=True)
    end_date: Mapped[date_type] = mapped_column(Date, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def includes(self, day: date_type) -> bool:
        return self.start_date <= day <= self.end_date

    @property
    def days_count(self) -> int:
        return (self.end_date - self.start_date).days + 1


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # Storage-level double-booking guard: one active row per seat of a slot.
        # Capacity 1 means seat 0 only.
        Index(
            "uq_appointments_active_slot",
            "appointment_date",
            "appointment_time",
            "slot_seat",
            unique=True,
            sqlite_where=text("status IN ('pending', 'confirmed') AND deleted_at IS NULL"),
            postgresql_where=text("status IN ('pending', 'confirmed') AND deleted_at IS NULL"),
        ),
        Index("ix_appointments_date_time", "appointment_date", "appointment_time"),
        Index("ix_appointments_patient_status", "patient_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    patient_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False
    )
    appointment_date: Mapped[date_type] = mapped_column(Date, nullable=False)
    appointment_time: Mapped[time_type] = mapped_column(Time, nullable=False)
    slot_seat: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[AppointmentStatus] = mapped_column(
        Enum(AppointmentStatus, name="appointment_status"),
        default=AppointmentStatus.pending,
        nullable=False,
        index=True,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[Optional[CancelledBy]] = mapped_column(Enum(CancelledBy, name="cancelled_by"), nullable=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    # Soft delete (administrative purge only)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    patient = relationship("Patient", back_populates="appointments")

    @property
    def starts_at(self) -> datetime:
        """Clinic-local naive datetime of the slot."""
        return datetime.combine(self.appointment_date, self.appointment_time)

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    @property
    def is_final(self) -> bool:
        return self.status.is_final

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
