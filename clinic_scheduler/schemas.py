from pydantic import BaseModel, ConfigDict, Field
from datetime import date, datetime, time
from typing import Optional

from .models import AppointmentStatus, CancelledBy


# ===== Booking =====
class BookRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    patient_id: int
    start_at: datetime = Field(alias="datetime")
    notes: Optional[str] = None


class CancelRequest(BaseModel):
    patient_id: int
    reason: str = Field(min_length=1)


class AdminCancelRequest(BaseModel):
    reason: str = Field(min_length=1)


class CompleteRequest(BaseModel):
    admin_notes: Optional[str] = None


class AppointmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    appointment_date: date
    appointment_time: time
    status: AppointmentStatus
    notes: Optional[str] = None
    admin_notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[CancelledBy] = None
    confirmed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class CheckOut(BaseModel):
    ok: bool
    kind: Optional[str] = None
    code: Optional[str] = None
    reason: Optional[str] = None


# ===== Slots =====
class SlotOut(BaseModel):
    time: str
    datetime: str
    capacity_remaining: int
    is_available: bool


class SlotsResponse(BaseModel):
    date: date
    is_date_available: bool
    slots: list[SlotOut]


# ===== Admin: schedules =====
class ScheduleIn(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: time
    end_time: time
    break_start: Optional[time] = None
    break_end: Optional[time] = None
    is_active: bool = True


class ScheduleUpdate(BaseModel):
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    break_start: Optional[time] = None
    break_end: Optional[time] = None
    is_active: Optional[bool] = None


class ScheduleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    day_of_week: int
    start_time: time
    end_time: time
    break_start: Optional[time] = None
    break_end: Optional[time] = None
    is_active: bool


# ===== Admin: vacations =====
class VacationIn(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    start_date: date
    end_date: date
    reason: Optional[str] = None


class VacationUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    reason: Optional[str] = None


class VacationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    reason: Optional[str] = None
    start_date: date
    end_date: date
    days_count: int


# ===== Admin: clinic config =====
class ClinicConfigUpdate(BaseModel):
    slot_duration_minutes: Optional[int] = None
    advance_booking_days: Optional[int] = None
    cancellation_hours: Optional[int] = None
    max_patients_per_slot: Optional[int] = None


class ClinicConfigOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    slot_duration_minutes: int
    advance_booking_days: int
    cancellation_hours: int
    max_patients_per_slot: int
