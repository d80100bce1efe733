from fastapi import APIRouter, Depends, Query
from typing import List, Optional
from dateutil import parser as dtparser

from .. import schemas
from ..errors import ValidationError
from ..models import AppointmentStatus
from ..services.booking import Actor, BookingEngine
from ..services.ledger import BookingLedger
from ..services.slots import AvailabilityQueries
from ..deps import get_availability, get_engine, get_ledger

router = APIRouter(prefix="", tags=["appointments"])


def _parse_day(value: str):
    try:
        return dtparser.parse(value).date()
    except (ValueError, OverflowError):
        raise ValidationError("Invalid date format. Use YYYY-MM-DD.", "invalid_date", {"date": value})


# ===== Availability =====
@router.get("/slots", response_model=schemas.SlotsResponse)
def get_slots(date: str = Query(..., description="YYYY-MM-DD"), availability: AvailabilityQueries = Depends(get_availability)):
    d = _parse_day(date)
    return schemas.SlotsResponse(
        date=d,
        is_date_available=availability.slots.is_date_available(d),
        slots=availability.slots_with_occupancy(d),
    )


@router.get("/dates")
def get_dates(days: Optional[int] = Query(None, ge=0, le=90), availability: AvailabilityQueries = Depends(get_availability)):
    return {"ok": True, "dates": availability.available_dates(days)}


@router.get("/slots/next")
def next_slot(availability: AvailabilityQueries = Depends(get_availability)):
    return {"ok": True, "next": availability.next_available_slot()}


# ===== Booking =====
@router.post("/book", response_model=schemas.AppointmentOut, status_code=201)
def book(req: schemas.BookRequest, engine: BookingEngine = Depends(get_engine)):
    return engine.book(req.patient_id, req.start_at, notes=req.notes)


@router.post("/can-book", response_model=schemas.CheckOut)
def can_book(req: schemas.BookRequest, engine: BookingEngine = Depends(get_engine)):
    return engine.can_book(req.patient_id, req.start_at)


# ===== Cancellation =====
@router.get("/appointments/{appointment_id}/can-cancel", response_model=schemas.CheckOut)
def can_cancel(appointment_id: int, patient_id: int = Query(...), engine: BookingEngine = Depends(get_engine)):
    appt = engine.get(appointment_id)
    return engine.can_cancel(appt, Actor(id=patient_id))


@router.post("/appointments/{appointment_id}/cancel", response_model=schemas.AppointmentOut)
def cancel(appointment_id: int, req: schemas.CancelRequest, engine: BookingEngine = Depends(get_engine)):
    appt = engine.get(appointment_id)
    return engine.cancel_as(appt, Actor(id=req.patient_id), req.reason)


# ===== Patient views =====
@router.get("/patients/{patient_id}/appointments", response_model=List[schemas.AppointmentOut])
def patient_appointments(
    patient_id: int,
    status: Optional[AppointmentStatus] = None,
    upcoming: bool = False,
    ledger: BookingLedger = Depends(get_ledger),
):
    if upcoming:
        return ledger.patient_upcoming(patient_id)
    return ledger.patient_appointments(patient_id, status=status)
