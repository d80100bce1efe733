# clinic_scheduler/routers/admin.py
from __future__ import annotations
from fastapi import APIRouter, Depends, Header, Query
from datetime import date, datetime, timedelta
from typing import List, Optional
from dateutil import parser as dtparser

from ..config import settings
from ..clock import Clock
from ..errors import AuthorizationError, ValidationError
from .. import schemas
from ..services.booking import Actor, BookingEngine
from ..services.clinic_config import ClinicConfigStore
from ..services.ledger import BookingLedger
from ..services.schedule import ScheduleService, slots_count
from ..services.slots import AvailabilityQueries
from ..services.vacations import VacationCalendar
from ..models import UserRole
from ..deps import (
    get_availability,
    get_clock,
    get_config_store,
    get_engine,
    get_ledger,
    get_schedules,
    get_vacations,
)

# ──────────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────────
def _require_admin(x_admin_token: str | None = Header(default=None)) -> None:
    expected = (settings.ADMIN_TOKEN or "").strip()
    provided = (x_admin_token or "").strip()
    if not expected:
        raise AuthorizationError("ADMIN_TOKEN is not configured.", "admin_disabled")
    if provided != expected:
        raise AuthorizationError("Invalid admin token.", "invalid_token")


def _parse_date(s: str) -> date:
    try:
        return dtparser.parse(s).date()
    except (ValueError, OverflowError):
        raise ValidationError("Invalid date format. Use YYYY-MM-DD.", "invalid_date", {"date": s})


def _range(start_date: Optional[str], end_date: Optional[str], today: date, back: int, ahead: int):
    s_d = _parse_date(start_date) if start_date else (today - timedelta(days=back))
    e_d = _parse_date(end_date) if end_date else (today + timedelta(days=ahead))
    if e_d < s_d:
        raise ValidationError("end_date must be on or after start_date.", "invalid_range",
                              {"start_date": s_d, "end_date": e_d})
    return s_d, e_d


STAFF = Actor(id=0, role=UserRole.admin)

# (main.py mounts this router with prefix="/admin")
router = APIRouter(tags=["admin"], dependencies=[Depends(_require_admin)])

# ──────────────────────────────────────────────────────────────────────────────
# Basics
# ──────────────────────────────────────────────────────────────────────────────
@router.get("/health")
def admin_health(clock: Clock = Depends(get_clock)):
    return {
        "ok": True,
        "app": settings.APP_NAME,
        "env": settings.ENV,
        "tz": settings.TIMEZONE,
        "now_local": clock().isoformat(),
        "ts": datetime.utcnow().isoformat(),
    }

# ──────────────────────────────────────────────────────────────────────────────
# Clinic settings
# ──────────────────────────────────────────────────────────────────────────────
@router.get("/settings", response_model=schemas.ClinicConfigOut)
def get_settings(store: ClinicConfigStore = Depends(get_config_store)):
    return store.get()


@router.put("/settings", response_model=schemas.ClinicConfigOut)
def update_settings(req: schemas.ClinicConfigUpdate, store: ClinicConfigStore = Depends(get_config_store)):
    return store.update(**req.model_dump(exclude_unset=True))

# ──────────────────────────────────────────────────────────────────────────────
# Weekly schedules
# ──────────────────────────────────────────────────────────────────────────────
@router.get("/schedules", response_model=List[schemas.ScheduleOut])
def list_schedules(schedules: ScheduleService = Depends(get_schedules)):
    return schedules.list()


@router.post("/schedules", response_model=schemas.ScheduleOut, status_code=201)
def create_schedule(req: schemas.ScheduleIn, schedules: ScheduleService = Depends(get_schedules)):
    return schedules.create(**req.model_dump())


@router.get("/schedules/{schedule_id}")
def get_schedule(
    schedule_id: int,
    schedules: ScheduleService = Depends(get_schedules),
    store: ClinicConfigStore = Depends(get_config_store),
):
    schedule = schedules.get(schedule_id)
    return {
        "ok": True,
        "schedule": schemas.ScheduleOut.model_validate(schedule),
        "slots_count": slots_count(schedule, store.get().slot_duration_minutes),
    }


@router.put("/schedules/{schedule_id}", response_model=schemas.ScheduleOut)
def update_schedule(schedule_id: int, req: schemas.ScheduleUpdate, schedules: ScheduleService = Depends(get_schedules)):
    return schedules.update(schedule_id, **req.model_dump(exclude_unset=True))


@router.post("/schedules/{schedule_id}/toggle", response_model=schemas.ScheduleOut)
def toggle_schedule(schedule_id: int, schedules: ScheduleService = Depends(get_schedules)):
    return schedules.toggle(schedule_id)


@router.delete("/schedules/{schedule_id}")
def delete_schedule(schedule_id: int, schedules: ScheduleService = Depends(get_schedules)):
    schedules.delete(schedule_id)
    return {"ok": True, "deleted_id": schedule_id}

# ──────────────────────────────────────────────────────────────────────────────
# Vacations
# ──────────────────────────────────────────────────────────────────────────────
@router.get("/vacations", response_model=List[schemas.VacationOut])
def list_vacations(upcoming: bool = False, vacations: VacationCalendar = Depends(get_vacations)):
    return vacations.upcoming() if upcoming else vacations.list()


@router.post("/vacations", response_model=schemas.VacationOut, status_code=201)
def create_vacation(req: schemas.VacationIn, vacations: VacationCalendar = Depends(get_vacations)):
    return vacations.create(**req.model_dump())


@router.put("/vacations/{vacation_id}", response_model=schemas.VacationOut)
def update_vacation(vacation_id: int, req: schemas.VacationUpdate, vacations: VacationCalendar = Depends(get_vacations)):
    return vacations.update(vacation_id, **req.model_dump(exclude_unset=True))


@router.delete("/vacations/{vacation_id}")
def delete_vacation(vacation_id: int, vacations: VacationCalendar = Depends(get_vacations)):
    vacations.delete(vacation_id)
    return {"ok": True, "deleted_id": vacation_id}

# ──────────────────────────────────────────────────────────────────────────────
# Appointments: state changes
# ──────────────────────────────────────────────────────────────────────────────
@router.post("/appointments/{appointment_id}/confirm", response_model=schemas.AppointmentOut)
def confirm_appointment(appointment_id: int, engine: BookingEngine = Depends(get_engine)):
    return engine.confirm(engine.get(appointment_id))


@router.post("/appointments/{appointment_id}/complete", response_model=schemas.AppointmentOut)
def complete_appointment(
    appointment_id: int,
    req: Optional[schemas.CompleteRequest] = None,
    engine: BookingEngine = Depends(get_engine),
):
    admin_notes = req.admin_notes if req else None
    return engine.complete(engine.get(appointment_id), admin_notes=admin_notes)


@router.post("/appointments/{appointment_id}/cancel", response_model=schemas.AppointmentOut)
def cancel_appointment(appointment_id: int, req: schemas.AdminCancelRequest, engine: BookingEngine = Depends(get_engine)):
    return engine.cancel_as(engine.get(appointment_id), STAFF, req.reason)


@router.post("/appointments/{appointment_id}/no-show", response_model=schemas.AppointmentOut)
def no_show_appointment(appointment_id: int, engine: BookingEngine = Depends(get_engine)):
    return engine.mark_no_show(engine.get(appointment_id))


@router.delete("/appointments/{appointment_id}")
def purge_appointment(appointment_id: int, engine: BookingEngine = Depends(get_engine)):
    engine.purge(engine.get(appointment_id))
    return {"ok": True, "deleted_id": appointment_id}

# ──────────────────────────────────────────────────────────────────────────────
# Appointments: listings and statistics
# ──────────────────────────────────────────────────────────────────────────────
@router.get("/appointments")
def admin_appointments_for_day(
    date: str = Query(..., description="YYYY-MM-DD"),
    ledger: BookingLedger = Depends(get_ledger),
):
    """Every non-purged appointment on the given clinic-local date, ordered by time and seat."""
    d = _parse_date(date)
    items = []
    for ap in ledger.appointments_for_date(d):
        items.append({
            **schemas.AppointmentOut.model_validate(ap).model_dump(mode="json"),
            "patient": ap.patient.name if ap.patient else None,
            "slot_seat": ap.slot_seat,
        })
    return {"ok": True, "date": d.isoformat(), "count": len(items), "appointments": items}


@router.get("/appointments/upcoming", response_model=List[schemas.AppointmentOut])
def admin_upcoming(days: int = Query(default=7, ge=0, le=90), ledger: BookingLedger = Depends(get_ledger)):
    return ledger.upcoming(days)


@router.get("/reminders")
def admin_reminders(date: Optional[str] = Query(None, description="YYYY-MM-DD (default: tomorrow)"),
                    ledger: BookingLedger = Depends(get_ledger)):
    """Preview of what the reminder sweep would announce."""
    d = _parse_date(date) if date else None
    appts = ledger.reminder_candidates(d)
    return {
        "ok": True,
        "count": len(appts),
        "appointments": [schemas.AppointmentOut.model_validate(a).model_dump(mode="json") for a in appts],
    }


@router.get("/stats")
def admin_stats(
    start_date: Optional[str] = Query(None, description="YYYY-MM-DD (default: today-30d)"),
    end_date: Optional[str] = Query(None, description="YYYY-MM-DD (default: today)"),
    ledger: BookingLedger = Depends(get_ledger),
    availability: AvailabilityQueries = Depends(get_availability),
    clock: Clock = Depends(get_clock),
):
    s_d, e_d = _range(start_date, end_date, clock().date(), back=30, ahead=0)
    return {
        "ok": True,
        "start_date": s_d.isoformat(),
        "end_date": e_d.isoformat(),
        "counts": ledger.status_counts(s_d, e_d),
        "daily": ledger.daily_statistics(s_d, e_d),
        "slots": availability.slots_summary(7),
    }
