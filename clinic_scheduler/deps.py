# clinic_scheduler/deps.py
"""FastAPI dependencies shared by the routers."""
from __future__ import annotations

from fastapi import Depends
from sqlalchemy.orm import Session

from .clock import Clock, now_local
from .database import get_db
from .services.availability_cache import AvailabilityCache
from .services.booking import BookingEngine
from .services.clinic_config import ClinicConfig, ClinicConfigStore
from .services.events import bus
from .services.ledger import BookingLedger
from .services.schedule import ScheduleService
from .services.slots import AvailabilityQueries, SlotGenerator
from .services.vacations import VacationCalendar

# One memo per process; every admin mutation evicts from it before responding
availability_cache = AvailabilityCache()


def get_clock() -> Clock:
    return now_local


def get_config_store(db: Session = Depends(get_db)) -> ClinicConfigStore:
    return ClinicConfigStore(db, cache=availability_cache)


def get_config(store: ClinicConfigStore = Depends(get_config_store)) -> ClinicConfig:
    return store.get()


def get_slots(
    db: Session = Depends(get_db),
    config: ClinicConfig = Depends(get_config),
    clock: Clock = Depends(get_clock),
):
    return availability_cache.wrap(SlotGenerator(db, config, clock))


def get_ledger(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)) -> BookingLedger:
    return BookingLedger(db, clock)


def get_availability(slots=Depends(get_slots), ledger: BookingLedger = Depends(get_ledger)) -> AvailabilityQueries:
    return AvailabilityQueries(slots, ledger)


def get_engine(
    db: Session = Depends(get_db),
    config: ClinicConfig = Depends(get_config),
    slots=Depends(get_slots),
    ledger: BookingLedger = Depends(get_ledger),
    clock: Clock = Depends(get_clock),
) -> BookingEngine:
    return BookingEngine(db, config, slots=slots, ledger=ledger, events=bus, clock=clock)


def get_schedules(db: Session = Depends(get_db)) -> ScheduleService:
    return ScheduleService(db, cache=availability_cache)


def get_vacations(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)) -> VacationCalendar:
    return VacationCalendar(db, cache=availability_cache, clock=clock)
