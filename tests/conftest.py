"""Shared fixtures: in-memory database, a controllable clinic clock, seeded schedules."""
from __future__ import annotations

from datetime import datetime, time, timedelta
from typing import Generator, List

import pytest
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from clinic_scheduler.config import settings
from clinic_scheduler.database import init_db, make_engine
from clinic_scheduler.models import Appointment, AppointmentStatus, Patient, Schedule
from clinic_scheduler.services.availability_cache import AvailabilityCache
from clinic_scheduler.services.booking import BookingEngine
from clinic_scheduler.services.clinic_config import ClinicConfig
from clinic_scheduler.services.events import AppointmentEvent, EventBus
from clinic_scheduler.services.ledger import BookingLedger
from clinic_scheduler.services.slots import SlotGenerator

# Saturday; the next day (2026-10-18) is a Sunday
NOW = datetime(2026, 10, 17, 10, 0)
SUNDAY = NOW.date() + timedelta(days=1)
MONDAY = SUNDAY + timedelta(days=1)


class FakeClock:
    """Naive clinic-local clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def engine():
    eng = make_engine("sqlite://", poolclass=StaticPool)
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine) -> Generator[Session, None, None]:
    TestingSession = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> ClinicConfig:
    return ClinicConfig(slot_duration_minutes=30, advance_booking_days=30, cancellation_hours=24, max_patients_per_slot=1)


@pytest.fixture
def schedules(db) -> List[Schedule]:
    """Sunday 09:00-17:00 with a 13:00-14:00 break; Monday 09:00-12:00."""
    rows = [
        Schedule(day_of_week=0, start_time=time(9, 0), end_time=time(17, 0),
                 break_start=time(13, 0), break_end=time(14, 0), is_active=True),
        Schedule(day_of_week=1, start_time=time(9, 0), end_time=time(12, 0), is_active=True),
    ]
    db.add_all(rows)
    db.commit()
    return rows


@pytest.fixture
def make_patient(db):
    counter = {"n": 0}

    def _make(name: str = "Patient") -> Patient:
        counter["n"] += 1
        patient = Patient(name=f"{name} {counter['n']}", contact=f"+20100000{counter['n']:04d}")
        db.add(patient)
        db.commit()
        db.refresh(patient)
        return patient

    return _make


@pytest.fixture
def patient(make_patient) -> Patient:
    return make_patient()


@pytest.fixture
def published() -> List[AppointmentEvent]:
    return []


@pytest.fixture
def bus(published) -> EventBus:
    b = EventBus()
    b.subscribe(published.append)
    return b


@pytest.fixture
def booking(db, config, clock, bus, schedules) -> BookingEngine:
    return BookingEngine(db, config, events=bus, clock=clock)


@pytest.fixture
def ledger(db, clock) -> BookingLedger:
    return BookingLedger(db, clock)


@pytest.fixture
def slot_generator(db, config, clock, schedules) -> SlotGenerator:
    return SlotGenerator(db, config, clock)


@pytest.fixture
def cache() -> AvailabilityCache:
    return AvailabilityCache(ttl_seconds=300)


@pytest.fixture
def add_appointment(db):
    """Inserts a row directly, bypassing booking validation (history, past dates)."""

    def _add(patient: Patient, when: datetime, status: AppointmentStatus = AppointmentStatus.pending,
             seat: int = 0) -> Appointment:
        appt = Appointment(
            patient_id=patient.id,
            appointment_date=when.date(),
            appointment_time=when.time(),
            slot_seat=seat,
            status=status,
        )
        db.add(appt)
        db.commit()
        db.refresh(appt)
        return appt

    return _add


@pytest.fixture(autouse=True)
def booking_rules(monkeypatch):
    """Pins the rule settings so a local .env cannot change outcomes."""
    monkeypatch.setattr(settings, "ENFORCE_CANCELLATION_DEADLINE", True)
    monkeypatch.setattr(settings, "MAX_NO_SHOWS", 3)
    monkeypatch.setattr(settings, "NO_SHOW_WINDOW_DAYS", 30)
