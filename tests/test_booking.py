from datetime import datetime, time, timedelta

import pytest
import pytz

from clinic_scheduler.config import settings
from clinic_scheduler.errors import (
    EligibilityError,
    NotFound,
    OccupancyConflict,
    SchedulingConflict,
)
from clinic_scheduler.models import Appointment, AppointmentStatus, Vacation
from clinic_scheduler.services import events as ev
from clinic_scheduler.services.booking import BookingEngine
from clinic_scheduler.services.clinic_config import ClinicConfig
from clinic_scheduler.services.ledger import BookingLedger

from conftest import MONDAY, NOW, SUNDAY

SUNDAY_0930 = datetime.combine(SUNDAY, time(9, 30))


def _code(exc_info):
    return exc_info.value.code


# ====== Happy path ======
def test_book_creates_pending_appointment(booking, patient, published):
    appt = booking.book(patient.id, SUNDAY_0930, notes="first visit")
    assert appt.id is not None
    assert appt.status == AppointmentStatus.pending
    assert appt.appointment_date == SUNDAY
    assert appt.appointment_time == time(9, 30)
    assert appt.slot_seat == 0
    assert appt.notes == "first visit"
    assert [e.name for e in published] == [ev.BOOKED]
    assert published[0].appointment_id == appt.id


def test_book_accepts_aware_datetime(booking, patient):
    aware = pytz.timezone(settings.TIMEZONE).localize(SUNDAY_0930).astimezone(pytz.utc)
    appt = booking.book(patient.id, aware)
    assert appt.starts_at == SUNDAY_0930


# ====== Precondition order ======
def test_unknown_patient(booking):
    with pytest.raises(NotFound) as exc:
        booking.book(424242, SUNDAY_0930)
    assert _code(exc) == "patient_not_found"


def test_past_time(booking, patient):
    with pytest.raises(SchedulingConflict) as exc:
        booking.book(patient.id, NOW - timedelta(minutes=30))
    assert _code(exc) == "past_time"


def test_now_is_not_in_the_future(booking, patient):
    with pytest.raises(SchedulingConflict) as exc:
        booking.book(patient.id, NOW)
    assert _code(exc) == "past_time"


def test_beyond_horizon(booking, patient):
    far_sunday = SUNDAY + timedelta(days=35)
    with pytest.raises(SchedulingConflict) as exc:
        booking.book(patient.id, datetime.combine(far_sunday, time(9, 30)))
    assert _code(exc) == "beyond_horizon"


def test_horizon_last_day_is_bookable(db, clock, bus, schedules, patient):
    # today + 29 days is a Sunday
    engine = BookingEngine(db, ClinicConfig(advance_booking_days=29), events=bus, clock=clock)
    last = NOW.date() + timedelta(days=29)
    appt = engine.book(patient.id, datetime.combine(last, time(9, 0)))
    assert appt.appointment_date == last


def test_vacation_day(db, booking, patient):
    db.add(Vacation(title="Conference", start_date=SUNDAY, end_date=SUNDAY))
    db.commit()
    with pytest.raises(SchedulingConflict) as exc:
        booking.book(patient.id, SUNDAY_0930)
    assert _code(exc) == "vacation"


def test_day_without_schedule(booking, patient):
    tuesday = SUNDAY + timedelta(days=2)
    with pytest.raises(SchedulingConflict) as exc:
        booking.book(patient.id, datetime.combine(tuesday, time(9, 30)))
    assert _code(exc) == "no_schedule"


@pytest.mark.parametrize("at", [time(9, 15), time(13, 0), time(13, 30), time(17, 0), time(8, 30)])
def test_not_a_slot(booking, patient, at):
    with pytest.raises(SchedulingConflict) as exc:
        booking.book(patient.id, datetime.combine(SUNDAY, at))
    assert _code(exc) == "not_a_slot"


def test_seconds_are_not_a_slot(booking, patient):
    with pytest.raises(SchedulingConflict) as exc:
        booking.book(patient.id, SUNDAY_0930.replace(second=1))
    assert _code(exc) == "not_a_slot"


def test_vacation_is_reported_before_not_a_slot(db, booking, patient):
    db.add(Vacation(title="Closed", start_date=SUNDAY, end_date=SUNDAY))
    db.commit()
    with pytest.raises(SchedulingConflict) as exc:
        booking.book(patient.id, datetime.combine(SUNDAY, time(9, 15)))
    assert _code(exc) == "vacation"


# ====== Occupancy ======
def test_double_booking_rejected(booking, make_patient):
    a, b = make_patient(), make_patient()
    booking.book(a.id, SUNDAY_0930)
    with pytest.raises(OccupancyConflict) as exc:
        booking.book(b.id, SUNDAY_0930)
    assert _code(exc) == "slot_taken"


def test_cancelled_booking_frees_the_slot(booking, make_patient):
    a, b = make_patient(), make_patient()
    first = booking.book(a.id, SUNDAY_0930)
    booking.cancel(first, "changed plans", "admin")
    second = booking.book(b.id, SUNDAY_0930)
    assert second.slot_seat == 0


def test_same_patient_same_slot(db, clock, bus, schedules, patient):
    engine = BookingEngine(db, ClinicConfig(max_patients_per_slot=2), events=bus, clock=clock)
    engine.book(patient.id, SUNDAY_0930)
    with pytest.raises(OccupancyConflict) as exc:
        engine.book(patient.id, SUNDAY_0930)
    assert _code(exc) == "duplicate_booking"


def test_capacity_above_one_uses_seats(db, clock, bus, schedules, make_patient):
    engine = BookingEngine(db, ClinicConfig(max_patients_per_slot=2), events=bus, clock=clock)
    p1, p2, p3 = make_patient(), make_patient(), make_patient()
    a1 = engine.book(p1.id, SUNDAY_0930)
    a2 = engine.book(p2.id, SUNDAY_0930)
    assert {a1.slot_seat, a2.slot_seat} == {0, 1}
    with pytest.raises(OccupancyConflict) as exc:
        engine.book(p3.id, SUNDAY_0930)
    assert _code(exc) == "slot_taken"

    engine.cancel(a1, "sick", "admin")
    a3 = engine.book(p3.id, SUNDAY_0930)
    assert a3.slot_seat == 0


def test_lowered_capacity_counts_bookings_not_seats(db, clock, bus, schedules, make_patient, add_appointment,
                                                   ledger):
    # seat 0 was freed by a cancellation while capacity was 2
    holder, newcomer = make_patient(), make_patient()
    add_appointment(holder, SUNDAY_0930, AppointmentStatus.cancelled, seat=0)
    add_appointment(holder, SUNDAY_0930, AppointmentStatus.confirmed, seat=1)

    engine = BookingEngine(db, ClinicConfig(max_patients_per_slot=1), events=bus, clock=clock)
    with pytest.raises(OccupancyConflict) as exc:
        engine.book(newcomer.id, SUNDAY_0930)
    assert _code(exc) == "slot_taken"
    assert ledger.active_count_at(SUNDAY, time(9, 30)) == 1

    wider = BookingEngine(db, ClinicConfig(max_patients_per_slot=2), events=bus, clock=clock)
    assert wider.book(newcomer.id, SUNDAY_0930).slot_seat == 0


class _BlindLedger(BookingLedger):
    """Sees no occupancy, as if another request committed after our check."""

    def taken_seats(self, day, at):
        return set()


def test_commit_race_reports_slot_taken(db, config, clock, bus, schedules, make_patient, published):
    a, b = make_patient(), make_patient()
    BookingEngine(db, config, clock=clock).book(a.id, SUNDAY_0930)

    racer = BookingEngine(db, config, ledger=_BlindLedger(db, clock), events=bus, clock=clock)
    with pytest.raises(OccupancyConflict) as exc:
        racer.book(b.id, SUNDAY_0930)
    assert _code(exc) == "slot_taken"
    assert published == []
    active = db.query(Appointment).filter(Appointment.appointment_date == SUNDAY).all()
    assert len(active) == 1 and active[0].patient_id == a.id


# ====== No-show lockout ======
def _no_shows(add_appointment, patient, count, days_ago=3):
    base = datetime.combine(NOW.date() - timedelta(days=days_ago), time(9, 0))
    for i in range(count):
        add_appointment(patient, base + timedelta(minutes=30 * i), AppointmentStatus.no_show)


def test_two_no_shows_still_allowed(booking, patient, add_appointment):
    _no_shows(add_appointment, patient, 2)
    assert booking.book(patient.id, SUNDAY_0930).status == AppointmentStatus.pending


def test_three_no_shows_block_booking(booking, patient, add_appointment):
    _no_shows(add_appointment, patient, 3)
    with pytest.raises(EligibilityError) as exc:
        booking.book(patient.id, SUNDAY_0930)
    assert _code(exc) == "too_many_no_shows"
    assert exc.value.context["no_show_count"] == 3


def test_lockout_lifts_once_no_shows_age_out(booking, clock, patient, add_appointment):
    _no_shows(add_appointment, patient, 3, days_ago=25)
    assert not booking.can_book(patient.id, SUNDAY_0930)["ok"]
    clock.advance(days=6)
    next_sunday = datetime.combine(SUNDAY + timedelta(days=7), time(9, 30))
    assert booking.can_book(patient.id, next_sunday)["ok"]


@pytest.mark.parametrize("days_ago, blocked", [(30, True), (31, False)])
def test_lockout_window_edge(booking, patient, add_appointment, days_ago, blocked):
    _no_shows(add_appointment, patient, 3, days_ago=days_ago)
    result = booking.can_book(patient.id, SUNDAY_0930)
    assert result["ok"] is not blocked
    if blocked:
        assert result["code"] == "too_many_no_shows"


def test_slot_taken_is_reported_before_lockout(booking, make_patient, add_appointment):
    a, b = make_patient(), make_patient()
    booking.book(a.id, SUNDAY_0930)
    _no_shows(add_appointment, b, 3)
    with pytest.raises(OccupancyConflict):
        booking.book(b.id, SUNDAY_0930)


# ====== can_book ======
def test_can_book_reports_without_side_effects(db, booking, patient, published):
    assert booking.can_book(patient.id, SUNDAY_0930) == {"ok": True, "kind": None, "code": None, "reason": None}
    result = booking.can_book(patient.id, datetime.combine(MONDAY, time(12, 0)))
    assert result["ok"] is False
    assert result["kind"] == "scheduling_conflict"
    assert result["code"] == "not_a_slot"
    assert db.query(Appointment).count() == 0
    assert published == []
