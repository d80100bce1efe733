from datetime import date, datetime, time, timedelta

import pytest

from clinic_scheduler.models import DayOfWeek, Schedule, Vacation
from clinic_scheduler.services.clinic_config import ClinicConfig
from clinic_scheduler.services.schedule import generate_day_slots, slots_count
from clinic_scheduler.services.slots import compute_grid, drop_elapsed

from conftest import MONDAY, NOW, SUNDAY


def _t(s: str) -> time:
    return datetime.strptime(s, "%H:%M").time()


SUNDAY_GRID = [_t(s) for s in (
    "09:00", "09:30", "10:00", "10:30", "11:00", "11:30", "12:00", "12:30",
    "14:00", "14:30", "15:00", "15:30", "16:00", "16:30",
)]


# ====== Grid arithmetic ======
def test_grid_with_break_skips_break_window():
    slots = generate_day_slots(time(9), time(17), 30, time(13), time(14))
    assert slots == SUNDAY_GRID


def test_grid_without_break():
    assert generate_day_slots(time(9), time(12), 30) == [_t(s) for s in ("09:00", "09:30", "10:00", "10:30", "11:00", "11:30")]


def test_no_partial_slot_at_end_of_window():
    slots = generate_day_slots(time(9), time(10, 15), 30)
    assert slots == [time(9, 0), time(9, 30)]


def test_window_shorter_than_duration_is_empty():
    assert generate_day_slots(time(9), time(9, 20), 30) == []


def test_slot_overlapping_break_start_jumps_to_break_end():
    # 12:45-13:30 would overlap the 13:00 break
    slots = generate_day_slots(time(12), time(15), 45, time(13), time(14))
    assert slots == [time(12, 0), time(14, 0)]


def test_break_at_window_start():
    slots = generate_day_slots(time(9), time(11), 30, time(9), time(10))
    assert slots == [time(10, 0), time(10, 30)]


@pytest.mark.parametrize("duration", [10, 15, 20, 30, 45, 60, 90, 120])
def test_grid_properties(duration):
    start, end, b_start, b_end = time(8, 15), time(18, 5), time(12, 40), time(13, 55)
    slots = generate_day_slots(start, end, duration, b_start, b_end)

    def minutes(t):
        return t.hour * 60 + t.minute

    assert slots == sorted(slots)
    assert len(set(slots)) == len(slots)
    for t in slots:
        m = minutes(t)
        assert minutes(start) <= m and m + duration <= minutes(end)
        # [t, t+d) never intersects [b_start, b_end)
        assert m + duration <= minutes(b_start) or m >= minutes(b_end)
    # deterministic
    assert generate_day_slots(start, end, duration, b_start, b_end) == slots


def test_invalid_duration_rejected():
    with pytest.raises(ValueError):
        generate_day_slots(time(9), time(10), 0)


def test_slots_count_uses_schedule_row():
    row = Schedule(day_of_week=0, start_time=time(9), end_time=time(17), break_start=time(13), break_end=time(14))
    assert slots_count(row, 30) == 14
    assert slots_count(row, 60) == 7


# ====== Day numbering ======
def test_day_of_week_sunday_is_zero():
    assert DayOfWeek.from_date(SUNDAY) == DayOfWeek.sunday == 0
    assert DayOfWeek.from_date(MONDAY) == DayOfWeek.monday
    assert DayOfWeek.from_date(NOW.date()) == DayOfWeek.saturday == 6
    assert DayOfWeek.sunday.label == "Sunday"


# ====== Pure composition ======
def test_compute_grid_vacation_overrides_schedule(config):
    row = Schedule(day_of_week=0, start_time=time(9), end_time=time(17), break_start=time(13), break_end=time(14))
    assert compute_grid(row, True, config) == []
    assert drop_elapsed(SUNDAY, compute_grid(row, False, config), NOW) == SUNDAY_GRID


def test_compute_grid_without_schedule(config):
    assert compute_grid(None, False, config) == []


def test_drop_elapsed_today_keeps_strictly_future():
    today = NOW.date()
    grid = [time(9, 30), time(10, 0), time(10, 30)]
    assert drop_elapsed(today, grid, NOW) == [time(10, 30)]


def test_drop_elapsed_past_date_is_empty():
    assert drop_elapsed(NOW.date() - timedelta(days=1), [time(9)], NOW) == []


# ====== SlotGenerator against storage ======
def test_generator_sunday_slots(slot_generator):
    assert slot_generator.slots_for(SUNDAY) == SUNDAY_GRID
    assert slot_generator.is_date_available(SUNDAY) is True


def test_generator_day_without_schedule(slot_generator):
    tuesday = SUNDAY + timedelta(days=2)
    assert slot_generator.slots_for(tuesday) == []
    assert slot_generator.is_date_available(tuesday) is False


def test_generator_inactive_schedule_is_ignored(db, slot_generator, schedules):
    schedules[1].is_active = False
    db.commit()
    assert slot_generator.slots_for(MONDAY) == []


def test_generator_vacation_day(db, slot_generator):
    db.add(Vacation(title="Conference", start_date=SUNDAY, end_date=SUNDAY))
    db.commit()
    assert slot_generator.slots_for(SUNDAY) == []
    assert slot_generator.is_date_available(SUNDAY) is False
    assert slot_generator.slots_for(MONDAY) != []


def test_generator_today_filters_elapsed(db, config, clock, schedules):
    from clinic_scheduler.services.slots import SlotGenerator

    clock.now = datetime.combine(SUNDAY, time(12, 10))
    gen = SlotGenerator(db, config, clock)
    assert gen.slots_for(SUNDAY) == SUNDAY_GRID[7:]
    clock.now = datetime.combine(SUNDAY, time(12, 30))
    assert gen.slots_for(SUNDAY)[0] == time(14, 0)


def test_generator_past_date_is_empty(slot_generator):
    last_sunday = SUNDAY - timedelta(days=7)
    assert slot_generator.slots_for(last_sunday) == []


def test_is_candidate(slot_generator):
    assert slot_generator.is_candidate(datetime.combine(SUNDAY, time(9, 30)))
    assert not slot_generator.is_candidate(datetime.combine(SUNDAY, time(9, 15)))
    assert not slot_generator.is_candidate(datetime.combine(SUNDAY, time(13, 0)))
    assert not slot_generator.is_candidate(datetime.combine(SUNDAY, time(9, 30, 5)))


def test_generator_respects_slot_duration(db, clock, schedules):
    from clinic_scheduler.services.slots import SlotGenerator

    gen = SlotGenerator(db, ClinicConfig(slot_duration_minutes=60), clock)
    assert gen.slots_for(MONDAY) == [time(9), time(10), time(11)]


# ====== Multi-day vacations ======
def test_last_day_of_vacation_is_blank(db, slot_generator):
    # Saturday through Sunday; Monday is open again
    db.add(Vacation(title="Long weekend", start_date=NOW.date(), end_date=SUNDAY))
    db.commit()
    assert slot_generator.slots_for(SUNDAY) == []
    assert slot_generator.is_date_available(SUNDAY) is False
    assert not slot_generator.is_candidate(datetime.combine(SUNDAY, time(9, 30)))
    assert slot_generator.is_date_available(MONDAY) is True
    assert len(slot_generator.slots_for(MONDAY)) == 6


def test_open_dates_skips_every_vacation_day(db, slot_generator):
    next_sunday = SUNDAY + timedelta(days=7)
    db.add(Vacation(title="Trip", start_date=SUNDAY, end_date=MONDAY))
    db.commit()
    opened = slot_generator.open_dates(NOW.date(), next_sunday + timedelta(days=1))
    assert opened == [next_sunday, next_sunday + timedelta(days=1)]
    assert slot_generator.vacation_dates(NOW.date(), next_sunday) == {SUNDAY, MONDAY}
