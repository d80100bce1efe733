# clinic_scheduler/services/ledger.py
from __future__ import annotations
import logging
from collections import defaultdict
from datetime import date, time, timedelta
from typing import Dict, List, Optional, Set

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from ..clock import Clock, now_local
from ..config import settings
from ..models import Appointment, AppointmentStatus, ACTIVE_STATUSES

logger = logging.getLogger(__name__)


class BookingLedger:
    """
    Read side over appointments. Soft-deleted rows are invisible to every
    query here.
    """

    def __init__(self, db: Session, clock: Clock = now_local):
        self.db = db
        self.clock = clock

    def _live(self):
        return self.db.query(Appointment).filter(Appointment.deleted_at.is_(None))

    def _active(self):
        return self._live().filter(Appointment.status.in_(ACTIVE_STATUSES))

    # ====== Occupancy ======
    def active_at(self, day: date, at: time) -> List[Appointment]:
        return (
            self._active()
            .filter(Appointment.appointment_date == day)
            .filter(Appointment.appointment_time == at)
            .order_by(Appointment.slot_seat.asc())
            .all()
        )

    def active_count_at(self, day: date, at: time) -> int:
        return len(self.active_at(day, at))

    def taken_seats(self, day: date, at: time) -> Set[int]:
        return {a.slot_seat for a in self.active_at(day, at)}

    def active_counts_for_date(self, day: date) -> Dict[time, int]:
        """Active bookings per slot start for one date (single query)."""
        rows = (
            self.db.query(Appointment.appointment_time, func.count(Appointment.id))
            .filter(Appointment.deleted_at.is_(None))
            .filter(Appointment.status.in_(ACTIVE_STATUSES))
            .filter(Appointment.appointment_date == day)
            .group_by(Appointment.appointment_time)
            .all()
        )
        return {t: n for t, n in rows}

    def patient_has_active_at(self, patient_id: int, day: date, at: time) -> bool:
        q = (
            self._active()
            .filter(Appointment.patient_id == patient_id)
            .filter(Appointment.appointment_date == day)
            .filter(Appointment.appointment_time == at)
        )
        return self.db.query(q.exists()).scalar()

    # ====== Patient history ======
    def no_show_count(self, patient_id: int, days: Optional[int] = None) -> int:
        """No-shows whose appointment date falls in the trailing window ending now."""
        days = settings.NO_SHOW_WINDOW_DAYS if days is None else days
        since = (self.clock() - timedelta(days=days)).date()
        return (
            self._live()
            .filter(Appointment.patient_id == patient_id)
            .filter(Appointment.status == AppointmentStatus.no_show)
            .filter(Appointment.appointment_date >= since)
            .count()
        )

    def patient_appointments(self, patient_id: int, status: Optional[AppointmentStatus] = None) -> List[Appointment]:
        q = self._live().filter(Appointment.patient_id == patient_id)
        if status is not None:
            q = q.filter(Appointment.status == status)
        return q.order_by(Appointment.appointment_date.desc(), Appointment.appointment_time.desc()).all()

    def patient_upcoming(self, patient_id: int) -> List[Appointment]:
        return self._upcoming_query().filter(Appointment.patient_id == patient_id).all()

    # ====== Calendar views ======
    def appointments_for_date(self, day: date) -> List[Appointment]:
        return (
            self._live()
            .options(joinedload(Appointment.patient))
            .filter(Appointment.appointment_date == day)
            .order_by(Appointment.appointment_time.asc(), Appointment.slot_seat.asc())
            .all()
        )

    def upcoming(self, days: int = 7) -> List[Appointment]:
        end = self.clock().date() + timedelta(days=days)
        return self._upcoming_query().filter(Appointment.appointment_date <= end).all()

    def reminder_candidates(self, day: Optional[date] = None) -> List[Appointment]:
        """Active appointments on `day` (tomorrow by default)."""
        day = day or (self.clock().date() + timedelta(days=1))
        return (
            self._active()
            .options(joinedload(Appointment.patient))
            .filter(Appointment.appointment_date == day)
            .order_by(Appointment.appointment_time.asc())
            .all()
        )

    def _upcoming_query(self):
        now = self.clock()
        today, now_t = now.date(), now.time()
        return (
            self._active()
            .filter(
                (Appointment.appointment_date > today)
                | ((Appointment.appointment_date == today) & (Appointment.appointment_time > now_t))
            )
            .order_by(Appointment.appointment_date.asc(), Appointment.appointment_time.asc())
        )

    # ====== Reporting ======
    def status_counts(self, date_from: Optional[date] = None, date_to: Optional[date] = None) -> Dict[str, int]:
        q = (
            self.db.query(Appointment.status, func.count(Appointment.id))
            .filter(Appointment.deleted_at.is_(None))
        )
        if date_from is not None:
            q = q.filter(Appointment.appointment_date >= date_from)
        if date_to is not None:
            q = q.filter(Appointment.appointment_date <= date_to)
        counts = {s.value: 0 for s in AppointmentStatus}
        for status, n in q.group_by(Appointment.status).all():
            counts[AppointmentStatus(status).value] = n
        counts["total"] = sum(counts[s.value] for s in AppointmentStatus)
        return counts

    def daily_statistics(self, date_from: date, date_to: date) -> List[Dict]:
        rows = (
            self.db.query(Appointment.appointment_date, Appointment.status, func.count(Appointment.id))
            .filter(Appointment.deleted_at.is_(None))
            .filter(Appointment.appointment_date >= date_from)
            .filter(Appointment.appointment_date <= date_to)
            .group_by(Appointment.appointment_date, Appointment.status)
            .all()
        )
        by_day: Dict[date, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        for d, status, n in rows:
            by_day[d][AppointmentStatus(status).value] += n

        out = []
        cur = date_from
        while cur <= date_to:
            stats = by_day.get(cur, {})
            out.append({
                "date": cur.isoformat(),
                "total": sum(stats.values()),
                "completed": stats.get("completed", 0),
                "cancelled": stats.get("cancelled", 0),
                "no_show": stats.get("no_show", 0),
            })
            cur += timedelta(days=1)
        return out
