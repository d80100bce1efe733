# clinic_scheduler/services/booking.py
"""
Booking Engine

Validates and commits bookings against the slot grid and the ledger, and owns
the appointment state machine:

    pending → confirmed → completed
    pending | confirmed → cancelled
    confirmed → no_show

Every rejection is a ClinicError subclass with a specific code. The engine is
request-scoped: it keeps no state between calls beyond its DB session.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..clock import Clock, now_local, to_local_naive, localize
from ..config import settings
from ..errors import (
    ClinicError,
    ValidationError,
    SchedulingConflict,
    OccupancyConflict,
    EligibilityError,
    IllegalStateTransition,
    AuthorizationError,
    NotFound,
)
from ..models import Appointment, AppointmentStatus, CancelledBy, DayOfWeek, Patient, UserRole
from . import events as ev
from .clinic_config import ClinicConfig
from .ledger import BookingLedger
from .slots import SlotGenerator

logger = logging.getLogger(__name__)

# action -> (allowed source states, target state)
TRANSITIONS = {
    "confirm": ((AppointmentStatus.pending,), AppointmentStatus.confirmed),
    "complete": ((AppointmentStatus.confirmed,), AppointmentStatus.completed),
    "cancel": ((AppointmentStatus.pending, AppointmentStatus.confirmed), AppointmentStatus.cancelled),
    "mark_no_show": ((AppointmentStatus.confirmed,), AppointmentStatus.no_show),
}


@dataclass(frozen=True)
class Actor:
    """Whoever drives an operation. Identity is established at the boundary."""
    id: int
    role: UserRole = UserRole.patient

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.admin, UserRole.secretary)


def _check(ok: bool = True, error: Optional[ClinicError] = None) -> Dict[str, Any]:
    if ok:
        return {"ok": True, "kind": None, "code": None, "reason": None}
    return {"ok": False, "kind": error.kind, "code": error.code, "reason": error.reason}


class BookingEngine:
    def __init__(
        self,
        db: Session,
        config: ClinicConfig,
        slots=None,
        ledger: Optional[BookingLedger] = None,
        events: Optional[ev.EventBus] = None,
        clock: Clock = now_local,
    ):
        self.db = db
        self.config = config
        self.clock = clock
        self.slots = slots if slots is not None else SlotGenerator(db, config, clock)
        self.ledger = ledger if ledger is not None else BookingLedger(db, clock)
        self.events = events

    # ==================== Lookup ====================
    def get(self, appointment_id: int) -> Appointment:
        appt = self.db.get(Appointment, appointment_id)
        if appt is None or appt.is_deleted:
            raise NotFound("Appointment not found.", "appointment_not_found", {"appointment_id": appointment_id})
        return appt

    # ==================== Booking ====================
    def book(self, patient_id: int, when: datetime, notes: Optional[str] = None) -> Appointment:
        at = to_local_naive(when)
        logger.info("Booking attempt: patient_id=%s at=%s", patient_id, at.isoformat())

        try:
            seat = self._validate_booking(patient_id, at)
        except ClinicError as e:
            logger.warning("Booking rejected: patient_id=%s at=%s kind=%s code=%s",
                           patient_id, at.isoformat(), e.kind, e.code)
            raise

        appt = Appointment(
            patient_id=patient_id,
            appointment_date=at.date(),
            appointment_time=at.time(),
            slot_seat=seat,
            status=AppointmentStatus.pending,
            notes=notes,
        )
        self.db.add(appt)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost the race: someone committed the same seat after our check
            self.db.rollback()
            logger.warning("Booking lost commit race: patient_id=%s at=%s seat=%s",
                           patient_id, at.isoformat(), seat)
            raise OccupancyConflict("This slot is no longer available.", "slot_taken",
                                    {"date": at.date(), "time": at.time()})
        self.db.refresh(appt)

        logger.info("Appointment booked: id=%s patient_id=%s at=%s seat=%s",
                    appt.id, patient_id, at.isoformat(), seat)
        self._emit(ev.BOOKED, appt)
        return appt

    def can_book(self, patient_id: int, when: datetime) -> Dict[str, Any]:
        try:
            self._validate_booking(patient_id, to_local_naive(when))
        except ClinicError as e:
            return _check(False, e)
        return _check()

    def _validate_booking(self, patient_id: int, at: datetime) -> int:
        """
        Runs the booking preconditions in order; the first failure is raised.
        Returns the seat the new appointment will occupy.
        """
        if self.db.get(Patient, patient_id) is None:
            raise NotFound("Patient not found.", "patient_not_found", {"patient_id": patient_id})

        now = self.clock()
        day, at_time = at.date(), at.time()
        ctx = {"date": day, "time": at_time}

        # 1. strictly in the future
        if at <= now:
            raise SchedulingConflict("This time has already passed.", "past_time", ctx)

        # 2. structurally available
        if day > self.config.max_booking_date(now.date()):
            raise SchedulingConflict("This date is beyond the booking horizon.", "beyond_horizon",
                                     {**ctx, "max_date": self.config.max_booking_date(now.date())})
        if self.slots.is_vacation_day(day):
            raise SchedulingConflict("The clinic is closed on this date.", "vacation", ctx)
        if not self.slots.has_active_schedule(DayOfWeek.from_date(day)):
            raise SchedulingConflict("The clinic does not work on this day.", "no_schedule", ctx)
        if not self.slots.is_candidate(at):
            raise SchedulingConflict("This time is not a bookable slot.", "not_a_slot", ctx)

        # 3. occupancy
        capacity = self.config.max_patients_per_slot
        taken = self.ledger.taken_seats(day, at_time)
        if len(taken) >= capacity:
            raise OccupancyConflict("This slot is already booked.", "slot_taken", ctx)
        # seats can sit above capacity after it was lowered; take the lowest unused one
        seat = next(s for s in range(len(taken) + 1) if s not in taken)

        # 4. no-show lockout
        no_shows = self.ledger.no_show_count(patient_id)
        if no_shows >= settings.MAX_NO_SHOWS:
            raise EligibilityError(
                "Booking is blocked because of repeated no-shows.",
                "too_many_no_shows",
                {"no_show_count": no_shows, "max_allowed": settings.MAX_NO_SHOWS,
                 "window_days": settings.NO_SHOW_WINDOW_DAYS},
            )

        # 5. same patient, same slot
        if self.ledger.patient_has_active_at(patient_id, day, at_time):
            raise OccupancyConflict("You already have a booking at this time.", "duplicate_booking",
                                    {**ctx, "patient_id": patient_id})

        return seat

    # ==================== Status Management ====================
    def confirm(self, appt: Appointment) -> Appointment:
        self._transition(appt, "confirm", confirmed_at=self._stamp())
        self._emit(ev.CONFIRMED, appt)
        return appt

    def complete(self, appt: Appointment, admin_notes: Optional[str] = None) -> Appointment:
        values: Dict[str, Any] = {"completed_at": self._stamp()}
        if admin_notes is not None:
            values["admin_notes"] = admin_notes
        self._transition(appt, "complete", **values)
        self._emit(ev.COMPLETED, appt)
        return appt

    def cancel(self, appt: Appointment, reason: str, cancelled_by: Union[CancelledBy, str]) -> Appointment:
        if not reason or not str(reason).strip():
            raise ValidationError("A cancellation reason is required.", "missing_reason")
        try:
            cancelled_by = CancelledBy(cancelled_by)
        except ValueError:
            raise ValidationError("cancelled_by must be patient, admin or system.", "invalid_cancelled_by",
                                  {"cancelled_by": cancelled_by})

        self._require_state(appt, "cancel")
        if cancelled_by == CancelledBy.patient:
            self._require_before_deadline(appt)

        self._transition(
            appt,
            "cancel",
            cancellation_reason=str(reason).strip(),
            cancelled_by=cancelled_by,
            cancelled_at=self._stamp(),
        )
        self._emit(ev.CANCELLED, appt, cancelled_by=cancelled_by.value, reason=appt.cancellation_reason)
        return appt

    def cancel_as(self, appt: Appointment, actor: Actor, reason: str) -> Appointment:
        """Boundary helper: patients may only cancel their own appointments."""
        if not actor.is_staff and appt.patient_id != actor.id:
            raise AuthorizationError("You are not allowed to cancel this appointment.", "not_owner",
                                     {"appointment_id": appt.id})
        return self.cancel(appt, reason, CancelledBy.admin if actor.is_staff else CancelledBy.patient)

    def mark_no_show(self, appt: Appointment) -> Appointment:
        self._transition(appt, "mark_no_show")
        self._emit(ev.NO_SHOW, appt)
        return appt

    def purge(self, appt: Appointment) -> Appointment:
        """Administrative soft delete. The row disappears from every active query."""
        if appt.is_deleted:
            raise NotFound("Appointment not found.", "appointment_not_found", {"appointment_id": appt.id})
        appt.deleted_at = self._stamp()
        self.db.commit()
        self.db.refresh(appt)
        logger.info("Appointment purged: id=%s status=%s", appt.id, appt.status.value)
        return appt

    # ==================== Cancellation Validation ====================
    def can_cancel(self, appt: Appointment, actor: Actor) -> Dict[str, Any]:
        try:
            self._require_state(appt, "cancel")
            if appt.starts_at <= self.clock():
                raise SchedulingConflict("Past appointments cannot be cancelled.", "past_time",
                                         {"appointment_id": appt.id})
            if not actor.is_staff:
                if appt.patient_id != actor.id:
                    raise AuthorizationError("You are not allowed to cancel this appointment.", "not_owner",
                                             {"appointment_id": appt.id})
                self._require_before_deadline(appt)
        except ClinicError as e:
            return _check(False, e)
        return _check()

    # ==================== Internals ====================
    def _stamp(self) -> datetime:
        return localize(self.clock())

    def _require_state(self, appt: Appointment, action: str) -> None:
        if appt.is_deleted:
            raise NotFound("Appointment not found.", "appointment_not_found", {"appointment_id": appt.id})
        allowed, _target = TRANSITIONS[action]
        if appt.status not in allowed:
            raise IllegalStateTransition(
                f"Cannot {action.replace('_', ' ')} an appointment that is {appt.status.value}.",
                "invalid_status_transition",
                {"appointment_id": appt.id, "current_status": appt.status, "expected": _names(allowed)},
            )

    def _require_before_deadline(self, appt: Appointment) -> None:
        if not settings.ENFORCE_CANCELLATION_DEADLINE:
            return
        if not self.config.can_cancel_appointment(appt.starts_at, self.clock()):
            raise SchedulingConflict(
                f"Appointments can only be cancelled up to {self.config.cancellation_hours} hours in advance.",
                "cancellation_deadline_passed",
                {"appointment_id": appt.id, "deadline": self.config.cancellation_deadline(appt.starts_at)},
            )

    def _transition(self, appt: Appointment, action: str, **values) -> None:
        self._require_state(appt, action)
        allowed, target = TRANSITIONS[action]
        previous = appt.status

        # Conditional update: a concurrent transition that got there first makes this a no-op
        updated = (
            self.db.query(Appointment)
            .filter(Appointment.id == appt.id)
            .filter(Appointment.status.in_(allowed))
            .filter(Appointment.deleted_at.is_(None))
            .update({"status": target, **values}, synchronize_session=False)
        )
        if updated == 0:
            self.db.rollback()
            self.db.refresh(appt)
            raise IllegalStateTransition(
                f"Cannot {action.replace('_', ' ')} an appointment that is {appt.status.value}.",
                "invalid_status_transition",
                {"appointment_id": appt.id, "current_status": appt.status, "expected": _names(allowed)},
            )
        self.db.commit()
        self.db.refresh(appt)
        logger.info("Appointment %s: id=%s %s -> %s", action, appt.id, previous.value, appt.status.value)

    def _emit(self, name: str, appt: Appointment, **payload) -> None:
        if self.events is None:
            return
        self.events.publish(ev.AppointmentEvent.for_appointment(name, appt, self.clock(), **payload))


def _names(statuses: Iterable[AppointmentStatus]) -> str:
    return "|".join(s.value for s in statuses)
