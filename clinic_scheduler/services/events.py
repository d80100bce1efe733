# clinic_scheduler/services/events.py
"""
Outbound appointment events.

The core reports what happened; delivery (WhatsApp, e-mail, billing) belongs
to whoever subscribes. A failing subscriber is logged and never undoes the
transition that produced the event.
"""
from __future__ import annotations
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..models import Appointment

logger = logging.getLogger(__name__)

BOOKED = "appointment.booked"
CONFIRMED = "appointment.confirmed"
COMPLETED = "appointment.completed"  # eligible for a payment record
CANCELLED = "appointment.cancelled"
NO_SHOW = "appointment.no_show"
REMINDER_DUE = "appointment.reminder_due"


@dataclass(frozen=True)
class AppointmentEvent:
    name: str
    appointment_id: int
    patient_id: int
    status: str
    starts_at: datetime
    occurred_at: datetime
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_appointment(cls, name: str, appt: Appointment, occurred_at: datetime, **payload) -> "AppointmentEvent":
        return cls(
            name=name,
            appointment_id=appt.id,
            patient_id=appt.patient_id,
            status=appt.status.value,
            starts_at=appt.starts_at,
            occurred_at=occurred_at,
            payload=payload,
        )


Handler = Callable[[AppointmentEvent], None]


class EventBus:
    def __init__(self):
        self._handlers: List[tuple[Optional[str], Handler]] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: Handler, name: Optional[str] = None) -> Handler:
        """`name=None` receives every event."""
        with self._lock:
            self._handlers.append((name, handler))
        return handler

    def unsubscribe(self, handler: Handler) -> None:
        with self._lock:
            self._handlers = [(n, h) for n, h in self._handlers if h != handler]

    def publish(self, event: AppointmentEvent) -> None:
        with self._lock:
            handlers = [h for n, h in self._handlers if n is None or n == event.name]
        logger.debug("Event %s appointment_id=%s -> %d handler(s)", event.name, event.appointment_id, len(handlers))
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.exception("Event handler failed for %s (appointment_id=%s): %s",
                                 event.name, event.appointment_id, e)


def log_event(event: AppointmentEvent) -> None:
    """Default subscriber: an audit line per event."""
    logger.info("[EVENT] %s appointment_id=%s patient_id=%s status=%s starts_at=%s",
                event.name, event.appointment_id, event.patient_id, event.status, event.starts_at.isoformat())


# Process-wide bus used by the app wiring
bus = EventBus()
