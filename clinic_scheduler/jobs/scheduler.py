import logging
from datetime import timedelta
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from ..clock import Clock, now_local
from ..config import settings
from ..database import SessionLocal
from ..services import events as ev
from ..services.ledger import BookingLedger

logger = logging.getLogger(__name__)


def reminder_job(db: Optional[Session] = None, clock: Clock = now_local, bus: ev.EventBus = ev.bus) -> int:
    """
    Publishes appointment.reminder_due for active appointments starting in
    the clock hour 24h from now (clinic-local). Runs hourly, so each
    appointment is announced once. Delivery is up to the subscribers.
    """
    own_session = db is None
    db = db or SessionLocal()
    try:
        now = clock()
        start = (now + timedelta(hours=24)).replace(minute=0, second=0, microsecond=0)
        end = start + timedelta(hours=1)

        due = [a for a in BookingLedger(db, clock).reminder_candidates(start.date())
               if start <= a.starts_at < end]
        for a in due:
            bus.publish(ev.AppointmentEvent.for_appointment(ev.REMINDER_DUE, a, now, when="24h"))
        logger.info("Reminder sweep %s..%s: %d appointment(s) due", start.isoformat(), end.isoformat(), len(due))
        return len(due)
    finally:
        if own_session:
            db.close()


def start_scheduler():
    scheduler = BackgroundScheduler(timezone=settings.TIMEZONE)
    scheduler.add_job(reminder_job, CronTrigger(minute=0), id="reminder_sweep", replace_existing=True)  # every hour
    scheduler.start()
    logger.info("Scheduler started (tz=%s)", settings.TIMEZONE)
    return scheduler
