import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlmodel import Session

from .notifications import AppointmentNotifier
from .reminders import send_due_reminders
from .settings import Settings

logger = logging.getLogger(__name__)

REMINDER_JOB_ID = "appointment-reminders"

def run_reminder_job(engine, notifier: AppointmentNotifier, settings: Settings) -> int:
    with Session(engine) as session:
        try:
            return send_due_reminders(
                session,
                notifier,
                settings.reminder_window_start,
                settings.reminder_window_end,
                now=settings.local_now(),
            )
        except Exception:
            session.rollback()
            logger.exception("Reminder job failed")
            return 0

def start_scheduler(engine, notifier: AppointmentNotifier, settings: Settings) -> BackgroundScheduler:
    scheduler = BackgroundScheduler(timezone=settings.timezone)
    scheduler.add_job(
        run_reminder_job,
        trigger=IntervalTrigger(minutes=settings.reminder_interval_minutes),
        args=[engine, notifier, settings],
        id=REMINDER_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info(f"Reminder scheduler started, every {settings.reminder_interval_minutes} min")
    return scheduler
