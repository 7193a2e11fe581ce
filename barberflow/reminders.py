import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlmodel import Session

from .logic import find_confirmed_without_reminder
from .notifications import AppointmentNotifier

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_START = 25
DEFAULT_WINDOW_END = 35

def send_due_reminders(
    session: Session,
    notifier: AppointmentNotifier,
    window_start: int = DEFAULT_WINDOW_START,
    window_end: int = DEFAULT_WINDOW_END,
    now: Optional[datetime] = None,
) -> int:
    """Remind shops of confirmed appointments starting in the window.

    ``reminder_sent_at`` is stamped after the send attempt, whatever its
    outcome, and only unstamped appointments are selected. Two runs that
    overlap can both send before either stamps.
    """
    if window_start > window_end:
        raise ValueError("window_start must not be after window_end")
    now = now or datetime.now()
    start = now + timedelta(minutes=window_start)
    end = now + timedelta(minutes=window_end)

    appointments = find_confirmed_without_reminder(session, start, end)
    if not appointments:
        logger.debug(f"No appointments in reminder window {start:%H:%M}-{end:%H:%M}")
        return 0

    for appointment in appointments:
        notifier.notify_shop_reminder(appointment)
        appointment.reminder_sent_at = now
        session.add(appointment)
    session.commit()

    logger.info(f"Reminder sent for {len(appointments)} appointment(s)")
    return len(appointments)
