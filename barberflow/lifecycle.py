import logging
from datetime import datetime
from typing import Iterable

from sqlmodel import Session

from .models import (
    Appointment,
    STATUSES,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_CONFIRMED,
    STATUS_PENDING,
)
from .notifications import AppointmentNotifier

logger = logging.getLogger(__name__)

# completed and cancelled are terminal
TRANSITIONS = {
    STATUS_PENDING: {STATUS_CONFIRMED, STATUS_CANCELLED},
    STATUS_CONFIRMED: {STATUS_COMPLETED, STATUS_CANCELLED},
    STATUS_COMPLETED: set(),
    STATUS_CANCELLED: set(),
}

class InvalidTransition(Exception):
    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move appointment from {current} to {target}")
        self.current = current
        self.target = target

class AppointmentLifecycle:
    """Status changes for appointments and the side effects they carry.

    Notifications are sent after the commit and cannot undo it. Client
    statistics move only on the confirmed -> completed edge, which happens at
    most once per appointment.
    """

    def __init__(self, notifier: AppointmentNotifier):
        self.notifier = notifier

    def _check(self, appointment: Appointment, target: str):
        if target not in STATUSES:
            raise ValueError(f"Invalid status: {target}")
        if target not in TRANSITIONS.get(appointment.status, set()):
            raise InvalidTransition(appointment.status, target)

    def _save(self, session: Session, appointment: Appointment, now: datetime = None):
        appointment.updated_at = now or datetime.now()
        session.add(appointment)
        session.commit()
        session.refresh(appointment)

    def create(self, session: Session, appointment: Appointment) -> Appointment:
        if appointment.status not in STATUSES:
            raise ValueError(f"Invalid status: {appointment.status}")
        session.add(appointment)
        session.commit()
        session.refresh(appointment)
        self.notifier.notify_shop_new_appointment(appointment)
        return appointment

    def confirm(self, session: Session, appointment: Appointment) -> Appointment:
        self._check(appointment, STATUS_CONFIRMED)
        appointment.status = STATUS_CONFIRMED
        self._save(session, appointment)
        self.notifier.notify_client_appointment_confirmed(appointment)
        return appointment

    def complete(self, session: Session, appointment: Appointment) -> Appointment:
        self._check(appointment, STATUS_COMPLETED)
        self._mark_completed(appointment)
        self._save(session, appointment)
        return appointment

    def cancel(self, session: Session, appointment: Appointment) -> Appointment:
        self._check(appointment, STATUS_CANCELLED)
        appointment.status = STATUS_CANCELLED
        self._save(session, appointment)
        return appointment

    def set_status(self, session: Session, appointment: Appointment, status: str) -> Appointment:
        if status not in STATUSES:
            raise ValueError(f"Invalid status: {status}")
        if status == appointment.status:
            return appointment
        handler = {
            STATUS_CONFIRMED: self.confirm,
            STATUS_COMPLETED: self.complete,
            STATUS_CANCELLED: self.cancel,
        }.get(status)
        if handler is None:
            raise InvalidTransition(appointment.status, status)
        return handler(session, appointment)

    @staticmethod
    def _mark_completed(appointment: Appointment):
        appointment.status = STATUS_COMPLETED
        if appointment.client is not None:
            appointment.client.record_visit(appointment.price)

    def auto_complete(self, session: Session, appointments: Iterable[Appointment], now: datetime) -> int:
        """Complete confirmed appointments whose time has passed.

        Runs whenever a shop's appointments are listed. Commits once, and only
        if something changed.
        """
        changed = 0
        for appointment in appointments:
            if appointment.status != STATUS_CONFIRMED or appointment.scheduled_at > now:
                continue
            self._mark_completed(appointment)
            appointment.updated_at = now
            session.add(appointment)
            changed += 1
        if changed:
            session.commit()
            logger.info(f"Auto-completed {changed} appointment(s)")
        return changed
