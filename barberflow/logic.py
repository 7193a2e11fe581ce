from datetime import date, datetime, time
from typing import List, Optional
from sqlmodel import Session, select, func
from .models import Appointment, Barber, Client, STATUS_CANCELLED, STATUS_CONFIRMED, STATUS_PENDING
from .phone import normalize_phone

def _shop_appointments(shop_id: int):
    return select(Appointment).join(Barber).where(Barber.shop_id == shop_id)

def find_by_shop_and_date(session: Session, shop_id: int, day: date) -> List[Appointment]:
    q = _shop_appointments(shop_id).where(Appointment.date == day).order_by(Appointment.time)
    return list(session.exec(q).all())

def find_by_shop_and_range(session: Session, shop_id: int, start: date, end: date) -> List[Appointment]:
    q = (_shop_appointments(shop_id)
         .where(Appointment.date >= start).where(Appointment.date <= end)
         .order_by(Appointment.date, Appointment.time))
    return list(session.exec(q).all())

def find_by_barber(session: Session, barber_id: int) -> List[Appointment]:
    q = select(Appointment).where(Appointment.barber_id == barber_id).order_by(Appointment.date.desc(), Appointment.time.desc())
    return list(session.exec(q).all())

def find_pending_by_shop(session: Session, shop_id: int) -> List[Appointment]:
    q = (_shop_appointments(shop_id).where(Appointment.status == STATUS_PENDING)
         .order_by(Appointment.date, Appointment.time))
    return list(session.exec(q).all())

def count_by_shop_and_status(session: Session, shop_id: int, status: str) -> int:
    q = (select(func.count(Appointment.id)).join(Barber)
         .where(Barber.shop_id == shop_id).where(Appointment.status == status))
    return session.exec(q).one()

def find_confirmed_without_reminder(session: Session, start: datetime, end: datetime) -> List[Appointment]:
    """Confirmed, unreminded appointments of every shop scheduled in [start, end]."""
    q = (select(Appointment)
         .where(Appointment.status == STATUS_CONFIRMED)
         .where(Appointment.reminder_sent_at.is_(None))
         .where(Appointment.date >= start.date()).where(Appointment.date <= end.date())
         .order_by(Appointment.date, Appointment.time))
    # date and time live in separate columns; the window edges are checked here
    return [a for a in session.exec(q).all() if start <= a.scheduled_at <= end]

def find_slot_taken(session: Session, barber_id: int, day: date, at: time, exclude_id: Optional[int] = None) -> Optional[Appointment]:
    q = (select(Appointment).where(Appointment.barber_id == barber_id)
         .where(Appointment.date == day).where(Appointment.time == at)
         .where(Appointment.status != STATUS_CANCELLED))
    if exclude_id is not None:
        q = q.where(Appointment.id != exclude_id)
    return session.exec(q).first()

def ensure_client(session: Session, shop_id: int, phone: str, name: str|None=None) -> Optional[Client]:
    digits = "".join(ch for ch in phone if ch.isdigit())
    if not digits:
        return None
    # stored numbers may or may not carry the country prefix
    candidates = sorted({digits, normalize_phone(digits)})
    c = session.exec(select(Client).where(Client.shop_id==shop_id).where(Client.phone.in_(candidates))).first()
    if c: return c
    c = Client(shop_id=shop_id, phone=digits, name=name or 'Cliente')
    session.add(c); session.flush()
    return c
