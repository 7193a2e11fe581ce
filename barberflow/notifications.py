"""
Appointment notifications over WhatsApp.

Messages are best effort: a missing phone or a disabled channel is a silent
no-op and any failure while sending is logged and dropped, so the booking,
confirmation or reminder that triggered it is never affected.
"""

import enum
import logging
from typing import Optional

from .models import Appointment, Shop
from .phone import normalize_phone, redact_phone
from .whatsapp import WhatsAppService

logger = logging.getLogger(__name__)

class NotificationKind(str, enum.Enum):
    NEW_APPOINTMENT = "new_appointment"
    CONFIRMED = "confirmed"
    REMINDER = "reminder"

NEW_APPOINTMENT_TEMPLATE = (
    "🆕 *Novo agendamento (Barberflow)*\n\n"
    "Cliente: *{client_name}*\n"
    "Data: {date} às {time}\n"
    "Serviço: {service_name}\n"
    "Barbeiro: {barber_name}\n"
    "Status: pendente de confirmação."
)

CONFIRMED_TEMPLATE = (
    "✅ *Agendamento confirmado!*\n\n"
    "Olá! A *{shop_name}* confirmou seu agendamento.\n\n"
    "📅 Data: {date}\n"
    "🕐 Horário: {time}\n"
    "✂️ Serviço: {service_name}\n\n"
    "Te esperamos!"
)

REMINDER_TEMPLATE = (
    "⏰ *Lembrete – Agendamento em 30 min*\n\n"
    "Cliente: *{client_name}*\n"
    "Horário: {date} às {time}\n"
    "Serviço: {service_name}\n"
    "Barbeiro: {barber_name}"
)

TEMPLATES = {
    NotificationKind.NEW_APPOINTMENT: NEW_APPOINTMENT_TEMPLATE,
    NotificationKind.CONFIRMED: CONFIRMED_TEMPLATE,
    NotificationKind.REMINDER: REMINDER_TEMPLATE,
}

def message_fields(appointment: Appointment) -> dict:
    shop = appointment.shop
    return {
        "client_name": appointment.client_name or "Cliente",
        "date": appointment.date.strftime("%d/%m/%Y"),
        "time": appointment.time.strftime("%H:%M"),
        "service_name": appointment.service.name if appointment.service else "Serviço",
        "barber_name": appointment.barber.name if appointment.barber else "Barbeiro",
        "shop_name": shop.name if shop else "",
    }

def recipient_phone(kind: NotificationKind, appointment: Appointment) -> Optional[str]:
    if kind is NotificationKind.CONFIRMED:
        return appointment.phone
    shop = appointment.shop
    return shop.phone if shop else None

def render(kind: NotificationKind, appointment: Appointment) -> str:
    return TEMPLATES[kind].format(**message_fields(appointment))

class AppointmentNotifier:
    def __init__(self, whatsapp: WhatsAppService):
        self.whatsapp = whatsapp

    def send(self, kind: NotificationKind, appointment: Appointment) -> bool:
        """Send one notification; returns whether the provider accepted it.

        Never raises.
        """
        try:
            shop = appointment.shop
            phone = recipient_phone(kind, appointment)
            if shop is None or not phone or not self.whatsapp.is_enabled(shop):
                return False
            if not normalize_phone(phone):
                logger.debug(f"{kind.value}: unusable phone {redact_phone(phone)}, skipped")
                return False
            text = render(kind, appointment)
        except Exception as exc:
            logger.error(f"{kind.value}: could not prepare message for appointment {appointment.id}: {exc}")
            return False
        # the channel normalizes the number itself
        return self._send_safe(shop, phone, text, kind)

    def _send_safe(self, shop: Shop, phone: str, text: str, kind: NotificationKind) -> bool:
        try:
            sent = self.whatsapp.send_text(shop, phone, text)
        except Exception as exc:
            logger.error(f"WhatsApp send failed ({kind.value}) to {redact_phone(phone)}: {exc}")
            return False
        if sent:
            logger.info(f"WhatsApp sent ({kind.value}) to {redact_phone(phone)}")
        else:
            logger.warning(f"WhatsApp not accepted ({kind.value}) for {redact_phone(phone)}")
        return sent

    def notify_shop_new_appointment(self, appointment: Appointment) -> bool:
        return self.send(NotificationKind.NEW_APPOINTMENT, appointment)

    def notify_client_appointment_confirmed(self, appointment: Appointment) -> bool:
        return self.send(NotificationKind.CONFIRMED, appointment)

    def notify_shop_reminder(self, appointment: Appointment) -> bool:
        return self.send(NotificationKind.REMINDER, appointment)
