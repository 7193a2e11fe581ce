"""
Pytest configuration and shared fixtures.
"""

import os

# Must be set before barberflow.db creates its engine.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["EVOLUTION_API_URL"] = ""
os.environ["EVOLUTION_API_KEY"] = ""
os.environ["REMINDER_SCHEDULER_ENABLED"] = "false"
os.environ["TIMEZONE"] = "America/Sao_Paulo"

from datetime import date, time
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlmodel import Session

from barberflow.db import init_db, make_engine
from barberflow.models import Appointment, Barber, Client, Service, Shop
from barberflow.notifications import AppointmentNotifier
from barberflow.whatsapp import WhatsAppService


def make_response(status_code=200, body=None, invalid_json=False):
    """Stand-in for requests.Response."""
    response = MagicMock()
    response.status_code = status_code
    if invalid_json:
        response.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        response.json.return_value = body
    return response


@pytest.fixture
def engine():
    eng = make_engine("sqlite://")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def shop(session):
    s = Shop(name="Barbearia Central", slug="central", phone="(11) 98765-4321",
             evolution_instance_name="barberflow-1")
    session.add(s)
    session.commit()
    session.refresh(s)
    return s


@pytest.fixture
def barber(session, shop):
    b = Barber(shop_id=shop.id, name="João")
    session.add(b)
    session.commit()
    session.refresh(b)
    return b


@pytest.fixture
def service(session, shop):
    s = Service(shop_id=shop.id, name="Corte", duration=30, price=Decimal("45.00"))
    session.add(s)
    session.commit()
    session.refresh(s)
    return s


@pytest.fixture
def client_row(session, shop):
    c = Client(shop_id=shop.id, name="Maria", phone="11912345678")
    session.add(c)
    session.commit()
    session.refresh(c)
    return c


@pytest.fixture
def make_appointment(session, barber, service):
    def _make(day=date(2025, 2, 14), at=time(14, 0), status="confirmed", client=None,
              price=Decimal("45.00"), phone="11912345678"):
        a = Appointment(
            barber_id=barber.id,
            service_id=service.id,
            client_id=client.id if client else None,
            client_name=client.name if client else "Maria",
            phone=phone,
            date=day,
            time=at,
            status=status,
            price=price,
        )
        session.add(a)
        session.commit()
        session.refresh(a)
        return a
    return _make


@pytest.fixture
def whatsapp():
    channel = MagicMock(spec=WhatsAppService)
    channel.is_enabled.return_value = True
    channel.send_text.return_value = True
    return channel


@pytest.fixture
def notifier(whatsapp):
    return AppointmentNotifier(whatsapp)
