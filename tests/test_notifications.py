"""Tests for appointment notifications."""

import logging
from datetime import date, time
from unittest.mock import MagicMock

import pytest

from barberflow.errors import RemoteTransportError
from barberflow.notifications import AppointmentNotifier, NotificationKind, render
from barberflow.whatsapp import EvolutionWhatsAppService

from conftest import make_response


class TestRender:
    def test_new_appointment_message(self, make_appointment):
        a = make_appointment(day=date(2025, 2, 14), at=time(9, 30))

        text = render(NotificationKind.NEW_APPOINTMENT, a)

        assert "Cliente: *Maria*" in text
        assert "Data: 14/02/2025 às 09:30" in text
        assert "Serviço: Corte" in text
        assert "Barbeiro: João" in text

    def test_confirmation_mentions_shop(self, make_appointment):
        text = render(NotificationKind.CONFIRMED, make_appointment())

        assert "*Barbearia Central*" in text
        assert "🕐 Horário: 14:00" in text

    def test_reminder_message(self, make_appointment):
        text = render(NotificationKind.REMINDER, make_appointment())

        assert text.startswith("⏰ *Lembrete")
        assert "Horário: 14/02/2025 às 14:00" in text


class TestAppointmentNotifier:
    def test_new_appointment_goes_to_shop_phone(self, notifier, whatsapp, make_appointment, shop):
        assert notifier.notify_shop_new_appointment(make_appointment())

        sent_shop, number, text = whatsapp.send_text.call_args.args
        assert sent_shop.id == shop.id
        assert number == "(11) 98765-4321"
        assert "Novo agendamento" in text

    def test_confirmation_goes_to_client_phone(self, notifier, whatsapp, make_appointment):
        notifier.notify_client_appointment_confirmed(make_appointment(phone="(21) 99876-5432"))

        assert whatsapp.send_text.call_args.args[1] == "(21) 99876-5432"

    def test_empty_shop_phone_is_silent_noop(self, notifier, whatsapp, make_appointment, shop, session):
        shop.phone = ""
        session.add(shop)
        session.commit()

        assert notifier.notify_shop_new_appointment(make_appointment()) is False
        whatsapp.send_text.assert_not_called()

    def test_missing_client_phone_is_noop(self, notifier, whatsapp, make_appointment):
        assert notifier.notify_client_appointment_confirmed(make_appointment(phone=None)) is False
        whatsapp.send_text.assert_not_called()

    def test_disabled_channel_is_noop(self, notifier, whatsapp, make_appointment):
        whatsapp.is_enabled.return_value = False

        assert notifier.notify_shop_reminder(make_appointment()) is False
        whatsapp.send_text.assert_not_called()

    def test_unusable_phone_is_noop(self, notifier, whatsapp, make_appointment):
        notifier.notify_client_appointment_confirmed(make_appointment(phone="n/a"))

        whatsapp.send_text.assert_not_called()

    @pytest.mark.parametrize("failure", [RemoteTransportError("timeout"), RuntimeError("boom")])
    def test_send_failure_is_swallowed_and_redacted(self, notifier, whatsapp, make_appointment, caplog, failure):
        whatsapp.send_text.side_effect = failure

        with caplog.at_level(logging.ERROR, logger="barberflow.notifications"):
            assert notifier.send(NotificationKind.REMINDER, make_appointment()) is False

        assert "4321****" in caplog.text
        assert "98765-4321" not in caplog.text

    def test_rejected_send_reports_false(self, notifier, whatsapp, make_appointment):
        whatsapp.send_text.return_value = False

        assert notifier.notify_shop_reminder(make_appointment()) is False


class TestNotifierOverEvolution:
    @pytest.fixture
    def http(self):
        http = MagicMock()
        http.post.return_value = make_response(201, {"key": {"id": "abc"}})
        return http

    @pytest.fixture
    def evolution_notifier(self, http):
        return AppointmentNotifier(EvolutionWhatsAppService("https://evo.example.com", "global-key", http=http))

    def test_shop_number_posted_once_normalized(self, evolution_notifier, http, make_appointment):
        assert evolution_notifier.notify_shop_new_appointment(make_appointment())

        assert http.post.call_args.kwargs["json"]["number"] == "5511987654321"

    def test_client_number_posted_once_normalized(self, evolution_notifier, http, make_appointment):
        assert evolution_notifier.notify_client_appointment_confirmed(make_appointment(phone="11912345678"))

        assert http.post.call_args.kwargs["json"]["number"] == "5511912345678"

    def test_prefixed_number_kept(self, evolution_notifier, http, make_appointment):
        evolution_notifier.notify_client_appointment_confirmed(make_appointment(phone="551191234567"))

        assert http.post.call_args.kwargs["json"]["number"] == "551191234567"
