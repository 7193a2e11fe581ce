"""Tests for Evolution API instance management."""

from unittest.mock import MagicMock

import pytest
import requests

from barberflow.errors import Conflict, NotConfigured, RemoteProtocolError, RemoteTransportError
from barberflow.evolution import (
    ConnectionState,
    EvolutionApiManager,
    INFO_LOOKUPS,
    InfoLookup,
    InstanceInfo,
    extract_instance,
    normalize_owner,
    parse_information,
)
from barberflow.models import Shop

from conftest import make_response

BASE = "https://evo.example.com"


@pytest.fixture
def http():
    return MagicMock()


@pytest.fixture
def manager(http):
    return EvolutionApiManager(BASE + "/", "global-key", http=http)


@pytest.fixture
def new_shop(session):
    s = Shop(name="Nova", slug="nova", phone="11900000000")
    session.add(s)
    session.commit()
    session.refresh(s)
    return s


def called_urls(http):
    return [c.args[1] for c in http.request.call_args_list]


class TestNormalizeOwner:
    def test_strips_domain(self):
        assert normalize_owner("5511999999999@s.whatsapp.net") == "5511999999999"

    def test_plain_number_kept(self):
        assert normalize_owner("5511999999999") == "5511999999999"

    @pytest.mark.parametrize("value", ["", None, "@s.whatsapp.net", 5511999, {"user": "55"}])
    def test_absent(self, value):
        assert normalize_owner(value) is None


class TestExtractInstance:
    def test_list_of_wrapped_instances(self):
        data = [{"instance": {"ownerJid": "551@s.whatsapp.net"}}]
        assert extract_instance(data) == {"ownerJid": "551@s.whatsapp.net"}

    def test_bare_list(self):
        assert extract_instance([{"ownerJid": "551"}]) == {"ownerJid": "551"}

    def test_response_envelope(self):
        assert extract_instance({"response": [{"number": "552"}]}) == {"number": "552"}

    def test_message_envelope(self):
        assert extract_instance({"message": [{"instance": {"wid": "553"}}]}) == {"wid": "553"}

    def test_instance_envelope(self):
        assert extract_instance({"instance": {"profileName": "Loja"}}) == {"profileName": "Loja"}

    @pytest.mark.parametrize("data", [[], {}, None, "oops", {"message": "Not Found"}, {"response": []}])
    def test_no_match(self, data):
        assert extract_instance(data) is None

    def test_flat_information_body(self):
        info = parse_information({"wid": "5511999999999@s.whatsapp.net", "pushName": "Barbearia"})
        assert info == InstanceInfo(owner="5511999999999", profile_name="Barbearia")


class TestIsConfigured:
    def test_configured(self, manager):
        assert manager.is_configured()

    @pytest.mark.parametrize("url,key", [("", "k"), (BASE, ""), ("", "")])
    def test_not_configured(self, url, key):
        assert not EvolutionApiManager(url, key, http=MagicMock()).is_configured()


class TestCreateInstance:
    def test_conflict_without_remote_call(self, manager, http, session, shop):
        result = manager.create_instance(session, shop)

        assert isinstance(result.error, Conflict)
        assert result.instance_name == "barberflow-1"
        http.request.assert_not_called()

    def test_not_configured(self, http, session, new_shop):
        manager = EvolutionApiManager("", "", http=http)

        result = manager.create_instance(session, new_shop)

        assert isinstance(result.error, NotConfigured)
        http.request.assert_not_called()

    def test_success_stores_identity(self, manager, http, session, new_shop):
        http.request.return_value = make_response(201, {
            "instance": {"instanceName": f"barberflow-{new_shop.id}"},
            "hash": {"apikey": "inst-key"},
            "qrcode": {"base64": "data:image/png;base64,AAA"},
        })

        result = manager.create_instance(session, new_shop)

        assert result.ok
        assert result.instance_name == f"barberflow-{new_shop.id}"
        assert result.qrcode == "data:image/png;base64,AAA"
        session.refresh(new_shop)
        assert new_shop.evolution_instance_name == f"barberflow-{new_shop.id}"
        assert new_shop.evolution_instance_api_key == "inst-key"

        method, url = http.request.call_args.args
        kwargs = http.request.call_args.kwargs
        assert (method, url) == ("POST", BASE + "/instance/create")
        assert kwargs["json"] == {"instanceName": f"barberflow-{new_shop.id}",
                                  "integration": "WHATSAPP-BAILEYS", "qrcode": True}
        assert kwargs["timeout"] == 30
        assert kwargs["headers"]["apikey"] == "global-key"

    def test_string_hash_is_the_key(self, manager, http, session, new_shop):
        http.request.return_value = make_response(201, {"hash": "v2-key", "qrcode": {"code": "2@abc"}})

        result = manager.create_instance(session, new_shop)

        assert result.api_key == "v2-key"
        assert result.qrcode == "2@abc"

    def test_missing_qrcode_triggers_connect_fetch(self, manager, http, session, new_shop):
        http.request.side_effect = [
            make_response(201, {"instance": {"apikey": "inst-key"}}),
            make_response(200, {"base64": "data:image/png;base64,BBB"}),
        ]

        result = manager.create_instance(session, new_shop)

        assert result.qrcode == "data:image/png;base64,BBB"
        connect = http.request.call_args_list[1]
        assert connect.args == ("GET", f"{BASE}/instance/connect/barberflow-{new_shop.id}")
        assert connect.kwargs["timeout"] == 15
        assert connect.kwargs["headers"]["apikey"] == "inst-key"

    def test_provider_rejection(self, manager, http, session, new_shop):
        http.request.return_value = make_response(403, {"message": ["name in use", "try again"]})

        result = manager.create_instance(session, new_shop)

        assert isinstance(result.error, RemoteProtocolError)
        assert str(result.error) == "name in use, try again"
        session.refresh(new_shop)
        assert new_shop.evolution_instance_name is None

    def test_transport_failure_is_returned(self, manager, http, session, new_shop):
        http.request.side_effect = requests.ConnectTimeout("timed out")

        result = manager.create_instance(session, new_shop)

        assert isinstance(result.error, RemoteTransportError)
        assert new_shop.evolution_instance_name is None


class TestFetchQrcode:
    def test_requires_instance(self, manager, http, new_shop):
        result = manager.fetch_qrcode(new_shop)

        assert isinstance(result.error, NotConfigured)
        http.request.assert_not_called()

    def test_nested_code(self, manager, http, shop):
        http.request.return_value = make_response(200, {"qrcode": {"code": "2@xyz"}})

        assert manager.fetch_qrcode(shop).qrcode == "2@xyz"

    def test_invalid_body(self, manager, http, shop):
        http.request.return_value = make_response(502, invalid_json=True)

        assert isinstance(manager.fetch_qrcode(shop).error, RemoteProtocolError)


class TestConnectionState:
    def test_unconfigured_is_closed(self, http, shop):
        state = EvolutionApiManager("", "", http=http).connection_state(shop)

        assert state.state == "close"
        http.request.assert_not_called()

    def test_no_instance_is_uninitialized(self, manager, http, new_shop):
        state = manager.connection_state(new_shop)

        assert state.phase == "uninitialized"
        http.request.assert_not_called()

    def test_closed_skips_info_lookup(self, manager, http, shop):
        http.request.return_value = make_response(200, {"instance": {"state": "close"}})

        state = manager.connection_state(shop)

        assert state.state == "close"
        assert state.phase == "pending_qr"
        assert http.request.call_count == 1

    def test_open_resolves_owner_from_first_lookup(self, manager, http, shop):
        http.request.side_effect = [
            make_response(200, {"instance": {"instanceName": "barberflow-1", "state": "open"}}),
            make_response(200, [{"ownerJid": "5511999999999@s.whatsapp.net", "profileName": "Central"}]),
        ]

        state = manager.connection_state(shop)

        assert state.to_dict()["owner"] == "5511999999999"
        assert state.profile_name == "Central"
        assert state.phase == "open"
        lookup = http.request.call_args_list[1]
        assert lookup.args[1] == BASE + "/instance/fetchInstances"
        assert lookup.kwargs["params"] == {"instanceName": "barberflow-1"}

    def test_empty_primary_falls_back_to_info(self, manager, http, shop):
        http.request.side_effect = [
            make_response(200, {"state": "open"}),
            make_response(200, []),
            make_response(200, {"instance": {"owner": None, "wid": "5511888888888@c.us", "pushName": "Zé"}}),
        ]

        state = manager.connection_state(shop)

        assert state.owner == "5511888888888"
        assert state.profile_name == "Zé"
        assert called_urls(http)[2] == BASE + "/instance/info/barberflow-1"

    def test_falls_through_to_get_information(self, manager, http, shop):
        http.request.side_effect = [
            make_response(200, {"state": "open"}),
            make_response(200, invalid_json=True),
            requests.ConnectionError("reset"),
            make_response(200, {"number": "5511777777777", "pushName": "Central"}),
        ]

        state = manager.connection_state(shop)

        assert state.owner == "5511777777777"
        assert called_urls(http)[3] == BASE + "/instance/getInformation/barberflow-1"

    def test_open_without_any_info(self, manager, http, shop):
        http.request.side_effect = [make_response(200, {"state": "open"})] + [
            make_response(404, {"message": "Not Found"}) for _ in INFO_LOOKUPS
        ]

        state = manager.connection_state(shop)

        assert state.state == "open"
        assert state.owner is None
        assert state.error is None

    def test_transport_error(self, manager, http, shop):
        http.request.side_effect = requests.ReadTimeout("slow")

        state = manager.connection_state(shop)

        assert state.state == "close"
        assert state.phase == "error"
        assert "slow" in state.error

    def test_extra_lookup_is_additive(self, http, shop):
        extra = InfoLookup("v3", "/v3/instance/{instance}", lambda data: InstanceInfo(owner=data["jid"]))
        manager = EvolutionApiManager(BASE, "k", http=http, lookups=INFO_LOOKUPS + (extra,))
        http.request.side_effect = [make_response(200, {}) for _ in INFO_LOOKUPS] + [
            make_response(200, {"jid": "5511"})
        ]

        assert manager.fetch_instance_info(shop) == InstanceInfo(owner="5511")


class TestConnectionStatePhase:
    @pytest.mark.parametrize("state,error,phase", [
        ("open", None, "open"),
        ("connecting", None, "connecting"),
        ("close", None, "pending_qr"),
        ("close", "boom", "error"),
    ])
    def test_phase(self, state, error, phase):
        assert ConnectionState(state=state, instance_name="x", error=error).phase == phase
