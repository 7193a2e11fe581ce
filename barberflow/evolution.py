"""
Evolution API instance management.

Each shop gets one WhatsApp instance on the Evolution API server, named after
the shop id. This module creates it, fetches the pairing QR code and reads the
live connection state. Evolution has changed its response bodies between
releases, so every lookup tolerates several shapes and failures are handed
back as values on the result objects instead of being raised.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional
from urllib.parse import quote

import requests
from sqlmodel import Session

from .errors import Conflict, MessagingError, NotConfigured, RemoteProtocolError, RemoteTransportError
from .models import Shop
from .settings import Settings

logger = logging.getLogger(__name__)

INSTANCE_PREFIX = "barberflow-"
INTEGRATION = "WHATSAPP-BAILEYS"

CREATE_TIMEOUT = 30
QRCODE_TIMEOUT = 15
STATE_TIMEOUT = 10
INFO_TIMEOUT = 10

@dataclass
class InstanceResult:
    instance_name: Optional[str] = None
    api_key: Optional[str] = None
    qrcode: Optional[str] = None
    error: Optional[MessagingError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

@dataclass
class QrCodeResult:
    qrcode: Optional[str] = None
    error: Optional[MessagingError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

@dataclass
class InstanceInfo:
    owner: Optional[str] = None
    profile_name: Optional[str] = None

@dataclass
class ConnectionState:
    state: str = "close"
    instance_name: Optional[str] = None
    owner: Optional[str] = None
    profile_name: Optional[str] = None
    error: Optional[str] = None

    @property
    def phase(self) -> str:
        """Instance lifecycle as the dashboard shows it."""
        if not self.instance_name:
            return "uninitialized"
        if self.error:
            return "error"
        if self.state in ("open", "connecting"):
            return self.state
        return "pending_qr"

    def to_dict(self) -> dict:
        return {
            "instanceName": self.instance_name,
            "state": self.state,
            "phase": self.phase,
            "owner": self.owner,
            "profileName": self.profile_name,
            "error": self.error,
        }

def normalize_owner(owner: Any) -> Optional[str]:
    """'5511999999999@s.whatsapp.net' -> '5511999999999'; blanks are absent."""
    if not isinstance(owner, str) or owner == "":
        return None
    owner = owner.split("@", 1)[0]
    return owner or None

def _first(data: dict, *keys):
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None

def _dig(data: Any, *path):
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data

def _unwrap(candidate: Any) -> Optional[dict]:
    if not isinstance(candidate, dict):
        return None
    inner = candidate.get("instance")
    return inner if isinstance(inner, dict) else candidate

def extract_instance(data: Any) -> Optional[dict]:
    """Find the instance object in any of the bodies Evolution returns.

    Seen in the wild: a bare list, ``{"response": [...]}``,
    ``{"message": [...]}`` and ``{"instance": {...}}``; list items may wrap
    the object in ``instance`` too.
    """
    if isinstance(data, list):
        return _unwrap(data[0]) if data else None
    if not isinstance(data, dict):
        return None

    nested = data.get("response")
    if isinstance(nested, (list, dict)):
        found = extract_instance(nested)
        if found is not None:
            return found

    message = data.get("message")
    if isinstance(message, list) and message:
        found = _unwrap(message[0])
        if found is not None:
            return found

    if isinstance(data.get("instance"), dict):
        return data["instance"]
    return None

def _info_from_instance(instance: dict) -> InstanceInfo:
    return InstanceInfo(
        owner=normalize_owner(_first(instance, "ownerJid", "ownerId", "wid", "number")),
        profile_name=_first(instance, "profileName", "pushName"),
    )

def parse_instance_object(data: Any) -> Optional[InstanceInfo]:
    instance = extract_instance(data)
    return _info_from_instance(instance) if instance is not None else None

def parse_information(data: Any) -> Optional[InstanceInfo]:
    # getInformation may also answer with the connected account flat on the body
    info = parse_instance_object(data)
    if info is not None or not isinstance(data, dict):
        return info
    owner = _first(data, "owner", "wid", "number")
    if owner is not None or "pushName" in data:
        return InstanceInfo(
            owner=normalize_owner(owner),
            profile_name=_first(data, "pushName", "profileName"),
        )
    return None

@dataclass(frozen=True)
class InfoLookup:
    """One way of asking the provider who is connected to an instance."""

    name: str
    path: str
    parse: Callable[[Any], Optional[InstanceInfo]]
    query_param: Optional[str] = None

    def request_args(self, instance_name: str) -> tuple:
        if self.query_param:
            return self.path, {self.query_param: instance_name}
        return self.path.format(instance=quote(instance_name, safe="")), None

# Tried in order; the first lookup that yields an instance wins.
INFO_LOOKUPS = (
    InfoLookup("fetch_instances", "/instance/fetchInstances", parse_instance_object, query_param="instanceName"),
    InfoLookup("instance_info", "/instance/info/{instance}", parse_instance_object),
    InfoLookup("get_information", "/instance/getInformation/{instance}", parse_information),
)

class EvolutionApiManager:
    def __init__(self, base_url: str, api_key: str, http: Optional[requests.Session] = None,
                 lookups=INFO_LOOKUPS):
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key or ""
        self.http = http or requests.Session()
        self.lookups = tuple(lookups)

    @classmethod
    def from_settings(cls, settings: Settings, http: Optional[requests.Session] = None):
        return cls(settings.evolution_api_url, settings.evolution_api_key, http=http)

    def is_configured(self) -> bool:
        return self.base_url != "" and self.api_key != ""

    # ----------------- HTTP -----------------
    def _headers(self, api_key: Optional[str] = None) -> dict:
        headers = {"Content-Type": "application/json"}
        key = api_key or self.api_key
        if key:
            headers["apikey"] = key
        return headers

    def _call(self, method: str, path: str, timeout: int, api_key: Optional[str] = None,
              params: Optional[dict] = None, payload: Optional[dict] = None) -> requests.Response:
        try:
            return self.http.request(
                method,
                self.base_url + path,
                headers=self._headers(api_key),
                params=params,
                json=payload,
                timeout=timeout,
            )
        except requests.RequestException as exc:
            raise RemoteTransportError(f"Failed to reach Evolution API: {exc}") from exc

    @staticmethod
    def _json(response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteProtocolError(
                f"Unexpected response from Evolution API (HTTP {response.status_code})"
            ) from exc

    # ----------------- Provisioning -----------------
    def create_instance(self, session: Session, shop: Shop) -> InstanceResult:
        """Create the shop's instance and store its name and key on the shop."""
        if shop.evolution_instance_name:
            return InstanceResult(
                instance_name=shop.evolution_instance_name,
                error=Conflict("Shop already has a WhatsApp instance; fetch the QR code instead."),
            )
        if not self.is_configured():
            return InstanceResult(error=NotConfigured("Evolution API is not configured."))

        instance_name = f"{INSTANCE_PREFIX}{shop.id}"
        try:
            response = self._call(
                "POST", "/instance/create", CREATE_TIMEOUT,
                payload={"instanceName": instance_name, "integration": INTEGRATION, "qrcode": True},
            )
            data = self._json(response)
            if not 200 <= response.status_code < 300:
                raise RemoteProtocolError(self._error_message(data, "Failed to create instance"))
        except MessagingError as exc:
            logger.warning(f"Instance creation failed for shop {shop.id}: {exc}")
            return InstanceResult(error=exc)

        hash_ = _dig(data, "hash")
        api_key = hash_ if isinstance(hash_, str) else (_dig(data, "hash", "apikey") or _dig(data, "instance", "apikey"))
        qrcode = _dig(data, "qrcode", "base64") or _dig(data, "qrcode", "code") or _dig(data, "code")
        if qrcode is None:
            qrcode = self._fetch_qrcode_by_instance(instance_name, api_key).qrcode

        shop.evolution_instance_name = instance_name
        if api_key:
            shop.evolution_instance_api_key = api_key
        session.add(shop)
        session.commit()
        session.refresh(shop)
        logger.info(f"Created WhatsApp instance {instance_name} for shop {shop.id}")
        return InstanceResult(instance_name=instance_name, api_key=api_key, qrcode=qrcode)

    @staticmethod
    def _error_message(data: Any, default: str) -> str:
        message = _first(data, "message", "error") if isinstance(data, dict) else None
        if isinstance(message, list):
            message = ", ".join(str(m) for m in message)
        return str(message) if message else default

    def fetch_qrcode(self, shop: Shop) -> QrCodeResult:
        if not shop.evolution_instance_name or not self.is_configured():
            return QrCodeResult(error=NotConfigured("No WhatsApp instance configured for this shop."))
        return self._fetch_qrcode_by_instance(shop.evolution_instance_name, shop.evolution_instance_api_key)

    def _fetch_qrcode_by_instance(self, instance_name: str, api_key: Optional[str]) -> QrCodeResult:
        try:
            response = self._call("GET", f"/instance/connect/{quote(instance_name, safe='')}",
                                  QRCODE_TIMEOUT, api_key=api_key)
            data = self._json(response)
        except MessagingError as exc:
            logger.warning(f"QR code fetch failed for {instance_name}: {exc}")
            return QrCodeResult(error=exc)
        qrcode = (_dig(data, "base64") or _dig(data, "qrcode", "base64")
                  or _dig(data, "code") or _dig(data, "qrcode", "code"))
        return QrCodeResult(qrcode=qrcode)

    # ----------------- Connection -----------------
    def connection_state(self, shop: Shop) -> ConnectionState:
        instance_name = shop.evolution_instance_name
        if not instance_name or not self.is_configured():
            return ConnectionState(instance_name=instance_name)

        try:
            response = self._call("GET", f"/instance/connectionState/{quote(instance_name, safe='')}",
                                  STATE_TIMEOUT)
            data = self._json(response)
        except MessagingError as exc:
            logger.warning(f"Connection state unavailable for {instance_name}: {exc}")
            return ConnectionState(instance_name=instance_name, error=str(exc))

        state = _dig(data, "state") or _dig(data, "instance", "state") or "close"
        result = ConnectionState(state=str(state), instance_name=instance_name)
        if result.state == "open":
            info = self.fetch_instance_info(shop)
            if info is not None:
                result.owner = info.owner
                result.profile_name = info.profile_name
        return result

    def fetch_instance_info(self, shop: Shop) -> Optional[InstanceInfo]:
        """Resolve the connected number and profile name, or None."""
        instance_name = shop.evolution_instance_name
        if not instance_name or not self.is_configured():
            return None

        for lookup in self.lookups:
            path, params = lookup.request_args(instance_name)
            try:
                data = self._json(self._call("GET", path, INFO_TIMEOUT, params=params))
            except MessagingError as exc:
                logger.debug(f"{lookup.name} lookup failed for {instance_name}: {exc}")
                continue
            info = lookup.parse(data)
            if info is not None:
                return info
            logger.debug(f"{lookup.name} lookup returned no instance for {instance_name}")
        return None
