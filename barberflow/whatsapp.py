from typing import Optional
from urllib.parse import quote

import requests

from .errors import RemoteTransportError
from .models import Shop
from .phone import normalize_phone
from .settings import Settings

SEND_TIMEOUT = 15

class WhatsAppService:
    """Outbound WhatsApp channel for a shop."""

    def is_enabled(self, shop: Shop) -> bool:
        raise NotImplementedError

    def send_text(self, shop: Shop, phone: str, text: str) -> bool:
        raise NotImplementedError

class EvolutionWhatsAppService(WhatsAppService):
    """Sends through the shop's own Evolution API instance."""

    def __init__(self, base_url: str, api_key: str = "", http: Optional[requests.Session] = None):
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key or ""
        self.http = http or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings, http: Optional[requests.Session] = None):
        return cls(settings.evolution_api_url, settings.evolution_api_key, http=http)

    def is_enabled(self, shop: Shop) -> bool:
        return self.base_url != "" and bool(shop.evolution_instance_name)

    def send_text(self, shop: Shop, phone: str, text: str) -> bool:
        if not self.is_enabled(shop):
            return False
        number = normalize_phone(phone)
        if not number:
            return False

        headers = {"Content-Type": "application/json"}
        api_key = shop.evolution_instance_api_key or self.api_key
        if api_key:
            headers["apikey"] = api_key

        url = f"{self.base_url}/message/sendText/{quote(shop.evolution_instance_name, safe='')}"
        try:
            r = self.http.post(url, headers=headers, json={"number": number, "text": text}, timeout=SEND_TIMEOUT)
        except requests.RequestException as exc:
            raise RemoteTransportError(f"Failed to send WhatsApp message: {exc}") from exc
        return 200 <= r.status_code < 300
