# disparador/services/whatsapp_gateway.py
# Cliente HTTP do gateway que mantém os sockets do protocolo WhatsApp.
# O gateway publica os eventos de conexão em /internal/whatsapp/events.

import base64
import json
from typing import Any, Dict, List, Optional

import httpx
from loguru import logger

from disparador.core.config import settings
from disparador.core.exceptions import ExternalServiceError
from disparador.core.logging_config import trace_id_var
from disparador.modules.whatsapp.client import RemoteGroup

class GatewayWhatsAppClient:
    def __init__(self, session_id: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.session_id = session_id
        self._transport = transport
        self.log = logger.bind(service="WhatsAppGateway", session_id=session_id)

    def _headers(self) -> Dict[str, str]:
        headers = {"X-Request-ID": trace_id_var.get()}
        if settings.WHATSAPP_GATEWAY_API_KEY:
            headers["X-Api-Key"] = settings.WHATSAPP_GATEWAY_API_KEY
        return headers

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None,
                       params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{settings.WHATSAPP_GATEWAY_URL.rstrip('/')}/sessions/{self.session_id}{path}"
        self.log.debug(f"Gateway request {method} {url}")
        try:
            async with httpx.AsyncClient(timeout=settings.WHATSAPP_GATEWAY_TIMEOUT, transport=self._transport) as client:
                response = await client.request(method, url, json=payload, params=params, headers=self._headers())
        except httpx.TimeoutException:
            self.log.error(f"Timeout calling WhatsApp gateway ({method} {path}).")
            raise ExternalServiceError("Gateway do WhatsApp não respondeu a tempo.")
        except httpx.RequestError as e:
            self.log.error(f"HTTP request error calling WhatsApp gateway: {e}")
            raise ExternalServiceError("Gateway do WhatsApp indisponível.") from e

        self.log.debug(f"Gateway response status: {response.status_code}")
        data: Any = None
        if response.content:
            try:
                data = response.json()
            except json.JSONDecodeError:
                self.log.error(f"Gateway returned non-JSON response (Status: {response.status_code}): {response.text[:300]}")
        if not response.is_success:
            message = data.get("message") if isinstance(data, dict) else None
            self.log.error(f"Gateway call failed. Status={response.status_code}, Message='{message}'")
            raise ExternalServiceError(message or f"Erro do gateway do WhatsApp (HTTP {response.status_code})")
        return data

    async def start(self) -> None:
        await self._request("POST", "/start")

    async def stop(self) -> None:
        await self._request("DELETE", "")

    async def logout(self) -> None:
        await self._request("POST", "/logout")

    async def send_text(self, to: str, text: str, mentions: Optional[List[str]] = None) -> None:
        await self._request("POST", "/messages/text", {"to": to, "text": text, "mentions": mentions or []})

    async def send_image(self, to: str, content: bytes, mimetype: str, caption: Optional[str] = None,
                         mentions: Optional[List[str]] = None) -> None:
        await self._request("POST", "/messages/image", {
            "to": to,
            "caption": caption,
            "mimetype": mimetype,
            "data": base64.b64encode(content).decode(),
            "mentions": mentions or [],
        })

    async def send_voice(self, to: str, content: bytes, mimetype: str) -> None:
        await self._request("POST", "/messages/voice", {
            "to": to,
            "mimetype": mimetype,
            "data": base64.b64encode(content).decode(),
            "ptt": True,
        })

    async def fetch_groups(self) -> List[RemoteGroup]:
        data = await self._request("GET", "/groups") or []
        groups = []
        for item in data:
            wa_id = item.get("id")
            if not wa_id:
                continue
            groups.append(RemoteGroup(
                wa_id=wa_id,
                name=item.get("subject") or wa_id,
                participant_count=item.get("size") if item.get("size") is not None else len(item.get("participants") or []) or None,
            ))
        return groups

    async def group_participants(self, group_wa_id: str) -> List[str]:
        data = await self._request("GET", f"/groups/{group_wa_id}/participants") or []
        return [p["id"] for p in data if isinstance(p, dict) and p.get("id")]

    async def profile_picture_url(self, jid: str) -> Optional[str]:
        data = await self._request("GET", "/profile-picture", params={"jid": jid})
        return data.get("url") if isinstance(data, dict) else None

def gateway_client_factory(session_id: str) -> GatewayWhatsAppClient:
    return GatewayWhatsAppClient(session_id)
