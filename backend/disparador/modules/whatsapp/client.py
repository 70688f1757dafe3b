# disparador/modules/whatsapp/client.py
from typing import List, Optional, Protocol

from pydantic import BaseModel

class RemoteGroup(BaseModel):
    wa_id: str
    name: str
    participant_count: Optional[int] = None

class WhatsAppClient(Protocol):
    """Operações usadas pelo sistema sobre uma sessão do protocolo WhatsApp."""

    session_id: str

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def logout(self) -> None: ...

    async def send_text(self, to: str, text: str, mentions: Optional[List[str]] = None) -> None: ...

    async def send_image(
        self, to: str, content: bytes, mimetype: str, caption: Optional[str] = None,
        mentions: Optional[List[str]] = None,
    ) -> None: ...

    async def send_voice(self, to: str, content: bytes, mimetype: str) -> None: ...

    async def fetch_groups(self) -> List[RemoteGroup]: ...

    async def group_participants(self, group_wa_id: str) -> List[str]: ...

    async def profile_picture_url(self, jid: str) -> Optional[str]: ...
