# disparador/modules/whatsapp/auth_state.py
# Credenciais e chaves signal do cliente WhatsApp persistidas no MongoDB
# (coleção whatsapp_auth_state), uma linha por "arquivo" do formato multi-file.

import base64
import json
import os
import secrets
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey
from motor.motor_asyncio import AsyncIOMotorDatabase

from .repository import WhatsappAuthStateRepository

CREDS_KEY = "creds.json"

class BufferJSON:
    """bytes <-> {"type": "Buffer", "data": [...]} (formato de Buffer do Node)."""

    @staticmethod
    def replacer(value: Any) -> Any:
        if isinstance(value, (bytes, bytearray)):
            return {"type": "Buffer", "data": list(value)}
        if isinstance(value, dict):
            return {k: BufferJSON.replacer(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [BufferJSON.replacer(v) for v in value]
        return value

    @staticmethod
    def reviver(obj: Dict[str, Any]) -> Any:
        if obj.get("type") == "Buffer" and isinstance(obj.get("data"), list):
            return bytes(obj["data"])
        return obj

    @classmethod
    def dumps(cls, value: Any) -> str:
        return json.dumps(cls.replacer(value))

    @classmethod
    def loads(cls, raw: str) -> Any:
        return json.loads(raw, object_hook=cls.reviver)

def fix_file_name(file: Optional[str]) -> Optional[str]:
    if not file:
        return None
    return file.replace("/", "__").replace(":", "-")

def _key_pair() -> Dict[str, bytes]:
    private = X25519PrivateKey.generate()
    return {
        "private": private.private_bytes(
            serialization.Encoding.Raw, serialization.PrivateFormat.Raw, serialization.NoEncryption()
        ),
        "public": private.public_key().public_bytes(serialization.Encoding.Raw, serialization.PublicFormat.Raw),
    }

def init_auth_creds() -> Dict[str, Any]:
    """Credenciais novas (sessão ainda não pareada)."""
    return {
        "noiseKey": _key_pair(),
        "pairingEphemeralKeyPair": _key_pair(),
        "signedIdentityKey": _key_pair(),
        "registrationId": secrets.randbits(16) & 16383,
        "advSecretKey": base64.b64encode(os.urandom(32)).decode(),
        "processedHistoryMessages": [],
        "nextPreKeyId": 1,
        "firstUnuploadedPreKeyId": 1,
        "accountSyncCounter": 0,
        "accountSettings": {"unarchiveChats": False},
        "registered": False,
        "account": None,
        "me": None,
    }

class SignalKeyStore:
    def __init__(self, repo: WhatsappAuthStateRepository, session_id: str):
        self.repo = repo
        self.session_id = session_id

    async def read(self, file: str) -> Any:
        raw = await self.repo.read(self.session_id, fix_file_name(file) or file)
        return BufferJSON.loads(raw) if raw is not None else None

    async def write(self, data: Any, file: str) -> None:
        await self.repo.write(self.session_id, fix_file_name(file) or file, BufferJSON.dumps(data))

    async def remove(self, file: str) -> None:
        await self.repo.remove(self.session_id, fix_file_name(file) or file)

    async def get(self, type: str, ids: List[str]) -> Dict[str, Any]:
        return {key_id: await self.read(f"{type}-{key_id}.json") for key_id in ids}

    async def set(self, data: Dict[str, Dict[str, Any]]) -> None:
        """Grava valores não nulos e apaga as chaves com valor nulo."""
        for category, entries in data.items():
            for key_id, value in entries.items():
                file = f"{category}-{key_id}.json"
                if value is not None:
                    await self.write(value, file)
                else:
                    await self.remove(file)

class AuthState:
    def __init__(self, creds: Dict[str, Any], keys: SignalKeyStore):
        self.creds = creds
        self.keys = keys

async def use_auth_state(
    db: AsyncIOMotorDatabase, session_id: str
) -> Tuple[AuthState, Callable[[], Awaitable[None]]]:
    """Estado de autenticação da sessão e a função que persiste as credenciais."""
    keys = SignalKeyStore(WhatsappAuthStateRepository(db), session_id)
    creds = await keys.read(CREDS_KEY) or init_auth_creds()
    state = AuthState(creds, keys)

    async def save_creds() -> None:
        await keys.write(state.creds, CREDS_KEY)

    return state, save_creds

async def clear_auth_state(db: AsyncIOMotorDatabase, session_id: str) -> int:
    return await WhatsappAuthStateRepository(db).clear(session_id)
