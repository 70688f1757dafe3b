# disparador/modules/whatsapp/session_store.py
# Estado das sessões no Redis (wa:session:{id}:status|qr|meta), compartilhado
# entre a API (que recebe os eventos do gateway) e o worker Celery.

import json
from typing import Any, Dict, Literal, Optional

import redis.asyncio as redis
from loguru import logger
from redis.exceptions import RedisError

from disparador.core.database import redis_manager

SessionStatus = Literal["disconnected", "pairing", "qr", "connected"]

SESSION_PREFIX = "wa:session:"
SESSION_TTL_SEC = 86400
QR_TTL_SEC = 90

class SessionStore:
    def __init__(self, client: Optional[redis.Redis] = None):
        self._client = client
        self.log = logger.bind(service="SessionStore")

    @property
    def client(self) -> Optional[redis.Redis]:
        return self._client if self._client is not None else redis_manager.client

    @staticmethod
    def _key(session_id: str, field: str) -> str:
        return f"{SESSION_PREFIX}{session_id}:{field}"

    async def _set(self, session_id: str, field: str, value: str, ttl: int) -> None:
        client = self.client
        if client is None:
            return
        try:
            await client.set(self._key(session_id, field), value, ex=ttl)
        except RedisError as e:
            self.log.warning(f"Redis set {field} failed for session {session_id}: {e}")

    async def _get(self, session_id: str, field: str) -> Optional[str]:
        client = self.client
        if client is None:
            return None
        try:
            return await client.get(self._key(session_id, field))
        except RedisError as e:
            self.log.warning(f"Redis get {field} failed for session {session_id}: {e}")
            return None

    async def set_status(self, session_id: str, status: SessionStatus) -> None:
        await self._set(session_id, "status", status, SESSION_TTL_SEC)

    async def set_qr(self, session_id: str, qr: str) -> None:
        await self._set(session_id, "qr", qr, QR_TTL_SEC)

    async def set_meta(self, session_id: str, meta: Dict[str, Any]) -> None:
        await self._set(session_id, "meta", json.dumps(meta), SESSION_TTL_SEC)

    async def clear_qr(self, session_id: str) -> None:
        client = self.client
        if client is None:
            return
        try:
            await client.delete(self._key(session_id, "qr"))
        except RedisError as e:
            self.log.warning(f"Redis clear qr failed for session {session_id}: {e}")

    async def get_status(self, session_id: str) -> Optional[str]:
        return await self._get(session_id, "status")

    async def get_qr(self, session_id: str) -> Optional[str]:
        return await self._get(session_id, "qr")

    async def get_meta(self, session_id: str) -> Dict[str, Any]:
        raw = await self._get(session_id, "meta")
        return json.loads(raw) if raw else {}

    async def is_ready(self, session_id: str) -> bool:
        return await self.get_status(session_id) == "connected"

session_store = SessionStore()
