# disparador/modules/whatsapp/repository.py
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from fastapi import Depends
from pymongo import ASCENDING, DESCENDING

from disparador.core.dates import utcnow
from disparador.core.database import get_database
from disparador.core.repository import BaseRepository
from .models import (
    LinkClickInDB, MessageSendInDB, WhatsappAuthStateInDB, WhatsappGroupInDB, WhatsappSessionInDB,
)

class WhatsappSessionRepository(BaseRepository[WhatsappSessionInDB]):
    model = WhatsappSessionInDB
    collection_name = "whatsapp_sessions"

    async def list_by_company(self, company_id: ObjectId) -> List[WhatsappSessionInDB]:
        """Sessão padrão primeiro, depois por criação."""
        return await self.list_by(
            {"company_id": company_id},
            sort=[("is_default", DESCENDING), ("created_at", ASCENDING)],
        )

    async def get_for_company(self, session_id: str | ObjectId, company_id: ObjectId) -> Optional[WhatsappSessionInDB]:
        obj_id = self._to_objectid(session_id)
        if not obj_id:
            return None
        return await self.get_by({"_id": obj_id, "company_id": company_id})

    async def get_default(self, company_id: ObjectId) -> Optional[WhatsappSessionInDB]:
        return await self.get_by(
            {"company_id": company_id},
            sort=[("is_default", DESCENDING), ("created_at", ASCENDING)],
        )

    async def count_by_company(self, company_id: ObjectId) -> int:
        return await self.count({"company_id": company_id})

    async def list_connected(self) -> List[WhatsappSessionInDB]:
        return await self.list_by({"status": "connected"}, sort=[("last_connected_at", DESCENDING)])

    async def set_default(self, session_id: ObjectId, company_id: ObjectId) -> None:
        now = utcnow()
        try:
            await self.collection.update_many(
                {"company_id": company_id, "_id": {"$ne": session_id}},
                {"$set": {"is_default": False, "updated_at": now}},
            )
            await self.collection.update_one({"_id": session_id}, {"$set": {"is_default": True, "updated_at": now}})
        except Exception as e:
            self._handle_db_exception(e, "set_default", session_id)

class WhatsappGroupRepository(BaseRepository[WhatsappGroupInDB]):
    model = WhatsappGroupInDB
    collection_name = "whatsapp_groups"

    async def list_by_company(self, company_id: ObjectId) -> List[WhatsappGroupInDB]:
        return await self.list_by({"company_id": company_id}, sort=[("name", ASCENDING)])

    async def list_by_session(self, session_id: ObjectId) -> List[WhatsappGroupInDB]:
        return await self.list_by({"session_id": session_id}, sort=[("name", ASCENDING)])

    async def list_by_ids(self, ids: Iterable[ObjectId]) -> List[WhatsappGroupInDB]:
        return await self.list_by({"_id": {"$in": list(ids)}})

    async def get_by_wa_id(self, session_id: ObjectId, wa_id: str) -> Optional[WhatsappGroupInDB]:
        return await self.get_by({"session_id": session_id, "wa_id": wa_id})

    async def find_in_company(self, company_id: ObjectId, group_ref: str) -> Optional[WhatsappGroupInDB]:
        """Busca pelo id interno ou pelo wa_id dentro da empresa."""
        obj_id = self._to_objectid(group_ref)
        if obj_id:
            group = await self.get_by({"_id": obj_id, "company_id": company_id})
            if group:
                return group
        return await self.get_by({"wa_id": group_ref, "company_id": company_id})

    async def count_by_company(self, company_id: ObjectId) -> int:
        return await self.count({"company_id": company_id})

    async def ids_by_session(self, session_id: ObjectId) -> List[ObjectId]:
        try:
            return await self.collection.distinct("_id", {"session_id": session_id})
        except Exception as e:
            self._handle_db_exception(e, "ids_by_session", session_id)

    async def upsert_group(self, session_id: ObjectId, company_id: ObjectId, wa_id: str, fields: Dict[str, Any]) -> bool:
        """Cria ou atualiza pelo par (session_id, wa_id). Retorna True quando criou."""
        now = utcnow()
        try:
            result = await self.collection.update_one(
                {"session_id": session_id, "wa_id": wa_id},
                {
                    "$set": {**fields, "updated_at": now},
                    "$setOnInsert": {"company_id": company_id, "created_at": now},
                },
                upsert=True,
            )
        except Exception as e:
            self._handle_db_exception(e, "upsert_group", query={"session_id": session_id, "wa_id": wa_id})
        return result.upserted_id is not None

    async def count_by_sessions(self, session_ids: List[ObjectId]) -> Dict[ObjectId, int]:
        try:
            cursor = self.collection.aggregate([
                {"$match": {"session_id": {"$in": session_ids}}},
                {"$group": {"_id": "$session_id", "count": {"$sum": 1}}},
            ])
            rows = await cursor.to_list(length=None)
        except Exception as e:
            self._handle_db_exception(e, "count_by_sessions")
        return {row["_id"]: row["count"] for row in rows}

class WhatsappAuthStateRepository(BaseRepository[WhatsappAuthStateInDB]):
    model = WhatsappAuthStateInDB
    collection_name = "whatsapp_auth_state"

    async def read(self, session_id: str, key: str) -> Optional[str]:
        row = await self.get_by({"session_id": session_id, "key": key})
        return row.value if row else None

    async def write(self, session_id: str, key: str, value: str) -> None:
        now = utcnow()
        try:
            await self.collection.update_one(
                {"session_id": session_id, "key": key},
                {"$set": {"value": value, "updated_at": now}, "$setOnInsert": {"created_at": now}},
                upsert=True,
            )
        except Exception as e:
            self._handle_db_exception(e, "write", query={"session_id": session_id, "key": key})

    async def remove(self, session_id: str, key: str) -> None:
        await self.delete_many({"session_id": session_id, "key": key})

    async def clear(self, session_id: str) -> int:
        return await self.delete_many({"session_id": session_id})

class MessageSendRepository(BaseRepository[MessageSendInDB]):
    model = MessageSendInDB
    collection_name = "message_sends"

    async def count_direct_sent_between(self, company_id: ObjectId, start: datetime, end: datetime) -> int:
        """Envios diretos (sem campanha) concluídos no intervalo."""
        return await self.count({
            "company_id": company_id,
            "campaign_id": None,
            "status": "sent",
            "created_at": {"$gte": start, "$lt": end},
        })

    async def ids_for_groups(self, group_ids: List[ObjectId]) -> List[ObjectId]:
        if not group_ids:
            return []
        try:
            return await self.collection.distinct("_id", {"group_id": {"$in": group_ids}})
        except Exception as e:
            self._handle_db_exception(e, "ids_for_groups")

    async def detach_campaigns(self, campaign_ids: List[ObjectId]) -> None:
        """Envios de campanhas removidas continuam no histórico, sem a campanha."""
        if not campaign_ids:
            return
        try:
            await self.collection.update_many(
                {"campaign_id": {"$in": campaign_ids}}, {"$set": {"campaign_id": None, "updated_at": utcnow()}}
            )
        except Exception as e:
            self._handle_db_exception(e, "detach_campaigns")

    async def mark_sent(self, send_id: ObjectId) -> None:
        await self.update(send_id, {"status": "sent", "sent_at": utcnow(), "error": None})

    async def mark_failed(self, send_id: ObjectId, error: str) -> None:
        await self.update(send_id, {"status": "failed", "error": error[:1000]})

class LinkClickRepository(BaseRepository[LinkClickInDB]):
    model = LinkClickInDB
    collection_name = "link_clicks"

    async def count_for_sends(self, send_ids: List[ObjectId]) -> int:
        if not send_ids:
            return 0
        return await self.count({"message_send_id": {"$in": send_ids}})

    async def delete_for_sends(self, send_ids: List[ObjectId]) -> int:
        if not send_ids:
            return 0
        return await self.delete_many({"message_send_id": {"$in": send_ids}})

async def get_session_repository(db=Depends(get_database)) -> WhatsappSessionRepository:
    return WhatsappSessionRepository(db)

async def get_group_repository(db=Depends(get_database)) -> WhatsappGroupRepository:
    return WhatsappGroupRepository(db)

async def get_message_send_repository(db=Depends(get_database)) -> MessageSendRepository:
    return MessageSendRepository(db)
