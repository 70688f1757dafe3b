# disparador/modules/campaigns/repository.py
from datetime import datetime
from typing import List, Optional

from bson import ObjectId
from fastapi import Depends
from pymongo import ASCENDING, DESCENDING

from disparador.core.database import get_database
from disparador.core.repository import BaseRepository
from .models import CampaignInDB

class CampaignRepository(BaseRepository[CampaignInDB]):
    model = CampaignInDB
    collection_name = "campaigns"

    async def list_by_user(self, user_id: ObjectId) -> List[CampaignInDB]:
        return await self.list_by({"user_id": user_id}, sort=[("created_at", DESCENDING)])

    async def get_for_user(self, campaign_id: str | ObjectId, user_id: ObjectId) -> Optional[CampaignInDB]:
        obj_id = self._to_objectid(campaign_id)
        if not obj_id:
            return None
        return await self.get_by({"_id": obj_id, "user_id": user_id})

    async def list_due(self, now: datetime) -> List[CampaignInDB]:
        """Campanhas na fila com agendamento vencido, mais antigas primeiro."""
        return await self.list_by(
            {"status": "queued", "scheduled_at": {"$ne": None, "$lte": now}},
            sort=[("scheduled_at", ASCENDING)],
        )

    async def count_sent_between(self, company_id: ObjectId, start: datetime, end: datetime) -> int:
        return await self.count({"company_id": company_id, "status": "sent", "sent_at": {"$gte": start, "$lt": end}})

    async def count_by_company(self, company_id: ObjectId) -> int:
        return await self.count({"company_id": company_id})

    async def remove_group_targets(self, group_ids: List[ObjectId]) -> None:
        if not group_ids:
            return
        try:
            await self.collection.update_many(
                {"targets.group_id": {"$in": group_ids}},
                {"$pull": {"targets": {"group_id": {"$in": group_ids}}}},
            )
        except Exception as e:
            self._handle_db_exception(e, "remove_group_targets")

async def get_campaign_repository(db=Depends(get_database)) -> CampaignRepository:
    return CampaignRepository(db)
