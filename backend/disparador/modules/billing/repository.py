# disparador/modules/billing/repository.py
from datetime import datetime
from typing import List, Optional

from bson import ObjectId
from fastapi import Depends
from pymongo import ASCENDING, DESCENDING

from disparador.core.database import get_database
from disparador.core.repository import BaseRepository
from .models import InvoiceInDB, PlanInDB, SubscriptionInDB, LIFETIME_PLAN_SLUG

class PlanRepository(BaseRepository[PlanInDB]):
    model = PlanInDB
    collection_name = "plans"

    async def get_by_slug(self, slug: str) -> Optional[PlanInDB]:
        return await self.get_by({"slug": slug})

    async def list_for_sale(self) -> List[PlanInDB]:
        """Planos ativos sem o vitalício, do mais barato ao mais caro."""
        return await self.list_by(
            {"is_active": True, "slug": {"$ne": LIFETIME_PLAN_SLUG}},
            sort=[("price", ASCENDING)],
        )

class SubscriptionRepository(BaseRepository[SubscriptionInDB]):
    model = SubscriptionInDB
    collection_name = "subscriptions"

    async def get_by_company(self, company_id: ObjectId) -> Optional[SubscriptionInDB]:
        return await self.get_by({"company_id": company_id})

    async def count_by_plan(self, plan_id: ObjectId) -> int:
        return await self.count({"plan_id": plan_id})

    async def list_active(self) -> List[SubscriptionInDB]:
        return await self.list_by({"status": "active"})

class InvoiceRepository(BaseRepository[InvoiceInDB]):
    model = InvoiceInDB
    collection_name = "invoices"

    async def list_by_company(self, company_id: ObjectId) -> List[InvoiceInDB]:
        return await self.list_by({"company_id": company_id}, sort=[("due_date", DESCENDING)])

    async def oldest_open(self, company_id: ObjectId) -> Optional[InvoiceInDB]:
        return await self.get_by(
            {"company_id": company_id, "status": {"$in": ["pending", "overdue"]}},
            sort=[("due_date", ASCENDING)],
        )

    async def exists_due_between(self, company_id: ObjectId, start: datetime, end: datetime) -> bool:
        count = await self.count({"company_id": company_id, "due_date": {"$gte": start, "$lt": end}})
        return count > 0

    async def mark_overdue(self, now: datetime) -> int:
        try:
            result = await self.collection.update_many(
                {"status": "pending", "due_date": {"$lt": now}},
                {"$set": {"status": "overdue", "updated_at": now}},
            )
        except Exception as e:
            self._handle_db_exception(e, "mark_overdue")
        return result.modified_count

async def get_plan_repository(db=Depends(get_database)) -> PlanRepository:
    return PlanRepository(db)

async def get_subscription_repository(db=Depends(get_database)) -> SubscriptionRepository:
    return SubscriptionRepository(db)

async def get_invoice_repository(db=Depends(get_database)) -> InvoiceRepository:
    return InvoiceRepository(db)
