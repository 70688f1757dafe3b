# disparador/modules/companies/services.py
from typing import Any, Dict, List

from bson import ObjectId
from fastapi import Depends
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase

from disparador.core.database import get_database
from disparador.core.exceptions import AppError, NotFoundError
from disparador.modules.billing.repository import InvoiceRepository, PlanRepository, SubscriptionRepository
from disparador.modules.billing.services import SubscriptionService
from disparador.modules.catalog.repository import (
    MessageTemplateRepository, ProductRepository, TemplateTypeRepository,
)
from disparador.modules.users.repository import UserRepository
from disparador.modules.whatsapp.manager import whatsapp_manager
from disparador.modules.whatsapp.repository import WhatsappSessionRepository
from disparador.modules.whatsapp.services import SESSION_NOT_FOUND_MESSAGE, purge_session
from .models import DEFAULT_SESSION_NAME, CompanyCreateAPI, CompanyInDB, CompanyUpdateAPI
from .repository import CompanyRepository

COMPANY_NOT_FOUND_MESSAGE = "Empresa não encontrada"
SLUG_TAKEN_MESSAGE = "Slug já existe"

class CompanyService:
    """Gestão de empresas pelo superadmin."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.repo = CompanyRepository(db)
        self.user_repo = UserRepository(db)
        self.session_repo = WhatsappSessionRepository(db)
        self.subscription_repo = SubscriptionRepository(db)
        self.plan_repo = PlanRepository(db)
        self.log = logger.bind(service="CompanyService")

    async def get_company(self, company_id: str) -> CompanyInDB:
        company = await self.repo.get_by_id(company_id)
        if not company:
            raise NotFoundError(COMPANY_NOT_FOUND_MESSAGE)
        return company

    async def _subscription_summary(self, company_id: ObjectId) -> Dict[str, Any] | None:
        subscription = await self.subscription_repo.get_by_company(company_id)
        if not subscription:
            return None
        data = subscription.model_dump()
        plan = await self.plan_repo.get_by_id(subscription.plan_id)
        data["plan"] = plan.model_dump() if plan else None
        return data

    async def list_companies(self) -> List[Dict[str, Any]]:
        companies = await self.repo.list_by(sort=[("name", 1)])
        result = []
        for company in companies:
            data = company.model_dump()
            data["subscription"] = await self._subscription_summary(company.id)
            data["user_count"] = await self.user_repo.count_by_company(company.id)
            result.append(data)
        return result

    async def get_detail(self, company_id: str) -> Dict[str, Any]:
        company = await self.get_company(company_id)
        data = company.model_dump()
        data["subscription"] = await self._subscription_summary(company.id)
        data["users"] = [
            user.model_dump(include={"id", "email", "name", "role", "created_at"})
            for user in await self.user_repo.list_by_company(company.id)
        ]
        sessions = []
        for session in await self.session_repo.list_by_company(company.id):
            item = session.model_dump(include={
                "id", "name", "status", "wa_push_name", "wa_phone", "wa_avatar_url", "last_connected_at", "is_default",
            })
            if whatsapp_manager.is_ready(str(session.id)):
                item["status"] = "connected"
            sessions.append(item)
        data["sessions"] = sessions
        return data

    async def create_company(self, data: CompanyCreateAPI) -> CompanyInDB:
        if await self.repo.get_by_slug(data.slug):
            raise AppError(SLUG_TAKEN_MESSAGE)
        company = await self.repo.create(data.model_dump(exclude={"plan_id"}) | {"is_active": True})
        await self.session_repo.create({"company_id": company.id, "name": DEFAULT_SESSION_NAME, "is_default": True})
        if data.plan_id:
            await SubscriptionService(self.db).assign_plan(company.id, data.plan_id)
        self.log.info(f"Company '{company.slug}' created ({company.id})")
        return company

    async def update_company(self, company_id: str, data: CompanyUpdateAPI) -> CompanyInDB:
        company = await self.get_company(company_id)
        changes = data.model_dump(exclude_unset=True)
        if "slug" in changes and changes["slug"] != company.slug and await self.repo.get_by_slug(changes["slug"]):
            raise AppError(SLUG_TAKEN_MESSAGE)
        return await self.repo.update(company.id, changes)

    async def set_active(self, company_id: str, is_active: bool) -> CompanyInDB:
        company = await self.get_company(company_id)
        self.log.info(f"Company {company.id} {'activated' if is_active else 'deactivated'}")
        return await self.repo.set_active_status(company.id, is_active)

    async def delete_company(self, company_id: str) -> None:
        """Exclui a empresa e tudo que pertence a ela (usuários, sessões, assinatura, faturas)."""
        company = await self.get_company(company_id)
        for session in await self.session_repo.list_by_company(company.id):
            await whatsapp_manager.destroy(str(session.id))
            await purge_session(self.db, session.id)

        user_ids = [user.id for user in await self.user_repo.list_by_company(company.id)]
        if user_ids:
            owned = {"user_id": {"$in": user_ids}}
            await ProductRepository(self.db).delete_many(owned)
            await MessageTemplateRepository(self.db).delete_many(owned)
            await TemplateTypeRepository(self.db).delete_many(owned)
            await self.user_repo.delete_many({"_id": {"$in": user_ids}})

        await InvoiceRepository(self.db).delete_many({"company_id": company.id})
        await self.subscription_repo.delete_many({"company_id": company.id})
        await self.repo.delete(company.id)
        self.log.warning(f"Company '{company.slug}' deleted with {len(user_ids)} user(s)")

    async def force_disconnect_session(self, session_id: str) -> None:
        session = await self.session_repo.get_by_id(session_id)
        if not session:
            raise NotFoundError(SESSION_NOT_FOUND_MESSAGE)
        await whatsapp_manager.destroy(str(session.id))
        await whatsapp_manager.store.set_status(str(session.id), "disconnected")
        await self.session_repo.update(session.id, {"status": "disconnected"})
        self.log.info(f"Session {session.id} of company {session.company_id} disconnected by superadmin")

async def get_company_service(db=Depends(get_database)) -> CompanyService:
    return CompanyService(db)
