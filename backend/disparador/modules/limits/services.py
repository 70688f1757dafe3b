# disparador/modules/limits/services.py
from datetime import timedelta
from typing import Dict, Literal, Optional

from bson import ObjectId
from fastapi import Depends
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel

from disparador.core.database import get_database
from disparador.core.dates import start_of_utc_day
from disparador.core.exceptions import DailyLimitError, PlanLimitError
from disparador.modules.billing.models import DEFAULT_PLAN_LIMITS, PlanInDB
from disparador.modules.billing.repository import PlanRepository, SubscriptionRepository
from disparador.modules.campaigns.repository import CampaignRepository
from disparador.modules.users.repository import UserRepository
from disparador.modules.whatsapp.repository import (
    MessageSendRepository, WhatsappGroupRepository, WhatsappSessionRepository,
)

LimitKey = Literal["connections", "campaigns", "users", "groups", "groups_per_campaign"]

UNLIMITED = 999999
DEFAULT_GROUPS_PER_CAMPAIGN = 200

RESOURCE_LABELS: Dict[str, str] = {
    "connections": "Conexões WhatsApp",
    "campaigns": "Campanhas",
    "users": "Usuários",
    "groups": "Grupos",
}

class LimitCheck(BaseModel):
    allowed: bool
    used: int
    limit: int
    message: Optional[str] = None

class DailySendsCheck(BaseModel):
    allowed: bool
    used_today: int
    limit: int
    message: Optional[str] = None

def _limit_value(raw: Dict[str, Optional[int]], key: str, default: int) -> int:
    """Chave ausente usa o padrão; nulo ou negativo (-1) é ilimitado."""
    if key not in raw:
        return default
    value = raw[key]
    if value is None or value < 0:
        return UNLIMITED
    return value

def limits_from_plan(plan: Optional[PlanInDB]) -> Dict[str, int]:
    raw = (plan.limits if plan else None) or {}
    per_campaign_key = "groups_per_campaign" if raw.get("groups_per_campaign") else "groups"
    return {
        "connections": _limit_value(raw, "connections", DEFAULT_PLAN_LIMITS["connections"]),
        "campaigns": _limit_value(raw, "campaigns", DEFAULT_PLAN_LIMITS["campaigns"]),
        "users": _limit_value(raw, "users", DEFAULT_PLAN_LIMITS["users"]),
        "groups": _limit_value(raw, "groups", DEFAULT_PLAN_LIMITS["groups"]),
        "groups_per_campaign": _limit_value(raw, per_campaign_key, DEFAULT_GROUPS_PER_CAMPAIGN) or DEFAULT_GROUPS_PER_CAMPAIGN,
    }

class PlanLimitsService:
    """Limites do plano da empresa (conexões, usuários, grupos, envios por dia)."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.subscription_repo = SubscriptionRepository(db)
        self.plan_repo = PlanRepository(db)
        self.session_repo = WhatsappSessionRepository(db)
        self.user_repo = UserRepository(db)
        self.campaign_repo = CampaignRepository(db)
        self.group_repo = WhatsappGroupRepository(db)
        self.send_repo = MessageSendRepository(db)
        self.log = logger.bind(service="PlanLimitsService")

    async def _company_plan(self, company_id: ObjectId) -> Optional[PlanInDB]:
        subscription = await self.subscription_repo.get_by_company(company_id)
        if not subscription:
            return None
        return await self.plan_repo.get_by_id(subscription.plan_id)

    async def get_company_limits(self, company_id: ObjectId) -> Dict[str, int]:
        return limits_from_plan(await self._company_plan(company_id))

    async def check_limit(self, company_id: ObjectId, resource: LimitKey) -> LimitCheck:
        plan = await self._company_plan(company_id)
        # Empresa sem assinatura (criada pelo superadmin sem plano) não tem limite
        if plan is None:
            return LimitCheck(allowed=True, used=0, limit=UNLIMITED)

        limits = limits_from_plan(plan)
        limit = limits[resource]
        if resource == "groups_per_campaign":
            return LimitCheck(allowed=True, used=0, limit=limit)

        if resource == "connections":
            used = await self.session_repo.count_by_company(company_id)
        elif resource == "users":
            used = await self.user_repo.count_by_company(company_id)
        elif resource == "campaigns":
            used = await self.campaign_repo.count_by_company(company_id)
        else:
            used = await self.group_repo.count_by_company(company_id)

        allowed = used < limit
        message = None
        if not allowed:
            message = (
                f"Limite do plano atingido: {RESOURCE_LABELS[resource]} ({used}/{limit}). "
                "Faça upgrade para adicionar mais."
            )
        return LimitCheck(allowed=allowed, used=used, limit=limit, message=message)

    async def assert_within_limit(self, company_id: ObjectId, resource: LimitKey) -> None:
        result = await self.check_limit(company_id, resource)
        if not result.allowed:
            self.log.warning(f"Company {company_id} blocked by plan limit '{resource}' ({result.used}/{result.limit})")
            raise PlanLimitError(result.message)

    async def check_group_sends_per_day(self, company_id: ObjectId) -> DailySendsCheck:
        """Campanhas enviadas hoje + envios diretos concluídos hoje (dia UTC)."""
        limits = await self.get_company_limits(company_id)
        limit = limits["campaigns"]
        start = start_of_utc_day()
        end = start + timedelta(days=1)

        campaigns_today = await self.campaign_repo.count_sent_between(company_id, start, end)
        direct_today = await self.send_repo.count_direct_sent_between(company_id, start, end)
        used = campaigns_today + direct_today

        allowed = used < limit
        message = None
        if not allowed:
            message = (
                f"Limite diário atingido: {used}/{limit} envios para grupos hoje. "
                "Amanhã será liberado novamente."
            )
        return DailySendsCheck(allowed=allowed, used_today=used, limit=limit, message=message)

    async def assert_campaigns_per_day(self, company_id: ObjectId) -> None:
        result = await self.check_group_sends_per_day(company_id)
        if not result.allowed:
            raise DailyLimitError(result.message)

    async def assert_group_sends_per_day(self, company_id: ObjectId, extra_sends: int = 1) -> None:
        result = await self.check_group_sends_per_day(company_id)
        if result.used_today + extra_sends > result.limit:
            raise DailyLimitError(
                result.message
                or f"Limite diário atingido: {result.used_today}/{result.limit} envios para grupos hoje."
            )

    async def assert_campaign_groups_limit(self, company_id: ObjectId, group_count: int) -> None:
        limits = await self.get_company_limits(company_id)
        max_groups = limits["groups_per_campaign"]
        if group_count > max_groups:
            raise PlanLimitError(
                f"Limite do plano: você pode selecionar no máximo {max_groups} grupo(s) por campanha. "
                f"Selecionou {group_count}."
            )

async def get_plan_limits_service(db=Depends(get_database)) -> PlanLimitsService:
    return PlanLimitsService(db)
