# disparador/modules/campaigns/sender.py
# Disparo de uma campanha para todos os grupos alvo, respeitando o delay e o
# lote configurados em Configurações > Disparos. Roda no worker Celery.

import asyncio
import random
from datetime import timedelta
from typing import Optional

from bson import ObjectId
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase

from disparador.core.dates import now_ms, utcnow
from disparador.core.exceptions import AppError, DailyLimitError, NotFoundError
from disparador.core.security import resolve_company_id
from disparador.modules.catalog.generator import generate_message
from disparador.modules.catalog.repository import MessageTemplateRepository, ProductRepository
from disparador.modules.companies.repository import CompanyRepository
from disparador.modules.limits.services import PlanLimitsService
from disparador.modules.settings.services import SettingsService
from disparador.modules.users.repository import UserRepository
from disparador.modules.whatsapp.services import MessageSendService
from .models import CampaignInDB
from .repository import CampaignRepository

CAMPAIGN_NOT_FOUND_MESSAGE = "Campanha não encontrada"
NO_COMPANY_MESSAGE = "Usuário deve estar vinculado a uma empresa para enviar campanhas."
DAILY_LIMIT_FAILURE = "Limite diário de envios atingido. Reagende para amanhã e tente novamente."
GENERIC_FAILURE = "Falha ao enviar. Reagende ou tente novamente."

REPEAT_INTERVALS = {"daily": timedelta(days=1), "weekly": timedelta(days=7)}

def failure_message(error: Exception) -> str:
    """Mensagem gravada na campanha quando o disparo falha."""
    if isinstance(error, DailyLimitError):
        return DAILY_LIMIT_FAILURE
    if isinstance(error, AppError):
        return error.message
    return str(error) or GENERIC_FAILURE

class CampaignSender:
    pause = staticmethod(asyncio.sleep)

    def __init__(self, db: AsyncIOMotorDatabase):
        self.repo = CampaignRepository(db)
        self.user_repo = UserRepository(db)
        self.company_repo = CompanyRepository(db)
        self.product_repo = ProductRepository(db)
        self.template_repo = MessageTemplateRepository(db)
        self.settings = SettingsService(db)
        self.limits = PlanLimitsService(db)
        self.sends = MessageSendService(db)
        self.log = logger.bind(service="CampaignSender")

    async def _company_for(self, campaign: CampaignInDB) -> ObjectId:
        user = await self.user_repo.get_by_id(campaign.user_id)
        company_id: Optional[ObjectId] = None
        if user:
            company_id = await resolve_company_id(user, self.company_repo)
        company_id = company_id or campaign.company_id
        if not company_id:
            raise AppError(NO_COMPANY_MESSAGE)
        return company_id

    async def send_campaign(self, campaign_id: str | ObjectId, user_id: str | ObjectId) -> CampaignInDB:
        campaign = await self.repo.get_for_user(campaign_id, self.repo._to_objectid(user_id))
        if not campaign:
            raise NotFoundError(CAMPAIGN_NOT_FOUND_MESSAGE)
        log = self.log.bind(campaign_id=str(campaign.id))

        company_id = await self._company_for(campaign)
        await self.limits.assert_campaigns_per_day(company_id)
        dispatch = await self.settings.get_dispatch_settings(company_id)

        product = await self.product_repo.get_by_id(campaign.product_id) if campaign.product_id else None
        template = await self.template_repo.get_by_id(campaign.template_id) if campaign.template_id else None
        link_url = campaign.link_url or (product.link if product else None)
        total = len(campaign.targets)

        await self.repo.update(campaign.id, {"status": "sending", "error": None})
        log.info(f"Sending campaign '{campaign.title or 'Sem título'}' to {total} group(s) (preset {dispatch.preset})")

        for index, target in enumerate(campaign.targets):
            await self.pause(random.randint(dispatch.delay_min_sec, dispatch.delay_max_sec))

            if template and product:
                message = generate_message(template.body, product.generator_data(), seed=index + now_ms())
            else:
                message = campaign.message_text
            await self.sends.send_message_to_group(
                company_id,
                str(target.group_id),
                message,
                image_path=campaign.image_path,
                campaign_id=campaign.id,
                link_url=link_url,
                user_id=campaign.user_id,
                mention_all=campaign.mention_all,
            )

            batch_done = (index + 1) % dispatch.batch_size == 0
            if batch_done and index < total - 1 and dispatch.pause_between_batches_sec > 0:
                log.debug(f"Batch of {dispatch.batch_size} sent; pausing {dispatch.pause_between_batches_sec}s")
                await self.pause(dispatch.pause_between_batches_sec)

        updated = await self.repo.update(campaign.id, {"status": "sent", "sent_at": utcnow()})
        log.success(f"Campaign sent to {total} group(s)")
        return updated

    async def mark_failed(self, campaign_id: str | ObjectId, error: Exception) -> None:
        await self.repo.update(campaign_id, {"status": "failed", "error": failure_message(error)})

    async def process_scheduled(self) -> int:
        """Campanhas na fila com horário vencido; reagenda as recorrentes."""
        due = await self.repo.list_due(utcnow())
        for campaign in due:
            log = self.log.bind(campaign_id=str(campaign.id))
            try:
                await self.send_campaign(campaign.id, campaign.user_id)
            except Exception as e:
                log.error(f"Falha ao enviar campanha {campaign.id}: {e}")
                await self.mark_failed(campaign.id, e)
                continue

            interval = REPEAT_INTERVALS.get(campaign.repeat_rule or "")
            if interval and campaign.scheduled_at:
                next_run = campaign.scheduled_at + interval
                await self.repo.update(campaign.id, {"scheduled_at": next_run, "status": "queued", "error": None})
                log.info(f"Campanha {campaign.id} reagendada para {next_run.isoformat()} ({campaign.repeat_rule})")
            log.success(f"Campanha {campaign.id} enviada ({campaign.title or 'Sem título'})")
        return len(due)
