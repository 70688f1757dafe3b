# disparador/modules/campaigns/services.py
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import Depends, UploadFile
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase

from disparador.core.database import get_database
from disparador.core.dates import utcnow
from disparador.core.exceptions import AppError, NotFoundError
from disparador.core.uploads import save_company_upload
from disparador.modules.catalog.repository import ProductRepository
from disparador.modules.billing.models import DEFAULT_PLAN_LIMITS
from disparador.modules.limits.services import DEFAULT_GROUPS_PER_CAMPAIGN, PlanLimitsService
from disparador.modules.whatsapp.models import WhatsappGroupInDB
from disparador.modules.whatsapp.repository import (
    MessageSendRepository, WhatsappGroupRepository, WhatsappSessionRepository,
)
from disparador.worker.tasks_campaigns import send_campaign_task
from .models import (
    CampaignCreateForm, CampaignInDB, CampaignLimitsAPI, CampaignsPerDayAPI,
)
from .repository import CampaignRepository
from .sender import CAMPAIGN_NOT_FOUND_MESSAGE

def enqueue_campaign_send(campaign_id: ObjectId, user_id: ObjectId) -> str:
    """Envia o disparo para o worker; devolve o id do job."""
    result = send_campaign_task.delay(str(campaign_id), str(user_id))
    return result.id

class CampaignService:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.repo = CampaignRepository(db)
        self.group_repo = WhatsappGroupRepository(db)
        self.send_repo = MessageSendRepository(db)
        self.session_repo = WhatsappSessionRepository(db)
        self.product_repo = ProductRepository(db)
        self.limits = PlanLimitsService(db)
        self.log = logger.bind(service="CampaignService")

    async def _serialize(self, campaign: CampaignInDB) -> Dict[str, Any]:
        data = campaign.model_dump()
        groups = {g.id: g for g in await self.group_repo.list_by_ids([t.group_id for t in campaign.targets])}
        data["targets"] = [
            {"group_id": str(t.group_id), "group": groups[t.group_id].model_dump() if t.group_id in groups else None}
            for t in campaign.targets
        ]
        product = await self.product_repo.get_by_id(campaign.product_id) if campaign.product_id else None
        data["product"] = product.model_dump() if product else None
        return data

    async def get_campaign(self, campaign_id: str, user_id: ObjectId) -> CampaignInDB:
        campaign = await self.repo.get_for_user(campaign_id, user_id)
        if not campaign:
            raise NotFoundError(CAMPAIGN_NOT_FOUND_MESSAGE)
        return campaign

    async def list_campaigns(self, user_id: ObjectId) -> List[Dict[str, Any]]:
        return [await self._serialize(c) for c in await self.repo.list_by_user(user_id)]

    async def get_limits(self, company_id: Optional[ObjectId]) -> CampaignLimitsAPI:
        if not company_id:
            return CampaignLimitsAPI(
                campaigns_per_day=CampaignsPerDayAPI(used_today=0, limit=DEFAULT_PLAN_LIMITS["campaigns"]),
                groups_per_campaign=DEFAULT_GROUPS_PER_CAMPAIGN,
            )
        limits = await self.limits.get_company_limits(company_id)
        daily = await self.limits.check_group_sends_per_day(company_id)
        return CampaignLimitsAPI(
            campaigns_per_day=CampaignsPerDayAPI(used_today=daily.used_today, limit=daily.limit),
            groups_per_campaign=limits["groups_per_campaign"],
        )

    async def _resolve_targets(self, session_id: ObjectId, company_id: ObjectId, refs: List[str]) -> List[WhatsappGroupInDB]:
        """Grupos da sessão por id ou waId; refs desconhecidos viram grupos provisórios."""
        groups = []
        for ref in refs:
            group = await self.group_repo.find_in_company(company_id, ref)
            if group is None or group.session_id != session_id:
                group = await self.group_repo.get_by_wa_id(session_id, ref)
            if group is None:
                await self.group_repo.upsert_group(session_id, company_id, ref, {"name": ref, "source": "manual"})
                group = await self.group_repo.get_by_wa_id(session_id, ref)
                self.log.debug(f"Placeholder group created for '{ref}' in session {session_id}")
            groups.append(group)
        return groups

    async def create_campaign(
        self,
        user_id: ObjectId,
        company_id: ObjectId,
        form: CampaignCreateForm,
        image: Optional[UploadFile] = None,
    ) -> Dict[str, Any]:
        refs = form.group_refs()
        if not refs:
            raise AppError("Selecione ao menos 1 grupo")

        await self.limits.assert_campaign_groups_limit(company_id, len(refs))
        if form.send_now:
            await self.limits.assert_campaigns_per_day(company_id)

        if form.session_id:
            session = await self.session_repo.get_for_company(form.session_id, company_id)
        else:
            session = await self.session_repo.get_default(company_id)
        if not session:
            raise AppError("Sessão WhatsApp não encontrada")

        image_path = None
        if image is not None and image.filename:
            image_path = await save_company_upload(company_id, image, prefix="campaign_")
        link_url = str(form.link_url) if form.link_url else None

        product_id = self.repo._to_objectid(form.product_id)
        if product_id:
            product = await self.product_repo.get_scoped(product_id, user_id=user_id)
            if product:
                images = product.sorted_images()
                if not image_path and images:
                    image_path = images[0].file_path
                if not link_url and product.link:
                    link_url = product.link

        targets = await self._resolve_targets(session.id, company_id, refs)
        future_schedule = form.scheduled_at is not None and form.scheduled_at > utcnow()
        status = "queued" if form.send_now or future_schedule else "draft"

        campaign = await self.repo.create({
            "user_id": user_id,
            "company_id": company_id,
            "session_id": session.id,
            "title": form.title,
            "message_text": form.message_text,
            "link_url": link_url,
            "image_path": image_path,
            "product_id": product_id,
            "template_id": self.repo._to_objectid(form.template_id),
            "status": status,
            "scheduled_at": form.scheduled_at,
            "repeat_rule": None if form.repeat_rule == "none" else form.repeat_rule,
            "mention_all": form.mention_all,
            "targets": [{"group_id": group.id} for group in targets],
        })
        self.log.info(f"Campaign {campaign.id} created with {len(targets)} target(s), status={status}")

        data = await self._serialize(campaign)
        if form.send_now:
            data["job_id"] = enqueue_campaign_send(campaign.id, user_id)
        return data

    async def request_send(self, campaign_id: str, user_id: ObjectId) -> str:
        campaign = await self.get_campaign(campaign_id, user_id)
        job_id = enqueue_campaign_send(campaign.id, user_id)
        self.log.info(f"Campaign {campaign.id} enqueued for sending (job {job_id})")
        return job_id

    async def pause(self, campaign_id: str, user_id: ObjectId) -> None:
        campaign = await self.get_campaign(campaign_id, user_id)
        await self.repo.update(campaign.id, {"status": "paused"})

    async def resume(self, campaign_id: str, user_id: ObjectId) -> None:
        campaign = await self.get_campaign(campaign_id, user_id)
        future = campaign.scheduled_at is not None and campaign.scheduled_at > utcnow()
        await self.repo.update(campaign.id, {"status": "queued" if future else "draft"})

    async def _delete(self, campaign_ids: List[ObjectId]) -> None:
        # Os envios ficam no histórico, sem a campanha
        await self.send_repo.detach_campaigns(campaign_ids)
        await self.repo.delete_many({"_id": {"$in": campaign_ids}})

    async def delete_campaign(self, campaign_id: str, user_id: ObjectId) -> None:
        campaign = await self.get_campaign(campaign_id, user_id)
        await self._delete([campaign.id])

    async def delete_all(self, user_id: ObjectId) -> int:
        campaign_ids = [c.id for c in await self.repo.list_by_user(user_id)]
        if campaign_ids:
            await self._delete(campaign_ids)
        self.log.info(f"{len(campaign_ids)} campaign(s) deleted for user {user_id}")
        return len(campaign_ids)

async def get_campaign_service(db=Depends(get_database)) -> CampaignService:
    return CampaignService(db)
