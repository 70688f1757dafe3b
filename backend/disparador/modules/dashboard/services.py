# disparador/modules/dashboard/services.py
from typing import List, Optional

from bson import ObjectId
from fastapi import Depends
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from disparador.core.database import get_database
from disparador.core.dates import start_of_utc_day, utcnow
from disparador.core.exceptions import AppError
from disparador.modules.campaigns.repository import CampaignRepository
from disparador.modules.whatsapp.manager import whatsapp_manager
from disparador.modules.whatsapp.repository import (
    LinkClickRepository, MessageSendRepository, WhatsappSessionRepository,
)
from disparador.modules.whatsapp.services import WhatsAppSessionService
from .models import DailyStatsAPI, DashboardAPI, QueueAPI, QueueItemAPI, SessionDetailsAPI

ALERT_MANY_ERRORS = "Muitos erros hoje. Verifique a conexão e os grupos."
ALERT_TOO_FAST = "Disparo muito rápido hoje. Considere reduzir o volume para evitar bloqueios."
ALERT_BLOCKED = "Algum grupo bloqueou o envio. Revise os grupos com falha."
ALERT_DISCONNECTED = "Sessão desconectada. Reconecte escaneando o QR code."

class DashboardService:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.session_repo = WhatsappSessionRepository(db)
        self.send_repo = MessageSendRepository(db)
        self.click_repo = LinkClickRepository(db)
        self.campaign_repo = CampaignRepository(db)
        self.connection = WhatsAppSessionService(db)
        self.log = logger.bind(service="DashboardService")

    async def get_dashboard(self, user_id: ObjectId, company_id: Optional[ObjectId]) -> DashboardAPI:
        session_status = "disconnected"
        details = SessionDetailsAPI()
        qr: Optional[str] = None

        session = await self.session_repo.get_default(company_id) if company_id else None
        if session:
            key = str(session.id)
            try:
                status = await self.connection.get_connection_status(key, company_id)
                details = SessionDetailsAPI(
                    push_name=status.wa_push_name, phone=status.wa_phone, last_connected_at=status.last_connected_at
                )
                db_status = status.status
            except AppError as e:
                self.log.warning(f"Connection status unavailable for session {key}: {e.message}")
                db_status = session.status
            qr = whatsapp_manager.get_qr(key)
            # "connected" do banco vale mesmo com o client ainda restaurando
            if db_status == "connected":
                session_status = "connected"
            elif qr and not whatsapp_manager.is_ready(key):
                session_status = "qr_pending"

        stats, blocked = await self._daily_stats(user_id)
        queue = await self._queue(user_id)

        alerts: List[str] = []
        if stats.failures >= 5 and stats.failures > stats.messages_sent:
            alerts.append(ALERT_MANY_ERRORS)
        if stats.messages_sent > 100 and stats.failures == 0:
            alerts.append(ALERT_TOO_FAST)
        if blocked:
            alerts.append(ALERT_BLOCKED)
        if session_status == "disconnected" and not qr:
            alerts.append(ALERT_DISCONNECTED)

        return DashboardAPI(
            session_status=session_status, session_details=details, daily_stats=stats, queue=queue, alerts=alerts
        )

    async def _daily_stats(self, user_id: ObjectId) -> tuple[DailyStatsAPI, bool]:
        sends = await self.send_repo.list_by({"user_id": user_id, "created_at": {"$gte": start_of_utc_day()}})
        sent = [s for s in sends if s.status == "sent"]
        failed = [s for s in sends if s.status == "failed"]
        blocked = any(
            "blocked" in (s.error or "").lower() or "bloqueado" in (s.error or "").lower() for s in failed
        )
        stats = DailyStatsAPI(
            messages_sent=len(sent),
            failures=len(failed),
            groups_reached=len({s.group_id for s in sent}),
            link_clicks=await self.click_repo.count_for_sends([s.id for s in sent]),
        )
        return stats, blocked

    async def _queue(self, user_id: ObjectId) -> QueueAPI:
        campaigns = await self.campaign_repo.list_by(
            {"user_id": user_id}, sort=[("status", ASCENDING), ("scheduled_at", ASCENDING)]
        )
        now = utcnow()
        queue = QueueAPI()
        for c in campaigns:
            future = c.scheduled_at is not None and c.scheduled_at > now
            if c.status == "queued" and not future:
                queue.running.append(QueueItemAPI(id=str(c.id), title=c.title, status=c.status))
            elif c.status in ("draft", "queued") and future:
                queue.upcoming.append(QueueItemAPI(id=str(c.id), title=c.title, scheduled_at=c.scheduled_at))
            elif c.status == "paused":
                queue.paused.append(QueueItemAPI(id=str(c.id), title=c.title))
        return queue

async def get_dashboard_service(db=Depends(get_database)) -> DashboardService:
    return DashboardService(db)
