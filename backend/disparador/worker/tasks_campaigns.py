# disparador/worker/tasks_campaigns.py
import asyncio
import uuid
from typing import Any, Dict, Optional

from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase

from disparador.core.logging_config import trace_id_var
from disparador.modules.campaigns.sender import CampaignSender, failure_message
from disparador.worker.celery_app import celery_app
from disparador.worker.runtime import worker_resources

async def run_campaign_send(db: AsyncIOMotorDatabase, campaign_id: str, user_id: str) -> Dict[str, Any]:
    """Dispara a campanha; falhas de envio ficam gravadas na própria campanha."""
    sender = CampaignSender(db)
    try:
        campaign = await sender.send_campaign(campaign_id, user_id)
    except ConnectionError:
        raise
    except Exception as e:
        logger.bind(campaign_id=campaign_id).error(f"Campaign send failed: {e}")
        await sender.mark_failed(campaign_id, e)
        return {"status": "failed", "error": failure_message(e)}
    return {"status": "sent", "targets": len(campaign.targets) if campaign else 0}

async def _send_with_resources(campaign_id: str, user_id: str) -> Dict[str, Any]:
    async with worker_resources() as db:
        return await run_campaign_send(db, campaign_id, user_id)

async def _process_scheduled() -> int:
    async with worker_resources() as db:
        return await CampaignSender(db).process_scheduled()

@celery_app.task(bind=True, name="campaigns.send_campaign", max_retries=2, default_retry_delay=30, acks_late=True)
def send_campaign_task(self, campaign_id: str, user_id: str, trace_id: Optional[str] = None):
    """Envia a campanha aos grupos alvo (delay/lote da empresa)."""
    current_trace_id = trace_id or f"task_{uuid.uuid4().hex[:12]}"
    token = trace_id_var.set(current_trace_id)
    log = logger.bind(trace_id=current_trace_id, task_name=self.name, job_id=self.request.id, campaign_id=campaign_id)
    log.info("Executing campaign send task...")
    try:
        result = asyncio.run(_send_with_resources(campaign_id, user_id))
        log.info(f"Campaign send task finished: {result['status']}")
        return result
    except ConnectionError as e:
        # Banco fora do ar: nada foi enviado ainda, pode tentar de novo
        try:
            retry_countdown = int(self.default_retry_delay * (2 ** self.request.retries))
            log.warning(f"Retrying task in {retry_countdown}s (Attempt {self.request.retries + 1}/{self.max_retries}). Error: {e}")
            raise self.retry(exc=e, countdown=retry_countdown)
        except self.MaxRetriesExceededError:
            log.error(f"Max retries exceeded for campaign {campaign_id}.")
            return {"status": "failed", "reason": "max_retries_exceeded", "error": str(e)}
    finally:
        trace_id_var.reset(token)

@celery_app.task(bind=True, name="campaigns.process_scheduled", max_retries=0, acks_late=True)
def process_scheduled_campaigns_task(self, trace_id: Optional[str] = None):
    """Beat (a cada minuto): campanhas na fila com horário vencido."""
    current_trace_id = trace_id or f"task_{uuid.uuid4().hex[:12]}"
    token = trace_id_var.set(current_trace_id)
    log = logger.bind(trace_id=current_trace_id, task_name=self.name, job_id=self.request.id)
    try:
        processed = asyncio.run(_process_scheduled())
        if processed:
            log.info(f"{processed} scheduled campaign(s) processed.")
        return {"status": "ok", "processed": processed}
    finally:
        trace_id_var.reset(token)
