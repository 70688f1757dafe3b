# disparador/worker/tasks_billing.py
import asyncio
import uuid
from typing import Optional

from loguru import logger

from disparador.core.logging_config import trace_id_var
from disparador.modules.billing.services import generate_monthly_invoices, mark_overdue_invoices
from disparador.worker.celery_app import celery_app
from disparador.worker.runtime import worker_resources

async def _generate() -> int:
    async with worker_resources() as db:
        return await generate_monthly_invoices(db)

async def _mark_overdue() -> int:
    async with worker_resources() as db:
        return await mark_overdue_invoices(db)

@celery_app.task(bind=True, name="billing.generate_monthly_invoices", max_retries=3, default_retry_delay=300, acks_late=True)
def generate_monthly_invoices_task(self, trace_id: Optional[str] = None):
    """Beat (dia 1, 00:05 UTC): faturas do mês para assinaturas ativas."""
    current_trace_id = trace_id or f"task_{uuid.uuid4().hex[:12]}"
    token = trace_id_var.set(current_trace_id)
    log = logger.bind(trace_id=current_trace_id, task_name=self.name, job_id=self.request.id)
    try:
        created = asyncio.run(_generate())
        log.success(f"{created} monthly invoice(s) created.")
        return {"status": "ok", "created": created}
    except ConnectionError as e:
        retry_countdown = int(self.default_retry_delay * (2 ** self.request.retries))
        log.warning(f"Database unavailable; retrying in {retry_countdown}s. Error: {e}")
        raise self.retry(exc=e, countdown=retry_countdown)
    finally:
        trace_id_var.reset(token)

@celery_app.task(bind=True, name="billing.mark_overdue_invoices", max_retries=3, default_retry_delay=300, acks_late=True)
def mark_overdue_invoices_task(self, trace_id: Optional[str] = None):
    current_trace_id = trace_id or f"task_{uuid.uuid4().hex[:12]}"
    token = trace_id_var.set(current_trace_id)
    log = logger.bind(trace_id=current_trace_id, task_name=self.name, job_id=self.request.id)
    try:
        count = asyncio.run(_mark_overdue())
        return {"status": "ok", "overdue": count}
    except ConnectionError as e:
        retry_countdown = int(self.default_retry_delay * (2 ** self.request.retries))
        log.warning(f"Database unavailable; retrying in {retry_countdown}s. Error: {e}")
        raise self.retry(exc=e, countdown=retry_countdown)
    finally:
        trace_id_var.reset(token)
