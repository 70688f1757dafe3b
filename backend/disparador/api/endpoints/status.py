# disparador/api/endpoints/status.py
import time as process_time
import uuid
from datetime import datetime, timezone
from typing import Dict, Literal, Optional

from celery.exceptions import OperationalError as CeleryOperationalError
from fastapi import APIRouter, Depends, Response, status as http_status
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel, Field
from redis.asyncio import Redis
from redis.exceptions import RedisError
from pymongo.errors import PyMongoError
from starlette.concurrency import run_in_threadpool

from disparador.core.database import get_database, get_redis_client
from disparador.core.logging_config import trace_id_var
from disparador.worker.celery_app import celery_app

class ComponentStatus(BaseModel):
    status: Literal["ok", "degraded", "error", "unavailable"] = "ok"
    message: Optional[str] = None

class HealthCheckResponse(BaseModel):
    overall_status: Literal["ok", "degraded", "error"] = "ok"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    uptime_seconds: float = Field(..., description="Process uptime in seconds")
    components: Dict[str, ComponentStatus]

PROCESS_START_TIME = process_time.monotonic()

router = APIRouter()

def _ping_celery_workers() -> Optional[dict]:
    return celery_app.control.inspect(timeout=1.5).ping()

@router.get(
    "/healthcheck",
    response_model=HealthCheckResponse,
    tags=["Status & Health"],
    summary="Application Health and Component Status Check",
)
async def get_application_health(
    db: AsyncIOMotorDatabase = Depends(get_database),
    redis: Optional[Redis] = Depends(get_redis_client),
):
    trace_id = trace_id_var.get() or f"health_{uuid.uuid4().hex[:8]}"
    log = logger.bind(trace_id=trace_id, api_endpoint="/healthcheck GET")
    log.info("Performing application health check...")

    components: Dict[str, ComponentStatus] = {}
    critical_ok = True

    try:
        await db.command("ping")
        components["database_mongodb"] = ComponentStatus(status="ok")
    except PyMongoError as e:
        log.error(f"MongoDB connection check failed: {e}")
        components["database_mongodb"] = ComponentStatus(status="error", message=str(e))
        critical_ok = False

    # Redis guarda só o status/QR compartilhado das sessões: fora do ar = degradado
    degraded = False
    if redis:
        try:
            await redis.ping()
            components["session_store_redis"] = ComponentStatus(status="ok")
        except RedisError as e:
            log.warning(f"Redis connection check failed: {e}")
            components["session_store_redis"] = ComponentStatus(status="degraded", message=str(e))
            degraded = True
    else:
        log.warning("Redis connection not available.")
        components["session_store_redis"] = ComponentStatus(status="degraded", message="Redis Client not available")
        degraded = True

    try:
        ping_results = await run_in_threadpool(_ping_celery_workers)
        if ping_results:
            celery_status = ComponentStatus(status="ok", message=f"{len(ping_results)} worker(s) responded.")
        else:
            celery_status = ComponentStatus(status="unavailable", message="No workers responded to ping.")
    except (CeleryOperationalError, OSError) as e:
        log.error(f"Celery broker connection error during ping: {e}")
        celery_status = ComponentStatus(status="error", message="Broker connection error")
        critical_ok = False
    components["celery_workers"] = celery_status

    payload = HealthCheckResponse(
        overall_status=("degraded" if degraded else "ok") if critical_ok else "error",
        uptime_seconds=process_time.monotonic() - PROCESS_START_TIME,
        components=components,
    )
    status_code = http_status.HTTP_200_OK if critical_ok else http_status.HTTP_503_SERVICE_UNAVAILABLE
    return Response(
        content=payload.model_dump_json(exclude_none=True),
        status_code=status_code,
        media_type="application/json",
    )
