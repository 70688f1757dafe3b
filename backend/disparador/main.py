# disparador/main.py

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from loguru import logger
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from disparador.api.v1 import api_router, root_router
from disparador.core.config import settings
from disparador.core.database import ensure_indexes, mongo_manager, redis_manager
from disparador.core.exceptions import AppError, DuplicateRecordError
from disparador.core.logging_config import add_trace_id_middleware, setup_logging
from disparador.core.rate_limit import limiter, rate_limit_exceeded_handler
from disparador.models.api_common import ErrorDetail, ValidationErrorResponse
from disparador.modules.whatsapp.manager import whatsapp_manager

async def app_error_handler(request: Request, exc: AppError):
    log = logger.bind(trace_id=getattr(request.state, "trace_id", "N/A"))
    log.info(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    log = logger.bind(trace_id=getattr(request.state, "trace_id", "N/A"))
    log.warning(f"HTTP Exception Caught: {exc.status_code} {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)

async def validation_exception_handler(request: Request, exc: RequestValidationError):
    log = logger.bind(trace_id=getattr(request.state, "trace_id", "N/A"))
    log.warning(f"Validation Error: {exc.errors()}")
    errors = [
        ErrorDetail(msg=str(err.get("msg")), type=err.get("type"), loc=list(err.get("loc") or []))
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=ValidationErrorResponse(errors=errors).model_dump(),
    )

async def duplicate_record_handler(request: Request, exc: DuplicateRecordError):
    log = logger.bind(trace_id=getattr(request.state, "trace_id", "N/A"))
    log.warning(f"Duplicate record on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": "Registro já existe"})

async def generic_exception_handler(request: Request, exc: Exception):
    log = logger.bind(trace_id=getattr(request.state, "trace_id", "N/A"))
    log.exception(f"Unhandled Exception: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Erro interno do servidor"})

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.PROJECT_NAME}...")
    await asyncio.gather(mongo_manager.connect(), redis_manager.connect())
    await ensure_indexes(mongo_manager.get_db())
    if settings.RESTORE_SESSIONS_ON_STARTUP:
        restored = await whatsapp_manager.restore_sessions()
        logger.info(f"{restored} WhatsApp session(s) scheduled for restore.")
    yield
    logger.info("Shutting down...")
    await whatsapp_manager.shutdown()
    await asyncio.gather(mongo_manager.disconnect(), redis_manager.disconnect())

def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(
        title=settings.PROJECT_NAME,
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
        exception_handlers={
            AppError: app_error_handler,
            StarletteHTTPException: http_exception_handler,
            RequestValidationError: validation_exception_handler,
            DuplicateRecordError: duplicate_record_handler,
            RateLimitExceeded: rate_limit_exceeded_handler,
            Exception: generic_exception_handler,
        },
    )
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.middleware("http")(add_trace_id_middleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=settings.cors_origins_list != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix=settings.API_V1_STR)
    app.include_router(root_router)

    for mount_path, directory in (("/uploads", settings.UPLOADS_DIR), ("/public", settings.PUBLIC_DIR)):
        Path(directory).mkdir(parents=True, exist_ok=True)
        app.mount(mount_path, StaticFiles(directory=directory), name=mount_path.strip("/"))

    @app.get("/", tags=["Health Check"], include_in_schema=False)
    async def read_root():
        return {"status": "ok", "project": settings.PROJECT_NAME, "timestamp": datetime.now(timezone.utc)}

    return app

app = create_app()
