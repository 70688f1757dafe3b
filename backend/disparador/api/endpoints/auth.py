# disparador/api/endpoints/auth.py

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from loguru import logger

from disparador.core.config import settings
from disparador.core.logging_config import trace_id_var
from disparador.core.rate_limit import limiter
from disparador.core.security import CurrentUser, token_for_user
from disparador.models.auth import (
    BootstrapAdminRequest, BootstrapAdminResponse, LoginRequest, LoginResponse, MeResponse,
    MeUpdateRequest, RegisterRequest, RegisterResponse, Token,
)
from disparador.modules.auth.services import AuthService, get_auth_service
from disparador.modules.settings.services import SettingsService, get_settings_service
from disparador.services.recaptcha import ensure_recaptcha

router = APIRouter()

@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED, tags=["Authentication"])
@limiter.limit(settings.REGISTER_RATE_LIMIT)
async def register(
    request: Request,
    payload: RegisterRequest,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
    settings_service: Annotated[SettingsService, Depends(get_settings_service)],
):
    """Cria empresa, usuário admin, assinatura e a conexão WhatsApp padrão."""
    await ensure_recaptcha(settings_service, payload.recaptcha_token, "register")
    return await auth_service.register(payload)

@router.post("/login", response_model=LoginResponse, tags=["Authentication"])
@limiter.limit(settings.AUTH_RATE_LIMIT)
async def login(
    request: Request,
    payload: LoginRequest,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
    settings_service: Annotated[SettingsService, Depends(get_settings_service)],
):
    log = logger.bind(trace_id=trace_id_var.get(), api_endpoint="/auth/login", username=payload.email)
    log.info("Login attempt received.")
    await ensure_recaptcha(settings_service, payload.recaptcha_token, "login")
    return await auth_service.login(payload.email, payload.password)

@router.post("/token", response_model=Token, tags=["Authentication"])
@limiter.limit(settings.AUTH_RATE_LIMIT)
async def login_for_access_token(
    request: Request,
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
):
    """OAuth2 password flow (username = e-mail)."""
    user = await auth_service.authenticate(form_data.username, form_data.password)
    return Token(access_token=token_for_user(user))

@router.post("/bootstrap-admin", response_model=BootstrapAdminResponse,
             status_code=status.HTTP_201_CREATED, tags=["Authentication"])
@limiter.limit(settings.REGISTER_RATE_LIMIT)
async def bootstrap_admin(
    request: Request,
    payload: BootstrapAdminRequest,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
):
    """Primeiro superadmin. Só funciona com a base de usuários vazia."""
    return await auth_service.bootstrap_admin(payload.email, payload.password, payload.name)

@router.get("/me", response_model=MeResponse, tags=["Authentication"])
async def read_me(current_user: CurrentUser, auth_service: Annotated[AuthService, Depends(get_auth_service)]):
    return await auth_service.me(current_user)

@router.put("/me", response_model=MeResponse, tags=["Authentication"])
async def update_me(
    payload: MeUpdateRequest,
    current_user: CurrentUser,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
):
    return await auth_service.update_me(current_user, payload)
