# disparador/modules/settings/routers.py
from typing import Literal

from fastapi import APIRouter, Depends, File, UploadFile

from disparador.core.security import CompanyId, CurrentUser, SuperAdminUser
from disparador.models.api_common import StatusResponse
from .models import (
    BrandingAPI, BrandingTitleAPI, BrandingUploadAPI, DispatchSettingsAPI, DispatchSettingsUpdateAPI,
    RecaptchaPublicAPI, SystemSettingsAPI, SystemSettingsUpdateAPI,
)
from .services import SettingsService, get_settings_service

settings_router = APIRouter()

# --- Público ---
@settings_router.get("/branding", response_model=BrandingAPI, summary="Branding (public)", tags=["Settings"])
async def get_branding(service: SettingsService = Depends(get_settings_service)):
    return await service.get_branding()

@settings_router.get("/recaptcha-public", response_model=RecaptchaPublicAPI, tags=["Settings"])
async def get_recaptcha_public(service: SettingsService = Depends(get_settings_service)):
    """Versão e site key do reCAPTCHA para o formulário de login/cadastro."""
    return await service.recaptcha_public()

# --- Empresa ---
@settings_router.get("/dispatch", response_model=DispatchSettingsAPI, tags=["Settings"])
async def get_dispatch(
    current_user: CurrentUser, company_id: CompanyId, service: SettingsService = Depends(get_settings_service)
):
    return await service.get_dispatch_settings(company_id)

@settings_router.put("/dispatch", response_model=DispatchSettingsAPI, tags=["Settings"])
async def update_dispatch(
    payload: DispatchSettingsUpdateAPI, current_user: CurrentUser, company_id: CompanyId,
    service: SettingsService = Depends(get_settings_service),
):
    return await service.set_dispatch_settings(company_id, payload)

# --- Superadmin ---
@settings_router.get("/system", response_model=SystemSettingsAPI, tags=["Settings"])
async def get_system(current_user: SuperAdminUser, service: SettingsService = Depends(get_settings_service)):
    return await service.get_system_settings()

@settings_router.put("/system", response_model=StatusResponse, tags=["Settings"])
async def update_system(
    payload: SystemSettingsUpdateAPI, current_user: SuperAdminUser, service: SettingsService = Depends(get_settings_service)
):
    await service.update_system_settings(payload)
    return StatusResponse(message="Configurações salvas")

@settings_router.put("/branding/title", response_model=StatusResponse, tags=["Settings"])
async def update_branding_title(
    payload: BrandingTitleAPI, current_user: SuperAdminUser, service: SettingsService = Depends(get_settings_service)
):
    await service.set_setting("system_title", payload.system_title.strip())
    return StatusResponse(message="Título atualizado")

@settings_router.post("/branding/{kind}", response_model=BrandingUploadAPI, tags=["Settings"])
async def upload_branding_file(
    kind: Literal["logo", "logo-dark", "favicon", "icon"],
    current_user: SuperAdminUser,
    file: UploadFile = File(...),
    service: SettingsService = Depends(get_settings_service),
):
    return BrandingUploadAPI(url=await service.save_branding_file(kind, file))
