# disparador/modules/companies/routers.py
from typing import List

from fastapi import APIRouter, Depends, status

from disparador.core.security import SuperAdminUser
from disparador.models.api_common import StatusResponse
from .models import CompanyAPI, CompanyCreateAPI, CompanyDetailAPI, CompanyListItemAPI, CompanyUpdateAPI
from .services import CompanyService, get_company_service

companies_router = APIRouter()

@companies_router.get("", response_model=List[CompanyListItemAPI], summary="List companies", tags=["Companies"])
async def list_companies(current_user: SuperAdminUser, service: CompanyService = Depends(get_company_service)):
    return await service.list_companies()

# Antes de /{company_id}
@companies_router.post("/sessions/{session_id}/disconnect", response_model=StatusResponse, tags=["Companies"])
async def force_disconnect_session(
    session_id: str, current_user: SuperAdminUser, service: CompanyService = Depends(get_company_service)
):
    """Desconecta a sessão WhatsApp de qualquer empresa."""
    await service.force_disconnect_session(session_id)
    return StatusResponse(message="Sessão desconectada")

@companies_router.get("/{company_id}", response_model=CompanyDetailAPI, tags=["Companies"])
async def get_company(company_id: str, current_user: SuperAdminUser, service: CompanyService = Depends(get_company_service)):
    return await service.get_detail(company_id)

@companies_router.post("", response_model=CompanyAPI, status_code=status.HTTP_201_CREATED, tags=["Companies"])
async def create_company(
    payload: CompanyCreateAPI, current_user: SuperAdminUser, service: CompanyService = Depends(get_company_service)
):
    return await service.create_company(payload)

@companies_router.put("/{company_id}", response_model=CompanyAPI, tags=["Companies"])
async def update_company(
    company_id: str, payload: CompanyUpdateAPI, current_user: SuperAdminUser,
    service: CompanyService = Depends(get_company_service),
):
    return await service.update_company(company_id, payload)

@companies_router.api_route("/{company_id}/deactivate", methods=["PATCH", "POST"], response_model=CompanyAPI, tags=["Companies"])
async def deactivate_company(company_id: str, current_user: SuperAdminUser, service: CompanyService = Depends(get_company_service)):
    return await service.set_active(company_id, False)

@companies_router.api_route("/{company_id}/activate", methods=["PATCH", "POST"], response_model=CompanyAPI, tags=["Companies"])
async def activate_company(company_id: str, current_user: SuperAdminUser, service: CompanyService = Depends(get_company_service)):
    return await service.set_active(company_id, True)

@companies_router.delete("/{company_id}", response_model=StatusResponse, tags=["Companies"])
async def delete_company(company_id: str, current_user: SuperAdminUser, service: CompanyService = Depends(get_company_service)):
    await service.delete_company(company_id)
    return StatusResponse(message="Empresa removida")
