# disparador/modules/campaigns/routers.py
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile, status
from fastapi.responses import RedirectResponse
from pydantic import ValidationError

from disparador.core.database import get_database
from disparador.core.exceptions import AppError, NotFoundError
from disparador.core.security import CompanyId, CurrentUser, OptionalCompanyId
from disparador.models.api_common import AcceptedResponse, StatusResponse
from disparador.modules.whatsapp.repository import LinkClickRepository, MessageSendRepository
from .models import CampaignAPI, CampaignCreatedAPI, CampaignCreateForm, CampaignLimitsAPI, DeletedCountAPI
from .services import CampaignService, get_campaign_service

campaigns_router = APIRouter()
links_router = APIRouter()

def campaign_form(
    message_text: str = Form(...),
    group_ids: str = Form(...),
    session_id: Optional[str] = Form(None),
    title: Optional[str] = Form(None),
    product_id: Optional[str] = Form(None),
    template_id: Optional[str] = Form(None),
    scheduled_at: Optional[str] = Form(None),
    repeat_rule: Optional[str] = Form(None),
    link_url: Optional[str] = Form(None),
    send_now: Optional[str] = Form(None),
    mention_all: Optional[str] = Form(None),
) -> CampaignCreateForm:
    raw = {
        "message_text": message_text, "group_ids": group_ids, "session_id": session_id, "title": title,
        "product_id": product_id, "template_id": template_id, "scheduled_at": scheduled_at,
        "repeat_rule": repeat_rule, "link_url": link_url,
    }
    # Campos vazios do formulário contam como não enviados
    data = {key: value for key, value in raw.items() if value is not None and value.strip() != ""}
    data["send_now"] = send_now == "true"
    data["mention_all"] = mention_all == "true"
    try:
        return CampaignCreateForm(**data)
    except ValidationError as e:
        first = e.errors()[0]
        field = first["loc"][0] if first["loc"] else "campo"
        raise AppError(f"Campo inválido: {field} ({first['msg']})")

@campaigns_router.get("", response_model=List[CampaignAPI], summary="List campaigns", tags=["Campaigns"])
async def list_campaigns(current_user: CurrentUser, service: CampaignService = Depends(get_campaign_service)):
    return await service.list_campaigns(current_user.id)

@campaigns_router.get("/limits", response_model=CampaignLimitsAPI, tags=["Campaigns"])
async def campaign_limits(
    current_user: CurrentUser, company_id: OptionalCompanyId, service: CampaignService = Depends(get_campaign_service)
):
    """Envios por dia (usados/limite) e grupos por campanha do plano."""
    return await service.get_limits(company_id)

@campaigns_router.post("", response_model=CampaignCreatedAPI, status_code=status.HTTP_201_CREATED, tags=["Campaigns"])
async def create_campaign(
    current_user: CurrentUser,
    company_id: CompanyId,
    form: CampaignCreateForm = Depends(campaign_form),
    image: Optional[UploadFile] = File(None),
    service: CampaignService = Depends(get_campaign_service),
):
    """Cria a campanha (multipart). Com send_now=true o disparo vai para a fila."""
    return await service.create_campaign(current_user.id, company_id, form, image)

@campaigns_router.post("/{campaign_id}/send", response_model=AcceptedResponse,
                       status_code=status.HTTP_202_ACCEPTED, tags=["Campaigns"])
async def send_campaign(campaign_id: str, current_user: CurrentUser, service: CampaignService = Depends(get_campaign_service)):
    job_id = await service.request_send(campaign_id, current_user.id)
    return AcceptedResponse(message="Envio da campanha iniciado.", job_id=job_id)

@campaigns_router.patch("/{campaign_id}/pause", response_model=StatusResponse, tags=["Campaigns"])
async def pause_campaign(campaign_id: str, current_user: CurrentUser, service: CampaignService = Depends(get_campaign_service)):
    await service.pause(campaign_id, current_user.id)
    return StatusResponse()

@campaigns_router.patch("/{campaign_id}/resume", response_model=StatusResponse, tags=["Campaigns"])
async def resume_campaign(campaign_id: str, current_user: CurrentUser, service: CampaignService = Depends(get_campaign_service)):
    await service.resume(campaign_id, current_user.id)
    return StatusResponse()

# Antes de /{campaign_id}
@campaigns_router.delete("/all", response_model=DeletedCountAPI, tags=["Campaigns"])
async def delete_all_campaigns(current_user: CurrentUser, service: CampaignService = Depends(get_campaign_service)):
    return DeletedCountAPI(deleted=await service.delete_all(current_user.id))

@campaigns_router.delete("/{campaign_id}", response_model=StatusResponse, tags=["Campaigns"])
async def delete_campaign(campaign_id: str, current_user: CurrentUser, service: CampaignService = Depends(get_campaign_service)):
    await service.delete_campaign(campaign_id, current_user.id)
    return StatusResponse(message="Campanha removida")

# --- Rastreio de cliques ---
@links_router.get("/l/{send_id}", summary="Track link click and redirect", tags=["Links"])
async def track_link_click(send_id: str, request: Request, db=Depends(get_database)):
    send = await MessageSendRepository(db).get_by_id(send_id)
    if not send or not send.link_url:
        raise NotFoundError("Link não encontrado")
    await LinkClickRepository(db).create({
        "message_send_id": send.id,
        "company_id": send.company_id,
        "link_url": send.link_url,
        "ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    })
    return RedirectResponse(send.link_url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)
