# disparador/modules/whatsapp/routers.py
import hmac
from typing import Any, List, Literal, Optional

from fastapi import APIRouter, Depends, File, Header, HTTPException, Query, Request, UploadFile, status
from fastapi.responses import Response
from loguru import logger

from disparador.core.config import settings
from disparador.core.database import get_database
from disparador.core.security import CompanyId, CurrentUser
from disparador.models.api_common import StatusResponse
from .auth_state import CREDS_KEY, BufferJSON, SignalKeyStore, clear_auth_state, use_auth_state
from .manager import whatsapp_manager
from .models import (
    ConnectionStatusAPI, GatewayEventAPI, GroupAPI, GroupImportResultAPI, GroupRefAPI, GroupSyncResultAPI,
    QrCodeAPI, SendMessageAPI, SendResultAPI, SessionAPI, SessionCreateAPI, SessionRenameAPI,
)
from .repository import WhatsappAuthStateRepository
from .services import (
    GroupService, MessageSendService, WhatsAppSessionService,
    get_group_service, get_message_send_service, get_session_service,
)

whatsapp_router = APIRouter()
groups_router = APIRouter()
internal_router = APIRouter()

# --- Sessões ---
@whatsapp_router.get("/sessions", response_model=List[SessionAPI], summary="List WhatsApp sessions", tags=["WhatsApp"])
async def list_sessions(
    current_user: CurrentUser, company_id: CompanyId, service: WhatsAppSessionService = Depends(get_session_service)
):
    """Sessões da empresa (padrão primeiro) com status ao vivo e quantidade de grupos."""
    return await service.list_sessions(company_id)

@whatsapp_router.post("/sessions", response_model=SessionAPI, status_code=status.HTTP_201_CREATED, tags=["WhatsApp"])
async def create_session(
    payload: SessionCreateAPI, current_user: CurrentUser, company_id: CompanyId,
    service: WhatsAppSessionService = Depends(get_session_service),
):
    return await service.create_session(company_id, payload.name)

@whatsapp_router.put("/sessions/{session_id}", response_model=SessionAPI, tags=["WhatsApp"])
async def rename_session(
    session_id: str, payload: SessionRenameAPI, current_user: CurrentUser, company_id: CompanyId,
    service: WhatsAppSessionService = Depends(get_session_service),
):
    return await service.rename_session(session_id, company_id, payload.name)

@whatsapp_router.put("/sessions/{session_id}/default", response_model=StatusResponse, tags=["WhatsApp"])
async def set_default_session(
    session_id: str, current_user: CurrentUser, company_id: CompanyId,
    service: WhatsAppSessionService = Depends(get_session_service),
):
    await service.set_default_session(session_id, company_id)
    return StatusResponse(message="Sessão padrão atualizada")

@whatsapp_router.delete("/sessions/{session_id}", response_model=StatusResponse, tags=["WhatsApp"])
async def delete_session(
    session_id: str, current_user: CurrentUser, company_id: CompanyId,
    service: WhatsAppSessionService = Depends(get_session_service),
):
    """Exclui a sessão junto com grupos, envios, alvos de campanha e campanhas dela."""
    await service.delete_session(session_id, company_id)
    return StatusResponse(message="Sessão removida")

# --- Conexão ---
@whatsapp_router.get("/sessions/{session_id}/status", response_model=ConnectionStatusAPI, tags=["WhatsApp"])
async def session_status(
    session_id: str, current_user: CurrentUser, company_id: CompanyId,
    service: WhatsAppSessionService = Depends(get_session_service),
):
    return await service.get_connection_status(session_id, company_id)

@whatsapp_router.get("/sessions/{session_id}/qr", response_model=QrCodeAPI, summary="QR code (polling)", tags=["WhatsApp"])
async def session_qr(
    session_id: str, current_user: CurrentUser, company_id: CompanyId,
    service: WhatsAppSessionService = Depends(get_session_service),
):
    return await service.get_qr(session_id, company_id)

@whatsapp_router.post("/sessions/{session_id}/disconnect", response_model=StatusResponse, tags=["WhatsApp"])
async def disconnect_session(
    session_id: str, current_user: CurrentUser, company_id: CompanyId,
    service: WhatsAppSessionService = Depends(get_session_service),
):
    await service.disconnect(session_id, company_id)
    return StatusResponse(message="Sessão desconectada")

@whatsapp_router.post("/sessions/{session_id}/restart", response_model=StatusResponse, tags=["WhatsApp"])
async def restart_session(
    session_id: str, current_user: CurrentUser, company_id: CompanyId,
    service: WhatsAppSessionService = Depends(get_session_service),
):
    await service.restart(session_id, company_id)
    return StatusResponse(message="Sessão reiniciada")

@whatsapp_router.post("/sessions/{session_id}/release", response_model=StatusResponse, tags=["WhatsApp"])
async def release_session(
    session_id: str, current_user: CurrentUser, company_id: CompanyId,
    service: WhatsAppSessionService = Depends(get_session_service),
):
    """Libera o client em pareamento quando o usuário fecha o QR sem conectar."""
    await service.release(session_id, company_id)
    return StatusResponse()

# --- Grupos e envio ---
@whatsapp_router.post("/sync-groups", response_model=GroupSyncResultAPI, tags=["WhatsApp"])
async def sync_groups(current_user: CurrentUser, company_id: CompanyId, service: GroupService = Depends(get_group_service)):
    return await service.sync_groups(company_id)

@whatsapp_router.get("/groups", response_model=List[GroupRefAPI], tags=["WhatsApp"])
async def list_group_refs(current_user: CurrentUser, company_id: CompanyId, service: GroupService = Depends(get_group_service)):
    return await service.list_groups(company_id)

@whatsapp_router.post("/send", response_model=SendResultAPI, summary="Send a message to groups", tags=["WhatsApp"])
async def send_message(
    payload: SendMessageAPI, current_user: CurrentUser, company_id: CompanyId,
    service: MessageSendService = Depends(get_message_send_service),
):
    return await service.send_direct(company_id, current_user.id, payload)

@groups_router.get("", response_model=List[GroupAPI], summary="List groups", tags=["Groups"])
async def list_groups(current_user: CurrentUser, company_id: CompanyId, service: GroupService = Depends(get_group_service)):
    return await service.list_groups_full(company_id)

@groups_router.post("/sync", response_model=List[GroupAPI], summary="Sync groups from WhatsApp", tags=["Groups"])
async def sync_and_list_groups(
    current_user: CurrentUser, company_id: CompanyId, service: GroupService = Depends(get_group_service)
):
    await service.sync_groups(company_id)
    return await service.list_groups_full(company_id)

@groups_router.get("/export", summary="Export groups as CSV or XLSX", tags=["Groups"])
async def export_groups(
    current_user: CurrentUser,
    company_id: CompanyId,
    format: Literal["csv", "xlsx"] = Query("csv"),
    service: GroupService = Depends(get_group_service),
):
    if format == "xlsx":
        return Response(
            content=await service.export_xlsx(company_id),
            media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            headers={"Content-Disposition": "attachment; filename=grupos.xlsx"},
        )
    content = await service.export_csv(company_id)
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": "attachment; filename=grupos.csv"},
    )

@groups_router.post("/import", response_model=GroupImportResultAPI, summary="Import groups from CSV/XLSX", tags=["Groups"])
async def import_groups(
    current_user: CurrentUser,
    company_id: CompanyId,
    file: Optional[UploadFile] = File(None),
    service: GroupService = Depends(get_group_service),
):
    return await service.import_file(company_id, file)

# --- Gateway do protocolo (interno) ---
async def verify_gateway_key(x_api_key: Optional[str] = Header(None, alias="X-Api-Key")) -> None:
    expected = settings.WHATSAPP_GATEWAY_API_KEY
    if not expected or not x_api_key or not hmac.compare_digest(x_api_key, expected):
        logger.bind(service="GatewayAuth").warning("Rejected internal WhatsApp call with invalid API key.")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Chave do gateway inválida")

@internal_router.post("/events", response_model=StatusResponse, dependencies=[Depends(verify_gateway_key)], tags=["Internal"])
async def gateway_event(event: GatewayEventAPI):
    """Eventos de conexão (qr/open/close) publicados pelo gateway."""
    await whatsapp_manager.handle_event(event)
    return StatusResponse()

@internal_router.get("/auth-state/{session_id}/creds", dependencies=[Depends(verify_gateway_key)], tags=["Internal"])
async def read_creds(session_id: str, db=Depends(get_database)) -> Any:
    state, _ = await use_auth_state(db, session_id)
    return BufferJSON.replacer(state.creds)

@internal_router.put("/auth-state/{session_id}/creds", response_model=StatusResponse,
                     dependencies=[Depends(verify_gateway_key)], tags=["Internal"])
async def write_creds(session_id: str, request: Request, db=Depends(get_database)):
    keys = SignalKeyStore(WhatsappAuthStateRepository(db), session_id)
    await keys.write(BufferJSON.loads((await request.body()).decode()), CREDS_KEY)
    return StatusResponse()

@internal_router.get("/auth-state/{session_id}/keys", dependencies=[Depends(verify_gateway_key)], tags=["Internal"])
async def read_keys(
    session_id: str,
    key_type: str = Query(..., alias="type"),
    ids: str = Query(..., description="Ids separados por vírgula"),
    db=Depends(get_database),
) -> Any:
    keys = SignalKeyStore(WhatsappAuthStateRepository(db), session_id)
    values = await keys.get(key_type, [key_id for key_id in ids.split(",") if key_id])
    return BufferJSON.replacer(values)

@internal_router.put("/auth-state/{session_id}/keys", response_model=StatusResponse,
                     dependencies=[Depends(verify_gateway_key)], tags=["Internal"])
async def write_keys(session_id: str, request: Request, db=Depends(get_database)):
    """Corpo {categoria: {id: valor}}; valor nulo apaga a chave."""
    keys = SignalKeyStore(WhatsappAuthStateRepository(db), session_id)
    await keys.set(BufferJSON.loads((await request.body()).decode()))
    return StatusResponse()

@internal_router.delete("/auth-state/{session_id}", response_model=StatusResponse,
                        dependencies=[Depends(verify_gateway_key)], tags=["Internal"])
async def delete_auth_state(session_id: str, db=Depends(get_database)):
    removed = await clear_auth_state(db, session_id)
    return StatusResponse(message=f"{removed} chave(s) removida(s)")
