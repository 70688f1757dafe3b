# disparador/api/endpoints/websocket.py

import json
import uuid
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect, status as http_status
from loguru import logger

from disparador.core.database import mongo_manager
from disparador.core.logging_config import trace_id_var
from disparador.core.security import decode_access_token, resolve_company_id
from disparador.modules.companies.repository import CompanyRepository
from disparador.modules.users.models import UserInDB
from disparador.modules.users.repository import UserRepository
from disparador.modules.whatsapp.repository import WhatsappSessionRepository
from disparador.websocket.connection_manager import manager as ws_manager

router = APIRouter()

async def _authenticate(token: Optional[str]) -> Optional[UserInDB]:
    if not token:
        return None
    try:
        payload = decode_access_token(token)
    except HTTPException:
        return None
    return await UserRepository(mongo_manager.get_db()).get_by_id(payload.sub)

@router.websocket("/ws", name="websocket_updates")
async def websocket_endpoint(websocket: WebSocket, token: Optional[str] = Query(None)):
    """
    Canal de eventos em tempo real. Autentica com `?token=<JWT>` e entra na
    sala da empresa; o cliente pede `join_session`/`leave_session` para
    receber os eventos whatsapp:* de uma sessão.
    """
    trace_id = trace_id_var.get() if trace_id_var.get() != "unset" else f"ws_{uuid.uuid4().hex[:8]}"
    client = f"{websocket.client.host}:{websocket.client.port}" if websocket.client else "unknown"
    log = logger.bind(trace_id=trace_id, websocket_client=client)

    user = await _authenticate(token)
    if user is None:
        log.warning("WebSocket connection rejected: invalid or missing token.")
        await websocket.close(code=http_status.WS_1008_POLICY_VIOLATION)
        return

    db = mongo_manager.get_db()
    company_id = await resolve_company_id(user, CompanyRepository(db))
    session_repo = WhatsappSessionRepository(db)
    client_id = f"{user.id}:{uuid.uuid4().hex[:8]}"
    log = log.bind(user=str(user.id), client_id=client_id)

    await ws_manager.connect(client_id, websocket)
    if company_id:
        ws_manager.join(client_id, f"company:{company_id}")

    try:
        await ws_manager.send_message(client_id, {"event": "connection_status", "data": {"status": "connected"}})
        while True:
            raw = await websocket.receive_text()
            if raw.strip().lower() == "ping":
                await websocket.send_text("pong")
                continue
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                log.debug(f"Ignoring non-JSON message: {raw[:100]}")
                continue
            if not isinstance(message, dict):
                continue

            action = message.get("action")
            session_id = str(message.get("session_id") or "")
            if action not in ("join_session", "leave_session") or not session_id:
                continue
            if action == "leave_session":
                ws_manager.leave(client_id, f"session:{session_id}")
                continue
            # Só sessões da própria empresa
            session = await session_repo.get_for_company(session_id, company_id) if company_id else None
            if session is None:
                log.warning(f"join_session denied for session {session_id}")
                await ws_manager.send_message(client_id, {"event": "error", "data": {"message": "Sessão não encontrada"}})
                continue
            ws_manager.join(client_id, f"session:{session.id}")
            log.debug(f"Joined session room {session.id}")
    except WebSocketDisconnect as e:
        log.info(f"WebSocket disconnected (code: {e.code}).")
    finally:
        ws_manager.disconnect(client_id)
