# disparador/modules/whatsapp/services.py
import asyncio
import mimetypes
import re
import time
from datetime import timedelta
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from bson import ObjectId
from fastapi import Depends, UploadFile
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase

from disparador.core.config import settings
from disparador.core.database import get_database
from disparador.core.dates import utcnow
from disparador.core.exceptions import AppError, ExternalServiceError, NotFoundError
from disparador.core.uploads import resolve_upload_path
from disparador.modules.campaigns.repository import CampaignRepository
from disparador.modules.companies.repository import CompanyRepository
from disparador.modules.limits.services import PlanLimitsService
from .client import RemoteGroup, WhatsAppClient
from .group_io import export_groups_csv, export_groups_xlsx, normalize_wa_id, parse_group_file
from .manager import whatsapp_manager
from .models import (
    ConnectionStatusAPI, GroupImportResultAPI, GroupSyncResultAPI, MessageSendInDB, QrCodeAPI,
    SendMessageAPI, SendResultAPI, SendResultItemAPI, WhatsappGroupInDB, WhatsappSessionInDB,
)
from .repository import (
    LinkClickRepository, MessageSendRepository, WhatsappGroupRepository, WhatsappSessionRepository,
)

SESSION_NOT_FOUND_MESSAGE = "Sessão não encontrada"
GROUP_NOT_FOUND_MESSAGE = "Grupo não encontrado"
CONNECTED_GRACE = timedelta(minutes=5)

GROUPS_CACHE_TTL_SEC = 5 * 60
MAX_IMPORT_BYTES = 5 * 1024 * 1024
AUDIO_EXTENSIONS = {".ogg", ".opus", ".mp3", ".m4a", ".amr", ".aac", ".webm"}

SYNC_NOT_READY_MESSAGE = (
    "WhatsApp está conectado no painel mas ainda não ficou pronto. Aguarde cerca de 1 minuto e clique em "
    "Sincronizar novamente. Se o problema continuar, tente Desconectar e escanear o QR de novo."
)
SYNC_NO_SESSION_MESSAGE = "Nenhum WhatsApp conectado. Conecte ao menos uma sessão (QR Code) e tente novamente."
SYNC_TIMEOUT_MESSAGE = (
    "A sincronização demorou mais que o esperado (muitos grupos ou conexão lenta). "
    "Tente novamente em alguns instantes."
)
_TIMEOUT_PATTERN = re.compile(r"timeout|timed out|não respondeu a tempo", re.IGNORECASE)

# Grupos buscados por sessão enquanto ela estiver ativa: session_id -> (monotonic, grupos)
_groups_cache: Dict[str, Tuple[float, List[RemoteGroup]]] = {}

def clear_groups_cache(session_id: str) -> None:
    _groups_cache.pop(session_id, None)

whatsapp_manager.on_destroy(clear_groups_cache)

class WhatsAppSessionService:
    """Sessões WhatsApp da empresa e o estado de conexão de cada uma."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.repo = WhatsappSessionRepository(db)
        self.group_repo = WhatsappGroupRepository(db)
        self.company_repo = CompanyRepository(db)
        self.limits = PlanLimitsService(db)
        self.log = logger.bind(service="WhatsAppSessionService")

    async def _label(self, sessions: List[WhatsappSessionInDB]) -> None:
        if not sessions:
            return
        company = await self.company_repo.get_by_id(sessions[0].company_id)
        company_name = company.name if company else str(sessions[0].company_id)
        for session in sessions:
            whatsapp_manager.set_session_label(str(session.id), session.name, company_name)

    async def get_session(self, session_id: str, company_id: ObjectId) -> WhatsappSessionInDB:
        session = await self.repo.get_for_company(session_id, company_id)
        if not session:
            raise NotFoundError(SESSION_NOT_FOUND_MESSAGE)
        await self._label([session])
        return session

    # --- CRUD ---
    async def list_sessions(self, company_id: ObjectId) -> List[dict]:
        sessions = await self.repo.list_by_company(company_id)
        await self._label(sessions)
        counts = await self.group_repo.count_by_sessions([s.id for s in sessions])
        result = []
        for session in sessions:
            session_id = str(session.id)
            ready = whatsapp_manager.is_ready(session_id)
            if session.status == "connected" and not ready and not whatsapp_manager.get_state(session_id):
                whatsapp_manager.start_in_background(session_id)
            data = session.model_dump()
            data["status"] = "connected" if ready else session.status
            data["group_count"] = counts.get(session.id, 0)
            result.append(data)
        return result

    async def create_session(self, company_id: ObjectId, name: str) -> WhatsappSessionInDB:
        await self.limits.assert_within_limit(company_id, "connections")
        is_default = await self.repo.count_by_company(company_id) == 0
        session = await self.repo.create({"company_id": company_id, "name": name.strip(), "is_default": is_default})
        self.log.info(f"Session {session.id} created for company {company_id} (default={is_default})")
        return session

    async def rename_session(self, session_id: str, company_id: ObjectId, name: str) -> WhatsappSessionInDB:
        session = await self.get_session(session_id, company_id)
        return await self.repo.update(session.id, {"name": name.strip()})

    async def set_default_session(self, session_id: str, company_id: ObjectId) -> None:
        session = await self.get_session(session_id, company_id)
        await self.repo.set_default(session.id, company_id)

    async def delete_session(self, session_id: str, company_id: ObjectId) -> None:
        session = await self.get_session(session_id, company_id)
        await whatsapp_manager.destroy(str(session.id))
        await purge_session(self.db, session.id)

        remaining = await self.repo.get_default(company_id)
        if remaining and not remaining.is_default:
            await self.repo.set_default(remaining.id, company_id)
        self.log.info(f"Session {session.id} deleted from company {company_id}")

    # --- Conexão ---
    async def get_connection_status(self, session_id: str, company_id: ObjectId) -> ConnectionStatusAPI:
        session = await self.get_session(session_id, company_id)
        key = str(session.id)
        state = whatsapp_manager.get_state(key)

        # Conectada no banco mas sem client em memória (ex: API reiniciada): restaura em background
        if session.status == "connected" and not state:
            whatsapp_manager.start_in_background(key)

        if state:
            info = whatsapp_manager.get_info(key)
            if info:
                changes = {
                    "status": "connected",
                    "wa_push_name": info["push_name"],
                    "wa_phone": info["phone"],
                    "wa_jid": info["jid"],
                    "last_connected_at": utcnow(),
                }
                if info["avatar_url"]:
                    changes["wa_avatar_url"] = info["avatar_url"]
                session = await self.repo.update(session.id, changes) or session
            else:
                qr = whatsapp_manager.get_qr(key)
                recently_connected = (
                    session.status == "connected"
                    and session.last_connected_at is not None
                    and utcnow() - session.last_connected_at <= CONNECTED_GRACE
                )
                likely_restoring = session.status == "connected" and not qr
                if not likely_restoring and (not recently_connected or qr):
                    session = await self.repo.update(session.id, {"status": "disconnected"}) or session

        return ConnectionStatusAPI(
            id=key,
            name=session.name,
            is_default=session.is_default,
            status=session.status,
            wa_push_name=session.wa_push_name,
            wa_phone=session.wa_phone,
            wa_jid=session.wa_jid,
            wa_avatar_url=session.wa_avatar_url,
            last_connected_at=session.last_connected_at,
            has_qr=bool(whatsapp_manager.get_qr(key)),
            restoring=session.status == "connected" and not whatsapp_manager.is_ready(key),
        )

    async def get_qr(self, session_id: str, company_id: ObjectId) -> QrCodeAPI:
        session = await self.get_session(session_id, company_id)
        key = str(session.id)
        if whatsapp_manager.is_ready(key):
            return QrCodeAPI(qr=None, already_connected=True, message="Sessão já conectada.")
        await whatsapp_manager.get_or_create(key)
        qr = whatsapp_manager.get_qr(key)
        if not qr:
            return QrCodeAPI(qr=None, message="QR ainda não foi gerado. Aguarde alguns segundos e tente novamente.")
        return QrCodeAPI(qr=qr)

    async def disconnect(self, session_id: str, company_id: ObjectId) -> None:
        session = await self.get_session(session_id, company_id)
        key = str(session.id)
        await whatsapp_manager.logout(key)
        await whatsapp_manager.destroy(key)
        await whatsapp_manager.store.set_status(key, "disconnected")
        await self.repo.update(session.id, {"status": "disconnected"})
        self.log.info(f"Session {key} disconnected by request")

    async def restart(self, session_id: str, company_id: ObjectId) -> None:
        session = await self.get_session(session_id, company_id)
        await whatsapp_manager.restart(str(session.id))

    async def release(self, session_id: str, company_id: ObjectId) -> None:
        session = await self.get_session(session_id, company_id)
        await whatsapp_manager.release(str(session.id))

async def purge_session(db: AsyncIOMotorDatabase, session_id: ObjectId) -> None:
    """Remove a sessão com grupos, envios, cliques, alvos e campanhas dela."""
    group_repo = WhatsappGroupRepository(db)
    send_repo = MessageSendRepository(db)
    campaign_repo = CampaignRepository(db)

    group_ids = await group_repo.ids_by_session(session_id)
    if group_ids:
        send_ids = await send_repo.ids_for_groups(group_ids)
        await LinkClickRepository(db).delete_for_sends(send_ids)
        await send_repo.delete_many({"_id": {"$in": send_ids}})
        await campaign_repo.remove_group_targets(group_ids)
        await group_repo.delete_many({"session_id": session_id})

    campaign_ids = [c.id for c in await campaign_repo.list_by({"session_id": session_id})]
    if campaign_ids:
        await send_repo.detach_campaigns(campaign_ids)
        await campaign_repo.delete_many({"_id": {"$in": campaign_ids}})
    await WhatsappSessionRepository(db).delete(session_id)
    whatsapp_manager.forget_session(str(session_id))

class GroupService:
    """Grupos da empresa: listagem, sincronização com o WhatsApp, importação e exportação."""

    ready_wait_sec = 90.0
    ready_poll_sec = 0.8

    def __init__(self, db: AsyncIOMotorDatabase):
        self.repo = WhatsappGroupRepository(db)
        self.session_repo = WhatsappSessionRepository(db)
        self.company_repo = CompanyRepository(db)
        self.limits = PlanLimitsService(db)
        self.log = logger.bind(service="GroupService")

    async def list_groups_full(self, company_id: ObjectId) -> List[dict]:
        """Sessão padrão primeiro, depois ordem de criação da sessão e nome do grupo."""
        sessions = await self.session_repo.list_by_company(company_id)
        order = {session.id: index for index, session in enumerate(sessions)}
        by_id = {session.id: session for session in sessions}
        groups = await self.repo.list_by({"session_id": {"$in": list(by_id)}})
        groups.sort(key=lambda g: (order.get(g.session_id, len(order)), g.name.lower()))
        result = []
        for group in groups:
            data = group.model_dump()
            session = by_id.get(group.session_id)
            data["session_name"] = session.name if session else None
            data["session_is_default"] = session.is_default if session else None
            result.append(data)
        return result

    async def list_groups(self, company_id: ObjectId) -> List[WhatsappGroupInDB]:
        return await self.repo.list_by_company(company_id)

    async def _wait_for_ready_sessions(self, sessions: List[WhatsappSessionInDB]) -> List[WhatsappSessionInDB]:
        connected_in_db = [s for s in sessions if s.status == "connected"]
        if not connected_in_db:
            return []
        try:
            await whatsapp_manager.get_or_create(str(connected_in_db[0].id))
        except AppError as e:
            self.log.warning(f"Falha ao restaurar sessão para sync de grupos: {e.message}")
        for session in connected_in_db[1:]:
            whatsapp_manager.start_in_background(str(session.id))

        deadline = time.monotonic() + self.ready_wait_sec
        while True:
            ready = [s for s in sessions if whatsapp_manager.is_ready(str(s.id))]
            if ready:
                self.log.success(f"{len(ready)} sessão(ões) pronta(s) para sync.")
                return ready
            if time.monotonic() >= deadline:
                return []
            await asyncio.sleep(self.ready_poll_sec)

    async def _group_avatar(self, client: WhatsAppClient, wa_id: str) -> Optional[str]:
        try:
            return await client.profile_picture_url(wa_id)
        except ExternalServiceError:
            return None

    async def sync_groups(self, company_id: ObjectId) -> GroupSyncResultAPI:
        sessions = await self.session_repo.list_by_company(company_id)
        company = await self.company_repo.get_by_id(company_id)
        for session in sessions:
            whatsapp_manager.set_session_label(str(session.id), session.name, company.name if company else "")

        ready = [s for s in sessions if whatsapp_manager.is_ready(str(s.id))]
        if not ready:
            ready = await self._wait_for_ready_sessions(sessions)
        if not ready:
            if any(s.status == "connected" for s in sessions):
                raise AppError(SYNC_NOT_READY_MESSAGE)
            raise AppError(SYNC_NO_SESSION_MESSAGE)

        result = GroupSyncResultAPI(synced=0, created=0, updated=0, sessions=len(ready))
        for session in ready:
            key = str(session.id)
            cached = _groups_cache.get(key)
            if cached and time.monotonic() - cached[0] < GROUPS_CACHE_TTL_SEC:
                result.synced += len(cached[1])
                result.cached = True
                continue

            client = await whatsapp_manager.get_ready_client(key)
            try:
                remote_groups = await client.fetch_groups()
            except ExternalServiceError as e:
                if _TIMEOUT_PATTERN.search(e.message):
                    raise AppError(SYNC_TIMEOUT_MESSAGE) from e
                raise

            for group in remote_groups:
                existing = await self.repo.get_by_wa_id(session.id, group.wa_id)
                if not existing:
                    check = await self.limits.check_limit(company_id, "groups")
                    if not check.allowed:
                        result.skipped_by_limit += 1
                        continue
                fields = {
                    "name": group.name.strip() or group.wa_id,
                    "participant_count": group.participant_count,
                    "source": "whatsapp",
                }
                avatar_url = await self._group_avatar(client, group.wa_id)
                if avatar_url:
                    fields["avatar_url"] = avatar_url
                try:
                    created = await self.repo.upsert_group(session.id, company_id, group.wa_id, fields)
                except (ValueError, RuntimeError) as e:
                    self.log.error(f"Falha ao persistir grupo {group.wa_id}: {whatsapp_manager.label(key)}: {e}")
                    continue
                if created:
                    result.created += 1
                else:
                    result.updated += 1

            _groups_cache[key] = (time.monotonic(), remote_groups)
            result.synced += len(remote_groups)

        if result.skipped_by_limit:
            result.message = f"{result.skipped_by_limit} grupo(s) não adicionados: limite de grupos do plano atingido."
        self.log.info(
            f"Company {company_id} groups synced: {result.synced} remote, {result.created} new, "
            f"{result.updated} updated, {result.skipped_by_limit} over limit"
        )
        return result

    async def _export_rows(self, company_id: ObjectId) -> List[tuple]:
        groups = await self.list_groups_full(company_id)
        return [(g["wa_id"], g["name"], g["participant_count"], g["source"]) for g in groups]

    async def export_csv(self, company_id: ObjectId) -> str:
        return export_groups_csv(await self._export_rows(company_id))

    async def export_xlsx(self, company_id: ObjectId) -> bytes:
        return export_groups_xlsx(await self._export_rows(company_id))

    async def import_file(self, company_id: ObjectId, upload: Optional[UploadFile]) -> GroupImportResultAPI:
        if upload is None or not upload.filename:
            raise AppError("Nenhum arquivo enviado")
        content = await upload.read()
        if len(content) > MAX_IMPORT_BYTES:
            raise AppError("Arquivo muito grande (máximo 5 MB)")

        session = await self.session_repo.get_default(company_id)
        if not session:
            raise AppError("Crie uma conexão de WhatsApp antes de importar grupos")

        rows = parse_group_file(upload.filename, content)
        if not rows:
            raise AppError("Arquivo vazio ou sem dados válidos")

        result = GroupImportResultAPI(imported=0, updated=0, skipped=0)
        for row in rows:
            wa_id = normalize_wa_id(row.wa_id)
            if not wa_id:
                result.skipped += 1
                continue
            name = (row.name or wa_id).strip()
            existing = await self.repo.get_by_wa_id(session.id, wa_id)
            if not existing:
                check = await self.limits.check_limit(company_id, "groups")
                if not check.allowed:
                    result.skipped_by_limit += 1
                    continue
            try:
                created = await self.repo.upsert_group(session.id, company_id, wa_id, {"name": name, "source": "imported"})
            except (ValueError, RuntimeError) as e:
                result.errors.append(f"{wa_id}: {e}")
                continue
            if created:
                result.imported += 1
            else:
                result.updated += 1

        self.log.info(
            f"Company {company_id} imported groups from '{upload.filename}': {result.imported} new, "
            f"{result.updated} updated, {result.skipped} skipped, {result.skipped_by_limit} over limit"
        )
        return result

class MessageSendService:
    """Envio de uma mensagem para um grupo, registrando o MessageSend."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.group_repo = WhatsappGroupRepository(db)
        self.send_repo = MessageSendRepository(db)
        self.limits = PlanLimitsService(db)
        self.log = logger.bind(service="MessageSendService")

    async def _mentions(self, client: WhatsAppClient, wa_id: str) -> List[str]:
        try:
            return await client.group_participants(wa_id)
        except ExternalServiceError as e:
            self.log.warning(f"Participantes para @todos não obtidos; enviando sem menções. ({e.message})")
            return []

    @staticmethod
    def _media_file(image_path: str) -> Path:
        path = Path(image_path)
        if not path.is_absolute():
            path = resolve_upload_path(image_path.lstrip("/"))
        if not path.is_file():
            raise AppError("Arquivo de mídia não encontrado")
        return path

    @staticmethod
    def tracked_link(send_id: ObjectId) -> Optional[str]:
        base = (settings.PUBLIC_BASE_URL or "").rstrip("/")
        return f"{base}/l/{send_id}" if base else None

    @staticmethod
    def with_tracked_link(message: str, link_url: str, tracked: str) -> str:
        """Troca o link da mensagem pelo de rastreio; se não estiver no texto, vai no final."""
        if link_url in message:
            return message.replace(link_url, tracked)
        return f"{message}\n\n{tracked}" if message else tracked

    async def send_message_to_group(
        self,
        company_id: ObjectId,
        group_ref: str,
        message: str,
        image_path: Optional[str] = None,
        campaign_id: Optional[ObjectId] = None,
        link_url: Optional[str] = None,
        user_id: Optional[ObjectId] = None,
        mention_all: bool = False,
    ) -> MessageSendInDB:
        group = await self.group_repo.find_in_company(company_id, group_ref)
        if not group:
            raise NotFoundError(GROUP_NOT_FOUND_MESSAGE)
        client = await whatsapp_manager.get_ready_client(str(group.session_id))

        send = await self.send_repo.create({
            "company_id": company_id,
            "user_id": user_id,
            "session_id": group.session_id,
            "group_id": group.id,
            "campaign_id": campaign_id,
            "message_text": message,
            "link_url": link_url,
            "image_path": image_path,
            "status": "pending",
        })

        if link_url:
            tracked = self.tracked_link(send.id)
            if tracked:
                message = self.with_tracked_link(message, link_url, tracked)
                await self.send_repo.update(send.id, {"message_text": message})

        mentions = await self._mentions(client, group.wa_id) if mention_all else []
        try:
            if image_path:
                path = self._media_file(image_path)
                content = await asyncio.to_thread(path.read_bytes)
                mimetype = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
                if path.suffix.lower() in AUDIO_EXTENSIONS:
                    await client.send_voice(group.wa_id, content, mimetype)
                else:
                    await client.send_image(group.wa_id, content, mimetype, caption=message or None, mentions=mentions)
            else:
                await client.send_text(group.wa_id, message, mentions=mentions)
        except Exception as e:
            error = e.message if isinstance(e, AppError) else str(e) or "Erro desconhecido"
            await self.send_repo.mark_failed(send.id, error)
            self.log.warning(f"Send {send.id} to group {group.wa_id} failed: {error}")
            raise

        await self.send_repo.mark_sent(send.id)
        return await self.send_repo.get_by_id(send.id)

    async def send_direct(self, company_id: ObjectId, user_id: ObjectId, payload: SendMessageAPI) -> SendResultAPI:
        """Envio avulso pelo painel: a cota diária é validada para todos os grupos antes do primeiro envio."""
        targets = payload.targets()
        await self.limits.assert_group_sends_per_day(company_id, len(targets))
        results = []
        for group_ref in targets:
            try:
                send = await self.send_message_to_group(
                    company_id, group_ref, payload.message, user_id=user_id, mention_all=payload.mention_all
                )
            except AppError as e:
                results.append(SendResultItemAPI(group_id=group_ref, ok=False, error=e.message))
                continue
            results.append(SendResultItemAPI(group_id=group_ref, ok=True, send_id=str(send.id)))
        sent = sum(1 for item in results if item.ok)
        return SendResultAPI(sent=sent, failed=len(results) - sent, results=results)

async def get_session_service(db=Depends(get_database)) -> WhatsAppSessionService:
    return WhatsAppSessionService(db)

async def get_group_service(db=Depends(get_database)) -> GroupService:
    return GroupService(db)

async def get_message_send_service(db=Depends(get_database)) -> MessageSendService:
    return MessageSendService(db)
