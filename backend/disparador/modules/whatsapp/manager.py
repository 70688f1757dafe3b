# disparador/modules/whatsapp/manager.py
# Clientes do protocolo por sessão, mantidos no processo da API. Os eventos de
# conexão (qr/open/close) chegam do gateway via /internal/whatsapp/events.

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from loguru import logger
from pydantic import BaseModel, ConfigDict

from disparador.core.database import mongo_manager
from disparador.core.dates import utcnow
from disparador.core.exceptions import ExternalServiceError, WhatsAppNotReadyError
from disparador.services.whatsapp_gateway import gateway_client_factory
from disparador.websocket.connection_manager import manager as ws_manager
from .auth_state import clear_auth_state
from .client import WhatsAppClient
from .models import GatewayEventAPI
from .repository import WhatsappSessionRepository
from .session_store import SessionStore, session_store

NOT_CONNECTED_MESSAGE = "WhatsApp não está conectado. Conecte escaneando o QR code."

MAX_CONCURRENT_INITS = 1
INIT_SLOT_RELEASE_DELAY_SEC = 8.0
RESTART_DELAY_SEC = 2.5
MAX_RECONNECT_ATTEMPTS = 3
QR_MIN_INTERVAL_SEC = 15.0
BACKOFF_DELAYS_SEC = (5.0, 15.0, 30.0)

# Códigos de desconexão do protocolo
LOGGED_OUT = 401
AUTH_FAILURE_CODES = {500, 403, 411}  # bad session, forbidden, multidevice mismatch
CONNECTION_FAILURE = 405

ClientFactory = Callable[[str], WhatsAppClient]

class ClientState(BaseModel):
    client: Any
    qr: Optional[str] = None
    is_ready: bool = False
    push_name: Optional[str] = None
    phone: Optional[str] = None
    jid: Optional[str] = None
    avatar_url: Optional[str] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

def qr_data_url(qr: str) -> str:
    """O gateway envia o QR em base64 (PNG) ou já como data URL."""
    return qr if qr.startswith("data:image") else f"data:image/png;base64,{qr}"

class WhatsAppClientManager:
    def __init__(self, client_factory: ClientFactory = gateway_client_factory, store: SessionStore = session_store):
        self.client_factory = client_factory
        self.store = store
        self.init_slot_release_delay = INIT_SLOT_RELEASE_DELAY_SEC
        self.restart_delay = RESTART_DELAY_SEC
        self.backoff_delays = BACKOFF_DELAYS_SEC
        self.restore_delays = (2.0, 5.0)
        self.log = logger.bind(service="WhatsAppClientManager")
        self._on_destroy: List[Callable[[str], None]] = []
        self.reset()

    def reset(self) -> None:
        """Esquece todos os clients (shutdown e testes)."""
        self.clients: Dict[str, ClientState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._init_slots: Optional[asyncio.Semaphore] = None
        self._last_qr_at: Dict[str, float] = {}
        self._failures: Dict[str, int] = {}
        self._labels: Dict[str, str] = {}
        self._background: Set[asyncio.Task] = set()

    # --- Labels / callbacks ---
    def set_session_label(self, session_id: str, session_name: str, company_name: str) -> None:
        self._labels[session_id] = f"{company_name} / {session_name}"

    def label(self, session_id: str) -> str:
        return self._labels.get(session_id, session_id)

    def forget_session(self, session_id: str) -> None:
        """Sessão excluída: descarta rótulo e contadores."""
        self._labels.pop(session_id, None)
        self._failures.pop(session_id, None)
        self._last_qr_at.pop(session_id, None)
        self._locks.pop(session_id, None)

    def on_destroy(self, callback: Callable[[str], None]) -> None:
        self._on_destroy.append(callback)

    # --- Helpers ---
    def _slots(self) -> asyncio.Semaphore:
        if self._init_slots is None:
            self._init_slots = asyncio.Semaphore(MAX_CONCURRENT_INITS)
        return self._init_slots

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def backoff_delay(self, attempt: int) -> float:
        return self.backoff_delays[min(attempt - 1, len(self.backoff_delays) - 1)]

    async def _emit(self, event: str, session_id: str, data: Optional[Dict[str, Any]] = None) -> None:
        await ws_manager.emit(f"session:{session_id}", f"whatsapp:{event}", {"session_id": session_id, **(data or {})})

    async def _persist(self, session_id: str, changes: Dict[str, Any]) -> None:
        try:
            await WhatsappSessionRepository(mongo_manager.get_db()).update(session_id, changes)
        except RuntimeError as e:
            self.log.error(f"Falha ao persistir {changes} para {self.label(session_id)}: {e}")

    async def _clear_auth(self, session_id: str) -> None:
        try:
            await clear_auth_state(mongo_manager.get_db(), session_id)
        except RuntimeError as e:
            self.log.warning(f"Falha ao limpar auth: {self.label(session_id)}: {e}")

    def _adopt(self, session_id: str) -> ClientState:
        """Evento de uma sessão sem client local (ex: API reiniciada com o gateway ativo)."""
        state = ClientState(client=self.client_factory(session_id))
        self.clients[session_id] = state
        return state

    # --- Ciclo de vida ---
    async def get_or_create(self, session_id: str) -> ClientState:
        """Criação serializada por sessão e limitada a uma inicialização por vez."""
        existing = self.clients.get(session_id)
        if existing:
            return existing
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            existing = self.clients.get(session_id)
            if existing:
                return existing
            slots = self._slots()
            await slots.acquire()
            state = ClientState(client=self.client_factory(session_id))
            self.clients[session_id] = state
            try:
                await state.client.start()
            except Exception:
                slots.release()
                self.clients.pop(session_id, None)
                await self.store.set_status(session_id, "disconnected")
                await self._persist(session_id, {"status": "disconnected"})
                self.log.error(f"Falha ao iniciar client: {self.label(session_id)}")
                raise
            asyncio.get_running_loop().call_later(self.init_slot_release_delay, slots.release)
            await self.store.set_status(session_id, "pairing")
            self.log.info(f"Client iniciado: {self.label(session_id)}")
            return state

    async def destroy(self, session_id: str, stop_client: bool = True) -> None:
        self._last_qr_at.pop(session_id, None)
        state = self.clients.pop(session_id, None)
        if not state:
            return
        for callback in self._on_destroy:
            callback(session_id)
        if stop_client:
            try:
                await state.client.stop()
            except ExternalServiceError as e:
                self.log.error(f"Erro ao destruir: {self.label(session_id)}: {e.message}")

    async def release(self, session_id: str) -> None:
        """Libera apenas clients ainda em pareamento (aguardando QR)."""
        state = self.clients.get(session_id)
        if not state or state.is_ready:
            return
        await self.destroy(session_id)
        self.log.info(f"Pairing liberado: {self.label(session_id)}")

    def start_in_background(self, session_id: str) -> None:
        """Restaura em background uma sessão marcada como conectada no banco."""
        self._spawn(self._start_logged(session_id))

    async def _start_logged(self, session_id: str) -> None:
        try:
            await self.get_or_create(session_id)
        except Exception as e:
            self.log.warning(f"Restauração em background falhou: {self.label(session_id)}: {e}")

    async def restart(self, session_id: str) -> ClientState:
        await self.destroy(session_id)
        await asyncio.sleep(self.restart_delay)
        return await self.get_or_create(session_id)

    async def logout(self, session_id: str) -> None:
        """Remove o aparelho de "Meus dispositivos" e limpa o auth state."""
        state = self.clients.get(session_id)
        if state:
            try:
                await state.client.logout()
                self.log.info(f"Logout: {self.label(session_id)}")
            except ExternalServiceError as e:
                self.log.warning(f"Logout falhou: {self.label(session_id)}: {e.message}")
        await self._clear_auth(session_id)

    async def shutdown(self) -> None:
        for task in list(self._background):
            task.cancel()
        self.reset()

    # --- Consultas ---
    def get_state(self, session_id: str) -> Optional[ClientState]:
        return self.clients.get(session_id)

    def is_ready(self, session_id: str) -> bool:
        state = self.clients.get(session_id)
        return bool(state and state.is_ready)

    def get_qr(self, session_id: str) -> Optional[str]:
        state = self.clients.get(session_id)
        return state.qr if state else None

    def get_info(self, session_id: str) -> Optional[Dict[str, Optional[str]]]:
        state = self.clients.get(session_id)
        if not state or not state.is_ready:
            return None
        return {"push_name": state.push_name, "phone": state.phone, "jid": state.jid, "avatar_url": state.avatar_url}

    async def get_ready_client(self, session_id: str) -> WhatsAppClient:
        state = self.clients.get(session_id)
        if state and state.is_ready:
            return state.client
        if state is None and await self.store.is_ready(session_id):
            # Processo sem o client em memória (worker): o gateway mantém o socket aberto
            return self.client_factory(session_id)
        raise WhatsAppNotReadyError(NOT_CONNECTED_MESSAGE)

    # --- Eventos do gateway ---
    async def handle_event(self, event: GatewayEventAPI) -> None:
        if event.type == "qr" and event.qr:
            await self.handle_qr(event.session_id, event.qr)
        elif event.type == "open":
            await self.handle_open(event.session_id, event.push_name, event.phone, event.jid)
        elif event.type == "close":
            await self.handle_close(event.session_id, event.status_code)

    async def handle_qr(self, session_id: str, qr: str) -> bool:
        now = time.monotonic()
        last = self._last_qr_at.get(session_id)
        if last is not None and now - last < QR_MIN_INTERVAL_SEC:
            self.log.debug(f"QR ignorado (intervalo mínimo): {self.label(session_id)}")
            return False
        self._last_qr_at[session_id] = now
        state = self.clients.get(session_id) or self._adopt(session_id)
        state.qr = qr_data_url(qr)
        await self.store.set_status(session_id, "qr")
        await self.store.set_qr(session_id, state.qr)
        await self._emit("qr", session_id, {"qr": state.qr})
        self.log.info(f"QR gerado: {self.label(session_id)}")
        return True

    async def handle_open(self, session_id: str, push_name: Optional[str], phone: Optional[str], jid: Optional[str]) -> None:
        self._failures[session_id] = 0
        state = self.clients.get(session_id) or self._adopt(session_id)
        state.is_ready = True
        state.qr = None
        state.push_name = push_name
        state.jid = jid
        state.phone = phone or (jid.split("@")[0].split(":")[0] if jid else None)

        await self.store.set_status(session_id, "connected")
        await self.store.set_meta(session_id, {"push_name": state.push_name, "phone": state.phone, "jid": state.jid})
        await self.store.clear_qr(session_id)
        await self._persist(session_id, {
            "status": "connected",
            "wa_push_name": state.push_name,
            "wa_phone": state.phone,
            "wa_jid": state.jid,
            "last_connected_at": utcnow(),
        })
        await self._emit("ready", session_id)
        self._spawn(self.refresh_avatar(session_id))
        self.log.success(f"Conectado: {self.label(session_id)}")

    async def refresh_avatar(self, session_id: str) -> None:
        state = self.clients.get(session_id)
        if not state or not state.is_ready or not state.jid:
            return
        try:
            url = await state.client.profile_picture_url(state.jid)
        except ExternalServiceError:
            self.log.warning(f"Avatar não obtido: {self.label(session_id)}")
            return
        current = self.clients.get(session_id)
        if current:
            current.avatar_url = url

    async def handle_close(self, session_id: str, status_code: Optional[int]) -> None:
        is_logged_out = status_code == LOGGED_OUT
        is_auth_failure = status_code in AUTH_FAILURE_CODES
        should_reconnect = not is_logged_out and not is_auth_failure
        self.log.warning(
            f"[Closing session] {self.label(session_id)} | statusCode={status_code} | "
            f"loggedOut={is_logged_out} | willReconnect={should_reconnect}"
        )

        state = self.clients.get(session_id)
        if state:
            state.is_ready = False
            state.qr = None
            state.push_name = state.phone = state.jid = state.avatar_url = None
        await self.store.set_status(session_id, "disconnected")
        await self.store.clear_qr(session_id)
        await self._persist(session_id, {"status": "disconnected"})

        if is_auth_failure:
            await self._emit("auth_failure", session_id, {"message": str(status_code)})
        await self._emit("disconnected", session_id, {"reason": "loggedOut" if is_logged_out else str(status_code or "close")})
        await self.destroy(session_id, stop_client=False)

        if not should_reconnect:
            return

        failures = self._failures.get(session_id, 0) + 1
        self._failures[session_id] = failures
        if failures >= MAX_RECONNECT_ATTEMPTS:
            self.log.warning(
                f"Limite de reconexões ({MAX_RECONNECT_ATTEMPTS}) atingido: {self.label(session_id)}. "
                "Conexão encerrada; reconecte manualmente no painel."
            )
            self._failures.pop(session_id, None)
            await self._clear_auth(session_id)
            await self._emit("disconnected", session_id, {"reason": "max_reconnect_attempts"})
            return

        if status_code == CONNECTION_FAILURE:
            self.log.warning(f"Limpeza do auth state (405) antes de reconectar: {self.label(session_id)}")
            await self._clear_auth(session_id)
        self._spawn(self._reconnect_later(session_id, failures, self.backoff_delay(failures)))

    async def _reconnect_later(self, session_id: str, attempt: int, delay: float) -> None:
        self.log.info(f"Reconectando (tentativa {attempt}/{MAX_RECONNECT_ATTEMPTS}) em {delay}s: {self.label(session_id)}")
        await asyncio.sleep(delay)
        try:
            await self.get_or_create(session_id)
        except Exception as e:
            self.log.error(f"Falha ao reconectar: {self.label(session_id)}: {e}")

    # --- Startup ---
    async def restore_sessions(self) -> int:
        """Reabre as sessões marcadas como conectadas no banco."""
        sessions = await WhatsappSessionRepository(mongo_manager.get_db()).list_connected()
        if not sessions:
            self.log.info("Nenhuma sessão marcada como conectada no banco.")
            return 0
        self.log.info(f"Restaurando {len(sessions)} sessão(ões) conectada(s)...")
        delay = self.restore_delays[1] if len(sessions) > 1 else self.restore_delays[0]
        for session in sessions:
            session_id = str(session.id)
            try:
                await self.get_or_create(session_id)
            except Exception as e:
                self.log.warning(f"Restore falhou: {self.label(session_id)}: {e}")
            await asyncio.sleep(delay)
        return len(sessions)

whatsapp_manager = WhatsAppClientManager()
