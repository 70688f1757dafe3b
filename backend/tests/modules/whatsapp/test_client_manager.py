# tests/modules/whatsapp/test_client_manager.py
import asyncio

import pytest

from disparador.core.exceptions import WhatsAppNotReadyError
from disparador.modules.whatsapp.auth_state import CREDS_KEY, SignalKeyStore
from disparador.modules.whatsapp.manager import MAX_RECONNECT_ATTEMPTS, WhatsAppClientManager, whatsapp_manager
from disparador.modules.whatsapp.repository import WhatsappAuthStateRepository, WhatsappSessionRepository
from disparador.modules.whatsapp.session_store import SessionStore

pytestmark = pytest.mark.asyncio

class FakeRedis:
    def __init__(self):
        self.data = {}

    async def set(self, key, value, ex=None):
        self.data[key] = value

    async def get(self, key):
        return self.data.get(key)

    async def delete(self, key):
        self.data.pop(key, None)

async def drain_background():
    while True:
        pending = [task for task in whatsapp_manager._background if not task.done()]
        if not pending:
            return
        await asyncio.gather(*pending)

async def test_get_or_create_starts_client_once(gateway):
    first = await whatsapp_manager.get_or_create("s1")
    second = await whatsapp_manager.get_or_create("s1")
    assert first is second
    assert gateway.clients["s1"].started is True

async def test_failed_start_forgets_client(monkeypatch):
    class BrokenClient:
        async def start(self):
            raise ConnectionError("gateway offline")

    monkeypatch.setattr(whatsapp_manager, "client_factory", lambda session_id: BrokenClient())
    with pytest.raises(ConnectionError):
        await whatsapp_manager.get_or_create("s1")
    assert whatsapp_manager.get_state("s1") is None

async def test_qr_is_throttled():
    assert await whatsapp_manager.handle_qr("s1", "iVBORw0KGgo") is True
    assert whatsapp_manager.get_qr("s1") == "data:image/png;base64,iVBORw0KGgo"
    assert await whatsapp_manager.handle_qr("s1", "outro") is False
    assert whatsapp_manager.get_qr("s1") == "data:image/png;base64,iVBORw0KGgo"

async def test_open_marks_ready_and_persists(db, seed, gateway):
    company = await seed.company()
    session = await seed.default_session(company)
    await gateway.connect(session, push_name="Minha Loja", phone="5511988887777")

    key = str(session.id)
    assert whatsapp_manager.is_ready(key)
    assert whatsapp_manager.get_info(key)["phone"] == "5511988887777"
    stored = await WhatsappSessionRepository(db).get_by_id(session.id)
    assert stored.status == "connected"
    assert stored.wa_push_name == "Minha Loja"
    assert stored.last_connected_at is not None

async def test_logged_out_close_does_not_reconnect(db, seed, gateway):
    company = await seed.company()
    session = await seed.default_session(company)
    await gateway.connect(session)
    key = str(session.id)

    await whatsapp_manager.handle_close(key, 401)
    await drain_background()

    assert whatsapp_manager.get_state(key) is None
    assert (await WhatsappSessionRepository(db).get_by_id(session.id)).status == "disconnected"

async def test_connection_lost_reconnects(db, seed, gateway):
    company = await seed.company()
    session = await seed.default_session(company)
    await gateway.connect(session)
    key = str(session.id)
    old_client = gateway.clients[key]

    await whatsapp_manager.handle_close(key, 428)
    await drain_background()

    state = whatsapp_manager.get_state(key)
    assert state is not None and state.client is not old_client
    assert gateway.clients[key].started is True
    assert not whatsapp_manager.is_ready(key)

async def test_gives_up_after_max_attempts_and_clears_auth(db, seed, gateway):
    company = await seed.company()
    session = await seed.default_session(company)
    key = str(session.id)
    await SignalKeyStore(WhatsappAuthStateRepository(db), key).write({"me": None}, CREDS_KEY)

    for _ in range(MAX_RECONNECT_ATTEMPTS):
        await whatsapp_manager.handle_close(key, 428)
        await drain_background()

    assert whatsapp_manager.get_state(key) is None
    assert await WhatsappAuthStateRepository(db).read(key, CREDS_KEY) is None

async def test_auth_failure_close_does_not_reconnect(db, seed):
    company = await seed.company()
    session = await seed.default_session(company)
    key = str(session.id)
    await whatsapp_manager.get_or_create(key)

    await whatsapp_manager.handle_close(key, 500)
    await drain_background()

    assert whatsapp_manager.get_state(key) is None

async def test_release_only_drops_pairing_clients(db, seed, gateway):
    company = await seed.company()
    session = await seed.default_session(company)
    await gateway.connect(session)
    await whatsapp_manager.get_or_create("pairing")

    await whatsapp_manager.release(str(session.id))
    await whatsapp_manager.release("pairing")

    assert whatsapp_manager.is_ready(str(session.id))
    assert whatsapp_manager.get_state("pairing") is None
    assert gateway.clients["pairing"].stopped is True

async def test_ready_client_from_shared_store(gateway):
    """Worker sem client em memória usa o status publicado no Redis."""
    store = SessionStore(client=FakeRedis())
    manager = WhatsAppClientManager(client_factory=gateway.factory, store=store)

    with pytest.raises(WhatsAppNotReadyError):
        await manager.get_ready_client("s1")

    await store.set_status("s1", "connected")
    client = await manager.get_ready_client("s1")
    assert client.session_id == "s1"

async def test_connection_failure_clears_auth_before_reconnect(db, seed, gateway, monkeypatch):
    company = await seed.company()
    session = await seed.default_session(company)
    await gateway.connect(session)
    key = str(session.id)
    await SignalKeyStore(WhatsappAuthStateRepository(db), key).write({"me": None}, CREDS_KEY)

    calls = []
    clear_auth = whatsapp_manager._clear_auth
    reconnect_later = whatsapp_manager._reconnect_later

    async def recording_clear(session_id):
        calls.append("clear_auth")
        await clear_auth(session_id)

    def recording_reconnect(session_id, attempt, delay):
        calls.append("reconnect")
        return reconnect_later(session_id, attempt, delay)

    monkeypatch.setattr(whatsapp_manager, "_clear_auth", recording_clear)
    monkeypatch.setattr(whatsapp_manager, "_reconnect_later", recording_reconnect)

    await whatsapp_manager.handle_close(key, 405)
    await drain_background()

    assert calls == ["clear_auth", "reconnect"]
    assert await WhatsappAuthStateRepository(db).read(key, CREDS_KEY) is None
    assert gateway.clients[key].started is True

async def test_restart_replaces_client(db, seed, gateway):
    company = await seed.company()
    session = await seed.default_session(company)
    await gateway.connect(session)
    key = str(session.id)
    old_client = gateway.clients[key]

    state = await whatsapp_manager.restart(key)

    assert old_client.stopped is True
    assert state.client is gateway.clients[key]
    assert state.client is not old_client
    assert state.client.started is True
    assert not whatsapp_manager.is_ready(key)

async def test_restore_sessions_only_reopens_connected(db, seed, gateway, monkeypatch):
    monkeypatch.setattr(whatsapp_manager, "restore_delays", (0, 0))
    company = await seed.company()
    connected = await seed.session(company, name="Vendas", status="connected")
    idle = await seed.session(company, name="Suporte", status="disconnected")

    restored = await whatsapp_manager.restore_sessions()

    assert restored == 1
    assert str(connected.id) in gateway.clients
    assert str(idle.id) not in gateway.clients
    assert gateway.clients[str(connected.id)].started is True
