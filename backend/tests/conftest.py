# tests/conftest.py
import os
import tempfile

# Settings são lidos no import do pacote: o ambiente de teste vem antes de tudo
_TMP_DIR = tempfile.mkdtemp(prefix="disparador-tests-")
os.environ.update({
    "PROJECT_NAME": "Disparador Test",
    "LOG_LEVEL": "WARNING",
    "MONGODB_URI": "mongodb://localhost:27017/disparador_test",
    "SECRET_KEY": "test-secret-key-0123456789abcdef",
    "CELERY_BROKER_URL": "memory://",
    "CELERY_RESULT_BACKEND": "cache+memory://",
    "RATE_LIMIT_ENABLED": "false",
    "WHATSAPP_GATEWAY_API_KEY": "test-gateway-key",
    "RESTORE_SESSIONS_ON_STARTUP": "false",
    "UPLOADS_DIR": os.path.join(_TMP_DIR, "uploads"),
    "PUBLIC_DIR": os.path.join(_TMP_DIR, "public"),
})

from typing import AsyncGenerator, Callable, Dict, List, Optional

import pytest
import pytest_asyncio
from bson import ObjectId
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

from disparador.core.database import mongo_manager
from disparador.core.dates import add_months, utcnow
from disparador.core.exceptions import ExternalServiceError
from disparador.core.security import get_password_hash, token_for_user
from disparador.modules.billing.models import PlanInDB
from disparador.modules.billing.repository import PlanRepository, SubscriptionRepository
from disparador.modules.campaigns.sender import CampaignSender
from disparador.modules.companies.models import DEFAULT_SESSION_NAME, CompanyInDB
from disparador.modules.companies.repository import CompanyRepository
from disparador.modules.users.models import UserInDB
from disparador.modules.users.repository import UserRepository
from disparador.modules.whatsapp.client import RemoteGroup
from disparador.modules.whatsapp.manager import whatsapp_manager
from disparador.modules.whatsapp.models import WhatsappGroupInDB, WhatsappSessionInDB
from disparador.modules.whatsapp.repository import WhatsappGroupRepository, WhatsappSessionRepository
from disparador.modules.whatsapp.services import GroupService

TEST_PASSWORD = "secret123"  # senha padrão de Seed.user

# --- WhatsApp fake ---
class FakeWhatsAppClient:
    def __init__(self, session_id: str, gateway: "FakeGateway"):
        self.session_id = session_id
        self.gateway = gateway
        self.started = False
        self.stopped = False
        self.logged_out = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    async def logout(self) -> None:
        self.logged_out = True

    def _deliver(self, kind: str, to: str, **data) -> None:
        if to in self.gateway.blocked:
            raise ExternalServiceError("blocked by group settings")
        self.gateway.sent.append({"kind": kind, "session_id": self.session_id, "to": to, **data})

    async def send_text(self, to: str, text: str, mentions: Optional[List[str]] = None) -> None:
        self._deliver("text", to, text=text, mentions=mentions or [])

    async def send_image(self, to, content, mimetype, caption=None, mentions=None) -> None:
        self._deliver("image", to, text=caption, mimetype=mimetype, mentions=mentions or [])

    async def send_voice(self, to, content, mimetype) -> None:
        self._deliver("voice", to, mimetype=mimetype)

    async def fetch_groups(self) -> List[RemoteGroup]:
        return list(self.gateway.remote_groups)

    async def group_participants(self, group_wa_id: str) -> List[str]:
        return list(self.gateway.participants)

    async def profile_picture_url(self, jid: str) -> Optional[str]:
        return None

class FakeGateway:
    """Clients criados pelo manager e tudo o que foi enviado por eles."""

    def __init__(self):
        self.clients: Dict[str, FakeWhatsAppClient] = {}
        self.sent: List[dict] = []
        self.blocked: set = set()
        self.remote_groups: List[RemoteGroup] = []
        self.participants: List[str] = []

    def factory(self, session_id: str) -> FakeWhatsAppClient:
        client = FakeWhatsAppClient(session_id, self)
        self.clients[session_id] = client
        return client

    async def connect(self, session: WhatsappSessionInDB, push_name: str = "Loja", phone: str = "5511999990000") -> None:
        await whatsapp_manager.handle_open(str(session.id), push_name, phone, f"{phone}@s.whatsapp.net")

async def _no_pause(seconds: float) -> None:
    return None

@pytest.fixture(autouse=True)
def gateway(monkeypatch) -> FakeGateway:
    fake = FakeGateway()
    whatsapp_manager.reset()
    monkeypatch.setattr(whatsapp_manager, "client_factory", fake.factory)
    monkeypatch.setattr(whatsapp_manager, "init_slot_release_delay", 0)
    monkeypatch.setattr(whatsapp_manager, "restart_delay", 0)
    monkeypatch.setattr(whatsapp_manager, "backoff_delays", (0, 0, 0))
    monkeypatch.setattr(GroupService, "ready_wait_sec", 0)
    monkeypatch.setattr(GroupService, "ready_poll_sec", 0)
    monkeypatch.setattr(CampaignSender, "pause", staticmethod(_no_pause))
    yield fake
    whatsapp_manager.reset()

@pytest.fixture(autouse=True)
def enqueued(monkeypatch) -> List[tuple]:
    """Envios de campanha que iriam para o Celery."""
    calls: List[tuple] = []

    def fake_enqueue(campaign_id, user_id) -> str:
        calls.append((str(campaign_id), str(user_id)))
        return f"job-{len(calls)}"

    monkeypatch.setattr("disparador.modules.campaigns.services.enqueue_campaign_send", fake_enqueue)
    return calls

# --- Banco ---
@pytest.fixture
def db():
    client = AsyncMongoMockClient()
    database = client["disparador_test"]
    mongo_manager.client = client
    mongo_manager.db = database
    yield database
    mongo_manager.client = None
    mongo_manager.db = None

class Seed:
    """Cria os documentos mínimos de cada cenário."""

    def __init__(self, db):
        self.db = db

    async def plan(self, slug: str = "basico", price: float = 49.9, limits: Optional[dict] = None, **extra) -> PlanInDB:
        return await PlanRepository(self.db).create({
            "name": slug.capitalize(),
            "slug": slug,
            "price": price,
            "limits": limits or {"connections": 2, "campaigns": 10, "users": 3, "groups": 50},
            "is_active": extra.pop("is_active", True),
            **extra,
        })

    async def company(self, name: str = "Loja Teste", slug: Optional[str] = None, plan: Optional[PlanInDB] = None,
                      with_session: bool = True, **extra) -> CompanyInDB:
        company = await CompanyRepository(self.db).create({
            "name": name, "slug": slug or name.lower().replace(" ", "-"), "is_active": True, **extra,
        })
        if plan is not None:
            now = utcnow()
            await SubscriptionRepository(self.db).create({
                "company_id": company.id,
                "plan_id": plan.id,
                "status": "active",
                "billing_day": min(now.day, 28),
                "current_period_start": now,
                "current_period_end": add_months(now, 1, min(now.day, 28)),
            })
        if with_session:
            await self.session(company, name=DEFAULT_SESSION_NAME, is_default=True)
        return company

    async def session(self, company: CompanyInDB, name: str = "Outra conexão", is_default: bool = False,
                      **extra) -> WhatsappSessionInDB:
        return await WhatsappSessionRepository(self.db).create({
            "company_id": company.id, "name": name, "is_default": is_default, **extra,
        })

    async def default_session(self, company: CompanyInDB) -> WhatsappSessionInDB:
        return await WhatsappSessionRepository(self.db).get_default(company.id)

    async def group(self, session: WhatsappSessionInDB, wa_id: str, name: Optional[str] = None) -> WhatsappGroupInDB:
        return await WhatsappGroupRepository(self.db).create({
            "session_id": session.id, "company_id": session.company_id, "wa_id": wa_id,
            "name": name or wa_id, "source": "whatsapp",
        })

    async def user(self, company: Optional[CompanyInDB] = None, role: str = "admin", email: Optional[str] = None,
                   password: str = TEST_PASSWORD, **extra) -> UserInDB:
        return await UserRepository(self.db).create({
            "email": email or f"{role}-{ObjectId()}@example.com",
            "name": extra.pop("name", role.capitalize()),
            "hashed_password": get_password_hash(password),
            "role": role,
            "company_id": company.id if company else None,
            **extra,
        })

@pytest.fixture
def seed(db) -> Seed:
    return Seed(db)

@pytest.fixture
def auth_headers() -> Callable[[UserInDB], Dict[str, str]]:
    def _headers(user: UserInDB) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token_for_user(user)}"}
    return _headers

# --- HTTP ---
@pytest_asyncio.fixture
async def client(db) -> AsyncGenerator[AsyncClient, None]:
    from disparador.main import app
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as test_client:
        yield test_client
