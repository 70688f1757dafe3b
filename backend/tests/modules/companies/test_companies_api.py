# tests/modules/companies/test_companies_api.py
import pytest
from fastapi import status
from httpx import AsyncClient

from disparador.modules.billing.repository import InvoiceRepository, SubscriptionRepository
from disparador.modules.companies.models import DEFAULT_SESSION_NAME
from disparador.modules.companies.repository import CompanyRepository
from disparador.modules.users.repository import UserRepository
from disparador.modules.whatsapp.manager import whatsapp_manager
from disparador.modules.whatsapp.repository import WhatsappGroupRepository, WhatsappSessionRepository

pytestmark = pytest.mark.asyncio

API = "/api/v1/companies"

async def test_companies_require_superadmin(client: AsyncClient, seed, auth_headers):
    admin = await seed.user(await seed.company())

    response = await client.get(API, headers=auth_headers(admin))

    assert response.status_code == status.HTTP_403_FORBIDDEN

async def test_create_company_with_plan(client: AsyncClient, db, seed, auth_headers):
    root = await seed.user(role="superadmin")
    plan = await seed.plan("pro", price=99.9)

    response = await client.post(API, json={
        "name": "Mercadinho Central", "slug": "mercadinho-central", "email": "contato@mercadinho.example.com",
        "plan_id": str(plan.id),
    }, headers=auth_headers(root))

    assert response.status_code == status.HTTP_201_CREATED
    company = response.json()
    assert company["is_active"] is True
    sessions = await WhatsappSessionRepository(db).list_by_company(CompanyRepository._to_objectid(company["id"]))
    assert [(s.name, s.is_default) for s in sessions] == [(DEFAULT_SESSION_NAME, True)]
    subscription = await SubscriptionRepository(db).get_by_company(sessions[0].company_id)
    assert subscription.plan_id == plan.id

    duplicated = await client.post(API, json={"name": "Outro", "slug": "mercadinho-central"}, headers=auth_headers(root))
    assert duplicated.status_code == status.HTTP_400_BAD_REQUEST
    assert duplicated.json()["detail"] == "Slug já existe"

    listed = await client.get(API, headers=auth_headers(root))
    item = listed.json()[0]
    assert item["subscription"]["plan"]["slug"] == "pro"
    assert item["user_count"] == 0

async def test_company_detail_and_update(client: AsyncClient, seed, gateway, auth_headers):
    root = await seed.user(role="superadmin")
    company = await seed.company()
    await seed.user(company, name="Maria")
    await gateway.connect(await seed.default_session(company), push_name="Loja Zap")

    detail = await client.get(f"{API}/{company.id}", headers=auth_headers(root))
    data = detail.json()
    assert [u["name"] for u in data["users"]] == ["Maria"]
    assert data["sessions"][0]["status"] == "connected"
    assert data["sessions"][0]["wa_push_name"] == "Loja Zap"

    updated = await client.put(f"{API}/{company.id}", json={"phone": "11 4002-8922"}, headers=auth_headers(root))
    assert updated.json()["phone"] == "11 4002-8922"
    assert updated.json()["name"] == company.name

    missing = await client.get(f"{API}/000000000000000000000000", headers=auth_headers(root))
    assert missing.status_code == status.HTTP_404_NOT_FOUND

async def test_deactivate_blocks_company_users(client: AsyncClient, seed, auth_headers):
    root = await seed.user(role="superadmin")
    company = await seed.company()
    admin = await seed.user(company)

    deactivated = await client.patch(f"{API}/{company.id}/deactivate", headers=auth_headers(root))
    assert deactivated.json()["is_active"] is False
    blocked = await client.get("/api/v1/auth/me", headers=auth_headers(admin))
    assert blocked.status_code == status.HTTP_403_FORBIDDEN

    activated = await client.post(f"{API}/{company.id}/activate", headers=auth_headers(root))
    assert activated.json()["is_active"] is True

async def test_delete_company_removes_everything(client: AsyncClient, db, seed, gateway, auth_headers):
    root = await seed.user(role="superadmin")
    company = await seed.company(plan=await seed.plan())
    await seed.user(company)
    session = await seed.default_session(company)
    await seed.group(session, "120363100@g.us")
    await gateway.connect(session)

    response = await client.delete(f"{API}/{company.id}", headers=auth_headers(root))

    assert response.status_code == status.HTTP_200_OK
    assert gateway.clients[str(session.id)].stopped
    assert not whatsapp_manager.is_ready(str(session.id))
    assert await CompanyRepository(db).get_by_id(company.id) is None
    assert await UserRepository(db).count_by_company(company.id) == 0
    assert await WhatsappSessionRepository(db).count_by_company(company.id) == 0
    assert await WhatsappGroupRepository(db).count_by_company(company.id) == 0
    assert await SubscriptionRepository(db).get_by_company(company.id) is None
    assert await InvoiceRepository(db).list_by_company(company.id) == []

async def test_force_disconnect_any_session(client: AsyncClient, db, seed, gateway, auth_headers):
    root = await seed.user(role="superadmin")
    session = await seed.default_session(await seed.company())
    await gateway.connect(session)

    response = await client.post(f"{API}/sessions/{session.id}/disconnect", headers=auth_headers(root))

    assert response.status_code == status.HTTP_200_OK
    assert not whatsapp_manager.is_ready(str(session.id))
    assert (await WhatsappSessionRepository(db).get_by_id(session.id)).status == "disconnected"

    missing = await client.post(f"{API}/sessions/000000000000000000000000/disconnect", headers=auth_headers(root))
    assert missing.status_code == status.HTTP_404_NOT_FOUND
