# tests/modules/auth/test_auth_api.py
from datetime import timedelta

import pytest
from fastapi import status
from httpx import AsyncClient

from disparador.modules.auth.services import slugify_company_name
from disparador.modules.billing.repository import InvoiceRepository, SubscriptionRepository
from disparador.modules.companies.repository import CompanyRepository
from disparador.modules.settings.services import SettingsService
from disparador.modules.whatsapp.repository import WhatsappSessionRepository

pytestmark = pytest.mark.asyncio

API = "/api/v1/auth"

async def test_slugify_company_name():
    assert slugify_company_name("Loja São João") == "loja-sao-joao"
    assert slugify_company_name("  Ofertas & Cia  ") == "ofertas-cia"
    assert slugify_company_name("!!!") == ""

async def test_register_creates_company_subscription_and_default_session(client: AsyncClient, db, seed):
    """Cadastro cria empresa, admin, assinatura e a conexão padrão."""
    plan = await seed.plan()
    payload = {
        "email": "Dona@Loja.com", "password": "secret123", "name": "Dona",
        "company_name": "Loja da Dona", "plan_id": str(plan.id),
    }
    response = await client.post(f"{API}/register", json=payload)
    assert response.status_code == status.HTTP_201_CREATED
    data = response.json()
    assert data["email"] == "dona@loja.com"
    assert data["company"]["name"] == "Loja da Dona"

    company = await CompanyRepository(db).get_by_slug("loja-da-dona")
    assert company is not None
    subscription = await SubscriptionRepository(db).get_by_company(company.id)
    assert subscription.plan_id == plan.id
    assert subscription.trial_ends_at is None
    session = await WhatsappSessionRepository(db).get_default(company.id)
    assert session.is_default is True
    assert await InvoiceRepository(db).list_by_company(company.id) == []

async def test_register_with_trial_creates_pending_invoice(client: AsyncClient, db, seed):
    plan = await seed.plan(price=79.0)
    await SettingsService(db).set_setting("trial_days", "7")

    response = await client.post(f"{API}/register", json={
        "email": "trial@loja.com", "password": "secret123", "company_name": "Loja Trial", "plan_id": str(plan.id),
    })
    assert response.status_code == status.HTTP_201_CREATED

    company = await CompanyRepository(db).get_by_slug("loja-trial")
    subscription = await SubscriptionRepository(db).get_by_company(company.id)
    invoices = await InvoiceRepository(db).list_by_company(company.id)
    assert subscription.trial_ends_at is not None
    assert len(invoices) == 1
    assert invoices[0].status == "pending"
    assert invoices[0].amount == 79.0
    assert invoices[0].due_date - subscription.trial_ends_at == timedelta(days=2)

async def test_register_rejects_duplicates_and_inactive_plan(client: AsyncClient, seed):
    plan = await seed.plan()
    inactive = await seed.plan(slug="antigo", is_active=False)
    await seed.company(name="Loja Existente", slug="loja-existente")
    await seed.user(email="taken@loja.com")

    base = {"password": "secret123", "plan_id": str(plan.id)}
    taken = await client.post(f"{API}/register", json={**base, "email": "taken@loja.com", "company_name": "Nova"})
    assert taken.status_code == status.HTTP_400_BAD_REQUEST
    assert taken.json()["detail"] == "Este e-mail já está cadastrado"

    same_slug = await client.post(f"{API}/register", json={**base, "email": "a@loja.com", "company_name": "Loja Existente"})
    assert same_slug.status_code == status.HTTP_400_BAD_REQUEST

    bad_plan = await client.post(f"{API}/register", json={
        **base, "plan_id": str(inactive.id), "email": "b@loja.com", "company_name": "Outra Loja",
    })
    assert bad_plan.json()["detail"] == "Plano inválido ou inativo"

async def test_login_returns_token_and_company(client: AsyncClient, seed):
    company = await seed.company(name="Loja Login")
    await seed.user(company, email="admin@login.com", password="secret123")

    response = await client.post(f"{API}/login", json={"email": "ADMIN@login.com", "password": "secret123"})
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["token_type"] == "bearer"
    assert data["user"]["company"]["slug"] == "loja-login"

    me = await client.get(f"{API}/me", headers={"Authorization": f"Bearer {data['access_token']}"})
    assert me.status_code == status.HTTP_200_OK
    assert me.json()["email"] == "admin@login.com"
    assert me.json()["subscription"] is None

async def test_login_wrong_password_and_disabled_company(client: AsyncClient, seed):
    active = await seed.company(name="Ativa")
    disabled = await seed.company(name="Desativada", is_active=False)
    await seed.user(active, email="ok@loja.com")
    await seed.user(disabled, email="off@loja.com")

    wrong = await client.post(f"{API}/login", json={"email": "ok@loja.com", "password": "errada"})
    assert wrong.status_code == status.HTTP_401_UNAUTHORIZED
    assert wrong.json()["detail"] == "Credenciais inválidas"

    blocked = await client.post(f"{API}/login", json={"email": "off@loja.com", "password": "secret123"})
    assert blocked.status_code == status.HTTP_401_UNAUTHORIZED

async def test_oauth2_token_form(client: AsyncClient, seed):
    await seed.user(await seed.company(), email="form@loja.com")
    response = await client.post(f"{API}/token", data={"username": "form@loja.com", "password": "secret123"})
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["access_token"]

async def test_bootstrap_admin_only_once(client: AsyncClient, db):
    first = await client.post(f"{API}/bootstrap-admin", json={"email": "root@sistema.com", "password": "secret123"})
    assert first.status_code == status.HTTP_201_CREATED
    assert first.json()["role"] == "superadmin"

    system_company = await CompanyRepository(db).get_system_company()
    assert system_company is not None
    subscription = await SubscriptionRepository(db).get_by_company(system_company.id)
    assert subscription.current_period_end.year == 2093

    again = await client.post(f"{API}/bootstrap-admin", json={"email": "other@sistema.com", "password": "secret123"})
    assert again.status_code == status.HTTP_400_BAD_REQUEST
    assert again.json()["detail"] == "Bootstrap já foi executado"

async def test_superadmin_without_company_gets_system_company(client: AsyncClient, db, seed):
    await client.post(f"{API}/bootstrap-admin", json={"email": "root@sistema.com", "password": "secret123"})
    loose = await seed.user(role="superadmin", email="loose@sistema.com")
    assert loose.company_id is None

    response = await client.post(f"{API}/login", json={"email": "loose@sistema.com", "password": "secret123"})
    system_company = await CompanyRepository(db).get_system_company()
    assert response.json()["user"]["company_id"] == str(system_company.id)

async def test_me_rejects_invalid_token(client: AsyncClient):
    response = await client.get(f"{API}/me", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == status.HTTP_401_UNAUTHORIZED

async def test_me_for_disabled_company_is_forbidden(client: AsyncClient, seed, auth_headers):
    user = await seed.user(await seed.company(is_active=False))
    response = await client.get(f"{API}/me", headers=auth_headers(user))
    assert response.status_code == status.HTTP_403_FORBIDDEN

async def test_update_me(client: AsyncClient, seed, auth_headers):
    company = await seed.company()
    user = await seed.user(company, email="me@loja.com")
    await seed.user(company, email="other@loja.com")

    taken = await client.put(f"{API}/me", json={"email": "other@loja.com"}, headers=auth_headers(user))
    assert taken.status_code == status.HTTP_400_BAD_REQUEST

    response = await client.put(f"{API}/me", json={"name": "Novo Nome", "password": "nova-senha"}, headers=auth_headers(user))
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["name"] == "Novo Nome"

    login = await client.post(f"{API}/login", json={"email": "me@loja.com", "password": "nova-senha"})
    assert login.status_code == status.HTTP_200_OK
