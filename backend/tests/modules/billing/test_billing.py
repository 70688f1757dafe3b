# tests/modules/billing/test_billing.py
from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi import status
from httpx import AsyncClient

from disparador.core.dates import next_period_end, utcnow
from disparador.modules.billing.repository import InvoiceRepository, PlanRepository, SubscriptionRepository
from disparador.modules.billing.services import generate_monthly_invoices, mark_overdue_invoices
from disparador.services.mercadopago import PixOrder

pytestmark = pytest.mark.asyncio

# --- Planos ---
async def test_public_plans_hide_inactive_and_lifetime(client: AsyncClient, seed):
    await seed.plan("pro", price=99.9)
    await seed.plan("basico", price=49.9)
    await seed.plan("antigo", price=10, is_active=False)
    await seed.plan("vitalicio", price=0)

    response = await client.get("/api/v1/plans/public")

    assert [p["slug"] for p in response.json()] == ["basico", "pro"]

async def test_plan_crud_is_superadmin_only(client: AsyncClient, seed, auth_headers):
    admin = await seed.user(await seed.company())
    root = await seed.user(role="superadmin")

    denied = await client.post("/api/v1/plans", json={"name": "Pro", "slug": "pro", "price": 99}, headers=auth_headers(admin))
    assert denied.status_code == status.HTTP_403_FORBIDDEN

    created = await client.post(
        "/api/v1/plans", json={"name": "Pro", "slug": "pro", "price": 99, "limits": {"groups": 500}},
        headers=auth_headers(root),
    )
    assert created.status_code == status.HTTP_201_CREATED
    plan = created.json()
    assert plan["limits"] == {"connections": 1, "campaigns": 50, "users": 5, "groups": 500}

    duplicated = await client.post("/api/v1/plans", json={"name": "Pro 2", "slug": "pro", "price": 1}, headers=auth_headers(root))
    assert duplicated.status_code == status.HTTP_400_BAD_REQUEST
    assert duplicated.json()["detail"] == "Slug já existe"

    updated = await client.put(f"/api/v1/plans/{plan['id']}", json={"limits": {"users": 10}}, headers=auth_headers(root))
    assert updated.json()["limits"]["users"] == 10
    assert updated.json()["limits"]["groups"] == 500

    listed = await client.get("/api/v1/plans", headers=auth_headers(root))
    assert listed.json()[0]["subscription_count"] == 0

async def test_plan_price_is_rounded_to_cents(client: AsyncClient, db, seed, auth_headers):
    root = await seed.user(role="superadmin")

    created = await client.post(
        "/api/v1/plans", json={"name": "Plus", "slug": "plus", "price": 19.999}, headers=auth_headers(root),
    )

    assert created.status_code == status.HTTP_201_CREATED
    assert created.json()["price"] == 20.0
    stored = await PlanRepository(db).get_by_slug("plus")
    assert stored.price == Decimal("20.00")

    negative = await client.post(
        "/api/v1/plans", json={"name": "Neg", "slug": "neg", "price": -1}, headers=auth_headers(root),
    )
    assert negative.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    removed = await client.delete(f"/api/v1/plans/{plan['id']}", headers=auth_headers(root))
    assert removed.status_code == status.HTTP_200_OK

async def test_plan_in_use_cannot_be_deleted(client: AsyncClient, seed, auth_headers):
    plan = await seed.plan()
    await seed.company(plan=plan)
    root = await seed.user(role="superadmin")

    response = await client.delete(f"/api/v1/plans/{plan.id}", headers=auth_headers(root))

    assert response.status_code == status.HTTP_400_BAD_REQUEST

# --- Assinaturas ---
async def test_assign_plan_starts_new_period(client: AsyncClient, db, seed, auth_headers):
    company = await seed.company()
    plan = await seed.plan("pro", price=99.9)
    root = await seed.user(role="superadmin")

    response = await client.put(
        f"/api/v1/subscriptions/company/{company.id}", json={"plan_id": str(plan.id)}, headers=auth_headers(root),
    )

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["plan"]["slug"] == "pro"
    assert data["status"] == "active"
    assert 1 <= data["billing_day"] <= 28
    subscription = await SubscriptionRepository(db).get_by_company(company.id)
    assert subscription.current_period_end == next_period_end(subscription.current_period_start, subscription.billing_day)

async def test_change_cycle_validates_day(client: AsyncClient, seed, auth_headers):
    company = await seed.company(plan=await seed.plan())
    root = await seed.user(role="superadmin")

    invalid = await client.put(
        f"/api/v1/subscriptions/company/{company.id}/cycle", json={"billing_day": 31}, headers=auth_headers(root),
    )
    assert invalid.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    valid = await client.put(
        f"/api/v1/subscriptions/company/{company.id}/cycle", json={"billing_day": 10}, headers=auth_headers(root),
    )
    assert valid.json()["billing_day"] == 10

async def test_settle_pays_oldest_invoice_and_advances(client: AsyncClient, db, seed, auth_headers):
    plan = await seed.plan(price=49.9)
    company = await seed.company(plan=plan)
    root = await seed.user(role="superadmin")
    subscription = await SubscriptionRepository(db).get_by_company(company.id)
    invoices = InvoiceRepository(db)
    old = await invoices.create({
        "company_id": company.id, "subscription_id": subscription.id, "amount": 49.9,
        "status": "overdue", "due_date": utcnow() - timedelta(days=10),
    })

    response = await client.post(f"/api/v1/subscriptions/company/{company.id}/settle", headers=auth_headers(root))

    assert response.status_code == status.HTTP_200_OK
    paid = await invoices.get_by_id(old.id)
    assert paid.status == "paid"
    assert paid.mp_payment_id.startswith("manual-")
    updated = await SubscriptionRepository(db).get_by_company(company.id)
    assert updated.current_period_start == subscription.current_period_end
    pending = await invoices.list_by({"company_id": company.id, "status": "pending"})
    assert len(pending) == 1
    assert pending[0].due_date == updated.current_period_end

async def test_settle_without_subscription(client: AsyncClient, seed, auth_headers):
    company = await seed.company()
    root = await seed.user(role="superadmin")

    response = await client.post(f"/api/v1/subscriptions/company/{company.id}/settle", headers=auth_headers(root))

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"] == "Empresa sem assinatura"

# --- Faturas da empresa ---
async def test_upgrade_invoice_changes_plan_when_paid(client: AsyncClient, db, seed, auth_headers):
    basic = await seed.plan("basico", price=49.9)
    pro = await seed.plan("pro", price=99.9)
    company = await seed.company(plan=basic)
    admin = await seed.user(company)
    root = await seed.user(role="superadmin")

    options = await client.get("/api/v1/invoices/plans/upgrade", headers=auth_headers(admin))
    assert [p["slug"] for p in options.json()] == ["pro"]

    same = await client.post("/api/v1/invoices/upgrade", json={"plan_id": str(basic.id)}, headers=auth_headers(admin))
    assert same.json()["detail"] == "Você já está neste plano."

    created = await client.post("/api/v1/invoices/upgrade", json={"plan_id": str(pro.id)}, headers=auth_headers(admin))
    assert created.status_code == status.HTTP_201_CREATED
    invoice = created.json()
    assert invoice["amount"] == 99.9
    assert invoice["plan"]["slug"] == "pro"

    paid = await client.patch(f"/api/v1/admin/invoices/{invoice['id']}/mark-paid", headers=auth_headers(root))
    assert paid.json()["status"] == "paid"
    assert paid.json()["company"]["name"] == company.name
    subscription = await SubscriptionRepository(db).get_by_company(company.id)
    assert subscription.plan_id == pro.id

    again = await client.patch(f"/api/v1/admin/invoices/{invoice['id']}/mark-paid", headers=auth_headers(root))
    assert again.json()["detail"] == "Fatura já está paga"

    listed = await client.get("/api/v1/invoices", headers=auth_headers(admin))
    assert [i["id"] for i in listed.json()] == [invoice["id"]]

async def test_pay_invoice_with_pix(client: AsyncClient, db, seed, auth_headers, monkeypatch):
    company = await seed.company(plan=await seed.plan(), email="financeiro@loja.example.com")
    admin = await seed.user(company)
    invoice = await InvoiceRepository(db).create({
        "company_id": company.id, "amount": 49.9, "status": "pending", "due_date": utcnow(),
    })
    orders = []

    async def fake_create_pix_order(**kwargs):
        orders.append(kwargs)
        return PixOrder(payment_id="123456", qr_code="000201pix", qr_code_base64="data:image/png;base64,AAA",
                        expiration_minutes=30)

    monkeypatch.setattr("disparador.modules.billing.services.create_pix_order", fake_create_pix_order)

    response = await client.post(f"/api/v1/invoices/{invoice.id}/pay", headers=auth_headers(admin))

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {
        "qr_code": "000201pix", "qr_code_base64": "data:image/png;base64,AAA", "expiration_minutes": 30, "amount": 49.9,
    }
    assert orders[0]["payer_email"] == "financeiro@loja.example.com"
    assert orders[0]["external_reference"] == str(invoice.id)
    assert (await InvoiceRepository(db).get_by_id(invoice.id)).mp_payment_id == "123456"

async def test_pay_invoice_of_another_company(client: AsyncClient, db, seed, auth_headers):
    other = await seed.company(name="Outra Loja")
    admin = await seed.user(await seed.company())
    invoice = await InvoiceRepository(db).create({
        "company_id": other.id, "amount": 10.0, "status": "pending", "due_date": utcnow(),
    })

    response = await client.post(f"/api/v1/invoices/{invoice.id}/pay", headers=auth_headers(admin))

    assert response.status_code == status.HTTP_404_NOT_FOUND

async def test_admin_invoice_filters(client: AsyncClient, db, seed, auth_headers):
    first = await seed.company(name="Primeira")
    second = await seed.company(name="Segunda")
    root = await seed.user(role="superadmin")
    invoices = InvoiceRepository(db)
    await invoices.create({"company_id": first.id, "amount": 1.0, "status": "paid", "due_date": utcnow()})
    await invoices.create({"company_id": second.id, "amount": 2.0, "status": "pending", "due_date": utcnow()})

    by_status = await client.get("/api/v1/admin/invoices", params={"status": "pending"}, headers=auth_headers(root))
    assert [i["amount"] for i in by_status.json()] == [2.0]
    by_company = await client.get("/api/v1/admin/invoices", params={"company_id": str(first.id)}, headers=auth_headers(root))
    assert [i["company"]["name"] for i in by_company.json()] == ["Primeira"]
    invalid = await client.get("/api/v1/admin/invoices", params={"company_id": "x"}, headers=auth_headers(root))
    assert invalid.json() == []

# --- Rotinas ---
async def test_generate_monthly_invoices(db, seed):
    paid_plan = await seed.plan("basico", price=49.9)
    free_plan = await seed.plan("gratis", price=0)
    billed = await seed.company(name="Paga", plan=paid_plan)
    await seed.company(name="Gratis", plan=free_plan)

    assert await generate_monthly_invoices(db) == 1
    assert await generate_monthly_invoices(db) == 0

    invoices = await InvoiceRepository(db).list_by_company(billed.id)
    assert len(invoices) == 1
    assert invoices[0].amount == Decimal("49.90")
    assert invoices[0].due_date.day == 5

async def test_mark_overdue_invoices(db, seed):
    company = await seed.company()
    invoices = InvoiceRepository(db)
    late = await invoices.create({
        "company_id": company.id, "amount": 1.0, "status": "pending", "due_date": utcnow() - timedelta(days=1),
    })
    upcoming = await invoices.create({
        "company_id": company.id, "amount": 1.0, "status": "pending", "due_date": utcnow() + timedelta(days=1),
    })

    assert await mark_overdue_invoices(db) == 1
    assert (await invoices.get_by_id(late.id)).status == "overdue"
    assert (await invoices.get_by_id(upcoming.id)).status == "pending"
