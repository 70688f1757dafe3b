# tests/modules/campaigns/test_campaigns_api.py
from datetime import timedelta

import pytest
from fastapi import status
from httpx import AsyncClient

from disparador.core.dates import utcnow
from disparador.modules.campaigns.repository import CampaignRepository
from disparador.modules.whatsapp.repository import (
    LinkClickRepository, MessageSendRepository, WhatsappGroupRepository,
)

pytestmark = pytest.mark.asyncio

API = "/api/v1/campaigns"

async def setup_company(seed, plan=None):
    company = await seed.company(plan=plan)
    user = await seed.user(company)
    session = await seed.default_session(company)
    group = await seed.group(session, "120363001@g.us", name="Ofertas")
    return company, user, session, group

async def test_create_draft_resolves_groups(client: AsyncClient, db, seed, enqueued, auth_headers):
    """Refs desconhecidos viram grupos provisórios da sessão padrão."""
    company, user, session, group = await setup_company(seed)

    response = await client.post(API, data={
        "title": "Semana do cliente",
        "message_text": "Descontos de até 50%",
        "group_ids": f"{group.id}, 120363999@g.us",
        "link_url": "",
    }, headers=auth_headers(user))

    assert response.status_code == status.HTTP_201_CREATED
    data = response.json()
    assert data["status"] == "draft"
    assert data["link_url"] is None
    assert data["job_id"] is None
    assert data["targets"][0]["group"]["name"] == "Ofertas"
    placeholder = await WhatsappGroupRepository(db).get_by_wa_id(session.id, "120363999@g.us")
    assert placeholder.source == "manual"
    assert data["targets"][1]["group_id"] == str(placeholder.id)
    assert enqueued == []

async def test_create_send_now_enqueues(client: AsyncClient, seed, enqueued, auth_headers):
    company, user, session, group = await setup_company(seed)

    response = await client.post(API, data={
        "message_text": "Agora!", "group_ids": "120363001@g.us", "send_now": "true", "mention_all": "true",
    }, headers=auth_headers(user))

    data = response.json()
    assert data["status"] == "queued"
    assert data["mention_all"] is True
    assert data["job_id"] == "job-1"
    assert enqueued == [(data["id"], str(user.id))]

async def test_create_scheduled_campaign(client: AsyncClient, seed, enqueued, auth_headers):
    company, user, session, group = await setup_company(seed)
    when = (utcnow() + timedelta(days=1)).replace(microsecond=0)

    response = await client.post(API, data={
        "message_text": "Amanhã", "group_ids": str(group.id),
        "scheduled_at": when.isoformat() + "Z", "repeat_rule": "weekly",
    }, headers=auth_headers(user))

    data = response.json()
    assert data["status"] == "queued"
    assert data["repeat_rule"] == "weekly"
    assert data["scheduled_at"].startswith(when.isoformat())
    assert enqueued == []

async def test_create_with_image_upload(client: AsyncClient, seed, auth_headers):
    company, user, session, group = await setup_company(seed)

    response = await client.post(
        API,
        data={"message_text": "Com foto", "group_ids": str(group.id)},
        files={"image": ("banner promo.png", b"\x89PNG fake", "image/png")},
        headers=auth_headers(user),
    )

    image_path = response.json()["image_path"]
    assert image_path.startswith(f"uploads/{company.id}/campaign_")
    assert image_path.endswith("banner_promo.png")

async def test_create_validation_errors(client: AsyncClient, seed, auth_headers):
    company, user, session, group = await setup_company(seed)

    no_groups = await client.post(API, data={"message_text": "Oi", "group_ids": " , "}, headers=auth_headers(user))
    assert no_groups.status_code == status.HTTP_400_BAD_REQUEST
    assert no_groups.json()["detail"] == "Selecione ao menos 1 grupo"

    bad_link = await client.post(
        API, data={"message_text": "Oi", "group_ids": str(group.id), "link_url": "não é url"}, headers=auth_headers(user),
    )
    assert bad_link.status_code == status.HTTP_400_BAD_REQUEST
    assert bad_link.json()["detail"].startswith("Campo inválido: link_url")

async def test_groups_per_campaign_limit(client: AsyncClient, seed, auth_headers):
    plan = await seed.plan(limits={"connections": 1, "campaigns": 10, "users": 3, "groups": 50, "groups_per_campaign": 1})
    company, user, session, group = await setup_company(seed, plan=plan)

    response = await client.post(
        API, data={"message_text": "Oi", "group_ids": f"{group.id},120363002@g.us"}, headers=auth_headers(user),
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert "no máximo 1 grupo(s)" in response.json()["detail"]

async def test_limits_endpoint(client: AsyncClient, db, seed, auth_headers):
    plan = await seed.plan(limits={"connections": 1, "campaigns": 5, "users": 3, "groups": 40})
    company, user, session, group = await setup_company(seed, plan=plan)
    await CampaignRepository(db).create({
        "user_id": user.id, "company_id": company.id, "session_id": session.id, "message_text": "x",
        "status": "sent", "sent_at": utcnow(), "targets": [],
    })

    response = await client.get(f"{API}/limits", headers=auth_headers(user))
    assert response.json() == {"campaigns_per_day": {"used_today": 1, "limit": 5}, "groups_per_campaign": 40}

async def test_pause_resume_send_and_list(client: AsyncClient, db, seed, enqueued, auth_headers):
    company, user, session, group = await setup_company(seed)
    created = (await client.post(API, data={"message_text": "Oi", "group_ids": str(group.id)}, headers=auth_headers(user))).json()
    campaign_id = created["id"]

    await client.patch(f"{API}/{campaign_id}/pause", headers=auth_headers(user))
    assert (await CampaignRepository(db).get_by_id(campaign_id)).status == "paused"
    await client.patch(f"{API}/{campaign_id}/resume", headers=auth_headers(user))
    assert (await CampaignRepository(db).get_by_id(campaign_id)).status == "draft"

    sent = await client.post(f"{API}/{campaign_id}/send", headers=auth_headers(user))
    assert sent.status_code == status.HTTP_202_ACCEPTED
    assert sent.json()["job_id"] == "job-1"

    listed = await client.get(API, headers=auth_headers(user))
    assert [c["id"] for c in listed.json()] == [campaign_id]

async def test_campaigns_belong_to_their_user(client: AsyncClient, seed, auth_headers):
    company, owner, session, group = await setup_company(seed)
    intruder = await seed.user(company, role="user")
    created = (await client.post(API, data={"message_text": "Oi", "group_ids": str(group.id)}, headers=auth_headers(owner))).json()

    response = await client.delete(f"{API}/{created['id']}", headers=auth_headers(intruder))
    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json()["detail"] == "Campanha não encontrada"

async def test_delete_keeps_send_history(client: AsyncClient, db, seed, auth_headers):
    company, user, session, group = await setup_company(seed)
    first = (await client.post(API, data={"message_text": "A", "group_ids": str(group.id)}, headers=auth_headers(user))).json()
    await client.post(API, data={"message_text": "B", "group_ids": str(group.id)}, headers=auth_headers(user))
    send = await MessageSendRepository(db).create({
        "company_id": company.id, "group_id": group.id, "campaign_id": CampaignRepository._to_objectid(first["id"]),
        "message_text": "A", "status": "sent",
    })

    deleted = await client.delete(f"{API}/{first['id']}", headers=auth_headers(user))
    assert deleted.status_code == status.HTTP_200_OK
    assert (await MessageSendRepository(db).get_by_id(send.id)).campaign_id is None

    remaining = await client.delete(f"{API}/all", headers=auth_headers(user))
    assert remaining.json() == {"ok": True, "deleted": 1}

async def test_link_click_redirects_and_is_recorded(client: AsyncClient, db, seed):
    company, user, session, group = await setup_company(seed)
    send = await MessageSendRepository(db).create({
        "company_id": company.id, "group_id": group.id, "message_text": "Veja",
        "link_url": "https://loja.example.com/oferta", "status": "sent",
    })

    response = await client.get(f"/l/{send.id}", headers={"user-agent": "pytest"})
    assert response.status_code == status.HTTP_307_TEMPORARY_REDIRECT
    assert response.headers["location"] == "https://loja.example.com/oferta"
    clicks = await LinkClickRepository(db).list_by({"message_send_id": send.id})
    assert len(clicks) == 1 and clicks[0].user_agent == "pytest"

    missing = await client.get("/l/000000000000000000000000")
    assert missing.status_code == status.HTTP_404_NOT_FOUND
