# tests/modules/campaigns/test_campaign_sender.py
import asyncio
from datetime import timedelta
from pathlib import Path

import pytest

from disparador.core.config import settings
from disparador.core.dates import utcnow
from disparador.core.exceptions import DailyLimitError
from disparador.modules.campaigns.repository import CampaignRepository
from disparador.modules.campaigns.sender import DAILY_LIMIT_FAILURE, CampaignSender, failure_message
from disparador.modules.catalog.repository import MessageTemplateRepository, ProductRepository
from disparador.modules.settings.models import DispatchSettingsUpdateAPI
from disparador.modules.settings.services import SettingsService
from disparador.modules.whatsapp.repository import MessageSendRepository
from disparador.modules.whatsapp import services as whatsapp_services
from disparador.modules.whatsapp.services import MessageSendService

pytestmark = pytest.mark.asyncio

async def make_campaign(db, seed, gateway, group_count=2, connect=True, plan=None, **fields):
    company = await seed.company(plan=plan)
    user = await seed.user(company)
    session = await seed.default_session(company)
    groups = [await seed.group(session, f"12036300{i}@g.us", name=f"Grupo {i}") for i in range(group_count)]
    if connect:
        await gateway.connect(session)
    campaign = await CampaignRepository(db).create({
        "user_id": user.id,
        "company_id": company.id,
        "session_id": session.id,
        "title": "Black Friday",
        "message_text": fields.pop("message_text", "Ofertas imperdíveis"),
        "status": fields.pop("status", "draft"),
        "targets": [{"group_id": g.id} for g in groups],
        **fields,
    })
    return company, user, campaign

async def test_sends_to_every_target_and_marks_sent(db, seed, gateway):
    company, user, campaign = await make_campaign(db, seed, gateway, link_url="https://loja.example.com/bf")

    result = await CampaignSender(db).send_campaign(str(campaign.id), str(user.id))

    assert result.status == "sent" and result.sent_at is not None
    assert [m["to"] for m in gateway.sent] == ["120363000@g.us", "120363001@g.us"]
    sends = await MessageSendRepository(db).list_by({"campaign_id": campaign.id})
    assert len(sends) == 2
    assert all(s.status == "sent" and s.link_url == "https://loja.example.com/bf" for s in sends)

async def test_link_is_rewritten_to_click_tracker(db, seed, gateway, monkeypatch):
    monkeypatch.setattr(settings, "PUBLIC_BASE_URL", "https://api.example.com/")
    company, user, campaign = await make_campaign(
        db, seed, gateway, group_count=1,
        message_text="Confira https://loja.example.com/bf", link_url="https://loja.example.com/bf",
    )

    await CampaignSender(db).send_campaign(str(campaign.id), str(user.id))

    send = (await MessageSendRepository(db).list_by({"campaign_id": campaign.id}))[0]
    tracked = f"https://api.example.com/l/{send.id}"
    assert gateway.sent[0]["text"] == f"Confira {tracked}"
    assert send.message_text == f"Confira {tracked}"
    assert send.link_url == "https://loja.example.com/bf"

async def test_tracked_link_is_appended_when_missing_from_text():
    assert MessageSendService.with_tracked_link("Oferta", "https://loja.example.com/x", "https://api.example.com/l/1") == (
        "Oferta\n\nhttps://api.example.com/l/1"
    )

async def test_template_with_product_generates_each_message(db, seed, gateway):
    company, user, campaign = await make_campaign(db, seed, gateway)
    product = await ProductRepository(db).create({
        "user_id": user.id, "company_id": company.id, "title": "Fone Bluetooth", "price": "R$ 89,90",
        "link": "https://loja.example.com/fone",
    })
    template = await MessageTemplateRepository(db).create({
        "user_id": user.id, "name": "Simples", "template_type": "custom", "body": "{titulo} por {preco}",
    })
    await CampaignRepository(db).update(campaign.id, {"product_id": product.id, "template_id": template.id})

    await CampaignSender(db).send_campaign(campaign.id, user.id)

    assert {m["text"] for m in gateway.sent} == {"Fone Bluetooth por R$ 89,90"}
    sends = await MessageSendRepository(db).list_by({"campaign_id": campaign.id})
    assert {s.link_url for s in sends} == {"https://loja.example.com/fone"}

async def test_image_campaign_sends_media(db, seed, gateway):
    company, user, campaign = await make_campaign(db, seed, gateway, group_count=1)
    folder = Path(settings.UPLOADS_DIR) / str(company.id)
    folder.mkdir(parents=True, exist_ok=True)
    (folder / "banner.png").write_bytes(b"\x89PNG fake")
    await CampaignRepository(db).update(campaign.id, {"image_path": f"uploads/{company.id}/banner.png"})

    await CampaignSender(db).send_campaign(campaign.id, user.id)

    assert gateway.sent[0]["kind"] == "image"
    assert gateway.sent[0]["mimetype"] == "image/png"
    assert gateway.sent[0]["text"] == "Ofertas imperdíveis"

async def test_media_file_is_read_off_the_event_loop(db, seed, gateway, monkeypatch):
    company, user, campaign = await make_campaign(db, seed, gateway, group_count=1)
    folder = Path(settings.UPLOADS_DIR) / str(company.id)
    folder.mkdir(parents=True, exist_ok=True)
    (folder / "audio.ogg").write_bytes(b"OggS fake")
    await CampaignRepository(db).update(campaign.id, {"image_path": f"uploads/{company.id}/audio.ogg"})
    offloaded = []
    real_to_thread = asyncio.to_thread

    async def to_thread(func, *args, **kwargs):
        offloaded.append(func)
        return await real_to_thread(func, *args, **kwargs)

    monkeypatch.setattr(whatsapp_services.asyncio, "to_thread", to_thread)

    await CampaignSender(db).send_campaign(campaign.id, user.id)

    assert "read_bytes" in [getattr(f, "__name__", "") for f in offloaded]
    assert gateway.sent[0]["kind"] == "voice"

async def test_pauses_between_batches(db, seed, gateway, monkeypatch):
    pauses = []

    async def record(seconds):
        pauses.append(seconds)

    monkeypatch.setattr(CampaignSender, "pause", staticmethod(record))
    company, user, campaign = await make_campaign(db, seed, gateway, group_count=3)
    await SettingsService(db).set_dispatch_settings(company.id, DispatchSettingsUpdateAPI(
        delay_min_sec=1, delay_max_sec=2, batch_size=2, pause_between_batches_sec=45,
    ))

    await CampaignSender(db).send_campaign(campaign.id, user.id)

    # um delay antes de cada grupo e uma pausa após o primeiro lote
    assert len(pauses) == 4
    assert pauses[2] == 45
    assert all(1 <= p <= 2 for i, p in enumerate(pauses) if i != 2)

async def test_failure_propagates_and_is_recorded(db, seed, gateway):
    company, user, campaign = await make_campaign(db, seed, gateway, connect=False)
    sender = CampaignSender(db)

    with pytest.raises(Exception) as exc:
        await sender.send_campaign(campaign.id, user.id)
    await sender.mark_failed(campaign.id, exc.value)

    stored = await CampaignRepository(db).get_by_id(campaign.id)
    assert stored.status == "failed"
    assert "não está conectado" in stored.error

async def test_scheduled_daily_campaign_is_rescheduled(db, seed, gateway):
    scheduled_at = utcnow() - timedelta(minutes=5)
    company, user, campaign = await make_campaign(
        db, seed, gateway, status="queued", scheduled_at=scheduled_at, repeat_rule="daily",
    )
    future_campaign = await CampaignRepository(db).create({
        "user_id": user.id, "company_id": company.id, "session_id": campaign.session_id, "message_text": "depois",
        "status": "queued", "scheduled_at": utcnow() + timedelta(hours=2), "targets": [],
    })

    processed = await CampaignSender(db).process_scheduled()

    assert processed == 1
    stored = await CampaignRepository(db).get_by_id(campaign.id)
    assert stored.status == "queued"
    assert abs((stored.scheduled_at - scheduled_at) - timedelta(days=1)) < timedelta(seconds=1)
    assert (await CampaignRepository(db).get_by_id(future_campaign.id)).status == "queued"

async def test_scheduled_campaign_over_daily_limit_fails(db, seed, gateway):
    plan = await seed.plan(limits={"connections": 1, "campaigns": 1, "users": 3, "groups": 50})
    company, user, campaign = await make_campaign(
        db, seed, gateway, plan=plan, status="queued", scheduled_at=utcnow() - timedelta(minutes=1),
    )
    await CampaignRepository(db).create({
        "user_id": user.id, "company_id": company.id, "session_id": campaign.session_id, "message_text": "já enviada",
        "status": "sent", "sent_at": utcnow(), "targets": [],
    })

    await CampaignSender(db).process_scheduled()

    stored = await CampaignRepository(db).get_by_id(campaign.id)
    assert stored.status == "failed"
    assert stored.error == DAILY_LIMIT_FAILURE
    assert gateway.sent == []

async def test_failure_message():
    assert failure_message(DailyLimitError("x")) == DAILY_LIMIT_FAILURE
    assert failure_message(RuntimeError("socket closed")) == "socket closed"
    assert failure_message(RuntimeError()) == "Falha ao enviar. Reagende ou tente novamente."
