# tests/modules/limits/test_plan_limits.py
import pytest
from bson import ObjectId

from disparador.core.dates import utcnow
from disparador.core.exceptions import DailyLimitError, PlanLimitError
from disparador.modules.billing.models import PlanInDB
from disparador.modules.campaigns.repository import CampaignRepository
from disparador.modules.limits.services import UNLIMITED, PlanLimitsService, limits_from_plan
from disparador.modules.whatsapp.repository import MessageSendRepository

pytestmark = pytest.mark.asyncio

async def test_limits_from_plan_fallbacks():
    assert limits_from_plan(None) == {
        "connections": 1, "campaigns": 50, "users": 5, "groups": 200, "groups_per_campaign": 200,
    }
    plan = PlanInDB(name="Pro", slug="pro", limits={"groups": 80})
    assert limits_from_plan(plan)["groups_per_campaign"] == 80
    plan.limits["groups_per_campaign"] = 10
    assert limits_from_plan(plan)["groups_per_campaign"] == 10

async def test_negative_or_null_limit_is_unlimited(db, seed):
    plan = await seed.plan(limits={"connections": -1, "campaigns": 10, "users": None, "groups": -1})
    company = await seed.company(plan=plan)
    await seed.session(company, name="Extra")

    limits = limits_from_plan(plan)
    assert (limits["connections"], limits["users"], limits["groups"]) == (UNLIMITED, UNLIMITED, UNLIMITED)
    assert limits["groups_per_campaign"] == UNLIMITED
    result = await PlanLimitsService(db).check_limit(company.id, "connections")
    assert result.allowed and result.limit == UNLIMITED

async def test_company_without_plan_is_unlimited(db, seed):
    company = await seed.company()

    result = await PlanLimitsService(db).check_limit(company.id, "connections")

    assert result.allowed and result.limit == UNLIMITED

async def test_connection_limit_counts_sessions(db, seed):
    plan = await seed.plan(limits={"connections": 2, "campaigns": 10, "users": 3, "groups": 50})
    company = await seed.company(plan=plan)
    service = PlanLimitsService(db)

    assert (await service.check_limit(company.id, "connections")).used == 1
    await seed.session(company)

    result = await service.check_limit(company.id, "connections")
    assert not result.allowed
    assert result.message == "Limite do plano atingido: Conexões WhatsApp (2/2). Faça upgrade para adicionar mais."
    with pytest.raises(PlanLimitError):
        await service.assert_within_limit(company.id, "connections")

async def test_daily_sends_count_campaigns_and_direct_sends(db, seed):
    plan = await seed.plan(limits={"connections": 1, "campaigns": 3, "users": 3, "groups": 50})
    company = await seed.company(plan=plan)
    session = await seed.default_session(company)
    group = await seed.group(session, "120363300@g.us")
    user = await seed.user(company)
    now = utcnow()
    await CampaignRepository(db).create({
        "user_id": user.id, "company_id": company.id, "session_id": session.id, "message_text": "x",
        "status": "sent", "sent_at": now, "targets": [],
    })
    sends = MessageSendRepository(db)
    await sends.create({"company_id": company.id, "group_id": group.id, "message_text": "y", "status": "sent", "sent_at": now})
    # Envio de campanha não conta duas vezes
    await sends.create({
        "company_id": company.id, "group_id": group.id, "campaign_id": ObjectId(), "message_text": "z",
        "status": "sent", "sent_at": now,
    })
    service = PlanLimitsService(db)

    daily = await service.check_group_sends_per_day(company.id)
    assert (daily.used_today, daily.limit, daily.allowed) == (2, 3, True)

    await service.assert_group_sends_per_day(company.id, extra_sends=1)
    with pytest.raises(DailyLimitError):
        await service.assert_group_sends_per_day(company.id, extra_sends=2)

async def test_groups_per_campaign(db, seed):
    plan = await seed.plan(limits={"groups": 50, "groups_per_campaign": 5})
    company = await seed.company(plan=plan)
    service = PlanLimitsService(db)

    await service.assert_campaign_groups_limit(company.id, 5)
    with pytest.raises(PlanLimitError, match="no máximo 5 grupo"):
        await service.assert_campaign_groups_limit(company.id, 6)
