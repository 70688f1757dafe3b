# disparador/modules/billing/services.py
from decimal import Decimal
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import Depends
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase

from disparador.core.database import get_database
from disparador.core.dates import add_months, clamp_billing_day, end_of_day, next_period_end, now_ms, utcnow
from disparador.core.exceptions import AppError, NotFoundError
from disparador.modules.companies.repository import CompanyRepository
from disparador.modules.settings.services import SettingsService
from disparador.modules.users.models import UserInDB
from disparador.services.mercadopago import create_pix_order
from disparador.websocket.connection_manager import manager as ws_manager
from .models import (
    DEFAULT_PLAN_LIMITS, InvoiceInDB, PixPaymentAPI, PlanCreateAPI, PlanInDB, PlanUpdateAPI, SubscriptionInDB,
)
from .repository import InvoiceRepository, PlanRepository, SubscriptionRepository

PLAN_NOT_FOUND_MESSAGE = "Plano não encontrado"
COMPANY_NOT_FOUND_MESSAGE = "Empresa não encontrada"
INVOICE_NOT_FOUND_MESSAGE = "Fatura não encontrada"
MONTHLY_DUE_DAY = 5

class PlanService:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.repo = PlanRepository(db)
        self.subscription_repo = SubscriptionRepository(db)
        self.log = logger.bind(service="PlanService")

    async def list_public(self) -> List[PlanInDB]:
        return await self.repo.list_for_sale()

    async def list_with_usage(self) -> List[Dict[str, Any]]:
        plans = await self.repo.list_by(sort=[("price", 1)])
        result = []
        for plan in plans:
            data = plan.model_dump()
            data["subscription_count"] = await self.subscription_repo.count_by_plan(plan.id)
            result.append(data)
        return result

    async def get_plan(self, plan_id: str) -> PlanInDB:
        plan = await self.repo.get_by_id(plan_id)
        if not plan:
            raise NotFoundError(PLAN_NOT_FOUND_MESSAGE)
        return plan

    async def create_plan(self, data: PlanCreateAPI) -> PlanInDB:
        if await self.repo.get_by_slug(data.slug):
            raise AppError("Slug já existe")
        limits = dict(DEFAULT_PLAN_LIMITS)
        if data.limits:
            limits.update(data.limits.model_dump(exclude_none=True))
        plan = await self.repo.create({
            "name": data.name, "slug": data.slug, "price": data.price, "limits": limits, "is_active": data.is_active,
        })
        self.log.info(f"Plan '{plan.slug}' created (price={plan.price})")
        return plan

    async def update_plan(self, plan_id: str, data: PlanUpdateAPI) -> PlanInDB:
        plan = await self.get_plan(plan_id)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        if "slug" in changes and changes["slug"] != plan.slug and await self.repo.get_by_slug(changes["slug"]):
            raise AppError("Slug já existe")
        if "limits" in changes:
            changes["limits"] = {**plan.limits, **changes["limits"]}
        return await self.repo.update(plan.id, changes)

    async def delete_plan(self, plan_id: str) -> None:
        plan = await self.get_plan(plan_id)
        if await self.subscription_repo.count_by_plan(plan.id) > 0:
            raise AppError("Plano em uso por assinaturas. Desative-o em vez de excluir.")
        await self.repo.delete(plan.id)

class SubscriptionService:
    """Assinaturas das empresas (superadmin)."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.repo = SubscriptionRepository(db)
        self.plan_repo = PlanRepository(db)
        self.invoice_repo = InvoiceRepository(db)
        self.company_repo = CompanyRepository(db)
        self.log = logger.bind(service="SubscriptionService")

    async def with_plan(self, subscription: SubscriptionInDB) -> Dict[str, Any]:
        data = subscription.model_dump()
        plan = await self.plan_repo.get_by_id(subscription.plan_id)
        data["plan"] = plan.model_dump() if plan else None
        return data

    async def _require_company(self, company_id: str) -> ObjectId:
        company = await self.company_repo.get_by_id(company_id)
        if not company:
            raise NotFoundError(COMPANY_NOT_FOUND_MESSAGE)
        return company.id

    async def _require_subscription(self, company_id: ObjectId) -> SubscriptionInDB:
        subscription = await self.repo.get_by_company(company_id)
        if not subscription:
            raise AppError("Empresa sem assinatura")
        return subscription

    async def assign_plan(self, company_id: str | ObjectId, plan_id: str) -> SubscriptionInDB:
        """Ativa o plano: ciclo no dia de hoje (até 28) e período de um mês a partir de agora."""
        plan = await self.plan_repo.get_by_id(plan_id)
        if not plan:
            raise NotFoundError(PLAN_NOT_FOUND_MESSAGE)
        company_obj_id = await self._require_company(company_id)

        now = utcnow()
        billing_day = clamp_billing_day(now.day)
        changes = {
            "plan_id": plan.id,
            "status": "active",
            "billing_day": billing_day,
            "current_period_start": now,
            "current_period_end": next_period_end(now, billing_day),
            "trial_ends_at": None,
        }
        existing = await self.repo.get_by_company(company_obj_id)
        if existing:
            subscription = await self.repo.update(existing.id, changes)
        else:
            subscription = await self.repo.create({"company_id": company_obj_id, **changes})
        self.log.info(f"Company {company_obj_id} assigned to plan '{plan.slug}'")
        return subscription

    async def change_cycle(self, company_id: str, billing_day: int) -> SubscriptionInDB:
        subscription = await self._require_subscription(await self._require_company(company_id))
        return await self.repo.update(subscription.id, {"billing_day": billing_day})

    async def settle(self, company_id: str) -> SubscriptionInDB:
        """Baixa manual: quita a fatura em aberto mais antiga, avança o período e gera a próxima fatura."""
        company_obj_id = await self._require_company(company_id)
        subscription = await self._require_subscription(company_obj_id)
        plan = await self.plan_repo.get_by_id(subscription.plan_id)

        open_invoice = await self.invoice_repo.oldest_open(company_obj_id)
        if open_invoice:
            await self.invoice_repo.update(open_invoice.id, {
                "status": "paid", "paid_at": utcnow(), "mp_payment_id": f"manual-{now_ms()}",
            })

        new_end = next_period_end(subscription.current_period_end, subscription.billing_day)
        updated = await self.repo.update(subscription.id, {
            "current_period_start": subscription.current_period_end,
            "current_period_end": new_end,
        })
        await self.invoice_repo.create({
            "company_id": company_obj_id,
            "subscription_id": subscription.id,
            "amount": plan.price if plan else Decimal("0.00"),
            "status": "pending",
            "due_date": new_end,
        })
        self.log.info(f"Manual settlement for company {company_obj_id}; period now ends {new_end.date()}")
        return updated

async def advance_after_payment(db: AsyncIOMotorDatabase, invoice: InvoiceInDB) -> None:
    """Fatura paga: aplica o upgrade (se houver) e avança o período da assinatura."""
    subscription_repo = SubscriptionRepository(db)
    subscription = None
    if invoice.subscription_id:
        subscription = await subscription_repo.get_by_id(invoice.subscription_id)
    if subscription is None:
        subscription = await subscription_repo.get_by_company(invoice.company_id)
    if subscription is None:
        return
    changes: Dict[str, Any] = {
        "current_period_start": subscription.current_period_end,
        "current_period_end": next_period_end(subscription.current_period_end, subscription.billing_day),
        "trial_ends_at": None,
        "status": "active",
    }
    if invoice.upgrade_plan_id:
        changes["plan_id"] = invoice.upgrade_plan_id
    await subscription_repo.update(subscription.id, changes)

class InvoiceService:
    """Faturas da empresa (lista, upgrade, PIX) e visão do superadmin."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.repo = InvoiceRepository(db)
        self.plan_repo = PlanRepository(db)
        self.subscription_repo = SubscriptionRepository(db)
        self.company_repo = CompanyRepository(db)
        self.settings = SettingsService(db)
        self.log = logger.bind(service="InvoiceService")

    async def _serialize(self, invoices: List[InvoiceInDB], with_company: bool = False) -> List[Dict[str, Any]]:
        plans: Dict[ObjectId, Optional[PlanInDB]] = {}
        companies: Dict[ObjectId, Any] = {}

        async def plan_for(plan_id: ObjectId) -> Optional[PlanInDB]:
            if plan_id not in plans:
                plans[plan_id] = await self.plan_repo.get_by_id(plan_id)
            return plans[plan_id]

        result = []
        for invoice in invoices:
            data = invoice.model_dump()
            plan = None
            if invoice.upgrade_plan_id:
                plan = await plan_for(invoice.upgrade_plan_id)
            elif invoice.subscription_id:
                subscription = await self.subscription_repo.get_by_id(invoice.subscription_id)
                plan = await plan_for(subscription.plan_id) if subscription else None
            data["plan"] = plan.model_dump() if plan else None
            if with_company:
                if invoice.company_id not in companies:
                    companies[invoice.company_id] = await self.company_repo.get_by_id(invoice.company_id)
                company = companies[invoice.company_id]
                data["company"] = company.model_dump(include={"id", "name", "slug", "email"}) if company else None
            result.append(data)
        return result

    async def list_for_company(self, company_id: Optional[ObjectId]) -> List[Dict[str, Any]]:
        if not company_id:
            return []
        return await self._serialize(await self.repo.list_by_company(company_id))

    async def upgrade_plans(self, company_id: Optional[ObjectId]) -> List[PlanInDB]:
        if not company_id:
            return []
        subscription = await self.subscription_repo.get_by_company(company_id)
        current_plan_id = subscription.plan_id if subscription else None
        return [plan for plan in await self.plan_repo.list_for_sale() if plan.id != current_plan_id]

    async def request_upgrade(self, company_id: Optional[ObjectId], plan_id: str) -> Dict[str, Any]:
        if not company_id:
            raise AppError("Usuário sem empresa")
        plan = await self.plan_repo.get_by_id(plan_id)
        if not plan or not plan.is_active:
            raise NotFoundError(PLAN_NOT_FOUND_MESSAGE)
        subscription = await self.subscription_repo.get_by_company(company_id)
        if not subscription:
            raise AppError("Empresa sem assinatura. Contate o suporte.")
        if subscription.plan_id == plan.id:
            raise AppError("Você já está neste plano.")

        invoice = await self.repo.create({
            "company_id": company_id,
            "subscription_id": subscription.id,
            "amount": plan.price,
            "status": "pending",
            "due_date": end_of_day(utcnow()),
            "upgrade_plan_id": plan.id,
        })
        self.log.info(f"Upgrade invoice {invoice.id} created for company {company_id} -> plan '{plan.slug}'")
        return (await self._serialize([invoice]))[0]

    async def pay_with_pix(self, company_id: Optional[ObjectId], user: UserInDB, invoice_id: str) -> PixPaymentAPI:
        if not company_id:
            raise AppError("Usuário sem empresa")
        company = await self.company_repo.get_by_id(company_id)
        invoice = await self.repo.get_scoped(invoice_id, company_id=company_id)
        if not company or not invoice or invoice.status not in ("pending", "overdue"):
            raise NotFoundError("Fatura não encontrada ou já paga")

        order = await create_pix_order(
            access_token=await self.settings.get_setting("mercadopago_access_token"),
            title=f"Fatura #{str(invoice.id)[-6:]} - {company.name}",
            amount=invoice.amount,
            external_reference=str(invoice.id),
            payer_email=company.email or user.email,
            payer_name=user.name or company.name,
            expiration_minutes=await self.settings.get_int_setting("pix_expiration_minutes", 30),
        )
        await self.repo.update(invoice.id, {"mp_payment_id": order.payment_id})
        return PixPaymentAPI(
            qr_code=order.qr_code,
            qr_code_base64=order.qr_code_base64,
            expiration_minutes=order.expiration_minutes,
            amount=invoice.amount,
        )

    # --- Superadmin ---
    async def list_all(self, status: Optional[str] = None, company_id: Optional[str] = None) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {}
        if status:
            query["status"] = status
        if company_id:
            company_obj_id = self.repo._to_objectid(company_id)
            if not company_obj_id:
                return []
            query["company_id"] = company_obj_id
        invoices = await self.repo.list_by(query, sort=[("due_date", -1), ("created_at", -1)])
        return await self._serialize(invoices, with_company=True)

    async def mark_paid(self, invoice_id: str) -> Dict[str, Any]:
        invoice = await self.repo.get_by_id(invoice_id)
        if not invoice:
            raise NotFoundError(INVOICE_NOT_FOUND_MESSAGE)
        if invoice.status == "paid":
            raise AppError("Fatura já está paga")

        updated = await self.repo.update(invoice.id, {
            "status": "paid", "paid_at": utcnow(), "mp_payment_id": f"manual-{now_ms()}",
        })
        await advance_after_payment(self.db, invoice)
        await ws_manager.emit(
            f"company:{invoice.company_id}", "invoice:paid",
            {"invoice_id": str(invoice.id), "company_id": str(invoice.company_id)},
        )
        self.log.success(f"Invoice {invoice.id} marked as paid manually")
        return (await self._serialize([updated], with_company=True))[0]

# --- Rotinas agendadas (Celery beat) ---
async def generate_monthly_invoices(db: AsyncIOMotorDatabase) -> int:
    """Fatura do mês (vencimento dia 5) para assinaturas ativas de planos pagos ainda sem fatura no mês."""
    log = logger.bind(service="BillingJobs")
    plan_repo = PlanRepository(db)
    invoice_repo = InvoiceRepository(db)
    company_repo = CompanyRepository(db)

    now = utcnow()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    next_month = add_months(month_start, 1, 1)
    due_date = month_start.replace(day=MONTHLY_DUE_DAY)

    created = 0
    for subscription in await SubscriptionRepository(db).list_active():
        plan = await plan_repo.get_by_id(subscription.plan_id)
        if not plan or plan.price <= 0:
            continue
        if await invoice_repo.exists_due_between(subscription.company_id, month_start, next_month):
            continue
        await invoice_repo.create({
            "company_id": subscription.company_id,
            "subscription_id": subscription.id,
            "amount": plan.price,
            "status": "pending",
            "due_date": due_date,
        })
        company = await company_repo.get_by_id(subscription.company_id)
        log.info(f"Fatura criada para {company.name if company else subscription.company_id}")
        created += 1
    return created

async def mark_overdue_invoices(db: AsyncIOMotorDatabase) -> int:
    count = await InvoiceRepository(db).mark_overdue(utcnow())
    if count:
        logger.bind(service="BillingJobs").info(f"{count} fatura(s) marcada(s) como vencida")
    return count

async def get_plan_service(db=Depends(get_database)) -> PlanService:
    return PlanService(db)

async def get_subscription_service(db=Depends(get_database)) -> SubscriptionService:
    return SubscriptionService(db)

async def get_invoice_service(db=Depends(get_database)) -> InvoiceService:
    return InvoiceService(db)
