# disparador/modules/billing/routers.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from disparador.core.security import CurrentUser, OptionalCompanyId, SuperAdminUser
from disparador.models.api_common import StatusResponse
from .models import (
    InvoiceAPI, PixPaymentAPI, PlanAPI, PlanCreateAPI, PlanUpdateAPI, PlanWithUsageAPI,
    SubscriptionAPI, SubscriptionAssignAPI, SubscriptionCycleAPI, UpgradeRequestAPI,
)
from .services import (
    InvoiceService, PlanService, SubscriptionService,
    get_invoice_service, get_plan_service, get_subscription_service,
)

plans_router = APIRouter()
subscriptions_router = APIRouter()
invoices_router = APIRouter()
admin_invoices_router = APIRouter()

# --- Planos ---
@plans_router.get("/public", response_model=List[PlanAPI], summary="Plans for sale (public)", tags=["Plans"])
async def list_public_plans(service: PlanService = Depends(get_plan_service)):
    return await service.list_public()

@plans_router.get("", response_model=List[PlanWithUsageAPI], tags=["Plans"])
async def list_plans(current_user: SuperAdminUser, service: PlanService = Depends(get_plan_service)):
    return await service.list_with_usage()

@plans_router.post("", response_model=PlanAPI, status_code=status.HTTP_201_CREATED, tags=["Plans"])
async def create_plan(payload: PlanCreateAPI, current_user: SuperAdminUser, service: PlanService = Depends(get_plan_service)):
    return await service.create_plan(payload)

@plans_router.put("/{plan_id}", response_model=PlanAPI, tags=["Plans"])
async def update_plan(
    plan_id: str, payload: PlanUpdateAPI, current_user: SuperAdminUser, service: PlanService = Depends(get_plan_service)
):
    return await service.update_plan(plan_id, payload)

@plans_router.delete("/{plan_id}", response_model=StatusResponse, tags=["Plans"])
async def delete_plan(plan_id: str, current_user: SuperAdminUser, service: PlanService = Depends(get_plan_service)):
    await service.delete_plan(plan_id)
    return StatusResponse(message="Plano removido")

# --- Assinaturas (superadmin) ---
@subscriptions_router.put("/company/{company_id}", response_model=SubscriptionAPI, summary="Assign plan", tags=["Subscriptions"])
async def assign_plan(
    company_id: str, payload: SubscriptionAssignAPI, current_user: SuperAdminUser,
    service: SubscriptionService = Depends(get_subscription_service),
):
    subscription = await service.assign_plan(company_id, payload.plan_id)
    return await service.with_plan(subscription)

@subscriptions_router.put("/company/{company_id}/cycle", response_model=SubscriptionAPI, tags=["Subscriptions"])
async def change_cycle(
    company_id: str, payload: SubscriptionCycleAPI, current_user: SuperAdminUser,
    service: SubscriptionService = Depends(get_subscription_service),
):
    subscription = await service.change_cycle(company_id, payload.billing_day)
    return await service.with_plan(subscription)

@subscriptions_router.post("/company/{company_id}/settle", response_model=SubscriptionAPI,
                           summary="Manual settlement (baixa)", tags=["Subscriptions"])
async def settle_subscription(
    company_id: str, current_user: SuperAdminUser, service: SubscriptionService = Depends(get_subscription_service)
):
    subscription = await service.settle(company_id)
    return await service.with_plan(subscription)

# --- Faturas da empresa ---
@invoices_router.get("", response_model=List[InvoiceAPI], tags=["Invoices"])
async def list_invoices(
    current_user: CurrentUser, company_id: OptionalCompanyId, service: InvoiceService = Depends(get_invoice_service)
):
    return await service.list_for_company(company_id)

@invoices_router.get("/plans/upgrade", response_model=List[PlanAPI], tags=["Invoices"])
async def list_upgrade_plans(
    current_user: CurrentUser, company_id: OptionalCompanyId, service: InvoiceService = Depends(get_invoice_service)
):
    return await service.upgrade_plans(company_id)

@invoices_router.post("/upgrade", response_model=InvoiceAPI, status_code=status.HTTP_201_CREATED, tags=["Invoices"])
async def request_upgrade(
    payload: UpgradeRequestAPI, current_user: CurrentUser, company_id: OptionalCompanyId,
    service: InvoiceService = Depends(get_invoice_service),
):
    """Gera a fatura de upgrade; o plano muda quando ela for paga."""
    return await service.request_upgrade(company_id, payload.plan_id)

@invoices_router.post("/{invoice_id}/pay", response_model=PixPaymentAPI, summary="Pay invoice with PIX", tags=["Invoices"])
async def pay_invoice(
    invoice_id: str, current_user: CurrentUser, company_id: OptionalCompanyId,
    service: InvoiceService = Depends(get_invoice_service),
):
    return await service.pay_with_pix(company_id, current_user, invoice_id)

# --- Faturas (superadmin) ---
@admin_invoices_router.get("/invoices", response_model=List[InvoiceAPI], tags=["Admin Invoices"])
async def list_all_invoices(
    current_user: SuperAdminUser,
    invoice_status: Optional[str] = Query(None, alias="status"),
    company_id: Optional[str] = Query(None),
    service: InvoiceService = Depends(get_invoice_service),
):
    return await service.list_all(invoice_status, company_id)

@admin_invoices_router.patch("/invoices/{invoice_id}/mark-paid", response_model=InvoiceAPI, tags=["Admin Invoices"])
async def mark_invoice_paid(invoice_id: str, current_user: SuperAdminUser, service: InvoiceService = Depends(get_invoice_service)):
    return await service.mark_paid(invoice_id)
