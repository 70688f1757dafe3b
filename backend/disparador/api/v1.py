# disparador/api/v1.py
from fastapi import APIRouter

from disparador.api.endpoints import auth, status, websocket
from disparador.modules.billing.routers import (
    admin_invoices_router, invoices_router, plans_router, subscriptions_router,
)
from disparador.modules.campaigns.routers import campaigns_router, links_router
from disparador.modules.catalog.routers import (
    link_preview_router, products_router, template_types_router, templates_router,
)
from disparador.modules.companies.routers import companies_router
from disparador.modules.dashboard.routers import dashboard_router
from disparador.modules.settings.routers import settings_router
from disparador.modules.users.routers import admin_users_router
from disparador.modules.whatsapp.routers import groups_router, internal_router, whatsapp_router

api_router = APIRouter()

api_router.include_router(status.router)
api_router.include_router(auth.router, prefix="/auth")
api_router.include_router(dashboard_router, prefix="/dashboard")
api_router.include_router(whatsapp_router, prefix="/whatsapp")
api_router.include_router(groups_router, prefix="/groups")
api_router.include_router(campaigns_router, prefix="/campaigns")
api_router.include_router(products_router, prefix="/products")
api_router.include_router(templates_router, prefix="/templates")
api_router.include_router(template_types_router, prefix="/template-types")
api_router.include_router(link_preview_router, prefix="/link-preview")
api_router.include_router(settings_router, prefix="/settings")
api_router.include_router(plans_router, prefix="/plans")
api_router.include_router(subscriptions_router, prefix="/subscriptions")
api_router.include_router(invoices_router, prefix="/invoices")
api_router.include_router(companies_router, prefix="/companies")
api_router.include_router(admin_users_router, prefix="/admin")
api_router.include_router(admin_invoices_router, prefix="/admin")
# Chamado só pelo gateway WhatsApp (X-Api-Key)
api_router.include_router(internal_router, prefix="/internal/whatsapp")

# Fora do prefixo da API: links curtos e WebSocket
root_router = APIRouter()
root_router.include_router(websocket.router)
root_router.include_router(links_router)
