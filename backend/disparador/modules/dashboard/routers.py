# disparador/modules/dashboard/routers.py
from fastapi import APIRouter, Depends

from disparador.core.security import CurrentUser, OptionalCompanyId
from .models import DashboardAPI
from .services import DashboardService, get_dashboard_service

dashboard_router = APIRouter()

@dashboard_router.get("", response_model=DashboardAPI, summary="Dashboard overview", tags=["Dashboard"])
async def get_dashboard(
    current_user: CurrentUser, company_id: OptionalCompanyId, service: DashboardService = Depends(get_dashboard_service)
):
    """Status da sessão padrão, números de hoje, fila de campanhas e alertas."""
    return await service.get_dashboard(current_user.id, company_id)
