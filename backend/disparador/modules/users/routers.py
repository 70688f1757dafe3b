# disparador/modules/users/routers.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from disparador.core.security import AdminUser
from disparador.models.api_common import StatusResponse
from .models import AdminUserCreateAPI, AdminUserUpdateAPI, MenuKeyAPI, UserAPI
from .services import AdminUserService, get_admin_user_service

admin_users_router = APIRouter()

@admin_users_router.get("/users/menu-keys", response_model=List[MenuKeyAPI], tags=["Admin Users"])
async def list_menu_keys(current_user: AdminUser):
    """Chaves de menu que podem ser liberadas por usuário."""
    return AdminUserService.menu_keys()

@admin_users_router.get("/users", response_model=List[UserAPI], summary="List users", tags=["Admin Users"])
async def list_users(
    current_user: AdminUser,
    company_id: Optional[str] = Query(None, description="Filtro por empresa (apenas superadmin)"),
    service: AdminUserService = Depends(get_admin_user_service),
):
    return await service.list_users(current_user, company_id)

@admin_users_router.post("/users", response_model=UserAPI, status_code=status.HTTP_201_CREATED, tags=["Admin Users"])
async def create_user(
    payload: AdminUserCreateAPI, current_user: AdminUser, service: AdminUserService = Depends(get_admin_user_service)
):
    return await service.create_user(current_user, payload)

@admin_users_router.put("/users/{user_id}", response_model=UserAPI, tags=["Admin Users"])
async def update_user(
    user_id: str, payload: AdminUserUpdateAPI, current_user: AdminUser,
    service: AdminUserService = Depends(get_admin_user_service),
):
    return await service.update_user(current_user, user_id, payload)

@admin_users_router.delete("/users/{user_id}", response_model=StatusResponse, tags=["Admin Users"])
async def delete_user(user_id: str, current_user: AdminUser, service: AdminUserService = Depends(get_admin_user_service)):
    await service.delete_user(current_user, user_id)
    return StatusResponse(message="Usuário removido")
