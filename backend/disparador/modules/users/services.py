# disparador/modules/users/services.py
from typing import List, Optional

from bson import ObjectId
from fastapi import Depends
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase

from disparador.core.database import get_database
from disparador.core.exceptions import AppError, ForbiddenError, NotFoundError
from disparador.core.security import get_password_hash
from disparador.modules.limits.services import PlanLimitsService
from .models import (
    MENU_PERMISSION_LABELS, AdminUserCreateAPI, AdminUserUpdateAPI, MenuKeyAPI, UserInDB,
    filter_menu_permissions,
)
from .repository import UserRepository

EMAIL_TAKEN_MESSAGE = "Este e-mail já está cadastrado"

class AdminUserService:
    """Gestão de usuários por admin (própria empresa) e superadmin (todas)."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.repo = UserRepository(db)
        self.limits = PlanLimitsService(db)
        self.log = logger.bind(service="AdminUserService")

    @staticmethod
    def menu_keys() -> List[MenuKeyAPI]:
        return [MenuKeyAPI(key=key, label=label) for key, label in MENU_PERMISSION_LABELS.items()]

    async def list_users(self, actor: UserInDB, company_filter: Optional[str] = None) -> List[UserInDB]:
        if actor.role == "superadmin":
            company_id = self.repo._to_objectid(company_filter) if company_filter else None
            if company_filter and company_id is None:
                return []
            return await self.repo.list_by_company(company_id)
        if not actor.company_id:
            return []
        return await self.repo.list_by_company(actor.company_id)

    async def _get_manageable(self, actor: UserInDB, user_id: str, action: str) -> UserInDB:
        target = await self.repo.get_by_id(user_id)
        if not target:
            raise NotFoundError("Usuário não encontrado")
        if actor.role == "admin" and target.company_id != actor.company_id:
            raise ForbiddenError(f"Sem permissão para {action} este usuário.")
        return target

    async def _assert_email_free(self, email: str, exclude_id: Optional[ObjectId] = None) -> None:
        existing = await self.repo.get_by_email(email)
        if existing and existing.id != exclude_id:
            raise AppError(EMAIL_TAKEN_MESSAGE)

    async def create_user(self, actor: UserInDB, data: AdminUserCreateAPI) -> UserInDB:
        if actor.role == "superadmin":
            target_company = self.repo._to_objectid(data.company_id) if data.company_id else actor.company_id
        else:
            target_company = actor.company_id
            if not target_company:
                raise AppError("O usuário precisa estar em uma empresa")
            if data.role == "admin":
                raise AppError("Apenas o superadmin pode criar outros administradores.")

        await self._assert_email_free(data.email)
        if target_company:
            await self.limits.assert_within_limit(target_company, "users")

        menu_permissions = filter_menu_permissions(data.menu_permissions)
        user = await self.repo.create({
            "email": data.email.lower(),
            "name": data.name,
            "hashed_password": get_password_hash(data.password),
            "role": data.role,
            "company_id": target_company,
            "menu_permissions": menu_permissions or None,
        })
        self.log.success(f"User {user.id} ({user.role}) created by {actor.id} in company {target_company}")
        return user

    async def update_user(self, actor: UserInDB, user_id: str, data: AdminUserUpdateAPI) -> UserInDB:
        target = await self._get_manageable(actor, user_id, "editar")
        if actor.role == "admin" and data.role == "admin":
            raise AppError("Apenas o superadmin pode promover a administrador.")

        changes = data.model_dump(exclude_unset=True, exclude={"password"})
        if "email" in changes:
            if changes["email"] is None:
                changes.pop("email")
            else:
                changes["email"] = changes["email"].lower()
                await self._assert_email_free(changes["email"], exclude_id=target.id)
        if "role" in changes and changes["role"] is None:
            changes.pop("role")
        if "menu_permissions" in changes:
            # Lista vazia ou null = acesso completo
            changes["menu_permissions"] = filter_menu_permissions(changes["menu_permissions"]) or None
        if data.password:
            changes["hashed_password"] = get_password_hash(data.password)

        updated = await self.repo.update(target.id, changes)
        self.log.info(f"User {target.id} updated by {actor.id}: {sorted(changes)}")
        return updated

    async def delete_user(self, actor: UserInDB, user_id: str) -> None:
        target = await self._get_manageable(actor, user_id, "excluir")
        if target.id == actor.id:
            raise AppError("Você não pode excluir o próprio usuário.")
        await self.repo.delete(target.id)

async def get_admin_user_service(db=Depends(get_database)) -> AdminUserService:
    return AdminUserService(db)
