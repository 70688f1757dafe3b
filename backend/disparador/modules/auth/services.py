# disparador/modules/auth/services.py
# Cadastro self-service, login e bootstrap do primeiro superadmin.

import re
import unicodedata
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import Depends
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase

from disparador.core.config import settings
from disparador.core.database import get_database
from disparador.core.dates import add_months, clamp_billing_day, days_from_now, utcnow
from disparador.core.exceptions import AppError, ForbiddenError, NotFoundError
from disparador.core.security import get_password_hash, resolve_company_id, token_for_user, verify_password
from disparador.models.auth import (
    LoginResponse, MeResponse, MeUpdateRequest, RegisterRequest, SubscriptionSummary,
)
from disparador.modules.billing.models import LIFETIME_PLAN_SLUG, SubscriptionInDB
from disparador.modules.billing.repository import InvoiceRepository, PlanRepository, SubscriptionRepository
from disparador.modules.companies.models import DEFAULT_SESSION_NAME, CompanyInDB
from disparador.modules.companies.repository import CompanyRepository
from disparador.modules.settings.services import SettingsService
from disparador.modules.users.models import UserInDB
from disparador.modules.users.repository import UserRepository
from disparador.modules.whatsapp.repository import WhatsappSessionRepository

INVALID_CREDENTIALS_MESSAGE = "Credenciais inválidas"
COMPANY_DISABLED_MESSAGE = "Empresa desativada. Entre em contato com o suporte."
EMAIL_TAKEN_MESSAGE = "Este e-mail já está cadastrado"

SYSTEM_COMPANY_NAME = "Sistema Administrativo"
LIFETIME_PERIOD_END = datetime(2093, 12, 31)
LIFETIME_PLAN_LIMITS = {
    "connections": 100, "campaigns": 100000, "users": 1000, "groups": 100000, "groups_per_campaign": 100000,
}
TRIAL_PAYMENT_GRACE = timedelta(days=2)

def slugify_company_name(name: str) -> str:
    """'Loja São João' -> 'loja-sao-joao'."""
    normalized = unicodedata.normalize("NFD", name.lower())
    without_marks = "".join(ch for ch in normalized if not unicodedata.combining(ch))
    cleaned = re.sub(r"[^a-z0-9\s-]", "", without_marks).strip()
    return re.sub(r"\s+", "-", cleaned)

def subscription_summary(subscription: SubscriptionInDB, now: Optional[datetime] = None) -> SubscriptionSummary:
    now = now or utcnow()
    trial_ends_at = subscription.trial_ends_at
    is_trial_expired = trial_ends_at is not None and now > trial_ends_at
    return SubscriptionSummary(
        trial_ends_at=trial_ends_at,
        is_trial_expired=is_trial_expired,
        has_active_paid_access=subscription.current_period_end > now and not is_trial_expired,
        current_period_end=subscription.current_period_end,
        billing_day=subscription.billing_day,
    )

class AuthService:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.user_repo = UserRepository(db)
        self.company_repo = CompanyRepository(db)
        self.plan_repo = PlanRepository(db)
        self.subscription_repo = SubscriptionRepository(db)
        self.invoice_repo = InvoiceRepository(db)
        self.session_repo = WhatsappSessionRepository(db)
        self.settings = SettingsService(db)
        self.log = logger.bind(service="AuthService")

    async def register(self, data: RegisterRequest) -> Dict[str, Any]:
        email = data.email.lower()
        if await self.user_repo.get_by_email(email):
            raise AppError(EMAIL_TAKEN_MESSAGE)

        slug = slugify_company_name(data.company_name)
        if not slug:
            raise AppError("Nome da empresa inválido")
        if await self.company_repo.get_by_slug(slug):
            raise AppError("Já existe uma empresa com esse nome. Use um nome diferente.")

        plan = await self.plan_repo.get_by_id(data.plan_id)
        if not plan or not plan.is_active:
            raise AppError("Plano inválido ou inativo")

        trial_days = await self.settings.get_int_setting("trial_days", 0)
        now = utcnow()
        billing_day = clamp_billing_day(now.day)
        trial_ends_at = days_from_now(trial_days, now) if trial_days > 0 else None
        # No trial o período termina junto com ele; o pagamento renova para o mês seguinte
        period_end = trial_ends_at or add_months(now, 1, billing_day)

        company = await self.company_repo.create({"name": data.company_name, "slug": slug, "email": email})
        user = await self.user_repo.create({
            "email": email,
            "name": data.name,
            "hashed_password": get_password_hash(data.password),
            "role": "admin",
            "company_id": company.id,
        })
        subscription = await self.subscription_repo.create({
            "company_id": company.id,
            "plan_id": plan.id,
            "status": "active",
            "billing_day": billing_day,
            "current_period_start": now,
            "current_period_end": period_end,
            "trial_ends_at": trial_ends_at,
        })
        await self.session_repo.create({"company_id": company.id, "name": DEFAULT_SESSION_NAME, "is_default": True})

        if trial_ends_at:
            await self.invoice_repo.create({
                "company_id": company.id,
                "subscription_id": subscription.id,
                "amount": plan.price,
                "status": "pending",
                "due_date": trial_ends_at + TRIAL_PAYMENT_GRACE,
            })

        self.log.success(f"Company '{slug}' registered by {email} on plan '{plan.slug}' (trial {trial_days}d)")
        return {"id": user.id, "email": user.email, "company": {"id": company.id, "name": company.name}}

    async def authenticate(self, email: str, password: str) -> UserInDB:
        user = await self.user_repo.get_by_email(email.lower())
        if not user or not verify_password(password, user.hashed_password):
            self.log.warning(f"Authentication failed for {email}")
            raise AppError(INVALID_CREDENTIALS_MESSAGE, status_code=401)

        if user.company_id:
            company = await self.company_repo.get_by_id(user.company_id)
            if company and not company.is_active:
                raise AppError(COMPANY_DISABLED_MESSAGE, status_code=401)

        if user.role == "superadmin" and not user.company_id:
            company_id = await resolve_company_id(user, self.company_repo)
            if company_id:
                user = await self.user_repo.update(user.id, {"company_id": company_id}) or user
        return user

    async def login(self, email: str, password: str) -> LoginResponse:
        user = await self.authenticate(email, password)
        company = await self.company_repo.get_by_id(user.company_id) if user.company_id else None
        self.log.success(f"Login successful for user {user.email} (ID: {user.id})")
        return LoginResponse(
            access_token=token_for_user(user),
            user={**user.model_dump(), "company": company.model_dump() if company else None},
        )

    async def _system_company(self) -> CompanyInDB:
        company = await self.company_repo.get_system_company()
        if company:
            return company
        plan = await self.plan_repo.get_by_slug(LIFETIME_PLAN_SLUG)
        if not plan:
            plan = await self.plan_repo.create({
                "name": "Vitalício", "slug": LIFETIME_PLAN_SLUG, "price": Decimal("0.00"),
                "limits": dict(LIFETIME_PLAN_LIMITS), "is_active": False,
            })
        company = await self.company_repo.create({
            "name": SYSTEM_COMPANY_NAME, "slug": settings.SYSTEM_COMPANY_SLUG, "is_active": True,
        })
        await self.subscription_repo.create({
            "company_id": company.id,
            "plan_id": plan.id,
            "status": "active",
            "billing_day": 1,
            "current_period_start": utcnow(),
            "current_period_end": LIFETIME_PERIOD_END,
        })
        return company

    async def bootstrap_admin(self, email: str, password: str, name: Optional[str] = None) -> UserInDB:
        if await self.user_repo.count() > 0:
            raise AppError("Bootstrap já foi executado")
        company = await self._system_company()
        user = await self.user_repo.create({
            "email": email.lower(),
            "name": name or "Super Admin",
            "hashed_password": get_password_hash(password),
            "role": "superadmin",
            "company_id": company.id,
        })
        self.log.success(f"Superadmin {user.email} created in company '{company.slug}'")
        return user

    async def me(self, user: UserInDB) -> MeResponse:
        data: Dict[str, Any] = user.model_dump()
        if user.company_id:
            company = await self.company_repo.get_by_id(user.company_id)
            if company:
                if not company.is_active:
                    raise ForbiddenError(COMPANY_DISABLED_MESSAGE)
                data["company"] = company.model_dump()
                subscription = await self.subscription_repo.get_by_company(company.id)
                if subscription:
                    data["subscription"] = subscription_summary(subscription)
        return MeResponse.model_validate(data)

    async def update_me(self, user: UserInDB, data: MeUpdateRequest) -> MeResponse:
        changes: Dict[str, Any] = {}
        if data.name is not None:
            changes["name"] = data.name
        if data.email is not None and data.email.lower() != user.email:
            if await self.user_repo.get_by_email(data.email.lower()):
                raise AppError(EMAIL_TAKEN_MESSAGE)
            changes["email"] = data.email.lower()
        if data.password:
            changes["hashed_password"] = get_password_hash(data.password)
        if changes:
            user = await self.user_repo.update(user.id, changes)
            if not user:
                raise NotFoundError("Usuário não encontrado")
        return await self.me(user)

async def get_auth_service(db=Depends(get_database)) -> AuthService:
    return AuthService(db)
