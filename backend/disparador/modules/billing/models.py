# disparador/modules/billing/models.py
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field

from disparador.core.dates import utcnow
from disparador.models.api_common import ApiId, Money, ObjectIdStr, PyObjectId

LIFETIME_PLAN_SLUG = "vitalicio"
DEFAULT_PLAN_LIMITS: Dict[str, int] = {"connections": 1, "campaigns": 50, "users": 5, "groups": 200}

INVOICE_STATUS = Literal["pending", "paid", "overdue", "canceled"]
SUBSCRIPTION_STATUS = Literal["active", "canceled", "past_due"]

# --- Internal/DB Models ---
class PlanInDB(BaseModel):
    id: PyObjectId = Field(default_factory=ObjectId, alias="_id")
    name: str
    slug: str
    price: Money = Decimal("0.00")
    limits: Dict[str, Any] = Field(default_factory=lambda: dict(DEFAULT_PLAN_LIMITS))
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

class SubscriptionInDB(BaseModel):
    id: PyObjectId = Field(default_factory=ObjectId, alias="_id")
    company_id: PyObjectId
    plan_id: PyObjectId
    status: SUBSCRIPTION_STATUS = "active"
    billing_day: int = 1
    current_period_start: datetime
    current_period_end: datetime
    trial_ends_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

class InvoiceInDB(BaseModel):
    id: PyObjectId = Field(default_factory=ObjectId, alias="_id")
    company_id: PyObjectId
    subscription_id: Optional[PyObjectId] = None
    amount: Money
    status: INVOICE_STATUS = "pending"
    due_date: datetime
    paid_at: Optional[datetime] = None
    mp_payment_id: Optional[str] = None
    upgrade_plan_id: Optional[PyObjectId] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

# --- API Models ---
class PlanAPI(BaseModel):
    id: ApiId
    name: str
    slug: str
    price: Money
    limits: Dict[str, Any]
    is_active: bool = True

    model_config = ConfigDict(from_attributes=True)

class PlanWithUsageAPI(PlanAPI):
    subscription_count: int = 0

class PlanLimitsInput(BaseModel):
    # -1 = ilimitado
    connections: Optional[int] = Field(None, ge=-1)
    campaigns: Optional[int] = Field(None, ge=-1)
    users: Optional[int] = Field(None, ge=-1)
    groups: Optional[int] = Field(None, ge=-1)
    groups_per_campaign: Optional[int] = Field(None, ge=-1)

class PlanCreateAPI(BaseModel):
    name: str = Field(..., min_length=2)
    slug: str = Field(..., min_length=2, pattern=r"^[a-z0-9-]+$")
    price: Money = Field(..., ge=0)
    limits: Optional[PlanLimitsInput] = None
    is_active: bool = True

class PlanUpdateAPI(BaseModel):
    name: Optional[str] = Field(None, min_length=2)
    slug: Optional[str] = Field(None, min_length=2, pattern=r"^[a-z0-9-]+$")
    price: Optional[Money] = Field(None, ge=0)
    limits: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None

class SubscriptionAPI(BaseModel):
    id: ApiId
    company_id: ObjectIdStr
    plan_id: ObjectIdStr
    status: str
    billing_day: int
    current_period_start: datetime
    current_period_end: datetime
    trial_ends_at: Optional[datetime] = None
    plan: Optional[PlanAPI] = None

    model_config = ConfigDict(from_attributes=True)

class SubscriptionAssignAPI(BaseModel):
    plan_id: str

class SubscriptionCycleAPI(BaseModel):
    billing_day: int = Field(..., ge=1, le=28)

class InvoiceCompanyRef(BaseModel):
    id: ApiId
    name: str
    slug: Optional[str] = None
    email: Optional[str] = None

class InvoiceAPI(BaseModel):
    id: ApiId
    company_id: ObjectIdStr
    subscription_id: Optional[ObjectIdStr] = None
    amount: Money
    status: str
    due_date: datetime
    paid_at: Optional[datetime] = None
    mp_payment_id: Optional[str] = None
    upgrade_plan_id: Optional[ObjectIdStr] = None
    created_at: datetime
    plan: Optional[PlanAPI] = None
    company: Optional[InvoiceCompanyRef] = None

    model_config = ConfigDict(from_attributes=True)

class UpgradeRequestAPI(BaseModel):
    plan_id: str

class PixPaymentAPI(BaseModel):
    qr_code: str
    qr_code_base64: str
    expiration_minutes: int
    amount: Money
